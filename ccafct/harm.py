"""Harm of a competing flow relative to solo performance.

Harm is defined in Ware et al., "Beyond Jain's Fairness Index: Setting the
Bar for the Deployment of Congestion Control Algorithms" (HotNets '19).
"""

from __future__ import annotations

import math


class Harm(float):
    """A harm value in [0, 1], or an invalid value outside that range."""

    @property
    def invalid(self) -> bool:
        return self < 0 or self > 1

    @property
    def zero(self) -> bool:
        return self == 0

    @property
    def nonzero(self) -> bool:
        return self > 0 and not self.invalid

    def __str__(self) -> str:
        if self.invalid:
            return f"!({float(self):.3f})"
        return f"{float(self):.3f}"

    def __repr__(self) -> str:
        return f"Harm({float(self)!r})"


# returned when the harm is undefined for the inputs
INFINITY = Harm(math.inf)


def less_is_better(solo: float, workload: float) -> Harm:
    if workload == 0:
        return INFINITY
    if workload < solo:
        return Harm(0.0)
    return Harm((workload - solo) / workload)


def more_is_better(solo: float, workload: float) -> Harm:
    if solo == 0:
        return INFINITY
    if workload >= solo:
        return Harm(0.0)
    return Harm((solo - workload) / solo)


__all__ = ["Harm", "INFINITY", "less_is_better", "more_is_better"]
