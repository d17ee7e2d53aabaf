from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .flowlog import FlowLog
from .harm import Harm, less_is_better


class EmptyFlowLogError(ValueError):
    """Raised when statistics are requested for a run without flows."""


@dataclass
class FCT:
    """A flow completion time in seconds, with its harm once compared to solo."""

    seconds: float
    harm: Harm = field(default_factory=lambda: Harm(0.0))

    def set_harm(self, solo: "FCT") -> None:
        self.harm = less_is_better(solo.seconds, self.seconds)

    def millis(self) -> float:
        return self.seconds * 1000.0

    def __str__(self) -> str:
        text = f"{self.millis():.1f}ms"
        if self.harm.zero:
            return text
        return f"{text} ({self.harm})"


@dataclass
class StatsResult:
    geomean: FCT
    median: FCT
    p95: FCT

    def set_harm(self, solo: "StatsResult") -> None:
        self.geomean.set_harm(solo.geomean)
        self.median.set_harm(solo.median)
        self.p95.set_harm(solo.p95)

    def to_dict(self) -> dict[str, Any]:
        return {
            "geomean_ms": self.geomean.millis(),
            "geomean_harm": float(self.geomean.harm),
            "median_ms": self.median.millis(),
            "median_harm": float(self.median.harm),
            "p95_ms": self.p95.millis(),
            "p95_harm": float(self.p95.harm),
        }


def analyze(flow_log: FlowLog) -> StatsResult:
    durations = flow_log.durations()
    if not durations:
        raise EmptyFlowLogError("unable to analyze empty flow durations")

    values = np.sort(np.asarray(durations, dtype=float))

    with np.errstate(divide="ignore"):
        geomean = float(np.exp(np.mean(np.log(values))))
    # inverted_cdf: smallest sample whose empirical CDF reaches p
    median = float(np.quantile(values, 0.5, method="inverted_cdf"))
    p95 = float(np.quantile(values, 0.95, method="inverted_cdf"))

    return StatsResult(geomean=FCT(geomean), median=FCT(median), p95=FCT(p95))


def set_harm(result: StatsResult, baseline: StatsResult) -> StatsResult:
    result.set_harm(baseline)
    return result


__all__ = ["EmptyFlowLogError", "FCT", "StatsResult", "analyze", "set_harm"]
