import math

import pytest

from ccafct.harm import INFINITY, Harm, less_is_better, more_is_better


def test_less_is_better_equal_is_zero():
    assert less_is_better(100, 100) == 0


def test_less_is_better_degradation():
    assert less_is_better(100, 150) == pytest.approx(1 / 3, abs=1e-3)


def test_less_is_better_improvement_is_clamped():
    harm = less_is_better(100, 50)
    assert harm == 0
    assert harm.zero


def test_less_is_better_zero_workload_is_infinite():
    harm = less_is_better(100, 0)
    assert harm is INFINITY
    assert math.isinf(harm)
    assert harm.invalid


def test_less_is_better_approaches_one():
    harm = less_is_better(1, 1e9)
    assert 0.999 < harm < 1
    assert harm.nonzero


def test_more_is_better():
    assert more_is_better(100, 100) == 0
    assert more_is_better(100, 150) == 0
    assert more_is_better(100, 50) == pytest.approx(0.5)
    assert more_is_better(0, 50) is INFINITY


def test_harm_is_never_negative():
    for solo, workload in [(1, 2), (2, 1), (5, 5), (0.1, 1000), (1000, 0.1)]:
        assert less_is_better(solo, workload) >= 0
        assert more_is_better(solo, workload) >= 0


def test_harm_str():
    assert str(Harm(0.25)) == "0.250"
    assert str(INFINITY) == "!(inf)"
