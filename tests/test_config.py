import math

import numpy as np
import pytest

from ccafct.config import (
    KILOBYTE,
    MEGABYTE,
    Z95,
    FCTConfig,
    WorkloadParams,
    WorkloadPlan,
    format_bitrate,
)


def test_defaults():
    plan = WorkloadPlan.from_params()
    assert plan.addr == "localhost:8188"
    assert plan.url == "http://localhost:8188/fct"
    assert plan.cca == "cubic"
    assert plan.duration == 10.0
    assert plan.mean_arrival == 0.2
    assert plan.arrival_rate == 1.0
    assert plan.len_p5 == 64 * KILOBYTE
    assert plan.len_p95 == 2 * MEGABYTE
    assert plan.flows == 50


@pytest.mark.parametrize(
    "duration, mean_arrival, expected",
    [(10.0, 1.0, 10), (10.0, 3.0, 3), (1.0, 0.3, 3), (0.5, 1.0, 0), (180.0, 0.25, 720)],
)
def test_flow_count(duration, mean_arrival, expected):
    plan = WorkloadPlan.from_params(WorkloadParams(duration=duration, mean_arrival=mean_arrival))
    assert plan.flows == expected
    assert plan.flows == math.floor(duration / mean_arrival)


@pytest.mark.parametrize("p5, p95", [(64 * KILOBYTE, 2 * MEGABYTE), (10, 11), (1, 10**9)])
def test_lognormal_percentiles(p5, p95):
    plan = WorkloadPlan.from_params(WorkloadParams(len_p5=p5, len_p95=p95))
    assert math.exp(plan.mu - Z95 * plan.sigma) == pytest.approx(p5)
    assert math.exp(plan.mu + Z95 * plan.sigma) == pytest.approx(p95)


def test_mean_flow_len_and_bandwidth():
    plan = WorkloadPlan.from_params(WorkloadParams(duration=10.0, mean_arrival=1.0))
    mean = math.exp(plan.mu + plan.sigma**2 / 2)
    assert plan.mean_flow_len == int(mean)
    assert plan.bandwidth == pytest.approx(10 / 10.0 * mean * 8)


def test_addr_with_port_and_custom_config():
    config = FCTConfig(port=9000, path="/flow")
    plan = WorkloadPlan.from_params(WorkloadParams(addr="10.0.0.2"), config)
    assert plan.url == "http://10.0.0.2:9000/flow"
    plan = WorkloadPlan.from_params(WorkloadParams(addr="10.0.0.2:1234"), config)
    assert plan.url == "http://10.0.0.2:1234/flow"


def test_empty_cca_disables_header():
    assert WorkloadPlan.from_params(WorkloadParams(cca="")).cca == ""


@pytest.mark.parametrize(
    "params",
    [
        WorkloadParams(duration=-1.0),
        WorkloadParams(mean_arrival=0.0),
        WorkloadParams(arrival_rate=-2.0),
        WorkloadParams(len_p5=100, len_p95=100),
        WorkloadParams(len_p5=200, len_p95=100),
    ],
)
def test_invalid_params(params):
    with pytest.raises(ValueError):
        WorkloadPlan.from_params(params)


def test_params_round_trip_through_dict():
    params = WorkloadParams(addr="host", cca="bbr", duration=3.0, disable_gc=True)
    assert WorkloadParams.from_dict(params.to_dict()) == params
    with pytest.raises(ValueError):
        WorkloadParams.from_dict({"bogus": 1})


def test_sampling_is_positive():
    plan = WorkloadPlan.from_params(WorkloadParams(len_p5=1000, len_p95=100000))
    rng = np.random.default_rng(7)
    waits = [plan.sample_wait(rng) for _ in range(2000)]
    lengths = [plan.sample_length(rng) for _ in range(2000)]
    assert min(waits) >= 0
    assert sum(waits) / len(waits) == pytest.approx(plan.mean_arrival, rel=0.15)
    assert min(lengths) >= 0
    assert 1000 <= sorted(lengths)[len(lengths) // 2] <= 100000


def test_config_from_env():
    config = FCTConfig.from_env({"FCT_PORT": "9100", "FCT_CCA_HEADER": "X-CCA", "FCT_BUF_LEN": "bad"})
    assert config.port == 9100
    assert config.cca_header == "X-CCA"
    assert config.buf_len == FCTConfig().buf_len


def test_format_bitrate():
    assert format_bitrate(50_000_000) == "50Mbps"
    assert format_bitrate(1_500) == "1.5Kbps"
    assert format_bitrate(12) == "12bps"
