from __future__ import annotations

import logging
import math
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping

import numpy as np

LOGGER = logging.getLogger("ccafct.config")

BYTE = 1
KILOBYTE = 1024 * BYTE
MEGABYTE = 1024 * KILOBYTE
GIGABYTE = 1024 * MEGABYTE

BPS = 1
KBPS = 1000 * BPS
MBPS = 1000 * KBPS
GBPS = 1000 * MBPS

# one-sided 95% quantile of the standard normal distribution
Z95 = 1.645

DEFAULT_ADDR = "localhost"
DEFAULT_CCA = "cubic"
DEFAULT_DURATION_S = 10.0
DEFAULT_MEAN_ARRIVAL_S = 0.2
DEFAULT_ARRIVAL_RATE = 1.0
DEFAULT_LEN_P5 = 64 * KILOBYTE
DEFAULT_LEN_P95 = 2 * MEGABYTE


@dataclass(frozen=True)
class FCTConfig:
    """Wire-level settings shared by the client and the server."""

    port: int = 8188
    flow_length_header: str = "FCT-Flow-Length"
    cca_header: str = "FCT-CCA"
    path: str = "/fct"
    buf_len: int = 32 * KILOBYTE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "FCTConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            port=_env_int(env, "FCT_PORT", defaults.port),
            flow_length_header=env.get("FCT_FLOW_LENGTH_HEADER", defaults.flow_length_header),
            cca_header=env.get("FCT_CCA_HEADER", defaults.cca_header),
            path=env.get("FCT_PATH", defaults.path),
            buf_len=_env_int(env, "FCT_BUF_LEN", defaults.buf_len),
        )


def _env_int(env: Mapping[str, str], name: str, fallback: int) -> int:
    raw = env.get(name)
    if raw is None:
        return fallback
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError("non-positive value")
    except ValueError:
        LOGGER.warning("invalid %s value %r; defaulting to %d", name, raw, fallback)
        return fallback
    return value


def format_bitrate(bps: float) -> str:
    for unit, scale in (("Gbps", GBPS), ("Mbps", MBPS), ("Kbps", KBPS)):
        if bps >= scale:
            return f"{bps / scale:.3g}{unit}"
    return f"{int(bps)}bps"


@dataclass(frozen=True)
class WorkloadParams:
    """User-facing workload parameters. ``None`` selects the default."""

    addr: str | None = None
    cca: str | None = None
    duration: float | None = None
    mean_arrival: float | None = None
    arrival_rate: float | None = None
    len_p5: int | None = None
    len_p95: int | None = None
    disable_gc: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkloadParams":
        known = {f.name for f in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            raise ValueError(f"unknown workload parameters: {', '.join(sorted(unknown))}")
        return cls(**dict(payload))


@dataclass(frozen=True)
class WorkloadPlan:
    """Resolved, immutable description of one workload run."""

    addr: str
    url: str
    cca: str
    duration: float
    mean_arrival: float
    arrival_rate: float
    len_p5: int
    len_p95: int
    disable_gc: bool
    flows: int
    mu: float
    sigma: float
    mean_flow_len: int
    bandwidth: float

    @classmethod
    def from_params(
        cls, params: WorkloadParams | None = None, config: FCTConfig | None = None
    ) -> "WorkloadPlan":
        params = params or WorkloadParams()
        config = config or FCTConfig()

        addr = params.addr or DEFAULT_ADDR
        cca = DEFAULT_CCA if params.cca is None else params.cca
        duration = _or_default(params.duration, DEFAULT_DURATION_S)
        mean_arrival = _or_default(params.mean_arrival, DEFAULT_MEAN_ARRIVAL_S)
        arrival_rate = _or_default(params.arrival_rate, DEFAULT_ARRIVAL_RATE)
        len_p5 = int(_or_default(params.len_p5, DEFAULT_LEN_P5))
        len_p95 = int(_or_default(params.len_p95, DEFAULT_LEN_P95))

        if duration <= 0:
            raise ValueError("duration must be > 0")
        if mean_arrival <= 0:
            raise ValueError("mean_arrival must be > 0")
        if arrival_rate <= 0:
            raise ValueError("arrival_rate must be > 0")
        if not 0 < len_p5 < len_p95:
            raise ValueError("flow length percentiles must satisfy 0 < p5 < p95")

        if ":" not in addr:
            addr = f"{addr}:{config.port}"
        url = f"http://{addr}{config.path}"

        flows = math.floor(duration / mean_arrival)

        log5 = math.log(len_p5)
        log95 = math.log(len_p95)
        mu = (log5 + log95) / 2
        sigma = (log95 - log5) / (2 * Z95)

        mean_flow_len = math.exp(mu + 0.5 * sigma**2)
        bandwidth = flows / duration * mean_flow_len * 8

        return cls(
            addr=addr,
            url=url,
            cca=cca,
            duration=duration,
            mean_arrival=mean_arrival,
            arrival_rate=arrival_rate,
            len_p5=len_p5,
            len_p95=len_p95,
            disable_gc=params.disable_gc,
            flows=flows,
            mu=mu,
            sigma=sigma,
            mean_flow_len=int(mean_flow_len),
            bandwidth=bandwidth,
        )

    def sample_wait(self, rng: np.random.Generator) -> float:
        # unit-rate exponential scaled by the mean arrival; the realised mean
        # is mean_arrival / arrival_rate
        return float(rng.exponential(1.0 / self.arrival_rate)) * self.mean_arrival

    def sample_length(self, rng: np.random.Generator) -> int:
        return int(rng.lognormal(mean=self.mu, sigma=self.sigma))

    def summary(self) -> list[tuple[str, str]]:
        return [
            ("Server URL", self.url),
            ("CCA", self.cca or "<none>"),
            ("Duration", f"{self.duration:g}s"),
            ("Flows", str(self.flows)),
            ("Mean arrival time", f"{self.mean_arrival * 1000:g}ms"),
            ("Est. bandwidth", format_bitrate(self.bandwidth)),
            ("Flow length P5", str(self.len_p5)),
            ("Flow length mean", str(self.mean_flow_len)),
            ("Flow length P95", str(self.len_p95)),
        ]


def _or_default(value, default):
    return default if value is None else value


__all__ = [
    "BYTE",
    "KILOBYTE",
    "MEGABYTE",
    "GIGABYTE",
    "KBPS",
    "MBPS",
    "GBPS",
    "FCTConfig",
    "WorkloadParams",
    "WorkloadPlan",
    "format_bitrate",
]
