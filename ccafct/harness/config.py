from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from ..config import MBPS, KILOBYTE, MEGABYTE, WorkloadParams, format_bitrate

# identifies the run without a competing flow
SOLO_ID = "-"


@dataclass(frozen=True)
class HarnessPlan:
    """Parameters of a full competition test across RTTs and CCAs."""

    rtts_ms: tuple[int, ...] = (10, 20, 40, 80, 160)
    bandwidth: int = 50 * MBPS
    qdisc: str = "fq_codel flows 1"
    competitors: tuple[str, ...] = ("cubic",)
    fct_cca: str = "cubic"
    fct_duration: float = 180.0
    fct_mean_arrival: float = 0.2
    fct_len_p5: int = 64 * KILOBYTE
    fct_len_p95: int = 2 * MEGABYTE
    # how long after fct_duration the FCT workload may still take
    fct_timeout: float = 60.0
    # extra grace on top of fct_duration + fct_timeout before killing tools
    context_timeout: float = 30.0
    # long enough for the competitor to leave slow start
    slow_start_delay: float = 20.0

    def test_mode(self) -> "HarnessPlan":
        return dataclasses.replace(
            self, rtts_ms=(10, 20), fct_duration=5.0, slow_start_delay=0.0
        )

    def with_competitors(self, ccas: str) -> "HarnessPlan":
        names = tuple(c.strip() for c in ccas.split(",") if c.strip())
        return dataclasses.replace(self, competitors=names)

    @property
    def competitor_seconds(self) -> int:
        return int(self.slow_start_delay + self.fct_duration + self.fct_timeout)

    @property
    def job_deadline(self) -> float:
        return self.fct_duration + self.fct_timeout + self.context_timeout

    def workload_params(self, addr: str) -> WorkloadParams:
        return WorkloadParams(
            addr=addr,
            cca=self.fct_cca,
            duration=self.fct_duration,
            mean_arrival=self.fct_mean_arrival,
            len_p5=self.fct_len_p5,
            len_p95=self.fct_len_p95,
        )

    def describe(self) -> list[tuple[str, str]]:
        return [
            ("CCAs under test", ", ".join(self.competitors)),
            ("RTTs", ", ".join(f"{rtt}ms" for rtt in self.rtts_ms)),
            ("Bandwidth", format_bitrate(self.bandwidth)),
            ("Qdisc", self.qdisc),
            ("Slow start delay", f"{self.slow_start_delay:g}s"),
        ]


def delay_qdisc(rtt_ms: float) -> str:
    """netem qdisc adding half the RTT in each direction."""
    return f"netem delay {rtt_ms / 2:g}ms limit 1000000"


@dataclass(frozen=True)
class Endpoint:
    address: str
    namespace: str | None = None

    def wrap(self, argv: list[str]) -> list[str]:
        if not self.namespace:
            return list(argv)
        return ["ip", "netns", "exec", self.namespace, *argv]


@dataclass(frozen=True)
class Topology:
    """Endpoints of an already provisioned test rig.

    The competing flow runs between ``competitor_client`` and
    ``competitor_server``; the FCT workload between ``fct_client`` and
    ``fct_server``. Both share the bottleneck.
    """

    competitor_client: Endpoint
    competitor_server: Endpoint
    fct_client: Endpoint
    fct_server: Endpoint

    @classmethod
    def local(cls, fct_addr: str = "127.0.0.1", competitor_addr: str = "127.0.0.1") -> "Topology":
        return cls(
            competitor_client=Endpoint(competitor_addr),
            competitor_server=Endpoint(competitor_addr),
            fct_client=Endpoint(fct_addr),
            fct_server=Endpoint(fct_addr),
        )
