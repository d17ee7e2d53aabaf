from __future__ import annotations

import contextlib
import json
import logging
import socket
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterator, Protocol

from ..config import FCTConfig
from ..context import CancelToken
from ..executor import Executor, JobSpec
from ..flowlog import FlowLog
from ..server import parse_listen_addr
from ..stats import StatsResult, analyze
from .config import SOLO_ID, HarnessPlan, Topology, delay_qdisc

LOGGER = logging.getLogger("ccafct.harness.runner")

DEFAULT_FCT_COMMAND = (sys.executable, "-m", "ccafct")


class HarnessError(Exception):
    """Raised when a competition run cannot produce a result."""


class Rig(Protocol):
    def provision(self, rtt_ms: int, plan: HarnessPlan) -> ContextManager[Topology]:
        ...


class StaticRig:
    """A rig whose endpoints and link shaping are managed outside the harness."""

    def __init__(self, topology: Topology) -> None:
        self._topology = topology

    @contextlib.contextmanager
    def provision(self, rtt_ms: int, plan: HarnessPlan) -> Iterator[Topology]:
        LOGGER.info(
            "using pre-provisioned rig for %dms (expected delay qdisc: %s)",
            rtt_ms,
            delay_qdisc(rtt_ms),
        )
        yield self._topology


@dataclass
class Result:
    rtt_ms: int
    cca: str
    stats: StatsResult
    flows: int

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {"rtt_ms": self.rtt_ms, "cca": self.cca, "flows": self.flows}
        row.update(self.stats.to_dict())
        return row


class CompetitionRunner:
    """Measures FCT solo and against one competing flow per CCA, per RTT."""

    def __init__(
        self,
        plan: HarnessPlan,
        rig: Rig,
        fct_command: tuple[str, ...] = DEFAULT_FCT_COMMAND,
        executor_factory: Callable[[], Executor] = Executor,
        start_servers: bool = True,
        server_start_timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._plan = plan
        self._rig = rig
        self._fct_command = list(fct_command)
        self._executor_factory = executor_factory
        self._start_servers = start_servers
        self._server_start_timeout = server_start_timeout
        self._sleep = sleep

    def run(self) -> list[Result]:
        results: list[Result] = []
        for rtt_ms in self._plan.rtts_ms:
            results.extend(self.run_rtt(rtt_ms))
        return results

    def run_rtt(self, rtt_ms: int) -> list[Result]:
        plan = self._plan
        with self._rig.provision(rtt_ms, plan) as topology:
            servers = self._executor_factory()
            try:
                if self._start_servers:
                    self.start_servers(servers, topology)

                params = plan.workload_params(topology.fct_server.address)
                params_json = json.dumps(params.to_dict()).encode("utf-8")

                LOGGER.info("running %dms solo", rtt_ms)
                solo_log = self.run_workload(topology, params_json, SOLO_ID)
                solo = analyze(solo_log)
                results = [Result(rtt_ms, SOLO_ID, solo, len(solo_log))]

                for cca in plan.competitors:
                    LOGGER.info("running %dms %s", rtt_ms, cca)
                    flow_log = self.run_workload(topology, params_json, cca)
                    stats = analyze(flow_log)
                    stats.set_harm(solo)
                    results.append(Result(rtt_ms, cca, stats, len(flow_log)))
                    LOGGER.info(
                        "%dms %s: geomean %s, median %s, p95 %s",
                        rtt_ms,
                        cca,
                        stats.geomean,
                        stats.median,
                        stats.p95,
                    )
            finally:
                servers.kill()
        return results

    def start_servers(self, ex: Executor, topology: Topology) -> None:
        spec = JobSpec(background=True, no_wait=True)
        if self._plan.competitors:
            ex.run_spec(spec, *topology.competitor_server.wrap(["iperf3", "-s"]))

        server_argv = [*self._fct_command, "server"]
        host, _, port = topology.fct_server.address.rpartition(":")
        if host:
            server_argv += ["--listen", f":{port}"]
        ex.run_spec(spec, *topology.fct_server.wrap(server_argv))

        err = ex.err()
        if err is not None:
            raise HarnessError(f"unable to start servers: {err}")
        if not topology.fct_server.namespace:
            self._wait_for_listen(topology.fct_server.address)

    def run_workload(self, topology: Topology, params_json: bytes, cca: str) -> FlowLog:
        plan = self._plan
        ex = self._executor_factory()

        if cca != SOLO_ID:
            ex.run_spec(
                JobSpec(background=True, log=True, ignore_errors=True),
                *topology.competitor_client.wrap(
                    [
                        "iperf3",
                        "-R",
                        "-C",
                        cca,
                        "-t",
                        str(plan.competitor_seconds),
                        "-c",
                        topology.competitor_server.address,
                    ]
                ),
            )
            self._sleep(plan.slow_start_delay)

        token = CancelToken(timeout=plan.job_deadline)
        try:
            job = ex.run_spec(
                JobSpec(stdin=params_json, token=token, log_stderr=True),
                *topology.fct_client.wrap([*self._fct_command, "json"]),
            )
        finally:
            token.close()

        ex.interrupt()
        ex.wait()
        err = ex.err()
        if err is not None:
            raise HarnessError(f"workload with competitor '{cca}' failed: {err}") from err
        if job is None:
            raise HarnessError(f"workload with competitor '{cca}' was not started")

        try:
            return FlowLog.from_json(job.stdout)
        except (ValueError, KeyError, TypeError) as exc:
            raise HarnessError(f"invalid flow data from workload: {exc}") from exc

    def _wait_for_listen(self, address: str) -> None:
        host, port = parse_listen_addr(address, FCTConfig().port)
        deadline = time.time() + self._server_start_timeout
        while time.time() < deadline:
            with contextlib.suppress(OSError):
                with socket.create_connection((host, port), timeout=1.0):
                    return
            self._sleep(0.1)
        LOGGER.warning("FCT server at %s may not be ready before load starts", address)


__all__ = ["CompetitionRunner", "HarnessError", "Result", "Rig", "StaticRig"]
