from __future__ import annotations

import gc
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .client import fetch_flow
from .config import FCTConfig, WorkloadPlan
from .context import CancelToken
from .flowlog import FlowLog, FlowRecord

LOGGER = logging.getLogger("ccafct.load")

FAILURE_REASON = "flow failed"
INTERRUPTED_REASON = "interrupted"

FetchFn = Callable[..., FlowRecord]


class WorkloadError(Exception):
    """Raised after a run in which at least one flow failed.

    The partial log, with every flow that did complete, is kept on
    ``flow_log``.
    """

    def __init__(self, message: str, flow_log: FlowLog) -> None:
        super().__init__(message)
        self.flow_log = flow_log


@dataclass
class WorkloadStatistics:
    issued: int
    completed: int
    started_at: float
    finished_at: float

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def flows_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.issued / self.duration_s


class WorkloadGenerator:
    """Open-loop FCT workload: exponential arrivals, lognormal flow lengths.

    Every flow runs in its own thread. Arrival pacing is the only throttle,
    so very short mean arrival times create many concurrent threads.
    """

    def __init__(
        self,
        plan: WorkloadPlan,
        config: FCTConfig | None = None,
        rng: np.random.Generator | None = None,
        fetch: FetchFn = fetch_flow,
    ) -> None:
        self._plan = plan
        self._config = config or FCTConfig()
        self._rng = rng or np.random.default_rng()
        self._fetch = fetch
        self._token: CancelToken | None = None
        self._issued = 0
        self._flow_log: FlowLog | None = None

    @property
    def plan(self) -> WorkloadPlan:
        return self._plan

    @property
    def issued(self) -> int:
        return self._issued

    @property
    def flow_log(self) -> FlowLog | None:
        return self._flow_log

    def run(self, token: CancelToken | None = None) -> FlowLog:
        plan = self._plan
        parent = token or CancelToken()
        ctx = parent.child()
        self._token = ctx
        self._issued = 0

        flow_log = FlowLog()
        self._flow_log = flow_log
        # sized so that no failing flow can ever block on put
        errors: queue.Queue[BaseException] = queue.Queue(maxsize=max(plan.flows, 1))
        threads: list[threading.Thread] = []
        first_error: BaseException | None = None

        LOGGER.info(
            "starting workload: %d flows to %s over %.1fs (cca=%s)",
            plan.flows,
            plan.url,
            plan.duration,
            plan.cca or "<none>",
        )

        if plan.disable_gc:
            gc.collect()
            gc.disable()
        try:
            flow_log.start = time.time()
            for index in range(plan.flows):
                wait = plan.sample_wait(self._rng) if index > 0 else 0.0
                if ctx.wait(wait):
                    first_error = _first_error(errors)
                    if first_error is None:
                        LOGGER.info("client context: '%s'", ctx.reason)
                    break

                length = plan.sample_length(self._rng)
                thread = threading.Thread(
                    target=self._run_flow,
                    args=(length, ctx, flow_log, errors),
                    name=f"fct-flow-{index}",
                    daemon=True,
                )
                thread.start()
                threads.append(thread)
                self._issued += 1

            for thread in threads:
                thread.join()
            flow_log.end = time.time()
        except KeyboardInterrupt:
            LOGGER.warning("interrupted, stopping %d issued flows", self._issued)
            ctx.cancel(INTERRUPTED_REASON)
            for thread in threads:
                thread.join()
            flow_log.end = time.time()
            raise
        finally:
            ctx.close()
            if plan.disable_gc:
                gc.enable()
                gc.collect()

        if first_error is None:
            first_error = _first_error(errors)
        if first_error is not None:
            LOGGER.error(
                "workload failed after %d of %d flows: %s",
                self._issued,
                plan.flows,
                first_error,
            )
            raise WorkloadError(str(first_error), flow_log) from first_error

        LOGGER.info(
            "workload finished: %d flows completed in %.2fs",
            len(flow_log),
            flow_log.elapsed_s,
        )
        return flow_log

    def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()

    def statistics(self) -> WorkloadStatistics:
        log = self._flow_log
        if log is None or log.start is None:
            return WorkloadStatistics(issued=0, completed=0, started_at=0.0, finished_at=0.0)
        return WorkloadStatistics(
            issued=self._issued,
            completed=len(log),
            started_at=log.start,
            finished_at=log.end if log.end is not None else log.start,
        )

    def _run_flow(
        self,
        length: int,
        ctx: CancelToken,
        flow_log: FlowLog,
        errors: queue.Queue[BaseException],
    ) -> None:
        try:
            record = self._fetch(
                self._plan.url,
                length,
                ctx,
                cca=self._plan.cca or None,
                config=self._config,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("flow of %d bytes failed: %s", length, exc)
            errors.put_nowait(exc)
            ctx.cancel(FAILURE_REASON)
            return
        flow_log.append(record)


def _first_error(errors: queue.Queue[BaseException]) -> BaseException | None:
    try:
        return errors.get_nowait()
    except queue.Empty:
        return None


__all__ = ["WorkloadError", "WorkloadGenerator", "WorkloadStatistics"]
