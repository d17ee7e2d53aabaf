"""
Flow completion time (FCT) testing for congestion control algorithms.

This package drives an open-loop synthetic HTTP workload against an FCT
server, reduces the per-flow completion times to summary statistics, and
computes the harm a competing congestion control algorithm does to them.
"""

from .config import FCTConfig, WorkloadParams, WorkloadPlan
from .context import CancelToken, CancelledError
from .executor import Executor, ExecutorError, Job, JobSpec
from .flowlog import FlowLog, FlowRecord
from .harm import INFINITY, Harm, less_is_better, more_is_better
from .load import WorkloadError, WorkloadGenerator
from .stats import FCT, EmptyFlowLogError, StatsResult, analyze, set_harm

__all__ = [
    "CancelToken",
    "CancelledError",
    "EmptyFlowLogError",
    "Executor",
    "ExecutorError",
    "FCT",
    "FCTConfig",
    "FlowLog",
    "FlowRecord",
    "Harm",
    "INFINITY",
    "Job",
    "JobSpec",
    "StatsResult",
    "WorkloadError",
    "WorkloadGenerator",
    "WorkloadParams",
    "WorkloadPlan",
    "analyze",
    "less_is_better",
    "more_is_better",
    "set_harm",
]
