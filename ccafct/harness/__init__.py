"""
Competition test harness for FCT harm.

This package sequences the external tools of a competition test (iperf3
competing flow, FCT server and workload) with the executor, reduces every
run to FCT statistics and harm, and renders charts summarising the harm per
RTT and competing congestion control algorithm.
"""

from .main import main

__all__ = ["main"]
