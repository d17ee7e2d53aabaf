from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from .config import FCTConfig, WorkloadParams, WorkloadPlan
from .context import CancelToken
from .flowlog import FlowLog
from .load import WorkloadError, WorkloadGenerator
from .logs import setup_logging
from .server import FCTServer, parse_listen_addr
from .stats import EmptyFlowLogError, analyze

LOGGER = logging.getLogger("ccafct.main")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Flow completion time (FCT) test tool")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("FCT_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="mode", required=True)

    client = sub.add_parser("client", help="run an FCT workload against a server")
    client.add_argument("addr", help="server address as host[:port]")
    client.add_argument("--cca", help="congestion control algorithm for the flows")
    client.add_argument("--duration", type=float, help="test duration in seconds")
    client.add_argument(
        "--mean-arrival", type=float, help="mean time between flow arrivals in seconds"
    )
    client.add_argument(
        "--arrival-rate",
        type=float,
        help="rate parameter of the exponential arrival distribution",
    )
    client.add_argument("--len-p5", type=int, help="5th percentile flow length in bytes")
    client.add_argument("--len-p95", type=int, help="95th percentile flow length in bytes")
    client.add_argument(
        "--disable-gc",
        action="store_true",
        help="disable the garbage collector while the workload runs",
    )

    server = sub.add_parser("server", help="run the FCT server")
    server.add_argument(
        "--listen",
        default=os.environ.get("FCT_LISTEN_ADDR"),
        help="listen address as [host]:port",
    )

    sub.add_parser("json", help="read workload params from stdin, write flow data to stdout")
    return parser.parse_args(argv)


def run_client(args: argparse.Namespace, config: FCTConfig) -> int:
    params = WorkloadParams(
        addr=args.addr,
        cca=args.cca,
        duration=args.duration,
        mean_arrival=args.mean_arrival,
        arrival_rate=args.arrival_rate,
        len_p5=args.len_p5,
        len_p95=args.len_p95,
        disable_gc=args.disable_gc,
    )
    plan = WorkloadPlan.from_params(params, config)
    for label, value in plan.summary():
        print(f"{label + ':':<20} {value}")

    generator = WorkloadGenerator(plan, config)
    token = CancelToken()
    try:
        flow_log = generator.run(token)
    except KeyboardInterrupt:
        token.cancel()
        print("stopping client", file=sys.stderr)
        partial = generator.flow_log
        if partial is not None and len(partial) > 0:
            print(f"{len(partial)} of {generator.issued} flows completed before interrupt")
            _print_stats(partial)
        return 1
    _print_stats(flow_log)
    return 0


def _print_stats(flow_log: FlowLog) -> None:
    stats = analyze(flow_log)
    print()
    print(f"{'GeoMean:':<20} {stats.geomean}")
    print(f"{'Median:':<20} {stats.median}")
    print(f"{'P95:':<20} {stats.p95}")


def run_server(args: argparse.Namespace, config: FCTConfig) -> int:
    listen = ("", config.port)
    if args.listen:
        listen = parse_listen_addr(args.listen, config.port)
    server = FCTServer(listen, config)
    try:
        server.serve()
    except KeyboardInterrupt:
        LOGGER.info("server stopping")
    finally:
        server.server_close()
    return 0


def run_json(config: FCTConfig) -> int:
    payload = json.load(sys.stdin)
    params = WorkloadParams.from_dict(payload)
    plan = WorkloadPlan.from_params(params, config)

    flow_log = WorkloadGenerator(plan, config).run()

    sys.stdout.write(flow_log.to_json())
    sys.stdout.write("\n")
    sys.stdout.flush()
    return 0


def run(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging(args.log_level)
    config = FCTConfig.from_env()

    try:
        if args.mode == "client":
            return run_client(args, config)
        if args.mode == "server":
            return run_server(args, config)
        return run_json(config)
    except (WorkloadError, EmptyFlowLogError, ValueError, OSError) as exc:
        LOGGER.error("ERROR: %s", exc)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
