from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .. import executor
from ..logs import configure_logger, remove_handler, setup_logging
from ..stats import EmptyFlowLogError
from .charts import render_fct_chart, render_harm_chart, results_dataframe
from .config import HarnessPlan, Endpoint, Topology
from .runner import CompetitionRunner, HarnessError, StaticRig

LOGGER = logging.getLogger("ccafct.harness")

DESCRIPTION = """\
Measures FCT (flow completion time) for a baseline CCA (congestion control
algorithm) through a single bottleneck, with and without the competition of
a single flow from a selected competing CCA, and reports the resulting harm
to FCT. As a "less is better" metric, FCT harm is (workload - solo) / workload.
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=DESCRIPTION, formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--cca",
        default=os.environ.get("FCT_COMPETITOR_CCA", "cubic"),
        help="comma separated list of CCAs to test for the competition flow",
    )
    parser.add_argument(
        "-t",
        "--test-mode",
        action="store_true",
        help="perform quick test to verify setup",
    )
    parser.add_argument(
        "--fct-server",
        default=os.environ.get("FCT_SERVER_ADDR", "127.0.0.1"),
        help="address[:port] of the FCT server",
    )
    parser.add_argument(
        "--competitor-server",
        default=os.environ.get("FCT_COMPETITOR_ADDR", "127.0.0.1"),
        help="address of the iperf3 server for the competing flow",
    )
    parser.add_argument("--fct-client-ns", default=os.environ.get("FCT_CLIENT_NS"))
    parser.add_argument("--fct-server-ns", default=os.environ.get("FCT_SERVER_NS"))
    parser.add_argument(
        "--competitor-client-ns", default=os.environ.get("FCT_COMPETITOR_CLIENT_NS")
    )
    parser.add_argument(
        "--competitor-server-ns", default=os.environ.get("FCT_COMPETITOR_SERVER_NS")
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("FCT_OUTPUT_DIR", "fct-results"),
        help="Directory to store result artefacts (charts and CSV files)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned test without executing it",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("FCT_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def build_topology(args: argparse.Namespace) -> Topology:
    return Topology(
        competitor_client=Endpoint(args.competitor_server, args.competitor_client_ns),
        competitor_server=Endpoint(args.competitor_server, args.competitor_server_ns),
        fct_client=Endpoint(args.fct_server, args.fct_client_ns),
        fct_server=Endpoint(args.fct_server, args.fct_server_ns),
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    executor.TRACE = True

    plan = HarnessPlan().with_competitors(args.cca)
    if args.test_mode:
        plan = plan.test_mode()

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    handler = configure_logger(output_dir / "harness.log")
    LOGGER.info("Result output directory: %s", output_dir)
    for label, value in plan.describe():
        LOGGER.info("%s: %s", label, value)

    runner = CompetitionRunner(plan, StaticRig(build_topology(args)))
    try:
        results = runner.run()
    except (HarnessError, EmptyFlowLogError) as exc:
        LOGGER.error("ERROR: %s", exc)
        return 1
    finally:
        remove_handler(handler)

    df = results_dataframe(results)
    results_path = output_dir / "results.csv"
    df.to_csv(results_path, index=False)
    LOGGER.info("Saved %d results to %s", len(df), results_path)

    harm_chart = render_harm_chart(results, output_dir / "fct_harm.png")
    fct_chart = render_fct_chart(results, output_dir / "fct.png")

    manifest = {
        "plan": {label: value for label, value in plan.describe()},
        "results": str(results_path),
        "charts": [str(path) for path in (harm_chart, fct_chart) if path is not None],
    }
    manifest_path = output_dir / "manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Manifest written to %s", manifest_path)

    print(df.to_string(index=False))
    return 0


def _print_plan(plan: HarnessPlan) -> None:
    for label, value in plan.describe():
        print(f"{label + ':':<20} {value}")
    print(f"{'FCT duration:':<20} {plan.fct_duration:g}s")
    print(f"{'FCT mean arrival:':<20} {plan.fct_mean_arrival * 1000:g}ms")
    print(f"{'FCT CCA:':<20} {plan.fct_cca}")


if __name__ == "__main__":
    sys.exit(main())
