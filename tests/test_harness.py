import json
from types import SimpleNamespace

import pytest

from ccafct.executor import ExecutorError
from ccafct.flowlog import FlowLog, FlowRecord
from ccafct.harness.charts import render_fct_chart, render_harm_chart, results_dataframe
from ccafct.harness.config import SOLO_ID, Endpoint, HarnessPlan, Topology, delay_qdisc
from ccafct.harness.main import main as harness_main
from ccafct.harness.runner import CompetitionRunner, HarnessError, Result, StaticRig
from ccafct.stats import analyze


def _flow_log(duration, count=5):
    return FlowLog(FlowRecord(i, i + duration, 1000) for i in range(count))


class FakeExecutor:
    """Answers every ``json`` job with a canned flow log per competitor."""

    def __init__(self, durations, calls, fail=False):
        self._durations = durations
        self._calls = calls
        self._fail = fail
        self._competitor = SOLO_ID
        self.killed = False

    def run_spec(self, spec, *argv):
        self._calls.append(list(argv))
        if argv[0] == "iperf3" and "-C" in argv:
            self._competitor = argv[argv.index("-C") + 1]
        if argv[-1] != "json":
            return SimpleNamespace(stdout=b"")
        payload = json.loads(spec.stdin)
        assert payload["cca"] == "cubic"
        log = _flow_log(self._durations[self._competitor])
        return SimpleNamespace(stdout=log.to_json().encode())

    def interrupt(self):
        pass

    def wait(self):
        pass

    def kill(self):
        self.killed = True

    def err(self):
        if self._fail:
            return ExecutorError("1 jobs with nonzero exit status")
        return None


def test_plan_test_mode_and_competitors():
    plan = HarnessPlan().with_competitors("bbr, cubic,,reno").test_mode()
    assert plan.competitors == ("bbr", "cubic", "reno")
    assert plan.rtts_ms == (10, 20)
    assert plan.fct_duration == 5.0
    assert plan.slow_start_delay == 0.0


def test_plan_deadlines():
    plan = HarnessPlan()
    assert plan.competitor_seconds == 260
    assert plan.job_deadline == pytest.approx(270.0)
    params = plan.workload_params("10.0.0.2")
    assert params.addr == "10.0.0.2"
    assert params.cca == "cubic"
    assert params.duration == 180.0


def test_plan_describe():
    described = dict(HarnessPlan().describe())
    assert described["RTTs"] == "10ms, 20ms, 40ms, 80ms, 160ms"
    assert described["Bandwidth"] == "50Mbps"


def test_delay_qdisc_splits_rtt():
    assert delay_qdisc(10) == "netem delay 5ms limit 1000000"
    assert delay_qdisc(25) == "netem delay 12.5ms limit 1000000"


def test_endpoint_wrap():
    assert Endpoint("10.0.0.1").wrap(["iperf3", "-s"]) == ["iperf3", "-s"]
    assert Endpoint("10.0.0.1", "ns1").wrap(["iperf3", "-s"]) == [
        "ip", "netns", "exec", "ns1", "iperf3", "-s",
    ]


def test_topology_local():
    topology = Topology.local("127.0.0.1:9000")
    assert topology.fct_server.address == "127.0.0.1:9000"
    assert topology.competitor_server.address == "127.0.0.1"
    assert topology.fct_client.namespace is None


def test_result_row():
    stats = analyze(_flow_log(0.2))
    stats.set_harm(analyze(_flow_log(0.1)))
    row = Result(10, "bbr", stats, 5).to_row()
    assert row["rtt_ms"] == 10
    assert row["cca"] == "bbr"
    assert row["flows"] == 5
    assert row["median_ms"] == pytest.approx(200.0)
    assert row["median_harm"] == pytest.approx(0.5)


def test_runner_computes_harm_against_solo():
    calls = []
    plan = HarnessPlan(rtts_ms=(10, 20), competitors=("bbr",), slow_start_delay=0.0)
    durations = {SOLO_ID: 0.1, "bbr": 0.4}
    runner = CompetitionRunner(
        plan,
        StaticRig(Topology.local()),
        fct_command=("fct",),
        executor_factory=lambda: FakeExecutor(durations, calls),
        start_servers=False,
        sleep=lambda _: None,
    )
    results = runner.run()

    assert [(r.rtt_ms, r.cca) for r in results] == [
        (10, SOLO_ID), (10, "bbr"), (20, SOLO_ID), (20, "bbr"),
    ]
    assert float(results[0].stats.median.harm) == 0.0
    assert float(results[1].stats.median.harm) == pytest.approx(0.75)

    iperf = [argv for argv in calls if argv[0] == "iperf3"]
    assert iperf[0] == ["iperf3", "-R", "-C", "bbr", "-t", "240", "-c", "127.0.0.1"]


def test_runner_reports_failed_workload():
    calls = []
    runner = CompetitionRunner(
        HarnessPlan(rtts_ms=(10,), competitors=()),
        StaticRig(Topology.local()),
        executor_factory=lambda: FakeExecutor({SOLO_ID: 0.1}, calls, fail=True),
        start_servers=False,
    )
    with pytest.raises(HarnessError, match="nonzero exit status"):
        runner.run()


def test_runner_starts_servers_in_namespaces():
    calls = []
    topology = Topology(
        competitor_client=Endpoint("10.0.0.2", "cc"),
        competitor_server=Endpoint("10.0.0.2", "cs"),
        fct_client=Endpoint("10.0.1.2:9000", "fc"),
        fct_server=Endpoint("10.0.1.2:9000", "fs"),
    )
    plan = HarnessPlan(rtts_ms=(10,), competitors=("bbr",), slow_start_delay=0.0)
    runner = CompetitionRunner(
        plan,
        StaticRig(topology),
        fct_command=("fct",),
        executor_factory=lambda: FakeExecutor({SOLO_ID: 0.1, "bbr": 0.2}, calls),
        sleep=lambda _: None,
    )
    runner.run()

    assert calls[0] == ["ip", "netns", "exec", "cs", "iperf3", "-s"]
    assert calls[1] == ["ip", "netns", "exec", "fs", "fct", "server", "--listen", ":9000"]
    assert calls[2] == ["ip", "netns", "exec", "fc", "fct", "json"]


def test_solo_run_against_local_server(server_addr):
    plan = HarnessPlan(
        rtts_ms=(10,),
        competitors=(),
        fct_cca="",
        fct_duration=1.0,
        fct_mean_arrival=0.1,
        fct_len_p5=1000,
        fct_len_p95=20000,
        fct_timeout=10.0,
        slow_start_delay=0.0,
    )
    runner = CompetitionRunner(plan, StaticRig(Topology.local(server_addr)), start_servers=False)
    results = runner.run()

    assert len(results) == 1
    assert results[0].cca == SOLO_ID
    assert results[0].flows >= 1
    assert results[0].stats.median.seconds > 0


def test_charts_render(tmp_path):
    solo = analyze(_flow_log(0.1))
    results = []
    for rtt in (10, 20):
        results.append(Result(rtt, SOLO_ID, solo, 5))
        stats = analyze(_flow_log(0.3))
        stats.set_harm(solo)
        results.append(Result(rtt, "bbr", stats, 5))

    df = results_dataframe(results)
    assert list(df["cca"]) == [SOLO_ID, "bbr", SOLO_ID, "bbr"]

    harm_path = render_harm_chart(results, tmp_path / "harm.png")
    fct_path = render_fct_chart(results, tmp_path / "fct.png")
    assert harm_path.exists()
    assert fct_path.exists()


def test_harm_chart_skipped_without_competitors(tmp_path):
    results = [Result(10, SOLO_ID, analyze(_flow_log(0.1)), 5)]
    assert render_harm_chart(results, tmp_path / "harm.png") is None
    assert render_harm_chart([], tmp_path / "harm.png") is None


def test_harness_dry_run(capsys, tmp_path):
    rc = harness_main(["--dry-run", "--cca", "bbr,reno", "--output-dir", str(tmp_path / "out")])
    assert rc == 0
    out = capsys.readouterr().out
    assert "bbr, reno" in out
    assert not (tmp_path / "out").exists()
