import textwrap

import pytest

from netform.config.models import ProfileConfig, RunConfig
from netform.errors import ConfigurationError, MissingAddressError
from netform.fleet.interface import ExecResult
from netform.health.verifier import HealthReport
from netform.observers.dispatcher import EventBus
from netform.observers.events import RunSummary, new_ctx
from netform.orchestrator import (
    EXIT_CONFIG,
    EXIT_HEALTH,
    EXIT_NETWORK,
    EXIT_OK,
    EXIT_TIMEOUT,
    Orchestrator,
    load_script,
)
from netform.topology.presets import bonded_vlan, vlan

ALL = ["agent-1", "server-1", "server-2"]


class Capture:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def _cfg(timeouts, **kw):
    return RunConfig(timeouts=timeouts, **kw)


def _write_script(tmp_path, body):
    path = tmp_path / "check.py"
    path.write_text(textwrap.dedent(body))
    return path


def test_full_run_passes_and_tears_down(make_cluster, fast_timeouts):
    cluster = make_cluster(vlan())
    cap = Capture()
    bus = EventBus([cap], new_ctx("vlan", "run-1"))

    result = Orchestrator(_cfg(fast_timeouts, topology="vlan"), fleet=cluster, bus=bus).run()

    assert result.verdict == "PASS"
    assert result.exit_code == EXIT_OK
    assert result.run_id == "run-1"
    assert result.health.passed
    assert len(result.timeline) == 7
    assert set(result.states.values()) == {"READY"}
    assert sorted(cluster.shutdowns) == ALL

    (summary,) = [e for e in cap.events if isinstance(e, RunSummary)]
    assert summary.verdict == "PASS" and summary.phases == 7


def test_missing_address_fails_before_any_boot(make_cluster, fast_timeouts):
    profile = ProfileConfig(
        kind="vlan",
        interfaces={"cluster": "eth1.200", "storage": "eth1.100"},
        vlan_ids={"cluster": 200, "storage": 100},
        trunk="eth1",
        addresses={
            "server-1": {"cluster": "192.168.200.1", "storage": "192.168.100.1"},
            "server-2": {"cluster": "192.168.200.2", "storage": "192.168.100.2"},
        },
    )
    cluster = make_cluster(vlan())

    result = Orchestrator(_cfg(fast_timeouts, topology="vlan", profile=profile), fleet=cluster).run()

    assert isinstance(result.error, MissingAddressError)
    assert result.error.node == "agent-1"
    assert result.exit_code == EXIT_CONFIG
    assert result.booted is False
    assert cluster.booted == [] and cluster.commands == [] and cluster.shutdowns == []


def test_network_failure_exits_3_and_keeps_diagnostics(make_cluster, fast_timeouts, tmp_path):
    cluster = make_cluster(vlan())
    cluster.override(r"^ip addr add 192\.168\.100\.2/24", ExecResult(2, "RTNETLINK answers: Invalid argument"))

    result = Orchestrator(
        _cfg(fast_timeouts, topology="vlan"), fleet=cluster, diagnostics_dir=tmp_path
    ).run()

    assert result.exit_code == EXIT_NETWORK
    assert result.states["server-2"] == "FAILED"
    (bundle,) = result.diagnostics
    assert bundle.node == "server-2"
    assert (tmp_path / "diagnostics-server-2.txt").is_file()
    assert sorted(cluster.shutdowns) == ALL


def test_health_failure_exits_5(make_cluster, fast_timeouts):
    cluster = make_cluster(vlan())

    def _wrong_tag(node, cmd):
        if node == "agent-1":
            return ExecResult(0, "6: eth1.100@eth1: <UP>\n    vlan protocol 802.1Q id 101\n")
        return cluster._simulate(node, cmd)

    cluster.override(r"^ip -d link show eth1\.100$", _wrong_tag)

    result = Orchestrator(_cfg(fast_timeouts, topology="vlan"), fleet=cluster).run()

    assert result.exit_code == EXIT_HEALTH
    assert result.error.findings == ["agent-1: eth1.100 has vlan id 101, expected 100"]
    assert [b.node for b in result.diagnostics] == ["agent-1"]
    # formation itself succeeded
    assert set(result.states.values()) == {"READY"}


def test_global_timeout_cancels_waits(make_cluster, fast_timeouts):
    cluster = make_cluster(vlan())
    cluster.never_ready.add("agent-1")
    timeouts = fast_timeouts.model_copy(update={"join": 30})

    result = Orchestrator(_cfg(timeouts, topology="vlan"), fleet=cluster, overall_timeout=0.5).run()

    assert result.exit_code == EXIT_TIMEOUT
    assert "cancelled" in str(result.error)
    assert result.states["agent-1"] == "FAILED"


def test_topology_override_and_keep(make_cluster, fast_timeouts):
    cluster = make_cluster(bonded_vlan())
    orch = Orchestrator(
        _cfg(fast_timeouts, topology="flat"), fleet=cluster, topology="bonded-vlan", teardown=False
    )
    result = orch.run()
    assert result.passed
    assert cluster.shutdowns == []
    assert any("ip link add bond0 type bond" in c for c in cluster.cmds("agent-1"))


def test_bond_failover_drill(make_cluster, fast_timeouts):
    cluster = make_cluster(bonded_vlan())
    result = Orchestrator(
        _cfg(fast_timeouts, topology="bonded-vlan"), fleet=cluster, bond_failover=True
    ).run()
    assert result.passed
    assert (result.failover.before, result.failover.after) == ("eth1", "eth2")


def test_failed_bond_failover_marks_the_drilled_node_failed(make_cluster, fast_timeouts):
    cluster = make_cluster(bonded_vlan())
    cluster.override(r"^ip link set eth1 down$", ExecResult(0, ""))

    result = Orchestrator(
        _cfg(fast_timeouts, topology="bonded-vlan"), fleet=cluster, bond_failover=True
    ).run()

    assert result.exit_code == EXIT_HEALTH
    assert result.error.findings == ["server-1: bond stayed on eth1 after it went down"]
    assert result.states["server-1"] == "FAILED"
    assert result.states["server-2"] == "READY"


def test_bond_failover_needs_a_bond(make_cluster, fast_timeouts):
    cluster = make_cluster(vlan())
    result = Orchestrator(_cfg(fast_timeouts, topology="vlan"), fleet=cluster, bond_failover=True).run()
    assert result.exit_code == EXIT_CONFIG
    assert cluster.booted == []


@pytest.mark.parametrize(
    "body,code",
    [
        ("def run(ctx):\n    return ctx.primary == 'server-1'\n", EXIT_OK),
        ("def run(ctx):\n    return False\n", EXIT_HEALTH),
        ("def run(ctx):\n    assert len(ctx.nodes) == 4, 'expected four nodes'\n", EXIT_HEALTH),
    ],
)
def test_custom_script_replaces_default_checks(make_cluster, fast_timeouts, tmp_path, body, code):
    cluster = make_cluster(vlan())
    script = _write_script(tmp_path, body)

    result = Orchestrator(_cfg(fast_timeouts, topology="vlan"), fleet=cluster, script=script).run()

    assert result.exit_code == code
    assert not any(c.startswith("ping ") for c in cluster.cmds())


def test_script_can_reuse_the_verifier(make_cluster, fast_timeouts, tmp_path):
    cluster = make_cluster(vlan())
    script = _write_script(
        tmp_path,
        """
        def run(ctx):
            report = ctx.verifier.verify([n.name for n in ctx.nodes])
            report.findings.append("custom: storage not mounted")
            return report
        """,
    )
    result = Orchestrator(_cfg(fast_timeouts, topology="vlan"), fleet=cluster, script=script).run()
    assert isinstance(result.health, HealthReport)
    assert result.error.findings == ["custom: storage not mounted"]


def test_load_script_errors(tmp_path):
    with pytest.raises(ConfigurationError, match="does not exist"):
        load_script(tmp_path / "missing.py")
    with pytest.raises(ConfigurationError, match="no run"):
        load_script(_write_script(tmp_path, "x = 1\n"))
    with pytest.raises(ConfigurationError, match="failed to import"):
        load_script(_write_script(tmp_path, "import not_a_real_module_xyz\n"))


def test_plan_needs_no_fleet(fast_timeouts):
    plans = Orchestrator(_cfg(fast_timeouts), topology="vlan").plan()
    assert sorted(plans) == ALL
    assert "ip addr add 192.168.200.3/24 dev eth1.200" in [c.cmd for c in plans["agent-1"]]
