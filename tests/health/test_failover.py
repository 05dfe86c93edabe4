import pytest

from netform.config.models import ServiceConfig
from netform.errors import ConfigurationError, FleetError
from netform.fleet.interface import ExecResult
from netform.formation.service import ServiceController
from netform.health.failover import BondFailoverCheck
from netform.topology.presets import bonded_vlan, vlan


def _check(cluster, **kw):
    svc = ServiceController(cluster, cluster.profile, ServiceConfig(), exec_settle=0)
    return BondFailoverCheck(cluster, cluster.profile, svc, timeout=0.5, interval=0.001, **kw)


def _formed(make_cluster):
    cluster = make_cluster(bonded_vlan())
    cluster.started += ["server-1", "server-2", "agent-1"]
    return cluster


def test_active_member_moves_and_is_restored(make_cluster):
    cluster = _formed(make_cluster)
    result = _check(cluster).run("agent-1", "server-1", 3)

    assert result.ok, result.findings
    assert (result.before, result.after) == ("eth1", "eth2")
    cmds = cluster.cmds("agent-1")
    assert cmds.index("ip link set eth1 down") < cmds.index("ip link set eth1 up")


def test_bond_that_does_not_move_is_a_finding(make_cluster):
    cluster = _formed(make_cluster)
    cluster.override(r"^ip link set eth1 down$", ExecResult(0, ""))

    result = _check(cluster).run("agent-1", "server-1", 3)

    assert not result.ok
    assert result.findings == ["agent-1: bond stayed on eth1 after it went down"]
    assert cluster.cmds("agent-1")[-1] == "ip link set eth1 up"


def test_cluster_losing_ready_nodes_is_a_finding(make_cluster):
    cluster = _formed(make_cluster)
    cluster.never_ready.add("agent-1")

    result = _check(cluster).run("agent-1", "server-1", 3)

    assert result.findings == ["cluster lost Ready nodes while agent-1 ran on eth2"]
    assert "ip link set eth1 up" in cluster.cmds("agent-1")


def test_lost_channel_during_restore_keeps_the_findings(make_cluster, caplog):
    cluster = _formed(make_cluster)
    cluster.never_ready.add("agent-1")

    def _channel_closed(node, cmd):
        raise FleetError("channel closed")

    cluster.override(r"^ip link set eth1 up$", _channel_closed)

    with caplog.at_level("WARNING", logger="netform"):
        result = _check(cluster).run("agent-1", "server-1", 3)

    assert result.findings == ["cluster lost Ready nodes while agent-1 ran on eth2"]
    assert "could not restore eth1: channel closed" in caplog.text


def test_lost_channel_taking_the_member_down_is_a_finding(make_cluster):
    cluster = _formed(make_cluster)

    def _channel_closed(node, cmd):
        raise FleetError("channel closed")

    cluster.override(r"^ip link set eth1 down$", _channel_closed)

    result = _check(cluster).run("agent-1", "server-1", 3)

    assert result.findings == ["agent-1: could not take eth1 down: channel closed"]
    assert result.after is None


def test_no_active_member_skips_the_drill(make_cluster):
    cluster = _formed(make_cluster)
    cluster.active_slave = ""
    result = _check(cluster).run("server-2", "server-1", 3)
    assert result.findings == ["server-2: bond has no active member before failover"]
    assert not any("ip link set" in c for c in cluster.cmds("server-2"))


def test_requires_bonded_topology(make_cluster):
    cluster = make_cluster(vlan())
    with pytest.raises(ConfigurationError, match="bonded topology"):
        _check(cluster)
