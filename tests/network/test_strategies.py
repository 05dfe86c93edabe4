import pytest

from netform.errors import ConfigurationError
from netform.network.strategies import (
    BondedVlanStrategy,
    FlatStrategy,
    VlanStrategy,
    describe,
    strategy_for,
)
from netform.topology.presets import bonded_vlan, flat, vlan

DAEMONS = ("systemd-networkd.service", "NetworkManager.service")


def _cmds(strategy, profile, node="server-1"):
    return [c.cmd for c in strategy.plan(node, profile, DAEMONS)]


def test_registry_selects_strategy_by_kind():
    assert isinstance(strategy_for("flat"), FlatStrategy)
    assert isinstance(strategy_for("vlan"), VlanStrategy)
    assert isinstance(strategy_for("bonded-vlan"), BondedVlanStrategy)
    with pytest.raises(ConfigurationError):
        strategy_for("mesh")


@pytest.mark.parametrize("profile", [flat(), vlan(), bonded_vlan()])
def test_every_plan_masks_daemons_first(profile):
    steps = strategy_for(profile.kind).plan("server-1", profile, DAEMONS)
    assert [s.cmd for s in steps[:4]] == [
        "systemctl mask systemd-networkd.service",
        "systemctl stop systemd-networkd.service",
        "systemctl mask NetworkManager.service",
        "systemctl stop NetworkManager.service",
    ]
    assert not steps[0].tolerate_failure
    assert steps[1].tolerate_failure


def test_flat_plan_assigns_static_address():
    cmds = _cmds(FlatStrategy(), flat(), node="server-2")
    assert "ip addr flush dev eth1" in cmds
    assert "ip addr add 192.168.1.2/24 dev eth1" in cmds
    assert cmds.index("ip addr flush dev eth1") < cmds.index("ip addr add 192.168.1.2/24 dev eth1")
    assert not any("vlan" in c for c in cmds)


def test_vlan_plan_creates_tagged_subinterfaces_on_trunk():
    cmds = _cmds(VlanStrategy(), vlan())
    assert "modprobe 8021q || lsmod | grep -q '^8021q'" in cmds
    assert "ip link set eth1 up" in cmds
    create = [c for c in cmds if "type vlan" in c]
    assert create == [
        "ip link show eth1.200 >/dev/null 2>&1 || ip link add link eth1 name eth1.200 type vlan id 200",
        "ip link show eth1.100 >/dev/null 2>&1 || ip link add link eth1 name eth1.100 type vlan id 100",
    ]
    assert "ip addr add 192.168.200.1/24 dev eth1.200" in cmds
    assert "ip addr add 192.168.100.1/24 dev eth1.100" in cmds


def test_bonded_plan_builds_bond_before_vlans():
    cmds = _cmds(BondedVlanStrategy(), bonded_vlan())
    i_bond = next(i for i, c in enumerate(cmds) if "ip link add bond0 type bond" in c)
    i_vlan = next(i for i, c in enumerate(cmds) if "type vlan id 200" in c)
    i_check = next(i for i, c in enumerate(cmds) if "/proc/net/bonding/bond0" in c)
    assert i_bond < i_check < i_vlan

    assert "modprobe bonding" in cmds
    assert any("mode active-backup miimon 100" in c for c in cmds)
    assert any("ip link set eth1 master bond0" in c for c in cmds)
    assert any("ip link set eth2 master bond0" in c for c in cmds)
    assert "ip link set bond0 type bond primary eth1" in cmds
    assert any("ip link add link bond0 name bond0.100 type vlan id 100" in c for c in cmds)
    check = cmds[i_check]
    assert "MII Status: up" in check and "Currently Active Slave" in check


def test_bonded_plan_replaces_mismatched_bond():
    cmds = _cmds(BondedVlanStrategy(), bonded_vlan())
    drop = next(c for c in cmds if "ip link delete bond0" in c)
    assert "^active-backup " in drop
    assert "miimon" in drop


def test_gateway_route_is_tolerated():
    steps = FlatStrategy().plan("server-1", flat(), DAEMONS)
    route = steps[-1]
    assert route.cmd == "ip route add default via 192.168.1.254 dev eth1 metric 200"
    assert route.tolerate_failure


def test_plans_are_deterministic():
    # Same input, same command list: re-applying converges on one state.
    p = bonded_vlan()
    assert _cmds(BondedVlanStrategy(), p) == _cmds(BondedVlanStrategy(), p)


def test_describe_marks_tolerated_commands():
    text = describe(FlatStrategy().plan("server-1", flat(), DAEMONS))
    assert "systemctl stop systemd-networkd.service  # tolerated" in text
    assert "systemctl mask systemd-networkd.service\n" in text
