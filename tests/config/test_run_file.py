from pathlib import Path
import textwrap

import pytest

from netform.config.loader import load_config
from netform.errors import ConfigurationError, InvalidBondSpecError


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg.topology == "flat"
    assert [n.name for n in cfg.node_specs()] == ["server-1", "server-2", "agent-1"]
    assert cfg.service.api_port == 6443
    assert cfg.timeouts.boot == 300
    assert cfg.timeouts.cluster == 120
    assert cfg.service.system_components == {
        "coredns": "k8s-app=kube-dns",
        "local-path-provisioner": "app=local-path-provisioner",
    }


def test_system_components_are_configurable(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text(textwrap.dedent("""
        service:
          system_namespace: platform
          system_components: {coredns: k8s-app=kube-dns}
    """))
    cfg = load_config(f)
    assert cfg.service.system_namespace == "platform"
    assert cfg.service.system_components == {"coredns": "k8s-app=kube-dns"}


def test_load_run_file_with_env_expansion(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("NETFORM_SSH_PASSWORD", "s3cret")
    f = tmp_path / "run.yaml"
    f.write_text(textwrap.dedent("""
        topology: vlan
        nodes:
          - {name: cp-a, role: server, primary: true}
          - {name: cp-b, role: server}
          - {name: worker, role: agent, resources: {memory_mb: 4096}}
        fleet:
          username: root
          password: ${NETFORM_SSH_PASSWORD}
          hosts: {cp-a: 10.0.2.15}
        timeouts: {join: 600}
    """))
    cfg = load_config(f)

    assert cfg.topology == "vlan"
    assert cfg.fleet.password == "s3cret"
    assert cfg.fleet.hosts == {"cp-a": "10.0.2.15"}
    assert cfg.timeouts.join == 600
    assert cfg.timeouts.readyz == 300

    specs = cfg.node_specs()
    assert specs[0].primary and specs[0].is_server
    assert specs[2].resources.memory_mb == 4096

    profile = cfg.topology_profile()
    assert profile.address_for("worker", "storage") == "192.168.100.3"


def test_explicit_profile_wins_over_preset(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text(textwrap.dedent("""
        topology: vlan
        profile:
          name: lab
          kind: bonded-vlan
          trunk: bond0
          interfaces: {cluster: bond0.30}
          vlan_ids: {cluster: 30}
          bond: {members: [eth1, eth2], primary: eth2}
          addresses:
            server-1: {cluster: 10.30.0.1}
    """))
    cfg = load_config(f)
    p = cfg.topology_profile()
    assert p.name == "lab"
    assert p.bond_spec().primary == "eth2"
    assert p.vlan_tag("cluster") == 30


def test_invalid_profile_surfaces_configuration_error(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text(textwrap.dedent("""
        profile:
          kind: bonded-vlan
          trunk: bond0
          interfaces: {cluster: bond0.30}
          vlan_ids: {cluster: 30}
          bond: {members: [eth0, eth1]}
          addresses:
            server-1: {cluster: 10.30.0.1}
    """))
    cfg = load_config(f)
    with pytest.raises(InvalidBondSpecError):
        cfg.topology_profile()


def test_schema_errors_become_configuration_errors(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text("topology: mesh\n")
    with pytest.raises(ConfigurationError, match="invalid run file"):
        load_config(f)


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigurationError, match="does not exist"):
        load_config(tmp_path / "nope.yaml")


def test_top_level_must_be_mapping(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(f)


def test_malformed_yaml_is_a_configuration_error(tmp_path: Path):
    f = tmp_path / "run.yaml"
    f.write_text("topology: [vlan\n")
    with pytest.raises(ConfigurationError, match="not valid YAML"):
        load_config(f)
