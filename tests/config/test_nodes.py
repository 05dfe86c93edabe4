import pytest

from netform.config.nodes import (
    NodeSpec,
    agents_of,
    default_nodes,
    parse_nodes_flag,
    primary_of,
    secondaries_of,
    validate_node_set,
)
from netform.errors import ConfigurationError, PrimaryNodeError


def test_default_layout():
    nodes = default_nodes()
    assert primary_of(nodes).name == "server-1"
    assert [n.name for n in secondaries_of(nodes)] == ["server-2"]
    assert [n.name for n in agents_of(nodes)] == ["agent-1"]


def test_parse_nodes_flag():
    nodes = parse_nodes_flag("s1=server:primary, s2=server ,a1=agent")
    assert [(n.name, n.role, n.primary) for n in nodes] == [
        ("s1", "server", True),
        ("s2", "server", False),
        ("a1", "agent", False),
    ]
    assert parse_nodes_flag(None) is None
    assert parse_nodes_flag("  ") is None


@pytest.mark.parametrize("value", ["s1", "s1=server:leader"])
def test_parse_nodes_flag_rejects_garbage(value):
    with pytest.raises(ConfigurationError):
        parse_nodes_flag(value)


def test_agent_cannot_be_primary():
    nodes = [NodeSpec("s1", "server"), NodeSpec("a1", "agent", primary=True)]
    with pytest.raises(PrimaryNodeError, match="only a server"):
        validate_node_set(nodes)


@pytest.mark.parametrize(
    "nodes",
    [
        [NodeSpec("s1", "server"), NodeSpec("s2", "server")],
        [NodeSpec("s1", "server", primary=True), NodeSpec("s2", "server", primary=True)],
    ],
)
def test_exactly_one_primary(nodes):
    with pytest.raises(PrimaryNodeError, match="exactly one primary"):
        validate_node_set(nodes)


def test_duplicate_names_and_unknown_roles():
    with pytest.raises(ConfigurationError, match="duplicate"):
        validate_node_set([NodeSpec("s1", "server", primary=True), NodeSpec("s1", "agent")])
    with pytest.raises(ConfigurationError, match="unknown role"):
        validate_node_set([NodeSpec("s1", "server", primary=True), NodeSpec("x", "worker")])
    with pytest.raises(ConfigurationError, match="no nodes"):
        validate_node_set([])
