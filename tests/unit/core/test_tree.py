"""
Unit tests for the execution tree builder.

Tests verify:
- Topological layering into serial and parallel nodes
- Declaration order inside parallel nodes
- Cycle and empty-input detection
- Dependencies outside the input set count as satisfied
"""

import pytest

from conftest import agent
from plangraph.core.domain.errors import CircularDependencyError, EmptyWorkflowError
from plangraph.core.domain.tree import (
    ParallelNode,
    SerialNode,
    build_execution_tree,
    flatten,
    iter_nodes,
)


class TestBuildExecutionTree:
    """Tests for build_execution_tree."""

    def test_chain_becomes_serial_nodes(self):
        """Test a linear dependency chain yields one serial node per agent."""
        agents = [agent("1", "fetch"), agent("2", "summarize", ["1"])]

        root = build_execution_tree(agents)

        assert isinstance(root, SerialNode)
        assert root.agent.id == "1"
        assert isinstance(root.next, SerialNode)
        assert root.next.agent.id == "2"
        assert root.next.next is None

    def test_independent_agents_form_parallel_node(self):
        """Test agents ready at the same time share one parallel node."""
        agents = [
            agent("A", "worker"),
            agent("B", "worker"),
            agent("C", "worker"),
            agent("D", "merge", ["A", "B", "C"]),
        ]

        root = build_execution_tree(agents)

        assert isinstance(root, ParallelNode)
        assert [a.id for a in root.agents] == ["A", "B", "C"]
        assert isinstance(root.next, SerialNode)
        assert root.next.agent.id == "D"

    def test_declaration_order_is_kept_in_layers(self):
        """Test layer members keep declaration order, not dependency order."""
        agents = [
            agent("3", "x", ["1"]),
            agent("1", "x"),
            agent("2", "x", ["1"]),
        ]

        root = build_execution_tree(agents)

        assert root.agents[0].id == "1"
        assert [a.id for a in root.next.agents] == ["3", "2"]

    def test_diamond_layers(self):
        """Test a diamond graph yields serial, parallel, serial."""
        agents = [
            agent("1", "x"),
            agent("2", "x", ["1"]),
            agent("3", "x", ["1"]),
            agent("4", "x", ["2", "3"]),
        ]

        nodes = list(iter_nodes(build_execution_tree(agents)))

        assert [type(n) for n in nodes] == [SerialNode, ParallelNode, SerialNode]

    def test_every_agent_appears_exactly_once(self):
        """Test flattening the tree yields each input agent once."""
        agents = [
            agent("1", "x"),
            agent("2", "x", ["1"]),
            agent("3", "x"),
            agent("4", "x", ["2"]),
        ]

        flat = flatten(build_execution_tree(agents))

        assert sorted(a.id for a in flat) == ["1", "2", "3", "4"]
        assert len(flat) == 4

    def test_external_dependencies_are_satisfied(self):
        """Test dependencies on agents outside the input set do not block."""
        agents = [agent("3", "x", ["1", "2"]), agent("4", "x", ["3"])]

        root = build_execution_tree(agents)

        assert root.agents[0].id == "3"
        assert root.next.agents[0].id == "4"

    def test_cycle_raises(self):
        """Test a dependency cycle raises CircularDependencyError."""
        agents = [agent("1", "x", ["2"]), agent("2", "x", ["1"])]

        with pytest.raises(CircularDependencyError) as exc_info:
            build_execution_tree(agents)

        assert exc_info.value.agent_ids == ["1", "2"]

    def test_cycle_after_ready_layer_reports_remaining(self):
        """Test only the agents stuck in the cycle are reported."""
        agents = [agent("1", "x"), agent("2", "x", ["3"]), agent("3", "x", ["2"])]

        with pytest.raises(CircularDependencyError) as exc_info:
            build_execution_tree(agents)

        assert exc_info.value.agent_ids == ["2", "3"]

    def test_self_dependency_is_a_cycle(self):
        """Test an agent depending on itself never becomes ready."""
        with pytest.raises(CircularDependencyError):
            build_execution_tree([agent("1", "x", ["1"])])

    def test_empty_input_raises(self):
        """Test an empty agent list raises EmptyWorkflowError."""
        with pytest.raises(EmptyWorkflowError, match="No executable agent"):
            build_execution_tree([])
