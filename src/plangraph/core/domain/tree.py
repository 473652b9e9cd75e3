"""
Execution Tree

Turns the flat list of declared agents into a chain of execution nodes by
topological layering:

    remaining = agents
    while remaining:
        ready = agents whose depends ids are not in remaining
        one ready agent   -> SerialNode
        several           -> ParallelNode (declaration order kept)
        none              -> CircularDependencyError

Dependencies that are not part of the input set count as satisfied, so a
tree can be rebuilt from the ``init`` remainder of a partially executed
workflow.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field

from plangraph.core.domain.errors import CircularDependencyError, EmptyWorkflowError
from plangraph.core.domain.models import DeclaredAgent


@dataclass
class SerialNode:
    """Executes exactly one declared agent."""

    agent: DeclaredAgent
    next: "ExecutionNode | None" = None

    @property
    def agents(self) -> list[DeclaredAgent]:
        return [self.agent]


@dataclass
class ParallelNode:
    """Executes a layer of declared agents whose dependencies are all satisfied."""

    agents: list[DeclaredAgent] = field(default_factory=list)
    next: "ExecutionNode | None" = None


ExecutionNode = SerialNode | ParallelNode


def build_execution_tree(agents: list[DeclaredAgent]) -> ExecutionNode:
    """
    Build the execution chain for the given declared agents.

    Args:
        agents: Declared agents to schedule, in declaration order

    Returns:
        Root node of the chain

    Raises:
        EmptyWorkflowError: No agents were given
        CircularDependencyError: Some agents can never become ready
    """
    if not agents:
        raise EmptyWorkflowError("No executable agent")

    remaining = list(agents)
    root: ExecutionNode | None = None
    tail: ExecutionNode | None = None

    while remaining:
        remaining_ids = {a.id for a in remaining}
        ready = [
            a for a in remaining if not any(dep in remaining_ids for dep in a.depends)
        ]
        if not ready:
            raise CircularDependencyError([a.id for a in remaining])

        node: ExecutionNode
        if len(ready) == 1:
            node = SerialNode(agent=ready[0])
        else:
            node = ParallelNode(agents=ready)

        if tail is None:
            root = node
        else:
            tail.next = node
        tail = node

        ready_ids = {id(a) for a in ready}
        remaining = [a for a in remaining if id(a) not in ready_ids]

    assert root is not None
    return root


def iter_nodes(root: ExecutionNode | None) -> Iterator[ExecutionNode]:
    """Walk the chain starting at ``root``."""
    node = root
    while node is not None:
        yield node
        node = node.next


def flatten(root: ExecutionNode | None) -> list[DeclaredAgent]:
    """Declared agents in traversal order."""
    return [agent for node in iter_nodes(root) for agent in node.agents]
