"""
Core Domain Models

This module defines the core data models of a planned task: the declared
agents produced by planning, the workflow that owns them, and the result of
executing that workflow.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    """Lifecycle status of a declared agent."""

    INIT = "init"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class StopReason(str, Enum):
    """Terminal reason of one execute() invocation."""

    DONE = "done"
    ABORT = "abort"
    ERROR = "error"


class ErrorAction(str, Enum):
    """Decision returned by the on_agent_error hook."""

    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"
    ESCALATE = "escalate"
    CONTINUE = "continue"


def parse_error_action(value: Any) -> ErrorAction | None:
    """Normalize a hook decision. Unknown or empty values mean no decision."""
    if value is None:
        return None
    if isinstance(value, ErrorAction):
        return value
    try:
        return ErrorAction(str(value).strip().lower())
    except ValueError:
        return None


@dataclass
class AgentHookResult:
    """
    Result returned by agent lifecycle hooks.

    Attributes:
        retry: Re-run the agent immediately (after_agent_complete)
        block: Refuse to start the agent (before_agent_start)
        reason: Human-readable reason for a block
    """

    retry: bool = False
    block: bool = False
    reason: str | None = None


@dataclass
class DeclaredAgent:
    """
    One node of the plan graph.

    Attributes:
        id: Stable identifier, unique within the workflow
        name: Agent type name, resolved to a runner at execution time
        task: Natural-language instruction for the agent
        input: Optional input reference
        depends: Ids of the agents that must finish first
        status: Lifecycle status
        result: Textual result recorded once the agent finished
    """

    id: str
    name: str
    task: str
    input: str | None = None
    depends: list[str] = field(default_factory=list)
    status: AgentStatus = AgentStatus.INIT
    result: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "task": self.task,
            "input": self.input,
            "depends": list(self.depends),
            "status": self.status.value,
            "result": self.result,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DeclaredAgent":
        return DeclaredAgent(
            id=str(data["id"]),
            name=str(data["name"]),
            task=str(data.get("task", "")),
            input=data.get("input"),
            depends=[str(d) for d in data.get("depends") or []],
            status=AgentStatus(data.get("status", AgentStatus.INIT.value)),
            result=data.get("result"),
        )


@dataclass
class Workflow:
    """
    A planned task: the task description plus its declared agents.

    Attributes:
        task_id: Owning task id
        name: Short plan name chosen by the planner
        thought: Planner reasoning (model reasoning plus <thought> body)
        agents: Declared agents in declaration order
        task_prompt: Accumulated user prompts that produced this plan
        xml: Graph description the workflow was parsed from
    """

    task_id: str
    name: str = ""
    thought: str = ""
    agents: list[DeclaredAgent] = field(default_factory=list)
    task_prompt: str = ""
    xml: str = ""

    def get_agent(self, agent_id: str) -> DeclaredAgent | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def pending_agents(self) -> list[DeclaredAgent]:
        """Agents that have not been dispatched yet."""
        return [a for a in self.agents if a.status == AgentStatus.INIT]

    def merge_revision(self, revised: "Workflow") -> "Workflow":
        """
        Fold a re-planned workflow into this one.

        Agents that already left ``init`` are kept as they are. The ``init``
        remainder is replaced by the revised agents, except those whose ids
        collide with a kept agent.

        Args:
            revised: Workflow produced by re-planning

        Returns:
            self, mutated in place
        """
        kept = [a for a in self.agents if a.status != AgentStatus.INIT]
        kept_ids = {a.id for a in kept}
        fresh = [a for a in revised.agents if a.id not in kept_ids]
        self.agents = kept + fresh
        if revised.name:
            self.name = revised.name
        if revised.thought:
            self.thought = revised.thought
        if revised.task_prompt:
            self.task_prompt = revised.task_prompt
        if revised.xml:
            self.xml = revised.xml
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "thought": self.thought,
            "task_prompt": self.task_prompt,
            "agents": [a.to_dict() for a in self.agents],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Workflow":
        return Workflow(
            task_id=str(data["task_id"]),
            name=str(data.get("name", "")),
            thought=str(data.get("thought", "")),
            task_prompt=str(data.get("task_prompt", "")),
            agents=[DeclaredAgent.from_dict(a) for a in data.get("agents") or []],
        )


@dataclass
class RunResult:
    """
    Terminal outcome of one execute() invocation.

    Attributes:
        task_id: Executed task
        success: Whether the workflow ran to completion
        stop_reason: done, abort or error
        result: Final textual output, or "<ErrorType>: <message>" on failure
        error: The causing exception on failure
    """

    task_id: str
    success: bool
    stop_reason: StopReason
    result: str
    error: BaseException | None = None
