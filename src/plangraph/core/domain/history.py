"""
Execution History

Append-only, observable record of everything executed for a task:
- the planning request/response pair (used to resume planning on replan)
- one AgentRun per dispatched declared agent, in dispatch order
- the ToolCalls made during each run

Every mutation publishes a HistoryEvent to registered listeners. Listeners
are synchronous observers used for live progress only; a failing listener is
logged and skipped.
"""

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from plangraph.core.domain.events import HistoryEvent, HistoryEventType
from plangraph.core.domain.models import DeclaredAgent
from plangraph.core.interfaces.llm import LLMRequest

logger = structlog.get_logger().bind(component="execution_history")

HistoryListener = Callable[["ExecutionHistory", HistoryEvent], None]


class ToolCallState(str, Enum):
    PENDING_PARAMS = "pending_params"
    PENDING_RESULT = "pending_result"
    COMPLETE = "complete"


class ToolCall:
    """
    One tool invocation made by an agent runner.

    Parameters arrive before the result, so a tool call moves through
    ``pending_params -> pending_result -> complete``. Each transition
    publishes a TOOL_CALL_UPDATED event.
    """

    def __init__(
        self,
        tool_name: str,
        tool_call_id: str,
        request: dict[str, Any] | None = None,
    ):
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        self.request = copy.deepcopy(request) if request is not None else None
        self.params: dict[str, Any] | None = None
        self.result: dict[str, Any] | None = None
        self.state = ToolCallState.PENDING_PARAMS
        self._notify: Callable[[HistoryEvent], None] | None = None

    def update_params(self, params: dict[str, Any]) -> None:
        if self.state != ToolCallState.PENDING_PARAMS:
            raise ValueError(
                f"Tool call {self.tool_call_id} cannot accept params in state {self.state.value}"
            )
        self.params = params
        self.state = ToolCallState.PENDING_RESULT
        self._publish()

    def update_result(self, result: dict[str, Any]) -> None:
        if self.state != ToolCallState.PENDING_RESULT:
            raise ValueError(
                f"Tool call {self.tool_call_id} cannot accept a result in state {self.state.value}"
            )
        self.result = result
        self.state = ToolCallState.COMPLETE
        self._publish()

    def _publish(self) -> None:
        if self._notify:
            self._notify(HistoryEvent(HistoryEventType.TOOL_CALL_UPDATED, self))


@dataclass
class AgentRun:
    """
    Record of one dispatched declared agent.

    Attributes:
        agent: The declared agent this run executes
        tool_calls: Tool calls in the order they were made
        request: Last LLM request issued by the runner (snapshot)
        result: Final textual result, once available
    """

    agent: DeclaredAgent
    tool_calls: list[ToolCall] = field(default_factory=list)
    request: dict[str, Any] | None = None
    result: str | None = None
    _notify: Callable[[HistoryEvent], None] | None = field(
        default=None, repr=False, compare=False
    )

    def push(self, tool_call: ToolCall) -> None:
        tool_call._notify = self._forward
        self.tool_calls.append(tool_call)
        self._forward(HistoryEvent(HistoryEventType.TOOL_CALL_ADDED, tool_call))

    def set_result(self, result: str) -> None:
        self.result = result
        self._forward(HistoryEvent(HistoryEventType.AGENT_RUN_UPDATED, self))

    def _forward(self, event: HistoryEvent) -> None:
        if self._notify:
            self._notify(event)


class ExecutionHistory:
    """Observable record of a task's planning and execution."""

    def __init__(self, task_prompt: str):
        self.task_prompt = task_prompt
        self.plan_request: LLMRequest | None = None
        self.plan_result: str | None = None
        self.agent_runs: list[AgentRun] = []
        self._listeners: list[HistoryListener] = []

    def push(self, agent_run: AgentRun) -> None:
        agent_run._notify = self._publish
        self.agent_runs.append(agent_run)
        self._publish(HistoryEvent(HistoryEventType.AGENT_RUN_ADDED, agent_run))

    def add_listener(self, listener: HistoryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HistoryListener) -> None:
        self._listeners = [l for l in self._listeners if l is not listener]

    def _publish(self, event: HistoryEvent) -> None:
        # Snapshot: listeners may add or remove listeners while being notified
        for listener in list(self._listeners):
            try:
                listener(self, event)
            except Exception as e:
                logger.error(
                    "history_listener_failed",
                    event_type=event.type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
