"""
Domain Events for Task Execution

This module defines the events published while a task is planned and run:
- StreamMessage: progress messages delivered to the host's stream callback
  (plan previews, agent start/result, runner sub-events)
- HistoryEvent: mutation notifications published by the execution history

Both are observations only. Control flow never depends on them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from plangraph.core.domain.models import DeclaredAgent, Workflow


class MessageType(str, Enum):
    """Discriminator of a StreamMessage."""

    WORKFLOW = "workflow"
    AGENT_START = "agent_start"
    AGENT_RESULT = "agent_result"
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


@dataclass
class StreamMessage:
    """
    A progress message for the host application.

    Which payload fields are set depends on ``type``:
    - workflow: workflow, stream_done
    - agent_start: agent
    - agent_result: agent, result (success) or error (failure)
    - text / thinking: text, stream_done
    - tool_use: tool_name, tool_id, params
    - tool_result: tool_name, tool_id, params, tool_result

    Attributes:
        task_id: Task the message belongs to
        agent_name: Declared agent type name ("Planner" during planning)
        type: Message discriminator
        node_id: Declared agent id, if any
    """

    task_id: str
    agent_name: str
    type: MessageType
    node_id: str | None = None
    workflow: Workflow | None = None
    stream_done: bool = False
    agent: DeclaredAgent | None = None
    result: str | None = None
    error: BaseException | None = None
    text: str | None = None
    tool_name: str | None = None
    tool_id: str | None = None
    params: dict[str, Any] | None = None
    tool_result: dict[str, Any] | None = None


class HistoryEventType(str, Enum):
    """What changed in the execution history."""

    AGENT_RUN_ADDED = "agent_run_added"
    AGENT_RUN_UPDATED = "agent_run_updated"
    TOOL_CALL_ADDED = "tool_call_added"
    TOOL_CALL_UPDATED = "tool_call_updated"


@dataclass(frozen=True)
class HistoryEvent:
    """
    A mutation applied to the execution history.

    Attributes:
        type: Kind of mutation
        target: The AgentRun or ToolCall that changed
    """

    type: HistoryEventType
    target: Any
