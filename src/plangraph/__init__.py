"""plangraph - plan, execute and steer task graphs of agents.

Exposes the host-facing entry points for convenience.
"""

from .application.factory import OrchestratorFactory  # noqa: F401
from .application.orchestrator import TaskOrchestrator  # noqa: F401
from .config.settings import OrchestratorSettings  # noqa: F401
from .core.domain.events import MessageType, StreamMessage  # noqa: F401
from .core.domain.models import (  # noqa: F401
    AgentHookResult,
    AgentStatus,
    DeclaredAgent,
    ErrorAction,
    RunResult,
    StopReason,
    Workflow,
)
from .core.interfaces.hooks import Hooks  # noqa: F401

__version__ = "0.1.0"

__all__ = [
    "OrchestratorFactory",
    "TaskOrchestrator",
    "OrchestratorSettings",
    "MessageType",
    "StreamMessage",
    "AgentHookResult",
    "AgentStatus",
    "DeclaredAgent",
    "ErrorAction",
    "RunResult",
    "StopReason",
    "Workflow",
    "Hooks",
]
