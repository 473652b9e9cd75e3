"""
Hook and Callback Interfaces

Hooks let the host application observe and steer execution:
- on_workflow_generated(context, workflow)
- before_agent_start(run_ctx) -> AgentHookResult | None     (block)
- after_agent_complete(run_ctx, result) -> AgentHookResult | None  (retry)
- on_agent_error(run_ctx, error) -> ErrorAction | str | None
- on_workflow_step_complete(context, agent, result)
- on_workflow_complete(context, run_result)
- on_checkpoint(context, workflow)

All hooks are optional coroutines. Exceptions raised by a hook are logged
and suppressed; only documented return values influence execution.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from plangraph.core.domain.events import StreamMessage

if TYPE_CHECKING:
    from plangraph.core.domain.context import AgentRunContext

HookFn = Callable[..., Awaitable[Any]]


@dataclass
class Hooks:
    """Optional lifecycle hooks consumed by the planner registry and executor."""

    on_workflow_generated: HookFn | None = None
    before_agent_start: HookFn | None = None
    after_agent_complete: HookFn | None = None
    on_agent_error: HookFn | None = None
    on_workflow_step_complete: HookFn | None = None
    on_workflow_complete: HookFn | None = None
    on_checkpoint: HookFn | None = None


class StreamCallback(Protocol):
    """Receiver of progress messages."""

    async def on_message(
        self,
        message: StreamMessage,
        run_ctx: "AgentRunContext | None" = None,
    ) -> None:
        ...
