"""
Agent Runner Protocol

An agent runner executes one declared agent to completion. Runners are
registered by agent type name; the executor resolves a declared agent's
``name`` to the runner with the same ``name``.

Optional capabilities, looked up with getattr by the core:
    plan_description: str
        Capability text shown to the planner instead of ``description``.
    async check_replan(run_ctx) -> bool
        Whether the user's intent changed during the run and the remaining
        plan should be revised.
    async on_task_status(status: str, reason: str | None) -> None
        Notification of task-level pause, resume-pause and abort.
"""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from plangraph.core.domain.context import AgentRunContext


class AgentRunnerProtocol(Protocol):
    """Executable behind a declared agent's type name."""

    @property
    def name(self) -> str:
        ...

    @property
    def description(self) -> str:
        ...

    async def run(self, run_ctx: "AgentRunContext") -> str:
        """
        Execute the declared agent ``run_ctx.agent`` to completion.

        The runner records its tool calls on ``run_ctx.agent_run``, must
        honour ``run_ctx.context.check_aborted()`` promptly and should wrap
        long-running awaits in ``run_ctx.context.run_cancellable()`` so a
        hard pause can interrupt them.

        Returns:
            The agent's final textual result

        Raises:
            Exception: Any failure; the executor applies its error policy
        """
        ...
