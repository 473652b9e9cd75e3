"""
Execution Context

Per-task mutable state shared by the planner, the executor and the agent
runners acting on the task's behalf:
- variables (task-scoped working memory) and the conversation buffer
- the master abort signal and the three-valued pause state
- the set of in-flight cancellable step operations
- the execution history, the runner registry, hooks and stream callback

Pausing is cooperative. ``check_aborted()`` blocks while paused and wakes as
soon as the pause state changes, re-checking at least every
``pause_poll_interval`` seconds. A hard pause additionally cancels every
step operation registered through ``run_cancellable()``.
"""

import asyncio
import inspect
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, TypeVar

import structlog

from plangraph.config.settings import OrchestratorSettings
from plangraph.core.domain.errors import StepInterruptedError, TaskInterruptedError
from plangraph.core.domain.events import StreamMessage
from plangraph.core.domain.history import AgentRun, ExecutionHistory
from plangraph.core.domain.models import DeclaredAgent, Workflow
from plangraph.core.interfaces.hooks import Hooks, StreamCallback
from plangraph.core.interfaces.runner import AgentRunnerProtocol

T = TypeVar("T")


class PauseState(IntEnum):
    RUNNING = 0
    SOFT_PAUSED = 1
    HARD_PAUSED = 2


class AbortSignal:
    """Master cancellation signal of one execution attempt."""

    def __init__(self):
        self.aborted = False
        self.reason: str | None = None

    def abort(self, reason: str | None = None) -> None:
        if self.aborted:
            return
        self.aborted = True
        self.reason = reason


class ExecutionContext:
    """
    Mutable state of one task.

    Attributes:
        task_id: Owning task id
        settings: Orchestrator settings in effect for the task
        runners: Agent type name -> runner registry
        history: Execution history of the task
        hooks: Lifecycle hooks
        callback: Optional progress callback
        variables: Task-scoped key/value store
        conversation: Human interjections consumed by the next runner call
        workflow: The task's workflow, once generated
        signal: Master abort signal of the current attempt
        executing: Whether the executor is currently walking the workflow
        closed: The task was deleted or replaced; every later check raises
    """

    def __init__(
        self,
        task_id: str,
        settings: OrchestratorSettings | None = None,
        runners: dict[str, AgentRunnerProtocol] | None = None,
        history: ExecutionHistory | None = None,
        hooks: Hooks | None = None,
        callback: StreamCallback | None = None,
    ):
        self.task_id = task_id
        self.settings = settings or OrchestratorSettings()
        self.runners: dict[str, AgentRunnerProtocol] = dict(runners or {})
        self.history = history or ExecutionHistory("")
        self.hooks = hooks or Hooks()
        self.callback = callback
        self.variables: dict[str, Any] = {}
        self.conversation: list[str] = []
        self.workflow: Workflow | None = None
        self.signal = AbortSignal()
        self.executing = False
        self.closed = False
        self._close_reason: str | None = None

        self._pause_state = PauseState.RUNNING
        self._state_changed = asyncio.Event()
        self._step_operations: set[asyncio.Future] = set()
        self._cancel_reasons: dict[asyncio.Future, str] = {}
        self._pending_revision: Workflow | None = None
        self._active_runs: list["AgentRunContext"] = []
        self._last_run: "AgentRunContext | None" = None

        self.logger = structlog.get_logger().bind(
            component="execution_context", task_id=task_id
        )

    # ------------------------------------------------------------------
    # Cancellation and pause
    # ------------------------------------------------------------------

    @property
    def pause_state(self) -> PauseState:
        return self._pause_state

    @property
    def paused(self) -> bool:
        return self._pause_state > PauseState.RUNNING

    @property
    def interrupted(self) -> bool:
        return self.closed or self.signal.aborted

    async def check_aborted(self, skip_pause: bool = False) -> None:
        """
        Raise if the task was aborted; otherwise wait while it is paused.

        Args:
            skip_pause: Only check the abort signal, never block on pause

        Raises:
            TaskInterruptedError: The master abort signal is set
        """
        self._raise_if_aborted()
        while self.paused and not skip_pause:
            self._state_changed.clear()
            try:
                await asyncio.wait_for(
                    self._state_changed.wait(),
                    timeout=self.settings.pause_poll_interval,
                )
            except asyncio.TimeoutError:
                pass
            if self._pause_state == PauseState.HARD_PAUSED:
                self.cancel_step_operations("Pause")
            self._raise_if_aborted()

    def _raise_if_aborted(self) -> None:
        if self.closed:
            raise TaskInterruptedError(self._close_reason)
        if self.signal.aborted:
            raise TaskInterruptedError(self.signal.reason)

    def set_pause(self, pause: bool, abort_current_step: bool = False) -> None:
        """
        Pause or resume the task.

        A soft pause blocks new node dispatch and lets the in-flight node
        finish. With ``abort_current_step`` the pause is hard: every
        registered step operation is cancelled immediately.
        """
        if not pause:
            self._pause_state = PauseState.RUNNING
        elif abort_current_step:
            self._pause_state = PauseState.HARD_PAUSED
        else:
            self._pause_state = PauseState.SOFT_PAUSED
        if self._pause_state == PauseState.HARD_PAUSED:
            self.cancel_step_operations("Pause")
        self._state_changed.set()
        self.logger.info("pause_state_changed", pause_state=self._pause_state.name)

    def abort(self, reason: str | None = None) -> None:
        """Abort the current attempt regardless of pause state."""
        self._pause_state = PauseState.RUNNING
        self.signal.abort(reason)
        self.cancel_step_operations(reason or "Abort")
        self._state_changed.set()
        self.logger.info("task_aborted", reason=reason)

    def close(self, reason: str = "deleted") -> None:
        """
        Abort the task for good.

        Unlike a plain abort, a closed context stays interrupted across
        ``reset()``, so a run still in flight stops at its next check.
        """
        self._close_reason = reason
        self.closed = True
        self.abort(reason)

    def reset(self) -> None:
        """Clear pause, replace the abort signal and cancel residual steps.

        A closed context keeps raising on every check after a reset.
        """
        self._pause_state = PauseState.RUNNING
        self.signal.abort("reset")
        self.cancel_step_operations("reset")
        self.signal = AbortSignal()
        self._state_changed.set()

    # ------------------------------------------------------------------
    # Step operations
    # ------------------------------------------------------------------

    async def run_cancellable(self, awaitable: Awaitable[T]) -> T:
        """
        Run a sub-operation that a hard pause or an abort may cancel.

        Args:
            awaitable: Coroutine or future to run

        Returns:
            The sub-operation's result

        Raises:
            StepInterruptedError: The context cancelled the operation
        """
        task = asyncio.ensure_future(awaitable)
        self._step_operations.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            reason = self._cancel_reasons.pop(task, None)
            if reason is None:
                raise
            raise StepInterruptedError(reason) from None
        finally:
            self._step_operations.discard(task)
            self._cancel_reasons.pop(task, None)

    def cancel_step_operations(self, reason: str) -> int:
        """Cancel every registered step operation. Returns how many were cancelled."""
        cancelled = 0
        for task in list(self._step_operations):
            if task.done():
                continue
            self._cancel_reasons[task] = reason
            task.cancel()
            cancelled += 1
        self._step_operations.clear()
        if cancelled:
            self.logger.info("step_operations_cancelled", reason=reason, count=cancelled)
        return cancelled

    @property
    def step_operation_count(self) -> int:
        return len(self._step_operations)

    # ------------------------------------------------------------------
    # Workflow revision handoff
    # ------------------------------------------------------------------

    def post_revision(self, workflow: Workflow) -> None:
        """Hand a revised workflow to the running executor."""
        self._pending_revision = workflow

    def take_revision(self) -> Workflow | None:
        """Take the pending revision, if any. Each revision is taken once."""
        revision, self._pending_revision = self._pending_revision, None
        return revision

    @property
    def has_pending_revision(self) -> bool:
        return self._pending_revision is not None

    # ------------------------------------------------------------------
    # Agent runs
    # ------------------------------------------------------------------

    def register_run(self, run_ctx: "AgentRunContext") -> None:
        self._active_runs.append(run_ctx)

    def finish_run(self, run_ctx: "AgentRunContext") -> None:
        """Drop a run from the active set, keeping it as the latest finished run."""
        self._active_runs = [r for r in self._active_runs if r is not run_ctx]
        self._last_run = run_ctx

    @property
    def active_run_count(self) -> int:
        return len(self._active_runs)

    def current_agent(
        self,
    ) -> tuple[AgentRunnerProtocol, DeclaredAgent, "AgentRunContext"] | None:
        """
        Runner, declared agent and run context of the current agent.

        The most recently started run that is still in flight wins. Between
        nodes this is the run that finished last.
        """
        run_ctx = self._active_runs[-1] if self._active_runs else self._last_run
        if run_ctx is None:
            return None
        return run_ctx.runner, run_ctx.agent, run_ctx

    # ------------------------------------------------------------------
    # Callback and hook dispatch
    # ------------------------------------------------------------------

    async def emit(
        self, message: StreamMessage, run_ctx: "AgentRunContext | None" = None
    ) -> None:
        """Deliver a progress message. Callback failures are logged and suppressed."""
        if self.callback is None:
            return
        try:
            await self.callback.on_message(message, run_ctx)
        except Exception as e:
            self.logger.warning(
                "stream_callback_failed",
                message_type=message.type.value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def call_hook(self, hook_name: str, *args: Any) -> Any:
        """
        Invoke an optional hook.

        Returns:
            The hook's return value, or None when the hook is missing or failed
        """
        hook = getattr(self.hooks, hook_name, None)
        if hook is None:
            return None
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            self.logger.error(
                "hook_failed",
                hook=hook_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None


@dataclass
class AgentRunContext:
    """
    Run-scoped context handed to an agent runner.

    Attributes:
        context: Owning execution context
        runner: Runner executing the agent
        agent: Declared agent being executed
        agent_run: History record to populate
        variables: Run-scoped variables
        consecutive_errors: Consecutive tool failures inside the runner
        messages: Conversation the runner last sent to its model
        replan_reason: Set by the runner when the user's intent changed
        attempt: Zero-based attempt number (incremented on retry)
    """

    context: ExecutionContext
    runner: AgentRunnerProtocol
    agent: DeclaredAgent
    agent_run: AgentRun
    variables: dict[str, Any] = field(default_factory=dict)
    consecutive_errors: int = 0
    messages: list[dict[str, Any]] | None = None
    replan_reason: str | None = None
    attempt: int = 0
