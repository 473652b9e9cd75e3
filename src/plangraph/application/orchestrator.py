"""
Application Layer - Task Orchestrator

Host-facing registry of live tasks. Each task owns one ExecutionContext
(and, once generated, one Workflow). The orchestrator wires the planner and
the executor to a context and exposes the task operations:

- generate / modify / run / execute
- pause / resume, abort, delete
- chat (human-in-the-loop interjections for the running agent)

``execute`` is the normalisation boundary: every failure while executing a
workflow is returned as an unsuccessful RunResult instead of being raised.
"""

import uuid
from typing import Any

import structlog

from plangraph.config.settings import OrchestratorSettings
from plangraph.core.domain.context import ExecutionContext
from plangraph.core.domain.errors import (
    ConfigurationError,
    TaskInterruptedError,
    TaskNotFoundError,
)
from plangraph.core.domain.executor import WorkflowExecutor
from plangraph.core.domain.history import ExecutionHistory
from plangraph.core.domain.models import (
    AgentStatus,
    DeclaredAgent,
    RunResult,
    StopReason,
    Workflow,
)
from plangraph.core.domain.planner import Planner
from plangraph.core.domain.workflow_xml import reset_workflow_xml
from plangraph.core.interfaces.hooks import Hooks, StreamCallback
from plangraph.core.interfaces.llm import LLMProviderProtocol
from plangraph.core.interfaces.runner import AgentRunnerProtocol

logger = structlog.get_logger()


class TaskOrchestrator:
    """Registry and lifecycle manager of planned tasks.

    Runner resolution is by agent type name through the registry built from
    ``runners`` and ``add_runner``. Tasks snapshot the registry when their
    context is created.
    """

    def __init__(
        self,
        llm_provider: LLMProviderProtocol | None = None,
        runners: list[AgentRunnerProtocol] | None = None,
        settings: OrchestratorSettings | None = None,
        hooks: Hooks | None = None,
        callback: StreamCallback | None = None,
    ):
        """Initialize TaskOrchestrator.

        Args:
            llm_provider: Transport used for planning. Without one only
                prebuilt workflows (init_context, build_simple_workflow) run.
            runners: Agent runners, registered by their ``name``
            settings: Orchestrator settings (defaults from environment)
            hooks: Lifecycle hooks shared by all tasks
            callback: Progress callback shared by all tasks
        """
        self.llm_provider = llm_provider
        self.settings = settings or OrchestratorSettings()
        self.hooks = hooks or Hooks()
        self.callback = callback
        self.runners: dict[str, AgentRunnerProtocol] = {}
        for runner in runners or []:
            self.add_runner(runner)
        self._tasks: dict[str, ExecutionContext] = {}
        self.logger = logger.bind(component="task_orchestrator")

    def add_runner(self, runner: AgentRunnerProtocol) -> None:
        self.runners[runner.name] = runner

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def generate(
        self,
        task_prompt: str,
        task_id: str | None = None,
        context_params: dict[str, Any] | None = None,
    ) -> Workflow:
        """Plan a new task.

        A live task with the same id is deleted first. If planning fails
        the new task is deleted and the error re-raised.

        Returns:
            The generated workflow
        """
        task_id = task_id or str(uuid.uuid4())
        if task_id in self._tasks:
            await self.delete_task(task_id)

        context = self._create_context(task_id, task_prompt, context_params)
        self._tasks[task_id] = context
        self.logger.info("task_generation_started", task_id=task_id, prompt=task_prompt[:100])
        try:
            context.workflow = await self._planner(context).plan(task_prompt)
        except Exception as e:
            self.logger.error(
                "task_generation_failed",
                task_id=task_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.delete_task(task_id)
            raise

        self.logger.info(
            "task_generated",
            task_id=task_id,
            workflow_name=context.workflow.name,
            agent_count=len(context.workflow.agents),
        )
        return context.workflow

    async def modify(self, task_id: str, prompt: str) -> Workflow:
        """Revise a task's plan with a new instruction.

        Unknown ids are planned from scratch. An idle task gets the revised
        workflow. For a task that is executing, the revision is handed to
        the executor, which folds it into the live workflow before its next
        node.

        Returns:
            The workflow produced by re-planning
        """
        context = self._tasks.get(task_id)
        if context is None:
            return await self.generate(prompt, task_id)

        revised = await self._planner(context).replan(prompt)
        if context.executing:
            context.post_revision(revised)
            self.logger.info("task_revision_posted", task_id=task_id)
        else:
            context.workflow = revised
            self.logger.info("task_workflow_replaced", task_id=task_id)
        return revised

    def init_context(
        self,
        workflow: Workflow,
        context_params: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        """Register a prebuilt workflow (e.g. a restored checkpoint) as a task."""
        if workflow.task_id in self._tasks:
            existing = self._tasks.pop(workflow.task_id)
            existing.close("replaced")
        context = self._create_context(
            workflow.task_id, workflow.task_prompt or workflow.name, context_params
        )
        context.workflow = workflow
        self._tasks[workflow.task_id] = context
        return context

    @staticmethod
    def build_simple_workflow(
        task_id: str,
        name: str,
        agent_name: str,
        task: str,
        task_prompt: str | None = None,
    ) -> Workflow:
        """One-agent workflow that needs no planning."""
        workflow = Workflow(
            task_id=task_id,
            name=name,
            task_prompt=task_prompt or task,
            agents=[DeclaredAgent(id="1", name=agent_name, task=task)],
        )
        return reset_workflow_xml(workflow)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, task_id: str) -> RunResult:
        """
        Execute (or resume) a task's workflow.

        Agents already ``done`` or ``error`` are not run again; agents left
        ``running`` by an interrupted attempt are dispatched again.

        Returns:
            RunResult; failures are normalized, never raised

        Raises:
            TaskNotFoundError: The task id is not registered
        """
        context = self._tasks.get(task_id)
        if context is None:
            raise TaskNotFoundError(task_id)

        if context.paused:
            context.set_pause(False)
        if context.signal.aborted:
            context.reset()
        context.conversation.clear()
        if context.workflow is not None:
            for agent in context.workflow.agents:
                if agent.status == AgentStatus.RUNNING:
                    agent.status = AgentStatus.INIT

        planner = self._planner(context) if self.llm_provider is not None else None
        executor = WorkflowExecutor(context, planner)
        try:
            return await executor.run()
        except Exception as e:
            interrupted = isinstance(e, TaskInterruptedError) or context.interrupted
            self.logger.error(
                "task_execution_failed",
                task_id=task_id,
                interrupted=interrupted,
                error=str(e),
                error_type=type(e).__name__,
            )
            return RunResult(
                task_id=task_id,
                success=False,
                stop_reason=StopReason.ABORT if interrupted else StopReason.ERROR,
                result=f"{type(e).__name__}: {e}",
                error=e,
            )

    async def run(
        self,
        task_prompt: str,
        task_id: str | None = None,
        context_params: dict[str, Any] | None = None,
    ) -> RunResult:
        """Generate and execute a task."""
        workflow = await self.generate(task_prompt, task_id, context_params)
        return await self.execute(workflow.task_id)

    # ------------------------------------------------------------------
    # Task control
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> ExecutionContext | None:
        return self._tasks.get(task_id)

    def get_all_task_ids(self) -> list[str]:
        return list(self._tasks.keys())

    async def pause_task(
        self,
        task_id: str,
        pause: bool,
        abort_current_step: bool = False,
        reason: str | None = None,
    ) -> bool:
        """Pause (soft, or hard with ``abort_current_step``) or resume a task."""
        context = self._tasks.get(task_id)
        if context is None:
            return False
        context.set_pause(pause, abort_current_step)
        await self._notify_task_status(context, "pause" if pause else "resume-pause", reason)
        return True

    async def abort_task(self, task_id: str, reason: str | None = None) -> bool:
        context = self._tasks.get(task_id)
        if context is None:
            return False
        context.abort(reason)
        await self._notify_task_status(context, "abort", reason)
        return True

    async def delete_task(self, task_id: str) -> bool:
        """
        Abort a task, clear its variables and remove it from the registry.

        The context is closed, so a run still in flight stops at its next
        check instead of picking up a fresh abort signal.
        """
        await self.abort_task(task_id, "deleted")
        context = self._tasks.pop(task_id, None)
        if context is None:
            return False
        context.close("deleted")
        context.variables.clear()
        context.reset()
        self.logger.info("task_deleted", task_id=task_id)
        return True

    def chat_task(self, task_id: str, text: str) -> list[str] | None:
        """Queue a user message for the running agent. Returns the conversation buffer."""
        context = self._tasks.get(task_id)
        if context is None:
            return None
        context.conversation.append(text)
        return context.conversation

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create_context(
        self,
        task_id: str,
        task_prompt: str,
        context_params: dict[str, Any] | None,
    ) -> ExecutionContext:
        context = ExecutionContext(
            task_id=task_id,
            settings=self.settings,
            runners=self.runners,
            history=ExecutionHistory(task_prompt),
            hooks=self.hooks,
            callback=self.callback,
        )
        if context_params:
            context.variables.update(context_params)
        return context

    def _planner(self, context: ExecutionContext) -> Planner:
        if self.llm_provider is None:
            raise ConfigurationError("No LLM provider configured for planning")
        return Planner(context, self.llm_provider)

    async def _notify_task_status(
        self, context: ExecutionContext, status: str, reason: str | None
    ) -> None:
        current = context.current_agent()
        if current is None:
            return
        runner = current[0]
        on_task_status = getattr(runner, "on_task_status", None)
        if on_task_status is None:
            return
        try:
            await on_task_status(status, reason)
        except Exception as e:
            self.logger.warning(
                "task_status_notification_failed",
                task_id=context.task_id,
                status=status,
                error=str(e),
            )
