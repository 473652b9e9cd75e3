"""
Workflow Executor

Walks the execution tree of a task's workflow:

    check abort/pause -> take external revision -> execute node
      -> clear conversation -> checkpoint -> dynamic replan? -> next node

Serial nodes run one declared agent. Parallel nodes run a layer of agents
either concurrently or one after another, depending on the task variable
``agent_parallel`` (falling back to the ``agent_parallel`` setting). History
entries and the joined result of a parallel node always follow declaration
order.

A revision, whether produced by dynamic re-planning or posted by the host
through the context, discards the remainder of the current tree; a new tree
is built from the agents still in ``init`` status.
"""

import asyncio

import structlog

from plangraph.core.domain.context import AgentRunContext, ExecutionContext
from plangraph.core.domain.errors import (
    AgentBlockedError,
    EmptyWorkflowError,
    TaskInterruptedError,
    UnknownAgentError,
)
from plangraph.core.domain.events import MessageType, StreamMessage
from plangraph.core.domain.history import AgentRun
from plangraph.core.domain.models import (
    AgentStatus,
    DeclaredAgent,
    ErrorAction,
    RunResult,
    StopReason,
    Workflow,
    parse_error_action,
)
from plangraph.core.domain.planner import Planner
from plangraph.core.domain.tree import (
    ExecutionNode,
    ParallelNode,
    SerialNode,
    build_execution_tree,
)
from plangraph.core.interfaces.runner import AgentRunnerProtocol
from plangraph.core.prompts.plan_prompts import REPLAN_INSTRUCTION


class WorkflowExecutor:
    """
    Executes the workflow held by an execution context.

    Attributes:
        context: Execution context of the task
        planner: Planner used for dynamic re-planning (optional)
    """

    def __init__(self, context: ExecutionContext, planner: Planner | None = None):
        self.context = context
        self.planner = planner
        self.settings = context.settings
        self.logger = structlog.get_logger().bind(
            component="workflow_executor", task_id=context.task_id
        )
        self._node_runs: list[AgentRunContext] = []

    async def run(self) -> RunResult:
        """
        Execute the pending part of the workflow.

        Returns:
            A successful RunResult carrying the last node's output

        Raises:
            EmptyWorkflowError: No workflow or no agents
            UnknownAgentError: A declared agent has no registered runner
            CircularDependencyError: The pending agents contain a cycle
            TaskInterruptedError: The task was aborted
            Exception: An agent failure the error policy did not resolve
        """
        context = self.context
        workflow = context.workflow
        if workflow is None or not workflow.agents:
            raise EmptyWorkflowError("Workflow error")

        await context.call_hook("on_workflow_generated", context, workflow)

        self.logger.info(
            "workflow_execution_started",
            workflow_name=workflow.name,
            agent_count=len(workflow.agents),
            pending=len(workflow.pending_agents()),
        )
        context.executing = True
        try:
            result = await self._walk(workflow)
        finally:
            context.executing = False

        run_result = RunResult(
            task_id=context.task_id,
            success=True,
            stop_reason=StopReason.DONE,
            result=result,
        )
        self.logger.info("workflow_execution_completed", result_length=len(result))
        await context.call_hook("on_workflow_complete", context, run_result)
        return run_result

    async def _walk(self, workflow: Workflow) -> str:
        context = self.context
        node: ExecutionNode | None = build_execution_tree(workflow.pending_agents())
        last_result = ""

        while True:
            await context.check_aborted()

            revision = context.take_revision()
            if revision is not None:
                self.logger.info("workflow_revision_applied", source="external")
                workflow.merge_revision(revision)
                node = self._rebuild(workflow)
            if node is None:
                break

            last_result = await self._execute_node(node)
            context.conversation.clear()
            await context.call_hook("on_checkpoint", context, workflow)

            revised = None
            if (
                self.settings.dynamic_replan
                and node.next is not None
                and not context.has_pending_revision
            ):
                revised = await self._check_replan(workflow)

            if revised is not None:
                self.logger.info("workflow_revision_applied", source="replan")
                node = self._rebuild(revised)
            else:
                node = node.next

        return last_result

    def _rebuild(self, workflow: Workflow) -> ExecutionNode | None:
        pending = workflow.pending_agents()
        if not pending:
            return None
        return build_execution_tree(pending)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _execute_node(self, node: ExecutionNode) -> str:
        self._node_runs = []
        if isinstance(node, SerialNode):
            runner = self._resolve_runner(node.agent)
            agent_run = AgentRun(agent=node.agent)
            self.context.history.push(agent_run)
            return await self._run_agent(runner, node.agent, agent_run)
        return await self._execute_parallel(node)

    async def _execute_parallel(self, node: ParallelNode) -> str:
        context = self.context
        members = [
            (agent, self._resolve_runner(agent), AgentRun(agent=agent))
            for agent in node.agents
        ]
        parallel = context.variables.get("agent_parallel", self.settings.agent_parallel)
        self.logger.info(
            "parallel_node_started",
            agent_ids=[a.id for a in node.agents],
            mode="parallel" if parallel else "sequential",
        )

        if not parallel:
            results = []
            for agent, runner, agent_run in members:
                context.history.push(agent_run)
                results.append(await self._run_agent(runner, agent, agent_run))
            return "\n\n".join(results)

        tasks = [
            asyncio.ensure_future(self._run_agent(runner, agent, agent_run))
            for agent, runner, agent_run in members
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            for _, _, agent_run in members:
                context.history.push(agent_run)
        return "\n\n".join(results)

    def _resolve_runner(self, agent: DeclaredAgent) -> AgentRunnerProtocol:
        runner = self.context.runners.get(agent.name)
        if runner is None:
            raise UnknownAgentError(agent.name)
        return runner

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def _run_agent(
        self,
        runner: AgentRunnerProtocol,
        agent: DeclaredAgent,
        agent_run: AgentRun,
    ) -> str:
        context = self.context
        run_ctx = AgentRunContext(
            context=context, runner=runner, agent=agent, agent_run=agent_run
        )
        context.register_run(run_ctx)
        self._node_runs.append(run_ctx)
        try:
            return await self._dispatch(run_ctx)
        finally:
            context.finish_run(run_ctx)

    async def _dispatch(self, run_ctx: AgentRunContext) -> str:
        context = self.context
        runner, agent, agent_run = run_ctx.runner, run_ctx.agent, run_ctx.agent_run

        while True:
            agent.status = AgentStatus.RUNNING
            self.logger.info(
                "agent_run_started",
                agent_id=agent.id,
                agent_name=agent.name,
                attempt=run_ctx.attempt,
            )
            await context.emit(
                self._message(agent, MessageType.AGENT_START), run_ctx
            )

            try:
                hook_result = await context.call_hook("before_agent_start", run_ctx)
                if hook_result is not None and getattr(hook_result, "block", False):
                    raise AgentBlockedError(
                        hook_result.reason or f"Agent {agent.id} was blocked"
                    )
                result = await runner.run(run_ctx)
            except TaskInterruptedError:
                raise
            except Exception as e:
                if context.interrupted:
                    raise TaskInterruptedError(context.signal.reason) from e

                agent.status = AgentStatus.ERROR
                self.logger.error(
                    "agent_run_failed",
                    agent_id=agent.id,
                    agent_name=agent.name,
                    attempt=run_ctx.attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                action = parse_error_action(
                    await context.call_hook("on_agent_error", run_ctx, e)
                )
                if action == ErrorAction.RETRY:
                    agent.status = AgentStatus.INIT
                    run_ctx.attempt += 1
                    continue
                if action == ErrorAction.SKIP:
                    return await self._complete(
                        run_ctx, f"Skipped due to error: {e}"
                    )
                await context.emit(
                    self._message(agent, MessageType.AGENT_RESULT, error=e), run_ctx
                )
                raise

            agent.status = AgentStatus.DONE
            agent.result = result
            agent_run.set_result(result)

            after = await context.call_hook("after_agent_complete", run_ctx, result)
            if after is not None and getattr(after, "retry", False):
                self.logger.info("agent_retry_requested", agent_id=agent.id)
                agent.status = AgentStatus.INIT
                run_ctx.attempt += 1
                continue

            return await self._complete(run_ctx, result)

    async def _complete(self, run_ctx: AgentRunContext, result: str) -> str:
        agent = run_ctx.agent
        agent.status = AgentStatus.DONE
        agent.result = result
        if run_ctx.agent_run.result != result:
            run_ctx.agent_run.set_result(result)
        self.logger.info(
            "agent_run_completed", agent_id=agent.id, agent_name=agent.name
        )
        await self.context.call_hook(
            "on_workflow_step_complete", self.context, agent, result
        )
        await self.context.emit(
            self._message(agent, MessageType.AGENT_RESULT, result=result), run_ctx
        )
        return result

    def _message(
        self,
        agent: DeclaredAgent,
        message_type: MessageType,
        result: str | None = None,
        error: BaseException | None = None,
    ) -> StreamMessage:
        return StreamMessage(
            task_id=self.context.task_id,
            agent_name=agent.name,
            type=message_type,
            node_id=agent.id,
            agent=agent,
            result=result,
            error=error,
        )

    # ------------------------------------------------------------------
    # Dynamic re-planning
    # ------------------------------------------------------------------

    async def _check_replan(self, workflow: Workflow) -> Workflow | None:
        if self.planner is None:
            return None

        trigger = None
        for run_ctx in self._node_runs:
            check = getattr(run_ctx.runner, "check_replan", None)
            if check is None:
                continue
            try:
                if await check(run_ctx):
                    trigger = run_ctx
                    break
            except Exception as e:
                self.logger.warning(
                    "replan_check_failed",
                    agent_id=run_ctx.agent.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        if trigger is None:
            return None

        finished = [a.id for a in workflow.agents if a.status != AgentStatus.INIT]
        instruction = REPLAN_INSTRUCTION.format(
            agent_name=trigger.agent.name,
            agent_id=trigger.agent.id,
            reason=trigger.replan_reason or "The user changed the request.",
            finished=", ".join(finished) or "none",
        ).strip()
        self.logger.info(
            "dynamic_replan_triggered",
            agent_id=trigger.agent.id,
            reason=trigger.replan_reason,
        )
        revised = await self.planner.replan(instruction)
        return workflow.merge_revision(revised)
