"""
ReAct Agent Runner - Native Tool Calling

Reference implementation of the agent runner contract. Executes one declared
agent with a single loop over a tool-calling model:
1. Send the conversation and the tool specs to the model
2. If the model returns tool_calls -> execute them, record them on the
   agent run, append the results and loop
3. If the model returns content -> that is the agent's result

The runner ships no tools of its own apart from ``request_replan``, which
the model calls when the user's intent changed and the remaining plan no
longer fits. The executor asks ``check_replan()`` after the node finished.

Model calls and tool calls run as cancellable step operations: a hard pause
interrupts them, the runner waits for the task to resume and carries on.
"""

from typing import Any

import structlog

from plangraph.config.settings import OrchestratorSettings
from plangraph.core.domain.context import AgentRunContext, ExecutionContext
from plangraph.core.domain.errors import AgentExecutionError, StepInterruptedError
from plangraph.core.domain.events import MessageType, StreamMessage
from plangraph.core.domain.history import ToolCall
from plangraph.core.interfaces.llm import LLMProviderProtocol
from plangraph.core.interfaces.tools import ToolProtocol
from plangraph.core.prompts.agent_prompts import (
    REACT_INPUT_SECTION,
    REACT_PREVIOUS_SECTION,
    REACT_SYSTEM_PROMPT,
    REACT_USER_PROMPT,
)
from plangraph.infrastructure.tools.tool_converter import (
    assistant_tool_calls_to_message,
    parse_tool_arguments,
    tool_result_to_message,
    tool_spec,
    tools_to_openai_format,
)

REQUEST_REPLAN_TOOL = "request_replan"

REQUEST_REPLAN_SPEC = tool_spec(
    REQUEST_REPLAN_TOOL,
    "Report that the user's goal changed and the remaining plan must be revised.",
    {
        "type": "object",
        "properties": {
            "reason": {
                "type": "string",
                "description": "What changed and what the plan should do instead",
            }
        },
        "required": ["reason"],
    },
)

UNFINISHED_RESULT = "Unfinished"


class ReActAgentRunner:
    """
    Agent runner driving a native tool-calling ReAct loop.

    Attributes:
        name: Agent type name the planner uses
        description: Capability text shown to the planner and the model
        plan_description: Optional planner-only capability text
        tools: Tools available to the model, by name
    """

    def __init__(
        self,
        name: str,
        description: str,
        llm_provider: LLMProviderProtocol,
        tools: list[ToolProtocol] | None = None,
        settings: OrchestratorSettings | None = None,
        system_prompt: str | None = None,
        plan_description: str | None = None,
        model_alias: str = "main",
        temperature: float = 0.2,
    ):
        self.name = name
        self.description = description
        self.plan_description = plan_description
        self.llm_provider = llm_provider
        self.settings = settings or OrchestratorSettings()
        self.model_alias = model_alias
        self.temperature = temperature
        self._system_prompt = system_prompt or REACT_SYSTEM_PROMPT
        self.tools: dict[str, ToolProtocol] = {t.name: t for t in tools or []}
        self._openai_tools = tools_to_openai_format(self.tools.values()) + [
            REQUEST_REPLAN_SPEC
        ]
        self.logger = structlog.get_logger().bind(
            component="react_runner", agent_name=name
        )

    async def run(self, run_ctx: AgentRunContext) -> str:
        """
        Execute the declared agent until the model gives a final answer.

        Returns:
            The model's final answer, or "Unfinished" when the step limit
            was reached

        Raises:
            TaskInterruptedError: The task was aborted
            AgentExecutionError: Too many consecutive failures
        """
        context = run_ctx.context
        agent = run_ctx.agent
        messages = self._build_initial_messages(run_ctx)
        run_ctx.messages = messages
        run_ctx.consecutive_errors = 0

        self.logger.info("agent_loop_started", agent_id=agent.id, task=agent.task[:100])

        step = 0
        while step < self.settings.max_react_steps:
            await context.check_aborted()
            self._append_interjections(run_ctx, messages)

            run_ctx.agent_run.request = {
                "messages": list(messages),
                "model": self.model_alias,
                "tools": [t["function"]["name"] for t in self._openai_tools],
            }
            try:
                result = await context.run_cancellable(
                    self.llm_provider.complete(
                        messages=messages,
                        model=self.model_alias,
                        tools=self._openai_tools,
                        tool_choice="auto",
                        temperature=self.temperature,
                    )
                )
            except StepInterruptedError as e:
                self.logger.info("llm_call_interrupted", agent_id=agent.id, reason=e.reason)
                await context.check_aborted()
                continue

            step += 1
            self.logger.info("loop_step", agent_id=agent.id, step=step)

            if not result.get("success"):
                self.logger.error("llm_call_failed", agent_id=agent.id, error=result.get("error"))
                self._register_failure(run_ctx, result.get("error"))
                messages.append({
                    "role": "user",
                    "content": f"[System Error: {result.get('error')}. Please try again.]",
                })
                continue

            tool_calls = result.get("tool_calls")
            if tool_calls:
                self.logger.info(
                    "tool_calls_received",
                    agent_id=agent.id,
                    step=step,
                    tools=[tc["function"]["name"] for tc in tool_calls],
                )
                messages.append(
                    assistant_tool_calls_to_message(tool_calls, result.get("content"))
                )
                for tool_call in tool_calls:
                    tool_result = await self._handle_tool_call(run_ctx, tool_call)
                    messages.append(
                        tool_result_to_message(
                            tool_call["id"], tool_call["function"]["name"], tool_result
                        )
                    )
                continue

            content = result.get("content") or ""
            if content:
                run_ctx.consecutive_errors = 0
                messages.append({"role": "assistant", "content": content})
                await context.emit(
                    StreamMessage(
                        task_id=context.task_id,
                        agent_name=agent.name,
                        type=MessageType.TEXT,
                        node_id=agent.id,
                        text=content,
                        stream_done=True,
                    ),
                    run_ctx,
                )
                self.logger.info("final_answer_received", agent_id=agent.id, step=step)
                return content

            self.logger.warning("empty_response", agent_id=agent.id, step=step)
            messages.append({
                "role": "user",
                "content": "[System: Your response was empty. Please provide an answer or use a tool.]",
            })

        self.logger.warning(
            "agent_step_limit_reached",
            agent_id=agent.id,
            max_steps=self.settings.max_react_steps,
        )
        return UNFINISHED_RESULT

    async def check_replan(self, run_ctx: AgentRunContext) -> bool:
        return bool(run_ctx.replan_reason)

    async def on_task_status(self, status: str, reason: str | None = None) -> None:
        self.logger.info("task_status_changed", status=status, reason=reason)

    def _build_initial_messages(self, run_ctx: AgentRunContext) -> list[dict[str, Any]]:
        context = run_ctx.context
        agent = run_ctx.agent
        workflow = context.workflow

        input_section = ""
        if agent.input:
            input_section = REACT_INPUT_SECTION.format(input=agent.input)

        previous_section = ""
        if workflow is not None:
            results = []
            for dep_id in agent.depends:
                dependency = workflow.get_agent(dep_id)
                if dependency is not None and dependency.result:
                    results.append(f"[{dependency.id} {dependency.name}]\n{dependency.result}")
            if results:
                previous_section = REACT_PREVIOUS_SECTION.format(results="\n\n".join(results))

        system_prompt = self._system_prompt.format(
            name=self.name, description=self.description
        ).strip()
        user_prompt = REACT_USER_PROMPT.format(
            task_prompt=workflow.task_prompt if workflow else context.history.task_prompt,
            task=agent.task,
            input_section=input_section,
            previous_section=previous_section,
        ).strip()
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    def _append_interjections(
        self, run_ctx: AgentRunContext, messages: list[dict[str, Any]]
    ) -> None:
        """Forward conversation messages the user sent since the last model call."""
        conversation = run_ctx.context.conversation
        seen = run_ctx.variables.get("conversation_index", 0)
        if seen > len(conversation):
            seen = 0
        for text in conversation[seen:]:
            messages.append({"role": "user", "content": text})
        run_ctx.variables["conversation_index"] = len(conversation)

    async def _handle_tool_call(
        self, run_ctx: AgentRunContext, tool_call: dict[str, Any]
    ) -> dict[str, Any]:
        context = run_ctx.context
        agent = run_ctx.agent
        tool_name = tool_call["function"]["name"]
        tool_call_id = tool_call["id"]

        record = ToolCall(tool_name, tool_call_id, request=run_ctx.agent_run.request)
        run_ctx.agent_run.push(record)

        parse_error = None
        try:
            tool_args = parse_tool_arguments(tool_call["function"].get("arguments"))
        except ValueError as e:
            tool_args = {}
            parse_error = str(e)
            self.logger.warning("tool_args_parse_failed", tool=tool_name, error=parse_error)

        record.update_params(tool_args)
        await context.emit(
            StreamMessage(
                task_id=context.task_id,
                agent_name=agent.name,
                type=MessageType.TOOL_USE,
                node_id=agent.id,
                tool_name=tool_name,
                tool_id=tool_call_id,
                params=tool_args,
            ),
            run_ctx,
        )

        if parse_error is not None:
            tool_result = {"success": False, "error": parse_error}
        elif tool_name == REQUEST_REPLAN_TOOL:
            run_ctx.replan_reason = tool_args.get("reason") or "The user changed the request."
            self.logger.info("replan_requested", agent_id=agent.id, reason=run_ctx.replan_reason)
            tool_result = {
                "success": True,
                "output": "Re-planning will happen after this agent finished.",
            }
        else:
            tool_result = await self._execute_tool(context, tool_name, tool_args)

        record.update_result(tool_result)
        await context.emit(
            StreamMessage(
                task_id=context.task_id,
                agent_name=agent.name,
                type=MessageType.TOOL_RESULT,
                node_id=agent.id,
                tool_name=tool_name,
                tool_id=tool_call_id,
                params=tool_args,
                tool_result=tool_result,
            ),
            run_ctx,
        )

        if tool_result.get("success"):
            run_ctx.consecutive_errors = 0
        else:
            self._register_failure(run_ctx, tool_result.get("error"))
        return tool_result

    async def _execute_tool(
        self,
        context: ExecutionContext,
        tool_name: str,
        tool_args: dict[str, Any],
    ) -> dict[str, Any]:
        """Execute a tool by name with given arguments."""
        tool = self.tools.get(tool_name)
        if not tool:
            return {"success": False, "error": f"Tool not found: {tool_name}"}

        try:
            self.logger.info("tool_execute", tool=tool_name, args_keys=list(tool_args.keys()))
            result = await context.run_cancellable(tool.execute(**tool_args))
            self.logger.info("tool_complete", tool=tool_name, success=result.get("success"))
            return result
        except StepInterruptedError as e:
            self.logger.info("tool_interrupted", tool=tool_name, reason=e.reason)
            await context.check_aborted()
            return {"success": False, "error": f"Tool call interrupted: {e.reason}"}
        except Exception as e:
            self.logger.error("tool_exception", tool=tool_name, error=str(e))
            return {"success": False, "error": str(e)}

    def _register_failure(self, run_ctx: AgentRunContext, error: Any) -> None:
        run_ctx.consecutive_errors += 1
        if run_ctx.consecutive_errors >= self.settings.max_consecutive_errors:
            raise AgentExecutionError(
                f"Agent {run_ctx.agent.id} gave up after "
                f"{run_ctx.consecutive_errors} consecutive errors: {error}"
            )
