"""
Plan Generator

Drives one streaming language-model completion that produces the workflow's
graph description:
- plan(): fresh generation from the user's task prompt
- replan(): revision that resumes the stored planning conversation

While the completion streams, the accumulated output is parsed leniently
and reported as a non-final workflow preview. The final output is parsed
strictly; a malformed final plan is fatal.

Failed attempts are retried after a fixed delay. Interruptions and
content-filter rejections are never retried.
"""

import asyncio

import structlog

from plangraph.core.domain.context import ExecutionContext
from plangraph.core.domain.errors import (
    AbnormalFinishError,
    ContentFilterError,
    LLMStreamError,
    PolicyTerminationError,
    TaskInterruptedError,
)
from plangraph.core.domain.events import MessageType, StreamMessage
from plangraph.core.domain.models import Workflow
from plangraph.core.domain.workflow_xml import parse_workflow
from plangraph.core.interfaces.llm import LLMProviderProtocol, LLMRequest
from plangraph.core.prompts.plan_prompts import (
    build_plan_system_prompt,
    build_plan_user_prompt,
)

PLANNER_AGENT_NAME = "Planner"


class Planner:
    """
    Generates and revises the workflow of one task.

    Attributes:
        context: Execution context of the task
        llm_provider: Streaming LLM transport
    """

    def __init__(self, context: ExecutionContext, llm_provider: LLMProviderProtocol):
        self.context = context
        self.task_id = context.task_id
        self.llm_provider = llm_provider
        self.settings = context.settings
        self.logger = structlog.get_logger().bind(
            component="planner", task_id=context.task_id
        )

    async def plan(self, task_prompt: str, save_history: bool = True) -> Workflow:
        """
        Generate a workflow for a new task prompt.

        Args:
            task_prompt: The user's natural-language task
            save_history: Store the request/response pair for later replans

        Returns:
            The parsed workflow

        Raises:
            TaskInterruptedError: The task was aborted while planning
            ContentFilterError: The provider refused the completion
            LLMStreamError: The completion kept failing after all retries
            WorkflowParseError: The final output is not a valid plan
        """
        user_prompt = build_plan_user_prompt(
            task_prompt, self.context.variables.get("plan_ext_prompt")
        )
        messages = [
            {
                "role": "system",
                "content": build_plan_system_prompt(self.context.runners.values()),
            },
            {"role": "user", "content": user_prompt},
        ]
        return await self._generate(task_prompt, messages, save_history, previous_prompt="")

    async def replan(self, task_prompt: str, save_history: bool = True) -> Workflow:
        """
        Revise the plan with a new instruction.

        The stored planning request, the plan the model answered with and the
        new instruction are sent as one conversation so that the model
        revises its own plan. Without a stored pair this is a fresh plan().
        """
        history = self.context.history
        if history.plan_request is None or history.plan_result is None:
            return await self.plan(task_prompt, save_history)

        messages = [
            *history.plan_request.messages,
            {"role": "assistant", "content": history.plan_result},
            {"role": "user", "content": task_prompt},
        ]
        previous_prompt = self.context.workflow.task_prompt if self.context.workflow else ""
        return await self._generate(task_prompt, messages, save_history, previous_prompt)

    async def _generate(
        self,
        task_prompt: str,
        messages: list[dict],
        save_history: bool,
        previous_prompt: str,
    ) -> Workflow:
        request = LLMRequest(
            messages=messages,
            model=self.settings.planner_model,
            max_tokens=self.settings.plan_max_tokens,
            temperature=self.settings.plan_temperature,
        )

        attempt = 0
        while True:
            try:
                stream_text, thinking_text = await self._stream(request)
                break
            except (TaskInterruptedError, PolicyTerminationError):
                raise
            except Exception as e:
                if self.context.interrupted:
                    raise TaskInterruptedError(self.context.signal.reason) from e
                if attempt >= self.settings.plan_max_retries:
                    self.logger.error(
                        "plan_failed",
                        attempts=attempt + 1,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise
                attempt += 1
                self.logger.warning(
                    "plan_attempt_failed",
                    attempt=attempt,
                    max_retries=self.settings.plan_max_retries,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(self.settings.plan_retry_delay)

        self.logger.info("plan_generated", output_length=len(stream_text))
        self.logger.debug("plan_output", output=stream_text)

        if save_history:
            self.context.history.plan_request = request
            self.context.history.plan_result = stream_text

        workflow = parse_workflow(self.task_id, stream_text, True, thinking_text)
        workflow.task_prompt = f"{previous_prompt}\n{task_prompt}".strip()

        await self.context.emit(
            StreamMessage(
                task_id=self.task_id,
                agent_name=PLANNER_AGENT_NAME,
                type=MessageType.WORKFLOW,
                workflow=workflow,
                stream_done=True,
            )
        )
        return workflow

    async def _stream(self, request: LLMRequest) -> tuple[str, str]:
        """Run one streaming attempt. Returns (output text, reasoning text)."""
        stream_text = ""
        thinking_text = ""
        await self.context.check_aborted(skip_pause=True)

        async for chunk in self.llm_provider.complete_stream(
            request.messages, model=request.model, **request.params()
        ):
            await self.context.check_aborted(skip_pause=True)
            chunk_type = chunk.get("type")

            if chunk_type == "error":
                raise LLMStreamError(f"LLM error: {chunk.get('message')}")
            if chunk_type == "reasoning":
                thinking_text += chunk.get("content") or ""
            elif chunk_type == "token":
                stream_text += chunk.get("content") or ""
            elif chunk_type == "finish":
                finish_reason = chunk.get("finish_reason")
                if finish_reason == "content_filter":
                    raise ContentFilterError(
                        "LLM error: trigger content filtering violation"
                    )
                if finish_reason == "other":
                    raise AbnormalFinishError(
                        "LLM error: terminated due to other reasons"
                    )

            if self.context.callback is not None:
                await self._emit_preview(stream_text, thinking_text)

        return stream_text, thinking_text

    async def _emit_preview(self, stream_text: str, thinking_text: str) -> None:
        try:
            workflow = parse_workflow(self.task_id, stream_text, False, thinking_text)
        except Exception as e:
            self.logger.debug("plan_preview_failed", error=str(e))
            return
        if workflow is None:
            return
        await self.context.emit(
            StreamMessage(
                task_id=self.task_id,
                agent_name=PLANNER_AGENT_NAME,
                type=MessageType.WORKFLOW,
                workflow=workflow,
                stream_done=False,
            )
        )
