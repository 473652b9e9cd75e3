"""Shared fixtures and fakes for plangraph tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from plangraph.config.settings import OrchestratorSettings
from plangraph.core.domain.context import ExecutionContext
from plangraph.core.domain.history import ExecutionHistory
from plangraph.core.domain.models import DeclaredAgent, Workflow
from plangraph.core.interfaces.hooks import Hooks

FETCH_SUMMARIZE_XML = """Here is the plan.
<root>
  <name>Fetch and summarize</name>
  <thought>Fetch the page first, then summarize it.</thought>
  <agents>
    <agent name="fetch" id="1" depends="">
      <task>Fetch page X</task>
      <input>https://example.com/x</input>
    </agent>
    <agent name="summarize" id="2" depends="1">
      <task>Summarize the page</task>
    </agent>
  </agents>
</root>"""


def plan_chunks(text: str, size: int = 16, finish_reason: str = "stop") -> list[dict]:
    """Split plan text into streamed token chunks followed by a finish chunk."""
    chunks = [
        {"type": "token", "content": text[i : i + size]} for i in range(0, len(text), size)
    ]
    chunks.append({"type": "finish", "finish_reason": finish_reason})
    return chunks


class FakeLLM:
    """
    Scripted LLM provider.

    Each complete_stream call consumes the next script (a list of chunk dicts;
    an exception instance in the list is raised at that point). The last
    script is repeated once the others are used up.
    """

    def __init__(self, scripts: list[list] | None = None):
        self.scripts = list(scripts or [])
        self.stream_calls: list[dict] = []
        self.complete = AsyncMock()

    async def complete_stream(self, messages, model=None, **kwargs):
        self.stream_calls.append({"messages": list(messages), "model": model, **kwargs})
        script = self.scripts.pop(0) if len(self.scripts) > 1 else self.scripts[0]
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeRunner:
    """
    Agent runner with scripted behaviour.

    Args:
        name: Agent type name
        result: Result string, or callable(run_ctx) -> str
        delays: Seconds to sleep per declared agent id
        fail_times: Number of initial runs that raise ``error``
        error: Exception raised while failing
        log: Shared list receiving ("start"|"end", agent id) entries
    """

    def __init__(
        self,
        name: str,
        result=None,
        delays: dict[str, float] | None = None,
        fail_times: int = 0,
        error: Exception | None = None,
        log: list | None = None,
    ):
        self.name = name
        self.description = f"The {name} agent"
        self.result = result
        self.delays = delays or {}
        self.fail_times = fail_times
        self.error = error or RuntimeError(f"{name} failed")
        self.log = log if log is not None else []
        self.run_contexts = []

    async def run(self, run_ctx) -> str:
        agent = run_ctx.agent
        self.run_contexts.append(run_ctx)
        self.log.append(("start", agent.id))
        delay = self.delays.get(agent.id, 0)
        if delay:
            await asyncio.sleep(delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        self.log.append(("end", agent.id))
        if callable(self.result):
            return self.result(run_ctx)
        if self.result is not None:
            return self.result
        return f"{self.name} result for {agent.id}"


class RecordingCallback:
    """Stream callback that keeps every message it receives."""

    def __init__(self):
        self.messages = []

    async def on_message(self, message, run_ctx=None) -> None:
        self.messages.append(message)

    def of_type(self, message_type):
        return [m for m in self.messages if m.type == message_type]


@pytest.fixture
def settings():
    """Settings tuned for fast tests."""
    return OrchestratorSettings(
        plan_max_retries=2,
        plan_retry_delay=0,
        pause_poll_interval=0.01,
        max_react_steps=10,
        max_consecutive_errors=3,
    )


@pytest.fixture
def callback():
    return RecordingCallback()


@pytest.fixture
def make_context(settings, callback):
    """Factory for execution contexts holding a workflow built from agents."""

    def _make(agents=None, runners=None, hooks=None, task_id="task-1", **setting_overrides):
        context_settings = (
            settings.model_copy(update=setting_overrides) if setting_overrides else settings
        )
        context = ExecutionContext(
            task_id=task_id,
            settings=context_settings,
            runners={r.name: r for r in runners or []},
            history=ExecutionHistory("Test task"),
            hooks=hooks or Hooks(),
            callback=callback,
        )
        if agents is not None:
            context.workflow = Workflow(
                task_id=task_id, name="Test", task_prompt="Test task", agents=agents
            )
        return context

    return _make


def agent(agent_id: str, name: str, depends: list[str] | None = None, task: str = "") -> DeclaredAgent:
    """Shorthand for a declared agent."""
    return DeclaredAgent(id=agent_id, name=name, task=task or f"Task {agent_id}", depends=depends or [])
