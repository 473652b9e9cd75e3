"""
Unit tests for OrchestratorFactory.

Tests verify:
- Profile loading and settings wiring
- ReAct runner creation from agent definitions, including tools
- Checkpoint hook wiring
- Error handling for missing profiles and invalid agents
"""

from pathlib import Path

import pytest

from conftest import FakeLLM, FakeRunner
from plangraph.application.factory import OrchestratorFactory
from plangraph.application.orchestrator import TaskOrchestrator
from plangraph.core.domain.errors import ConfigurationError
from plangraph.core.interfaces.hooks import Hooks
from plangraph.infrastructure.llm.llm_service import LLMService
from plangraph.infrastructure.runners.react_runner import ReActAgentRunner


class EchoTool:
    """Minimal tool referenced by the test profiles."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.name = "echo"
        self.description = "Echo the input"
        self.parameters_schema = {"type": "object", "properties": {"text": {"type": "string"}}}

    async def execute(self, text: str = "") -> dict:
        return {"success": True, "output": f"{self.prefix}{text}"}


PROFILE = """
orchestrator:
  agent_parallel: true
  dynamic_replan: true
  plan_max_retries: 1
persistence:
  checkpoint_dir: {checkpoint_dir}
llm:
  config_path: {llm_config}
agents:
  - name: researcher
    description: Finds information
    plan_description: Use for any lookup
    model: fast
    temperature: 0.1
    tools:
      - type: EchoTool
        module: test_factory
        params:
          prefix: ">> "
      - type: MissingTool
        module: test_factory
  - name: writer
    description: Writes texts
"""

LLM_CONFIG = """
default_model: "main"
models:
  main: "gpt-4.1"
  fast: "gpt-4.1-mini"
"""


@pytest.fixture
def config_dir(tmp_path):
    configs = tmp_path / "configs"
    configs.mkdir()
    llm_config = configs / "llm_config.yaml"
    llm_config.write_text(LLM_CONFIG, encoding="utf-8")
    (configs / "test.yaml").write_text(
        PROFILE.format(
            checkpoint_dir=(tmp_path / "checkpoints").as_posix(),
            llm_config=llm_config.as_posix(),
        ),
        encoding="utf-8",
    )
    (configs / "bad.yaml").write_text(
        "agents:\n  - name: nameless-description\n", encoding="utf-8"
    )
    return configs


class TestOrchestratorFactory:
    """Test suite for OrchestratorFactory."""

    def test_factory_initialization(self):
        """Test factory initializes with config directory."""
        factory = OrchestratorFactory(config_dir="configs")

        assert factory.config_dir == Path("configs")

    def test_profile_not_found(self, tmp_path):
        """Test error when profile not found."""
        factory = OrchestratorFactory(config_dir=str(tmp_path))

        with pytest.raises(FileNotFoundError, match="Profile not found"):
            factory.create_orchestrator(profile="nonexistent")

    def test_creates_orchestrator_from_profile(self, config_dir):
        """Test settings, LLM service and runners are wired from the profile."""
        factory = OrchestratorFactory(config_dir=str(config_dir))

        orchestrator = factory.create_orchestrator(profile="test")

        assert isinstance(orchestrator, TaskOrchestrator)
        assert isinstance(orchestrator.llm_provider, LLMService)
        assert orchestrator.settings.agent_parallel is True
        assert orchestrator.settings.dynamic_replan is True
        assert orchestrator.settings.plan_max_retries == 1
        assert sorted(orchestrator.runners) == ["researcher", "writer"]

    def test_runner_definition(self, config_dir):
        """Test runner fields and tools come from the agent definition."""
        factory = OrchestratorFactory(config_dir=str(config_dir))

        orchestrator = factory.create_orchestrator(profile="test", llm_provider=FakeLLM())

        researcher = orchestrator.runners["researcher"]
        assert isinstance(researcher, ReActAgentRunner)
        assert researcher.plan_description == "Use for any lookup"
        assert researcher.model_alias == "fast"
        assert researcher.temperature == 0.1
        assert list(researcher.tools) == ["echo"]
        assert researcher.tools["echo"].prefix == ">> "
        assert researcher.settings is orchestrator.settings

    def test_checkpoint_hook_is_wired(self, config_dir):
        """Test persistence config installs the checkpoint store as hook."""
        factory = OrchestratorFactory(config_dir=str(config_dir))

        orchestrator = factory.create_orchestrator(profile="test", llm_provider=FakeLLM())

        assert orchestrator.hooks.on_checkpoint is not None
        assert orchestrator.hooks.on_checkpoint.__name__ == "save_checkpoint"

    def test_explicit_checkpoint_hook_wins(self, config_dir):
        """Test a host-provided on_checkpoint hook is kept."""
        async def my_checkpoint(context, workflow):
            return None

        factory = OrchestratorFactory(config_dir=str(config_dir))

        orchestrator = factory.create_orchestrator(
            profile="test", llm_provider=FakeLLM(), hooks=Hooks(on_checkpoint=my_checkpoint)
        )

        assert orchestrator.hooks.on_checkpoint is my_checkpoint

    def test_extra_runners_are_registered(self, config_dir):
        """Test extra runners join the profile's runners."""
        factory = OrchestratorFactory(config_dir=str(config_dir))

        orchestrator = factory.create_orchestrator(
            profile="test", llm_provider=FakeLLM(), extra_runners=[FakeRunner("fetch")]
        )

        assert "fetch" in orchestrator.runners

    def test_invalid_agent_definition_raises(self, config_dir):
        """Test agent definitions need a name and a description."""
        factory = OrchestratorFactory(config_dir=str(config_dir))

        with pytest.raises(ConfigurationError, match="name"):
            factory.create_orchestrator(profile="bad", llm_provider=FakeLLM())

    def test_instantiate_tool_invalid_spec(self):
        """Test tool specs without type or module are skipped."""
        factory = OrchestratorFactory()

        assert factory._instantiate_tool({"type": "EchoTool"}) is None
        assert factory._instantiate_tool({"type": "Nope", "module": "no.such.module"}) is None
