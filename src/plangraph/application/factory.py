"""
Application Layer - Orchestrator Factory

Builds a TaskOrchestrator from a YAML configuration profile:

    orchestrator:        # OrchestratorSettings overrides
      agent_parallel: true
    llm:
      config_path: configs/llm_config.yaml
    persistence:         # optional workflow checkpoints
      checkpoint_dir: .plangraph/checkpoints
    agents:              # ReAct agent runners
      - name: researcher
        description: Finds information on the web
        model: main
        tools:
          - type: WebSearchTool
            module: my_tools.web
            params: {}
"""

import importlib
from pathlib import Path
from typing import Any

import structlog
import yaml

from plangraph.application.orchestrator import TaskOrchestrator
from plangraph.config.logging import configure_logging
from plangraph.config.settings import OrchestratorSettings
from plangraph.core.domain.errors import ConfigurationError
from plangraph.core.interfaces.hooks import Hooks, StreamCallback
from plangraph.core.interfaces.llm import LLMProviderProtocol
from plangraph.core.interfaces.runner import AgentRunnerProtocol
from plangraph.core.interfaces.tools import ToolProtocol
from plangraph.infrastructure.llm.llm_service import LLMService
from plangraph.infrastructure.persistence.file_checkpoint import FileCheckpointStore
from plangraph.infrastructure.runners.react_runner import ReActAgentRunner


class OrchestratorFactory:
    """
    Factory for creating orchestrators with dependency injection.

    Reads YAML configuration profiles and wires settings, the LLM service,
    the agent runners and the optional checkpoint store into a
    TaskOrchestrator.
    """

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize OrchestratorFactory with configuration directory.

        Args:
            config_dir: Path to directory containing profile YAML files
        """
        self.config_dir = Path(config_dir)
        self.logger = structlog.get_logger().bind(component="orchestrator_factory")

    def create_orchestrator(
        self,
        profile: str = "dev",
        hooks: Hooks | None = None,
        callback: StreamCallback | None = None,
        llm_provider: LLMProviderProtocol | None = None,
        extra_runners: list[AgentRunnerProtocol] | None = None,
        json_logs: bool = False,
    ) -> TaskOrchestrator:
        """
        Create a TaskOrchestrator from a profile.

        Args:
            profile: Profile name (configs/<profile>.yaml)
            hooks: Lifecycle hooks; ``on_checkpoint`` is filled in when the
                profile configures persistence and no hook is given
            callback: Progress callback
            llm_provider: Transport override (skips the profile's llm section)
            extra_runners: Runners registered in addition to the profile's agents
            json_logs: Render log events as JSON instead of console output

        Returns:
            Configured TaskOrchestrator

        Raises:
            FileNotFoundError: If the profile YAML is not found
            ConfigurationError: If an agent definition is invalid
        """
        config = self._load_profile(profile)
        settings = self._create_settings(config)
        configure_logging(settings.log_level, json_output=json_logs)
        llm_provider = llm_provider or self._create_llm_provider(config)
        hooks = hooks or Hooks()

        checkpoint_store = self._create_checkpoint_store(config)
        if checkpoint_store is not None and hooks.on_checkpoint is None:
            hooks.on_checkpoint = checkpoint_store.save_checkpoint

        runners = self._create_runners(config, llm_provider, settings)
        runners.extend(extra_runners or [])

        self.logger.info(
            "orchestrator_created",
            profile=profile,
            runners=[r.name for r in runners],
            agent_parallel=settings.agent_parallel,
            dynamic_replan=settings.dynamic_replan,
        )
        return TaskOrchestrator(
            llm_provider=llm_provider,
            runners=runners,
            settings=settings,
            hooks=hooks,
            callback=callback,
        )

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path) as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _create_settings(self, config: dict) -> OrchestratorSettings:
        return OrchestratorSettings(**(config.get("orchestrator") or {}))

    def _create_llm_provider(self, config: dict) -> LLMProviderProtocol:
        llm_config = config.get("llm", {})
        config_path = llm_config.get("config_path", "configs/llm_config.yaml")
        return LLMService(config_path=config_path)

    def _create_checkpoint_store(self, config: dict) -> FileCheckpointStore | None:
        persistence_config = config.get("persistence") or {}
        checkpoint_dir = persistence_config.get("checkpoint_dir")
        if not checkpoint_dir:
            return None
        return FileCheckpointStore(checkpoint_dir=checkpoint_dir)

    def _create_runners(
        self,
        config: dict,
        llm_provider: LLMProviderProtocol,
        settings: OrchestratorSettings,
    ) -> list[AgentRunnerProtocol]:
        runners: list[AgentRunnerProtocol] = []
        for agent_spec in config.get("agents") or []:
            name = agent_spec.get("name")
            description = agent_spec.get("description")
            if not name or not description:
                raise ConfigurationError(
                    f"Agent definition needs 'name' and 'description': {agent_spec}"
                )
            tools = [
                tool
                for tool in (
                    self._instantiate_tool(spec) for spec in agent_spec.get("tools") or []
                )
                if tool is not None
            ]
            runners.append(
                ReActAgentRunner(
                    name=name,
                    description=description,
                    plan_description=agent_spec.get("plan_description"),
                    llm_provider=llm_provider,
                    tools=tools,
                    settings=settings,
                    system_prompt=agent_spec.get("system_prompt"),
                    model_alias=agent_spec.get("model", "main"),
                    temperature=agent_spec.get("temperature", 0.2),
                )
            )
        return runners

    def _instantiate_tool(self, tool_spec: dict[str, Any]) -> ToolProtocol | None:
        """
        Instantiate a tool from configuration specification.

        Returns:
            Tool instance or None if instantiation fails
        """
        tool_type = tool_spec.get("type")
        tool_module = tool_spec.get("module")
        tool_params = dict(tool_spec.get("params") or {})

        if not tool_type or not tool_module:
            self.logger.warning(
                "invalid_tool_spec",
                tool_type=tool_type,
                tool_module=tool_module,
                hint="Tool spec must include 'type' and 'module'",
            )
            return None

        try:
            module = importlib.import_module(tool_module)
            tool_class = getattr(module, tool_type)
            tool_instance = tool_class(**tool_params)
            self.logger.debug("tool_instantiated", tool_type=tool_type, tool_name=tool_instance.name)
            return tool_instance
        except Exception as e:
            self.logger.error(
                "tool_instantiation_failed",
                tool_type=tool_type,
                tool_module=tool_module,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
