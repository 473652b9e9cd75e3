"""
Configuration management for the orchestrator.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


class OrchestratorSettings(BaseSettings):
    """Orchestrator settings with environment variable support."""

    # Execution
    agent_parallel: bool = Field(
        default=False, description="Run the agents of a parallel node concurrently"
    )
    dynamic_replan: bool = Field(
        default=False, description="Let agents trigger re-planning between nodes"
    )

    # Planning
    plan_max_retries: int = Field(default=3, ge=0, description="Retries per plan call")
    plan_retry_delay: float = Field(
        default=1.0, ge=0, description="Seconds to wait before a plan retry"
    )
    plan_max_tokens: int = Field(default=8192, gt=0, description="Plan completion token limit")
    plan_temperature: float = Field(default=0.7, ge=0, description="Plan sampling temperature")
    planner_model: str = Field(default="main", description="Model alias used for planning")

    # Pause handling
    pause_poll_interval: float = Field(
        default=0.5, gt=0, description="Upper bound in seconds between pause re-checks"
    )

    # Reference agent runner
    max_react_steps: int = Field(default=100, gt=0, description="ReAct loop step limit")
    max_consecutive_errors: int = Field(
        default=10, gt=0, description="Consecutive tool failures before an agent gives up"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = {
        "env_file": ".env",
        "env_prefix": "PLANGRAPH_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> "OrchestratorSettings":
        """Load settings from a YAML configuration file."""
        config_path = Path(config_path)
        if not config_path.exists():
            return cls(**overrides)

        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**{**config_data, **overrides})

    def save_to_file(self, config_path: Path) -> None:
        """Save settings to a YAML configuration file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, indent=2)
