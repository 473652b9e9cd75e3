"""
LLM Service for centralized LLM interactions.

This module provides the litellm-backed language-model transport used by
the planner and the ReAct agent runner. It supports model aliases,
model-aware parameter mapping, retry logic for non-streaming completions,
native tool calling and classified streaming chunks.
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import litellm
import structlog
import yaml

# Finish reasons passed through unchanged; anything else becomes "other"
KNOWN_FINISH_REASONS = {"stop", "length", "tool_calls", "content_filter"}


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 30
    retry_on_errors: list[str] = field(default_factory=list)


class LLMService:
    """
    Centralized service for LLM interactions with model-aware parameter mapping.

    Resolves model aliases from the YAML configuration, maps sampling
    parameters per model family and exposes both a retrying completion and
    a streaming completion.
    """

    def __init__(self, config_path: str = "configs/llm_config.yaml"):
        """
        Initialize LLMService with configuration.

        Args:
            config_path: Path to YAML configuration file

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        self.logger = structlog.get_logger().bind(component="llm_service")
        self._load_config(config_path)
        self._initialize_provider()

        self.logger.info(
            "llm_service_initialized",
            default_model=self.default_model,
            model_aliases=list(self.models.keys()),
        )

    def _load_config(self, config_path: str) -> None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"LLM config not found: {config_path}")

        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ValueError(f"Config file is empty or invalid: {config_path}")

        self.default_model = config.get("default_model", "main")
        self.models = config.get("models", {})
        self.model_params = config.get("model_params", {})
        self.default_params = config.get("default_params", {})

        if not self.models:
            raise ValueError("Config must define at least one model in 'models' section")

        retry_config = config.get("retry_policy", {})
        self.retry_policy = RetryPolicy(
            max_attempts=retry_config.get("max_attempts", 3),
            backoff_multiplier=retry_config.get("backoff_multiplier", 2.0),
            timeout=retry_config.get("timeout", 30),
            retry_on_errors=retry_config.get("retry_on_errors", []),
        )

        self.logging_config = config.get("logging", {})
        self.provider_config = config.get("providers", {})

    def _initialize_provider(self) -> None:
        """Check the provider credentials referenced by the configuration."""
        azure_config = self.provider_config.get("azure", {})
        if azure_config.get("enabled", False):
            api_key_env = azure_config.get("api_key_env", "AZURE_OPENAI_API_KEY")
            endpoint_env = azure_config.get("endpoint_url_env", "AZURE_OPENAI_ENDPOINT")
            api_key = os.getenv(api_key_env)
            endpoint = os.getenv(endpoint_env)
            if api_key:
                os.environ["AZURE_API_KEY"] = api_key
            if endpoint:
                os.environ["AZURE_API_BASE"] = endpoint
            if azure_config.get("api_version"):
                os.environ["AZURE_API_VERSION"] = azure_config["api_version"]
            if not api_key or not endpoint:
                self.logger.warning(
                    "azure_credentials_missing",
                    api_key_env=api_key_env,
                    endpoint_env=endpoint_env,
                )
            self.logger.info("provider_selected", provider="azure")
            return

        openai_config = self.provider_config.get("openai", {})
        api_key_env = openai_config.get("api_key_env", "OPENAI_API_KEY")
        if not os.getenv(api_key_env):
            self.logger.warning(
                "openai_api_key_missing",
                env_var=api_key_env,
                hint="Set environment variable for API access",
            )
        self.logger.info("provider_selected", provider="openai")

    def _resolve_model(self, model_alias: str | None) -> str:
        """
        Resolve a model alias to the provider model name.

        Raises:
            ValueError: If Azure is enabled and the alias has no deployment mapping
        """
        if model_alias is None:
            model_alias = self.default_model

        azure_config = self.provider_config.get("azure", {})
        if azure_config.get("enabled", False):
            deployment_mapping = azure_config.get("deployment_mapping", {})
            if model_alias not in deployment_mapping:
                raise ValueError(
                    f"Azure provider is enabled but no deployment mapping found for "
                    f"model alias '{model_alias}'"
                )
            return f"azure/{deployment_mapping[model_alias]}"

        return self.models.get(model_alias, model_alias)

    def _get_model_parameters(self, model: str) -> dict[str, Any]:
        if model in self.model_params:
            return self.model_params[model].copy()

        # Model family match (e.g. "gpt-4" matches "gpt-4-turbo")
        for model_key, params in self.model_params.items():
            if model.startswith(model_key):
                return params.copy()

        return self.default_params.copy()

    def _map_parameters_for_model(
        self, model: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Map parameters based on model family.

        Reasoning models (gpt-5) take ``effort`` instead of ``temperature``;
        other models keep the traditional sampling parameters.
        """
        if "gpt-5" in model.lower():
            mapped: dict[str, Any] = {}
            if "max_tokens" in params:
                mapped["max_tokens"] = params["max_tokens"]
            if "temperature" in params and "effort" not in params:
                temp = params["temperature"]
                if temp < 0.3:
                    mapped["effort"] = "low"
                elif temp <= 0.7:
                    mapped["effort"] = "medium"
                else:
                    mapped["effort"] = "high"
            if "effort" in params:
                mapped["effort"] = params["effort"]
            if "reasoning" in params:
                mapped["reasoning"] = params["reasoning"]
            return mapped

        allowed_params = [
            "temperature",
            "top_p",
            "max_tokens",
            "frequency_penalty",
            "presence_penalty",
        ]
        return {k: v for k, v in params.items() if k in allowed_params}

    def _prepare(self, model: str | None, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        actual_model = self._resolve_model(model)
        merged_params = {**self._get_model_parameters(actual_model), **kwargs}
        return actual_model, self._map_parameters_for_model(actual_model, merged_params)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Perform LLM completion with retry logic.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model alias or None (uses default)
            tools: Tool definitions in OpenAI function format
            tool_choice: "auto", "none" or "required"
            **kwargs: Additional parameters (temperature, max_tokens, etc.)

        Returns:
            Dict with:
            - success: bool
            - content: str | None (if successful)
            - tool_calls: list of OpenAI tool calls or None
            - usage: Dict with token counts
            - error: str (if failed)
        """
        actual_model, final_params = self._prepare(model, kwargs)
        if tools:
            final_params["tools"] = tools
            final_params["tool_choice"] = tool_choice or "auto"

        for attempt in range(self.retry_policy.max_attempts):
            try:
                start_time = time.time()
                self.logger.info(
                    "llm_completion_started",
                    model=actual_model,
                    attempt=attempt + 1,
                    message_count=len(messages),
                )

                response = await litellm.acompletion(
                    model=actual_model,
                    messages=messages,
                    timeout=self.retry_policy.timeout,
                    **final_params,
                )

                message = response.choices[0].message
                token_stats = self._usage_stats(getattr(response, "usage", {}))
                latency_ms = int((time.time() - start_time) * 1000)

                if self.logging_config.get("log_token_usage", True):
                    self.logger.info(
                        "llm_completion_success",
                        model=actual_model,
                        tokens=token_stats.get("total_tokens", 0),
                        latency_ms=latency_ms,
                    )

                return {
                    "success": True,
                    "content": message.content,
                    "tool_calls": self._extract_tool_calls(message),
                    "usage": token_stats,
                    "model": actual_model,
                    "latency_ms": latency_ms,
                }

            except Exception as e:
                error_type = type(e).__name__
                error_msg = str(e)

                should_retry = attempt < self.retry_policy.max_attempts - 1 and any(
                    err_type in error_type or err_type in error_msg
                    for err_type in self.retry_policy.retry_on_errors
                )

                if should_retry:
                    backoff_time = self.retry_policy.backoff_multiplier**attempt
                    self.logger.warning(
                        "llm_completion_retry",
                        model=actual_model,
                        error_type=error_type,
                        attempt=attempt + 1,
                        backoff_seconds=backoff_time,
                    )
                    await asyncio.sleep(backoff_time)
                else:
                    self.logger.error(
                        "llm_completion_failed",
                        model=actual_model,
                        error_type=error_type,
                        error=error_msg[:200],
                        attempts=attempt + 1,
                    )
                    return {
                        "success": False,
                        "error": error_msg,
                        "error_type": error_type,
                        "model": actual_model,
                    }

        return {
            "success": False,
            "error": "Max retries exceeded",
            "model": actual_model,
        }

    async def complete_stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a completion as classified chunks.

        Yields:
            {"type": "reasoning", "content": str}
            {"type": "token", "content": str}
            {"type": "finish", "finish_reason": str}
            {"type": "error", "message": str}

        Streams are not retried here; the caller owns the retry policy.
        """
        try:
            actual_model, final_params = self._prepare(model, kwargs)
            self.logger.info(
                "llm_stream_started", model=actual_model, message_count=len(messages)
            )
            response = await litellm.acompletion(
                model=actual_model,
                messages=messages,
                stream=True,
                timeout=self.retry_policy.timeout,
                **final_params,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = getattr(choice, "delta", None)
                if delta is not None:
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        yield {"type": "reasoning", "content": reasoning}
                    content = getattr(delta, "content", None)
                    if content:
                        yield {"type": "token", "content": content}
                if getattr(choice, "finish_reason", None):
                    yield {
                        "type": "finish",
                        "finish_reason": self._map_finish_reason(choice.finish_reason),
                    }
        except Exception as e:
            self.logger.error(
                "llm_stream_failed",
                error=str(e)[:200],
                error_type=type(e).__name__,
            )
            yield {"type": "error", "message": str(e)}

    @staticmethod
    def _map_finish_reason(finish_reason: str) -> str:
        if finish_reason == "function_call":
            return "tool_calls"
        return finish_reason if finish_reason in KNOWN_FINISH_REASONS else "other"

    @staticmethod
    def _usage_stats(usage: Any) -> dict[str, Any]:
        if isinstance(usage, dict):
            return usage
        return {
            "total_tokens": getattr(usage, "total_tokens", 0),
            "prompt_tokens": getattr(usage, "prompt_tokens", 0),
            "completion_tokens": getattr(usage, "completion_tokens", 0),
        }

    @staticmethod
    def _extract_tool_calls(message: Any) -> list[dict[str, Any]] | None:
        tool_calls = getattr(message, "tool_calls", None)
        if not tool_calls:
            return None
        return [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.function.name,
                    "arguments": tc.function.arguments or "{}",
                },
            }
            for tc in tool_calls
        ]
