"""
Unit tests for LLMService.

Tests cover:
- Configuration loading and model alias resolution
- Parameter mapping (GPT-4 vs GPT-5)
- complete(): success, tool calls, retry logic, failures
- complete_stream(): chunk classification and finish reason mapping
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from plangraph.infrastructure.llm.llm_service import LLMService


@pytest.fixture
def mock_config(tmp_path):
    """Create temporary config file."""
    config_content = """
default_model: "main"
models:
  main: "gpt-4.1"
  powerful: "gpt-5"
model_params:
  gpt-4.1:
    temperature: 0.2
    max_tokens: 2000
  gpt-5:
    effort: "medium"
    max_tokens: 4000
default_params:
  temperature: 0.7
  max_tokens: 1000
retry_policy:
  max_attempts: 3
  backoff_multiplier: 2
  timeout: 30
  retry_on_errors:
    - "RateLimitError"
providers:
  openai:
    api_key_env: "OPENAI_API_KEY"
logging:
  log_token_usage: true
"""
    config_file = tmp_path / "llm_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return str(config_file)


def _response(content="Test response", tool_calls=None):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].message.tool_calls = tool_calls
    response.usage = {"total_tokens": 10, "prompt_tokens": 6, "completion_tokens": 4}
    return response


def _chunk(content=None, reasoning=None, finish_reason=None):
    delta = SimpleNamespace(content=content, reasoning_content=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


async def _stream(*chunks):
    for chunk in chunks:
        yield chunk


async def _collect(service, **kwargs):
    return [c async for c in service.complete_stream([{"role": "user", "content": "Hi"}], **kwargs)]


class TestLLMServiceConfiguration:
    """Test configuration loading and model resolution."""

    def test_init_loads_config(self, mock_config):
        """Test that initialization loads config successfully."""
        service = LLMService(config_path=mock_config)

        assert service.default_model == "main"
        assert service.models["main"] == "gpt-4.1"
        assert service.retry_policy.max_attempts == 3

    def test_missing_config_raises(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            LLMService(config_path="nonexistent.yaml")

    def test_empty_config_raises(self, tmp_path):
        """Test that empty config file raises ValueError."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("", encoding="utf-8")

        with pytest.raises(ValueError, match="empty or invalid"):
            LLMService(config_path=str(config_file))

    def test_missing_models_raises(self, tmp_path):
        """Test that config without models raises ValueError."""
        config_file = tmp_path / "no_models.yaml"
        config_file.write_text('default_model: "main"\n', encoding="utf-8")

        with pytest.raises(ValueError, match="at least one model"):
            LLMService(config_path=str(config_file))

    def test_resolve_model_alias(self, mock_config):
        """Test aliases resolve to model names and unknown names pass through."""
        service = LLMService(config_path=mock_config)

        assert service._resolve_model("main") == "gpt-4.1"
        assert service._resolve_model(None) == "gpt-4.1"
        assert service._resolve_model("claude-x") == "claude-x"

    def test_azure_resolution_uses_deployment_mapping(self, tmp_path, monkeypatch):
        """Test Azure aliases resolve to azure/<deployment>."""
        config_file = tmp_path / "azure.yaml"
        config_file.write_text(
            """
models:
  main: "gpt-4.1"
providers:
  azure:
    enabled: true
    api_version: "2024-10-21"
    deployment_mapping:
      main: "my-gpt41"
""",
            encoding="utf-8",
        )
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "key")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://x.openai.azure.com")
        service = LLMService(config_path=str(config_file))

        assert service._resolve_model("main") == "azure/my-gpt41"
        with pytest.raises(ValueError, match="no deployment mapping"):
            service._resolve_model("fast")


class TestParameterMapping:
    """Test model-aware parameter mapping."""

    def test_gpt4_keeps_sampling_parameters(self, mock_config):
        """Test traditional models keep temperature and drop unknown keys."""
        service = LLMService(config_path=mock_config)

        mapped = service._map_parameters_for_model(
            "gpt-4.1", {"temperature": 0.2, "max_tokens": 10, "effort": "low"}
        )

        assert mapped == {"temperature": 0.2, "max_tokens": 10}

    @pytest.mark.parametrize(
        "temperature,effort", [(0.1, "low"), (0.5, "medium"), (0.7, "medium"), (0.9, "high")]
    )
    def test_gpt5_temperature_maps_to_effort(self, mock_config, temperature, effort):
        """Test reasoning models receive effort instead of temperature."""
        service = LLMService(config_path=mock_config)

        mapped = service._map_parameters_for_model("gpt-5", {"temperature": temperature})

        assert mapped == {"effort": effort}

    def test_model_family_match(self, mock_config):
        """Test parameters of a model family apply to its variants."""
        service = LLMService(config_path=mock_config)

        assert service._get_model_parameters("gpt-4.1-mini")["max_tokens"] == 2000
        assert service._get_model_parameters("other")["max_tokens"] == 1000


@pytest.mark.asyncio
class TestComplete:
    """Test complete()."""

    async def test_successful_completion(self, mock_config):
        """Test successful LLM completion."""
        service = LLMService(config_path=mock_config)

        with patch(
            "litellm.acompletion", new_callable=AsyncMock, return_value=_response()
        ) as mock_acompletion:
            result = await service.complete(
                messages=[{"role": "user", "content": "Hello"}], model="main", temperature=0.5
            )

        assert result["success"] is True
        assert result["content"] == "Test response"
        assert result["tool_calls"] is None
        assert result["usage"]["total_tokens"] == 10
        kwargs = mock_acompletion.await_args.kwargs
        assert kwargs["model"] == "gpt-4.1"
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 2000
        assert "tools" not in kwargs

    async def test_tool_calls_are_extracted(self, mock_config):
        """Test native tool calls are returned in OpenAI format."""
        service = LLMService(config_path=mock_config)
        tool_call = SimpleNamespace(
            id="call_1", function=SimpleNamespace(name="search", arguments='{"q": "x"}')
        )
        tools = [{"type": "function", "function": {"name": "search"}}]

        with patch(
            "litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_response(content=None, tool_calls=[tool_call]),
        ) as mock_acompletion:
            result = await service.complete(
                messages=[{"role": "user", "content": "Find x"}], tools=tools
            )

        assert result["tool_calls"] == [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "search", "arguments": '{"q": "x"}'},
            }
        ]
        assert mock_acompletion.await_args.kwargs["tools"] == tools
        assert mock_acompletion.await_args.kwargs["tool_choice"] == "auto"

    async def test_retry_on_rate_limit(self, mock_config):
        """Test retryable errors are retried with backoff."""
        service = LLMService(config_path=mock_config)
        call_count = 0

        async def mock_acompletion(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise Exception("RateLimitError: Too many requests")
            return _response("Success")

        with patch("litellm.acompletion", side_effect=mock_acompletion), patch(
            "asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            result = await service.complete(messages=[{"role": "user", "content": "Test"}])

        assert result["success"] is True
        assert call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]

    async def test_no_retry_on_non_retryable_error(self, mock_config):
        """Test that non-retryable errors fail immediately."""
        service = LLMService(config_path=mock_config)
        call_count = 0

        async def mock_acompletion(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            raise ValueError("Invalid input")

        with patch("litellm.acompletion", side_effect=mock_acompletion):
            result = await service.complete(messages=[{"role": "user", "content": "Test"}])

        assert result["success"] is False
        assert result["error"] == "Invalid input"
        assert result["error_type"] == "ValueError"
        assert call_count == 1


@pytest.mark.asyncio
class TestCompleteStream:
    """Test complete_stream()."""

    async def test_classifies_chunks(self, mock_config):
        """Test reasoning, token and finish chunks are classified."""
        service = LLMService(config_path=mock_config)
        stream = _stream(
            _chunk(reasoning="thinking"),
            _chunk(content="<root>"),
            _chunk(content="</root>"),
            _chunk(finish_reason="stop"),
        )

        with patch(
            "litellm.acompletion", new_callable=AsyncMock, return_value=stream
        ) as mock_acompletion:
            chunks = await _collect(service, model="main", max_tokens=50)

        assert chunks == [
            {"type": "reasoning", "content": "thinking"},
            {"type": "token", "content": "<root>"},
            {"type": "token", "content": "</root>"},
            {"type": "finish", "finish_reason": "stop"},
        ]
        kwargs = mock_acompletion.await_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["max_tokens"] == 50

    @pytest.mark.parametrize(
        "raw,mapped",
        [
            ("length", "length"),
            ("content_filter", "content_filter"),
            ("function_call", "tool_calls"),
            ("eos", "other"),
        ],
    )
    async def test_finish_reason_mapping(self, mock_config, raw, mapped):
        """Test provider finish reasons map onto the known set."""
        service = LLMService(config_path=mock_config)

        with patch(
            "litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_stream(_chunk(finish_reason=raw)),
        ):
            chunks = await _collect(service)

        assert chunks == [{"type": "finish", "finish_reason": mapped}]

    async def test_errors_become_error_chunks(self, mock_config):
        """Test transport failures are reported as an error chunk."""
        service = LLMService(config_path=mock_config)

        with patch(
            "litellm.acompletion",
            new_callable=AsyncMock,
            side_effect=ConnectionError("connection reset"),
        ):
            chunks = await _collect(service)

        assert chunks == [{"type": "error", "message": "connection reset"}]
