"""Unit tests for the inference client.

Tests the OpenAI-compatible chat completion wrapper used for AI replies.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from autoreply_core.config import Settings
from autoreply_core.domain.services.inference import (
    ChatMessage,
    ConnectionInferenceError,
    InferenceClient,
    InferenceConfig,
    InferenceError,
    ModelInfo,
    ResponseInferenceError,
    TimeoutInferenceError,
    get_inference_client,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def inference_config():
    """Create a test inference configuration."""
    return InferenceConfig(
        base_url="http://localhost:8080",
        model_name="llama-3.2-8b",
        timeout=30.0,
        max_tokens=150,
        temperature=0.7,
    )


def completion(content="Hello!", finish_reason="stop", prompt_tokens=10, completion_tokens=5):
    return {
        "choices": [{"message": {"content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


# =============================================================================
# CONFIG TESTS
# =============================================================================


class TestInferenceConfig:
    """Tests for InferenceConfig dataclass."""

    def test_config_with_defaults(self):
        config = InferenceConfig(base_url="http://localhost:8080")

        assert config.model_name == "default"
        assert config.timeout == 30.0
        assert config.max_tokens == 150
        assert config.temperature == 0.7
        assert config.api_key is None


class TestModelInfo:
    """Tests for ModelInfo."""

    def test_to_dict_merges_extra(self):
        info = ModelInfo(
            model_name="m",
            temperature=0.5,
            max_tokens=100,
            input_tokens=12,
            output_tokens=7,
            latency_ms=40,
            extra={"route": "comment"},
        )

        data = info.to_dict()

        assert data["model_name"] == "m"
        assert data["input_tokens"] == 12
        assert data["route"] == "comment"


# =============================================================================
# CLIENT TESTS
# =============================================================================


class TestInferenceClient:
    """Tests for InferenceClient."""

    async def test_chat_sends_messages(self, inference_config):
        """chat() should send role/content dicts to the endpoint."""
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = completion()

            response = await client.chat(
                [
                    ChatMessage(role="system", content="You answer for Acme."),
                    ChatMessage(role="user", content="Hi!"),
                ]
            )

            assert response.content == "Hello!"
            assert response.finish_reason == "stop"
            request_messages = mock_request.call_args[1]["messages"]
            assert request_messages == [
                {"role": "system", "content": "You answer for Acme."},
                {"role": "user", "content": "Hi!"},
            ]

    async def test_chat_uses_config_defaults(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = completion()

            await client.chat([ChatMessage(role="user", content="Hi!")])

            assert mock_request.call_args[1]["temperature"] == 0.7
            assert mock_request.call_args[1]["max_tokens"] == 150

    async def test_chat_with_max_tokens_override(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = completion()

            response = await client.chat(
                [ChatMessage(role="user", content="Hi!")], max_tokens=100
            )

            assert mock_request.call_args[1]["max_tokens"] == 100
            assert response.model_info.max_tokens == 100

    async def test_chat_returns_model_info(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = completion(prompt_tokens=15, completion_tokens=8)

            response = await client.chat([ChatMessage(role="user", content="Hi!")])

            assert response.model_info.model_name == "llama-3.2-8b"
            assert response.model_info.input_tokens == 15
            assert response.model_info.output_tokens == 8
            assert response.model_info.latency_ms >= 0

    async def test_chat_missing_usage_defaults_to_zero(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = {"choices": [{"message": {"content": "ok"}}]}

            response = await client.chat([ChatMessage(role="user", content="Hi!")])

            assert response.content == "ok"
            assert response.finish_reason == "unknown"
            assert response.model_info.input_tokens == 0

    async def test_chat_no_choices_raises(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = {"choices": []}

            with pytest.raises(ResponseInferenceError):
                await client.chat([ChatMessage(role="user", content="Hi!")])

    async def test_chat_server_error_raises(self, inference_config):
        """An error object in the body should raise ResponseInferenceError."""
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.return_value = {"error": {"message": "model overloaded"}}

            with pytest.raises(ResponseInferenceError, match="model overloaded"):
                await client.chat([ChatMessage(role="user", content="Hi!")])

    async def test_chat_propagates_request_errors(self, inference_config):
        client = InferenceClient(config=inference_config)

        with patch.object(client, "_make_request") as mock_request:
            mock_request.side_effect = TimeoutInferenceError("Timeout error")

            with pytest.raises(InferenceError):
                await client.chat([ChatMessage(role="user", content="Hi!")])


class TestMakeRequest:
    """Tests for HTTP error mapping in _make_request."""

    def _client_with_http(self, inference_config, http_client):
        client = InferenceClient(config=inference_config)
        client._http_client = http_client
        return client

    async def test_posts_completion_payload(self, inference_config):
        http_client = AsyncMock()
        response = MagicMock()
        response.json.return_value = completion()
        http_client.post.return_value = response
        client = self._client_with_http(inference_config, http_client)

        result = await client._make_request(
            messages=[{"role": "user", "content": "Hi"}], temperature=0.2, max_tokens=50
        )

        assert result["choices"][0]["message"]["content"] == "Hello!"
        args, kwargs = http_client.post.call_args
        assert args[0] == "/v1/chat/completions"
        assert kwargs["json"]["model"] == "llama-3.2-8b"
        assert kwargs["json"]["max_tokens"] == 50

    async def test_connect_error_mapped(self, inference_config):
        http_client = AsyncMock()
        http_client.post.side_effect = httpx.ConnectError("refused")
        client = self._client_with_http(inference_config, http_client)

        with pytest.raises(ConnectionInferenceError):
            await client._make_request(messages=[], temperature=0.7, max_tokens=10)

    async def test_timeout_mapped(self, inference_config):
        http_client = AsyncMock()
        http_client.post.side_effect = httpx.ReadTimeout("slow")
        client = self._client_with_http(inference_config, http_client)

        with pytest.raises(TimeoutInferenceError):
            await client._make_request(messages=[], temperature=0.7, max_tokens=10)

    async def test_non_json_mapped(self, inference_config):
        http_client = AsyncMock()
        response = MagicMock()
        response.json.side_effect = ValueError("Expecting value")
        http_client.post.return_value = response
        client = self._client_with_http(inference_config, http_client)

        with pytest.raises(ResponseInferenceError):
            await client._make_request(messages=[], temperature=0.7, max_tokens=10)

    async def test_close_releases_client(self, inference_config):
        http_client = AsyncMock()
        client = self._client_with_http(inference_config, http_client)

        await client.close()

        http_client.aclose.assert_awaited_once()
        assert client._http_client is None


class TestGetInferenceClient:
    """Tests for the settings factory."""

    def test_requires_inference_url(self):
        settings = Settings(_env_file=None, database_url="sqlite://", inference_url=None)
        with pytest.raises(RuntimeError):
            get_inference_client(settings)

    def test_builds_from_settings(self):
        settings = Settings(
            _env_file=None,
            database_url="sqlite://",
            inference_url="http://llm:8080",
            inference_model="qwen",
            inference_api_key="sk-test",
        )

        client = get_inference_client(settings)

        assert client.config.base_url == "http://llm:8080"
        assert client.config.model_name == "qwen"
        assert client.config.api_key == "sk-test"
