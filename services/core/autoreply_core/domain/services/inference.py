"""Inference client for reply generation.

Talks to any OpenAI-compatible ``/v1/chat/completions`` endpoint.

Usage:
    config = InferenceConfig(base_url="https://llm.internal")
    client = InferenceClient(config=config)

    messages = [
        ChatMessage(role="system", content="You answer for Acme Bakery."),
        ChatMessage(role="user", content='A customer commented: "Open today?"'),
    ]

    response = await client.chat(messages, max_tokens=100)
    print(response.content)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from autoreply_core.config import Settings, get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class InferenceError(Exception):
    """Base exception for inference errors."""

    pass


class ConnectionInferenceError(InferenceError):
    """Connection error during inference."""

    pass


class TimeoutInferenceError(InferenceError):
    """Timeout during inference."""

    pass


class ResponseInferenceError(InferenceError):
    """Invalid or malformed response from inference server."""

    pass


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class InferenceConfig:
    """Configuration for the inference client.

    Attributes:
        base_url: URL of the inference server
        model_name: Name of the model to use
        timeout: Request timeout in seconds
        max_tokens: Default maximum tokens to generate
        temperature: Sampling temperature
        api_key: Optional bearer token
    """

    base_url: str
    model_name: str = "default"
    timeout: float = 30.0
    max_tokens: int = 150
    temperature: float = 0.7
    api_key: Optional[str] = None


@dataclass
class ChatMessage:
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ModelInfo:
    """Model and usage details of one completion, stored in audit metadata."""

    model_name: str
    temperature: float
    max_tokens: int
    input_tokens: int
    output_tokens: int
    latency_ms: int
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "model_name": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "latency_ms": self.latency_ms,
            **self.extra,
        }


@dataclass
class ChatResponse:
    content: str
    model_info: ModelInfo
    finish_reason: str


# =============================================================================
# INFERENCE CLIENT
# =============================================================================


class InferenceClient:
    """Client for an OpenAI-compatible chat completion API."""

    def __init__(self, config: InferenceConfig):
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            headers = {}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(
        self,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
    ) -> dict:
        """POST a chat completion request.

        Raises:
            InferenceError: On connection, timeout, or HTTP errors
        """
        client = await self._get_http_client()

        payload = {
            "model": self.config.model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        # Prompt text carries customer content, only sizes are logged
        logger.debug(
            "LLM request",
            extra={
                "model": self.config.model_name,
                "message_count": len(messages),
                "prompt_chars": sum(len(m.get("content") or "") for m in messages),
            },
        )

        try:
            response = await client.post("/v1/chat/completions", json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.ConnectError as e:
            raise ConnectionInferenceError(f"Connection error: {e}") from e
        except httpx.TimeoutException as e:
            raise TimeoutInferenceError(f"Timeout error: {e}") from e
        except httpx.HTTPStatusError as e:
            raise InferenceError(f"HTTP error: {e}") from e
        except ValueError as e:
            raise ResponseInferenceError(f"Response is not JSON: {e}") from e

    async def chat(
        self,
        messages: list[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        """Send a chat request to the LLM.

        Args:
            messages: List of ChatMessage objects
            temperature: Override default temperature
            max_tokens: Override default max_tokens

        Returns:
            ChatResponse with content and model info

        Raises:
            InferenceError: On errors during inference
        """
        temp = temperature if temperature is not None else self.config.temperature
        tokens = max_tokens if max_tokens is not None else self.config.max_tokens

        message_dicts = [{"role": m.role, "content": m.content} for m in messages]

        start_time = time.monotonic()
        response_data = await self._make_request(
            messages=message_dicts,
            temperature=temp,
            max_tokens=tokens,
        )
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        if not isinstance(response_data, dict):
            raise ResponseInferenceError("Invalid response: not an object")

        if "error" in response_data:
            error_info = response_data["error"]
            if isinstance(error_info, dict):
                error_msg = error_info.get("message", str(error_info))
            else:
                error_msg = str(error_info)
            logger.error(f"LLM server returned error: {error_msg}")
            raise ResponseInferenceError(f"LLM server error: {error_msg}")

        try:
            choices = response_data.get("choices", [])
            if not choices:
                raise ResponseInferenceError("Invalid response: no choices")

            choice = choices[0]
            message = choice.get("message", {})
            content = message.get("content") or ""
            finish_reason = choice.get("finish_reason", "unknown")

            usage = response_data.get("usage") or {}
            input_tokens = usage.get("prompt_tokens", 0)
            output_tokens = usage.get("completion_tokens", 0)

        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ResponseInferenceError(f"Invalid response format: {e}") from e

        model_info = ModelInfo(
            model_name=self.config.model_name,
            temperature=temp,
            max_tokens=tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=elapsed_ms,
        )

        return ChatResponse(
            content=content,
            model_info=model_info,
            finish_reason=finish_reason,
        )


# =============================================================================
# FACTORY FUNCTION
# =============================================================================


def get_inference_client(settings: Optional[Settings] = None) -> InferenceClient:
    """Create an InferenceClient from settings.

    Raises:
        RuntimeError: If inference_url is not configured.
    """
    settings = settings or get_settings()

    if not settings.inference_url:
        raise RuntimeError("INFERENCE_URL not configured")

    config = InferenceConfig(
        base_url=settings.inference_url,
        model_name=settings.inference_model or "default",
        timeout=settings.inference_timeout,
        api_key=settings.inference_api_key,
    )

    return InferenceClient(config=config)


# =============================================================================
# EXPORTS
# =============================================================================


__all__ = [
    "InferenceClient",
    "InferenceConfig",
    "ChatMessage",
    "ChatResponse",
    "ModelInfo",
    "InferenceError",
    "ConnectionInferenceError",
    "TimeoutInferenceError",
    "ResponseInferenceError",
    "get_inference_client",
]
