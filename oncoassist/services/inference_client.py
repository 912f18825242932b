"""
Client for the remote text-generation endpoint.

Wraps an OpenAI-compatible chat completions API and returns raw text. The
client never retries: transport failures surface as ``TransportError`` and
unusable envelopes as ``MalformedResponseError`` so the caller decides
whether to try again.
"""

import time
from collections.abc import Sequence
from typing import Any

import httpx
from openai import (
    APIConnectionError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
)
from pydantic import BaseModel, Field

from oncoassist.config.config import Settings, get_settings
from oncoassist.config.logging_config import get_logger
from oncoassist.models.models import ChatTurn
from oncoassist.services.errors import (
    InferenceConfigurationError,
    MalformedResponseError,
    TransportError,
)

logger = get_logger(__name__)


CHAT_PREAMBLE = (
    "You are an oncology assistant helping doctors with cancer cases. "
    "Provide concise, clinically relevant responses about cancer cases, diagnosis, prognosis, "
    "treatment options and radiation therapy planning. Always stay professional and ethical, "
    "reference scientific evidence when available, and state clearly when a question needs "
    "the treating clinician's judgement."
)


class GenerationConfig(BaseModel):
    """Sampling parameters for one generation call."""
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_output_tokens: int | None = Field(default=None, ge=1)


class InferenceClient:
    """
    Thin async client for the inference endpoint.

    The credential is injected by the caller; there is no default. Each call
    is independent, so one client may serve many concurrent pipeline runs.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        timeout: float = 60.0,
        default_config: GenerationConfig | None = None,
        chat_model: str | None = None,
        chat_config: GenerationConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Bearer credential for the endpoint.
            model: Model used for structured generation.
            base_url: Endpoint base URL, or None for the SDK default.
            timeout: Default per-call timeout in seconds.
            default_config: Sampling parameters for structured generation.
            chat_model: Model for chat turns (defaults to ``model``).
            chat_config: Sampling parameters for chat turns.
            http_client: Optional preconfigured HTTP client.

        Raises:
            InferenceConfigurationError: If no credential is supplied.
        """
        if not api_key:
            raise InferenceConfigurationError("An API key is required to call the inference endpoint")

        self.model = model
        self.chat_model = chat_model or model
        self.default_config = default_config or GenerationConfig()
        self.chat_config = chat_config or self.default_config
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )

    async def generate(
        self,
        prompt: str,
        config: GenerationConfig | None = None,
        *,
        system: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """
        Send a single prompt and return the first candidate's text.

        Args:
            prompt: The task prompt.
            config: Sampling overrides for this call.
            system: Optional system instruction.
            timeout: Per-call timeout in seconds.

        Raises:
            TransportError: Network failure, timeout or non-success status.
            MalformedResponseError: No candidate text in the response.
        """
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        return await self._complete(
            self.model,
            messages,
            config or self.default_config,
            timeout,
        )

    async def chat(
        self,
        message: str,
        history: Sequence[ChatTurn] = (),
        config: GenerationConfig | None = None,
        *,
        preamble: str = CHAT_PREAMBLE,
        timeout: float | None = None,
    ) -> str:
        """
        Send a chat message with the prior transcript as context.

        Args:
            message: The new clinician message.
            history: Prior turns, oldest first.
            config: Sampling overrides for this call.
            preamble: System instruction for the assistant.
            timeout: Per-call timeout in seconds.
        """
        return await self._complete(
            self.chat_model,
            build_chat_messages(message, history, preamble),
            config or self.chat_config,
            timeout,
        )

    async def close(self) -> None:
        await self._client.close()

    async def _complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        config: GenerationConfig,
        timeout: float | None,
    ) -> str:
        kwargs: dict[str, Any] = {}
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.max_output_tokens is not None:
            kwargs["max_tokens"] = config.max_output_tokens
        if timeout is not None:
            kwargs["timeout"] = timeout

        start_time = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                **kwargs,
            )
        except APIResponseValidationError as exc:
            raise MalformedResponseError(f"Unreadable response envelope: {exc}") from exc
        except APITimeoutError as exc:
            logger.warning("Inference call timed out", model=model, timeout=timeout)
            raise TransportError("Inference endpoint timed out") from exc
        except APIConnectionError as exc:
            logger.warning("Inference endpoint unreachable", model=model, error=str(exc))
            raise TransportError(f"Inference endpoint unreachable: {exc}") from exc
        except APIStatusError as exc:
            logger.warning(
                "Inference endpoint returned an error status",
                model=model,
                status_code=exc.status_code,
            )
            raise TransportError(
                f"Inference endpoint returned status {exc.status_code}",
                status_code=exc.status_code,
            ) from exc
        except OpenAIError as exc:
            raise TransportError(f"Inference call failed: {exc}") from exc

        text = first_candidate_text(response)
        logger.info(
            "Inference call completed",
            model=model,
            response_length=len(text),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return text


def build_chat_messages(
    message: str,
    history: Sequence[ChatTurn],
    preamble: str = CHAT_PREAMBLE,
) -> list[dict[str, str]]:
    """Map a transcript onto the endpoint's native chat roles."""
    messages = [{"role": "system", "content": preamble}]
    for turn in history:
        messages.append({
            "role": "user" if turn.is_user else "assistant",
            "content": turn.text,
        })
    messages.append({"role": "user", "content": message})
    return messages


def first_candidate_text(response: Any) -> str:
    """
    Pull the first candidate's text out of a completion envelope.

    Raises:
        MalformedResponseError: If there is no candidate or no text content.
    """
    choices = getattr(response, "choices", None)
    if not choices:
        raise MalformedResponseError("Response contains no candidates")

    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponseError("First candidate has no text content")
    return content


def create_inference_client(settings: Settings | None = None) -> InferenceClient:
    """
    Build a client from application settings.

    Raises:
        InferenceConfigurationError: If ``LLM_API_KEY`` is not set.
    """
    settings = settings or get_settings()
    if not settings.llm_configured:
        raise InferenceConfigurationError(
            "LLM_API_KEY is not configured. Set it before requesting AI generations."
        )
    return InferenceClient(
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout_seconds,
        default_config=GenerationConfig(
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_tokens,
        ),
        chat_model=settings.chat_model,
        chat_config=GenerationConfig(
            temperature=settings.chat_temperature,
            max_output_tokens=settings.llm_max_tokens,
        ),
    )


# Singleton instance
_client_instance: InferenceClient | None = None


def get_inference_client() -> InferenceClient:
    """Get the singleton inference client."""
    global _client_instance
    if _client_instance is None:
        _client_instance = create_inference_client()
    return _client_instance


async def close_inference_client() -> None:
    """Release the singleton client's connection pool and reset it."""
    global _client_instance
    if _client_instance is not None:
        await _client_instance.close()
        logger.info("Inference client closed")
    _client_instance = None
