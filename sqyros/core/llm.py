"""LLM gateway: one chat completion at a given tier and token budget."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Callable, Sequence

import structlog
from google.genai import errors as genai_errors
from langchain_core.exceptions import LangChainException
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_google_genai.chat_models import ChatGoogleGenerativeAIError

from sqyros.core.errors import UpstreamError
from sqyros.core.settings import Settings
from sqyros.models.routing_models import ConversationTurn, ModelTier

log = structlog.get_logger(__name__)

# Provider server errors subclass neither RuntimeError nor ChatGoogleGenerativeAIError.
_PROVIDER_ERRORS = (
    ChatGoogleGenerativeAIError,
    genai_errors.APIError,
    LangChainException,
    TimeoutError,
    ConnectionError,
    OSError,
    RuntimeError,
    ValueError,
    TypeError,
)


def _extract_llm_content(content: Any) -> str | None:
    """Extract text from an LLM response.

    Gemini 3 models return a list of content blocks
    ([{'type': 'text', 'text': 'Hello', 'extras': {...}}]); older models return a
    plain string. Anything else yields None.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif isinstance(block, str):
                texts.append(block)
        return "\n".join(texts)
    return None


def to_langchain_messages(system_prompt: str | None, turns: Sequence[ConversationTurn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    for turn in turns:
        role = turn.role.lower()
        if role == "assistant":
            messages.append(AIMessage(content=turn.content))
        elif role == "system":
            messages.append(SystemMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    return messages


@dataclass(frozen=True)
class LLMCompletion:
    content: str
    model: str
    model_tier: ModelTier
    input_tokens: int
    output_tokens: int
    latency_ms: float = 0.0


@dataclass(frozen=True)
class LLMGatewayConfig:
    google_api_key: str | None
    fast_model: str
    advanced_model: str
    timeout_s: float = 120.0
    max_retries: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMGatewayConfig":
        return cls(
            google_api_key=settings.GOOGLE_API_KEY,
            fast_model=settings.FAST_MODEL,
            advanced_model=settings.ADVANCED_MODEL,
            timeout_s=settings.LLM_TIMEOUT_S,
            max_retries=settings.LLM_MAX_RETRIES,
        )

    def model_for(self, tier: ModelTier) -> str:
        return self.advanced_model if tier == ModelTier.ADVANCED else self.fast_model


LLMFactory = Callable[[str, int], Any]


class LLMGateway:
    """Sends one completion request and reports token usage.

    Usage is only reported for calls that returned; a failure before a response
    raises `UpstreamError` and nothing is booked.
    """

    def __init__(self, config: LLMGatewayConfig, *, llm_factory: LLMFactory | None = None) -> None:
        self._config = config
        self._llm_factory = llm_factory or self._default_factory
        self._clients: dict[tuple[str, int], Any] = {}

    def _default_factory(self, model: str, max_output_tokens: int) -> Any:
        if not self._config.google_api_key:
            raise UpstreamError("GOOGLE_API_KEY is not configured", public_message="Model provider not configured")
        # Vendor guidance: Gemini 3 models recommend keeping temperature at default 1.0.
        temperature = 1.0 if model.startswith("gemini-3") else 0.3
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=self._config.google_api_key,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout=self._config.timeout_s,
            max_retries=self._config.max_retries,
        )

    def _client(self, model: str, max_output_tokens: int) -> Any:
        key = (model, max_output_tokens)
        client = self._clients.get(key)
        if client is None:
            client = self._llm_factory(model, max_output_tokens)
            self._clients[key] = client
        return client

    async def complete(
        self,
        tier: ModelTier,
        max_output_tokens: int,
        system_prompt: str | None,
        turns: Sequence[ConversationTurn],
    ) -> LLMCompletion:
        model = self._config.model_for(tier)
        messages = to_langchain_messages(system_prompt, turns)

        start = time.perf_counter()
        try:
            resp = await self._client(model, max_output_tokens).ainvoke(messages)
        except UpstreamError:
            raise
        except _PROVIDER_ERRORS as e:
            log.error("llm_call_failed", model=model, model_tier=tier.value, error=str(e)[:500], exc_info=True)
            raise UpstreamError(f"LLM call to {model} failed: {e}") from e
        latency_ms = (time.perf_counter() - start) * 1000.0

        content = _extract_llm_content(getattr(resp, "content", None))
        if content is None:
            log.error("llm_call_failed", model=model, model_tier=tier.value, error="non_text_content")
            raise UpstreamError(f"LLM call to {model} returned non-text content")

        usage = getattr(resp, "usage_metadata", None) or {}
        completion = LLMCompletion(
            content=content,
            model=model,
            model_tier=tier,
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            latency_ms=latency_ms,
        )
        log.info(
            "llm_call_completed",
            model=model,
            model_tier=tier.value,
            max_output_tokens=max_output_tokens,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            latency_ms=round(latency_ms, 1),
        )
        return completion
