"""
LLM provider adapters.

Every backend is reached through the same call:

    ProviderAdapter.invoke(prompt, config) -> RawModelResponse

Each provider makes exactly one attempt per call. Retries and fallback
belong to the summarization service.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from fastapi import status
from openai import AsyncOpenAI

from pr_summarizer.models.domain import ProviderConfig, ProviderKind, RawModelResponse, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4"
DEFAULT_CLAUDE_MODEL = "claude-3-haiku-20240307"


class ProviderErrorKind(str, Enum):
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    EMPTY_RESPONSE = "empty_response"
    UNSUPPORTED = "unsupported"
    UPSTREAM_ERROR = "upstream_error"


_STATUS_CODES = {
    ProviderErrorKind.AUTH_FAILURE: status.HTTP_401_UNAUTHORIZED,
    ProviderErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ProviderErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ProviderErrorKind.EMPTY_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ProviderErrorKind.UNSUPPORTED: status.HTTP_400_BAD_REQUEST,
    ProviderErrorKind.UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
}

_RETRYABLE = {
    ProviderErrorKind.RATE_LIMITED,
    ProviderErrorKind.TIMEOUT,
    ProviderErrorKind.EMPTY_RESPONSE,
    ProviderErrorKind.UPSTREAM_ERROR,
}


class ProviderError(Exception):
    """Failure of a single provider call."""

    def __init__(self, kind: ProviderErrorKind, message: str, provider: Optional[str] = None):
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = _STATUS_CODES[kind]
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE


def _kind_for_status(status_code: int) -> ProviderErrorKind:
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH_FAILURE
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMITED
    if status_code in (408, 504):
        return ProviderErrorKind.TIMEOUT
    return ProviderErrorKind.UPSTREAM_ERROR


class BaseProvider(ABC):
    """
    Shared call path for all providers.

    Subclasses implement ``_call_api`` (one raw attempt) and
    ``is_configured``; timeout enforcement and empty-response detection
    live here so every backend behaves the same.
    """

    kind: ProviderKind

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the provider has the credentials it needs."""

    @abstractmethod
    async def _call_api(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        """Make a single API call. Raise ProviderError on failure."""

    async def invoke(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        try:
            response = await asyncio.wait_for(self._call_api(prompt, config), timeout=config.timeout)
        except asyncio.TimeoutError:
            raise ProviderError(
                ProviderErrorKind.TIMEOUT,
                f"{self.kind.value} call exceeded {config.timeout}s",
                provider=self.kind.value,
            )

        if not response.text or not response.text.strip():
            raise ProviderError(
                ProviderErrorKind.EMPTY_RESPONSE,
                f"{self.kind.value} returned empty response",
                provider=self.kind.value,
            )
        return response


class OpenAIProvider(BaseProvider):
    """Hosted chat-completion API."""

    kind = ProviderKind.OPENAI

    def __init__(self, api_key: str, base_url: Optional[str] = None, client=None):
        self.api_key = api_key
        # SDK retries are disabled; the summarization service owns retry policy
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.client is not None

    async def _call_api(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        model = config.model or DEFAULT_OPENAI_MODEL
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                timeout=config.timeout,
            )
        except openai.APITimeoutError as e:
            raise ProviderError(ProviderErrorKind.TIMEOUT, f"OpenAI request timed out: {e}", provider="openai")
        except openai.APIStatusError as e:
            raise ProviderError(_kind_for_status(e.status_code), f"OpenAI API error: {e}", provider="openai")
        except openai.APIError as e:
            raise ProviderError(ProviderErrorKind.UPSTREAM_ERROR, f"OpenAI API error: {e}", provider="openai")

        content = response.choices[0].message.content if response.choices else None
        usage = None
        if getattr(response, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return RawModelResponse(text=content or "", provider=self.kind.value, model=model, usage=usage)


class AnthropicProvider(BaseProvider):
    """Hosted message API."""

    kind = ProviderKind.ANTHROPIC

    def __init__(self, api_key: str, base_url: Optional[str] = None, client=None):
        self.api_key = api_key
        if client is None and api_key:
            client = AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0)
        self.client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.client is not None

    async def _call_api(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        model = config.model if (config.model or "").startswith("claude-") else DEFAULT_CLAUDE_MODEL
        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=config.timeout,
            )
        except anthropic.APITimeoutError as e:
            raise ProviderError(ProviderErrorKind.TIMEOUT, f"Claude request timed out: {e}", provider="anthropic")
        except anthropic.APIStatusError as e:
            raise ProviderError(_kind_for_status(e.status_code), f"Claude API error: {e}", provider="anthropic")
        except anthropic.APIError as e:
            raise ProviderError(ProviderErrorKind.UPSTREAM_ERROR, f"Claude API error: {e}", provider="anthropic")

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = None
        if getattr(response, "usage", None) is not None:
            prompt_tokens = response.usage.input_tokens or 0
            completion_tokens = response.usage.output_tokens or 0
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
        return RawModelResponse(text=text, provider=self.kind.value, model=model, usage=usage)


class OllamaProvider(BaseProvider):
    """Locally reachable Ollama completion endpoint."""

    kind = ProviderKind.OLLAMA

    def __init__(self, base_url: str, default_model: str = "llama2", transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _call_api(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        model = config.model or self.default_model
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=config.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException:
            raise ProviderError(ProviderErrorKind.TIMEOUT, "Ollama request timed out", provider="ollama")
        except httpx.RequestError as e:
            raise ProviderError(
                ProviderErrorKind.UPSTREAM_ERROR, f"Failed to connect to Ollama: {e}", provider="ollama"
            )

        if response.status_code != 200:
            raise ProviderError(
                _kind_for_status(response.status_code),
                f"Ollama API error: {response.status_code} {response.reason_phrase}",
                provider="ollama",
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(ProviderErrorKind.UPSTREAM_ERROR, "Ollama returned invalid JSON", provider="ollama")

        if not isinstance(data, dict):
            raise ProviderError(
                ProviderErrorKind.UPSTREAM_ERROR, "Ollama returned an unexpected payload", provider="ollama"
            )

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            prompt_tokens = data.get("prompt_eval_count", 0)
            completion_tokens = data.get("eval_count", 0)
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
        return RawModelResponse(text=data.get("response", ""), provider=self.kind.value, model=model, usage=usage)


class ProviderAdapter:
    """Uniform entry point over the configured provider backends."""

    def __init__(
        self,
        providers: Optional[Dict[ProviderKind, BaseProvider]] = None,
        cost_per_1k_prompt_tokens: float = 0.0,
        cost_per_1k_completion_tokens: float = 0.0,
    ):
        self.providers = dict(providers or {})
        self.cost_per_1k_prompt_tokens = cost_per_1k_prompt_tokens
        self.cost_per_1k_completion_tokens = cost_per_1k_completion_tokens

    @classmethod
    def from_settings(cls, settings) -> "ProviderAdapter":
        providers: Dict[ProviderKind, BaseProvider] = {}

        if settings.OPENAI_API_KEY:
            providers[ProviderKind.OPENAI] = OpenAIProvider(
                api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL
            )
            logger.info("OpenAI client initialized")

        if settings.ANTHROPIC_API_KEY:
            providers[ProviderKind.ANTHROPIC] = AnthropicProvider(
                api_key=settings.ANTHROPIC_API_KEY, base_url=settings.ANTHROPIC_BASE_URL
            )
            logger.info("Claude client initialized")

        if settings.OLLAMA_ENABLED:
            providers[ProviderKind.OLLAMA] = OllamaProvider(
                base_url=settings.OLLAMA_URL, default_model=settings.OLLAMA_MODEL
            )
            logger.info(f"Ollama endpoint configured at {settings.OLLAMA_URL}")

        adapter = cls(
            providers,
            cost_per_1k_prompt_tokens=settings.LLM_COST_PER_1K_PROMPT_TOKENS,
            cost_per_1k_completion_tokens=settings.LLM_COST_PER_1K_COMPLETION_TOKENS,
        )
        names = ", ".join(kind.value for kind in adapter.configured_providers()) or "none"
        logger.info(f"Provider adapter initialized with providers: {names}")
        return adapter

    def is_configured(self, kind: ProviderKind) -> bool:
        provider = self.providers.get(kind)
        return provider is not None and provider.is_configured

    def configured_providers(self) -> List[ProviderKind]:
        return [kind for kind in ProviderKind if self.is_configured(kind)]

    async def invoke(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        """
        Send a prompt to the backend selected by ``config.provider``.

        Args:
            prompt: Prompt text
            config: Provider selection and generation parameters

        Returns:
            RawModelResponse: Non-empty response text with call metadata

        Raises:
            ProviderError: On any failure of the single attempt
        """
        try:
            kind = ProviderKind.parse(config.provider)
        except ValueError:
            raise ProviderError(
                ProviderErrorKind.UNSUPPORTED,
                f"Unsupported LLM provider: {config.provider}",
                provider=str(config.provider),
            )

        if not self.is_configured(kind):
            raise ProviderError(
                ProviderErrorKind.AUTH_FAILURE,
                f"{kind.value} client not initialized. Please check your API key.",
                provider=kind.value,
            )

        response = await self.providers[kind].invoke(prompt, config)
        if response.usage is not None and response.usage.cost is None:
            response.usage.cost = self._estimate_cost(response.usage)
        return response

    def _estimate_cost(self, usage: TokenUsage) -> Optional[float]:
        if not self.cost_per_1k_prompt_tokens and not self.cost_per_1k_completion_tokens:
            return None
        cost = (
            usage.prompt_tokens / 1000 * self.cost_per_1k_prompt_tokens
            + usage.completion_tokens / 1000 * self.cost_per_1k_completion_tokens
        )
        return round(cost, 6)
