"""Inference endpoint adapters.

Supports Google (Gemini, default), OpenAI (and any OpenAI-compatible
server such as Ollama), and Anthropic (Claude).  Every adapter exposes one
coroutine::

    raw = await endpoint.invoke(model, prompt, GenerationConfig(...))

and maps its transport / SDK failures onto the repolens error taxonomy so
the retry primitive can treat all providers the same way:

- HTTP 429                     → ``RateLimitError`` (with ``retry_after``)
- HTTP 5xx, timeouts, network  → ``TransientError``
- other HTTP 4xx               → ``RequestError``

Usage::

    from repolens.llm.providers import get_endpoint

    endpoint = get_endpoint("google", api_key="AIza...")
    endpoint = get_endpoint("openai", api_key="sk-...")
    endpoint = get_endpoint("ollama")          # local, no key needed
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from ..errors import (
    ConfigurationError,
    RateLimitError,
    RequestError,
    TransientError,
)

logger = logging.getLogger(__name__)

# ── Defaults ──────────────────────────────────────────────────────────────

DEFAULT_PROVIDER = "google"
DEFAULT_TIMEOUT = 120.0

_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_OLLAMA_BASE_URL = "http://localhost:11434/v1"

# Provider → env-vars holding its API key (first match wins)
_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "google": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "gemini": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "claude": ("ANTHROPIC_API_KEY",),
    "ollama": (),  # no key needed
}

# Provider → candidate models in priority order
_DEFAULT_MODELS: dict[str, tuple[str, ...]] = {
    "google": ("gemini-2.5-flash", "gemini-2.0-flash"),
    "gemini": ("gemini-2.5-flash", "gemini-2.0-flash"),
    "openai": ("gpt-4o-mini", "gpt-4o"),
    "anthropic": ("claude-sonnet-4-20250514", "claude-3-5-haiku-latest"),
    "claude": ("claude-sonnet-4-20250514", "claude-3-5-haiku-latest"),
    "ollama": ("llama3.1",),
}

_JSON_HINT = (
    "\n\nIMPORTANT: You MUST respond with valid JSON only. "
    "No markdown fences, no commentary, just the JSON object."
)


# ══════════════════════════════════════════════════════════════════════════
# Request / response shapes
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling options understood by every endpoint."""

    temperature: float = 0.7
    max_output_tokens: int = 8192
    top_k: Optional[int] = 40
    top_p: Optional[float] = 0.95
    json_mode: bool = False


@dataclass(frozen=True)
class RawResponse:
    """Provider-neutral view of one completion."""

    model: str
    text: Optional[str]
    finish_reason: Optional[str] = None
    block_reason: Optional[str] = None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse ``Retry-After`` / ``retryDelay`` values (``"12"``, ``"12s"``, ``"1.5s"``)."""
    if not value:
        return None
    m = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*s?\s*", str(value))
    return float(m.group(1)) if m else None


def _status_error(status: int, message: str, retry_after: Optional[float] = None) -> Exception:
    if status == 429:
        return RateLimitError(message, retry_after=retry_after)
    if status >= 500:
        return TransientError(message)
    return RequestError(message, status=status)


# ══════════════════════════════════════════════════════════════════════════
# Base class
# ══════════════════════════════════════════════════════════════════════════


class InferenceEndpoint(ABC):
    """Abstract base for all inference endpoints."""

    provider: str = "base"

    @property
    def default_models(self) -> tuple[str, ...]:
        return _DEFAULT_MODELS.get(self.provider, ())

    @abstractmethod
    async def invoke(self, model: str, prompt: str, config: GenerationConfig) -> RawResponse:
        """Send *prompt* to *model* and return the raw response."""

    async def aclose(self) -> None:
        """Release network resources."""


# ══════════════════════════════════════════════════════════════════════════
# Google Gemini (REST)
# ══════════════════════════════════════════════════════════════════════════


class GeminiEndpoint(InferenceEndpoint):
    """Google Generative Language API (``generateContent``) over httpx."""

    provider = "google"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        key = api_key or resolve_api_key("google")
        if not key:
            raise ConfigurationError(
                "No Gemini API key found. Pass --api-key or set GOOGLE_API_KEY."
            )
        self._api_key = key
        self.base_url = (base_url or _GEMINI_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _generation_config(config: GenerationConfig) -> dict[str, Any]:
        out: dict[str, Any] = {
            "temperature": config.temperature,
            "maxOutputTokens": config.max_output_tokens,
        }
        if config.top_k is not None:
            out["topK"] = config.top_k
        if config.top_p is not None:
            out["topP"] = config.top_p
        if config.json_mode:
            out["responseMimeType"] = "application/json"
        return out

    async def invoke(self, model: str, prompt: str, config: GenerationConfig) -> RawResponse:
        url = f"{self.base_url}/models/{model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": self._generation_config(config),
        }
        try:
            resp = await self._client.post(
                url,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise TransientError(f"Gemini request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise self._error_from(resp, model)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransientError("Gemini returned a non-JSON body") from exc
        return self._to_raw(model, payload)

    @staticmethod
    def _error_from(resp: httpx.Response, model: str) -> Exception:
        try:
            body = resp.json()
        except ValueError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, str):
            message = error
            error = {}
        elif isinstance(error, dict):
            message = error.get("message")
        else:
            message, error = None, {}
        message = message or resp.reason_phrase or "unknown error"

        retry_after = parse_retry_after(resp.headers.get("Retry-After"))
        if retry_after is None:
            details = error.get("details")
            for detail in details if isinstance(details, list) else []:
                if isinstance(detail, dict) and "retryDelay" in detail:
                    retry_after = parse_retry_after(detail["retryDelay"])
                    break
        return _status_error(
            resp.status_code,
            f"{model} returned {resp.status_code}: {message}",
            retry_after,
        )

    @staticmethod
    def _to_raw(model: str, payload: Mapping[str, Any]) -> RawResponse:
        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        candidates = payload.get("candidates") or []
        if not candidates:
            return RawResponse(model=model, text=None, block_reason=block_reason)
        first = candidates[0] or {}
        parts = (first.get("content") or {}).get("parts") or []
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return RawResponse(
            model=model,
            text="".join(texts) if texts else None,
            finish_reason=first.get("finishReason"),
            block_reason=block_reason,
        )


# ══════════════════════════════════════════════════════════════════════════
# OpenAI / OpenAI-compatible
# ══════════════════════════════════════════════════════════════════════════


class OpenAIEndpoint(InferenceEndpoint):
    """OpenAI chat completions (also used for Ollama and other compatible servers)."""

    provider = "openai"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Any = None,
    ) -> None:
        try:
            import openai
        except ImportError:
            raise ImportError(
                "OpenAI provider requires the 'openai' package. "
                "Install with: pip install openai"
            )
        self._sdk = openai
        if client is not None:
            self._client = client
            return
        key = api_key or resolve_api_key(self.provider)
        if not key and not base_url:
            raise ConfigurationError(
                "No OpenAI API key found. Pass --api-key or set OPENAI_API_KEY."
            )
        ctor_kwargs: dict[str, Any] = {
            "api_key": key or "not-needed",
            "timeout": timeout,
            "max_retries": 0,  # retries are ours
        }
        if base_url:
            ctor_kwargs["base_url"] = base_url
        self._client = openai.AsyncOpenAI(**ctor_kwargs)

    async def invoke(self, model: str, prompt: str, config: GenerationConfig) -> RawResponse:
        sdk = self._sdk
        kwargs: dict[str, Any] = {
            "model": model,
            "temperature": config.temperature,
            "max_tokens": config.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if config.top_p is not None:
            kwargs["top_p"] = config.top_p
        if config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except sdk.APIStatusError as exc:
            headers = exc.response.headers if exc.response is not None else {}
            raise _status_error(
                exc.status_code,
                f"{model} returned {exc.status_code}: {exc.message}",
                parse_retry_after(headers.get("retry-after")),
            ) from exc
        except sdk.APIConnectionError as exc:
            raise TransientError(f"OpenAI request failed: {exc}") from exc

        if not resp.choices:
            return RawResponse(model=model, text=None)
        choice = resp.choices[0]
        finish = choice.finish_reason
        return RawResponse(
            model=model,
            text=choice.message.content,
            finish_reason=finish,
            block_reason="content_filter" if finish == "content_filter" else None,
        )


class OllamaEndpoint(OpenAIEndpoint):
    """Ollama local inference through its OpenAI-compatible endpoint.

    By default connects to ``http://localhost:11434/v1``.
    No API key required.
    """

    provider = "ollama"

    def __init__(self, *, api_key: str | None = None, base_url: str | None = None, **kwargs: Any):
        super().__init__(
            api_key=api_key or "ollama",  # Ollama ignores the key
            base_url=base_url or _OLLAMA_BASE_URL,
            **kwargs,
        )


# ══════════════════════════════════════════════════════════════════════════
# Anthropic (Claude)
# ══════════════════════════════════════════════════════════════════════════


class AnthropicEndpoint(InferenceEndpoint):
    """Anthropic Messages API."""

    provider = "anthropic"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Any = None,
    ) -> None:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "Anthropic provider requires the 'anthropic' package. "
                "Install with: pip install anthropic"
            )
        self._sdk = anthropic
        if client is not None:
            self._client = client
            return
        key = api_key or resolve_api_key(self.provider)
        if not key:
            raise ConfigurationError(
                "No Anthropic API key found. Pass --api-key or set ANTHROPIC_API_KEY."
            )
        ctor_kwargs: dict[str, Any] = {"api_key": key, "timeout": timeout, "max_retries": 0}
        if base_url:
            ctor_kwargs["base_url"] = base_url
        self._client = anthropic.AsyncAnthropic(**ctor_kwargs)

    async def invoke(self, model: str, prompt: str, config: GenerationConfig) -> RawResponse:
        sdk = self._sdk
        # Claude has no native JSON mode; we guide via the system prompt.
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if config.json_mode:
            kwargs["system"] = _JSON_HINT.strip()
        try:
            resp = await self._client.messages.create(**kwargs)
        except sdk.APIStatusError as exc:
            headers = exc.response.headers if exc.response is not None else {}
            raise _status_error(
                exc.status_code,
                f"{model} returned {exc.status_code}: {exc.message}",
                parse_retry_after(headers.get("retry-after")),
            ) from exc
        except sdk.APIConnectionError as exc:
            raise TransientError(f"Anthropic request failed: {exc}") from exc

        texts = [b.text for b in resp.content or [] if getattr(b, "type", "") == "text"]
        stop = resp.stop_reason
        return RawResponse(
            model=model,
            text="".join(texts) if texts else None,
            finish_reason=stop,
            block_reason="refusal" if stop == "refusal" else None,
        )


# ══════════════════════════════════════════════════════════════════════════
# Factory functions
# ══════════════════════════════════════════════════════════════════════════

_ENDPOINTS: dict[str, type[InferenceEndpoint]] = {
    "google": GeminiEndpoint,
    "gemini": GeminiEndpoint,
    "openai": OpenAIEndpoint,
    "ollama": OllamaEndpoint,
    "anthropic": AnthropicEndpoint,
    "claude": AnthropicEndpoint,
}

SUPPORTED_PROVIDERS = sorted(set(_ENDPOINTS.keys()) - {"claude", "gemini"})


def get_endpoint(
    provider: str = DEFAULT_PROVIDER,
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> InferenceEndpoint:
    """Create an inference endpoint.

    Parameters
    ----------
    provider
        Provider name: google, openai, anthropic, ollama.
    api_key
        API key (falls back to provider-specific env var).
    base_url
        Custom API endpoint.
    """
    name = provider.lower().strip()
    cls = _ENDPOINTS.get(name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. "
            f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return cls(api_key=api_key, base_url=base_url, timeout=timeout)


def resolve_api_key(provider: str, api_key: str | None = None) -> str | None:
    """Resolve API key from argument or environment variable."""
    if api_key:
        return api_key
    for env_var in _KEY_ENV_VARS.get(provider.lower(), ()):
        value = os.environ.get(env_var)
        if value:
            return value
    return None


def default_models_for(provider: str) -> tuple[str, ...]:
    """Return the candidate models for a given provider, best first."""
    return _DEFAULT_MODELS.get(provider.lower(), _DEFAULT_MODELS[DEFAULT_PROVIDER])
