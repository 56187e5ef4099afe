"""LLM provider adapters for article summaries (OpenAI, Anthropic, Qwen-style REST)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import httpx

from app.core.prompts import (
    build_anthropic_messages,
    build_chat_messages,
    resolve_system_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds

# Fixed for every provider. The prompt carries its own 150 character limit.
SUMMARY_TEMPERATURE = 0.7
SUMMARY_MAX_TOKENS = 500

ANTHROPIC_VERSION = "2023-06-01"

# Raw provider bodies are truncated before logging
MAX_LOGGED_BODY = 2000


class ProviderType(str, Enum):
    """Supported LLM provider protocols."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    QWEN = "qwen"  # OpenAI-compatible body posted to the configured URL as-is

    @classmethod
    def parse(cls, value: str | None) -> "ProviderType | None":
        """Return the matching type, or None for unknown values."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class ProviderDefaults:
    """Default connection parameters for a provider type."""

    label: str
    base_url: str
    model: str


PROVIDER_DEFAULTS: dict[ProviderType, ProviderDefaults] = {
    ProviderType.OPENAI: ProviderDefaults(
        label="OpenAI",
        base_url="https://api.openai.com/v1",
        model="gpt-3.5-turbo",
    ),
    ProviderType.ANTHROPIC: ProviderDefaults(
        label="Anthropic",
        base_url="https://api.anthropic.com/v1",
        model="claude-3-5-sonnet-20241022",
    ),
    ProviderType.QWEN: ProviderDefaults(
        label="Qwen (通义千问)",
        base_url="https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions",
        model="qwen-turbo",
    ),
}

# OpenAI-compatible proxies offered as base URL presets
PROXY_BASE_URLS: list[dict[str, str]] = [
    {"url": "https://api.xi-ai.cn/v1", "name": "XI-AI代理"},
    {"url": "https://api.guil.vip/v1", "name": "硅流代理"},
    {"url": "https://api.wlai.vip/v1", "name": "WLAI代理"},
]

SUGGESTED_MODELS: list[dict[str, str]] = [
    {"label": "GPT-4o mini", "value": "gpt-4o-mini"},
    {"label": "GPT-4o", "value": "gpt-4o"},
    {"label": "GPT-3.5 Turbo", "value": "gpt-3.5-turbo"},
    {"label": "Claude 3.5 Sonnet (2024-06-20)", "value": "claude-3-5-sonnet-20240620"},
    {"label": "Claude 3.5 Sonnet (2024-10-22)", "value": "claude-3-5-sonnet-20241022"},
    {"label": "Gemini 1.5 Pro", "value": "gemini-1.5-pro-latest"},
    {"label": "o1-preview", "value": "o1-preview"},
    {"label": "o1-mini", "value": "o1-mini"},
    {"label": "Qwen Turbo", "value": "qwen-turbo"},
]


@dataclass(frozen=True)
class ProviderConfig:
    """User-selected provider connection.

    `type` stays a plain string so that an unknown stored value can be
    reported as a configuration error instead of being coerced.
    """

    type: str
    model: str
    base_url: str
    system_prompt: str | None = None

    @property
    def provider_type(self) -> ProviderType | None:
        return ProviderType.parse(self.type)

    @classmethod
    def default(
        cls,
        provider_type: ProviderType = ProviderType.OPENAI,
        system_prompt: str | None = None,
    ) -> "ProviderConfig":
        defaults = PROVIDER_DEFAULTS[provider_type]
        return cls(
            type=provider_type.value,
            model=defaults.model,
            base_url=defaults.base_url,
            system_prompt=system_prompt,
        )

    def to_dict(self) -> dict[str, str]:
        """Convert to the persisted/wire layout."""
        data = {"type": self.type, "model": self.model, "baseUrl": self.base_url}
        if self.system_prompt is not None:
            data["systemPrompt"] = self.system_prompt
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ProviderConfig":
        """Build from the wire layout.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("llmConfig must be an object")
        for key in ("type", "model", "baseUrl"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"llmConfig.{key} must be a string")
        system_prompt = data.get("systemPrompt")
        if system_prompt is not None and not isinstance(system_prompt, str):
            raise ValueError("llmConfig.systemPrompt must be a string")
        return cls(
            type=data["type"],
            model=data["model"],
            base_url=data["baseUrl"],
            system_prompt=system_prompt,
        )


@dataclass(frozen=True)
class SummaryRequest:
    """One user-initiated summarize action. Never persisted."""

    content: str
    api_key: str
    config: ProviderConfig


class FailureKind(str, Enum):
    """Classification of summary failures."""

    CONFIGURATION = "configuration"  # Missing key or unknown provider, no I/O done
    TRANSPORT = "transport"  # DNS, connect, timeout
    PROTOCOL = "protocol"  # Non-2xx or unexpected response body


@dataclass(frozen=True)
class SummarySuccess:
    summary: str

    @property
    def status_code(self) -> int:
        return 200

    def to_dict(self) -> dict[str, str]:
        return {"summary": self.summary}


@dataclass(frozen=True)
class SummaryFailure:
    message: str
    kind: FailureKind

    @property
    def status_code(self) -> int:
        return 400 if self.kind is FailureKind.CONFIGURATION else 500

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


SummaryResult = Union[SummarySuccess, SummaryFailure]


class ProtocolError(Exception):
    """Provider response did not contain the expected text field."""


def _join_url(base_url: str, path: str) -> str:
    base = base_url.strip().rstrip("/")
    if base.endswith(path):
        return base
    return base + path


def _require_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ProtocolError(f"expected non-empty text, got {type(value).__name__}")
    return value


class SummaryAdapter(ABC):
    """Translates a summary request into one provider's wire format and back."""

    provider_type: ProviderType

    @property
    def name(self) -> str:
        return PROVIDER_DEFAULTS[self.provider_type].label

    @abstractmethod
    def endpoint(self, config: ProviderConfig) -> str:
        """URL the request is posted to."""
        ...

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @abstractmethod
    def payload(self, config: ProviderConfig, content: str) -> dict[str, Any]:
        """JSON request body."""
        ...

    @abstractmethod
    def extract(self, data: Any) -> str:
        """Pull the summary text out of a decoded response body.

        Raises:
            ProtocolError: If the expected field is missing or empty.
        """
        ...


class OpenAIAdapter(SummaryAdapter):
    provider_type = ProviderType.OPENAI

    def endpoint(self, config: ProviderConfig) -> str:
        return _join_url(config.base_url, "/chat/completions")

    def payload(self, config: ProviderConfig, content: str) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": build_chat_messages(resolve_system_prompt(config), content),
            "temperature": SUMMARY_TEMPERATURE,
            "max_tokens": SUMMARY_MAX_TOKENS,
        }

    def extract(self, data: Any) -> str:
        try:
            return _require_text(data["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError) as e:
            raise ProtocolError(f"missing choices[0].message.content ({e!r})") from e


class QwenAdapter(OpenAIAdapter):
    """OpenAI-shaped body posted to the configured URL without path joining."""

    provider_type = ProviderType.QWEN

    def endpoint(self, config: ProviderConfig) -> str:
        return config.base_url.strip()


class AnthropicAdapter(SummaryAdapter):
    provider_type = ProviderType.ANTHROPIC

    def endpoint(self, config: ProviderConfig) -> str:
        return _join_url(config.base_url, "/messages")

    def headers(self, api_key: str) -> dict[str, str]:
        # Vendor endpoint reads x-api-key, proxies read the bearer token
        headers = super().headers(api_key)
        headers["x-api-key"] = api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    def payload(self, config: ProviderConfig, content: str) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": build_anthropic_messages(content),
            "temperature": SUMMARY_TEMPERATURE,
            "max_tokens": SUMMARY_MAX_TOKENS,
        }

    def extract(self, data: Any) -> str:
        try:
            return _require_text(data["content"][0]["text"])
        except (KeyError, IndexError, TypeError) as e:
            raise ProtocolError(f"missing content[0].text ({e!r})") from e


ADAPTERS: dict[ProviderType, SummaryAdapter] = {
    adapter.provider_type: adapter
    for adapter in (OpenAIAdapter(), AnthropicAdapter(), QwenAdapter())
}

_unregistered = set(ProviderType) - set(ADAPTERS)
if _unregistered:
    raise RuntimeError(f"No summary adapter for: {sorted(t.value for t in _unregistered)}")


def get_adapter(provider_type: str | None) -> SummaryAdapter | None:
    """Return the adapter for a provider type string, or None if unsupported."""
    parsed = ProviderType.parse(provider_type)
    if parsed is None:
        return None
    return ADAPTERS[parsed]


def available_providers() -> list[str]:
    """Return the registered provider type names."""
    return [t.value for t in ADAPTERS]


def _unexpected_response(adapter: SummaryAdapter) -> SummaryFailure:
    return SummaryFailure(
        f"summarization failed: unexpected response from {adapter.name}",
        FailureKind.PROTOCOL,
    )


async def summarize(request: SummaryRequest, timeout: float | None = None) -> SummaryResult:
    """Summarize article content with the configured provider.

    Makes at most one outbound request and never retries. Configuration
    problems are reported before any I/O.

    Args:
        request: Content, API key and provider config for this action.
        timeout: Request timeout in seconds (DEFAULT_TIMEOUT if None).

    Returns:
        SummarySuccess with the provider's text, or SummaryFailure.
    """
    api_key = (request.api_key or "").strip()
    if not api_key:
        return SummaryFailure("API key not configured", FailureKind.CONFIGURATION)

    # Header values must be ASCII
    if not api_key.isascii():
        return SummaryFailure("API key contains invalid characters", FailureKind.CONFIGURATION)

    adapter = get_adapter(request.config.type)
    if adapter is None:
        return SummaryFailure(
            f"unsupported model type: {request.config.type}",
            FailureKind.CONFIGURATION,
        )

    url = adapter.endpoint(request.config)
    try:
        async with httpx.AsyncClient(timeout=timeout or DEFAULT_TIMEOUT) as client:
            response = await client.post(
                url,
                headers=adapter.headers(api_key),
                json=adapter.payload(request.config, request.content),
            )
            response.raise_for_status()

    except httpx.HTTPStatusError as e:
        logger.warning(
            f"{adapter.name} returned {e.response.status_code} "
            f"(model={request.config.model}): {e.response.text[:MAX_LOGGED_BODY]}"
        )
        return SummaryFailure(
            f"{adapter.name} API error: {e.response.status_code}",
            FailureKind.PROTOCOL,
        )

    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"{adapter.name} request to {url} failed: {type(e).__name__}: {e}")
        return SummaryFailure(
            str(e) or f"{adapter.name} request failed: {type(e).__name__}",
            FailureKind.TRANSPORT,
        )

    try:
        data = response.json()
    except ValueError as e:
        logger.warning(f"{adapter.name} returned a non-JSON body: {e}")
        return _unexpected_response(adapter)

    try:
        summary = adapter.extract(data)
    except ProtocolError as e:
        logger.warning(f"Unexpected {adapter.name} response: {e}")
        return _unexpected_response(adapter)

    return SummarySuccess(summary)
