"""Chat-completion backends for DeepSeek, Groq and a local Ollama."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx

from ..config import AgentSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEEPSEEK_URL = "https://api.deepseek.com/v1/chat/completions"
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
OLLAMA_DEFAULT_MODEL = "llama3.2"


class BackendError(RuntimeError):
    """Raised when the model backend cannot produce a completion."""


class CompletionBackend(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    name: str
    url: str
    model: str
    api_key: str | None = None
    dialect: Literal["openai", "ollama"] = "openai"


def _strip_provider(model: str) -> str:
    return model.split("/", 1)[1] if "/" in model else model


def resolve_provider(settings: AgentSettings) -> ProviderConfig:
    """Pick the provider named by ``OPENCODE_MODEL``."""

    model = settings.llm_model.strip()
    lowered = model.lower()
    if lowered == "local" or lowered.startswith("ollama/"):
        name = _strip_provider(model) if lowered.startswith("ollama/") else OLLAMA_DEFAULT_MODEL
        base = settings.ollama_url.rstrip("/")
        return ProviderConfig(name="ollama", url=f"{base}/api/chat", model=name, dialect="ollama")
    if "deepseek" in lowered:
        if not settings.deepseek_api_key:
            raise BackendError("DEEPSEEK_API_KEY is required for DeepSeek models")
        return ProviderConfig(
            name="deepseek", url=DEEPSEEK_URL, model=_strip_provider(model), api_key=settings.deepseek_api_key
        )
    if "groq" in lowered:
        if not settings.groq_api_key:
            raise BackendError("GROQ_API_KEY is required for Groq models")
        return ProviderConfig(name="groq", url=GROQ_URL, model=_strip_provider(model), api_key=settings.groq_api_key)
    raise BackendError(f"Unsupported model: {model}")


class ChatCompletionBackend:
    """Single-turn chat completion over an OpenAI-style or Ollama endpoint."""

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider = provider
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: AgentSettings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "ChatCompletionBackend":
        return cls(
            resolve_provider(settings),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            transport=transport,
        )

    @property
    def provider(self) -> ProviderConfig:
        return self._provider

    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if self._provider.dialect == "ollama":
            return {
                "model": self._provider.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": self._temperature},
            }
        return {
            "model": self._provider.model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self._provider.api_key:
            headers["Authorization"] = f"Bearer {self._provider.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._provider.url,
                    json=self._payload(system_prompt, user_prompt),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise BackendError(f"{self._provider.name} request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "Model backend returned an error",
                extra={"provider": self._provider.name, "status_code": response.status_code},
            )
            raise BackendError(f"{self._provider.name} API error: {response.status_code}")

        data = response.json()
        try:
            if self._provider.dialect == "ollama":
                content = data["message"]["content"]
            else:
                content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendError(f"Unexpected {self._provider.name} response shape") from exc
        return str(content or "")


__all__ = [
    "BackendError",
    "ChatCompletionBackend",
    "CompletionBackend",
    "ProviderConfig",
    "resolve_provider",
]
