from __future__ import annotations

import json
import os
from typing import AsyncIterator, Dict, List, Optional, Sequence

from .config import get_settings
from .errors import ProviderError
from .models import ModelConfig, StreamChunk

Messages = List[Dict[str, str]]


class BaseProvider:
    """
    Streaming model provider interface.

    `generate_streaming_response` is an async generator of StreamChunk; the
    last chunk carries done=True. Timeouts are the provider's own concern.
    """

    name = "base"

    def generate_streaming_response(
        self, messages: Messages, model_config: ModelConfig
    ) -> AsyncIterator[StreamChunk]:  # pragma: no cover - interface only
        raise NotImplementedError


class StubProvider(BaseProvider):
    """
    Deterministic provider that echoes the last user message back in a few
    chunks. Emits no command tags, so nothing gets executed.
    """

    name = "stub"

    async def generate_streaming_response(self, messages: Messages, model_config: ModelConfig) -> AsyncIterator[StreamChunk]:
        last_user = next((m["content"] for m in reversed(messages) if m.get("role") == "user"), "")
        words = f"Stub response to: {last_user}".split(" ")
        for idx, word in enumerate(words):
            yield StreamChunk(content=word if idx == 0 else " " + word)
        yield StreamChunk(content="", done=True)


class ScriptedProvider(BaseProvider):
    """Replays a fixed list of chunks; used for offline replays and tests."""

    name = "scripted"

    def __init__(self, chunks: Sequence[str], *, finish: bool = True) -> None:
        self.chunks = list(chunks)
        self.finish = finish
        self.calls: List[Messages] = []

    async def generate_streaming_response(self, messages: Messages, model_config: ModelConfig) -> AsyncIterator[StreamChunk]:
        self.calls.append(list(messages))
        for chunk in self.chunks:
            yield StreamChunk(content=chunk)
        if self.finish:
            yield StreamChunk(content="", done=True)


class _ChatCompletionsProvider(BaseProvider):
    """OpenAI-compatible /chat/completions streaming over server-sent events."""

    url = ""
    default_model = ""
    timeout = 60.0

    def __init__(self, api_key: str, model: Optional[str] = None) -> None:
        self.api_key = api_key
        self.model = model or self.default_model

    def _model_for(self, model_config: ModelConfig) -> str:
        if model_config.model_name and model_config.model_name != "stub":
            return model_config.model_name
        return self.model

    async def generate_streaming_response(
        self, messages: Messages, model_config: ModelConfig
    ) -> AsyncIterator[StreamChunk]:  # pragma: no cover - network
        import httpx

        headers = {
            "Authorization": f"Bearer {model_config.api_key or self.api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": self._model_for(model_config),
            "messages": messages,
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens,
            "stream": True,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", self.url, headers=headers, json=body) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            payload = json.loads(data)
                        except json.JSONDecodeError:
                            continue
                        choices = payload.get("choices") or []
                        if not choices:
                            continue
                        delta = choices[0].get("delta") or {}
                        content = delta.get("content")
                        if content:
                            yield StreamChunk(content=content)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}") from exc
        yield StreamChunk(content="", done=True)


class OpenAIProvider(_ChatCompletionsProvider):
    name = "openai"
    url = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o-mini"
    timeout = 30.0


OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterProvider(_ChatCompletionsProvider):
    """
    OpenRouter provider: one API key, many models (OpenAI, Claude, Gemini, etc.).
    """

    name = "openrouter"
    url = OPENROUTER_API_URL
    default_model = "openai/gpt-4o-mini"


def build_provider() -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    settings = get_settings()
    if settings.provider_name == "openrouter":
        api_key = _get_env("OPENROUTER_API_KEY")
        if not api_key:
            return StubProvider()
        model = _get_env("OPENROUTER_MODEL") or OpenRouterProvider.default_model
        return OpenRouterProvider(api_key=api_key, model=model)
    if settings.provider_name == "openai":
        api_key = _get_env("OPENAI_API_KEY")
        if not api_key:
            return StubProvider()
        return OpenAIProvider(api_key=api_key)

    return StubProvider()


def _get_env(name: str) -> Optional[str]:
    return os.getenv(name) or None
