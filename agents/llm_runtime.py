from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Type

import httpx

from models.errors import ProviderError, UnsupportedOperationError
from models.schemas import ChatParams, ChatResult, EmbedResult, TokenUsage, ToolCall
from settings import SETTINGS

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """One chat/embedding backend. Register new ones in PROVIDER_REGISTRY."""

    name = "base"
    supports_embeddings = False

    def __init__(self, api_key: str = "", model: str | None = None, embedding_model: str | None = None) -> None:
        self.api_key = api_key
        self.model = model or self.default_model()
        self.embedding_model = embedding_model or self.default_embedding_model()

    def default_model(self) -> str:
        return ""

    def default_embedding_model(self) -> str:
        return ""

    @abstractmethod
    async def chat(self, params: ChatParams) -> ChatResult:
        raise NotImplementedError

    async def embed(self, text: str) -> EmbedResult:
        raise UnsupportedOperationError(self.name, "embeddings")


class OpenAICompatibleProvider(LLMProvider):
    """Chat Completions wire format shared by OpenAI, Groq and OpenRouter."""

    base_url = ""

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _messages(self, params: ChatParams) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in params.history)
        messages.append({"role": "user", "content": params.user_message})
        return messages

    async def chat(self, params: ChatParams) -> ChatResult:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(params),
            "temperature": params.temperature if params.temperature is not None else SETTINGS.default_temperature,
            "max_tokens": params.max_tokens or SETTINGS.default_max_tokens,
            "top_p": params.top_p if params.top_p is not None else SETTINGS.default_top_p,
        }
        if params.tools:
            body["tools"] = [
                {"type": "function", "function": {"name": t.name, "description": t.description, "parameters": t.parameters}}
                for t in params.tools
            ]
            body["tool_choice"] = "auto"
        if params.user_id:
            body["user"] = params.user_id
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(f"{self.base_url.rstrip('/')}/chat/completions", headers=self._headers(), json=body)
            resp.raise_for_status()
            data = resp.json()
        return self._parse_chat(data)

    def _parse_chat(self, data: Dict[str, Any]) -> ChatResult:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ProviderError(f"{self.name} returned no choices")
        message = choices[0].get("message") or {}
        tool_calls: List[ToolCall] = []
        for raw in message.get("tool_calls") or []:
            fn = raw.get("function") or {}
            try:
                arguments = json.loads(fn.get("arguments") or "{}")
            except json.JSONDecodeError:
                logger.warning("tool_call_arguments_unparseable", extra={"provider": self.name, "tool": fn.get("name")})
                arguments = {}
            call = ToolCall(name=str(fn.get("name") or "unknown"), arguments=arguments)
            if raw.get("id"):
                call.id = str(raw["id"])
            tool_calls.append(call)
        usage = data.get("usage") or {}
        return ChatResult(
            content=str(message.get("content") or ""),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens") or 0),
                completion_tokens=int(usage.get("completion_tokens") or 0),
                total_tokens=int(usage.get("total_tokens") or 0),
            ),
            model=str(data.get("model") or self.model),
            provider=self.name,
        )


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"
    supports_embeddings = True
    base_url = SETTINGS.openai_base_url

    def default_model(self) -> str:
        return SETTINGS.openai_model

    def default_embedding_model(self) -> str:
        return SETTINGS.openai_embedding_model

    async def embed(self, text: str) -> EmbedResult:
        body = {"model": self.embedding_model, "input": text, "dimensions": SETTINGS.embedding_dimensions}
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(f"{self.base_url.rstrip('/')}/embeddings", headers=self._headers(), json=body)
            resp.raise_for_status()
            data = resp.json()
        rows = data.get("data") or []
        if not rows or not rows[0].get("embedding"):
            raise ProviderError("openai returned an empty embedding")
        usage = data.get("usage") or {}
        tokens = int(usage.get("total_tokens") or usage.get("prompt_tokens") or 0)
        return EmbedResult(
            embedding=[float(v) for v in rows[0]["embedding"]],
            usage=TokenUsage(prompt_tokens=tokens, total_tokens=tokens),
            model=self.embedding_model,
            provider=self.name,
        )


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    base_url = SETTINGS.groq_base_url

    def default_model(self) -> str:
        return SETTINGS.groq_model


class OpenRouterProvider(OpenAICompatibleProvider):
    name = "openrouter"
    base_url = SETTINGS.openrouter_base_url

    def default_model(self) -> str:
        return SETTINGS.openrouter_model

    def _headers(self) -> Dict[str, str]:
        return {**super()._headers(), "X-Title": "Social Inbox Assistant"}


class GeminiProvider(LLMProvider):
    name = "gemini"
    supports_embeddings = True

    def default_model(self) -> str:
        return SETTINGS.gemini_model

    def default_embedding_model(self) -> str:
        return SETTINGS.gemini_embedding_model

    def _url(self, model: str, method: str) -> str:
        return f"{SETTINGS.gemini_base_url.rstrip('/')}/models/{model}:{method}"

    async def chat(self, params: ChatParams) -> ChatResult:
        contents: List[Dict[str, Any]] = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]} for m in params.history
        ]
        contents.append({"role": "user", "parts": [{"text": params.user_message}]})
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": params.temperature if params.temperature is not None else SETTINGS.default_temperature,
                "maxOutputTokens": params.max_tokens or SETTINGS.default_max_tokens,
                "topP": params.top_p if params.top_p is not None else SETTINGS.default_top_p,
            },
        }
        if params.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": params.system_prompt}]}
        if params.tools:
            body["tools"] = [
                {"functionDeclarations": [{"name": t.name, "description": t.description, "parameters": t.parameters} for t in params.tools]}
            ]
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(self._url(self.model, "generateContent"), headers={"x-goog-api-key": self.api_key}, json=body)
            resp.raise_for_status()
            data = resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("gemini returned no candidates")
        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            if "text" in part:
                text_parts.append(str(part["text"]))
            elif "functionCall" in part:
                call = part["functionCall"] or {}
                tool_calls.append(ToolCall(name=str(call.get("name") or "unknown"), arguments=dict(call.get("args") or {})))
        usage = data.get("usageMetadata") or {}
        return ChatResult(
            content="".join(text_parts),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=int(usage.get("promptTokenCount") or 0),
                completion_tokens=int(usage.get("candidatesTokenCount") or 0),
                total_tokens=int(usage.get("totalTokenCount") or 0),
            ),
            model=self.model,
            provider=self.name,
        )

    async def embed(self, text: str) -> EmbedResult:
        body = {"content": {"parts": [{"text": text}]}, "outputDimensionality": SETTINGS.embedding_dimensions}
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(self._url(self.embedding_model, "embedContent"), headers={"x-goog-api-key": self.api_key}, json=body)
            resp.raise_for_status()
            data = resp.json()
        values = (data.get("embedding") or {}).get("values") or []
        if not values:
            raise ProviderError("gemini returned an empty embedding")
        return EmbedResult(embedding=[float(v) for v in values], model=self.embedding_model, provider=self.name)


def _simple_hash(value: str) -> int:
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 2**31:
        h -= 2**32
    return abs(h)


class MockProvider(LLMProvider):
    """Deterministic provider for unconfigured environments. No network."""

    name = "mock"
    supports_embeddings = True

    def default_model(self) -> str:
        return "mock-model"

    def default_embedding_model(self) -> str:
        return "mock-embedding"

    async def chat(self, params: ChatParams) -> ChatResult:
        preview = params.user_message[:50]
        reply = f'Mock response to: "{preview}..."'
        prompt_tokens = len(params.system_prompt) + len(params.user_message) + sum(len(m.content) for m in params.history)
        return ChatResult(
            content=reply,
            usage=TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=len(reply), total_tokens=prompt_tokens + len(reply)),
            model=self.model,
            provider=self.name,
        )

    async def embed(self, text: str) -> EmbedResult:
        vector = [(_simple_hash(f"{text}{i}") % 1000) / 1000 - 0.5 for i in range(SETTINGS.embedding_dimensions)]
        return EmbedResult(embedding=vector, model=self.embedding_model, provider=self.name)


PROVIDER_REGISTRY: Dict[str, Type[LLMProvider]] = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "groq": GroqProvider,
    "openrouter": OpenRouterProvider,
    "mock": MockProvider,
}

EMBEDDING_PROVIDER_ORDER = ("openai", "gemini", "mock")


def build_provider(name: str, api_key: str = "", model: str | None = None, embedding_model: str | None = None) -> LLMProvider:
    provider_cls = PROVIDER_REGISTRY.get(name.lower())
    if provider_cls is None:
        raise ProviderError(f"Unknown AI provider: {name}")
    return provider_cls(api_key=api_key, model=model, embedding_model=embedding_model)
