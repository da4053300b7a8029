"""
Model clients: one text-completion call per provider family.

Anthropic goes through the Anthropic SDK. Every other supported provider
speaks the OpenAI-compatible chat completions protocol and is reached with
httpx against the endpoint in ``PROVIDER_ENDPOINTS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import anthropic
import httpx
import structlog

from agenthost.errors import AgentBringUpError, ModelProviderError
from agenthost.types import ModelProviderName

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderEndpoint:
    base_url: str
    default_model: str


PROVIDER_ENDPOINTS: dict[ModelProviderName, ProviderEndpoint] = {
    ModelProviderName.OPENAI: ProviderEndpoint("https://api.openai.com/v1", "gpt-4o-mini"),
    ModelProviderName.LLAMACLOUD: ProviderEndpoint(
        "https://api.together.xyz/v1", "meta-llama/Llama-3.3-70B-Instruct-Turbo"
    ),
    ModelProviderName.REDPILL: ProviderEndpoint("https://api.red-pill.ai/v1", "gpt-4o-mini"),
    ModelProviderName.OPENROUTER: ProviderEndpoint(
        "https://openrouter.ai/api/v1", "meta-llama/llama-3.1-8b-instruct"
    ),
    ModelProviderName.GROK: ProviderEndpoint("https://api.x.ai/v1", "grok-beta"),
    ModelProviderName.HEURIST: ProviderEndpoint(
        "https://llm-gateway.heurist.xyz", "meta-llama/llama-3-70b-instruct"
    ),
    ModelProviderName.GROQ: ProviderEndpoint(
        "https://api.groq.com/openai/v1", "llama-3.1-8b-instant"
    ),
}

ANTHROPIC_DEFAULT_MODEL = "claude-3-5-sonnet-20241022"


class ModelClient:
    """Generate one completion from a system prompt and chat messages."""

    model: str

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int = 512,
    ) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class AnthropicModelClient(ModelClient):
    def __init__(self, token: str, model: Optional[str] = None, timeout: float = 120.0) -> None:
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self._client = anthropic.AsyncAnthropic(api_key=token, timeout=timeout)

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int = 512,
    ) -> str:
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=messages,
            )
        except anthropic.APIError as e:
            raise ModelProviderError(f"anthropic request failed: {e}") from e
        parts = [
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ]
        return "".join(parts).strip()

    async def close(self) -> None:
        await self._client.close()


class OpenAICompatibleModelClient(ModelClient):
    def __init__(
        self,
        endpoint: ProviderEndpoint,
        token: Optional[str],
        model: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model = model or endpoint.default_model
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=endpoint.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int = 512,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "system", "content": system}, *messages],
        }
        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ModelProviderError(f"completion request failed: {e}") from e
        try:
            return str(data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise ModelProviderError(f"unexpected completion payload: {data!r}") from e

    async def close(self) -> None:
        await self._client.aclose()


def create_model_client(
    provider: ModelProviderName,
    token: Optional[str],
    model: Optional[str] = None,
) -> ModelClient:
    """Build the model client for *provider*; a missing token is a bring-up error."""
    if not token:
        raise AgentBringUpError(f"No API token configured for model provider {provider.value!r}")
    if provider is ModelProviderName.ANTHROPIC:
        return AnthropicModelClient(token, model=model)
    endpoint = PROVIDER_ENDPOINTS.get(provider)
    if endpoint is None:
        raise AgentBringUpError(f"Unsupported model provider {provider.value!r}")
    return OpenAICompatibleModelClient(endpoint, token, model=model)
