"""
LLM provider adapters.

Supports multiple providers:
- Ollama (local, default)
- OpenAI
- Anthropic
"""

import logging
from typing import Any

import httpx

from fact_memory.config import LLMConfig
from fact_memory.errors import ConfigurationError, ProviderError
from fact_memory.llm.base import BaseLLM, parse_json_object, unpack_format

logger = logging.getLogger(__name__)


class OllamaLLM(BaseLLM):
    """
    Ollama-based LLM for local structured generation.

    Passes the JSON schema as Ollama's ``format`` so the model is
    constrained to it. Works with models like:
    - llama3.2 (fast, good quality)
    - mistral (good balance)
    - qwen2.5 (strong at JSON)
    """

    def __init__(self, config: LLMConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.base_url = config.ollama_base_url.rstrip("/")
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def run(
        self,
        messages: list[dict[str, str]],
        response_format: dict[str, Any],
    ) -> dict[str, Any]:
        """Chat-style structured generation using Ollama."""
        _, schema = unpack_format(response_format)
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.config.model,
                    "messages": messages,
                    "stream": False,
                    "format": schema,
                    "options": {
                        "temperature": self.config.temperature,
                        "num_predict": self.config.max_tokens,
                    },
                },
            )
            response.raise_for_status()
            data = response.json()
            content = data["message"]["content"]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Ollama chat failed: {e}") from e

        return parse_json_object(content)


class OpenAILLM(BaseLLM):
    """
    OpenAI-based LLM.

    Uses chat completions with ``response_format`` json_schema, which
    accepts the envelope as-is. Models like:
    - gpt-4o-mini (fast, cost-effective)
    - gpt-4o (best quality)
    """

    def __init__(self, config: LLMConfig, client: Any = None):
        super().__init__(config)
        self._client: Any = client

    def _get_client(self) -> Any:
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package required for the OpenAI provider. "
                    "Install with: pip install fact-memory[openai]"
                ) from e
            self._client = AsyncOpenAI(timeout=self.config.timeout_seconds)
        return self._client

    async def run(
        self,
        messages: list[dict[str, str]],
        response_format: dict[str, Any],
    ) -> dict[str, Any]:
        """Structured generation using OpenAI."""
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                response_format=response_format,
            )
            content = response.choices[0].message.content
        except ConfigurationError:
            raise
        except Exception as e:
            raise ProviderError(f"OpenAI completion failed: {e}") from e

        return parse_json_object(content)


class AnthropicLLM(BaseLLM):
    """
    Anthropic-based LLM.

    Anthropic has no JSON-schema response mode, so the schema becomes the
    input schema of a single tool the model is forced to call. Models like:
    - claude-3-5-sonnet (best quality)
    - claude-3-5-haiku (fast, cost-effective)
    """

    def __init__(self, config: LLMConfig, client: Any = None):
        super().__init__(config)
        self._client: Any = client

    def _get_client(self) -> Any:
        """Get or create Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic package required for the Anthropic provider. "
                    "Install with: pip install fact-memory[anthropic]"
                ) from e
            self._client = AsyncAnthropic(timeout=self.config.timeout_seconds)
        return self._client

    async def run(
        self,
        messages: list[dict[str, str]],
        response_format: dict[str, Any],
    ) -> dict[str, Any]:
        """Structured generation using a forced Anthropic tool call."""
        name, schema = unpack_format(response_format)
        client = self._get_client()

        # System prompts go in their own parameter
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [m for m in messages if m["role"] != "system"]

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": chat,
            "tools": [
                {
                    "name": name,
                    "description": "Record the structured answer.",
                    "input_schema": schema,
                }
            ],
            "tool_choice": {"type": "tool", "name": name},
        }
        if system:
            kwargs["system"] = system

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            raise ProviderError(f"Anthropic completion failed: {e}") from e

        for block in response.content:
            if getattr(block, "type", None) == "tool_use":
                if not isinstance(block.input, dict):
                    raise ProviderError("Anthropic tool input is not an object")
                return block.input

        raise ProviderError(f"Anthropic response did not call tool {name!r}")


def create_llm(config: LLMConfig | None = None) -> BaseLLM:
    """
    Factory function to create the appropriate LLM adapter.

    Args:
        config: LLM configuration. Uses defaults if None.

    Returns:
        Configured LLM instance.
    """
    if config is None:
        config = LLMConfig()

    providers = {
        "ollama": OllamaLLM,
        "openai": OpenAILLM,
        "anthropic": AnthropicLLM,
    }

    llm_class = providers.get(config.provider)
    if llm_class is None:
        raise ConfigurationError(f"Unknown LLM provider: {config.provider}")

    logger.debug(f"Using {config.provider} LLM with model {config.model}")
    return llm_class(config)
