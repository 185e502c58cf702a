"""
Tests for LLM and embedding provider adapters.
"""

import json
from types import SimpleNamespace

import httpx
import pytest

from fact_memory.config import EmbeddingConfig, LLMConfig
from fact_memory.errors import ConfigurationError, ProviderError
from fact_memory.llm import (
    AnthropicLLM,
    HashingEmbedder,
    OllamaEmbedder,
    OllamaLLM,
    OpenAILLM,
    create_embedder,
    create_llm,
    json_schema_format,
    parse_json_object,
)
from fact_memory.pipeline.prompts import FACTS_SCHEMA

FORMAT = json_schema_format("facts_schema", FACTS_SCHEMA)
MESSAGES = [
    {"role": "system", "content": "Extract facts."},
    {"role": "user", "content": "Input:\nuser: I like pizza"},
]


class TestParseJsonObject:
    """Tests for parsing model replies."""

    def test_plain(self):
        assert parse_json_object('{"facts": []}') == {"facts": []}

    def test_fenced(self):
        assert parse_json_object('```json\n{"facts": ["a"]}\n```') == {"facts": ["a"]}

    @pytest.mark.parametrize("text", [None, "", "not json", "[1, 2]"])
    def test_rejected(self, text):
        with pytest.raises(ProviderError):
            parse_json_object(text)


class TestOllamaLLM:
    """Tests for the Ollama chat adapter."""

    @pytest.mark.asyncio
    async def test_sends_schema_as_format(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"content": '{"facts": ["Likes pizza"]}'}})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with OllamaLLM(LLMConfig(model="llama3.2"), client=client) as llm:
            result = await llm.run(MESSAGES, FORMAT)

        assert result == {"facts": ["Likes pizza"]}
        assert seen["url"] == "http://localhost:11434/api/chat"
        assert seen["body"]["format"] == FACTS_SCHEMA
        assert seen["body"]["stream"] is False
        assert seen["body"]["messages"] == MESSAGES

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        llm = OllamaLLM(LLMConfig(), client=client)

        with pytest.raises(ProviderError):
            await llm.run(MESSAGES, FORMAT)
        await llm.close()

    @pytest.mark.asyncio
    async def test_invalid_format(self):
        llm = OllamaLLM(LLMConfig())
        with pytest.raises(ProviderError):
            await llm.run(MESSAGES, {"type": "json_object"})


class TestOpenAILLM:
    """Tests for the OpenAI adapter."""

    @pytest.mark.asyncio
    async def test_passes_response_format(self):
        captured = {}

        async def create(**kwargs):
            captured.update(kwargs)
            message = SimpleNamespace(content='{"facts": []}')
            return SimpleNamespace(choices=[SimpleNamespace(message=message)])

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        llm = OpenAILLM(LLMConfig(provider="openai", model="gpt-4o-mini"), client=client)

        assert await llm.run(MESSAGES, FORMAT) == {"facts": []}
        assert captured["response_format"] == FORMAT
        assert captured["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_client_error(self):
        async def create(**kwargs):
            raise RuntimeError("rate limited")

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        llm = OpenAILLM(LLMConfig(provider="openai"), client=client)

        with pytest.raises(ProviderError, match="rate limited"):
            await llm.run(MESSAGES, FORMAT)


class TestAnthropicLLM:
    """Tests for the Anthropic forced-tool adapter."""

    @pytest.mark.asyncio
    async def test_forced_tool_call(self):
        captured = {}

        async def create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Here you go"),
                    SimpleNamespace(type="tool_use", input={"facts": ["Likes pizza"]}),
                ]
            )

        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        llm = AnthropicLLM(LLMConfig(provider="anthropic"), client=client)

        assert await llm.run(MESSAGES, FORMAT) == {"facts": ["Likes pizza"]}
        assert captured["system"] == "Extract facts."
        assert captured["messages"] == MESSAGES[1:]
        assert captured["tool_choice"] == {"type": "tool", "name": "facts_schema"}
        assert captured["tools"][0]["input_schema"] == FACTS_SCHEMA

    @pytest.mark.asyncio
    async def test_missing_tool_call(self):
        async def create(**kwargs):
            return SimpleNamespace(content=[SimpleNamespace(type="text", text="no")])

        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        llm = AnthropicLLM(LLMConfig(provider="anthropic"), client=client)

        with pytest.raises(ProviderError):
            await llm.run(MESSAGES, FORMAT)


class TestEmbedders:
    """Tests for embedding providers."""

    @pytest.mark.asyncio
    async def test_ollama_embedder(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(200, json={"embedding": [float(len(body["prompt"])), 1.0]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        embedder = OllamaEmbedder(EmbeddingConfig(batch_size=2), client=client)

        vectors = await embedder.embed_batch(["a", "bb", "ccc"])

        assert vectors == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]
        await embedder.close()

    @pytest.mark.asyncio
    async def test_ollama_embedder_error(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        embedder = OllamaEmbedder(EmbeddingConfig(), client=client)

        with pytest.raises(ProviderError):
            await embedder.embed("hello")
        await embedder.close()

    @pytest.mark.asyncio
    async def test_hashing_embedder(self, hashing_embedder):
        a = await hashing_embedder.embed("Likes pizza")
        b = await hashing_embedder.embed("likes   PIZZA")

        assert len(a) == 256
        assert a == b
        assert abs(sum(x * x for x in a) - 1.0) < 1e-5

    @pytest.mark.asyncio
    async def test_hashing_embedder_empty_text(self, hashing_embedder):
        assert not any(await hashing_embedder.embed(""))


class TestFactories:
    """Tests for provider factories."""

    def test_create_llm(self):
        assert isinstance(create_llm(LLMConfig(provider="ollama")), OllamaLLM)
        assert isinstance(create_llm(LLMConfig(provider="anthropic")), AnthropicLLM)

    def test_create_embedder(self):
        assert create_embedder(EmbeddingConfig(provider="none")) is None
        assert isinstance(create_embedder(EmbeddingConfig(provider="hashing")), HashingEmbedder)
        assert isinstance(create_embedder(EmbeddingConfig(provider="ollama")), OllamaEmbedder)

    def test_unknown_provider(self):
        config = LLMConfig.model_construct(provider="cohere")
        with pytest.raises(ConfigurationError):
            create_llm(config)
