"""
LLM and embedding providers.
"""

from fact_memory.llm.base import BaseLLM, json_schema_format, parse_json_object
from fact_memory.llm.embedder import (
    BaseEmbedder,
    HashingEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
)
from fact_memory.llm.providers import AnthropicLLM, OllamaLLM, OpenAILLM, create_llm

__all__ = [
    "AnthropicLLM",
    "BaseEmbedder",
    "BaseLLM",
    "HashingEmbedder",
    "OllamaEmbedder",
    "OllamaLLM",
    "OpenAIEmbedder",
    "OpenAILLM",
    "create_embedder",
    "create_llm",
    "json_schema_format",
    "parse_json_object",
]
