"""
Structured-output LLM capability.

The engine talks to language models through one call: ``run(messages,
response_format)`` returning the parsed JSON object. ``response_format``
uses the OpenAI json_schema envelope::

    {"type": "json_schema",
     "json_schema": {"name": "facts_schema", "strict": True, "schema": {...}}}

Adapters translate that envelope to whatever their provider accepts.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from fact_memory.config import LLMConfig
from fact_memory.errors import ProviderError


def json_schema_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    """Build a strict json_schema response format."""
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "strict": True, "schema": schema},
    }


def unpack_format(response_format: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Get (name, schema) out of a json_schema response format."""
    try:
        spec = response_format["json_schema"]
        return spec.get("name", "response"), spec["schema"]
    except (KeyError, TypeError, AttributeError) as e:
        raise ProviderError(f"Invalid response format: {response_format!r}") from e


def parse_json_object(text: str | None) -> dict[str, Any]:
    """Parse a model reply that must be a JSON object."""
    if not text:
        raise ProviderError("LLM returned an empty response")

    cleaned = text.strip()
    # Some local models wrap JSON in a markdown fence despite the schema
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ProviderError(f"LLM returned invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProviderError(f"LLM returned {type(data).__name__}, expected a JSON object")
    return data


class BaseLLM(ABC):
    """Abstract base class for structured-output LLM providers."""

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    async def run(
        self,
        messages: list[dict[str, str]],
        response_format: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Run a chat completion constrained to a JSON schema.

        Args:
            messages: Chat messages with 'role' and 'content'.
            response_format: json_schema envelope (see ``json_schema_format``).

        Returns:
            The parsed JSON object.

        Raises:
            ProviderError: On transport failure or unparseable output.
        """
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass

    async def __aenter__(self) -> "BaseLLM":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
