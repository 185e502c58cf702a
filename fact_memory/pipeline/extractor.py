"""
Fact extraction: one structured LLM call turning a transcript into facts.
"""

import logging

from fact_memory.errors import ProviderError
from fact_memory.llm.base import BaseLLM, json_schema_format
from fact_memory.models.base import ConversationMessage
from fact_memory.pipeline.prompts import FACTS_SCHEMA, fact_extraction_messages, parse_messages

logger = logging.getLogger(__name__)


class FactExtractor:
    """
    Extracts short, atomic facts from conversation messages.

    The response must be ``{"facts": [str, ...]}``; anything else is
    rejected as a provider error rather than partially accepted.
    """

    def __init__(self, llm: BaseLLM, custom_prompt: str | None = None):
        self.llm = llm
        self.custom_prompt = custom_prompt

    async def extract(self, messages: list[ConversationMessage]) -> list[str]:
        """
        Extract facts from a transcript.

        Args:
            messages: Conversation to extract from

        Returns:
            Extracted facts (possibly empty)

        Raises:
            ProviderError: The LLM failed or returned a malformed response.
        """
        transcript = parse_messages(messages)
        if not transcript.strip():
            return []

        response = await self.llm.run(
            fact_extraction_messages(transcript, self.custom_prompt),
            json_schema_format("facts_schema", FACTS_SCHEMA),
        )

        facts = response.get("facts") if isinstance(response, dict) else None
        if not isinstance(facts, list):
            raise ProviderError(f"Fact extraction response is missing a 'facts' list: {response!r}")
        if not all(isinstance(f, str) for f in facts):
            raise ProviderError(f"Fact extraction returned non-string facts: {facts!r}")

        facts = [f.strip() for f in facts if f.strip()]
        logger.debug(f"Extracted facts: {facts}")
        return facts
