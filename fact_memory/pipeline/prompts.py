"""
Prompt templates and response schemas for extraction and reconciliation.
"""

import json
from datetime import date
from typing import Any

from fact_memory.models.base import ConversationMessage

FACT_EXTRACTION_PROMPT = """You are a Personal Information Organizer, specialized in accurately storing facts, user memories, and preferences.
Your job is to extract relevant pieces of information from conversations and organize them into distinct, manageable facts.

Types of information to remember:
1. Personal preferences: likes, dislikes and specific preferences (food, products, activities, entertainment).
2. Important personal details: names, relationships, important dates.
3. Plans and intentions: upcoming events, trips, goals.
4. Activity and service preferences: dining, travel, hobbies.
5. Health and wellness: dietary restrictions, fitness routines.
6. Professional details: job titles, work habits, career goals.
7. Miscellaneous: favorite books, movies, brands.

Examples:

Input: Hi.
Output: {{"facts": []}}

Input: There are branches in trees.
Output: {{"facts": []}}

Input: Hi, I am looking for a restaurant in San Francisco.
Output: {{"facts": ["Looking for a restaurant in San Francisco"]}}

Input: Hi, my name is John. I am a software engineer.
Output: {{"facts": ["Name is John", "Is a software engineer"]}}

Input: Me favourite movies are Inception and Interstellar.
Output: {{"facts": ["Favourite movies are Inception and Interstellar"]}}

Rules:
- Today's date is {today}.
- Return the facts as JSON with a "facts" key holding a list of strings.
- Do not return anything from the example prompts above.
- If nothing worth remembering is found, return an empty list.
- Only extract facts from user and assistant messages; ignore system messages.
- Write each fact in the language the user wrote it in.

Following is a conversation between the user and the assistant. Extract the relevant facts and preferences about the user, if any, and return them in the JSON format shown above."""

UPDATE_MEMORY_PROMPT = """You are a smart memory manager which controls the memory of a system.
You can perform four operations: (1) add into the memory, (2) update the memory, (3) delete from the memory, and (4) no change.

Compare newly retrieved facts with the existing memory. For each new fact, decide whether to:
- ADD: Add it to the memory as a new element. Use a new id that is not in the existing memory.
- UPDATE: Update an existing memory element when the fact refines it or carries newer information. Keep the same id and set "oldMemory" to the previous text.
- DELETE: Delete an existing memory element when the fact contradicts it. Keep the same id.
- NONE: Make no change when the fact is already present or irrelevant. Keep the same id.

Guidelines:
- Only use ids that appear in the existing memory for UPDATE, DELETE and NONE.
- When two statements say the same thing, keep the one with more information.
- Return every existing memory element as well, with event NONE if it is unchanged.
- "oldMemory" must be null unless the event is UPDATE.

Below is the current content of the memory I have collected till now:

{existing}

The new retrieved facts are:

{facts}

Respond with JSON of the form:
{{"memory": [{{"id": "<id>", "text": "<memory text>", "event": "ADD|UPDATE|DELETE|NONE", "oldMemory": "<previous text or null>"}}]}}

Do not return anything except the JSON."""

FACTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "facts": {
            "type": "array",
            "description": "Array of extracted facts from the input text",
            "items": {"type": "string"},
        },
    },
    "required": ["facts"],
    "additionalProperties": False,
}

MEMORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "memory": {
            "type": "array",
            "description": "Array of memory operations and their details",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Memory entry identifier from 0 to n"},
                    "text": {"type": "string", "description": "Content of the memory"},
                    "event": {
                        "type": "string",
                        "enum": ["add", "update", "delete", "none", "ADD", "UPDATE", "DELETE", "NONE"],
                        "description": "Type of memory operation",
                    },
                    "oldMemory": {
                        "type": ["string", "null"],
                        "description": "Previous content for UPDATE operations",
                    },
                },
                "required": ["id", "text", "event", "oldMemory"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["memory"],
    "additionalProperties": False,
}


def parse_messages(messages: list[ConversationMessage]) -> str:
    """Render a transcript as ``role: content`` lines, skipping system messages."""
    return "\n".join(f"{m.role}: {m.content}" for m in messages if m.role != "system")


def fact_extraction_messages(transcript: str, custom_prompt: str | None = None) -> list[dict[str, str]]:
    """Build the chat messages for fact extraction."""
    if custom_prompt:
        return [
            {"role": "system", "content": custom_prompt},
            {"role": "user", "content": f"Input:\n{transcript}"},
        ]
    return [
        {"role": "system", "content": FACT_EXTRACTION_PROMPT.format(today=date.today().isoformat())},
        {"role": "user", "content": f"Input:\n{transcript}"},
    ]


def update_memory_messages(existing: list[dict[str, str]], facts: list[str]) -> list[dict[str, str]]:
    """Build the chat messages for reconciliation against aliased memories."""
    existing_text = json.dumps(existing, ensure_ascii=False, indent=2) if existing else "Current memory is empty."
    prompt = UPDATE_MEMORY_PROMPT.format(
        existing=existing_text,
        facts=json.dumps(facts, ensure_ascii=False, indent=2),
    )
    return [{"role": "system", "content": prompt}]
