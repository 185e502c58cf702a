"""
Filter and sort semantics shared by every index backend.

A filter is a mapping of key -> value. Scalar values mean equality,
lists/tuples mean "IN" membership (an empty list is ignored), and all
keys must match. Keys address document fields or, via ``metadata.<key>``
or a bare unknown key, the record's metadata.
"""

from typing import Any, Iterable

from fact_memory.errors import ValidationError
from fact_memory.models.base import SortDirection, SortOption

# Top-level document fields, keyed by every accepted spelling.
DOCUMENT_FIELDS = {
    "id": "id",
    "userId": "userId",
    "user_id": "userId",
    "sessionId": "sessionId",
    "session_id": "sessionId",
    "memory": "memory",
    "createdAt": "createdAt",
    "created_at": "createdAt",
    "updatedAt": "updatedAt",
    "updated_at": "updatedAt",
}

_MISSING = object()


def resolve_key(key: str) -> tuple[str, ...]:
    """Resolve a filter/sort key to a path into the document."""
    if key in DOCUMENT_FIELDS:
        return (DOCUMENT_FIELDS[key],)
    if key.startswith("metadata."):
        return ("metadata", key[len("metadata."):])
    return ("metadata", key)


def lookup(document: dict[str, Any], key: str) -> Any:
    """Read the value a key addresses, or a sentinel when absent."""
    value: Any = document
    for part in resolve_key(key):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def normalize_filter(filter: dict[str, Any] | None) -> dict[str, Any]:
    """Drop empty membership lists and canonicalize field spellings."""
    if not filter:
        return {}

    normalized: dict[str, Any] = {}
    for key, value in filter.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"Invalid filter key: {key!r}")
        if isinstance(value, (list, tuple, set)):
            if not value:
                continue
            value = list(value)
        canonical = DOCUMENT_FIELDS.get(key, key)
        normalized[canonical] = value
    return normalized


def matches_filter(document: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """Check whether a document satisfies every filter key."""
    for key, expected in normalize_filter(filter).items():
        actual = lookup(document, key)
        if actual is _MISSING:
            return False
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def normalize_sort(sort: Iterable[SortOption | dict[str, Any]] | SortOption | dict | None) -> list[SortOption]:
    """Coerce sort input into a list of SortOption."""
    if sort is None:
        return []
    if isinstance(sort, (SortOption, dict)):
        sort = [sort]

    options = []
    for item in sort:
        if isinstance(item, SortOption):
            options.append(item)
            continue
        try:
            options.append(SortOption.model_validate(item))
        except Exception as e:
            raise ValidationError(f"Invalid sort option {item!r}: {e}") from e
    return options


def sort_documents(
    documents: list[dict[str, Any]],
    sort: list[SortOption],
) -> list[dict[str, Any]]:
    """Stable multi-key sort; documents missing a key sort last."""
    ordered = list(documents)
    for option in reversed(sort):
        present = [d for d in ordered if lookup(d, option.field) is not _MISSING]
        missing = [d for d in ordered if lookup(d, option.field) is _MISSING]
        present.sort(
            key=lambda d: _sort_key(lookup(d, option.field)),
            reverse=option.direction == SortDirection.DESC,
        )
        ordered = present + missing
    return ordered


def _sort_key(value: Any) -> tuple[int, Any]:
    # Group by type so mixed-type columns never compare str with int
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, str(value))
