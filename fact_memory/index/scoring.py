"""
Ranking helpers for hybrid lexical/semantic search.
"""

import numpy as np

from fact_memory.utils import tokenize


def lexical_score(query: str, text: str) -> float:
    """Fraction of query words present in the text (keyword overlap)."""
    query_words = set(tokenize(query))
    if not query_words:
        return 0.0
    content_words = set(tokenize(text))
    return len(query_words & content_words) / len(query_words)


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine similarity clamped to [0, 1]."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return max(0.0, min(1.0, float(np.dot(va, vb)) / denom))


def hybrid_score(lexical: float, semantic: float | None, semantic_ratio: float) -> float:
    """Blend lexical and semantic scores; lexical only when no vector score exists."""
    if semantic is None:
        return lexical
    return semantic_ratio * semantic + (1.0 - semantic_ratio) * lexical
