"""
Ingestion pipeline: fact extraction and memory reconciliation.
"""

from fact_memory.pipeline.extractor import FactExtractor
from fact_memory.pipeline.reconciler import AliasTable, MemoryReconciler, find_candidates

__all__ = ["AliasTable", "FactExtractor", "MemoryReconciler", "find_candidates"]
