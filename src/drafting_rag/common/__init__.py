"""
Common building blocks shared across the retrieval stack.

This package provides small, widely-used primitives (document and chunk
schemas, the error hierarchy and the retry policy) intended to be imported by
multiple layers of the system.

Classes
-------
Document
    Canonical document container.
Chunk
    Immutable chunk of a document with typed metadata.
ChunkMetadata
    Positional metadata of a chunk.
SearchResult
    Chunk returned by a similarity search.
AssembledContext
    Rendered context block.
GroupingPolicy
    Presentation grouping preference.
RetryPolicy
    Exponential-backoff retry wrapper.

Attributes
----------
ChunkId : TypeAlias
    Type alias for chunk identifiers.

See Also
--------
drafting_rag.common.errors
    Exception hierarchy shared by every component.
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    AssembledContext,
    Chunk,
    ChunkMetadata,
    Document,
    GroupingPolicy,
    SearchResult,
    group_key,
)
from .retry import RetryPolicy

ChunkId: TypeAlias = str

__all__ = [
    "AssembledContext",
    "Chunk",
    "ChunkMetadata",
    "Document",
    "GroupingPolicy",
    "SearchResult",
    "group_key",
    "RetryPolicy",
    "ChunkId",
]
