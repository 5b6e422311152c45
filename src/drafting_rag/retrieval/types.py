"""drafting_rag.retrieval.types

Shared type definitions for the retrieval layer.

This module defines lightweight protocols used to decouple the retriever,
the ingestion pipeline and the orchestrator from concrete backend classes.
Test doubles only need to satisfy these protocols.

Classes
-------
SearchableIndex
    Protocol for the read side of an embedding index.
WritableIndex
    Protocol for the write side of an embedding index.
ChunkRetriever
    Protocol defining the minimal retriever interface.
"""

from typing import Any, Mapping, Optional, Protocol, Sequence

from drafting_rag.common.schemas import Chunk, SearchResult


class SearchableIndex(Protocol):
    """Read side of an embedding index."""

    def embed_query(self, text: str) -> list[float]:
        ...

    def search(
        self,
        query_vector: Sequence[float],
        k: int = 5,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> list[tuple[Chunk, Optional[float]]]:
        ...


class WritableIndex(Protocol):
    """Write side of an embedding index, as used during ingestion."""

    def add(self, chunks: Sequence[Chunk]) -> None:
        ...

    def delete_where(self, filter: Mapping[str, Any]) -> None:
        ...

    def versions(self, source: str) -> list[int]:
        ...


class ChunkRetriever(Protocol):
    """Protocol defining the retriever interface.

    A retriever takes a natural-language query and returns the chunks
    relevant to it, in presentation order.

    Methods
    -------
    retrieve
        Retrieve chunks relevant to a query.
    """

    def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> list[SearchResult]:
        """Retrieve chunks for a query.

        Parameters
        ----------
        query : str
            Natural-language query string.
        k : int or None, optional
            Maximum number of chunks.
        filter : Mapping[str, Any] or None, optional
            Equality conditions on chunk metadata.

        Returns
        -------
        list[SearchResult]
            Retrieved chunks.
        """
        ...
