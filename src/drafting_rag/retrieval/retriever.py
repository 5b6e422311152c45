"""drafting_rag.retrieval.retriever

Retriever implementation for the drafting RAG system.

The retriever embeds a query, asks the embedding index for the top-K most
similar chunks and returns them in presentation order rather than similarity
order: groups (by section or source) appear in the order of their best-ranked
member, and chunks inside a group follow the original document order.
Similarity only selects the candidate set.

Transient backend failures are retried with exponential backoff through a
shared :class:`~drafting_rag.common.retry.RetryPolicy`.

Classes
-------
VectorIndexRetriever
    Similarity retriever over an :class:`~drafting_rag.retrieval.vector_store.EmbeddingIndex`.

Functions
---------
order_results
    Reorder ranked search results by (group, chunk_index).
"""

import logging
from typing import Any, Mapping, Optional

from drafting_rag.common.errors import (
    IndexUnavailableError,
    InvalidInputError,
    RetrievalFailedError,
)
from drafting_rag.common.retry import RetryPolicy
from drafting_rag.common.schemas import GroupingPolicy, SearchResult, group_key, reading_order
from drafting_rag.retrieval.types import SearchableIndex
from drafting_rag.retrieval.vector_store import build_metadata_filters

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


def order_results(
        results: list[SearchResult],
        grouping: GroupingPolicy = GroupingPolicy.SECTION,
    ) -> list[SearchResult]:
    """Reorder ranked search results into presentation order.

    Parameters
    ----------
    results : list[SearchResult]
        Results in similarity order.
    grouping : GroupingPolicy, optional
        How chunks are grouped. Defaults to :attr:`GroupingPolicy.SECTION`.

    Returns
    -------
    list[SearchResult]
        Groups in order of their best rank. Inside a group, each document keeps
        its chunks together, ascending by ``chunk_index``, and documents follow
        their best rank.
    """
    groups: dict[str, list[SearchResult]] = {}
    for result in sorted(results, key=lambda r: r.rank):
        groups.setdefault(group_key(result.chunk, grouping), []).append(result)

    ordered: list[SearchResult] = []
    for members in groups.values():
        ordered.extend(reading_order(members, chunk_of=lambda r: r.chunk))
    return ordered


class VectorIndexRetriever:
    """Vector-based retriever over an embedding index.

    Parameters
    ----------
    index : SearchableIndex
        Index providing ``embed_query`` and ``search``.
    top_k : int, optional
        Default number of results. Defaults to ``5``.
    retry_policy : RetryPolicy, optional
        Policy applied to each search. Defaults to ``RetryPolicy()``
        (3 attempts, 1 s base delay).
    grouping : GroupingPolicy, optional
        Grouping used to order results. Defaults to ``"section"``.
    """

    def __init__(
            self,
            index: SearchableIndex,
            *,
            top_k: int = DEFAULT_TOP_K,
            retry_policy: Optional[RetryPolicy] = None,
            grouping: GroupingPolicy = GroupingPolicy.SECTION,
        ):
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")
        self.index = index
        self.top_k = top_k
        self.retry_policy = retry_policy or RetryPolicy()
        self.grouping = GroupingPolicy(grouping)

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            index: SearchableIndex,
        ) -> "VectorIndexRetriever":
        """Create a retriever from a ``retriever`` configuration mapping."""
        return cls(
            index,
            top_k=int(config.get("top_k", DEFAULT_TOP_K)),
            retry_policy=RetryPolicy.from_config_dict(config),
            grouping=GroupingPolicy(config.get("grouping", GroupingPolicy.SECTION.value)),
        )

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
            Maximum number of chunks. Defaults to ``top_k``.
        filter : Mapping[str, Any] or None, optional
            Equality conditions on chunk metadata (e.g. ``{"artifact_id": "a1"}``).

        Returns
        -------
        list[SearchResult]
            Up to ``k`` chunks in presentation order. Empty when nothing is
            indexed.

        Raises
        ------
        InvalidInputError
            If ``query`` is empty or ``k`` is not positive.
        InvalidFilterError
            If ``filter`` is malformed. Not retried.
        RetrievalFailedError
            If the index stays unavailable after every attempt.
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("Query must be a non-empty string.")
        k = self.top_k if k is None else k
        if not isinstance(k, int) or k <= 0:
            raise InvalidInputError(f"k must be a positive integer, got {k!r}")
        build_metadata_filters(filter)

        try:
            hits = self.retry_policy.call(self._search_once, query, k, filter)
        except IndexUnavailableError as exc:
            attempts = self.retry_policy.max_attempts
            logger.error("Retrieval failed after %d attempts: %s", attempts, exc)
            raise RetrievalFailedError(
                f"Retrieval failed after {attempts} attempts: {exc}",
                attempts=attempts,
            ) from exc

        results = [
            SearchResult(chunk=chunk, score=score, rank=rank)
            for rank, (chunk, score) in enumerate(hits, start=1)
        ]
        logger.debug("Retrieved %d chunks for query %r", len(results), query[:80])
        return order_results(results, self.grouping)

    def _search_once(
            self,
            query: str,
            k: int,
            filter: Optional[Mapping[str, Any]],
        ):
        vector = self.index.embed_query(query)
        return self.index.search(vector, k=k, filter=filter)


__all__ = [
    "DEFAULT_TOP_K",
    "VectorIndexRetriever",
    "order_results",
]
