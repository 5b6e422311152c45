"""drafting_rag.retrieval.vector_store

Embedding index for the retrieval layer.

This module wraps an embedder and a Qdrant collection (through LlamaIndex's
:class:`~llama_index.vector_stores.qdrant.QdrantVectorStore`) behind a small
index API. The main responsibilities are:
- embedding :class:`~drafting_rag.common.schemas.Chunk` objects and writing
  them to the collection, all or nothing
- similarity search with optional equality filters on chunk metadata
- lifecycle management (lazy, lock-guarded connection; count; clear)

A single :class:`EmbeddingIndex` is meant to be built once per process by the
container and shared by the retriever and the ingestion pipeline.

Classes
-------
IndexStatus
    Snapshot of the index state.
EmbeddingIndex
    Qdrant-backed embedding index.

Functions
---------
build_metadata_filters
    Validate a metadata filter mapping and convert it to LlamaIndex filters.
create_embedding_index
    Create an embedding index from a configuration mapping.
"""
import asyncio
import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

import yaml
from llama_index.core.schema import TextNode
from llama_index.core.vector_stores.types import (
    FilterOperator,
    MetadataFilter,
    MetadataFilters,
    VectorStoreQuery,
)
from llama_index.vector_stores.qdrant import QdrantVectorStore
from qdrant_client import QdrantClient, models

from drafting_rag.common.errors import (
    DraftingRAGError,
    IndexUnavailableError,
    IndexWriteError,
    InvalidFilterError,
    InvalidInputError,
)
from drafting_rag.common.schemas import METADATA_FIELDS, Chunk, ChunkMetadata
from drafting_rag.retrieval.embedder import BaseEmbedder

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_NAME = "legal-documents"
DEFAULT_TIMEOUT = 5.0
DEFAULT_BATCH_SIZE = 64

_OVERLAP_KEY = "overlap"
_SCALAR_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class IndexStatus:
    """Snapshot of the index state.

    Attributes
    ----------
    initialized : bool
        Whether the backing collection exists.
    document_count : int
        Number of stored chunks.
    """

    initialized: bool
    document_count: int


def _client_timeout(timeout: float) -> int:
    """Whole seconds for the Qdrant client, rounded up so sub-second values stay positive."""
    return max(1, math.ceil(timeout))


def build_metadata_filters(filter: Optional[Mapping[str, Any]]) -> Optional[MetadataFilters]:
    """Validate a metadata filter and convert it to LlamaIndex filters.

    Parameters
    ----------
    filter : Mapping[str, Any] or None
        Mapping of :class:`ChunkMetadata` field name to the scalar value it
        must equal. All conditions must hold.

    Returns
    -------
    MetadataFilters or None
        ``None`` when ``filter`` is empty.

    Raises
    ------
    InvalidFilterError
        If ``filter`` is not a mapping, names an unknown field, or holds a
        non-scalar value.
    """
    if not filter:
        return None
    if not isinstance(filter, Mapping):
        raise InvalidFilterError(f"Filter must be a mapping, got {type(filter).__name__}")

    conditions = []
    for key, value in filter.items():
        if key not in METADATA_FIELDS:
            raise InvalidFilterError(
                f"Unknown filter key {key!r}. Allowed keys: {list(METADATA_FIELDS)}"
            )
        if not isinstance(value, _SCALAR_TYPES):
            raise InvalidFilterError(
                f"Filter value for {key!r} must be a scalar, got {type(value).__name__}"
            )
        conditions.append(MetadataFilter(key=key, value=value, operator=FilterOperator.EQ))

    return MetadataFilters(filters=conditions)


class EmbeddingIndex:
    """Qdrant-backed embedding index.

    The Qdrant client and the LlamaIndex store handle are created lazily on
    first use, under a re-entrant lock, so concurrent first callers share a
    single handle. :meth:`clear` drops the collection and the cached handle
    under the same lock.

    Parameters
    ----------
    embedder : BaseEmbedder
        Embedder used for both chunks and queries.
    collection_name : str, optional
        Name of the Qdrant collection. Defaults to ``"legal-documents"``.
    client_factory : Callable[[], QdrantClient], optional
        Zero-argument callable returning a connected client. Defaults to a
        local client on ``localhost:6333`` using ``timeout``.
    batch_size : int, optional
        Number of nodes written per backend call (and embedded per request
        when ``embedding_workers > 1``). Defaults to ``64``.
    embedding_workers : int, optional
        Maximum number of embedding batches in flight during :meth:`add`.
        ``1`` embeds synchronously. Defaults to ``1``.
    timeout : float, optional
        Backend timeout in seconds, used by the default client factory.
        Defaults to ``5.0``.
    """

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            embedder: BaseEmbedder,
        ) -> "EmbeddingIndex":
        """Create an embedding index from a ``vector_store`` configuration mapping.

        Parameters
        ----------
        config : Mapping[str, Any]
            Expected keys (all optional):
            - ``collection_name`` (str): default ``"legal-documents"``
            - ``location`` (str): e.g. ``":memory:"`` for an in-process store
            - ``url`` (str) or ``host`` (str) and ``port`` (int)
            - ``api_key`` (str)
            - ``timeout`` (float): default ``5.0``
            - ``batch_size`` (int), ``embedding_workers`` (int)
        embedder : BaseEmbedder
            Embedder used for chunks and queries.

        Returns
        -------
        EmbeddingIndex
            Initialised (but not yet connected) index.
        """
        timeout = float(config.get("timeout", DEFAULT_TIMEOUT))
        location = config.get("location")
        url = config.get("url")
        host = config.get("host", "localhost")
        port = int(config.get("port", 6333))
        api_key = config.get("api_key")

        def client_factory() -> QdrantClient:
            if location:
                return QdrantClient(location=location)
            if url:
                return QdrantClient(url=url, api_key=api_key, timeout=_client_timeout(timeout))
            return QdrantClient(host=host, port=port, api_key=api_key, timeout=_client_timeout(timeout))

        return cls(
            embedder=embedder,
            collection_name=config.get("collection_name", DEFAULT_COLLECTION_NAME),
            client_factory=client_factory,
            batch_size=int(config.get("batch_size", DEFAULT_BATCH_SIZE)),
            embedding_workers=int(config.get("embedding_workers", 1)),
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config_path: str, *, embedder: BaseEmbedder) -> "EmbeddingIndex":
        """Load a YAML file and delegate to :meth:`from_config_dict`."""
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg, embedder=embedder)

    def __init__(
        self,
        *,
        embedder: BaseEmbedder = None,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        client_factory: Optional[Callable[[], QdrantClient]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        embedding_workers: int = 1,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if embedder is None:
            raise ValueError("EmbeddingIndex requires an embedder instance. Provide it via the container.")
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if embedding_workers <= 0:
            raise ValueError(f"embedding_workers must be positive, got {embedding_workers}")

        self.embedder = embedder
        self.collection_name = collection_name
        self.batch_size = batch_size
        self.embedding_workers = embedding_workers
        self.timeout = timeout
        self._client_factory = client_factory or (
            lambda: QdrantClient(host="localhost", port=6333, timeout=_client_timeout(timeout))
        )

        self._lock = threading.RLock()
        self._client: Optional[QdrantClient] = None
        self._vector_store: Optional[QdrantVectorStore] = None

    # ----------------- Lifecycle -----------------

    @property
    def client(self) -> QdrantClient:
        """The Qdrant client, created on first access."""
        client = self._client
        if client is None:
            with self._lock:
                if self._client is None:
                    try:
                        self._client = self._client_factory()
                    except Exception as exc:
                        raise IndexUnavailableError(
                            f"Could not create Qdrant client for {self.collection_name!r}: {exc}"
                        ) from exc
                client = self._client
        return client

    def _store(self) -> QdrantVectorStore:
        store = self._vector_store
        if store is None:
            with self._lock:
                if self._vector_store is None:
                    try:
                        self._vector_store = QdrantVectorStore(
                            client=self.client,
                            collection_name=self.collection_name,
                            dense_vector_name="",
                        )
                    except IndexUnavailableError:
                        raise
                    except Exception as exc:
                        raise IndexUnavailableError(
                            f"Could not open collection {self.collection_name!r}: {exc}"
                        ) from exc
                    logger.info("Embedding index initialised for collection %r", self.collection_name)
                store = self._vector_store
        return store

    def _backend(self, action: str, fn: Callable[..., Any], *args, error=IndexUnavailableError, **kwargs):
        """Run one backend call, translating client failures to ``error``."""
        try:
            return fn(*args, **kwargs)
        except DraftingRAGError:
            raise
        except Exception as exc:
            raise error(f"{action} on {self.collection_name!r} failed: {exc}") from exc

    def _collection_exists(self) -> bool:
        return bool(self._backend(
            "Collection lookup", lambda: self.client.collection_exists(self.collection_name)
        ))

    def clear(self) -> None:
        """Remove every stored chunk and drop the cached store handle.

        Raises
        ------
        IndexWriteError
            If the collection cannot be dropped.
        """
        with self._lock:
            if self._collection_exists():
                self._backend(
                    "Clear",
                    lambda: self.client.delete_collection(collection_name=self.collection_name),
                    error=IndexWriteError,
                )
            self._vector_store = None
        logger.info("Embedding index cleared for collection %r", self.collection_name)

    def count(self) -> int:
        """Return the number of stored chunks (``0`` when the collection is missing)."""
        if not self._collection_exists():
            return 0
        result = self._backend(
            "Count", lambda: self.client.count(collection_name=self.collection_name, exact=True)
        )
        return int(result.count)

    def status(self) -> IndexStatus:
        """Return an :class:`IndexStatus` snapshot."""
        initialized = self._collection_exists()
        return IndexStatus(
            initialized=initialized,
            document_count=self.count() if initialized else 0,
        )

    # ----------------- Writes -----------------

    def add(self, chunks: Sequence[Chunk]) -> None:
        """Embed and store chunks, all or nothing.

        Every chunk is embedded before anything is written. If a write fails
        part-way, the nodes already written by this call are deleted again.

        Parameters
        ----------
        chunks : Sequence[Chunk]
            Chunks to store. Re-adding a chunk with the same
            ``(source, version, chunk_index)`` overwrites it.

        Raises
        ------
        IndexWriteError
            If embedding or writing fails.
        RuntimeError
            If ``embedding_workers > 1`` and an event loop is already running
            in this thread; use :meth:`aadd` instead.
        """
        chunks = list(chunks)
        if not chunks:
            return

        if self.embedding_workers > 1:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(self.aadd(chunks))
                return
            raise RuntimeError(
                "add() with embedding_workers > 1 cannot run inside an active event loop; "
                "use `await aadd(...)` instead."
            )

        embeddings = self._embed_chunks(chunks)
        self._write_nodes(self._build_nodes(chunks, embeddings))

    async def aadd(self, chunks: Sequence[Chunk]) -> None:
        """Asynchronously embed chunks with bounded concurrency, then store them."""
        chunks = list(chunks)
        if not chunks:
            return

        semaphore = asyncio.Semaphore(self.embedding_workers)
        batches = [
            chunks[start:start + self.batch_size]
            for start in range(0, len(chunks), self.batch_size)
        ]

        async def _embed_batch(batch: list[Chunk]) -> list[list[float]]:
            async with semaphore:
                return await self.embedder.aembed_documents([c.content for c in batch])

        try:
            results = await asyncio.gather(*(_embed_batch(b) for b in batches))
        except Exception as exc:
            raise IndexWriteError(f"Embedding failed for {len(chunks)} chunks: {exc}") from exc

        embeddings = [vector for batch in results for vector in batch]
        nodes = self._build_nodes(chunks, embeddings)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_nodes, nodes)

    def _embed_chunks(self, chunks: list[Chunk]) -> list[list[float]]:
        try:
            embeddings = self.embedder.embed_documents([c.content for c in chunks])
        except Exception as exc:
            raise IndexWriteError(f"Embedding failed for {len(chunks)} chunks: {exc}") from exc
        return embeddings

    def _build_nodes(self, chunks: list[Chunk], embeddings: list[list[float]]) -> list[TextNode]:
        if len(embeddings) != len(chunks):
            raise IndexWriteError(
                f"Embedder returned {len(embeddings)} vectors for {len(chunks)} chunks"
            )

        nodes: list[TextNode] = []
        for chunk, embedding in zip(chunks, embeddings):
            metadata = chunk.metadata.to_dict()
            metadata[_OVERLAP_KEY] = chunk.overlap
            nodes.append(
                TextNode(
                    id_=chunk.id,
                    text=chunk.content,
                    metadata=metadata,
                    embedding=list(embedding),
                )
            )
        return nodes

    def _write_nodes(self, nodes: list[TextNode]) -> None:
        written: list[str] = []
        with self._lock:
            store = self._store()
            try:
                for start in range(0, len(nodes), self.batch_size):
                    batch = nodes[start:start + self.batch_size]
                    store.add(batch)
                    written.extend(node.node_id for node in batch)
            except Exception as exc:
                if written:
                    logger.warning(
                        "Write to %r failed after %d nodes; rolling back",
                        self.collection_name,
                        len(written),
                    )
                    try:
                        store.delete_nodes(node_ids=written)
                    except Exception:
                        logger.exception("Rollback of %d nodes failed", len(written))
                raise IndexWriteError(
                    f"Failed to write {len(nodes)} nodes to {self.collection_name!r}: {exc}"
                ) from exc

        logger.debug("Wrote %d nodes to %r", len(nodes), self.collection_name)

    def delete(self, ids: Sequence[str]) -> None:
        """Delete chunks by identifier. Unknown identifiers are ignored.

        Raises
        ------
        IndexWriteError
            If the backend rejects the delete.
        """
        ids = list(ids)
        if not ids or not self._collection_exists():
            return
        with self._lock:
            store = self._store()
            self._backend("Delete", store.delete_nodes, node_ids=ids, error=IndexWriteError)

    def delete_where(self, filter: Mapping[str, Any]) -> None:
        """Delete every chunk whose metadata matches ``filter``.

        Raises
        ------
        InvalidFilterError
            If ``filter`` is empty or malformed.
        IndexWriteError
            If the backend rejects the delete.
        """
        filters = build_metadata_filters(filter)
        if filters is None:
            raise InvalidFilterError("delete_where() requires a non-empty filter; use clear() instead.")
        if not self._collection_exists():
            return
        with self._lock:
            store = self._store()
            self._backend("Filtered delete", store.delete_nodes, filters=filters, error=IndexWriteError)

    # ----------------- Reads -----------------

    def embed_query(self, text: str) -> list[float]:
        """Embed a query string.

        Raises
        ------
        IndexUnavailableError
            If the embedding provider fails.
        """
        try:
            return self.embedder.embed_query(text)
        except Exception as exc:
            raise IndexUnavailableError(f"Query embedding failed: {exc}") from exc

    def search(
            self,
            query_vector: Sequence[float],
            k: int = 5,
            filter: Optional[Mapping[str, Any]] = None,
        ) -> list[tuple[Chunk, Optional[float]]]:
        """Return up to ``k`` chunks most similar to ``query_vector``.

        Parameters
        ----------
        query_vector : Sequence[float]
            Query embedding.
        k : int, optional
            Maximum number of results. Defaults to ``5``.
        filter : Mapping[str, Any] or None, optional
            Equality conditions on chunk metadata.

        Returns
        -------
        list[tuple[Chunk, float or None]]
            ``(chunk, score)`` pairs in descending similarity. Empty when the
            collection is empty or missing.

        Raises
        ------
        InvalidInputError
            If ``k`` is not positive.
        InvalidFilterError
            If ``filter`` is malformed.
        IndexUnavailableError
            If the backend cannot be reached.
        """
        if not isinstance(k, int) or k <= 0:
            raise InvalidInputError(f"k must be a positive integer, got {k!r}")
        filters = build_metadata_filters(filter)

        if not self._collection_exists():
            return []

        query = VectorStoreQuery(
            query_embedding=list(query_vector),
            similarity_top_k=k,
            filters=filters,
        )
        try:
            result = self._store().query(query)
        except IndexUnavailableError:
            raise
        except Exception as exc:
            raise IndexUnavailableError(
                f"Search against {self.collection_name!r} failed: {exc}"
            ) from exc

        nodes = result.nodes or []
        similarities = list(result.similarities or [])
        similarities += [None] * (len(nodes) - len(similarities))
        return [(self._node_to_chunk(node), score) for node, score in zip(nodes, similarities)]

    def versions(self, source: str) -> list[int]:
        """Return the distinct stored versions of ``source`` in ascending order.

        Raises
        ------
        IndexUnavailableError
            If the backend cannot be reached.
        """
        if not self._collection_exists():
            return []

        scroll_filter = models.Filter(
            must=[models.FieldCondition(key="source", match=models.MatchValue(value=source))]
        )
        found: set[int] = set()
        offset = None
        while True:
            points, offset = self._backend(
                "Version scroll",
                self.client.scroll,
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                with_payload=["version"],
                with_vectors=False,
                limit=256,
                offset=offset,
            )
            found.update(int((p.payload or {}).get("version") or 1) for p in points)
            if offset is None:
                break
        return sorted(found)

    @staticmethod
    def _node_to_chunk(node) -> Chunk:
        metadata = dict(node.metadata or {})
        return Chunk(
            content=node.get_content(),
            metadata=ChunkMetadata.from_dict(metadata),
            overlap=int(metadata.get(_OVERLAP_KEY) or 0),
        )


def create_embedding_index(config: Mapping[str, Any], embedder: BaseEmbedder) -> EmbeddingIndex:
    """Create an embedding index from a ``vector_store`` configuration mapping.

    Raises
    ------
    ValueError
        If a backend other than Qdrant is requested.
    """
    kind = str(config.get("kind") or config.get("type") or "qdrant").lower()
    if kind != "qdrant":
        raise ValueError(f"Unknown vector store kind: {kind!r}")
    return EmbeddingIndex.from_config_dict(config, embedder=embedder)


__all__ = [
    "DEFAULT_COLLECTION_NAME",
    "IndexStatus",
    "EmbeddingIndex",
    "build_metadata_filters",
    "create_embedding_index",
]
