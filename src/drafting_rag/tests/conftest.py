import hashlib
import re
from datetime import datetime, timezone

import pytest
from qdrant_client import QdrantClient

from drafting_rag.common.errors import IndexUnavailableError
from drafting_rag.common.retry import RetryPolicy
from drafting_rag.common.schemas import Chunk, ChunkMetadata
from drafting_rag.retrieval.vector_store import EmbeddingIndex

FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class HashingEmbedder:
    """
    Deterministic bag-of-words embedder for tests.

    Each lower-cased word is hashed into one of ``dims`` buckets; a constant
    bias component keeps every vector non-zero.
    """

    def __init__(self, dims: int = 512):
        self.dims = dims
        self.calls = 0

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * (self.dims + 1)
        for token in re.findall(r"[a-z]+", text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dims
            vector[bucket] += 1.0
        vector[self.dims] = 1.0
        return vector

    def embed_query(self, query: str) -> list[float]:
        self.calls += 1
        return self._embed(query)

    def embed_documents(self, documents: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._embed(d) for d in documents]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)


class ScriptedIndex:
    """
    In-process stand-in for the embedding index.

    ``outcomes`` is consumed one entry per search call: an exception instance
    is raised, anything else is returned as the search hits. The last entry
    repeats once the script runs out.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.search_calls = []
        self.added = []
        self.deleted_where = []
        self.stored_versions = {}

    def embed_query(self, text: str) -> list[float]:
        return [1.0]

    def search(self, query_vector, k=5, filter=None):
        self.search_calls.append({"k": k, "filter": filter})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)[:k]

    def add(self, chunks):
        self.added.append(list(chunks))
        for chunk in chunks:
            versions = self.stored_versions.setdefault(chunk.metadata.source, set())
            versions.add(chunk.metadata.version)

    def delete_where(self, filter):
        self.deleted_where.append(dict(filter))
        versions = self.stored_versions.get(filter["source"], set())
        versions.discard(filter.get("version"))

    def versions(self, source):
        return sorted(self.stored_versions.get(source, set()))


def _make_chunk(
    content: str,
    *,
    source: str = "doc.md",
    chunk_index: int = 0,
    section_label=None,
    version: int = 1,
    artifact_id=None,
    overlap: int = 0,
) -> Chunk:
    return Chunk(
        content=content,
        overlap=overlap,
        metadata=ChunkMetadata(
            source=source,
            chunk_index=chunk_index,
            section_label=section_label,
            version=version,
            artifact_id=artifact_id,
            created_at=FIXED_TIME,
        ),
    )


@pytest.fixture
def make_chunk():
    """Factory building chunks with a fixed timestamp."""
    return _make_chunk


@pytest.fixture
def hashing_embedder():
    return HashingEmbedder()


@pytest.fixture
def memory_index(hashing_embedder):
    """Embedding index over an in-process Qdrant instance."""
    client = QdrantClient(location=":memory:")
    index = EmbeddingIndex(
        embedder=hashing_embedder,
        collection_name="test-documents",
        client_factory=lambda: client,
        batch_size=4,
    )
    yield index
    client.close()


@pytest.fixture
def scripted_index():
    """Factory for :class:`ScriptedIndex` instances."""
    return ScriptedIndex


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fast_retry(sleeps):
    """Three-attempt retry policy that records delays instead of sleeping."""
    return RetryPolicy(
        max_attempts=3,
        base_delay=0.5,
        retry_on=(IndexUnavailableError,),
        sleep=sleeps.append,
    )
