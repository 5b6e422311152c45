import threading
import time

import pytest
from qdrant_client import QdrantClient

from drafting_rag.common.errors import (
    IndexUnavailableError,
    IndexWriteError,
    InvalidFilterError,
    InvalidInputError,
)
from drafting_rag.retrieval import vector_store
from drafting_rag.retrieval.vector_store import (
    EmbeddingIndex,
    IndexStatus,
    build_metadata_filters,
    create_embedding_index,
)


@pytest.fixture
def lease_chunks(make_chunk):
    return [
        make_chunk("The tenant pays rent on the first day of each month.", source="lease.md", chunk_index=0),
        make_chunk("The landlord repairs the roof and external walls.", source="lease.md", chunk_index=1),
        make_chunk("Either party may terminate with three months notice.", source="lease.md", chunk_index=2),
        make_chunk("Confidential information must not be disclosed.", source="nda.md", chunk_index=0,
                   section_label="Section 3. Confidentiality", artifact_id="art-7"),
        make_chunk("The receiving party returns all documents on request.", source="nda.md", chunk_index=1,
                   section_label="Section 3. Confidentiality", artifact_id="art-7", overlap=5),
    ]


def test_empty_index_returns_no_results(memory_index, hashing_embedder):
    assert memory_index.count() == 0
    assert memory_index.search(hashing_embedder.embed_query("rent"), k=3) == []
    assert memory_index.status() == IndexStatus(initialized=False, document_count=0)


def test_add_then_search_returns_most_similar_chunk(memory_index, lease_chunks):
    memory_index.add(lease_chunks)

    assert memory_index.count() == 5
    hits = memory_index.search(memory_index.embed_query("when does the tenant pay rent"), k=2)

    assert len(hits) == 2
    best, score = hits[0]
    assert best.content == lease_chunks[0].content
    assert best.metadata.source == "lease.md"
    assert best.metadata.chunk_index == 0
    assert score is not None
    assert hits[0][1] >= hits[1][1]


def test_search_round_trips_metadata(memory_index, lease_chunks):
    memory_index.add(lease_chunks)

    hits = memory_index.search(memory_index.embed_query("receiving party returns documents"), k=1)
    chunk, _ = hits[0]

    assert chunk == lease_chunks[4]
    assert chunk.id == lease_chunks[4].id
    assert chunk.overlap == 5


def test_search_with_filter(memory_index, lease_chunks):
    memory_index.add(lease_chunks)
    query = memory_index.embed_query("tenant rent")

    hits = memory_index.search(query, k=5, filter={"source": "nda.md"})
    assert {c.metadata.source for c, _ in hits} == {"nda.md"}

    hits = memory_index.search(query, k=5, filter={"artifact_id": "art-7", "chunk_index": 1})
    assert [c.metadata.chunk_index for c, _ in hits] == [1]


@pytest.mark.parametrize(
    "bad_filter",
    [{"colour": "red"}, {"source": ["a.md", "b.md"]}, {"version": None}, ["source"]],
)
def test_invalid_filter_raises(memory_index, bad_filter):
    with pytest.raises(InvalidFilterError):
        memory_index.search([0.0] * 513, k=3, filter=bad_filter)


def test_non_positive_k_raises(memory_index):
    with pytest.raises(InvalidInputError):
        memory_index.search([0.0] * 513, k=0)


def test_build_metadata_filters():
    assert build_metadata_filters(None) is None
    assert build_metadata_filters({}) is None

    filters = build_metadata_filters({"source": "a.md", "version": 2})
    assert [(f.key, f.value) for f in filters.filters] == [("source", "a.md"), ("version", 2)]


def test_readding_same_chunks_is_idempotent(memory_index, lease_chunks):
    memory_index.add(lease_chunks)
    memory_index.add(lease_chunks)

    assert memory_index.count() == 5


def test_delete_and_delete_where(memory_index, lease_chunks):
    memory_index.add(lease_chunks)

    memory_index.delete([lease_chunks[0].id])
    assert memory_index.count() == 4

    memory_index.delete_where({"source": "nda.md"})
    assert memory_index.count() == 2

    with pytest.raises(InvalidFilterError):
        memory_index.delete_where({})


def test_versions(memory_index, make_chunk):
    memory_index.add([
        make_chunk("first draft", source="lease.md", version=1),
        make_chunk("second draft", source="lease.md", version=2),
        make_chunk("second draft continued", source="lease.md", version=2, chunk_index=1),
        make_chunk("other", source="nda.md", version=4),
    ])

    assert memory_index.versions("lease.md") == [1, 2]
    assert memory_index.versions("nda.md") == [4]
    assert memory_index.versions("missing.md") == []


def test_clear_then_reinitialise(memory_index, lease_chunks):
    memory_index.add(lease_chunks)
    assert memory_index.status() == IndexStatus(initialized=True, document_count=5)

    memory_index.clear()
    assert memory_index.count() == 0
    assert memory_index.search(memory_index.embed_query("rent"), k=3) == []

    memory_index.add(lease_chunks[:2])
    assert memory_index.count() == 2


def test_embedding_failure_writes_nothing(memory_index, lease_chunks, monkeypatch):
    def broken(texts):
        raise ConnectionError("embedding provider down")

    monkeypatch.setattr(memory_index.embedder, "embed_documents", broken)

    with pytest.raises(IndexWriteError):
        memory_index.add(lease_chunks)
    assert memory_index.count() == 0


def test_write_failure_rolls_back(memory_index, lease_chunks, monkeypatch):
    memory_index.add(lease_chunks[:1])
    store_cls = type(memory_index._store())
    real_add = store_cls.add
    calls = {"n": 0}

    def flaky_add(self, nodes, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        return real_add(self, nodes, **kwargs)

    monkeypatch.setattr(store_cls, "add", flaky_add)
    more = lease_chunks[1:]
    memory_index.batch_size = 2

    with pytest.raises(IndexWriteError):
        memory_index.add(more)

    assert memory_index.count() == 1


def test_unreachable_backend_raises_unavailable(hashing_embedder):
    def refuse():
        raise ConnectionRefusedError("connection refused")

    index = EmbeddingIndex(embedder=hashing_embedder, client_factory=refuse)

    with pytest.raises(IndexUnavailableError):
        index.search([0.0] * 513, k=3)


def test_backend_query_error_is_translated(memory_index, lease_chunks, monkeypatch):
    memory_index.add(lease_chunks)
    store_cls = type(memory_index._store())

    def broken_query(self, query, **kwargs):
        raise TimeoutError("timed out")

    monkeypatch.setattr(store_cls, "query", broken_query)

    with pytest.raises(IndexUnavailableError):
        memory_index.search(memory_index.embed_query("rent"), k=3)


def test_embed_query_failure_is_transient(memory_index, monkeypatch):
    def broken(text):
        raise ConnectionError("provider down")

    monkeypatch.setattr(memory_index.embedder, "embed_query", broken)

    with pytest.raises(IndexUnavailableError):
        memory_index.embed_query("rent")


def test_concurrent_embedding_workers(hashing_embedder, lease_chunks):
    client = QdrantClient(location=":memory:")
    index = EmbeddingIndex(
        embedder=hashing_embedder,
        collection_name="workers",
        client_factory=lambda: client,
        batch_size=2,
        embedding_workers=3,
    )

    index.add(lease_chunks)
    assert index.count() == 5


def test_create_embedding_index_from_config(hashing_embedder):
    index = create_embedding_index(
        {"location": ":memory:", "collection_name": "cfg", "batch_size": 8, "timeout": 2.5},
        embedder=hashing_embedder,
    )

    assert isinstance(index, EmbeddingIndex)
    assert (index.collection_name, index.batch_size, index.timeout) == ("cfg", 8, 2.5)
    assert index.count() == 0

    with pytest.raises(ValueError):
        create_embedding_index({"kind": "chroma"}, embedder=hashing_embedder)


@pytest.mark.parametrize("method,args", [("count", ()), ("versions", ("lease.md",))])
def test_backend_read_errors_are_translated(memory_index, lease_chunks, monkeypatch, method, args):
    memory_index.add(lease_chunks)

    def broken(*a, **kw):
        raise TimeoutError("timed out")

    monkeypatch.setattr(memory_index.client, "count", broken)
    monkeypatch.setattr(memory_index.client, "scroll", broken)

    with pytest.raises(IndexUnavailableError) as info:
        getattr(memory_index, method)(*args)
    assert isinstance(info.value.__cause__, TimeoutError)


def test_backend_delete_errors_are_translated(memory_index, lease_chunks, monkeypatch):
    memory_index.add(lease_chunks)
    store_cls = type(memory_index._store())

    def broken_delete(self, *a, **kw):
        raise RuntimeError("read-only collection")

    monkeypatch.setattr(store_cls, "delete_nodes", broken_delete)

    with pytest.raises(IndexWriteError):
        memory_index.delete([lease_chunks[0].id])
    with pytest.raises(IndexWriteError):
        memory_index.delete_where({"source": "nda.md"})


def test_collection_lookup_error_is_translated(memory_index, monkeypatch):
    def broken(name):
        raise ConnectionResetError("reset by peer")

    monkeypatch.setattr(memory_index.client, "collection_exists", broken)

    with pytest.raises(IndexUnavailableError):
        memory_index.status()


def test_concurrent_first_use_builds_one_client_and_store(hashing_embedder, lease_chunks):
    client = QdrantClient(location=":memory:")
    EmbeddingIndex(
        embedder=hashing_embedder, collection_name="shared", client_factory=lambda: client
    ).add(lease_chunks)

    calls = []

    def slow_factory():
        calls.append(threading.get_ident())
        time.sleep(0.05)
        return client

    index = EmbeddingIndex(
        embedder=hashing_embedder, collection_name="shared", client_factory=slow_factory
    )
    query = hashing_embedder.embed_query("tenant rent")
    barrier = threading.Barrier(8)
    stores, hits, errors = [], [], []

    def worker():
        barrier.wait()
        try:
            hits.append(index.search(query, k=2))
            stores.append(index._vector_store)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(calls) == 1
    assert len({id(store) for store in stores}) == 1
    assert all(len(h) == 2 for h in hits)
    client.close()


def test_sub_second_timeout_is_not_truncated(hashing_embedder, monkeypatch):
    created = []

    class RecordingClient:
        def __init__(self, **kwargs):
            created.append(kwargs)

    monkeypatch.setattr(vector_store, "QdrantClient", RecordingClient)
    index = EmbeddingIndex.from_config_dict(
        {"url": "http://qdrant:6333", "timeout": 0.5}, embedder=hashing_embedder
    )

    index.client

    assert index.timeout == 0.5
    assert created == [{"url": "http://qdrant:6333", "api_key": None, "timeout": 1}]
    assert vector_store._client_timeout(2.2) == 3
