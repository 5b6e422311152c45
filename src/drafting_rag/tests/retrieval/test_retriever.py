import pytest

from drafting_rag.common.errors import (
    IndexUnavailableError,
    InvalidFilterError,
    InvalidInputError,
    RetrievalFailedError,
)
from drafting_rag.common.retry import RetryPolicy
from drafting_rag.common.schemas import GroupingPolicy
from drafting_rag.retrieval.retriever import VectorIndexRetriever


@pytest.fixture
def ranked_hits(make_chunk):
    """Hits in similarity order, deliberately not in document order."""
    return [
        (make_chunk("two b", source="lease.md", chunk_index=4, section_label="Section 2"), 0.9),
        (make_chunk("one a", source="lease.md", chunk_index=1, section_label="Section 1"), 0.8),
        (make_chunk("two a", source="lease.md", chunk_index=3, section_label="Section 2"), 0.7),
        (make_chunk("prose", source="notes.txt", chunk_index=0), 0.6),
        (make_chunk("one b", source="lease.md", chunk_index=2, section_label="Section 1"), 0.5),
    ]


def test_results_are_grouped_in_first_seen_rank_order(scripted_index, ranked_hits, fast_retry):
    retriever = VectorIndexRetriever(scripted_index([ranked_hits]), retry_policy=fast_retry)

    results = retriever.retrieve("what does section two state")

    assert [r.chunk.content for r in results] == ["two a", "two b", "one a", "one b", "prose"]
    assert [r.rank for r in results] == [3, 1, 2, 5, 4]
    assert results[1].score == 0.9


def test_source_grouping(scripted_index, ranked_hits, fast_retry):
    retriever = VectorIndexRetriever(
        scripted_index([ranked_hits]),
        retry_policy=fast_retry,
        grouping=GroupingPolicy.SOURCE,
    )

    results = retriever.retrieve("rent")

    assert [r.chunk.content for r in results] == ["one a", "one b", "two a", "two b", "prose"]


def test_documents_sharing_a_heading_stay_contiguous(scripted_index, make_chunk, fast_retry):
    hits = [
        (make_chunk("A-zero", source="a.md", chunk_index=0, section_label="Section 1."), 0.9),
        (make_chunk("B-zero", source="b.md", chunk_index=0, section_label="Section 1."), 0.8),
        (make_chunk("A-one", source="a.md", chunk_index=1, section_label="Section 1."), 0.7),
        (make_chunk("B-one", source="b.md", chunk_index=1, section_label="Section 1."), 0.6),
    ]
    retriever = VectorIndexRetriever(scripted_index([hits]), retry_policy=fast_retry)

    assert [r.chunk.content for r in retriever.retrieve("query")] == [
        "A-zero", "A-one", "B-zero", "B-one",
    ]


def test_versions_are_ordered_as_separate_documents(scripted_index, make_chunk, fast_retry):
    hits = [
        (make_chunk("b v1", source="b.md", section_label="Section 1", version=1), 0.9),
        (make_chunk("a v2 second", source="a.md", chunk_index=1, section_label="Section 1", version=2), 0.8),
        (make_chunk("a v1", source="a.md", section_label="Section 1", version=1), 0.7),
        (make_chunk("a v2 first", source="a.md", section_label="Section 1", version=2), 0.6),
    ]
    retriever = VectorIndexRetriever(scripted_index([hits]), retry_policy=fast_retry)

    assert [r.chunk.content for r in retriever.retrieve("query")] == [
        "b v1", "a v2 first", "a v2 second", "a v1",
    ]


def test_default_and_explicit_k_and_filter_are_forwarded(scripted_index, ranked_hits, fast_retry):
    index = scripted_index([ranked_hits])
    retriever = VectorIndexRetriever(index, top_k=2, retry_policy=fast_retry)

    assert len(retriever.retrieve("rent")) == 2
    retriever.retrieve("rent", k=4, filter={"artifact_id": "art-1"})

    assert index.search_calls == [
        {"k": 2, "filter": None},
        {"k": 4, "filter": {"artifact_id": "art-1"}},
    ]


def test_empty_index_returns_empty_list_without_retry(scripted_index, fast_retry, sleeps):
    index = scripted_index([[]])
    retriever = VectorIndexRetriever(index, retry_policy=fast_retry)

    assert retriever.retrieve("anything at all") == []
    assert len(index.search_calls) == 1
    assert sleeps == []


def test_transient_failures_are_retried(scripted_index, ranked_hits, fast_retry, sleeps):
    index = scripted_index([IndexUnavailableError("down"), IndexUnavailableError("down"), ranked_hits])
    retriever = VectorIndexRetriever(index, retry_policy=fast_retry)

    results = retriever.retrieve("rent")

    assert len(results) == 5
    assert len(index.search_calls) == 3
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise_retrieval_failed(scripted_index, fast_retry, sleeps):
    index = scripted_index([IndexUnavailableError("down")])
    retriever = VectorIndexRetriever(index, retry_policy=fast_retry)

    with pytest.raises(RetrievalFailedError) as excinfo:
        retriever.retrieve("rent")

    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.__cause__, IndexUnavailableError)
    assert len(index.search_calls) == 3
    assert sleeps == [0.5, 1.0]


def test_malformed_filter_is_not_retried(scripted_index, ranked_hits, fast_retry):
    index = scripted_index([ranked_hits])
    retriever = VectorIndexRetriever(index, retry_policy=fast_retry)

    with pytest.raises(InvalidFilterError):
        retriever.retrieve("rent", filter={"colour": "red"})

    assert index.search_calls == []


@pytest.mark.parametrize("query,k", [("", None), ("   ", None), (None, None), ("rent", 0)])
def test_invalid_query_or_k(scripted_index, fast_retry, query, k):
    index = scripted_index([[]])
    retriever = VectorIndexRetriever(index, retry_policy=fast_retry)

    with pytest.raises(InvalidInputError):
        retriever.retrieve(query, k=k)

    assert index.search_calls == []


def test_from_config_dict(scripted_index):
    retriever = VectorIndexRetriever.from_config_dict(
        {"top_k": 7, "max_attempts": 4, "base_delay": 0.1, "grouping": "source"},
        index=scripted_index([[]]),
    )

    assert retriever.top_k == 7
    assert retriever.retry_policy == RetryPolicy(max_attempts=4, base_delay=0.1)
    assert retriever.grouping is GroupingPolicy.SOURCE
