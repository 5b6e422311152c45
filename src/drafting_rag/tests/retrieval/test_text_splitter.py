import pytest

from drafting_rag.common.errors import InvalidInputError
from drafting_rag.common.schemas import Document
from drafting_rag.retrieval import splitter_factory
from drafting_rag.retrieval.context_assembler import assemble_context
from drafting_rag.retrieval.text_splitter import (
    RecursiveTextSplitter,
    SplittingPolicy,
    get_chunks_from_documents,
)


def _prose(n_sentences: int) -> str:
    """
    Build prose made of ``n_sentences`` sentences of exactly 100 characters.
    """
    sentences = []
    for i in range(n_sentences):
        base = f"Recital {i:02d} covers general terms" + " lorem ipsum" * 20
        if i == n_sentences - 1:
            sentences.append(base[:99] + ".")
        else:
            sentences.append(base[:98] + ". ")
    return "".join(sentences)


def _rebuild(chunks) -> str:
    ordered = sorted(chunks, key=lambda c: c.metadata.chunk_index)
    return "".join(c.content[c.overlap:] for c in ordered)


def test_empty_document_yields_no_chunks():
    splitter = RecursiveTextSplitter()
    assert splitter.split(Document(content="", source="empty.md")) == []


def test_short_document_yields_single_chunk_without_overlap():
    text = "The tenant shall keep the premises in good repair."
    chunks = RecursiveTextSplitter().split(Document(content=text, source="short.md"))

    assert len(chunks) == 1
    assert chunks[0].content == text
    assert chunks[0].overlap == 0
    assert chunks[0].metadata.chunk_index == 0
    assert chunks[0].metadata.section_label is None


def test_prose_splits_on_sentence_boundaries():
    text = _prose(25)
    assert len(text) == 2500

    chunks = RecursiveTextSplitter().split(Document(content=text, source="a.txt"))

    assert [c.metadata.chunk_index for c in chunks] == [0, 1, 2]
    assert [len(c.body) for c in chunks] == [1000, 1000, 500]
    assert chunks[1].overlap == 200
    assert chunks[1].content == text[800:2000]
    assert chunks[0].body.endswith(". ")


@pytest.mark.parametrize("size,overlap", [(1000, 200), (300, 50), (120, 0), (64, 63)])
def test_round_trip_and_overlap_bound(size, overlap):
    text = (
        _prose(7)
        + "\n\nA second paragraph follows here.\nIt has a line break and "
        + "averyveryverylongwordwithoutanybreakswhatsoever" * 6
    )
    policy = SplittingPolicy(chunk_size=size, overlap=overlap)
    chunks = RecursiveTextSplitter(policy).split(Document(content=text, source="p.md"))

    assert len(chunks) > 1
    assert _rebuild(chunks) == text
    for prev, chunk in zip(chunks, chunks[1:]):
        assert len(chunk.body) <= size
        assert chunk.overlap <= overlap
        if overlap:
            assert chunk.overlap > 0
        assert chunk.content[:chunk.overlap] == prev.content[len(prev.content) - chunk.overlap:]


def test_hard_cut_when_no_separator_applies():
    text = "x" * 250
    policy = SplittingPolicy(chunk_size=100, overlap=10)
    chunks = RecursiveTextSplitter(policy).split(Document(content=text, source="x.txt"))

    assert [len(c.body) for c in chunks] == [100, 100, 50]
    assert [c.overlap for c in chunks] == [0, 10, 10]
    assert _rebuild(chunks) == text


def test_chunk_metadata_carries_document_fields():
    doc = Document(content=_prose(15), source="lease.md", version=3, artifact_id="art-1")
    chunks = RecursiveTextSplitter().split(doc)

    assert {c.metadata.source for c in chunks} == {"lease.md"}
    assert {c.metadata.version for c in chunks} == {3}
    assert {c.metadata.artifact_id for c in chunks} == {"art-1"}
    assert len({c.id for c in chunks}) == len(chunks)


def test_split_is_deterministic_apart_from_timestamp():
    doc = Document(content=_prose(12), source="d.md")
    first = RecursiveTextSplitter().split(doc)
    second = RecursiveTextSplitter().split(doc)

    assert [(c.content, c.overlap, c.id) for c in first] == [
        (c.content, c.overlap, c.id) for c in second
    ]


@pytest.mark.parametrize(
    "document",
    [
        "plain string",
        Document(content=None, source="a.md"),
        Document(content=b"bytes", source="a.md"),
        Document(content="text", source=""),
    ],
)
def test_invalid_input_raises(document):
    with pytest.raises(InvalidInputError):
        RecursiveTextSplitter().split(document)


def test_invalid_input_is_a_value_error():
    with pytest.raises(ValueError):
        RecursiveTextSplitter().split(Document(content=42, source="n.md"))


def test_legal_policy_labels_sections():
    text = (
        "Section 1. Definitions\n\nTerms used in this lease.\n\n"
        "Section 2. Rent\n\nThe tenant pays rent monthly.\n\n"
        "ARTICLE IV Termination\nEither party may terminate."
    )
    splitter = splitter_factory.create_splitter({"policy": "legal"})
    chunks = splitter.split(Document(content=text, source="lease.md"))

    assert [c.metadata.section_label for c in chunks] == [
        "Section 1. Definitions",
        "Section 2. Rent",
        "ARTICLE IV Termination",
    ]
    assert chunks[1].body.startswith("Section 2. Rent")
    assert _rebuild(chunks) == text


def test_legal_policy_keeps_preamble_unlabelled():
    text = "This lease is made today.\n\n§ 1 Parties\nThe landlord and the tenant."
    chunks = splitter_factory.create_splitter().split(Document(content=text, source="l.md"))

    assert [c.metadata.section_label for c in chunks] == [None, "§ 1 Parties"]


def test_sections_are_split_independently():
    body = "The tenant agrees. " * 30
    text = f"Section 1. Long\n\n{body}\n\nSection 2. Short\n\nDone."
    policy = splitter_factory.create(kind="legal", chunk_size=200, overlap=20)
    chunks = RecursiveTextSplitter(policy).split(Document(content=text, source="s.md"))

    labels = [c.metadata.section_label for c in chunks]
    assert labels[0] == "Section 1. Long"
    assert labels[-1] == "Section 2. Short"
    assert chunks[-1].body == "Section 2. Short\n\nDone."
    assert _rebuild(chunks) == text


def test_legal_overlap_stays_within_sections():
    text = "Section 1. A\n\nFirst.\n\nSection 2. B\n\nSecond."

    default = splitter_factory.create_splitter().split(Document(content=text, source="s.md"))
    assert [c.overlap for c in default] == [0, 0]

    policy = splitter_factory.create(kind="legal", overlap_across_sections=True)
    crossing = RecursiveTextSplitter(policy).split(Document(content=text, source="s.md"))
    assert crossing[1].overlap == len(crossing[0].content)


def test_previous_section_text_is_not_rendered_under_next_heading():
    text = (
        "Section 1. Definitions\n\n"
        + "The Tenant shall never sublet. " * 10
        + "\n\nSection 2. Obligations\n\nThe Landlord shall repair the roof."
    )
    chunks = splitter_factory.create_splitter({}).split(Document(content=text, source="lease.md"))
    second = [c for c in chunks if c.metadata.section_label == "Section 2. Obligations"]

    rendered = assemble_context(second)

    assert rendered.startswith("Section 2. Obligations\n\nSection 2. Obligations")
    assert "never sublet" not in rendered
    assert rendered.endswith("repair the roof.")


def test_langchain_splitter_partitions_each_section():
    text = "Section 1. Long\n\n" + "Clause text here. " * 40 + "\n\nSection 2. Short\n\nDone."
    splitter = splitter_factory.create_splitter({"chunk_size": 150, "overlap": 30})

    spans = splitter.split_spans(text)

    assert spans[0][0] == 0 and spans[-1][1] == len(text)
    for (_, prev_end, _), (start, end, _) in zip(spans, spans[1:]):
        assert start == prev_end
        assert 0 < end - start <= 150


def test_generic_policy_ignores_section_markers():
    text = "Section 1. A\n\nFirst.\n\nSection 2. B\n\nSecond."
    chunks = splitter_factory.create_splitter({"policy": "generic"}).split(
        Document(content=text, source="g.md")
    )

    assert len(chunks) == 1
    assert chunks[0].metadata.section_label is None


def test_policy_registry():
    assert splitter_factory.available_policies() == ["generic", "legal"]
    assert splitter_factory.create().name == "legal"

    policy = splitter_factory.create(kind="generic", chunk_size=500, overlap=100)
    assert (policy.chunk_size, policy.overlap, policy.section_pattern) == (500, 100, None)

    with pytest.raises(ValueError):
        splitter_factory.create(kind="unknown")


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1)])
def test_policy_validation(size, overlap):
    with pytest.raises(ValueError):
        SplittingPolicy(chunk_size=size, overlap=overlap)


def test_get_chunks_from_documents_concatenates_in_order():
    docs = [Document(content=_prose(12), source="a.md"), Document(content="Short.", source="b.md")]
    chunks = get_chunks_from_documents(docs)

    assert [c.metadata.source for c in chunks] == ["a.md", "a.md", "b.md"]
