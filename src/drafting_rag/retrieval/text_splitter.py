"""drafting_rag.retrieval.text_splitter

Text splitting and chunking utilities for the retrieval layer.

This module converts raw :class:`~drafting_rag.common.schemas.Document`
objects into :class:`~drafting_rag.common.schemas.Chunk` objects suitable for
embedding and retrieval. Splitting is boundary-aware:

- documents can first be cut at legal section markers, and every chunk keeps
  the heading of the section it came from
- each section is split by LangChain's ``RecursiveCharacterTextSplitter`` on
  an ordered list of separators, from paragraph breaks down to raw character
  slicing, with pieces merged greedily up to the chunk size
- each chunk is then prefixed with a character overlap taken from the end of
  the previous chunk

Chunks are exact slices of the source text, so dropping each chunk's overlap
and concatenating the rest in ``chunk_index`` order rebuilds the document.

Classes
-------
SplittingPolicy
    Immutable splitting configuration (size, overlap, separators, sections).
RecursiveTextSplitter
    Section-aware recursive character splitter.

Functions
---------
get_chunks_from_document
    Split a single document using a policy.
get_chunks_from_documents
    Split several documents using a single policy.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from drafting_rag.common.errors import InvalidInputError
from drafting_rag.common.schemas import Chunk, ChunkMetadata, Document

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

PARAGRAPH_SEPARATOR = r"\n{2,}"
SENTENCE_SEPARATOR = r"[.!?][\"')\]]*\s+"
NEWLINE_SEPARATOR = r"\n"
SPACE_SEPARATOR = r"[ \t]+"
CHARACTER_SEPARATOR = ""

DEFAULT_SEPARATORS = (
    PARAGRAPH_SEPARATOR,
    SENTENCE_SEPARATOR,
    NEWLINE_SEPARATOR,
    SPACE_SEPARATOR,
    CHARACTER_SEPARATOR,
)

# A line opening a legal section, e.g. "Section 2. Obligations", "ARTICLE IV", "§ 12".
LEGAL_SECTION_PATTERN = (
    r"^[ \t]*(?:(?:ARTICLE|Article|SECTION|Section)[ \t]+|§[ \t]*)[\w.\-]+[^\n]*$"
)

Span = Tuple[int, int]


@dataclass(frozen=True)
class SplittingPolicy:
    """Immutable configuration for :class:`RecursiveTextSplitter`.

    Attributes
    ----------
    name : str
        Policy name, used for logging.
    chunk_size : int
        Maximum size (in characters) of a chunk before overlap is added.
    overlap : int
        Maximum number of characters repeated from the end of the previous
        chunk. Must be smaller than ``chunk_size``.
    separators : tuple[str, ...]
        Regular expressions tried from most to least semantic. A piece is cut
        right after each match. ``""`` means hard character slicing.
    section_pattern : str or None
        Multiline regular expression matching section heading lines. When set,
        documents are first cut at each heading and chunks never span two
        sections.
    overlap_across_sections : bool
        Whether the first chunk of a section may start with the tail of the
        previous section. That tail is then rendered under the new section's
        label, so section-aware policies keep this off.
    """

    name: str = "generic"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP
    separators: Tuple[str, ...] = DEFAULT_SEPARATORS
    section_pattern: Optional[str] = None
    overlap_across_sections: bool = True

    def __post_init__(self):
        if int(self.chunk_size) <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 <= int(self.overlap) < int(self.chunk_size):
            raise ValueError(
                f"overlap must be in [0, chunk_size), got overlap={self.overlap} "
                f"chunk_size={self.chunk_size}"
            )
        object.__setattr__(self, "separators", tuple(self.separators))

    def with_overrides(self, **overrides) -> "SplittingPolicy":
        """Return a copy with the non-``None`` overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "separators" in values:
            values["separators"] = tuple(values["separators"])
        return replace(self, **values)


class RecursiveTextSplitter:
    """Section-aware recursive character splitter.

    Parameters
    ----------
    policy : SplittingPolicy, optional
        Splitting configuration. Defaults to ``SplittingPolicy()``.
    """

    def __init__(self, policy: Optional[SplittingPolicy] = None) -> None:
        self.policy = policy or SplittingPolicy()
        separators = list(self.policy.separators)
        if not separators or separators[-1] != CHARACTER_SEPARATOR:
            separators.append(CHARACTER_SEPARATOR)
        # Overlap is added afterwards, so the splitter only partitions the text.
        self._splitter = RecursiveCharacterTextSplitter(
            separators=separators,
            keep_separator="end",
            is_separator_regex=True,
            chunk_size=self.chunk_size,
            chunk_overlap=0,
            strip_whitespace=False,
            add_start_index=True,
        )
        self._section_re = (
            re.compile(self.policy.section_pattern, flags=re.MULTILINE)
            if self.policy.section_pattern
            else None
        )

    @property
    def chunk_size(self) -> int:
        return int(self.policy.chunk_size)

    @property
    def overlap(self) -> int:
        return int(self.policy.overlap)

    def split(
        self,
        document: Document,
        *,
        created_at: Optional[datetime] = None,
    ) -> list[Chunk]:
        """Split a document into overlapping, boundary-aware chunks.

        Parameters
        ----------
        document : Document
            Document to split.
        created_at : datetime, optional
            Ingestion timestamp stamped on every chunk. Defaults to now (UTC).

        Returns
        -------
        list[Chunk]
            Chunks in emission order; ``chunk_index`` equals list position.

        Raises
        ------
        InvalidInputError
            If ``document`` is not a :class:`Document`, its content is not a
            string, or its source is empty.
        """
        self._validate(document)

        text = document.content
        if not text:
            logger.warning("Empty document content provided: %s", document.source)
            return []

        created_at = created_at or datetime.now(timezone.utc)
        version = document.version or 1

        chunks: list[Chunk] = []
        prev_content = ""
        prev_label: Optional[str] = None

        for index, (start, end, label) in enumerate(self.split_spans(text)):
            overlap = 0
            if index > 0 and (self.policy.overlap_across_sections or label == prev_label):
                overlap = min(self.overlap, start, len(prev_content))

            content = text[start - overlap:end]
            chunks.append(
                Chunk(
                    content=content,
                    overlap=overlap,
                    metadata=ChunkMetadata(
                        source=document.source,
                        chunk_index=index,
                        section_label=label,
                        version=version,
                        artifact_id=document.artifact_id,
                        created_at=created_at,
                    ),
                )
            )
            prev_content = content
            prev_label = label

        logger.debug(
            "Split %s (v%d, %d chars) into %d chunks with policy %r: sizes=%s",
            document.source,
            version,
            len(text),
            len(chunks),
            self.policy.name,
            [len(c.content) for c in chunks],
        )
        return chunks

    def split_spans(self, text: str) -> list[Tuple[int, int, Optional[str]]]:
        """Return the chunk core spans of ``text`` without overlap.

        Parameters
        ----------
        text : str
            Text to split.

        Returns
        -------
        list[tuple[int, int, str or None]]
            ``(start, end, section_label)`` triples that partition ``text`` in
            order. Each span is at most ``chunk_size`` characters long.
        """
        spans: list[Tuple[int, int, Optional[str]]] = []
        for sec_start, sec_end, label in self._sections(text):
            for start, end in self._split_section(text, sec_start, sec_end):
                spans.append((start, end, label))
        return spans

    def _validate(self, document: Document) -> None:
        if not isinstance(document, Document):
            raise InvalidInputError(
                f"Expected a Document, got {type(document).__name__}"
            )
        if not isinstance(document.content, str):
            raise InvalidInputError(
                f"Document {document.source!r} content must be a string, "
                f"got {type(document.content).__name__}"
            )
        if not isinstance(document.source, str) or not document.source.strip():
            raise InvalidInputError("Document source must be a non-empty string.")

    def _sections(self, text: str) -> list[Tuple[int, int, Optional[str]]]:
        """Cut ``text`` at section heading lines."""
        if self._section_re is None:
            return [(0, len(text), None)]

        headings = list(self._section_re.finditer(text))
        if not headings:
            return [(0, len(text), None)]

        starts = [m.start() for m in headings]
        labels: List[Optional[str]] = [m.group(0).strip() for m in headings]

        # Whitespace before the first heading belongs to that section.
        if text[: starts[0]].strip():
            starts.insert(0, 0)
            labels.insert(0, None)
        else:
            starts[0] = 0

        ends = starts[1:] + [len(text)]
        return [(s, e, label) for s, e, label in zip(starts, ends, labels) if e > s]

    def _split_section(self, text: str, start: int, end: int) -> list[Span]:
        """Partition ``text[start:end]`` into spans no longer than ``chunk_size``."""
        documents = self._splitter.create_documents([text[start:end]])
        spans: list[Span] = []
        for doc in documents:
            span_start = start + doc.metadata["start_index"]
            spans.append((span_start, span_start + len(doc.page_content)))
        return spans


def get_chunks_from_document(
        document: Document,
        *,
        policy: Optional[SplittingPolicy] = None,
        created_at: Optional[datetime] = None,
) -> list[Chunk]:
    """Split a single document into chunks.

    Parameters
    ----------
    document : Document
        Document to split.
    policy : SplittingPolicy, optional
        Splitting configuration. Defaults to ``SplittingPolicy()``.
    created_at : datetime, optional
        Ingestion timestamp stamped on every chunk.

    Returns
    -------
    list[Chunk]
        Chunks in emission order.
    """
    return RecursiveTextSplitter(policy).split(document, created_at=created_at)


def get_chunks_from_documents(
        documents: Iterable[Document],
        *,
        policy: Optional[SplittingPolicy] = None,
        created_at: Optional[datetime] = None,
) -> list[Chunk]:
    """Split several documents using a single policy.

    Parameters
    ----------
    documents : Iterable[Document]
        Documents to split.
    policy : SplittingPolicy, optional
        Splitting configuration. Defaults to ``SplittingPolicy()``.
    created_at : datetime, optional
        Ingestion timestamp stamped on every chunk.

    Returns
    -------
    list[Chunk]
        All chunks across all documents, in input order.
    """
    splitter = RecursiveTextSplitter(policy)
    all_chunks: list[Chunk] = []
    for document in documents:
        all_chunks.extend(splitter.split(document, created_at=created_at))
    return all_chunks


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_OVERLAP",
    "DEFAULT_SEPARATORS",
    "LEGAL_SECTION_PATTERN",
    "SplittingPolicy",
    "RecursiveTextSplitter",
    "get_chunks_from_document",
    "get_chunks_from_documents",
]
