"""drafting_rag.common.schemas

Core data schemas shared across the retrieval subsystem.

These lightweight dataclasses describe the canonical shapes for raw source
documents, the chunks derived from them, and the transient values passed
between the retriever, the context assembler and the orchestrator.

Classes
-------
Document
    A full, un-split source document.
ChunkMetadata
    Typed positional metadata carried by every chunk.
Chunk
    An immutable segment of a :class:`Document`, the unit stored and retrieved.
SearchResult
    A chunk returned by a similarity search, with its score and rank.
AssembledContext
    The rendered, length-bounded context string and the group labels it used.
GroupingPolicy
    Preference order used to derive the presentation group of a chunk.

Functions
---------
group_key
    Derive the presentation group label of a chunk.
reading_order
    Order the chunks of one group by document, then by chunk index.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional
from uuid import NAMESPACE_URL, uuid5

UNKNOWN_GROUP = "unknown"

#: Metadata fields that may be used as search filter keys.
METADATA_FIELDS = (
    "source",
    "section_label",
    "chunk_index",
    "version",
    "artifact_id",
    "created_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """Container for a raw source document.

    Attributes
    ----------
    content : str
        Full textual content of the document, prior to chunking.
    source : str
        Name or identifier of the source (e.g., the file name).
    version : int or None
        Version of this document. ``None`` lets the ingestion pipeline assign
        the next free version for ``source``.
    artifact_id : str or None
        Identifier of the drafting artifact this document belongs to, if any.
    metadata : Dict[str, Any]
        Loader-specific extras (e.g., ``{"path": "/docs/lease.md"}``). Not
        propagated to chunks.
    """

    content: str
    source: str
    version: Optional[int] = None
    artifact_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkMetadata:
    """Positional metadata attached to a :class:`Chunk`.

    Attributes
    ----------
    source : str
        Source identifier of the parent document.
    chunk_index : int
        0-based emission position of the chunk within ``(source, version)``.
    section_label : str or None
        Legal section heading the chunk belongs to, if the splitter found one.
    version : int
        Document version the chunk was produced from. Defaults to ``1``.
    artifact_id : str or None
        Owning artifact identifier, if any.
    created_at : datetime
        Ingestion timestamp (UTC).
    """

    source: str
    chunk_index: int
    section_label: Optional[str] = None
    version: int = 1
    artifact_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.chunk_index < 0:
            raise ValueError(f"chunk_index must be >= 0, got {self.chunk_index}")
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")

    def to_dict(self) -> Dict[str, Any]:
        """Return a flat, JSON-compatible mapping suitable for a vector payload."""
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        """Rebuild metadata from a payload produced by :meth:`to_dict`.

        Unknown keys are ignored so that payloads enriched by the backend can
        be read back.
        """
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        if created_at is None:
            created_at = _utcnow()

        return cls(
            source=str(data.get("source") or UNKNOWN_GROUP),
            chunk_index=int(data.get("chunk_index") or 0),
            section_label=data.get("section_label"),
            version=int(data.get("version") or 1),
            artifact_id=data.get("artifact_id"),
            created_at=created_at,
        )


@dataclass(frozen=True)
class Chunk:
    """An immutable segment of a :class:`Document`.

    Attributes
    ----------
    content : str
        Chunk text, including any leading overlap.
    metadata : ChunkMetadata
        Positional metadata.
    overlap : int
        Number of leading characters of ``content`` repeated from the end of
        the previous chunk. ``content[overlap:]`` is the chunk's own text.
    """

    content: str
    metadata: ChunkMetadata
    overlap: int = 0

    @property
    def id(self) -> str:
        """Deterministic identifier derived from ``(source, version, chunk_index)``."""
        m = self.metadata
        return str(uuid5(NAMESPACE_URL, f"{m.source}:{m.version}:{m.chunk_index}"))

    @property
    def body(self) -> str:
        """Chunk text without the leading overlap."""
        return self.content[self.overlap:]


@dataclass(frozen=True)
class SearchResult:
    """A chunk returned by a similarity search.

    Attributes
    ----------
    chunk : Chunk
        Retrieved chunk.
    score : float or None
        Similarity score reported by the backend.
    rank : int
        1-based position in the similarity ranking.
    """

    chunk: Chunk
    score: Optional[float]
    rank: int


@dataclass(frozen=True)
class AssembledContext:
    """Rendered context block handed to the prompt.

    Attributes
    ----------
    text : str
        Labelled, separator-delimited context.
    group_labels : tuple[str, ...]
        Labels of the groups included, in presentation order.
    """

    text: str = ""
    group_labels: tuple = ()

    @property
    def length(self) -> int:
        return len(self.text)

    def __str__(self) -> str:
        return self.text


class GroupingPolicy(str, Enum):
    """Preference order used to derive a chunk's presentation group.

    - ``SECTION``: section label, then source, then ``"unknown"``.
    - ``SOURCE``: source, then ``"unknown"``.
    - ``SOURCE_SECTION``: ``"{source} / {section}"`` when both exist.
    """

    SECTION = "section"
    SOURCE = "source"
    SOURCE_SECTION = "source_section"


def group_key(chunk: Chunk, policy: GroupingPolicy = GroupingPolicy.SECTION) -> str:
    """Derive the presentation group label of ``chunk``.

    Parameters
    ----------
    chunk : Chunk
        Chunk to label.
    policy : GroupingPolicy, optional
        Preference order. Defaults to :attr:`GroupingPolicy.SECTION`.

    Returns
    -------
    str
        The group label, never empty.
    """
    policy = GroupingPolicy(policy)
    source = chunk.metadata.source or None
    section = chunk.metadata.section_label or None

    if policy is GroupingPolicy.SECTION:
        return section or source or UNKNOWN_GROUP
    if policy is GroupingPolicy.SOURCE:
        return source or UNKNOWN_GROUP
    if source and section:
        return f"{source} / {section}"
    return source or section or UNKNOWN_GROUP


def reading_order(items: Iterable[Any], chunk_of: Callable[[Any], Chunk] = lambda c: c) -> list:
    """Order the members of one presentation group for reading.

    Documents (``source``, ``version``) keep the order in which they first
    appear in ``items``; each document's chunks are contiguous and ascend by
    ``chunk_index``. Two documents sharing a section heading are therefore
    never interleaved.

    Parameters
    ----------
    items : Iterable
        Chunks, or values wrapping a chunk (e.g. :class:`SearchResult`).
    chunk_of : Callable, optional
        Returns the chunk of an item. Defaults to the identity.

    Returns
    -------
    list
        ``items`` in reading order.
    """
    items = list(items)
    first_seen: Dict[tuple, int] = {}
    for item in items:
        meta = chunk_of(item).metadata
        first_seen.setdefault((meta.source, meta.version), len(first_seen))

    def _key(item):
        meta = chunk_of(item).metadata
        return first_seen[(meta.source, meta.version)], meta.chunk_index

    return sorted(items, key=_key)


__all__ = [
    "UNKNOWN_GROUP",
    "METADATA_FIELDS",
    "Document",
    "ChunkMetadata",
    "Chunk",
    "SearchResult",
    "AssembledContext",
    "GroupingPolicy",
    "group_key",
    "reading_order",
]
