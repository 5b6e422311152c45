"""drafting_rag.retrieval.context_assembler

Render retrieved chunks into a single, length-bounded context block.

Chunks are grouped by their group key (section label, then source), groups are
kept in first-seen order, and chunks inside a group are put back into
document order. Each group is rendered under its label, and groups are
separated by a horizontal rule. Groups are included whole or not at all, and
assembly stops at the first group that would push the output past
``max_length``, so the result never exceeds the limit.

Classes
-------
ContextAssembler
    Configurable grouping and rendering of chunks.

Functions
---------
assemble_context
    Convenience wrapper returning only the rendered text.
"""

import logging
from typing import Iterable, Optional, Union

from drafting_rag.common.schemas import (
    AssembledContext,
    Chunk,
    GroupingPolicy,
    SearchResult,
    group_key,
    reading_order,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 8000
DEFAULT_SEPARATOR = "\n\n---\n\n"

ChunkLike = Union[Chunk, SearchResult]


class ContextAssembler:
    """Group, order, budget and render chunks.

    Parameters
    ----------
    max_length : int, optional
        Default character budget for the rendered output. Defaults to ``8000``.
    grouping : GroupingPolicy, optional
        Group key preference. Defaults to ``"section"``.
    separator : str, optional
        String placed between rendered groups. Defaults to ``"\\n\\n---\\n\\n"``.
    """

    def __init__(
            self,
            max_length: int = DEFAULT_MAX_LENGTH,
            *,
            grouping: GroupingPolicy = GroupingPolicy.SECTION,
            separator: str = DEFAULT_SEPARATOR,
        ):
        if max_length < 0:
            raise ValueError(f"max_length must be >= 0, got {max_length}")
        self.max_length = max_length
        self.grouping = GroupingPolicy(grouping)
        self.separator = separator

    @classmethod
    def from_config_dict(cls, config: dict) -> "ContextAssembler":
        """Create an assembler from an ``assembler`` configuration mapping."""
        return cls(
            max_length=int(config.get("max_length", DEFAULT_MAX_LENGTH)),
            grouping=GroupingPolicy(config.get("grouping", GroupingPolicy.SECTION.value)),
            separator=config.get("separator", DEFAULT_SEPARATOR),
        )

    def assemble(
            self,
            chunks: Iterable[ChunkLike],
            max_length: Optional[int] = None,
        ) -> AssembledContext:
        """Render chunks into a context block.

        Parameters
        ----------
        chunks : Iterable[Chunk or SearchResult]
            Chunks to render, in any order.
        max_length : int or None, optional
            Character budget. Defaults to the instance ``max_length``.

        Returns
        -------
        AssembledContext
            Rendered text (``len(text) <= max_length``) and the labels of the
            groups it contains. Empty when ``chunks`` is empty.
        """
        limit = self.max_length if max_length is None else max_length

        groups: dict[str, list[Chunk]] = {}
        for item in chunks:
            chunk = item.chunk if isinstance(item, SearchResult) else item
            groups.setdefault(group_key(chunk, self.grouping), []).append(chunk)

        parts: list[str] = []
        labels: list[str] = []
        length = 0
        for label, members in groups.items():
            rendered = self._render_group(label, members)
            added = len(rendered) + (len(self.separator) if parts else 0)
            if length + added > limit:
                logger.info(
                    "Context budget of %d reached; dropping group %r and %d after it",
                    limit,
                    label,
                    len(groups) - len(parts) - 1,
                )
                break
            parts.append(rendered)
            labels.append(label)
            length += added

        text = self.separator.join(parts)
        if parts:
            logger.info("Assembled context: %d groups, %d chars", len(parts), len(text))
        return AssembledContext(text=text, group_labels=tuple(labels))

    @staticmethod
    def _render_group(label: str, members: list[Chunk]) -> str:
        ordered = reading_order(members)
        texts: list[str] = []
        prev: Optional[Chunk] = None
        for chunk in ordered:
            # Adjacent chunks of the same document share the overlap text.
            adjacent = (
                prev is not None
                and prev.metadata.source == chunk.metadata.source
                and prev.metadata.version == chunk.metadata.version
                and prev.metadata.chunk_index + 1 == chunk.metadata.chunk_index
            )
            texts.append(chunk.body if adjacent else chunk.content)
            prev = chunk
        return f"{label}\n\n" + "\n\n".join(texts)


def assemble_context(
        chunks: Iterable[ChunkLike],
        max_length: int = DEFAULT_MAX_LENGTH,
        *,
        grouping: GroupingPolicy = GroupingPolicy.SECTION,
    ) -> str:
    """Render chunks and return only the context text.

    See :meth:`ContextAssembler.assemble`.
    """
    return ContextAssembler(max_length, grouping=grouping).assemble(chunks).text


__all__ = [
    "DEFAULT_MAX_LENGTH",
    "DEFAULT_SEPARATOR",
    "ContextAssembler",
    "assemble_context",
]
