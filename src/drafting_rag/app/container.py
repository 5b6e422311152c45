"""drafting_rag.app.container

Composition root for the drafting RAG system.

This module is the single place where concrete implementations are wired
together from configuration (embedder, embedding index, chunker, retriever,
assembler, orchestrator and ingestion pipeline). Components are constructed
lazily and cached on first access under a lock, so the process holds exactly one
:class:`~drafting_rag.retrieval.vector_store.EmbeddingIndex` shared by
retrieval and ingestion.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

Examples
--------
>>> from drafting_rag.config import GlobalConfig
>>> from drafting_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config.yaml")
>>> c = build_container(cfg)
>>> outcome = c.orchestrator.run(state)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping

# Re-entrant: building one component reads the others.
_BUILD_LOCK = threading.RLock()


class _component(cached_property):
    """``cached_property`` whose value is built once, even by concurrent first callers."""

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        cache = instance.__dict__
        if self.attrname not in cache:
            with _BUILD_LOCK:
                if self.attrname not in cache:
                    cache[self.attrname] = self.func(instance)
        return cache[self.attrname]


@dataclass(frozen=True)
class DraftingContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`drafting_rag.config.GlobalConfig`).
    """

    config: Any

    @_component
    def embedder(self) -> Any:
        """Return the embedder used for chunks and queries."""
        from drafting_rag.retrieval.embedder import create_embedder

        section = _as_mapping(self.config.embedder)
        return create_embedder(dict(section))

    @_component
    def index(self) -> Any:
        """Return the process-wide embedding index.

        The Qdrant connection itself is opened lazily on first use.
        """
        from drafting_rag.retrieval.vector_store import create_embedding_index

        section = _as_mapping(self.config.vector_store)
        return create_embedding_index(section, embedder=self.embedder)

    @_component
    def splitter(self) -> Any:
        """Return the chunker configured by the ``chunking`` section."""
        from drafting_rag.retrieval.splitter_factory import create_splitter

        return create_splitter(_as_mapping(self.config.chunking))

    @_component
    def retriever(self) -> Any:
        """Return the retriever over :attr:`index`."""
        from drafting_rag.retrieval.retriever import VectorIndexRetriever

        section = _as_mapping(self.config.retriever)
        return VectorIndexRetriever.from_config_dict(section, index=self.index)

    @_component
    def assembler(self) -> Any:
        """Return the context assembler."""
        from drafting_rag.retrieval.context_assembler import ContextAssembler

        return ContextAssembler.from_config_dict(_as_mapping(self.config.assembler))

    @_component
    def orchestrator(self) -> Any:
        """Return the fully wired retrieval orchestrator.

        Returns
        -------
        Any
            A :class:`drafting_rag.pipelines.retrieval_pipeline.RetrievalOrchestrator` instance.
        """
        from drafting_rag.pipelines.retrieval_pipeline import RetrievalOrchestrator

        return RetrievalOrchestrator.from_config_dict(
            _as_mapping(self.config.orchestrator),
            retriever=self.retriever,
            assembler=self.assembler,
            top_k=self.retriever.top_k,
        )

    @_component
    def ingestion_pipeline(self) -> Any:
        """Return the ingestion pipeline writing to :attr:`index`."""
        from drafting_rag.pipelines.ingestion_pipeline import IngestionPipeline

        return IngestionPipeline.from_config_dict(
            _as_mapping(self.config.ingestion),
            index=self.index,
            splitter=self.splitter,
        )


def build_container(config: Any) -> DraftingContainer:
    """Create a :class:`~drafting_rag.app.container.DraftingContainer`.

    This function is intentionally small so it can serve as a single entry point
    for the conversation graph, CLI scripts, and tests.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`drafting_rag.config.GlobalConfig`).

    Returns
    -------
    DraftingContainer
        Container instance with cached component accessors.
    """

    return DraftingContainer(config=config)

def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Parameters
    ----------
    obj : Any
        Object to interpret as a mapping. If ``obj`` is already a mapping it is
        returned as-is. If it has a ``__dict__``, that dictionary is returned.

    Returns
    -------
    Mapping[str, Any]
        A dictionary-like view of ``obj``.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["DraftingContainer", "build_container"]
