"""drafting_rag

Retrieval-augmented context assembly for a legal drafting assistant.

This package grounds document drafting in a local corpus of reference legal
documents: it chunks and indexes the corpus, retrieves the chunks relevant to
the current conversation turn, and renders them into a bounded context block
for the generation prompt.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
app
    Composition root wiring every component from configuration.
pipelines
    Per-turn retrieval orchestration and batch ingestion.
retrieval
    Document loading, chunking, embedding, the embedding index, the retriever
    and the context assembler.
common
    Shared schemas, errors and the retry policy.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
DraftingContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~drafting_rag.app.container.DraftingContainer`.
RetrievalOrchestrator
    Per-turn grounding step.
ConversationState
    Conversation state read by the orchestrator.
RetrievalOutcome
    Result of one orchestration run.
Document
    Canonical document container schema.
Chunk
    Chunk schema derived from a parent document.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("drafting-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import DraftingContainer, build_container
from .pipelines.retrieval_pipeline import ConversationState, RetrievalOrchestrator, RetrievalOutcome
from .common import Chunk, Document

__all__ = [
    "__version__",
    "GlobalConfig",
    "DraftingContainer",
    "build_container",
    "RetrievalOrchestrator",
    "ConversationState",
    "RetrievalOutcome",
    "Document",
    "Chunk",
]
