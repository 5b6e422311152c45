"""drafting_rag.pipelines.ingestion_pipeline

Batch ingestion of reference documents into the embedding index.

This module defines the :class:`IngestionPipeline`, which runs
``document -> chunks -> index`` for each document, assigns document versions,
optionally removes superseded versions, and retries failed documents with a
shared :class:`~drafting_rag.common.retry.RetryPolicy`. Failures of one
document never stop the batch; they are collected in the
:class:`IngestionReport`.

Classes
-------
IngestionReport
    Per-batch summary of what was ingested, skipped and failed.
IngestionPipeline
    Chunk, version and index documents.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from drafting_rag.common.errors import DraftingRAGError, IndexWriteError, InvalidInputError
from drafting_rag.common.retry import RetryPolicy
from drafting_rag.common.schemas import Document
from drafting_rag.retrieval.document_loader import DEFAULT_EXTENSIONS, load_directory_documents
from drafting_rag.retrieval.text_splitter import RecursiveTextSplitter
from drafting_rag.retrieval.types import WritableIndex

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    """Summary of one ingestion batch.

    Attributes
    ----------
    ingested : dict[str, int]
        Source -> number of chunks written.
    versions : dict[str, int]
        Source -> version assigned to the ingested document.
    superseded : dict[str, list[int]]
        Source -> older versions removed.
    skipped : dict[str, str]
        Source or path -> reason it was not ingested (e.g. empty file).
    failed : dict[str, str]
        Source -> last error after every retry.
    """

    ingested: dict[str, int] = field(default_factory=dict)
    versions: dict[str, int] = field(default_factory=dict)
    superseded: dict[str, list[int]] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def chunk_count(self) -> int:
        return sum(self.ingested.values())


class IngestionPipeline:
    """Chunk, version and index documents.

    Parameters
    ----------
    index : WritableIndex
        Target index (normally the process-wide
        :class:`~drafting_rag.retrieval.vector_store.EmbeddingIndex`).
    splitter : RecursiveTextSplitter, optional
        Chunker. Defaults to ``RecursiveTextSplitter()``.
    retry_policy : RetryPolicy, optional
        Per-document retry policy. Defaults to 3 attempts with a 1 s base
        delay, retrying :class:`IndexWriteError` only.
    supersede : bool, optional
        Delete older versions of a source once a new version is written.
        Defaults to ``False``.
    """

    def __init__(
            self,
            index: WritableIndex,
            splitter: Optional[RecursiveTextSplitter] = None,
            *,
            retry_policy: Optional[RetryPolicy] = None,
            supersede: bool = False,
        ):
        self.index = index
        self.splitter = splitter or RecursiveTextSplitter()
        self.retry_policy = retry_policy or RetryPolicy(retry_on=(IndexWriteError,))
        self.supersede = supersede

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            index: WritableIndex,
            splitter: RecursiveTextSplitter,
        ) -> "IngestionPipeline":
        """Create a pipeline from an ``ingestion`` configuration mapping."""
        return cls(
            index,
            splitter,
            retry_policy=RetryPolicy(
                max_attempts=int(config.get("max_retries", 3)),
                base_delay=float(config.get("retry_delay", 1.0)),
                retry_on=(IndexWriteError,),
            ),
            supersede=bool(config.get("supersede", False)),
        )

    def next_version(self, source: str) -> int:
        """Return the version a new document for ``source`` would get."""
        existing = self.index.versions(source)
        return (max(existing) + 1) if existing else 1

    def ingest_document(self, document: Document, report: Optional[IngestionReport] = None) -> int:
        """Ingest one document.

        Parameters
        ----------
        document : Document
            Document to ingest. When ``version`` is ``None`` the next free
            version for its source is assigned.
        report : IngestionReport, optional
            Report to update.

        Returns
        -------
        int
            Number of chunks written.

        Raises
        ------
        InvalidInputError
            If ``document`` is not a :class:`Document` or violates the chunker
            contract. Not retried.
        IndexWriteError
            If writing still fails after every retry.
        IndexUnavailableError
            If the index cannot be reached to look up existing versions.
        """
        if not isinstance(document, Document):
            raise InvalidInputError(f"Expected a Document, got {type(document).__name__}")
        report = report if report is not None else IngestionReport()

        if document.version is None:
            document = replace(document, version=self.next_version(document.source))

        chunks = self.splitter.split(document)
        if not chunks:
            logger.warning("Skipping %s: no content", document.source)
            report.skipped[document.source] = "empty document"
            return 0

        self.retry_policy.call(self.index.add, chunks)

        if self.supersede:
            older = [v for v in self.index.versions(document.source) if v < document.version]
            for version in older:
                self.index.delete_where({"source": document.source, "version": version})
            if older:
                report.superseded[document.source] = older
                logger.info("Removed superseded versions %s of %s", older, document.source)

        report.ingested[document.source] = len(chunks)
        report.versions[document.source] = document.version
        logger.info(
            "Ingested %s v%d (%d chunks)", document.source, document.version, len(chunks)
        )
        return len(chunks)

    def ingest(self, documents: Iterable[Document]) -> IngestionReport:
        """Ingest a batch of documents, collecting failures in the report.

        Any :class:`~drafting_rag.common.errors.DraftingRAGError` raised for
        one document is recorded under its source and the batch continues.
        """
        report = IngestionReport()
        for document in documents:
            try:
                self.ingest_document(document, report)
            except DraftingRAGError as e:
                source = getattr(document, "source", repr(document))
                logger.error("Failed to ingest %s: %s", source, e)
                report.failed[str(source)] = str(e)

        logger.info(
            "Ingestion finished: %d documents, %d chunks, %d skipped, %d failed",
            len(report.ingested),
            report.chunk_count,
            len(report.skipped),
            len(report.failed),
        )
        return report

    def ingest_directory(
            self,
            directory: Union[str, Path],
            extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        ) -> IngestionReport:
        """Load every matching file of ``directory`` and ingest it."""
        loaded = load_directory_documents(directory, extensions)
        report = self.ingest(loaded.documents)
        report.skipped.update(loaded.skipped)
        return report


__all__ = ["IngestionReport", "IngestionPipeline"]
