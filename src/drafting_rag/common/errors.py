"""drafting_rag.common.errors

Exception hierarchy for the retrieval subsystem.

Errors are grouped by how a caller is expected to react to them rather than by
the component that raised them: contract violations are surfaced immediately,
transient backend failures are retried by the retriever, and ingestion
failures are handed back to the ingestion caller for a whole-document retry.

Classes
-------
DraftingRAGError
    Base class for every error raised by this package.
InvalidInputError
    Caller contract violation (e.g., non-text document content).
InvalidFilterError
    Malformed metadata filter passed to a search.
IndexUnavailableError
    Search backend or embedding provider could not be reached.
IndexWriteError
    Chunks could not be embedded or written to the index.
RetrievalFailedError
    Retrieval kept failing after every configured retry.
"""


class DraftingRAGError(RuntimeError):
    """Base error for the drafting RAG package."""


class InvalidInputError(DraftingRAGError, ValueError):
    """Raised when a caller passes input that violates a component contract.

    These errors are never retried.
    """


class InvalidFilterError(InvalidInputError):
    """Raised when a metadata filter has unknown keys or non-scalar values."""


class IndexUnavailableError(DraftingRAGError):
    """Raised when the similarity-search backend cannot serve a request.

    Treated as transient: the retriever retries it with exponential backoff.
    """


class IndexWriteError(DraftingRAGError):
    """Raised when a batch of chunks could not be added to the index.

    Callers should retry ingestion of the whole document.
    """


class RetrievalFailedError(DraftingRAGError):
    """Raised when retrieval still fails after the last retry attempt.

    Parameters
    ----------
    message : str
        Human-readable description.
    attempts : int
        Number of attempts that were made before giving up.
    """

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


__all__ = [
    "DraftingRAGError",
    "InvalidInputError",
    "InvalidFilterError",
    "IndexUnavailableError",
    "IndexWriteError",
    "RetrievalFailedError",
]
