"""drafting_rag.retrieval.document_loader

Document loading utilities for local reference corpora.

This module enumerates a directory of plain-text and Markdown files and turns
each readable, non-empty file into a
:class:`~drafting_rag.common.schemas.Document`. Files that cannot be read or
decoded, or that are blank, are skipped and reported rather than aborting the
whole load.

Classes
-------
LoadResult
    Documents loaded from a directory plus the files that were skipped.

Functions
---------
load_text_document
    Load a single file as a document.
load_directory_documents
    Load every matching file of a directory.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from drafting_rag.common import Document

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".txt", ".md")
DEFAULT_CHARSET = "utf-8"


@dataclass
class LoadResult:
    """Outcome of :func:`load_directory_documents`.

    Attributes
    ----------
    documents : list[Document]
        Successfully loaded documents, sorted by file name.
    skipped : dict[str, str]
        Mapping of skipped file path to the reason it was skipped.
    """

    documents: list[Document] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)


def load_text_document(
        path: Union[str, Path],
        *,
        encoding: str = DEFAULT_CHARSET,
        artifact_id: Optional[str] = None,
    ) -> Document:
    """Load a single text file as a :class:`Document`.

    The file name is used as the document ``source``, and the full path is
    kept in ``metadata["path"]``.

    Parameters
    ----------
    path : str or Path
        File to read.
    encoding : str, optional
        Text encoding. Defaults to ``"utf-8"``.
    artifact_id : str or None, optional
        Artifact the document belongs to, if any.

    Returns
    -------
    Document
        The loaded document.

    Raises
    ------
    OSError
        If the file cannot be read.
    UnicodeDecodeError
        If the file is not valid text in ``encoding``.
    """
    path = Path(path)
    text = path.read_text(encoding=encoding)
    return Document(
        content=text,
        source=path.name,
        artifact_id=artifact_id,
        metadata={"path": str(path)},
    )


def load_directory_documents(
        directory: Union[str, Path],
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        *,
        encoding: str = DEFAULT_CHARSET,
        recursive: bool = False,
    ) -> LoadResult:
    """Load every matching file of a directory.

    Parameters
    ----------
    directory : str or Path
        Directory to scan.
    extensions : Iterable[str], optional
        File suffixes to include (case-insensitive). Defaults to
        ``(".txt", ".md")``.
    encoding : str, optional
        Text encoding. Defaults to ``"utf-8"``.
    recursive : bool, optional
        Whether to descend into subdirectories. Defaults to ``False``.

    Returns
    -------
    LoadResult
        Loaded documents and skipped files.

    Raises
    ------
    FileNotFoundError
        If ``directory`` does not exist or is not a directory.
    """
    root = Path(directory)
    if not root.is_dir():
        raise FileNotFoundError(f"Documents directory not found: {root}")

    suffixes = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
    pattern = "**/*" if recursive else "*"
    paths = sorted(p for p in root.glob(pattern) if p.is_file() and p.suffix.lower() in suffixes)

    result = LoadResult()
    for path in paths:
        try:
            document = load_text_document(path, encoding=encoding)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping %s: %s", path, e)
            result.skipped[str(path)] = str(e)
            continue

        if not document.content.strip():
            logger.warning("Skipping empty file %s", path)
            result.skipped[str(path)] = "empty file"
            continue

        result.documents.append(document)

    logger.info(
        "Loaded %d documents from %s (%d skipped)",
        len(result.documents),
        root,
        len(result.skipped),
    )
    return result


__all__ = [
    "DEFAULT_EXTENSIONS",
    "LoadResult",
    "load_text_document",
    "load_directory_documents",
]
