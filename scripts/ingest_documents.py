"""Reference document ingestion entrypoint.

This script loads ``.txt``/``.md`` reference documents from a directory,
chunks them, and writes the chunks to the configured embedding index.
Unreadable or empty files are skipped and reported.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from drafting_rag.app.container import build_container
from drafting_rag.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest reference documents into the embedding index")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--documents-dir",
        "-d",
        required=False,
        type=str,
        default=None,
        help="Override ingestion.documents_dir from config (optional).",
    )

    parser.add_argument(
        "--collection-name",
        required=False,
        type=str,
        default=None,
        help="Override Qdrant collection name from config (optional).",
    )

    parser.add_argument(
        "--batch-size",
        "-b",
        required=False,
        type=int,
        default=None,
        help="Number of chunks written per backend call (optional).",
    )
    parser.add_argument(
        "--embedding-workers",
        required=False,
        type=int,
        default=None,
        help="Maximum number of embedding batches in flight (optional).",
    )

    parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove every stored chunk before ingesting.",
    )
    parser.add_argument(
        "--supersede",
        action="store_true",
        help="Delete older versions of each ingested document.",
    )

    return parser.parse_args()


def _override(cfg: GlobalConfig, section: str, key: str, value) -> None:
    if value is None:
        return

    current = cfg.raw.get(section)
    if current is None:
        cfg.raw[section] = {key: value}
        return

    if isinstance(current, dict):
        current[key] = value
        return

    raise TypeError(f"'{section}' config must be a mapping to override {key}.")


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = GlobalConfig.load(args.config_file)
    if args.batch_size is not None and args.batch_size < 1:
        raise ValueError("--batch-size must be >= 1 when provided.")
    if args.embedding_workers is not None and args.embedding_workers < 1:
        raise ValueError("--embedding-workers must be >= 1 when provided.")

    _override(cfg, "vector_store", "collection_name", args.collection_name)
    _override(cfg, "vector_store", "batch_size", args.batch_size)
    _override(cfg, "vector_store", "embedding_workers", args.embedding_workers)
    _override(cfg, "ingestion", "documents_dir", args.documents_dir)
    if args.supersede:
        _override(cfg, "ingestion", "supersede", True)

    documents_dir = cfg.ingestion["documents_dir"]
    if not documents_dir:
        raise ValueError("No documents directory: set ingestion.documents_dir or pass --documents-dir.")

    container = build_container(cfg)
    index = container.index

    if args.clear:
        print(f"Clearing collection {index.collection_name!r}...")
        index.clear()

    print(f"Loading documents from {documents_dir}")
    report = container.ingestion_pipeline.ingest_directory(
        documents_dir,
        extensions=cfg.ingestion["extensions"],
    )

    for source, count in sorted(report.ingested.items()):
        print(f"  ingested {source} v{report.versions[source]}: {count} chunks")
    for source, reason in sorted(report.skipped.items()):
        print(f"  skipped {source}: {reason}")
    for source, reason in sorted(report.failed.items()):
        print(f"  FAILED {source}: {reason}")

    status = index.status()
    print(
        f"Ingestion complete: {len(report.ingested)} documents, {report.chunk_count} chunks "
        f"({status.document_count} chunks stored in {index.collection_name!r})."
    )

    if not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
