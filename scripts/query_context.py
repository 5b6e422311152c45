"""Context inspection entrypoint.

This script runs the retrieval orchestrator for a single query and prints the
assembled context exactly as it would be handed to the drafting prompt.
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

from langchain_core.messages import HumanMessage

from drafting_rag.app.container import build_container
from drafting_rag.config import GlobalConfig
from drafting_rag.pipelines.retrieval_pipeline import ConversationState


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print the retrieved context for a query")

    parser.add_argument(
        "query",
        type=str,
        help="Query text, as the user would type it.",
    )
    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--source",
        required=False,
        type=str,
        default=None,
        help="Only search chunks of this source document (optional).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)

    state = ConversationState(messages=[HumanMessage(content=args.query)])
    search_filter = {"source": args.source} if args.source else None
    outcome = container.orchestrator.run(state, filter=search_filter)

    print(f"status: {outcome.status.value}  used_retrieval: {outcome.used_retrieval}")
    print(f"groups: {list(outcome.group_labels)}")
    print(f"length: {len(outcome.context)}")
    print()
    print(outcome.context)


if __name__ == "__main__":
    main()
