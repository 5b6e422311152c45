"""drafting_rag.pipelines.retrieval_pipeline

Per-turn retrieval orchestration for the drafting assistant.

This module defines the :class:`RetrievalOrchestrator`, the grounding step
called by the conversation graph before generation. For one turn it:

1. extracts a query from the conversation state (the latest human message,
   or the artifact text for artifact-rewriting quick actions),
2. short-circuits when the query is missing or too short,
3. retrieves relevant chunks and assembles them into a context block.

The orchestrator never raises for retrieval problems: any failure in the
retriever or the assembler is logged and downgraded to an empty context, so
drafting can always continue ungrounded.

Classes
-------
OrchestratorState
    Terminal and intermediate states of one orchestration run.
ConversationState
    The part of the graph state the orchestrator reads.
RetrievalOutcome
    Result of one orchestration run.
RetrievalOrchestrator
    Extract query, validate, search, assemble.

Functions
---------
extract_message_text
    Return the plain text of a LangChain message.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from langchain_core.messages import BaseMessage, HumanMessage

from drafting_rag.retrieval.context_assembler import DEFAULT_MAX_LENGTH, ContextAssembler
from drafting_rag.retrieval.retriever import DEFAULT_TOP_K
from drafting_rag.retrieval.types import ChunkRetriever

logger = logging.getLogger(__name__)

DEFAULT_MIN_QUERY_LENGTH = 3
DEFAULT_ARTIFACT_QUERY_ACTIONS = ("rag_rewrite",)


class OrchestratorState(str, Enum):
    """States of one orchestration run."""

    EXTRACT_QUERY = "extract_query"
    VALIDATE_QUERY = "validate_query"
    SEARCH = "search"
    ASSEMBLE_CONTEXT = "assemble_context"
    DONE = "done"
    SHORT_CIRCUIT = "short_circuit"
    FAILED = "failed"


@dataclass
class ConversationState:
    """Query-bearing subset of the conversation graph state.

    Attributes
    ----------
    messages : Sequence[BaseMessage]
        Conversation so far, oldest first.
    artifact_content : str or None
        Current text of the artifact being drafted.
    artifact_id : str or None
        Identifier of that artifact.
    quick_action_id : str or None
        Identifier of the quick action that triggered this turn, if any.
    """

    messages: Sequence[BaseMessage] = field(default_factory=list)
    artifact_content: Optional[str] = None
    artifact_id: Optional[str] = None
    quick_action_id: Optional[str] = None


@dataclass(frozen=True)
class RetrievalOutcome:
    """Result of :meth:`RetrievalOrchestrator.run`.

    Attributes
    ----------
    context : str
        Assembled context, empty when retrieval was skipped or failed.
    used_retrieval : bool
        ``True`` only when a search completed, even with zero matches.
    status : OrchestratorState
        Terminal state: ``DONE``, ``SHORT_CIRCUIT`` or ``FAILED``.
    group_labels : tuple[str, ...]
        Labels of the groups present in ``context``.
    query : str or None
        Query that was extracted, if any.
    """

    context: str = ""
    used_retrieval: bool = False
    status: OrchestratorState = OrchestratorState.SHORT_CIRCUIT
    group_labels: tuple = ()
    query: Optional[str] = None

    def as_state_update(self) -> dict[str, Any]:
        """Return the keys merged into the conversation graph state."""
        return {"context": self.context, "used_retrieval": self.used_retrieval}


def extract_message_text(message: BaseMessage) -> str:
    """Return the plain text of a message.

    String content is returned as is. For list content, string parts and
    ``{"type": "text"}`` parts are joined with newlines; other parts (images,
    tool calls) are ignored.
    """
    content = message.content
    if isinstance(content, str):
        return content

    texts: list[str] = []
    for part in content or []:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, Mapping) and part.get("type") == "text":
            texts.append(str(part.get("text", "")))
    return "\n".join(texts)


class RetrievalOrchestrator:
    """Grounding step: extract query, validate, search, assemble.

    Parameters
    ----------
    retriever : ChunkRetriever
        Retriever used for the search step.
    assembler : ContextAssembler, optional
        Assembler used to render the context. Defaults to ``ContextAssembler()``.
    top_k : int, optional
        Number of chunks requested per turn. Defaults to ``5``.
    max_context_length : int, optional
        Context budget in characters. Defaults to ``8000``.
    min_query_length : int, optional
        Shortest (stripped) query that triggers a search. Defaults to ``3``.
    artifact_query_actions : Iterable[str], optional
        Quick actions whose query is the artifact text. Defaults to
        ``("rag_rewrite",)``.
    fallback_to_artifact : bool, optional
        Use the artifact text when no human message exists. Defaults to
        ``False``.
    scope_to_artifact : bool, optional
        Restrict the search to chunks of the current artifact when no explicit
        filter is given. Defaults to ``False``.
    """

    def __init__(
            self,
            retriever: ChunkRetriever,
            assembler: Optional[ContextAssembler] = None,
            *,
            top_k: int = DEFAULT_TOP_K,
            max_context_length: int = DEFAULT_MAX_LENGTH,
            min_query_length: int = DEFAULT_MIN_QUERY_LENGTH,
            artifact_query_actions: Iterable[str] = DEFAULT_ARTIFACT_QUERY_ACTIONS,
            fallback_to_artifact: bool = False,
            scope_to_artifact: bool = False,
        ):
        self.retriever = retriever
        self.assembler = assembler or ContextAssembler()
        self.top_k = top_k
        self.max_context_length = max_context_length
        self.min_query_length = min_query_length
        self.artifact_query_actions = frozenset(artifact_query_actions)
        self.fallback_to_artifact = fallback_to_artifact
        self.scope_to_artifact = scope_to_artifact

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            retriever: ChunkRetriever,
            assembler: ContextAssembler,
            top_k: int = DEFAULT_TOP_K,
        ) -> "RetrievalOrchestrator":
        """Create an orchestrator from an ``orchestrator`` configuration mapping."""
        return cls(
            retriever,
            assembler,
            top_k=top_k,
            max_context_length=assembler.max_length,
            min_query_length=int(config.get("min_query_length", DEFAULT_MIN_QUERY_LENGTH)),
            artifact_query_actions=config.get(
                "artifact_query_actions", DEFAULT_ARTIFACT_QUERY_ACTIONS
            ),
            fallback_to_artifact=bool(config.get("fallback_to_artifact", False)),
            scope_to_artifact=bool(config.get("scope_to_artifact", False)),
        )

    def extract_query(self, state: ConversationState) -> Optional[str]:
        """Return the query for this turn, or ``None`` when there is none."""
        artifact = state.artifact_content
        if state.quick_action_id in self.artifact_query_actions and artifact:
            return artifact

        for message in reversed(list(state.messages or [])):
            if isinstance(message, HumanMessage):
                return extract_message_text(message)

        if self.fallback_to_artifact and artifact:
            return artifact
        return None

    def is_valid_query(self, query: Optional[str]) -> bool:
        return query is not None and len(query.strip()) >= self.min_query_length

    def run(
            self,
            state: ConversationState,
            filter: Optional[Mapping[str, Any]] = None,
        ) -> RetrievalOutcome:
        """Run one orchestration turn.

        Parameters
        ----------
        state : ConversationState
            Current conversation state.
        filter : Mapping[str, Any] or None, optional
            Equality conditions on chunk metadata forwarded to the retriever.

        Returns
        -------
        RetrievalOutcome
            Never raises for retrieval or assembly failures; those end in
            ``OrchestratorState.FAILED`` with an empty context.
        """
        query = self.extract_query(state)

        if not self.is_valid_query(query):
            logger.debug("Skipping retrieval: query %r is missing or too short", query)
            return RetrievalOutcome(status=OrchestratorState.SHORT_CIRCUIT, query=query)

        query = query.strip()
        if filter is None and self.scope_to_artifact and state.artifact_id:
            filter = {"artifact_id": state.artifact_id}

        try:
            results = self.retriever.retrieve(query, k=self.top_k, filter=filter)
        except Exception:
            logger.exception("Retrieval failed; continuing without context")
            return RetrievalOutcome(status=OrchestratorState.FAILED, query=query)

        try:
            assembled = self.assembler.assemble(results, max_length=self.max_context_length)
        except Exception:
            logger.exception("Context assembly failed; continuing without context")
            return RetrievalOutcome(status=OrchestratorState.FAILED, query=query)

        logger.info(
            "Retrieved %d chunks, context of %d chars from groups %s",
            len(results),
            assembled.length,
            list(assembled.group_labels),
        )
        return RetrievalOutcome(
            context=assembled.text,
            used_retrieval=True,
            status=OrchestratorState.DONE,
            group_labels=assembled.group_labels,
            query=query,
        )

    async def arun(
            self,
            state: ConversationState,
            filter: Optional[Mapping[str, Any]] = None,
        ) -> RetrievalOutcome:
        """Run :meth:`run` in the default executor.

        Cancelling the awaiting task abandons the result; retrieval performs no
        writes, so this is always safe.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.run, state, filter))

    def __call__(
            self,
            state: ConversationState,
            filter: Optional[Mapping[str, Any]] = None,
        ) -> RetrievalOutcome:
        """Convenience wrapper around :meth:`run`."""
        return self.run(state, filter)


__all__ = [
    "OrchestratorState",
    "ConversationState",
    "RetrievalOutcome",
    "RetrievalOrchestrator",
    "extract_message_text",
]
