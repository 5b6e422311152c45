"""drafting_rag.retrieval.splitter_factory

Factory and registry for splitting policies.

Splitting behaviour is expressed as named variants of a single
:class:`~drafting_rag.retrieval.text_splitter.SplittingPolicy` rather than as
separate splitter implementations. Policy builders are registered under a
string key and instantiated via a single factory function, optionally with
per-field overrides coming from configuration.

Functions
---------
register
    Decorator used to register a policy builder under a name.
create
    Construct a splitting policy by name.
create_splitter
    Construct a :class:`~drafting_rag.retrieval.text_splitter.RecursiveTextSplitter`
    from a configuration mapping.
available_policies
    Names of all registered policies.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Mapping, Optional

from drafting_rag.retrieval.text_splitter import (
    DEFAULT_SEPARATORS,
    LEGAL_SECTION_PATTERN,
    RecursiveTextSplitter,
    SplittingPolicy,
)

DEFAULT_POLICY = "legal"

_BUILDERS: Dict[str, Callable[..., SplittingPolicy]] = {}

def register(name: str):
    """Register a splitting policy builder under a name.

    Parameters
    ----------
    name : str
        Name under which the builder should be registered.

    Returns
    -------
    Callable
        Decorator that registers the wrapped builder function.
    """
    def _wrap(fn: Callable[..., SplittingPolicy]):
        _BUILDERS[name] = fn
        return fn
    return _wrap

def available_policies() -> list[str]:
    """Return the names of all registered policies."""
    return sorted(_BUILDERS)

def create(
    *,
    kind: str = DEFAULT_POLICY,
    chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
    **overrides: Any,
) -> SplittingPolicy:
    """Create a splitting policy by name.

    Parameters
    ----------
    kind : str, optional
        Registered policy name (``"generic"`` or ``"legal"``). Defaults to
        ``"legal"``.
    chunk_size : int or None, optional
        Overrides the policy chunk size when provided.
    overlap : int or None, optional
        Overrides the policy overlap when provided.
    **overrides : Any
        Further :class:`SplittingPolicy` fields to override (e.g.
        ``separators``, ``section_pattern``). ``None`` values are ignored.

    Returns
    -------
    SplittingPolicy
        The configured policy.

    Raises
    ------
    ValueError
        If ``kind`` does not correspond to a registered policy.
    """
    key = (kind or DEFAULT_POLICY).lower().strip()
    if key not in _BUILDERS:
        raise ValueError(f"Unknown splitting policy: {kind}. Available: {available_policies()}")

    policy = _BUILDERS[key]()
    return policy.with_overrides(chunk_size=chunk_size, overlap=overlap, **overrides)

def create_splitter(config: Optional[Mapping[str, Any]] = None) -> RecursiveTextSplitter:
    """Create a splitter from a ``chunking`` configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any] or None, optional
        Mapping with an optional ``policy`` key plus any
        :class:`SplittingPolicy` field overrides.

    Returns
    -------
    RecursiveTextSplitter
        Splitter using the resulting policy.
    """
    cfg = dict(config or {})
    kind = cfg.pop("policy", None) or cfg.pop("kind", None) or DEFAULT_POLICY
    return RecursiveTextSplitter(create(kind=kind, **cfg))

@register("generic")
def _build_generic() -> SplittingPolicy:
    """Paragraph, sentence, newline, space, then character splitting."""
    return SplittingPolicy(name="generic", separators=DEFAULT_SEPARATORS)

@register("legal")
def _build_legal() -> SplittingPolicy:
    """Generic splitting inside sections cut at legal heading lines.

    Overlap never crosses a heading: the first chunk of a section starts at
    its heading.
    """
    return SplittingPolicy(
        name="legal",
        separators=DEFAULT_SEPARATORS,
        section_pattern=LEGAL_SECTION_PATTERN,
        overlap_across_sections=False,
    )


__all__ = [
    "DEFAULT_POLICY",
    "register",
    "create",
    "create_splitter",
    "available_policies",
]
