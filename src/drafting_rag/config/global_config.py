"""drafting_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used by the retrieval subsystem. Every section is optional; missing keys fall
back to documented defaults.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

import os
import yaml
from pathlib import Path
from functools import cached_property
from typing import Any

from drafting_rag.common.schemas import GroupingPolicy

def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    This function walks nested dictionaries and lists and applies
    :func:`os.path.expandvars` to any string values, expanding patterns of the
    form ``${VAR}`` using the current process environment.

    Parameters
    ----------
    obj : Any
        Object to expand. Supported types are dictionaries, lists, and strings.
        Other types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with environment variables
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj

def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(section).__name__}.")
    return dict(section)

def _positive_int(section: dict, name: str, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{name}.{key}' must be a positive integer, got {value!r}.")
    return value

def _non_negative_float(section: dict, name: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"'{name}.{key}' must be a non-negative number, got {value!r}.")
    return float(value)

def _grouping(section: dict, name: str) -> str:
    value = section.get("grouping", GroupingPolicy.SECTION.value)
    try:
        return GroupingPolicy(value).value
    except ValueError:
        allowed = [g.value for g in GroupingPolicy]
        raise ValueError(f"'{name}.grouping' must be one of {allowed}, got {value!r}.") from None

class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary (typically loaded from YAML)
    and exposes validated, cached accessors for each configuration section.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict,
            config_path: Path | None = None,
        ):
        self.raw = raw or {}
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f) or {}
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` relative to the config file directory when relative."""
        p = Path(value).expanduser()
        if p.is_absolute() or self.config_path is None:
            return p
        return (Path(self.config_path).parent / p).resolve()

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Returns
        -------
        dict
            The ``embedder`` section, passed as is to
            :func:`~drafting_rag.retrieval.embedder.create_embedder`.

        Raises
        ------
        KeyError
            If ``embedder`` or ``embedder.model_name`` is missing.
        """
        section = self.raw.get("embedder")
        if section is None:
            raise KeyError("Missing 'embedder' section in configuration.")
        if not isinstance(section, dict):
            raise TypeError("'embedder' must be a mapping.")
        if "model_name" not in section:
            raise KeyError("Missing 'model_name' under 'embedder' in configuration.")
        return section

    @cached_property
    def vector_store(self) -> dict:
        """Return the vector store configuration section.

        Returns
        -------
        dict
            ``collection_name`` (default ``"legal-documents"``), ``timeout``
            (default ``5.0``), ``batch_size`` (default ``64``),
            ``embedding_workers`` (default ``1``) plus any endpoint keys
            (``location``, ``url``, ``host``/``port``, ``api_key``).
        """
        name = "vector_store"
        section = _section(self.raw, name)
        section.setdefault("collection_name", "legal-documents")
        if not isinstance(section["collection_name"], str) or not section["collection_name"].strip():
            raise ValueError("'vector_store.collection_name' must be a non-empty string.")
        section["timeout"] = _non_negative_float(section, name, "timeout", 5.0)
        section["batch_size"] = _positive_int(section, name, "batch_size", 64)
        section["embedding_workers"] = _positive_int(section, name, "embedding_workers", 1)
        return section

    @cached_property
    def chunking(self) -> dict:
        """Return the chunking configuration section.

        Returns
        -------
        dict
            ``policy`` (default ``"legal"``) plus optional overrides
            (``chunk_size``, ``overlap``, ``separators``, ``section_pattern``,
            ``overlap_across_sections``).
        """
        name = "chunking"
        section = _section(self.raw, name)
        section.setdefault("policy", "legal")
        if "chunk_size" in section:
            _positive_int(section, name, "chunk_size", 1000)
        if "overlap" in section:
            overlap = section["overlap"]
            if isinstance(overlap, bool) or not isinstance(overlap, int) or overlap < 0:
                raise ValueError(f"'chunking.overlap' must be a non-negative integer, got {overlap!r}.")
        if "separators" in section and not isinstance(section["separators"], list):
            raise TypeError("'chunking.separators' must be a list of regular expressions.")
        return section

    @cached_property
    def retriever(self) -> dict:
        """Return the retriever configuration section.

        Returns
        -------
        dict
            ``top_k`` (default ``5``), ``max_attempts`` (default ``3``),
            ``base_delay`` (default ``1.0``) and ``grouping`` (default
            ``"section"``).
        """
        name = "retriever"
        section = _section(self.raw, name)
        section["top_k"] = _positive_int(section, name, "top_k", 5)
        section["max_attempts"] = _positive_int(section, name, "max_attempts", 3)
        section["base_delay"] = _non_negative_float(section, name, "base_delay", 1.0)
        section["grouping"] = _grouping(section, name)
        return section

    @cached_property
    def assembler(self) -> dict:
        """Return the context assembler configuration section.

        Returns
        -------
        dict
            ``max_length`` (default ``8000``), ``grouping`` (default
            ``"section"``) and ``separator`` (default ``"\\n\\n---\\n\\n"``).
        """
        name = "assembler"
        section = _section(self.raw, name)
        section["max_length"] = _positive_int(section, name, "max_length", 8000)
        section["grouping"] = _grouping(section, name)
        section.setdefault("separator", "\n\n---\n\n")
        return section

    @cached_property
    def orchestrator(self) -> dict:
        """Return the retrieval orchestrator configuration section.

        Returns
        -------
        dict
            ``min_query_length`` (default ``3``), ``artifact_query_actions``
            (default ``["rag_rewrite"]``), ``fallback_to_artifact`` and
            ``scope_to_artifact`` (both default ``False``).
        """
        name = "orchestrator"
        section = _section(self.raw, name)
        section["min_query_length"] = _positive_int(section, name, "min_query_length", 3)
        actions = section.get("artifact_query_actions", ["rag_rewrite"])
        if isinstance(actions, str):
            actions = [actions]
        if not isinstance(actions, list) or not all(isinstance(a, str) for a in actions):
            raise TypeError("'orchestrator.artifact_query_actions' must be a list of strings.")
        section["artifact_query_actions"] = actions
        section["fallback_to_artifact"] = bool(section.get("fallback_to_artifact", False))
        section["scope_to_artifact"] = bool(section.get("scope_to_artifact", False))
        return section

    @cached_property
    def ingestion(self) -> dict:
        """Return the ingestion configuration section.

        Returns
        -------
        dict
            ``documents_dir`` (resolved against the config file, or ``None``),
            ``extensions`` (default ``[".txt", ".md"]``), ``max_retries``
            (default ``3``), ``retry_delay`` (default ``1.0``) and
            ``supersede`` (default ``False``).
        """
        name = "ingestion"
        section = _section(self.raw, name)
        documents_dir = section.get("documents_dir")
        section["documents_dir"] = str(self.resolve_path(documents_dir)) if documents_dir else None
        extensions = section.get("extensions", [".txt", ".md"])
        if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
            raise TypeError("'ingestion.extensions' must be a list of strings.")
        section["extensions"] = extensions
        section["max_retries"] = _positive_int(section, name, "max_retries", 3)
        section["retry_delay"] = _non_negative_float(section, name, "retry_delay", 1.0)
        section["supersede"] = bool(section.get("supersede", False))
        return section

    def get(self, key: str, default: Any = None) -> Any:
        """Return a raw top-level entry."""
        return self.raw.get(key, default)
