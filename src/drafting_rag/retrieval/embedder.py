"""drafting_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, along with concrete implementations backed by
LlamaIndex embedding wrappers. The embedding model itself is treated as an
opaque capability: ``text -> fixed-length vector``. A factory function is
provided to construct an embedder implementation from configuration.

Classes
-------
BaseEmbedder
    Abstract interface specifying the API used by the embedding index.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.
HuggingFaceEmbedder
    Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.

Functions
---------
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from abc import ABC, abstractmethod
from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding
from llama_index.core.callbacks import CallbackManager
from typing import Any, Dict, Mapping, Optional
import yaml
import asyncio

DEFAULT_TIMEOUT = 5.0


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a provider-specific LlamaIndex embedding and
    expose the small, consistent API used by
    :class:`~drafting_rag.retrieval.vector_store.EmbeddingIndex`.
    """

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """Return the wrapped LlamaIndex embedding instance."""

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration mapping.
        callback_manager : CallbackManager, optional
            Optional LlamaIndex callback manager for telemetry.

        Returns
        -------
        BaseEmbedder
            An initialised embedder implementation.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """

    @classmethod
    def from_config(
            cls,
            config_path: str,
            callback_manager: Optional[CallbackManager] = None
        ) -> "BaseEmbedder":
        """Create an embedder from a YAML configuration file.

        This loads the YAML file and delegates to :meth:`from_config_dict`.
        """
        with open(config_path, 'r') as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg, callback_manager)

    def embed_query(self, query: str) -> list[float]:
        """Embed a single query string.

        Parameters
        ----------
        query : str
            Query string to embed.

        Returns
        -------
        list[float]
            Embedding vector for the query.
        """
        return self.get_embedder().get_query_embedding(query)

    def embed_documents(self, documents: list[str]) -> list[list[float]]:
        """Embed multiple documents in provider-sized batches.

        Parameters
        ----------
        documents : list[str]
            Documents to embed.

        Returns
        -------
        list[list[float]]
            One embedding vector per document, in input order.
        """
        return self.get_embedder().get_text_embedding_batch(documents)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        """Asynchronously embed a batch of documents.

        Uses the native async API of the wrapped embedding when it exists,
        otherwise falls back to :meth:`embed_documents` in the default thread
        pool.

        Parameters
        ----------
        texts : list[str]
            Texts to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors for each text.
        """
        embedder = self.get_embedder()
        if hasattr(embedder, "aget_text_embedding_batch"):
            return await embedder.aget_text_embedding_batch(texts)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embed_documents, texts)


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL for the OpenAI-compatible embedding API endpoint.
    api_key : str or None, optional
        API key sent with each request.
    timeout : float, optional
        Per-request timeout in seconds. Defaults to ``5.0``.
    max_retries : int, optional
        Client-level retries for a single request. Defaults to ``2``.
    embed_batch_size : int, optional
        Number of texts sent per request. Defaults to ``16``.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: str = None,
            callback_manager: Optional[CallbackManager] = None,
            model_kwargs: dict[str, Any] = None,
            timeout: float = DEFAULT_TIMEOUT,
            max_retries: int = 2,
            embed_batch_size: int = 16,
            num_workers: Optional[int] = None,
            reuse_client: bool = True,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            callback_manager=callback_manager,
            additional_kwargs=model_kwargs or {},
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=embed_batch_size,
            num_workers=num_workers,
            reuse_client=reuse_client,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` or ``api_base`` is missing.
        """
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", config.get("request_timeout", DEFAULT_TIMEOUT))),
            max_retries=int(config.get("max_retries", 2)),
            embed_batch_size=int(config.get("embed_batch_size", 16)),
            num_workers=config.get("num_workers"),
            reuse_client=_as_bool(config.get("reuse_client"), True),
        )


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.huggingface.HuggingFaceEmbedding`
    and runs the model in-process, which is useful for air-gapped corpora.

    Parameters
    ----------
    model_name : str
        Name or path of the embedding model.
    device : str
        Device identifier (e.g., ``"cuda"``, ``"cpu"``, ``"mps"``).
    trust_remote_code : bool, optional
        Whether to allow custom model code from the Hugging Face Hub.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded to the underlying embedder.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: str = "cpu",
            trust_remote_code: bool = False,
            callback_manager: Optional[CallbackManager] = None,
            model_kwargs: dict[str, Any] = None,
        ):
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            callback_manager=callback_manager,
            model_kwargs=model_kwargs or {},
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "HuggingFaceEmbedder":
        """Create a Hugging Face embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` is missing.
        """
        return cls(
            model_name=config["model_name"],
            device=config.get("device", "cpu"),
            trust_remote_code=_as_bool(config.get("trust_remote_code"), False),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs", {}),
        )


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider`` discriminator, or ``""``."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind string to a stable registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    a few provider aliases are folded (``"OpenAILike"`` -> ``"openai_like"``).
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    k2 = k2.replace("hugging_face", "huggingface")

    return k2


def create_embedder(
    config: Mapping[str, Any],
    callback_manager: Optional[CallbackManager] = None,
) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The concrete implementation is selected by a discriminator field in the
    configuration (one of: ``kind``, ``type``, ``provider``, ``backend``, or
    ``impl``). If no discriminator is provided, the default implementation is
    :class:`OpenAILikeEmbedder`.

    Parameters
    ----------
    config : Mapping[str, Any]
        Configuration mapping used to construct the embedder.
    callback_manager : CallbackManager, optional
        Optional LlamaIndex callback manager.

    Returns
    -------
    BaseEmbedder
        An initialised embedder implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry = {
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
        "huggingface": HuggingFaceEmbedder,
        "hf": HuggingFaceEmbedder,
    }

    cls = registry.get(kind) if kind else OpenAILikeEmbedder

    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "BaseEmbedder",
    "OpenAILikeEmbedder",
    "HuggingFaceEmbedder",
    "create_embedder",
]
