"""drafting_rag.common.retry

Reusable retry-with-backoff policy.

A single :class:`RetryPolicy` object wraps any callable with bounded,
exponentially spaced retries. It is built on :mod:`tenacity` and is shared by
the retriever (transient search failures) and the ingestion pipeline
(whole-document retries).

Classes
-------
RetryPolicy
    Retry an operation up to ``max_attempts`` times with exponential backoff.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Tuple, Type, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from drafting_rag.common.errors import IndexUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an operation with exponential backoff.

    The delay before retry ``i`` (1-based) is ``base_delay * 2 ** (i - 1)``.
    After ``max_attempts`` failed attempts the last exception is re-raised
    unchanged.

    Attributes
    ----------
    max_attempts : int
        Total number of attempts, including the first call. Defaults to ``3``.
    base_delay : float
        Delay in seconds before the first retry. Defaults to ``1.0``.
    retry_on : tuple[type[BaseException], ...]
        Exception types considered transient. Anything else propagates
        immediately. Defaults to ``(IndexUnavailableError,)``.
    sleep : Callable[[float], None]
        Sleep function, injectable for tests. Defaults to :func:`time.sleep`.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    retry_on: Tuple[Type[BaseException], ...] = (IndexUnavailableError,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    @classmethod
    def from_config_dict(cls, config: dict, **overrides: Any) -> "RetryPolicy":
        """Create a policy from a mapping with ``max_attempts``/``base_delay`` keys."""
        return cls(
            max_attempts=int(config.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            base_delay=float(config.get("base_delay", DEFAULT_BASE_DELAY)),
            **overrides,
        )

    def delays(self) -> list[float]:
        """Return the sleep schedule between attempts."""
        return [self.base_delay * 2 ** (i - 1) for i in range(1, self.max_attempts)]

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2, min=0),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``operation(*args, **kwargs)`` under this policy.

        Parameters
        ----------
        operation : Callable
            Operation to run.
        *args, **kwargs
            Forwarded to ``operation``.

        Returns
        -------
        Any
            The first successful result.

        Raises
        ------
        BaseException
            The last exception raised by ``operation`` once attempts are
            exhausted, or any non-retryable exception immediately.
        """
        return self._retrying()(operation, *args, **kwargs)

    def __call__(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.call(operation, *args, **kwargs)


__all__ = ["RetryPolicy", "DEFAULT_MAX_ATTEMPTS", "DEFAULT_BASE_DELAY"]
