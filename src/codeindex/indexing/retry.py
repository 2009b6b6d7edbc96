"""
Retry policies for embedding calls and store writes.

Embedding requests retry transient failures (network, timeouts, rate limits,
5xx, overload) with exponential backoff. Store inserts get a lighter policy
that only retries SQLite operational errors such as a locked database.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import httpx
import openai
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from codeindex.errors import EmbeddingError

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)


_RETRIABLE_MARKERS = (
    "network",
    "econnrefused",
    "econnreset",
    "etimedout",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "429",
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
    "overloaded",
    "unavailable",
)


def is_retriable_error(exc: BaseException) -> bool:
    """Classify an exception as a transient failure worth retrying."""
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True

    if isinstance(exc, httpx.TransportError):
        return True

    if isinstance(exc, openai.APIConnectionError):
        return True

    if isinstance(exc, openai.APIStatusError):
        return exc.status_code == 429 or exc.status_code >= 500

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500

    if isinstance(exc, EmbeddingError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500

    message = str(exc).lower()
    return any(marker in message for marker in _RETRIABLE_MARKERS)


def _log_retry(label: str):
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{label} failed, retrying",
            attempt=retry_state.attempt_number,
            next_delay=getattr(retry_state.next_action, "sleep", None),
            error=str(exc),
        )

    return before_sleep


def embedding_retry(config: "Config", label: str = "Embedding request") -> AsyncRetrying:
    """
    Retry policy for embedding calls.

    Defaults: 3 attempts, waiting 2s then 4s between them.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(config.retry.embed_attempts),
        wait=wait_exponential(multiplier=config.retry.embed_base_delay, min=0),
        retry=retry_if_exception(is_retriable_error),
        before_sleep=_log_retry(label),
        reraise=True,
    )


def store_retry(config: "Config") -> AsyncRetrying:
    """
    Retry policy for chunk inserts.

    Defaults: 2 attempts, 500ms apart.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(config.retry.store_attempts),
        wait=wait_exponential(multiplier=config.retry.store_base_delay, min=0),
        retry=retry_if_exception_type(sqlite3.OperationalError),
        before_sleep=_log_retry("Chunk insert"),
        reraise=True,
    )
