"""Retry utilities using tenacity."""
import asyncio

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
import aiohttp
from .logging import get_logger

logger = get_logger(__name__)

# Collaborator answers worth asking again: rate limiting and gateway trouble.
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


class TransientStatusError(Exception):
    """A collaborator endpoint answered with a status in ``TRANSIENT_STATUSES``."""

    def __init__(self, status: int, body: str):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body


def _log_retry(max_attempts: int):
    def before_sleep(retry_state):
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retrying_request",
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            status=getattr(error, "status", None),
            error=str(error) if error else None,
        )
    return before_sleep


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
):
    """Create a retry decorator for collaborator HTTP calls.

    Transport errors, timeouts and transient statuses are retried; the last
    error is re-raised once the attempts are used up.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type((
            aiohttp.ClientError,
            asyncio.TimeoutError,
            TransientStatusError,
        )),
        reraise=True,
        before_sleep=_log_retry(max_attempts),
    )
