"""Retry delay policies and error classification."""

import asyncio
from enum import Enum
from typing import Optional, Union

import aiohttp
from pydantic import ValidationError

from adsync_jobs.errors import AuthenticationError, JobValidationError
from adsync_jobs.models import BackoffPolicy, BackoffType
from adsync_jobs.payloads import RetryStrategy

RETRYABLE_ERROR_CODES = (
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "QUOTA_ERROR",
    "RESOURCE_EXHAUSTED",
    "RATE_LIMIT_EXCEEDED",
)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Queue-level backoff never waits longer than an hour between attempts
MAX_QUEUE_BACKOFF_MS = 3_600_000


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    UNCLASSIFIED = "unclassified"


def calculate_retry_delay(strategy: RetryStrategy, retry_count: int) -> Union[int, float]:
    """
    Calculate the pre-replay delay of an api-retry job.

    Args:
        strategy: Retry strategy attached to the payload
        retry_count: Number of retries already made (0-indexed)

    Returns:
        Delay in milliseconds
    """
    if not strategy.exponential_backoff:
        return strategy.base_delay_ms

    try:
        delay = strategy.base_delay_ms * strategy.backoff_multiplier**retry_count
    except OverflowError:
        return strategy.max_delay_ms
    return min(delay, strategy.max_delay_ms)


def calculate_queue_backoff(policy: Optional[BackoffPolicy], attempt: int) -> int:
    """
    Calculate the delay before the next automatic attempt of a job.

    Args:
        policy: Queue backoff policy, None for an immediate retry
        attempt: Attempt that just failed (1-indexed)

    Returns:
        Backoff delay in milliseconds
    """
    if policy is None:
        return 0

    if policy.type == BackoffType.FIXED:
        return policy.delay_ms

    # Exponential backoff: delay * 2^(attempt-1)
    exponent = max(attempt - 1, 0)
    if exponent > 32:
        return MAX_QUEUE_BACKOFF_MS
    return min(policy.delay_ms * (2**exponent), MAX_QUEUE_BACKOFF_MS)


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to the error taxonomy used for retry decisions."""
    if isinstance(exc, AuthenticationError):
        return ErrorKind.AUTHENTICATION
    if isinstance(exc, (JobValidationError, ValidationError)):
        return ErrorKind.VALIDATION

    if isinstance(
        exc, (asyncio.TimeoutError, ConnectionError, aiohttp.ClientConnectionError)
    ):
        return ErrorKind.TRANSIENT

    status = _status_of(exc)
    if status == 401:
        return ErrorKind.AUTHENTICATION
    if status in RETRYABLE_STATUS_CODES:
        return ErrorKind.TRANSIENT

    message = str(exc)
    code = getattr(exc, "code", None)
    code = code if isinstance(code, str) else ""
    if any(sig in message or sig in code for sig in RETRYABLE_ERROR_CODES):
        return ErrorKind.TRANSIENT

    return ErrorKind.UNCLASSIFIED


def should_retry_again(exc: BaseException, retry_count: int, max_retries: int) -> bool:
    """
    Decide whether a failed replay should be scheduled again.

    Only transient failures are retried, and never once the next retry
    would reach ``max_retries``.
    """
    if retry_count + 1 >= max_retries:
        return False
    return classify_error(exc) == ErrorKind.TRANSIENT
