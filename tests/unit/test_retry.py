"""Unit tests for retry delays and error classification."""

import asyncio
import random

import pytest
from pydantic import ValidationError

from adsync_jobs.errors import AuthenticationError, JobValidationError, RemoteHttpError
from adsync_jobs.models import BackoffPolicy, BackoffType
from adsync_jobs.payloads import RetryStrategy, PlatformSyncPayload
from adsync_jobs.retry import (
    MAX_QUEUE_BACKOFF_MS,
    ErrorKind,
    calculate_queue_backoff,
    calculate_retry_delay,
    classify_error,
    should_retry_again,
)


def test_retry_delay_exponential():
    strategy = RetryStrategy(base_delay_ms=1000, backoff_multiplier=2, max_delay_ms=30000)

    assert calculate_retry_delay(strategy, 0) == 1000
    assert calculate_retry_delay(strategy, 1) == 2000
    assert calculate_retry_delay(strategy, 2) == 4000
    assert calculate_retry_delay(strategy, 10) == 30000


def test_retry_delay_fixed():
    strategy = RetryStrategy(exponential_backoff=False, base_delay_ms=1500)

    assert calculate_retry_delay(strategy, 0) == 1500
    assert calculate_retry_delay(strategy, 7) == 1500


def test_retry_delay_huge_retry_count_capped():
    strategy = RetryStrategy(base_delay_ms=1000, backoff_multiplier=10, max_delay_ms=5000)

    assert calculate_retry_delay(strategy, 10_000) == 5000


def test_retry_delay_matches_formula_for_random_inputs():
    """Test delay = min(base * multiplier^n, max) over randomized strategies."""
    rng = random.Random(1234)
    for _ in range(500):
        strategy = RetryStrategy(
            exponential_backoff=rng.random() < 0.7,
            base_delay_ms=rng.randint(0, 10_000),
            max_delay_ms=rng.randint(0, 120_000),
            backoff_multiplier=rng.uniform(1.0, 4.0),
        )
        retry_count = rng.randint(0, 20)

        if strategy.exponential_backoff:
            expected = min(
                strategy.base_delay_ms * strategy.backoff_multiplier**retry_count,
                strategy.max_delay_ms,
            )
        else:
            expected = strategy.base_delay_ms

        assert calculate_retry_delay(strategy, retry_count) == pytest.approx(expected)


def test_queue_backoff_exponential():
    policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=3000)

    assert calculate_queue_backoff(policy, 1) == 3000
    assert calculate_queue_backoff(policy, 2) == 6000
    assert calculate_queue_backoff(policy, 3) == 12000


def test_queue_backoff_is_monotonic_and_capped():
    policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000)

    delays = [calculate_queue_backoff(policy, attempt) for attempt in range(1, 100)]

    assert delays == sorted(delays)
    assert max(delays) == MAX_QUEUE_BACKOFF_MS


def test_queue_backoff_fixed_and_none():
    assert calculate_queue_backoff(BackoffPolicy(type=BackoffType.FIXED, delay_ms=700), 5) == 700
    assert calculate_queue_backoff(None, 3) == 0


def test_classify_authentication():
    assert classify_error(AuthenticationError("expired")) == ErrorKind.AUTHENTICATION
    assert classify_error(RemoteHttpError(401, "unauthorized")) == ErrorKind.AUTHENTICATION


def test_classify_validation():
    with pytest.raises(ValidationError) as exc_info:
        PlatformSyncPayload(tenant_id="t1")

    assert classify_error(exc_info.value) == ErrorKind.VALIDATION
    assert classify_error(JobValidationError("bad")) == ErrorKind.VALIDATION


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_classify_retryable_status(status):
    assert classify_error(RemoteHttpError(status, "boom")) == ErrorKind.TRANSIENT


def test_classify_signatures_and_network_errors():
    assert classify_error(RemoteHttpError(0, "reset", code="ECONNRESET")) == ErrorKind.TRANSIENT
    assert classify_error(Exception("RESOURCE_EXHAUSTED: quota")) == ErrorKind.TRANSIENT
    assert classify_error(asyncio.TimeoutError()) == ErrorKind.TRANSIENT
    assert classify_error(ConnectionResetError()) == ErrorKind.TRANSIENT


def test_classify_unclassified():
    assert classify_error(RemoteHttpError(404, "missing")) == ErrorKind.UNCLASSIFIED
    assert classify_error(KeyError("x")) == ErrorKind.UNCLASSIFIED


def test_should_retry_again():
    rate_limited = RemoteHttpError(429, "Too Many Requests")

    assert should_retry_again(rate_limited, retry_count=2, max_retries=5) is True
    assert should_retry_again(rate_limited, retry_count=4, max_retries=5) is False
    assert should_retry_again(AuthenticationError("x"), retry_count=0, max_retries=5) is False
    assert should_retry_again(RemoteHttpError(404, "x"), retry_count=0, max_retries=5) is False
