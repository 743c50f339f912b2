"""Retry Policy: tests for the idempotent set, backoff and reconnect delays."""

import pytest

from karmafarm.core.retry_policy import (
    MAX_RECONNECT_ATTEMPTS,
    backoff_ms,
    is_idempotent,
    reconnect_delay_seconds,
)


@pytest.mark.parametrize("operation", [
    "accept_task", "mark_completed", "confirm_completion", "dispute",
    "send_message", "submit_rating",
])
def test_state_moving_operations_are_not_idempotent(operation):
    assert not is_idempotent(operation)


@pytest.mark.parametrize("operation", ["get_engagement", "settle", "typing", "mark_read"])
def test_reads_and_idempotent_writes_are_retryable(operation):
    assert is_idempotent(operation)


def test_backoff_without_jitter_doubles():
    assert [backoff_ms(a, 500, 10_000, jitter=False) for a in range(4)] == [
        500, 1000, 2000, 4000,
    ]


def test_backoff_is_capped():
    assert backoff_ms(10, 500, 3_000, jitter=False) == 3_000


def test_backoff_jitter_stays_within_25_percent():
    for _ in range(50):
        assert 750 <= backoff_ms(1, 500, 10_000) <= 1250


def test_reconnect_delays():
    assert [reconnect_delay_seconds(a) for a in range(1, 6)] == [2, 4, 8, 16, 30]
    assert MAX_RECONNECT_ATTEMPTS == 5
