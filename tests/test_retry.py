import pytest

from txflow import (
    ConflictFailure,
    ConnectionFailure,
    StepCompositeFailure,
    TxflowError,
    ValidationFailure,
)
from txflow.transaction.retry import RetryPolicy


def test_default_policy():
    policy = RetryPolicy()

    assert policy.max_attempts == 3
    assert [policy.delay_for(attempt) for attempt in (1, 2, 3)] == [
        0.1,
        0.2,
        0.4,
    ]


def test_delay_is_capped():
    policy = RetryPolicy(base_delay=1, max_delay=3)

    assert [policy.delay_for(attempt) for attempt in range(1, 5)] == [
        1,
        2,
        3,
        3,
    ]


@pytest.mark.parametrize(
    "failure,expected",
    (
        (ConflictFailure("deadlock detected", code="40P01"), True),
        (ValidationFailure("not found"), False),
        (ConnectionFailure("server closed the connection"), False),
        (StepCompositeFailure(2, ConflictFailure("lock wait")), True),
        (StepCompositeFailure(1, ValidationFailure("missing")), False),
        (RuntimeError("deadlock detected"), False),
    ),
)
def test_is_retryable(failure, expected):
    assert RetryPolicy().is_retryable(failure) is expected


@pytest.mark.parametrize(
    "kwargs,message",
    (
        ({"max_attempts": 0}, "max_attempts"),
        ({"max_attempts": 2.5}, "max_attempts"),
        ({"base_delay": -0.1}, "base_delay"),
        ({"max_delay": -1}, "max_delay"),
    ),
)
def test_invalid_policy(kwargs, message):
    with pytest.raises(TxflowError, match=message):
        RetryPolicy(**kwargs)


def test_attempts_are_numbered_from_one():
    with pytest.raises(TxflowError):
        RetryPolicy().delay_for(0)
