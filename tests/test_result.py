import sqlite3

import pytest

from txflow import ConflictFailure, Err, Ok, ValidationFailure
from txflow.sql.sqlite.executor import SQLiteExecutor
from txflow.transaction.context import TransactionContext
from txflow.transaction.interfaces import IsolationLevel
from txflow.transaction.result import run_step, unwrap

from .conftest import FakeConnection, FakeDriverError, RecordingExecutor


@pytest.fixture
def context(fake_pool):
    executor = RecordingExecutor(FakeConnection(fake_pool))
    return TransactionContext(executor, IsolationLevel.SERIALIZABLE)


async def test_plain_values_become_ok(context):
    assert await run_step(lambda ctx: 1, context) == Ok(1)


async def test_awaitables_are_awaited(context):
    async def step(ctx):
        return "async"

    assert await run_step(step, context) == Ok("async")


async def test_results_pass_through(context):
    failure = ValidationFailure("missing")

    assert await run_step(lambda ctx: Ok(None), context) == Ok(None)
    assert await run_step(lambda ctx: Err(failure), context) == Err(failure)


async def test_driver_errors_are_classified(context):
    error = FakeDriverError("could not serialize", code="conflict")

    def step(ctx):
        raise error

    result = await run_step(step, context)

    assert isinstance(result.error, ConflictFailure)
    assert result.error.__cause__ is error


async def test_unknown_errors_are_kept(context):
    error = KeyError("name")

    def step(ctx):
        raise error

    assert await run_step(step, context) == Err(error)


def test_unwrap():
    assert unwrap(Ok(3)) == 3
    with pytest.raises(ValidationFailure):
        unwrap(Err(ValidationFailure("no")))


def test_sqlite_busy_is_a_conflict():
    error = sqlite3.OperationalError("database is locked")
    error.sqlite_errorcode = 5
    executor = SQLiteExecutor(connection=None)

    assert isinstance(executor.classify(error), ConflictFailure)
    assert executor.classify(sqlite3.IntegrityError("UNIQUE")) is None
