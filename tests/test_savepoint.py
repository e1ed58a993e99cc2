import logging

import pytest

from txflow import SavepointError, SavepointManager, ValidationFailure
from txflow.transaction.context import TransactionContext
from txflow.transaction.interfaces import (
    IsolationLevel,
    SavepointState,
    TransactionError,
    TransactionState,
)
from txflow.transaction.result import Err
from txflow.transaction.savepoint import Savepoint

from .conftest import FakeConnection, FakeDriverError, RecordingExecutor


@pytest.fixture
def context(fake_pool):
    executor = RecordingExecutor(FakeConnection(fake_pool))
    return TransactionContext(executor, IsolationLevel.READ_COMMITTED)


@pytest.fixture
async def open_context(context):
    await context.begin()
    return context


async def test_savepoint_requires_open_transaction(context):
    with pytest.raises(SavepointError, match="not active"):
        await Savepoint.create(context)


async def test_savepoint_names_are_unique(open_context, fake_pool):
    first = await Savepoint.create(open_context)
    second = await Savepoint.create(open_context)

    assert first.name != second.name
    assert first.name.startswith(f"sp_{open_context.transaction_id}_")
    assert open_context.depth == 2
    assert fake_pool.statements[-2:] == [
        f"SAVEPOINT {first.name}",
        f"SAVEPOINT {second.name}",
    ]


async def test_release_keeps_transaction_open(open_context, fake_pool):
    savepoint = await Savepoint.create(open_context)
    await savepoint.release()

    assert savepoint.state is SavepointState.RELEASED
    assert open_context.is_active
    assert open_context.depth == 0
    assert fake_pool.statements[-1] == f"RELEASE SAVEPOINT {savepoint.name}"

    with pytest.raises(SavepointError, match="already released"):
        await savepoint.release()


async def test_rollback_then_release(open_context, fake_pool):
    savepoint = await Savepoint.create(open_context)
    await savepoint.rollback()

    assert savepoint.state is SavepointState.ROLLED_BACK
    assert open_context.is_active
    assert fake_pool.statements[-2:] == [
        f"ROLLBACK TO SAVEPOINT {savepoint.name}",
        f"RELEASE SAVEPOINT {savepoint.name}",
    ]


async def test_only_innermost_savepoint_can_end(open_context):
    outer = await Savepoint.create(open_context)
    inner = await Savepoint.create(open_context)

    with pytest.raises(SavepointError, match="innermost"):
        await outer.release()

    await inner.release()
    await outer.release()
    assert open_context.depth == 0


async def test_ending_transaction_ends_open_savepoints(open_context, caplog):
    savepoint = await Savepoint.create(open_context)

    with caplog.at_level(logging.WARNING):
        await open_context.commit()

    assert not savepoint.is_active
    assert open_context.depth == 0
    assert "still open" in caplog.text


async def test_with_savepoint_returns_step_value(open_context, fake_pool):
    value = await SavepointManager().with_savepoint(
        lambda ctx: "created", open_context
    )

    assert value == "created"
    assert fake_pool.statements[-1].startswith("RELEASE SAVEPOINT")


async def test_with_savepoint_undoes_only_the_step(open_context, fake_pool):
    async def step(ctx):
        await ctx.execute("INSERT child", no_result=True)
        return Err(ValidationFailure("parent missing"))

    await open_context.execute("INSERT parent", no_result=True)
    with pytest.raises(ValidationFailure):
        await SavepointManager().with_savepoint(step, open_context)

    assert open_context.is_active
    assert fake_pool.statements[-2].startswith("ROLLBACK TO SAVEPOINT")
    assert "ROLLBACK" not in fake_pool.statements


async def test_with_savepoint_attaches_rollback_failure(
    open_context, fake_pool, caplog
):
    rollback_error = FakeDriverError("savepoint does not exist")
    fake_pool.fail("ROLLBACK TO", rollback_error)

    def step(ctx):
        raise ValidationFailure("invalid")

    with caplog.at_level(logging.WARNING):
        with pytest.raises(ValidationFailure) as exc_info:
            await SavepointManager().with_savepoint(step, open_context)

    assert exc_info.value.secondary_errors == [rollback_error]
    assert open_context.is_active
    assert open_context.depth == 0
    assert "Savepoint rollback failed" in caplog.text


async def test_failed_savepoint_statement(open_context, fake_pool):
    fake_pool.fail("SAVEPOINT", FakeDriverError("too many savepoints"))

    with pytest.raises(SavepointError, match="Failed to create savepoint"):
        await Savepoint.create(open_context)

    assert open_context.depth == 0
    assert open_context.is_active


async def test_context_lifecycle_states(context, fake_pool):
    assert context.state is TransactionState.IDLE
    assert not context.is_active

    await context.begin()

    assert context.state is TransactionState.OPEN
    with pytest.raises(TransactionError, match="already begun"):
        await context.begin()


async def test_failed_begin_leaves_context_connecting(context, fake_pool):
    fake_pool.fail("BEGIN", FakeDriverError("server went away"))

    with pytest.raises(FakeDriverError):
        await context.begin()

    assert context.state is TransactionState.CONNECTING
    assert not context.is_active


async def test_failed_release_keeps_savepoint_open(open_context, fake_pool):
    savepoint = await Savepoint.create(open_context)
    fake_pool.fail("RELEASE", FakeDriverError("release refused"))

    with pytest.raises(SavepointError, match="Failed to release savepoint"):
        await savepoint.release()

    assert savepoint.is_active
    assert open_context.depth == 1

    await savepoint.rollback()
    assert open_context.depth == 0


async def test_failed_release_rolls_back_nested_work(controller, fake_pool):
    async def inner(ctx):
        await ctx.execute("INSERT inner", no_result=True)
        return "inner"

    async def outer(ctx):
        await ctx.execute("INSERT outer", no_result=True)
        fake_pool.fail("RELEASE", FakeDriverError("release refused"))
        with pytest.raises(SavepointError):
            await controller.execute(inner, context=ctx)
        return ctx.depth

    assert await controller.execute(outer) == 0

    statements = fake_pool.statements
    name = statements[2].split()[-1]
    assert statements == [
        "BEGIN ISOLATION LEVEL READ COMMITTED",
        "INSERT outer",
        f"SAVEPOINT {name}",
        "INSERT inner",
        f"RELEASE SAVEPOINT {name}",
        f"ROLLBACK TO SAVEPOINT {name}",
        f"RELEASE SAVEPOINT {name}",
        "COMMIT",
    ]
