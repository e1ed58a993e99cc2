from __future__ import annotations

import logging
from asyncio import sleep
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import (
    Any,
    AsyncIterator,
    List,
    Optional,
    Sequence,
    Type,
    Union,
)
from urllib.parse import urlparse

from txflow.base.interface import BaseInterface
from txflow.sql.executor import SQLExecutor

from .context import TransactionContext
from .interfaces import (
    ConnectionFailure,
    IsolationLevel,
    StepCompositeFailure,
    TransactionError,
    attach_secondary,
)
from .result import Err, Step, run_step, unwrap
from .retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    RetryPolicy,
    RetryState,
)
from .savepoint import SavepointManager

logger = logging.getLogger(__name__)

LevelLike = Union[IsolationLevel, str]


class TransactionController:
    """Runs units of work atomically against one database interface.

    Example:

    ```python
    controller = TransactionController.from_dsn("sqlite:///todo.db")

    async def find_user(ctx):
        return await UserRepository(ctx).get(user_id)

    async def create_todo(ctx):
        return await TodoRepository(ctx).insert(text=text, author_id=user_id)

    user, todo = await controller.execute_dependent(
        [find_user, create_todo], IsolationLevel.SERIALIZABLE
    )
    ```
    """

    def __init__(
        self,
        pool: BaseInterface,
        *,
        isolation_level: LevelLike = IsolationLevel.READ_COMMITTED,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: Optional[float] = None,
        acquire_timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initializer for a TransactionController

        Args:
            pool (BaseInterface): Interface that hands out connections
            isolation_level (IsolationLevel, optional): Level used when a
                caller does not pass one. Defaults to `READ_COMMITTED`.
            max_attempts (int, optional): Attempt budget of
                `execute_with_retry`. Defaults to `3`.
            base_delay (float, optional): Seconds to wait after the first
                failed attempt; doubles after each further attempt.
                Defaults to `0.1`.
            max_delay (float, optional): Upper bound on a single delay.
                Defaults to `None`.
            acquire_timeout (float, optional): Time allowed to obtain a
                connection. Defaults to `None`.
            retry_policy (RetryPolicy, optional): Replaces the policy built
                from `max_attempts`, `base_delay` and `max_delay`.
                Defaults to `None`.

        Raises:
            TxflowError: If the configuration is invalid
        """
        self.pool = pool
        self.acquire_timeout = acquire_timeout
        self._default_isolation_level = IsolationLevel.coerce(isolation_level)
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
        )
        self._savepoints = SavepointManager()

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> TransactionController:
        """Build a controller and its interface from a DSN

        The interface is picked by the DSN scheme; unknown schemes fall
        back to Postgres. Keyword arguments are passed to the controller.
        """
        pool_type = cls._get_pool_type(dsn)
        if hasattr(pool_type, "from_dsn"):
            pool = pool_type.from_dsn(dsn)
        else:
            pool = pool_type(dsn)
        return cls(pool, **kwargs)

    @staticmethod
    def _get_pool_type(dsn: str) -> Type[BaseInterface]:
        from txflow.sql.postgres.interface import PostgresPool

        scheme = urlparse(dsn).scheme
        for interface_type in BaseInterface.registered_interfaces:
            if interface_type.handles(scheme):
                return interface_type
        return PostgresPool

    @property
    def default_isolation_level(self) -> IsolationLevel:
        return self._default_isolation_level

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def set_default_isolation_level(self, level: LevelLike) -> None:
        """Change the level used by later calls that do not pass one"""
        self._default_isolation_level = IsolationLevel.coerce(level)

    def set_retry_config(self, max_attempts: int, base_delay: float) -> None:
        """Change the attempt budget and base delay of later retries

        Args:
            max_attempts (int): Total attempts, including the first one
            base_delay (float): Seconds to wait after the first attempt
        """
        self._retry_policy = replace(
            self._retry_policy,
            max_attempts=max_attempts,
            base_delay=base_delay,
        )

    async def connect(self) -> None:
        await self.pool.open()

    async def disconnect(self) -> None:
        await self.pool.close()

    async def __aenter__(self) -> TransactionController:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False

    async def execute(
        self,
        step: Step,
        isolation_level: Optional[LevelLike] = None,
        context: Optional[TransactionContext] = None,
    ) -> Any:
        """Run a single step as a unit of work

        Args:
            step (Step): Callable receiving the TransactionContext
            isolation_level (IsolationLevel, optional): Defaults to the
                controller's default level. Ignored when nesting.
            context (TransactionContext, optional): An open context to nest
                into. The step then runs inside a savepoint on that
                context's connection instead of a new transaction.
                Defaults to `None`.

        Returns:
            Any: What the step returned, unwrapped from `Ok`

        Raises:
            TransactionError: The failure reported by the step, or a
                ConnectionFailure if the store could not be reached
        """
        if context is not None:
            return await self._nested(step, context)

        async with self.transaction(isolation_level) as ctx:
            return unwrap(await run_step(step, ctx))

    async def execute_dependent(
        self,
        steps: Sequence[Step],
        isolation_level: Optional[LevelLike] = None,
        context: Optional[TransactionContext] = None,
    ) -> List[Any]:
        """Run steps in order inside one unit of work

        A step only runs if every step before it succeeded. The first
        failing step stops the sequence and everything done so far is
        rolled back.

        Args:
            steps (Sequence[Step]): Callables receiving the
                TransactionContext
            isolation_level (IsolationLevel, optional): Defaults to the
                controller's default level. Ignored when nesting.
            context (TransactionContext, optional): An open context to nest
                into; all steps then share one savepoint. Defaults to
                `None`.

        Returns:
            List[Any]: One result per step, in input order

        Raises:
            StepCompositeFailure: Carrying the 1-based index of the failing
                step and its cause
        """
        steps = list(steps)
        if context is not None:
            return await self._nested(
                lambda ctx: self._run_dependent(steps, ctx), context
            )

        async with self.transaction(isolation_level) as ctx:
            return await self._run_dependent(steps, ctx)

    async def execute_with_retry(
        self,
        step: Step,
        isolation_level: Optional[LevelLike] = None,
    ) -> Any:
        """Run `execute`, retrying while the store reports conflicts

        Each attempt is a fresh unit of work on a fresh connection. The
        previous connection is released before the delay starts.
        """
        policy = self._retry_policy
        state = RetryState()
        while True:
            state.attempt += 1
            try:
                return await self.execute(step, isolation_level)
            except Exception as e:
                if not policy.is_retryable(e):
                    raise
                if state.attempt >= policy.max_attempts:
                    logger.error(
                        "Giving up after %d attempts (%.3fs waited): %s",
                        state.attempt,
                        state.total_delay,
                        e,
                    )
                    raise
                delay = policy.delay_for(state.attempt)
                state.total_delay += delay
                logger.warning(
                    "Attempt %d/%d failed with a conflict, retrying in "
                    "%.3fs: %s",
                    state.attempt,
                    policy.max_attempts,
                    delay,
                    e,
                )
                await sleep(delay)

    @asynccontextmanager
    async def transaction(
        self, isolation_level: Optional[LevelLike] = None
    ) -> AsyncIterator[TransactionContext]:
        """Open a top level unit of work

        Commits when the block exits normally and rolls back when it
        raises. The connection is released on every path.

        Example:

        ```python
        async with controller.transaction("serializable") as ctx:
            await ctx.execute("UPDATE users SET name = $name", {...})
        ```
        """
        level = (
            self._default_isolation_level
            if isolation_level is None
            else IsolationLevel.coerce(isolation_level)
        )
        async with self._acquire() as executor:
            ctx = TransactionContext(executor, level)
            try:
                await self._begin(ctx)
                try:
                    yield ctx
                except BaseException as e:
                    await self._rollback(ctx, e)
                    raise
                await self._commit(ctx)
            finally:
                ctx.release()

    async def _run_dependent(
        self, steps: List[Step], ctx: TransactionContext
    ) -> List[Any]:
        results: List[Any] = []
        for index, step in enumerate(steps, start=1):
            result = await run_step(step, ctx)
            if isinstance(result, Err):
                logger.debug(
                    "Step %d/%d of %s failed: %s",
                    index,
                    len(steps),
                    ctx.transaction_id,
                    result.error,
                )
                raise StepCompositeFailure(
                    index, result.error
                ) from result.error
            results.append(result.value)
        return results

    async def _nested(self, step: Step, context: TransactionContext) -> Any:
        if not context.is_active:
            raise TransactionError(
                f"Cannot reuse transaction {context.transaction_id} - "
                f"transaction not active"
            )
        return await self._savepoints.with_savepoint(step, context)

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[SQLExecutor]:
        connection_context = self.pool.connection(
            timeout=self.acquire_timeout
        )
        try:
            connection = await connection_context.__aenter__()
        except Exception as e:
            raise ConnectionFailure(
                f"Failed to get connection from {self.pool}: {e}"
            ) from e

        try:
            yield self.pool.executor_class(connection)
        finally:
            try:
                await connection_context.__aexit__(None, None, None)
                logger.debug("Released connection to %s", self.pool)
            except Exception as e:
                logger.warning(
                    "Error releasing connection to %s: %s", self.pool, e
                )

    async def _begin(self, ctx: TransactionContext) -> None:
        try:
            await ctx.begin()
        except TransactionError:
            raise
        except Exception as e:
            failure = ctx.executor.classify(e)
            if failure is None:
                raise TransactionError(
                    f"Failed to begin transaction {ctx.transaction_id}: {e}"
                ) from e
            raise failure from e

    async def _commit(self, ctx: TransactionContext) -> None:
        try:
            await ctx.commit()
        except Exception as e:
            logger.error(
                "Commit failed for %s, attempting rollback: %s",
                ctx.transaction_id,
                e,
            )
            await self._rollback(ctx, e)
            raise

    async def _rollback(
        self, ctx: TransactionContext, error: BaseException
    ) -> None:
        try:
            await ctx.rollback()
        except Exception as rollback_error:
            logger.critical(
                "Rollback of %s after %s also failed: %s",
                ctx.transaction_id,
                type(error).__name__,
                rollback_error,
            )
            attach_secondary(error, rollback_error)

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.pool}>"

