from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence
from uuid import uuid4

from .interfaces import (
    IsolationLevel,
    SavepointError,
    TransactionError,
    TransactionState,
)

if TYPE_CHECKING:
    from txflow.sql.executor import SQLExecutor

    from .savepoint import Savepoint

logger = logging.getLogger(__name__)


class TransactionContext:
    """Handle on one open unit of work.

    A context is bound to exactly one connection for its whole life. It is
    handed to every step of the unit of work, and it is the value a caller
    passes back into the controller to nest work inside the same
    transaction. It is never shared between concurrently running steps and
    is unusable once released.
    """

    def __init__(
        self, executor: SQLExecutor, isolation_level: IsolationLevel
    ) -> None:
        self.transaction_id = f"txn_{uuid4().hex[:8]}"
        self._executor = executor
        self._isolation_level = isolation_level
        self._state = TransactionState.IDLE
        self._savepoint_counter = itertools.count(1)
        self._savepoints: List[Savepoint] = []

    def __repr__(self) -> str:
        return (
            f"<TransactionContext {self.transaction_id} "
            f"{self._isolation_level.value} ({self._state.value})>"
        )

    @property
    def executor(self) -> SQLExecutor:
        return self._executor

    @property
    def connection(self) -> Any:
        """The raw driver connection, for steps that need the driver API"""
        return self._executor.connection

    @property
    def isolation_level(self) -> IsolationLevel:
        return self._isolation_level

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TransactionState.OPEN

    @property
    def depth(self) -> int:
        """Number of savepoints currently open"""
        return len(self._savepoints)

    async def execute(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        posargs: Optional[Sequence[Any]] = None,
        *,
        as_list: bool = False,
        allow_none: bool = False,
        no_result: bool = False,
    ):
        """Run a statement inside this unit of work

        See `SQLExecutor.execute` for the arguments.
        """
        self._check_active()
        return await self._executor.execute(
            query,
            params,
            posargs,
            as_list=as_list,
            allow_none=allow_none,
            no_result=no_result,
        )

    async def begin(self) -> None:
        if self._state is not TransactionState.IDLE:
            raise TransactionError(
                f"Transaction {self.transaction_id} already begun"
            )
        logger.debug(
            "Beginning transaction %s at %s",
            self.transaction_id,
            self._isolation_level.value,
        )
        self._state = TransactionState.CONNECTING
        await self._executor.begin(self._isolation_level)
        self._state = TransactionState.OPEN

    async def commit(self) -> None:
        self._check_active()
        self._discard_savepoints()
        self._state = TransactionState.COMMITTING
        await self._executor.commit()
        logger.info(
            "Transaction %s committed successfully", self.transaction_id
        )

    async def rollback(self) -> None:
        if self._state not in (
            TransactionState.OPEN,
            TransactionState.COMMITTING,
        ):
            raise TransactionError(
                f"Cannot rollback transaction {self.transaction_id} "
                f"in state {self._state.value}"
            )
        self._discard_savepoints()
        self._state = TransactionState.ROLLING_BACK
        await self._executor.rollback()
        logger.info(
            "Transaction %s rolled back successfully", self.transaction_id
        )

    def release(self) -> None:
        self._state = TransactionState.RELEASED

    def next_savepoint_name(self) -> str:
        return f"sp_{self.transaction_id}_{next(self._savepoint_counter)}"

    def _push_savepoint(self, savepoint: Savepoint) -> None:
        self._savepoints.append(savepoint)

    def _pop_savepoint(self, savepoint: Savepoint) -> None:
        self._check_innermost(savepoint)
        self._savepoints.pop()

    def _check_innermost(self, savepoint: Savepoint) -> None:
        if not self._savepoints or self._savepoints[-1] is not savepoint:
            raise SavepointError(
                f"Savepoint {savepoint.name} is not the innermost savepoint "
                f"of transaction {self.transaction_id}"
            )

    def _discard_savepoints(self) -> None:
        # Ending the transaction ends every savepoint inside it
        while self._savepoints:
            savepoint = self._savepoints.pop()
            logger.warning(
                "Savepoint %s still open when transaction %s ended",
                savepoint.name,
                self.transaction_id,
            )
            savepoint._discard()

    def _check_active(self) -> None:
        if not self.is_active:
            raise TransactionError(
                f"Transaction {self.transaction_id} is not active "
                f"({self._state.value})"
            )
