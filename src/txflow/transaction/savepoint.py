"""
Savepoints for nested units of work.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .interfaces import (
    SavepointError,
    SavepointState,
    TransactionError,
    attach_secondary,
)
from .result import Step, run_step, unwrap

if TYPE_CHECKING:
    from .context import TransactionContext

logger = logging.getLogger(__name__)


class Savepoint:
    """
    A named rollback point inside an open transaction.

    Only the savepoint's own effects are undone by `rollback`; the enclosing
    transaction stays open either way.
    """

    def __init__(self, name: str, context: TransactionContext):
        self.name = name
        self.context = context
        self._state = SavepointState.ACTIVE

    @classmethod
    async def create(cls, context: TransactionContext) -> Savepoint:
        if not context.is_active:
            raise SavepointError(
                f"Cannot create savepoint - transaction "
                f"{context.transaction_id} not active"
            )
        savepoint = cls(context.next_savepoint_name(), context)
        logger.debug(
            "Creating savepoint %s in transaction %s",
            savepoint.name,
            context.transaction_id,
        )
        try:
            await context.executor.savepoint(savepoint.name)
        except TransactionError:
            raise
        except Exception as e:
            raise SavepointError(
                f"Failed to create savepoint {savepoint.name}: {e}"
            ) from e
        context._push_savepoint(savepoint)
        return savepoint

    async def release(self) -> None:
        """Release this savepoint, keeping its effects in the transaction"""
        self._check_active()
        logger.debug(f"Releasing savepoint {self.name}")
        self.context._check_innermost(self)
        try:
            await self.context.executor.release_savepoint(self.name)
        except TransactionError:
            raise
        except Exception as e:
            raise SavepointError(
                f"Failed to release savepoint {self.name}: {e}"
            ) from e
        self.context._pop_savepoint(self)
        self._state = SavepointState.RELEASED

    async def rollback(self) -> None:
        """Undo everything done since the savepoint was created"""
        self._check_active()
        logger.debug(f"Rolling back to savepoint {self.name}")
        # Popped first so a failing statement cannot leave it tracked
        self._state = SavepointState.ROLLED_BACK
        self.context._pop_savepoint(self)
        await self.context.executor.rollback_to_savepoint(self.name)
        await self.context.executor.release_savepoint(self.name)
        logger.info(f"Successfully rolled back to savepoint {self.name}")

    @property
    def state(self) -> SavepointState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SavepointState.ACTIVE

    def _discard(self) -> None:
        self._state = SavepointState.ROLLED_BACK

    def _check_active(self) -> None:
        if not self.is_active:
            raise SavepointError(
                f"Savepoint {self.name} already {self._state.value}"
            )
        if not self.context.is_active:
            raise SavepointError(
                f"Cannot use savepoint {self.name} - transaction not active"
            )

    def __str__(self) -> str:
        return f"<Savepoint {self.name} ({self._state.value})>"


class SavepointManager:
    """Runs nested units of work inside savepoints of an open transaction"""

    async def with_savepoint(
        self, step: Step, context: TransactionContext
    ) -> Any:
        """Run `step` inside a fresh savepoint on `context`

        On success the savepoint is released. On failure, including a
        failed release, the savepoint is rolled back and the failure is
        raised; errors from the rollback itself are logged and attached to
        that failure rather than raised.
        """
        savepoint = await Savepoint.create(context)
        try:
            result = await run_step(step, context)
            value = unwrap(result)
            await savepoint.release()
        except BaseException as e:
            await self._rollback_quietly(savepoint, e)
            raise
        return value

    async def _rollback_quietly(
        self, savepoint: Savepoint, error: BaseException
    ) -> None:
        try:
            await savepoint.rollback()
        except Exception as rollback_error:
            logger.warning(
                "Savepoint rollback failed for %s: %s",
                savepoint.name,
                rollback_error,
            )
            attach_secondary(error, rollback_error)
