from __future__ import annotations

from enum import Enum
from typing import List, Optional, Union

from txflow.exception import TxflowError


class IsolationLevel(Enum):
    """SQL transaction isolation levels"""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"

    @classmethod
    def coerce(cls, value: Union[IsolationLevel, str]) -> IsolationLevel:
        """Accept a member, its name or its SQL text in any case

        Example:

        ```python
        IsolationLevel.coerce("serializable")
        IsolationLevel.coerce("REPEATABLE READ")
        ```
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = " ".join(
                value.upper().replace("_", " ").replace("-", " ").split()
            )
            for level in cls:
                if normalized == level.value:
                    return level
        raise TxflowError(f"Unknown isolation level: {value!r}")


class TransactionState(Enum):
    """Lifecycle of one top-level unit of work"""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"
    RELEASED = "released"


class SavepointState(Enum):
    ACTIVE = "active"
    RELEASED = "released"
    ROLLED_BACK = "rolled_back"


class FailureKind(Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    CONNECTION = "connection"


class TransactionError(TxflowError):
    """Base exception for transaction errors"""

    kind: Optional[FailureKind] = None

    def __init__(self, *args) -> None:
        super().__init__(*args)
        self.secondary_errors: List[BaseException] = []

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.CONFLICT

    def attach(self, error: BaseException) -> None:
        """Keep a secondary error for diagnosis without replacing this one"""
        self.secondary_errors.append(error)


class ValidationFailure(TransactionError):
    """A step precondition did not hold. Never retried."""

    kind = FailureKind.VALIDATION


class RecordNotFound(ValidationFailure):
    """A read-one operation did not find a live record"""


class ConflictFailure(TransactionError):
    """The store reported a serialization conflict, deadlock or lock
    wait timeout"""

    kind = FailureKind.CONFLICT

    def __init__(self, *args, code: Union[str, int, None] = None) -> None:
        super().__init__(*args)
        self.code = code


class ConnectionFailure(TransactionError):
    """The store could not be reached or the connection broke"""

    kind = FailureKind.CONNECTION

    def __init__(self, *args, code: Union[str, int, None] = None) -> None:
        super().__init__(*args)
        self.code = code


class StepCompositeFailure(TransactionError):
    """Raised by a dependent unit of work, carrying the 1-based index of the
    step that failed and its underlying cause"""

    def __init__(self, step_index: int, cause: BaseException) -> None:
        super().__init__(
            f"Dependent transaction failed at step {step_index}: {cause}"
        )
        self.step_index = step_index
        self.cause = cause

    @property
    def kind(self) -> Optional[FailureKind]:  # type: ignore[override]
        return getattr(self.cause, "kind", None)


class SavepointError(TransactionError):
    """Raised when a savepoint cannot be created, released or used"""


def attach_secondary(error: BaseException, secondary: BaseException) -> None:
    if isinstance(error, TransactionError):
        error.attach(secondary)
    elif hasattr(error, "add_note"):
        error.add_note(f"Secondary error: {secondary!r}")
