"""
Units of work over a single connection: atomic execution, dependent step
sequences, savepoint nesting and conflict retries.
"""

from .context import TransactionContext
from .controller import TransactionController
from .interfaces import (
    ConflictFailure,
    ConnectionFailure,
    FailureKind,
    IsolationLevel,
    RecordNotFound,
    SavepointError,
    StepCompositeFailure,
    TransactionError,
    TransactionState,
    ValidationFailure,
)
from .result import Err, Ok, Result, run_step, unwrap
from .retry import RetryPolicy
from .savepoint import Savepoint, SavepointManager

__all__ = [
    "TransactionController",
    "TransactionContext",
    "TransactionError",
    "TransactionState",
    "ValidationFailure",
    "RecordNotFound",
    "ConflictFailure",
    "ConnectionFailure",
    "StepCompositeFailure",
    "SavepointError",
    "FailureKind",
    "IsolationLevel",
    "Ok",
    "Err",
    "Result",
    "run_step",
    "unwrap",
    "RetryPolicy",
    "Savepoint",
    "SavepointManager",
]
