from importlib.metadata import version

from .base.hydrator import Hydrator
from .exception import TxflowError
from .repository import Page, Repository
from .sql.mysql.executor import MysqlExecutor
from .sql.mysql.interface import MysqlPool
from .sql.postgres.executor import PostgresExecutor
from .sql.postgres.interface import PostgresPool
from .sql.sqlite.executor import SQLiteExecutor
from .sql.sqlite.interface import SQLitePool
from .transaction import (
    ConflictFailure,
    ConnectionFailure,
    Err,
    IsolationLevel,
    Ok,
    RecordNotFound,
    RetryPolicy,
    SavepointError,
    SavepointManager,
    StepCompositeFailure,
    TransactionContext,
    TransactionController,
    TransactionError,
    ValidationFailure,
)

__version__ = version("txflow")

__all__ = (
    "ConflictFailure",
    "ConnectionFailure",
    "Err",
    "Hydrator",
    "IsolationLevel",
    "MysqlExecutor",
    "MysqlPool",
    "Ok",
    "Page",
    "PostgresExecutor",
    "PostgresPool",
    "RecordNotFound",
    "Repository",
    "RetryPolicy",
    "SQLiteExecutor",
    "SQLitePool",
    "SavepointError",
    "SavepointManager",
    "StepCompositeFailure",
    "TransactionContext",
    "TransactionController",
    "TransactionError",
    "TxflowError",
    "ValidationFailure",
)
