import sqlite3
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from txflow import Repository, SQLitePool, TransactionController
from txflow.base.interface import BaseInterface
from txflow.sql.executor import SQLExecutor
from txflow.transaction.interfaces import ConflictFailure, ConnectionFailure

SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL
);
CREATE TABLE todos (
    id INTEGER PRIMARY KEY,
    text TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    due_date TEXT,
    author_id INTEGER NOT NULL REFERENCES users (id)
);
"""


class FakeDriverError(Exception):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class FakeConnection:
    def __init__(self, pool: "FakePool"):
        self.pool = pool
        self.statements: List[str] = []
        self.release_count = 0


class RecordingExecutor(SQLExecutor):
    """Records every statement and raises the errors scheduled on its pool"""

    ENABLED = True

    async def _run_sql(
        self,
        query,
        as_list=False,
        no_result=False,
        posargs=None,
        params=None,
    ):
        self.connection.statements.append(query)
        self.connection.pool.statements.append(query)
        for prefix, errors in self.connection.pool.failures.items():
            if query.startswith(prefix) and errors:
                raise errors.pop(0)
        if no_result:
            return 1
        return self.connection.pool.rows.get(query, [] if as_list else None)

    def classify(self, error):
        code = getattr(error, "code", None)
        if code == "conflict":
            return ConflictFailure(f"Fake conflict: {error}", code=code)
        if code == "connection":
            return ConnectionFailure(f"Fake disconnect: {error}", code=code)
        return None


class FakePool(BaseInterface):
    scheme = "fake"
    executor_class = RecordingExecutor

    def _setup_pool(self):
        self.connections: List[FakeConnection] = []
        self.statements: List[str] = []
        self.failures: Dict[str, List[BaseException]] = defaultdict(list)
        self.rows: Dict[str, Any] = {}
        self.acquire_error: Optional[BaseException] = None
        self.opened = False

    def fail(self, prefix: str, error: BaseException, times: int = 1):
        self.failures[prefix].extend([error] * times)

    async def open(self):
        self.opened = True

    async def close(self):
        self.opened = False

    @asynccontextmanager
    async def connection(self, timeout=None):
        if self.acquire_error is not None:
            raise self.acquire_error
        connection = FakeConnection(self)
        self.connections.append(connection)
        try:
            yield connection
        finally:
            connection.release_count += 1


@dataclass
class User:
    id: int
    name: str
    email: str


@dataclass
class Todo:
    id: int
    text: str
    status: str
    author_id: int
    due_date: Optional[str] = None


class UserRepository(Repository[User]):
    table = "users"
    model = User


class TodoRepository(Repository[Todo]):
    table = "todos"
    model = Todo
    deleted_marker = ("status", "DELETED")
    order_by = "id DESC"


@pytest.fixture
def fake_pool():
    return FakePool(dsn="fake://user@localhost:1234/db")


@pytest.fixture
def controller(fake_pool):
    return TransactionController(fake_pool)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "txflow.db"
    with sqlite3.connect(path) as connection:
        connection.executescript(SCHEMA)
    connection.close()
    return path


@pytest.fixture
def sqlite_controller(db_path):
    return TransactionController(SQLitePool(str(db_path), busy_timeout=10))


@pytest.fixture
def read_rows(db_path):
    def read(query: str, *args):
        with sqlite3.connect(db_path) as connection:
            rows = connection.execute(query, args).fetchall()
        connection.close()
        return rows

    return read
