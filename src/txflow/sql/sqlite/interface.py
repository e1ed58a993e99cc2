from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

from txflow.base.interface import BaseInterface
from txflow.exception import TxflowError

from .executor import SQLiteExecutor

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False

DEFAULT_BUSY_TIMEOUT = 5.0


class SQLitePool(BaseInterface):
    """Interface for connecting to a SQLite database

    SQLite has no server side pool. Each acquisition opens its own
    connection so that a unit of work never shares one with another.
    """

    scheme = "sqlite"
    executor_class = SQLiteExecutor

    def __init__(
        self, db_path: str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    ):
        if not db_path:
            raise TxflowError("db_path: must be a non-empty path")
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        super().__init__()

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> SQLitePool:
        """Build from `sqlite:///relative.db` or `sqlite:////abs/path.db`"""
        parts = urlparse(dsn)
        return cls(parts.netloc + parts.path[1:], **kwargs)

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self._db_path}>"

    def _populate_dsn(self):
        self._dsn = f"{self.scheme}:///{self._db_path}"
        self._full_dsn = self._dsn

    def _setup_pool(self):
        if not AIOSQLITE_ENABLED:
            raise TxflowError(
                "SQLite driver not found. Try reinstalling txflow: "
                "pip install txflow[sqlite]"
            )

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self):
        ...

    async def close(self):
        ...

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator["aiosqlite.Connection"]:
        """Open a dedicated connection to the database

        Args:
            timeout (float, optional): _Not implemented_. Locked databases
                are waited on for the pool's busy timeout.

        Yields:
            aiosqlite.Connection: A connection in autocommit mode, closed
            when the context exits
        """
        async with aiosqlite.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
        ) as conn:
            yield conn
