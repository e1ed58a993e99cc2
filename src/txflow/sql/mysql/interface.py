from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from txflow.base.interface import BaseInterface
from txflow.exception import TxflowError

from .executor import MysqlExecutor

try:
    from asyncmy import create_pool

    MYSQL_ENABLED = True
except ModuleNotFoundError:
    MYSQL_ENABLED = False


class MysqlPool(BaseInterface):
    """Interface for connecting to a MySQL database"""

    scheme = "mysql"
    executor_class = MysqlExecutor

    def _setup_pool(self):
        if not MYSQL_ENABLED:
            raise TxflowError(
                "MySQL driver not found. Try reinstalling txflow: "
                "pip install txflow[mysql]"
            )
        self._pool: Any = None

    async def open(self):
        """Open connections to the pool"""
        self._pool = await create_pool(
            user=self.user,
            password=self.password,
            host=self.host,
            port=self.port or 3306,
            db=self.db,
            minsize=self.min_size,
            maxsize=self.max_size or 10,
            autocommit=True,
        )

    async def close(self):
        """Close connections to the pool"""
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Any]:
        """Obtain a connection to the database

        Args:
            timeout (float, optional): _Not implemented_. Defaults to `None`.

        Yields:
            Connection: A database connection, returned to the pool when
            the context exits
        """
        if self._pool is None:
            raise TxflowError(f"{self} has not been opened")
        async with self._pool.acquire() as conn:
            yield conn
