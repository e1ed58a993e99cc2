from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from txflow.base.interface import BaseInterface
from txflow.exception import TxflowError

from .executor import PostgresExecutor

try:
    from psycopg import AsyncConnection
    from psycopg_pool import AsyncConnectionPool

    POSTGRES_ENABLED = True
except ModuleNotFoundError:
    POSTGRES_ENABLED = False


class PostgresPool(BaseInterface):
    """Interface for connecting to a Postgres database

    Pooled connections run in autocommit mode: every transaction boundary
    is an explicit statement issued by the connection handle.
    """

    scheme = "postgres"
    schemes = {"postgresql"}
    executor_class = PostgresExecutor

    def _setup_pool(self):
        if not POSTGRES_ENABLED:
            raise TxflowError(
                "Postgres driver not found. Try reinstalling txflow: "
                "pip install txflow[postgres]"
            )
        self._pool = AsyncConnectionPool(
            self.full_dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            kwargs={"autocommit": True},
            open=False,
        )

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator["AsyncConnection"]:
        """Obtain a connection to the database

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to `None`.

        Yields:
            AsyncConnection: A database connection, returned to the pool
            when the context exits
        """
        async with self._pool.connection(timeout=timeout) as conn:
            yield conn
