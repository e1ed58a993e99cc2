from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

from txflow.transaction.interfaces import (
    ConflictFailure,
    IsolationLevel,
    TransactionError,
)

from ..executor import SQLExecutor

try:
    import aiosqlite  # noqa

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False

SQLITE_BUSY = 5
SQLITE_LOCKED = 6


class SQLiteExecutor(SQLExecutor):
    """Connection handle for a SQLite connection

    SQLite transactions are serializable whatever level is requested.
    `SERIALIZABLE` additionally takes the write lock when the transaction
    begins, so a read followed by a dependent write cannot interleave with
    another writer.
    """

    ENABLED = AIOSQLITE_ENABLED
    POSITIONAL_SUB = r"?"
    KEYWORD_SUB = r":\2"
    SUPPORTS_RETURNING = False

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        if isolation_level is IsolationLevel.SERIALIZABLE:
            return ["BEGIN IMMEDIATE"]
        return ["BEGIN DEFERRED"]

    async def _run_sql(
        self,
        query: str,
        as_list: bool = False,
        no_result: bool = False,
        posargs: Optional[Sequence[Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        method_name = self._get_method(as_list=as_list)
        exec_values = list(posargs) if posargs else params
        self.connection.row_factory = self._dict_factory
        cursor = await self.connection.execute(query, exec_values)
        try:
            self.lastrowid = cursor.lastrowid
            if no_result:
                return cursor.rowcount
            raw = await getattr(cursor, method_name)()
            return raw
        finally:
            await cursor.close()

    def classify(self, error: BaseException) -> Optional[TransactionError]:
        if not isinstance(error, sqlite3.Error):
            return None
        code = getattr(error, "sqlite_errorcode", None)
        # Extended result codes keep the primary code in the low byte
        if code is not None and code & 0xFF in (SQLITE_BUSY, SQLITE_LOCKED):
            return ConflictFailure(
                f"SQLite database is locked: {error}", code=code
            )
        return None

    @staticmethod
    def _dict_factory(cursor: sqlite3.Cursor, row: Tuple[Any, ...]):
        return {val[0]: row[idx] for idx, val in enumerate(cursor.description)}
