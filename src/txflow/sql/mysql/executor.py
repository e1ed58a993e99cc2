from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from txflow.transaction.interfaces import (
    ConflictFailure,
    ConnectionFailure,
    IsolationLevel,
    TransactionError,
)

from ..executor import SQLExecutor

try:
    from asyncmy.cursors import DictCursor

    MYSQL_ENABLED = True
except ModuleNotFoundError:
    MYSQL_ENABLED = False

CONFLICT_CODES = {
    1205: "lock wait timeout exceeded",
    1213: "deadlock found",
}
CONNECTION_CODES = {2002, 2003, 2006, 2013}


class MysqlExecutor(SQLExecutor):
    """Connection handle for a MySQL connection"""

    ENABLED = MYSQL_ENABLED
    SUPPORTS_RETURNING = False

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        # SET TRANSACTION only applies to the next transaction
        return [
            f"SET TRANSACTION ISOLATION LEVEL {isolation_level.value}",
            "START TRANSACTION",
        ]

    async def _run_sql(
        self,
        query: str,
        as_list: bool = False,
        no_result: bool = False,
        posargs: Optional[Sequence[Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        method_name = self._get_method(as_list=as_list)
        async with self.connection.cursor(cursor=DictCursor) as cursor:
            exec_values = list(posargs) if posargs else params
            await cursor.execute(query, exec_values)
            self.lastrowid = cursor.lastrowid
            if no_result:
                return cursor.rowcount
            raw = await getattr(cursor, method_name)()
            return raw

    def classify(self, error: BaseException) -> Optional[TransactionError]:
        args = getattr(error, "args", ())
        code = args[0] if args and isinstance(args[0], int) else None
        if code in CONFLICT_CODES:
            return ConflictFailure(
                f"MySQL {CONFLICT_CODES[code]}: {error}", code=code
            )
        if code in CONNECTION_CODES:
            return ConnectionFailure(
                f"MySQL connection error: {error}", code=code
            )
        return None
