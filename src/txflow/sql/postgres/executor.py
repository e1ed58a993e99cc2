from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from txflow.transaction.interfaces import (
    ConflictFailure,
    ConnectionFailure,
    TransactionError,
)

from ..executor import SQLExecutor

try:
    from psycopg import OperationalError
    from psycopg.rows import dict_row

    POSTGRES_ENABLED = True
except ModuleNotFoundError:
    POSTGRES_ENABLED = False

CONFLICT_SQLSTATES = {
    "40001": "serialization failure",
    "40P01": "deadlock detected",
    "55P03": "lock not available",
}
CONNECTION_SQLSTATE_CLASS = "08"


class PostgresExecutor(SQLExecutor):
    """Connection handle for a Postgres connection"""

    ENABLED = POSTGRES_ENABLED

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
        cursor = await self.connection.execute(query, exec_values)
        if no_result:
            return cursor.rowcount
        cursor.row_factory = dict_row
        raw = await getattr(cursor, method_name)()
        return raw

    def classify(self, error: BaseException) -> Optional[TransactionError]:
        sqlstate = getattr(error, "sqlstate", None)
        if sqlstate in CONFLICT_SQLSTATES:
            return ConflictFailure(
                f"Postgres {CONFLICT_SQLSTATES[sqlstate]}: {error}",
                code=sqlstate,
            )
        if sqlstate and sqlstate.startswith(CONNECTION_SQLSTATE_CLASS):
            return ConnectionFailure(
                f"Postgres connection exception: {error}", code=sqlstate
            )
        if (
            POSTGRES_ENABLED
            and sqlstate is None
            and isinstance(error, OperationalError)
        ):
            return ConnectionFailure(f"Postgres connection lost: {error}")
        return None
