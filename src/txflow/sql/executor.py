from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from txflow.convert import convert_sql_params
from txflow.exception import TxflowError
from txflow.transaction.interfaces import (
    IsolationLevel,
    RecordNotFound,
    TransactionError,
)

logger = logging.getLogger(__name__)


class SQLExecutor:
    """Connection handle for a single database connection.

    One instance is created per unit of work and is bound to the connection
    that unit of work acquired. Subclasses implement `_run_sql` for their
    driver and `classify` to translate driver errors into the transaction
    failure taxonomy.
    """

    ENABLED: bool = False
    POSITIONAL_SUB: str = r"%s"
    KEYWORD_SUB: str = r"%(\2)s"
    SUPPORTS_RETURNING: bool = True

    def __init__(self, connection: Any) -> None:
        if not self.ENABLED:
            raise TxflowError(
                f"Cannot instantiate {self.__class__.__name__}. "
                "Perhaps you have a missing dependency?"
            )
        self._connection = connection
        self.lastrowid: Optional[int] = None

    @property
    def connection(self) -> Any:
        return self._connection

    async def execute(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        posargs: Optional[Sequence[Any]] = None,
        *,
        as_list: bool = False,
        allow_none: bool = False,
        no_result: bool = False,
    ):
        """Run a statement on the bound connection

        Args:
            query (str): SQL using `$name` or `$1` placeholders
            params (Dict[str, Any], optional): Keyword parameters.
                Defaults to `None`.
            posargs (Sequence[Any], optional): Positional parameters.
                Defaults to `None`.
            as_list (bool, optional): Fetch all rows. Defaults to `False`.
            allow_none (bool, optional): Return `None` instead of raising
                when a single row was expected but none came back.
                Defaults to `False`.
            no_result (bool, optional): Do not fetch; return the affected
                row count instead. Defaults to `False`.

        Raises:
            RecordNotFound: If a single row was expected and none was found
            ConflictFailure: If the store reports a serialization conflict
            ConnectionFailure: If the connection to the store broke
        """
        query = convert_sql_params(
            query, self.POSITIONAL_SUB, self.KEYWORD_SUB
        )
        try:
            raw = await self._run_sql(
                query,
                as_list=as_list,
                no_result=no_result,
                posargs=posargs,
                params=params,
            )
        except TransactionError:
            raise
        except Exception as e:
            failure = self.classify(e)
            if failure is None:
                raise
            raise failure from e

        if no_result:
            return raw
        if not raw:
            if allow_none:
                return None
            if as_list:
                return []
            raise RecordNotFound(
                f"Query did not find any record using "
                f"{posargs or ()} and {params or {}}"
            )
        return raw

    async def _run_sql(
        self,
        query: str,
        as_list: bool = False,
        no_result: bool = False,
        posargs: Optional[Sequence[Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        raise NotImplementedError

    def classify(self, error: BaseException) -> Optional[TransactionError]:
        """Translate a driver error into a transaction failure, or `None`
        when the error carries no conflict or connection signal"""
        return None

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        return [f"BEGIN ISOLATION LEVEL {isolation_level.value}"]

    async def begin(self, isolation_level: IsolationLevel) -> None:
        for statement in self.begin_statements(isolation_level):
            await self.execute(statement, no_result=True)

    async def commit(self) -> None:
        await self.execute("COMMIT", no_result=True)

    async def rollback(self) -> None:
        await self.execute("ROLLBACK", no_result=True)

    async def savepoint(self, name: str) -> None:
        await self.execute(f"SAVEPOINT {name}", no_result=True)

    async def release_savepoint(self, name: str) -> None:
        await self.execute(f"RELEASE SAVEPOINT {name}", no_result=True)

    async def rollback_to_savepoint(self, name: str) -> None:
        await self.execute(f"ROLLBACK TO SAVEPOINT {name}", no_result=True)

    def _get_method(self, as_list: bool) -> str:
        return "fetchall" if as_list else "fetchone"
