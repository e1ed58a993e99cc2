"""
Single table gateway bound to a TransactionContext.

Each method issues one class of operation, so a step can call exactly one
of them and stay a single, easily composed piece of work.

Example:

```python
@dataclass
class Todo:
    id: int
    text: str
    status: str
    author_id: int


class TodoRepository(Repository[Todo]):
    table = "todos"
    model = Todo
    deleted_marker = ("status", "DELETED")
    order_by = "id DESC"


async def create_todo(ctx: TransactionContext) -> Todo:
    return await TodoRepository(ctx).insert(text="Buy milk", author_id=1)
```
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from math import ceil
from typing import (
    Any,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from txflow.base.hydrator import Hydrator
from txflow.exception import TxflowError
from txflow.transaction.context import TransactionContext
from txflow.transaction.interfaces import RecordNotFound

M = TypeVar("M")

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ORDERING = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(\s+(ASC|DESC))?$", re.I)
OPERATORS = {
    "": "=",
    "ne": "<>",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
}


def _identifier(name: str) -> str:
    if not IDENTIFIER.match(name):
        raise TxflowError(f"Unsafe SQL identifier: {name!r}")
    return name


@dataclass
class Page(Generic[M]):
    items: List[M]
    total: int
    page: int
    limit: Optional[int]

    @property
    def pages(self) -> int:
        if not self.limit:
            return 1 if self.total else 0
        return ceil(self.total / self.limit)


class Repository(Generic[M]):
    table: str = ""
    """Table the repository reads and writes"""
    model: Type[Any] = dict
    """Model rows are hydrated into"""
    key: str = "id"
    deleted_marker: Optional[Tuple[str, Any]] = None
    """`(column, value)` marking a row as deleted. Marked rows are
    invisible to every read."""
    order_by: Optional[str] = None
    """Ordering for `find`, eg. `"created_at DESC, id DESC"`"""
    hydrator: Hydrator = Hydrator()

    def __init__(self, context: TransactionContext) -> None:
        if not self.table:
            raise TxflowError(f"{self.__class__.__name__} has no table")
        self.context = context

    async def get(self, key: Any) -> M:
        """Fetch one live record by key

        Raises:
            RecordNotFound: If there is no such record, or it is deleted
        """
        where, params = self._where({self.key: key})
        row = await self.context.execute(
            f"SELECT * FROM {_identifier(self.table)}{where}",
            params,
            allow_none=True,
        )
        if row is None:
            raise RecordNotFound(
                f"No record in {self.table} with {self.key}={key!r}"
            )
        return self.hydrator.hydrate(row, model=self.model)

    async def find(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[M]:
        """Fetch a page of live records matching `filters`

        Filters are column equality by default. A `__ne`, `__lt`, `__lte`,
        `__gt` or `__gte` suffix on the name changes the comparison, eg.
        `{"due_date__lte": today}`.
        """
        if page < 1:
            raise TxflowError("page: numbering starts at 1")
        if limit is not None and limit < 1:
            raise TxflowError("limit: must be at least 1")

        table = _identifier(self.table)
        where, params = self._where(filters or {})
        count = await self.context.execute(
            f"SELECT COUNT(*) AS total FROM {table}{where}", params
        )
        query = f"SELECT * FROM {table}{where}{self._order_clause()}"
        if limit is not None:
            query += " LIMIT $limit OFFSET $offset"
            params = {**params, "limit": limit, "offset": (page - 1) * limit}
        rows = await self.context.execute(query, params, as_list=True)
        items = [self.hydrator.hydrate(row, model=self.model) for row in rows]
        return Page(
            items=items,
            total=count["total"],
            page=page,
            limit=limit,
        )

    async def insert(self, **values: Any) -> M:
        if not values:
            raise TxflowError("insert: needs at least one column")
        columns = ", ".join(_identifier(column) for column in values)
        params = {
            f"v{index}": value for index, value in enumerate(values.values())
        }
        placeholders = ", ".join(f"${name}" for name in params)
        query = (
            f"INSERT INTO {_identifier(self.table)} ({columns}) "
            f"VALUES ({placeholders})"
        )
        executor = self.context.executor
        if executor.SUPPORTS_RETURNING:
            row = await self.context.execute(f"{query} RETURNING *", params)
            return self.hydrator.hydrate(row, model=self.model)
        await self.context.execute(query, params, no_result=True)
        return await self.get(values.get(self.key, executor.lastrowid))

    async def update(self, key: Any, **values: Any) -> M:
        """Change columns of a live record and return it as stored

        Raises:
            RecordNotFound: If there is no such record, or it is deleted
        """
        if not values:
            return await self.get(key)
        assignments = []
        params: Dict[str, Any] = {}
        for index, (column, value) in enumerate(values.items()):
            assignments.append(f"{_identifier(column)} = $s{index}")
            params[f"s{index}"] = value
        where, where_params = self._where({self.key: key})
        await self.context.execute(
            f"UPDATE {_identifier(self.table)} "
            f"SET {', '.join(assignments)}{where}",
            {**params, **where_params},
            no_result=True,
        )
        return await self.get(key)

    async def soft_delete(self, key: Any) -> bool:
        """Mark a live record as deleted

        Returns:
            bool: Whether a record was marked
        """
        if self.deleted_marker is None:
            raise TxflowError(
                f"{self.__class__.__name__} has no soft delete column"
            )
        column, _ = self.deleted_marker
        where, params = self._where({self.key: key})
        changed = await self.context.execute(
            f"UPDATE {_identifier(self.table)} "
            f"SET {_identifier(column)} = $sd{where}",
            params,
            no_result=True,
        )
        return bool(changed and changed > 0)

    async def exists(self, **criteria: Any) -> bool:
        where, params = self._where(criteria)
        row = await self.context.execute(
            f"SELECT 1 AS found FROM {_identifier(self.table)}{where} "
            "LIMIT 1",
            params,
            allow_none=True,
        )
        return row is not None

    def _where(
        self, criteria: Mapping[str, Any]
    ) -> Tuple[str, Dict[str, Any]]:
        conditions = []
        params: Dict[str, Any] = {}
        for index, (name, value) in enumerate(criteria.items()):
            column, _, suffix = name.partition("__")
            if suffix not in OPERATORS:
                raise TxflowError(f"Unknown filter operator: {name!r}")
            column = _identifier(column)
            if value is None and suffix in ("", "ne"):
                negate = " NOT" if suffix else ""
                conditions.append(f"{column} IS{negate} NULL")
                continue
            conditions.append(f"{column} {OPERATORS[suffix]} $w{index}")
            params[f"w{index}"] = value
        if self.deleted_marker is not None:
            column, value = self.deleted_marker
            conditions.append(f"{_identifier(column)} <> $sd")
            params["sd"] = value
        if not conditions:
            return "", params
        return f" WHERE {' AND '.join(conditions)}", params

    def _order_clause(self) -> str:
        if not self.order_by:
            return ""
        parts = [part.strip() for part in self.order_by.split(",")]
        for part in parts:
            if not ORDERING.match(part):
                raise TxflowError(f"Unsafe ordering: {self.order_by!r}")
        return f" ORDER BY {', '.join(parts)}"
