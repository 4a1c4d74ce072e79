"""
Generic data-access interface consumed by the core.

The hosted database is an external collaborator; the pipeline only ever talks
to it through this small surface so the same code runs against PostgreSQL
(SqlDataStore) or an in-process store (MemoryDataStore).

Filters are plain dicts. A key is either a column name (equality, or IS NULL
when the value is None) or ``column__op`` where op is one of
in, ne, gt, gte, lt, lte, isnull.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable, Optional

Row = dict[str, Any]
Filter = dict[str, Any]

OPERATORS = ("in", "ne", "gt", "gte", "lt", "lte", "isnull")


def split_key(key: str) -> tuple[str, str]:
    """'data__gte' -> ('data', 'gte'); 'data' -> ('data', 'eq')."""
    if "__" in key:
        column, op = key.rsplit("__", 1)
        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        return column, op
    return key, "eq"


def matches(row: Row, filters: Optional[Filter]) -> bool:
    """Evaluate a filter dict against a row."""
    for key, expected in (filters or {}).items():
        column, op = split_key(key)
        value = row.get(column)
        if op == "eq":
            if expected is None:
                if value is not None:
                    return False
            elif value != expected:
                return False
        elif op == "in":
            if value not in set(expected):
                return False
        elif op == "ne":
            if value == expected:
                return False
        elif op == "isnull":
            if (value is None) != bool(expected):
                return False
        else:
            if value is None:
                return False
            if op == "gt" and not value > expected:
                return False
            if op == "gte" and not value >= expected:
                return False
            if op == "lt" and not value < expected:
                return False
            if op == "lte" and not value <= expected:
                return False
    return True


class DataStore(ABC):
    """Async data-access surface. Rows are plain dicts."""

    @abstractmethod
    async def find(
        self,
        table: str,
        filters: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        ...

    @abstractmethod
    async def insert(self, table: str, rows: Iterable[Row]) -> list[Row]:
        """Insert rows; raises UniqueViolation on a natural-key conflict."""

    @abstractmethod
    async def update(self, table: str, filters: Filter, patch: Row) -> list[Row]:
        ...

    @abstractmethod
    async def upsert(
        self,
        table: str,
        rows: Iterable[Row],
        conflict_key: tuple[str, ...],
        ignore_duplicates: bool = False,
    ) -> list[Row]:
        """Insert or update on conflict_key. With ignore_duplicates the
        existing row is left untouched and not returned."""

    @abstractmethod
    async def delete(self, table: str, filters: Filter) -> int:
        ...

    @abstractmethod
    async def count(self, table: str, filters: Optional[Filter] = None) -> int:
        ...

    @abstractmethod
    async def call_procedure(self, name: str, params: Optional[dict] = None) -> Any:
        ...

    @abstractmethod
    def subscribe(self, table: str, empresa_id: str) -> AsyncIterator[dict]:
        """Stream of {"event_type": INSERT|UPDATE|DELETE, "row": {...}}."""

    async def find_one(self, table: str, filters: Filter) -> Optional[Row]:
        rows = await self.find(table, filters, limit=1)
        return rows[0] if rows else None
