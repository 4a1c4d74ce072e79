"""
In-process DataStore.

Rows are shaped by the ORM models (column defaults applied, unknown columns
kept) and the same natural keys are enforced, so the pipeline behaves the same
as against PostgreSQL. Used by the test-suite and for local dry runs.
"""

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional

import structlog
from sqlalchemy import DateTime

from ecom_finance.models.tables import TABLES, UNIQUE_KEYS
from ecom_finance.pipeline.errors import UniqueViolation
from ecom_finance.storage.repository import DataStore, Filter, Row, matches

logger = structlog.get_logger(__name__)

Procedure = Callable[["MemoryDataStore", dict], Awaitable[Any]]


def _column_defaults(table: str) -> dict[str, Any]:
    model = TABLES.get(table)
    if model is None:
        return {}
    defaults: dict[str, Any] = {}
    for column in model.__table__.columns:
        if column.default is not None and not column.default.is_callable:
            defaults[column.name] = column.default.arg
        else:
            defaults[column.name] = None
    return defaults


def _timestamp_columns(table: str) -> list[str]:
    model = TABLES.get(table)
    if model is None:
        return []
    return [
        c.name for c in model.__table__.columns
        if isinstance(c.type, DateTime) and c.server_default is not None
    ]


class MemoryDataStore(DataStore):

    def __init__(self, procedures: Optional[dict[str, Procedure]] = None):
        self._tables: dict[str, list[Row]] = {}
        self._procedures: dict[str, Procedure] = dict(procedures or {})
        self._subscribers: list[tuple[str, str, asyncio.Queue]] = []

    # ── Helpers ──────────────────────────────────────────────

    def _rows(self, table: str) -> list[Row]:
        return self._tables.setdefault(table, [])

    def _shape(self, table: str, row: Row) -> Row:
        shaped = _column_defaults(table)
        now = datetime.now(timezone.utc)
        for column in _timestamp_columns(table):
            shaped[column] = now
        shaped.update(copy.deepcopy(row))
        if shaped.get("id") is None:
            shaped["id"] = str(uuid.uuid4())
        return shaped

    def _conflict(self, table: str, row: Row, key: Optional[tuple[str, ...]] = None) -> Optional[Row]:
        key = key or UNIQUE_KEYS.get(table)
        if not key:
            return None
        # NULLs never collide, as in PostgreSQL
        if any(row.get(col) is None for col in key):
            return None
        for existing in self._rows(table):
            if all(existing.get(col) == row.get(col) for col in key):
                return existing
        return None

    def _emit(self, table: str, event_type: str, row: Row) -> None:
        for sub_table, empresa_id, queue in self._subscribers:
            if sub_table == table and row.get("empresa_id") == empresa_id:
                queue.put_nowait({"event_type": event_type, "row": copy.deepcopy(row)})

    def register_procedure(self, name: str, procedure: Procedure) -> None:
        self._procedures[name] = procedure

    # ── DataStore ────────────────────────────────────────────

    async def find(
        self,
        table: str,
        filters: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        found = [copy.deepcopy(r) for r in self._rows(table) if matches(r, filters)]
        if order_by:
            descending = order_by.startswith("-")
            column = order_by.lstrip("-")
            found.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=descending)
        if limit is not None:
            found = found[:limit]
        return found

    async def insert(self, table: str, rows: Iterable[Row]) -> list[Row]:
        shaped = [self._shape(table, r) for r in rows]
        # All-or-nothing, like a multi-row INSERT
        key = UNIQUE_KEYS.get(table)
        seen: set = set()
        for row in shaped:
            if self._conflict(table, row):
                raise UniqueViolation(table, {c: row.get(c) for c in key})
            if key and all(row.get(c) is not None for c in key):
                marker = tuple(row.get(c) for c in key)
                if marker in seen:
                    raise UniqueViolation(table, dict(zip(key, marker)))
                seen.add(marker)
        for row in shaped:
            self._rows(table).append(row)
            self._emit(table, "INSERT", row)
        return [copy.deepcopy(r) for r in shaped]

    async def update(self, table: str, filters: Filter, patch: Row) -> list[Row]:
        updated = []
        for row in self._rows(table):
            if matches(row, filters):
                row.update(copy.deepcopy(patch))
                if "atualizado_em" in row and "atualizado_em" not in patch:
                    row["atualizado_em"] = datetime.now(timezone.utc)
                updated.append(copy.deepcopy(row))
                self._emit(table, "UPDATE", row)
        return updated

    async def upsert(
        self,
        table: str,
        rows: Iterable[Row],
        conflict_key: tuple[str, ...],
        ignore_duplicates: bool = False,
    ) -> list[Row]:
        result = []
        for row in rows:
            existing = self._conflict(table, row, conflict_key)
            if existing is None:
                shaped = self._shape(table, row)
                self._rows(table).append(shaped)
                self._emit(table, "INSERT", shaped)
                result.append(copy.deepcopy(shaped))
            elif not ignore_duplicates:
                patch = {k: v for k, v in row.items() if k != "id"}
                existing.update(copy.deepcopy(patch))
                self._emit(table, "UPDATE", existing)
                result.append(copy.deepcopy(existing))
        return result

    async def delete(self, table: str, filters: Filter) -> int:
        kept, removed = [], []
        for row in self._rows(table):
            (removed if matches(row, filters) else kept).append(row)
        self._tables[table] = kept
        for row in removed:
            self._emit(table, "DELETE", row)
        return len(removed)

    async def count(self, table: str, filters: Optional[Filter] = None) -> int:
        return sum(1 for r in self._rows(table) if matches(r, filters))

    async def call_procedure(self, name: str, params: Optional[dict] = None) -> Any:
        procedure = self._procedures.get(name)
        if procedure is None:
            raise KeyError(f"Unknown procedure: {name}")
        return await procedure(self, params or {})

    async def subscribe(self, table: str, empresa_id: str) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue()
        entry = (table, empresa_id, queue)
        self._subscribers.append(entry)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(entry)
