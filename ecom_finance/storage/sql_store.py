"""
PostgreSQL DataStore on SQLAlchemy 2.0 Core over the ORM tables.

Each call runs in its own short transaction; rows go in and come out as dicts.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional

import structlog
from sqlalchemy import and_, delete, func, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecom_finance.models.tables import TABLES
from ecom_finance.pipeline.errors import UniqueViolation
from ecom_finance.storage.repository import DataStore, Filter, Row, split_key

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == UNIQUE_VIOLATION_SQLSTATE or "duplicate key" in str(orig)


class SqlDataStore(DataStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], poll_interval: float = 2.0):
        self.session_factory = session_factory
        self.poll_interval = poll_interval

    # ── Helpers ──────────────────────────────────────────────

    @staticmethod
    def _table(name: str):
        try:
            return TABLES[name].__table__
        except KeyError:
            raise KeyError(f"Unknown table: {name}") from None

    def _where(self, table, filters: Optional[Filter]):
        clauses = []
        for key, value in (filters or {}).items():
            column_name, op = split_key(key)
            column = table.c[column_name]
            if op == "eq":
                clauses.append(column.is_(None) if value is None else column == value)
            elif op == "in":
                clauses.append(column.in_(list(value)))
            elif op == "ne":
                clauses.append(column != value)
            elif op == "gt":
                clauses.append(column > value)
            elif op == "gte":
                clauses.append(column >= value)
            elif op == "lt":
                clauses.append(column < value)
            elif op == "lte":
                clauses.append(column <= value)
            elif op == "isnull":
                clauses.append(column.is_(None) if value else column.is_not(None))
        return and_(*clauses) if clauses else None

    @staticmethod
    def _known(table, row: Row) -> Row:
        return {k: v for k, v in row.items() if k in table.c}

    # ── DataStore ────────────────────────────────────────────

    async def find(
        self,
        table: str,
        filters: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        t = self._table(table)
        stmt = select(t)
        where = self._where(t, filters)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            column = t.c[order_by.lstrip("-")]
            stmt = stmt.order_by(column.desc() if order_by.startswith("-") else column)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(r) for r in result.mappings().all()]

    async def insert(self, table: str, rows: Iterable[Row]) -> list[Row]:
        t = self._table(table)
        values = [self._known(t, r) for r in rows]
        if not values:
            return []
        async with self.session_factory() as session:
            try:
                result = await session.execute(insert(t).values(values).returning(t))
                inserted = [dict(r) for r in result.mappings().all()]
                await session.commit()
                return inserted
            except IntegrityError as exc:
                await session.rollback()
                if _is_unique_violation(exc):
                    raise UniqueViolation(table) from exc
                raise

    async def update(self, table: str, filters: Filter, patch: Row) -> list[Row]:
        t = self._table(table)
        values = self._known(t, patch)
        if "atualizado_em" in t.c and "atualizado_em" not in values:
            values["atualizado_em"] = datetime.now(timezone.utc)
        stmt = update(t).values(values).returning(t)
        where = self._where(t, filters)
        if where is not None:
            stmt = stmt.where(where)
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                updated = [dict(r) for r in result.mappings().all()]
                await session.commit()
                return updated
            except IntegrityError as exc:
                await session.rollback()
                if _is_unique_violation(exc):
                    raise UniqueViolation(table) from exc
                raise

    async def upsert(
        self,
        table: str,
        rows: Iterable[Row],
        conflict_key: tuple[str, ...],
        ignore_duplicates: bool = False,
    ) -> list[Row]:
        t = self._table(table)
        values = [self._known(t, r) for r in rows]
        if not values:
            return []
        stmt = pg_insert(t).values(values)
        if ignore_duplicates:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_key))
        else:
            updatable = {
                k for row in values for k in row
                if k not in conflict_key and k != "id"
            }
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_key),
                set_={k: stmt.excluded[k] for k in updatable},
            )
        async with self.session_factory() as session:
            result = await session.execute(stmt.returning(t))
            upserted = [dict(r) for r in result.mappings().all()]
            await session.commit()
            return upserted

    async def delete(self, table: str, filters: Filter) -> int:
        t = self._table(table)
        stmt = delete(t)
        where = self._where(t, filters)
        if where is not None:
            stmt = stmt.where(where)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def count(self, table: str, filters: Optional[Filter] = None) -> int:
        t = self._table(table)
        stmt = select(func.count()).select_from(t)
        where = self._where(t, filters)
        if where is not None:
            stmt = stmt.where(where)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def call_procedure(self, name: str, params: Optional[dict] = None) -> Any:
        params = params or {}
        if not name.replace("_", "").isalnum():
            raise ValueError(f"Invalid procedure name: {name}")
        placeholders = ", ".join(f"{k} => :{k}" for k in params)
        async with self.session_factory() as session:
            result = await session.execute(
                text(f"SELECT * FROM {name}({placeholders})"), params
            )
            return [dict(r) for r in result.mappings().all()]

    async def subscribe(self, table: str, empresa_id: str) -> AsyncIterator[dict]:
        """Poll for rows touched since the previous poll.

        Only INSERT/UPDATE are observable this way; the job-progress UI
        does not need deletes.
        """
        t = self._table(table)
        stamp_column = "atualizado_em" if "atualizado_em" in t.c else "criado_em"
        started = since = datetime.now(timezone.utc)
        while True:
            await asyncio.sleep(self.poll_interval)
            rows = await self.find(
                table,
                {"empresa_id": empresa_id, f"{stamp_column}__gt": since},
                order_by=stamp_column,
            )
            for row in rows:
                since = max(since, row[stamp_column])
                event = "INSERT" if row["criado_em"] > started else "UPDATE"
                yield {"event_type": event, "row": row}
