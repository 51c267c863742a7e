"""
Relational snapshot store on async SQLAlchemy.

Table layout (name configurable):

    workflow_id  VARCHAR PRIMARY KEY
    data         BLOB      -- serialized InterruptSnapshot
    created_at   TIMESTAMP -- first interruption under this id
    updated_at   TIMESTAMP -- latest interruption

Works with SQLite (``sqlite+aiosqlite://``) for development and
PostgreSQL (``postgresql+asyncpg://``) in production.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union
import logging

from sqlalchemy import Column, DateTime, LargeBinary, MetaData, String, Table, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from eventflow.engine.errors import PersistenceError, SnapshotNotFoundError
from eventflow.engine.snapshot import InterruptSnapshot
from eventflow.storage.base import SnapshotStore


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_database_url(url: str) -> str:
    """Convert postgres:// URLs to the asyncpg driver form."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def snapshot_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column("workflow_id", String(255), primary_key=True),
        Column("data", LargeBinary, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    )


class SqlSnapshotStore(SnapshotStore):
    """
    Snapshot store backed by one relational table.

    Args:
        engine: An AsyncEngine, or a database URL to create one from
        table_name: Table holding the snapshots
        create_tables: Create the table on first use if it is missing
        echo: Log SQL statements (only when a URL is given)
    """

    def __init__(
        self,
        engine: Union[AsyncEngine, str],
        table_name: str = "workflow_snapshots",
        create_tables: bool = True,
        echo: bool = False,
    ):
        if isinstance(engine, str):
            url = normalize_database_url(engine)
            self.engine = create_async_engine(url, echo=echo)
            self._owns_engine = True
        else:
            self.engine = engine
            self._owns_engine = False
        self.metadata = MetaData()
        self.table = snapshot_table(table_name, self.metadata)
        self._create_tables = create_tables
        self._ready = False

    async def init_schema(self) -> None:
        """Create the snapshot table if it does not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
        self._ready = True

    async def _ensure_schema(self) -> None:
        if self._create_tables and not self._ready:
            await self.init_schema()

    async def save(self, workflow_id: str, snapshot: InterruptSnapshot) -> None:
        await self._ensure_schema()
        now = _utcnow()
        data = snapshot.to_bytes()
        try:
            async with self.engine.begin() as conn:
                existing = await conn.execute(
                    select(self.table.c.workflow_id).where(self.table.c.workflow_id == workflow_id)
                )
                if existing.first() is None:
                    await conn.execute(
                        insert(self.table).values(
                            workflow_id=workflow_id, data=data, created_at=now, updated_at=now
                        )
                    )
                else:
                    await conn.execute(
                        update(self.table)
                        .where(self.table.c.workflow_id == workflow_id)
                        .values(data=data, updated_at=now)
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save snapshot '{workflow_id}': {e}") from e
        logger.debug(f"Saved snapshot for workflow {workflow_id} to {self.table.name}")

    async def load(self, workflow_id: str) -> InterruptSnapshot:
        await self._ensure_schema()
        try:
            async with self.engine.connect() as conn:
                row = (
                    await conn.execute(
                        select(self.table.c.data).where(self.table.c.workflow_id == workflow_id)
                    )
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load snapshot '{workflow_id}': {e}") from e
        if row is None:
            raise SnapshotNotFoundError(workflow_id)
        return InterruptSnapshot.from_bytes(row.data)

    async def delete(self, workflow_id: str) -> bool:
        await self._ensure_schema()
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(self.table).where(self.table.c.workflow_id == workflow_id)
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete snapshot '{workflow_id}': {e}") from e
        return result.rowcount > 0

    async def timestamps(self, workflow_id: str) -> Optional[tuple]:
        """Return ``(created_at, updated_at)`` for a stored id, or None."""
        await self._ensure_schema()
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(self.table.c.created_at, self.table.c.updated_at).where(
                        self.table.c.workflow_id == workflow_id
                    )
                )
            ).first()
        return (row.created_at, row.updated_at) if row is not None else None

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
