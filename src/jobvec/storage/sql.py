"""SQLEmbeddingStorage — embedding records in a SQL database via SQLModel."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import delete, event, or_
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import select

from jobvec.exceptions import StorageError
from jobvec.models.embeddings import EmbeddingRow
from jobvec.types import EmbeddingRecord, EntityType, generate_embedding_id

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _to_row(record: EmbeddingRecord) -> EmbeddingRow:
    return EmbeddingRow(
        id=record.id,
        entity_type=record.entity_type.value,
        entity_id=record.entity_id,
        parent_job_id=record.parent_job_id,
        embedding=list(record.embedding),
        text_hash=record.text_hash,
        chunk_index=record.chunk_index,
        chunk_total=record.chunk_total,
        created_at=record.created_at,
    )


def _to_record(row: EmbeddingRow) -> EmbeddingRecord:
    created_at = row.created_at
    # SQLite drops the offset on DateTime(timezone=True) columns.
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return EmbeddingRecord(
        id=row.id,
        entity_type=EntityType(row.entity_type),
        entity_id=row.entity_id,
        embedding=list(row.embedding),
        text_hash=row.text_hash,
        parent_job_id=row.parent_job_id,
        chunk_index=row.chunk_index,
        chunk_total=row.chunk_total,
        created_at=created_at,
    )


class SQLEmbeddingStorage:
    """Durable embedding storage on an async SQLAlchemy engine.

    Pass a database URL (``sqlite+aiosqlite:///path/to/embeddings.db``) or an
    existing :class:`AsyncEngine`.  The table is created on first use.  Every
    SQLAlchemy failure is re-raised as :class:`StorageError`; nothing is
    retried.

    Implements the ``EmbeddingStorage`` protocol.
    """

    def __init__(
        self,
        url: str = "sqlite+aiosqlite://",
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._url = url
        self._engine = engine
        self._owns_engine = engine is None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Database management
    # ------------------------------------------------------------------

    async def _ensure_db(self) -> async_sessionmaker[AsyncSession]:
        """Create the engine and table if needed."""
        if self._session_factory is not None:
            return self._session_factory
        async with self._init_lock:
            if self._session_factory is not None:
                return self._session_factory

            if self._engine is None:
                self._engine = self._create_engine(self._url)

            table = EmbeddingRow.__table__  # type: ignore[unresolved-attribute]
            try:
                async with self._engine.begin() as conn:
                    await conn.run_sync(lambda c: table.create(c, checkfirst=True))
            except SQLAlchemyError as e:
                msg = f"Failed to initialize embedding table: {e}"
                raise StorageError(msg) from e

            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            logger.debug("Embedding storage ready at %s", self._engine.url)
            return self._session_factory

    @staticmethod
    def _create_engine(url: str) -> AsyncEngine:
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database:
            Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(url, echo=False)

        if parsed.get_backend_name() == "sqlite":

            @event.listens_for(engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
                cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
                cursor.execute("PRAGMA busy_timeout=5000")
                cursor.execute("PRAGMA synchronous=FULL")
                cursor.close()

        return engine

    async def open(self) -> None:
        """Initialize the database."""
        await self._ensure_db()

    async def close(self) -> None:
        """Dispose of an engine this storage created."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None

    # ------------------------------------------------------------------
    # EmbeddingStorage protocol
    # ------------------------------------------------------------------

    async def get_all_embeddings(self) -> list[EmbeddingRecord]:
        factory = await self._ensure_db()
        try:
            async with factory() as session:
                result = await session.execute(select(EmbeddingRow))
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            msg = f"Failed to load embeddings: {e}"
            raise StorageError(msg) from e

    async def save_embedding(self, record: EmbeddingRecord) -> None:
        await self.save_embeddings([record])

    async def save_embeddings(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return
        factory = await self._ensure_db()
        try:
            async with factory() as session:
                for record in records:
                    await session.merge(_to_row(record))
                await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to save {len(records)} embedding(s): {e}"
            raise StorageError(msg) from e

    async def delete_embedding(self, record_id: str) -> None:
        await self._delete(EmbeddingRow.id == record_id, f"embedding {record_id}")

    async def delete_embeddings_by_entity(self, entity_type: EntityType, entity_id: str) -> None:
        entity_type = EntityType(entity_type)
        await self._delete(
            (EmbeddingRow.entity_type == entity_type.value)
            & (EmbeddingRow.entity_id == entity_id),
            f"embeddings of {entity_type.value}:{entity_id}",
        )

    async def delete_embeddings_by_job(self, job_id: str) -> None:
        await self._delete(
            or_(
                (EmbeddingRow.entity_type == EntityType.JOB.value)
                & (EmbeddingRow.entity_id == job_id),
                EmbeddingRow.parent_job_id == job_id,
            ),
            f"embeddings of job {job_id}",
        )

    async def clear_all_embeddings(self) -> None:
        await self._delete(None, "all embeddings")

    def generate_embedding_id(
        self,
        entity_type: EntityType,
        entity_id: str,
        chunk_index: int | None = None,
    ) -> str:
        return generate_embedding_id(entity_type, entity_id, chunk_index)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _delete(self, condition: object | None, what: str) -> None:
        factory = await self._ensure_db()
        stmt = delete(EmbeddingRow)
        if condition is not None:
            stmt = stmt.where(condition)  # type: ignore[arg-type]
        try:
            async with factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to delete {what}: {e}"
            raise StorageError(msg) from e
