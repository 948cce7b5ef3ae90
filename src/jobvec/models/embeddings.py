"""EmbeddingRow model — durable storage of embedding records."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class EmbeddingRow(SQLModel, table=True):
    """One stored vector per (entity, chunk).

    The vector is kept as a JSON array; similarity search never runs in SQL,
    all rows are loaded into the in-memory cache.
    """

    __tablename__ = "jobvec_embeddings"

    id: str = Field(primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: str = Field(index=True)
    parent_job_id: str | None = Field(default=None, index=True)
    embedding: list[float] = Field(default_factory=list, sa_type=JSON)  # type: ignore[invalid-argument-type]
    text_hash: str = Field(default="")
    chunk_index: int | None = Field(default=None)
    chunk_total: int | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
