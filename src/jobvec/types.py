"""Core data types — entity types, embedding records, search and progress values."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

EMBEDDING_DIMENSIONS = 384

LoadStage = Literal["download", "load", "ready", "error"]


class EntityType(str, Enum):
    """Categories of application content that can be embedded."""

    JOB = "job"
    STORY = "story"
    QA = "qa"
    NOTE = "note"
    DOC = "doc"
    COVER_LETTER = "coverLetter"


def generate_embedding_id(
    entity_type: EntityType,
    entity_id: str,
    chunk_index: int | None = None,
) -> str:
    """Return the deterministic record id for an entity (and optional chunk).

    ``job:abc`` for un-chunked records, ``job:abc:0`` for chunk 0.
    """
    base = f"{EntityType(entity_type).value}:{entity_id}"
    if chunk_index is None:
        return base
    return f"{base}:{chunk_index}"


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EmbeddingRecord:
    """One stored vector, one row per (entity, chunk).

    Attributes:
        id: Composite key from :func:`generate_embedding_id`.
        entity_type: Type of content this vector represents.
        entity_id: Identifier of the source content item.
        embedding: The vector itself.
        text_hash: SHA-256 of the full (unchunked) source text.  Identical
            across all chunks of the same entity.
        parent_job_id: Owning job for notes, Q&A entries and cover letters.
        chunk_index: 0-indexed chunk position, for chunked entities only.
        chunk_total: Number of chunks of the entity, for chunked entities only.
        created_at: When the vector was computed.
    """

    id: str
    entity_type: EntityType
    entity_id: str
    embedding: list[float]
    text_hash: str
    parent_job_id: str | None = None
    chunk_index: int | None = None
    chunk_total: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def entity_key(self) -> tuple[EntityType, str]:
        """Identity of the source entity, shared by all of its chunks."""
        return (self.entity_type, self.entity_id)

    def belongs_to_job(self, job_id: str) -> bool:
        """Return whether this is *job_id*'s own record or owned by it."""
        if self.entity_type == EntityType.JOB and self.entity_id == job_id:
            return True
        return self.parent_job_id == job_id


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SearchOptions:
    """Options for similarity queries.

    Attributes:
        limit: Maximum number of results.
        threshold: Minimum cosine similarity for a result to be kept.
        entity_types: Allow-list of entity types, or None for all.
        job_id: Restrict results to a job's own record and the content it owns.
    """

    limit: int = 5
    threshold: float = 0.3
    entity_types: tuple[EntityType, ...] | None = None
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class SimilarityResult:
    """A single ranked hit: the best-matching chunk of an entity and its score."""

    record: EmbeddingRecord
    score: float


# ------------------------------------------------------------------
# Progress and statistics
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ModelProgress:
    """Model download/load progress streamed from the worker.

    Attributes:
        stage: One of ``download``, ``load``, ``ready``, ``error``.
        progress: 0-100.
        loaded: Bytes loaded, when known.
        total: Total bytes, when known.
    """

    stage: LoadStage
    progress: float
    loaded: int | None = None
    total: int | None = None


@dataclass(frozen=True, slots=True)
class IndexingProgress:
    """Progress of a batch indexing run, reported once per logical item."""

    current: int
    total: int
    entity_type: EntityType
    entity_id: str


@dataclass(frozen=True, slots=True)
class IndexStats:
    """Record counts, overall and per entity type."""

    total: int
    by_type: dict[EntityType, int]


@dataclass(frozen=True, slots=True)
class StaleEntity:
    """An entity whose stored hash is missing or out of date."""

    entity_type: EntityType
    entity_id: str
