"""Configuration for the embedding service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jobvec.types import EMBEDDING_DIMENSIONS, EntityType


def _default_database_url() -> str:
    return f"sqlite+aiosqlite:///{Path.home() / '.jobvec' / 'embeddings.db'}"


@dataclass(frozen=True, slots=True)
class EmbeddingConfig:
    """Settings shared by the worker client, indexer and search.

    Attributes:
        model_name: sentence-transformers model loaded by the worker.
        dimensions: Vector length; a contract shared with stored records.
        max_length: Model context window in tokens.  Input is truncated to
            roughly three characters per token before embedding.
        chunk_size: Words per chunk for chunkable entity types.
        chunk_overlap: Words shared by consecutive chunks.
        chunkable_types: Entity types whose text is split into chunks.
        request_timeout: Seconds to wait for one embedding round trip, or None.
        init_timeout: Seconds to wait for the model to load, or None.
        default_limit: Result count when a query does not specify one.
        default_threshold: Minimum score when a query does not specify one.
        database_url: SQLAlchemy async URL of the embedding database.
    """

    model_name: str = "all-MiniLM-L6-v2"
    dimensions: int = EMBEDDING_DIMENSIONS
    max_length: int = 512
    chunk_size: int = 300
    chunk_overlap: int = 50
    chunkable_types: tuple[EntityType, ...] = (EntityType.JOB, EntityType.DOC)
    request_timeout: float | None = None
    init_timeout: float | None = None
    default_limit: int = 5
    default_threshold: float = 0.3
    database_url: str = ""

    def __post_init__(self) -> None:
        if self.dimensions <= 0:
            msg = f"dimensions must be positive, got {self.dimensions}"
            raise ValueError(msg)
        if self.chunk_overlap < 0 or self.chunk_size <= self.chunk_overlap:
            msg = (
                "chunk_size must exceed chunk_overlap "
                f"(got size={self.chunk_size}, overlap={self.chunk_overlap})"
            )
            raise ValueError(msg)
        if not self.database_url:
            object.__setattr__(self, "database_url", _default_database_url())
