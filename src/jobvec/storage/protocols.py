"""EmbeddingStorage protocol — the durable store behind the vector cache."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from jobvec.types import EmbeddingRecord, EntityType


@runtime_checkable
class EmbeddingStorage(Protocol):
    """Async key-value storage of :class:`EmbeddingRecord` rows, keyed by id.

    Implementations raise :class:`~jobvec.exceptions.StorageError` on I/O
    failure and never retry.
    """

    async def get_all_embeddings(self) -> list[EmbeddingRecord]:
        """Return every stored record."""
        ...

    async def save_embedding(self, record: EmbeddingRecord) -> None:
        """Insert or replace one record."""
        ...

    async def save_embeddings(self, records: list[EmbeddingRecord]) -> None:
        """Insert or replace several records in one transaction."""
        ...

    async def delete_embedding(self, record_id: str) -> None:
        """Delete one record by id.  Missing ids are ignored."""
        ...

    async def delete_embeddings_by_entity(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete every chunk of one entity."""
        ...

    async def delete_embeddings_by_job(self, job_id: str) -> None:
        """Delete a job's own records and every record whose parent is the job."""
        ...

    async def clear_all_embeddings(self) -> None:
        """Delete every record."""
        ...

    def generate_embedding_id(
        self,
        entity_type: EntityType,
        entity_id: str,
        chunk_index: int | None = None,
    ) -> str:
        """Return the deterministic id for an entity chunk."""
        ...
