"""VectorCache — in-memory map of embedding records over durable storage."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING

from jobvec.text.hashing import compute_hash
from jobvec.types import EntityType, IndexStats, StaleEntity, generate_embedding_id

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from jobvec.storage.protocols import EmbeddingStorage
    from jobvec.text.extractors import IndexItem
    from jobvec.types import EmbeddingRecord

logger = logging.getLogger(__name__)


class VectorCache:
    """Write-through cache of every :class:`EmbeddingRecord`, keyed by id.

    The map is populated from *storage* on first use.  Mutations write to
    storage first and only touch the map once storage succeeded, so a failed
    write leaves the map as it was.  Storage errors propagate to the caller.
    """

    def __init__(self, storage: EmbeddingStorage) -> None:
        self._storage = storage
        self._records: dict[str, EmbeddingRecord] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()

    @property
    def storage(self) -> EmbeddingStorage:
        return self._storage

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def size(self) -> int:
        """Number of records in memory (chunks count individually)."""
        return len(self._records)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Replace the map with the full contents of storage."""
        records = await self._storage.get_all_embeddings()
        self._records = {record.id: record for record in records}
        self._loaded = True
        logger.debug("Loaded %d embedding(s) into cache", len(records))

    async def ensure_loaded(self) -> None:
        """Load once; concurrent callers share the same load."""
        if self._loaded:
            return
        async with self._load_lock:
            if not self._loaded:
                await self.load()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(self, record: EmbeddingRecord) -> None:
        await self.ensure_loaded()
        await self._storage.save_embedding(record)
        self._records[record.id] = record

    async def upsert_batch(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return
        await self.ensure_loaded()
        await self._storage.save_embeddings(records)
        for record in records:
            self._records[record.id] = record

    async def remove(self, record_id: str) -> None:
        await self.ensure_loaded()
        await self._storage.delete_embedding(record_id)
        self._records.pop(record_id, None)

    async def remove_by_entity(self, entity_type: EntityType, entity_id: str) -> None:
        """Remove every chunk of one entity."""
        await self.ensure_loaded()
        await self._storage.delete_embeddings_by_entity(entity_type, entity_id)
        key = (EntityType(entity_type), entity_id)
        self._drop(lambda record: record.entity_key == key)

    async def remove_by_job(self, job_id: str) -> None:
        """Remove a job's own records and everything it owns."""
        await self.ensure_loaded()
        await self._storage.delete_embeddings_by_job(job_id)
        self._drop(lambda record: record.belongs_to_job(job_id))

    async def clear(self) -> None:
        await self._storage.clear_all_embeddings()
        self._records = {}
        self._loaded = True

    def _drop(self, predicate: Callable[[EmbeddingRecord], bool]) -> None:
        doomed = [rid for rid, record in self._records.items() if predicate(record)]
        for rid in doomed:
            del self._records[rid]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, entity_type: EntityType, entity_id: str) -> EmbeddingRecord | None:
        """Return the entity's first chunk, or its un-chunked record."""
        await self.ensure_loaded()
        chunked = self._records.get(generate_embedding_id(entity_type, entity_id, 0))
        if chunked is not None:
            return chunked
        return self._records.get(generate_embedding_id(entity_type, entity_id))

    async def has(self, entity_type: EntityType, entity_id: str) -> bool:
        return await self.get(entity_type, entity_id) is not None

    async def get_text_hash(self, entity_type: EntityType, entity_id: str) -> str | None:
        record = await self.get(entity_type, entity_id)
        return record.text_hash if record is not None else None

    async def count(self) -> int:
        await self.ensure_loaded()
        return len(self._records)

    async def records(self) -> list[EmbeddingRecord]:
        """Snapshot of every record, for scanning."""
        await self.ensure_loaded()
        return list(self._records.values())

    async def stats(self) -> IndexStats:
        await self.ensure_loaded()
        by_type = Counter(record.entity_type for record in self._records.values())
        return IndexStats(total=len(self._records), by_type=dict(by_type))

    async def find_stale(self, items: Iterable[IndexItem]) -> list[StaleEntity]:
        """Return the items that have no record or whose text changed."""
        await self.ensure_loaded()
        stale: list[StaleEntity] = []
        for item in items:
            stored = await self.get_text_hash(item.entity_type, item.entity_id)
            if stored is None or stored != compute_hash(item.text):
                stale.append(StaleEntity(item.entity_type, item.entity_id))
        return stale
