"""Batch indexing — embed every piece of content and store it in one write."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from jobvec.exceptions import DimensionMismatchError
from jobvec.text.chunking import chunk_text
from jobvec.text.extractors import collect_items
from jobvec.text.hashing import compute_hash
from jobvec.types import EmbeddingRecord, IndexingProgress, generate_embedding_id

if TYPE_CHECKING:
    from collections.abc import Iterable

    from jobvec.cache import VectorCache
    from jobvec.config import EmbeddingConfig
    from jobvec.entities import ContextDocument, Job, SavedStory
    from jobvec.text.extractors import IndexItem
    from jobvec.worker.client import EmbeddingWorkerClient

logger = logging.getLogger(__name__)

IndexingCallback = Callable[[IndexingProgress], None]


@dataclass(slots=True)
class IndexReport:
    """Outcome of :meth:`BatchIndexer.index_all`.

    Attributes:
        embedded: Number of logical items that were (re-)embedded.
        skipped: Number of items whose stored hash was already current.
        records: Every record written, chunks included.
    """

    embedded: int = 0
    skipped: int = 0
    records: list[EmbeddingRecord] = field(default_factory=list)


async def embed_item(
    client: EmbeddingWorkerClient,
    item: IndexItem,
    config: EmbeddingConfig,
    *,
    text_hash: str | None = None,
) -> list[EmbeddingRecord]:
    """Chunk (when the type is chunkable) and embed one item.

    Chunkable types produce one record per chunk, each carrying its index and
    the chunk count.  Other types produce a single record with no chunk
    fields.  Every record carries the hash of the full item text.

    Raises:
        DimensionMismatchError: If the model returns a vector of the wrong size.
    """
    if text_hash is None:
        text_hash = compute_hash(item.text)

    if item.entity_type in config.chunkable_types:
        pieces = chunk_text(item.text, config.chunk_size, config.chunk_overlap)
        chunks: list[tuple[str, int | None]] = [(text, i) for i, text in enumerate(pieces)]
        chunk_total: int | None = len(chunks)
    else:
        chunks = [(item.text, None)]
        chunk_total = None

    records: list[EmbeddingRecord] = []
    for text, chunk_index in chunks:
        result = await client.embed(text, item.entity_type, item.entity_id)
        if len(result.embedding) != config.dimensions:
            msg = (
                f"Model returned {len(result.embedding)} dimensions for "
                f"{item.entity_type.value}:{item.entity_id}, expected {config.dimensions}"
            )
            raise DimensionMismatchError(msg)
        records.append(
            EmbeddingRecord(
                id=generate_embedding_id(item.entity_type, item.entity_id, chunk_index),
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                embedding=list(result.embedding),
                text_hash=text_hash,
                parent_job_id=item.parent_job_id,
                chunk_index=chunk_index,
                chunk_total=chunk_total,
            )
        )
    return records


class BatchIndexer:
    """Indexes all application content, one item at a time.

    Items are processed strictly in order with at most one embedding request
    in flight.  New records are accumulated and written in a single batch at
    the end, so a failure part-way through stores nothing new.
    """

    def __init__(
        self,
        client: EmbeddingWorkerClient,
        cache: VectorCache,
        config: EmbeddingConfig,
    ) -> None:
        self._client = client
        self._cache = cache
        self._config = config

    async def index_all(
        self,
        jobs: Iterable[Job],
        stories: Iterable[SavedStory],
        documents: Iterable[ContextDocument],
        on_progress: IndexingCallback | None = None,
        *,
        force: bool = False,
    ) -> IndexReport:
        """Embed every job (with its Q&A, notes and cover letter), story and document.

        *on_progress* is called once per item before it is processed,
        including items that turn out to be unchanged.  Unless *force* is
        set, items whose stored hash matches the current text are skipped.
        """
        items = collect_items(jobs, stories, documents)
        total = len(items)
        report = IndexReport()
        changed: list[IndexItem] = []

        await self._cache.ensure_loaded()

        for current, item in enumerate(items, start=1):
            if on_progress is not None:
                on_progress(IndexingProgress(current, total, item.entity_type, item.entity_id))

            text_hash = compute_hash(item.text)
            stored = await self._cache.get_text_hash(item.entity_type, item.entity_id)
            if not force and stored == text_hash:
                report.skipped += 1
                continue

            report.records.extend(
                await embed_item(self._client, item, self._config, text_hash=text_hash)
            )
            report.embedded += 1
            if stored is not None:
                changed.append(item)

        for item in changed:
            await self._cache.remove_by_entity(item.entity_type, item.entity_id)
        await self._cache.upsert_batch(report.records)

        logger.info(
            "Indexed %d item(s) into %d record(s), %d unchanged",
            report.embedded,
            len(report.records),
            report.skipped,
        )
        return report
