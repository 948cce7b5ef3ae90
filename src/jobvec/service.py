"""EmbeddingService — async facade wiring the worker client, cache, indexer and search."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from jobvec.cache import VectorCache
from jobvec.config import EmbeddingConfig
from jobvec.exceptions import DimensionMismatchError
from jobvec.indexer import BatchIndexer, embed_item
from jobvec.search import find_similar, find_similar_to_entity
from jobvec.storage.sql import SQLEmbeddingStorage
from jobvec.text.extractors import (
    IndexItem,
    collect_items,
    extract_cover_letter_text,
    extract_document_text,
    extract_job_text,
    extract_note_text,
    extract_qa_text,
    extract_story_text,
)
from jobvec.text.hashing import compute_hash
from jobvec.types import EntityType, SearchOptions
from jobvec.worker.client import EmbeddingWorkerClient

if TYPE_CHECKING:
    from collections.abc import Coroutine, Iterable

    from jobvec.entities import ContextDocument, Job, Note, QAEntry, SavedStory
    from jobvec.indexer import IndexingCallback, IndexReport
    from jobvec.storage.protocols import EmbeddingStorage
    from jobvec.types import IndexStats, SimilarityResult, StaleEntity
    from jobvec.worker.client import ProgressCallback

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Semantic indexing and retrieval over job-application content.

    Owns one :class:`EmbeddingWorkerClient` (the model runs off the caller's
    thread of control), one :class:`VectorCache` over durable storage, and a
    :class:`BatchIndexer`.  Embedding operations initialize the model on
    first use.

    Usage::

        async with EmbeddingService() as service:
            await service.index_all(jobs, stories, documents)
            hits = await service.semantic_search("stakeholder management")
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        storage: EmbeddingStorage | None = None,
        client: EmbeddingWorkerClient | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        if storage is None:
            storage = SQLEmbeddingStorage(self._config.database_url)
        if client is None:
            client = EmbeddingWorkerClient(
                model_name=self._config.model_name,
                max_length=self._config.max_length,
                request_timeout=self._config.request_timeout,
                init_timeout=self._config.init_timeout,
            )
        self._storage = storage
        self._client = client
        self._cache = VectorCache(storage)
        self._indexer = BatchIndexer(client, self._cache, self._config)
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    @property
    def cache(self) -> VectorCache:
        return self._cache

    @property
    def client(self) -> EmbeddingWorkerClient:
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Load stored vectors and the embedding model.

        Concurrent calls share one model load.

        Raises:
            ModelLoadError: If the model could not be loaded.
            StorageError: If stored vectors could not be read.
        """
        await self._cache.ensure_loaded()
        await self._client.initialize(on_progress)

    def is_ready(self) -> bool:
        return self._client.is_ready()

    def terminate(self) -> None:
        """Stop the worker.  In-flight requests fail with ``WorkerTerminatedError``."""
        self._client.terminate()

    async def close(self) -> None:
        """Terminate the worker and release storage."""
        self.terminate()
        close = getattr(self._storage, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> EmbeddingService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _ensure_ready(self) -> None:
        if not self._client.is_ready():
            await self.initialize()

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed_text(self, text: str) -> list[float]:
        """Return the vector for free text (typically a search query)."""
        await self._ensure_ready()
        result = await self._client.embed(text, EntityType.JOB, "query")
        if len(result.embedding) != self._config.dimensions:
            msg = (
                f"Model returned {len(result.embedding)} dimensions, "
                f"expected {self._config.dimensions}"
            )
            raise DimensionMismatchError(msg)
        return list(result.embedding)

    async def should_embed(self, entity_type: EntityType, entity_id: str, text: str) -> bool:
        """Return whether *text* differs from what is stored for the entity."""
        stored = await self._cache.get_text_hash(entity_type, entity_id)
        return stored is None or stored != compute_hash(text)

    async def embed_job(self, job: Job) -> bool:
        return await self._embed_entity(IndexItem(extract_job_text(job), EntityType.JOB, job.id))

    async def embed_story(self, story: SavedStory) -> bool:
        return await self._embed_entity(
            IndexItem(extract_story_text(story), EntityType.STORY, story.id)
        )

    async def embed_qa(self, qa: QAEntry, job_id: str) -> bool:
        """Embed a Q&A entry owned by *job_id*.  Unanswered entries are skipped."""
        if not qa.answer:
            return False
        return await self._embed_entity(
            IndexItem(extract_qa_text(qa), EntityType.QA, qa.id, parent_job_id=job_id)
        )

    async def embed_note(self, note: Note, job_id: str) -> bool:
        return await self._embed_entity(
            IndexItem(extract_note_text(note), EntityType.NOTE, note.id, parent_job_id=job_id)
        )

    async def embed_document(self, doc: ContextDocument) -> bool:
        return await self._embed_entity(
            IndexItem(extract_document_text(doc), EntityType.DOC, doc.id)
        )

    async def embed_cover_letter(self, cover_letter: str, job: Job) -> bool:
        """Embed a job's cover letter.  The record is keyed and owned by the job."""
        return await self._embed_entity(
            IndexItem(
                extract_cover_letter_text(cover_letter, job),
                EntityType.COVER_LETTER,
                job.id,
                parent_job_id=job.id,
            )
        )

    async def _embed_entity(self, item: IndexItem) -> bool:
        """Embed and store one entity unless its text is unchanged.

        Returns True when new vectors were written.
        """
        await self._ensure_ready()
        if not await self.should_embed(item.entity_type, item.entity_id, item.text):
            logger.debug("Skipping unchanged %s:%s", item.entity_type.value, item.entity_id)
            return False

        records = await embed_item(self._client, item, self._config)
        await self._cache.remove_by_entity(item.entity_type, item.entity_id)
        await self._cache.upsert_batch(records)
        return True

    async def index_all(
        self,
        jobs: Iterable[Job],
        stories: Iterable[SavedStory],
        documents: Iterable[ContextDocument],
        on_progress: IndexingCallback | None = None,
        *,
        force: bool = False,
    ) -> IndexReport:
        """Index every job, story and document.  See :meth:`BatchIndexer.index_all`."""
        await self._ensure_ready()
        return await self._indexer.index_all(
            jobs, stories, documents, on_progress, force=force
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _default_options(self, **overrides: Any) -> SearchOptions:
        options = SearchOptions(
            limit=self._config.default_limit,
            threshold=self._config.default_threshold,
        )
        return dataclasses.replace(options, **overrides)

    async def semantic_search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SimilarityResult]:
        """Rank all indexed content against a natural-language query."""
        vector = await self.embed_text(query)
        return await find_similar(self._cache, vector, options or self._default_options())

    async def find_similar_jobs(self, job_id: str, limit: int = 5) -> list[SimilarityResult]:
        """Jobs closest to *job_id*, never including the job itself."""
        return await find_similar_to_entity(
            self._cache,
            EntityType.JOB,
            job_id,
            self._default_options(limit=limit, entity_types=(EntityType.JOB,)),
        )

    async def search_within_job(
        self,
        query: str,
        job_id: str,
        options: SearchOptions | None = None,
    ) -> list[SimilarityResult]:
        """Search one job's description, notes, Q&A and cover letter."""
        vector = await self.embed_text(query)
        options = dataclasses.replace(options or self._default_options(), job_id=job_id)
        return await find_similar(self._cache, vector, options)

    async def search_stories(self, query: str, limit: int = 5) -> list[SimilarityResult]:
        vector = await self.embed_text(query)
        options = self._default_options(limit=limit, entity_types=(EntityType.STORY,))
        return await find_similar(self._cache, vector, options)

    async def search_qa_history(self, query: str, limit: int = 10) -> list[SimilarityResult]:
        vector = await self.embed_text(query)
        options = self._default_options(limit=limit, entity_types=(EntityType.QA,))
        return await find_similar(self._cache, vector, options)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def remove_job_embeddings(self, job_id: str) -> None:
        """Remove a job's vectors along with its notes, Q&A and cover letter."""
        await self._cache.remove_by_job(job_id)

    async def remove_entity_embeddings(self, entity_type: EntityType, entity_id: str) -> None:
        await self._cache.remove_by_entity(entity_type, entity_id)

    async def clear_all(self) -> None:
        await self._cache.clear()

    async def stats(self) -> IndexStats:
        return await self._cache.stats()

    async def find_stale(
        self,
        jobs: Iterable[Job] = (),
        stories: Iterable[SavedStory] = (),
        documents: Iterable[ContextDocument] = (),
    ) -> list[StaleEntity]:
        """Content whose vectors are missing or out of date."""
        return await self._cache.find_stale(collect_items(jobs, stories, documents))

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def submit(self, coro: Coroutine[Any, Any, Any], description: str = "") -> asyncio.Task[Any]:
        """Run *coro* in the background.

        The task is returned for callers that want to await it; failures are
        logged either way.
        """
        task = asyncio.get_running_loop().create_task(coro)
        task.set_name(description or task.get_name())
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Background embedding task %r failed: %s",
                task.get_name(),
                error,
                exc_info=error,
            )
