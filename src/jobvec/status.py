"""Observable embedding status for UI layers."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Coroutine, Iterable

    from jobvec.entities import ContextDocument, Job, Note, QAEntry, SavedStory
    from jobvec.service import EmbeddingService
    from jobvec.types import IndexingProgress, ModelProgress

logger = logging.getLogger(__name__)

StatusStage = Literal["idle", "download", "load", "ready", "error"]


@dataclass(frozen=True, slots=True)
class EmbeddingStatus:
    """Point-in-time view of the embedding system.

    Attributes:
        is_ready: The model is loaded.
        is_loading: A model load is in flight.
        progress: Model load progress, 0-100.
        stage: Current load stage, ``idle`` before the first load.
        error: Message of the last load failure.
        indexed_count: Number of stored records.
        pending_count: Background embedding tasks not yet finished.
        is_indexing: A full index run is in flight.
        indexing_progress: Latest progress of that run.
    """

    is_ready: bool = False
    is_loading: bool = False
    progress: float = 0
    stage: StatusStage = "idle"
    error: str | None = None
    indexed_count: int = 0
    pending_count: int = 0
    is_indexing: bool = False
    indexing_progress: IndexingProgress | None = None


StatusListener = Callable[[EmbeddingStatus], None]


class EmbeddingStatusTracker:
    """Wraps an :class:`EmbeddingService` and publishes its status.

    Listeners are called synchronously after every change with the new
    :class:`EmbeddingStatus`.  A failing listener is logged and skipped.
    """

    def __init__(self, service: EmbeddingService) -> None:
        self._service = service
        self._status = EmbeddingStatus()
        self._listeners: list[StatusListener] = []

    @property
    def service(self) -> EmbeddingService:
        return self._service

    def snapshot(self) -> EmbeddingStatus:
        self._sync_readiness()
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener*.  Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        self._status = dataclasses.replace(self._status, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                logger.warning("Status listener %r failed", listener, exc_info=True)

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the model, publishing load progress.

        Raises:
            ModelLoadError: After publishing the ``error`` stage.
        """
        self._sync_readiness()
        if self._status.is_ready:
            return
        if self._status.is_loading:
            await self._service.initialize()
            return

        self._update(is_loading=True, stage="download", progress=0, error=None)
        try:
            await self._service.initialize(self._on_model_progress)
            stats = await self._service.stats()
        except Exception as e:
            self._update(is_ready=False, is_loading=False, stage="error", error=str(e))
            raise
        self._update(
            is_ready=True,
            is_loading=False,
            stage="ready",
            progress=100,
            indexed_count=stats.total,
        )

    def _on_model_progress(self, progress: ModelProgress) -> None:
        self._update(stage=progress.stage, progress=progress.progress)

    def _sync_readiness(self) -> None:
        """Publish a model the service has lost (terminate or unit crash) as not ready."""
        if self._status.is_ready and not self._service.is_ready():
            self._update(is_ready=False, stage="idle", progress=0)

    async def _ensure_initialized(self) -> None:
        if not self._service.is_ready():
            await self.initialize()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_all_content(
        self,
        jobs: Iterable[Job],
        stories: Iterable[SavedStory],
        documents: Iterable[ContextDocument],
        *,
        force: bool = False,
    ) -> None:
        await self._ensure_initialized()
        self._update(is_indexing=True, indexing_progress=None)
        try:
            await self._service.index_all(
                jobs,
                stories,
                documents,
                lambda progress: self._update(indexing_progress=progress),
                force=force,
            )
            stats = await self._service.stats()
        finally:
            self._update(is_indexing=False, indexing_progress=None)
        self._update(indexed_count=stats.total)

    async def embed_job_content(self, job: Job) -> None:
        await self._ensure_initialized()
        await self._service.embed_job(job)
        await self.refresh_stats()

    async def embed_story_content(self, story: SavedStory) -> None:
        await self._ensure_initialized()
        await self._service.embed_story(story)
        await self.refresh_stats()

    async def embed_qa_content(self, qa: QAEntry, job_id: str) -> None:
        await self._ensure_initialized()
        await self._service.embed_qa(qa, job_id)
        await self.refresh_stats()

    async def embed_note_content(self, note: Note, job_id: str) -> None:
        await self._ensure_initialized()
        await self._service.embed_note(note, job_id)
        await self.refresh_stats()

    async def embed_document_content(self, doc: ContextDocument) -> None:
        await self._ensure_initialized()
        await self._service.embed_document(doc)
        await self.refresh_stats()

    async def embed_cover_letter_content(self, cover_letter: str, job: Job) -> None:
        await self._ensure_initialized()
        await self._service.embed_cover_letter(cover_letter, job)
        await self.refresh_stats()

    async def remove_job_embeddings(self, job_id: str) -> None:
        await self._service.remove_job_embeddings(job_id)
        await self.refresh_stats()

    async def refresh_stats(self) -> None:
        """Update ``indexed_count``.  Failures are logged, not raised."""
        try:
            stats = await self._service.stats()
        except Exception:
            logger.warning("Failed to refresh embedding stats", exc_info=True)
            return
        self._update(indexed_count=stats.total)

    # ------------------------------------------------------------------
    # Background triggers
    # ------------------------------------------------------------------

    def schedule(
        self,
        coro: Coroutine[Any, Any, Any],
        description: str = "",
    ) -> asyncio.Task[Any]:
        """Run *coro* in the background, counted in ``pending_count``.

        Failures are logged; awaiting the returned task re-raises them.
        """
        self._update(pending_count=self._status.pending_count + 1)
        task = self._service.submit(coro, description)
        task.add_done_callback(
            lambda _: self._update(pending_count=self._status.pending_count - 1)
        )
        return task
