"""EmbeddingWorkerClient — correlated request/response over a background unit."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from jobvec.exceptions import (
    EmbeddingRequestError,
    JobvecError,
    ModelLoadError,
    ProtocolError,
    RequestTimeoutError,
    WorkerCrashedError,
    WorkerTerminatedError,
)
from jobvec.types import EntityType, ModelProgress
from jobvec.worker.backends import ProcessWorker, default_model_factory
from jobvec.worker.protocol import (
    BatchItem,
    BatchResult,
    EmbedBatch,
    EmbeddingResult,
    EmbedText,
    ErrorMessage,
    InitModel,
    ModelProgressMessage,
    ModelReady,
    decode_response,
    encode_message,
    generate_request_id,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jobvec.worker.backends import EmbeddingWorker
    from jobvec.worker.protocol import Request

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ModelProgress], None]


@dataclass(slots=True)
class _PendingRequest:
    future: asyncio.Future[Any]
    on_progress: ProgressCallback | None = None


@dataclass(slots=True)
class _InitAttempt:
    """One model load.  ``aborted`` is set when the load is superseded."""

    listeners: list[ProgressCallback] = field(default_factory=list)
    aborted: JobvecError | None = None


class EmbeddingWorkerClient:
    """Owns one background unit and correlates its responses with callers.

    The unit is created lazily on the first request.  Each request gets a
    fresh correlation id and an entry in the pending table; responses are
    matched by id, so callers may have several requests in flight and each
    resolves independently, in completion order.

    Failure handling:

    - An ``ERROR`` message fails only the request it names.
    - A fatal unit failure fails every pending request with
      :class:`WorkerCrashedError`.  The dead unit is discarded and the next
      request starts a fresh one.
    - A request that outlives its timeout fails with
      :class:`RequestTimeoutError`; cancelling the awaiting task also removes
      its pending entry.
    - :meth:`terminate` fails outstanding requests with
      :class:`WorkerTerminatedError`.
    """

    def __init__(
        self,
        worker_factory: Callable[[], EmbeddingWorker] | None = None,
        *,
        model_name: str = "all-MiniLM-L6-v2",
        max_length: int = 512,
        request_timeout: float | None = None,
        init_timeout: float | None = None,
    ) -> None:
        if worker_factory is None:
            worker_factory = functools.partial(
                ProcessWorker, default_model_factory(model_name), max_length=max_length
            )
        self._worker_factory = worker_factory
        self._request_timeout = request_timeout
        self._init_timeout = init_timeout

        self._worker: EmbeddingWorker | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: dict[str, _PendingRequest] = {}

        self._initialized = False
        self._init_task: asyncio.Task[None] | None = None
        self._init_attempt: _InitAttempt | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Load the model in the worker.

        Returns immediately once the model is ready.  While a load is in
        flight, every caller awaits that same load and every caller's
        *on_progress* receives its progress stream, so the model is never
        loaded twice.  After a failure the next call starts a new load.

        Raises:
            ModelLoadError: If the worker could not load the model.
            WorkerTerminatedError: If :meth:`terminate` ran before the load finished.
        """
        if self._initialized:
            return

        if self._init_task is None:
            attempt = _InitAttempt()
            self._init_attempt = attempt
            self._init_task = asyncio.get_running_loop().create_task(self._load_model(attempt))
            self._init_task.add_done_callback(self._on_init_done)
        if on_progress is not None and self._init_attempt is not None:
            self._init_attempt.listeners.append(on_progress)

        await asyncio.shield(self._init_task)

    async def _load_model(self, attempt: _InitAttempt) -> None:
        def broadcast(progress: ModelProgress) -> None:
            for listener in list(attempt.listeners):
                try:
                    listener(progress)
                except Exception:
                    logger.warning("Progress callback %r failed", listener, exc_info=True)

        try:
            # Superseded before the first step: never start a unit.
            if attempt.aborted is not None:
                raise attempt.aborted
            await self._request(
                InitModel(id=generate_request_id()),
                timeout=self._init_timeout,
                on_progress=broadcast,
            )
            if attempt.aborted is not None:
                raise attempt.aborted
        except WorkerTerminatedError:
            raise
        except JobvecError as e:
            msg = f"Failed to initialize embedding model: {e}"
            raise ModelLoadError(msg) from e

        self._initialized = True
        logger.info("Embedding model ready")

    def _on_init_done(self, task: asyncio.Task[None]) -> None:
        failed = task.cancelled() or task.exception() is not None
        if task is not self._init_task:
            return
        self._init_attempt = None
        if failed:
            self._init_task = None

    def _abort_init(self, error: JobvecError) -> None:
        """Detach the in-flight load; it fails with *error* instead of completing."""
        attempt, self._init_attempt = self._init_attempt, None
        self._init_task = None
        if attempt is not None:
            attempt.listeners.clear()
            attempt.aborted = error

    def is_ready(self) -> bool:
        """Return whether the model is loaded and the unit is alive."""
        return self._initialized

    @property
    def is_initializing(self) -> bool:
        return self._init_task is not None and not self._init_task.done()

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    def terminate(self) -> None:
        """Dispose of the unit, reset all state, and fail in-flight requests."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.terminate()
            logger.debug("Embedding worker terminated")
        msg = "Embedding worker was terminated"
        self._initialized = False
        self._abort_init(WorkerTerminatedError(msg))
        self._fail_pending(WorkerTerminatedError, msg)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def embed(
        self,
        text: str,
        entity_type: EntityType = EntityType.JOB,
        entity_id: str = "query",
        *,
        timeout: float | None = None,
    ) -> EmbeddingResult:
        """Embed one text.  The result carries the vector and the text's hash."""
        request = EmbedText(
            id=generate_request_id(),
            text=text,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        return await self._request(request, timeout=timeout or self._request_timeout)

    async def embed_batch(
        self,
        items: Sequence[BatchItem],
        *,
        timeout: float | None = None,
    ) -> list[EmbeddingResult]:
        """Embed several texts in one round trip."""
        if not items:
            return []
        request = EmbedBatch(id=generate_request_id(), items=tuple(items))
        return await self._request(request, timeout=timeout or self._request_timeout)

    async def _request(
        self,
        request: Request,
        *,
        timeout: float | None,
        on_progress: ProgressCallback | None = None,
    ) -> Any:
        loop = asyncio.get_running_loop()
        worker = self._ensure_worker(loop)
        future: asyncio.Future[Any] = loop.create_future()
        self._pending[request.id] = _PendingRequest(future, on_progress)

        try:
            try:
                worker.post(encode_message(request))
            except WorkerCrashedError as e:
                self._pending.pop(request.id, None)
                self._handle_fatal(worker, e)
                raise

            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except TimeoutError as e:
            msg = f"Worker request {request.id} timed out after {timeout}s"
            raise RequestTimeoutError(msg) from e
        finally:
            self._pending.pop(request.id, None)

    # ------------------------------------------------------------------
    # Unit management
    # ------------------------------------------------------------------

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> EmbeddingWorker:
        if self._worker is not None:
            return self._worker
        self._loop = loop
        worker = self._worker_factory()
        worker.start(
            functools.partial(self._call_in_loop, self._dispatch, worker),
            functools.partial(self._call_in_loop, self._handle_fatal, worker),
        )
        self._worker = worker
        logger.debug("Started embedding worker %r", worker)
        return worker

    def _call_in_loop(self, callback: Callable[..., None], *args: Any) -> None:
        """Run *callback* on the client's loop; safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _dispatch(self, worker: EmbeddingWorker, data: dict[str, Any]) -> None:
        if worker is not self._worker:
            return
        try:
            response = decode_response(data)
        except ProtocolError:
            logger.warning("Dropping malformed worker message %r", data, exc_info=True)
            return

        pending = self._pending.get(response.id)
        if pending is None:
            logger.debug("No pending request for worker message %s", response.id)
            return

        match response:
            case ModelProgressMessage(stage=stage, progress=progress, loaded=loaded, total=total):
                if pending.on_progress is not None:
                    pending.on_progress(ModelProgress(stage, progress, loaded, total))
            case ModelReady():
                self._settle(response.id, result=None)
            case EmbeddingResult():
                self._settle(response.id, result=response)
            case BatchResult(results=results):
                self._settle(response.id, result=list(results))
            case ErrorMessage(message=message, code=code):
                self._settle(
                    response.id,
                    error=EmbeddingRequestError(message, request_id=response.id, code=code),
                )

    def _settle(
        self,
        request_id: str,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(result)

    def _handle_fatal(self, worker: EmbeddingWorker, error: BaseException) -> None:
        if worker is not self._worker:
            return
        logger.warning(
            "Embedding worker failed (%s); rejecting %d pending request(s)",
            error,
            len(self._pending),
        )
        self._worker = None
        try:
            worker.terminate()
        except Exception:
            logger.debug("Failed to dispose of dead embedding worker", exc_info=True)
        msg = f"Worker error: {error}"
        self._initialized = False
        self._abort_init(WorkerCrashedError(msg))
        self._fail_pending(WorkerCrashedError, msg)

    def _fail_pending(self, error_type: type[JobvecError], message: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(error_type(message))
