"""Background units that host the :class:`EmbeddingWorkerRuntime`.

A unit is started with two callbacks and afterwards reached only through
:meth:`EmbeddingWorker.post`.  Both callbacks may be invoked from a thread
other than the caller's; :class:`~jobvec.worker.client.EmbeddingWorkerClient`
marshals them back onto its event loop.
"""

from __future__ import annotations

import functools
import logging
import multiprocessing
import queue
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from jobvec.exceptions import WorkerCrashedError
from jobvec.worker.runtime import EmbeddingWorkerRuntime

if TYPE_CHECKING:
    from collections.abc import Callable
    from multiprocessing.connection import Connection
    from multiprocessing.process import BaseProcess

    from jobvec.providers._protocol import EmbeddingModel

logger = logging.getLogger(__name__)

_STOP = None


@runtime_checkable
class EmbeddingWorker(Protocol):
    """A background computation unit reached only by message passing."""

    def start(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        """Start the unit.  *on_fatal* fires once if the unit dies."""
        ...

    def post(self, message: dict[str, Any]) -> None:
        """Send one wire request to the unit."""
        ...

    def terminate(self) -> None:
        """Dispose of the unit.  No callbacks fire afterwards."""
        ...


def _build_sentence_transformer(model_name: str) -> EmbeddingModel:
    from jobvec.providers.sentence_transformers import SentenceTransformerModel

    return SentenceTransformerModel(model_name)


def default_model_factory(model_name: str = "all-MiniLM-L6-v2") -> Callable[[], EmbeddingModel]:
    """Return a picklable factory building a :class:`SentenceTransformerModel`.

    sentence-transformers is imported by the worker when the factory runs,
    never by the host.
    """
    return functools.partial(_build_sentence_transformer, model_name)


# ------------------------------------------------------------------
# Thread unit
# ------------------------------------------------------------------


class ThreadWorker:
    """Runs the worker runtime on a dedicated daemon thread.

    Requests are queued and handled one at a time.  The model is built on the
    worker thread itself, so import and load costs never land on the caller.
    """

    def __init__(
        self,
        model_factory: Callable[[], EmbeddingModel] | None = None,
        *,
        max_length: int = 512,
    ) -> None:
        self._model_factory = model_factory or default_model_factory()
        self._max_length = max_length
        self._queue: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._terminated = False

    def start(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(on_message, on_fatal),
            name="jobvec-embedding-worker",
            daemon=True,
        )
        self._thread.start()

    def _run(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        try:
            runtime = EmbeddingWorkerRuntime(
                self._model_factory(), on_message, max_length=self._max_length
            )
            while True:
                message = self._queue.get()
                if message is _STOP:
                    return
                runtime.handle(message)
        except Exception as e:
            if self._terminated:
                return
            logger.error("Embedding worker thread crashed", exc_info=True)
            on_fatal(e)

    def post(self, message: dict[str, Any]) -> None:
        if self._thread is None or not self._thread.is_alive():
            msg = "Embedding worker thread is not running"
            raise WorkerCrashedError(msg)
        self._queue.put(message)

    def terminate(self) -> None:
        self._terminated = True
        self._queue.put(_STOP)


# ------------------------------------------------------------------
# Process unit
# ------------------------------------------------------------------


def _process_main(
    conn: Connection,
    model_factory: Callable[[], EmbeddingModel],
    max_length: int,
) -> None:
    """Entry point of the worker process."""
    runtime = EmbeddingWorkerRuntime(model_factory(), conn.send, max_length=max_length)
    while True:
        try:
            message = conn.recv()
        except EOFError:
            return
        if message is _STOP:
            return
        runtime.handle(message)


class ProcessWorker:
    """Runs the worker runtime in a separate process over a duplex pipe.

    Nothing is shared with the host: requests and responses are pickled wire
    dicts.  A reader thread forwards responses to *on_message* and reports an
    unexpected end of the pipe (the process died) to *on_fatal*.
    """

    def __init__(
        self,
        model_factory: Callable[[], EmbeddingModel] | None = None,
        *,
        max_length: int = 512,
        start_method: str = "spawn",
    ) -> None:
        self._model_factory = model_factory or default_model_factory()
        self._max_length = max_length
        self._context = multiprocessing.get_context(start_method)
        self._process: BaseProcess | None = None
        self._conn: Connection | None = None
        self._reader: threading.Thread | None = None
        self._send_lock = threading.Lock()
        self._terminated = False

    def start(
        self,
        on_message: Callable[[dict[str, Any]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        parent_conn, child_conn = self._context.Pipe(duplex=True)
        self._process = self._context.Process(
            target=_process_main,
            args=(child_conn, self._model_factory, self._max_length),
            name="jobvec-embedding-worker",
            daemon=True,
        )
        self._process.start()
        child_conn.close()
        self._conn = parent_conn
        logger.debug("Started embedding worker process pid=%s", self._process.pid)

        self._reader = threading.Thread(
            target=self._read_loop,
            args=(parent_conn, on_message, on_fatal),
            name="jobvec-embedding-reader",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(
        self,
        conn: Connection,
        on_message: Callable[[dict[str, Any]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        while True:
            try:
                message = conn.recv()
            except (EOFError, OSError):
                if not self._terminated:
                    on_fatal(WorkerCrashedError(self._exit_description()))
                return
            on_message(message)

    def _exit_description(self) -> str:
        exitcode = None
        if self._process is not None:
            self._process.join(timeout=1)
            exitcode = self._process.exitcode
        return f"Embedding worker process exited unexpectedly (exit code {exitcode})"

    def post(self, message: dict[str, Any]) -> None:
        if self._conn is None:
            msg = "Embedding worker process is not running"
            raise WorkerCrashedError(msg)
        try:
            with self._send_lock:
                self._conn.send(message)
        except (BrokenPipeError, OSError) as e:
            msg = "Embedding worker process is not reachable"
            raise WorkerCrashedError(msg) from e

    def terminate(self) -> None:
        self._terminated = True
        if self._conn is not None:
            try:
                with self._send_lock:
                    self._conn.send(_STOP)
            except (BrokenPipeError, OSError):
                logger.debug("Embedding worker process already gone", exc_info=True)
        if self._process is not None:
            self._process.terminate()
            self._process.join(timeout=5)
            self._process = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None
