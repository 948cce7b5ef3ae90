"""EmbeddingWorkerRuntime — request handling inside the background unit."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from jobvec.exceptions import ProtocolError
from jobvec.text.hashing import compute_hash
from jobvec.worker.protocol import (
    BatchResult,
    EmbedBatch,
    EmbeddingResult,
    EmbedText,
    ErrorMessage,
    InitModel,
    ModelProgressMessage,
    ModelReady,
    decode_request,
    encode_message,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from jobvec.providers._protocol import EmbeddingModel
    from jobvec.worker.protocol import Response

logger = logging.getLogger(__name__)


def truncate_text(text: str, max_length: int) -> str:
    """Cut *text* to about *max_length* tokens (three characters per token)."""
    char_limit = max_length * 3
    if len(text) <= char_limit:
        return text
    return text[:char_limit]


class EmbeddingWorkerRuntime:
    """Handles decoded requests against an :class:`EmbeddingModel`.

    The runtime runs on the worker's own thread of control and talks to the
    host only through *send*, which receives wire dicts.  Requests are
    handled one at a time; every failure tied to a request is answered with
    an ``ERROR`` message for that request id and never escapes
    :meth:`handle`.
    """

    def __init__(
        self,
        model: EmbeddingModel,
        send: Callable[[dict[str, Any]], None],
        *,
        max_length: int = 512,
    ) -> None:
        self._model = model
        self._send = send
        self._max_length = max_length

    def handle(self, data: dict[str, Any]) -> None:
        """Decode one wire request and answer it."""
        try:
            request = decode_request(data)
        except ProtocolError as e:
            request_id = str(data.get("id", "unknown")) if isinstance(data, dict) else "unknown"
            self._reply(ErrorMessage(id=request_id, message=str(e), code="UNKNOWN_REQUEST"))
            return

        match request:
            case InitModel(id=request_id):
                self._init_model(request_id)
            case EmbedText():
                self._embed_text(request)
            case EmbedBatch():
                self._embed_batch(request)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _init_model(self, request_id: str) -> None:
        if self._model.is_loaded:
            self._reply(ModelReady(id=request_id))
            return

        self._reply(ModelProgressMessage(id=request_id, stage="download", progress=0))
        try:
            self._model.load()
        except Exception as e:
            logger.warning("Model %s failed to load", self._model.model_name, exc_info=True)
            self._reply(ModelProgressMessage(id=request_id, stage="error", progress=0))
            self._reply(
                ErrorMessage(
                    id=request_id,
                    message=_describe(e, "Failed to initialize model"),
                    code="INIT_FAILED",
                )
            )
            return
        self._reply(ModelProgressMessage(id=request_id, stage="load", progress=50))
        self._reply(ModelProgressMessage(id=request_id, stage="ready", progress=100))
        self._reply(ModelReady(id=request_id))

    def _embed_text(self, request: EmbedText) -> None:
        try:
            vector = self._model.embed(truncate_text(request.text, self._max_length))
        except Exception as e:
            self._reply(
                ErrorMessage(
                    id=request.id,
                    message=_describe(e, "Failed to generate embedding"),
                    code="EMBED_FAILED",
                )
            )
            return
        self._reply(
            EmbeddingResult(
                id=request.id,
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                embedding=vector,
                text_hash=compute_hash(request.text),
            )
        )

    def _embed_batch(self, request: EmbedBatch) -> None:
        texts = [truncate_text(item.text, self._max_length) for item in request.items]
        try:
            vectors = self._model.embed_batch(texts)
        except Exception as e:
            self._reply(
                ErrorMessage(
                    id=request.id,
                    message=_describe(e, "Failed to generate batch embeddings"),
                    code="BATCH_FAILED",
                )
            )
            return
        results = tuple(
            EmbeddingResult(
                id=request.id,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                embedding=vector,
                text_hash=compute_hash(item.text),
            )
            for item, vector in zip(request.items, vectors, strict=True)
        )
        self._reply(BatchResult(id=request.id, results=results))

    def _reply(self, response: Response) -> None:
        self._send(encode_message(response))


def _describe(error: Exception, fallback: str) -> str:
    return str(error) or fallback
