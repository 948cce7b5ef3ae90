"""Worker message protocol — tagged request/response variants and their wire form.

The host and the embedding worker exchange plain dicts (picklable, no shared
state).  Every message carries a ``type`` tag and the caller-generated ``id``
that correlates a response with its request::

    {"type": "EMBED_TEXT", "id": "...", "text": "...", "entityType": "job", "entityId": "j1"}
    {"type": "EMBEDDING_RESULT", "id": "...", "entityType": "job", "entityId": "j1",
     "embedding": [...], "textHash": "..."}

Inside the process both sides work with the frozen dataclasses below and
dispatch on them with ``match``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from jobvec.exceptions import ProtocolError
from jobvec.types import EntityType, LoadStage

INIT_MODEL = "INIT_MODEL"
EMBED_TEXT = "EMBED_TEXT"
EMBED_BATCH = "EMBED_BATCH"
MODEL_PROGRESS = "MODEL_PROGRESS"
MODEL_READY = "MODEL_READY"
EMBEDDING_RESULT = "EMBEDDING_RESULT"
BATCH_RESULT = "BATCH_RESULT"
ERROR = "ERROR"


def generate_request_id() -> str:
    """Return a new unique correlation id."""
    return uuid.uuid4().hex


# ------------------------------------------------------------------
# Requests (host → worker)
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InitModel:
    """Load the model.  Answered by progress messages, then ready or error."""

    id: str


@dataclass(frozen=True, slots=True)
class EmbedText:
    id: str
    text: str
    entity_type: EntityType
    entity_id: str


@dataclass(frozen=True, slots=True)
class BatchItem:
    text: str
    entity_type: EntityType
    entity_id: str


@dataclass(frozen=True, slots=True)
class EmbedBatch:
    id: str
    items: tuple[BatchItem, ...] = ()


Request = InitModel | EmbedText | EmbedBatch


# ------------------------------------------------------------------
# Responses (worker → host)
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ModelProgressMessage:
    id: str
    stage: LoadStage
    progress: float
    loaded: int | None = None
    total: int | None = None


@dataclass(frozen=True, slots=True)
class ModelReady:
    id: str


@dataclass(frozen=True, slots=True)
class EmbeddingResult:
    """A computed vector plus the hash of the full text it was computed from."""

    id: str
    entity_type: EntityType
    entity_id: str
    embedding: list[float] = field(default_factory=list)
    text_hash: str = ""


@dataclass(frozen=True, slots=True)
class BatchResult:
    id: str
    results: tuple[EmbeddingResult, ...] = ()


@dataclass(frozen=True, slots=True)
class ErrorMessage:
    """Failure of the single request named by ``id``."""

    id: str
    message: str
    code: str | None = None


Response = ModelProgressMessage | ModelReady | EmbeddingResult | BatchResult | ErrorMessage


# ------------------------------------------------------------------
# Wire codec
# ------------------------------------------------------------------


def _result_fields(result: EmbeddingResult) -> dict[str, Any]:
    return {
        "entityType": result.entity_type.value,
        "entityId": result.entity_id,
        "embedding": list(result.embedding),
        "textHash": result.text_hash,
    }


def encode_message(message: Request | Response) -> dict[str, Any]:
    """Convert a request or response into its wire dict."""
    match message:
        case InitModel(id=request_id):
            return {"type": INIT_MODEL, "id": request_id}
        case EmbedText(id=request_id, text=text, entity_type=entity_type, entity_id=entity_id):
            return {
                "type": EMBED_TEXT,
                "id": request_id,
                "text": text,
                "entityType": entity_type.value,
                "entityId": entity_id,
            }
        case EmbedBatch(id=request_id, items=items):
            return {
                "type": EMBED_BATCH,
                "id": request_id,
                "items": [
                    {"text": i.text, "entityType": i.entity_type.value, "entityId": i.entity_id}
                    for i in items
                ],
            }
        case ModelProgressMessage():
            data: dict[str, Any] = {
                "type": MODEL_PROGRESS,
                "id": message.id,
                "stage": message.stage,
                "progress": message.progress,
            }
            if message.loaded is not None:
                data["loaded"] = message.loaded
            if message.total is not None:
                data["total"] = message.total
            return data
        case ModelReady(id=request_id):
            return {"type": MODEL_READY, "id": request_id}
        case EmbeddingResult():
            return {"type": EMBEDDING_RESULT, "id": message.id, **_result_fields(message)}
        case BatchResult(id=request_id, results=results):
            return {
                "type": BATCH_RESULT,
                "id": request_id,
                "results": [_result_fields(r) for r in results],
            }
        case ErrorMessage(id=request_id, message=text, code=code):
            data = {"type": ERROR, "id": request_id, "message": text}
            if code is not None:
                data["code"] = code
            return data
    msg = f"Cannot encode {type(message).__name__}"
    raise ProtocolError(msg)


def _entity_type(data: dict[str, Any]) -> EntityType:
    try:
        return EntityType(data["entityType"])
    except (KeyError, ValueError) as e:
        msg = f"Invalid entityType in message: {data.get('entityType')!r}"
        raise ProtocolError(msg) from e


def _decode_result(request_id: str, data: dict[str, Any]) -> EmbeddingResult:
    return EmbeddingResult(
        id=request_id,
        entity_type=_entity_type(data),
        entity_id=str(data.get("entityId", "")),
        embedding=[float(x) for x in data.get("embedding", [])],
        text_hash=str(data.get("textHash", "")),
    )


def _require_id(data: Any) -> str:
    if not isinstance(data, dict) or "id" not in data:
        msg = f"Malformed worker message: {data!r}"
        raise ProtocolError(msg)
    return str(data["id"])


def decode_request(data: dict[str, Any]) -> Request:
    """Parse a wire dict received by the worker."""
    request_id = _require_id(data)
    try:
        match data.get("type"):
            case "INIT_MODEL":
                return InitModel(id=request_id)
            case "EMBED_TEXT":
                return EmbedText(
                    id=request_id,
                    text=data["text"],
                    entity_type=_entity_type(data),
                    entity_id=data["entityId"],
                )
            case "EMBED_BATCH":
                return EmbedBatch(
                    id=request_id,
                    items=tuple(
                        BatchItem(
                            text=item["text"],
                            entity_type=_entity_type(item),
                            entity_id=item["entityId"],
                        )
                        for item in data.get("items", [])
                    ),
                )
    except KeyError as e:
        msg = f"Missing field {e} in {data.get('type')} request"
        raise ProtocolError(msg) from e
    msg = f"Unknown request type: {data.get('type')!r}"
    raise ProtocolError(msg)


def decode_response(data: dict[str, Any]) -> Response:
    """Parse a wire dict received by the host."""
    request_id = _require_id(data)
    match data.get("type"):
        case "MODEL_PROGRESS":
            return ModelProgressMessage(
                id=request_id,
                stage=data.get("stage", "download"),
                progress=float(data.get("progress", 0)),
                loaded=data.get("loaded"),
                total=data.get("total"),
            )
        case "MODEL_READY":
            return ModelReady(id=request_id)
        case "EMBEDDING_RESULT":
            return _decode_result(request_id, data)
        case "BATCH_RESULT":
            return BatchResult(
                id=request_id,
                results=tuple(_decode_result(request_id, r) for r in data.get("results", [])),
            )
        case "ERROR":
            return ErrorMessage(
                id=request_id,
                message=str(data.get("message", "Unknown worker error")),
                code=data.get("code"),
            )
    msg = f"Unknown response type: {data.get('type')!r}"
    raise ProtocolError(msg)
