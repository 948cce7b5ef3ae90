"""Embedding worker — message protocol, background units and the host-side client."""

from jobvec.worker.backends import (
    EmbeddingWorker,
    ProcessWorker,
    ThreadWorker,
    default_model_factory,
)
from jobvec.worker.client import EmbeddingWorkerClient, ProgressCallback
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
    Request,
    Response,
    decode_request,
    decode_response,
    encode_message,
    generate_request_id,
)
from jobvec.worker.runtime import EmbeddingWorkerRuntime

__all__ = [
    "BatchItem",
    "BatchResult",
    "EmbedBatch",
    "EmbedText",
    "EmbeddingResult",
    "EmbeddingWorker",
    "EmbeddingWorkerClient",
    "EmbeddingWorkerRuntime",
    "ErrorMessage",
    "InitModel",
    "ModelProgressMessage",
    "ModelReady",
    "ProcessWorker",
    "ProgressCallback",
    "Request",
    "Response",
    "ThreadWorker",
    "decode_request",
    "decode_response",
    "default_model_factory",
    "encode_message",
    "generate_request_id",
]
