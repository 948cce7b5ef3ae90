"""Custom exception hierarchy for jobvec."""


class JobvecError(Exception):
    """Base exception for all jobvec errors."""


class ModelLoadError(JobvecError):
    """Raised when the embedding model fails to download or load."""


class EmbeddingRequestError(JobvecError):
    """Raised when the worker reports an ``ERROR`` for a single request.

    Attributes:
        request_id: Correlation id of the failed request.
        code: Optional machine-readable error code sent by the worker.
    """

    def __init__(self, message: str, *, request_id: str = "", code: str | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.code = code


class WorkerCrashedError(JobvecError):
    """Raised for every pending request when the background unit dies."""


class WorkerTerminatedError(JobvecError):
    """Raised for requests still in flight when the client is terminated."""


class RequestTimeoutError(JobvecError):
    """Raised when a worker round trip exceeds its timeout."""


class ProtocolError(JobvecError):
    """Raised when a worker message cannot be decoded."""


class DimensionMismatchError(JobvecError):
    """Raised when two vectors of different lengths are compared.

    Signals a schema or model-version bug, never a data condition.
    """


class StorageError(JobvecError):
    """Raised on persistent storage failures (DB connection, disk I/O, etc.)."""
