"""jobvec: semantic search over job-application content.

Local embeddings, change-aware indexing, and ranked similarity search for
jobs, stories, Q&A, notes, documents and cover letters.
"""

__version__ = "0.1.0"

from jobvec.cache import VectorCache
from jobvec.config import EmbeddingConfig
from jobvec.entities import ContextDocument, Job, Note, QAEntry, SavedStory
from jobvec.exceptions import (
    DimensionMismatchError,
    EmbeddingRequestError,
    JobvecError,
    ModelLoadError,
    ProtocolError,
    RequestTimeoutError,
    StorageError,
    WorkerCrashedError,
    WorkerTerminatedError,
)
from jobvec.indexer import BatchIndexer, IndexReport
from jobvec.search import cosine_similarity, find_similar, find_similar_to_entity
from jobvec.service import EmbeddingService
from jobvec.status import EmbeddingStatus, EmbeddingStatusTracker
from jobvec.storage import EmbeddingStorage, SQLEmbeddingStorage
from jobvec.text import chunk_text, compute_hash
from jobvec.types import (
    EMBEDDING_DIMENSIONS,
    EmbeddingRecord,
    EntityType,
    IndexingProgress,
    IndexStats,
    ModelProgress,
    SearchOptions,
    SimilarityResult,
    StaleEntity,
    generate_embedding_id,
)
from jobvec.worker import EmbeddingWorkerClient, ProcessWorker, ThreadWorker

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "BatchIndexer",
    "ContextDocument",
    "DimensionMismatchError",
    "EmbeddingConfig",
    "EmbeddingRecord",
    "EmbeddingRequestError",
    "EmbeddingService",
    "EmbeddingStatus",
    "EmbeddingStatusTracker",
    "EmbeddingStorage",
    "EmbeddingWorkerClient",
    "EntityType",
    "IndexReport",
    "IndexStats",
    "IndexingProgress",
    "Job",
    "JobvecError",
    "ModelLoadError",
    "ModelProgress",
    "Note",
    "ProcessWorker",
    "ProtocolError",
    "QAEntry",
    "RequestTimeoutError",
    "SQLEmbeddingStorage",
    "SavedStory",
    "SearchOptions",
    "SimilarityResult",
    "StaleEntity",
    "StorageError",
    "ThreadWorker",
    "VectorCache",
    "WorkerCrashedError",
    "WorkerTerminatedError",
    "__version__",
    "chunk_text",
    "compute_hash",
    "cosine_similarity",
    "find_similar",
    "find_similar_to_entity",
    "generate_embedding_id",
]
