"""Shared fixtures and test doubles for jobvec tests."""

from __future__ import annotations

import asyncio
import hashlib
import math
from typing import TYPE_CHECKING, Any

import pytest

from jobvec.cache import VectorCache
from jobvec.config import EmbeddingConfig
from jobvec.exceptions import StorageError
from jobvec.storage.sql import SQLEmbeddingStorage
from jobvec.types import EMBEDDING_DIMENSIONS, EmbeddingRecord, EntityType, generate_embedding_id
from jobvec.worker.client import EmbeddingWorkerClient
from jobvec.worker.runtime import EmbeddingWorkerRuntime

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


# ------------------------------------------------------------------
# Vectors
# ------------------------------------------------------------------


def hash_vector(text: str, dims: int = EMBEDDING_DIMENSIONS) -> list[float]:
    """Deterministic unit vector derived from *text*.

    Values are centered so that vectors of different texts are close to
    orthogonal.
    """
    raw: list[float] = []
    counter = 0
    while len(raw) < dims:
        raw.extend(float(b) - 127.5 for b in hashlib.sha256(f"{counter}:{text}".encode()).digest())
        counter += 1
    raw = raw[:dims]
    norm = math.sqrt(sum(x * x for x in raw))
    return [x / norm for x in raw]


def make_record(
    entity_type: EntityType,
    entity_id: str,
    embedding: list[float],
    *,
    chunk_index: int | None = None,
    chunk_total: int | None = None,
    parent_job_id: str | None = None,
    text_hash: str = "hash",
) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=generate_embedding_id(entity_type, entity_id, chunk_index),
        entity_type=entity_type,
        entity_id=entity_id,
        embedding=embedding,
        text_hash=text_hash,
        parent_job_id=parent_job_id,
        chunk_index=chunk_index,
        chunk_total=chunk_total,
    )


# ------------------------------------------------------------------
# Model
# ------------------------------------------------------------------


class FakeModel:
    """Deterministic embedding model that hashes text into a vector."""

    def __init__(self, dims: int = EMBEDDING_DIMENSIONS, *, fail_load: bool = False) -> None:
        self._dims = dims
        self._loaded = False
        self.fail_load = fail_load
        self.load_calls = 0
        self.embedded: list[str] = []

    def load(self) -> None:
        self.load_calls += 1
        if self.fail_load:
            msg = "model download failed"
            raise OSError(msg)
        self._loaded = True

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def embed(self, text: str) -> list[float]:
        self._loaded = True
        self.embedded.append(text)
        return hash_vector(text, self._dims)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return self._dims

    @property
    def model_name(self) -> str:
        return "fake-test-model"


# ------------------------------------------------------------------
# Workers
# ------------------------------------------------------------------


class InlineWorker:
    """Runs the worker runtime synchronously inside :meth:`post`."""

    def __init__(self, model: FakeModel) -> None:
        self.model = model
        self.started = False
        self.terminated = False
        self._runtime: EmbeddingWorkerRuntime | None = None
        self._on_fatal: Callable[..., None] | None = None

    def start(self, on_message: Callable[..., None], on_fatal: Callable[..., None]) -> None:
        self.started = True
        self._runtime = EmbeddingWorkerRuntime(self.model, on_message)
        self._on_fatal = on_fatal

    def post(self, message: dict[str, Any]) -> None:
        assert self._runtime is not None
        self._runtime.handle(message)

    def terminate(self) -> None:
        self.terminated = True

    def crash(self, error: BaseException) -> None:
        assert self._on_fatal is not None
        self._on_fatal(error)


class ManualWorker:
    """Records posted requests; tests answer or crash it by hand."""

    def __init__(self) -> None:
        self.posted: list[dict[str, Any]] = []
        self.terminated = False
        self.fail_post = False
        self._on_message: Callable[..., None] | None = None
        self._on_fatal: Callable[..., None] | None = None

    def start(self, on_message: Callable[..., None], on_fatal: Callable[..., None]) -> None:
        self._on_message = on_message
        self._on_fatal = on_fatal

    def post(self, message: dict[str, Any]) -> None:
        if self.fail_post:
            from jobvec.exceptions import WorkerCrashedError

            msg = "worker is gone"
            raise WorkerCrashedError(msg)
        self.posted.append(message)

    def terminate(self) -> None:
        self.terminated = True

    def respond(self, message: dict[str, Any]) -> None:
        assert self._on_message is not None
        self._on_message(message)

    def crash(self, error: BaseException) -> None:
        assert self._on_fatal is not None
        self._on_fatal(error)

    def request_ids(self, request_type: str | None = None) -> list[str]:
        return [m["id"] for m in self.posted if request_type in (None, m["type"])]


async def settle() -> None:
    """Let callbacks scheduled with ``call_soon_threadsafe`` run."""
    for _ in range(3):
        await asyncio.sleep(0)


async def wait_for_posts(worker: ManualWorker, count: int) -> None:
    for _ in range(100):
        if len(worker.posted) >= count:
            return
        await asyncio.sleep(0)
    msg = f"expected {count} posted request(s), got {len(worker.posted)}"
    raise AssertionError(msg)


# ------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------


class MemoryStorage:
    """In-memory ``EmbeddingStorage`` with switchable failures."""

    def __init__(self, records: list[EmbeddingRecord] | None = None) -> None:
        self.rows: dict[str, EmbeddingRecord] = {r.id: r for r in records or []}
        self.fail = False
        self.load_calls = 0

    def _check(self) -> None:
        if self.fail:
            msg = "disk full"
            raise StorageError(msg)

    async def get_all_embeddings(self) -> list[EmbeddingRecord]:
        self._check()
        self.load_calls += 1
        await asyncio.sleep(0)
        return list(self.rows.values())

    async def save_embedding(self, record: EmbeddingRecord) -> None:
        self._check()
        self.rows[record.id] = record

    async def save_embeddings(self, records: list[EmbeddingRecord]) -> None:
        self._check()
        for record in records:
            self.rows[record.id] = record

    async def delete_embedding(self, record_id: str) -> None:
        self._check()
        self.rows.pop(record_id, None)

    async def delete_embeddings_by_entity(self, entity_type: EntityType, entity_id: str) -> None:
        self._check()
        for rid in [r.id for r in self.rows.values() if r.entity_key == (entity_type, entity_id)]:
            del self.rows[rid]

    async def delete_embeddings_by_job(self, job_id: str) -> None:
        self._check()
        for rid in [r.id for r in self.rows.values() if r.belongs_to_job(job_id)]:
            del self.rows[rid]

    async def clear_all_embeddings(self) -> None:
        self._check()
        self.rows.clear()

    def generate_embedding_id(
        self,
        entity_type: EntityType,
        entity_id: str,
        chunk_index: int | None = None,
    ) -> str:
        return generate_embedding_id(entity_type, entity_id, chunk_index)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
async def sql_storage() -> AsyncIterator[SQLEmbeddingStorage]:
    """SQL storage on an async in-memory SQLite database."""
    storage = SQLEmbeddingStorage("sqlite+aiosqlite://")
    yield storage
    await storage.close()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def cache(memory_storage: MemoryStorage) -> VectorCache:
    return VectorCache(memory_storage)


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def inline_client(fake_model: FakeModel) -> EmbeddingWorkerClient:
    """Client whose worker runs the real runtime over :class:`FakeModel`."""
    return EmbeddingWorkerClient(lambda: InlineWorker(fake_model))


@pytest.fixture
def config() -> EmbeddingConfig:
    return EmbeddingConfig(database_url="sqlite+aiosqlite://")
