"""Tests for EmbeddingService — the public embedding and search API."""

from __future__ import annotations

import asyncio
import logging

import pytest

from jobvec.config import EmbeddingConfig
from jobvec.entities import ContextDocument, Job, Note, QAEntry, SavedStory
from jobvec.exceptions import DimensionMismatchError, WorkerTerminatedError
from jobvec.service import EmbeddingService
from jobvec.storage.sql import SQLEmbeddingStorage
from jobvec.text.extractors import (
    extract_note_text,
    extract_qa_text,
    extract_story_text,
)
from jobvec.types import EntityType, SearchOptions, StaleEntity
from jobvec.worker.client import EmbeddingWorkerClient

from tests.conftest import FakeModel, InlineWorker, ManualWorker, wait_for_posts


def _job(job_id: str = "j1", **kwargs) -> Job:
    kwargs.setdefault("jd_text", "Build data pipelines in Python.")
    return Job(id=job_id, title="Data Engineer", company="Acme", **kwargs)


@pytest.fixture
def service(config, memory_storage, inline_client) -> EmbeddingService:
    return EmbeddingService(config, storage=memory_storage, client=inline_client)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize(self, service, fake_model):
        assert not service.is_ready()
        await service.initialize()
        assert service.is_ready()
        assert fake_model.load_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_initialize_loads_once(self, service, fake_model):
        await asyncio.gather(service.initialize(), service.initialize())
        assert fake_model.load_calls == 1

    @pytest.mark.asyncio
    async def test_embedding_initializes_on_demand(self, service, fake_model):
        await service.embed_story(SavedStory("s1", "q", "a"))
        assert service.is_ready()
        assert fake_model.load_calls == 1

    @pytest.mark.asyncio
    async def test_terminate(self, service):
        await service.initialize()
        service.terminate()
        assert not service.is_ready()

    @pytest.mark.asyncio
    async def test_terminate_rejects_in_flight_work(self, config, memory_storage):
        worker = ManualWorker()
        service = EmbeddingService(
            config, storage=memory_storage, client=EmbeddingWorkerClient(lambda: worker)
        )
        task = asyncio.create_task(service.initialize())
        await wait_for_posts(worker, 1)

        service.terminate()

        with pytest.raises(WorkerTerminatedError):
            await task

    @pytest.mark.asyncio
    async def test_context_manager_closes_storage(self, inline_client):
        storage = SQLEmbeddingStorage("sqlite+aiosqlite://")
        config = EmbeddingConfig(database_url="sqlite+aiosqlite://")
        async with EmbeddingService(config, storage=storage, client=inline_client) as service:
            await service.embed_story(SavedStory("s1", "q", "a"))
            assert (await service.stats()).total == 1
        assert not service.is_ready()
        assert storage._engine is None

    def test_default_config(self):
        service = EmbeddingService()
        assert service.config.model_name == "all-MiniLM-L6-v2"
        assert service.config.dimensions == 384


class TestEmbedEntities:
    @pytest.mark.asyncio
    async def test_unchanged_job_is_not_reembedded(self, service, fake_model):
        job = _job()

        assert await service.embed_job(job)
        calls = len(fake_model.embedded)
        assert not await service.embed_job(job)

        assert len(fake_model.embedded) == calls

    @pytest.mark.asyncio
    async def test_edited_job_is_reembedded(self, service, fake_model, memory_storage):
        job = _job(jd_text=" ".join(f"w{i}" for i in range(600)))
        await service.embed_job(job)
        assert len(memory_storage.rows) == 3

        job.jd_text = "Short now."
        assert await service.embed_job(job)

        assert set(memory_storage.rows) == {"job:j1:0"}
        assert len(fake_model.embedded) == 4

    @pytest.mark.asyncio
    async def test_should_embed(self, service):
        story = SavedStory("s1", "q", "a")
        text = extract_story_text(story)
        assert await service.should_embed(EntityType.STORY, "s1", text)
        await service.embed_story(story)
        assert not await service.should_embed(EntityType.STORY, "s1", text)
        assert await service.should_embed(EntityType.STORY, "s1", text + "!")

    @pytest.mark.asyncio
    async def test_records_per_entity_type(self, service, memory_storage):
        job = _job()
        await service.embed_job(job)
        await service.embed_story(SavedStory("s1", "q", "a"))
        await service.embed_qa(QAEntry("q1", "Why?", "Because."), job.id)
        await service.embed_note(Note("n1", "Follow up Friday"), job.id)
        await service.embed_document(ContextDocument("d1", "Resume", "Python, SQL"))
        await service.embed_cover_letter("Dear Acme,", job)

        rows = memory_storage.rows
        assert set(rows) == {
            "job:j1:0",
            "story:s1",
            "qa:q1",
            "note:n1",
            "doc:d1:0",
            "coverLetter:j1",
        }
        assert rows["qa:q1"].parent_job_id == "j1"
        assert rows["note:n1"].parent_job_id == "j1"
        assert rows["coverLetter:j1"].parent_job_id == "j1"
        assert rows["story:s1"].parent_job_id is None
        assert rows["job:j1:0"].text_hash != rows["coverLetter:j1"].text_hash

    @pytest.mark.asyncio
    async def test_unanswered_qa_is_skipped(self, service, fake_model, memory_storage):
        assert not await service.embed_qa(QAEntry("q1", "Why?"), "j1")
        assert fake_model.embedded == []
        assert memory_storage.rows == {}

    @pytest.mark.asyncio
    async def test_embed_text(self, service):
        vector = await service.embed_text("hello")
        assert len(vector) == 384

    @pytest.mark.asyncio
    async def test_dimension_contract(self, config, memory_storage):
        client = EmbeddingWorkerClient(lambda: InlineWorker(FakeModel(dims=16)))
        service = EmbeddingService(config, storage=memory_storage, client=client)

        with pytest.raises(DimensionMismatchError):
            await service.embed_story(SavedStory("s1", "q", "a"))
        with pytest.raises(DimensionMismatchError):
            await service.embed_text("query")
        assert memory_storage.rows == {}


class TestIndexAll:
    @pytest.mark.asyncio
    async def test_index_then_search(self, service):
        story = SavedStory("s1", "Tell me about a failure", "Missed a deadline, fixed the process.")
        doc = ContextDocument("d1", "Resume", "Ten years of Python.")
        report = await service.index_all([_job()], [story], [doc])

        assert report.embedded == 3
        [hit] = await service.semantic_search(extract_story_text(story))
        assert hit.record.entity_id == "s1"
        assert hit.score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, service, fake_model):
        jobs = [_job()]
        await service.index_all(jobs, [], [])
        calls = len(fake_model.embedded)

        report = await service.index_all(jobs, [], [])

        assert report.skipped == 1
        assert len(fake_model.embedded) == calls


class TestSearch:
    @pytest.mark.asyncio
    async def test_semantic_search_uses_config_defaults(self, memory_storage, inline_client):
        config = EmbeddingConfig(default_limit=1, database_url="sqlite+aiosqlite://")
        service = EmbeddingService(config, storage=memory_storage, client=inline_client)
        note = Note("n1", "same words")
        await service.embed_note(note, "j1")
        await service.embed_note(Note("n2", "same words"), "j2")

        results = await service.semantic_search(extract_note_text(note))

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_semantic_search_with_options(self, service):
        await service.embed_story(SavedStory("s1", "q", "a"))
        results = await service.semantic_search(
            "unrelated query", SearchOptions(threshold=-1.0, limit=10)
        )
        assert [r.record.entity_id for r in results] == ["s1"]

    @pytest.mark.asyncio
    async def test_find_similar_jobs_excludes_source(self, service):
        twin_a = _job("a")
        twin_b = _job("b")
        other = _job("c", jd_text="Completely different role in sales.")
        for job in (twin_a, twin_b, other):
            await service.embed_job(job)
        await service.embed_cover_letter("Dear Acme,", twin_a)

        results = await service.find_similar_jobs("a")

        assert [(r.record.entity_type, r.record.entity_id) for r in results] == [
            (EntityType.JOB, "b")
        ]

    @pytest.mark.asyncio
    async def test_find_similar_jobs_unknown(self, service):
        assert await service.find_similar_jobs("missing") == []

    @pytest.mark.asyncio
    async def test_search_within_job(self, service):
        await service.embed_note(Note("n1", "Ask about on-call"), "j1")
        await service.embed_note(Note("n2", "Ask about on-call"), "j2")

        results = await service.search_within_job("Ask about on-call", "j1")

        assert [r.record.entity_id for r in results] == ["n1"]

    @pytest.mark.asyncio
    async def test_search_within_job_keeps_other_options(self, service):
        await service.embed_note(Note("n1", "Ask about on-call"), "j1")
        results = await service.search_within_job(
            "Ask about on-call", "j1", SearchOptions(entity_types=(EntityType.QA,))
        )
        assert results == []

    @pytest.mark.asyncio
    async def test_search_stories_filters_type(self, service):
        story = SavedStory("s1", "Leadership", "Led the migration.")
        await service.embed_story(story)
        await service.embed_note(Note("n1", extract_story_text(story)), "j1")

        results = await service.search_stories(extract_story_text(story))

        assert [(r.record.entity_type, r.record.entity_id) for r in results] == [
            (EntityType.STORY, "s1")
        ]

    @pytest.mark.asyncio
    async def test_search_qa_history(self, service):
        qa = QAEntry("q1", "Greatest strength?", "Curiosity.")
        await service.embed_qa(qa, "j1")
        await service.embed_qa(QAEntry("q2", "Greatest strength?", "Curiosity."), "j2")

        results = await service.search_qa_history(extract_qa_text(qa), limit=1)

        assert len(results) == 1
        assert results[0].record.entity_type == EntityType.QA


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_remove_job_embeddings_cascades(self, service, memory_storage):
        job = _job()
        await service.embed_job(job)
        await service.embed_note(Note("n1", "note"), job.id)
        await service.embed_cover_letter("Dear Acme,", job)
        await service.embed_story(SavedStory("s1", "q", "a"))

        await service.remove_job_embeddings(job.id)

        assert set(memory_storage.rows) == {"story:s1"}
        assert (await service.stats()).total == 1

    @pytest.mark.asyncio
    async def test_remove_entity_embeddings(self, service):
        await service.embed_document(ContextDocument("d1", "Resume", "text"))
        await service.remove_entity_embeddings(EntityType.DOC, "d1")
        assert (await service.stats()).total == 0

    @pytest.mark.asyncio
    async def test_clear_all(self, service, memory_storage):
        await service.embed_story(SavedStory("s1", "q", "a"))
        await service.clear_all()
        assert memory_storage.rows == {}

    @pytest.mark.asyncio
    async def test_stats_by_type(self, service):
        job = _job()
        await service.embed_job(job)
        await service.embed_note(Note("n1", "a"), job.id)
        await service.embed_note(Note("n2", "b"), job.id)

        stats = await service.stats()

        assert stats.total == 3
        assert stats.by_type == {EntityType.JOB: 1, EntityType.NOTE: 2}

    @pytest.mark.asyncio
    async def test_find_stale(self, service):
        doc = ContextDocument("d1", "Resume", "v1")
        await service.embed_document(doc)
        doc.full_text = "v2"
        story = SavedStory("s1", "q", "a")

        stale = await service.find_stale(stories=[story], documents=[doc])

        assert stale == [
            StaleEntity(EntityType.STORY, "s1"),
            StaleEntity(EntityType.DOC, "d1"),
        ]


class TestSubmit:
    @pytest.mark.asyncio
    async def test_returns_awaitable_task(self, service):
        task = service.submit(service.embed_story(SavedStory("s1", "q", "a")), "embed story")
        assert await task is True
        assert task.get_name() == "embed story"

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, service, caplog):
        async def boom() -> None:
            msg = "storage offline"
            raise RuntimeError(msg)

        with caplog.at_level(logging.WARNING, logger="jobvec.service"):
            task = service.submit(boom(), "embed note")
            with pytest.raises(RuntimeError):
                await task
            await asyncio.sleep(0)

        assert "embed note" in caplog.text
        assert "storage offline" in caplog.text
