"""Text extraction — one policy per entity type.

Each function is pure: the string it returns is what gets hashed, so any
change to a policy re-embeds every entity of that type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from jobvec.types import EntityType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from jobvec.entities import ContextDocument, Job, Note, QAEntry, SavedStory


@dataclass(frozen=True, slots=True)
class IndexItem:
    """A logical unit of content ready for hashing, chunking and embedding.

    Attributes:
        text: Extracted text to embed.
        entity_type: Type of the source entity.
        entity_id: Identifier of the source entity.
        parent_job_id: Owning job for job-scoped content.
    """

    text: str
    entity_type: EntityType
    entity_id: str
    parent_job_id: str | None = None


def extract_job_text(job: Job) -> str:
    """Title, company and the full job description."""
    parts = [f"{job.title} at {job.company}", job.jd_text]
    return "\n\n".join(part for part in parts if part)


def extract_story_text(story: SavedStory) -> str:
    return f"{story.question}\n\n{story.answer}"


def extract_qa_text(qa: QAEntry) -> str:
    return f"Q: {qa.question}\n\nA: {qa.answer or ''}"


def extract_note_text(note: Note) -> str:
    return note.content


def extract_document_text(doc: ContextDocument) -> str:
    """Document name plus its summary when opted in and available, else full text."""
    if doc.use_summary and doc.summary:
        return f"{doc.name}\n\n{doc.summary}"
    return f"{doc.name}\n\n{doc.full_text}"


def extract_cover_letter_text(cover_letter: str, job: Job) -> str:
    return f"Cover letter for {job.title} at {job.company}\n\n{cover_letter}"


def collect_items(
    jobs: Iterable[Job],
    stories: Iterable[SavedStory],
    documents: Iterable[ContextDocument],
) -> list[IndexItem]:
    """Flatten all indexable content into one ordered worklist.

    Each job is followed by its answered Q&A entries, its notes and its cover
    letter.  Stories and documents come last.  Unanswered Q&A entries are
    skipped.
    """
    items: list[IndexItem] = []

    for job in jobs:
        items.append(IndexItem(extract_job_text(job), EntityType.JOB, job.id))
        items.extend(
            IndexItem(extract_qa_text(qa), EntityType.QA, qa.id, parent_job_id=job.id)
            for qa in job.qa_history
            if qa.answer
        )
        items.extend(
            IndexItem(extract_note_text(note), EntityType.NOTE, note.id, parent_job_id=job.id)
            for note in job.notes
        )
        if job.cover_letter:
            items.append(
                IndexItem(
                    extract_cover_letter_text(job.cover_letter, job),
                    EntityType.COVER_LETTER,
                    job.id,
                    parent_job_id=job.id,
                )
            )

    items.extend(
        IndexItem(extract_story_text(story), EntityType.STORY, story.id) for story in stories
    )
    items.extend(
        IndexItem(extract_document_text(doc), EntityType.DOC, doc.id) for doc in documents
    )
    return items
