"""Source content consumed by the indexer.

These mirror the application's own records closely enough to extract
embeddable text from them.  jobvec never persists them.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class Note:
    id: str
    content: str


@dataclass(slots=True)
class QAEntry:
    """A question asked while preparing for a job, and its answer.

    ``answer`` is None while the answer is still being generated.
    """

    id: str
    question: str
    answer: str | None = None


@dataclass(slots=True)
class SavedStory:
    id: str
    question: str
    answer: str


@dataclass(slots=True)
class ContextDocument:
    """An uploaded document (resume, portfolio, ...) and its optional summary."""

    id: str
    name: str
    full_text: str
    summary: str | None = None
    use_summary: bool = False


@dataclass(slots=True)
class Job:
    """A tracked job application and the content attached to it."""

    id: str
    title: str
    company: str
    jd_text: str = ""
    notes: list[Note] = field(default_factory=list)
    qa_history: list[QAEntry] = field(default_factory=list)
    cover_letter: str | None = None
