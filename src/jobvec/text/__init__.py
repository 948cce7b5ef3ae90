"""Text preparation — chunking, hashing and per-entity extraction."""

from jobvec.text.chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text
from jobvec.text.extractors import (
    IndexItem,
    collect_items,
    extract_cover_letter_text,
    extract_document_text,
    extract_job_text,
    extract_note_text,
    extract_qa_text,
    extract_story_text,
)
from jobvec.text.hashing import compute_hash

__all__ = [
    "DEFAULT_CHUNK_OVERLAP",
    "DEFAULT_CHUNK_SIZE",
    "IndexItem",
    "chunk_text",
    "collect_items",
    "compute_hash",
    "extract_cover_letter_text",
    "extract_document_text",
    "extract_job_text",
    "extract_note_text",
    "extract_qa_text",
    "extract_story_text",
]
