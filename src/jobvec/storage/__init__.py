"""Durable embedding storage."""

from jobvec.storage.protocols import EmbeddingStorage
from jobvec.storage.sql import SQLEmbeddingStorage

__all__ = [
    "EmbeddingStorage",
    "SQLEmbeddingStorage",
]
