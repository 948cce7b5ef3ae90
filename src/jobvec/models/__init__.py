"""SQLModel tables."""

from jobvec.models.embeddings import EmbeddingRow

__all__ = ["EmbeddingRow"]
