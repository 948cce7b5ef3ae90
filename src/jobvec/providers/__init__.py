"""Embedding models — protocol and implementations."""

from jobvec.providers._protocol import EmbeddingModel
from jobvec.providers.sentence_transformers import SentenceTransformerModel

__all__ = [
    "EmbeddingModel",
    "SentenceTransformerModel",
]
