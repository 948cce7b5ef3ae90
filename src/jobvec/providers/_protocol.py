"""EmbeddingModel protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingModel(Protocol):
    """Protocol for models run inside the embedding worker.

    Calls are synchronous: the worker owns its own thread of control, so a
    blocking ``embed`` never stalls the caller's event loop.
    """

    def load(self) -> None:
        """Download (if needed) and load the model weights."""
        ...

    @property
    def is_loaded(self) -> bool:
        """Whether :meth:`load` has completed."""
        ...

    def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...
