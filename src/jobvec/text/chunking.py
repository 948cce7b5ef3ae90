"""Word-window chunking for texts longer than the model's input limit."""

from __future__ import annotations

# all-MiniLM-L6-v2 reads at most 512 tokens, roughly 300-400 English words.
DEFAULT_CHUNK_SIZE = 300
DEFAULT_CHUNK_OVERLAP = 50


def chunk_text(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split *text* into overlapping windows of *size* words.

    Text of at most *size* words comes back as a single chunk equal to the
    input.  Longer text is cut into windows advancing by ``size - overlap``
    words, so every word lands in at least one chunk and each chunk after the
    first repeats the last *overlap* words of its predecessor.

    Raises:
        ValueError: If *overlap* is negative or not smaller than *size*.
    """
    if overlap < 0 or size <= overlap:
        msg = f"chunk size must exceed overlap (got size={size}, overlap={overlap})"
        raise ValueError(msg)

    words = text.split()
    if len(words) <= size:
        return [text]

    step = size - overlap
    chunks: list[str] = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start : start + size]))
        if start + size >= len(words):
            break
    return chunks
