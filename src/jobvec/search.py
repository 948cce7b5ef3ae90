"""Similarity search — exact cosine scan over the vector cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from jobvec.exceptions import DimensionMismatchError
from jobvec.types import SearchOptions, SimilarityResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jobvec.cache import VectorCache
    from jobvec.types import EmbeddingRecord, EntityType


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*, in ``[-1, 1]``.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(a) != len(b):
        msg = f"Vectors must have the same dimensions (got {len(a)} and {len(b)})"
        raise DimensionMismatchError(msg)
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def _matches(record: EmbeddingRecord, options: SearchOptions) -> bool:
    if options.entity_types is not None and record.entity_type not in options.entity_types:
        return False
    return options.job_id is None or record.belongs_to_job(options.job_id)


def _earlier_chunk(record: EmbeddingRecord) -> int:
    # Equal-scoring chunks keep the lowest index.
    return -(record.chunk_index or 0)


def _rank_key(result: SimilarityResult) -> tuple[float, str, str]:
    return (-result.score, result.record.entity_type.value, result.record.entity_id)


async def find_similar(
    cache: VectorCache,
    query: Sequence[float],
    options: SearchOptions | None = None,
) -> list[SimilarityResult]:
    """Rank cached records against *query*.

    Records are filtered by entity type and job scope, scored, and dropped
    below the threshold.  Each entity contributes only its best-scoring
    chunk, the lowest chunk index among equal scores.  Results are ordered
    by score descending, ties broken by entity type then entity id, and cut
    to ``options.limit``.
    """
    if options is None:
        options = SearchOptions()
    if options.limit <= 0:
        return []

    best: dict[tuple[EntityType, str], SimilarityResult] = {}
    for record in await cache.records():
        if not _matches(record, options):
            continue
        score = cosine_similarity(query, record.embedding)
        if score < options.threshold:
            continue
        current = best.get(record.entity_key)
        if current is None or (score, _earlier_chunk(record)) > (
            current.score,
            _earlier_chunk(current.record),
        ):
            best[record.entity_key] = SimilarityResult(record=record, score=score)

    return sorted(best.values(), key=_rank_key)[: options.limit]


async def find_similar_to_entity(
    cache: VectorCache,
    entity_type: EntityType,
    entity_id: str,
    options: SearchOptions | None = None,
) -> list[SimilarityResult]:
    """Rank other entities against an indexed entity's first-chunk vector.

    Returns an empty list when the entity has no record.  The source entity
    never appears in its own results.
    """
    if options is None:
        options = SearchOptions()
    source = await cache.get(entity_type, entity_id)
    if source is None:
        return []

    widened = SearchOptions(
        limit=options.limit + 1,
        threshold=options.threshold,
        entity_types=options.entity_types,
        job_id=options.job_id,
    )
    results = await find_similar(cache, source.embedding, widened)
    return [r for r in results if r.record.entity_key != source.entity_key][: options.limit]
