"""Pure cosine-similarity ranking over stored recipe vectors."""

import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel

from recipe_chat.app.schemas.recipe import RecipeRead, SearchResult


class SearchCandidate(BaseModel):
    recipe: RecipeRead
    embedding: List[float]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def rank(
    query_vector: Sequence[float],
    candidates: Iterable[SearchCandidate],
    *,
    limit: int,
    min_similarity: Optional[float] = None,
) -> List[SearchResult]:
    """Order by similarity, newest first on ties, and keep at most ``limit``.

    Candidates whose vector length differs from the query are skipped; they were
    embedded with a different model.
    """
    scored = []
    for candidate in candidates:
        if len(candidate.embedding) != len(query_vector):
            continue
        similarity = cosine_similarity(query_vector, candidate.embedding)
        if min_similarity is not None and similarity < min_similarity:
            continue
        scored.append(SearchResult(recipe=candidate.recipe, similarity=similarity))

    scored.sort(key=lambda r: r.recipe.created_at or datetime.min, reverse=True)
    scored.sort(key=lambda r: r.similarity, reverse=True)
    return scored[: max(limit, 0)]
