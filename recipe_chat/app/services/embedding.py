import logging
from typing import List, Optional, Protocol

from recipe_chat.app.services.errors import UpstreamUnavailable
from recipe_chat.app.services.llm_client import LLMClient

logger = logging.getLogger(__name__)


def recipe_search_text(recipe) -> str:
    """Canonical text a recipe is embedded from. Works for drafts, creates and rows."""
    parts = [
        f"Title: {recipe.title}",
        f"Ingredients: {', '.join(recipe.ingredients or [])}",
        f"Steps: {' '.join(recipe.steps or [])}",
        f"Tags: {', '.join(recipe.tags or [])}",
    ]
    return "\n".join(parts)


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class EmbeddingGenerator:
    def __init__(self, llm: LLMClient, dimensions: Optional[int] = None):
        self.llm = llm
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValueError("Cannot generate embedding for empty text")
        vectors = await self.llm.embeddings([cleaned])
        vector = vectors[0]
        # Stored vectors must all share one size or ranking cannot compare them
        if self.dimensions and len(vector) != self.dimensions:
            logger.warning("Embedding model returned %d dimensions, expected %d", len(vector), self.dimensions)
            raise UpstreamUnavailable("unexpected embedding size")
        return vector


async def embed_recipe(embedder: Embedder, recipe) -> List[float]:
    return await embedder.embed(recipe_search_text(recipe))
