"""Intent handlers. The router invokes exactly one of these per message."""

import logging
import re
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from recipe_chat.app.core.config import Settings
from recipe_chat.app.db.models import SourceType
from recipe_chat.app.schemas.auth import CurrentUser
from recipe_chat.app.schemas.intent import IncomingMessage
from recipe_chat.app.schemas.recipe import RecipeCreate, RecipeDraft, RecipeRead, SearchResult
from recipe_chat.app.services import recipe_store
from recipe_chat.app.services.content_extractor import ContentExtractor
from recipe_chat.app.services.embedding import Embedder, embed_recipe
from recipe_chat.app.services.errors import FailureKind, UpstreamUnavailable, user_message
from recipe_chat.app.services.llm_client import LLMClient
from recipe_chat.app.services.recipe_parser import RecipeParser, has_recipe_content
from recipe_chat.app.services.search_ranker import rank

logger = logging.getLogger(__name__)

SAVE_GUIDANCE = (
    "Great! I'd love to help you save a recipe.\n\n"
    "Please paste or describe the recipe you'd like to save. Include:\n"
    "- **Title** (or I can suggest one)\n"
    "- **Ingredients** (with quantities)\n"
    "- **Steps** (how to make it)\n"
    "- **Tags** (optional, like \"italian\", \"dessert\", \"quick\")\n\n"
    "You can also paste a link to a recipe page or a cooking video."
)
SEARCH_STOPWORDS = {
    "a", "about", "all", "an", "any", "do", "find", "for", "have", "i", "in", "is", "list", "look",
    "me", "my", "of", "recipe", "recipes", "saved", "search", "show", "some", "that", "the", "with",
}
SUMMARY_TOP_N = 5


class HandlerContext:
    """Per-request collaborators handed to a handler."""

    def __init__(
        self,
        db: Session,
        user: CurrentUser,
        group_id: Optional[str] = None,
        cookbook_name: Optional[str] = None,
        cookbook_page: Optional[str] = None,
    ):
        self.db = db
        self.user = user
        self.group_id = group_id
        self.cookbook_name = cookbook_name
        self.cookbook_page = cookbook_page


class HandlerResponse(BaseModel):
    success: bool = True
    message: str
    needs_clarification: bool = False
    needs_review: bool = False
    recipe: Optional[RecipeRead] = None
    pending_recipe: Optional[RecipeDraft] = None
    recipes: List[RecipeRead] = Field(default_factory=list)
    failure: Optional[FailureKind] = None

    @classmethod
    def failed(cls, failure: FailureKind, message: Optional[str] = None, **extra) -> "HandlerResponse":
        return cls(success=False, message=message or user_message(failure), failure=failure, **extra)


class Handler(Protocol):
    async def handle(self, message: IncomingMessage, ctx: HandlerContext) -> HandlerResponse:
        ...


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def draft_preview(draft: RecipeDraft) -> str:
    lines = ["**Recipe Preview**", "", f"**{draft.title}**", ""]
    lines.append(f"{_plural(len(draft.ingredients), 'ingredient')}:")
    lines.extend(f"- {item}" for item in draft.ingredients)
    lines.append("")
    lines.append(f"{_plural(len(draft.steps), 'step')}:")
    lines.extend(f"{idx}. {step}" for idx, step in enumerate(draft.steps, start=1))
    if draft.tags:
        lines.append("")
        lines.append(f"Tags: {', '.join(draft.tags)}")
    lines.append("")
    lines.append("Review the recipe above and confirm to save it, or edit anything that looks wrong.")
    return "\n".join(lines)


def saved_summary(recipe: RecipeRead) -> str:
    return (
        "Recipe saved successfully!\n\n"
        f"**{recipe.title}**\n\n"
        f"{_plural(len(recipe.ingredients), 'ingredient')}\n"
        f"{_plural(len(recipe.steps), 'step')}\n"
        f"Tags: {', '.join(recipe.tags) or 'none'}\n\n"
        "Your recipe has been added to your collection and is now searchable!"
    )


def search_summary(query: str, results: List[SearchResult]) -> str:
    count = len(results)
    lines = [f"Found {_plural(count, 'recipe')} matching \"{query}\":", ""]
    for idx, result in enumerate(results[:SUMMARY_TOP_N], start=1):
        lines.append(f"{idx}. **{result.recipe.title}**")
        if result.similarity:
            lines.append(f"   Relevance: {round(result.similarity * 100)}%")
        lines.append(f"   Tags: {', '.join(result.recipe.tags[:3])}")
        lines.append(f"   Ingredients: {len(result.recipe.ingredients)}")
    if count > SUMMARY_TOP_N:
        lines.append("")
        lines.append(f"_...and {_plural(count - SUMMARY_TOP_N, 'more recipe')}_")
    lines.append("")
    lines.append("Would you like details on any of these recipes?")
    return "\n".join(lines)


def search_keywords(query: str) -> List[str]:
    words = re.findall(r"[a-z0-9']+", query.lower())
    return [w for w in words if w not in SEARCH_STOPWORDS and len(w) > 1]


class StoreRecipeHandler:
    """Extract and parse a recipe into a draft for review. Never persists."""

    def __init__(self, extractor: ContentExtractor, parser: RecipeParser):
        self.extractor = extractor
        self.parser = parser

    async def handle(self, message: IncomingMessage, ctx: HandlerContext) -> HandlerResponse:
        if not has_recipe_content(message.text):
            return HandlerResponse(message=SAVE_GUIDANCE)

        extraction = await self.extractor.extract(message.text)
        if not extraction.ok:
            logger.info("Extraction failed: %s", extraction.failure)
            return HandlerResponse.failed(extraction.failure or FailureKind.EXTRACTION_EMPTY)

        outcome = await self.parser.parse(extraction.text, transcript=extraction.source_kind == "video")
        source_type = {
            "video": SourceType.VIDEO,
            "url": SourceType.URL,
        }.get(extraction.source_kind, SourceType.TEXT)
        draft = outcome.draft.model_copy(
            update={
                "source_type": source_type,
                "source_url": extraction.source_url,
                "image_url": extraction.image_url,
                "video_url": extraction.source_url if source_type == SourceType.VIDEO else None,
                "video_platform": extraction.video_platform,
                "cookbook_name": ctx.cookbook_name,
                "cookbook_page": ctx.cookbook_page,
                "contributor_name": ctx.user.name,
            }
        )

        if not outcome.complete:
            detail = f" I'm missing the {' and '.join(outcome.missing)}."
            if outcome.reason:
                detail += f" {outcome.reason}"
            return HandlerResponse.failed(
                FailureKind.PARSE_INCOMPLETE,
                message=(
                    user_message(FailureKind.PARSE_INCOMPLETE)
                    + detail
                    + " Please send the missing part, or fill it in on the draft and confirm."
                ),
                needs_clarification=True,
                pending_recipe=draft,
            )

        return HandlerResponse(message=draft_preview(draft), needs_review=True, pending_recipe=draft)


async def commit_recipe(
    recipe: RecipeCreate, ctx: HandlerContext, embedder: Embedder
) -> HandlerResponse:
    """The confirm step of review mode: embed, then persist in one write."""
    group_id = recipe.group_id or ctx.group_id
    group = recipe_store.resolve_group(ctx.db, ctx.user, group_id, for_write=True)
    if group is None:
        logger.info("User %s cannot write to group %s", ctx.user.id, group_id)
        return HandlerResponse.failed(FailureKind.NOT_FOUND, message="That recipe group was not found.")

    try:
        embedding = await embed_recipe(embedder, recipe)
    except UpstreamUnavailable as exc:
        logger.warning("Embedding failed while saving recipe: %s", exc)
        return HandlerResponse.failed(FailureKind.UPSTREAM_ERROR)

    row = recipe_store.create_recipe(ctx.db, ctx.user, group, recipe, embedding)
    saved = RecipeRead.model_validate(row)
    logger.info("Saved recipe %s for user %s", saved.id, ctx.user.id)
    return HandlerResponse(message=saved_summary(saved), recipe=saved)


class SearchRecipeHandler:
    def __init__(self, embedder: Embedder, settings: Settings):
        self.embedder = embedder
        self.settings = settings

    async def _semantic(self, query: str, ctx: HandlerContext, limit: int) -> List[SearchResult]:
        candidates = recipe_store.list_search_candidates(ctx.db, ctx.user, ctx.group_id)
        if not candidates:
            return []
        try:
            vector = await self.embedder.embed(query)
        except UpstreamUnavailable as exc:
            logger.warning("Query embedding failed, using keyword search: %s", exc)
            return []
        return rank(vector, candidates, limit=limit, min_similarity=self.settings.search_min_similarity)

    async def search(self, query: str, ctx: HandlerContext, limit: Optional[int] = None) -> List[SearchResult]:
        limit = limit or self.settings.search_limit
        results = await self._semantic(query, ctx, limit)
        if results:
            return results
        logger.info("No semantic matches, trying keyword search")
        rows = recipe_store.keyword_search(ctx.db, ctx.user, search_keywords(query), ctx.group_id, limit=limit)
        return [SearchResult(recipe=RecipeRead.model_validate(row), similarity=0.0) for row in rows]

    async def handle(self, message: IncomingMessage, ctx: HandlerContext) -> HandlerResponse:
        query = message.text.strip()
        results = await self.search(query, ctx)
        if not results:
            return HandlerResponse(
                message=(
                    f"I couldn't find any recipes matching \"{query}\" in your collection.\n\n"
                    "Try:\n- Searching with different keywords\n"
                    "- Saving a recipe for it if you have one!"
                )
            )
        return HandlerResponse(message=search_summary(query, results), recipes=[r.recipe for r in results])


CHAT_SYSTEM_PROMPT = """You are a helpful recipe assistant in a recipe book application.

You can:
- Guide users on how to save recipes (paste a recipe, a recipe link, or a cooking video link)
- Help users find recipes they have saved ("find pasta recipes")
- Answer cooking questions, suggest substitutions and share techniques

Keep responses concise, friendly and practical. Never claim a recipe is saved unless the user confirmed it."""


class ChatResponder:
    def __init__(self, llm: LLMClient, settings: Settings):
        self.llm = llm
        self.settings = settings

    async def handle(self, message: IncomingMessage, ctx: HandlerContext) -> HandlerResponse:
        messages = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
        for turn in message.recent_history(self.settings.chat_history_context_length):
            messages.append({"role": turn.role, "content": turn.text})
        messages.append({"role": "user", "content": message.text})
        try:
            reply = await self.llm.chat_completion(messages, temperature=0.7, max_tokens=500)
        except UpstreamUnavailable as exc:
            logger.warning("Chat reply failed: %s", exc)
            return HandlerResponse.failed(FailureKind.UPSTREAM_ERROR)
        return HandlerResponse(message=reply.strip())
