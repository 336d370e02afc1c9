"""Structure free text into a recipe draft.

The deterministic labelled-text parser runs first. The LLM is asked only when it
leaves required fields empty, and its answer never overwrites a field the
deterministic pass already filled.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from recipe_chat.app.db.models import SourceType
from recipe_chat.app.schemas.recipe import RecipeDraft, normalize_tags
from recipe_chat.app.services.errors import FailureKind, UpstreamUnavailable
from recipe_chat.app.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SECTION_ALIASES: Dict[str, Optional[str]] = {
    "title": "title",
    "name": "title",
    "ingredients": "ingredients",
    "ingredient list": "ingredients",
    "steps": "steps",
    "instructions": "steps",
    "directions": "steps",
    "method": "steps",
    "preparation": "steps",
    "tags": "tags",
    "categories": "tags",
    # Recognized so their content is not mistaken for another section
    "description": None,
    "notes": None,
    "servings": None,
    "serves": None,
    "yield": None,
    "prep time": None,
    "cook time": None,
    "total time": None,
}
HEADER_RE = re.compile(r"^\s*(?:#+\s*)?\**\s*([A-Za-z][A-Za-z ]{1,20}?)\s*\**\s*:\s*\**\s*(.*)$")
BARE_HEADER_RE = re.compile(r"^\s*(?:#+\s*)?\**\s*([A-Za-z][A-Za-z ]{1,20}?)\s*\**\s*$")
LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•–]\s+|\d+\s*[.)](?:\s+|$)|step\s*\d+\s*[:.)-]?\s*)", re.I)
MAX_TITLE_CHARS = 120

INTENT_ONLY_WORDS = {
    "a", "add", "an", "can", "collection", "could", "do", "for", "have", "help", "here", "here's",
    "i", "i'd", "i'm", "it", "keep", "like", "me", "my", "new", "one", "please", "recipe",
    "recipes", "save", "store", "that", "the", "this", "to", "want", "would", "you",
}

FISH_KEYWORDS = [
    "salmon", "tuna", "cod", "halibut", "tilapia", "trout", "bass",
    "mackerel", "sardine", "anchovy", "anchovies", "fish", "swordfish", "mahi",
]
SEAFOOD_KEYWORDS = [
    "shrimp", "prawn", "crab", "lobster", "scallop", "mussel",
    "clam", "oyster", "squid", "octopus", "calamari",
]
BEEF_KEYWORDS = ["beef", "steak", "brisket", "ribeye", "sirloin"]
PORK_KEYWORDS = ["pork", "bacon", "ham", "sausage", "prosciutto", "pancetta", "chorizo"]
LAMB_KEYWORDS = ["lamb", "mutton"]
OTHER_MEAT_KEYWORDS = ["chicken", "turkey", "duck", "meat"]
ANIMAL_PRODUCT_KEYWORDS = [
    "milk", "cream", "cheese", "butter", "egg", "honey", "yogurt",
    "ghee", "whey", "casein", "gelatin",
]

EXTRACTION_SYSTEM_PROMPT = (
    "You are a recipe extraction assistant. Extract structured recipe information from the user's text.\n\n"
    "Return JSON with: title (string), ingredients (array of strings with quantities), "
    "steps (array of strings, in order), tags (array of lowercase strings), "
    "incomplete (boolean), reason (string|null).\n\n"
    "Rules:\n"
    "- Extract ONLY information that is explicitly provided. Do NOT invent ingredients or steps.\n"
    "- If the title is missing, use a short descriptive name based on the ingredients.\n"
    "- If ingredients or steps are missing, leave that array empty and set incomplete=true with a reason.\n"
    "- Tags are simple: cuisine, meal type, dietary, main ingredient.\n"
)
TRANSCRIPT_RULES = (
    "The text is a spoken video transcript. Use the FIRST quantity the speaker states, "
    "turn ranges into 'a-b' form, and ignore filler words.\n"
)
SCHEMA_HINT = (
    '{"title": string, "ingredients": [string], "steps": [string], "tags": [string], '
    '"incomplete": boolean, "reason": string|null}'
)


class ParseOutcome(BaseModel):
    complete: bool
    draft: RecipeDraft
    missing: List[str] = Field(default_factory=list)
    used_llm: bool = False
    failure: Optional[FailureKind] = None
    reason: Optional[str] = None


def _strip_marker(line: str) -> str:
    return LIST_MARKER_RE.sub("", line, count=1).strip()


def _split_inline(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _match_header(line: str) -> Optional[Tuple[Optional[str], str]]:
    """Return (section, inline remainder) if the line is a known section label."""
    match = HEADER_RE.match(line)
    if match:
        label = match.group(1).strip().lower()
        if label in SECTION_ALIASES:
            return SECTION_ALIASES[label], match.group(2).strip().strip("*").strip()
    match = BARE_HEADER_RE.match(line)
    if match:
        label = match.group(1).strip().lower()
        if label in SECTION_ALIASES and SECTION_ALIASES[label] in {"ingredients", "steps", "tags"}:
            return SECTION_ALIASES[label], ""
    return None


def parse_labelled_text(text: str) -> RecipeDraft:
    title = ""
    ingredients: List[str] = []
    steps: List[str] = []
    tags: List[str] = []
    section: Optional[str] = None
    seen_any_header = False
    first_line: Optional[str] = None

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        header = _match_header(line)
        if header is not None:
            seen_any_header = True
            section, inline = header
            if section == "title":
                title = title or inline
                section = None
            elif section == "ingredients" and inline:
                ingredients.extend(_split_inline(inline))
            elif section == "steps" and inline:
                steps.append(_strip_marker(inline))
            elif section == "tags" and inline:
                tags.extend(_split_inline(inline))
            continue

        if first_line is None and not seen_any_header:
            first_line = line
            continue

        item = _strip_marker(line)
        if not item:
            continue
        if section == "ingredients":
            ingredients.append(item)
        elif section == "steps":
            steps.append(item)
        elif section == "tags":
            tags.extend(_split_inline(item))

    if not title and first_line and len(first_line) <= MAX_TITLE_CHARS:
        title = _strip_marker(first_line).strip("#* ").strip()

    return RecipeDraft(
        title=title,
        ingredients=ingredients,
        steps=[s for s in steps if s],
        tags=tags,
        source_type=SourceType.TEXT,
    )


def has_recipe_content(text: str) -> bool:
    """False when the message only says the user wants to save something."""
    if re.search(r"https?://", text or "", re.I):
        return True
    if "\n" in (text or "").strip():
        return True
    words = re.findall(r"[a-z']+", (text or "").lower())
    remaining = [w for w in words if w not in INTENT_ONLY_WORDS]
    return len(remaining) >= 2


def _mentions(text: str, keywords: List[str]) -> bool:
    return any(re.search(rf"\b{re.escape(kw)}(?:s|es)?\b", text) for kw in keywords)


def auto_tags(ingredients: List[str]) -> List[str]:
    """Protein and diet tags inferred from ingredient text."""
    if not ingredients:
        return []
    text = " ".join(ingredients).lower()
    tags: List[str] = []
    if _mentions(text, FISH_KEYWORDS):
        tags.append("fish")
    if _mentions(text, SEAFOOD_KEYWORDS):
        tags.append("seafood")
    if _mentions(text, ["chicken"]):
        tags.append("chicken")
    if _mentions(text, BEEF_KEYWORDS):
        tags.append("beef")
    if _mentions(text, PORK_KEYWORDS):
        tags.append("pork")
    if _mentions(text, LAMB_KEYWORDS):
        tags.append("lamb")

    meat = FISH_KEYWORDS + SEAFOOD_KEYWORDS + BEEF_KEYWORDS + PORK_KEYWORDS + LAMB_KEYWORDS + OTHER_MEAT_KEYWORDS
    if not _mentions(text, meat):
        tags.append("vegetarian")
        if not _mentions(text, ANIMAL_PRODUCT_KEYWORDS):
            tags.append("vegan")
    return tags


def merge_auto_tags(existing: List[str], ingredients: List[str]) -> List[str]:
    return normalize_tags(list(existing) + auto_tags(ingredients))


def _coerce_lines(value) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    lines = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("text") or item.get("name") or ""
        cleaned = _strip_marker(str(item))
        if cleaned:
            lines.append(cleaned)
    return lines


def merge_drafts(primary: RecipeDraft, fallback: Dict) -> RecipeDraft:
    """Fill empty fields of ``primary`` from the model's answer."""
    updates = {}
    if not primary.title and isinstance(fallback.get("title"), str):
        updates["title"] = fallback["title"]
    if not primary.ingredients:
        updates["ingredients"] = _coerce_lines(fallback.get("ingredients"))
    if not primary.steps:
        updates["steps"] = _coerce_lines(fallback.get("steps"))
    updates["tags"] = list(primary.tags) + _coerce_lines(fallback.get("tags"))
    return RecipeDraft.model_validate(primary.model_dump() | updates)


class RecipeParser:
    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm

    async def _llm_extract(self, text: str, transcript: bool) -> Optional[Dict]:
        system = EXTRACTION_SYSTEM_PROMPT + (TRANSCRIPT_RULES if transcript else "")
        try:
            return await self.llm.chat_json(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": text},
                ],
                schema_hint=SCHEMA_HINT,
                temperature=0.3,
                max_tokens=3000,
            )
        except UpstreamUnavailable as exc:
            logger.warning("LLM recipe extraction unavailable: %s", exc)
            return None

    async def parse(self, text: str, *, use_llm: bool = True, transcript: bool = False) -> ParseOutcome:
        draft = parse_labelled_text(text)
        used_llm = False
        reason = None

        if not draft.is_complete() and use_llm and self.llm is not None and self.llm.configured:
            logger.info("Labelled parse missing %s, asking LLM", draft.missing_fields())
            extracted = await self._llm_extract(text, transcript)
            if extracted is not None:
                used_llm = True
                draft = merge_drafts(draft, extracted)
                if extracted.get("incomplete") and isinstance(extracted.get("reason"), str):
                    reason = extracted["reason"]

        draft = draft.model_copy(update={"tags": merge_auto_tags(draft.tags, draft.ingredients)})
        missing = draft.missing_fields()
        if missing:
            return ParseOutcome(
                complete=False,
                draft=draft,
                missing=missing,
                used_llm=used_llm,
                failure=FailureKind.PARSE_INCOMPLETE,
                reason=reason,
            )
        return ParseOutcome(complete=True, draft=draft, used_llm=used_llm)
