"""Schema.org JSON-LD recipe extraction."""

import json
import logging
from typing import Iterator, Optional

from bs4 import BeautifulSoup

from recipe_chat.app.services.url_parsing.models import ParsedRecipe
from recipe_chat.app.services.url_parsing.parsing_utils import (
    clean_text,
    coerce_keywords,
    extract_image,
    extract_ingredient_lines,
    extract_instruction_text,
)

logger = logging.getLogger(__name__)


def _candidates(data) -> Iterator[dict]:
    if isinstance(data, list):
        for item in data:
            yield from _candidates(item)
    elif isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _candidates(graph)
        yield data


def _is_recipe(obj: dict) -> bool:
    obj_type = obj.get("@type")
    types = [obj_type] if isinstance(obj_type, str) else obj_type or []
    return any(str(t).lower() == "recipe" for t in types)


def extract_recipe_from_schema_org(soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
    """Return the first complete Recipe object embedded as JSON-LD, if any."""
    scripts = soup.find_all("script", attrs={"type": "application/ld+json"})
    logger.debug("Found %d JSON-LD script blocks", len(scripts))

    for idx, script in enumerate(scripts):
        raw_json = script.string or script.get_text()
        if not raw_json:
            continue
        try:
            data = json.loads(raw_json)
        except json.JSONDecodeError as exc:
            logger.info("JSON-LD block %d failed to parse: %s", idx, exc)
            continue

        for obj in _candidates(data):
            if not _is_recipe(obj):
                continue
            title = clean_text(obj.get("name") or "")
            ingredients = extract_ingredient_lines(obj.get("recipeIngredient") or [])
            steps = extract_instruction_text(obj.get("recipeInstructions") or [])
            if not (title and ingredients and steps):
                logger.info(
                    "Skipping incomplete JSON-LD recipe: title=%s, ingredients=%d, steps=%d",
                    bool(title),
                    len(ingredients),
                    len(steps),
                )
                continue

            keywords = []
            for key in ("keywords", "recipeCategory", "recipeCuisine"):
                value = obj.get(key)
                if isinstance(value, list):
                    keywords.extend(value)
                elif value:
                    keywords.append(value)

            return ParsedRecipe(
                title=title,
                description=clean_text(obj.get("description") or "") or None,
                source_url=url,
                image_url=extract_image(obj.get("image")),
                tags=coerce_keywords(keywords),
                ingredients=ingredients,
                steps=steps,
            )
    return None
