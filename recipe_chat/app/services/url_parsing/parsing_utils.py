"""General text helpers for reading recipes out of web pages."""

import html
import re
from typing import List, Optional, Sequence


def clean_text(text: str) -> str:
    """Normalize whitespace and unescape HTML entities."""
    return re.sub(r"\s+", " ", html.unescape(text or "")).strip()


def truncate_text(text: str, max_chars: int) -> str:
    """Cut text at ``max_chars``, backing up to the last line break when one is close."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    newline = cut.rfind("\n")
    if newline > max_chars * 0.8:
        cut = cut[:newline]
    return cut.rstrip()


def extract_image(value) -> Optional[str]:
    """Extract image URL from the string, list or ImageObject shapes schema.org allows."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        url = value.get("url")
        return url if isinstance(url, str) else None
    if isinstance(value, list):
        for item in value:
            found = extract_image(item)
            if found:
                return found
    return None


def extract_ingredient_lines(value) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    lines = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("text") or item.get("name") or ""
        cleaned = clean_text(str(item))
        if cleaned:
            lines.append(cleaned)
    return lines


def extract_instruction_text(instructions) -> List[str]:
    """Extract step text from strings, HowToStep objects and HowToSection groups."""
    steps: List[str] = []
    if isinstance(instructions, list):
        for entry in instructions:
            if isinstance(entry, str):
                cleaned = clean_text(entry)
                if cleaned:
                    steps.append(cleaned)
            elif isinstance(entry, dict):
                if entry.get("itemListElement"):
                    steps.extend(extract_instruction_text(entry["itemListElement"]))
                    continue
                cleaned = clean_text(entry.get("text") or entry.get("description") or "")
                if cleaned:
                    steps.append(cleaned)
    elif isinstance(instructions, str):
        for line in re.split(r"\n+", instructions):
            cleaned = clean_text(line)
            if cleaned:
                steps.append(cleaned)
    return steps


def coerce_keywords(value) -> List[str]:
    """Flatten keywords/category/cuisine values into short tags."""
    if not value:
        return []
    raw_tags: List[str] = []
    if isinstance(value, str):
        raw_tags = [kw.strip() for kw in value.split(",") if kw.strip()]
    elif isinstance(value, Sequence):
        for item in value:
            if isinstance(item, str):
                raw_tags.extend(kw.strip() for kw in item.split(",") if kw.strip())

    seen = set()
    tags = []
    for tag in raw_tags:
        lowered = tag.lower()
        # Long keyword phrases are usually SEO variations of the title
        if len(lowered.split()) > 3 or lowered in seen:
            continue
        seen.add(lowered)
        tags.append(lowered)
    return tags
