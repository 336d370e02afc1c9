"""Readable-text extraction for pages without structured recipe data."""

import re
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from recipe_chat.app.services.url_parsing.parsing_utils import clean_text

BLOCK_TAGS = ["h1", "h2", "h3", "h4", "p", "li", "td", "pre", "blockquote"]


def clean_soup_for_content(soup: BeautifulSoup) -> None:
    """Remove obvious boilerplate nodes before extracting candidate content."""
    for noisy in soup.find_all(["header", "footer", "nav", "aside", "form", "iframe", "svg"]):
        noisy.decompose()
    for tag in soup.find_all(["script", "style", "noscript", "link", "meta", "template"]):
        tag.decompose()
    for hidden in soup.find_all(attrs={"aria-hidden": "true"}):
        hidden.decompose()


def find_main_node(soup: BeautifulSoup) -> Optional[Tag]:
    return (
        soup.find(attrs={"itemtype": re.compile("Recipe", re.I)})
        or soup.find(class_=re.compile(r"\b(wprm-recipe|tasty-recipes|recipe-card)\b", re.I))
        or soup.find("article")
        or soup.find("main")
        or soup.body
    )


def page_title(soup: BeautifulSoup) -> Optional[str]:
    title_tag = soup.find("h1") or soup.title
    title = clean_text(title_tag.get_text()) if title_tag else ""
    return title or None


def extract_readable_text(soup: BeautifulSoup) -> str:
    """Collect block-level text from the main node, one block per line."""
    clean_soup_for_content(soup)
    node = find_main_node(soup)
    if node is None:
        return ""

    lines: List[str] = []
    for block in node.find_all(BLOCK_TAGS):
        # Nested blocks are emitted by their innermost element
        if block.find(BLOCK_TAGS):
            continue
        text = clean_text(block.get_text(" ", strip=True))
        if not text:
            continue
        if block.name == "li":
            text = f"- {text}"
        if not lines or lines[-1] != text:
            lines.append(text)
    if not lines:
        fallback = clean_text(node.get_text(" ", strip=True))
        return fallback
    return "\n".join(lines)
