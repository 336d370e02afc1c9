"""Failure kinds and the user-facing text for each.

Components report expected negative outcomes as result models carrying a
``FailureKind``. Only the messages below ever reach a user; details go to logs.
"""

import enum
from typing import Dict


class FailureKind(str, enum.Enum):
    CLASSIFICATION_UNAVAILABLE = "classification_unavailable"
    UNSAFE_SOURCE = "unsafe_source"
    FETCH_FAILED = "fetch_failed"
    FETCH_TIMEOUT = "fetch_timeout"
    HTTP_STATUS = "http_status"
    EMPTY_BODY = "empty_body"
    UNSUPPORTED_CONTENT = "unsupported_content"
    NO_CAPTIONS = "no_captions"
    EXTRACTION_EMPTY = "extraction_empty"
    PARSE_INCOMPLETE = "parse_incomplete"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    UPSTREAM_ERROR = "upstream_error"


PASTE_HINT = "You can paste the recipe text here and I'll save it for you."

USER_MESSAGES: Dict[FailureKind, str] = {
    FailureKind.CLASSIFICATION_UNAVAILABLE: (
        "I'm not sure what you'd like to do. You can:\n"
        "- Search recipes: 'find pasta recipes'\n"
        "- Save a recipe: 'save this recipe: [recipe text or link]'\n"
        "- Ask me anything about cooking!"
    ),
    FailureKind.UNSAFE_SOURCE: "That source can't be used. Please share a public recipe link or paste the recipe instead.",
    FailureKind.FETCH_FAILED: f"I couldn't reach that page. It may be unavailable or blocking automated access. {PASTE_HINT}",
    FailureKind.FETCH_TIMEOUT: f"That page took too long to respond. {PASTE_HINT}",
    FailureKind.HTTP_STATUS: f"That page couldn't be opened. {PASTE_HINT}",
    FailureKind.EMPTY_BODY: f"That page didn't contain anything I could read. {PASTE_HINT}",
    FailureKind.UNSUPPORTED_CONTENT: f"That link doesn't point to a web page I can read. {PASTE_HINT}",
    FailureKind.NO_CAPTIONS: (
        "This video doesn't have captions I can read, so I can't pull the recipe from it. "
        "Please paste the recipe text instead."
    ),
    FailureKind.EXTRACTION_EMPTY: f"I couldn't find any recipe text there. {PASTE_HINT}",
    FailureKind.PARSE_INCOMPLETE: "I couldn't find a complete recipe yet.",
    FailureKind.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    FailureKind.UNAUTHORIZED: "Recipe not found.",
    FailureKind.NOT_FOUND: "Recipe not found.",
    FailureKind.VALIDATION_ERROR: "Invalid request payload.",
    FailureKind.UPSTREAM_ERROR: "Sorry, I encountered an error processing your message. Please try again.",
}


def user_message(kind: FailureKind) -> str:
    return USER_MESSAGES.get(kind, USER_MESSAGES[FailureKind.UPSTREAM_ERROR])


class ClassificationUnavailable(Exception):
    """The intent model could not produce a usable classification."""


class UpstreamUnavailable(Exception):
    """An external model call (chat or embeddings) failed or timed out."""
