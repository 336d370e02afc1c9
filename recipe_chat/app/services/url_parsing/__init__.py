"""Safe fetching and reading of user-supplied URLs.

Every outbound request goes through the URL guard; page text comes from
schema.org JSON-LD when the page has it and from readable block text otherwise.
"""

from recipe_chat.app.services.url_parsing.html_fetcher import decode_body, fetch_html
from recipe_chat.app.services.url_parsing.models import (
    FetchResult,
    FetchTarget,
    GuardVerdict,
    ParsedRecipe,
)
from recipe_chat.app.services.url_parsing.url_guard import (
    check_url,
    check_url_resolved,
    is_private_host,
    parse_fetch_target,
)

__all__ = [
    # Models
    "FetchResult",
    "FetchTarget",
    "GuardVerdict",
    "ParsedRecipe",
    # Guard
    "check_url",
    "check_url_resolved",
    "is_private_host",
    "parse_fetch_target",
    # Fetching
    "decode_body",
    "fetch_html",
]
