"""Guarded HTTP fetching for user-supplied URLs."""

import logging
import re
from typing import Optional, Sequence
from urllib.parse import urljoin

import httpx

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import FailureKind
from recipe_chat.app.services.url_parsing.models import FetchResult
from recipe_chat.app.services.url_parsing.url_guard import Resolver, check_url_resolved

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
HTML_CONTENT_TYPES = ("text/html", "application/xhtml", "text/plain")


def _charset_from_content_type(content_type: str) -> Optional[str]:
    if "charset=" not in content_type.lower():
        return None
    try:
        return content_type.lower().split("charset=")[1].split(";")[0].strip().strip("\"'")
    except (IndexError, AttributeError):
        return None


def decode_body(content_bytes: bytes, content_type: str) -> str:
    """Decode with the header charset, then utf-8, then any <meta charset>."""
    encoding = _charset_from_content_type(content_type) or "utf-8"
    try:
        return content_bytes.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        pass
    text = content_bytes.decode("utf-8", errors="replace")
    encoding_match = re.search(r'<meta[^>]+charset=["\']?([^"\'>\s]+)', text, re.I)
    if encoding_match:
        detected = encoding_match.group(1).lower()
        if detected != "utf-8":
            try:
                return content_bytes.decode(detected)
            except (UnicodeDecodeError, LookupError):
                pass
    return text


def _failure(url: str, failure: FailureKind, message: str, **extra) -> FetchResult:
    return FetchResult(ok=False, url=url, failure=failure, error_message=message, **extra)


async def fetch_html(
    url: str,
    *,
    settings: Settings,
    client: httpx.AsyncClient,
    resolver: Optional[Resolver] = None,
    accept_types: Sequence[str] = HTML_CONTENT_TYPES,
) -> FetchResult:
    """Fetch a page without ever letting a redirect reach a blocked host.

    Redirects are followed by hand so that each hop goes through the URL guard
    before it is requested. The body is streamed and cut off at
    ``settings.fetch_max_bytes``.
    """
    headers = {
        "User-Agent": settings.scraper_user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }
    timeout = httpx.Timeout(
        settings.fetch_timeout_seconds,
        read=settings.fetch_timeout_seconds,
        connect=settings.fetch_connect_timeout_seconds,
    )

    current = url
    redirects = []
    for _ in range(settings.fetch_max_redirects + 1):
        verdict = await check_url_resolved(
            current,
            resolver=resolver,
            max_length=settings.url_max_length,
            timeout=settings.fetch_connect_timeout_seconds,
        )
        if not verdict.allowed:
            return _failure(url, FailureKind.UNSAFE_SOURCE, verdict.reason or "blocked", redirects=redirects)

        try:
            async with client.stream(
                "GET", current, headers=headers, timeout=timeout, follow_redirects=False
            ) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        return _failure(
                            url,
                            FailureKind.FETCH_FAILED,
                            "Redirect without location",
                            status_code=response.status_code,
                        )
                    current = urljoin(current, location)
                    redirects.append(current)
                    logger.info("Following redirect to %s", current[:200])
                    continue

                content_type = response.headers.get("content-type", "")
                if not response.is_success:
                    logger.info("Fetch of %s returned status %s", current[:200], response.status_code)
                    return _failure(
                        url,
                        FailureKind.HTTP_STATUS,
                        f"Site returned status {response.status_code}.",
                        status_code=response.status_code,
                        content_type=content_type,
                        redirects=redirects,
                    )
                if content_type and not any(t in content_type.lower() for t in accept_types):
                    return _failure(
                        url,
                        FailureKind.UNSUPPORTED_CONTENT,
                        f"Unsupported content type: {content_type}",
                        status_code=response.status_code,
                        content_type=content_type,
                        redirects=redirects,
                    )

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= settings.fetch_max_bytes:
                        logger.info("Body of %s truncated at %d bytes", current[:200], settings.fetch_max_bytes)
                        del body[settings.fetch_max_bytes :]
                        break
        except httpx.TimeoutException as exc:
            logger.info("Timed out fetching %s: %s", current[:200], exc)
            return _failure(url, FailureKind.FETCH_TIMEOUT, "Timed out fetching the page.", redirects=redirects)
        except httpx.HTTPError as exc:
            logger.info("Network error fetching %s: %s", current[:200], exc)
            return _failure(url, FailureKind.FETCH_FAILED, "Network error.", redirects=redirects)

        text = decode_body(bytes(body), content_type)
        if not text.strip():
            return _failure(
                url,
                FailureKind.EMPTY_BODY,
                "Empty response body.",
                status_code=response.status_code,
                content_type=content_type,
                redirects=redirects,
            )
        return FetchResult(
            ok=True,
            url=url,
            final_url=current,
            status_code=response.status_code,
            content_type=content_type,
            text=text,
            redirects=redirects,
        )

    logger.info("Too many redirects for %s", url[:200])
    return _failure(url, FailureKind.FETCH_FAILED, "Too many redirects.", redirects=redirects)
