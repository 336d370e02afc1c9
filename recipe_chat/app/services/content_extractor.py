"""Turn a pasted message, page link or video link into recipe-bearing text."""

import asyncio
import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import FailureKind, user_message
from recipe_chat.app.services.url_parsing.extractors.readable import extract_readable_text, page_title
from recipe_chat.app.services.url_parsing.extractors.schema_org import extract_recipe_from_schema_org
from recipe_chat.app.services.url_parsing.html_fetcher import fetch_html
from recipe_chat.app.services.url_parsing.parsing_utils import truncate_text
from recipe_chat.app.services.url_parsing.url_guard import Resolver
from recipe_chat.app.services.video.captions import (
    CaptionsError,
    CaptionsProvider,
    VideoMetadata,
    fetch_video_metadata,
)
from recipe_chat.app.services.video.sources import detect_video

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"(https?://[^\s<>\"']+)", re.I)
TRAILING_PUNCTUATION = ".,;:!?)]}"


def extract_first_url(text: str) -> Optional[str]:
    match = URL_RE.search(text or "")
    if not match:
        return None
    return match.group(1).rstrip(TRAILING_PUNCTUATION)


class ExtractionResult(BaseModel):
    ok: bool
    text: Optional[str] = None
    source_kind: str = "text"
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    video_platform: Optional[str] = None
    video_id: Optional[str] = None
    metadata: Optional[VideoMetadata] = None
    failure: Optional[FailureKind] = None
    message: Optional[str] = None

    @classmethod
    def failed(cls, failure: FailureKind, **extra) -> "ExtractionResult":
        return cls(ok=False, failure=failure, message=user_message(failure), **extra)


class ContentExtractor:
    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        captions: CaptionsProvider,
        resolver: Optional[Resolver] = None,
    ):
        self.settings = settings
        self.client = client
        self.captions = captions
        self.resolver = resolver

    async def extract(self, source: str) -> ExtractionResult:
        url = extract_first_url(source)
        if url is None:
            if not (source or "").strip():
                return ExtractionResult.failed(FailureKind.EXTRACTION_EMPTY)
            return ExtractionResult(ok=True, text=source, source_kind="text")

        video = detect_video(url)
        if video is not None:
            return await self._extract_video(url, video.platform, video.video_id)
        return await self._extract_page(url)

    async def _extract_video(self, url: str, platform: str, video_id: str) -> ExtractionResult:
        logger.info("Extracting captions for %s video %s", platform, video_id)
        common = {"source_kind": "video", "source_url": url, "video_platform": platform, "video_id": video_id}
        transcript_task = asyncio.ensure_future(self.captions.fetch_transcript(video_id))
        metadata_task = asyncio.ensure_future(
            fetch_video_metadata(
                video_id, client=self.client, timeout_seconds=self.settings.oembed_timeout_seconds
            )
        )
        try:
            transcript = await transcript_task
        except CaptionsError as exc:
            metadata_task.cancel()
            return ExtractionResult.failed(exc.failure, **common)
        except BaseException:
            metadata_task.cancel()
            raise
        metadata = await metadata_task

        if not transcript:
            return ExtractionResult.failed(FailureKind.NO_CAPTIONS, metadata=metadata, **common)

        text = truncate_text(transcript, self.settings.extract_max_chars)
        if metadata and metadata.title:
            text = f"Title: {metadata.title}\n{text}"
        return ExtractionResult(
            ok=True,
            text=text,
            metadata=metadata,
            image_url=metadata.thumbnail_url if metadata else None,
            **common,
        )

    async def _extract_page(self, url: str) -> ExtractionResult:
        fetched = await fetch_html(url, settings=self.settings, client=self.client, resolver=self.resolver)
        if not fetched.ok:
            logger.info("Fetch failed for %s: %s", url[:200], fetched.error_message)
            return ExtractionResult.failed(fetched.failure or FailureKind.FETCH_FAILED, source_kind="url", source_url=url)

        soup = BeautifulSoup(fetched.text, "lxml")
        structured = extract_recipe_from_schema_org(soup, url)
        if structured is not None:
            logger.info("Found schema.org recipe data at %s", url[:200])
            return ExtractionResult(
                ok=True,
                text=truncate_text(structured.as_labelled_text(), self.settings.extract_max_chars),
                source_kind="url",
                source_url=url,
                image_url=structured.image_url,
            )

        title = page_title(soup)
        body = extract_readable_text(soup)
        if not body.strip():
            return ExtractionResult.failed(FailureKind.EXTRACTION_EMPTY, source_kind="url", source_url=url)
        if title and not body.startswith(title):
            body = f"{title}\n{body}"
        return ExtractionResult(
            ok=True,
            text=truncate_text(body, self.settings.extract_max_chars),
            source_kind="url",
            source_url=url,
        )
