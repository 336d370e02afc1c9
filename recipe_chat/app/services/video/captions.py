"""Caption transcripts and public metadata for video recipes."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
import yt_dlp
from pydantic import BaseModel

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import FailureKind
from recipe_chat.app.services.url_parsing.html_fetcher import fetch_html
from recipe_chat.app.services.url_parsing.url_guard import Resolver
from recipe_chat.app.services.video.sources import VideoSource

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
CAPTION_CONTENT_TYPES = ("application/json", "text/plain", "text/html")


class CaptionsError(Exception):
    """Captions could not be retrieved for a reason other than their absence."""

    def __init__(self, failure: FailureKind, detail: str = ""):
        super().__init__(detail or failure.value)
        self.failure = failure


class VideoMetadata(BaseModel):
    title: Optional[str] = None
    thumbnail_url: Optional[str] = None
    author_name: Optional[str] = None


class CaptionsProvider(Protocol):
    async def fetch_transcript(self, video_id: str) -> Optional[str]:
        """Return the caption text, or None when the video has no captions."""


def transcript_from_json3(payload: Dict[str, Any]) -> str:
    pieces: List[str] = []
    for event in payload.get("events") or []:
        for seg in event.get("segs") or []:
            text = (seg.get("utf8") or "").replace("\n", " ").strip()
            if text:
                pieces.append(text)
    return " ".join(pieces).strip()


def pick_caption_url(info: Dict[str, Any], languages: List[str]) -> Optional[str]:
    """Prefer uploaded subtitles over automatic captions, in language order."""
    for source in ("subtitles", "automatic_captions"):
        tracks = info.get(source) or {}
        for lang in languages:
            for fmt in tracks.get(lang) or []:
                if fmt.get("ext") == "json3" and fmt.get("url"):
                    return fmt["url"]
    return None


class YtDlpCaptionsProvider:
    def __init__(self, settings: Settings, client: httpx.AsyncClient, resolver: Optional[Resolver] = None):
        self.settings = settings
        self.client = client
        self.resolver = resolver

    def _probe(self, url: str) -> Dict[str, Any]:
        ydl_opts = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "writesubtitles": True,
            "writeautomaticsub": True,
        }
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            return ydl.extract_info(url, download=False) or {}

    async def fetch_transcript(self, video_id: str) -> Optional[str]:
        url = VideoSource(platform="youtube", video_id=video_id).canonical_url
        try:
            info = await asyncio.wait_for(
                asyncio.to_thread(self._probe, url), timeout=self.settings.captions_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Caption lookup timed out for video %s", video_id)
            raise CaptionsError(FailureKind.FETCH_TIMEOUT) from exc
        except yt_dlp.utils.DownloadError as exc:
            logger.info("yt-dlp could not read video %s: %s", video_id, exc)
            raise CaptionsError(FailureKind.FETCH_FAILED, str(exc)) from exc

        track_url = pick_caption_url(info, self.settings.caption_languages)
        if not track_url:
            logger.info("No caption track for video %s", video_id)
            return None

        result = await fetch_html(
            track_url,
            settings=self.settings,
            client=self.client,
            resolver=self.resolver,
            accept_types=CAPTION_CONTENT_TYPES,
        )
        if not result.ok:
            raise CaptionsError(result.failure or FailureKind.FETCH_FAILED, result.error_message or "")
        try:
            payload = json.loads(result.text or "")
        except json.JSONDecodeError as exc:
            logger.warning("Caption track for video %s was not json3", video_id)
            raise CaptionsError(FailureKind.UNSUPPORTED_CONTENT) from exc
        transcript = transcript_from_json3(payload) if isinstance(payload, dict) else ""
        if not transcript:
            return None
        logger.info("Extracted %d characters of captions for video %s", len(transcript), video_id)
        return transcript


async def fetch_video_metadata(
    video_id: str, *, client: httpx.AsyncClient, timeout_seconds: float = 5.0
) -> Optional[VideoMetadata]:
    """Title and thumbnail from the public oEmbed endpoint. Failures return None."""
    params = {"url": VideoSource(platform="youtube", video_id=video_id).canonical_url, "format": "json"}
    try:
        resp = await client.get(OEMBED_URL, params=params, timeout=timeout_seconds)
    except httpx.HTTPError as exc:
        logger.info("oEmbed lookup failed for %s: %s", video_id, exc)
        return None
    if resp.status_code != 200:
        return None
    try:
        data = resp.json()
    except ValueError:
        return None
    return VideoMetadata(
        title=data.get("title"),
        thumbnail_url=data.get("thumbnail_url"),
        author_name=data.get("author_name"),
    )
