"""Recognize video-platform URLs and pull out a stable video id."""

import re
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}
YOUTU_BE_HOSTS = {"youtu.be", "www.youtu.be"}
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
PATH_PREFIXES = ("embed", "v", "shorts", "live")


class VideoSource(BaseModel):
    platform: str
    video_id: str

    model_config = ConfigDict(frozen=True)

    @property
    def canonical_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


def _valid(video_id: Optional[str]) -> Optional[str]:
    if video_id and VIDEO_ID_RE.match(video_id):
        return video_id
    return None


def extract_youtube_id(url: str) -> Optional[str]:
    """Return the 11-character id for watch, youtu.be, embed, v and shorts URLs."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    segments = [s for s in parts.path.split("/") if s]

    if host in YOUTU_BE_HOSTS:
        return _valid(segments[0]) if segments else None
    if host not in YOUTUBE_HOSTS:
        return None
    if segments[:1] == ["watch"]:
        return _valid((parse_qs(parts.query).get("v") or [None])[0])
    if len(segments) >= 2 and segments[0] in PATH_PREFIXES:
        return _valid(segments[1])
    return None


def detect_video(url: str) -> Optional[VideoSource]:
    video_id = extract_youtube_id(url)
    if video_id:
        return VideoSource(platform="youtube", video_id=video_id)
    return None
