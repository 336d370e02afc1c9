import json
import time

import httpx
import pytest
import yt_dlp

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import FailureKind
from recipe_chat.app.services.video.captions import (
    CaptionsError,
    YtDlpCaptionsProvider,
    fetch_video_metadata,
    pick_caption_url,
    transcript_from_json3,
)
from recipe_chat.app.services.video.sources import detect_video, extract_youtube_id

from conftest import RecordingTransport, public_resolver

VIDEO_ID = "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        f"https://www.youtube.com/watch?v={VIDEO_ID}",
        f"https://youtube.com/watch?feature=share&v={VIDEO_ID}",
        f"https://m.youtube.com/watch?v={VIDEO_ID}&t=42s",
        f"https://youtu.be/{VIDEO_ID}?si=abc",
        f"https://www.youtube.com/embed/{VIDEO_ID}",
        f"https://www.youtube.com/shorts/{VIDEO_ID}",
    ],
)
def test_extract_youtube_id(url):
    assert extract_youtube_id(url) == VIDEO_ID


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/channel/UC1234567890",
        f"https://notyoutube.com/watch?v={VIDEO_ID}",
        "https://example.com/recipe",
    ],
)
def test_non_video_urls(url):
    assert extract_youtube_id(url) is None
    assert detect_video(url) is None


def test_detect_video_canonical_url():
    source = detect_video(f"https://youtu.be/{VIDEO_ID}")
    assert source.platform == "youtube"
    assert source.canonical_url == f"https://www.youtube.com/watch?v={VIDEO_ID}"


def test_transcript_from_json3_joins_segments():
    payload = {
        "events": [
            {"segs": [{"utf8": "Add two cups"}, {"utf8": "\n"}]},
            {"tStartMs": 100},
            {"segs": [{"utf8": "of flour"}]},
        ]
    }
    assert transcript_from_json3(payload) == "Add two cups of flour"


def test_pick_caption_url_prefers_uploaded_subtitles():
    info = {
        "subtitles": {"en": [{"ext": "vtt", "url": "https://cdn.example/en.vtt"}, {"ext": "json3", "url": "https://cdn.example/en.json3"}]},
        "automatic_captions": {"en": [{"ext": "json3", "url": "https://cdn.example/auto.json3"}]},
    }
    assert pick_caption_url(info, ["en"]) == "https://cdn.example/en.json3"
    assert pick_caption_url({"automatic_captions": info["automatic_captions"]}, ["en"]) == "https://cdn.example/auto.json3"
    assert pick_caption_url(info, ["fr"]) is None


@pytest.fixture
def caption_settings():
    return Settings(CAPTIONS_TIMEOUT_SECONDS=1, _env_file=None)


@pytest.mark.asyncio
async def test_provider_fetches_track_through_guarded_fetcher(caption_settings, monkeypatch):
    track = {"events": [{"segs": [{"utf8": "Boil the pasta"}]}]}
    transport = RecordingTransport(
        lambda request: httpx.Response(200, headers={"content-type": "application/json"}, content=json.dumps(track))
    )
    async with httpx.AsyncClient(transport=transport) as http:
        provider = YtDlpCaptionsProvider(caption_settings, http, public_resolver)
        monkeypatch.setattr(
            provider,
            "_probe",
            lambda url: {"subtitles": {"en": [{"ext": "json3", "url": "https://cdn.example/track.json3"}]}},
        )
        transcript = await provider.fetch_transcript(VIDEO_ID)
    assert transcript == "Boil the pasta"
    assert str(transport.requests[0].url) == "https://cdn.example/track.json3"


@pytest.mark.asyncio
async def test_provider_refuses_private_caption_track(caption_settings, monkeypatch):
    transport = RecordingTransport()
    async with httpx.AsyncClient(transport=transport) as http:
        provider = YtDlpCaptionsProvider(caption_settings, http, public_resolver)
        monkeypatch.setattr(
            provider, "_probe", lambda url: {"subtitles": {"en": [{"ext": "json3", "url": "http://127.0.0.1/track"}]}}
        )
        with pytest.raises(CaptionsError) as excinfo:
            await provider.fetch_transcript(VIDEO_ID)
    assert excinfo.value.failure == FailureKind.UNSAFE_SOURCE
    assert transport.requests == []


@pytest.mark.asyncio
async def test_provider_without_track_returns_none(caption_settings, monkeypatch):
    async with httpx.AsyncClient(transport=RecordingTransport()) as http:
        provider = YtDlpCaptionsProvider(caption_settings, http, public_resolver)
        monkeypatch.setattr(provider, "_probe", lambda url: {"title": "No captions here"})
        assert await provider.fetch_transcript(VIDEO_ID) is None


@pytest.mark.asyncio
async def test_provider_maps_download_error(caption_settings, monkeypatch):
    def broken(url):
        raise yt_dlp.utils.DownloadError("Video unavailable")

    async with httpx.AsyncClient(transport=RecordingTransport()) as http:
        provider = YtDlpCaptionsProvider(caption_settings, http, public_resolver)
        monkeypatch.setattr(provider, "_probe", broken)
        with pytest.raises(CaptionsError) as excinfo:
            await provider.fetch_transcript(VIDEO_ID)
    assert excinfo.value.failure == FailureKind.FETCH_FAILED


@pytest.mark.asyncio
async def test_provider_times_out(monkeypatch):
    settings = Settings(CAPTIONS_TIMEOUT_SECONDS=0.05, _env_file=None)

    def slow(url):
        time.sleep(0.5)
        return {}

    async with httpx.AsyncClient(transport=RecordingTransport()) as http:
        provider = YtDlpCaptionsProvider(settings, http, public_resolver)
        monkeypatch.setattr(provider, "_probe", slow)
        with pytest.raises(CaptionsError) as excinfo:
            await provider.fetch_transcript(VIDEO_ID)
    assert excinfo.value.failure == FailureKind.FETCH_TIMEOUT


@pytest.mark.asyncio
async def test_fetch_video_metadata():
    def handler(request):
        assert request.url.path == "/oembed"
        return httpx.Response(200, json={"title": "Perfect Pasta", "thumbnail_url": "https://i.ytimg.com/x.jpg"})

    async with httpx.AsyncClient(transport=RecordingTransport(handler)) as http:
        meta = await fetch_video_metadata(VIDEO_ID, client=http)
    assert meta.title == "Perfect Pasta"
    assert meta.thumbnail_url == "https://i.ytimg.com/x.jpg"

    async with httpx.AsyncClient(transport=RecordingTransport(lambda request: httpx.Response(404))) as http:
        assert await fetch_video_metadata(VIDEO_ID, client=http) is None
