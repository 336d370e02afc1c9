import httpx
import pytest

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import FailureKind
from recipe_chat.app.services.url_parsing.html_fetcher import decode_body, fetch_html

from conftest import RecordingTransport, public_resolver


@pytest.fixture
def fetch_settings():
    return Settings(FETCH_MAX_REDIRECTS=3, FETCH_MAX_BYTES=1024, _env_file=None)


@pytest.mark.asyncio
async def test_fetch_returns_page_text(fetch_settings):
    transport = RecordingTransport(
        lambda request: httpx.Response(
            200, headers={"content-type": "text/html; charset=utf-8"}, content=b"<html><body>Hi</body></html>"
        )
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html(
            "https://example.com/recipe", settings=fetch_settings, client=client, resolver=public_resolver
        )
    assert result.ok is True
    assert result.status_code == 200
    assert "Hi" in result.text
    assert result.final_url == "https://example.com/recipe"


@pytest.mark.asyncio
async def test_redirect_to_private_host_refused_before_second_request(fetch_settings):
    def handler(request):
        return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data/"})

    transport = RecordingTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html(
            "https://example.com/recipe", settings=fetch_settings, client=client, resolver=public_resolver
        )
    assert result.ok is False
    assert result.failure == FailureKind.UNSAFE_SOURCE
    assert len(transport.requests) == 1
    assert transport.requests[0].url.host == "example.com"


@pytest.mark.asyncio
async def test_redirect_to_host_resolving_inside_is_refused(fetch_settings):
    async def resolver(host):
        return ["10.0.0.5"] if host == "internal.example" else ["93.184.216.34"]

    transport = RecordingTransport(
        lambda request: httpx.Response(301, headers={"location": "https://internal.example/admin"})
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html(
            "https://example.com/recipe", settings=fetch_settings, client=client, resolver=resolver
        )
    assert result.failure == FailureKind.UNSAFE_SOURCE
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_relative_redirect_followed(fetch_settings):
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(302, headers={"location": "/new"})
        return httpx.Response(200, headers={"content-type": "text/html"}, content=b"<p>moved</p>")

    transport = RecordingTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/old", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.ok is True
    assert result.final_url == "https://example.com/new"
    assert result.redirects == ["https://example.com/new"]


@pytest.mark.asyncio
async def test_too_many_redirects(fetch_settings):
    transport = RecordingTransport(lambda request: httpx.Response(302, headers={"location": "/loop"}))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/loop", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.ok is False
    assert result.failure == FailureKind.FETCH_FAILED
    assert len(transport.requests) == fetch_settings.fetch_max_redirects + 1


@pytest.mark.asyncio
async def test_error_status_and_content_type(fetch_settings):
    transport = RecordingTransport(lambda request: httpx.Response(403, headers={"content-type": "text/html"}))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/a", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.failure == FailureKind.HTTP_STATUS
    assert result.status_code == 403

    for code in (300, 304):
        transport = RecordingTransport(
            lambda request, code=code: httpx.Response(code, headers={"content-type": "text/html"}, text="<p>cached</p>")
        )
        async with httpx.AsyncClient(transport=transport) as client:
            result = await fetch_html("https://example.com/a", settings=fetch_settings, client=client, resolver=public_resolver)
        assert result.ok is False
        assert result.failure == FailureKind.HTTP_STATUS
        assert result.status_code == code

    transport = RecordingTransport(
        lambda request: httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF")
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/a.pdf", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.failure == FailureKind.UNSUPPORTED_CONTENT


@pytest.mark.asyncio
async def test_timeout_and_empty_body(fetch_settings):
    def slow(request):
        raise httpx.ReadTimeout("too slow", request=request)

    async with httpx.AsyncClient(transport=RecordingTransport(slow)) as client:
        result = await fetch_html("https://example.com/", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.failure == FailureKind.FETCH_TIMEOUT

    transport = RecordingTransport(lambda request: httpx.Response(200, headers={"content-type": "text/html"}, content=b"  "))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.failure == FailureKind.EMPTY_BODY


@pytest.mark.asyncio
async def test_body_capped_at_max_bytes(fetch_settings):
    transport = RecordingTransport(
        lambda request: httpx.Response(200, headers={"content-type": "text/html"}, content=b"x" * 5000)
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await fetch_html("https://example.com/", settings=fetch_settings, client=client, resolver=public_resolver)
    assert result.ok is True
    assert len(result.text) == fetch_settings.fetch_max_bytes


def test_decode_body_uses_meta_charset():
    html = '<html><head><meta charset="iso-8859-1"></head><body>Crème brûlée</body></html>'.encode("iso-8859-1")
    assert "Crème brûlée" in decode_body(html, "text/html")
    assert decode_body("café".encode("utf-8"), "text/html; charset=utf-8") == "café"
