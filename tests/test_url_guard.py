import asyncio

import pytest

from recipe_chat.app.services.url_parsing.url_guard import (
    check_url,
    check_url_resolved,
    is_private_host,
    parse_fetch_target,
)


@pytest.mark.parametrize(
    "url",
    [
        "http://169.254.169.254/latest/meta-data/",
        "https://localhost/recipe",
        "https://127.0.0.1:8080/recipe",
        "https://10.1.2.3/recipe",
        "https://172.16.0.5/recipe",
        "https://192.168.1.10/recipe",
        "https://[::1]/recipe",
        "https://[fe80::1]/recipe",
        "https://[::ffff:127.0.0.1]/recipe",
        "https://0.0.0.0/",
        "https://api.localhost/",
    ],
)
def test_private_hosts_denied_for_every_scheme(url):
    verdict = check_url(url)
    assert verdict.allowed is False
    assert verdict.reason == "private_host"


def test_public_https_allowed():
    verdict = check_url("https://example.com/recipe")
    assert verdict.allowed is True
    assert verdict.target.host == "example.com"
    assert verdict.target.scheme == "https"


@pytest.mark.parametrize("url", ["ftp://example.com/recipe", "file:///etc/passwd", "javascript:alert(1)"])
def test_non_http_schemes_denied(url):
    verdict = check_url(url)
    assert verdict.allowed is False
    assert verdict.reason in {"scheme_not_allowed", "malformed_url"}


def test_overlong_url_denied():
    url = "https://example.com/" + "a" * 2100
    verdict = check_url(url)
    assert verdict.allowed is False
    assert verdict.reason == "url_too_long"


def test_malformed_url_denied():
    assert check_url("not a url").reason == "malformed_url"
    assert check_url("").allowed is False
    assert parse_fetch_target("https://example.com:notaport/") is None


def test_is_private_host_literals():
    assert is_private_host("LOCALHOST")
    assert is_private_host("100.64.0.1")
    assert not is_private_host("8.8.8.8")
    assert not is_private_host("example.com")


@pytest.mark.asyncio
async def test_resolved_check_rejects_hostname_pointing_inside():
    async def resolver(host):
        return ["93.184.216.34", "10.0.0.7"]

    verdict = await check_url_resolved("https://innocent.example/recipe", resolver=resolver)
    assert verdict.allowed is False
    assert verdict.reason == "private_host"


@pytest.mark.asyncio
async def test_resolved_check_allows_public_addresses():
    calls = []

    async def resolver(host):
        calls.append(host)
        return ["93.184.216.34"]

    verdict = await check_url_resolved("https://example.com/recipe", resolver=resolver)
    assert verdict.allowed is True
    assert calls == ["example.com"]


@pytest.mark.asyncio
async def test_resolution_failure_is_denied():
    async def resolver(host):
        raise OSError("Name or service not known")

    verdict = await check_url_resolved("https://does-not-exist.example/", resolver=resolver)
    assert verdict.allowed is False
    assert verdict.reason == "unresolvable_host"


@pytest.mark.asyncio
async def test_slow_resolution_is_denied():
    async def resolver(host):
        await asyncio.sleep(10)
        return ["93.184.216.34"]

    verdict = await check_url_resolved("https://slow-dns.example/", resolver=resolver, timeout=0.05)
    assert verdict.allowed is False
    assert verdict.reason == "unresolvable_host"


@pytest.mark.asyncio
async def test_ip_literal_skips_dns():
    async def resolver(host):
        raise AssertionError("resolver should not be called for IP literals")

    verdict = await check_url_resolved("https://93.184.216.34/recipe", resolver=resolver)
    assert verdict.allowed is True
