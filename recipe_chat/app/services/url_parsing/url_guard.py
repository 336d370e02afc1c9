"""SSRF guard for every outbound request made on a user's behalf.

``check_url`` is pure and inspects the URL literally. ``check_url_resolved`` also
resolves the hostname and rejects it if any address lands in a blocked range.
Neither caches; the fetcher calls the resolved check before every hop.
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Iterable, List, Optional, Union
from urllib.parse import urlsplit

from recipe_chat.app.services.url_parsing.models import FetchTarget, GuardVerdict

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
DNS_TIMEOUT_SECONDS = 5.0
ALLOWED_SCHEMES = {"http", "https"}

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Resolver = Callable[[str], Awaitable[List[str]]]

BLOCKED_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
]


def parse_fetch_target(url: str) -> Optional[FetchTarget]:
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if not parts.hostname:
        return None
    return FetchTarget(url=url, scheme=parts.scheme.lower(), host=parts.hostname.lower(), port=port)


def _as_ip(host: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(host.strip("[]").split("%", 1)[0])
    except ValueError:
        return None


def is_blocked_address(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return is_blocked_address(ip.ipv4_mapped)
    if ip.is_loopback or ip.is_link_local or ip.is_unspecified:
        return True
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


def is_private_host(host: str) -> bool:
    """Check if a host literal is localhost or an address in a blocked range."""
    hostname = host.lower().rstrip(".")
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    ip = _as_ip(hostname)
    return ip is not None and is_blocked_address(ip)


def check_url(url: str, max_length: int = MAX_URL_LENGTH) -> GuardVerdict:
    target = parse_fetch_target(url or "")
    if target is None:
        return GuardVerdict.deny("malformed_url")
    if target.scheme not in ALLOWED_SCHEMES:
        return GuardVerdict.deny("scheme_not_allowed", target)
    if is_private_host(target.host):
        return GuardVerdict.deny("private_host", target)
    if len(url) > max_length:
        return GuardVerdict.deny("url_too_long", target)
    return GuardVerdict(allowed=True, target=target)


async def default_resolver(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def _any_blocked(addresses: Iterable[str]) -> bool:
    for address in addresses:
        ip = _as_ip(address)
        if ip is None or is_blocked_address(ip):
            return True
    return False


async def check_url_resolved(
    url: str,
    resolver: Optional[Resolver] = None,
    max_length: int = MAX_URL_LENGTH,
    timeout: float = DNS_TIMEOUT_SECONDS,
) -> GuardVerdict:
    verdict = check_url(url, max_length=max_length)
    if not verdict.allowed:
        logger.info("Blocked URL (%s): %s", verdict.reason, url[:200])
        return verdict
    target = verdict.target
    if _as_ip(target.host) is not None:
        return verdict

    resolve = resolver or default_resolver
    try:
        addresses = await asyncio.wait_for(resolve(target.host), timeout=timeout)
    except asyncio.TimeoutError:
        logger.info("DNS resolution timed out for %s", target.host)
        return GuardVerdict.deny("unresolvable_host", target)
    except (OSError, UnicodeError) as exc:
        logger.info("DNS resolution failed for %s: %s", target.host, exc)
        return GuardVerdict.deny("unresolvable_host", target)
    if not addresses:
        return GuardVerdict.deny("unresolvable_host", target)
    if _any_blocked(addresses):
        logger.warning("Host %s resolves to a blocked address", target.host)
        return GuardVerdict.deny("private_host", target)
    return verdict
