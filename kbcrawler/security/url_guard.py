"""Crawl target validation: scheme allowlist and private-network blocking."""
from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

from kbcrawler.config import CRAWL_BLOCK_PRIVATE_NETWORKS

ALLOWED_SCHEMES = {"http", "https"}
BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}
BLOCKED_SUFFIXES = (".local", ".internal", ".localhost", ".lan", ".home.arpa")


class UrlNotAllowedError(ValueError):
    """Raised when a URL is malformed or points at a non-public host."""


@dataclass
class UrlInfo:
    url: str
    scheme: str
    host: str
    is_ip: bool


def is_public_ip(ip_text: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_text)
    except ValueError:
        return False
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def parse_url(url: str) -> UrlInfo:
    raw = (url or "").strip()
    parsed = urlparse(raw)
    host = (parsed.hostname or "").strip().lower().rstrip(".")
    try:
        ipaddress.ip_address(host)
        is_ip = True
    except ValueError:
        is_ip = False
    normalized = parsed._replace(fragment="").geturl() if parsed.scheme else raw
    return UrlInfo(url=normalized, scheme=(parsed.scheme or "").lower(), host=host, is_ip=is_ip)


def validate_url(url: str) -> str:
    """Return the normalized URL or raise UrlNotAllowedError.

    Only syntactic checks happen here; DNS resolution is left to UrlGuard.check
    so that adding a URL never blocks on the network.
    """
    info = parse_url(url)
    if not info.url:
        raise UrlNotAllowedError("Invalid URL: empty")
    if info.scheme not in ALLOWED_SCHEMES:
        raise UrlNotAllowedError(f"Invalid URL: unsupported scheme '{info.scheme or 'none'}'")
    if not info.host:
        raise UrlNotAllowedError("Invalid URL: missing host")
    if info.host in BLOCKED_HOSTNAMES or info.host.endswith(BLOCKED_SUFFIXES):
        raise UrlNotAllowedError(f"Invalid URL: internal host '{info.host}' is not allowed")
    if info.is_ip and not is_public_ip(info.host):
        raise UrlNotAllowedError(f"Invalid URL: private address '{info.host}' is not allowed")
    return info.url


def resolves_to_private_network(host: str) -> bool:
    """True when any resolved address of host is non-public.

    Resolution failures return False: an unresolvable host is a crawl-time DNS
    error, not a guard rejection.
    """
    try:
        addresses = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError, OSError):
        return False
    return any(not is_public_ip(info[4][0]) for info in addresses)


class UrlGuard:
    """Validates urls and rejects hosts that resolve into private networks.

    Resolution verdicts are cached per host for one crawl run; call reset()
    when a run starts so a host re-pointed at a private address is caught.
    """

    def __init__(self, resolve_dns: bool = CRAWL_BLOCK_PRIVATE_NETWORKS):
        self.resolve_dns = resolve_dns
        self._host_cache: dict[str, bool] = {}

    def reset(self) -> None:
        self._host_cache.clear()

    async def check(self, url: str) -> str:
        normalized = validate_url(url)
        if not self.resolve_dns:
            return normalized
        info = parse_url(normalized)
        if info.is_ip:
            return normalized
        if info.host not in self._host_cache:
            self._host_cache[info.host] = await asyncio.to_thread(resolves_to_private_network, info.host)
        if self._host_cache[info.host]:
            raise UrlNotAllowedError(f"Invalid URL: host '{info.host}' resolves to a private network")
        return normalized
