"""robots.txt / sitemap based URL discovery for seeding the knowledge base."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from collections import deque
from typing import Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
from loguru import logger

from kbcrawler.config import DISCOVERY_MAX_URLS, DISCOVERY_TIMEOUT_SEC, DISCOVERY_USER_AGENT
from kbcrawler.security.url_guard import UrlNotAllowedError, validate_url

MAX_SITEMAPS = 10


def _same_site(host: str, other: str) -> bool:
    return host.removeprefix("www.") == other.removeprefix("www.")


def sitemaps_from_robots(robots_text: str) -> list[str]:
    found = []
    for line in (robots_text or "").splitlines():
        key, _, value = line.partition(":")
        if key.strip().lower() == "sitemap" and value.strip():
            found.append(value.strip())
    return list(dict.fromkeys(found))


def parse_sitemap(xml_text: str) -> tuple[list[str], list[str]]:
    """Return (page urls, nested sitemap urls) from a sitemap or sitemap index."""
    root = ET.fromstring(xml_text)
    locs = [(el.text or "").strip() for el in root.iter() if el.tag.endswith("loc")]
    locs = [loc for loc in locs if loc]
    if root.tag.endswith("sitemapindex"):
        return [], locs
    return locs, []


async def _get_text(client: httpx.AsyncClient, url: str) -> Optional[str]:
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning(f"discovery fetch failed for {url}: {exc}")
        return None
    if response.status_code != 200:
        logger.debug(f"discovery got HTTP {response.status_code} for {url}")
        return None
    return response.text


async def discover_urls(
    url: str,
    limit: Optional[int] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[str]:
    """Same-host page URLs listed in the site's sitemaps and allowed by robots.txt."""
    start = validate_url(url)
    parsed = urlparse(start)
    base = f"{parsed.scheme}://{parsed.netloc}"
    host = (parsed.hostname or "").lower()
    cap = max(1, int(limit or DISCOVERY_MAX_URLS))

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(float(DISCOVERY_TIMEOUT_SEC), connect=min(10.0, float(DISCOVERY_TIMEOUT_SEC))),
        follow_redirects=True,
        headers={"User-Agent": DISCOVERY_USER_AGENT},
        transport=transport,
    ) as client:
        robots_text = await _get_text(client, f"{base}/robots.txt") or ""
        robots = RobotFileParser()
        robots.parse(robots_text.splitlines())

        queue = deque(sitemaps_from_robots(robots_text) or [f"{base}/sitemap.xml"])
        seen_sitemaps: set[str] = set()
        discovered: list[str] = []
        while queue and len(seen_sitemaps) < MAX_SITEMAPS and len(discovered) < cap:
            sitemap_url = queue.popleft()
            if sitemap_url in seen_sitemaps:
                continue
            seen_sitemaps.add(sitemap_url)
            xml_text = await _get_text(client, sitemap_url)
            if not xml_text:
                continue
            try:
                pages, nested = parse_sitemap(xml_text)
            except ET.ParseError as exc:
                logger.warning(f"unparseable sitemap {sitemap_url}: {exc}")
                continue
            queue.extend(nested)
            for loc in pages:
                try:
                    candidate = validate_url(loc)
                except UrlNotAllowedError:
                    continue
                if not _same_site((urlparse(candidate).hostname or "").lower(), host):
                    continue
                if not robots.can_fetch(DISCOVERY_USER_AGENT, candidate):
                    continue
                if candidate not in discovered:
                    discovered.append(candidate)
                if len(discovered) >= cap:
                    break

    logger.info(f"discovered {len(discovered)} urls from {len(seen_sitemaps)} sitemaps for {host}")
    return discovered
