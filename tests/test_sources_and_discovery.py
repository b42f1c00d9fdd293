import json
import tempfile
import unittest
from pathlib import Path

import httpx

from kbcrawler.crawler.discovery import discover_urls, parse_sitemap, sitemaps_from_robots
from kbcrawler.crawler.sources import SourceRegistry
from kbcrawler.security.url_guard import UrlNotAllowedError

ROBOTS = """User-agent: *
Disallow: /private
Sitemap: https://example.com/sitemap.xml
"""

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/a</loc></url>
  <url><loc>https://www.example.com/b</loc></url>
  <url><loc>https://example.com/private/c</loc></url>
  <url><loc>https://other.org/d</loc></url>
  <url><loc>http://localhost/e</loc></url>
  <url><loc>https://example.com/a</loc></url>
</urlset>
"""

SITEMAP_INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://example.com/sitemap-posts.xml</loc></sitemap>
</sitemapindex>
"""


def _transport(routes):
    def handler(request):
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=body)

    return httpx.MockTransport(handler)


class SourceRegistryTests(unittest.TestCase):
    def test_add_rejects_internal_urls(self):
        registry = SourceRegistry()
        with self.assertRaises(UrlNotAllowedError):
            registry.add("http://localhost:8080/", "Local")

    def test_add_is_keyed_by_url(self):
        registry = SourceRegistry()
        registry.add("https://bitcoin.org/en/", "Bitcoin")
        registry.add("https://bitcoin.org/en/", "Bitcoin.org", "Project site")
        self.assertEqual(len(registry), 1)
        self.assertEqual(registry.get("https://bitcoin.org/en/").name, "Bitcoin.org")

    def test_replace_keeps_last_crawl_and_filters_disabled(self):
        registry = SourceRegistry()
        registry.add("https://bitcoin.org/en/", "Bitcoin")
        registry.mark_crawled(["https://bitcoin.org/en/"], when="2026-01-01T00:00:00+00:00")
        sources = registry.replace(
            [
                {"url": "https://bitcoin.org/en/", "name": "Bitcoin", "enabled": True},
                {"url": "https://nostr.how/", "name": "Nostr", "enabled": False},
            ]
        )
        self.assertEqual(sources["https://bitcoin.org/en/"]["lastCrawl"], "2026-01-01T00:00:00+00:00")
        self.assertEqual(registry.enabled_urls(), ["https://bitcoin.org/en/"])

    def test_persists_to_json_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sources.json"
            registry = SourceRegistry(path=path)
            registry.add("https://nostr.how/", "Nostr", "Intro to nostr")
            stored = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(stored["https://nostr.how/"]["description"], "Intro to nostr")

            reloaded = SourceRegistry.load(path)
            self.assertEqual(reloaded.enabled_urls(), ["https://nostr.how/"])

    def test_load_missing_file_is_empty(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(len(SourceRegistry.load(Path(tmp) / "absent.json")), 0)


class SitemapParsingTests(unittest.TestCase):
    def test_sitemap_lines_from_robots(self):
        self.assertEqual(sitemaps_from_robots(ROBOTS), ["https://example.com/sitemap.xml"])
        self.assertEqual(sitemaps_from_robots("User-agent: *\nDisallow:"), [])

    def test_index_versus_urlset(self):
        pages, nested = parse_sitemap(SITEMAP_INDEX)
        self.assertEqual(pages, [])
        self.assertEqual(nested, ["https://example.com/sitemap-posts.xml"])


class DiscoveryTests(unittest.IsolatedAsyncioTestCase):
    async def test_same_host_urls_allowed_by_robots(self):
        transport = _transport(
            {
                "https://example.com/robots.txt": ROBOTS,
                "https://example.com/sitemap.xml": SITEMAP,
            }
        )
        urls = await discover_urls("https://example.com/", transport=transport)
        self.assertEqual(urls, ["https://example.com/a", "https://www.example.com/b"])

    async def test_falls_back_to_default_sitemap_and_follows_index(self):
        transport = _transport(
            {
                "https://example.com/sitemap.xml": SITEMAP_INDEX,
                "https://example.com/sitemap-posts.xml": SITEMAP,
            }
        )
        urls = await discover_urls("https://example.com/", transport=transport)
        # no robots.txt: /private is allowed
        self.assertIn("https://example.com/private/c", urls)
        self.assertNotIn("https://other.org/d", urls)

    async def test_limit(self):
        transport = _transport({"https://example.com/sitemap.xml": SITEMAP})
        urls = await discover_urls("https://example.com/", limit=1, transport=transport)
        self.assertEqual(urls, ["https://example.com/a"])

    async def test_broken_sitemap_yields_nothing(self):
        transport = _transport({"https://example.com/sitemap.xml": "<urlset><url>"})
        self.assertEqual(await discover_urls("https://example.com/", transport=transport), [])


if __name__ == "__main__":
    unittest.main()
