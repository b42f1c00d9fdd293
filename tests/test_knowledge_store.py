import tempfile
import unittest
from pathlib import Path

import kbcrawler.database as dbmod


class KnowledgeStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._original_path = dbmod.DATABASE_PATH
        dbmod.DATABASE_PATH = Path(self._tmpdir.name) / "knowledge.db"
        await dbmod.init_db()

    async def asyncTearDown(self):
        dbmod.DATABASE_PATH = self._original_path
        self._tmpdir.cleanup()

    async def test_add_is_idempotent(self):
        await dbmod.add_entry("https://bitcoin.org/en/")
        await dbmod.add_entry("https://bitcoin.org/en/")
        entries = await dbmod.list_entries()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["status"], "pending")
        self.assertEqual(entries[0]["tags"], [])
        self.assertIsNone(entries[0]["errorMsg"])

    async def test_add_with_content_writes_crawled_entry(self):
        entry = await dbmod.add_entry("https://nostr.how/", content="Nostr is a protocol.", tags=["Nostr", " relay "])
        self.assertEqual(entry["status"], "crawled")
        self.assertEqual(entry["content"], "Nostr is a protocol.")
        self.assertEqual(entry["tags"], ["nostr", "relay"])

    async def test_crawl_lifecycle(self):
        url = "https://bitcoin.org/en/"
        await dbmod.add_entry(url)
        self.assertTrue(await dbmod.mark_crawling(url))
        self.assertEqual((await dbmod.get_entry(url))["status"], "crawling")

        await dbmod.mark_crawled(url, "Bitcoin is money.", ["bitcoin"], {"title": "Bitcoin"})
        entry = await dbmod.get_entry(url)
        self.assertEqual(entry["status"], "crawled")
        self.assertEqual(entry["metadata"], {"title": "Bitcoin"})
        self.assertIsNone(entry["errorMsg"])

        await dbmod.mark_crawling(url)
        await dbmod.mark_failed(url, "net::ERR_NAME_NOT_RESOLVED")
        entry = await dbmod.get_entry(url)
        self.assertEqual(entry["status"], "failed")
        self.assertEqual(entry["errorMsg"], "net::ERR_NAME_NOT_RESOLVED")
        self.assertEqual(entry["content"], "Bitcoin is money.")
        self.assertEqual(entry["tags"], ["bitcoin"])

        await dbmod.mark_crawling(url)
        self.assertIsNone((await dbmod.get_entry(url))["errorMsg"])

    async def test_mark_crawling_creates_missing_row(self):
        self.assertTrue(await dbmod.mark_crawling("https://lightning.network/"))
        entry = await dbmod.get_entry("https://lightning.network/")
        self.assertEqual(entry["status"], "crawling")
        self.assertIsNotNone(entry["createdAt"])

    async def test_protected_entries_resist_crawl_writes(self):
        url = "https://phoenix.acinq.co/"
        await dbmod.upsert_protected_entry(url, "Phoenix wallet.", ["wallet", "lightning"])
        self.assertFalse(await dbmod.mark_crawling(url))
        self.assertFalse(await dbmod.mark_crawled(url, "overwritten", ["x"]))
        self.assertFalse(await dbmod.mark_failed(url, "boom"))
        await dbmod.add_entry(url, content="overwritten", tags=["x"])
        entry = await dbmod.get_entry(url)
        self.assertEqual(entry["status"], "protected")
        self.assertEqual(entry["content"], "Phoenix wallet.")
        self.assertEqual(entry["tags"], ["wallet", "lightning"])

    async def test_clear_keeps_protected_but_remove_deletes_it(self):
        await dbmod.upsert_protected_entry("https://phoenix.acinq.co/", "Phoenix wallet.", ["wallet"])
        await dbmod.add_entry("https://bitcoin.org/en/")
        await dbmod.add_entry("https://nostr.how/", content="Nostr is a protocol.")
        self.assertEqual(await dbmod.clear_entries(), 2)
        remaining = await dbmod.list_entries()
        self.assertEqual([e["url"] for e in remaining], ["https://phoenix.acinq.co/"])
        self.assertEqual(await dbmod.delete_entry("https://phoenix.acinq.co/"), 1)
        self.assertEqual(await dbmod.list_entries(), [])

    async def test_caps_enforced_on_write(self):
        url = "https://example.com/long"
        await dbmod.mark_crawling(url)
        await dbmod.mark_crawled(url, "word " * 400, [f"tag{i}" for i in range(30)])
        entry = await dbmod.get_entry(url)
        self.assertLessEqual(len(entry["content"]), 300)
        self.assertEqual(len(entry["tags"]), 15)

        await dbmod.upsert_protected_entry("https://example.com/wallet", "x" * 1000, [f"t{i}" for i in range(40)])
        wallet = await dbmod.get_entry("https://example.com/wallet")
        self.assertLessEqual(len(wallet["content"]), 300)
        self.assertEqual(len(wallet["tags"]), 15)

    async def test_list_filters_and_orders_by_recency(self):
        await dbmod.add_entry("https://a.example/")
        await dbmod.add_entry("https://b.example/")
        await dbmod.mark_crawling("https://a.example/")
        await dbmod.mark_failed("https://a.example/", "timeout")
        await dbmod.upsert_protected_entry("https://c.example/", "curated", ["wallet"])

        selected = await dbmod.list_entries(["pending", "failed"])
        self.assertEqual([e["url"] for e in selected], ["https://a.example/", "https://b.example/"])
        non_protected = await dbmod.list_entries(exclude_protected=True)
        self.assertNotIn("https://c.example/", [e["url"] for e in non_protected])
        self.assertEqual([e["url"] for e in await dbmod.list_protected_entries()], ["https://c.example/"])

    async def test_keyword_search_ranks_all_word_matches_first(self):
        await dbmod.add_entry("https://a.example/", content="A lightning wallet for everyone.", tags=["wallet"])
        await dbmod.add_entry("https://b.example/", content="Lightning network channels explained.")
        await dbmod.add_entry("https://c.example/", content="A paper wallet guide.")
        await dbmod.add_entry("https://d.example/", content="Gardening tips.")

        results = await dbmod.search_entries(["lightning", "wallet"])
        self.assertEqual(
            [r["url"] for r in results],
            ["https://a.example/", "https://c.example/", "https://b.example/"],
        )

    async def test_keyword_search_matches_url_and_metadata(self):
        await dbmod.add_entry("https://stacker.news/", content="Forum for bitcoiners.", metadata={"title": "Zap stories"})
        self.assertEqual(len(await dbmod.search_entries(["stacker"])), 1)
        self.assertEqual(len(await dbmod.search_entries(["zap"])), 1)

    async def test_keyword_search_ignores_metadata_keys(self):
        metadata = {
            "title": "Zeus",
            "description": "Node manager",
            "social_links": ["https://twitter.com/zeusln"],
            "emails": [],
            "marketing": [],
            "repository": {"stars": 12},
        }
        await dbmod.add_entry("https://zeusln.app/", content="Zeus is a mobile bitcoin node manager.", metadata=metadata)
        for word in ("marketing", "description", "emails", "title", "stars"):
            self.assertEqual(await dbmod.search_entries([word]), [], word)
        self.assertEqual(len(await dbmod.search_entries(["twitter.com/zeusln"])), 1)
        self.assertEqual(len(await dbmod.search_entries(["node manager"])), 1)

    async def test_keyword_search_limits(self):
        for i in range(20):
            await dbmod.add_entry(f"https://site{i}.example/", content=f"Bitcoin lightning note {i}.")
        self.assertEqual(len(await dbmod.search_entries(["bitcoin"])), 10)
        self.assertEqual(len(await dbmod.search_entries(["bitcoin", "lightning"])), 15)

    async def test_like_wildcards_are_literal(self):
        await dbmod.add_entry("https://a.example/", content="Fees are 100% on-chain.")
        await dbmod.add_entry("https://b.example/", content="Nothing to see.")
        self.assertEqual([r["url"] for r in await dbmod.search_entries(["100%"])], ["https://a.example/"])
        self.assertEqual(await dbmod.search_entries(["_"]), [])

    async def test_count_by_status(self):
        await dbmod.add_entry("https://a.example/")
        await dbmod.add_entry("https://b.example/", content="Some content here.")
        await dbmod.upsert_protected_entry("https://c.example/", "curated", [])
        counts = await dbmod.count_by_status()
        self.assertEqual(counts["pending"], 1)
        self.assertEqual(counts["crawled"], 1)
        self.assertEqual(counts["protected"], 1)
        self.assertEqual(counts["failed"], 0)


if __name__ == "__main__":
    unittest.main()
