"""Crawl orchestration: single crawls and sequential batch crawls.

All triggers share one fetch -> extract -> normalize -> tag pipeline, and
every fetch goes through the same worker slot, so at most
CRAWL_MAX_CONCURRENCY browsers are open at once (one by default).
"""
from __future__ import annotations

import asyncio
import time
from collections import Counter
from typing import Optional

from loguru import logger

from kbcrawler import database
from kbcrawler.config import CRAWL_BATCH_DELAY_SEC, CRAWL_MAX_CONCURRENCY
from kbcrawler.crawler.errors import ClassifiedError, ErrorClassifier
from kbcrawler.crawler.extractors import ExtractionResult, SiteStrategy, extract
from kbcrawler.crawler.fetcher import PageFetcher
from kbcrawler.crawler.normalizer import normalize_content
from kbcrawler.crawler.sources import SourceRegistry
from kbcrawler.crawler.tagging import INACCESSIBLE_CONTENT, extract_tags
from kbcrawler.observability.metrics import (
    CRAWL_ATTEMPTS_TOTAL,
    CRAWL_DURATION_SEC,
    CRAWL_ERRORS_TOTAL,
    update_entry_metrics,
)
from kbcrawler.security.url_guard import UrlGuard, UrlNotAllowedError, validate_url

PREVIEW_CHARS = 200
PROTECTED_REFUSAL = "Refusing to crawl: entry is protected"
NOTHING_TO_CRAWL = "No pending or failed entries to crawl"


class CrawlOrchestrator:
    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        guard: Optional[UrlGuard] = None,
        classifier: Optional[ErrorClassifier] = None,
        registry: Optional[SourceRegistry] = None,
        delay_sec: float = CRAWL_BATCH_DELAY_SEC,
        max_concurrency: int = CRAWL_MAX_CONCURRENCY,
        strategies: Optional[list[SiteStrategy]] = None,
    ):
        self.fetcher = fetcher
        self.guard = guard or UrlGuard()
        self.classifier = classifier or ErrorClassifier()
        self.registry = registry or SourceRegistry()
        self.delay_sec = max(0.0, float(delay_sec))
        self.strategies = strategies
        self._slots = asyncio.Semaphore(max(1, int(max_concurrency)))

    async def _run_pipeline(self, url: str) -> tuple[str, list[str], ExtractionResult]:
        async with self._slots:
            snapshot = await self.fetcher.fetch(url)
        result = extract(snapshot, self.strategies)
        content = normalize_content(result.text) or INACCESSIBLE_CONTENT
        tags = extract_tags(content, url, result.metadata)
        return content, tags, result

    def _failure(self, url: str, failure: ClassifiedError, trigger: str) -> dict:
        CRAWL_ATTEMPTS_TOTAL.labels(trigger=trigger, outcome="error").inc()
        CRAWL_ERRORS_TOTAL.labels(kind=failure.kind.value).inc()
        logger.warning(f"crawl failed for {url} [{failure.kind.value}]: {failure.message}")
        return {"success": False, "url": url, **failure.as_dict()}

    async def crawl_one(self, url: str, trigger: str = "single") -> dict:
        """Crawl one url and record the outcome. Never raises."""
        self.guard.reset()
        return await self._crawl_url(url, trigger)

    async def _crawl_url(self, url: str, trigger: str) -> dict:
        raw_url = (url or "").strip()
        try:
            return await self._crawl_checked(raw_url, trigger)
        except Exception as exc:
            failure = self.classifier.describe(str(exc) or type(exc).__name__)
            logger.exception(f"crawl of {raw_url} aborted: {exc}")
            try:
                target = validate_url(raw_url)
            except UrlNotAllowedError:
                target = raw_url
            await self._record_failure(target, failure.message)
            return self._failure(target, failure, trigger)

    async def _record_failure(self, url: str, message: str) -> None:
        """Best-effort failed mark; the crawl outcome is reported either way."""
        if not url:
            return
        try:
            await database.mark_failed(url, message)
        except Exception as exc:
            logger.error(f"could not mark {url} failed: {exc}")

    async def _crawl_checked(self, raw_url: str, trigger: str) -> dict:
        try:
            normalized = await self.guard.check(raw_url)
        except UrlNotAllowedError as exc:
            failure = self.classifier.describe(str(exc))
            if raw_url and await database.get_entry(raw_url):
                await self._record_failure(raw_url, failure.message)
            return self._failure(raw_url, failure, trigger)

        existing = await database.get_entry(normalized)
        if existing and existing["status"] == database.STATUS_PROTECTED:
            return self._failure(normalized, self.classifier.describe(PROTECTED_REFUSAL), trigger)
        if not await database.mark_crawling(normalized):
            return self._failure(normalized, self.classifier.describe(PROTECTED_REFUSAL), trigger)

        started = time.perf_counter()
        try:
            content, tags, result = await self._run_pipeline(normalized)
        except Exception as exc:
            failure = self.classifier.describe(str(exc) or type(exc).__name__)
            await self._record_failure(normalized, failure.message)
            return self._failure(normalized, failure, trigger)

        CRAWL_DURATION_SEC.labels(extractor=result.extractor).observe(time.perf_counter() - started)
        stored = await database.mark_crawled(normalized, content, tags, result.metadata)
        if not stored:
            # Became protected while the page was being fetched.
            return self._failure(normalized, self.classifier.describe(PROTECTED_REFUSAL), trigger)

        CRAWL_ATTEMPTS_TOTAL.labels(trigger=trigger, outcome="success").inc()
        logger.info(f"crawled {normalized} via {result.extractor} extractor ({len(tags)} tags)")
        return {
            "success": True,
            "url": normalized,
            "content": content,
            "title": result.title,
            "description": result.description,
            "tags": tags,
            "preview": content[:PREVIEW_CHARS],
        }

    async def _crawl_batch(self, entries: list[dict], trigger: str) -> tuple[list[dict], list[dict]]:
        """Crawl entries one after another; returns (per-url results, raw outcomes)."""
        results: list[dict] = []
        outcomes: list[dict] = []
        self.guard.reset()
        for idx, entry in enumerate(entries):
            if idx and self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            outcome = await self._crawl_url(entry["url"], trigger)
            outcomes.append(outcome)
            if outcome["success"]:
                results.append(
                    {
                        "url": entry["url"],
                        "status": "success",
                        "tags": outcome["tags"],
                        "preview": outcome["preview"],
                    }
                )
            else:
                results.append(
                    {
                        "url": entry["url"],
                        "status": "error",
                        "error": outcome["error"],
                        "errorType": outcome["errorType"],
                        "retryable": outcome["retryable"],
                    }
                )
        try:
            update_entry_metrics(await database.count_by_status())
        except Exception as exc:
            logger.warning(f"entry gauges not refreshed: {exc}")
        return results, outcomes

    @staticmethod
    def _summary(results: list[dict]) -> dict:
        breakdown = Counter(r["errorType"] for r in results if r["status"] == "error")
        success = sum(1 for r in results if r["status"] == "success")
        return {
            "total": len(results),
            "success": success,
            "errors": len(results) - success,
            "errorBreakdown": dict(breakdown),
        }

    async def crawl_pending_and_failed(self) -> dict:
        entries = await database.list_entries([database.STATUS_PENDING, database.STATUS_FAILED])
        if not entries:
            return {
                "success": True,
                "message": NOTHING_TO_CRAWL,
                "results": [],
                "summary": self._summary([]),
            }
        logger.info(f"crawling {len(entries)} pending/failed entries")
        results, _ = await self._crawl_batch(entries, trigger="crawl_all")
        summary = self._summary(results)
        return {
            "success": True,
            "message": f"Crawled {summary['success']} of {summary['total']} entries",
            "results": results,
            "summary": summary,
        }

    async def recrawl_all(self) -> dict:
        """Recrawl every non-protected entry and report which ones improved.

        Improvement is structural: more tags or longer content than before.
        """
        source_urls = self.registry.enabled_urls()
        for source_url in source_urls:
            await database.add_entry(source_url)

        entries = await database.list_entries(exclude_protected=True)
        before = {e["url"]: (list(e["tags"]), len(e["content"] or "")) for e in entries}
        logger.info(f"recrawling {len(entries)} entries ({len(source_urls)} registry sources)")
        results, outcomes = await self._crawl_batch(entries, trigger="recrawl_all")

        improvements = []
        for outcome in outcomes:
            if not outcome["success"]:
                continue
            old_tags, old_len = before.get(outcome["url"], ([], 0))
            new_tags, new_len = outcome["tags"], len(outcome["content"])
            tag_improved = len(new_tags) > len(old_tags)
            content_improved = new_len > old_len
            if tag_improved or content_improved:
                improvements.append(
                    {
                        "url": outcome["url"],
                        "tagImprovement": tag_improved,
                        "contentImprovement": content_improved,
                        "oldTags": old_tags,
                        "newTags": new_tags,
                        "oldContentLength": old_len,
                        "newContentLength": new_len,
                    }
                )

        crawled_sources = {e["url"] for e in entries} & set(source_urls)
        self.registry.mark_crawled(crawled_sources)

        summary = self._summary(results)
        summary["improvements"] = len(improvements)
        return {
            "success": True,
            "message": f"Recrawled {summary['total']} entries, {len(improvements)} improved",
            "results": results,
            "summary": summary,
            "improvements": improvements,
        }
