"""Prometheus metrics helpers."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

HTTP_REQUESTS_TOTAL = Counter(
    "kbcrawler_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
HTTP_REQUEST_LATENCY_SEC = Histogram(
    "kbcrawler_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
CRAWL_ATTEMPTS_TOTAL = Counter(
    "kbcrawler_crawl_attempts_total",
    "Crawl attempts grouped by trigger and outcome",
    ["trigger", "outcome"],
)
CRAWL_ERRORS_TOTAL = Counter(
    "kbcrawler_crawl_errors_total",
    "Crawl failures grouped by classified error kind",
    ["kind"],
)
CRAWL_DURATION_SEC = Histogram(
    "kbcrawler_crawl_duration_seconds",
    "Wall time of one fetch/extract/normalize/tag pipeline run",
    ["extractor"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)
KNOWLEDGE_ENTRIES = Gauge(
    "kbcrawler_knowledge_entries",
    "Knowledge entries grouped by status",
    ["status"],
)


def update_entry_metrics(counts: dict):
    for status, count in (counts or {}).items():
        KNOWLEDGE_ENTRIES.labels(status=str(status)).set(float(count or 0))
