"""Application configuration from environment variables."""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _as_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name, str(default))
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _as_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return float(default)


def _as_csv_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [p.strip() for p in str(raw).split(",") if p.strip()]


# Server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3000"))
SERVICE_NAME = "kbcrawler"
SERVICE_VERSION = "1.0.0"

# Database
DATABASE_PATH = BASE_DIR / os.getenv("DATABASE_PATH", "data/knowledge.db")
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000"))
SQLITE_RETRY_ATTEMPTS = int(os.getenv("SQLITE_RETRY_ATTEMPTS", "3"))
SQLITE_RETRY_BACKOFF_MS = int(os.getenv("SQLITE_RETRY_BACKOFF_MS", "120"))

# Knowledge entry caps (enforced at write time)
CONTENT_MAX_CHARS = 300
TAGS_MAX = 15

# Browser fetcher
CRAWL_NAVIGATION_TIMEOUT_SEC = _as_float("CRAWL_NAVIGATION_TIMEOUT_SEC", 30.0)
CRAWL_SETTLE_TIMEOUT_SEC = _as_float("CRAWL_SETTLE_TIMEOUT_SEC", 5.0)
CRAWL_HEADLESS = _as_bool("CRAWL_HEADLESS", True)
CRAWL_BROWSER_ARGS = _as_csv_list("CRAWL_BROWSER_ARGS", "--no-sandbox,--disable-setuid-sandbox")
CRAWL_USER_AGENT = os.getenv(
    "CRAWL_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/126.0.0.0 Safari/537.36",
)
CRAWL_LOCALE = os.getenv("CRAWL_LOCALE", "en-US")
CRAWL_BLOCK_PRIVATE_NETWORKS = _as_bool("CRAWL_BLOCK_PRIVATE_NETWORKS", True)

# Batch orchestration
CRAWL_MAX_CONCURRENCY = max(1, int(os.getenv("CRAWL_MAX_CONCURRENCY", "1")))
CRAWL_BATCH_DELAY_SEC = _as_float("CRAWL_BATCH_DELAY_SEC", 1.0)
CRAWL_BATCH_TIMEOUT_SEC = int(os.getenv("CRAWL_BATCH_TIMEOUT_SEC", "180"))

# Recrawl sources
RECRAWL_SOURCES_FILE = BASE_DIR / os.getenv("RECRAWL_SOURCES_FILE", "data/recrawl_sources.json")

# robots.txt / sitemap discovery
DISCOVERY_MAX_URLS = int(os.getenv("DISCOVERY_MAX_URLS", "50"))
DISCOVERY_TIMEOUT_SEC = _as_float("DISCOVERY_TIMEOUT_SEC", 10.0)
DISCOVERY_USER_AGENT = os.getenv("DISCOVERY_USER_AGENT", "KnowledgeCrawler/1.0")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
