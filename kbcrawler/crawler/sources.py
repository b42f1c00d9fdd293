"""Registry of curated sources that a full recrawl always covers."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from kbcrawler.security.url_guard import validate_url


@dataclass
class RecrawlSource:
    url: str
    name: str
    description: str = ""
    enabled: bool = True
    last_crawl: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "enabled": self.enabled,
            "lastCrawl": self.last_crawl,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecrawlSource":
        url = validate_url(str(data.get("url") or ""))
        return cls(
            url=url,
            name=str(data.get("name") or url).strip(),
            description=str(data.get("description") or "").strip(),
            enabled=bool(data.get("enabled", True)),
            last_crawl=data.get("lastCrawl") or data.get("last_crawl"),
        )


class SourceRegistry:
    """Url-keyed source list, optionally persisted to a JSON file.

    An instance is created at application start and handed to the crawl
    orchestrator; nothing reads it through module state.
    """

    def __init__(self, path: Optional[Path] = None, sources: Optional[Iterable[RecrawlSource]] = None):
        self.path = Path(path) if path else None
        self._sources: dict[str, RecrawlSource] = {}
        for source in sources or []:
            self._sources[source.url] = source

    @classmethod
    def load(cls, path: Path) -> "SourceRegistry":
        registry = cls(path=path)
        if not registry.path.exists():
            return registry
        try:
            raw = json.loads(registry.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"could not read recrawl sources from {path}: {exc}")
            return registry
        items = raw.values() if isinstance(raw, dict) else raw
        for item in items:
            try:
                source = RecrawlSource.from_dict(item)
            except ValueError as exc:
                logger.warning(f"skipping recrawl source {item!r}: {exc}")
                continue
            registry._sources[source.url] = source
        logger.info(f"loaded {len(registry._sources)} recrawl sources from {path}")
        return registry

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.as_dict(), indent=2), encoding="utf-8")

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {url: source.to_dict() for url, source in self._sources.items()}

    def get(self, url: str) -> Optional[RecrawlSource]:
        return self._sources.get(url)

    def replace(self, items: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """Swap the whole registry; raises ValueError on any invalid url."""
        fresh: dict[str, RecrawlSource] = {}
        for item in items:
            source = RecrawlSource.from_dict(item)
            previous = self._sources.get(source.url)
            if previous and not source.last_crawl:
                source.last_crawl = previous.last_crawl
            fresh[source.url] = source
        self._sources = fresh
        self.save()
        return self.as_dict()

    def add(self, url: str, name: str, description: str = "") -> RecrawlSource:
        source = RecrawlSource.from_dict({"url": url, "name": name, "description": description})
        existing = self._sources.get(source.url)
        if existing:
            existing.name = source.name
            existing.description = source.description or existing.description
            existing.enabled = True
            source = existing
        else:
            self._sources[source.url] = source
        self.save()
        return source

    def enabled_urls(self) -> list[str]:
        return [url for url, source in self._sources.items() if source.enabled]

    def mark_crawled(self, urls: Iterable[str], when: Optional[str] = None) -> None:
        stamp = when or datetime.now(timezone.utc).isoformat()
        touched = False
        for url in urls:
            source = self._sources.get(url)
            if source:
                source.last_crawl = stamp
                touched = True
        if touched:
            self.save()

    def __len__(self) -> int:
        return len(self._sources)
