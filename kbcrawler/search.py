"""Keyword and relevance-scored search over the knowledge store."""
from __future__ import annotations

from kbcrawler import database
from kbcrawler.crawler.tagging import ecosystems_for_words

SEMANTIC_LIMIT = 10
SCORE_CONTENT = 10
SCORE_TAG = 15
SCORE_ECOSYSTEM = 20
SCORE_URL = 5


def query_terms(query: str) -> list[str]:
    """Lowercase words longer than two chars; the whole query if none qualify."""
    cleaned = (query or "").strip().lower()
    words = [w for w in cleaned.split() if len(w) > 2]
    if words:
        return list(dict.fromkeys(words))
    return [cleaned] if cleaned else []


async def keyword_search(query: str) -> list[dict]:
    return await database.search_entries(query_terms(query))


def score_entry(entry: dict, words: list[str]) -> int:
    content = (entry.get("content") or "").lower()
    tags = [str(t).lower() for t in entry.get("tags") or []]
    url = (entry.get("url") or "").lower()

    score = 0
    for word in words:
        if word in content:
            score += SCORE_CONTENT
        if any(word in tag for tag in tags):
            score += SCORE_TAG
        if word in url:
            score += SCORE_URL
    if ecosystems_for_words(words) & set(tags):
        score += SCORE_ECOSYSTEM
    return score


async def semantic_search(query: str, limit: int = SEMANTIC_LIMIT) -> list[dict]:
    words = query_terms(query)
    if not words:
        return []
    entries = await database.list_entries([database.STATUS_CRAWLED, database.STATUS_PROTECTED])
    scored = []
    for entry in entries:
        score = score_entry(entry, words)
        if score > 0:
            scored.append({**entry, "score": score})
    # entries arrive newest first and sort() is stable, so equal scores keep recency order
    scored.sort(key=lambda item: item["score"], reverse=True)
    return scored[:limit]
