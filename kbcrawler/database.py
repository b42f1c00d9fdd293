"""SQLite knowledge store: one row per URL with crawl lifecycle state."""
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import aiosqlite

from kbcrawler.config import (
    CONTENT_MAX_CHARS,
    DATABASE_PATH,
    SQLITE_BUSY_TIMEOUT_MS,
    SQLITE_RETRY_ATTEMPTS,
    SQLITE_RETRY_BACKOFF_MS,
    TAGS_MAX,
)
from kbcrawler.crawler.normalizer import truncate_words

STATUS_PENDING = "pending"
STATUS_CRAWLING = "crawling"
STATUS_CRAWLED = "crawled"
STATUS_FAILED = "failed"
STATUS_PROTECTED = "protected"
STATUSES = (STATUS_PENDING, STATUS_CRAWLING, STATUS_CRAWLED, STATUS_FAILED, STATUS_PROTECTED)

KEYWORD_LIMIT_SINGLE = 10
KEYWORD_LIMIT_MULTI = 15


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value if value is not None else {}, default=str)


def cap_content(content: Optional[str]) -> str:
    return truncate_words((content or "").strip(), CONTENT_MAX_CHARS)


def cap_tags(tags: Optional[Iterable[str]]) -> list[str]:
    out: list[str] = []
    for tag in tags or []:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out[:TAGS_MAX]


async def get_db():
    """Get database connection."""
    DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(DATABASE_PATH))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(f"PRAGMA busy_timeout={max(100, SQLITE_BUSY_TIMEOUT_MS)};")
    return db


def _is_locked_error(exc: Exception) -> bool:
    return "locked" in str(exc).lower() or "busy" in str(exc).lower()


async def _with_retry(coro_factory, attempts: int = SQLITE_RETRY_ATTEMPTS):
    retry_count = max(1, int(attempts))
    for idx in range(retry_count):
        try:
            return await coro_factory()
        except aiosqlite.OperationalError as exc:
            if not _is_locked_error(exc) or idx >= retry_count - 1:
                raise
            await asyncio.sleep((SQLITE_RETRY_BACKOFF_MS / 1000.0) * (idx + 1))


async def init_db():
    """Initialize database tables."""
    db = await get_db()
    try:
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS knowledge (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT UNIQUE NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                content TEXT,
                tags TEXT DEFAULT '[]',
                error_msg TEXT,
                metadata TEXT DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_knowledge_status ON knowledge(status);
            CREATE INDEX IF NOT EXISTS idx_knowledge_updated ON knowledge(updated_at);
        """)
        await db.commit()
    finally:
        await db.close()


def _decode_entry_row(row) -> Optional[dict]:
    if not row:
        return None
    item = dict(row)
    try:
        tags = json.loads(item.get("tags") or "[]")
        tags = tags if isinstance(tags, list) else []
    except Exception:
        tags = []
    try:
        meta = json.loads(item.get("metadata") or "{}")
        meta = meta if isinstance(meta, dict) else {}
    except Exception:
        meta = {}
    return {
        "id": item.get("id"),
        "url": item.get("url"),
        "status": item.get("status"),
        "content": item.get("content") or "",
        "tags": tags,
        "errorMsg": item.get("error_msg"),
        "metadata": meta,
        "createdAt": item.get("created_at"),
        "updatedAt": item.get("updated_at"),
    }


# --- Reads ---


async def get_entry(url: str) -> Optional[dict]:
    db = await get_db()
    try:
        cursor = await db.execute("SELECT * FROM knowledge WHERE url = ?", (url,))
        row = await cursor.fetchone()
        return _decode_entry_row(row)
    finally:
        await db.close()


async def list_entries(statuses: Optional[Iterable[str]] = None, *, exclude_protected: bool = False) -> list[dict]:
    """Entries, most recently updated first."""
    clauses = []
    params: list[Any] = []
    if statuses:
        wanted = list(statuses)
        clauses.append(f"status IN ({', '.join('?' for _ in wanted)})")
        params.extend(wanted)
    if exclude_protected:
        clauses.append("status != 'protected'")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    db = await get_db()
    try:
        cursor = await db.execute(
            f"SELECT * FROM knowledge {where} ORDER BY updated_at DESC, id DESC",
            params,
        )
        rows = await cursor.fetchall()
        return [_decode_entry_row(r) for r in rows]
    finally:
        await db.close()


async def list_protected_entries() -> list[dict]:
    return await list_entries([STATUS_PROTECTED])


async def count_by_status() -> dict[str, int]:
    db = await get_db()
    try:
        cursor = await db.execute("SELECT status, COUNT(*) AS c FROM knowledge GROUP BY status")
        rows = await cursor.fetchall()
        counts = {status: 0 for status in STATUSES}
        for row in rows:
            counts[row["status"]] = int(row["c"])
        return counts
    finally:
        await db.close()


def _like_term(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def search_entries(terms: list[str]) -> list[dict]:
    """Keyword match over content, tags, url and metadata values (not keys).

    With several terms, rows matching all of them rank first; ties go to the
    most recently updated row.
    """
    terms = [t.lower() for t in terms if t and t.strip()]
    if not terms:
        return []
    match_one = (
        "(LOWER(COALESCE(content, '')) LIKE ? ESCAPE '\\' OR LOWER(COALESCE(tags, '')) LIKE ? ESCAPE '\\'"
        " OR LOWER(url) LIKE ? ESCAPE '\\' OR EXISTS (SELECT 1 FROM json_tree(COALESCE(knowledge.metadata, '{}')) AS mt"
        " WHERE mt.type = 'text' AND LOWER(mt.value) LIKE ? ESCAPE '\\'))"
    )
    per_term: list[Any] = []
    for term in terms:
        per_term.extend([_like_term(term)] * 4)

    any_clause = " OR ".join([match_one] * len(terms))
    if len(terms) > 1:
        all_clause = " AND ".join([match_one] * len(terms))
        sql = (
            f"SELECT *, CASE WHEN {all_clause} THEN 0 ELSE 1 END AS priority FROM knowledge "
            f"WHERE {any_clause} ORDER BY priority ASC, updated_at DESC, id DESC LIMIT ?"
        )
        params = [*per_term, *per_term, KEYWORD_LIMIT_MULTI]
    else:
        sql = f"SELECT * FROM knowledge WHERE {any_clause} ORDER BY updated_at DESC, id DESC LIMIT ?"
        params = [*per_term, KEYWORD_LIMIT_SINGLE]

    db = await get_db()
    try:
        cursor = await db.execute(sql, params)
        rows = await cursor.fetchall()
        return [_decode_entry_row(r) for r in rows]
    finally:
        await db.close()


# --- Writes ---


async def add_entry(
    url: str,
    content: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[dict] = None,
) -> dict:
    """Insert a pending entry, or write content directly when it is given.

    Re-adding an existing url without content leaves the row unchanged.
    """
    now = _utcnow_iso()

    async def _run():
        db = await get_db()
        try:
            if content:
                await db.execute(
                    """INSERT INTO knowledge (url, status, content, tags, error_msg, metadata, created_at, updated_at)
                       VALUES (?, 'crawled', ?, ?, NULL, ?, ?, ?)
                       ON CONFLICT(url) DO UPDATE SET
                         status = 'crawled',
                         content = excluded.content,
                         tags = excluded.tags,
                         error_msg = NULL,
                         metadata = excluded.metadata,
                         updated_at = excluded.updated_at
                       WHERE knowledge.status != 'protected'""",
                    (url, cap_content(content), _json_dumps(cap_tags(tags)), _json_dumps(metadata or {}), now, now),
                )
            else:
                await db.execute(
                    """INSERT OR IGNORE INTO knowledge (url, status, tags, metadata, created_at, updated_at)
                       VALUES (?, 'pending', '[]', '{}', ?, ?)""",
                    (url, now, now),
                )
            await db.commit()
        finally:
            await db.close()

    await _with_retry(_run)
    return await get_entry(url) or {}


async def mark_crawling(url: str) -> bool:
    """Move url to crawling, creating the row if absent. False if protected."""
    now = _utcnow_iso()

    async def _run():
        db = await get_db()
        try:
            cursor = await db.execute(
                """INSERT INTO knowledge (url, status, tags, metadata, created_at, updated_at)
                   VALUES (?, 'crawling', '[]', '{}', ?, ?)
                   ON CONFLICT(url) DO UPDATE SET
                     status = 'crawling',
                     error_msg = NULL,
                     updated_at = excluded.updated_at
                   WHERE knowledge.status != 'protected'""",
                (url, now, now),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    return await _with_retry(_run)


async def mark_crawled(url: str, content: str, tags: Iterable[str], metadata: Optional[dict] = None) -> bool:
    now = _utcnow_iso()

    async def _run():
        db = await get_db()
        try:
            cursor = await db.execute(
                """UPDATE knowledge
                   SET status = 'crawled', content = ?, tags = ?, metadata = ?, error_msg = NULL, updated_at = ?
                   WHERE url = ? AND status != 'protected'""",
                (cap_content(content), _json_dumps(cap_tags(tags)), _json_dumps(metadata or {}), now, url),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    return await _with_retry(_run)


async def mark_failed(url: str, error_msg: str) -> bool:
    """Record a failure; prior content and tags are kept."""
    now = _utcnow_iso()

    async def _run():
        db = await get_db()
        try:
            cursor = await db.execute(
                """UPDATE knowledge
                   SET status = 'failed', error_msg = ?, updated_at = ?
                   WHERE url = ? AND status != 'protected'""",
                (error_msg or "Unknown crawl failure", now, url),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    return await _with_retry(_run)


async def upsert_protected_entry(
    url: str,
    content: str,
    tags: Iterable[str],
    metadata: Optional[dict] = None,
) -> dict:
    """Administrative write of a curated entry that crawls never touch."""
    now = _utcnow_iso()

    async def _run():
        db = await get_db()
        try:
            await db.execute(
                """INSERT INTO knowledge (url, status, content, tags, error_msg, metadata, created_at, updated_at)
                   VALUES (?, 'protected', ?, ?, NULL, ?, ?, ?)
                   ON CONFLICT(url) DO UPDATE SET
                     status = 'protected',
                     content = excluded.content,
                     tags = excluded.tags,
                     error_msg = NULL,
                     metadata = excluded.metadata,
                     updated_at = excluded.updated_at""",
                (url, cap_content(content), _json_dumps(cap_tags(tags)), _json_dumps(metadata or {}), now, now),
            )
            await db.commit()
        finally:
            await db.close()

    await _with_retry(_run)
    return await get_entry(url) or {}


async def delete_entry(url: str) -> int:
    async def _run():
        db = await get_db()
        try:
            cursor = await db.execute("DELETE FROM knowledge WHERE url = ?", (url,))
            await db.commit()
            return int(cursor.rowcount or 0)
        finally:
            await db.close()

    return await _with_retry(_run)


async def clear_entries(include_protected: bool = False) -> int:
    async def _run():
        db = await get_db()
        try:
            if include_protected:
                cursor = await db.execute("DELETE FROM knowledge")
            else:
                cursor = await db.execute("DELETE FROM knowledge WHERE status != 'protected'")
            await db.commit()
            return int(cursor.rowcount or 0)
        finally:
            await db.close()

    return await _with_retry(_run)
