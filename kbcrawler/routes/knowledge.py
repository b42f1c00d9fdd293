"""Knowledge base routes: entry management, crawling and search."""
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kbcrawler import database
from kbcrawler.crawler.discovery import discover_urls
from kbcrawler.crawler.errors import ErrorKind
from kbcrawler.crawler.orchestrator import CrawlOrchestrator
from kbcrawler.search import keyword_search, semantic_search
from kbcrawler.security.url_guard import UrlNotAllowedError, validate_url

router = APIRouter(tags=["knowledge"])


class AddRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    content: str | None = None
    tags: list[str] | str | None = None


class CrawlRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)


class WalletInfoRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    content: str = Field(min_length=1)
    tags: list[str] | str = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class SourceItem(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    name: str = ""
    description: str = ""
    enabled: bool = True
    lastCrawl: str | None = None


class SourcesRequest(BaseModel):
    sources: list[SourceItem] = Field(default_factory=list, max_length=500)


class AddSourceRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""


class DiscoverRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    limit: int | None = Field(default=None, ge=1, le=500)


def get_orchestrator(request: Request) -> CrawlOrchestrator:
    return request.app.state.orchestrator


def _split_tags(tags: list[str] | str | None) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [t.strip() for t in tags if t and t.strip()]


def _checked_url(url: str) -> str:
    try:
        return validate_url(url)
    except UrlNotAllowedError as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_url", "message": str(exc)}) from exc


@router.post("/add")
async def api_add(req: AddRequest):
    """Add a url as pending, or store supplied content directly."""
    url = _checked_url(req.url)
    entry = await database.add_entry(url, content=req.content, tags=_split_tags(req.tags))
    return {"success": True, "entry": entry}


@router.post("/crawl")
async def api_crawl(req: CrawlRequest, orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.crawl_one(req.url)
    if result["success"]:
        return {
            "success": True,
            "tags": result["tags"],
            "preview": result["preview"],
            "content": result["content"],
            "title": result["title"],
            "description": result["description"],
        }
    status_code = 400 if result["errorType"] == ErrorKind.INVALID_URL.value else 502
    body = {k: result[k] for k in ("success", "error", "errorType", "retryable")}
    return JSONResponse(status_code=status_code, content=body)


@router.post("/crawl-all")
async def api_crawl_all(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.crawl_pending_and_failed()


@router.post("/recrawl-all")
async def api_recrawl_all(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.recrawl_all()


@router.get("/all")
async def api_all():
    return {"knowledge": await database.list_entries()}


@router.get("/search")
async def api_search(q: str | None = None):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Query parameter 'q' is required.")
    return {"results": await keyword_search(q)}


@router.get("/semantic-search")
async def api_semantic_search(q: str | None = None):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Query parameter 'q' is required.")
    return {"results": await semantic_search(q)}


@router.delete("/remove")
async def api_remove(request: Request, url: str | None = None):
    """Delete one entry; the url comes from ?url= or a JSON body."""
    if not url:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = {}
        url = body.get("url") if isinstance(body, dict) else None
    if not url or not str(url).strip():
        raise HTTPException(status_code=400, detail="Field 'url' is required.")
    deleted = await database.delete_entry(str(url).strip())
    return {"success": True, "deleted": deleted}


@router.delete("/clear")
async def api_clear():
    deleted = await database.clear_entries(include_protected=False)
    return {"success": True, "deleted": deleted}


@router.post("/add-wallet-info")
async def api_add_wallet_info(req: WalletInfoRequest):
    url = _checked_url(req.url)
    entry = await database.upsert_protected_entry(url, req.content, _split_tags(req.tags), req.metadata)
    return {"success": True, "entry": entry}


@router.get("/wallets")
async def api_wallets():
    return {"wallets": await database.list_protected_entries()}


@router.get("/stats")
async def api_stats():
    counts = await database.count_by_status()
    return {"total": sum(counts.values()), "byStatus": counts}


@router.get("/recrawl-sources")
async def api_get_recrawl_sources(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    return {"sources": orchestrator.registry.as_dict()}


@router.post("/recrawl-sources")
async def api_put_recrawl_sources(req: SourcesRequest, orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    try:
        sources = orchestrator.registry.replace(item.model_dump() for item in req.sources)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_url", "message": str(exc)}) from exc
    return {"success": True, "sources": sources}


@router.post("/add-source")
async def api_add_source(req: AddSourceRequest, orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    try:
        source = orchestrator.registry.add(req.url, req.name, req.description)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_url", "message": str(exc)}) from exc
    return {"success": True, "source": source.to_dict()}


@router.post("/discover")
async def api_discover(req: DiscoverRequest):
    """Seed pending entries from the site's robots.txt sitemaps."""
    urls = await discover_urls(_checked_url(req.url), limit=req.limit)
    added = 0
    for url in urls:
        if await database.get_entry(url):
            continue
        await database.add_entry(url)
        added += 1
    return {"discovered": urls, "added": added}
