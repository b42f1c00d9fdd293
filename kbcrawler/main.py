"""FastAPI application entry point."""
import platform
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kbcrawler import configure_logging
from kbcrawler.config import (
    CRAWL_BATCH_TIMEOUT_SEC,
    CRAWL_MAX_CONCURRENCY,
    HOST,
    LOG_LEVEL,
    PORT,
    RECRAWL_SOURCES_FILE,
    SERVICE_NAME,
    SERVICE_VERSION,
)
from kbcrawler.crawler.fetcher import BrowserFetcher
from kbcrawler.crawler.orchestrator import CrawlOrchestrator
from kbcrawler.crawler.sources import SourceRegistry
from kbcrawler.database import count_by_status, init_db
from kbcrawler.observability.context import (
    CORRELATION_HEADER,
    correlation_id_from,
    get_correlation_id,
    set_correlation_id,
)
from kbcrawler.observability.metrics import HTTP_REQUEST_LATENCY_SEC, HTTP_REQUESTS_TOTAL, update_entry_metrics
from kbcrawler.routes import knowledge
from kbcrawler.security.url_guard import UrlNotAllowedError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    try:
        await init_db()
    except Exception as exc:
        raise RuntimeError("Database initialization failed. Verify SQLite access to DATABASE_PATH.") from exc
    registry = SourceRegistry.load(RECRAWL_SOURCES_FILE)
    app.state.orchestrator = CrawlOrchestrator(BrowserFetcher(), registry=registry)
    logger.info(f"{SERVICE_NAME} {SERVICE_VERSION} ready ({len(registry)} recrawl sources)")
    yield
    logger.info(f"{SERVICE_NAME} shutting down")


app = FastAPI(
    title="Knowledge Crawler",
    description="Crawls web pages into a tagged, searchable knowledge base",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.include_router(knowledge.router, prefix="/knowledge")


@app.middleware("http")
async def prometheus_http_middleware(request: Request, call_next):
    incoming_correlation = correlation_id_from(request.headers)
    set_correlation_id(incoming_correlation)
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = int(getattr(response, "status_code", 500))
        response.headers[CORRELATION_HEADER] = incoming_correlation
        return response
    finally:
        path = request.url.path
        duration = max(0.0, time.perf_counter() - start)
        HTTP_REQUESTS_TOTAL.labels(request.method, path, str(status_code)).inc()
        HTTP_REQUEST_LATENCY_SEC.labels(request.method, path).observe(duration)
        set_correlation_id("")


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code", "http_error")
        message = detail.get("message", "Request failed.")
        details = detail.get("details", {})
        if not isinstance(details, dict):
            details = {"detail": details}
    else:
        code = "http_error"
        message = str(detail)
        details = {}
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": code,
            "message": message,
            "details": {**details, "correlation_id": get_correlation_id()},
        },
        headers=exc.headers,
    )


@app.exception_handler(UrlNotAllowedError)
async def url_not_allowed_handler(_request: Request, exc: UrlNotAllowedError):
    return JSONResponse(
        status_code=400,
        content={
            "code": "invalid_url",
            "message": str(exc),
            "details": {"correlation_id": get_correlation_id()},
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_request: Request, exc: Exception):
    logger.exception(f"unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_error",
            "message": "Internal server error.",
            "details": {"correlation_id": get_correlation_id()},
        },
    )


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "platform": platform.system().lower(),
        "crawl_batch_timeout_sec": CRAWL_BATCH_TIMEOUT_SEC,
        "crawl_max_concurrency": CRAWL_MAX_CONCURRENCY,
    }


@app.get("/metrics")
async def metrics():
    update_entry_metrics(await count_by_status())
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def run():
    configure_logging(LOG_LEVEL)
    uvicorn.run("kbcrawler.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
