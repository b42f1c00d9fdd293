"""Per-request correlation ids, echoed in responses and stamped on log records."""
from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Mapping

CORRELATION_HEADER = "X-Correlation-ID"
NO_CORRELATION = "-"

_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="")


def set_correlation_id(value: str) -> None:
    _CORRELATION_ID.set((value or "").strip())


def get_correlation_id() -> str:
    return _CORRELATION_ID.get().strip()


def correlation_id_from(headers: Mapping[str, str]) -> str:
    """Reuse the caller's id when one is sent, otherwise mint a new one."""
    incoming = (headers.get(CORRELATION_HEADER) or "").strip()
    return incoming[:128] or str(uuid.uuid4())


def stamp_record(record: dict) -> None:
    """Loguru patcher: crawl and store logs inside a request carry its id."""
    record["extra"].setdefault("correlation_id", get_correlation_id() or NO_CORRELATION)
