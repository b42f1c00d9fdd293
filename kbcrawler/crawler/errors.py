"""Crawl failure taxonomy and retry policy.

Raw failure text from the browser engine is translated into a closed set of
error kinds. Engine-specific strings live only in the signature table below;
swapping the automation engine means handing ErrorClassifier another table.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence


class ErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    DNS_ERROR = "DNS_ERROR"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    SSL_ERROR = "SSL_ERROR"
    BLOCKED = "BLOCKED"
    INVALID_URL = "INVALID_URL"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.CONNECTION_TIMEOUT, ErrorKind.DNS_ERROR})

# Urls quoted by the engine ("at https://...", call logs) are not part of the failure text.
_URL_RE = re.compile(r"[a-z][a-z0-9+.\-]*://\S+")

# Ordered most-specific first; the first kind with a matching needle wins.
CHROMIUM_SIGNATURES: Sequence[tuple[ErrorKind, tuple[str, ...]]] = (
    (
        ErrorKind.INVALID_URL,
        (
            "invalid url",
            "err_invalid_url",
            "cannot navigate to invalid url",
            "err_unknown_url_scheme",
            "err_disallowed_url_scheme",
        ),
    ),
    (
        ErrorKind.DNS_ERROR,
        (
            "err_name_not_resolved",
            "err_name_resolution_failed",
            "enotfound",
            "eai_again",
            "getaddrinfo",
            "name or service not known",
            "nodename nor servname",
        ),
    ),
    (
        ErrorKind.CONNECTION_REFUSED,
        ("err_connection_refused", "econnrefused", "connection refused"),
    ),
    (
        ErrorKind.CONNECTION_TIMEOUT,
        ("err_connection_timed_out", "etimedout", "connect timeout", "err_timed_out"),
    ),
    (
        ErrorKind.SSL_ERROR,
        ("err_cert_", "err_ssl_", "ssl_error", "certificate", "ssl handshake", "tls handshake"),
    ),
    (
        ErrorKind.BLOCKED,
        (
            "err_blocked_by_client",
            "err_blocked_by_response",
            "err_blocked_by_administrator",
            "err_access_denied",
            "http 403",
            "http 429",
            "access denied",
            "captcha",
            "entry is protected",
        ),
    ),
    (
        ErrorKind.TIMEOUT,
        ("timeout", "timed out", "navigation timeout"),
    ),
)


@dataclass
class ClassifiedError:
    kind: ErrorKind
    message: str
    retryable: bool

    def as_dict(self) -> dict:
        return {"error": self.message, "errorType": self.kind.value, "retryable": self.retryable}


class ErrorClassifier:
    def __init__(self, signatures: Iterable[tuple[ErrorKind, Iterable[str]]] = CHROMIUM_SIGNATURES):
        self._signatures = [(kind, tuple(n.lower() for n in needles)) for kind, needles in signatures]

    def classify(self, raw_message: str) -> ErrorKind:
        text = _URL_RE.sub(" ", (raw_message or "").lower())
        if not text:
            return ErrorKind.UNKNOWN
        for kind, needles in self._signatures:
            if any(needle in text for needle in needles):
                return kind
        return ErrorKind.UNKNOWN

    def describe(self, raw_message: str) -> ClassifiedError:
        kind = self.classify(raw_message)
        message = (raw_message or "").strip() or "Unknown crawl failure"
        return ClassifiedError(kind=kind, message=message.splitlines()[0][:500], retryable=is_retryable(kind))


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


_default_classifier = ErrorClassifier()


def classify_error(raw_message: str) -> ErrorKind:
    return _default_classifier.classify(raw_message)


def describe_failure(raw_message: str) -> ClassifiedError:
    return _default_classifier.describe(raw_message)
