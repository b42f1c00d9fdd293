"""Text cleanup and summary reduction for extracted page content."""
from __future__ import annotations

import re

from kbcrawler.config import CONTENT_MAX_CHARS

MAX_SENTENCES = 3
MIN_SENTENCE_CHARS = 10
ELLIPSIS = "..."

# (canonical form, full name, abbreviation). Text already in canonical form
# is left unchanged, so canonicalize() is idempotent.
SYNONYMS: tuple[tuple[str, str, str], ...] = (
    ("Lightning Network (LN)", "Lightning Network", "LN"),
    ("Nostr Wallet Connect (NWC)", "Nostr Wallet Connect", "NWC"),
    ("Unspent Transaction Output (UTXO)", "Unspent Transaction Output", "UTXO"),
    ("Partially Signed Bitcoin Transaction (PSBT)", "Partially Signed Bitcoin Transaction", "PSBT"),
    ("Lightning Service Provider (LSP)", "Lightning Service Provider", "LSP"),
    ("Hardware Security Module (HSM)", "Hardware Security Module", "HSM"),
    ("Simplified Payment Verification (SPV)", "Simplified Payment Verification", "SPV"),
    ("Proof of Work (PoW)", "Proof of Work", "PoW"),
)


def _synonym_pattern(full: str, abbr: str) -> re.Pattern:
    full_re = r"\s+".join(re.escape(part) for part in full.split())
    abbr_re = re.escape(abbr)
    # Full name matches case-insensitively and swallows an existing "(ABBR)";
    # the bare abbreviation is case-sensitive to avoid hitting ordinary words.
    return re.compile(rf"\b(?:(?i:{full_re})(?:\s*\((?i:{abbr_re})\))?|{abbr_re})(?!\w)")


_SYNONYM_PATTERNS = [(canonical, _synonym_pattern(full, abbr)) for canonical, full, abbr in SYNONYMS]

_WS_RE = re.compile(r"\s+")
_CAMEL_RE = re.compile(r"(?<=[a-z])(?=[A-Z][a-z])")
_ACRONYM_RE = re.compile(r"(?<=[A-Z])(?=[A-Z][a-z]{2,})")
_DIGIT_ALPHA_RE = re.compile(r"(?<=\d)(?=[A-Za-z]{3,})")
_PUNCT_CAPITAL_RE = re.compile(r"(?<=[a-z][.!?])(?=[A-Z])")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+(?=\s|$)")


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def repair_boundaries(text: str) -> str:
    """Re-insert spaces lost when adjacent DOM nodes were concatenated."""
    text = _CAMEL_RE.sub(" ", text)
    text = _ACRONYM_RE.sub(" ", text)
    text = _DIGIT_ALPHA_RE.sub(" ", text)
    return _PUNCT_CAPITAL_RE.sub(" ", text)


def canonicalize(text: str) -> str:
    out = text or ""
    for canonical, pattern in _SYNONYM_PATTERNS:
        out = pattern.sub(canonical, out)
    return out


def first_sentences(text: str, limit: int = MAX_SENTENCES) -> str:
    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) >= MIN_SENTENCE_CHARS]
    if not sentences:
        return text
    return ". ".join(sentences[:limit]) + "."


def truncate_words(text: str, max_chars: int = CONTENT_MAX_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    cut = text[: max_chars - len(ELLIPSIS)]
    if " " in cut and not text[len(cut)].isspace():
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:-") + ELLIPSIS


def normalize_content(text: str) -> str:
    cleaned = collapse_whitespace(text)
    if not cleaned:
        return ""
    cleaned = canonicalize(repair_boundaries(cleaned))
    return truncate_words(first_sentences(cleaned))
