"""Deterministic tag derivation for knowledge entries."""
from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterable, Optional

from kbcrawler.config import TAGS_MAX
from kbcrawler.crawler.normalizer import canonicalize

INACCESSIBLE_CONTENT = "Content could not be extracted from this page."
INACCESSIBLE_TAGS = ["inaccessible", "needs-review"]

FREQUENT_WORDS_MAX = 10

STATIC_VOCABULARY = (
    "bitcoin",
    "lightning",
    "nostr",
    "hardware",
    "software",
    "cashu",
    "wallet",
    "node",
    "api",
    "extension",
    "protocol",
)

STOP_WORDS = frozenset(
    """
    the and for are but not you all can had her was one our out day get has him his how man new now old see
    two way who boy did its let put say she too use this that with from have will would could should when
    where what why which there their they them then than been being into over under after before during
    within without against among between through throughout toward towards upon concerning regarding about
    like such very much many few some any each every either neither both none most least more less fewer
    several various different same similar other another next last first second third fourth fifth sixth
    seventh eighth ninth tenth also just only your yours may might must shall ours itself
    """.split()
)

UI_WORDS = frozenset(
    """
    menu navigation home about contact login register sign search submit button link click here read more
    less show hide expand collapse toggle open close next previous back forward top bottom header footer
    sidebar main content page site web website skip loading error success warning info help support faq
    public notifications fork star code issues pull requests actions projects security sponsor cookie
    cookies privacy policy terms accept subscribe newsletter copyright rights reserved
    """.split()
)

# Specific term -> ecosystem label. Several terms map onto one label.
ECOSYSTEMS: dict[str, str] = {
    "satoshi": "bitcoin",
    "sats": "bitcoin",
    "utxo": "bitcoin",
    "mempool": "bitcoin",
    "segwit": "bitcoin",
    "taproot": "bitcoin",
    "psbt": "bitcoin",
    "miner": "bitcoin",
    "mining": "bitcoin",
    "blockchain": "bitcoin",
    "btc": "bitcoin",
    "lnd": "lightning",
    "eclair": "lightning",
    "bolt11": "lightning",
    "bolt12": "lightning",
    "lnurl": "lightning",
    "invoice": "lightning",
    "channel": "lightning",
    "channels": "lightning",
    "lsp": "lightning",
    "zap": "nostr",
    "zaps": "nostr",
    "relay": "nostr",
    "relays": "nostr",
    "npub": "nostr",
    "nsec": "nostr",
    "nip": "nostr",
    "nwc": "nostr",
    "ecash": "ecash",
    "fedimint": "ecash",
    "mint": "ecash",
    "mints": "ecash",
    "chaumian": "ecash",
    "coinjoin": "privacy",
    "payjoin": "privacy",
    "tor": "privacy",
    "self-custodial": "self-custody",
    "non-custodial": "self-custody",
    "seed": "self-custody",
    "multisig": "self-custody",
}

_ECOSYSTEM_PATTERNS = [
    (re.compile(rf"(?<![\w-]){re.escape(term)}(?![\w-])"), label) for term, label in ECOSYSTEMS.items()
]
_NON_TOKEN_RE = re.compile(r"[^a-z0-9\s-]")


def _tokenize(text: str) -> list[str]:
    cleaned = _NON_TOKEN_RE.sub(" ", text.lower())
    return [w for w in cleaned.split() if 3 <= len(w) <= 20 and w.isalpha()]


def static_tags(text: str, url: str) -> list[str]:
    haystack = f"{text.lower()} {url.lower()}"
    return [tag for tag in STATIC_VOCABULARY if tag in haystack]


def frequent_words(text: str, limit: int = FREQUENT_WORDS_MAX) -> list[str]:
    words = [w for w in _tokenize(text) if w not in STOP_WORDS and w not in UI_WORDS]
    counts = Counter(words)
    # Counter keeps first-seen order; sorted() is stable, so ties stay in that order.
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [word for word, _ in ranked[:limit]]


def ecosystems_for_text(text: str) -> list[str]:
    lowered = (text or "").lower()
    found: list[str] = []
    for pattern, label in _ECOSYSTEM_PATTERNS:
        if label not in found and pattern.search(lowered):
            found.append(label)
    return found


def ecosystems_for_words(words: Iterable[str]) -> set[str]:
    labels = set()
    for word in words:
        label = ECOSYSTEMS.get(word.lower())
        if label:
            labels.add(label)
        elif word.lower() in ECOSYSTEMS.values():
            labels.add(word.lower())
    return labels


def metadata_tags(metadata: Optional[dict[str, Any]]) -> list[str]:
    meta = metadata or {}
    tags = []
    if meta.get("social_links"):
        tags.append("social")
    if meta.get("emails"):
        tags.append("contact")
    if meta.get("marketing"):
        tags.append("analytics")
    return tags


def extract_tags(content: str, url: str, metadata: Optional[dict[str, Any]] = None) -> list[str]:
    text = canonicalize(content or "")
    if text.strip() == INACCESSIBLE_CONTENT:
        return list(INACCESSIBLE_TAGS)

    url = url or ""
    merged: list[str] = []
    for tag in (
        *static_tags(text, url),
        *frequent_words(text),
        *ecosystems_for_text(f"{text} {url}"),
        *metadata_tags(metadata),
    ):
        if tag not in merged:
            merged.append(tag)
    return merged[:TAGS_MAX]
