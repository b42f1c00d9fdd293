"""Site-aware raw text extraction from rendered page snapshots.

Strategies are tried in a fixed order; the first whose predicate accepts the
URL wins. Adding a site handler means adding one SiteStrategy to EXTRACTORS.
Extractors only return raw text. Summaries and length caps are applied later
by the normalizer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, NavigableString, Tag
from loguru import logger

from kbcrawler.crawler.fetcher import PageSnapshot
from kbcrawler.crawler.normalizer import collapse_whitespace
from kbcrawler.crawler.tagging import INACCESSIBLE_CONTENT

MIN_BODY_CHARS = 100

REPOSITORY_HOSTS = ("github.com", "gitlab.com", "codeberg.org")
SOCIAL_HOSTS = ("twitter.com", "x.com", "instagram.com", "tiktok.com", "threads.net", "facebook.com")
FORUM_HOSTS = ("groups.google.com", "groups.io", "reddit.com", "stacker.news", "delvingbitcoin.org")
FORUM_HOST_PREFIXES = ("forum.", "forums.", "community.", "discuss.", "lists.")
FORUM_PATH_MARKERS = ("/forum", "/g/", "/groups/", "/mailman/", "/pipermail/")
TOPIC_KEYWORDS = ("bitcoin", "lightning", "nostr", "cashu", "ecash", "wallet")

CHROME_DENYLIST = (
    "nav",
    "header",
    "footer",
    "aside",
    "[role=navigation]",
    "[role=banner]",
    "[role=contentinfo]",
    ".sidebar",
    ".menu",
    ".breadcrumb",
)
CONTENT_CONTAINERS = (
    "main",
    "article",
    "[role=main]",
    "#content",
    ".content",
    ".main-content",
    ".post-content",
    ".entry-content",
    ".docs-content",
)
HIDDEN_TAGS = {"script", "style", "noscript", "template", "svg", "iframe", "head"}

SOCIAL_LINK_HOSTS = (
    "twitter.com",
    "x.com",
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "youtube.com",
    "t.me",
    "telegram.me",
    "discord.gg",
    "discord.com",
    "mastodon.social",
    "primal.net",
    "njump.me",
    "github.com",
)
MARKETING_SIGNATURES = {
    "google-analytics": ("google-analytics.com", "gtag(", "googletagmanager.com"),
    "facebook-pixel": ("fbq(", "connect.facebook.net"),
    "hotjar": ("static.hotjar.com", "hotjar"),
    "segment": ("cdn.segment.com",),
    "mixpanel": ("mixpanel",),
    "hubspot": ("js.hs-scripts.com", "hs-analytics"),
    "plausible": ("plausible.io",),
    "matomo": ("matomo", "piwik"),
}
BOILERPLATE_MARKERS = (
    "enable javascript",
    "javascript is disabled",
    "checking your browser",
    "please enable cookies",
    "we use cookies",
    "accept all cookies",
)

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_CSS_RULE_RE = re.compile(r"[\w#.:\-\[\]=\"' >,*]+\s*\{[^{}]*:[^{}]*\}")
_COUNT_RE = re.compile(
    r"([\d][\d,.]*\s*[kKmM]?)\s+(members|subscribers|topics|posts|messages|threads|replies|users)\b",
    re.IGNORECASE,
)
_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(?:\.0+)?\s*(?:;|$)")


@dataclass
class ExtractionResult:
    text: str
    title: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    extractor: str = "generic"


class SiteStrategy(NamedTuple):
    name: str
    matches: Callable[[str], bool]
    extract: Callable[[PageSnapshot, BeautifulSoup, dict], str]


# --- DOM helpers ---


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _text(node) -> str:
    if node is None:
        return ""
    return collapse_whitespace(node.get_text(" ", strip=True))


def _select_text(soup: BeautifulSoup, selectors) -> str:
    for selector in selectors:
        text = _text(soup.select_one(selector))
        if text:
            return text
    return ""


def _select_all_texts(soup: BeautifulSoup, selectors, limit: int, min_chars: int = 3, max_chars: int = 200) -> list[str]:
    out: list[str] = []
    for selector in selectors:
        for node in soup.select(selector):
            text = _text(node)[:max_chars]
            if len(text) >= min_chars and text not in out:
                out.append(text)
            if len(out) >= limit:
                return out
    return out


def meta_content(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        node = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
        if node and node.get("content"):
            return collapse_whitespace(str(node["content"]))
    return ""


def _is_hidden(node: Tag) -> bool:
    if node.name in HIDDEN_TAGS or node.has_attr("hidden"):
        return True
    if str(node.get("aria-hidden", "")).lower() == "true":
        return True
    return bool(_HIDDEN_STYLE_RE.search(str(node.get("style", "")).lower()))


def static_visible_text(node) -> str:
    """Visible text from inline visibility hints, for when no browser text exists."""
    if node is None:
        return ""
    if isinstance(node, NavigableString):
        return str(node).strip() if type(node) is NavigableString else ""
    if not isinstance(node, Tag) or _is_hidden(node):
        return ""
    parts = [static_visible_text(child) for child in node.children]
    return " ".join(p for p in parts if p)


def looks_like_boilerplate(text: str) -> bool:
    """CSS or anti-bot/cookie notices captured instead of page content."""
    sample = (text or "")[:4000]
    if not sample:
        return False
    lowered = sample.lower()
    if lowered.lstrip().startswith(("@media", ":root", "@font-face", "@import")):
        return True
    if len(_CSS_RULE_RE.findall(sample)) >= 3:
        return True
    if sum(sample.count(ch) for ch in "{};") / max(len(sample), 1) > 0.03:
        return True
    return len(sample) < 400 and any(marker in lowered for marker in BOILERPLATE_MARKERS)


def _host(url: str) -> str:
    return (urlparse(url or "").hostname or "").lower()


def _host_in(url: str, hosts) -> bool:
    host = _host(url)
    return any(host == h or host.endswith(f".{h}") for h in hosts)


# --- metadata ---


def extract_metadata(soup: BeautifulSoup, page_url: str, snapshot_title: str = "") -> dict[str, Any]:
    page_host = _host(page_url)
    social_links: list[str] = []
    emails: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href.lower().startswith("mailto:"):
            address = href[7:].split("?", 1)[0].strip()
            if address and address not in emails:
                emails.append(address)
            continue
        host = _host(href)
        if host and host != page_host and _host_in(href, SOCIAL_LINK_HOSTS) and href not in social_links:
            social_links.append(href)

    for match in _EMAIL_RE.findall(soup.get_text(" ")):
        if match.rsplit(".", 1)[-1].lower() in {"png", "jpg", "jpeg", "gif", "svg", "webp"}:
            continue
        if match not in emails:
            emails.append(match)

    raw_html = str(soup).lower()
    marketing = [name for name, needles in MARKETING_SIGNATURES.items() if any(n in raw_html for n in needles)]

    title = snapshot_title or _text(soup.title) or meta_content(soup, "og:title", "twitter:title")
    return {
        "title": title,
        "description": meta_content(soup, "description", "og:description", "twitter:description"),
        "social_links": social_links[:10],
        "emails": emails[:10],
        "marketing": marketing,
    }


# --- strategies ---


def is_repository(url: str) -> bool:
    return _host_in(url, REPOSITORY_HOSTS)


def is_short_form_social(url: str) -> bool:
    return _host_in(url, SOCIAL_HOSTS)


def is_forum(url: str) -> bool:
    if _host_in(url, FORUM_HOSTS):
        return True
    host = _host(url)
    path = (urlparse(url).path or "").lower()
    return host.startswith(FORUM_HOST_PREFIXES) or any(marker in path for marker in FORUM_PATH_MARKERS)


def is_topic_site(url: str) -> bool:
    lowered = (url or "").lower()
    return any(keyword in lowered for keyword in TOPIC_KEYWORDS)


def extract_repository(snapshot: PageSnapshot, soup: BeautifulSoup, metadata: dict) -> str:
    segments = [s for s in (urlparse(snapshot.url).path or "").split("/") if s]
    title = metadata.get("title", "")
    if len(segments) == 1:
        name = _select_text(soup, [".p-name", ".vcard-fullname", "[itemprop=name]"])
        bio = _select_text(soup, [".p-note", ".user-profile-bio", "[data-bio-text]"]) or metadata.get("description", "")
        projects = _select_all_texts(
            soup,
            [".pinned-item-list-item .repo", "span.repo", "[itemprop='name codeRepository']"],
            limit=6,
        )
        metadata["projects"] = projects
        parts = [name or title, bio]
        if projects:
            parts.append("Projects: " + ", ".join(projects))
        return ". ".join(p for p in parts if p)

    readme = _select_text(soup, ["article.markdown-body", ".markdown-body", "#readme", "[data-testid=readme]", ".readme"])
    if len(readme) > MIN_BODY_CHARS:
        body = readme
    else:
        description = _select_text(soup, ["[itemprop=about]", ".repository-content .description", "p.f4"])
        description = description or metadata.get("description", "")
        repo_name = _select_text(soup, ["strong[itemprop=name]", ".repohead h1", "main h1"])
        if len(description) > 20:
            body = f"{description} {repo_name or title}".strip()
        else:
            main = _select_text(soup, ["main", ".repository-content", "#js-repo-pjax-container"])
            body = main if len(main) > 50 else title

    topics = _select_all_texts(soup, ["a.topic-tag", "[data-octo-click=topic_click]"], limit=10)
    counters = {}
    for label, selectors in (
        ("stars", ["#repo-stars-counter-star", "a[href$='/stargazers'] strong"]),
        ("forks", ["#repo-network-counter", "a[href$='/forks'] strong"]),
        ("watchers", ["a[href$='/watchers'] strong"]),
    ):
        value = _select_text(soup, selectors)
        if value:
            counters[label] = value
    metadata["topics"] = topics
    metadata["repository"] = counters
    return body


def extract_short_form_social(snapshot: PageSnapshot, soup: BeautifulSoup, metadata: dict) -> str:
    # These hosts refuse automated rendering; only <meta> tags are trusted.
    title = meta_content(soup, "og:title", "twitter:title") or metadata.get("title", "")
    description = meta_content(soup, "og:description", "twitter:description", "description")
    return ". ".join(p for p in (title, description) if p)


def extract_forum(snapshot: PageSnapshot, soup: BeautifulSoup, metadata: dict) -> str:
    for selector in CHROME_DENYLIST:
        for node in soup.select(selector):
            node.decompose()

    name = _select_text(soup, [".group-name", "[itemprop=name]", "h1"]) or metadata.get("title", "")
    description = _select_text(soup, [".group-description", "[itemprop=description]", ".description"])
    description = description or metadata.get("description", "")
    body_text = _text(soup.body or soup)
    counts = []
    for value, unit in _COUNT_RE.findall(body_text):
        phrase = f"{value.strip()} {unit.lower()}"
        if phrase not in counts:
            counts.append(phrase)
    topics = _select_all_texts(
        soup,
        ["a.topic-title", ".topic-list a.title", ".thread-title a", "a[href*='/t/']", "a[href*='/topic/']", "h3 a"],
        limit=10,
        min_chars=5,
    )
    excerpts = _select_all_texts(
        soup,
        [".cooked", ".message-body", ".post-body", "[itemprop=text]", ".msg-body", "blockquote"],
        limit=5,
        min_chars=20,
    )
    metadata["forum"] = {"counts": counts[:5], "topics": topics}

    parts = [name, description]
    if counts:
        parts.append(", ".join(counts[:5]))
    if topics:
        parts.append("Recent topics: " + "; ".join(topics))
    parts.extend(excerpts)
    return ". ".join(p for p in parts if p)


def extract_topic_site(snapshot: PageSnapshot, soup: BeautifulSoup, metadata: dict) -> str:
    for selector in CONTENT_CONTAINERS:
        text = collapse_whitespace(static_visible_text(soup.select_one(selector)))
        if len(text) >= MIN_BODY_CHARS and not looks_like_boilerplate(text):
            return text
    return extract_generic(snapshot, soup, metadata)


def extract_generic(snapshot: PageSnapshot, soup: BeautifulSoup, metadata: dict) -> str:
    if snapshot.visible_text is not None:
        text = collapse_whitespace(snapshot.visible_text)
    else:
        text = collapse_whitespace(static_visible_text(soup.body or soup))
    if looks_like_boilerplate(text):
        logger.debug(f"discarding boilerplate text captured from {snapshot.url}")
        return ""
    return text


EXTRACTORS: list[SiteStrategy] = [
    SiteStrategy("repository", is_repository, extract_repository),
    SiteStrategy("social", is_short_form_social, extract_short_form_social),
    SiteStrategy("forum", is_forum, extract_forum),
    SiteStrategy("topic", is_topic_site, extract_topic_site),
    SiteStrategy("generic", lambda _url: True, extract_generic),
]


def select_strategy(url: str, strategies: list[SiteStrategy] | None = None) -> SiteStrategy:
    for strategy in strategies or EXTRACTORS:
        if strategy.matches(url):
            return strategy
    return EXTRACTORS[-1]


def extract(snapshot: PageSnapshot, strategies: list[SiteStrategy] | None = None) -> ExtractionResult:
    """Run the matching strategy, degrading to meta description + title."""
    soup = _soup(snapshot.html)
    metadata = extract_metadata(soup, snapshot.final_url or snapshot.url, snapshot.title)
    title = metadata["title"]
    description = metadata["description"]
    strategy = select_strategy(snapshot.url, strategies)

    try:
        text = collapse_whitespace(strategy.extract(snapshot, soup, metadata))
    except Exception as exc:
        logger.warning(f"{strategy.name} extractor failed for {snapshot.url}: {exc}; using title/meta")
        text = ""

    fallback = f"{description} {title}".strip()
    if len(text) < MIN_BODY_CHARS and len(fallback) > len(text):
        text = fallback
    if not text:
        text = INACCESSIBLE_CONTENT
    return ExtractionResult(
        text=text,
        title=title,
        description=description,
        metadata=metadata,
        extractor=strategy.name,
    )
