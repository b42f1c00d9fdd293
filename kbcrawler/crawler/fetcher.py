"""Headless browser page fetcher (Playwright/Chromium)."""
from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from kbcrawler.config import (
    CRAWL_BROWSER_ARGS,
    CRAWL_HEADLESS,
    CRAWL_LOCALE,
    CRAWL_NAVIGATION_TIMEOUT_SEC,
    CRAWL_SETTLE_TIMEOUT_SEC,
    CRAWL_USER_AGENT,
)

# Text of rendered nodes whose computed style is visible.
VISIBLE_TEXT_JS = """
() => {
  const skip = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE', 'SVG', 'IFRAME']);
  function walk(node) {
    if (!node) return '';
    if (node.nodeType === Node.TEXT_NODE) return node.textContent.trim();
    if (node.nodeType !== Node.ELEMENT_NODE || skip.has(node.tagName)) return '';
    const style = window.getComputedStyle(node);
    if (style && (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0')) {
      return '';
    }
    const parts = [];
    for (const child of node.childNodes) {
      const text = walk(child);
      if (text) parts.push(text);
    }
    return parts.join(' ');
  }
  return walk(document.body);
}
"""


class FetchError(RuntimeError):
    """Navigation or browser failure; message carries the engine's raw text."""


@dataclass
class PageSnapshot:
    url: str
    final_url: str = ""
    html: str = ""
    title: str = ""
    visible_text: str | None = None
    status_code: int | None = None
    headers: dict[str, str] = field(default_factory=dict)


class PageFetcher:
    """Fetcher contract used by the orchestrator."""

    async def fetch(self, url: str) -> PageSnapshot:
        raise NotImplementedError


class BrowserFetcher(PageFetcher):
    def __init__(
        self,
        *,
        headless: bool = CRAWL_HEADLESS,
        navigation_timeout_sec: float = CRAWL_NAVIGATION_TIMEOUT_SEC,
        settle_timeout_sec: float = CRAWL_SETTLE_TIMEOUT_SEC,
        user_agent: str = CRAWL_USER_AGENT,
        locale: str = CRAWL_LOCALE,
        browser_args: list[str] | None = None,
    ):
        self.headless = headless
        self.navigation_timeout_ms = int(navigation_timeout_sec * 1000)
        self.settle_timeout_ms = int(settle_timeout_sec * 1000)
        self.user_agent = user_agent
        self.locale = locale
        self.browser_args = list(browser_args if browser_args is not None else CRAWL_BROWSER_ARGS)

    async def fetch(self, url: str) -> PageSnapshot:
        """Render url in a fresh browser and return a DOM snapshot.

        Each call launches and closes its own browser so one page is open at a
        time and no state leaks between sites.
        """
        try:
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(headless=self.headless, args=self.browser_args)
                try:
                    context = await browser.new_context(
                        user_agent=self.user_agent,
                        locale=self.locale,
                        viewport={"width": 1366, "height": 768},
                        extra_http_headers={"Accept-Language": f"{self.locale},en;q=0.8"},
                    )
                    page = await context.new_page()
                    response = await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
                    try:
                        await page.wait_for_load_state("networkidle", timeout=self.settle_timeout_ms)
                    except PlaywrightTimeoutError:
                        logger.debug(f"networkidle not reached for {url}; using current DOM")

                    status = response.status if response else None
                    if status in {403, 429}:
                        raise FetchError(f"HTTP {status} from {url}")
                    try:
                        visible_text = await page.evaluate(VISIBLE_TEXT_JS)
                    except PlaywrightError as exc:
                        logger.debug(f"visible text evaluation failed for {url}: {exc}")
                        visible_text = None
                    return PageSnapshot(
                        url=url,
                        final_url=page.url,
                        html=await page.content(),
                        title=(await page.title() or "").strip(),
                        visible_text=visible_text,
                        status_code=status,
                        headers=dict(response.headers) if response else {},
                    )
                finally:
                    await browser.close()
        except FetchError:
            raise
        except PlaywrightError as exc:
            raise FetchError(str(exc)) from exc
