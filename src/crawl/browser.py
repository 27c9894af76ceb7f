"""
Page fetch capability on top of Playwright (sync API).

One browser, one context, one open page at a time. Heavy assets are
blocked at the context level so a navigation only pulls the document.
"""

import re
from typing import Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from src.config.settings import settings
from src.crawl.models import Snapshot, SnapshotLink
from src.errors import NavigationError
from src.ingestion.models import ContentSignals
from src.logger import get_logger

logger = get_logger(__name__)

BLOCKED_RESOURCE_GLOB = "**/*.{png,jpg,jpeg,gif,webp,svg,css,woff,woff2,mp4,mp3}"
NON_HTML_URL = re.compile(r"\.(pdf|png|jpg|mp4)$", re.IGNORECASE)

MAX_HEADINGS = 5
MAX_SNIPPETS = 4
MAX_LINKS = 20
MAX_BODY_CHARS = 8000

# Walks text nodes under <article>/<main>/<body>, skipping chrome elements,
# and cuts at a word boundary near MAX_BODY_CHARS.
BODY_TEXT_SCRIPT = """
(maxChars) => {
  const root = document.querySelector('article') || document.querySelector('main') || document.body;
  if (!root) return '';
  const blacklist = new Set(['SCRIPT', 'STYLE', 'NAV', 'FOOTER', 'HEADER', 'NOSCRIPT', 'FORM', 'ASIDE']);
  const walker = document.createTreeWalker(root, NodeFilter.SHOW_TEXT, {
    acceptNode(node) {
      const text = (node.textContent || '').trim();
      if (!text || text.length < 40) return NodeFilter.FILTER_SKIP;
      const parent = node.parentElement;
      if (parent && blacklist.has(parent.tagName)) return NodeFilter.FILTER_SKIP;
      return NodeFilter.FILTER_ACCEPT;
    }
  });
  const chunks = [];
  let approx = 0;
  while (walker.nextNode()) {
    const text = (walker.currentNode.textContent || '').replace(/\\s+/g, ' ').trim();
    if (text) { chunks.push(text); approx += text.length + 1; }
    if (approx > maxChars * 1.2) break;
  }
  const joined = chunks.join(' ');
  if (joined.length <= maxChars) return joined;
  const truncated = joined.slice(0, maxChars);
  const lastSpace = truncated.lastIndexOf(' ');
  return truncated.slice(0, lastSpace > 2000 ? lastSpace : maxChars);
}
"""


class BrowserSession(Protocol):
    """What the crawl controller needs from a browser."""

    def fetch(self, url: str, timeout_ms: int) -> Snapshot: ...

    def extract_content(self) -> ContentSignals: ...

    def close(self) -> None: ...


def _texts(page: Page, selector: str, min_length: int = 1) -> list[str]:
    try:
        texts = page.eval_on_selector_all(
            selector, "els => els.map(el => (el.innerText || '').trim())"
        )
    except PlaywrightError:
        return []
    return [t for t in texts if len(t) >= min_length]


def _meta_description(page: Page) -> str:
    for selector in ('meta[name="description"]', 'meta[property="og:description"]'):
        try:
            value = page.eval_on_selector(selector, "el => el.getAttribute('content')")
        except PlaywrightError:
            continue
        if value:
            return value
    return ""


def capture_snapshot(page: Page, url: str) -> Snapshot:
    try:
        raw_links = page.eval_on_selector_all(
            "a",
            "els => els.map(el => ({text: (el.innerText || '').trim().slice(0, 140), href: el.href || ''}))",
        )
    except PlaywrightError:
        raw_links = []

    links = [
        SnapshotLink(id=f"link-{index}", text=link["text"], href=link["href"])
        for index, link in enumerate(l for l in raw_links if l.get("href"))
        if index < MAX_LINKS
    ]
    return Snapshot(
        url=url,
        title=page.title() or "",
        headings=_texts(page, "h1, h2")[:MAX_HEADINGS],
        snippets=_texts(page, "p", min_length=41)[:MAX_SNIPPETS],
        links=links,
    )


def extract_content_signals(page: Page) -> ContentSignals:
    try:
        body_text = page.evaluate(BODY_TEXT_SCRIPT, MAX_BODY_CHARS) or ""
    except PlaywrightError:
        body_text = ""
    try:
        has_code_blocks = page.query_selector("pre code, .highlight, .code") is not None
    except PlaywrightError:
        has_code_blocks = False

    return ContentSignals(
        page_title=(page.title() or "")[:100],
        description=_meta_description(page)[:200],
        headings=[h[:100] for h in _texts(page, "h1, h2")[:MAX_HEADINGS]],
        paragraphs=[p[:300] for p in _texts(page, "p", min_length=61)[:3]],
        has_code_blocks=has_code_blocks,
        body_text=body_text[:MAX_BODY_CHARS],
    )


class PlaywrightBrowser:
    """Headless Chromium session. Use as a context manager so it is always released."""

    def __init__(self, user_agent: str | None = None):
        self.user_agent = user_agent or settings.crawl_user_agent
        self._playwright = None
        self._browser = None
        self._context = None
        self._page: Page | None = None

    def __enter__(self) -> "PlaywrightBrowser":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def start(self) -> None:
        """Launch Chromium. A partial launch is torn down before the error propagates."""
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=True)
            self._context = self._browser.new_context(
                user_agent=self.user_agent,
                viewport={"width": 1280, "height": 720},
            )
            self._context.route(BLOCKED_RESOURCE_GLOB, lambda route: route.abort())
        except Exception:
            self.close()
            raise

    def fetch(self, url: str, timeout_ms: int) -> Snapshot:
        if self._context is None:
            self.start()
        self._close_page()
        try:
            page = self._context.new_page()
            self._page = page
            page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            return capture_snapshot(page, url)
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

    def extract_content(self) -> ContentSignals:
        if self._page is None:
            raise NavigationError("No page loaded")
        try:
            return extract_content_signals(self._page)
        except PlaywrightError as e:
            raise NavigationError(f"Content extraction failed: {e}") from e

    def close(self) -> None:
        self._close_page()
        for resource in (self._context, self._browser):
            if resource is None:
                continue
            try:
                resource.close()
            except PlaywrightError as e:
                logger.warning("browser_close_failed", error=str(e))
        if self._playwright is not None:
            self._playwright.stop()
        self._context = self._browser = self._playwright = None

    def _close_page(self) -> None:
        if self._page is None:
            return
        try:
            self._page.close()
        except PlaywrightError as e:
            logger.debug("page_close_failed", error=str(e))
        self._page = None


def scrape_story_content(url: str, timeout_ms: int = 30000) -> ContentSignals | None:
    """One-shot content fetch for structured candidates. None on any failure."""
    if NON_HTML_URL.search(url):
        logger.info("non_html_url_skipped", url=url)
        return None

    try:
        with PlaywrightBrowser() as browser:
            browser.fetch(url, timeout_ms)
            return browser.extract_content()
    except (NavigationError, PlaywrightError) as e:
        logger.error("content_scrape_failed", url=url, error=str(e))
        return None
