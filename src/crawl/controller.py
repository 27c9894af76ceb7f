"""
Bounded autonomous crawl controller.

A breadth-first walk over (url, depth) pairs whose transition function is an
untrusted decision oracle. Four budgets bound it: pages, clicks, depth and
wall-clock time, plus a cap on extracted candidates. Every exit path returns
whatever candidates were collected and releases the browser.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlparse

from src.crawl.browser import BrowserSession, PlaywrightBrowser
from src.crawl.decision import DecisionOracle
from src.crawl.models import BrowsingAction, CrawlLimits, Snapshot
from src.errors import BudgetExceeded, DomainViolation, NavigationError
from src.ingestion.models import StoryCandidate, derive_story_id
from src.logger import get_logger

logger = get_logger(__name__)


def host_of(url: str) -> str | None:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def is_domain_allowed(url: str, allowlist: list[str]) -> bool:
    """Exact host match or a subdomain of an allowlisted domain."""
    hostname = host_of(url)
    if not hostname or not allowlist:
        return False
    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in allowlist)


def ensure_allowed(url: str, allowlist: list[str]) -> None:
    if not is_domain_allowed(url, allowlist):
        raise DomainViolation(f"{url} is outside the allowlist")


def resolve_allowlist(seed_url: str, domain_allowlist: list[str] | None) -> list[str]:
    allowlist = [d.strip().lower() for d in (domain_allowlist or []) if d and d.strip()]
    if allowlist:
        return allowlist
    seed_host = host_of(seed_url)
    return [seed_host] if seed_host else []


def _launch_browser() -> BrowserSession:
    browser = PlaywrightBrowser()
    browser.start()
    return browser


@dataclass
class CrawlRun:
    """Bookkeeping for a single explore() call."""

    seed_url: str
    source_id: str
    allowlist: list[str]
    limits: CrawlLimits
    started: float
    queue: deque = field(default_factory=deque)
    visited: set[str] = field(default_factory=set)
    candidates: list[StoryCandidate] = field(default_factory=list)
    pages_visited: int = 0
    clicks: int = 0


class CrawlController:
    def __init__(
        self,
        oracle: DecisionOracle | None = None,
        browser_factory: Callable[[], BrowserSession] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.oracle = oracle or DecisionOracle()
        self.browser_factory = browser_factory or _launch_browser
        self._monotonic = monotonic

    def explore(
        self,
        seed_url: str,
        domain_allowlist: list[str] | None = None,
        limits: CrawlLimits | None = None,
        source_id: str = "fallback-browse",
    ) -> list[StoryCandidate]:
        """Explore from `seed_url` and return the extracted candidates. Never raises."""
        limits = limits or CrawlLimits()
        allowlist = resolve_allowlist(seed_url, domain_allowlist)
        if not allowlist:
            logger.warning("crawl_aborted_no_allowlist", source=source_id, seed=seed_url)
            return []

        run = CrawlRun(
            seed_url=seed_url,
            source_id=source_id,
            allowlist=allowlist,
            limits=limits,
            started=self._monotonic(),
        )
        run.queue.append((seed_url, 0))

        session: BrowserSession | None = None
        try:
            session = self.browser_factory()
            self._drive(run, session)
        except BudgetExceeded as e:
            logger.info("crawl_budget_exhausted", source=source_id, budget=e.budget, limit=e.limit)
        except Exception as e:
            logger.error("crawl_failed", source=source_id, seed=seed_url, error=str(e))
        finally:
            if session is not None:
                try:
                    session.close()
                except Exception as e:
                    logger.warning("browser_release_failed", source=source_id, error=str(e))

        logger.info(
            "crawl_finished",
            source=source_id,
            seed=seed_url,
            pages=run.pages_visited,
            clicks=run.clicks,
            candidates=len(run.candidates),
        )
        return run.candidates

    def _drive(self, run: CrawlRun, session: BrowserSession) -> None:
        limits = run.limits
        while run.queue:
            remaining_ms = self._check_budgets(run)

            url, depth = run.queue.popleft()
            if url in run.visited:
                logger.info("duplicate_url_skipped", source=run.source_id, url=url)
                continue
            try:
                ensure_allowed(url, run.allowlist)
            except DomainViolation:
                logger.warning("url_outside_allowlist", source=run.source_id, url=url)
                continue

            run.visited.add(url)
            run.pages_visited += 1

            try:
                snapshot = session.fetch(url, min(limits.nav_timeout_ms, remaining_ms))
            except NavigationError as e:
                logger.warning("page_fetch_failed", source=run.source_id, url=url, error=str(e))
                continue

            decision = self.oracle.decide(
                snapshot, min(limits.decision_timeout_ms, self._remaining_ms(run))
            )
            logger.info(
                "browsing_decision",
                source=run.source_id,
                action=decision.action.value,
                target=decision.target,
                reason=decision.reason,
            )

            if decision.action is BrowsingAction.EXTRACT:
                self._extract(run, session, snapshot)
            elif decision.action is BrowsingAction.CLICK:
                self._click(run, snapshot, decision.target, depth)
            else:
                logger.info("crawl_stopped_by_oracle", source=run.source_id, url=url)
                return

    def _remaining_ms(self, run: CrawlRun) -> int:
        elapsed_ms = (self._monotonic() - run.started) * 1000
        return max(1, int(run.limits.timeout_ms - elapsed_ms))

    def _check_budgets(self, run: CrawlRun) -> int:
        elapsed_ms = (self._monotonic() - run.started) * 1000
        if elapsed_ms >= run.limits.timeout_ms:
            raise BudgetExceeded("time", run.limits.timeout_ms)
        if run.pages_visited >= run.limits.max_pages:
            raise BudgetExceeded("pages", run.limits.max_pages)
        return max(1, int(run.limits.timeout_ms - elapsed_ms))

    def _extract(self, run: CrawlRun, session: BrowserSession, snapshot: Snapshot) -> None:
        try:
            content = session.extract_content()
        except NavigationError as e:
            logger.warning("content_extract_failed", source=run.source_id, url=snapshot.url, error=str(e))
            return

        run.candidates.append(
            StoryCandidate(
                id=derive_story_id(snapshot.url),
                title=snapshot.title or "Untitled",
                url=snapshot.url,
                source_id=run.source_id,
                content=content,
            )
        )
        if len(run.candidates) >= run.limits.max_candidates:
            raise BudgetExceeded("candidates", run.limits.max_candidates)

    def _click(self, run: CrawlRun, snapshot: Snapshot, target: str | None, depth: int) -> None:
        if run.clicks >= run.limits.max_clicks:
            raise BudgetExceeded("clicks", run.limits.max_clicks)

        link = snapshot.find_link(target)
        if link is None:
            logger.warning("click_rejected", source=run.source_id, target=target, reason="unknown_target")
            return
        try:
            ensure_allowed(link.href, run.allowlist)
        except DomainViolation:
            logger.warning("click_rejected", source=run.source_id, href=link.href, reason="outside_allowlist")
            return
        if link.href in run.visited:
            logger.warning("click_rejected", source=run.source_id, href=link.href, reason="already_visited")
            return
        if depth + 1 > run.limits.max_depth:
            logger.warning("click_rejected", source=run.source_id, href=link.href, reason="max_depth")
            return

        run.queue.append((link.href, depth + 1))
        run.clicks += 1
