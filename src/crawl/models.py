"""Crawl domain models."""

from enum import Enum

from pydantic import BaseModel, Field

from src.config.settings import settings


class BrowsingAction(str, Enum):
    CLICK = "click"
    EXTRACT = "extract"
    STOP = "stop"


class SnapshotLink(BaseModel):
    id: str
    text: str = ""
    href: str


class Snapshot(BaseModel):
    """What the decision oracle gets to see of a page."""

    url: str
    title: str = ""
    headings: list[str] = Field(default_factory=list)
    snippets: list[str] = Field(default_factory=list)
    links: list[SnapshotLink] = Field(default_factory=list)

    def find_link(self, link_id: str | None) -> SnapshotLink | None:
        if link_id is None:
            return None
        return next((link for link in self.links if link.id == link_id), None)


class BrowsingDecision(BaseModel):
    action: BrowsingAction
    target: str | None = None
    reason: str = ""

    model_config = {"frozen": True}

    @classmethod
    def stop(cls, reason: str) -> "BrowsingDecision":
        return cls(action=BrowsingAction.STOP, target=None, reason=reason)


class CrawlLimits(BaseModel):
    """Hard safety budgets for one exploration run."""

    max_pages: int = Field(default_factory=lambda: settings.crawl_max_pages, gt=0)
    max_clicks: int = Field(default_factory=lambda: settings.crawl_max_clicks, gt=0)
    max_depth: int = Field(default_factory=lambda: settings.crawl_max_depth, gt=0)
    max_candidates: int = Field(default_factory=lambda: settings.crawl_max_candidates, gt=0)
    timeout_ms: int = Field(default_factory=lambda: settings.crawl_timeout_ms, gt=0)
    nav_timeout_ms: int = Field(default_factory=lambda: settings.crawl_nav_timeout_ms, gt=0)
    decision_timeout_ms: int = Field(
        default_factory=lambda: settings.crawl_decision_timeout_ms, gt=0
    )
