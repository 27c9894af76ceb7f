"""Source registry: how each configured source produces candidates."""

from typing import Callable

from pydantic import BaseModel, Field

from src.config.settings import parse_csv, settings
from src.ingestion.hackernews import HACKERNEWS_SOURCE_ID, HackerNewsIngestor
from src.ingestion.models import StoryCandidate

StructuredIngestor = Callable[..., list[StoryCandidate]]


class SourceCapability(BaseModel):
    """
    A source either has a structured ingestor (code-first) or is explored
    from seed URLs by the crawl controller.
    """

    source_id: str
    structured_ingestor: StructuredIngestor | None = None
    fallback_browsing_allowed: bool = False
    domain_allowlist: list[str] = Field(default_factory=list)
    seed_urls: list[str] = Field(default_factory=list)
    max_pages: int = 1
    min_score: int | None = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def supports_structured_ingest(self) -> bool:
        return self.structured_ingestor is not None


def get_source_registry() -> list[SourceCapability]:
    hackernoon_seeds = parse_csv(settings.hackernoon_seed_urls)
    hackernoon_allowlist = parse_csv(settings.hackernoon_domain_allowlist)

    return [
        SourceCapability(
            source_id=HACKERNEWS_SOURCE_ID,
            structured_ingestor=HackerNewsIngestor(),
            domain_allowlist=["news.ycombinator.com"],
            max_pages=settings.hn_max_pages,
            min_score=settings.min_hn_score,
        ),
        SourceCapability(
            source_id="hackernoon",
            fallback_browsing_allowed=True,
            domain_allowlist=hackernoon_allowlist or ["hackernoon.com"],
            seed_urls=hackernoon_seeds or ["https://hackernoon.com/"],
        ),
        SourceCapability(
            source_id="fallback-browse",
            fallback_browsing_allowed=True,
            domain_allowlist=parse_csv(settings.fallback_domain_allowlist),
            seed_urls=parse_csv(settings.fallback_seed_urls),
        ),
    ]
