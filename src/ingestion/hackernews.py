"""Hacker News structured ingestion over the public Firebase JSON API."""

import httpx

from src.config.settings import settings
from src.ingestion.models import StoryCandidate
from src.logger import get_logger

logger = get_logger(__name__)

HACKERNEWS_SOURCE_ID = "hackernews"


class HackerNewsIngestor:
    def __init__(self, client: httpx.Client | None = None, base_url: str | None = None):
        self.base_url = (base_url or settings.hn_api_base_url).rstrip("/")
        self.client = client or httpx.Client(timeout=15.0)

    def __call__(self, page: int = 1, limit: int | None = None) -> list[StoryCandidate]:
        return self.fetch(page=page, limit=limit)

    def fetch(self, page: int = 1, limit: int | None = None) -> list[StoryCandidate]:
        """One page of top stories. Rank is the 1-based position in the full list."""
        limit = limit or settings.hn_page_size
        response = self.client.get(f"{self.base_url}/topstories.json")
        response.raise_for_status()
        ids = response.json() or []

        start = (page - 1) * limit
        candidates: list[StoryCandidate] = []
        for rank, item_id in enumerate(ids[start : start + limit], start=start + 1):
            item = self._item(item_id)
            if not item or item.get("type") != "story" or item.get("dead") or item.get("deleted"):
                continue
            candidates.append(
                StoryCandidate(
                    id=str(item["id"]),
                    title=item.get("title") or "Untitled",
                    url=item.get("url") or f"https://news.ycombinator.com/item?id={item['id']}",
                    source_id=HACKERNEWS_SOURCE_ID,
                    score=item.get("score"),
                    rank=rank,
                )
            )

        logger.info("hn_page_fetched", page=page, candidates=len(candidates))
        return candidates

    def _item(self, item_id: int) -> dict | None:
        try:
            response = self.client.get(f"{self.base_url}/item/{item_id}.json")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning("hn_item_fetch_failed", item_id=item_id, error=str(e))
            return None
