"""
Discovery and delivery pipeline.

One run walks every registered source, gates candidates through the
relevance oracle, persists matches with their topics, then delivers the top
stories from the scoring engine. Only one run may be in flight per process.
"""

import threading
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field

from src.config.settings import settings
from src.crawl.browser import scrape_story_content
from src.crawl.controller import CrawlController
from src.db.connection import SessionFactory, get_session
from src.db.models import StoryCreate
from src.db.repository import StoryRepository, TopicRepository
from src.errors import RelevanceOracleError, RunInProgressError
from src.ingestion.models import ContentSignals, StoryCandidate
from src.ingestion.sources import SourceCapability, get_source_registry
from src.logger import get_logger
from src.relevance.oracle import RelevanceOracle
from src.scoring.engine import (
    DEFAULT_TOPIC_WEIGHT_RATIO,
    INITIAL_RELEVANCE_SCORE,
    ScoringEngine,
    round_half_up,
    to_display_score,
)
from src.services.clock import Clock, SystemClock
from src.services.notifier import (
    DEFAULT_TITLE,
    BaseNotifier,
    create_notifier,
    send_story_notification,
)
from src.topics.extractor import extract_topics

logger = get_logger(__name__)

EMPTY_POOL_MESSAGE = "No strong signals today."
TOPIC_LINK_WEIGHT = round_half_up(INITIAL_RELEVANCE_SCORE * DEFAULT_TOPIC_WEIGHT_RATIO)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunSummary(BaseModel):
    relevant_found: int = 0
    delivered: int = 0
    sources: dict[str, int] = Field(default_factory=dict)


class PipelineOrchestrator:
    def __init__(
        self,
        session_factory: SessionFactory = get_session,
        scoring_engine: ScoringEngine | None = None,
        crawler: CrawlController | None = None,
        relevance_oracle: RelevanceOracle | None = None,
        notifier: BaseNotifier | None = None,
        content_fetcher: Callable[[str], ContentSignals | None] = scrape_story_content,
        registry: list[SourceCapability] | None = None,
        clock: Clock | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.scoring_engine = scoring_engine or ScoringEngine(session_factory, self.clock)
        self._crawler = crawler
        self._relevance_oracle = relevance_oracle
        self.notifier = notifier or create_notifier()
        self.content_fetcher = content_fetcher
        self._registry = registry
        self.state = RunState.IDLE
        self._lock = threading.Lock()

    # Crawler and relevance oracle build LLM clients; created on first use.
    @property
    def crawler(self) -> CrawlController:
        if self._crawler is None:
            self._crawler = CrawlController()
        return self._crawler

    @property
    def relevance_oracle(self) -> RelevanceOracle:
        if self._relevance_oracle is None:
            self._relevance_oracle = RelevanceOracle()
        return self._relevance_oracle

    @property
    def registry(self) -> list[SourceCapability]:
        if self._registry is None:
            self._registry = get_source_registry()
        return self._registry

    @property
    def is_running(self) -> bool:
        return self.state is RunState.RUNNING

    def run(self) -> RunSummary:
        """Full discovery + delivery pass. Raises RunInProgressError if one is in flight."""
        if not self._lock.acquire(blocking=False):
            logger.warning("run_rejected_busy")
            raise RunInProgressError("A discovery run is already in progress")

        self.state = RunState.RUNNING
        try:
            logger.info("run_started")
            summary = self.discover()
            summary.delivered = self.deliver()
            logger.info(
                "run_finished",
                relevant_found=summary.relevant_found,
                delivered=summary.delivered,
                sources=summary.sources,
            )
            return summary
        finally:
            self.state = RunState.IDLE
            self._lock.release()

    def discover(self) -> RunSummary:
        summary = RunSummary()
        for source in self.registry:
            try:
                found = self._run_source(source)
            except Exception as e:
                logger.error("source_failed", source=source.source_id, error=str(e))
                found = 0
            summary.sources[source.source_id] = found
            summary.relevant_found += found
        return summary

    def _run_source(self, source: SourceCapability) -> int:
        if source.supports_structured_ingest:
            logger.info("source_structured_ingest", source=source.source_id)
            return self._ingest_structured(source)
        if source.fallback_browsing_allowed:
            if not source.seed_urls:
                logger.warning("source_without_seeds", source=source.source_id)
                return 0
            logger.info("source_fallback_browse", source=source.source_id, seeds=len(source.seed_urls))
            return self._crawl(source)
        logger.info("source_skipped", source=source.source_id)
        return 0

    def _ingest_structured(self, source: SourceCapability) -> int:
        """Page through until something relevant turns up or max_pages is reached."""
        found = 0
        for page in range(1, source.max_pages + 1):
            candidates = source.structured_ingestor(page=page)
            logger.info("structured_page_ingested", source=source.source_id, page=page, count=len(candidates))
            if not candidates:
                break
            found += self.process_candidates(candidates, source)
            if found:
                break
        return found

    def _crawl(self, source: SourceCapability) -> int:
        found = 0
        for seed in source.seed_urls:
            candidates = self.crawler.explore(
                seed, domain_allowlist=source.domain_allowlist, source_id=source.source_id
            )
            if not candidates:
                logger.info("crawl_no_candidates", source=source.source_id, seed=seed)
            found += self.process_candidates(candidates, source)
        return found

    def process_candidates(
        self, candidates: list[StoryCandidate], source: SourceCapability | None = None
    ) -> int:
        found = 0
        for candidate in candidates:
            try:
                if self.process_candidate(candidate, source):
                    found += 1
            except Exception as e:
                logger.error("candidate_failed", story_id=candidate.id, title=candidate.title, error=str(e))
        return found

    def process_candidate(
        self, candidate: StoryCandidate, source: SourceCapability | None = None
    ) -> bool:
        """Gate one candidate; True when it was stored as a new relevant story."""
        with self.session_factory() as session:
            if StoryRepository(session).exists(candidate.id):
                logger.info("story_already_processed", story_id=candidate.id)
                return False

        min_score = source.min_score if source else None
        if min_score is not None and candidate.score is not None and candidate.score < min_score:
            logger.info("prefilter_rejected", title=candidate.title, score=candidate.score, min_score=min_score)
            return False

        content = candidate.content or self.content_fetcher(candidate.url)
        if content is None:
            logger.warning("content_unavailable", title=candidate.title, url=candidate.url)
            return False

        try:
            match = self.relevance_oracle.check_relevance(candidate, content)
        except RelevanceOracleError as e:
            logger.warning("candidate_dropped", story_id=candidate.id, error=str(e))
            return False

        if match is None:
            logger.info("story_ignored", title=candidate.title)
            return False

        logger.info("story_matched", title=candidate.title, reason=match.reason)
        self._save(candidate, content, match.reason)
        return True

    def _save(self, candidate: StoryCandidate, content: ContentSignals, reason: str) -> None:
        now = self.clock.now()
        extracted = extract_topics(candidate.title, candidate.url, content)
        topic_source = "content" if content.body_text else "title"

        with self.session_factory() as session:
            inserted = StoryRepository(session).insert(
                StoryCreate(
                    id=candidate.id,
                    title=candidate.title,
                    url=candidate.url,
                    score=candidate.score,
                    rank=candidate.rank,
                    date=now.date().isoformat(),
                    reason=reason,
                    relevance_score=INITIAL_RELEVANCE_SCORE,
                    first_seen_at=now,
                )
            )
            if not inserted:
                return

            topic_repo = TopicRepository(session)
            for name in extracted.final_topics:
                topic_id = topic_repo.get_or_create(name, now)
                topic_repo.link(candidate.id, topic_id, topic_source, TOPIC_LINK_WEIGHT)

    def deliver(self, limit: int | None = None) -> int:
        """Send the top stories and mark them sent. Returns how many went out."""
        stories = self.scoring_engine.select_for_delivery(limit or settings.delivery_top_n)
        if not stories:
            logger.info("delivery_pool_empty")
            self.notifier.send(f"{DEFAULT_TITLE} - Empty", EMPTY_POOL_MESSAGE)
            return 0

        delivered = 0
        for story in stories:
            logger.info(
                "story_selected",
                title=story.title,
                relevance=to_display_score(story.relevance_score),
                score=story.score,
                reason=story.reason,
            )
            if not send_story_notification(self.notifier, story):
                continue
            with self.session_factory() as session:
                StoryRepository(session).mark_sent(story.id, self.clock.now())
            delivered += 1
        return delivered
