import pytest

from src.db.repository import StoryRepository, TopicRepository
from src.errors import RelevanceOracleError, RunInProgressError
from src.ingestion.models import ContentSignals, StoryCandidate
from src.ingestion.sources import SourceCapability
from src.pipeline.orchestrator import (
    EMPTY_POOL_MESSAGE,
    TOPIC_LINK_WEIGHT,
    PipelineOrchestrator,
    RunState,
)
from src.relevance.models import RelevanceMatch
from src.scoring.engine import ScoringEngine

from tests.conftest import RecordingNotifier


def hn(story_id: str, title: str, score: int | None = 200, rank: int = 1) -> StoryCandidate:
    return StoryCandidate(
        id=story_id,
        title=title,
        url=f"https://example.com/{story_id}",
        source_id="hackernews",
        score=score,
        rank=rank,
    )


class KeywordOracle:
    """Relevant when the title mentions a keyword; raises for 'boom'."""

    def __init__(self, keyword: str = "rust"):
        self.keyword = keyword
        self.checked: list[str] = []

    def check_relevance(self, candidate, content):
        self.checked.append(candidate.id)
        if "boom" in candidate.title.lower():
            raise RelevanceOracleError("oracle down")
        if self.keyword in candidate.title.lower():
            return RelevanceMatch(reason=f"Mentions {self.keyword}.")
        return None


class PagedIngestor:
    def __init__(self, pages: list[list[StoryCandidate]]):
        self.pages = pages
        self.requested: list[int] = []

    def __call__(self, page: int = 1, limit: int | None = None):
        self.requested.append(page)
        return self.pages[page - 1] if page <= len(self.pages) else []


class FakeCrawler:
    def __init__(self, candidates: list[StoryCandidate] | None = None, error: Exception | None = None):
        self.candidates = candidates or []
        self.error = error
        self.seeds: list[str] = []

    def explore(self, seed_url, domain_allowlist=None, limits=None, source_id="fallback-browse"):
        self.seeds.append(seed_url)
        if self.error:
            raise self.error
        return list(self.candidates)


def content_for(url: str) -> ContentSignals:
    return ContentSignals(page_title="t", body_text="rust borrow checker rust borrow checker")


@pytest.fixture
def build(session_factory, clock):
    def _build(registry, oracle=None, crawler=None, notifier=None, content_fetcher=content_for):
        return PipelineOrchestrator(
            session_factory=session_factory,
            scoring_engine=ScoringEngine(session_factory, clock),
            crawler=crawler or FakeCrawler(),
            relevance_oracle=oracle or KeywordOracle(),
            notifier=notifier or RecordingNotifier(),
            content_fetcher=content_fetcher,
            registry=registry,
            clock=clock,
        )

    return _build


def structured(ingestor, max_pages=6, min_score=100) -> SourceCapability:
    return SourceCapability(
        source_id="hackernews", structured_ingestor=ingestor, max_pages=max_pages, min_score=min_score
    )


def test_relevant_story_is_stored_with_topics_and_delivered(build, session_factory, clock):
    ingestor = PagedIngestor([[hn("1", "Rust borrow checker"), hn("2", "Gardening tips")]])
    notifier = RecordingNotifier()
    orchestrator = build([structured(ingestor)], notifier=notifier)

    summary = orchestrator.run()

    assert summary.relevant_found == 1
    assert summary.delivered == 1
    assert summary.sources == {"hackernews": 1}
    assert orchestrator.state is RunState.IDLE

    with session_factory() as session:
        story = StoryRepository(session).get("1")
        topic_ids = TopicRepository(session).topic_ids_for_story("1")
        assert not StoryRepository(session).exists("2")

    assert story.relevance_score == 150
    assert story.reason == "Mentions rust."
    assert story.date == clock.now().date().isoformat()
    assert story.notification_sent
    assert 3 <= len(topic_ids) <= 7
    assert TOPIC_LINK_WEIGHT == 45
    assert notifier.sent[0][0] == "New Insight"
    assert "Rust borrow checker" in notifier.sent[0][1]


def test_structured_pagination_stops_at_first_relevant_page(build):
    ingestor = PagedIngestor(
        [[hn("1", "Gardening")], [hn("2", "Rust async")], [hn("3", "Rust again")]]
    )
    build([structured(ingestor)]).run()
    assert ingestor.requested == [1, 2]


def test_structured_pagination_respects_max_pages(build):
    ingestor = PagedIngestor([[hn(str(i), "Gardening")] for i in range(1, 10)])
    build([structured(ingestor, max_pages=3)]).run()
    assert ingestor.requested == [1, 2, 3]


def test_low_score_candidates_are_prefiltered(build):
    oracle = KeywordOracle()
    ingestor = PagedIngestor([[hn("1", "Rust tricks", score=99), hn("2", "Rust news", score=None)]])

    summary = build([structured(ingestor)], oracle=oracle).run()

    assert oracle.checked == ["2"]
    assert summary.relevant_found == 1


def test_stored_stories_are_skipped(build, add_story):
    add_story("1")
    oracle = KeywordOracle()
    build([structured(PagedIngestor([[hn("1", "Rust")]]))], oracle=oracle).run()
    assert oracle.checked == []


def test_oracle_error_drops_only_that_candidate(build):
    ingestor = PagedIngestor([[hn("1", "Boom rust"), hn("2", "Rust wins")]])
    summary = build([structured(ingestor)]).run()
    assert summary.relevant_found == 1


def test_missing_content_skips_candidate(build):
    oracle = KeywordOracle()
    ingestor = PagedIngestor([[hn("1", "Rust")]])
    summary = build([structured(ingestor)], oracle=oracle, content_fetcher=lambda url: None).run()
    assert summary.relevant_found == 0
    assert oracle.checked == []


def test_browse_sources_use_every_seed(build):
    crawled = StoryCandidate(
        id="77",
        title="Rust in the kernel",
        url="https://blog.example/rust",
        source_id="hackernoon",
        content=ContentSignals(body_text="rust kernel rust kernel"),
    )
    crawler = FakeCrawler([crawled])
    source = SourceCapability(
        source_id="hackernoon",
        fallback_browsing_allowed=True,
        domain_allowlist=["blog.example"],
        seed_urls=["https://blog.example/", "https://blog.example/tag/rust"],
    )

    summary = build([source], crawler=crawler).run()

    assert crawler.seeds == ["https://blog.example/", "https://blog.example/tag/rust"]
    assert summary.sources == {"hackernoon": 1}


def test_source_failure_is_isolated(build):
    broken = SourceCapability(
        source_id="broken", fallback_browsing_allowed=True, seed_urls=["https://x.example/"]
    )
    ingestor = PagedIngestor([[hn("1", "Rust")]])

    summary = build([broken, structured(ingestor)], crawler=FakeCrawler(error=RuntimeError("boom"))).run()

    assert summary.sources == {"broken": 0, "hackernews": 1}


def test_empty_pool_sends_notice(build):
    notifier = RecordingNotifier()
    summary = build([], notifier=notifier).run()
    assert summary.delivered == 0
    assert notifier.sent[0][1] == EMPTY_POOL_MESSAGE


def test_failed_send_leaves_story_unsent(build, session_factory, add_story):
    add_story("1")
    delivered = build([], notifier=RecordingNotifier(ok=False)).deliver()
    assert delivered == 0
    with session_factory() as session:
        assert not StoryRepository(session).get("1").notification_sent


def test_second_run_while_running_is_rejected(build):
    errors = []

    class ReentrantIngestor:
        orchestrator = None

        def __call__(self, page: int = 1, limit: int | None = None):
            assert self.orchestrator.is_running
            try:
                self.orchestrator.run()
            except RunInProgressError as e:
                errors.append(e)
            return []

    ingestor = ReentrantIngestor()
    orchestrator = build([structured(ingestor)])
    ingestor.orchestrator = orchestrator

    orchestrator.run()

    assert len(errors) == 1
    assert orchestrator.state is RunState.IDLE
    # the lock is released afterwards
    orchestrator.run()
