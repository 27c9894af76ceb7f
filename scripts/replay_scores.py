"""
Check refreshed scores against a from-scratch replay of the feedback log.

Both are evaluated at the same instant, so any difference means the stored
score drifted from its event history.

Usage: python scripts/replay_scores.py
"""

from datetime import datetime

from src.db.connection import get_session, init_schema
from src.db.repository import FeedbackRepository, StoryRepository
from src.logger import setup_logging
from src.scoring.engine import INITIAL_RELEVANCE_SCORE, ScoringEngine, compute_score
from src.services.clock import SystemClock


class PinnedClock:
    def __init__(self, at: datetime):
        self.at = at

    def now(self) -> datetime:
        return self.at


def replay():
    now = SystemClock().now()
    engine = ScoringEngine(clock=PinnedClock(now))

    with get_session() as session:
        story_ids = StoryRepository(session).list_ids()

    print(f"\n{'='*50}")
    print(f" Replay: {len(story_ids)} stories at {now.isoformat()}")
    print(f"{'='*50}\n")

    mismatches = 0
    for story_id in story_ids:
        refreshed = engine.refresh_story(story_id)
        with get_session() as session:
            story = StoryRepository(session).get(story_id)
            events = FeedbackRepository(session).for_story(story_id)
        replayed = compute_score(
            INITIAL_RELEVANCE_SCORE, events, now, url=story.url, suppressed_until=story.suppressed_until
        )
        if refreshed is None or refreshed.relevance_score != replayed.relevance_score:
            mismatches += 1
            stored = refreshed.relevance_score if refreshed else None
            print(f"  MISMATCH {story_id}: stored {stored}, replay {replayed.relevance_score}")

    print(f"\n  Result: {len(story_ids) - mismatches}/{len(story_ids)} consistent\n")
    return mismatches


if __name__ == "__main__":
    setup_logging()
    init_schema()
    raise SystemExit(1 if replay() else 0)
