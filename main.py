"""
Insight Tracker.

Usage:
    python main.py run                                          # Discover, score and deliver
    python main.py crawl https://example.com/blog --allow example.com
    python main.py feedback <story_id> LIKE [--implicit] [--source dashboard]
    python main.py top                                          # Preview the next delivery
    python main.py serve                                        # Feedback API
    python scripts/replay_scores.py                             # Check stored scores against a replay
"""

import argparse
import sys

from src.config.settings import settings
from src.logger import setup_logging, get_logger
from src.crawl.controller import CrawlController
from src.db.connection import check_connection, init_schema
from src.pipeline.orchestrator import PipelineOrchestrator
from src.scoring.engine import ScoringEngine, to_display_score
from src.scoring.models import FeedbackAction, FeedbackConfidence, FeedbackSource
from src.services.notifier import create_notifier, send_error_notification

setup_logging()
logger = get_logger("main")


def run_pipeline():
    summary = PipelineOrchestrator().run()

    print(f"\n{'='*70}")
    print(f" RUN: {summary.relevant_found} relevant, {summary.delivered} delivered")
    print(f"{'='*70}\n")
    for source_id, found in summary.sources.items():
        print(f"  {source_id}: {found} relevant")
    print()
    return summary


def run_crawl(seed_url: str, allow: list[str] | None):
    candidates = CrawlController().explore(seed_url, domain_allowlist=allow)

    print(f"\n{'='*70}")
    print(f" CRAWL: {seed_url} ({len(candidates)} candidates)")
    print(f"{'='*70}\n")
    for c in candidates:
        print(f"  [{c.id}] {c.title}")
        print(f"      {c.url}\n")
    return candidates


def run_feedback(story_id: str, action: str, implicit: bool, source: str):
    result = ScoringEngine().record_feedback(
        {
            "story_id": story_id,
            "action": action.upper(),
            "confidence": FeedbackConfidence.IMPLICIT if implicit else FeedbackConfidence.EXPLICIT,
            "source": source,
        }
    )
    if result is None:
        print(f"\n  Feedback not recorded for {story_id} (unknown story or store error).\n")
        return None

    print(f"\n  Score for {story_id}: {to_display_score(result.relevance_score)}")
    if result.suppressed_until:
        print(f"  Suppressed until {result.suppressed_until.isoformat()}")
    for reason in result.reasons:
        print(f"     {reason}")
    print()
    return result


def run_top(limit: int):
    stories = ScoringEngine().select_for_delivery(limit)
    if not stories:
        print("\n  No deliverable stories.\n")
        return []

    print(f"\n{'='*70}")
    print(f" TOP {len(stories)} deliverable stories")
    print(f"{'='*70}\n")
    for i, s in enumerate(stories, 1):
        print(f"  [{i}] {s.title} (relevance: {to_display_score(s.relevance_score)}, score: {s.score or 0})")
        print(f"      {s.url or '-'}")
        print(f"      {s.reason or ''}\n")
    return stories


def serve():
    import uvicorn

    uvicorn.run("src.api.app:app", host=settings.api_host, port=settings.api_port)


# CLI
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Insight Tracker")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Discover relevant stories and deliver the top ones")

    crawl = sub.add_parser("crawl", help="Explore a seed URL with the browsing agent")
    crawl.add_argument("seed")
    crawl.add_argument("--allow", nargs="*", default=None, help="Allowed domains")

    feedback = sub.add_parser("feedback", help="Record feedback for a story")
    feedback.add_argument("story_id")
    feedback.add_argument("action", type=str.upper, choices=[a.value for a in FeedbackAction])
    feedback.add_argument("--implicit", action="store_true")
    feedback.add_argument(
        "--source",
        default=FeedbackSource.SYSTEM.value,
        choices=[s.value for s in FeedbackSource],
    )

    top = sub.add_parser("top", help="Show the stories the next delivery would send")
    top.add_argument("--limit", type=int, default=settings.delivery_top_n)

    sub.add_parser("serve", help="Run the feedback API")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        init_schema()
        if not check_connection():
            logger.error("Database unavailable")
            return 1

        if args.command == "run":
            run_pipeline()
        elif args.command == "crawl":
            run_crawl(args.seed, args.allow)
        elif args.command == "feedback":
            run_feedback(args.story_id, args.action, args.implicit, args.source)
        elif args.command == "top":
            run_top(args.limit)
        elif args.command == "serve":
            serve()
    except Exception as e:
        logger.exception("fatal_error", command=args.command, error=str(e))
        send_error_notification(create_notifier(), e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
