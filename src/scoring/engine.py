"""
Feedback-driven relevance and suppression engine.

Score of a story at instant `now`:

    baseline + Σ weight(action, confidence) * SCORE_SCALE * decay(age)
             + domain bias + source bias

decay(age) = exp(-ln 2 / HALF_LIFE_HOURS * age_hours), so an event loses half
its pull every 36 hours. Scores are fixed-point integers (2 implied decimals).

Stored scores are a cache: every refresh replays the full event log from
INITIAL_RELEVANCE_SCORE, so a refresh at any instant reproduces exactly what a
from-scratch replay would give at that instant.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Protocol
from urllib.parse import urlparse

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.settings import settings
from src.db.connection import SessionFactory, get_session
from src.db.models import FeedbackEventCreate, StoryRecord
from src.db.repository import FeedbackRepository, StoryRepository, TopicRepository
from src.errors import InvalidFeedbackError, ScoreRefreshError
from src.logger import get_logger
from src.scoring.models import (
    FeedbackAction,
    FeedbackConfidence,
    FeedbackPayload,
    ScoreComputation,
)
from src.services.clock import Clock, SystemClock

logger = get_logger(__name__)

SCORE_SCALE = 100
INITIAL_RELEVANCE_SCORE = 150
HALF_LIFE_HOURS = 36
SUPPRESSION_THRESHOLD = -150
MIN_SUPPRESSION_HOURS = 6
MAX_SUPPRESSION_HOURS = 48
SUPPRESSION_HOURS_PER_POINT = 2
TAG_ADJUSTMENT_FACTOR = 0.1
SOURCE_ADJUSTMENT_FACTOR = 0.05
DEFAULT_TOPIC_WEIGHT_RATIO = 0.3

EXPLICIT_WEIGHTS: dict[FeedbackAction, float] = {
    FeedbackAction.LIKE: 1.0,
    FeedbackAction.DISLIKE: -1.0,
    FeedbackAction.SAVE: 1.5,
    FeedbackAction.OPENED: 0,
    FeedbackAction.IGNORED: 0,
}

IMPLICIT_WEIGHTS: dict[FeedbackAction, float] = {
    FeedbackAction.LIKE: 0,
    FeedbackAction.DISLIKE: 0,
    FeedbackAction.SAVE: 0,
    FeedbackAction.OPENED: 0.3,
    FeedbackAction.IGNORED: -0.2,
}

TOPIC_SCALE: dict[FeedbackConfidence, float] = {
    FeedbackConfidence.IMPLICIT: 0.4,
    FeedbackConfidence.EXPLICIT: 0.7,
}

_HOST_PREFIXES = ("www.", "m.", "mobile.")


class FeedbackLike(Protocol):
    action: str
    confidence: str
    source: str
    created_at: datetime


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def decay_factor(created_at: datetime, now: datetime) -> float:
    """Exponential decay with a 36h half-life. Future timestamps count as age 0."""
    raw_hours = (_as_utc(now) - _as_utc(created_at)).total_seconds() / 3600
    if raw_hours < 0:
        logger.warning(
            "feedback_from_future",
            created_at=created_at.isoformat(),
            now=now.isoformat(),
        )
    hours_ago = max(0.0, raw_hours)
    return math.exp(-math.log(2) / HALF_LIFE_HOURS * hours_ago)


def suppression_hours(score: int) -> int:
    hours = round_half_up(abs(score) / SCORE_SCALE) * SUPPRESSION_HOURS_PER_POINT
    return min(MAX_SUPPRESSION_HOURS, max(MIN_SUPPRESSION_HOURS, hours))


def event_weight(action: FeedbackAction, confidence: FeedbackConfidence) -> float:
    table = IMPLICIT_WEIGHTS if confidence is FeedbackConfidence.IMPLICIT else EXPLICIT_WEIGHTS
    return table.get(action, 0)


def topic_delta(action: FeedbackAction, confidence: FeedbackConfidence) -> int:
    """Full delta applied to every topic linked to the story."""
    return round_half_up(event_weight(action, confidence) * SCORE_SCALE * TOPIC_SCALE[confidence])


def story_host(url: str | None) -> str | None:
    """Hostname stripped of www./m./mobile. prefixes; tolerates scheme-less URLs."""
    if not url or not url.strip():
        return None
    raw = url.strip()
    for candidate in (raw, f"https://{raw}"):
        try:
            hostname = urlparse(candidate).hostname
        except ValueError:
            hostname = None
        if hostname:
            for prefix in _HOST_PREFIXES:
                if hostname.startswith(prefix):
                    return hostname[len(prefix):]
            return hostname
        if "://" in raw:
            break
    logger.warning("story_host_unparsable", url=url)
    return None


def to_display_score(relevance_score: int) -> str:
    return f"{relevance_score / SCORE_SCALE:.2f}"


def _parse_confidence(value: str) -> FeedbackConfidence:
    return FeedbackConfidence.IMPLICIT if value == FeedbackConfidence.IMPLICIT.value else FeedbackConfidence.EXPLICIT


def compute_score(
    baseline: int,
    events: Iterable[FeedbackLike],
    now: datetime,
    url: str | None = None,
    suppressed_until: datetime | None = None,
) -> ScoreComputation:
    """
    Pure score evaluation.

    Used for both the routine refresh and from-scratch replays, so the two can
    never disagree. A `suppressed_until` already in the past is returned as
    None, so a stored value is either null or still active.
    """
    aggregate = float(baseline)
    reasons: list[str] = []
    host = story_host(url)
    host_totals: dict[str, float] = {}
    source_totals: dict[str, float] = {}
    feedback_total = 0.0

    for event in events:
        try:
            action = FeedbackAction(event.action)
        except ValueError:
            continue
        confidence = _parse_confidence(event.confidence)
        weight = event_weight(action, confidence)
        if weight == 0:
            continue

        decay = decay_factor(event.created_at, now)
        contribution = weight * SCORE_SCALE * decay
        aggregate += contribution
        feedback_total += contribution
        reasons.append(f"{action.value} ({confidence.value}) x{decay:.2f} => {contribution:.0f}")

        if host:
            host_totals[host] = host_totals.get(host, 0.0) + contribution
        source_totals[event.source] = source_totals.get(event.source, 0.0) + contribution

    domain_bias = sum(host_totals.values()) * TAG_ADJUSTMENT_FACTOR
    if domain_bias != 0:
        aggregate += domain_bias
        reasons.append(f"Domain bias applied: {domain_bias:.0f}")

    source_bias = sum(source_totals.values()) * SOURCE_ADJUSTMENT_FACTOR
    if source_bias != 0:
        aggregate += source_bias
        reasons.append(f"Source bias applied: {source_bias:.0f}")

    if suppressed_until is not None and _as_utc(suppressed_until) <= now:
        suppressed_until = None

    relevance_score = round_half_up(aggregate)
    if relevance_score < SUPPRESSION_THRESHOLD:
        hours = suppression_hours(relevance_score)
        suppressed_until = now + timedelta(hours=hours)
        reasons.append(
            f"Suppressed for {hours}h due to low relevance ({to_display_score(relevance_score)})"
        )
    elif relevance_score > 0 and suppressed_until is not None and _as_utc(suppressed_until) > now:
        suppressed_until = None
        reasons.append("Suppression cleared after positive feedback")

    return ScoreComputation(
        relevance_score=relevance_score,
        suppressed_until=suppressed_until,
        reasons=reasons,
        feedback_total=feedback_total,
        domain_bias=domain_bias,
        source_bias=source_bias,
    )


class ScoringEngine:
    def __init__(
        self,
        session_factory: SessionFactory = get_session,
        clock: Clock | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    def _recompute(self, session: Session, story: StoryRecord, now: datetime) -> ScoreComputation:
        events = FeedbackRepository(session).for_story(story.id)
        computation = compute_score(
            INITIAL_RELEVANCE_SCORE,
            events,
            now,
            url=story.url,
            suppressed_until=story.suppressed_until,
        )
        StoryRepository(session).update_score(
            story.id, computation.relevance_score, computation.suppressed_until
        )
        return computation

    def refresh_story(self, story_id: str) -> ScoreComputation | None:
        """Recompute and persist one story's score. None if the story is unknown."""
        now = self.clock.now()
        try:
            with self.session_factory() as session:
                story = StoryRepository(session).get(story_id)
                if story is None:
                    return None
                return self._recompute(session, story, now)
        except SQLAlchemyError as e:
            raise ScoreRefreshError(story_id, e) from e

    def record_feedback(self, payload: FeedbackPayload | dict) -> ScoreComputation | None:
        """Append a feedback event, refresh the score and push the topic delta."""
        if not isinstance(payload, FeedbackPayload):
            try:
                payload = FeedbackPayload.model_validate(payload)
            except ValidationError as e:
                raise InvalidFeedbackError(str(e)) from e

        now = self.clock.now()
        try:
            with self.session_factory() as session:
                story = StoryRepository(session).get(payload.story_id)
                if story is None:
                    logger.warning("feedback_for_unknown_story", story_id=payload.story_id)
                    return None

                FeedbackRepository(session).append(
                    FeedbackEventCreate(
                        story_id=payload.story_id,
                        action=payload.action.value,
                        confidence=payload.confidence.value,
                        source=payload.source.value,
                        created_at=now,
                        metadata=payload.metadata,
                    )
                )
                computation = self._recompute(session, story, now)

                delta = topic_delta(payload.action, payload.confidence)
                if delta != 0:
                    topic_repo = TopicRepository(session)
                    topic_ids = topic_repo.topic_ids_for_story(payload.story_id)
                    topic_repo.increment(topic_ids, delta, now)
                    logger.info(
                        "topic_scores_adjusted",
                        story_id=payload.story_id,
                        topics=len(topic_ids),
                        delta=delta,
                    )

            logger.info(
                "feedback_recorded",
                story_id=payload.story_id,
                action=payload.action.value,
                confidence=payload.confidence.value,
                relevance_score=computation.relevance_score,
            )
            return computation
        except SQLAlchemyError as e:
            logger.error("feedback_record_failed", story_id=payload.story_id, error=str(e))
            return None

    def select_for_delivery(self, limit: int | None = None) -> list[StoryRecord]:
        """
        Top unsent, unsuppressed stories by freshly refreshed score.

        Refreshes run one story at a time, each in its own transaction, so a
        failing story is skipped without touching the rest of the batch.
        """
        limit = limit or settings.delivery_top_n
        now = self.clock.now()
        with self.session_factory() as session:
            pool = StoryRepository(session).fetch_deliverable(now)
        logger.info("delivery_pool", size=len(pool))

        refreshed: list[StoryRecord] = []
        for story in pool:
            try:
                try:
                    with self.session_factory() as session:
                        computation = self._recompute(session, story, now)
                except SQLAlchemyError as e:
                    raise ScoreRefreshError(story.id, e) from e
            except ScoreRefreshError as e:
                logger.error("score_refresh_failed", story_id=e.story_id, error=str(e.cause))
                continue

            if computation.suppressed_until is not None and computation.suppressed_until > now:
                logger.info("story_suppressed", story_id=story.id, until=computation.suppressed_until.isoformat())
                continue
            refreshed.append(
                story.model_copy(
                    update={
                        "relevance_score": computation.relevance_score,
                        "suppressed_until": computation.suppressed_until,
                    }
                )
            )

        refreshed.sort(key=lambda s: (s.relevance_score, s.score or 0), reverse=True)
        return refreshed[:limit]
