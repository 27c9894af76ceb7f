"""Feedback and scoring domain models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class FeedbackAction(str, Enum):
    LIKE = "LIKE"
    DISLIKE = "DISLIKE"
    SAVE = "SAVE"
    OPENED = "OPENED"
    IGNORED = "IGNORED"


class FeedbackConfidence(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class FeedbackSource(str, Enum):
    PUSHOVER = "pushover"
    SYSTEM = "system"
    DASHBOARD = "dashboard"


class FeedbackPayload(BaseModel):
    story_id: str = Field(..., min_length=1)
    action: FeedbackAction
    confidence: FeedbackConfidence = FeedbackConfidence.EXPLICIT
    source: FeedbackSource = FeedbackSource.PUSHOVER
    metadata: dict | None = None


class ScoreComputation(BaseModel):
    """Result of one score evaluation."""

    relevance_score: int
    suppressed_until: datetime | None = None
    reasons: list[str] = Field(default_factory=list)
    feedback_total: float = 0.0
    domain_bias: float = 0.0
    source_bias: float = 0.0
