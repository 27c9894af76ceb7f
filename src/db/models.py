"""Database domain models."""

from datetime import datetime

from pydantic import BaseModel, Field


class StoryCreate(BaseModel):
    """Payload for inserting a story on its first relevance match."""

    id: str
    title: str = Field(..., min_length=1)
    url: str | None = None
    score: int | None = None
    rank: int | None = None
    date: str
    reason: str | None = None
    relevance_score: int
    notification_sent: bool = False
    first_seen_at: datetime


class StoryRecord(BaseModel):
    """A story row returned from the database."""

    id: str
    title: str
    url: str | None = None
    score: int | None = None
    rank: int | None = None
    date: str
    reason: str | None = None
    relevance_score: int
    notification_sent: bool = False
    first_seen_at: datetime
    last_notified_at: datetime | None = None
    suppressed_until: datetime | None = None

    model_config = {"frozen": True}


class FeedbackEventCreate(BaseModel):
    story_id: str
    action: str
    confidence: str
    source: str
    created_at: datetime
    metadata: dict | None = None


class FeedbackEventRecord(BaseModel):
    """An append-only feedback row. Never mutated."""

    id: str
    story_id: str
    action: str
    confidence: str
    source: str
    created_at: datetime
    metadata: str | None = None

    model_config = {"frozen": True}


class TopicRecord(BaseModel):
    id: int
    name: str
    score: int = 0

    model_config = {"frozen": True}


class StoryPage(BaseModel):
    """One page of stories for the listing endpoint."""

    items: list[StoryRecord]
    total: int
    page: int
    limit: int
