"""Repository layer: all SQL operations isolated here"""

import json
import uuid
from datetime import datetime

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.models import (
    FeedbackEventCreate,
    FeedbackEventRecord,
    StoryCreate,
    StoryPage,
    StoryRecord,
    TopicRecord,
)
from src.db.schema import feedback_events, stories, story_topics, topics
from src.logger import get_logger

logger = get_logger(__name__)


def insert_ignoring_conflict(session: Session, table, values: dict, index_elements: list[str]) -> bool:
    """
    INSERT that treats a uniqueness conflict as "already there".

    Returns True when a row was written.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        try:
            with session.begin_nested():
                session.execute(insert(table).values(**values))
            return True
        except IntegrityError:
            return False
    return session.execute(stmt).rowcount > 0


class StoryRepository:
    """
    Repository for managing story records in the database.
    """

    def __init__(self, session: Session):
        self.session = session

    def exists(self, story_id: str) -> bool:
        found = self.session.execute(
            select(stories.c.id).where(stories.c.id == story_id)
        ).first()
        return found is not None

    def get(self, story_id: str) -> StoryRecord | None:
        row = self.session.execute(select(stories).where(stories.c.id == story_id)).first()
        return StoryRecord(**row._mapping) if row else None

    def insert(self, story: StoryCreate) -> bool:
        """Insert once; a second insert for the same id is ignored."""
        inserted = insert_ignoring_conflict(
            self.session, stories, story.model_dump(), index_elements=["id"]
        )
        if not inserted:
            logger.info("story_already_stored", story_id=story.id)
        return inserted

    def update_score(
        self, story_id: str, relevance_score: int, suppressed_until: datetime | None
    ) -> None:
        self.session.execute(
            update(stories)
            .where(stories.c.id == story_id)
            .values(relevance_score=relevance_score, suppressed_until=suppressed_until)
        )

    def mark_sent(self, story_id: str, at: datetime) -> None:
        self.session.execute(
            update(stories)
            .where(stories.c.id == story_id)
            .values(notification_sent=True, last_notified_at=at)
        )

    def fetch_deliverable(self, now: datetime) -> list[StoryRecord]:
        """Unsent stories that are not currently suppressed."""
        result = self.session.execute(
            select(stories).where(
                and_(
                    stories.c.notification_sent.is_(False),
                    or_(
                        stories.c.suppressed_until.is_(None),
                        stories.c.suppressed_until <= now,
                    ),
                )
            )
        )
        return [StoryRecord(**r._mapping) for r in result.fetchall()]

    def list_ids(self) -> list[str]:
        return list(self.session.execute(select(stories.c.id)).scalars())

    def list_page(
        self, page: int = 1, limit: int = 20, notification_sent: bool | None = None
    ) -> StoryPage:
        condition = (
            stories.c.notification_sent.is_(notification_sent)
            if notification_sent is not None
            else None
        )
        count_query = select(func.count()).select_from(stories)
        query = select(stories).order_by(stories.c.first_seen_at.desc(), stories.c.id)
        if condition is not None:
            count_query = count_query.where(condition)
            query = query.where(condition)

        total = self.session.execute(count_query).scalar_one()
        result = self.session.execute(query.offset((page - 1) * limit).limit(limit))
        return StoryPage(
            items=[StoryRecord(**r._mapping) for r in result.fetchall()],
            total=total,
            page=page,
            limit=limit,
        )


class FeedbackRepository:
    """Append-only feedback log."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, event: FeedbackEventCreate) -> FeedbackEventRecord:
        record = FeedbackEventRecord(
            id=str(uuid.uuid4()),
            story_id=event.story_id,
            action=event.action,
            confidence=event.confidence,
            source=event.source,
            created_at=event.created_at,
            metadata=json.dumps(event.metadata) if event.metadata else None,
        )
        self.session.execute(insert(feedback_events).values(**record.model_dump()))
        return record

    def for_story(self, story_id: str) -> list[FeedbackEventRecord]:
        result = self.session.execute(
            select(feedback_events)
            .where(feedback_events.c.story_id == story_id)
            .order_by(feedback_events.c.created_at)
        )
        return [FeedbackEventRecord(**r._mapping) for r in result.fetchall()]


class TopicRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_name(self, name: str) -> TopicRecord | None:
        row = self.session.execute(
            select(topics.c.id, topics.c.name, topics.c.score).where(topics.c.name == name)
        ).first()
        return TopicRecord(**row._mapping) if row else None

    def get_or_create(self, name: str, now: datetime) -> int:
        insert_ignoring_conflict(
            self.session,
            topics,
            {"name": name, "score": 0, "created_at": now, "updated_at": now},
            index_elements=["name"],
        )
        return self.session.execute(
            select(topics.c.id).where(topics.c.name == name)
        ).scalar_one()

    def link(self, story_id: str, topic_id: int, source: str, weight: int) -> bool:
        linked = insert_ignoring_conflict(
            self.session,
            story_topics,
            {"story_id": story_id, "topic_id": topic_id, "source": source, "weight": weight},
            index_elements=["story_id", "topic_id"],
        )
        if not linked:
            logger.debug("topic_already_linked", story_id=story_id, topic_id=topic_id)
        return linked

    def topic_ids_for_story(self, story_id: str) -> list[int]:
        return list(
            self.session.execute(
                select(story_topics.c.topic_id).where(story_topics.c.story_id == story_id)
            ).scalars()
        )

    def increment(self, topic_ids: list[int], delta: int, now: datetime) -> int:
        """Atomic `score = score + delta`; no read-modify-write in Python."""
        if not topic_ids or delta == 0:
            return 0
        result = self.session.execute(
            update(topics)
            .where(topics.c.id.in_(topic_ids))
            .values(score=topics.c.score + delta, updated_at=now)
        )
        return result.rowcount
