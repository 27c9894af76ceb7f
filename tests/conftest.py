from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.db.connection import init_schema
from src.db.models import StoryCreate
from src.db.repository import StoryRepository

T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, at: datetime = T0):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, hours: float = 0, **kwargs) -> None:
        self.at = self.at + timedelta(hours=hours, **kwargs)


class RecordingNotifier:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[tuple[str, str]] = []

    def send(self, title: str, message: str) -> bool:
        self.sent.append((title, message))
        return self.ok


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    maker = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)

    @contextmanager
    def factory():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def add_story(session_factory, clock):
    def _add(story_id: str = "s1", url: str | None = "https://example.com/a", **overrides):
        values = {
            "id": story_id,
            "title": f"Story {story_id}",
            "url": url,
            "score": 120,
            "rank": 1,
            "date": clock.now().date().isoformat(),
            "reason": "Matches interests.",
            "relevance_score": 150,
            "first_seen_at": clock.now(),
        }
        values.update(overrides)
        with session_factory() as session:
            StoryRepository(session).insert(StoryCreate(**values))
        return story_id

    return _add
