"""
Notification sinks.

Sending is fire-and-forget from the caller's side: failures are logged and
never raised.
"""

import abc
import html

import httpx

from src.config.settings import settings
from src.db.models import StoryRecord
from src.logger import get_logger
from src.scoring.engine import to_display_score
from src.services.signing import build_signed_feedback_link

logger = get_logger(__name__)

DEFAULT_TITLE = "Insight Tracker"

FEEDBACK_LINK_LABELS = (
    ("Relevant", "LIKE"),
    ("Not relevant", "DISLIKE"),
    ("Save for later", "SAVE"),
)


class BaseNotifier(abc.ABC):
    """Interface that any sink implements."""

    @abc.abstractmethod
    def send(self, title: str, message: str) -> bool: ...


class LogNotifier(BaseNotifier):
    """Used when no push credentials are configured."""

    def send(self, title: str, message: str) -> bool:
        logger.info("notification", title=title, message=message)
        return True


class PushoverNotifier(BaseNotifier):
    def __init__(
        self,
        user_key: str | None = None,
        api_token: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.user_key = user_key or settings.pushover_user_key
        self.api_token = api_token or settings.pushover_api_token
        self.client = client or httpx.Client(timeout=10.0)

    def send(self, title: str, message: str) -> bool:
        try:
            response = self.client.post(
                settings.pushover_url,
                json={
                    "token": self.api_token,
                    "user": self.user_key,
                    "message": message,
                    "title": title,
                    "html": 1,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("notification_failed", title=title, error=str(e))
            return False
        logger.info("notification_sent", title=title)
        return True


def create_notifier() -> BaseNotifier:
    """Pushover when credentials exist, otherwise log only."""
    if settings.pushover_user_key and settings.pushover_api_token:
        return PushoverNotifier()
    logger.warning("pushover_credentials_missing")
    return LogNotifier()


def _feedback_links(story_id: str) -> str:
    rendered = []
    for label, action in FEEDBACK_LINK_LABELS:
        url = build_signed_feedback_link(story_id, action)
        if url is None:
            return ""
        rendered.append(f'<a href="{html.escape(url)}">{html.escape(label)}</a>')
    return "\n" + " | ".join(rendered)


def format_story_message(story: StoryRecord) -> str:
    title = html.escape(story.title)
    link = f'<a href="{html.escape(story.url)}">{title}</a>' if story.url else title
    reason = html.escape(story.reason or "Highly relevant to your interests")
    return (
        f"<b>{link}</b>\n"
        f"<i>{reason}</i>\n"
        f"(Relevance: {to_display_score(story.relevance_score)}, Score: {story.score or 0})"
        f"{_feedback_links(story.id)}"
    )


def send_story_notification(notifier: BaseNotifier, story: StoryRecord) -> bool:
    return notifier.send("New Insight", format_story_message(story))


def send_error_notification(notifier: BaseNotifier, error: BaseException) -> bool:
    return notifier.send(f"{DEFAULT_TITLE} error", html.escape(f"{type(error).__name__}: {error}"))
