"""HMAC-signed feedback links."""

import hashlib
import hmac
import time
from urllib.parse import urlencode

from src.config.settings import settings


def _secret() -> str | None:
    return settings.feedback_secret or settings.pushover_api_token or None


def _signing_payload(story_id: str, action: str, confidence: str, source: str, timestamp: int) -> str:
    return f"{story_id}:{action}:{confidence}:{source}:{timestamp}"


def sign(story_id: str, action: str, confidence: str, source: str, timestamp: int, secret: str) -> str:
    payload = _signing_payload(story_id, action, confidence, source, timestamp)
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def build_signed_feedback_link(
    story_id: str,
    action: str,
    base_url: str | None = None,
    confidence: str = "explicit",
    source: str = "pushover",
    timestamp: int | None = None,
    secret: str | None = None,
) -> str | None:
    """Link to /api/feedback carrying an HMAC signature. None without a secret."""
    secret = secret or _secret()
    if not secret:
        return None

    timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
    base = (base_url or settings.feedback_base_url or f"http://localhost:{settings.api_port}").rstrip("/")
    query = urlencode(
        {
            "storyId": story_id,
            "action": action,
            "confidence": confidence,
            "source": source,
            "ts": timestamp,
            "sig": sign(story_id, action, confidence, source, timestamp, secret),
        }
    )
    return f"{base}/api/feedback?{query}"


def verify_feedback_signature(
    story_id: str,
    action: str,
    confidence: str,
    source: str,
    timestamp: int,
    signature: str,
    ttl_hours: float | None = None,
    secret: str | None = None,
    now_ms: int | None = None,
) -> bool:
    """Rejects future timestamps, expired links and bad signatures."""
    secret = secret or _secret()
    if not secret:
        return False

    ttl_hours = ttl_hours if ttl_hours is not None else settings.feedback_ttl_hours
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if timestamp > now_ms or now_ms - timestamp > ttl_hours * 3600 * 1000:
        return False

    expected = sign(story_id, action, confidence, source, timestamp, secret)
    return hmac.compare_digest(expected, signature.lower())
