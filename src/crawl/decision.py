"""
Decision oracle client.

The oracle is an LLM and its output is untrusted: every reply goes through
`sanitize_decision`, which maps anything it does not recognise to `stop`.
"""

import json
from typing import Any

from src.config.settings import settings
from src.crawl.models import BrowsingAction, BrowsingDecision, Snapshot
from src.crawl.prompts import BROWSING_SYSTEM_PROMPT
from src.errors import OracleDecisionError
from src.logger import get_logger
from src.services.llm import LLMClient

logger = get_logger(__name__)

_ALLOWED_ACTIONS = {action.value: action for action in BrowsingAction}


def sanitize_decision(raw: Any) -> BrowsingDecision:
    """Coerce an arbitrary oracle payload into one of click / extract / stop."""
    if not isinstance(raw, dict):
        return BrowsingDecision.stop("Invalid response shape")

    action_value = raw.get("action")
    action = _ALLOWED_ACTIONS.get(action_value) if isinstance(action_value, str) else None
    if action is None:
        return BrowsingDecision.stop(f"Unknown action: {str(action_value)[:40]}")

    target = raw.get("target")
    if not isinstance(target, str):
        target = None
    reason = raw.get("reason")
    if not isinstance(reason, str):
        reason = "No reason provided"

    # A click without a usable target is as good as no instruction at all
    if action is BrowsingAction.CLICK and not (target and target.strip()):
        return BrowsingDecision.stop("Click without a valid target")

    return BrowsingDecision(action=action, target=target, reason=reason)


def parse_decision(content: str) -> BrowsingDecision:
    """Parse raw oracle text. Non-JSON raises OracleDecisionError."""
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError) as e:
        raise OracleDecisionError(f"Non-JSON decision returned: {e}", raw=content) from e
    return sanitize_decision(parsed)


class DecisionOracle:
    def __init__(self, llm_client: LLMClient | None = None):
        self.llm = llm_client or LLMClient(model=settings.browsing_model)

    def decide(self, snapshot: Snapshot, timeout_ms: int | None = None) -> BrowsingDecision:
        """Ask the oracle for the next action. Never raises; failures become `stop`."""
        timeout_ms = timeout_ms or settings.crawl_decision_timeout_ms
        payload = snapshot.model_dump_json()

        try:
            try:
                content = self.llm.call(
                    payload,
                    system=BROWSING_SYSTEM_PROMPT,
                    timeout=timeout_ms / 1000,
                )
            except Exception as e:
                raise OracleDecisionError(f"Decision service failed: {e}") from e
            return parse_decision(content)
        except OracleDecisionError as e:
            logger.warning(
                "decision_forced_stop",
                url=snapshot.url,
                error=str(e),
                raw=(e.raw or "")[:120],
            )
            return BrowsingDecision.stop(str(e)[:160])
