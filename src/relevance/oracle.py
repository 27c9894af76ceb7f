"""
LLM relevance gate.

A match always carries a one-sentence reason; "not relevant" is None.
Transport and parse failures are raised as RelevanceOracleError so the
caller can drop just that candidate.
"""

import json
import re
from pathlib import Path

from src.config.settings import settings
from src.errors import RelevanceOracleError
from src.ingestion.models import ContentSignals, StoryCandidate
from src.logger import get_logger
from src.relevance.models import RelevanceMatch, RelevanceResponse
from src.relevance.prompts import RELEVANCE_PROMPT, RELEVANCE_SYSTEM_PROMPT
from src.services.llm import LLMClient

logger = get_logger(__name__)


def load_interests(path: str | Path | None = None) -> list[str]:
    """Interests are a JSON list of strings. Missing or malformed file -> []."""
    path = Path(path or settings.interests_path)
    if not path.exists():
        logger.warning("interests_file_missing", path=str(path))
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("interests_file_unreadable", path=str(path), error=str(e))
        return []
    if isinstance(data, dict):
        data = data.get("interests", [])
    return [str(item) for item in data if str(item).strip()] if isinstance(data, list) else []


def first_sentence(text: str) -> str:
    text = " ".join(text.split())
    match = re.match(r"(.+?[.!?])(\s|$)", text)
    return match.group(1) if match else text


class RelevanceOracle:
    def __init__(self, llm_client: LLMClient | None = None, interests: list[str] | None = None):
        self.llm = llm_client or LLMClient()
        self.interests = interests if interests is not None else load_interests()

    def check_relevance(
        self, candidate: StoryCandidate, content: ContentSignals
    ) -> RelevanceMatch | None:
        prompt = RELEVANCE_PROMPT.format(
            title=candidate.title,
            score=candidate.score if candidate.score is not None else "n/a",
            rank=candidate.rank if candidate.rank is not None else "n/a",
            page_title=content.page_title,
            description=content.description,
            headings="; ".join(content.headings),
            paragraphs="\n  ".join(content.paragraphs),
            has_code_blocks=content.has_code_blocks,
            body_snippet=content.body_text[:500],
        )
        system = RELEVANCE_SYSTEM_PROMPT.format(
            interests=", ".join(self.interests) or "general software engineering"
        )

        try:
            response = self.llm.call_structured(
                prompt,
                RelevanceResponse,
                system=system,
                timeout=settings.relevance_timeout_ms / 1000,
            )
        except Exception as e:
            logger.error("relevance_check_failed", title=candidate.title, error=str(e))
            raise RelevanceOracleError(f"Relevance check failed for {candidate.id}: {e}") from e

        reason = first_sentence(response.reason)
        if not response.relevant or not reason:
            return None
        return RelevanceMatch(reason=reason)
