"""
Heuristic topic extraction.

Stage 1 proposes short phrases from the title and URL. Stage 2 checks them
against the page content: unsupported phrases are dropped, phrases found in
headings or repeated in the body are added, and the pool is ranked by
frequency, heading presence and phrase length.
"""

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from src.ingestion.models import ContentSignals
from src.logger import get_logger

logger = get_logger(__name__)

STOP_WORDS = {
    "a", "an", "and", "the", "of", "for", "in", "on", "at", "to", "from", "by",
    "with", "about", "into", "over", "after", "before", "between", "but", "or",
    "nor", "so", "yet", "very", "is", "are", "was", "were", "be", "been", "being",
    "this", "that", "these", "those", "as", "it", "its", "if", "then", "else",
    "than", "also", "new", "news", "update",
}

GENERIC_TERMS = {
    "tech", "software", "hardware", "ai", "ml", "startup", "news", "story",
    "article", "release", "tips", "guide", "tutorial", "best", "practices",
    "developer", "engineering", "blog", "post", "update", "api",
}

MAX_FINAL_TOPICS = 7
MIN_FINAL_TOPICS = 3


@dataclass
class ExtractedTopics:
    candidates: list[str] = field(default_factory=list)
    final_topics: list[str] = field(default_factory=list)
    confirmed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)


def normalize_phrase(phrase: str) -> str | None:
    cleaned = re.sub(r"[^a-z0-9\- ]+", " ", phrase.lower())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned or cleaned in STOP_WORDS or cleaned in GENERIC_TERMS:
        return None
    if len(cleaned.split(" ")) > 3 or len(cleaned) < 3:
        return None
    return cleaned


def tokenize(text: str) -> list[str]:
    tokens = re.sub(r"[^a-z0-9\s\-]", " ", text.lower()).split()
    return [t for t in tokens if t not in STOP_WORDS and len(t) > 2]


def build_phrases(tokens: list[str], max_phrases: int) -> list[str]:
    """1- to 3-word n-grams in order of discovery, capped at max_phrases."""
    phrases: dict[str, None] = {}
    for size in range(1, 4):
        for i in range(len(tokens) - size + 1):
            normalized = normalize_phrase(" ".join(tokens[i : i + size]))
            if normalized:
                phrases.setdefault(normalized)
                if len(phrases) >= max_phrases:
                    return list(phrases)
    return list(phrases)


def _from_url(url: str) -> list[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return []
    host = parsed.hostname or ""
    for prefix in ("www.", "m.", "mobile."):
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    bits = host.split(".") + [
        piece for segment in parsed.path.split("/") for piece in re.split(r"[-_]+", segment)
    ]
    tokens = [b.lower() for b in bits if b and b.lower() not in STOP_WORDS and len(b) > 2]
    return build_phrases(tokens, 6)


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def count_occurrences(text: str, phrase: str) -> int:
    if not text or not phrase:
        return 0
    return len(re.findall(rf"\b{re.escape(phrase)}\b", text))


def _rank(pool: list[str], content_text: str, heading_text: str) -> list[str]:
    def score(topic: str) -> float:
        heading_boost = 2 if count_occurrences(heading_text, topic) > 0 else 0
        length_boost = min(len(topic.split(" ")), 3) * 0.2
        return count_occurrences(content_text, topic) * 2 + heading_boost + length_boost

    return sorted(pool, key=lambda t: (-score(t), t))


def extract_topics(title: str, url: str, content: ContentSignals | None) -> ExtractedTopics:
    candidates = _dedupe(build_phrases(tokenize(title), 10) + _from_url(url))[:10]

    body = (content.body_text if content else "").lower()
    headings = " ".join(content.headings if content else []).lower()
    combined = " ".join(
        [
            body,
            headings,
            " ".join(content.paragraphs if content else []).lower(),
            (content.description if content else "").lower(),
        ]
    )

    pool = list(candidates)
    if body:
        pool = [t for t in pool if count_occurrences(combined, t) > 0]

    derived: list[str] = []
    for phrase in build_phrases(tokenize(headings), 8):
        if phrase not in candidates and count_occurrences(combined, phrase) > 0:
            derived.append(phrase)
    for phrase in build_phrases(tokenize(body)[:60], 6):
        if phrase not in candidates and phrase not in derived and count_occurrences(combined, phrase) > 1:
            derived.append(phrase)

    refined = _dedupe(pool + derived) or candidates[:5]
    final = _rank(refined, combined, headings)[:MAX_FINAL_TOPICS]
    if len(final) < MIN_FINAL_TOPICS:
        final = _dedupe(final + candidates)[:MIN_FINAL_TOPICS]

    result = ExtractedTopics(
        candidates=candidates,
        final_topics=final,
        confirmed=[t for t in final if t in candidates],
        removed=[t for t in candidates if t not in final],
        added=[t for t in final if t not in candidates],
    )
    logger.info(
        "topics_extracted",
        candidates=len(candidates),
        final=final,
        added=result.added,
        removed=result.removed,
        content_available=bool(body),
    )
    return result
