"""Ingestion domain models."""

import hashlib

from pydantic import BaseModel, Field


class ContentSignals(BaseModel):
    """Compact page signals handed to the relevance oracle."""

    page_title: str = ""
    description: str = ""
    headings: list[str] = Field(default_factory=list)
    paragraphs: list[str] = Field(default_factory=list)
    has_code_blocks: bool = False
    body_text: str = ""


class StoryCandidate(BaseModel):
    """A not-yet-persisted story waiting for a relevance decision."""

    id: str
    title: str
    url: str
    source_id: str
    score: int | None = None
    rank: int | None = None
    content: ContentSignals | None = None

    model_config = {"frozen": True}


def derive_story_id(url: str) -> str:
    """
    Deterministic id for a URL.

    First 44 bits of the SHA-256 digest as a decimal string, so the same URL
    maps to the same id across runs and processes.
    """
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:11]
    return str(int(digest, 16))
