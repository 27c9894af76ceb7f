"""Relevance gate models."""

from pydantic import BaseModel


class RelevanceResponse(BaseModel):
    """LLM relevance gate output."""

    relevant: bool
    reason: str = ""


class RelevanceMatch(BaseModel):
    reason: str

    model_config = {"frozen": True}
