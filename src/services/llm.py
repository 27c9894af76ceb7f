"""
LLM client via OpenRouter (OpenAI-compatible API).

Works against any OpenAI-compatible endpoint, including a local Ollama
server exposed at /v1.
"""

import json
from typing import Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from src.config.settings import settings
from src.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class LLMClient:
    def __init__(self, model: str | None = None, client: OpenAI | None = None):
        self.model = model or settings.llm_model
        self.client = client or OpenAI(
            base_url=settings.openrouter_base_url,
            api_key=settings.openrouter_api_key or "not-needed",
        )

    def call(
        self,
        prompt: str,
        system: str | None = None,
        timeout: float | None = None,
        json_mode: bool = False,
    ) -> str:
        """Raw text response. `timeout` is in seconds and disables retries."""
        messages = self._build_messages(prompt, system)
        kwargs: dict = {"model": self.model, "messages": messages}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        client = self.client
        if timeout is not None:
            # timed calls get a single attempt
            client = client.with_options(max_retries=0)
        response = client.chat.completions.create(**kwargs)
        return (response.choices[0].message.content or "").strip()

    def call_structured(
        self,
        prompt: str,
        response_model: Type[T],
        system: str | None = None,
        timeout: float | None = None,
    ) -> T:
        """
        Call LLM with JSON mode and validate against a Pydantic model.

        Malformed output never reaches the application logic: invalid JSON
        raises ValueError, a schema mismatch raises ValidationError.
        """
        raw = self.call(prompt, system=system, timeout=timeout, json_mode=True)

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("json_parse_failed", raw=raw[:300], error=str(e))
            raise ValueError(f"LLM returned invalid JSON: {e}")

        try:
            return response_model.model_validate(parsed)
        except ValidationError:
            logger.error(
                "response_validation_failed",
                model=response_model.__name__,
                parsed=parsed,
            )
            raise

    @staticmethod
    def _build_messages(prompt: str, system: str | None) -> list[dict]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages
