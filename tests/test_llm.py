import httpx
import pytest
from openai import APITimeoutError, OpenAI

from src.crawl.decision import DecisionOracle
from src.crawl.models import BrowsingAction, Snapshot
from src.services.llm import LLMClient


def _client(handler) -> OpenAI:
    return OpenAI(
        base_url="http://llm.test/v1",
        api_key="test-key",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _timing_out(attempts: list):
    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ReadTimeout("model too slow", request=request)

    return handler


def test_call_returns_stripped_content():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": "cmpl-1",
                "object": "chat.completion",
                "created": 0,
                "model": "test-model",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": "  hello  "},
                        "finish_reason": "stop",
                    }
                ],
            },
        )

    llm = LLMClient(model="test-model", client=_client(handler))
    assert llm.call("hi", timeout=5) == "hello"


def test_timed_call_is_attempted_once():
    attempts = []
    llm = LLMClient(model="test-model", client=_client(_timing_out(attempts)))

    with pytest.raises(APITimeoutError):
        llm.call("hi", timeout=0.5)

    assert len(attempts) == 1


def test_decision_timeout_stops_after_a_single_attempt():
    attempts = []
    oracle = DecisionOracle(LLMClient(model="test-model", client=_client(_timing_out(attempts))))

    decision = oracle.decide(Snapshot(url="https://example.com"), timeout_ms=500)

    assert decision.action is BrowsingAction.STOP
    assert len(attempts) == 1
