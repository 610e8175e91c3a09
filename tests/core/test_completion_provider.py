from __future__ import annotations

# ==============================
# Completion Provider Tests
# ==============================

from typing import Any, Dict, List

import pytest
import requests

from intentchat.config.schema import CompletionConfig
from intentchat.contracts.errors import CompletionError
from intentchat.models.providers import completion_provider as cp
from intentchat.models.providers.completion_provider import ChatMessage, CompletionProvider, CompletionRequest


class _FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


def _request() -> CompletionRequest:
    return CompletionRequest(
        messages=[ChatMessage(role="system", content="be brief"), ChatMessage(role="user", content="hi")]
    )


def test_posts_message_list_to_generate(monkeypatch) -> None:
    calls: List[Dict[str, Any]] = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return _FakeResponse(body={"output": "hello!", "time": 0.42})

    monkeypatch.setattr(cp.requests, "post", fake_post)
    provider = CompletionProvider(config=CompletionConfig(llm_host="localhost:9000", timeout_seconds=7))

    result = provider.complete(_request())

    assert result.output == "hello!"
    assert result.time == 0.42
    assert calls == [
        {
            "url": "http://localhost:9000/generate",
            "json": [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}],
            "timeout": 7,
        }
    ]


def test_url_keeps_explicit_scheme() -> None:
    provider = CompletionProvider(config=CompletionConfig(llm_host="https://gpu-box:8443/", generate_path="v1/generate"))
    assert provider.url == "https://gpu-box:8443/v1/generate"


def test_transport_failure_is_wrapped(monkeypatch) -> None:
    def fake_post(url, json=None, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(cp.requests, "post", fake_post)
    with pytest.raises(CompletionError, match="unreachable"):
        CompletionProvider().complete(_request())


@pytest.mark.parametrize(
    "response, message",
    [
        (_FakeResponse(status_code=503, text="overloaded"), "HTTP 503"),
        (_FakeResponse(body=None), "non-JSON"),
        (_FakeResponse(body={"time": 1.0}), "missing 'output'"),
    ],
)
def test_unusable_responses_are_wrapped(monkeypatch, response, message) -> None:
    monkeypatch.setattr(cp.requests, "post", lambda url, json=None, timeout=None: response)
    with pytest.raises(CompletionError, match=message):
        CompletionProvider().complete(_request())
