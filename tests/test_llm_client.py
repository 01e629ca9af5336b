from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from librarian.models import LLMRetryError, ResponsesClient
from librarian.models.llm_client import LLMRequest
from librarian.queries import QueryExpander, QueryExpansion


def _response(text: str) -> str:
    return json.dumps(
        {
            "id": "resp_mock",
            "object": "response",
            "status": "completed",
            "output": [
                {
                    "id": "msg_mock",
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": text}],
                }
            ],
        }
    )


def test_responses_client_extracts_structured_output() -> None:
    payloads: List[Dict[str, Any]] = []

    def transport(payload: Dict[str, Any]) -> str:
        payloads.append(payload)
        return _response(json.dumps({"queries": ["login css", "button component"]}))

    client = ResponsesClient(model="gpt-5-mini", transport=transport)
    result = client.invoke(LLMRequest(prompt="q", system_prompt="sys", response_model=QueryExpansion))

    assert result.queries == ["login css", "button component"]
    schema = payloads[0]["text"]["format"]["schema"]
    assert schema["additionalProperties"] is False
    assert payloads[0]["input"][0]["role"] == "system"


def test_bare_list_and_code_fence_are_accepted() -> None:
    def transport(_: Dict[str, Any]) -> str:
        return _response('```json\n["login css", "login html",]\n```')

    client = ResponsesClient(model="gpt-5-mini", transport=transport)
    result = client.invoke(LLMRequest(prompt="q", response_model=QueryExpansion))

    assert result.queries == ["login css", "login html"]


def test_invalid_output_is_retried_then_raises() -> None:
    calls: List[int] = []

    def transport(_: Dict[str, Any]) -> str:
        calls.append(1)
        return _response("sorry, I cannot help")

    client = ResponsesClient(model="gpt-5-mini", transport=transport, max_attempts=2, retry_delay=0.0)

    with pytest.raises(LLMRetryError):
        client.invoke(LLMRequest(prompt="q", response_model=QueryExpansion))
    assert len(calls) == 2


def test_default_transport_requires_an_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LIBRARIAN_LLM_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        ResponsesClient(model="gpt-5-mini")


def test_query_expander_keeps_base_queries_first_and_caps() -> None:
    def transport(_: Dict[str, Any]) -> str:
        return _response(json.dumps({"queries": ["a b", "c d", "e f"]}))

    expander = QueryExpander(ResponsesClient(model="gpt-5-mini", transport=transport))

    assert expander.expand("request", ["request"], 3) == ["request", "a b", "c d"]
