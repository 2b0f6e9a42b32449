from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from forge_interview.config import ModelSettings
from forge_interview.llm_client import (
    BackendResponseError,
    ChatMessage,
    FreeTextResult,
    MAFChatClient,
    StructuredResult,
    TextBackend,
    extract_json,
    parse_json_payload,
    repair_truncated_json,
)


class _FixedBackend(TextBackend):
    def __init__(self, result, *, repair: bool = True) -> None:
        self._result = result
        self.repair_truncated_json = repair

    async def generate(self, prompt, **kwargs):
        return self._result


def test_extract_json_prefers_fenced_block():
    text = 'Sure!\n```json\n{"a": 1}\n```\nHope that helps {"b": 2}'
    assert json.loads(extract_json(text)) == {"a": 1}


def test_extract_json_strips_trailing_commas():
    text = 'prefix {"items": [1, 2,], "x": 3,} suffix'
    assert json.loads(extract_json(text)) == {"items": [1, 2], "x": 3}


def test_extract_json_without_object_raises():
    with pytest.raises(BackendResponseError):
        extract_json("no json here")


def test_repair_closes_open_containers():
    cut = '{"extractions": [{"type": "fact", "content": "Feed daily"}, {"type": "tip", "content": "Use rye'
    repaired = json.loads(repair_truncated_json(cut))
    assert repaired["extractions"][0] == {"type": "fact", "content": "Feed daily"}
    assert repaired["extractions"][1] == {"type": "tip"}


def test_repair_keeps_complete_tail():
    cut = '{"meets_goal": true, "missing_aspects": ["timing"'
    assert json.loads(repair_truncated_json(cut)) == {
        "meets_goal": True,
        "missing_aspects": ["timing"],
    }


def test_parse_repairs_only_when_truncated():
    cut = '{"extractions": [{"type": "fact", "content": "Feed daily"}, {"type"'
    payload = parse_json_payload(cut, truncated=True)
    assert payload["extractions"][0]["content"] == "Feed daily"
    with pytest.raises(BackendResponseError):
        parse_json_payload(cut, truncated=False)


def test_parse_respects_disabled_repair():
    with pytest.raises(BackendResponseError):
        parse_json_payload('{"a": [1, 2', truncated=True, allow_repair=False)


def test_parse_rejects_non_object_payload():
    with pytest.raises(BackendResponseError):
        parse_json_payload("```json\n[1, 2]\n```", truncated=False)


async def test_generate_json_passes_structured_results_through():
    backend = _FixedBackend(StructuredResult({"ok": True}))
    assert await backend.generate_json("prompt") == {"ok": True}


async def test_generate_json_repairs_truncated_free_text():
    backend = _FixedBackend(
        FreeTextResult('{"extractions": [{"type": "fact", "content": "x"}, {', truncated=True)
    )
    payload = await backend.generate_json("prompt")
    assert payload["extractions"][0] == {"type": "fact", "content": "x"}


async def test_generate_json_without_repair_policy_fails():
    backend = _FixedBackend(
        FreeTextResult('{"extractions": [', truncated=True), repair=False
    )
    with pytest.raises(BackendResponseError):
        await backend.generate_json("prompt")


def test_merge_consecutive_roles():
    merged = MAFChatClient._merge_consecutive_roles(
        [
            ChatMessage("user", "first"),
            ChatMessage("user", "second"),
            ChatMessage("assistant", "reply"),
        ]
    )
    assert [m.role for m in merged] == ["user", "assistant"]
    assert merged[0].content == "first\n\nsecond"


def _bare_client(model: str, markers=("opus",)) -> MAFChatClient:
    client = MAFChatClient.__new__(MAFChatClient)
    client._settings = ModelSettings(
        provider="anthropic",
        model=model,
        endpoint=None,
        api_key="key",
        api_version=None,
        effort_model_markers=tuple(markers),
    )
    return client


def test_effort_only_sent_to_marker_models():
    plain = _bare_client("claude-sonnet")._call_options(
        model=None, temperature=0.1, max_tokens=100, effort="high"
    )
    assert "additional_properties" not in plain
    tuned = _bare_client("claude-opus")._call_options(
        model=None, temperature=0.1, max_tokens=100, effort="high"
    )
    assert tuned["additional_properties"] == {"output_config": {"effort": "high"}}


def test_model_override_is_forwarded():
    options = _bare_client("primary")._call_options(
        model="fast", temperature=0.1, max_tokens=10, effort=None
    )
    assert options["model_id"] == "fast"


@pytest.mark.parametrize(
    "reason, expected",
    [("length", True), ("max_tokens", True), ("stop", False), (None, False)],
)
def test_truncation_detection(reason, expected):
    response = SimpleNamespace(finish_reason=reason)
    assert MAFChatClient._is_truncated(response) is expected
