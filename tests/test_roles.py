from __future__ import annotations

import pytest

from forge_interview.conductor import Conductor, ConductorContext
from forge_interview.extractor import Extractor
from forge_interview.llm_client import ChatMessage, StructuredResult
from forge_interview.models import ExtractionType, Forge
from forge_interview.prompts import CONDUCTOR_CONTEXT_ACK, PROGRESS_PLACEHOLDER
from forge_interview.progress import ProgressTracker
from forge_interview.validator import Validator, render_transcript


def context() -> ConductorContext:
    return ConductorContext(
        expert_name="Maria",
        domain="Sourdough Baking",
        section_title="Starter Care",
        section_goal="Keep a starter alive",
        question_text="Feeding schedule",
        question_goal="Capture feeding cadence",
    )


def test_conductor_without_history_sends_only_context(backend):
    messages = Conductor(backend).build_messages(context(), [])
    assert len(messages) == 1
    assert "Feeding schedule" in messages[0].content


def test_conductor_trims_history_and_acknowledges_context(backend):
    history = [ChatMessage("user" if n % 2 else "assistant", f"line {n}") for n in range(30)]
    messages = Conductor(backend, history_limit=5).build_messages(context(), history)
    assert messages[1] == ChatMessage("assistant", CONDUCTOR_CONTEXT_ACK)
    assert [m.content for m in messages[2:]] == [f"line {n}" for n in range(25, 30)]


def test_default_first_message_prefers_configured_text(forge):
    assert "Maria" in Conductor.default_first_message(forge)
    forge.interview_config = {"firstMessage": "  Hi Maria, ready?  "}
    assert Conductor.default_first_message(forge) == "Hi Maria, ready?"


def test_voice_prompt_lists_plan_and_progress_slot(store, sourdough):
    forge, _, _ = sourdough
    prompt = Conductor.voice_prompt(forge, ProgressTracker(store).plan(forge.id))
    assert "Section 1: Starter Care" in prompt
    assert "Final shaping tension" in prompt
    assert PROGRESS_PLACEHOLDER in prompt


async def test_one_shot_rejects_structured_results(backend):
    async def structured(*args, **kwargs):
        return StructuredResult({"text": "nope"})

    backend.generate = structured
    with pytest.raises(TypeError):
        await Conductor(backend).round_first_message(
            Forge(expert_name="Maria", domain="Bread"), ["Starter Care"]
        )


def test_transcript_labels_speakers():
    text = render_transcript([ChatMessage("assistant", "How often?"), ChatMessage("user", "Twice.")])
    assert text == "Interviewer: How often?\n\nExpert: Twice."


async def test_validator_accepts_camel_case_payload(backend, sourdough):
    _, sections, questions = sourdough
    backend.validations = [{"meetsGoal": True, "confidence": 1.7, "missingAspects": ["x"]}]
    result = await Validator(backend).validate(questions[0], sections[0], [ChatMessage("user", "Twice.")])
    assert result.meets_goal is True
    assert result.confidence == 1.0
    assert result.missing_aspects == ["x"]


@pytest.mark.parametrize(
    "raw, expected",
    [("false", False), ("True", True), ("yes", False), (1, False), (True, True)],
)
async def test_validator_reads_meets_goal_strictly(backend, sourdough, raw, expected):
    _, sections, questions = sourdough
    backend.validations = [{"meets_goal": raw, "confidence": 0.9}]
    result = await Validator(backend).validate(questions[0], sections[0], [ChatMessage("user", "Twice.")])
    assert result.meets_goal is expected


async def test_validator_failure_propagates(backend, sourdough):
    _, sections, questions = sourdough
    backend.validations = [RuntimeError("down")]
    with pytest.raises(RuntimeError):
        await Validator(backend).validate(questions[0], sections[0], [])


async def test_extractor_drops_malformed_items(backend):
    backend.extractions = [
        {
            "extractions": [
                {"type": "decision-rule", "content": "If it doubles, bake"},
                {"type": "gossip", "content": "ignored"},
                {"type": "fact", "content": "   "},
                "not an object",
            ]
        }
    ]
    items = await Extractor(backend).extract("utterance", section_title="Starter Care")
    assert [(item.type, item.content) for item in items] == [
        (ExtractionType.DECISION_RULE, "If it doubles, bake")
    ]


async def test_extractor_without_list_returns_nothing(backend):
    backend.extractions = [{"extractions": "none"}]
    assert await Extractor(backend).extract("utterance", section_title="Starter Care") == []


def test_extractor_prompt_hints_recent_items_only(backend):
    existing = [f"item {n}" for n in range(40)]
    prompt = Extractor(backend).build_prompt(
        "I feed twice daily.",
        section_title="Starter Care",
        question_text="Feeding schedule",
        existing=existing,
    )
    assert "**Current Topic:** Feeding schedule" in prompt
    assert "avoid duplicates" in prompt
    assert "- item 39" in prompt
    assert "- item 9\n" not in prompt
    assert "- item 10\n" in prompt
