from __future__ import annotations

import asyncio

from conftest import seed_round
from forge_interview.models import ValidationResult
from forge_interview.progress import ProgressTracker
from forge_interview.prompts import EMPTY_PROGRESS, WRAP_UP_DIRECTIVE
from forge_interview.summarizer import (
    DisconnectPolicy,
    ProgressPushCoalescer,
    build_resume_context,
    build_resume_message,
    render_progress,
)

FALLBACK = "Hey Maria, what got you started?"


def _pass() -> ValidationResult:
    return ValidationResult(meets_goal=True, confidence=1.0)


def test_render_empty_plan(store, forge):
    assert render_progress(ProgressTracker(store).plan(forge.id)) == EMPTY_PROGRESS


def test_render_marks_current_and_answered(store, sourdough):
    forge, _, questions = sourdough
    tracker = ProgressTracker(store)
    tracker.record_validation(forge.id, questions[0].id, _pass())
    text = render_progress(tracker.plan(forge.id))
    lines = text.splitlines()
    assert lines[0] == "Section: Starter Care [active]"
    assert lines[1] == "  - [ANSWERED] Feeding schedule"
    assert lines[2] == "  - [CURRENT] Signs of a healthy starter"
    assert lines[3] == "Section: Shaping [pending]"
    assert lines[4] == "  - [pending] Pre-shaping technique"
    assert WRAP_UP_DIRECTIVE not in text


def test_render_appends_wrap_up_when_everything_answered(store, sourdough):
    forge, _, _ = sourdough
    tracker = ProgressTracker(store)
    tracker.end_round(forge.id)
    text = render_progress(tracker.plan(forge.id))
    assert text.endswith(WRAP_UP_DIRECTIVE)
    assert "[CURRENT]" not in text


def test_resume_names_completed_and_active_only(store, forge):
    _, questions = seed_round(
        store,
        forge,
        [
            ("Alpha", ["A1"]),
            ("Bravo", ["B1", "B2", "B3"]),
            ("Charlie", ["C1"]),
        ],
    )
    tracker = ProgressTracker(store)
    tracker.record_validation(forge.id, questions[0].id, _pass())
    tracker.record_validation(forge.id, questions[1].id, _pass())

    context = build_resume_context(tracker.plan(forge.id))
    message = build_resume_message("Maria", context, FALLBACK)

    assert context.completed_sections == ["Alpha"]
    assert context.current_section == "Bravo"
    assert context.current_question == "B2"
    assert "Alpha" in message
    assert "B2" in message
    assert "Charlie" not in message
    assert message.startswith("Welcome back Maria.")
    assert message.endswith("So where were we?")


def test_resume_falls_back_when_nothing_completed(store, sourdough):
    forge, _, _ = sourdough
    context = build_resume_context(ProgressTracker(store).plan(forge.id))
    assert build_resume_message("Maria", context, FALLBACK) == FALLBACK


def test_disconnect_policy_threshold():
    policy = DisconnectPolicy(min_turns=4)
    assert not policy.should_offer_reconnect(3)
    assert policy.should_offer_reconnect(4)
    assert policy.should_offer_reconnect(1, user_initiated=True)


class _RecordingSink:
    def __init__(self) -> None:
        self.updates = []

    async def send_contextual_update(self, text: str) -> None:
        await asyncio.sleep(0)
        self.updates.append(text)


async def test_coalescer_folds_bursts_into_one_pending_push():
    sink = _RecordingSink()
    state = {"value": "v1"}
    coalescer = ProgressPushCoalescer(sink, lambda: state["value"])

    assert coalescer.request() is True
    state["value"] = "v2"
    assert coalescer.request() is False
    assert coalescer.request() is False
    await coalescer.flush()

    assert sink.updates[-1] == "v2"
    assert len(sink.updates) <= 2
    assert not coalescer.pending


async def test_coalescer_pushes_again_after_settling():
    sink = _RecordingSink()
    coalescer = ProgressPushCoalescer(sink, lambda: "progress")
    coalescer.request()
    await coalescer.flush()
    coalescer.request()
    await coalescer.flush()
    assert sink.updates == ["progress", "progress"]


async def test_coalescer_reports_when_settled():
    sink = _RecordingSink()
    settled = []
    coalescer = ProgressPushCoalescer(sink, lambda: "progress", on_settled=settled.append)
    coalescer.request()
    coalescer.request()
    await coalescer.flush()
    assert settled == [coalescer]
    assert sink.updates[-1] == "progress"
