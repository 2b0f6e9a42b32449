from __future__ import annotations

import pytest

from conftest import failing, passing
from forge_interview.extractor import Extractor
from forge_interview.models import MessageRole, Modality
from forge_interview.progress import AdvanceKind, ProgressTracker
from forge_interview.validator import Validator
from forge_interview.voice import VoiceNotConfiguredError, VoiceSessionService

LONG_ANSWER = "I feed my starter every twelve hours with rye flour."


class RecordingGateway:
    def __init__(self, forge_id: str) -> None:
        self.forge_id = forge_id
        self.updates = []

    async def send_contextual_update(self, text: str) -> None:
        self.updates.append(text)


@pytest.fixture
def gateways():
    return {}


@pytest.fixture
def service(store, backend, gateways):
    def factory(forge_id):
        return gateways.setdefault(forge_id, RecordingGateway(forge_id))

    return VoiceSessionService(
        store,
        validator=Validator(backend),
        extractor=Extractor(backend),
        tracker=ProgressTracker(store),
        agent_id="agent-123",
        gateway_factory=factory,
    )


def test_session_descriptor(service, sourdough):
    forge, _, _ = sourdough
    descriptor = service.session(forge.id).to_dict()
    assert descriptor["agentId"] == "agent-123"
    assert "Starter Care" in descriptor["prompt"]
    assert "Home bakers" in descriptor["prompt"]
    assert "[CURRENT] Feeding schedule" in descriptor["progress"]
    assert descriptor["maxDuration"] == 1800
    assert "Maria" in descriptor["firstMessage"]


def test_session_requires_agent_id(store, backend, sourdough):
    forge, _, _ = sourdough
    service = VoiceSessionService(
        store,
        validator=Validator(backend),
        extractor=Extractor(backend),
        tracker=ProgressTracker(store),
    )
    with pytest.raises(VoiceNotConfiguredError):
        service.session(forge.id)


def test_duplicate_voice_message_is_skipped(service, store, sourdough):
    forge, _, questions = sourdough
    first = service.record_message(forge.id, MessageRole.USER, "Twice a day.")
    again = service.record_message(forge.id, MessageRole.USER, "Twice a day.")
    assert first.saved and first.count == 1
    assert first.message.question_id == questions[0].id
    assert first.message.modality == Modality.VOICE
    assert not again.saved
    assert again.to_dict() == {"saved": False, "count": 1, "reason": "duplicate"}


def test_duplicate_outside_window_is_saved(service, sourdough):
    forge, _, _ = sourdough
    service.record_message(forge.id, MessageRole.USER, "Twice a day.")
    for index in range(4):
        role = MessageRole.ASSISTANT if index % 2 == 0 else MessageRole.USER
        service.record_message(forge.id, role, f"filler {index}")
    assert service.record_message(forge.id, MessageRole.USER, "Twice a day.").saved


def test_third_assistant_message_in_a_row_is_skipped(service, sourdough):
    forge, _, _ = sourdough
    assert service.record_message(forge.id, MessageRole.ASSISTANT, "Hello!").saved
    assert service.record_message(forge.id, MessageRole.ASSISTANT, "Are you there?").saved
    third = service.record_message(forge.id, MessageRole.ASSISTANT, "Hello again?")
    assert not third.saved
    assert third.reason == "consecutive_assistant"
    assert service.record_message(forge.id, MessageRole.USER, "Yes, sorry.").saved


async def test_short_utterance_is_ignored(service, backend, sourdough):
    forge, _, _ = sourdough
    outcome = await service.handle_utterance(forge.id, "Yes, exactly.")
    assert outcome.extractions == []
    assert outcome.decision is None
    assert backend.calls == []


async def test_utterance_extracts_and_advances(service, backend, store, gateways, sourdough):
    forge, sections, questions = sourdough
    backend.validations = [passing(0.85)]
    backend.extractions = [
        {"extractions": [{"type": "fact", "content": "Feed every 12 hours", "confidence": 0.9}]}
    ]
    service.record_message(forge.id, MessageRole.USER, LONG_ANSWER)

    outcome = await service.handle_utterance(forge.id, LONG_ANSWER)
    await service.flush(forge.id)

    assert [item.content for item in outcome.extractions] == ["Feed every 12 hours"]
    assert outcome.extractions[0].question_id == questions[0].id
    assert outcome.decision.kind == AdvanceKind.ADVANCED
    assert outcome.decision.question_id == questions[1].id
    extractor_call = next(call for call in backend.calls if call["effort"] == "low")
    assert LONG_ANSWER in extractor_call["prompt"]
    updates = gateways[forge.id].updates
    assert updates and "[CURRENT] Signs of a healthy starter" in updates[-1]
    assert forge.id not in service._coalescers


async def test_utterance_without_progress_pushes_nothing(service, backend, store, gateways, sourdough):
    forge, _, questions = sourdough
    backend.validations = [failing()]
    outcome = await service.handle_utterance(forge.id, LONG_ANSWER)
    await service.flush(forge.id)
    assert outcome.decision.kind == AdvanceKind.STAYED
    assert forge.id not in gateways
    assert ProgressTracker(store).active(forge.id).question.id == questions[0].id


async def test_extraction_survives_validator_failure(service, backend, sourdough):
    forge, _, questions = sourdough
    backend.validations = [RuntimeError("validator offline")]
    backend.extractions = [{"extractions": [{"type": "tip", "content": "Use rye flour"}]}]
    outcome = await service.handle_utterance(forge.id, LONG_ANSWER)
    assert len(outcome.extractions) == 1
    assert outcome.decision.kind == AdvanceKind.STAYED


async def test_utterance_after_round_end_still_extracts(service, backend, store, sourdough):
    forge, _, _ = sourdough
    ProgressTracker(store).end_round(forge.id)
    backend.extractions = [{"extractions": [{"type": "fact", "content": "Late detail"}]}]
    outcome = await service.handle_utterance(forge.id, LONG_ANSWER)
    assert [item.content for item in outcome.extractions] == ["Late detail"]
    assert outcome.extractions[0].question_id is None
    assert outcome.decision is None


def test_short_drop_is_ignored(service, sourdough):
    forge, _, _ = sourdough
    outcome = service.handle_disconnect(forge.id, turns=2)
    assert outcome.to_dict() == {"offerReconnect": False, "resumeMessage": None}


def test_drop_after_real_conversation_offers_resume(service, store, sourdough):
    forge, _, questions = sourdough
    tracker = ProgressTracker(store)
    tracker.force_next(forge.id)
    tracker.force_next(forge.id)
    for index in range(4):
        role = MessageRole.USER if index % 2 else MessageRole.ASSISTANT
        service.record_message(forge.id, role, f"turn {index}")

    outcome = service.handle_disconnect(forge.id)

    assert outcome.offer_reconnect
    assert outcome.resume_message.startswith("Welcome back Maria.")
    assert "Starter Care" in outcome.resume_message
    assert "Pre-shaping technique" in outcome.resume_message


def test_turns_are_counted_per_session(service, store, sourdough):
    forge, _, _ = sourdough
    for index in range(4):
        role = MessageRole.USER if index % 2 else MessageRole.ASSISTANT
        service.record_message(forge.id, role, f"turn {index}")
    assert service.handle_disconnect(forge.id).offer_reconnect

    service.record_message(forge.id, MessageRole.ASSISTANT, "Welcome back Maria.")
    outcome = service.handle_disconnect(forge.id)

    assert outcome.to_dict() == {"offerReconnect": False, "resumeMessage": None}


def test_new_session_resets_turn_count(service, store, sourdough):
    forge, _, _ = sourdough
    for index in range(5):
        role = MessageRole.USER if index % 2 else MessageRole.ASSISTANT
        service.record_message(forge.id, role, f"turn {index}")

    service.session(forge.id)
    service.record_message(forge.id, MessageRole.ASSISTANT, "Hello again Maria.")

    assert not service.handle_disconnect(forge.id).offer_reconnect

def test_user_initiated_drop_always_offers_reconnect(service, sourdough):
    forge, _, _ = sourdough
    outcome = service.handle_disconnect(forge.id, turns=0, user_initiated=True)
    assert outcome.offer_reconnect
    assert "Maria" in outcome.resume_message
