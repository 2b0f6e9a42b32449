"""Keeps an externally hosted voice session in step with the progress model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from .conductor import Conductor, history_from_messages
from .config import EngineSettings
from .extractor import Extractor
from .llm_client import ChatMessage
from .models import (
    ExtractedItem,
    Extraction,
    Forge,
    Message,
    MessageRole,
    Modality,
    ValidationResult,
)
from .progress import AdvanceDecision, ProgressTracker
from .store import InterviewStore
from .summarizer import (
    DisconnectPolicy,
    ProgressPushCoalescer,
    build_resume_context,
    build_resume_message,
    render_progress,
)
from .validator import Validator

logger = logging.getLogger(__name__)

# Id of the last voice message before the current session began.
SESSION_MARKER_KEY = "voiceSessionAfter"


class VoiceNotConfiguredError(RuntimeError):
    """Raised when a voice session is requested without a voice agent id."""


class VoiceSessionGateway(Protocol):
    """Out-of-band channel into a live voice session."""

    async def send_contextual_update(self, text: str) -> None:
        ...


class LoggingVoiceGateway:
    """Gateway used when no live session transport is wired in."""

    def __init__(self, forge_id: str) -> None:
        self.forge_id = forge_id

    async def send_contextual_update(self, text: str) -> None:
        logger.debug(
            "Progress update for voice session %s (%s chars)",
            self.forge_id,
            len(text),
        )


GatewayFactory = Callable[[str], VoiceSessionGateway]


@dataclass(slots=True)
class VoiceSessionDescriptor:
    agent_id: str
    prompt: str
    first_message: str
    progress: str
    max_duration: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "prompt": self.prompt,
            "firstMessage": self.first_message,
            "progress": self.progress,
            "maxDuration": self.max_duration,
        }


@dataclass(slots=True)
class VoiceMessageOutcome:
    saved: bool
    count: int
    reason: Optional[str] = None
    message: Optional[Message] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"saved": self.saved, "count": self.count}
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass(slots=True)
class VoiceUtteranceOutcome:
    extractions: List[Extraction] = field(default_factory=list)
    decision: Optional[AdvanceDecision] = None


@dataclass(slots=True)
class DisconnectOutcome:
    offer_reconnect: bool
    resume_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offerReconnect": self.offer_reconnect,
            "resumeMessage": self.resume_message,
        }


class VoiceSessionService:
    """Reactive handling of voice transcript events for one process."""

    def __init__(
        self,
        store: InterviewStore,
        *,
        validator: Validator,
        extractor: Extractor,
        tracker: ProgressTracker,
        engine: Optional[EngineSettings] = None,
        agent_id: Optional[str] = None,
        gateway_factory: Optional[GatewayFactory] = None,
    ) -> None:
        self._store = store
        self._validator = validator
        self._extractor = extractor
        self._tracker = tracker
        self._engine = engine or EngineSettings()
        self._agent_id = agent_id
        self._gateway_factory = gateway_factory or LoggingVoiceGateway
        self._policy = DisconnectPolicy(self._engine.voice_drop_min_turns)
        self._coalescers: Dict[str, ProgressPushCoalescer] = {}

    def progress_text(self, forge_id: str) -> str:
        return render_progress(self._tracker.plan(forge_id))

    def session(self, forge_id: str) -> VoiceSessionDescriptor:
        """Descriptor a client needs to open a voice session."""

        if not self._agent_id:
            raise VoiceNotConfiguredError("Voice agent id is not configured.")
        forge = self._store.get_forge(forge_id)
        self._mark_session_start(forge)
        plan = self._tracker.plan(forge_id)
        return VoiceSessionDescriptor(
            agent_id=self._agent_id,
            prompt=Conductor.voice_prompt(forge, plan),
            first_message=Conductor.default_first_message(forge),
            progress=render_progress(plan),
            max_duration=forge.depth.preset.voice_max_duration,
        )

    def record_message(
        self,
        forge_id: str,
        role: MessageRole,
        content: str,
    ) -> VoiceMessageOutcome:
        """Append a finalized utterance to the shared transcript.

        Identical role/content among the most recent voice messages is
        skipped, as is a third assistant message in a row.
        """

        self._store.get_forge(forge_id)
        transcript = self._voice_transcript(forge_id)
        window = self._engine.voice_recent_dedup_window
        recent = transcript[-window:] if window > 0 else []
        if any(m.role == role and m.content == content for m in recent):
            return VoiceMessageOutcome(False, len(transcript), "duplicate")
        if role == MessageRole.ASSISTANT and len(transcript) >= 2:
            if all(m.role == MessageRole.ASSISTANT for m in transcript[-2:]):
                return VoiceMessageOutcome(
                    False, len(transcript), "consecutive_assistant"
                )

        pointer = self._tracker.active(forge_id)
        message = self._store.append_message(
            Message(
                forge_id=forge_id,
                role=role,
                content=content,
                question_id=pointer.question.id if pointer.question else None,
                modality=Modality.VOICE,
            )
        )
        return VoiceMessageOutcome(True, len(transcript) + 1, message=message)

    async def handle_utterance(
        self,
        forge_id: str,
        content: str,
    ) -> VoiceUtteranceOutcome:
        """Extract from an expert utterance and judge the active question.

        Extraction runs regardless of which question is active. Validation
        only ever judges the active question, so the progress model moves
        the same way it does for typed turns.
        """

        forge = self._store.get_forge(forge_id)
        text = content.strip()
        if len(text) <= self._engine.voice_extract_min_chars:
            return VoiceUtteranceOutcome()

        pointer = self._tracker.active(forge_id)
        section, question = pointer.section, pointer.question
        existing = [item.content for item in self._store.list_extractions(forge_id)]

        extraction_task = self._extract(
            text,
            section_title=section.title if section else forge.domain,
            question_text=question.text if question else None,
            existing=existing,
        )
        if section is not None and question is not None:
            history = history_from_messages(
                self._store.list_messages(forge_id, question_id=question.id)
            )
            if not history or history[-1].content != text:
                history.append(ChatMessage(role="user", content=text))
            validation_task = self._validate(question, section, history)
            items, validation = await asyncio.gather(
                extraction_task, validation_task
            )
        else:
            items = await extraction_task
            validation = None

        saved: List[Extraction] = []
        if items:
            round = section.round if section else self._store.current_round(forge_id)
            saved = self._store.add_extractions(
                [
                    Extraction.from_item(
                        item,
                        forge_id=forge_id,
                        section_id=section.id if section else None,
                        question_id=question.id if question else None,
                        round=round,
                    )
                    for item in items
                ]
            )

        decision = None
        if question is not None and validation is not None:
            decision = self._tracker.record_validation(
                forge_id, question.id, validation
            )

        if saved or (decision is not None and decision.moved):
            self.queue_progress_push(forge_id)
        return VoiceUtteranceOutcome(extractions=saved, decision=decision)

    def queue_progress_push(self, forge_id: str) -> bool:
        coalescer = self._coalescers.get(forge_id)
        if coalescer is None:
            coalescer = ProgressPushCoalescer(
                self._gateway_factory(forge_id),
                lambda: self.progress_text(forge_id),
                on_settled=lambda settled: self._release(forge_id, settled),
            )
            self._coalescers[forge_id] = coalescer
        return coalescer.request()

    async def flush(self, forge_id: str) -> None:
        coalescer = self._coalescers.get(forge_id)
        if coalescer is not None:
            await coalescer.flush()

    def _release(self, forge_id: str, coalescer: ProgressPushCoalescer) -> None:
        if self._coalescers.get(forge_id) is coalescer:
            del self._coalescers[forge_id]

    def handle_disconnect(
        self,
        forge_id: str,
        *,
        turns: Optional[int] = None,
        user_initiated: bool = False,
    ) -> DisconnectOutcome:
        forge = self._store.get_forge(forge_id)
        if turns is None:
            turns = self._session_turns(forge)
        # A disconnect always ends the session.
        forge = self._mark_session_start(forge)
        if not self._policy.should_offer_reconnect(
            turns, user_initiated=user_initiated
        ):
            logger.info(
                "Voice session for forge %s dropped after %s turns; ignoring",
                forge_id,
                turns,
            )
            return DisconnectOutcome(offer_reconnect=False)
        self._coalescers.pop(forge_id, None)
        context = build_resume_context(self._tracker.plan(forge_id))
        message = build_resume_message(
            forge.expert_name,
            context,
            Conductor.default_first_message(forge),
        )
        return DisconnectOutcome(offer_reconnect=True, resume_message=message)

    def _voice_transcript(self, forge_id: str) -> List[Message]:
        return [
            message
            for message in self._store.list_messages(forge_id)
            if message.modality == Modality.VOICE
        ]

    def _mark_session_start(self, forge: Forge) -> Forge:
        transcript = self._voice_transcript(forge.id)
        forge.metadata = {
            **forge.metadata,
            SESSION_MARKER_KEY: transcript[-1].id if transcript else None,
        }
        return self._store.update_forge(forge)

    def _session_turns(self, forge: Forge) -> int:
        """Voice messages recorded since the current session began."""

        transcript = self._voice_transcript(forge.id)
        marker = forge.metadata.get(SESSION_MARKER_KEY)
        if marker is None:
            return len(transcript)
        for index, message in enumerate(transcript):
            if message.id == marker:
                return len(transcript) - index - 1
        return len(transcript)

    async def _extract(
        self,
        text: str,
        *,
        section_title: str,
        question_text: Optional[str],
        existing: List[str],
    ) -> List[ExtractedItem]:
        try:
            return await self._extractor.extract(
                text,
                section_title=section_title,
                question_text=question_text,
                existing=existing,
                effort="low",
            )
        except Exception:
            logger.exception("Voice extraction failed")
            return []

    async def _validate(self, question, section, history) -> ValidationResult:
        try:
            return await self._validator.validate(question, section, history)
        except Exception as exc:
            logger.exception("Voice validation failed for question %s", question.id)
            return ValidationResult.unmet(f"Validation unavailable: {exc}")
