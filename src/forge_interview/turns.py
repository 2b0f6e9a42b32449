"""Runs one text interview turn and streams its events."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import AsyncIterator, List

from .conductor import Conductor, ConductorContext, history_from_messages
from .extractor import Extractor
from .llm_client import ChatMessage
from .models import (
    ExtractedItem,
    Extraction,
    Forge,
    Message,
    MessageRole,
    Question,
    Section,
    ValidationResult,
)
from .progress import (
    AdvanceDecision,
    AdvanceKind,
    NoActiveQuestionError,
    ProgressTracker,
)
from .sse import TurnEventStream
from .store import InterviewStore
from .validator import Validator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TextTurn:
    """Everything a turn needs, captured once the user message is stored."""

    forge: Forge
    section: Section
    question: Question
    user_message: Message
    history: List[ChatMessage] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)


class TurnHandle:
    """A running turn: the producer task plus the channel it writes to."""

    def __init__(self, stream: TurnEventStream, task: "asyncio.Task[None]") -> None:
        self.stream = stream
        self.task = task

    async def cancel(self) -> None:
        if not self.task.done():
            self.task.cancel()
        with suppress(asyncio.CancelledError):
            await self.task

    async def encoded(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.stream.encoded():
                yield chunk
        finally:
            await self.cancel()


class InterviewTurnRunner:
    def __init__(
        self,
        store: InterviewStore,
        *,
        conductor: Conductor,
        validator: Validator,
        extractor: Extractor,
        tracker: ProgressTracker,
        queue_size: int = 64,
    ) -> None:
        self._store = store
        self._conductor = conductor
        self._validator = validator
        self._extractor = extractor
        self._tracker = tracker
        self._queue_size = queue_size

    def prepare_text_turn(self, forge_id: str, content: str) -> TextTurn:
        """Persist the expert's message against the active question.

        Raises ``RecordNotFoundError`` for an unknown forge and
        ``NoActiveQuestionError`` once the round has nothing left to ask.
        """

        forge = self._store.get_forge(forge_id)
        section, question = self._tracker.require_active(forge_id)
        user_message = self._store.append_message(
            Message(
                forge_id=forge_id,
                role=MessageRole.USER,
                content=content,
                question_id=question.id,
            )
        )
        history = history_from_messages(
            self._store.list_messages(forge_id, question_id=question.id)
        )
        existing = [item.content for item in self._store.list_extractions(forge_id)]
        return TextTurn(
            forge=forge,
            section=section,
            question=question,
            user_message=user_message,
            history=history,
            existing=existing,
        )

    def start(self, turn: TextTurn) -> TurnHandle:
        stream = TurnEventStream(maxsize=self._queue_size)
        task = asyncio.create_task(self._produce(turn, stream))
        return TurnHandle(stream, task)

    async def _produce(self, turn: TextTurn, stream: TurnEventStream) -> None:
        forge_id = turn.forge.id
        validation_task = asyncio.create_task(self._validate(turn))
        extraction_task = asyncio.create_task(self._extract(turn))
        try:
            fragments: List[str] = []
            context = ConductorContext.from_records(
                turn.forge, turn.section, turn.question
            )
            async for delta in self._conductor.stream_reply(context, turn.history):
                fragments.append(delta)
                await stream.chunk(delta)

            validation, items = await asyncio.gather(
                validation_task, extraction_task
            )
            assistant = self._store.append_message(
                Message(
                    forge_id=forge_id,
                    role=MessageRole.ASSISTANT,
                    content="".join(fragments).strip(),
                    question_id=turn.question.id,
                )
            )
            await stream.validation(validation.to_dict())

            saved = self._persist_extractions(turn, items)
            if saved:
                await stream.extraction(item.to_event_item() for item in saved)

            # Once started the advance must land in full.
            decision = await asyncio.shield(self._advance(forge_id, turn, validation))
            if decision.kind == AdvanceKind.ADVANCED:
                await stream.advance(decision.section_id, decision.question_id)
            elif decision.kind == AdvanceKind.ROUND_COMPLETE:
                await stream.interview_complete()
            await stream.done(assistant.id)
        except asyncio.CancelledError:
            logger.info("Turn for forge %s cancelled by the client", forge_id)
            raise
        except Exception as exc:
            logger.exception("Interview turn failed for forge %s", forge_id)
            if not stream.closed:
                await stream.error(str(exc) or exc.__class__.__name__)
        finally:
            for task in (validation_task, extraction_task):
                if not task.done():
                    task.cancel()
            stream.close()

    async def _validate(self, turn: TextTurn) -> ValidationResult:
        try:
            return await self._validator.validate(
                turn.question, turn.section, turn.history
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "Validation failed for question %s; treating as not met",
                turn.question.id,
            )
            return ValidationResult.unmet(f"Validation unavailable: {exc}")

    async def _extract(self, turn: TextTurn) -> List[ExtractedItem]:
        try:
            return await self._extractor.extract(
                turn.user_message.content,
                section_title=turn.section.title,
                question_text=turn.question.text,
                existing=turn.existing,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Extraction failed for question %s; continuing without items",
                turn.question.id,
            )
            return []

    def _persist_extractions(
        self,
        turn: TextTurn,
        items: List[ExtractedItem],
    ) -> List[Extraction]:
        if not items:
            return []
        records = [
            Extraction.from_item(
                item,
                forge_id=turn.forge.id,
                section_id=turn.section.id,
                question_id=turn.question.id,
                round=turn.section.round,
            )
            for item in items
        ]
        return self._store.add_extractions(records)

    async def _advance(
        self,
        forge_id: str,
        turn: TextTurn,
        validation: ValidationResult,
    ) -> AdvanceDecision:
        return self._tracker.record_validation(
            forge_id, turn.question.id, validation
        )

    async def opening(self, forge_id: str) -> Message:
        """Generate and store the interviewer's opening for the active question."""

        forge = self._store.get_forge(forge_id)
        section, question = self._tracker.require_active(forge_id)
        is_first = section.order_index == 0 and question.order_index == 0
        text = await self._conductor.opening(
            forge, section, question, is_first=is_first
        )
        return self._store.append_message(
            Message(
                forge_id=forge_id,
                role=MessageRole.ASSISTANT,
                content=text,
                question_id=question.id,
            )
        )

    def next_question(self, forge_id: str) -> AdvanceDecision:
        self._store.get_forge(forge_id)
        if self._tracker.active(forge_id).is_complete:
            raise NoActiveQuestionError("Interview round is already complete")
        return self._tracker.force_next(forge_id)

    def end_early(self, forge_id: str) -> Forge:
        self._store.get_forge(forge_id)
        return self._tracker.end_round(forge_id)

