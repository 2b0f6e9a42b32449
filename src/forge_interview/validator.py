"""Judges whether the expert's answers meet the active question's goal."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .llm_client import ChatMessage, TextBackend
from .models import Question, Section, ValidationResult
from .prompts import GUIDANCE, VALIDATION_RESPONSE_FORMAT

logger = logging.getLogger(__name__)

_SPEAKER_LABELS = {"user": "Expert", "assistant": "Interviewer"}


def render_transcript(history: Sequence[ChatMessage]) -> str:
    return "\n\n".join(
        f"{_SPEAKER_LABELS.get(message.role, message.role.title())}: "
        f"{message.content}"
        for message in history
    )


class Validator:
    def __init__(
        self,
        backend: TextBackend,
        *,
        model: Optional[str] = None,
    ) -> None:
        self._backend = backend
        self._model = model

    def build_prompt(
        self,
        question: Question,
        section: Section,
        history: Sequence[ChatMessage],
    ) -> str:
        return (
            f"**Interview Question:** {question.text}\n"
            f"**Question Goal:** {question.goal}\n"
            f"**Section Goal:** {section.goal}\n\n"
            f"**Conversation:**\n{render_transcript(history)}\n\n"
            f"{VALIDATION_RESPONSE_FORMAT}"
        )

    async def validate(
        self,
        question: Question,
        section: Section,
        history: Sequence[ChatMessage],
    ) -> ValidationResult:
        """Assess the question-scoped conversation against its goal.

        Backend and parsing failures propagate; the turn runner decides how
        to degrade.
        """

        payload = await self._backend.generate_json(
            self.build_prompt(question, section, history),
            system=GUIDANCE.validator,
            model=self._model,
            temperature=0.1,
            max_tokens=2048,
            effort="medium",
        )
        result = ValidationResult.from_payload(payload)
        logger.debug(
            "Validated question %s: meets_goal=%s confidence=%.2f",
            question.id,
            result.meets_goal,
            result.confidence,
        )
        return result
