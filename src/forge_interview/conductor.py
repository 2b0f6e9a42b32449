"""Interviewer utterance generation, streamed or one-shot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

from .llm_client import ChatMessage, FreeTextResult, TextBackend
from .models import Forge, Message, Question, Section
from .progress import InterviewPlan
from .prompts import (
    CONDUCTOR_CONTEXT_ACK,
    CONDUCTOR_CONTEXT_TEMPLATE,
    DEFAULT_VOICE_FIRST_MESSAGE,
    FIRST_QUESTION_OPENING,
    GUIDANCE,
    PROGRESS_PLACEHOLDER,
    ROUND_FIRST_MESSAGE,
    TRANSITION_OPENING,
    VOICE_AGENT_PROMPT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConductorContext:
    """Who is being interviewed and what the active question is after."""

    expert_name: str
    domain: str
    section_title: str
    section_goal: str
    question_text: str
    question_goal: str

    @classmethod
    def from_records(
        cls,
        forge: Forge,
        section: Section,
        question: Question,
    ) -> "ConductorContext":
        return cls(
            expert_name=forge.expert_name,
            domain=forge.domain,
            section_title=section.title,
            section_goal=section.goal or "",
            question_text=question.text,
            question_goal=question.goal or "",
        )


def history_from_messages(messages: Sequence[Message]) -> List[ChatMessage]:
    return [
        ChatMessage(role=message.role.value, content=message.content)
        for message in messages
    ]


class Conductor:
    """Produces the next interviewer utterance without touching state."""

    def __init__(
        self,
        backend: TextBackend,
        *,
        history_limit: int = 20,
        model: Optional[str] = None,
        fast_model: Optional[str] = None,
    ) -> None:
        self._backend = backend
        self._history_limit = history_limit
        self._model = model
        self._fast_model = fast_model or model

    def build_messages(
        self,
        context: ConductorContext,
        history: Sequence[ChatMessage],
    ) -> List[ChatMessage]:
        context_message = ChatMessage(
            role="user",
            content=CONDUCTOR_CONTEXT_TEMPLATE.format(
                expert_name=context.expert_name,
                domain=context.domain,
                section_title=context.section_title,
                section_goal=context.section_goal,
                question_text=context.question_text,
                question_goal=context.question_goal,
            ),
        )
        recent = list(history)[-self._history_limit:]
        if not recent:
            return [context_message]
        return [
            context_message,
            ChatMessage(role="assistant", content=CONDUCTOR_CONTEXT_ACK),
            *recent,
        ]

    def stream_reply(
        self,
        context: ConductorContext,
        history: Sequence[ChatMessage],
    ) -> AsyncIterator[str]:
        """Stream the interviewer's reply to the latest expert turn."""

        return self._backend.stream_text(
            self.build_messages(context, history),
            system=GUIDANCE.conductor,
            model=self._model,
            temperature=0.4,
            max_tokens=1024,
            effort="medium",
        )

    async def opening(
        self,
        forge: Forge,
        section: Section,
        question: Question,
        *,
        is_first: bool,
    ) -> str:
        """Welcome or transition message introducing ``question``."""

        template = FIRST_QUESTION_OPENING if is_first else TRANSITION_OPENING
        prompt = template.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            section_title=section.title,
            question_text=question.text,
        )
        return await self._one_shot(
            prompt,
            system=GUIDANCE.conductor,
            model=self._model,
            temperature=0.5,
            max_tokens=256,
        )

    async def round_first_message(
        self,
        forge: Forge,
        section_titles: Sequence[str],
    ) -> str:
        """Spoken welcome used to bootstrap a voice session for a round."""

        section_list = "\n".join(
            f"{index}. {title}"
            for index, title in enumerate(section_titles, start=1)
        )
        prompt = ROUND_FIRST_MESSAGE.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            section_list=section_list,
        )
        return await self._one_shot(
            prompt,
            model=self._fast_model,
            temperature=0.6,
            max_tokens=250,
        )

    @staticmethod
    def default_first_message(forge: Forge) -> str:
        configured = str(forge.interview_config.get("firstMessage") or "")
        if configured.strip():
            return configured.strip()
        return DEFAULT_VOICE_FIRST_MESSAGE.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
        )

    @staticmethod
    def voice_prompt(forge: Forge, plan: InterviewPlan) -> str:
        """Voice agent prompt with a slot for the live progress text."""

        guide_blocks: List[str] = []
        for index, entry in enumerate(plan.sections, start=1):
            topics = "\n".join(
                f"  {number}. {question.text} (extract: {question.goal})"
                for number, question in enumerate(entry.questions, start=1)
            )
            guide_blocks.append(
                f"Section {index}: {entry.section.title}\n"
                f"Goal: {entry.section.goal}\n"
                f"Topics to explore:\n{topics}"
            )
        audience_note = ""
        if forge.target_audience:
            audience_note = (
                "\n\nThe tool being built is for: "
                f"{forge.target_audience}. Keep this audience in mind when "
                "probing for practical details."
            )
        return VOICE_AGENT_PROMPT.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            interview_guide="\n\n".join(guide_blocks),
            progress_slot=PROGRESS_PLACEHOLDER,
            audience_note=audience_note,
        )

    async def _one_shot(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float,
        max_tokens: int,
    ) -> str:
        result = await self._backend.generate(
            prompt,
            system=system,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not isinstance(result, FreeTextResult):
            raise TypeError("Conductor expects free-text generations.")
        return result.text.strip()
