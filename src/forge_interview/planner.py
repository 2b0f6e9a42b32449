"""Designs interview rounds and persists them as sections and questions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .conductor import Conductor
from .config import FOLLOW_UP_MAX_SECTIONS, DepthPreset, InterviewDepth
from .llm_client import TextBackend
from .models import (
    Extraction,
    Forge,
    ForgeStatus,
    Question,
    QuestionStatus,
    Section,
    SectionStatus,
    utcnow,
)
from .prompts import (
    FOLLOW_UP_SKELETON_PROMPT,
    GUIDANCE,
    SECTION_QUESTIONS_PROMPT,
    SKELETON_PROMPT,
)
from .store import InterviewStore

logger = logging.getLogger(__name__)

PlanObserver = Callable[[str, Dict[str, Any]], Awaitable[None]]


class _SchemaModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SectionOutline(_SchemaModel):
    title: str
    goal: str = ""


class InterviewSkeleton(_SchemaModel):
    domain_context: str = Field(default="", alias="domainContext")
    extraction_priorities: List[str] = Field(
        default_factory=list, alias="extractionPriorities"
    )
    estimated_duration_minutes: int = Field(
        default=0, alias="estimatedDurationMinutes"
    )
    sections: List[SectionOutline] = Field(default_factory=list)


class QuestionOutline(_SchemaModel):
    text: str
    goal: str = ""


class SectionQuestions(_SchemaModel):
    questions: List[QuestionOutline] = Field(default_factory=list)


def build_knowledge_summary(extractions: Sequence[Extraction]) -> str:
    """Group captured knowledge by type for follow-up planning prompts."""

    grouped: Dict[str, List[str]] = {}
    for extraction in extractions:
        grouped.setdefault(extraction.type.value, []).append(extraction.content)
    blocks = []
    for kind, items in grouped.items():
        lines = "\n".join(
            f"{index}. {item}" for index, item in enumerate(items, start=1)
        )
        blocks.append(f"## {kind.upper()} ({len(items)})\n{lines}")
    return "\n\n".join(blocks)


async def _notify(
    observer: Optional[PlanObserver],
    kind: str,
    data: Dict[str, Any],
) -> None:
    if observer is not None:
        await observer(kind, data)


class InterviewPlanner:
    def __init__(
        self,
        backend: TextBackend,
        store: InterviewStore,
        *,
        conductor: Conductor,
        model: Optional[str] = None,
        fast_model: Optional[str] = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._conductor = conductor
        self._model = model
        self._fast_model = fast_model or model

    async def generate_skeleton(
        self,
        forge: Forge,
        preset: DepthPreset,
    ) -> InterviewSkeleton:
        low, high = preset.sections
        prompt = SKELETON_PROMPT.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            expert_bio=forge.expert_bio or "Not provided",
            target_audience=forge.target_audience or "General audience",
            min_sections=low,
            max_sections=high,
            label=preset.label,
            minutes=preset.estimated_minutes,
        )
        skeleton = await self._skeleton(prompt)
        skeleton.sections = skeleton.sections[:high]
        return skeleton

    async def generate_follow_up_skeleton(
        self,
        forge: Forge,
        topic: str,
        existing_knowledge: str,
    ) -> InterviewSkeleton:
        prompt = FOLLOW_UP_SKELETON_PROMPT.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            expert_bio=forge.expert_bio or "Not provided",
            target_audience=forge.target_audience or "General audience",
            topic=topic,
            existing_knowledge=existing_knowledge or "Nothing captured yet.",
        )
        skeleton = await self._skeleton(prompt)
        skeleton.sections = skeleton.sections[:FOLLOW_UP_MAX_SECTIONS]
        return skeleton

    async def _skeleton(self, prompt: str) -> InterviewSkeleton:
        payload = await self._backend.generate_json(
            prompt,
            system=GUIDANCE.planner,
            schema=InterviewSkeleton,
            model=self._model,
            temperature=0.5,
            max_tokens=2048,
            effort="high",
        )
        skeleton = InterviewSkeleton.model_validate(payload)
        if not skeleton.sections:
            raise ValueError("Interview plan did not contain any sections.")
        return skeleton

    async def generate_section_questions(
        self,
        forge: Forge,
        section: SectionOutline,
        domain_context: str,
        preset: DepthPreset,
    ) -> SectionQuestions:
        low, high = preset.questions_per_section
        prompt = SECTION_QUESTIONS_PROMPT.format(
            expert_name=forge.expert_name,
            domain=forge.domain,
            expert_bio=forge.expert_bio or "Not provided",
            target_audience=forge.target_audience or "General audience",
            domain_context=domain_context,
            section_title=section.title,
            section_goal=section.goal,
            min_questions=low,
            max_questions=high,
        )
        payload = await self._backend.generate_json(
            prompt,
            system=GUIDANCE.planner,
            schema=SectionQuestions,
            model=self._fast_model,
            temperature=0.5,
            max_tokens=1024,
        )
        result = SectionQuestions.model_validate(payload)
        result.questions = result.questions[:high]
        return result

    async def plan_interview(
        self,
        forge_id: str,
        *,
        observer: Optional[PlanObserver] = None,
    ) -> Forge:
        """Plan round 1 and move the forge into ``interviewing``."""

        forge = self._store.get_forge(forge_id)
        forge.status = ForgeStatus.PLANNING
        forge = self._store.update_forge(forge)
        await _notify(observer, "analysing", {})

        skeleton = await self.generate_skeleton(forge, forge.depth.preset)
        config = await self._build_round(
            forge, skeleton, forge.depth.preset, round=1, observer=observer
        )
        forge = self._store.get_forge(forge_id)
        forge.interview_config = config
        forge.status = ForgeStatus.INTERVIEWING
        forge = self._store.update_forge(forge)
        logger.info(
            "Planned round 1 for forge %s with %s sections",
            forge_id,
            len(skeleton.sections),
        )
        await _notify(observer, "complete", {"forgeId": forge_id})
        return forge

    async def plan_follow_up(
        self,
        forge_id: str,
        topic: str,
        *,
        observer: Optional[PlanObserver] = None,
    ) -> Forge:
        """Plan a follow-up round on ``topic`` without repeating captured knowledge."""

        forge = self._store.get_forge(forge_id)
        next_round = self._store.current_round(forge_id) + 1
        knowledge = build_knowledge_summary(self._store.list_extractions(forge_id))
        await _notify(observer, "analysing", {})

        skeleton = await self.generate_follow_up_skeleton(forge, topic, knowledge)
        config = await self._build_round(
            forge,
            skeleton,
            InterviewDepth.QUICK.preset,
            round=next_round,
            observer=observer,
        )
        forge = self._store.get_forge(forge_id)
        rounds = list(forge.metadata.get("interviewRounds") or [])
        rounds.append(
            {
                "round": next_round,
                "topic": topic,
                "status": "interviewing",
                "startedAt": utcnow().isoformat(),
            }
        )
        forge.metadata = {**forge.metadata, "interviewRounds": rounds}
        forge.interview_config = config
        forge.status = ForgeStatus.INTERVIEWING
        forge = self._store.update_forge(forge)
        logger.info("Planned follow-up round %s for forge %s", next_round, forge_id)
        await _notify(
            observer, "complete", {"forgeId": forge_id, "round": next_round}
        )
        return forge

    async def _build_round(
        self,
        forge: Forge,
        skeleton: InterviewSkeleton,
        preset: DepthPreset,
        *,
        round: int,
        observer: Optional[PlanObserver],
    ) -> Dict[str, Any]:
        await _notify(
            observer,
            "skeleton",
            {
                "domainContext": skeleton.domain_context,
                "extractionPriorities": list(skeleton.extraction_priorities),
                "estimatedDurationMinutes": skeleton.estimated_duration_minutes,
                "sections": [
                    {"index": index, "title": section.title, "goal": section.goal}
                    for index, section in enumerate(skeleton.sections)
                ],
            },
        )

        results: List[Optional[SectionQuestions]] = [None] * len(skeleton.sections)

        async def fill(index: int, outline: SectionOutline) -> None:
            generated = await self.generate_section_questions(
                forge, outline, skeleton.domain_context, preset
            )
            results[index] = generated
            await _notify(
                observer,
                "questions",
                {
                    "sectionIndex": index,
                    "questions": [
                        question.model_dump() for question in generated.questions
                    ],
                },
            )

        await asyncio.gather(
            *(fill(index, outline) for index, outline in enumerate(skeleton.sections))
        )

        sections: List[Section] = []
        questions: List[Question] = []
        for index, outline in enumerate(skeleton.sections):
            section = Section(
                forge_id=forge.id,
                title=outline.title,
                goal=outline.goal,
                order_index=index,
                round=round,
                status=SectionStatus.ACTIVE if index == 0 else SectionStatus.PENDING,
            )
            sections.append(section)
            generated = results[index] or SectionQuestions()
            for position, item in enumerate(generated.questions):
                first = index == 0 and position == 0
                questions.append(
                    Question(
                        section_id=section.id,
                        text=item.text,
                        goal=item.goal,
                        order_index=position,
                        status=QuestionStatus.ACTIVE if first else QuestionStatus.PENDING,
                    )
                )

        first_message = await self._conductor.round_first_message(
            forge, [outline.title for outline in skeleton.sections]
        )
        self._store.add_round(forge.id, sections, questions)

        return {
            "sections": [
                {
                    "title": outline.title,
                    "goal": outline.goal,
                    "questions": [
                        question.model_dump()
                        for question in (results[index] or SectionQuestions()).questions
                    ],
                }
                for index, outline in enumerate(skeleton.sections)
            ],
            "estimatedDurationMinutes": skeleton.estimated_duration_minutes,
            "domainContext": skeleton.domain_context,
            "extractionPriorities": list(skeleton.extraction_priorities),
            "firstMessage": first_message,
        }
