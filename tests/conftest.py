from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import pytest
from pydantic import BaseModel

from forge_interview.config import AppSettings, EngineSettings, ModelSettings
from forge_interview.llm_client import (
    ChatMessage,
    FreeTextResult,
    GenerationResult,
    StructuredResult,
    TextBackend,
)
from forge_interview.models import (
    Forge,
    Question,
    QuestionStatus,
    Section,
    SectionStatus,
)
from forge_interview.prompts import GUIDANCE
from forge_interview.store import InMemoryInterviewStore


class ScriptedBackend(TextBackend):
    """Backend double that answers by role, keyed on the system prompt."""

    def __init__(self) -> None:
        self.validations: List[Any] = []
        self.extractions: List[Any] = []
        self.skeletons: List[Dict[str, Any]] = []
        self.section_questions: Callable[[str], Dict[str, Any]] = lambda prompt: {
            "questions": [{"text": "Topic", "goal": "Goal"}]
        }
        self.free_text: List[str] = []
        self.chunks: List[List[str]] = []
        self.stream_error: Optional[Exception] = None
        self.stream_gate: Optional[asyncio.Event] = None
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def _next(queue: List[Any], default: Any) -> Any:
        value = queue.pop(0) if queue else default
        if isinstance(value, Exception):
            raise value
        return value

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        schema: Optional[Type[BaseModel]] = None,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        effort: Optional[str] = None,
    ) -> GenerationResult:
        self.calls.append(
            {"system": system, "prompt": prompt, "model": model, "effort": effort}
        )
        await asyncio.sleep(0)
        if system == GUIDANCE.validator:
            return StructuredResult(
                self._next(self.validations, {"meets_goal": False, "confidence": 0.2})
            )
        if system == GUIDANCE.extractor:
            return StructuredResult(
                self._next(self.extractions, {"extractions": []})
            )
        if system == GUIDANCE.planner:
            if "interview questions for one section" in prompt:
                return StructuredResult(self.section_questions(prompt))
            return StructuredResult(self._next(self.skeletons, {"sections": []}))
        return FreeTextResult(self._next(self.free_text, "Welcome to the interview."))

    async def stream_text(
        self,
        messages: Iterable[ChatMessage],
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_tokens: int = 2048,
        effort: Optional[str] = None,
    ) -> AsyncIterator[str]:
        self.calls.append(
            {"system": system, "messages": list(messages), "model": model}
        )
        chunks = self.chunks.pop(0) if self.chunks else ["Tell me ", "more."]
        for index, chunk in enumerate(chunks):
            if self.stream_gate is not None and index == 1:
                await self.stream_gate.wait()
            await asyncio.sleep(0)
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


def passing(confidence: float = 0.9) -> Dict[str, Any]:
    return {
        "meets_goal": True,
        "confidence": confidence,
        "explanation": "Covered",
        "missing_aspects": [],
    }


def failing(confidence: float = 0.4) -> Dict[str, Any]:
    return {
        "meets_goal": False,
        "confidence": confidence,
        "explanation": "Too vague",
        "missing_aspects": ["specifics"],
    }


def seed_round(
    store: InMemoryInterviewStore,
    forge: Forge,
    plan: Sequence[Tuple[str, Sequence[str]]],
    *,
    round: int = 1,
) -> Tuple[List[Section], List[Question]]:
    sections: List[Section] = []
    questions: List[Question] = []
    for s_index, (title, texts) in enumerate(plan):
        section = Section(
            forge_id=forge.id,
            title=title,
            goal=f"Understand {title.lower()}",
            order_index=s_index,
            round=round,
            status=SectionStatus.ACTIVE if s_index == 0 else SectionStatus.PENDING,
        )
        sections.append(section)
        for q_index, text in enumerate(texts):
            first = s_index == 0 and q_index == 0
            questions.append(
                Question(
                    section_id=section.id,
                    text=text,
                    goal=f"Capture {text.lower()}",
                    order_index=q_index,
                    status=QuestionStatus.ACTIVE if first else QuestionStatus.PENDING,
                )
            )
    store.add_round(forge.id, sections, questions)
    return sections, questions


SOURDOUGH_PLAN = [
    ("Starter Care", ["Feeding schedule", "Signs of a healthy starter"]),
    ("Shaping", ["Pre-shaping technique", "Final shaping tension"]),
]


@pytest.fixture
def store() -> InMemoryInterviewStore:
    return InMemoryInterviewStore()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def forge(store: InMemoryInterviewStore) -> Forge:
    return store.create_forge(
        Forge(
            expert_name="Maria",
            domain="Sourdough Baking",
            expert_bio="Runs a neighbourhood bakery.",
            target_audience="Home bakers",
        )
    )


@pytest.fixture
def sourdough(store: InMemoryInterviewStore, forge: Forge):
    sections, questions = seed_round(store, forge, SOURDOUGH_PLAN)
    return forge, sections, questions


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        model=ModelSettings(
            provider="openai",
            model="primary-model",
            endpoint=None,
            api_key="test-key",
            api_version=None,
            fast_model="fast-model",
        ),
        engine=EngineSettings(),
        voice_agent_id="agent-123",
    )
