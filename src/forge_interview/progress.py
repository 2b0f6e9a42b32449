"""Progress model and advancement rules for an interview round.

The active section/question is never stored as a separate cursor. It is
recomputed from persisted statuses every time it is needed, and the
advancer expresses each move as a :class:`ProgressUpdate` that the store
applies in one write.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .models import (
    Forge,
    ForgeStatus,
    ProgressUpdate,
    Question,
    QuestionStatus,
    Section,
    SectionStatus,
    ValidationResult,
    utcnow,
)
from .store import InterviewStore

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7


class NoActiveQuestionError(RuntimeError):
    """Raised when a turn arrives but the round has nothing left to ask."""


@dataclass(slots=True)
class SectionProgress:
    section: Section
    questions: List[Question] = field(default_factory=list)

    @property
    def all_answered(self) -> bool:
        return all(
            question.status == QuestionStatus.ANSWERED
            for question in self.questions
        )


@dataclass(slots=True)
class InterviewPlan:
    """Sections of one round with their questions, both in order."""

    round: int
    sections: List[SectionProgress] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        sections: Sequence[Section],
        questions: Sequence[Question],
        *,
        round: Optional[int] = None,
    ) -> "InterviewPlan":
        current = round
        if current is None:
            current = max([1, *(section.round for section in sections)])
        by_section: Dict[str, List[Question]] = {}
        for question in questions:
            by_section.setdefault(question.section_id, []).append(question)
        entries = [
            SectionProgress(
                section=section,
                questions=sorted(
                    by_section.get(section.id, []),
                    key=lambda item: item.order_index,
                ),
            )
            for section in sorted(sections, key=lambda item: item.order_index)
            if section.round == current
        ]
        return cls(round=current, sections=entries)

    @property
    def questions(self) -> List[Question]:
        return [q for entry in self.sections for q in entry.questions]

    @property
    def all_answered(self) -> bool:
        return bool(self.sections) and all(
            entry.all_answered for entry in self.sections
        )

    def completed_sections(self) -> List[Section]:
        return [
            entry.section
            for entry in self.sections
            if entry.section.status == SectionStatus.COMPLETED
        ]

    def active(self) -> "ActivePointer":
        # Sections without an open question are passed over.
        for entry in self.sections:
            if entry.section.status == SectionStatus.COMPLETED:
                continue
            for question in entry.questions:
                if question.status != QuestionStatus.ANSWERED:
                    return ActivePointer(entry.section, question)
        return ActivePointer(None, None)


@dataclass(frozen=True, slots=True)
class ActivePointer:
    section: Optional[Section]
    question: Optional[Question]

    @property
    def is_complete(self) -> bool:
        return self.section is None

    @property
    def ids(self) -> Tuple[Optional[str], Optional[str]]:
        return (
            self.section.id if self.section else None,
            self.question.id if self.question else None,
        )


def compute_active(
    sections: Sequence[Section],
    questions: Sequence[Question],
    *,
    round: Optional[int] = None,
) -> ActivePointer:
    """Return the first open section and its first unanswered question."""

    return InterviewPlan.build(sections, questions, round=round).active()


class AdvanceKind(str, Enum):
    STAYED = "stayed"
    ADVANCED = "advanced"
    ROUND_COMPLETE = "round_complete"


@dataclass(slots=True)
class AdvanceDecision:
    kind: AdvanceKind
    section_id: Optional[str] = None
    question_id: Optional[str] = None
    answered_question_id: Optional[str] = None
    update: ProgressUpdate = field(default_factory=ProgressUpdate)

    @property
    def moved(self) -> bool:
        return self.kind != AdvanceKind.STAYED


class Advancer:
    """Decides whether a validated turn moves the active pointer."""

    def __init__(self, confidence_threshold: float = CONFIDENCE_THRESHOLD) -> None:
        self.confidence_threshold = confidence_threshold

    def should_advance(self, validation: Optional[ValidationResult]) -> bool:
        if validation is None:
            return False
        return (
            validation.meets_goal
            and validation.confidence >= self.confidence_threshold
        )

    def decide(
        self,
        plan: InterviewPlan,
        question_id: str,
        validation: Optional[ValidationResult],
        *,
        now: Optional[datetime] = None,
    ) -> AdvanceDecision:
        """Plan the writes for a validated turn on ``question_id``.

        Turns on a question that is no longer active (for example a late
        voice utterance) never move the pointer.
        """

        pointer = plan.active()
        if pointer.question is None or pointer.question.id != question_id:
            return AdvanceDecision(kind=AdvanceKind.STAYED)
        if not self.should_advance(validation):
            update = ProgressUpdate()
            if validation is not None:
                judged = copy.deepcopy(pointer.question)
                judged.validation_result = validation
                update.questions.append(judged)
            return AdvanceDecision(
                kind=AdvanceKind.STAYED,
                section_id=pointer.section.id if pointer.section else None,
                question_id=pointer.question.id,
                update=update,
            )
        return self._advance(plan, pointer, validation, now or utcnow())

    def force(
        self,
        plan: InterviewPlan,
        *,
        now: Optional[datetime] = None,
    ) -> AdvanceDecision:
        """Move past the active question without validation."""

        pointer = plan.active()
        if pointer.is_complete:
            return AdvanceDecision(kind=AdvanceKind.ROUND_COMPLETE)
        return self._advance(plan, pointer, None, now or utcnow())

    def end_early(
        self,
        plan: InterviewPlan,
        *,
        now: Optional[datetime] = None,
    ) -> ProgressUpdate:
        """Mark every open section and question of the round as done."""

        stamp = now or utcnow()
        update = ProgressUpdate()
        for entry in plan.sections:
            if entry.section.status != SectionStatus.COMPLETED:
                section = copy.deepcopy(entry.section)
                section.status = SectionStatus.COMPLETED
                section.completed_at = stamp
                update.sections.append(section)
            for question in entry.questions:
                if question.status != QuestionStatus.ANSWERED:
                    answered = copy.deepcopy(question)
                    answered.status = QuestionStatus.ANSWERED
                    answered.answered_at = stamp
                    update.questions.append(answered)
        return update

    def _advance(
        self,
        plan: InterviewPlan,
        pointer: ActivePointer,
        validation: Optional[ValidationResult],
        now: datetime,
    ) -> AdvanceDecision:
        assert pointer.section is not None
        update = ProgressUpdate()
        answered_id: Optional[str] = None
        if pointer.question is not None:
            answered = copy.deepcopy(pointer.question)
            answered.status = QuestionStatus.ANSWERED
            answered.answered_at = now
            if validation is not None:
                answered.validation_result = validation
            update.questions.append(answered)
            answered_id = answered.id

        entries = plan.sections
        start = next(
            index
            for index, entry in enumerate(entries)
            if entry.section.id == pointer.section.id
        )
        for entry in entries[:start]:
            if entry.section.status != SectionStatus.COMPLETED and entry.all_answered:
                skipped = copy.deepcopy(entry.section)
                skipped.status = SectionStatus.COMPLETED
                skipped.completed_at = now
                update.sections.append(skipped)
        for offset, entry in enumerate(entries[start:]):
            candidates = [
                question
                for question in entry.questions
                if question.status != QuestionStatus.ANSWERED
                and question.id != answered_id
            ]
            section = entry.section
            if offset > 0 and section.status == SectionStatus.COMPLETED:
                continue
            if candidates:
                next_question = copy.deepcopy(candidates[0])
                next_question.status = QuestionStatus.ACTIVE
                update.questions.append(next_question)
                if section.status != SectionStatus.ACTIVE:
                    activated = copy.deepcopy(section)
                    activated.status = SectionStatus.ACTIVE
                    update.sections.append(activated)
                return AdvanceDecision(
                    kind=AdvanceKind.ADVANCED,
                    section_id=section.id,
                    question_id=next_question.id,
                    answered_question_id=answered_id,
                    update=update,
                )
            completed = copy.deepcopy(section)
            completed.status = SectionStatus.COMPLETED
            completed.completed_at = now
            update.sections.append(completed)

        return AdvanceDecision(
            kind=AdvanceKind.ROUND_COMPLETE,
            answered_question_id=answered_id,
            update=update,
        )


class ProgressTracker:
    """Reads the progress model from the store and persists advances."""

    def __init__(
        self,
        store: InterviewStore,
        advancer: Optional[Advancer] = None,
    ) -> None:
        self._store = store
        self.advancer = advancer or Advancer()

    def plan(self, forge_id: str, *, round: Optional[int] = None) -> InterviewPlan:
        return InterviewPlan.build(
            self._store.list_sections(forge_id),
            self._store.list_questions(forge_id),
            round=round,
        )

    def active(self, forge_id: str) -> ActivePointer:
        return self.plan(forge_id).active()

    def require_active(self, forge_id: str) -> Tuple[Section, Question]:
        pointer = self.active(forge_id)
        if pointer.section is None or pointer.question is None:
            raise NoActiveQuestionError("No active question")
        return pointer.section, pointer.question

    def record_validation(
        self,
        forge_id: str,
        question_id: str,
        validation: Optional[ValidationResult],
    ) -> AdvanceDecision:
        """Apply the advancer to a validated turn and persist the outcome."""

        plan = self.plan(forge_id)
        decision = self.advancer.decide(plan, question_id, validation)
        self._commit(forge_id, plan.round, decision)
        return decision

    def force_next(self, forge_id: str) -> AdvanceDecision:
        plan = self.plan(forge_id)
        if plan.active().is_complete:
            return AdvanceDecision(kind=AdvanceKind.ROUND_COMPLETE)
        decision = self.advancer.force(plan)
        self._commit(forge_id, plan.round, decision)
        return decision

    def end_round(self, forge_id: str) -> Forge:
        """Force-complete the current round regardless of validation."""

        plan = self.plan(forge_id)
        update = self.advancer.end_early(plan)
        self._store.apply_progress(forge_id, update)
        logger.info(
            "Round %s of forge %s ended early (%s questions closed)",
            plan.round,
            forge_id,
            len(update.questions),
        )
        return self.complete_round(forge_id, plan.round)

    def complete_round(self, forge_id: str, round: int) -> Forge:
        forge = self._store.get_forge(forge_id)
        if round > 1:
            forge.status = ForgeStatus.COMPLETE
            rounds = list(forge.metadata.get("interviewRounds") or [])
            for entry in rounds:
                if isinstance(entry, dict) and entry.get("round") == round:
                    entry["status"] = "completed"
                    entry["completedAt"] = utcnow().isoformat()
            forge.metadata = {**forge.metadata, "interviewRounds": rounds}
        else:
            forge.status = ForgeStatus.PROCESSING
        return self._store.update_forge(forge)

    def _commit(
        self,
        forge_id: str,
        round: int,
        decision: AdvanceDecision,
    ) -> None:
        if not decision.update.is_empty():
            self._store.apply_progress(forge_id, decision.update)
        if decision.kind == AdvanceKind.ADVANCED:
            logger.info(
                "Forge %s advanced to question %s",
                forge_id,
                decision.question_id,
            )
        elif decision.kind == AdvanceKind.ROUND_COMPLETE:
            logger.info("Forge %s completed round %s", forge_id, round)
            self.complete_round(forge_id, round)
