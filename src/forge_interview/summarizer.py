"""Progress text for prompts and voice sessions, plus resume handling."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from .models import QuestionStatus
from .progress import InterviewPlan
from .prompts import EMPTY_PROGRESS, WRAP_UP_DIRECTIVE

logger = logging.getLogger(__name__)


def render_progress(plan: InterviewPlan) -> str:
    """Render the round as the text that fills the progress slot.

    Markers come from the derived pointer, so the CURRENT question is the
    one the next turn will be judged against.
    """

    if not plan.sections:
        return EMPTY_PROGRESS
    pointer = plan.active()
    current_id = pointer.question.id if pointer.question else None
    lines: List[str] = []
    for entry in plan.sections:
        lines.append(
            f"Section: {entry.section.title} [{entry.section.status.value}]"
        )
        for question in entry.questions:
            if question.status == QuestionStatus.ANSWERED:
                marker = "ANSWERED"
            elif question.id == current_id:
                marker = "CURRENT"
            else:
                marker = "pending"
            lines.append(f"  - [{marker}] {question.text}")
    if plan.all_answered:
        lines.append("")
        lines.append(WRAP_UP_DIRECTIVE)
    return "\n".join(lines)


@dataclass(slots=True)
class ResumeContext:
    completed_sections: List[str] = field(default_factory=list)
    current_section: Optional[str] = None
    current_question: Optional[str] = None


def build_resume_context(plan: InterviewPlan) -> ResumeContext:
    pointer = plan.active()
    return ResumeContext(
        completed_sections=[
            section.title for section in plan.completed_sections()
        ],
        current_section=pointer.section.title if pointer.section else None,
        current_question=pointer.question.text if pointer.question else None,
    )


def build_resume_message(
    expert_name: str,
    context: ResumeContext,
    fallback: str,
) -> str:
    """Opening line for a reconnected voice session.

    Only completed sections and the active one are named. With nothing
    completed yet the scripted ``fallback`` is reused.
    """

    if not context.completed_sections:
        return fallback
    covered = (
        "We've already covered: "
        f"{', '.join(context.completed_sections)}."
    )
    next_text = ""
    if context.current_section:
        next_text = f"Let's continue with {context.current_section}"
        if context.current_question:
            next_text += f", specifically: {context.current_question}"
        next_text += "."
    parts = [f"Welcome back {expert_name}.", covered, next_text, "So where were we?"]
    return " ".join(part for part in parts if part)


@dataclass(frozen=True, slots=True)
class DisconnectPolicy:
    """Separates genuine voice-session ends from transient drops."""

    min_turns: int = 4

    def should_offer_reconnect(
        self,
        turns: int,
        *,
        user_initiated: bool = False,
    ) -> bool:
        if user_initiated:
            return True
        return turns >= self.min_turns


class ContextualUpdateSink(Protocol):
    async def send_contextual_update(self, text: str) -> None:
        ...


class ProgressPushCoalescer:
    """Keeps at most one progress push in flight for a voice session.

    Requests arriving while a push is pending only mark the state dirty;
    the in-flight task renders once more before it finishes.
    """

    def __init__(
        self,
        sink: ContextualUpdateSink,
        render: Callable[[], str],
        on_settled: Optional[Callable[["ProgressPushCoalescer"], None]] = None,
    ) -> None:
        self._sink = sink
        self._render = render
        self._on_settled = on_settled
        self._pending: Optional["asyncio.Task[None]"] = None
        self._dirty = False
        self.pushes = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def request(self) -> bool:
        """Queue a push; returns ``False`` when folded into a pending one."""

        if self.pending:
            self._dirty = True
            return False
        self._dirty = False
        self._pending = asyncio.create_task(self._run())
        return True

    async def flush(self) -> None:
        if self._pending is not None:
            await self._pending

    async def _run(self) -> None:
        try:
            while True:
                # Let a burst of requests land before rendering.
                await asyncio.sleep(0)
                self._dirty = False
                try:
                    await self._sink.send_contextual_update(self._render())
                    self.pushes += 1
                except Exception:  # pragma: no cover - gateway specific
                    logger.exception("Failed to push progress to voice session")
                if not self._dirty:
                    return
        finally:
            if self._on_settled is not None:
                self._on_settled(self)
