"""Domain records shared by the interview engine and its store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, cast
from uuid import uuid4

from .config import InterviewDepth


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).replace("Z", "+00:00")
    return datetime.fromisoformat(text)


class ForgeStatus(str, Enum):
    DRAFT = "draft"
    PLANNING = "planning"
    INTERVIEWING = "interviewing"
    PROCESSING = "processing"
    GENERATING = "generating"
    COMPLETE = "complete"


class SectionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class QuestionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ANSWERED = "answered"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Modality(str, Enum):
    TEXT = "text"
    VOICE = "voice"


class ExtractionType(str, Enum):
    FACT = "fact"
    PROCEDURE = "procedure"
    DECISION_RULE = "decision_rule"
    WARNING = "warning"
    TIP = "tip"
    METRIC = "metric"
    DEFINITION = "definition"
    EXAMPLE = "example"
    CONTEXT = "context"

    @classmethod
    def parse(cls, value: object) -> Optional["ExtractionType"]:
        normalized = str(value or "").strip().lower().replace("-", "_")
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        return None


def _string_list(value: object) -> List[str]:
    if isinstance(value, (list, tuple)):
        items = cast(List[Any], list(value))
        return [str(item).strip() for item in items if str(item).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _clamp_confidence(value: object) -> float:
    try:
        number = float(cast(Any, value))
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, number))


def _pick(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


@dataclass(slots=True)
class ValidationResult:
    """Per-turn judgment of whether a question's goal has been met."""

    meets_goal: bool
    confidence: float
    explanation: str = ""
    missing_aspects: List[str] = field(default_factory=list)
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    follow_up_questions: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ValidationResult":
        """Build a result from backend JSON (snake or camel case)."""

        extracted = _pick(payload, "extracted_data", "extractedData")
        return cls(
            meets_goal=_flag(_pick(payload, "meets_goal", "meetsGoal")),
            confidence=_clamp_confidence(payload.get("confidence")),
            explanation=str(payload.get("explanation") or "").strip(),
            missing_aspects=_string_list(
                _pick(payload, "missing_aspects", "missingAspects")
            ),
            extracted_data=(
                dict(cast(Dict[str, Any], extracted))
                if isinstance(extracted, dict)
                else {}
            ),
            follow_up_questions=_string_list(
                _pick(payload, "follow_up_questions", "followUpQuestions")
            ),
        )

    @classmethod
    def unmet(cls, explanation: str) -> "ValidationResult":
        return cls(meets_goal=False, confidence=0.0, explanation=explanation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meetsGoal": self.meets_goal,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "missingAspects": list(self.missing_aspects),
            "extractedData": dict(self.extracted_data),
            "followUpQuestions": list(self.follow_up_questions),
        }


@dataclass(slots=True)
class ExtractedItem:
    """A knowledge unit produced by the extractor, not yet persisted."""

    type: ExtractionType
    content: str
    confidence: float
    tags: List[str] = field(default_factory=list)
    structured: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
    ) -> Optional["ExtractedItem"]:
        kind = ExtractionType.parse(payload.get("type"))
        content = str(payload.get("content") or "").strip()
        if kind is None or not content:
            return None
        structured = payload.get("structured")
        return cls(
            type=kind,
            content=content,
            confidence=_clamp_confidence(payload.get("confidence", 0.5)),
            tags=_string_list(payload.get("tags")),
            structured=(
                dict(cast(Dict[str, Any], structured))
                if isinstance(structured, dict)
                else None
            ),
        )


@dataclass(slots=True)
class Forge:
    """Interview subject: one expert and their domain."""

    expert_name: str
    domain: str
    expert_bio: str = ""
    target_audience: Optional[str] = None
    depth: InterviewDepth = InterviewDepth.STANDARD
    status: ForgeStatus = ForgeStatus.DRAFT
    interview_config: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "expertName": self.expert_name,
            "domain": self.domain,
            "expertBio": self.expert_bio,
            "targetAudience": self.target_audience,
            "depth": self.depth.value,
            "status": self.status.value,
            "interviewConfig": self.interview_config,
            "metadata": self.metadata,
            "createdAt": _timestamp(self.created_at),
            "updatedAt": _timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Forge":
        return cls(
            id=str(data["id"]),
            expert_name=str(data.get("expertName", "")),
            domain=str(data.get("domain", "")),
            expert_bio=str(data.get("expertBio") or ""),
            target_audience=data.get("targetAudience"),
            depth=InterviewDepth.from_string(
                data.get("depth"), default=InterviewDepth.STANDARD
            ),
            status=ForgeStatus(data.get("status", ForgeStatus.DRAFT.value)),
            interview_config=dict(data.get("interviewConfig") or {}),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_timestamp(data.get("createdAt")) or utcnow(),
            updated_at=_parse_timestamp(data.get("updatedAt")) or utcnow(),
        )


@dataclass(slots=True)
class Section:
    forge_id: str
    title: str
    goal: str
    order_index: int
    round: int = 1
    status: SectionStatus = SectionStatus.PENDING
    summary: Optional[str] = None
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "forgeId": self.forge_id,
            "title": self.title,
            "goal": self.goal,
            "orderIndex": self.order_index,
            "round": self.round,
            "status": self.status.value,
            "summary": self.summary,
            "completedAt": _timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Section":
        return cls(
            id=str(data["id"]),
            forge_id=str(data["forgeId"]),
            title=str(data.get("title", "")),
            goal=str(data.get("goal") or ""),
            order_index=int(data.get("orderIndex", 0)),
            round=int(data.get("round", 1)),
            status=SectionStatus(data.get("status", "pending")),
            summary=data.get("summary"),
            completed_at=_parse_timestamp(data.get("completedAt")),
        )


@dataclass(slots=True)
class Question:
    section_id: str
    text: str
    goal: str
    order_index: int
    status: QuestionStatus = QuestionStatus.PENDING
    validation_result: Optional[ValidationResult] = None
    answered_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sectionId": self.section_id,
            "text": self.text,
            "goal": self.goal,
            "orderIndex": self.order_index,
            "status": self.status.value,
            "validationResult": (
                self.validation_result.to_dict()
                if self.validation_result is not None
                else None
            ),
            "answeredAt": _timestamp(self.answered_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Question":
        validation = data.get("validationResult")
        return cls(
            id=str(data["id"]),
            section_id=str(data["sectionId"]),
            text=str(data.get("text", "")),
            goal=str(data.get("goal") or ""),
            order_index=int(data.get("orderIndex", 0)),
            status=QuestionStatus(data.get("status", "pending")),
            validation_result=(
                ValidationResult.from_payload(validation)
                if isinstance(validation, dict)
                else None
            ),
            answered_at=_parse_timestamp(data.get("answeredAt")),
        )


@dataclass(slots=True)
class Message:
    forge_id: str
    role: MessageRole
    content: str
    question_id: Optional[str] = None
    modality: Modality = Modality.TEXT
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "forgeId": self.forge_id,
            "questionId": self.question_id,
            "role": self.role.value,
            "content": self.content,
            "modality": self.modality.value,
            "createdAt": _timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            forge_id=str(data["forgeId"]),
            question_id=data.get("questionId"),
            role=MessageRole(data["role"]),
            content=str(data.get("content", "")),
            modality=Modality(data.get("modality", "text")),
            created_at=_parse_timestamp(data.get("createdAt")) or utcnow(),
        )


@dataclass(slots=True)
class Extraction:
    forge_id: str
    type: ExtractionType
    content: str
    confidence: float
    tags: List[str] = field(default_factory=list)
    structured: Optional[Dict[str, Any]] = None
    section_id: Optional[str] = None
    question_id: Optional[str] = None
    round: int = 1
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_item(
        cls,
        item: ExtractedItem,
        *,
        forge_id: str,
        section_id: Optional[str],
        question_id: Optional[str],
        round: int,
    ) -> "Extraction":
        return cls(
            forge_id=forge_id,
            type=item.type,
            content=item.content,
            confidence=item.confidence,
            tags=list(item.tags),
            structured=item.structured,
            section_id=section_id,
            question_id=question_id,
            round=round,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "forgeId": self.forge_id,
            "sectionId": self.section_id,
            "questionId": self.question_id,
            "type": self.type.value,
            "content": self.content,
            "structured": self.structured,
            "confidence": self.confidence,
            "tags": list(self.tags),
            "round": self.round,
            "createdAt": _timestamp(self.created_at),
        }

    def to_event_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "confidence": self.confidence,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Extraction":
        kind = ExtractionType.parse(data.get("type")) or ExtractionType.FACT
        structured = data.get("structured")
        return cls(
            id=str(data["id"]),
            forge_id=str(data["forgeId"]),
            section_id=data.get("sectionId"),
            question_id=data.get("questionId"),
            type=kind,
            content=str(data.get("content", "")),
            structured=structured if isinstance(structured, dict) else None,
            confidence=_clamp_confidence(data.get("confidence")),
            tags=_string_list(data.get("tags")),
            round=int(data.get("round", 1)),
            created_at=_parse_timestamp(data.get("createdAt")) or utcnow(),
        )


@dataclass(slots=True)
class ProgressUpdate:
    """Status changes the advancer wants persisted as one unit."""

    sections: List[Section] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.sections and not self.questions
