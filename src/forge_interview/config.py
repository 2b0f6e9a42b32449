"""Configuration helpers for the Forge interview engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from importlib import import_module
from typing import Dict, Optional, Tuple


class InterviewDepth(str, Enum):
    """Available interview depths."""

    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"

    @classmethod
    def from_string(
        cls,
        depth: str | None,
        default: Optional["InterviewDepth"] = None,
    ) -> "InterviewDepth":
        """Normalize arbitrary user input into a valid depth."""
        if not depth:
            if default is None:
                raise ValueError("Interview depth is required.")
            return default
        normalized = depth.strip().lower().replace(" ", "_")
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        if default is not None:
            return default
        raise ValueError(f"Unsupported interview depth: {depth}")

    @property
    def preset(self) -> "DepthPreset":
        return DEPTH_PRESETS[self]


@dataclass(frozen=True, slots=True)
class DepthPreset:
    """Planning limits tied to an interview depth."""

    label: str
    estimated_minutes: int
    sections: Tuple[int, int]
    questions_per_section: Tuple[int, int]
    voice_max_duration: int


DEPTH_PRESETS: Dict[InterviewDepth, DepthPreset] = {
    InterviewDepth.QUICK: DepthPreset(
        label="Quick",
        estimated_minutes=5,
        sections=(2, 3),
        questions_per_section=(1, 2),
        voice_max_duration=600,
    ),
    InterviewDepth.STANDARD: DepthPreset(
        label="Standard",
        estimated_minutes=20,
        sections=(4, 6),
        questions_per_section=(2, 4),
        voice_max_duration=1800,
    ),
    InterviewDepth.DEEP: DepthPreset(
        label="Deep Dive",
        estimated_minutes=60,
        sections=(6, 8),
        questions_per_section=(3, 5),
        voice_max_duration=3600,
    ),
}

FOLLOW_UP_MAX_SECTIONS = 3


@dataclass(slots=True)
class ModelSettings:
    """Holds model-related configuration for the runtime."""

    provider: str
    model: str
    endpoint: Optional[str]
    api_key: str
    api_version: Optional[str]
    fast_model: Optional[str] = None
    effort_model_markers: Tuple[str, ...] = ("opus",)


@dataclass(slots=True)
class EngineSettings:
    """Tunable heuristics of the interview state machine."""

    confidence_threshold: float = 0.7
    voice_drop_min_turns: int = 4
    repair_truncated_json: bool = True
    conductor_history_limit: int = 20
    voice_extract_min_chars: int = 20
    voice_recent_dedup_window: int = 4
    sse_queue_size: int = 64


@dataclass(slots=True)
class AppSettings:
    """Top-level application settings loaded from environment variables."""

    model: ModelSettings
    engine: EngineSettings = field(default_factory=EngineSettings)
    redis_url: Optional[str] = None
    voice_agent_id: Optional[str] = None
    default_depth: InterviewDepth = InterviewDepth.STANDARD

    @classmethod
    def load(cls) -> "AppSettings":
        """Load settings from the environment or .env file."""
        _ensure_dotenv()
        provider = os.getenv("FORGE_MODEL_PROVIDER", "azure-openai")
        model = os.getenv("FORGE_MODEL")
        if not model:
            raise RuntimeError("FORGE_MODEL environment variable is required.")
        api_key = os.getenv("FORGE_MODEL_API_KEY")
        if not api_key:
            raise RuntimeError(
                "FORGE_MODEL_API_KEY environment variable is required."
            )
        redis_url = os.getenv("FORGE_REDIS_URL", "")
        voice_agent_id = os.getenv("FORGE_VOICE_AGENT_ID", "").strip()
        engine = EngineSettings(
            confidence_threshold=_read_float(
                "FORGE_CONFIDENCE_THRESHOLD", 0.7, minimum=0.0, maximum=1.0
            ),
            voice_drop_min_turns=_read_int("FORGE_VOICE_DROP_MIN_TURNS", 4),
            repair_truncated_json=_read_bool(
                "FORGE_REPAIR_TRUNCATED_JSON", True
            ),
            conductor_history_limit=_read_int(
                "FORGE_CONDUCTOR_HISTORY_LIMIT", 20, minimum=1
            ),
            voice_extract_min_chars=_read_int(
                "FORGE_VOICE_EXTRACT_MIN_CHARS", 20
            ),
            sse_queue_size=_read_int("FORGE_SSE_QUEUE_SIZE", 64, minimum=1),
        )
        return cls(
            model=ModelSettings(
                provider=provider,
                model=model,
                endpoint=os.getenv("FORGE_MODEL_ENDPOINT"),
                api_key=api_key,
                api_version=os.getenv("FORGE_MODEL_API_VERSION"),
                fast_model=os.getenv("FORGE_FAST_MODEL") or None,
            ),
            engine=engine,
            redis_url=redis_url.strip() or None,
            voice_agent_id=voice_agent_id or None,
            default_depth=InterviewDepth.from_string(
                os.getenv("FORGE_DEFAULT_DEPTH"),
                default=InterviewDepth.STANDARD,
            ),
        )


def _read_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}")
    return value


def _read_float(
    name: str,
    default: float,
    *,
    minimum: float,
    maximum: float,
) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number") from exc
    if not minimum <= value <= maximum:
        raise RuntimeError(
            f"{name} must be between {minimum} and {maximum}"
        )
    return value


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _ensure_dotenv() -> None:
    """Load dotenv variables and provide a helpful error if missing."""

    try:
        dotenv_module = import_module("dotenv")
    except ModuleNotFoundError as exc:  # pragma: no cover - optional dep
        raise RuntimeError(
            "python-dotenv is required. Install with `pip install "
            "python-dotenv`."
        ) from exc

    load_dotenv = getattr(dotenv_module, "load_dotenv")
    load_dotenv()
