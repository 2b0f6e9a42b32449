"""Forge interview orchestration engine.

Plans expert interviews into sections and questions, runs streamed text
turns, and keeps an external voice session aligned with the same progress
model.
"""

from __future__ import annotations

from .config import AppSettings, EngineSettings, InterviewDepth
from .engine import InterviewEngine
from .progress import Advancer, ProgressTracker, compute_active

__all__ = [
    "Advancer",
    "AppSettings",
    "EngineSettings",
    "InterviewDepth",
    "InterviewEngine",
    "ProgressTracker",
    "compute_active",
]

__version__ = "0.1.0"
