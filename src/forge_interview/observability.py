"""OpenTelemetry export for backend calls made through the agent framework."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from agent_framework.observability import setup_observability

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_active_endpoint: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TracingSettings:
    """Where spans go and whether prompts/completions are attached to them."""

    endpoint: Optional[str] = None
    capture_prompts: bool = False

    @classmethod
    def from_env(cls) -> "TracingSettings":
        endpoint = os.getenv("FORGE_OTLP_ENDPOINT", "").strip()
        capture = os.getenv("FORGE_TRACING_CAPTURE_SENSITIVE", "")
        return cls(
            endpoint=endpoint or None,
            capture_prompts=capture.strip().lower() in _TRUTHY,
        )


def initialize_tracing(settings: Optional[TracingSettings] = None) -> bool:
    """Start span export once per process.

    Returns ``True`` only for the call that actually configured the
    exporter. Interview prompts contain expert answers, so they are left
    out of spans unless ``capture_prompts`` is set.
    """

    global _active_endpoint
    settings = settings or TracingSettings.from_env()
    if _active_endpoint is not None:
        if settings.endpoint and settings.endpoint != _active_endpoint:
            logger.warning(
                "Tracing already exporting to %s; ignoring %s",
                _active_endpoint,
                settings.endpoint,
            )
        return False
    if not settings.endpoint:
        logger.info("FORGE_OTLP_ENDPOINT not set; tracing disabled.")
        return False

    try:
        setup_observability(
            otlp_endpoint=settings.endpoint,
            enable_sensitive_data=settings.capture_prompts,
        )
    except Exception as exc:  # pragma: no cover - exporter specific
        logger.warning("Tracing initialization failed: %s", exc)
        return False

    _active_endpoint = settings.endpoint
    logger.info("Exporting traces to %s", settings.endpoint)
    return True
