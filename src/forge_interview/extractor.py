"""Pulls discrete knowledge units out of a single expert utterance."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from .llm_client import TextBackend
from .models import ExtractedItem
from .prompts import EXTRACTION_RESPONSE_FORMAT, GUIDANCE

logger = logging.getLogger(__name__)

_EXISTING_HINT_LIMIT = 30


class Extractor:
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
        utterance: str,
        *,
        section_title: str,
        question_text: Optional[str],
        existing: Sequence[str] = (),
    ) -> str:
        lines = [f"**Section:** {section_title}"]
        if question_text:
            lines.append(f"**Current Topic:** {question_text}")
        lines.append("")
        lines.append(f"**Expert's Response:**\n{utterance}")
        recent = [item for item in existing if item][-_EXISTING_HINT_LIMIT:]
        if recent:
            bullets = "\n".join(f"- {item}" for item in recent)
            lines.append("")
            lines.append(f"**Already extracted (avoid duplicates):**\n{bullets}")
        lines.append("")
        lines.append(EXTRACTION_RESPONSE_FORMAT)
        return "\n".join(lines)

    async def extract(
        self,
        utterance: str,
        *,
        section_title: str,
        question_text: Optional[str] = None,
        existing: Sequence[str] = (),
        effort: str = "medium",
    ) -> List[ExtractedItem]:
        """Return the well-formed items found in ``utterance``.

        Items with an unknown type or empty content are dropped. The
        ``existing`` strings are only a hint; duplicates are not filtered.
        """

        payload = await self._backend.generate_json(
            self.build_prompt(
                utterance,
                section_title=section_title,
                question_text=question_text,
                existing=existing,
            ),
            system=GUIDANCE.extractor,
            model=self._model,
            temperature=0.2,
            max_tokens=4096,
            effort=effort,
        )
        raw_items: Any = payload.get("extractions")
        if not isinstance(raw_items, list):
            return []
        items: List[ExtractedItem] = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            item = ExtractedItem.from_payload(raw)
            if item is None:
                logger.debug("Dropping malformed extraction: %s", raw)
                continue
            items.append(item)
        return items
