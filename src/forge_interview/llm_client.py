"""Thin wrappers around Microsoft Agent Framework chat completion clients.

This module centralizes the integration with the Microsoft Agent Framework
(MAF) so the rest of the engine only sees the narrow :class:`TextBackend`
surface: one-shot generation returning a tagged result
(:class:`StructuredResult` or :class:`FreeTextResult`), JSON generation with
the truncation repair policy, and token streaming.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from importlib import import_module
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Iterable,
    List,
    Optional,
    Type,
    Union,
    cast,
)

from agent_framework import ChatMessage as MAFChatMessage, Role
from pydantic import BaseModel

from .config import ModelSettings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_CLOSERS = {"{": "}", "[": "]"}
_TRUNCATION_REASONS = {"length", "max_tokens"}


def _coerce_role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValueError(
            "Unsupported role for MAF chat message: {role}".format(role=role)
        ) from exc


@dataclass(slots=True)
class ChatMessage:
    """Simple representation of a chat message compatible with this app."""

    role: str
    content: str


@dataclass(slots=True)
class StructuredResult:
    """Schema-constrained generation output; always well formed."""

    data: Dict[str, Any]


@dataclass(slots=True)
class FreeTextResult:
    """Unconstrained generation output."""

    text: str
    truncated: bool = False


GenerationResult = Union[StructuredResult, FreeTextResult]


class BackendIntegrationError(RuntimeError):
    """Raised when the MAF client cannot be initialized."""


class BackendResponseError(RuntimeError):
    """Raised when a backend response cannot be turned into JSON."""


def extract_json(text: str, *, truncated: bool = False) -> str:
    """Pull the JSON object out of a free-text completion."""

    fenced = _FENCE_RE.search(text)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        start = text.find("{")
        if start == -1:
            raise BackendResponseError("No JSON object found in response.")
        end = text.rfind("}")
        if truncated or end < start:
            candidate = text[start:]
        else:
            candidate = text[start:end + 1]
    return _TRAILING_COMMA_RE.sub(r"\1", candidate)


def repair_truncated_json(candidate: str) -> str:
    """Balance a JSON document that was cut off mid-generation.

    The dangling fragment after the last complete element is trimmed and
    every open object/array is closed in reverse order.
    """

    stack: List[str] = []
    in_string = False
    escaped = False
    safe_index = 0
    safe_stack: List[str] = []
    for index, char in enumerate(candidate):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
            safe_index = index + 1
            safe_stack = list(stack)
        elif char in "}]":
            if stack:
                stack.pop()
            safe_index = index + 1
            safe_stack = list(stack)
        elif char == ",":
            safe_index = index
            safe_stack = list(stack)

    if not in_string:
        tail = candidate.rstrip().rstrip(",")
        closed = tail + "".join(_CLOSERS[item] for item in reversed(stack))
        try:
            json.loads(closed)
        except json.JSONDecodeError:
            pass
        else:
            return closed

    trimmed = candidate[:safe_index].rstrip().rstrip(",")
    return trimmed + "".join(_CLOSERS[item] for item in reversed(safe_stack))


def parse_json_payload(
    text: str,
    *,
    truncated: bool,
    allow_repair: bool = True,
) -> Dict[str, Any]:
    """Decode a free-text completion, repairing it once if truncated."""

    candidate = extract_json(text, truncated=truncated)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning(
            "JSON parse error (%s); last 200 chars: %s",
            exc,
            candidate[-200:],
        )
        if not (truncated and allow_repair):
            raise BackendResponseError(
                f"Backend returned invalid JSON: {exc}"
            ) from exc
        logger.warning("Response was truncated; attempting repair.")
        try:
            payload = json.loads(repair_truncated_json(candidate))
        except json.JSONDecodeError as repair_exc:
            raise BackendResponseError(
                f"Unable to repair truncated JSON: {repair_exc}"
            ) from repair_exc
    if not isinstance(payload, dict):
        raise BackendResponseError("Backend JSON payload is not an object.")
    return cast(Dict[str, Any], payload)


class TextBackend:
    """Capability surface of a generative text backend."""

    repair_truncated_json: bool = True

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
        raise NotImplementedError

    def stream_text(
        self,
        messages: Iterable[ChatMessage],
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_tokens: int = 2048,
        effort: Optional[str] = None,
    ) -> AsyncIterator[str]:
        raise NotImplementedError

    async def generate_json(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        schema: Optional[Type[BaseModel]] = None,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        effort: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate a JSON object, honouring the truncation repair policy."""

        result = await self.generate(
            prompt,
            system=system,
            schema=schema,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            effort=effort,
        )
        if isinstance(result, StructuredResult):
            return result.data
        return parse_json_payload(
            result.text,
            truncated=result.truncated,
            allow_repair=self.repair_truncated_json,
        )


class MAFChatClient(TextBackend):
    """Wrapper that dispatches chat completion calls through MAF clients."""

    def __init__(
        self,
        settings: ModelSettings,
        *,
        repair_truncated_json: bool = True,
    ) -> None:
        self._settings = settings
        self._client = self._create_client(settings)
        self.repair_truncated_json = repair_truncated_json

    @property
    def fast_model(self) -> str:
        return self._settings.fast_model or self._settings.model

    @staticmethod
    def _create_client(settings: ModelSettings):
        provider = settings.provider.lower()
        try:
            if provider in {"azure-openai", "azure_openai", "azure"}:
                module = import_module("agent_framework.azure")
                client_cls = getattr(module, "AzureOpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    deployment_name=settings.model,
                    endpoint=settings.endpoint,
                    api_version=settings.api_version,
                )
            if provider in {"openai", "oai"}:
                module = import_module("agent_framework.openai")
                client_cls = getattr(module, "OpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    model_id=settings.model,
                    base_url=settings.endpoint,
                )
            if provider in {"anthropic", "claude"}:
                module = import_module("agent_framework.anthropic")
                client_cls = getattr(module, "AnthropicClient")
                return client_cls(
                    api_key=settings.api_key,
                    model_id=settings.model,
                )
        except ModuleNotFoundError as exc:  # pragma: no cover - MAF runtime
            missing = exc.name or "a required dependency"
            raise BackendIntegrationError(
                "Microsoft Agent Framework dependency '{missing}' is missing. "
                "Reinstall the project dependencies (e.g. `pip install -e .`)."
                .format(missing=missing)
            ) from exc
        raise BackendIntegrationError(
            f"Unsupported MAF provider '{settings.provider}'."
        )

    @staticmethod
    def _merge_consecutive_roles(
        messages: Iterable[ChatMessage],
    ) -> List[ChatMessage]:
        """Combine adjacent messages that share the same role.

        The Microsoft Agent Framework templates expect user/assistant roles to
        alternate. When higher-level code emits multiple messages from the same
        role back-to-back (for example, two voice utterances from the expert),
        we merge their content to preserve intent while keeping the required
        alternation.
        """

        merged: List[ChatMessage] = []
        for message in messages:
            if merged and merged[-1].role == message.role:
                previous = merged[-1]
                previous.content = (
                    f"{previous.content}\n\n{message.content}".strip()
                )
                continue
            merged.append(
                ChatMessage(role=message.role, content=message.content)
            )
        return merged

    def _build_payload(
        self,
        messages: Iterable[ChatMessage],
        system: Optional[str],
    ) -> List[MAFChatMessage]:
        payload: List[MAFChatMessage] = []
        if system:
            payload.append(MAFChatMessage(role=Role.SYSTEM, text=system))
        payload.extend(
            MAFChatMessage(role=_coerce_role(msg.role), text=msg.content)
            for msg in self._merge_consecutive_roles(messages)
        )
        return payload

    def _call_options(
        self,
        *,
        model: Optional[str],
        temperature: float,
        max_tokens: int,
        effort: Optional[str],
    ) -> Dict[str, Any]:
        model_id = model or self._settings.model
        options: Dict[str, Any] = {
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if model_id != self._settings.model:
            options["model_id"] = model_id
        # Effort tuning is only understood by the higher-tier models.
        markers = self._settings.effort_model_markers
        if effort and any(marker in model_id.lower() for marker in markers):
            options["additional_properties"] = {
                "output_config": {"effort": effort}
            }
        logger.debug(
            "Calling %s (max_tokens=%s, effort=%s)",
            model_id,
            max_tokens,
            effort or "default",
        )
        return options

    @staticmethod
    def _is_truncated(response: Any) -> bool:
        reason = getattr(response, "finish_reason", None)
        value = getattr(reason, "value", reason)
        return str(value or "").lower() in _TRUNCATION_REASONS

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
        """Execute a one-shot completion through the underlying MAF client."""

        payload = self._build_payload(
            [ChatMessage(role="user", content=prompt)], system
        )
        options = self._call_options(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            effort=effort,
        )
        if schema is not None:
            options["response_format"] = schema
        response = await self._client.get_response(messages=payload, **options)
        if schema is not None:
            value = getattr(response, "value", None)
            if not isinstance(value, BaseModel):
                value = schema.model_validate_json(response.text or "{}")
            return StructuredResult(data=value.model_dump())
        text = response.text or ""
        truncated = self._is_truncated(response)
        logger.debug(
            "Completion returned %s chars (truncated=%s)",
            len(text),
            truncated,
        )
        return FreeTextResult(text=text, truncated=truncated)

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
        """Yield text deltas from a streaming MAF completion."""

        payload = self._build_payload(messages, system)
        options = self._call_options(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            effort=effort,
        )
        async for update in self._client.get_streaming_response(
            messages=payload, **options
        ):
            if update.text:
                yield update.text
