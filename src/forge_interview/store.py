"""Durable storage for forges, interview plans, transcripts and extractions."""

from __future__ import annotations

import copy
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import redis
from redis import Redis
from redis.exceptions import RedisError

from .models import (
    Extraction,
    Forge,
    Message,
    ProgressUpdate,
    Question,
    Section,
    utcnow,
)

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot be reached."""


class RecordNotFoundError(LookupError):
    """Raised when a requested record does not exist."""


class InterviewStore:
    """Keyed read/append/update surface over interview records."""

    def create_forge(self, forge: Forge) -> Forge:
        raise NotImplementedError

    def get_forge(self, forge_id: str) -> Forge:
        raise NotImplementedError

    def update_forge(self, forge: Forge) -> Forge:
        raise NotImplementedError

    def add_round(
        self,
        forge_id: str,
        sections: Sequence[Section],
        questions: Sequence[Question],
    ) -> None:
        raise NotImplementedError

    def list_sections(self, forge_id: str) -> List[Section]:
        raise NotImplementedError

    def list_questions(self, forge_id: str) -> List[Question]:
        raise NotImplementedError

    def apply_progress(self, forge_id: str, update: ProgressUpdate) -> None:
        """Persist every status change in ``update`` or none of them."""
        raise NotImplementedError

    def append_message(self, message: Message) -> Message:
        raise NotImplementedError

    def list_messages(
        self,
        forge_id: str,
        *,
        question_id: Optional[str] = None,
    ) -> List[Message]:
        raise NotImplementedError

    def add_extractions(
        self,
        extractions: Sequence[Extraction],
    ) -> List[Extraction]:
        raise NotImplementedError

    def list_extractions(self, forge_id: str) -> List[Extraction]:
        raise NotImplementedError

    def update_extraction(self, extraction: Extraction) -> Extraction:
        raise NotImplementedError

    def delete_extraction(self, forge_id: str, extraction_id: str) -> bool:
        raise NotImplementedError

    def get_extraction(self, forge_id: str, extraction_id: str) -> Extraction:
        for extraction in self.list_extractions(forge_id):
            if extraction.id == extraction_id:
                return extraction
        raise RecordNotFoundError(f"Extraction {extraction_id} not found.")

    def current_round(self, forge_id: str) -> int:
        rounds = [section.round for section in self.list_sections(forge_id)]
        return max([1, *rounds])


def _sort_sections(sections: List[Section]) -> List[Section]:
    return sorted(sections, key=lambda item: (item.round, item.order_index))


class InMemoryInterviewStore(InterviewStore):
    """Process-local store used for development and tests."""

    def __init__(self) -> None:
        self._forges: Dict[str, Forge] = {}
        self._sections: Dict[str, Dict[str, Section]] = {}
        self._questions: Dict[str, Dict[str, Question]] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._extractions: Dict[str, List[Extraction]] = {}

    def _require(self, forge_id: str) -> None:
        if forge_id not in self._forges:
            raise RecordNotFoundError(f"Forge {forge_id} not found.")

    def create_forge(self, forge: Forge) -> Forge:
        self._forges[forge.id] = copy.deepcopy(forge)
        self._sections[forge.id] = {}
        self._questions[forge.id] = {}
        self._messages[forge.id] = []
        self._extractions[forge.id] = []
        return copy.deepcopy(forge)

    def get_forge(self, forge_id: str) -> Forge:
        self._require(forge_id)
        return copy.deepcopy(self._forges[forge_id])

    def update_forge(self, forge: Forge) -> Forge:
        self._require(forge.id)
        forge.updated_at = utcnow()
        self._forges[forge.id] = copy.deepcopy(forge)
        return copy.deepcopy(forge)

    def add_round(
        self,
        forge_id: str,
        sections: Sequence[Section],
        questions: Sequence[Question],
    ) -> None:
        self._require(forge_id)
        for section in sections:
            self._sections[forge_id][section.id] = copy.deepcopy(section)
        for question in questions:
            self._questions[forge_id][question.id] = copy.deepcopy(question)

    def list_sections(self, forge_id: str) -> List[Section]:
        self._require(forge_id)
        return _sort_sections(
            [copy.deepcopy(item) for item in self._sections[forge_id].values()]
        )

    def list_questions(self, forge_id: str) -> List[Question]:
        self._require(forge_id)
        return sorted(
            (copy.deepcopy(item) for item in self._questions[forge_id].values()),
            key=lambda item: item.order_index,
        )

    def apply_progress(self, forge_id: str, update: ProgressUpdate) -> None:
        self._require(forge_id)
        sections = self._sections[forge_id]
        questions = self._questions[forge_id]
        for section in update.sections:
            if section.id not in sections:
                raise RecordNotFoundError(f"Section {section.id} not found.")
        for question in update.questions:
            if question.id not in questions:
                raise RecordNotFoundError(
                    f"Question {question.id} not found."
                )
        for section in update.sections:
            sections[section.id] = copy.deepcopy(section)
        for question in update.questions:
            questions[question.id] = copy.deepcopy(question)

    def append_message(self, message: Message) -> Message:
        self._require(message.forge_id)
        self._messages[message.forge_id].append(copy.deepcopy(message))
        return copy.deepcopy(message)

    def list_messages(
        self,
        forge_id: str,
        *,
        question_id: Optional[str] = None,
    ) -> List[Message]:
        self._require(forge_id)
        return [
            copy.deepcopy(message)
            for message in self._messages[forge_id]
            if question_id is None or message.question_id == question_id
        ]

    def add_extractions(
        self,
        extractions: Sequence[Extraction],
    ) -> List[Extraction]:
        saved: List[Extraction] = []
        for extraction in extractions:
            self._require(extraction.forge_id)
            self._extractions[extraction.forge_id].append(
                copy.deepcopy(extraction)
            )
            saved.append(copy.deepcopy(extraction))
        return saved

    def list_extractions(self, forge_id: str) -> List[Extraction]:
        self._require(forge_id)
        return [copy.deepcopy(item) for item in self._extractions[forge_id]]

    def update_extraction(self, extraction: Extraction) -> Extraction:
        self._require(extraction.forge_id)
        items = self._extractions[extraction.forge_id]
        for index, existing in enumerate(items):
            if existing.id == extraction.id:
                items[index] = copy.deepcopy(extraction)
                return copy.deepcopy(extraction)
        raise RecordNotFoundError(f"Extraction {extraction.id} not found.")

    def delete_extraction(self, forge_id: str, extraction_id: str) -> bool:
        self._require(forge_id)
        items = self._extractions[forge_id]
        remaining = [item for item in items if item.id != extraction_id]
        self._extractions[forge_id] = remaining
        return len(remaining) != len(items)


class RedisInterviewStore(InterviewStore):
    """Stores interview records as JSON blobs in Redis."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        client: Optional[Redis] = None,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("Either redis_url or client is required.")
        self._redis_url = redis_url
        self._redis: Optional[Redis] = client

    def _get_redis(self) -> Redis:
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[call-overload]
                    self._redis_url,
                    decode_responses=True,
                )
            except RedisError as exc:  # pragma: no cover - network guarded
                raise StoreUnavailableError(
                    f"Redis connection failed: {exc}"
                ) from exc
        assert self._redis is not None
        return self._redis

    @contextmanager
    def _guard(self, action: str) -> Iterator[Redis]:
        try:
            yield self._get_redis()
        except RedisError as exc:
            logger.warning("Redis %s failed: %s", action, exc)
            raise StoreUnavailableError(
                f"Interview store unavailable during {action}: {exc}"
            ) from exc

    @staticmethod
    def _dump(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, ensure_ascii=False)

    @staticmethod
    def _load(raw: Any) -> Dict[str, Any]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    @staticmethod
    def _key(forge_id: str, suffix: str = "") -> str:
        return f"forge:{forge_id}{suffix}"

    def create_forge(self, forge: Forge) -> Forge:
        with self._guard("create_forge") as client:
            pipe = client.pipeline(transaction=True)
            pipe.set(self._key(forge.id), self._dump(forge.to_dict()))
            pipe.zadd("forges:index", {forge.id: forge.created_at.timestamp()})
            pipe.execute()
        return forge

    def get_forge(self, forge_id: str) -> Forge:
        with self._guard("get_forge") as client:
            raw = client.get(self._key(forge_id))
        if not raw:
            raise RecordNotFoundError(f"Forge {forge_id} not found.")
        return Forge.from_dict(self._load(raw))

    def update_forge(self, forge: Forge) -> Forge:
        self.get_forge(forge.id)
        forge.updated_at = utcnow()
        with self._guard("update_forge") as client:
            client.set(self._key(forge.id), self._dump(forge.to_dict()))
        return forge

    def add_round(
        self,
        forge_id: str,
        sections: Sequence[Section],
        questions: Sequence[Question],
    ) -> None:
        self.get_forge(forge_id)
        with self._guard("add_round") as client:
            pipe = client.pipeline(transaction=True)
            for section in sections:
                pipe.hset(
                    self._key(forge_id, ":sections"),
                    section.id,
                    self._dump(section.to_dict()),
                )
            for question in questions:
                pipe.hset(
                    self._key(forge_id, ":questions"),
                    question.id,
                    self._dump(question.to_dict()),
                )
            pipe.execute()

    def list_sections(self, forge_id: str) -> List[Section]:
        self.get_forge(forge_id)
        with self._guard("list_sections") as client:
            raw = client.hvals(self._key(forge_id, ":sections"))
        return _sort_sections(
            [Section.from_dict(self._load(item)) for item in raw]
        )

    def list_questions(self, forge_id: str) -> List[Question]:
        self.get_forge(forge_id)
        with self._guard("list_questions") as client:
            raw = client.hvals(self._key(forge_id, ":questions"))
        return sorted(
            (Question.from_dict(self._load(item)) for item in raw),
            key=lambda item: item.order_index,
        )

    def apply_progress(self, forge_id: str, update: ProgressUpdate) -> None:
        if update.is_empty():
            return
        with self._guard("apply_progress") as client:
            pipe = client.pipeline(transaction=True)
            for section in update.sections:
                pipe.hset(
                    self._key(forge_id, ":sections"),
                    section.id,
                    self._dump(section.to_dict()),
                )
            for question in update.questions:
                pipe.hset(
                    self._key(forge_id, ":questions"),
                    question.id,
                    self._dump(question.to_dict()),
                )
            pipe.execute()

    def append_message(self, message: Message) -> Message:
        with self._guard("append_message") as client:
            client.rpush(
                self._key(message.forge_id, ":messages"),
                self._dump(message.to_dict()),
            )
        return message

    def list_messages(
        self,
        forge_id: str,
        *,
        question_id: Optional[str] = None,
    ) -> List[Message]:
        with self._guard("list_messages") as client:
            raw = client.lrange(self._key(forge_id, ":messages"), 0, -1)
        messages = [Message.from_dict(self._load(item)) for item in raw]
        if question_id is None:
            return messages
        return [item for item in messages if item.question_id == question_id]

    def add_extractions(
        self,
        extractions: Sequence[Extraction],
    ) -> List[Extraction]:
        if not extractions:
            return []
        with self._guard("add_extractions") as client:
            pipe = client.pipeline(transaction=True)
            for extraction in extractions:
                pipe.hset(
                    self._key(extraction.forge_id, ":extractions"),
                    extraction.id,
                    self._dump(extraction.to_dict()),
                )
                pipe.rpush(
                    self._key(extraction.forge_id, ":extractions:order"),
                    extraction.id,
                )
            pipe.execute()
        return list(extractions)

    def list_extractions(self, forge_id: str) -> List[Extraction]:
        with self._guard("list_extractions") as client:
            order = client.lrange(
                self._key(forge_id, ":extractions:order"), 0, -1
            )
            records = client.hgetall(self._key(forge_id, ":extractions"))
        return [
            Extraction.from_dict(self._load(records[item_id]))
            for item_id in order
            if item_id in records
        ]

    def update_extraction(self, extraction: Extraction) -> Extraction:
        key = self._key(extraction.forge_id, ":extractions")
        with self._guard("update_extraction") as client:
            if not client.hexists(key, extraction.id):
                raise RecordNotFoundError(
                    f"Extraction {extraction.id} not found."
                )
            client.hset(key, extraction.id, self._dump(extraction.to_dict()))
        return extraction

    def delete_extraction(self, forge_id: str, extraction_id: str) -> bool:
        with self._guard("delete_extraction") as client:
            pipe = client.pipeline(transaction=True)
            pipe.hdel(self._key(forge_id, ":extractions"), extraction_id)
            pipe.lrem(self._key(forge_id, ":extractions:order"), 0, extraction_id)
            removed, _ = pipe.execute()
        return bool(removed)


def create_store(redis_url: Optional[str]) -> InterviewStore:
    """Build the configured store; Redis when a URL is provided."""

    if redis_url:
        return RedisInterviewStore(redis_url)
    logger.info("FORGE_REDIS_URL not set; using the in-memory store.")
    return InMemoryInterviewStore()
