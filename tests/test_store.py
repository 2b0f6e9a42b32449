from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import SOURDOUGH_PLAN, seed_round
from forge_interview.models import (
    Extraction,
    ExtractionType,
    Forge,
    Message,
    MessageRole,
    ProgressUpdate,
    QuestionStatus,
)
from forge_interview.store import (
    InMemoryInterviewStore,
    RecordNotFoundError,
    RedisInterviewStore,
    StoreUnavailableError,
    create_store,
)


def test_records_are_isolated_copies(store, forge):
    fetched = store.get_forge(forge.id)
    fetched.domain = "Pastry"
    assert store.get_forge(forge.id).domain == "Sourdough Baking"


def test_unknown_forge_raises(store):
    with pytest.raises(RecordNotFoundError):
        store.get_forge("missing")
    with pytest.raises(RecordNotFoundError):
        store.list_sections("missing")


def test_sections_sorted_by_round_then_order(store, forge):
    seed_round(store, forge, [("Later", ["q"])], round=2)
    seed_round(store, forge, SOURDOUGH_PLAN, round=1)
    titles = [section.title for section in store.list_sections(forge.id)]
    assert titles == ["Starter Care", "Shaping", "Later"]
    assert store.current_round(forge.id) == 2


def test_current_round_defaults_to_one(store, forge):
    assert store.current_round(forge.id) == 1


def test_apply_progress_is_all_or_nothing(store, sourdough):
    forge, _, questions = sourdough
    answered = store.list_questions(forge.id)[0]
    answered.status = QuestionStatus.ANSWERED
    ghost = store.list_questions(forge.id)[1]
    ghost.id = "not-stored"
    with pytest.raises(RecordNotFoundError):
        store.apply_progress(forge.id, ProgressUpdate(questions=[answered, ghost]))
    stored = {q.id: q for q in store.list_questions(forge.id)}
    assert stored[questions[0].id].status == QuestionStatus.ACTIVE


def test_messages_filter_by_question(store, sourdough):
    forge, _, questions = sourdough
    store.append_message(Message(forge_id=forge.id, role=MessageRole.USER, content="a", question_id=questions[0].id))
    store.append_message(Message(forge_id=forge.id, role=MessageRole.USER, content="b", question_id=questions[1].id))
    assert [m.content for m in store.list_messages(forge.id)] == ["a", "b"]
    assert [m.content for m in store.list_messages(forge.id, question_id=questions[1].id)] == ["b"]


def test_extraction_lifecycle(store, forge):
    saved = store.add_extractions(
        [Extraction(forge_id=forge.id, type=ExtractionType.WARNING, content="Hot oven", confidence=0.7)]
    )[0]
    saved.content = "Very hot oven"
    store.update_extraction(saved)
    assert store.get_extraction(forge.id, saved.id).content == "Very hot oven"
    assert store.delete_extraction(forge.id, saved.id) is True
    assert store.delete_extraction(forge.id, saved.id) is False
    with pytest.raises(RecordNotFoundError):
        store.get_extraction(forge.id, saved.id)


def test_create_store_without_url_is_in_memory():
    assert isinstance(create_store(None), InMemoryInterviewStore)


def test_redis_store_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisInterviewStore()


def test_redis_round_trip_through_mock_client():
    client = MagicMock()
    store = RedisInterviewStore(client=client)
    forge = Forge(expert_name="Maria", domain="Sourdough Baking")
    store.create_forge(forge)
    client.pipeline.assert_called_once_with(transaction=True)
    written = client.pipeline.return_value.set.call_args[0][1]

    client.get.return_value = written
    loaded = store.get_forge(forge.id)
    assert loaded.id == forge.id
    assert loaded.expert_name == "Maria"


def test_redis_missing_forge_is_not_found():
    client = MagicMock()
    client.get.return_value = None
    with pytest.raises(RecordNotFoundError):
        RedisInterviewStore(client=client).get_forge("missing")


def test_redis_errors_become_store_unavailable():
    client = MagicMock()
    client.get.side_effect = RedisConnectionError("connection refused")
    with pytest.raises(StoreUnavailableError):
        RedisInterviewStore(client=client).get_forge("any")


def test_redis_progress_update_is_one_transaction(sourdough):
    forge, sections, questions = sourdough
    client = MagicMock()
    store = RedisInterviewStore(client=client)
    store.apply_progress(forge.id, ProgressUpdate(sections=[sections[0]], questions=questions[:2]))
    pipe = client.pipeline.return_value
    client.pipeline.assert_called_once_with(transaction=True)
    assert pipe.hset.call_count == 3
    pipe.execute.assert_called_once()


def test_redis_empty_progress_update_is_skipped():
    client = MagicMock()
    RedisInterviewStore(client=client).apply_progress("forge", ProgressUpdate())
    client.pipeline.assert_not_called()
