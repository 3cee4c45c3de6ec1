from datetime import UTC, datetime

import psycopg
import pytest

from socratic_gateway.storage import postgres
from socratic_gateway.storage.base import StorageError
from socratic_gateway.storage.memory import MemoryStore
from socratic_gateway.storage.postgres import PostgresStore


def test_memory_store_round_trip() -> None:
    store = MemoryStore()
    record = store.create_conversation("alice", "Ethics")
    before = record.updated_at

    message = store.save_message(record.id, "user", [{"type": "text", "text": "hi"}])

    assert store.list_messages(record.id) == [message]
    assert store.count_messages(record.id, "user") == 1
    assert store.count_messages(record.id, "assistant") == 0
    assert store.get_conversation(record.id, "alice").updated_at >= before
    assert store.get_conversation(record.id, "bob") is None

    store.update_title(record.id, "Renamed")
    assert store.list_conversations("alice", 10)[0].title == "Renamed"


def test_memory_store_delete_requires_owner() -> None:
    store = MemoryStore()
    record = store.create_conversation("alice", "Ethics")
    assert not store.delete_conversation(record.id, "bob")
    assert store.delete_conversation(record.id, "alice")
    assert not store.delete_conversation(record.id, "alice")


def test_memory_store_records_insights() -> None:
    store = MemoryStore()
    store.save_insight("Knowing that I know nothing", "epistemology")
    assert store.insights == [{"insight": "Knowing that I know nothing", "topic": "epistemology"}]


def test_postgres_errors_become_storage_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args: object, **kwargs: object) -> None:
        raise psycopg.OperationalError("connection refused for user secret")

    monkeypatch.setattr(postgres.psycopg, "connect", refuse)
    store = PostgresStore("postgresql://localhost/socratic")

    with pytest.raises(StorageError) as excinfo:
        store.list_conversations("alice", 10)
    assert "secret" not in str(excinfo.value)

    with pytest.raises(StorageError):
        store.save_insight("x", None)
    with pytest.raises(StorageError):
        store.save_message("00000000-0000-0000-0000-000000000000", "user", [])


def test_postgres_message_rows_decode_json_text() -> None:
    now = datetime.now(tz=UTC)
    message = PostgresStore._message(
        {
            "id": "m1",
            "conversation_id": "c1",
            "role": "user",
            "content": '[{"type": "text", "text": "hi"}]',
            "created_at": now,
        }
    )
    assert message.content == [{"type": "text", "text": "hi"}]

    odd = PostgresStore._message(
        {"id": "m2", "conversation_id": "c1", "role": "user", "content": {"not": "a list"}}
    )
    assert odd.content == []
    assert odd.created_at is None
