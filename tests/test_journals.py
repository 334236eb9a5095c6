import json

import pytest

from summary_hub.services.errors import NotFoundError, StorageError


def test_chat_messages_get_ids_and_timestamps(chat) -> None:
    first = chat.post("alice", "hello")
    second = chat.post("bob", "hi alice")

    assert (first["id"], second["id"]) == (1, 2)
    assert first["author"] == "alice"
    assert len(first["date"]) == len("14/10/2025 09:30:00")
    assert [entry["message"] for entry in chat.list()] == ["hello", "hi alice"]


def test_delete_removes_one_entry(chat) -> None:
    chat.post("alice", "one")
    chat.post("alice", "two")

    removed = chat.delete(1)

    assert removed["message"] == "one"
    assert [entry["id"] for entry in chat.list()] == [2]
    with pytest.raises(NotFoundError):
        chat.delete(1)


def test_ids_are_not_reused_after_delete(chat) -> None:
    chat.post("alice", "one")
    chat.post("alice", "two")
    chat.delete(1)

    assert chat.post("alice", "three")["id"] == 3


def test_legacy_entries_without_ids_are_numbered(temp_config, chat) -> None:
    temp_config.chat_file.write_text(
        json.dumps(
            [
                {"date": "01/01/2024 10:00:00", "nom": "old", "message": "first"},
                {"id": 5, "date": "02/01/2024 10:00:00", "author": "new", "message": "second"},
            ]
        ),
        encoding="utf-8",
    )

    entries = chat.list()

    assert [entry["id"] for entry in entries] == [6, 5]
    assert chat.post("x", "y")["id"] == 7


def test_moderation_log_record_and_clear(moderation_log) -> None:
    moderation_log.record("[1] [None - document - T - C - A] DELETED")
    moderation_log.record("another")

    assert [entry["action"] for entry in moderation_log.list()][0].endswith("DELETED")
    assert moderation_log.clear() == 2
    assert moderation_log.list() == []


def test_corrupt_journal_raises_storage_error(temp_config, moderation_log) -> None:
    temp_config.logs_file.write_text("[{", encoding="utf-8")

    with pytest.raises(StorageError):
        moderation_log.list()
