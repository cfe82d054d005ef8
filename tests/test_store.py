from __future__ import annotations

import json
from pathlib import Path

import pytest

from nivek_brain.errors import ConversationNotFoundError
from nivek_brain.models import Message, MessageRole
from nivek_brain.store import InMemoryConversationStore, JsonConversationStore


def _messages(first: str) -> list[Message]:
    return [Message(role=MessageRole.USER, content=first), Message(role=MessageRole.ASSISTANT, content="ok")]


def test_json_store_persists_conversations_newest_first(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "conversations.json"
    store = JsonConversationStore(path)

    older = store.save(_messages("first"))
    newer = store.save(_messages("second"))

    reopened = JsonConversationStore(path)
    recent = reopened.list_recent(10)
    assert [conversation.id for conversation in recent] == [newer.id, older.id]
    assert reopened.get(older.id).messages[0].content == "first"
    assert reopened.get(older.id).messages[1].role == MessageRole.ASSISTANT
    assert json.loads(path.read_text(encoding="utf-8"))[0]["preview"] == "second"


def test_json_store_keeps_only_the_newest_conversations(tmp_path: Path) -> None:
    store = JsonConversationStore(tmp_path / "conversations.json", max_conversations=50)

    for index in range(55):
        store.save(_messages(f"conversation {index}"))

    recent = store.list_recent(100)
    assert len(recent) == 50
    assert recent[0].preview == "conversation 54"
    assert recent[-1].preview == "conversation 5"


def test_preview_is_truncated_to_fifty_characters() -> None:
    store = InMemoryConversationStore()

    conversation = store.save(_messages("x" * 80))

    assert conversation.preview == "x" * 50
    assert conversation.message_count == 2


def test_empty_conversations_are_not_archived(tmp_path: Path) -> None:
    assert InMemoryConversationStore().save([]) is None
    assert JsonConversationStore(tmp_path / "c.json").save([]) is None
    assert not (tmp_path / "c.json").exists()


def test_unknown_conversation_id_raises(tmp_path: Path) -> None:
    with pytest.raises(ConversationNotFoundError):
        InMemoryConversationStore().get("missing")
    with pytest.raises(ConversationNotFoundError):
        JsonConversationStore(tmp_path / "c.json").get("missing")
