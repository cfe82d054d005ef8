"""Archive of past conversations the session state machine writes into."""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from nivek_brain.errors import ConversationNotFoundError
from nivek_brain.models import Conversation, Message, MessageRole

PREVIEW_CHARS = 50


def build_conversation(messages: list[Message], *, conversation_id: str | None = None) -> Conversation:
    preview = messages[0].content[:PREVIEW_CHARS] if messages and messages[0].content else "New conversation"
    return Conversation(
        id=conversation_id or uuid4().hex,
        created_at=datetime.now(timezone.utc),
        preview=preview,
        message_count=len(messages),
        messages=list(messages),
    )


class ConversationStore(Protocol):
    """Persistence contract for archived conversations."""

    def save(self, messages: list[Message]) -> Conversation | None:
        """Archive a message log; empty logs are not stored."""

    def get(self, conversation_id: str) -> Conversation:
        """Return one conversation or raise ``ConversationNotFoundError``."""

    def list_recent(self, limit: int) -> list[Conversation]:
        """Return up to ``limit`` newest conversations."""


class InMemoryConversationStore:
    """Bounded in-memory archive, newest first."""

    def __init__(self, max_conversations: int = 50) -> None:
        self._conversations: deque[Conversation] = deque(maxlen=max_conversations)

    def save(self, messages: list[Message]) -> Conversation | None:
        if not messages:
            return None
        conversation = build_conversation(messages)
        self._conversations.appendleft(conversation)
        return conversation

    def get(self, conversation_id: str) -> Conversation:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        raise ConversationNotFoundError(f"Unknown conversation id: {conversation_id}")

    def list_recent(self, limit: int) -> list[Conversation]:
        return list(self._conversations)[:limit]


class JsonConversationStore:
    """JSON-file archive keeping only the newest ``max_conversations``."""

    def __init__(self, file_path: str | Path, max_conversations: int = 50) -> None:
        self._path = Path(file_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._max_conversations = max_conversations

    def save(self, messages: list[Message]) -> Conversation | None:
        if not messages:
            return None
        conversation = build_conversation(messages)
        conversations = [conversation, *self._read()][: self._max_conversations]
        self._write(conversations)
        return conversation

    def get(self, conversation_id: str) -> Conversation:
        for conversation in self._read():
            if conversation.id == conversation_id:
                return conversation
        raise ConversationNotFoundError(f"Unknown conversation id: {conversation_id}")

    def list_recent(self, limit: int) -> list[Conversation]:
        return self._read()[:limit]

    def _read(self) -> list[Conversation]:
        if not self._path.exists():
            return []

        with self._path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return [_conversation_from_dict(item) for item in payload]

    def _write(self, conversations: list[Conversation]) -> None:
        payload = [_conversation_to_dict(conversation) for conversation in conversations]
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(self._path)


def _conversation_to_dict(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "created_at": conversation.created_at.isoformat(),
        "preview": conversation.preview,
        "message_count": conversation.message_count,
        "messages": [
            {"role": message.role.value, "content": message.content, "timestamp": message.timestamp.isoformat()}
            for message in conversation.messages
        ],
    }


def _conversation_from_dict(payload: dict) -> Conversation:
    return Conversation(
        id=payload["id"],
        created_at=datetime.fromisoformat(payload["created_at"]),
        preview=payload.get("preview", ""),
        message_count=payload.get("message_count", len(payload.get("messages", []))),
        messages=[
            Message(
                role=MessageRole(item["role"]),
                content=item["content"],
                timestamp=datetime.fromisoformat(item["timestamp"]),
            )
            for item in payload.get("messages", [])
        ],
    )
