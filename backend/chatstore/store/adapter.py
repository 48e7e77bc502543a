"""Translate stored rows into application records.

The UI layer talks to ``RedisAdapter`` only: timestamps come back as
``datetime`` and numeric content as text.
"""

from datetime import datetime
from typing import Any

from chatstore.models.conversation import ChatMessage, Conversation
from chatstore.store.conversation import ConversationStore
from chatstore.store.message import MessageStore
from chatstore.store.types import (
    BatchResult,
    ConversationCreate,
    ConversationRecord,
    ConversationStats,
    ConversationUpdate,
    MessageCreate,
    MessageRecord,
    MessageStats,
    MessageUpdate,
    Role,
)


def _normalize_content(content: Any) -> Any:
    if isinstance(content, (int, float)) and not isinstance(content, bool):
        return str(content)
    return content


def to_chat_message(record: MessageRecord) -> ChatMessage:
    return ChatMessage(
        id=record.id,
        conversation_id=record.conversation_id,
        role=record.role,
        content=_normalize_content(record.content),
        created_at=datetime.fromisoformat(record.created_at),
        updated_at=datetime.fromisoformat(record.updated_at),
    )


def to_conversation(record: ConversationRecord, messages: list[ChatMessage] | None = None) -> Conversation:
    return Conversation(
        id=record.id,
        title=record.title,
        created_at=datetime.fromisoformat(record.created_at),
        updated_at=datetime.fromisoformat(record.updated_at),
        messages=messages,
    )


class MessageOperations:
    def __init__(self, store: MessageStore):
        self._store = store

    async def create(self, content: Any, role: Role, conversation_id: str) -> ChatMessage:
        record = await self._store.create(MessageCreate(content=content, role=role, conversation_id=conversation_id))
        return to_chat_message(record)

    async def find_by_id(self, message_id: str) -> ChatMessage | None:
        record = await self._store.find_by_id(message_id)
        return to_chat_message(record) if record else None

    async def find_by_conversation_id(self, conversation_id: str) -> list[ChatMessage]:
        return [to_chat_message(r) for r in await self._store.find_by_conversation_id(conversation_id)]

    async def update(self, message_id: str, content: Any = None) -> ChatMessage | None:
        record = await self._store.update(message_id, MessageUpdate(content=content))
        return to_chat_message(record) if record else None

    async def delete(self, message_id: str) -> bool:
        return await self._store.delete(message_id)

    async def delete_many(self, message_ids: list[str]) -> BatchResult:
        return await self._store.delete_many(message_ids)

    async def get_stats(self, conversation_id: str | None = None) -> MessageStats:
        return await self._store.get_stats(conversation_id)


class ConversationOperations:
    def __init__(self, store: ConversationStore, messages: MessageOperations):
        self._store = store
        self._messages = messages

    async def create(self, title: str) -> Conversation:
        return to_conversation(await self._store.create(ConversationCreate(title=title)))

    async def find_by_id(self, conversation_id: str) -> Conversation | None:
        record = await self._store.find_by_id(conversation_id)
        return to_conversation(record) if record else None

    async def find_by_id_with_messages(self, conversation_id: str) -> Conversation | None:
        """A single conversation with its messages loaded."""
        record = await self._store.find_by_id(conversation_id)
        if record is None:
            return None
        return to_conversation(record, await self._messages.find_by_conversation_id(conversation_id))

    async def find_many(self) -> list[Conversation]:
        return [to_conversation(r) for r in await self._store.find_many()]

    async def find_many_with_messages(self) -> list[Conversation]:
        return [to_conversation(r) for r in await self._store.find_many_with_messages()]

    async def update(self, conversation_id: str, title: str | None = None) -> Conversation | None:
        record = await self._store.update(conversation_id, ConversationUpdate(title=title))
        return to_conversation(record) if record else None

    async def delete(self, conversation_id: str) -> bool:
        return await self._store.delete(conversation_id)

    async def delete_many(self, conversation_ids: list[str]) -> BatchResult:
        return await self._store.delete_many(conversation_ids)

    async def get_stats(self) -> ConversationStats:
        return await self._store.get_stats()


class RedisAdapter:
    """Entry point for the application: ``adapter.message.*`` and ``adapter.conversation.*``."""

    def __init__(self, messages: MessageStore, conversations: ConversationStore):
        self.message = MessageOperations(messages)
        self.conversation = ConversationOperations(conversations, self.message)
