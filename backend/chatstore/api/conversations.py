"""REST API for conversation history management."""

import logging
from dataclasses import asdict
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatstore.core.database import get_adapter
from chatstore.core.errors import ConversationNotFoundError
from chatstore.models.conversation import ChatMessage, Conversation
from chatstore.store.adapter import RedisAdapter

router = APIRouter()
logger = logging.getLogger(__name__)


class ConversationIn(BaseModel):
    title: str = "New Conversation"


class ConversationPatch(BaseModel):
    title: str | None = None


class MessageIn(BaseModel):
    role: Literal["user", "assistant", "tool"]
    content: Any


class MessagePatch(BaseModel):
    content: Any = None


class BatchDelete(BaseModel):
    ids: list[str]


@router.get("/")
async def list_conversations(adapter: RedisAdapter = Depends(get_adapter)) -> list[Conversation]:
    return await adapter.conversation.find_many_with_messages()


@router.post("/", status_code=201)
async def create_conversation(body: ConversationIn, adapter: RedisAdapter = Depends(get_adapter)) -> Conversation:
    return await adapter.conversation.create(body.title)


@router.get("/stats")
async def conversation_stats(adapter: RedisAdapter = Depends(get_adapter)):
    return asdict(await adapter.conversation.get_stats())


@router.post("/delete")
async def delete_conversations(body: BatchDelete, adapter: RedisAdapter = Depends(get_adapter)):
    batch = await adapter.conversation.delete_many(body.ids)
    return {"deleted": batch.succeeded, "results": [asdict(r) for r in batch.results]}


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, adapter: RedisAdapter = Depends(get_adapter)) -> Conversation:
    conv = await adapter.conversation.find_by_id_with_messages(conversation_id)
    if not conv:
        logger.debug(f"Conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.patch("/{conversation_id}")
async def rename_conversation(
    conversation_id: str, body: ConversationPatch, adapter: RedisAdapter = Depends(get_adapter)
) -> Conversation:
    conv = await adapter.conversation.update(conversation_id, title=body.title)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, adapter: RedisAdapter = Depends(get_adapter)):
    if not await adapter.conversation.delete(conversation_id):
        logger.debug(f"Delete: conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.debug(f"Deleted conversation {conversation_id}")
    return {"status": "deleted"}


@router.post("/{conversation_id}/messages", status_code=201)
async def add_message(
    conversation_id: str, body: MessageIn, adapter: RedisAdapter = Depends(get_adapter)
) -> ChatMessage:
    try:
        return await adapter.message.create(body.content, body.role, conversation_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.get("/{conversation_id}/messages/stats")
async def message_stats(conversation_id: str, adapter: RedisAdapter = Depends(get_adapter)):
    return asdict(await adapter.message.get_stats(conversation_id))


@router.patch("/messages/{message_id}")
async def edit_message(message_id: str, body: MessagePatch, adapter: RedisAdapter = Depends(get_adapter)) -> ChatMessage:
    msg = await adapter.message.update(message_id, content=body.content)
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    return msg


@router.delete("/messages/{message_id}")
async def delete_message(message_id: str, adapter: RedisAdapter = Depends(get_adapter)):
    if not await adapter.message.delete(message_id):
        raise HTTPException(status_code=404, detail="Message not found")
    return {"status": "deleted"}
