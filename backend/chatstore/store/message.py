"""Message persistence.

Layout:
- ``message:{id}`` hash holds one message
- ``conversation_messages:{conversation_id}`` sorted set lists the message ids
  of a conversation, scored by the global ``message_counter`` so order follows
  creation even when two messages share a timestamp
"""

import copy
import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from redis.exceptions import RedisError, WatchError

from chatstore.core.connection import RedisPool
from chatstore.core.errors import ConversationNotFoundError, SerializationError, StoreConnectionError
from chatstore.store import keys
from chatstore.store.cache import MemoryCache
from chatstore.store.compression import COMPRESSION_THRESHOLD, compress, decompress
from chatstore.store.content import decode_content, encode_content_lenient
from chatstore.store.types import (
    ROLES,
    BatchResult,
    ItemResult,
    MessageCreate,
    MessageRecord,
    MessageStats,
    MessageUpdate,
    activity_score,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("id", "role", "content", "conversation_id", "created_at", "updated_at")


class MessageStore:
    def __init__(
        self,
        pool: RedisPool,
        cache: MemoryCache,
        *,
        compress: bool = False,
        compression_threshold: int = COMPRESSION_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._pool = pool
        self._cache = cache
        self._compress = compress
        self._compression_threshold = compression_threshold
        self._clock = clock

    # --- encoding ---

    def _content_fields(self, content) -> tuple[dict[str, str], object]:
        """Hash fields for ``content`` plus the value a reader will decode from them."""
        content_type, payload = encode_content_lenient(content)
        fields = {"content_type": content_type, "content": payload}
        if self._compress:
            fields["content"] = compress(payload, self._compression_threshold)
            fields["compressed"] = "1"
        return fields, decode_content(content_type, payload)

    def _decode(self, row: dict[str, str]) -> MessageRecord:
        missing = [name for name in _REQUIRED_FIELDS if name not in row]
        if missing:
            raise SerializationError(f"Message row is missing fields: {', '.join(missing)}")
        if row["role"] not in ROLES:
            raise SerializationError(f"Unknown message role {row['role']!r}")
        parse_timestamp(row["created_at"])
        parse_timestamp(row["updated_at"])

        payload = row["content"]
        if row.get("compressed") == "1":
            try:
                payload = decompress(payload)
            except SerializationError as e:
                logger.warning(f"Message {row['id']}: {e}; returning stored payload")

        return MessageRecord(
            id=row["id"],
            role=row["role"],  # type: ignore[arg-type]
            content=decode_content(row.get("content_type"), payload),
            conversation_id=row["conversation_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _remember(self, message: MessageRecord) -> None:
        # Decoded JSON content is mutable; keep a private copy
        self._cache.set(keys.cache_message(message.id), copy.deepcopy(message))

    # --- writes ---

    async def create(self, data: MessageCreate) -> MessageRecord:
        """Store a message and append it to its conversation."""
        if data.role not in ROLES:
            raise ValueError(f"Unknown message role: {data.role}")

        message_id = str(uuid4())
        now = self._clock()
        stamp = now.isoformat()
        content_fields, content = self._content_fields(data.content)
        fields = {
            "id": message_id,
            "role": data.role,
            "conversation_id": data.conversation_id,
            "created_at": stamp,
            "updated_at": stamp,
            **content_fields,
        }

        async with self._pool.session() as redis:
            if not await redis.exists(keys.conversation(data.conversation_id)):
                raise ConversationNotFoundError(f"Conversation {data.conversation_id} not found")

            sequence = await redis.incr(keys.MESSAGE_COUNTER)
            async with redis.pipeline(transaction=True) as pipe:
                pipe.hset(keys.message(message_id), mapping=fields)
                pipe.zadd(keys.conversation_messages(data.conversation_id), {message_id: sequence})
                pipe.hset(keys.conversation(data.conversation_id), "updated_at", stamp)
                pipe.zadd(keys.CONVERSATION_LIST, {data.conversation_id: activity_score(now)})
                await pipe.execute()

        self._cache.delete(keys.cache_conversation(data.conversation_id))

        message = MessageRecord(
            id=message_id,
            role=data.role,
            content=content,
            conversation_id=data.conversation_id,
            created_at=stamp,
            updated_at=stamp,
        )
        self._remember(message)
        logger.debug(f"Created message {message_id} (#{sequence}) in conversation {data.conversation_id}")
        return message

    async def update(self, message_id: str, data: MessageUpdate) -> MessageRecord | None:
        """Apply ``data`` and return the record as re-read from Redis, or None if absent."""
        key = keys.message(message_id)
        content_fields = self._content_fields(data.content)[0] if data.content is not None else {}
        async with self._pool.session() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        # EXEC aborts if the hash changes after the existence check
                        await pipe.watch(key)
                        if not await pipe.exists(key):
                            logger.warning(f"Update: message {message_id} not found")
                            self._cache.delete(keys.cache_message(message_id))
                            return None

                        fields = {"updated_at": self._clock().isoformat(), **content_fields}
                        pipe.multi()
                        if content_fields and not self._compress:
                            pipe.hdel(key, "compressed")
                        pipe.hset(key, mapping=fields)
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug(f"Update: message {message_id} changed concurrently, retrying")

        self._cache.delete(keys.cache_message(message_id))
        return await self._reload(message_id)

    async def delete(self, message_id: str) -> bool:
        async with self._pool.session() as redis:
            if not await redis.exists(keys.message(message_id)):
                logger.warning(f"Delete: message {message_id} not found")
                self._cache.delete(keys.cache_message(message_id))
                return False

            conversation_id = await redis.hget(keys.message(message_id), "conversation_id")
            async with redis.pipeline(transaction=True) as pipe:
                pipe.delete(keys.message(message_id))
                if conversation_id:
                    pipe.zrem(keys.conversation_messages(conversation_id), message_id)
                await pipe.execute()

        self._cache.delete(keys.cache_message(message_id))
        return True

    async def delete_many(self, message_ids: list[str]) -> BatchResult:
        """Delete each id independently; one failure does not stop the rest."""
        batch = BatchResult()
        for message_id in message_ids:
            try:
                deleted = await self.delete(message_id)
            except (StoreConnectionError, RedisError) as e:
                logger.warning(f"Batch delete: message {message_id} failed: {e}")
                batch.results.append(ItemResult(message_id, False, str(e)))
                continue
            batch.results.append(ItemResult(message_id, deleted, None if deleted else "not found"))

        if message_ids:
            logger.info(f"Batch delete removed {batch.succeeded}/{len(message_ids)} messages")
        return batch

    # --- reads ---

    async def _reload(self, message_id: str) -> MessageRecord | None:
        """Read straight from Redis and replace whatever the cache holds."""
        async with self._pool.session() as redis:
            row = await redis.hgetall(keys.message(message_id))
        if not row:
            return None
        try:
            message = self._decode(row)
        except SerializationError as e:
            logger.warning(f"Message {message_id} is corrupt: {e}")
            return None
        self._remember(message)
        return message

    async def find_by_id(self, message_id: str) -> MessageRecord | None:
        cached = self._cache.get(keys.cache_message(message_id))
        if cached is not None:
            return copy.deepcopy(cached)
        return await self._reload(message_id)

    async def find_by_conversation_id(self, conversation_id: str) -> list[MessageRecord]:
        """All messages of a conversation in creation order.

        Hashes are fetched in one pipelined round trip; entries that are missing
        or cannot be decoded are logged and skipped.
        """
        async with self._pool.session() as redis:
            message_ids = await redis.zrange(keys.conversation_messages(conversation_id), 0, -1)
            if not message_ids:
                return []
            async with redis.pipeline(transaction=False) as pipe:
                for message_id in message_ids:
                    pipe.hgetall(keys.message(message_id))
                rows = await pipe.execute(raise_on_error=False)

        messages = []
        for message_id, row in zip(message_ids, rows):
            if isinstance(row, Exception):
                logger.warning(f"Failed to load message {message_id}: {row}")
                continue
            if not row:
                logger.warning(f"Message {message_id} is indexed in {conversation_id} but missing")
                continue
            try:
                message = self._decode(row)
            except SerializationError as e:
                logger.warning(f"Skipping corrupt message {message_id}: {e}")
                continue
            messages.append(message)
            self._remember(message)
        return messages

    async def get_stats(self, conversation_id: str | None = None) -> MessageStats:
        """Count messages by role for one conversation.

        Without a conversation id this returns empty stats: counting every
        message means scanning the whole keyspace.
        """
        if conversation_id is None:
            logger.debug("Unscoped message stats are not computed")
            return MessageStats()

        stats = MessageStats()
        for message in await self.find_by_conversation_id(conversation_id):
            stats.total += 1
            stats.by_role[message.role] = stats.by_role.get(message.role, 0) + 1
        return stats
