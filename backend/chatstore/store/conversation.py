"""Conversation persistence.

Each conversation is a ``conversation:{id}`` hash. The ``conversations`` sorted
set ranks every conversation by its last activity (creation, title change or a
new message), in epoch microseconds, and backs the listing.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from redis.exceptions import RedisError, WatchError

from chatstore.core.connection import RedisPool
from chatstore.core.errors import SerializationError, StoreConnectionError
from chatstore.store import keys
from chatstore.store.cache import MemoryCache
from chatstore.store.types import (
    BatchResult,
    ConversationCreate,
    ConversationRecord,
    ConversationStats,
    ConversationUpdate,
    ItemResult,
    activity_score,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(hours=24)


def _decode(row: dict[str, str]) -> ConversationRecord | None:
    try:
        conversation = ConversationRecord(
            id=row["id"],
            title=row.get("title", ""),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        parse_timestamp(conversation.created_at)
        parse_timestamp(conversation.updated_at)
    except KeyError as e:
        logger.warning(f"Conversation row is missing field {e}")
        return None
    except SerializationError as e:
        logger.warning(f"Conversation {row.get('id')} is corrupt: {e}")
        return None
    return conversation


class ConversationStore:
    def __init__(
        self,
        pool: RedisPool,
        cache: MemoryCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._pool = pool
        self._cache = cache
        self._clock = clock

    async def create(self, data: ConversationCreate) -> ConversationRecord:
        conversation_id = str(uuid4())
        now = self._clock()
        conversation = ConversationRecord(
            id=conversation_id,
            title=data.title,
            created_at=now.isoformat(),
            updated_at=now.isoformat(),
        )

        async with self._pool.session() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.hset(
                    keys.conversation(conversation_id),
                    mapping={
                        "id": conversation.id,
                        "title": conversation.title,
                        "created_at": conversation.created_at,
                        "updated_at": conversation.updated_at,
                    },
                )
                pipe.zadd(keys.CONVERSATION_LIST, {conversation_id: activity_score(now)})
                await pipe.execute()

        self._cache.set(keys.cache_conversation(conversation_id), conversation)
        logger.debug(f"Created conversation {conversation_id}")
        return conversation

    async def _reload(self, conversation_id: str) -> ConversationRecord | None:
        async with self._pool.session() as redis:
            row = await redis.hgetall(keys.conversation(conversation_id))
        if not row:
            return None
        conversation = _decode(row)
        if conversation is not None:
            self._cache.set(keys.cache_conversation(conversation_id), conversation)
        return conversation

    async def find_by_id(self, conversation_id: str) -> ConversationRecord | None:
        cached = self._cache.get(keys.cache_conversation(conversation_id))
        if cached is not None:
            return cached
        return await self._reload(conversation_id)

    async def find_many(self) -> list[ConversationRecord]:
        """Every conversation, most recently active first."""
        async with self._pool.session() as redis:
            conversation_ids = await redis.zrevrange(keys.CONVERSATION_LIST, 0, -1)
            if not conversation_ids:
                return []
            async with redis.pipeline(transaction=False) as pipe:
                for conversation_id in conversation_ids:
                    pipe.hgetall(keys.conversation(conversation_id))
                rows = await pipe.execute(raise_on_error=False)

        conversations = []
        for conversation_id, row in zip(conversation_ids, rows):
            if isinstance(row, Exception):
                logger.warning(f"Failed to load conversation {conversation_id}: {row}")
                continue
            if not row:
                logger.warning(f"Conversation {conversation_id} is ranked but missing")
                continue
            conversation = _decode(row)
            if conversation is None:
                continue
            conversations.append(conversation)
            self._cache.set(keys.cache_conversation(conversation_id), conversation)
        return conversations

    async def find_many_with_messages(self) -> list[ConversationRecord]:
        # Messages are loaded per conversation on demand to keep listings small.
        return await self.find_many()

    async def update(self, conversation_id: str, data: ConversationUpdate) -> ConversationRecord | None:
        key = keys.conversation(conversation_id)
        async with self._pool.session() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        # EXEC aborts if the hash changes after the existence check
                        await pipe.watch(key)
                        if not await pipe.exists(key):
                            logger.warning(f"Update: conversation {conversation_id} not found")
                            self._cache.delete(keys.cache_conversation(conversation_id))
                            return None

                        now = self._clock()
                        fields = {"updated_at": now.isoformat()}
                        if data.title is not None:
                            fields["title"] = data.title
                        pipe.multi()
                        pipe.hset(key, mapping=fields)
                        pipe.zadd(keys.CONVERSATION_LIST, {conversation_id: activity_score(now)})
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug(f"Update: conversation {conversation_id} changed concurrently, retrying")

        self._cache.delete(keys.cache_conversation(conversation_id))
        return await self._reload(conversation_id)

    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation together with all of its messages."""
        async with self._pool.session() as redis:
            if not await redis.exists(keys.conversation(conversation_id)):
                logger.warning(f"Delete: conversation {conversation_id} not found")
                self._cache.delete(keys.cache_conversation(conversation_id))
                return False

            message_ids = await redis.zrange(keys.conversation_messages(conversation_id), 0, -1)
            async with redis.pipeline(transaction=True) as pipe:
                for message_id in message_ids:
                    pipe.delete(keys.message(message_id))
                pipe.delete(keys.conversation_messages(conversation_id))
                pipe.delete(keys.conversation(conversation_id))
                pipe.zrem(keys.CONVERSATION_LIST, conversation_id)
                await pipe.execute()

        for message_id in message_ids:
            self._cache.delete(keys.cache_message(message_id))
        self._cache.delete(keys.cache_conversation(conversation_id))
        logger.debug(f"Deleted conversation {conversation_id} and {len(message_ids)} messages")
        return True

    async def delete_many(self, conversation_ids: list[str]) -> BatchResult:
        batch = BatchResult()
        for conversation_id in conversation_ids:
            try:
                deleted = await self.delete(conversation_id)
            except (StoreConnectionError, RedisError) as e:
                logger.warning(f"Batch delete: conversation {conversation_id} failed: {e}")
                batch.results.append(ItemResult(conversation_id, False, str(e)))
                continue
            batch.results.append(ItemResult(conversation_id, deleted, None if deleted else "not found"))

        if conversation_ids:
            logger.info(f"Batch delete removed {batch.succeeded}/{len(conversation_ids)} conversations")
        return batch

    async def get_stats(self) -> ConversationStats:
        since = activity_score(self._clock() - RECENT_WINDOW)
        async with self._pool.session() as redis:
            total = await redis.zcard(keys.CONVERSATION_LIST)
            recent = await redis.zcount(keys.CONVERSATION_LIST, since, "+inf")
        return ConversationStats(total=total, recent_count=recent)

    async def rebuild_ranking(self) -> int:
        """Re-score the ranking index from each conversation's ``updated_at``.

        Conversations missing from the index are added back and index entries
        without a conversation hash are dropped. Running it twice is a no-op.
        Returns the number of conversations ranked.
        """
        async with self._pool.session() as redis:
            conversation_keys = [
                key async for key in redis.scan_iter(match=f"{keys.CONVERSATION_PREFIX}*")
            ]
            ranked = set(await redis.zrange(keys.CONVERSATION_LIST, 0, -1))

            scores: dict[str, int] = {}
            if conversation_keys:
                async with redis.pipeline(transaction=False) as pipe:
                    for key in conversation_keys:
                        pipe.hget(key, "updated_at")
                    stamps = await pipe.execute()
                for key, stamp in zip(conversation_keys, stamps):
                    conversation_id = key[len(keys.CONVERSATION_PREFIX):]
                    try:
                        scores[conversation_id] = activity_score(parse_timestamp(stamp))
                    except SerializationError:
                        logger.warning(f"Conversation {conversation_id} has unusable updated_at {stamp!r}")

            stale = ranked - {key[len(keys.CONVERSATION_PREFIX):] for key in conversation_keys}
            async with redis.pipeline(transaction=True) as pipe:
                if scores:
                    pipe.zadd(keys.CONVERSATION_LIST, scores)
                if stale:
                    pipe.zrem(keys.CONVERSATION_LIST, *stale)
                await pipe.execute()

        logger.info(f"Rebuilt conversation ranking: {len(scores)} ranked, {len(stale)} stale entries removed")
        return len(scores)
