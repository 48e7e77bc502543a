"""Redis key layout. Every entity class gets its own prefix so keys never collide."""

CONVERSATION_PREFIX = "conversation:"
MESSAGE_PREFIX = "message:"
CONVERSATION_MESSAGES_PREFIX = "conversation_messages:"

# Sorted set of conversation ids scored by last activity (epoch microseconds)
CONVERSATION_LIST = "conversations"
# INCR counter that orders messages independently of the wall clock
MESSAGE_COUNTER = "message_counter"

CACHE_MESSAGE_PREFIX = "cache:message:"
CACHE_CONVERSATION_PREFIX = "cache:conversation:"


def conversation(conversation_id: str) -> str:
    return f"{CONVERSATION_PREFIX}{conversation_id}"


def message(message_id: str) -> str:
    return f"{MESSAGE_PREFIX}{message_id}"


def conversation_messages(conversation_id: str) -> str:
    return f"{CONVERSATION_MESSAGES_PREFIX}{conversation_id}"


def cache_message(message_id: str) -> str:
    return f"{CACHE_MESSAGE_PREFIX}{message_id}"


def cache_conversation(conversation_id: str) -> str:
    return f"{CACHE_CONVERSATION_PREFIX}{conversation_id}"
