"""Message content codec.

Content is either plain text or a structured payload (tool calls, tool
results). The hash stores a ``content_type`` tag next to the payload, so a
text message that happens to look like JSON (``"42"``, ``"[1]"``) comes back
as the same string rather than being re-parsed into a number or list.
"""

import json
import logging
from typing import Any

from chatstore.core.errors import SerializationError

logger = logging.getLogger(__name__)

TEXT = "text"
JSON = "json"


def encode_content(value: Any) -> tuple[str, str]:
    """Return ``(content_type, payload)`` for storage."""
    if isinstance(value, str):
        return TEXT, value
    try:
        return JSON, json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Content is not JSON serializable: {e}") from e


def encode_content_lenient(value: Any) -> tuple[str, str]:
    """Like encode_content, but degrade to the text form instead of raising."""
    try:
        return encode_content(value)
    except SerializationError as e:
        logger.warning(f"{e}; storing str() of the value instead")
        return TEXT, str(value)


def decode_content(content_type: str | None, payload: str) -> Any:
    if content_type == TEXT:
        return payload
    if content_type == JSON:
        try:
            return json.loads(payload)
        except ValueError as e:
            logger.warning(f"Stored JSON content is corrupt, returning raw payload: {e}")
            return payload
    # Rows written before content was tagged: best-effort parse.
    if content_type is None:
        if not payload.strip():
            return payload
        try:
            return json.loads(payload)
        except ValueError:
            return payload
    logger.warning(f"Unknown content type {content_type!r}, returning raw payload")
    return payload
