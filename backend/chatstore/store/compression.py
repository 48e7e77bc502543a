"""gzip + base64 codec for large string payloads.

Encoded values carry a format tag so readers can tell them apart:

* ``raw:<data>`` - stored as-is (payload under the threshold, or compression failed)
* ``gzip:<base64>`` - gzip-compressed UTF-8, base64 encoded

Values with neither tag predate compression and are passed through untouched.
"""

import base64
import binascii
import gzip
import logging
import zlib

from chatstore.core.errors import SerializationError

logger = logging.getLogger(__name__)

RAW_TAG = "raw:"
GZIP_TAG = "gzip:"
COMPRESSION_THRESHOLD = 1000


def compress(data: str, threshold: int = COMPRESSION_THRESHOLD) -> str:
    """Tag ``data`` and gzip it when it is at least ``threshold`` characters long. Never raises."""
    if len(data) < threshold:
        return f"{RAW_TAG}{data}"

    try:
        packed = gzip.compress(data.encode("utf-8"))
    except (UnicodeEncodeError, zlib.error) as e:
        logger.warning(f"Compression failed, storing raw payload: {e}")
        return f"{RAW_TAG}{data}"
    return f"{GZIP_TAG}{base64.b64encode(packed).decode('ascii')}"


def decompress(data: str) -> str:
    if data.startswith(RAW_TAG):
        return data[len(RAW_TAG):]

    if data.startswith(GZIP_TAG):
        try:
            packed = base64.b64decode(data[len(GZIP_TAG):], validate=True)
            return gzip.decompress(packed).decode("utf-8")
        except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            logger.error(f"Decompression failed: {e}")
            raise SerializationError(f"Could not decompress payload: {e}") from e

    return data


def is_compressed(data: str) -> bool:
    return data.startswith(GZIP_TAG)


def is_raw(data: str) -> bool:
    return data.startswith(RAW_TAG)


def get_format(data: str) -> str:
    """Return "gzip", "raw" or "unknown"."""
    if is_compressed(data):
        return "gzip"
    if is_raw(data):
        return "raw"
    return "unknown"


def compress_batch(items: list[str], threshold: int = COMPRESSION_THRESHOLD) -> list[str]:
    return [compress(item, threshold) for item in items]


def decompress_batch(items: list[str]) -> list[str]:
    return [decompress(item) for item in items]


def compression_stats(original: str, compressed: str) -> dict[str, float]:
    original_size = len(original.encode("utf-8"))
    compressed_size = len(compressed.encode("utf-8"))
    saved = original_size - compressed_size
    return {
        "original_size": original_size,
        "compressed_size": compressed_size,
        "compression_ratio": compressed_size / original_size if original_size else 1.0,
        "space_saved": saved,
        "space_saved_percent": round(saved / original_size * 100, 2) if original_size else 0.0,
    }
