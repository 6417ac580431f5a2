from __future__ import annotations

import hashlib
import re
import uuid
from typing import BinaryIO, Union

_BUFFER_SIZE = 8192
SHORT_HASH_LENGTH = 16
FULL_HASH_LENGTH = 64

_HEX_RE = re.compile(r"^[0-9a-f]+$")


def compute_hash(content: Union[bytes, BinaryIO]) -> str:
    """SHA-256 of the full content as lowercase hex (64 chars).

    Streams are read to exhaustion so identical bytes always give the same digest.
    """
    digest = hashlib.sha256()
    if isinstance(content, (bytes, bytearray, memoryview)):
        digest.update(content)
        return digest.hexdigest()

    while True:
        block = content.read(_BUFFER_SIZE)
        if not block:
            break
        digest.update(block)
    return digest.hexdigest()


def compute_short_hash(content: Union[bytes, BinaryIO]) -> str:
    """First 64 bits of the SHA-256 digest, used as a filename fragment."""
    return compute_hash(content)[:SHORT_HASH_LENGTH]


def is_valid_hash(value: str, expected_length: int) -> bool:
    if not isinstance(value, str) or len(value) != expected_length:
        return False
    return bool(_HEX_RE.match(value))


def generate_token() -> str:
    """Random identifier for stored names.

    uuid4 draws 122 bits from os.urandom. Never use time-based or sequential
    ids here: stored names are public and must not be enumerable.
    """
    return str(uuid.uuid4())
