"""
UUIDv7 helpers used for correlation ids and time-ordered record keys.
"""
import uuid
import time
import random


def _uuid7_bytes(timestamp_ms: int) -> bytes:
    # 48-bit millisecond timestamp followed by 80 random bits
    uuid_bytes = bytearray(timestamp_ms.to_bytes(6, byteorder='big') + random.randbytes(10))

    # Set version (4 bits) to 0111 (7)
    uuid_bytes[6] = (uuid_bytes[6] & 0x0f) | 0x70

    # Set variant (2 bits) to 10
    uuid_bytes[8] = (uuid_bytes[8] & 0x3f) | 0x80

    return bytes(uuid_bytes)


def uuid7() -> uuid.UUID:
    """
    Generate a UUIDv7 (time-ordered UUID).

    Ids generated later sort after ids generated earlier, which keeps
    B-tree indexes compact and gives a stable tie-break for rows created
    within the same second.
    """
    return uuid.UUID(bytes=_uuid7_bytes(int(time.time() * 1000)))


def uuid7_str() -> str:
    """Generate UUIDv7 as string"""
    return str(uuid7())

