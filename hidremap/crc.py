"""CRC-32 checksum used to protect configuration blocks and packets."""

import zlib

__all__ = ["crc32"]


def crc32(data) -> int:
    """Return the standard (IEEE 802.3) CRC-32 of a bytes-like object."""
    return zlib.crc32(bytes(data)) & 0xFFFFFFFF