"""Content and project hashing.

This module provides:
- hash_file_content: SHA-256 of file text, used for all sync comparisons
- short_project_hash: compact, deterministic id derived from a project hash
"""

from __future__ import annotations

import hashlib

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
SHORT_HASH_LENGTH = 8


def hash_file_content(content: str) -> str:
    """Compute the SHA-256 hex digest of UTF-8 encoded content.

    Args:
        content: File text.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _imul(a: int, b: int) -> int:
    """32-bit signed multiplication with wrap-around."""
    result = (a * b) & 0xFFFFFFFF
    return result - 0x100000000 if result & 0x80000000 else result


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def short_project_hash(full_hash: str, length: int = SHORT_HASH_LENGTH) -> str:
    """Derive a short base58 id from a full project hash.

    Idempotent: a value that already has the target length is returned
    unchanged, so short and full ids can be compared after passing both
    through this function.

    Args:
        full_hash: Project hash as sent by the plugin.
        length: Number of base58 characters to produce.

    Returns:
        Base58 string of exactly ``length`` characters.
    """
    if len(full_hash) == length:
        return full_hash

    h1 = 0
    h2 = 0
    for char in full_hash:
        code = ord(char)
        h1 = _imul(h1 ^ code, 0x85EBCA6B)
        h2 = _imul(h2 ^ code, 0xC2B2AE35)

    h1 = _to_int32(h1 ^ ((h2 & 0xFFFFFFFF) >> 16))
    h2 = _to_int32(h2 ^ ((h1 & 0xFFFFFFFF) >> 13))

    result = ""
    for num in (abs(h1), abs(h2)):
        n = num & 0xFFFFFFFF
        while n > 0 and len(result) < length:
            result += BASE58_ALPHABET[n % 58]
            n //= 58

    return result.ljust(length, BASE58_ALPHABET[0])[:length]
