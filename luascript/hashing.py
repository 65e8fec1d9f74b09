"""
Content hashing for lua scripts.

Redis identifies cached scripts by the SHA1 of their source bytes, so the
digest computed here must match what SCRIPT LOAD returns for the same
script.
"""

from __future__ import annotations

import hashlib


def sha1_hex(text: str) -> str:
    """
    Compute the lowercase hex SHA1 of a string's UTF-8 bytes.

    Example:
        >>> sha1_hex("abc")
        'a9993e364706816aba3e25717850c26c9cd0d89d'
    """
    return hashlib.sha1(text.encode("utf-8")).hexdigest()
