"""
Fingerprinter — stable cache keys for fragment text.

SHA-256 over the exact UTF-8 bytes. No normalisation: two fragments share a
fingerprint only when their text is byte-identical.
"""

from __future__ import annotations

import hashlib

FINGERPRINT_LENGTH = 64


def fingerprint(text: str) -> str:
    """Return the 64-char hex fingerprint of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
