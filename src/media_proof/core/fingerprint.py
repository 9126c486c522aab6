# SPDX-License-Identifier: MPL-2.0
"""Content fingerprint helpers."""

import hashlib
import re
from typing import Union

from media_proof.core.exceptions import InvalidFingerprint

# SHA-256, SHA-384 and SHA-512 hex digests
_HEX_DIGEST = re.compile(r"^(?:[0-9a-f]{64}|[0-9a-f]{96}|[0-9a-f]{128})$")
_PREFIXES = ("0x", "sha256:", "sha384:", "sha512:")


def normalize_fingerprint(value: str) -> str:
    """Normalize a fingerprint: lowercase, strip known prefixes, validate hex."""
    if not isinstance(value, str):
        raise InvalidFingerprint(f"Fingerprint must be a string, got {type(value).__name__}")
    normalized = value.strip().lower()
    for prefix in _PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
            break
    if not _HEX_DIGEST.match(normalized):
        raise InvalidFingerprint(f"Invalid fingerprint format (expected hex digest): {value}")
    return normalized


def bytes_to_fingerprint(raw: Union[bytes, bytearray, list]) -> str:
    """Render a hash given as bytes or a list of byte values as a fingerprint."""
    if isinstance(raw, list):
        raw = bytes(raw)
    return normalize_fingerprint(bytes(raw).hex())


def compute_fingerprint(data: bytes) -> str:
    """Return the SHA-256 fingerprint of ``data``."""
    return hashlib.sha256(data).hexdigest()


def short(fingerprint: str) -> str:
    """Truncated form for log lines."""
    return f"{fingerprint[:16]}..."
