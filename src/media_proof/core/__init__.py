# SPDX-License-Identifier: MPL-2.0
"""Core functionality for media proofs."""
from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey, verify_signature
from media_proof.core.fingerprint import compute_fingerprint, normalize_fingerprint
from media_proof.core.records import build_proof_document, canonicalize, parse_proof_record

__all__ = [
    "Settings",
    "IssuerKey",
    "verify_signature",
    "compute_fingerprint",
    "normalize_fingerprint",
    "build_proof_document",
    "canonicalize",
    "parse_proof_record",
]
