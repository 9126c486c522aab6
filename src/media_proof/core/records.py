# SPDX-License-Identifier: MPL-2.0
"""Proof-record documents.

A proof record is the JSON document written to the append-only data ledger
before the ownership token is minted. It names the token identifier the
issuer expects to mint (``target_asset_id``) and carries the content
fingerprint as a ``trait_type`` attribute, the same shape token metadata uses,
so the document can double as the token's metadata. The issuer signs the
canonical form of the document.
"""

from __future__ import annotations

import json
import unicodedata
from datetime import datetime, timezone
from functools import lru_cache
from importlib import resources
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from jsonschema import ValidationError, validate

from media_proof.core.crypto import IssuerKey, verify_signature
from media_proof.core.exceptions import InvalidFingerprint, InvalidRecord
from media_proof.core.fingerprint import normalize_fingerprint
from media_proof.core.models import ProofRecord

RECORD_NAME_PREFIX = "Media Proof #"
RECORD_SYMBOL = "MPROOF"
RECORD_DESCRIPTION = "Media authenticity proof"
APP_NAME = "media-proof"


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return unicodedata.normalize("NFC", value)
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    return value


def canonicalize(document: Dict[str, Any]) -> bytes:
    """Canonical UTF-8 JSON: NFC strings, sorted keys, no whitespace."""
    return json.dumps(
        _normalize(document), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@lru_cache(maxsize=1)
def load_schema() -> Dict[str, Any]:
    text = resources.files("media_proof.schemas").joinpath("proof-record-v1.schema.json").read_text(
        encoding="utf-8"
    )
    return json.loads(text)


def build_proof_document(
    fingerprint: str,
    root_signer: str,
    predicted_token_id: str,
    created_at: datetime,
    claim_generator: Optional[str] = None,
    source_class: Optional[str] = None,
    binding_hash: Optional[str] = None,
    image_ref: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the unsigned proof-record document."""
    attributes: List[Dict[str, str]] = [
        {"trait_type": "fingerprint", "value": fingerprint},
        {"trait_type": "root_signer", "value": root_signer},
    ]
    if claim_generator:
        attributes.append({"trait_type": "claim_generator", "value": claim_generator})
    if source_class:
        attributes.append({"trait_type": "source_type", "value": source_class})
    if binding_hash:
        attributes.append({"trait_type": "binding_hash", "value": binding_hash})
    attributes.append({"trait_type": "created_at", "value": format_timestamp(created_at)})

    document: Dict[str, Any] = {
        "name": f"{RECORD_NAME_PREFIX}{fingerprint[:8]}",
        "symbol": RECORD_SYMBOL,
        "description": RECORD_DESCRIPTION,
        "target_asset_id": predicted_token_id,
        "attributes": attributes,
    }
    if image_ref:
        document["image"] = image_ref
    return document


def build_tags(document: Dict[str, Any]) -> Dict[str, str]:
    """Ledger tags indexed by the tag-filter query."""
    tags = {
        "fingerprint": attribute(document, "fingerprint") or "",
        "createdAt": attribute(document, "created_at") or "",
        "App-Name": APP_NAME,
        "Content-Type": "application/json",
    }
    source = attribute(document, "source_type")
    if source:
        tags["source_type"] = source
    return tags


def signing_bytes(document: Dict[str, Any]) -> bytes:
    unsigned = {k: v for k, v in document.items() if k != "signature"}
    return canonicalize(unsigned)


def sign_document(document: Dict[str, Any], key: IssuerKey) -> Dict[str, Any]:
    """Return a copy of ``document`` carrying the issuer's signature."""
    signed = dict(document)
    signed["signature"] = key.sign(signing_bytes(document))
    return signed


def document_signed_by(document: Dict[str, Any], identity: str) -> bool:
    signature = document.get("signature")
    if not isinstance(signature, str):
        return False
    return verify_signature(identity, signing_bytes(document), signature)


def attribute(document: Dict[str, Any], trait_type: str) -> Optional[str]:
    for attr in document.get("attributes") or []:
        if isinstance(attr, dict) and attr.get("trait_type") == trait_type:
            value = attr.get("value")
            return value if isinstance(value, str) else None
    return None


def parse_proof_record(
    ledger_ref: str,
    document: Dict[str, Any],
    issuer: str,
    fallback_timestamp: Optional[int] = None,
) -> ProofRecord:
    """Validate a fetched document and turn it into a :class:`ProofRecord`.

    Args:
        ledger_ref: Ledger address the document was fetched from
        document: Parsed JSON body
        issuer: Owner identity reported by the ledger header
        fallback_timestamp: Search timestamp (seconds) used when the document
            has no ``created_at`` attribute

    Raises:
        InvalidRecord: If the document fails schema validation, carries a bad
            fingerprint, carries a signature that does not match
            ``issuer``, or has no usable timestamp
    """
    try:
        validate(instance=document, schema=load_schema())
    except ValidationError as e:
        raise InvalidRecord(f"Record {ledger_ref} does not match schema: {e.message}") from e

    try:
        fingerprint = normalize_fingerprint(attribute(document, "fingerprint") or "")
    except InvalidFingerprint as e:
        raise InvalidRecord(f"Record {ledger_ref} has an invalid fingerprint") from e

    if not document_signed_by(document, issuer):
        raise InvalidRecord(f"Record {ledger_ref} is not signed by its ledger owner {issuer}")

    created_raw = attribute(document, "created_at")
    try:
        if created_raw:
            created_at = parse_timestamp(created_raw)
        elif fallback_timestamp is not None:
            created_at = datetime.fromtimestamp(fallback_timestamp, timezone.utc)
        else:
            raise InvalidRecord(f"Record {ledger_ref} has no creation time")
    except ValueError as e:
        raise InvalidRecord(f"Record {ledger_ref} has an invalid created_at: {created_raw}") from e

    return ProofRecord(
        ledger_ref=ledger_ref,
        fingerprint=fingerprint,
        root_signer=attribute(document, "root_signer") or "",
        issuer=issuer,
        predicted_token_id=document["target_asset_id"],
        created_at=created_at,
        claim_generator=attribute(document, "claim_generator"),
        source_class=attribute(document, "source_type"),
        binding_hash=attribute(document, "binding_hash"),
        image_ref=document.get("image"),
        document=document,
    )


def record_uri(gateway_url: str, ledger_ref: str) -> str:
    """Metadata URI under which a record is served."""
    return f"{gateway_url.rstrip('/')}/{ledger_ref}"


def _uri_key(uri: str):
    parsed = urlparse(uri.strip())
    return parsed.scheme.lower(), parsed.netloc.lower(), parsed.path.rstrip("/")


def same_uri(uri: Optional[str], expected: Optional[str]) -> bool:
    """True if ``uri`` names the same location as ``expected``.

    Scheme and host compare case-insensitively and a trailing slash is
    ignored; query strings and fragments are not part of the location.
    """
    if not uri or not expected:
        return False
    return _uri_key(uri) == _uri_key(expected)
