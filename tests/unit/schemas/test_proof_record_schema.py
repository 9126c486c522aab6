# SPDX-License-Identifier: MPL-2.0
"""Conformance tests for the proof-record-v1 JSON schema."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from jsonschema import ValidationError, validate

from media_proof.core.crypto import IssuerKey
from media_proof.core.records import build_proof_document, load_schema, sign_document

VECTORS_DIR = Path(__file__).resolve().parent / "vectors"

SCHEMA = load_schema()


def load_vectors(kind: str) -> list[Path]:
    return sorted((VECTORS_DIR / kind).glob("*.json"))


@pytest.mark.parametrize("vector", load_vectors("valid"), ids=lambda p: p.stem)
def test_valid_vectors(vector: Path) -> None:
    data = json.loads(vector.read_text())
    validate(instance=data, schema=SCHEMA)


@pytest.mark.parametrize("vector", load_vectors("invalid"), ids=lambda p: p.stem)
def test_invalid_vectors(vector: Path) -> None:
    data = json.loads(vector.read_text())
    with pytest.raises(ValidationError):
        validate(instance=data, schema=SCHEMA)


def test_built_documents_conform() -> None:
    document = build_proof_document(
        fingerprint="ab" * 32,
        root_signer="Google LLC",
        predicted_token_id="cd" * 32,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        claim_generator="Pixel Camera 1.0",
        source_class="camera-capture",
    )
    validate(instance=sign_document(document, IssuerKey.generate()), schema=SCHEMA)
