# SPDX-License-Identifier: MPL-2.0
"""Shared fixtures: in-memory ledgers, issuer keys and manifest builders."""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional

import pytest

from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey
from media_proof.services.backends import Backends
from media_proof.services.ledger.local import LocalDataLedger, LocalOwnershipLedger, LocalProofStore
from media_proof.services.manifest import verify_manifest

FINGERPRINT = hashlib.sha256(b"pixel-capture-0001").hexdigest()
OTHER_FINGERPRINT = hashlib.sha256(b"pixel-capture-0002").hexdigest()

GENERATIVE_SOURCE = "http://cv.iptc.org/newscodes/digitalsourcetype/trainedAlgorithmicMedia"
CAPTURE_SOURCE = "http://cv.iptc.org/newscodes/digitalsourcetype/digitalCapture"


def build_manifest(
    signer: Optional[str] = "Google LLC",
    fingerprint: Optional[str] = FINGERPRINT,
    binding_label: str = "c2pa.hash.data",
    generated: bool = False,
    parent: Optional[Dict[str, Any]] = None,
    label: str = "urn:uuid:active",
    validation_status: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """A decoded manifest store in the JavaScript reader's shape."""
    assertions: List[Dict[str, Any]] = [
        {
            "label": "c2pa.actions.v2",
            "data": {
                "actions": [
                    {
                        "action": "c2pa.created",
                        "digitalSourceType": GENERATIVE_SOURCE if generated else CAPTURE_SOURCE,
                    }
                ]
            },
        }
    ]
    if fingerprint is not None:
        assertions.append(
            {
                "label": binding_label,
                "data": {"alg": "sha256", "hash": list(bytes.fromhex(fingerprint)), "exclusions": []},
            }
        )
    node: Dict[str, Any] = {
        "label": label,
        "claimGeneratorInfo": [{"name": "Pixel Camera", "version": "1.0"}],
        "assertions": {"data": assertions},
        "ingredients": [],
    }
    if signer is not None:
        node["signatureInfo"] = {"issuer": signer, "time": "2026-03-01T12:00:00+00:00"}
    if parent is not None:
        node["ingredients"].append({"title": "parent.jpg", "relationship": "parentOf", "manifest": parent})
    return {"activeManifest": node, "validationStatus": validation_status or []}


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def data_ledger():
    ledger = LocalDataLedger()
    yield ledger
    ledger.close()


@pytest.fixture
def ownership_ledger():
    ledger = LocalOwnershipLedger(tree_address="test-tree")
    yield ledger
    ledger.close()


@pytest.fixture
def store():
    proof_store = LocalProofStore()
    yield proof_store
    proof_store.close()


@pytest.fixture
def backends(data_ledger, ownership_ledger, store) -> Backends:
    return Backends(data_ledger=data_ledger, ownership_ledger=ownership_ledger, store=store)


@pytest.fixture
def issuer_key() -> IssuerKey:
    return IssuerKey.generate("issuer-a")


@pytest.fixture
def other_issuer_key() -> IssuerKey:
    return IssuerKey.generate("issuer-b")


@pytest.fixture
def verdict(settings):
    return verify_manifest(build_manifest(), settings)


def orchestrate(backends: Backends, key: IssuerKey, fingerprint: str = FINGERPRINT, recipient: str = "alice"):
    """Publish and mint a proof without the duplicate check or store row."""
    from media_proof.services.minting import MintOrchestrator

    verdict = verify_manifest(build_manifest(fingerprint=fingerprint))
    orchestrator = MintOrchestrator(backends.data_ledger, backends.ownership_ledger, key, lock=backends.lock)
    return orchestrator.mint(verdict, recipient)
