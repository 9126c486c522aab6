# SPDX-License-Identifier: MPL-2.0
"""Proof services: manifest verification, resolution, minting and verification."""
from media_proof.services.backends import Backends, build_backends, load_issuer_key
from media_proof.services.manifest import ManifestVerifier, verify_manifest
from media_proof.services.minting import MintOrchestrator, ProofMinter, mint_proof, sync_owner
from media_proof.services.pipeline import VerificationPipeline, run_verification_pipeline
from media_proof.services.resolver import DuplicateResolver, ProofResolver, check_duplicate

__all__ = [
    "Backends",
    "build_backends",
    "load_issuer_key",
    "ManifestVerifier",
    "verify_manifest",
    "MintOrchestrator",
    "ProofMinter",
    "mint_proof",
    "sync_owner",
    "VerificationPipeline",
    "run_verification_pipeline",
    "DuplicateResolver",
    "ProofResolver",
    "check_duplicate",
]
