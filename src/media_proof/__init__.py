# SPDX-License-Identifier: MPL-2.0
"""
Media Proof - provenance proofs for captured media.

Verifies content-authenticity manifests, records a signed proof on an
append-only ledger, mints an ownership token that links back to it, and
re-derives trust for any fingerprint from the two ledgers.
"""

import contextlib
from importlib.metadata import version

__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("media-proof")


from media_proof.services import (
    check_duplicate,
    mint_proof,
    run_verification_pipeline,
    verify_manifest,
)

__all__ = [
    "verify_manifest",
    "check_duplicate",
    "mint_proof",
    "run_verification_pipeline",
    "__version__",
]
