# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for the media provenance core.

Policy rejections, ledger faults and mint failures each get a distinct type so
callers can decide between displaying a reason, retrying, or giving up.
"""

from typing import Any, Dict, Optional


class MediaProofError(Exception):
    """Base exception for all media proof errors."""

    #: Stable code used in verdict reasons and API payloads.
    code = "MediaProofError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ManifestError(MediaProofError):
    """Base exception for manifest verdict failures."""

    code = "ManifestError"


class ParseFailure(ManifestError):
    """Raised when a manifest is malformed, unsigned, or failed validation."""

    code = "ParseFailure"


class UntrustedSigner(ManifestError):
    """Raised when the root signer is not on the trust list."""

    code = "UntrustedSigner"


class GeneratedContent(ManifestError):
    """Raised when the manifest declares algorithmic or generative authorship."""

    code = "GeneratedContent"


class MissingBinding(ManifestError):
    """Raised when no hard-binding hash assertion is present."""

    code = "MissingBinding"


class DuplicateProof(MediaProofError):
    """Raised when a live proof already exists for the fingerprint."""

    code = "DuplicateProof"

    def __init__(
        self,
        message: str = "A live proof already exists for this content",
        blocking_token_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.blocking_token_id = blocking_token_id
        self.details.setdefault("blocking_token_id", blocking_token_id)


class InvalidFingerprint(MediaProofError):
    """Raised when a fingerprint is not a well-formed hex digest."""

    code = "InvalidFingerprint"


class LedgerError(MediaProofError):
    """Base exception for ledger access errors."""

    code = "LedgerError"


class LedgerUnavailable(LedgerError):
    """Raised when a ledger cannot be reached; callers may retry."""

    code = "LedgerUnavailable"


class RecordNotFound(LedgerError):
    """Raised when a ledger record or document does not exist."""

    code = "RecordNotFound"


class LedgerWriteError(LedgerError):
    """Raised when a ledger rejects a write."""

    code = "LedgerWriteError"


class InvalidRecord(LedgerError):
    """Raised when a ledger document is not a well-formed proof record."""

    code = "InvalidRecord"


class MintFailure(MediaProofError):
    """Raised when a mint attempt aborts.

    Any proof record published before the failure is left on the data ledger
    as an orphan; ``orphan_ref`` names it.
    """

    code = "MintFailure"

    def __init__(
        self,
        message: str,
        step: str,
        orphan_ref: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.step = step
        self.orphan_ref = orphan_ref
        self.details.setdefault("step", step)
        self.details.setdefault("orphan_ref", orphan_ref)


class ReconciliationMismatch(MediaProofError):
    """Predicted and actual token identifiers differ.

    Built and logged by the mint orchestrator; never raised to callers.
    """

    code = "ReconciliationMismatch"

    def __init__(self, predicted: str, actual: str) -> None:
        super().__init__(
            f"Predicted token {predicted} but minted {actual}",
            {"predicted": predicted, "actual": actual},
        )
        self.predicted = predicted
        self.actual = actual


class PipelineStateError(MediaProofError):
    """Raised on an illegal verification stage transition."""

    code = "PipelineStateError"


class ConfigurationError(MediaProofError):
    """Raised when configuration is invalid or missing."""

    code = "ConfigurationError"


#: Verdict reason code -> exception type.
MANIFEST_ERRORS = {
    cls.code: cls for cls in (ParseFailure, UntrustedSigner, GeneratedContent, MissingBinding)
}
