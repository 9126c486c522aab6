# SPDX-License-Identifier: MPL-2.0
"""Data models for media proofs."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from media_proof.core.exceptions import MANIFEST_ERRORS, ParseFailure

# Type aliases
Fingerprint = str
LedgerRef = str
TokenID = str


class SourceClass(str, Enum):
    """Who or what produced the content described by a manifest."""

    CAMERA_HARDWARE = "camera-hardware"
    SOFTWARE_TOOL = "software-tool"
    AI_GENERATED = "ai-generated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class VerdictReason:
    """A single reason a manifest was rejected."""

    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class TrustVerdict:
    """Outcome of verifying one authenticity manifest.

    Produced once per manifest and never mutated. ``binding_hash`` is the
    content fingerprint every ledger record is keyed by.
    """

    is_valid: bool
    root_signer: str
    claim_generator: str
    source_class: SourceClass
    binding_hash: Optional[Fingerprint]
    reasons: Tuple[VerdictReason, ...] = ()
    binding_label: Optional[str] = None
    signed_at: Optional[str] = None
    chain: Tuple[str, ...] = ()
    validation_errors: Tuple[str, ...] = ()

    @property
    def reason_codes(self) -> List[str]:
        return [reason.code for reason in self.reasons]

    def has_reason(self, code: str) -> bool:
        return code in self.reason_codes

    def raise_for_verdict(self) -> None:
        """Raise the exception matching the first rejection reason, if any."""
        if self.is_valid:
            return
        if not self.reasons:
            raise ParseFailure("Manifest verdict is invalid")
        first = self.reasons[0]
        error_cls = MANIFEST_ERRORS.get(first.code, ParseFailure)
        raise error_cls(first.message, {"reasons": [str(r) for r in self.reasons]})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source_class"] = self.source_class.value
        data["reasons"] = [str(reason) for reason in self.reasons]
        data["reason_codes"] = self.reason_codes
        data["chain"] = list(self.chain)
        data["validation_errors"] = list(self.validation_errors)
        return data


@dataclass(frozen=True)
class ProofRecord:
    """An immutable proof record as read back from the data ledger."""

    ledger_ref: LedgerRef
    fingerprint: Fingerprint
    root_signer: str
    issuer: str
    predicted_token_id: TokenID
    created_at: datetime
    claim_generator: Optional[str] = None
    source_class: Optional[str] = None
    binding_hash: Optional[Fingerprint] = None
    image_ref: Optional[str] = None
    document: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class OwnershipToken:
    """Current state of an ownership token on the ownership ledger."""

    token_id: TokenID
    current_holder: Optional[str]
    metadata_uri: str
    burned: bool = False
    last_holder: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return not self.burned


@dataclass(frozen=True)
class Candidate:
    """A data-ledger search hit: ledger address plus approximate time (seconds)."""

    ledger_ref: LedgerRef
    timestamp: int


@dataclass(frozen=True)
class LiveProof:
    """A proof record whose referenced token exists and is not burned."""

    record: ProofRecord
    token: OwnershipToken


@dataclass(frozen=True)
class DuplicateCheck:
    """Result of a duplicate check for (fingerprint, issuer)."""

    is_duplicate: bool
    blocking_token_id: Optional[TokenID] = None
    ledger_ref: Optional[LedgerRef] = None


@dataclass(frozen=True)
class MintResult:
    """Result of a completed predict-then-mint run."""

    ledger_ref: LedgerRef
    token_id: TokenID
    predicted_token_id: TokenID
    signature: str
    metadata_uri: str

    @property
    def prediction_matched(self) -> bool:
        return self.token_id == self.predicted_token_id

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["prediction_matched"] = self.prediction_matched
        return data


@dataclass(frozen=True)
class StoreRecord:
    """A row of mutable marketplace metadata for one minted proof."""

    id: str  # noqa: A003
    fingerprint: Fingerprint
    ledger_ref: LedgerRef
    token_id: TokenID
    owner: Optional[str]
    created_at: datetime
    title: Optional[str] = None
    description: Optional[str] = None
    price: int = 0


class StageStatus(str, Enum):
    """Status of a verification stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Stage:
    """One checkpoint of the verification pipeline."""

    id: str  # noqa: A003
    label: str
    status: StageStatus = StageStatus.PENDING
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "status": self.status.value, "message": self.message}


@dataclass(frozen=True)
class CrossLinkReport:
    """Both directions of the record <-> token link."""

    record_to_token: bool
    token_to_record: bool
    expected_uri: str
    token_uri: str

    @property
    def is_valid(self) -> bool:
        return self.record_to_token and self.token_to_record


@dataclass
class PipelineResult:
    """Aggregate outcome of one verification pipeline run."""

    fingerprint: Fingerprint
    stages: List[Stage]
    is_valid: bool = False
    located: Optional[LiveProof] = None
    cross_link: Optional[CrossLinkReport] = None

    def stage(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)

    def to_dict(self) -> Dict[str, Any]:
        located = None
        if self.located is not None:
            located = {
                "ledger_ref": self.located.record.ledger_ref,
                "token_id": self.located.token.token_id,
                "root_signer": self.located.record.root_signer,
                "issuer": self.located.record.issuer,
                "current_holder": self.located.token.current_holder,
                "burned": self.located.token.burned,
                "created_at": self.located.record.created_at.isoformat(),
            }
        return {
            "fingerprint": self.fingerprint,
            "is_valid": self.is_valid,
            "stages": [stage.to_dict() for stage in self.stages],
            "located": located,
            "cross_link": asdict(self.cross_link) if self.cross_link else None,
        }
