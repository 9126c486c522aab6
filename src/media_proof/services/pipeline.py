# SPDX-License-Identifier: MPL-2.0
"""
Verification pipeline.

Re-derives trust for a fingerprint in five stages:

1. locate - first live proof, oldest candidate first
2. ownership - holder of the located token
3. data - the proof record body was retrieved
4. crosslink - record and token reference each other
5. singularity - the located token is the earliest stored proof

The pipeline never raises; every failure becomes a stage error. A result is
valid when the crosslink and singularity stages both succeed.
"""

import logging
from typing import List, Optional

from media_proof.core.config import Settings
from media_proof.core.exceptions import InvalidFingerprint, MediaProofError, PipelineStateError
from media_proof.core.fingerprint import normalize_fingerprint, short
from media_proof.core.models import LiveProof, PipelineResult, Stage, StageStatus
from media_proof.services.ledger import ImmutableLedger, OwnershipLedger, ProofStore
from media_proof.services.resolver import ProofResolver, check_cross_link

logger = logging.getLogger(__name__)

STAGES = (
    ("locate", "Locate proof record"),
    ("ownership", "Check ownership"),
    ("data", "Retrieve proof data"),
    ("crosslink", "Verify cross-link"),
    ("singularity", "Check singularity"),
)

NOT_RUN = "Not run: no live proof located"


def new_stages() -> List[Stage]:
    return [Stage(id=stage_id, label=label) for stage_id, label in STAGES]


class StageTracker:
    """Forward-only stage transitions."""

    def __init__(self, stages: List[Stage]):
        self.stages = stages
        self._index = {stage.id: i for i, stage in enumerate(stages)}

    def _get(self, stage_id: str) -> Stage:
        if stage_id not in self._index:
            raise PipelineStateError(f"Unknown stage {stage_id}")
        return self.stages[self._index[stage_id]]

    def start(self, stage_id: str) -> None:
        stage = self._get(stage_id)
        if stage.status != StageStatus.PENDING:
            raise PipelineStateError(f"Stage {stage_id} already {stage.status.value}")
        for later in self.stages[self._index[stage_id] + 1:]:
            if later.status != StageStatus.PENDING:
                raise PipelineStateError(f"Cannot start {stage_id} after {later.id} has started")
        stage.status = StageStatus.RUNNING
        logger.debug(f"Stage {stage_id} running")

    def _finish(self, stage_id: str, status: StageStatus, message: str) -> None:
        stage = self._get(stage_id)
        if stage.status != StageStatus.RUNNING:
            raise PipelineStateError(f"Stage {stage_id} is not running")
        stage.status = status
        stage.message = message
        logger.info(f"Stage {stage_id}: {status.value} - {message}")

    def succeed(self, stage_id: str, message: str) -> None:
        self._finish(stage_id, StageStatus.SUCCESS, message)

    def fail(self, stage_id: str, message: str) -> None:
        self._finish(stage_id, StageStatus.ERROR, message)

    def running(self) -> Optional[Stage]:
        for stage in self.stages:
            if stage.status == StageStatus.RUNNING:
                return stage
        return None

    def fail_remaining(self, message: str) -> None:
        for stage in self.stages:
            if stage.status == StageStatus.PENDING:
                self.start(stage.id)
                self.fail(stage.id, message)


class VerificationPipeline:
    """Read-only verification over the ledgers and the store."""

    def __init__(
        self,
        data_ledger: ImmutableLedger,
        ownership_ledger: OwnershipLedger,
        store: ProofStore,
        settings: Optional[Settings] = None,
    ):
        self.data_ledger = data_ledger
        self.store = store
        self.resolver = ProofResolver(data_ledger, ownership_ledger, settings)

    def run(self, fingerprint: str) -> PipelineResult:
        result = PipelineResult(fingerprint=fingerprint, stages=new_stages())
        tracker = StageTracker(result.stages)
        try:
            self._run(result, tracker)
        except Exception as e:
            logger.exception(f"Verification of {fingerprint} aborted: {e}")
            stage = tracker.running()
            if stage is not None:
                tracker.fail(stage.id, f"Unexpected error: {e}")
            tracker.fail_remaining("Not run: pipeline aborted")
            result.is_valid = False
        return result

    def _run(self, result: PipelineResult, tracker: StageTracker) -> None:
        tracker.start("locate")
        try:
            fingerprint = normalize_fingerprint(result.fingerprint)
        except InvalidFingerprint as e:
            tracker.fail("locate", e.message)
            tracker.fail_remaining(NOT_RUN)
            return
        result.fingerprint = fingerprint

        live = self.resolver.locate_live_proof(fingerprint, oldest_first=True)
        if live is None:
            tracker.fail("locate", f"No live proof found for {short(fingerprint)}")
            tracker.fail_remaining(NOT_RUN)
            return
        result.located = live
        tracker.succeed("locate", f"Found token {live.token.token_id} via record {live.record.ledger_ref}")

        tracker.start("ownership")
        tracker.succeed("ownership", f"Held by {live.token.current_holder}")

        tracker.start("data")
        tracker.succeed(
            "data",
            f"Record {live.record.ledger_ref} signed by {live.record.root_signer} "
            f"at {live.record.created_at.isoformat()}",
        )

        tracker.start("crosslink")
        report = check_cross_link(live, self.data_ledger)
        result.cross_link = report
        if report.is_valid:
            tracker.succeed("crosslink", "Record and token reference each other")
        elif not report.token_to_record:
            tracker.fail("crosslink", f"Token metadata {report.token_uri} does not reference {report.expected_uri}")
        else:
            tracker.fail(
                "crosslink",
                f"Record names token {live.record.predicted_token_id}, not {live.token.token_id}",
            )

        tracker.start("singularity")
        singular, message = self._check_singularity(fingerprint, live)
        if singular:
            tracker.succeed("singularity", message)
        else:
            tracker.fail("singularity", message)

        result.is_valid = report.is_valid and singular

    def _check_singularity(self, fingerprint: str, live: LiveProof):
        try:
            rows = self.store.find_by_fingerprint(fingerprint)
        except MediaProofError as e:
            return False, f"Store unavailable: {e.message}"
        if not rows:
            return False, "No stored proof for this content"
        if len(rows) == 1:
            return True, "Only stored proof for this content"
        if rows[0].token_id == live.token.token_id:
            return True, f"Earliest of {len(rows)} stored proofs"
        return False, f"{len(rows)} stored proofs; earliest is token {rows[0].token_id}"


def run_verification_pipeline(
    fingerprint: str,
    data_ledger: ImmutableLedger,
    ownership_ledger: OwnershipLedger,
    store: ProofStore,
    settings: Optional[Settings] = None,
) -> PipelineResult:
    """Run the five verification stages for ``fingerprint``."""
    return VerificationPipeline(data_ledger, ownership_ledger, store, settings).run(fingerprint)
