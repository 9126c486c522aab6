# SPDX-License-Identifier: MPL-2.0
"""
Predict-then-mint.

The orchestrator publishes the proof record naming the token it expects to
mint *before* minting, so a failed or raced mint still leaves a record the
duplicate check can find. Steps run strictly in order under the issuer's
:class:`MintLock`:

1. predict - read the minted count, derive the next token id
2. publish - write the signed proof record to the data ledger
3. mint - submit the mint pointing at the record, wait for confirmation
4. reconcile - re-read the count; a different actual id is logged, not fatal
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey
from media_proof.core.exceptions import (
    DuplicateProof,
    LedgerError,
    LedgerUnavailable,
    MintFailure,
    MissingBinding,
    RecordNotFound,
    ReconciliationMismatch,
)
from media_proof.core.fingerprint import short
from media_proof.core.models import MintResult, StoreRecord, TokenID, TrustVerdict
from media_proof.core.records import RECORD_SYMBOL, build_proof_document, build_tags, sign_document
from media_proof.services.backends import Backends
from media_proof.services.ledger import ImmutableLedger, MintLock, OwnershipLedger, ProofStore, ThreadMintLock
from media_proof.services.resolver import DuplicateResolver, ProofResolver

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MintOrchestrator:
    """Runs the four mint steps for one issuing identity."""

    def __init__(
        self,
        data_ledger: ImmutableLedger,
        ownership_ledger: OwnershipLedger,
        issuer_key: IssuerKey,
        lock: Optional[MintLock] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.data_ledger = data_ledger
        self.ownership_ledger = ownership_ledger
        self.issuer_key = issuer_key
        self.lock = lock or ThreadMintLock()
        self.settings = settings or Settings()
        self.clock = clock

    def mint(self, verdict: TrustVerdict, recipient: str, image_ref: Optional[str] = None) -> MintResult:
        """Run all steps while holding the issuer's lock."""
        return self.lock.with_lock(self.issuer_key.identity, lambda: self.run(verdict, recipient, image_ref))

    def run(self, verdict: TrustVerdict, recipient: str, image_ref: Optional[str] = None) -> MintResult:
        """Run all steps. The caller must hold the issuer's lock.

        Raises:
            ManifestError: If ``verdict`` is not valid
            LedgerUnavailable: If a ledger is unreachable before anything was published
            MintFailure: If a step fails; ``orphan_ref`` names any published record
        """
        verdict.raise_for_verdict()
        if not verdict.binding_hash:
            raise MissingBinding("Verdict carries no binding hash")
        fingerprint = verdict.binding_hash

        # 1. predict
        try:
            predicted = self.ownership_ledger.predict_token_id()
        except LedgerUnavailable:
            raise
        except LedgerError as e:
            raise MintFailure(f"Could not read mint counter: {e}", step="predict") from e
        logger.info(f"Predicted token {predicted} for {short(fingerprint)}")

        # 2. publish
        document = build_proof_document(
            fingerprint=fingerprint,
            root_signer=verdict.root_signer,
            predicted_token_id=predicted,
            created_at=self.clock(),
            claim_generator=verdict.claim_generator,
            source_class=verdict.source_class.value,
            binding_hash=verdict.binding_hash,
            image_ref=image_ref,
        )
        signed = sign_document(document, self.issuer_key)
        try:
            ledger_ref = self.data_ledger.publish(signed, build_tags(signed), self.issuer_key.identity)
        except LedgerUnavailable:
            raise
        except LedgerError as e:
            raise MintFailure(f"Could not publish proof record: {e}", step="publish") from e
        metadata_uri = self.data_ledger.uri_for(ledger_ref)
        logger.info(f"Published proof record {ledger_ref}")

        # 3. mint
        try:
            signature = self.ownership_ledger.submit_mint(metadata_uri, recipient, document["name"], RECORD_SYMBOL)
            confirmed = self.ownership_ledger.confirm(signature, self.settings.confirm_timeout)
        except LedgerError as e:
            logger.error(f"Mint failed; proof record {ledger_ref} is orphaned: {e}")
            raise MintFailure(f"Mint submission failed: {e}", step="mint", orphan_ref=ledger_ref) from e
        if not confirmed:
            logger.error(f"Mint {signature} not confirmed; proof record {ledger_ref} is orphaned")
            raise MintFailure(
                f"Mint not confirmed within {self.settings.confirm_timeout}s",
                step="confirm",
                orphan_ref=ledger_ref,
                details={"signature": signature},
            )
        logger.info(f"Mint {signature} confirmed")

        # 4. reconcile
        try:
            actual = self.ownership_ledger.last_minted_token_id()
        except LedgerError as e:
            logger.error(f"Could not reconcile mint {signature}: {e}")
            raise MintFailure(f"Could not read minted token: {e}", step="reconcile", orphan_ref=ledger_ref) from e
        if actual != predicted:
            mismatch = ReconciliationMismatch(predicted, actual)
            logger.warning(f"{mismatch.code}: {mismatch.message}")

        return MintResult(
            ledger_ref=ledger_ref,
            token_id=actual,
            predicted_token_id=predicted,
            signature=signature,
            metadata_uri=metadata_uri,
        )


class ProofMinter:
    """The write path: duplicate check, orchestration, metadata persistence."""

    def __init__(
        self,
        backends: Backends,
        issuer_key: IssuerKey,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backends = backends
        self.issuer_key = issuer_key
        self.settings = settings or Settings()
        self.clock = clock
        self.resolver = ProofResolver(backends.data_ledger, backends.ownership_ledger, self.settings)
        self.orchestrator = MintOrchestrator(
            backends.data_ledger,
            backends.ownership_ledger,
            issuer_key,
            lock=backends.lock,
            settings=self.settings,
            clock=clock,
        )

    def mint_proof(
        self,
        verdict: TrustVerdict,
        recipient: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        price: int = 0,
        image_ref: Optional[str] = None,
    ) -> MintResult:
        """Mint a proof for a verified manifest.

        Raises:
            ManifestError: If ``verdict`` is not valid
            DuplicateProof: If this issuer already holds a live proof
            LedgerUnavailable: If a ledger is unreachable before publishing
            MintFailure: If orchestration fails after publishing started
        """
        verdict.raise_for_verdict()
        return self.backends.lock.with_lock(
            self.issuer_key.identity,
            lambda: self._mint_locked(verdict, recipient, title, description, price, image_ref),
        )

    def _mint_locked(self, verdict, recipient, title, description, price, image_ref) -> MintResult:
        duplicate = DuplicateResolver(self.resolver).check(verdict.binding_hash, self.issuer_key.identity)
        if duplicate.is_duplicate:
            raise DuplicateProof(
                blocking_token_id=duplicate.blocking_token_id,
                details={"ledger_ref": duplicate.ledger_ref},
            )

        result = self.orchestrator.run(verdict, recipient, image_ref)

        row = StoreRecord(
            id=str(uuid.uuid4()),
            fingerprint=verdict.binding_hash,
            ledger_ref=result.ledger_ref,
            token_id=result.token_id,
            owner=recipient,
            created_at=self.clock(),
            title=title,
            description=description,
            price=price,
        )
        try:
            self.backends.store.insert(row)
        except LedgerError as e:
            logger.error(f"Minted {result.token_id} but could not store metadata: {e}")
        return result

    def sync_owner(self, token_id: TokenID) -> Optional[str]:
        """Copy the token's current holder into the store.

        Raises:
            RecordNotFound: If the token does not exist
        """
        return sync_owner(token_id, self.backends.ownership_ledger, self.backends.store)


def mint_proof(
    verdict: TrustVerdict,
    recipient: str,
    issuer_key: IssuerKey,
    backends: Backends,
    settings: Optional[Settings] = None,
    **kwargs,
) -> MintResult:
    """Mint a proof for ``verdict`` to ``recipient``."""
    return ProofMinter(backends, issuer_key, settings).mint_proof(verdict, recipient, **kwargs)


def sync_owner(token_id: TokenID, ownership_ledger: OwnershipLedger, store: ProofStore) -> Optional[str]:
    token = ownership_ledger.get_token(token_id)
    if token is None:
        raise RecordNotFound(f"Token {token_id} not found")
    owner = token.current_holder
    updated = store.update_owner(token_id, owner)
    logger.info(f"Synced owner of {token_id} to {owner} ({updated} row(s))")
    return owner
