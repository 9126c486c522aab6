# SPDX-License-Identifier: MPL-2.0
"""Tests for the predict-then-mint orchestrator and the write path."""

from __future__ import annotations

import logging

import pytest

from media_proof.core.exceptions import (
    DuplicateProof,
    LedgerUnavailable,
    LedgerWriteError,
    MintFailure,
    RecordNotFound,
    UntrustedSigner,
)
from media_proof.core.records import attribute, document_signed_by
from media_proof.services.backends import Backends
from media_proof.services.ledger import ThreadMintLock
from media_proof.services.ledger.local import LocalDataLedger, LocalOwnershipLedger, LocalProofStore
from media_proof.services.manifest import verify_manifest
from media_proof.services.minting import MintOrchestrator, ProofMinter, mint_proof

from conftest import FINGERPRINT, build_manifest


class InterleavedOwnership(LocalOwnershipLedger):
    """Another mint lands between prediction and ours."""

    def submit_mint(self, metadata_uri, holder, name, symbol):
        super().submit_mint("local://data/elsewhere", "mallory", "Other", "OTHER")
        return super().submit_mint(metadata_uri, holder, name, symbol)


class UnconfirmedOwnership(LocalOwnershipLedger):
    """Drops the next ``failures`` mints on the floor."""

    def __init__(self, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def submit_mint(self, metadata_uri, holder, name, symbol):
        if self.failures:
            self.failures -= 1
            return "lost-signature"
        return super().submit_mint(metadata_uri, holder, name, symbol)


class RejectingOwnership(LocalOwnershipLedger):
    def submit_mint(self, metadata_uri, holder, name, symbol):
        raise LedgerWriteError("insufficient funds")


class UnreachableDataLedger(LocalDataLedger):
    def publish(self, document, tags, owner):
        raise LedgerUnavailable("upload node down")


class UnreachableStore(LocalProofStore):
    def insert(self, record):
        raise LedgerUnavailable("store down")


class RecordingLock(ThreadMintLock):
    def __init__(self):
        super().__init__()
        self.issuers = []

    def with_lock(self, issuer_id, fn):
        self.issuers.append(issuer_id)
        return super().with_lock(issuer_id, fn)


class TestMintOrchestrator:
    def test_publishes_then_mints_cross_linked_token(self, backends, issuer_key, verdict):
        predicted = backends.ownership_ledger.predict_token_id()
        orchestrator = MintOrchestrator(backends.data_ledger, backends.ownership_ledger, issuer_key)
        result = orchestrator.mint(verdict, "alice")

        assert result.token_id == predicted
        assert result.prediction_matched
        assert result.metadata_uri == backends.data_ledger.uri_for(result.ledger_ref)

        document = backends.data_ledger.fetch_document(result.ledger_ref)
        assert document["target_asset_id"] == result.token_id
        assert attribute(document, "fingerprint") == FINGERPRINT
        assert attribute(document, "root_signer") == "Google LLC"
        assert document_signed_by(document, issuer_key.identity)
        assert backends.data_ledger.fetch_owner(result.ledger_ref) == issuer_key.identity

        token = backends.ownership_ledger.get_token(result.token_id)
        assert token.current_holder == "alice"
        assert token.metadata_uri == result.metadata_uri

    def test_reconciliation_mismatch_is_logged_not_fatal(self, data_ledger, issuer_key, verdict, caplog):
        ownership = InterleavedOwnership(tree_address="test-tree")
        predicted = ownership.predict_token_id()
        with caplog.at_level(logging.WARNING):
            result = MintOrchestrator(data_ledger, ownership, issuer_key).mint(verdict, "alice")
        assert result.predicted_token_id == predicted
        assert result.token_id != predicted
        assert ownership.get_token(result.token_id).metadata_uri == result.metadata_uri
        assert "ReconciliationMismatch" in caplog.text

    def test_unconfirmed_mint_orphans_the_record(self, data_ledger, issuer_key, verdict):
        ownership = UnconfirmedOwnership(tree_address="test-tree")
        with pytest.raises(MintFailure) as excinfo:
            MintOrchestrator(data_ledger, ownership, issuer_key).mint(verdict, "alice")
        assert excinfo.value.step == "confirm"
        assert excinfo.value.orphan_ref is not None
        assert data_ledger.fetch_document(excinfo.value.orphan_ref)["target_asset_id"] == ownership.predict_token_id()
        assert ownership.minted_count() == 0

    def test_rejected_mint(self, data_ledger, issuer_key, verdict):
        with pytest.raises(MintFailure) as excinfo:
            MintOrchestrator(data_ledger, RejectingOwnership(), issuer_key).mint(verdict, "alice")
        assert excinfo.value.step == "mint"
        assert excinfo.value.details["orphan_ref"] == excinfo.value.orphan_ref

    def test_unreachable_data_ledger_propagates(self, ownership_ledger, issuer_key, verdict):
        with pytest.raises(LedgerUnavailable):
            MintOrchestrator(UnreachableDataLedger(), ownership_ledger, issuer_key).mint(verdict, "alice")
        assert ownership_ledger.minted_count() == 0

    def test_rejected_publish_is_a_mint_failure_without_orphan(self, data_ledger, ownership_ledger, issuer_key, verdict):
        class RejectingDataLedger(LocalDataLedger):
            def publish(self, document, tags, owner):
                raise LedgerWriteError("payload too large")

        with pytest.raises(MintFailure) as excinfo:
            MintOrchestrator(RejectingDataLedger(), ownership_ledger, issuer_key).mint(verdict, "alice")
        assert excinfo.value.step == "publish"
        assert excinfo.value.orphan_ref is None

    def test_invalid_verdict_publishes_nothing(self, backends, issuer_key, settings):
        verdict = verify_manifest(build_manifest(signer="Unknown Signer"), settings)
        with pytest.raises(UntrustedSigner):
            MintOrchestrator(backends.data_ledger, backends.ownership_ledger, issuer_key).mint(verdict, "alice")
        assert backends.data_ledger.search_by_tag("fingerprint", FINGERPRINT) == []


class TestProofMinter:
    def test_mint_persists_store_row(self, backends, issuer_key, verdict):
        result = ProofMinter(backends, issuer_key).mint_proof(verdict, "alice", title="Sunrise", price=5)
        rows = backends.store.find_by_fingerprint(FINGERPRINT)
        assert len(rows) == 1
        assert rows[0].token_id == result.token_id
        assert rows[0].ledger_ref == result.ledger_ref
        assert rows[0].owner == "alice"
        assert rows[0].title == "Sunrise"
        assert rows[0].price == 5

    def test_second_mint_is_duplicate(self, backends, issuer_key, verdict):
        first = mint_proof(verdict, "alice", issuer_key, backends)
        with pytest.raises(DuplicateProof) as excinfo:
            mint_proof(verdict, "bob", issuer_key, backends)
        assert excinfo.value.blocking_token_id == first.token_id
        assert excinfo.value.details["ledger_ref"] == first.ledger_ref
        assert backends.ownership_ledger.minted_count() == 1

    def test_other_issuer_may_mint(self, backends, issuer_key, other_issuer_key, verdict):
        mint_proof(verdict, "alice", issuer_key, backends)
        result = mint_proof(verdict, "bob", other_issuer_key, backends)
        assert backends.ownership_ledger.get_token(result.token_id).current_holder == "bob"

    def test_mint_runs_under_issuer_lock(self, data_ledger, ownership_ledger, store, issuer_key, verdict):
        lock = RecordingLock()
        backends = Backends(data_ledger, ownership_ledger, store, lock=lock)
        ProofMinter(backends, issuer_key).mint_proof(verdict, "alice")
        assert lock.issuers == [issuer_key.identity]

    def test_store_failure_does_not_undo_mint(self, data_ledger, ownership_ledger, issuer_key, verdict, caplog):
        backends = Backends(data_ledger, ownership_ledger, UnreachableStore())
        with caplog.at_level(logging.ERROR):
            result = ProofMinter(backends, issuer_key).mint_proof(verdict, "alice")
        assert ownership_ledger.get_token(result.token_id).is_live
        assert "could not store metadata" in caplog.text

    def test_sync_owner(self, backends, issuer_key, verdict):
        minter = ProofMinter(backends, issuer_key)
        result = minter.mint_proof(verdict, "alice")
        backends.ownership_ledger.transfer(result.token_id, "bob")
        assert minter.sync_owner(result.token_id) == "bob"
        assert backends.store.find_by_fingerprint(FINGERPRINT)[0].owner == "bob"

        backends.ownership_ledger.burn(result.token_id)
        assert minter.sync_owner(result.token_id) is None
        with pytest.raises(RecordNotFound):
            minter.sync_owner("missing")
