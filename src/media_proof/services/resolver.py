# SPDX-License-Identifier: MPL-2.0
"""
Proof resolution across the two ledgers.

:meth:`ProofResolver.locate_live_proof` is the single primitive behind both
the duplicate check on the write path and the locate stage of the
verification pipeline. Per-candidate lookups may run concurrently, but the
result is always reduced in candidate order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Iterator, List, Optional

from media_proof.core.config import Settings
from media_proof.core.exceptions import LedgerError, MediaProofError
from media_proof.core.fingerprint import normalize_fingerprint, short
from media_proof.core.models import (
    Candidate,
    CrossLinkReport,
    DuplicateCheck,
    LiveProof,
    OwnershipToken,
    ProofRecord,
    TokenID,
)
from media_proof.core.records import parse_proof_record, same_uri
from media_proof.services.ledger import ImmutableLedger, OwnershipLedger

logger = logging.getLogger(__name__)

FINGERPRINT_TAG = "fingerprint"


def check_cross_link(live: LiveProof, data_ledger: ImmutableLedger) -> CrossLinkReport:
    """Check both directions of the record/token link."""
    record, token = live.record, live.token
    expected_uri = data_ledger.uri_for(record.ledger_ref)
    return CrossLinkReport(
        record_to_token=record.predicted_token_id == token.token_id,
        token_to_record=same_uri(token.metadata_uri, expected_uri),
        expected_uri=expected_uri,
        token_uri=token.metadata_uri,
    )


class ProofResolver:
    """Finds live proofs for a fingerprint."""

    def __init__(
        self,
        data_ledger: ImmutableLedger,
        ownership_ledger: OwnershipLedger,
        settings: Optional[Settings] = None,
    ):
        self.data_ledger = data_ledger
        self.ownership_ledger = ownership_ledger
        self.settings = settings or Settings()

    def search_proofs(self, fingerprint: str) -> List[Candidate]:
        """Tag search for proof records; best effort.

        Raises:
            InvalidFingerprint: If ``fingerprint`` is malformed
        """
        fingerprint = normalize_fingerprint(fingerprint)
        try:
            candidates = self.data_ledger.search_by_tag(
                FINGERPRINT_TAG, fingerprint, first=self.settings.search_page_size
            )
        except LedgerError as e:
            logger.warning(f"Proof search for {short(fingerprint)} degraded to no candidates: {e}")
            return []
        logger.info(f"Found {len(candidates)} candidate(s) for {short(fingerprint)}")
        return candidates

    def fetch_record(self, candidate: Candidate) -> ProofRecord:
        document = self.data_ledger.fetch_document(candidate.ledger_ref)
        owner = self.data_ledger.fetch_owner(candidate.ledger_ref)
        return parse_proof_record(candidate.ledger_ref, document, owner, fallback_timestamp=candidate.timestamp)

    def check_token_exists(self, token_id: TokenID) -> Optional[OwnershipToken]:
        """Point lookup; ``None`` means not found, which may be eventual consistency.

        Raises:
            LedgerUnavailable: If the ownership ledger cannot be reached
        """
        return self.ownership_ledger.get_token(token_id)

    def _probe(self, candidate: Candidate, fingerprint: str, issuer_filter: Optional[str]) -> Optional[LiveProof]:
        try:
            record = self.fetch_record(candidate)
            if record.fingerprint != fingerprint:
                logger.warning(f"Index false positive: {candidate.ledger_ref} is not tagged {short(fingerprint)}")
                return None
            if issuer_filter is not None and record.issuer != issuer_filter:
                logger.warning(f"Skipping {candidate.ledger_ref}: issued by another identity {record.issuer}")
                return None
            token = self.check_token_exists(record.predicted_token_id)
        except MediaProofError as e:
            logger.warning(f"Lookup for candidate {candidate.ledger_ref} failed: {e}")
            return None
        if token is None or not token.is_live:
            return None
        return LiveProof(record=record, token=token)

    def _probe_all(
        self, candidates: List[Candidate], fingerprint: str, issuer_filter: Optional[str]
    ) -> Iterator[Optional[LiveProof]]:
        if self.settings.lookup_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.lookup_workers) as pool:
                # map() yields in submission order
                yield from pool.map(lambda c: self._probe(c, fingerprint, issuer_filter), candidates)
        else:
            for candidate in candidates:
                yield self._probe(candidate, fingerprint, issuer_filter)

    def locate_live_proof(
        self,
        fingerprint: str,
        issuer_filter: Optional[str] = None,
        oldest_first: bool = False,
        candidates: Optional[Iterable[Candidate]] = None,
    ) -> Optional[LiveProof]:
        """First live proof in candidate order.

        A live proof whose token links back to its record wins over an earlier
        one that does not; a retry can re-predict the identifier an orphaned
        record already names. Without any linked proof the first live one is
        returned.

        Raises:
            InvalidFingerprint: If ``fingerprint`` is malformed
        """
        fingerprint = normalize_fingerprint(fingerprint)
        found = list(candidates) if candidates is not None else self.search_proofs(fingerprint)
        if oldest_first:
            found.sort(key=lambda c: c.timestamp)

        fallback: Optional[LiveProof] = None
        for live in self._probe_all(found, fingerprint, issuer_filter):
            if live is None:
                continue
            if check_cross_link(live, self.data_ledger).is_valid:
                return live
            if fallback is None:
                fallback = live
        return fallback


class DuplicateResolver:
    """Decides whether an issuer already holds a live proof for a fingerprint."""

    def __init__(self, resolver: ProofResolver, settings: Optional[Settings] = None):
        self.resolver = resolver
        self.settings = settings or resolver.settings

    def check(self, fingerprint: str, issuer: str) -> DuplicateCheck:
        issuer_filter = issuer if self.settings.duplicate_scope == "issuer" else None
        live = self.resolver.locate_live_proof(fingerprint, issuer_filter=issuer_filter)
        if live is None:
            return DuplicateCheck(is_duplicate=False)
        logger.info(f"Duplicate for {short(live.record.fingerprint)}: token {live.token.token_id}")
        return DuplicateCheck(
            is_duplicate=True,
            blocking_token_id=live.token.token_id,
            ledger_ref=live.record.ledger_ref,
        )


def check_duplicate(
    fingerprint: str,
    issuer: str,
    data_ledger: ImmutableLedger,
    ownership_ledger: OwnershipLedger,
    settings: Optional[Settings] = None,
) -> DuplicateCheck:
    """Duplicate check for ``(fingerprint, issuer)``."""
    resolver = ProofResolver(data_ledger, ownership_ledger, settings)
    return DuplicateResolver(resolver).check(fingerprint, issuer)
