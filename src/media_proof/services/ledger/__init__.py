# SPDX-License-Identifier: MPL-2.0
"""
Ledger interfaces.

Three collaborators back the proof system:

* :class:`ImmutableLedger` - append-only, tag-indexed document storage that
  holds proof records.
* :class:`OwnershipLedger` - the token ledger; tokens have a holder, a
  metadata URI and may be burned.
* :class:`ProofStore` - the mutable marketplace store that remembers which
  token was minted for which fingerprint.

Local SQLite implementations live in :mod:`.local`, HTTP clients in
:mod:`.remote`.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, TypeVar

from media_proof.core.exceptions import RecordNotFound
from media_proof.core.models import Candidate, LedgerRef, OwnershipToken, StoreRecord, TokenID

logger = logging.getLogger(__name__)

T = TypeVar("T")


def derive_token_id(tree_address: str, leaf_index: int) -> TokenID:
    """Deterministic token identifier for the ``leaf_index``-th mint into a tree."""
    if leaf_index < 0:
        raise ValueError(f"leaf index must be non-negative, got {leaf_index}")
    digest = hashlib.sha256(b"asset" + tree_address.encode("utf-8") + leaf_index.to_bytes(8, "little"))
    return digest.hexdigest()


class ImmutableLedger(ABC):
    """Append-only document ledger with tag search."""

    @abstractmethod
    def search_by_tag(self, name: str, value: str, first: int = 100) -> List[Candidate]:
        """Return up to ``first`` records tagged ``name=value``.

        Raises:
            LedgerUnavailable: If the ledger cannot be queried
        """

    @abstractmethod
    def fetch_document(self, ledger_ref: LedgerRef) -> Dict:
        """Return the parsed JSON body of a record.

        Raises:
            RecordNotFound: If no such record exists
            LedgerUnavailable: If the ledger cannot be reached
        """

    @abstractmethod
    def fetch_owner(self, ledger_ref: LedgerRef) -> str:
        """Return the identity that wrote a record."""

    @abstractmethod
    def publish(self, document: Dict, tags: Dict[str, str], owner: str) -> LedgerRef:
        """Append a signed document and return its ledger address.

        Raises:
            LedgerWriteError: If the ledger rejects the document
            LedgerUnavailable: If the ledger cannot be reached
        """

    @abstractmethod
    def uri_for(self, ledger_ref: LedgerRef) -> str:
        """URI under which the record is served, used as token metadata URI."""


class OwnershipLedger(ABC):
    """Token ledger whose identifiers are derived from a mint counter."""

    tree_address: str

    @abstractmethod
    def get_token(self, token_id: TokenID) -> Optional[OwnershipToken]:
        """Return the token, or ``None`` if it was never minted.

        Raises:
            LedgerUnavailable: If the ledger cannot be reached
        """

    @abstractmethod
    def minted_count(self) -> int:
        """Number of tokens minted into the tree so far."""

    @abstractmethod
    def submit_mint(self, metadata_uri: str, holder: str, name: str, symbol: str) -> str:
        """Submit a mint and return its transaction signature."""

    @abstractmethod
    def confirm(self, signature: str, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for ``signature`` to be confirmed."""

    def predict_token_id(self) -> TokenID:
        return derive_token_id(self.tree_address, self.minted_count())

    def last_minted_token_id(self) -> TokenID:
        count = self.minted_count()
        if count == 0:
            raise RecordNotFound(f"No tokens minted in tree {self.tree_address}")
        return derive_token_id(self.tree_address, count - 1)


class ProofStore(ABC):
    """Mutable metadata store keyed by fingerprint."""

    @abstractmethod
    def insert(self, record: StoreRecord) -> None:
        ...

    @abstractmethod
    def find_by_fingerprint(self, fingerprint: str) -> List[StoreRecord]:
        """Rows for ``fingerprint`` ordered by ``created_at`` ascending."""

    @abstractmethod
    def update_owner(self, token_id: TokenID, owner: Optional[str]) -> int:
        """Set the owner of every row for ``token_id``; returns rows changed."""


class MintLock(ABC):
    """Serialises mints per issuing identity."""

    @abstractmethod
    def with_lock(self, issuer_id: str, fn: Callable[[], T]) -> T:
        ...


class ThreadMintLock(MintLock):
    """In-process lock registry, one :class:`threading.Lock` per issuer."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, issuer_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(issuer_id, threading.Lock())

    def with_lock(self, issuer_id: str, fn: Callable[[], T]) -> T:
        with self._lock_for(issuer_id):
            return fn()


__all__ = [
    "ImmutableLedger",
    "OwnershipLedger",
    "ProofStore",
    "MintLock",
    "ThreadMintLock",
    "derive_token_id",
]
