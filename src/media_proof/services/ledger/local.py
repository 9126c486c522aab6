# SPDX-License-Identifier: MPL-2.0
"""
SQLite-backed ledgers.

Used by the CLI, the development server and the test suite. Each backend keeps
one connection guarded by a lock so ``:memory:`` databases survive between
calls. The data ledger is append-only: triggers reject UPDATE and DELETE.
"""

import base64
import hashlib
import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from media_proof.core.exceptions import (
    LedgerUnavailable,
    LedgerWriteError,
    RecordNotFound,
)
from media_proof.core.models import Candidate, LedgerRef, OwnershipToken, StoreRecord, TokenID
from media_proof.core.records import canonicalize, document_signed_by, format_timestamp, parse_timestamp, record_uri
from media_proof.services.ledger import ImmutableLedger, OwnershipLedger, ProofStore, derive_token_id

logger = logging.getLogger(__name__)


class SQLiteBackend:
    """Shared connection handling for the local backends."""

    SCHEMA: List[str] = []

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout = 5000")
            for stmt in self.SCHEMA:
                conn.execute(stmt)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection; SQLite errors become ledger errors."""
        with self._lock:
            try:
                yield self._conn
            except sqlite3.IntegrityError as e:
                if self._conn.in_transaction:
                    self._conn.rollback()
                raise LedgerWriteError(f"Write rejected: {e}") from e
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.rollback()
                logger.error(f"Database error: {e}")
                raise LedgerUnavailable(f"Database error: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _new_ref(seed: bytes) -> str:
    digest = hashlib.sha256(seed + uuid.uuid4().bytes).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class LocalDataLedger(SQLiteBackend, ImmutableLedger):
    """Append-only proof-record ledger with tag search."""

    SCHEMA = [
        """
        CREATE TABLE IF NOT EXISTS records (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            ledger_ref TEXT NOT NULL UNIQUE,
            owner TEXT NOT NULL,
            body TEXT NOT NULL,
            created_ms INTEGER NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS tags (
            ledger_ref TEXT NOT NULL REFERENCES records(ledger_ref),
            name TEXT NOT NULL,
            value TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_tags_name_value ON tags(name, value)",
        """
        CREATE TRIGGER IF NOT EXISTS records_no_update BEFORE UPDATE ON records
        BEGIN SELECT RAISE(ABORT, 'records are append-only'); END
        """,
        """
        CREATE TRIGGER IF NOT EXISTS records_no_delete BEFORE DELETE ON records
        BEGIN SELECT RAISE(ABORT, 'records are append-only'); END
        """,
        """
        CREATE TRIGGER IF NOT EXISTS tags_no_update BEFORE UPDATE ON tags
        BEGIN SELECT RAISE(ABORT, 'tags are append-only'); END
        """,
        """
        CREATE TRIGGER IF NOT EXISTS tags_no_delete BEFORE DELETE ON tags
        BEGIN SELECT RAISE(ABORT, 'tags are append-only'); END
        """,
    ]

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        base_uri: str = "local://data",
        clock: Callable[[], float] = time.time,
    ):
        self.base_uri = base_uri
        self.clock = clock
        super().__init__(db_path)

    def search_by_tag(self, name: str, value: str, first: int = 100) -> List[Candidate]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT r.ledger_ref, r.created_ms
                FROM records r JOIN tags t ON t.ledger_ref = r.ledger_ref
                WHERE t.name = ? AND t.value = ?
                ORDER BY r.seq ASC
                LIMIT ?
                """,
                (name, value, first),
            ).fetchall()
        return [Candidate(ledger_ref=row["ledger_ref"], timestamp=row["created_ms"] // 1000) for row in rows]

    def _row(self, ledger_ref: LedgerRef) -> sqlite3.Row:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT owner, body FROM records WHERE ledger_ref = ?", (ledger_ref,)
            ).fetchone()
        if row is None:
            raise RecordNotFound(f"Record {ledger_ref} not found")
        return row

    def fetch_document(self, ledger_ref: LedgerRef) -> Dict:
        return json.loads(self._row(ledger_ref)["body"])

    def fetch_owner(self, ledger_ref: LedgerRef) -> str:
        return self._row(ledger_ref)["owner"]

    def publish(self, document: Dict, tags: Dict[str, str], owner: str) -> LedgerRef:
        if not document_signed_by(document, owner):
            raise LedgerWriteError(f"Document is not signed by {owner}")
        body = canonicalize(document)
        ledger_ref = _new_ref(body)
        created_ms = int(self.clock() * 1000)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "INSERT INTO records (ledger_ref, owner, body, created_ms) VALUES (?, ?, ?, ?)",
                (ledger_ref, owner, body.decode("utf-8"), created_ms),
            )
            conn.executemany(
                "INSERT INTO tags (ledger_ref, name, value) VALUES (?, ?, ?)",
                [(ledger_ref, name, value) for name, value in tags.items()],
            )
            conn.execute("COMMIT")
        logger.debug(f"Published record {ledger_ref} with {len(tags)} tags")
        return ledger_ref

    def uri_for(self, ledger_ref: LedgerRef) -> str:
        return record_uri(self.base_uri, ledger_ref)


class LocalOwnershipLedger(SQLiteBackend, OwnershipLedger):
    """Token ledger; mints confirm immediately."""

    SCHEMA = [
        """
        CREATE TABLE IF NOT EXISTS tokens (
            leaf_index INTEGER PRIMARY KEY,
            token_id TEXT NOT NULL UNIQUE,
            holder TEXT,
            last_holder TEXT,
            metadata_uri TEXT NOT NULL,
            name TEXT,
            symbol TEXT,
            burned INTEGER NOT NULL DEFAULT 0,
            signature TEXT NOT NULL UNIQUE
        )
        """,
    ]

    def __init__(self, db_path: Union[str, Path] = ":memory:", tree_address: str = "local-tree"):
        self.tree_address = tree_address
        super().__init__(db_path)

    def get_token(self, token_id: TokenID) -> Optional[OwnershipToken]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT token_id, holder, last_holder, metadata_uri, burned FROM tokens WHERE token_id = ?",
                (token_id,),
            ).fetchone()
        if row is None:
            return None
        return OwnershipToken(
            token_id=row["token_id"],
            current_holder=row["holder"],
            metadata_uri=row["metadata_uri"],
            burned=bool(row["burned"]),
            last_holder=row["last_holder"],
        )

    def minted_count(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM tokens").fetchone()[0]

    def submit_mint(self, metadata_uri: str, holder: str, name: str, symbol: str) -> str:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            leaf_index = conn.execute("SELECT COUNT(*) FROM tokens").fetchone()[0]
            token_id = derive_token_id(self.tree_address, leaf_index)
            signature = _new_ref(token_id.encode("ascii"))
            conn.execute(
                """
                INSERT INTO tokens (leaf_index, token_id, holder, metadata_uri, name, symbol, signature)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (leaf_index, token_id, holder, metadata_uri, name, symbol, signature),
            )
            conn.execute("COMMIT")
        logger.debug(f"Minted leaf {leaf_index} ({token_id}) to {holder}")
        return signature

    def confirm(self, signature: str, timeout: float) -> bool:
        with self._get_connection() as conn:
            row = conn.execute("SELECT 1 FROM tokens WHERE signature = ?", (signature,)).fetchone()
        return row is not None

    def _require_live(self, token_id: TokenID) -> OwnershipToken:
        token = self.get_token(token_id)
        if token is None:
            raise RecordNotFound(f"Token {token_id} not found")
        if token.burned:
            raise LedgerWriteError(f"Token {token_id} is burned")
        return token

    def burn(self, token_id: TokenID) -> OwnershipToken:
        """Burn a token, keeping its holder as ``last_holder``."""
        token = self._require_live(token_id)
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE tokens SET burned = 1, last_holder = holder, holder = NULL WHERE token_id = ?",
                (token_id,),
            )
        logger.info(f"Burned token {token_id} held by {token.current_holder}")
        return self.get_token(token_id)

    def transfer(self, token_id: TokenID, new_holder: str) -> OwnershipToken:
        self._require_live(token_id)
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE tokens SET last_holder = holder, holder = ? WHERE token_id = ?",
                (new_holder, token_id),
            )
        return self.get_token(token_id)


class LocalProofStore(SQLiteBackend, ProofStore):
    """The ``media_proofs`` marketplace table."""

    SCHEMA = [
        """
        CREATE TABLE IF NOT EXISTS media_proofs (
            id TEXT PRIMARY KEY,
            fingerprint TEXT NOT NULL,
            ledger_ref TEXT NOT NULL,
            token_id TEXT NOT NULL,
            owner TEXT,
            created_at TEXT NOT NULL,
            title TEXT,
            description TEXT,
            price INTEGER NOT NULL DEFAULT 0
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_media_proofs_fingerprint ON media_proofs(fingerprint)",
    ]

    def insert(self, record: StoreRecord) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO media_proofs
                    (id, fingerprint, ledger_ref, token_id, owner, created_at, title, description, price)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.fingerprint,
                    record.ledger_ref,
                    record.token_id,
                    record.owner,
                    format_timestamp(record.created_at),
                    record.title,
                    record.description,
                    record.price,
                ),
            )

    def find_by_fingerprint(self, fingerprint: str) -> List[StoreRecord]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM media_proofs WHERE fingerprint = ? ORDER BY created_at ASC, rowid ASC",
                (fingerprint,),
            ).fetchall()
        return [
            StoreRecord(
                id=row["id"],
                fingerprint=row["fingerprint"],
                ledger_ref=row["ledger_ref"],
                token_id=row["token_id"],
                owner=row["owner"],
                created_at=parse_timestamp(row["created_at"]),
                title=row["title"],
                description=row["description"],
                price=row["price"],
            )
            for row in rows
        ]

    def update_owner(self, token_id: TokenID, owner: Optional[str]) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("UPDATE media_proofs SET owner = ? WHERE token_id = ?", (owner, token_id))
            return cursor.rowcount
