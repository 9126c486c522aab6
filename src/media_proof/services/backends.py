# SPDX-License-Identifier: MPL-2.0
"""Backend wiring from :class:`Settings`."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey
from media_proof.services.ledger import ImmutableLedger, MintLock, OwnershipLedger, ProofStore, ThreadMintLock
from media_proof.services.ledger.local import LocalDataLedger, LocalOwnershipLedger, LocalProofStore
from media_proof.services.ledger.remote import DasOwnershipLedger, GatewayDataLedger, PostgrestProofStore

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    """The collaborators every service needs."""

    data_ledger: ImmutableLedger
    ownership_ledger: OwnershipLedger
    store: ProofStore
    lock: MintLock = field(default_factory=ThreadMintLock)


def build_backends(settings: Settings) -> Backends:
    """Remote clients where URLs are configured, SQLite otherwise."""
    if settings.data_ledger_upload_url:
        data_ledger = GatewayDataLedger(
            settings.data_ledger_url, settings.data_ledger_upload_url, timeout=settings.request_timeout
        )
    else:
        data_ledger = LocalDataLedger(settings.local_db)

    if settings.ownership_rpc_url:
        ownership_ledger = DasOwnershipLedger(
            settings.ownership_rpc_url, settings.tree_address, timeout=settings.request_timeout
        )
    else:
        ownership_ledger = LocalOwnershipLedger(settings.local_db, settings.tree_address)

    if settings.store_url and settings.store_key:
        store = PostgrestProofStore(settings.store_url, settings.store_key, timeout=settings.request_timeout)
    else:
        store = LocalProofStore(settings.local_db)

    logger.info(
        f"Backends: data={type(data_ledger).__name__} "
        f"ownership={type(ownership_ledger).__name__} store={type(store).__name__}"
    )
    return Backends(data_ledger=data_ledger, ownership_ledger=ownership_ledger, store=store)


def load_issuer_key(settings: Settings, key: Optional[IssuerKey] = None) -> IssuerKey:
    """The configured issuing key, or a fresh ephemeral one."""
    if key is not None:
        return key
    if settings.issuer_key_path:
        return IssuerKey.load(settings.issuer_key_path)
    logger.warning("No issuer key configured; using an ephemeral key")
    return IssuerKey.generate()
