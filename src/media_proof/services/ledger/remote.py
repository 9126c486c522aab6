# SPDX-License-Identifier: MPL-2.0
"""
HTTP ledger clients.

* :class:`GatewayDataLedger` - a data-ledger gateway with a GraphQL tag index
  (``/graphql``), record bodies at ``/{id}`` and record headers at
  ``/tx/{id}``.
* :class:`DasOwnershipLedger` - a JSON-RPC ownership ledger exposing
  ``getAsset`` plus a mint relay (``getTreeConfig``, ``mintToTree``) and the
  standard ``getSignatureStatuses``.
* :class:`PostgrestProofStore` - the ``media_proofs`` table behind a
  PostgREST endpoint.

Transport failures and 5xx responses raise :class:`LedgerUnavailable`.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from media_proof.core.exceptions import (
    InvalidRecord,
    LedgerUnavailable,
    LedgerWriteError,
    RecordNotFound,
)
from media_proof.core.models import Candidate, LedgerRef, OwnershipToken, StoreRecord, TokenID
from media_proof.core.records import format_timestamp, parse_timestamp, record_uri
from media_proof.services.ledger import ImmutableLedger, OwnershipLedger, ProofStore

logger = logging.getLogger(__name__)

SEARCH_QUERY = """
query ($tags: [TagFilter!], $first: Int) {
  transactions(tags: $tags, first: $first, order: ASC) {
    edges { node { id timestamp } }
  }
}
"""

CONFIRMED_STATUSES = ("confirmed", "finalized")


class HttpBackend:
    """Shared request handling."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 30.0):
        self._client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"{method} {url} failed: {e}") from e
        if response.status_code >= 500:
            raise LedgerUnavailable(f"{method} {url} returned {response.status_code}")
        return response

    def _json(self, response: httpx.Response, expected: type = dict) -> Any:
        """Decode a response body, raising :class:`LedgerUnavailable` on an unexpected shape."""
        url = response.request.url
        try:
            payload = response.json()
        except ValueError as e:
            raise LedgerUnavailable(f"{url} returned a non-JSON body") from e
        if not isinstance(payload, expected):
            raise LedgerUnavailable(f"{url} returned {type(payload).__name__}, expected {expected.__name__}")
        return payload

    def close(self) -> None:
        self._client.close()


class GatewayDataLedger(HttpBackend, ImmutableLedger):
    """Data-ledger gateway client."""

    def __init__(
        self,
        base_url: str,
        upload_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        super().__init__(client, timeout)
        self.base_url = base_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/") if upload_url else None

    def search_by_tag(self, name: str, value: str, first: int = 100) -> List[Candidate]:
        response = self._request(
            "POST",
            f"{self.base_url}/graphql",
            json={
                "query": SEARCH_QUERY,
                "variables": {"tags": [{"name": name, "values": [value]}], "first": first},
            },
        )
        if response.status_code != 200:
            raise LedgerUnavailable(f"Search returned {response.status_code}")
        payload = self._json(response)
        if payload.get("errors"):
            raise LedgerUnavailable(f"Search failed: {payload['errors']}")
        data = payload.get("data")
        transactions = data.get("transactions") if isinstance(data, dict) else None
        edges = transactions.get("edges") if isinstance(transactions, dict) else None
        if not isinstance(edges, list):
            raise LedgerUnavailable("Search response has no edge list")
        candidates = []
        for edge in edges:
            node = edge.get("node") if isinstance(edge, dict) else None
            if not isinstance(node, dict) or not isinstance(node.get("id"), str):
                continue
            try:
                # Gateway timestamps are milliseconds
                timestamp = int(node.get("timestamp") or 0) // 1000
            except (TypeError, ValueError):
                timestamp = 0
            candidates.append(Candidate(ledger_ref=node["id"], timestamp=timestamp))
        return candidates

    def _get(self, url: str, ledger_ref: LedgerRef) -> httpx.Response:
        response = self._request("GET", url)
        if response.status_code == 404:
            raise RecordNotFound(f"Record {ledger_ref} not found")
        if response.status_code != 200:
            raise LedgerUnavailable(f"GET {url} returned {response.status_code}")
        return response

    def fetch_document(self, ledger_ref: LedgerRef) -> Dict:
        response = self._get(f"{self.base_url}/{ledger_ref}", ledger_ref)
        try:
            document = response.json()
        except ValueError as e:
            raise InvalidRecord(f"Record {ledger_ref} is not JSON") from e
        if not isinstance(document, dict):
            raise InvalidRecord(f"Record {ledger_ref} is not a JSON object")
        return document

    def fetch_owner(self, ledger_ref: LedgerRef) -> str:
        header = self._json(self._get(f"{self.base_url}/tx/{ledger_ref}", ledger_ref))
        owner = header.get("address") or header.get("owner")
        if not isinstance(owner, str) or not owner:
            raise InvalidRecord(f"Record {ledger_ref} header has no owner")
        return owner

    def publish(self, document: Dict, tags: Dict[str, str], owner: str) -> LedgerRef:
        if not self.upload_url:
            raise LedgerWriteError("No upload endpoint configured")
        response = self._request(
            "POST",
            f"{self.upload_url}/tx",
            json={
                "data": document,
                "owner": owner,
                "tags": [{"name": name, "value": value} for name, value in tags.items()],
            },
        )
        if response.status_code not in (200, 201):
            raise LedgerWriteError(f"Upload rejected with {response.status_code}: {response.text}")
        try:
            ledger_ref = self._json(response).get("id")
        except LedgerUnavailable as e:
            raise LedgerWriteError(f"Upload response unreadable: {e.message}") from e
        if not isinstance(ledger_ref, str) or not ledger_ref:
            raise LedgerWriteError("Upload response has no id")
        return ledger_ref

    def uri_for(self, ledger_ref: LedgerRef) -> str:
        return record_uri(self.base_url, ledger_ref)


class RpcError(Exception):
    """A JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class DasOwnershipLedger(HttpBackend, OwnershipLedger):
    """JSON-RPC ownership ledger client."""

    def __init__(
        self,
        rpc_url: str,
        tree_address: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(client, timeout)
        self.rpc_url = rpc_url
        self.tree_address = tree_address
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def _rpc(self, method: str, params: Any) -> Any:
        response = self._request(
            "POST",
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": "media-proof", "method": method, "params": params},
        )
        if response.status_code != 200:
            raise LedgerUnavailable(f"{method} returned {response.status_code}")
        payload = self._json(response)
        error = payload.get("error")
        if error:
            if not isinstance(error, dict):
                raise RpcError(0, str(error))
            try:
                code = int(error.get("code", 0))
            except (TypeError, ValueError):
                code = 0
            raise RpcError(code, str(error.get("message", "")))
        return payload.get("result")

    def get_token(self, token_id: TokenID) -> Optional[OwnershipToken]:
        try:
            asset = self._rpc("getAsset", {"id": token_id})
        except RpcError as e:
            if "not found" in e.message.lower():
                return None
            raise LedgerUnavailable(f"getAsset failed: {e}") from e
        if not asset:
            return None
        if not isinstance(asset, dict):
            raise LedgerUnavailable(f"getAsset returned {type(asset).__name__} for {token_id}")
        ownership = asset.get("ownership") or {}
        content = asset.get("content") or {}
        if not isinstance(ownership, dict) or not isinstance(content, dict):
            raise LedgerUnavailable(f"getAsset returned a malformed asset for {token_id}")
        owner = ownership.get("owner")
        burned = bool(asset.get("burnt"))
        return OwnershipToken(
            token_id=asset.get("id", token_id),
            current_holder=None if burned else owner,
            metadata_uri=content.get("json_uri") or "",
            burned=burned,
            last_holder=owner if burned else None,
        )

    def minted_count(self) -> int:
        try:
            config = self._rpc("getTreeConfig", {"tree": self.tree_address})
        except RpcError as e:
            raise LedgerUnavailable(f"getTreeConfig failed: {e}") from e
        if not isinstance(config, dict) or "numMinted" not in config:
            raise LedgerUnavailable(f"getTreeConfig returned no numMinted for {self.tree_address}")
        try:
            return int(config["numMinted"])
        except (TypeError, ValueError) as e:
            raise LedgerUnavailable(f"getTreeConfig returned a bad numMinted: {config['numMinted']!r}") from e

    def submit_mint(self, metadata_uri: str, holder: str, name: str, symbol: str) -> str:
        try:
            signature = self._rpc(
                "mintToTree",
                {
                    "tree": self.tree_address,
                    "owner": holder,
                    "metadata": {"name": name, "symbol": symbol, "uri": metadata_uri},
                },
            )
        except RpcError as e:
            raise LedgerWriteError(f"mintToTree failed: {e}") from e
        if not isinstance(signature, str) or not signature:
            raise LedgerWriteError("mintToTree returned no signature")
        return signature

    def confirm(self, signature: str, timeout: float) -> bool:
        deadline = self._clock() + timeout
        while True:
            try:
                result = self._rpc("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
            except RpcError as e:
                raise LedgerUnavailable(f"getSignatureStatuses failed: {e}") from e
            statuses = result.get("value") if isinstance(result, dict) else None
            status = statuses[0] if isinstance(statuses, list) and statuses else None
            if isinstance(status, dict):
                if status.get("err") is not None:
                    logger.warning(f"Transaction {signature} failed: {status['err']}")
                    return False
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return True
            if self._clock() >= deadline:
                return False
            self._sleep(self.poll_interval)


class PostgrestProofStore(HttpBackend, ProofStore):
    """PostgREST client for the ``media_proofs`` table."""

    def __init__(
        self,
        url: str,
        key: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        table: str = "media_proofs",
    ):
        super().__init__(client, timeout)
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.headers = {"apikey": key, "Authorization": f"Bearer {key}"}

    def insert(self, record: StoreRecord) -> None:
        response = self._request(
            "POST",
            self.endpoint,
            json={
                "id": record.id,
                "fingerprint": record.fingerprint,
                "ledger_ref": record.ledger_ref,
                "token_id": record.token_id,
                "owner": record.owner,
                "created_at": format_timestamp(record.created_at),
                "title": record.title,
                "description": record.description,
                "price": record.price,
            },
            headers={**self.headers, "Prefer": "return=minimal"},
        )
        if response.status_code not in (200, 201, 204):
            raise LedgerWriteError(f"Store insert rejected with {response.status_code}: {response.text}")

    def find_by_fingerprint(self, fingerprint: str) -> List[StoreRecord]:
        response = self._request(
            "GET",
            self.endpoint,
            params={"select": "*", "fingerprint": f"eq.{fingerprint}", "order": "created_at.asc"},
            headers=self.headers,
        )
        if response.status_code != 200:
            raise LedgerUnavailable(f"Store query returned {response.status_code}")
        try:
            return [
                StoreRecord(
                    id=str(row["id"]),
                    fingerprint=row["fingerprint"],
                    ledger_ref=row["ledger_ref"],
                    token_id=row["token_id"],
                    owner=row.get("owner"),
                    created_at=parse_timestamp(row["created_at"]),
                    title=row.get("title"),
                    description=row.get("description"),
                    price=int(row.get("price") or 0),
                )
                for row in self._json(response, list)
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LedgerUnavailable(f"Store returned a malformed row: {e}") from e

    def update_owner(self, token_id: TokenID, owner: Optional[str]) -> int:
        response = self._request(
            "PATCH",
            self.endpoint,
            params={"token_id": f"eq.{token_id}"},
            json={"owner": owner},
            headers={**self.headers, "Prefer": "return=representation"},
        )
        if response.status_code != 200:
            raise LedgerWriteError(f"Store update rejected with {response.status_code}")
        return len(self._json(response, list))
