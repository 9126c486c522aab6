# SPDX-License-Identifier: MPL-2.0
"""Tests for the HTTP ledger clients against mocked transports."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from media_proof.core.exceptions import InvalidRecord, LedgerUnavailable, LedgerWriteError, RecordNotFound
from media_proof.core.models import StoreRecord
from media_proof.services.ledger import derive_token_id
from media_proof.services.ledger.remote import DasOwnershipLedger, GatewayDataLedger, PostgrestProofStore

from conftest import FINGERPRINT

GATEWAY = "https://gateway.test"
RPC = "https://rpc.test"
STORE = "https://store.test"


def client_for(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": "media-proof", "result": result})


def rpc_error(message, code=-32000):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": "media-proof", "error": {"code": code, "message": message}})


class TestGatewayDataLedger:
    def test_search_builds_tag_query(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            edges = [
                {"node": {"id": "tx-1", "timestamp": 1_700_000_000_500}},
                {"node": {"id": "tx-2", "timestamp": 1_700_000_100_000}},
            ]
            return httpx.Response(200, json={"data": {"transactions": {"edges": edges}}})

        ledger = GatewayDataLedger(GATEWAY, client=client_for(handler))
        candidates = ledger.search_by_tag("fingerprint", FINGERPRINT, first=50)

        assert seen["url"] == f"{GATEWAY}/graphql"
        assert seen["body"]["variables"] == {"tags": [{"name": "fingerprint", "values": [FINGERPRINT]}], "first": 50}
        assert [(c.ledger_ref, c.timestamp) for c in candidates] == [("tx-1", 1_700_000_000), ("tx-2", 1_700_000_100)]

    def test_graphql_errors_are_unavailable(self):
        ledger = GatewayDataLedger(
            GATEWAY, client=client_for(lambda r: httpx.Response(200, json={"errors": [{"message": "boom"}]}))
        )
        with pytest.raises(LedgerUnavailable):
            ledger.search_by_tag("fingerprint", FINGERPRINT)

    def test_transport_errors_are_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LedgerUnavailable):
            GatewayDataLedger(GATEWAY, client=client_for(handler)).fetch_document("tx-1")

    def test_fetch_document_and_owner(self):
        def handler(request):
            if request.url.path == "/tx/tx-1":
                return httpx.Response(200, json={"id": "tx-1", "address": "issuer-identity"})
            if request.url.path == "/tx-1":
                return httpx.Response(200, json={"name": "Media Proof #1"})
            return httpx.Response(404)

        ledger = GatewayDataLedger(GATEWAY, client=client_for(handler))
        assert ledger.fetch_document("tx-1") == {"name": "Media Proof #1"}
        assert ledger.fetch_owner("tx-1") == "issuer-identity"
        with pytest.raises(RecordNotFound):
            ledger.fetch_document("tx-2")

    def test_non_json_body_is_invalid(self):
        ledger = GatewayDataLedger(GATEWAY, client=client_for(lambda r: httpx.Response(200, text="<html>")))
        with pytest.raises(InvalidRecord):
            ledger.fetch_document("tx-1")

    def test_server_errors_are_unavailable(self):
        ledger = GatewayDataLedger(GATEWAY, client=client_for(lambda r: httpx.Response(502)))
        with pytest.raises(LedgerUnavailable):
            ledger.fetch_owner("tx-1")

    def test_publish(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "tx-new"})

        ledger = GatewayDataLedger(GATEWAY, "https://upload.test/", client=client_for(handler))
        ref = ledger.publish({"name": "x"}, {"fingerprint": FINGERPRINT}, "issuer-identity")
        assert ref == "tx-new"
        assert seen["url"] == "https://upload.test/tx"
        assert seen["body"]["tags"] == [{"name": "fingerprint", "value": FINGERPRINT}]
        assert seen["body"]["owner"] == "issuer-identity"
        assert ledger.uri_for(ref) == f"{GATEWAY}/tx-new"

    def test_publish_rejections(self):
        with pytest.raises(LedgerWriteError, match="No upload endpoint"):
            GatewayDataLedger(GATEWAY).publish({}, {}, "owner")
        ledger = GatewayDataLedger(GATEWAY, "https://upload.test", client=client_for(lambda r: httpx.Response(402)))
        with pytest.raises(LedgerWriteError):
            ledger.publish({}, {}, "owner")


class TestDasOwnershipLedger:
    def test_get_token(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["method"] == "getAsset"
            return rpc_result(
                {
                    "id": body["params"]["id"],
                    "ownership": {"owner": "alice"},
                    "burnt": False,
                    "content": {"json_uri": f"{GATEWAY}/tx-1"},
                }
            )

        token = DasOwnershipLedger(RPC, "tree", client=client_for(handler)).get_token("asset-1")
        assert token.token_id == "asset-1"
        assert token.current_holder == "alice"
        assert token.metadata_uri == f"{GATEWAY}/tx-1"
        assert token.is_live

    def test_burned_token(self):
        handler = lambda r: rpc_result({"id": "a", "ownership": {"owner": "alice"}, "burnt": True, "content": {}})
        token = DasOwnershipLedger(RPC, "tree", client=client_for(handler)).get_token("a")
        assert token.burned
        assert token.current_holder is None
        assert token.last_holder == "alice"
        assert token.metadata_uri == ""

    def test_not_found_is_none(self):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_error("Asset Not Found")))
        assert ledger.get_token("missing") is None

    def test_other_rpc_errors_are_unavailable(self):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_error("Internal error", -32603)))
        with pytest.raises(LedgerUnavailable):
            ledger.get_token("a")

    def test_prediction_uses_tree_config(self):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_result({"numMinted": 7})))
        assert ledger.minted_count() == 7
        assert ledger.predict_token_id() == derive_token_id("tree", 7)
        assert ledger.last_minted_token_id() == derive_token_id("tree", 6)

    def test_submit_mint(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return rpc_result("sig-1")

        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(handler))
        assert ledger.submit_mint("uri", "alice", "Proof", "MPROOF") == "sig-1"
        assert seen["method"] == "mintToTree"
        assert seen["params"]["metadata"] == {"name": "Proof", "symbol": "MPROOF", "uri": "uri"}

    def test_submit_mint_rejected(self):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_error("insufficient funds")))
        with pytest.raises(LedgerWriteError):
            ledger.submit_mint("uri", "alice", "Proof", "MPROOF")

    def test_confirm_polls_until_confirmed(self):
        statuses = iter([None, {"confirmationStatus": "processed", "err": None}, {"confirmationStatus": "confirmed", "err": None}])
        sleeps = []

        def handler(request):
            return rpc_result({"value": [next(statuses)]})

        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(handler), sleep=sleeps.append, clock=lambda: 0.0)
        assert ledger.confirm("sig-1", timeout=60)
        assert sleeps == [1.0, 1.0]

    def test_confirm_times_out(self):
        ticks = iter([0.0, 10.0, 70.0])
        ledger = DasOwnershipLedger(
            RPC,
            "tree",
            client=client_for(lambda r: rpc_result({"value": [None]})),
            sleep=lambda s: None,
            clock=lambda: next(ticks),
        )
        assert not ledger.confirm("sig-1", timeout=60)

    def test_confirm_failed_transaction(self):
        ledger = DasOwnershipLedger(
            RPC,
            "tree",
            client=client_for(lambda r: rpc_result({"value": [{"confirmationStatus": "confirmed", "err": {"code": 1}}]})),
        )
        assert not ledger.confirm("sig-1", timeout=60)


class TestPostgrestProofStore:
    def test_find_by_fingerprint(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(
                200,
                json=[
                    {
                        "id": 1,
                        "fingerprint": FINGERPRINT,
                        "ledger_ref": "tx-1",
                        "token_id": "asset-1",
                        "owner": "alice",
                        "created_at": "2026-03-01T00:00:00+00:00",
                        "title": None,
                        "price": None,
                    }
                ],
            )

        store = PostgrestProofStore(STORE, "anon-key", client=client_for(handler))
        rows = store.find_by_fingerprint(FINGERPRINT)
        assert seen["params"] == {"select": "*", "fingerprint": f"eq.{FINGERPRINT}", "order": "created_at.asc"}
        assert seen["apikey"] == "anon-key"
        assert rows[0].id == "1"
        assert rows[0].price == 0
        assert rows[0].created_at == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_insert_and_update(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path, dict(request.url.params), json.loads(request.content)))
            if request.method == "PATCH":
                return httpx.Response(200, json=[{"id": "a"}, {"id": "b"}])
            return httpx.Response(201)

        store = PostgrestProofStore(STORE, "key", client=client_for(handler))
        store.insert(
            StoreRecord("a", FINGERPRINT, "tx-1", "asset-1", "alice", datetime(2026, 3, 1, tzinfo=timezone.utc))
        )
        assert store.update_owner("asset-1", "bob") == 2

        method, path, _, body = calls[0]
        assert (method, path) == ("POST", "/rest/v1/media_proofs")
        assert body["created_at"] == "2026-03-01T00:00:00.000Z"
        assert calls[1][2] == {"token_id": "eq.asset-1"}
        assert calls[1][3] == {"owner": "bob"}

    def test_store_unavailable(self):
        store = PostgrestProofStore(STORE, "key", client=client_for(lambda r: httpx.Response(503)))
        with pytest.raises(LedgerUnavailable):
            store.find_by_fingerprint(FINGERPRINT)


def html(request):
    return httpx.Response(200, text="<html>maintenance</html>")


class TestMalformedResponses:
    def test_search_html_body_is_unavailable(self):
        with pytest.raises(LedgerUnavailable, match="non-JSON"):
            GatewayDataLedger(GATEWAY, client=client_for(html)).search_by_tag("fingerprint", FINGERPRINT)

    @pytest.mark.parametrize(
        "payload",
        [[], {"data": None}, {"data": {"transactions": []}}, {"data": {"transactions": {"edges": "none"}}}],
    )
    def test_search_unexpected_shape_is_unavailable(self, payload):
        ledger = GatewayDataLedger(GATEWAY, client=client_for(lambda r: httpx.Response(200, json=payload)))
        with pytest.raises(LedgerUnavailable):
            ledger.search_by_tag("fingerprint", FINGERPRINT)

    def test_search_skips_malformed_edges(self):
        edges = ["junk", {"node": None}, {"node": {"id": 5}}, {"node": {"id": "tx-1", "timestamp": "soon"}}]
        ledger = GatewayDataLedger(
            GATEWAY, client=client_for(lambda r: httpx.Response(200, json={"data": {"transactions": {"edges": edges}}}))
        )
        assert [(c.ledger_ref, c.timestamp) for c in ledger.search_by_tag("fingerprint", FINGERPRINT)] == [("tx-1", 0)]

    def test_owner_html_body_is_unavailable(self):
        with pytest.raises(LedgerUnavailable):
            GatewayDataLedger(GATEWAY, client=client_for(html)).fetch_owner("tx-1")

    def test_owner_must_be_a_string(self):
        ledger = GatewayDataLedger(GATEWAY, client=client_for(lambda r: httpx.Response(200, json={"owner": 42})))
        with pytest.raises(InvalidRecord):
            ledger.fetch_owner("tx-1")

    def test_publish_html_body_is_a_write_error(self):
        ledger = GatewayDataLedger(GATEWAY, "https://upload.test", client=client_for(html))
        with pytest.raises(LedgerWriteError):
            ledger.publish({}, {}, "owner")

    @pytest.mark.parametrize("result", [None, {}, {"numMinted": None}, {"numMinted": "many"}, [7]])
    def test_tree_config_without_count_is_unavailable(self, result):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_result(result)))
        with pytest.raises(LedgerUnavailable):
            ledger.predict_token_id()

    def test_rpc_html_body_is_unavailable(self):
        with pytest.raises(LedgerUnavailable):
            DasOwnershipLedger(RPC, "tree", client=client_for(html)).minted_count()

    def test_rpc_error_without_object_is_unavailable(self):
        handler = lambda r: httpx.Response(200, json={"jsonrpc": "2.0", "error": "overloaded"})
        with pytest.raises(LedgerUnavailable):
            DasOwnershipLedger(RPC, "tree", client=client_for(handler)).get_token("a")

    @pytest.mark.parametrize("asset", [["a"], {"id": "a", "ownership": "alice"}, {"id": "a", "content": "uri"}])
    def test_malformed_asset_is_unavailable(self, asset):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_result(asset)))
        with pytest.raises(LedgerUnavailable):
            ledger.get_token("a")

    def test_mint_without_signature_is_a_write_error(self):
        ledger = DasOwnershipLedger(RPC, "tree", client=client_for(lambda r: rpc_result(None)))
        with pytest.raises(LedgerWriteError, match="no signature"):
            ledger.submit_mint("uri", "alice", "Proof", "MPROOF")

    def test_confirm_ignores_malformed_statuses(self):
        ticks = iter([0.0, 70.0])
        ledger = DasOwnershipLedger(
            RPC,
            "tree",
            client=client_for(lambda r: rpc_result({"value": ["pending"]})),
            sleep=lambda s: None,
            clock=lambda: next(ticks),
        )
        assert not ledger.confirm("sig-1", timeout=60)

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>"),
            httpx.Response(200, json={"rows": []}),
            httpx.Response(200, json=[{"id": "a", "fingerprint": FINGERPRINT}]),
            httpx.Response(200, json=["row"]),
        ],
    )
    def test_store_malformed_rows_are_unavailable(self, response):
        store = PostgrestProofStore(STORE, "key", client=client_for(lambda r: response))
        with pytest.raises(LedgerUnavailable):
            store.find_by_fingerprint(FINGERPRINT)
