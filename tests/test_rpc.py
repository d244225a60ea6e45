"""
JSON-RPC Dispatch Tests

Literal request/response fixtures from tests/fixtures are replayed against
the owner and foreign dispatchers, followed by a complete payment driven
only through the wire surface.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import json
import pathlib

import pytest

from mwslate.api import ForeignAPI, OwnerAPI
from mwslate.rpc import (
    FOREIGN_METHODS,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    OWNER_METHODS,
    PARSE_ERROR,
    RPCDispatcher,
    foreign_dispatcher,
    method_docs,
    owner_dispatcher,
)
from mwslate.schema import has_method_schema

FIXTURES_DIR = pathlib.Path(__file__).resolve().parent / "fixtures"


def load_fixture(name):
    with open(FIXTURES_DIR / f"{name}.json", "r", encoding="utf-8") as f:
        return json.load(f)


def request(method, params=None, rid=1):
    req = {"jsonrpc": "2.0", "id": rid, "method": method}
    if params is not None:
        req["params"] = params
    return req


@pytest.fixture
def owner(funded_alice):
    return owner_dispatcher(OwnerAPI(funded_alice.driver))


@pytest.fixture
def foreign(bob):
    return foreign_dispatcher(ForeignAPI(bob.driver))


def ok(response):
    assert "error" not in response, response
    assert "Ok" in response["result"], response
    return response["result"]["Ok"]


# =============================================================================
# METHOD TABLES
# =============================================================================

class TestMethodTables:
    """Every listed method has a handler and a parameter schema."""

    @pytest.mark.parametrize("name", sorted(OWNER_METHODS))
    def test_owner_method_is_wired(self, name):
        assert callable(getattr(OwnerAPI, name))
        assert has_method_schema("owner", name)

    @pytest.mark.parametrize("name", sorted(FOREIGN_METHODS))
    def test_foreign_method_is_wired(self, name):
        assert callable(getattr(ForeignAPI, name))
        assert has_method_schema("foreign", name)

    def test_method_docs(self):
        docs = {d["method"]: d for d in method_docs(OWNER_METHODS)}
        assert docs["post_tx"]["params"] == ["tx", "fluff"]


# =============================================================================
# FIXTURES
# =============================================================================

class TestFixtures:
    """Replay of literal requests."""

    def test_check_version(self, foreign):
        fx = load_fixture("foreign_check_version")
        assert foreign.handle(fx["request"]) == fx["response"]

    def test_node_height(self, owner):
        fx = load_fixture("owner_node_height")
        assert owner.handle(fx["request"]) == fx["response"]

    def test_summary_with_positional_params(self, owner):
        fx = load_fixture("owner_retrieve_summary_info")
        assert owner.handle(fx["request"]) == fx["response"]

    def test_invalid_params(self, owner):
        fx = load_fixture("owner_invalid_params")
        response = owner.handle(fx["request"])
        expected = fx["response"]["error"]
        assert response["id"] == 7
        assert response["error"]["code"] == INVALID_PARAMS == expected["code"]
        assert response["error"]["message"] == expected["message"]
        assert [e["path"] for e in response["error"]["data"]] == ["$"]
        assert "refresh_from_node" in response["error"]["data"][0]["message"]

    def test_batch(self, owner):
        fx = load_fixture("owner_batch")
        assert owner.handle(fx["request"]) == fx["response"]

    def test_init_send_tx_request(self, owner):
        fx = load_fixture("owner_init_send_tx")
        slate = ok(owner.handle(fx["request"]))
        assert slate["version_info"]["version"] == 3
        assert slate["amount"] == "6000000000"
        assert slate["fee"] == "8000000"
        assert slate["participant_data"][0]["message"] == "my message"

    def test_init_send_tx_over_raw_json(self, owner):
        fx = load_fixture("owner_init_send_tx")
        body = owner.handle_json(json.dumps(fx["request"]))
        assert json.loads(body)["result"]["Ok"]["num_participants"] == 2


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================

class TestProtocolErrors:
    """Malformed requests produce JSON-RPC error objects, not results."""

    def test_parse_error(self, owner):
        response = owner.handle('{"jsonrpc": "2.0", "method": ')
        assert response["error"]["code"] == PARSE_ERROR
        assert response["id"] is None

    @pytest.mark.parametrize("payload", [
        {"jsonrpc": "1.0", "id": 1, "method": "node_height"},
        {"jsonrpc": "2.0", "id": 1},
        {"jsonrpc": "2.0", "id": 1, "method": 5},
        "node_height",
    ])
    def test_invalid_request(self, owner, payload):
        response = owner.handle(json.dumps(payload))
        assert response["error"]["code"] == INVALID_REQUEST

    def test_empty_batch(self, owner):
        assert owner.handle([])["error"]["code"] == INVALID_REQUEST

    def test_method_not_found(self, foreign):
        response = foreign.handle(request("init_send_tx", {"args": {"amount": "1"}}))
        assert response["error"]["code"] == METHOD_NOT_FOUND

    def test_too_many_positional_params(self, owner):
        response = owner.handle(request("node_height", [1]))
        assert response["error"]["code"] == INVALID_PARAMS

    def test_params_must_be_structured(self, owner):
        response = owner.handle(request("node_height", "now"))
        assert response["error"]["code"] == INVALID_PARAMS

    def test_unknown_init_arg_rejected(self, owner):
        response = owner.handle(request("init_send_tx", {"args": {"amount": "1", "fast": True}}))
        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["data"][0]["path"] == "args"

    def test_notification_gets_no_response(self, owner):
        assert owner.handle({"jsonrpc": "2.0", "method": "node_height"}) is None
        assert owner.handle_json('{"jsonrpc": "2.0", "method": "node_height"}') == ""

    def test_unexpected_exception_is_internal_error(self):
        class Broken:
            def node_height(self):
                raise RuntimeError("disk on fire")

        dispatcher = RPCDispatcher("owner", Broken(), OWNER_METHODS)
        response = dispatcher.handle(request("node_height"))
        assert response["error"]["code"] == INTERNAL_ERROR
        assert response["error"]["data"] == "disk on fire"


# =============================================================================
# DOMAIN RESULTS
# =============================================================================

class TestDomainResults:
    """Wallet failures travel as Err results."""

    def test_insufficient_funds_is_err(self, alice):
        owner = owner_dispatcher(OwnerAPI(alice.driver))
        response = owner.handle(request("init_send_tx", {"args": {"amount": "6000000000"}}))
        err = response["result"]["Err"]
        assert err["kind"] == "InsufficientFunds"
        assert err["details"]["available"] == 0

    def test_cancel_unknown_is_err(self, owner):
        response = owner.handle(request("cancel_tx", {"tx_id": 42}))
        assert response["result"]["Err"]["kind"] == "NegotiationNotFound"

    def test_summary_defaults_to_configured_confirmations(self, owner, funded_alice):
        funded_alice.driver.config.selection.minimum_confirmations.set(5)
        _, info = ok(owner.handle(request("retrieve_summary_info", {"refresh_from_node": False})))
        assert info["minimum_confirmations"] == "5"

    def test_account_names_are_accepted(self, owner, foreign):
        args = {"amount": "6000000000", "src_acct_name": "savings"}
        slate = ok(owner.handle(request("init_send_tx", {"args": args})))
        reply = ok(foreign.handle(request("receive_tx", [slate, "savings", None])))
        assert reply["id"] == slate["id"]

    def test_unsupported_slate_version_is_err(self, owner, foreign):
        slate = ok(owner.handle(request("init_send_tx", {"args": {"amount": "6000000000"}})))
        slate["version_info"]["version"] = 9
        err = foreign.handle(request("receive_tx", {"slate": slate}))["result"]["Err"]
        assert err["kind"] == "SlateVersionMismatch"
        assert err["details"]["supported"] == [1, 2, 3]

    def test_build_coinbase(self, foreign):
        result = ok(foreign.handle(request("build_coinbase", {"block_fees": {"fees": "0", "height": "10"}})))
        assert result["output"]["features"] == "Coinbase"
        assert result["kernel"]["features"] == "Coinbase"
        assert len(result["key_id"]) == 34


# =============================================================================
# END TO END OVER THE WIRE
# =============================================================================

class TestWireFlow:
    """A payment negotiated entirely through the dispatchers."""

    def test_send_over_rpc(self, owner, foreign, ledger):
        slate = ok(owner.handle(request("init_send_tx", {"args": {"amount": "6000000000", "message": "rent"}})))
        assert ok(owner.handle(request("tx_lock_outputs", {"slate": slate, "participant_id": 0}))) is None

        received = ok(foreign.handle(request("receive_tx", [slate, None, "thanks"])))
        assert ok(foreign.handle(request("verify_slate_messages", {"slate": received}))) is None

        final = ok(owner.handle(request("finalize_tx", {"slate": received})))
        kernel = final["tx"]["body"]["kernels"][0]
        assert kernel["excess"] != "00" * 33

        assert ok(owner.handle(request("post_tx", {"tx": final["tx"], "fluff": False}))) is None
        assert len(ledger.mempool()) == 1

        refreshed, entries = ok(owner.handle(request("retrieve_txs", {"refresh_from_node": False})))
        assert refreshed is False
        sent = [e for e in entries if e["tx_slate_id"] == slate["id"]][0]
        assert sent["state"] == "posted"
        assert sent["fee"] == "8000000"

        stored = ok(owner.handle(request("get_stored_tx", {"tx": sent})))
        assert stored == final["tx"]

    def test_reply_keeps_request_version(self, owner, foreign):
        slate = ok(owner.handle(request(
            "init_send_tx", {"args": {"amount": 6000000000, "target_slate_version": 2}},
        )))
        assert slate["version_info"]["version"] == 2
        assert "ttl_cutoff_height" not in slate

        received = ok(foreign.handle(request("receive_tx", {"slate": slate})))
        assert received["version_info"]["version"] == 2
        final = ok(owner.handle(request("finalize_tx", {"slate": received})))
        assert final["version_info"]["version"] == 2

    def test_v1_counterparty(self, owner, foreign):
        slate = ok(owner.handle(request(
            "init_send_tx", {"args": {"amount": "6000000000", "target_slate_version": 1}},
        )))
        assert slate["version"] == 1
        received = ok(foreign.handle(request("receive_tx", {"slate": slate})))
        assert received["version"] == 1
        assert received["participant_data"][1]["id"] == 1

    def test_invoice_over_rpc(self, funded_alice, bob, ledger):
        payee = owner_dispatcher(OwnerAPI(bob.driver))
        payee_foreign = foreign_dispatcher(ForeignAPI(bob.driver))
        payer = owner_dispatcher(OwnerAPI(funded_alice.driver))

        invoice = ok(payee.handle(request("issue_invoice_tx", {"args": {"amount": "6000000000"}})))
        paid = ok(payer.handle(request(
            "process_invoice_tx", {"slate": invoice, "args": {"amount": "6000000000", "lock_outputs": True}},
        )))
        final = ok(payee_foreign.handle(request("finalize_invoice_tx", {"slate": paid})))
        assert ok(payee.handle(request("post_tx", {"tx": final["tx"], "fluff": True}))) is None
        assert ledger.posted[-1][1] is True

    def test_retrieve_outputs_for_one_negotiation(self, owner, funded_alice):
        slate = ok(owner.handle(request("init_send_tx", {"args": {"amount": "6000000000"}})))
        entry = funded_alice.store.find_tx_log_entry(slate["id"])
        refreshed, outputs = ok(owner.handle(request("retrieve_outputs", [False, False, entry.id])))
        assert refreshed is False
        assert [o["output"]["status"] for o in outputs] == ["Unconfirmed"]
        assert outputs[0]["commit"] == outputs[0]["output"]["commit"]
