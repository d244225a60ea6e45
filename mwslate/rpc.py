"""
JSON-RPC 2.0 Dispatch

Explicit method tables for the owner and foreign APIs. A request is handled
in four steps:

    1. envelope check          -32700 / -32600 on malformed input
    2. method lookup           -32601 when the table has no entry
    3. params → named params   positional params are mapped by table order,
       → JSON Schema check     -32602 on any violation
    4. handler call            {"Ok": result} or {"Err": {kind, message, details}}

Domain failures are results, not protocol errors, so a caller can always
tell "the wallet refused" from "the request was malformed".

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from mwslate.api import ForeignAPI, OwnerAPI
from mwslate.errors import WalletError
from mwslate.observability import (
    WalletLayer,
    generate_correlation_id,
    get_logger,
    get_tracer,
    set_correlation_id,
)
from mwslate.schema import method_validator, validation_errors

logger = get_logger("rpc", WalletLayer.RPC)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass(frozen=True)
class RPCMethod:
    name: str
    params: Tuple[str, ...] = ()
    description: str = ""


OWNER_METHODS: Dict[str, RPCMethod] = {m.name: m for m in (
    RPCMethod("retrieve_outputs", ("include_spent", "refresh_from_node", "tx_id"), "List wallet outputs"),
    RPCMethod("retrieve_txs", ("refresh_from_node", "tx_id", "tx_slate_id"), "List transaction log entries"),
    RPCMethod("retrieve_summary_info", ("refresh_from_node", "minimum_confirmations"), "Balance summary"),
    RPCMethod("init_send_tx", ("args",), "Start a payment"),
    RPCMethod("issue_invoice_tx", ("args",), "Request a payment"),
    RPCMethod("process_invoice_tx", ("slate", "args"), "Pay an invoice"),
    RPCMethod("tx_lock_outputs", ("slate", "participant_id"), "Reserve inputs"),
    RPCMethod("sign_tx", ("slate", "participant_id"), "Second signing pass"),
    RPCMethod("finalize_tx", ("slate",), "Aggregate and build the transaction"),
    RPCMethod("post_tx", ("tx", "fluff"), "Broadcast"),
    RPCMethod("cancel_tx", ("tx_id", "tx_slate_id"), "Abandon a negotiation"),
    RPCMethod("get_stored_tx", ("tx",), "Stored transaction of a log entry"),
    RPCMethod("verify_slate_messages", ("slate",), "Check participant message signatures"),
    RPCMethod("node_height", (), "Chain height"),
)}

FOREIGN_METHODS: Dict[str, RPCMethod] = {m.name: m for m in (
    RPCMethod("check_version", (), "API and slate versions"),
    RPCMethod("build_coinbase", ("block_fees",), "Coinbase output and kernel"),
    RPCMethod("verify_slate_messages", ("slate",), "Check participant message signatures"),
    RPCMethod("receive_tx", ("slate", "dest_acct_name", "message"), "Receive a payment"),
    RPCMethod("finalize_invoice_tx", ("slate",), "Complete an issued invoice"),
)}


@dataclass
class RPCResponse:
    id: Any = None
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    jsonrpc: str = "2.0"

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "jsonrpc": self.jsonrpc}
        if self.error is not None:
            d["error"] = self.error
        else:
            d["result"] = self.result
        return d


def _error(code: int, message: str, data: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return err


class _ParamsError(Exception):
    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.data = data


@dataclass
class RPCDispatcher:
    """Routes requests for one API (``owner`` or ``foreign``) to its handler object."""
    api_name: str
    handler: Any
    methods: Dict[str, RPCMethod]
    tracer: Any = field(default_factory=get_tracer)

    def named_params(self, method: RPCMethod, params: Union[None, List[Any], Dict[str, Any]]) -> Dict[str, Any]:
        if params is None:
            return {}
        if isinstance(params, dict):
            return dict(params)
        if isinstance(params, list):
            if len(params) > len(method.params):
                raise _ParamsError(
                    f"{method.name} takes at most {len(method.params)} params, got {len(params)}",
                )
            return {name: value for name, value in zip(method.params, params)}
        raise _ParamsError("params must be an array or an object")

    def validate_params(self, method: RPCMethod, named: Dict[str, Any]) -> None:
        errors = validation_errors(method_validator(self.api_name, method.name), named)
        if errors:
            raise _ParamsError(f"Invalid params for {method.name}", errors)

    def dispatch(self, request: Any) -> Optional[RPCResponse]:
        """Handle one decoded request. Notifications (no ``id``) yield no response."""
        if not isinstance(request, dict) or request.get("jsonrpc") != "2.0" or not isinstance(
            request.get("method"), str
        ):
            rid = request.get("id") if isinstance(request, dict) else None
            return RPCResponse(id=rid, error=_error(INVALID_REQUEST, "Invalid request"))

        rid = request.get("id")
        is_notification = "id" not in request
        method = self.methods.get(request["method"])
        if method is None:
            response = RPCResponse(id=rid, error=_error(METHOD_NOT_FOUND, f"Method not found: {request['method']}"))
            return None if is_notification else response

        try:
            named = self.named_params(method, request.get("params"))
            self.validate_params(method, named)
        except _ParamsError as e:
            response = RPCResponse(id=rid, error=_error(INVALID_PARAMS, str(e), e.data))
            return None if is_notification else response

        set_correlation_id(generate_correlation_id())
        try:
            result = self.call(method, named)
        except Exception as e:
            logger.error(f"{method.name} raised", exc_info=True, error=str(e))
            response = RPCResponse(id=rid, error=_error(INTERNAL_ERROR, "Internal error", str(e)))
        else:
            response = RPCResponse(id=rid, result=result)
        return None if is_notification else response

    def call(self, method: RPCMethod, named: Dict[str, Any]) -> Dict[str, Any]:
        with self.tracer.span(f"{self.api_name}.{method.name}", WalletLayer.RPC):
            try:
                result = getattr(self.handler, method.name)(**named)
            except WalletError as e:
                logger.warning(f"{method.name} failed", kind=e.kind, error=e.message)
                return {"Err": e.to_dict()}
        return {"Ok": result}

    def handle(self, payload: Union[str, bytes, Any]) -> Any:
        """
        Handle a raw request body or an already-decoded request, including
        batches. Returns the JSON-ready response (``None`` when nothing
        should be sent back).
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                return RPCResponse(error=_error(PARSE_ERROR, "Parse error")).to_dict()

        if isinstance(payload, list):
            if not payload:
                return RPCResponse(error=_error(INVALID_REQUEST, "Empty batch")).to_dict()
            responses = [self.dispatch(item) for item in payload]
            return [r.to_dict() for r in responses if r is not None] or None

        response = self.dispatch(payload)
        return response.to_dict() if response is not None else None

    def handle_json(self, body: Union[str, bytes]) -> str:
        response = self.handle(body)
        return json.dumps(response) if response is not None else ""


def owner_dispatcher(api: OwnerAPI) -> RPCDispatcher:
    return RPCDispatcher("owner", api, OWNER_METHODS)


def foreign_dispatcher(api: ForeignAPI) -> RPCDispatcher:
    return RPCDispatcher("foreign", api, FOREIGN_METHODS)


def method_docs(methods: Dict[str, RPCMethod]) -> List[Dict[str, Any]]:
    return [
        {"method": m.name, "params": list(m.params), "description": m.description}
        for m in methods.values()
    ]

