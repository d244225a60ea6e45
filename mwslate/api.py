"""
Owner and Foreign APIs

Wire-level facades over the round driver. Slates arrive and leave as JSON
documents; every reply to a slate-carrying call is encoded at the version
the slate arrived in, so an older counterparty can read it back.

    Owner    the wallet holder's own operations (send, invoice payment,
             lock, finalize, post, cancel, queries)
    Foreign  what a counterparty may call (receive, invoice finalize,
             coinbase, message verification)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from mwslate.builder import BlockFees, InitTxArgs, IssueInvoiceTxArgs, RoundDriver
from mwslate.slate import SUPPORTED_SLATE_VERSIONS, Slate
from mwslate.transaction import Transaction
from mwslate.versions import parse_slate_versioned, serialize_slate

FOREIGN_API_VERSION = 2


class _SlateCodec:
    """Shared decode/encode at the driver's configured limits."""

    def __init__(self, driver: RoundDriver):
        self.driver = driver

    def _parse(self, doc: Dict[str, Any]) -> Tuple[Slate, int]:
        return parse_slate_versioned(doc, self.driver.config.chain.block_header_version.get())

    @staticmethod
    def _encode(slate: Slate, version: int) -> Dict[str, Any]:
        return serialize_slate(slate, version)

    def _target(self, requested: Optional[int]) -> int:
        return requested or self.driver.config.slate.target_version.get()


class OwnerAPI(_SlateCodec):

    def retrieve_outputs(
        self,
        include_spent: bool = False,
        refresh_from_node: bool = True,
        tx_id: Optional[int] = None,
    ) -> List[Any]:
        refreshed, outputs = self.driver.retrieve_outputs(include_spent, refresh_from_node, tx_id)
        return [refreshed, [{"commit": o.commit, "output": o.to_dict()} for o in outputs]]

    def retrieve_txs(
        self,
        refresh_from_node: bool = True,
        tx_id: Optional[int] = None,
        tx_slate_id: Optional[str] = None,
    ) -> List[Any]:
        refreshed, entries = self.driver.retrieve_txs(refresh_from_node, tx_id, tx_slate_id)
        return [refreshed, [e.to_dict() for e in entries]]

    def retrieve_summary_info(
        self, refresh_from_node: bool = True, minimum_confirmations: Optional[int] = None,
    ) -> List[Any]:
        refreshed, info = self.driver.retrieve_summary_info(refresh_from_node, minimum_confirmations)
        return [refreshed, info.to_dict()]

    def init_send_tx(self, args: Dict[str, Any]) -> Dict[str, Any]:
        init_args = InitTxArgs.from_dict(args)
        slate = self.driver.init_send_tx(init_args)
        return self._encode(slate, self._target(init_args.target_slate_version))

    def issue_invoice_tx(self, args: Dict[str, Any]) -> Dict[str, Any]:
        invoice_args = IssueInvoiceTxArgs.from_dict(args)
        slate = self.driver.issue_invoice_tx(invoice_args)
        return self._encode(slate, self._target(invoice_args.target_slate_version))

    def process_invoice_tx(self, slate: Dict[str, Any], args: Dict[str, Any]) -> Dict[str, Any]:
        parsed, version = self._parse(slate)
        return self._encode(self.driver.process_invoice_tx(parsed, InitTxArgs.from_dict(args)), version)

    def tx_lock_outputs(self, slate: Dict[str, Any], participant_id: int) -> None:
        parsed, _ = self._parse(slate)
        self.driver.tx_lock_outputs(parsed, participant_id)

    def sign_tx(self, slate: Dict[str, Any], participant_id: int) -> Dict[str, Any]:
        parsed, version = self._parse(slate)
        return self._encode(self.driver.sign_tx(parsed, participant_id), version)

    def finalize_tx(self, slate: Dict[str, Any]) -> Dict[str, Any]:
        parsed, version = self._parse(slate)
        return self._encode(self.driver.finalize_tx(parsed), version)

    def post_tx(self, tx: Dict[str, Any], fluff: bool = False) -> None:
        self.driver.post_tx(Transaction.from_dict(tx), fluff)

    def cancel_tx(self, tx_id: Optional[int] = None, tx_slate_id: Optional[str] = None) -> None:
        self.driver.cancel_tx(tx_id, tx_slate_id)

    def get_stored_tx(self, tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        stored = self.driver.get_stored_tx(int(tx["id"]))
        return stored.to_dict() if stored is not None else None

    def verify_slate_messages(self, slate: Dict[str, Any]) -> None:
        parsed, _ = self._parse(slate)
        self.driver.verify_slate_messages(parsed)

    def node_height(self) -> Dict[str, Any]:
        return self.driver.node_height()


class ForeignAPI(_SlateCodec):

    def check_version(self) -> Dict[str, Any]:
        return {
            "foreign_api_version": FOREIGN_API_VERSION,
            "supported_slate_versions": [f"V{v}" for v in sorted(SUPPORTED_SLATE_VERSIONS, reverse=True)],
        }

    def build_coinbase(self, block_fees: Dict[str, Any]) -> Dict[str, Any]:
        return self.driver.build_coinbase(BlockFees.from_dict(block_fees)).to_dict()

    def verify_slate_messages(self, slate: Dict[str, Any]) -> None:
        parsed, _ = self._parse(slate)
        self.driver.verify_slate_messages(parsed)

    def receive_tx(
        self,
        slate: Dict[str, Any],
        dest_acct_name: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """``dest_acct_name`` is kept for positional compatibility and ignored."""
        parsed, version = self._parse(slate)
        return self._encode(self.driver.receive_tx(parsed, message), version)

    def finalize_invoice_tx(self, slate: Dict[str, Any]) -> Dict[str, Any]:
        parsed, version = self._parse(slate)
        return self._encode(self.driver.finalize_invoice_tx(parsed), version)


