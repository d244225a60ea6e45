"""
In-Memory Ledger

Deterministic ledger double for tests and offline use. It keeps a UTXO set,
a mempool and a block height, validates every posted transaction the way a
node would (kernel signatures, output proofs, balance law, fee, inputs
present), and only changes the UTXO set when a block is mined.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple

from mwslate.errors import LedgerUnavailable, TransactionRejected
from mwslate.observability import WalletLayer, get_logger
from mwslate.transaction import DEFAULT_BASE_FEE, Output, Transaction, TxKernel

logger = get_logger("ledger", WalletLayer.LEDGER)


class MockLedgerClient:
    """Ledger client satisfying :class:`mwslate.interfaces.LedgerClient`."""

    def __init__(
        self,
        height: int = 0,
        base_fee: int = DEFAULT_BASE_FEE,
        node_api_address: str = "mock://ledger",
    ):
        self._lock = threading.RLock()
        self._height = height
        self._base_fee = base_fee
        self._address = node_api_address
        self._utxos: Dict[str, Tuple[int, int]] = {}
        self._mempool: List[Transaction] = []
        self._pending_coinbase: List[Tuple[Output, TxKernel]] = []
        self._mmr_index = 0
        self.available = True
        self.posted: List[Tuple[Transaction, bool]] = []

    @property
    def node_api_address(self) -> str:
        return self._address

    def _check_available(self) -> None:
        if not self.available:
            raise LedgerUnavailable(f"Node at {self._address} is not reachable", address=self._address)

    # -------------------------------------------------------------------------
    # LedgerClient
    # -------------------------------------------------------------------------

    def get_chain_height(self) -> int:
        self._check_available()
        with self._lock:
            return self._height

    def post_tx(self, tx: Transaction, fluff: bool) -> None:
        self._check_available()
        with self._lock:
            problems = tx.validate(self._base_fee)
            spent_in_pool = {i.commit.hex() for pooled in self._mempool for i in pooled.body.inputs}
            for tx_input in tx.body.inputs:
                commit = tx_input.commit.hex()
                if commit not in self._utxos:
                    problems.append(f"input {commit} is not unspent")
                elif commit in spent_in_pool:
                    problems.append(f"input {commit} already spent in pool")
            if problems:
                logger.warning("Rejected transaction", problems=problems)
                raise TransactionRejected("; ".join(problems), problems=problems)

            self._mempool.append(tx)
            self.posted.append((tx, fluff))
        logger.info("Accepted transaction", fluff=fluff, inputs=len(tx.body.inputs), outputs=len(tx.body.outputs))

    def get_outputs_from_node(self, commits: Iterable[str]) -> Dict[str, Tuple[int, int]]:
        self._check_available()
        with self._lock:
            return {c: self._utxos[c] for c in commits if c in self._utxos}

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def add_coinbase(self, output: Output, kernel: TxKernel) -> None:
        """Queue a coinbase output for the next mined block."""
        if not output.verify_proof() or not kernel.verify():
            raise TransactionRejected("invalid coinbase")
        with self._lock:
            self._pending_coinbase.append((output, kernel))

    def mine_block(self, count: int = 1) -> int:
        """Mine ``count`` blocks; the first includes the mempool and pending coinbase."""
        with self._lock:
            for _ in range(count):
                self._height += 1
                for tx in self._mempool:
                    for tx_input in tx.body.inputs:
                        self._utxos.pop(tx_input.commit.hex(), None)
                    for output in tx.body.outputs:
                        self._add_utxo(output.commit.hex())
                for output, _kernel in self._pending_coinbase:
                    self._add_utxo(output.commit.hex())
                self._mempool = []
                self._pending_coinbase = []
            return self._height

    def _add_utxo(self, commit: str) -> None:
        self._mmr_index += 1
        self._utxos[commit] = (self._height, self._mmr_index)

    def is_unspent(self, commit: str) -> bool:
        with self._lock:
            return commit in self._utxos

    def mempool(self) -> List[Transaction]:
        with self._lock:
            return list(self._mempool)

    def stored_output(self, commit: str) -> Optional[Tuple[int, int]]:
        with self._lock:
            return self._utxos.get(commit)
