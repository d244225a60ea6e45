"""
Capability Interfaces

The round driver depends on three collaborators, each described here as a
structural Protocol. Any object with the right methods can be plugged in; no
base class is required.

    ┌──────────────────────────────────────────────┐
    │               ROUND DRIVER                   │
    └──────┬──────────────────┬─────────────────┬──┘
           ▼                  ▼                 ▼
    ┌────────────┐     ┌────────────┐    ┌────────────┐
    │  Keychain  │     │   Ledger   │    │   Store    │
    │  (blinds)  │     │  (height,  │    │ (outputs,  │
    │            │     │  broadcast)│    │ log, ctx)  │
    └────────────┘     └────────────┘    └────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, ContextManager, Dict, Iterable, List, Optional, Protocol, Tuple

from mwslate.context import ParticipantContext
from mwslate.records import Identifier, OutputData, TxLogEntry
from mwslate.secp import Commitment, OutputProof
from mwslate.transaction import Transaction


class Keychain(Protocol):
    """Key-derivation service: blinding factors for key identifiers."""

    def derive_key(self, value: int, key_id: Identifier) -> int:
        """Secret blinding factor for the output ``(value, key_id)``."""
        ...

    def commit(self, value: int, key_id: Identifier) -> Commitment:
        ...

    def create_proof(self, value: int, key_id: Identifier, commitment: Commitment) -> OutputProof:
        ...


class LedgerClient(Protocol):
    """
    Chain access. Every method raises LedgerUnavailable when the node
    cannot be reached; callers decide whether to retry.
    """

    @property
    def node_api_address(self) -> str:
        ...

    def get_chain_height(self) -> int:
        ...

    def post_tx(self, tx: Transaction, fluff: bool) -> None:
        ...

    def get_outputs_from_node(self, commits: Iterable[str]) -> Dict[str, Tuple[int, int]]:
        """Map of commitment hex → (height, mmr_index) for commitments found on chain."""
        ...


class WalletStore(Protocol):
    """
    Durable store. Writes made inside ``batch()`` are committed together or
    not at all; failures raise StoreFailure.
    """

    def batch(self) -> ContextManager[Any]:
        ...

    # outputs
    def get_output(self, commit: str) -> Optional[OutputData]:
        ...

    def iter_outputs(self) -> List[OutputData]:
        ...

    def save_output(self, output: OutputData) -> None:
        ...

    def delete_output(self, commit: str) -> None:
        ...

    def next_child(self) -> Identifier:
        ...

    # transaction log
    def next_tx_log_id(self) -> int:
        ...

    def get_tx_log_entry(self, tx_id: int) -> Optional[TxLogEntry]:
        ...

    def find_tx_log_entry(self, slate_id: str) -> Optional[TxLogEntry]:
        ...

    def tx_log_entries(self) -> List[TxLogEntry]:
        ...

    def save_tx_log_entry(self, entry: TxLogEntry) -> None:
        ...

    # participant contexts
    def get_context(self, slate_id: str, participant_id: int) -> Optional[ParticipantContext]:
        ...

    def save_context(self, context: ParticipantContext) -> None:
        ...

    def delete_context(self, slate_id: str, participant_id: int) -> None:
        ...

    def delete_contexts(self, slate_id: str) -> int:
        ...

    # finished transactions
    def store_tx(self, reference: str, tx: Transaction) -> None:
        ...

    def get_stored_tx(self, reference: str) -> Optional[Transaction]:
        ...

    # chain view
    def last_confirmed_height(self) -> int:
        ...

    def set_last_confirmed_height(self, height: int) -> None:
        ...
