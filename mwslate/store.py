"""
Wallet Stores

Implementations of the durable-store capability.

    MemoryWalletStore   in-process, used by tests and embedded callers
    FileWalletStore     same model, committed to a JSON file per batch

Records are held in serialized form so that a caller mutating a returned
object never changes stored state without an explicit save. A batch takes a
snapshot on entry; any exception inside it restores the snapshot, so a batch
is all-or-nothing.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from mwslate.context import ParticipantContext
from mwslate.errors import StoreFailure
from mwslate.observability import WalletLayer, get_logger
from mwslate.records import Identifier, OutputData, TxLogEntry
from mwslate.transaction import Transaction

logger = get_logger("store", WalletLayer.STORE)


@dataclass
class _StoreState:
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    tx_log: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    contexts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    txs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    next_child: int = 0
    next_tx_log_id: int = 0
    last_confirmed_height: int = 0


def _context_key(slate_id: str, participant_id: int) -> str:
    return f"{slate_id}:{participant_id}"


class MemoryWalletStore:
    """Store satisfying :class:`mwslate.interfaces.WalletStore`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = _StoreState()
        self._depth = 0

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    @contextmanager
    def batch(self) -> Iterator["MemoryWalletStore"]:
        """All-or-nothing unit of writes; nested batches join the outer one."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy(self._state)
            self._depth = 1
            try:
                yield self
                self._commit()
            except BaseException:
                self._state = snapshot
                raise
            finally:
                self._depth = 0

    def _commit(self) -> None:
        """Make the current state durable."""

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------

    def get_output(self, commit: str) -> Optional[OutputData]:
        with self._lock:
            data = self._state.outputs.get(commit)
            return OutputData.from_dict(data) if data is not None else None

    def iter_outputs(self) -> List[OutputData]:
        with self._lock:
            return [OutputData.from_dict(d) for d in self._state.outputs.values()]

    def save_output(self, output: OutputData) -> None:
        with self.batch():
            self._state.outputs[output.commit] = output.to_dict()

    def delete_output(self, commit: str) -> None:
        with self.batch():
            self._state.outputs.pop(commit, None)

    def next_child(self) -> Identifier:
        with self.batch():
            self._state.next_child += 1
            return Identifier(self._state.next_child)

    # -------------------------------------------------------------------------
    # Transaction log
    # -------------------------------------------------------------------------

    def next_tx_log_id(self) -> int:
        with self.batch():
            tx_id = self._state.next_tx_log_id
            self._state.next_tx_log_id += 1
            return tx_id

    def get_tx_log_entry(self, tx_id: int) -> Optional[TxLogEntry]:
        with self._lock:
            data = self._state.tx_log.get(str(tx_id))
            return TxLogEntry.from_dict(data) if data is not None else None

    def find_tx_log_entry(self, slate_id: str) -> Optional[TxLogEntry]:
        with self._lock:
            for data in self._state.tx_log.values():
                if data.get("tx_slate_id") == slate_id:
                    return TxLogEntry.from_dict(data)
            return None

    def tx_log_entries(self) -> List[TxLogEntry]:
        with self._lock:
            entries = [TxLogEntry.from_dict(d) for d in self._state.tx_log.values()]
        return sorted(entries, key=lambda e: e.id)

    def save_tx_log_entry(self, entry: TxLogEntry) -> None:
        data = entry.to_dict()
        data["state_history"] = list(entry.state_history)
        with self.batch():
            self._state.tx_log[str(entry.id)] = data

    # -------------------------------------------------------------------------
    # Participant contexts
    # -------------------------------------------------------------------------

    def get_context(self, slate_id: str, participant_id: int) -> Optional[ParticipantContext]:
        with self._lock:
            data = self._state.contexts.get(_context_key(slate_id, participant_id))
            return ParticipantContext.from_dict(data) if data is not None else None

    def save_context(self, context: ParticipantContext) -> None:
        with self.batch():
            self._state.contexts[_context_key(context.slate_id, context.participant_id)] = context.to_dict()

    def delete_context(self, slate_id: str, participant_id: int) -> None:
        with self.batch():
            self._state.contexts.pop(_context_key(slate_id, participant_id), None)

    def delete_contexts(self, slate_id: str) -> int:
        """Drop every local participant context of a negotiation."""
        prefix = f"{slate_id}:"
        with self.batch():
            keys = [k for k in self._state.contexts if k.startswith(prefix)]
            for key in keys:
                del self._state.contexts[key]
            return len(keys)

    # -------------------------------------------------------------------------
    # Finished transactions and chain view
    # -------------------------------------------------------------------------

    def store_tx(self, reference: str, tx: Transaction) -> None:
        with self.batch():
            self._state.txs[reference] = tx.to_dict()

    def get_stored_tx(self, reference: str) -> Optional[Transaction]:
        with self._lock:
            data = self._state.txs.get(reference)
            return Transaction.from_dict(data) if data is not None else None

    def last_confirmed_height(self) -> int:
        with self._lock:
            return self._state.last_confirmed_height

    def set_last_confirmed_height(self, height: int) -> None:
        with self.batch():
            self._state.last_confirmed_height = height


class FileWalletStore(MemoryWalletStore):
    """
    Memory store committed to ``<data_dir>/wallet.json`` at the end of
    every outermost batch. The file is replaced atomically.
    """

    FILENAME = "wallet.json"

    def __init__(self, data_dir: Union[str, Path]) -> None:
        super().__init__()
        self.data_dir = Path(data_dir).expanduser()
        self.path = self.data_dir / self.FILENAME
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreFailure(f"Cannot read wallet store {self.path}: {e}", path=str(self.path)) from e
        self._state = _StoreState(**raw)
        logger.info("Loaded wallet store", path=str(self.path), outputs=len(self._state.outputs))

    def _commit(self) -> None:
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(asdict(self._state), indent=2, sort_keys=True) + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreFailure(f"Cannot write wallet store {self.path}: {e}", path=str(self.path)) from e
