"""
Output Locker

Binds "which outputs are earmarked for which negotiation" to the
negotiation's transaction log entry.

Guarantees:
    - At most one negotiation holds a lock on an output at any time
    - Locking is idempotent per negotiation
    - Every write happens inside one store batch, so a failure leaves the
      previously committed state untouched

``critical_section()`` is the single scoped acquisition under which the
round driver selects candidate outputs and writes their locks. It is
released on every exit path.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from mwslate.errors import NegotiationNotFound, OutputConflict
from mwslate.hardening import utc_now_iso
from mwslate.interfaces import WalletStore
from mwslate.observability import AuditLogger, WalletLayer, get_logger
from mwslate.records import OutputData, OutputStatus, TxLogEntry

logger = get_logger("locker", WalletLayer.LOCKER)


class OutputLocker:

    def __init__(self, store: WalletStore, audit: Optional[AuditLogger] = None):
        self._store = store
        self._lock = threading.RLock()
        self.audit = audit or AuditLogger()

    @contextmanager
    def critical_section(self) -> Iterator[WalletStore]:
        """Exclusive access to selection and locking, committed as one batch."""
        with self._lock:
            with self._store.batch():
                yield self._store

    def _entry(self, tx_log_id: int) -> TxLogEntry:
        entry = self._store.get_tx_log_entry(tx_log_id)
        if entry is None:
            raise NegotiationNotFound(tx_id=tx_log_id)
        return entry

    # -------------------------------------------------------------------------
    # Locks
    # -------------------------------------------------------------------------

    def lock(self, tx_log_id: int, commits: Iterable[str]) -> List[OutputData]:
        """
        Reserve ``commits`` for negotiation ``tx_log_id``.

        Outputs already held by the same negotiation are left alone; an output
        held by another negotiation (or already spent) raises OutputConflict
        before anything is written. Returns the outputs newly locked.
        """
        commits = list(commits)
        with self.critical_section() as store:
            entry = self._entry(tx_log_id)
            to_lock: List[OutputData] = []
            for commit in commits:
                output = store.get_output(commit)
                if output is None:
                    raise OutputConflict(commit, reason="unknown output", tx_id=tx_log_id)
                if output.status == OutputStatus.LOCKED:
                    if output.locked_by == tx_log_id:
                        continue
                    raise OutputConflict(commit, held_by=output.locked_by, tx_id=tx_log_id)
                if output.status == OutputStatus.SPENT:
                    raise OutputConflict(commit, reason="spent", tx_id=tx_log_id)
                to_lock.append(output)

            for output in to_lock:
                output.status_before_lock = output.status
                output.status = OutputStatus.LOCKED
                output.locked_by = tx_log_id
                store.save_output(output)

        self.audit.log(
            "lock",
            tx_log_id,
            entry.tx_slate_id,
            outcome="success" if to_lock else "noop",
            outputs=[o.commit for o in to_lock],
        )
        return to_lock

    def locked_outputs(self, tx_log_id: Optional[int] = None) -> List[OutputData]:
        return [
            o for o in self._store.iter_outputs()
            if o.status == OutputStatus.LOCKED and (tx_log_id is None or o.locked_by == tx_log_id)
        ]

    def release(self, tx_log_id: int) -> List[str]:
        """Return every output locked by ``tx_log_id`` to the status it had when locked."""
        with self.critical_section() as store:
            entry = self._entry(tx_log_id)
            released = []
            for output in self.locked_outputs(tx_log_id):
                output.status = output.status_before_lock or OutputStatus.UNSPENT
                output.status_before_lock = None
                output.locked_by = None
                store.save_output(output)
                released.append(output.commit)

        self.audit.log("release", tx_log_id, entry.tx_slate_id, outputs=released)
        return released

    def delete_unconfirmed(self, tx_log_id: int) -> List[str]:
        """Drop the not-yet-confirmed outputs created by ``tx_log_id``."""
        with self.critical_section() as store:
            removed = []
            for output in store.iter_outputs():
                if output.tx_log_entry == tx_log_id and output.status == OutputStatus.UNCONFIRMED:
                    store.delete_output(output.commit)
                    removed.append(output.commit)
        return removed

    # -------------------------------------------------------------------------
    # Chain events
    # -------------------------------------------------------------------------

    def mark_confirmed(self, tx_log_id: int, height: int) -> TxLogEntry:
        """
        Record that negotiation ``tx_log_id`` confirmed at ``height``: its new
        outputs become Unspent and the inputs it locked become Spent.
        """
        with self.critical_section() as store:
            entry = self._entry(tx_log_id)
            for output in store.iter_outputs():
                if output.tx_log_entry == tx_log_id and output.status == OutputStatus.UNCONFIRMED:
                    output.status = OutputStatus.UNSPENT
                    output.height = height
                    store.save_output(output)
                elif (
                    output.tx_log_entry == tx_log_id
                    and output.status == OutputStatus.LOCKED
                    and output.status_before_lock == OutputStatus.UNCONFIRMED
                ):
                    output.status_before_lock = OutputStatus.UNSPENT
                    output.height = height
                    store.save_output(output)
                elif output.locked_by == tx_log_id and output.status == OutputStatus.LOCKED:
                    output.status = OutputStatus.SPENT
                    store.save_output(output)
            if not entry.confirmed:
                entry.confirmed = True
                entry.confirmation_ts = utc_now_iso()
                store.save_tx_log_entry(entry)

        self.audit.log("confirm", tx_log_id, entry.tx_slate_id, height=height)
        logger.info("Negotiation confirmed", tx_id=tx_log_id, height=height)
        return entry

    def mark_spent(self, commits: Iterable[str]) -> List[str]:
        with self.critical_section() as store:
            spent = []
            for commit in commits:
                output = store.get_output(commit)
                if output is not None and output.status != OutputStatus.SPENT:
                    output.status = OutputStatus.SPENT
                    store.save_output(output)
                    spent.append(commit)
        return spent
