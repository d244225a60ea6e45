"""
Wallet Records

Persistent records owned by the durable store: outputs, transaction log
entries (which also carry the negotiation state machine) and the summary
view derived from them.

Negotiation State Machine:

    CREATED ──► AWAITING_CONTRIBUTION ──► READY_TO_AGGREGATE ──► FINALIZED ──► POSTED
       │                │                        │                   │
       └────────────────┴────────────────────────┴───────────────────┴──► CANCELLED

    CREATED may skip directly to READY_TO_AGGREGATE when the responder
    produces its partial signature without a separate lock step.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from mwslate.hardening import InvariantChecker, utc_now_iso


# =============================================================================
# KEY IDENTIFIERS
# =============================================================================

@dataclass(frozen=True, order=True)
class Identifier:
    """
    17-byte key identifier: depth byte followed by four big-endian u32 path
    components. Only the third component (the child index) varies.
    """
    n_child: int

    DEPTH = 3

    def to_bytes(self) -> bytes:
        return bytes([self.DEPTH]) + b"".join(
            v.to_bytes(4, "big") for v in (0, 0, self.n_child, 0)
        )

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, text: str) -> "Identifier":
        raw = bytes.fromhex(text)
        if len(raw) != 17:
            raise ValueError(f"Identifier must be 17 bytes, got {len(raw)}")
        return cls(int.from_bytes(raw[9:13], "big"))

    def __str__(self) -> str:
        return self.hex()


# =============================================================================
# OUTPUTS
# =============================================================================

class OutputStatus(Enum):
    UNCONFIRMED = "Unconfirmed"
    UNSPENT = "Unspent"
    LOCKED = "Locked"
    SPENT = "Spent"


@dataclass
class OutputData:
    """An output owned by this wallet."""
    commit: str
    key_id: Identifier
    value: int
    status: OutputStatus = OutputStatus.UNCONFIRMED
    height: int = 0
    lock_height: int = 0
    is_coinbase: bool = False
    tx_log_entry: Optional[int] = None
    locked_by: Optional[int] = None
    status_before_lock: Optional[OutputStatus] = None

    def num_confirmations(self, current_height: int) -> int:
        if self.status == OutputStatus.UNCONFIRMED:
            return 0
        return max(current_height - self.height + 1, 0)

    def is_eligible(self, current_height: int, minimum_confirmations: int) -> bool:
        """Whether this output may be selected as an input at ``current_height``."""
        if self.status == OutputStatus.UNSPENT:
            return (
                self.lock_height <= current_height
                and self.num_confirmations(current_height) >= minimum_confirmations
            )
        if self.status == OutputStatus.UNCONFIRMED:
            return not self.is_coinbase and minimum_confirmations == 0
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commit": self.commit,
            "height": str(self.height),
            "is_coinbase": self.is_coinbase,
            "key_id": self.key_id.hex(),
            "lock_height": str(self.lock_height),
            "locked_by": self.locked_by,
            "n_child": self.key_id.n_child,
            "status": self.status.value,
            "status_before_lock": self.status_before_lock.value if self.status_before_lock else None,
            "tx_log_entry": self.tx_log_entry,
            "value": str(self.value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutputData":
        return cls(
            commit=data["commit"],
            key_id=Identifier.from_hex(data["key_id"]),
            value=int(data["value"]),
            status=OutputStatus(data["status"]),
            height=int(data.get("height", 0)),
            lock_height=int(data.get("lock_height", 0)),
            is_coinbase=bool(data.get("is_coinbase", False)),
            tx_log_entry=data.get("tx_log_entry"),
            locked_by=data.get("locked_by"),
            status_before_lock=OutputStatus(data["status_before_lock"]) if data.get("status_before_lock") else None,
        )


# =============================================================================
# TRANSACTION LOG
# =============================================================================

class TxLogEntryType(Enum):
    CONFIRMED_COINBASE = "ConfirmedCoinbase"
    TX_RECEIVED = "TxReceived"
    TX_SENT = "TxSent"
    TX_RECEIVED_CANCELLED = "TxReceivedCancelled"
    TX_SENT_CANCELLED = "TxSentCancelled"

    def cancelled(self) -> "TxLogEntryType":
        return {
            TxLogEntryType.TX_SENT: TxLogEntryType.TX_SENT_CANCELLED,
            TxLogEntryType.TX_RECEIVED: TxLogEntryType.TX_RECEIVED_CANCELLED,
        }.get(self, self)

    @property
    def is_cancelled(self) -> bool:
        return self in (TxLogEntryType.TX_SENT_CANCELLED, TxLogEntryType.TX_RECEIVED_CANCELLED)


class NegotiationState(Enum):
    CREATED = "created"
    AWAITING_CONTRIBUTION = "awaiting_contribution"
    READY_TO_AGGREGATE = "ready_to_aggregate"
    FINALIZED = "finalized"
    POSTED = "posted"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (NegotiationState.POSTED, NegotiationState.CANCELLED)


VALID_TRANSITIONS: Dict[NegotiationState, Set[NegotiationState]] = {
    NegotiationState.CREATED: {
        NegotiationState.AWAITING_CONTRIBUTION,
        NegotiationState.READY_TO_AGGREGATE,
        NegotiationState.CANCELLED,
    },
    NegotiationState.AWAITING_CONTRIBUTION: {
        NegotiationState.READY_TO_AGGREGATE,
        NegotiationState.CANCELLED,
    },
    NegotiationState.READY_TO_AGGREGATE: {
        NegotiationState.FINALIZED,
        NegotiationState.CANCELLED,
    },
    NegotiationState.FINALIZED: {
        NegotiationState.POSTED,
        NegotiationState.CANCELLED,
    },
    NegotiationState.POSTED: set(),
    NegotiationState.CANCELLED: set(),
}


@dataclass
class ParticipantMessage:
    id: int
    public_key: str
    message: Optional[str] = None
    message_sig: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "message": self.message,
            "message_sig": self.message_sig,
            "public_key": self.public_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParticipantMessage":
        return cls(
            id=int(data["id"]),
            public_key=data["public_key"],
            message=data.get("message"),
            message_sig=data.get("message_sig"),
        )


@dataclass
class TxLogEntry:
    """One entry per negotiation; also records where the negotiation stands."""
    id: int
    tx_type: TxLogEntryType
    tx_slate_id: Optional[str] = None
    state: NegotiationState = NegotiationState.CREATED
    creation_ts: str = field(default_factory=utc_now_iso)
    confirmation_ts: Optional[str] = None
    confirmed: bool = False
    amount_credited: int = 0
    amount_debited: int = 0
    num_inputs: int = 0
    num_outputs: int = 0
    fee: Optional[int] = None
    ttl_cutoff_height: Optional[int] = None
    messages: List[ParticipantMessage] = field(default_factory=list)
    stored_tx: Optional[str] = None
    state_history: List[Dict[str, str]] = field(default_factory=list)

    def transition(self, target: NegotiationState) -> None:
        InvariantChecker.check_state_transition(self.state, target, VALID_TRANSITIONS, tx_id=self.id)
        self.state_history.append({
            "from_state": self.state.value,
            "to_state": target.value,
            "timestamp": utc_now_iso(),
        })
        self.state = target

    def advance_to(self, target: NegotiationState) -> None:
        """Transition unless already at ``target``."""
        if self.state != target:
            self.transition(target)

    @property
    def is_cancelled(self) -> bool:
        return self.tx_type.is_cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_credited": str(self.amount_credited),
            "amount_debited": str(self.amount_debited),
            "confirmation_ts": self.confirmation_ts,
            "confirmed": self.confirmed,
            "creation_ts": self.creation_ts,
            "fee": str(self.fee) if self.fee is not None else None,
            "id": self.id,
            "messages": {"messages": [m.to_dict() for m in self.messages]} if self.messages else None,
            "num_inputs": self.num_inputs,
            "num_outputs": self.num_outputs,
            "state": self.state.value,
            "stored_tx": self.stored_tx,
            "ttl_cutoff_height": str(self.ttl_cutoff_height) if self.ttl_cutoff_height is not None else None,
            "tx_slate_id": self.tx_slate_id,
            "tx_type": self.tx_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TxLogEntry":
        messages = (data.get("messages") or {}).get("messages", [])
        fee = data.get("fee")
        ttl = data.get("ttl_cutoff_height")
        return cls(
            id=int(data["id"]),
            tx_type=TxLogEntryType(data["tx_type"]),
            tx_slate_id=data.get("tx_slate_id"),
            state=NegotiationState(data.get("state", NegotiationState.CREATED.value)),
            creation_ts=data.get("creation_ts") or utc_now_iso(),
            confirmation_ts=data.get("confirmation_ts"),
            confirmed=bool(data.get("confirmed", False)),
            amount_credited=int(data.get("amount_credited", 0)),
            amount_debited=int(data.get("amount_debited", 0)),
            num_inputs=int(data.get("num_inputs", 0)),
            num_outputs=int(data.get("num_outputs", 0)),
            fee=int(fee) if fee is not None else None,
            ttl_cutoff_height=int(ttl) if ttl is not None else None,
            messages=[ParticipantMessage.from_dict(m) for m in messages],
            stored_tx=data.get("stored_tx"),
            state_history=list(data.get("state_history") or []),
        )


# =============================================================================
# SUMMARY
# =============================================================================

@dataclass
class WalletInfo:
    last_confirmed_height: int
    minimum_confirmations: int
    total: int = 0
    amount_awaiting_finalization: int = 0
    amount_awaiting_confirmation: int = 0
    amount_immature: int = 0
    amount_currently_spendable: int = 0
    amount_locked: int = 0

    @classmethod
    def summarize(
        cls,
        outputs: List[OutputData],
        entries: Dict[int, TxLogEntry],
        current_height: int,
        minimum_confirmations: int,
    ) -> "WalletInfo":
        info = cls(current_height, minimum_confirmations)
        for out in outputs:
            if out.status == OutputStatus.UNSPENT:
                if out.is_coinbase and out.lock_height > current_height:
                    info.amount_immature += out.value
                elif out.num_confirmations(current_height) < minimum_confirmations:
                    info.amount_awaiting_confirmation += out.value
                else:
                    info.amount_currently_spendable += out.value
            elif out.status == OutputStatus.UNCONFIRMED and not out.is_coinbase:
                entry = entries.get(out.tx_log_entry) if out.tx_log_entry is not None else None
                if entry is not None and entry.state in (NegotiationState.FINALIZED, NegotiationState.POSTED):
                    info.amount_awaiting_confirmation += out.value
                else:
                    info.amount_awaiting_finalization += out.value
            elif out.status == OutputStatus.LOCKED:
                info.amount_locked += out.value
        info.total = (
            info.amount_awaiting_confirmation
            + info.amount_immature
            + info.amount_currently_spendable
        )
        return info

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_awaiting_confirmation": str(self.amount_awaiting_confirmation),
            "amount_awaiting_finalization": str(self.amount_awaiting_finalization),
            "amount_currently_spendable": str(self.amount_currently_spendable),
            "amount_immature": str(self.amount_immature),
            "amount_locked": str(self.amount_locked),
            "last_confirmed_height": str(self.last_confirmed_height),
            "minimum_confirmations": str(self.minimum_confirmations),
            "total": str(self.total),
        }
