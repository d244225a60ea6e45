"""
Participant Context

One party's private state for a single negotiation: its secret blind excess,
its secret nonce, and the inputs and outputs it contributed. The context is
created when the party first touches a slate, persisted between rounds, and
deleted once the party has produced its final signature or cancelled.

Secrets never leave this object except as public keys.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from mwslate.records import Identifier
from mwslate.secp import PublicKey, pubkey_from_secret, random_scalar, scalar_from_bytes, scalar_to_bytes


class ParticipantRole(Enum):
    """Who moves value: the payer funds the transaction, the payee receives."""
    PAYER = "payer"
    PAYEE = "payee"


@dataclass
class ParticipantContext:
    slate_id: str
    participant_id: int
    role: ParticipantRole
    sec_key: int
    sec_nonce: int
    is_invoice: bool = False
    tx_log_id: Optional[int] = None
    fee: int = 0
    amount: int = 0
    input_ids: List[Tuple[Identifier, int]] = field(default_factory=list)
    output_ids: List[Tuple[Identifier, int]] = field(default_factory=list)
    input_commits: List[str] = field(default_factory=list)
    output_commits: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def create(
        cls,
        slate_id: str,
        participant_id: int,
        role: ParticipantRole,
        sec_key: int,
        **kwargs: Any,
    ) -> "ParticipantContext":
        """New context with a fresh secret nonce."""
        return cls(
            slate_id=slate_id,
            participant_id=participant_id,
            role=role,
            sec_key=sec_key,
            sec_nonce=random_scalar(),
            **kwargs,
        )

    @property
    def public_blind_excess(self) -> PublicKey:
        return pubkey_from_secret(self.sec_key)

    @property
    def public_nonce(self) -> PublicKey:
        return pubkey_from_secret(self.sec_nonce)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slate_id": self.slate_id,
            "participant_id": self.participant_id,
            "role": self.role.value,
            "sec_key": scalar_to_bytes(self.sec_key).hex(),
            "sec_nonce": scalar_to_bytes(self.sec_nonce).hex(),
            "is_invoice": self.is_invoice,
            "tx_log_id": self.tx_log_id,
            "fee": self.fee,
            "amount": self.amount,
            "input_ids": [[k.hex(), v] for k, v in self.input_ids],
            "output_ids": [[k.hex(), v] for k, v in self.output_ids],
            "input_commits": list(self.input_commits),
            "output_commits": list(self.output_commits),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParticipantContext":
        return cls(
            slate_id=data["slate_id"],
            participant_id=int(data["participant_id"]),
            role=ParticipantRole(data["role"]),
            sec_key=scalar_from_bytes(bytes.fromhex(data["sec_key"])),
            sec_nonce=scalar_from_bytes(bytes.fromhex(data["sec_nonce"])),
            is_invoice=bool(data.get("is_invoice", False)),
            tx_log_id=data.get("tx_log_id"),
            fee=int(data.get("fee", 0)),
            amount=int(data.get("amount", 0)),
            input_ids=[(Identifier.from_hex(k), int(v)) for k, v in data.get("input_ids", [])],
            output_ids=[(Identifier.from_hex(k), int(v)) for k, v in data.get("output_ids", [])],
            input_commits=list(data.get("input_commits", [])),
            output_commits=list(data.get("output_commits", [])),
            message=data.get("message"),
        )

    def __repr__(self) -> str:
        return (
            f"ParticipantContext(slate_id={self.slate_id!r}, participant_id={self.participant_id}, "
            f"role={self.role.value}, inputs={len(self.input_ids)}, outputs={len(self.output_ids)})"
        )
