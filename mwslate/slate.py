"""
Slate

The shared, serializable transaction-in-progress exchanged between
negotiation participants.

Round structure (two parties, send flow):

    payer                                   payee
    ─────                                   ─────
    select inputs, change outputs
    offset, public excess + nonce  ──────►  add output
                                            public excess + nonce
                                            partial signature
                                   ◄──────
    partial signature
    aggregate, kernel, balance check
    post

Every participant entry carries only public data. Secrets stay in each
party's :class:`~mwslate.context.ParticipantContext`.

This module holds the in-memory model (always the current wire version).
Versioned wire encodings live in :mod:`mwslate.versions`.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mwslate import aggregator
from mwslate.aggregator import SignatureShare
from mwslate.context import ParticipantContext
from mwslate.errors import (
    InvalidPartialSignature,
    InvalidSlate,
    InvalidSlateMessage,
    KernelSumMismatch,
    ParticipantCountMismatch,
    ParticipantIdCollision,
)
from mwslate.hardening import Validators
from mwslate.secp import (
    N,
    PublicKey,
    Signature,
    hash_message,
    random_scalar,
    sign,
    verify,
)
from mwslate.transaction import KernelFeatures, Transaction, TransactionBody, TxKernel

CURRENT_SLATE_VERSION = 3
SUPPORTED_SLATE_VERSIONS = (1, 2, 3)
CURRENT_BLOCK_HEADER_VERSION = 1


@dataclass
class VersionInfo:
    version: int = CURRENT_SLATE_VERSION
    orig_version: int = CURRENT_SLATE_VERSION
    block_header_version: int = CURRENT_BLOCK_HEADER_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "orig_version": self.orig_version,
            "block_header_version": self.block_header_version,
        }


def _hex_field(cls: Any, value: Any, path: str, allow_none: bool = False) -> Any:
    if value is None and allow_none:
        return None
    try:
        return cls.from_hex(value)
    except (TypeError, ValueError) as e:
        raise InvalidSlate(f"Invalid {cls.__name__}: {e}", path=path) from e


# =============================================================================
# PARTICIPANT DATA
# =============================================================================

@dataclass
class ParticipantData:
    """Public record of one participant's contribution."""
    id: int
    public_blind_excess: PublicKey
    public_nonce: PublicKey
    part_sig: Optional[Signature] = None
    message: Optional[str] = None
    message_sig: Optional[Signature] = None

    @property
    def is_complete(self) -> bool:
        return self.part_sig is not None

    def share(self) -> SignatureShare:
        return SignatureShare(self.id, self.public_nonce, self.public_blind_excess, self.part_sig)

    def verify_message(self) -> bool:
        """
        A message signature must verify under the public blind excess.

        Entries with no signature have nothing to verify.
        """
        if self.message_sig is None:
            return True
        if self.message is None:
            return False
        return verify(self.message_sig, hash_message(self.message), self.public_blind_excess)

    def to_dict(self, numeric: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id if numeric else str(self.id),
            "message": self.message,
            "message_sig": self.message_sig.hex() if self.message_sig is not None else None,
            "part_sig": self.part_sig.hex() if self.part_sig is not None else None,
            "public_blind_excess": self.public_blind_excess.hex(),
            "public_nonce": self.public_nonce.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "participant_data") -> "ParticipantData":
        pid = Validators.validate_u64(data.get("id"), f"{path}.id", allow_numeric=True).unwrap()
        message = Validators.validate_message(data.get("message"), f"{path}.message").unwrap()
        return cls(
            id=pid,
            public_blind_excess=_hex_field(PublicKey, data.get("public_blind_excess"), f"{path}.public_blind_excess"),
            public_nonce=_hex_field(PublicKey, data.get("public_nonce"), f"{path}.public_nonce"),
            part_sig=_hex_field(Signature, data.get("part_sig"), f"{path}.part_sig", allow_none=True),
            message=message,
            message_sig=_hex_field(Signature, data.get("message_sig"), f"{path}.message_sig", allow_none=True),
        )


def sign_message(message: str, sec_key: int) -> Signature:
    """Single-signer signature over a participant message, keyed by its blind excess."""
    return sign(hash_message(message), sec_key, random_scalar())


# =============================================================================
# SLATE
# =============================================================================

@dataclass
class Slate:
    id: str
    num_participants: int = 2
    amount: int = 0
    fee: int = 0
    height: int = 0
    lock_height: int = 0
    ttl_cutoff_height: Optional[int] = None
    tx: Transaction = field(default_factory=Transaction.empty)
    participant_data: List[ParticipantData] = field(default_factory=list)
    version_info: VersionInfo = field(default_factory=VersionInfo)

    @classmethod
    def blank(cls, num_participants: int = 2, **kwargs: Any) -> "Slate":
        """A fresh slate with a new 128-bit id and an empty kernel."""
        if num_participants < 2:
            raise InvalidSlate("A negotiation needs at least two participants", path="num_participants")
        return cls(id=str(uuid.uuid4()), num_participants=num_participants, **kwargs)

    def copy(self) -> "Slate":
        return copy.deepcopy(self)

    # -------------------------------------------------------------------------
    # Participants
    # -------------------------------------------------------------------------

    def participant(self, participant_id: int) -> Optional[ParticipantData]:
        for pd in self.participant_data:
            if pd.id == participant_id:
                return pd
        return None

    def participant_ids(self) -> List[int]:
        return [pd.id for pd in self.participant_data]

    def add_participant(self, data: ParticipantData) -> None:
        if self.participant(data.id) is not None:
            raise ParticipantIdCollision(data.id, slate_id=self.id)
        if len(self.participant_data) >= self.num_participants:
            raise ParticipantCountMismatch(
                self.num_participants, len(self.participant_data) + 1, slate_id=self.id,
            )
        self.participant_data.append(data)

    def next_participant_id(self) -> int:
        used = set(self.participant_ids())
        candidate = 0
        while candidate in used:
            candidate += 1
        return candidate

    def shares(self) -> List[SignatureShare]:
        return [pd.share() for pd in self.participant_data]

    def pub_blind_sum(self) -> PublicKey:
        return aggregator.aggregate_public_key(self.shares())

    def check_participant_count(self) -> None:
        if len(self.participant_data) != self.num_participants:
            raise ParticipantCountMismatch(
                self.num_participants, len(self.participant_data), slate_id=self.id,
            )

    # -------------------------------------------------------------------------
    # Kernel
    # -------------------------------------------------------------------------

    def kernel_features(self) -> KernelFeatures:
        return KernelFeatures.for_lock_height(self.lock_height)

    def msg_to_sign(self) -> bytes:
        return TxKernel.empty(self.fee, self.lock_height).msg_to_sign()

    def update_kernel(self) -> None:
        """Propagate fee and lock height into the (still unsigned) kernel."""
        kernel = self.tx.kernel
        kernel.fee = self.fee
        kernel.lock_height = self.lock_height
        kernel.features = self.kernel_features()

    def generate_offset(self, context: ParticipantContext) -> None:
        """
        Choose a random transaction offset and move it out of this
        participant's secret excess, so the sum of excesses plus the offset
        stays unchanged.
        """
        offset = random_scalar()
        context.sec_key = (context.sec_key - offset) % N
        self.tx.offset = (self.tx.offset + offset) % N

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    def fill_round_1(self, context: ParticipantContext, message: Optional[str] = None) -> ParticipantData:
        """Publish this participant's public excess, public nonce and optional message."""
        Validators.validate_message(message, "message").raise_if_invalid()
        entry = ParticipantData(
            id=context.participant_id,
            public_blind_excess=context.public_blind_excess,
            public_nonce=context.public_nonce,
            message=message,
            message_sig=sign_message(message, context.sec_key) if message is not None else None,
        )
        self.add_participant(entry)
        return entry

    def fill_round_2(self, context: ParticipantContext) -> Signature:
        """
        Verify the partial signatures already present, then add this
        participant's own partial signature.
        """
        if context.slate_id != self.id:
            raise InvalidSlate(
                f"Slate id {self.id} does not match negotiation {context.slate_id}", path="id",
            )
        self.check_participant_count()
        entry = self.participant(context.participant_id)
        if entry is None:
            raise InvalidSlate(
                f"Participant {context.participant_id} has no entry on the slate",
                path="participant_data",
            )
        if entry.public_blind_excess != context.public_blind_excess or entry.public_nonce != context.public_nonce:
            raise InvalidSlate(
                f"Public data of participant {context.participant_id} was altered",
                path=f"participant_data[{context.participant_id}]",
            )

        msg = self.msg_to_sign()
        shares = self.shares()
        aggregator.verify_partial_signatures(shares, msg, slate_id=self.id, skip=[context.participant_id])
        sig = aggregator.calculate_partial_signature(
            context.sec_key,
            context.sec_nonce,
            aggregator.aggregate_nonce(shares),
            aggregator.aggregate_public_key(shares),
            msg,
        )
        if entry.part_sig is not None and entry.part_sig != sig:
            raise InvalidPartialSignature(context.participant_id, slate_id=self.id)
        entry.part_sig = sig
        return sig

    def finalize(self) -> Transaction:
        """
        Aggregate all partial signatures into the kernel and check the
        balance law. The slate is only updated once every check passes.
        """
        self.check_participant_count()
        missing = [pd.id for pd in self.participant_data if pd.part_sig is None]
        if missing:
            raise ParticipantCountMismatch(
                self.num_participants,
                self.num_participants - len(missing),
                slate_id=self.id,
                missing_part_sig=missing,
            )

        result = aggregator.aggregate(self.shares(), self.msg_to_sign(), slate_id=self.id)
        kernel = TxKernel(
            features=self.kernel_features(),
            fee=self.fee,
            lock_height=self.lock_height,
            excess=result.public_excess.to_commitment(),
            excess_sig=result.signature,
        )
        final_tx = Transaction(
            offset=self.tx.offset,
            body=TransactionBody(
                inputs=list(self.tx.body.inputs),
                outputs=list(self.tx.body.outputs),
                kernels=[kernel],
            ),
        )
        final_tx.body.sort()
        if not final_tx.verify_kernel_sums():
            raise KernelSumMismatch(
                slate_id=self.id,
                excess=kernel.excess.hex(),
                expected=final_tx.sum_commitments().hex(),
            )
        self.tx = final_tx
        return final_tx

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def invalid_message_ids(self) -> List[int]:
        return [pd.id for pd in self.participant_data if not pd.verify_message()]

    def verify_messages(self) -> None:
        """Raise InvalidSlateMessage naming every entry whose message signature fails."""
        bad = self.invalid_message_ids()
        if bad:
            raise InvalidSlateMessage(bad, slate_id=self.id)

    # -------------------------------------------------------------------------
    # Serialization (current version)
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        from mwslate.versions import serialize_slate

        return serialize_slate(self, CURRENT_SLATE_VERSION)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Slate":
        from mwslate.versions import parse_slate

        return parse_slate(data)
