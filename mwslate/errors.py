"""
Wallet Error Kinds

Every failure surfaced by the negotiation core is a WalletError carrying a
stable ``kind`` string and a ``details`` mapping that identifies the round,
participant or output that triggered it. The RPC layer reports ``kind`` and
``details`` verbatim, so the strings here are part of the wire contract.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class WalletError(Exception):
    """Base class for all negotiation, locking and boundary failures."""

    kind: str = "WalletError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# FUNDS AND LOCKING
# =============================================================================

class InsufficientFunds(WalletError):
    """No eligible output set covers amount + fee."""

    kind = "InsufficientFunds"

    def __init__(self, available: int, needed: int, **details: Any):
        super().__init__(
            f"Not enough funds: available {available}, needed {needed}",
            available=available,
            needed=needed,
            **details,
        )
        self.available = available
        self.needed = needed


class OutputConflict(WalletError):
    """An output is already locked by a different negotiation."""

    kind = "OutputConflict"

    def __init__(self, commit: str, held_by: Optional[int] = None, **details: Any):
        super().__init__(
            f"Output {commit} is already locked"
            + (f" by transaction {held_by}" if held_by is not None else ""),
            commit=commit,
            held_by=held_by,
            **details,
        )
        self.commit = commit
        self.held_by = held_by


# =============================================================================
# SLATE AND PARTICIPANTS
# =============================================================================

class ParticipantIdCollision(WalletError):
    kind = "ParticipantIdCollision"

    def __init__(self, participant_id: int, slate_id: Optional[str] = None):
        super().__init__(
            f"Participant id {participant_id} is already present",
            participant_id=participant_id,
            slate_id=slate_id,
        )
        self.participant_id = participant_id


class ParticipantCountMismatch(WalletError):
    kind = "ParticipantCountMismatch"

    def __init__(self, expected: int, actual: int, slate_id: Optional[str] = None, **details: Any):
        super().__init__(
            f"Slate has {actual} participant entries, expected {expected}",
            expected=expected,
            actual=actual,
            slate_id=slate_id,
            **details,
        )
        self.expected = expected
        self.actual = actual


class SlateVersionMismatch(WalletError):
    kind = "SlateVersionMismatch"

    def __init__(self, version: Any, supported: Iterable[int], field: str = "version", **details: Any):
        supported_list = sorted(supported)
        super().__init__(
            f"Incompatible slate {field} {version}; supported: {supported_list}",
            version=version,
            supported=supported_list,
            field=field,
            **details,
        )
        self.version = version


class InvalidSlate(WalletError):
    """Slate document is malformed or internally inconsistent."""

    kind = "InvalidSlate"

    def __init__(self, message: str, path: Optional[str] = None, **details: Any):
        super().__init__(message, path=path, **details)
        self.path = path


# =============================================================================
# CRYPTOGRAPHIC VERIFICATION
# =============================================================================

class InvalidPartialSignature(WalletError):
    kind = "InvalidPartialSignature"

    def __init__(self, participant_id: int, slate_id: Optional[str] = None):
        super().__init__(
            f"Partial signature of participant {participant_id} failed verification",
            participant_id=participant_id,
            slate_id=slate_id,
        )
        self.participant_id = participant_id


class InvalidSlateMessage(WalletError):
    """One or more participant message signatures do not verify."""

    kind = "InvalidSlateMessage"

    def __init__(self, participant_ids: List[int], slate_id: Optional[str] = None):
        ids = sorted(participant_ids)
        super().__init__(
            "Message signature invalid for participant(s) " + ", ".join(str(i) for i in ids),
            participant_ids=ids,
            slate_id=slate_id,
        )
        self.participant_ids = ids

    @property
    def participant_id(self) -> int:
        return self.participant_ids[0]


class KernelSumMismatch(WalletError):
    kind = "KernelSumMismatch"

    def __init__(self, slate_id: Optional[str] = None, **details: Any):
        super().__init__(
            "Kernel excess does not balance inputs, outputs and fee",
            slate_id=slate_id,
            **details,
        )


# =============================================================================
# NEGOTIATION LIFECYCLE
# =============================================================================

class AlreadyPosted(WalletError):
    kind = "AlreadyPosted"

    def __init__(self, tx_id: int, slate_id: Optional[str] = None):
        super().__init__(
            f"Transaction {tx_id} has already been posted",
            tx_id=tx_id,
            slate_id=slate_id,
        )


class NegotiationNotFound(WalletError):
    kind = "NegotiationNotFound"

    def __init__(self, tx_id: Optional[int] = None, slate_id: Optional[str] = None, **details: Any):
        ident = slate_id if slate_id is not None else tx_id
        super().__init__(f"No negotiation found for {ident}", tx_id=tx_id, slate_id=slate_id, **details)


class InvalidStateTransition(WalletError):
    kind = "InvalidStateTransition"

    def __init__(self, current: str, target: str, tx_id: Optional[int] = None):
        super().__init__(
            f"Invalid negotiation state transition: {current} -> {target}",
            current=current,
            target=target,
            tx_id=tx_id,
        )


# =============================================================================
# EXTERNAL BOUNDARIES
# =============================================================================

class LedgerUnavailable(WalletError):
    kind = "LedgerUnavailable"

    def __init__(self, message: str = "Ledger client unavailable", **details: Any):
        super().__init__(message, **details)


class TransactionRejected(WalletError):
    """The ledger refused a well-formed request to post a transaction."""

    kind = "TransactionRejected"

    def __init__(self, reason: str, **details: Any):
        super().__init__(f"Transaction rejected by ledger: {reason}", reason=reason, **details)
        self.reason = reason


class StoreFailure(WalletError):
    kind = "StoreFailure"

    def __init__(self, message: str = "Durable store write failed", **details: Any):
        super().__init__(message, **details)


class ConfigError(WalletError):
    kind = "ConfigError"
