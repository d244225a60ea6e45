"""
Wallet Validation and Hardening

Input validation for untrusted slate documents, amount formatting, timestamps
and the state-machine invariant checker used by the transaction log.

Security Model:
    - Every slate received from a counterparty is untrusted until validated
    - Negotiation state transitions are checked against an explicit table

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from mwslate.errors import InvalidSlate, InvalidStateTransition

U64_MAX = 2**64 - 1


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """A single field failed validation."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise InvalidSlate naming the first offending field."""
        if not self.is_valid:
            first = self.errors[0]
            raise InvalidSlate(
                "; ".join(str(e) for e in self.errors),
                path=first.field,
            )

    def unwrap(self) -> Any:
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# TIMESTAMP UTILITIES
# =============================================================================

def utc_now_iso() -> str:
    """Current time as ISO-8601 UTC with a Z suffix, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Validators for the fields of an incoming slate document."""

    @classmethod
    def validate_u64(
        cls,
        value: Any,
        field_name: str,
        allow_numeric: bool = False,
    ) -> ValidationResult:
        """
        Validate an unsigned 64-bit quantity.

        Wire amounts are decimal strings; legacy documents may carry
        plain JSON integers, accepted when ``allow_numeric`` is set.
        """
        if isinstance(value, bool):
            return ValidationResult.failure([ValidationError(field_name, "Boolean is not an amount", value)])
        if isinstance(value, int):
            if not allow_numeric:
                return ValidationResult.failure([
                    ValidationError(field_name, "Expected decimal string", value)
                ])
            parsed = value
        elif isinstance(value, str):
            if not value.isdigit():
                return ValidationResult.failure([
                    ValidationError(field_name, "Expected non-negative decimal string", value)
                ])
            parsed = int(value)
        else:
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected decimal string, got {type(value).__name__}", value)
            ])

        if parsed > U64_MAX:
            return ValidationResult.failure([ValidationError(field_name, "Exceeds u64 range", value)])
        return ValidationResult.success(parsed)

    @classmethod
    def validate_uuid(cls, value: Any, field_name: str = "id") -> ValidationResult:
        if not isinstance(value, str):
            return ValidationResult.failure([ValidationError(field_name, "Expected UUID string", value)])
        try:
            return ValidationResult.success(uuid.UUID(value))
        except ValueError:
            return ValidationResult.failure([ValidationError(field_name, "Malformed UUID", value)])

    @classmethod
    def validate_message(cls, value: Any, field_name: str, max_length: int = 1024) -> ValidationResult:
        if value is None:
            return ValidationResult.success(None)
        if not isinstance(value, str):
            return ValidationResult.failure([ValidationError(field_name, "Expected string", value)])
        if len(value.encode("utf-8")) > max_length:
            return ValidationResult.failure([
                ValidationError(field_name, f"Too long (max {max_length} bytes)", value)
            ])
        return ValidationResult.success(value)


# =============================================================================
# AMOUNTS
# =============================================================================

NANO_PER_COIN = 1_000_000_000


def amount_from_hr_string(amount: str) -> int:
    """
    Parse a human readable coin amount ("12.423") into nano-units.

    Raises ValueError for negative values or more than 9 fractional digits.
    """
    try:
        value = Decimal(amount.strip())
    except (InvalidOperation, AttributeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if value < 0:
        raise ValueError(f"Negative amount: {amount!r}")
    nanos = value * NANO_PER_COIN
    if nanos != nanos.to_integral_value():
        raise ValueError(f"Amount has more than 9 decimal places: {amount!r}")
    result = int(nanos)
    if result > U64_MAX:
        raise ValueError(f"Amount too large: {amount!r}")
    return result


def amount_to_hr_string(amount: int, truncate: bool = False) -> str:
    """Format nano-units as a coin amount with 9 decimal places."""
    text = f"{amount // NANO_PER_COIN}.{amount % NANO_PER_COIN:09d}"
    if truncate:
        text = text.rstrip("0").rstrip(".")
    return text


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
        tx_id: Optional[int] = None,
    ) -> None:
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvalidStateTransition(current_state.value, target_state.value, tx_id=tx_id)

