"""
Output Selection

Chooses which of the wallet's outputs fund an outgoing negotiation and how
the change is split.

Strategies:
    all       every eligible output (bounded by max_outputs)
    smallest  ascending by value until amount + fee is covered

When more than ``max_outputs`` outputs are eligible, only the largest
``max_outputs`` are considered. The fee depends on the number of inputs, so
it is recomputed for every candidate set.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from mwslate.errors import InsufficientFunds
from mwslate.records import OutputData
from mwslate.transaction import DEFAULT_BASE_FEE, tx_fee

STRATEGIES = ("all", "smallest")


@dataclass
class SelectionResult:
    amount: int
    fee: int
    inputs: List[OutputData] = field(default_factory=list)
    change_amounts: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(o.value for o in self.inputs)

    @property
    def change(self) -> int:
        return sum(self.change_amounts)


def eligible_outputs(
    outputs: Sequence[OutputData],
    current_height: int,
    minimum_confirmations: int,
) -> List[OutputData]:
    """Spendable outputs at ``current_height``, ascending by value."""
    eligible = [o for o in outputs if o.is_eligible(current_height, minimum_confirmations)]
    return sorted(eligible, key=lambda o: (o.value, o.commit))


def _select_from(amount: int, use_all: bool, candidates: List[OutputData]) -> Optional[List[OutputData]]:
    if sum(o.value for o in candidates) < amount:
        return None
    if use_all:
        return list(candidates)
    selected: List[OutputData] = []
    total = 0
    for candidate in candidates:
        selected.append(candidate)
        total += candidate.value
        if total >= amount:
            break
    return selected


def split_change(change: int, num_change_outputs: int) -> List[int]:
    """Even split with the remainder on the last output; empty when there is no change."""
    if change <= 0:
        return []
    parts = max(min(num_change_outputs, change), 1)
    each = change // parts
    return [each] * (parts - 1) + [change - each * (parts - 1)]


def select_coins(
    outputs: Sequence[OutputData],
    amount: int,
    current_height: int,
    minimum_confirmations: int,
    max_outputs: int,
    num_change_outputs: int = 1,
    strategy: str = "all",
    base_fee: int = DEFAULT_BASE_FEE,
    num_recipient_outputs: int = 1,
) -> SelectionResult:
    """
    Select inputs covering ``amount`` plus the fee of the resulting transaction.

    ``num_recipient_outputs`` counts the outputs other participants will add,
    so the fee already reflects the assembled transaction's weight.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown selection strategy {strategy!r}; expected one of {STRATEGIES}")

    candidates = eligible_outputs(outputs, current_height, minimum_confirmations)
    if len(candidates) > max_outputs:
        candidates = candidates[-max_outputs:]
    available = sum(o.value for o in candidates)

    num_outputs = num_recipient_outputs + num_change_outputs
    fee = tx_fee(1, num_outputs, 1, base_fee)
    selected: List[OutputData] = []
    for _ in range(len(candidates) + 1):
        needed = amount + fee
        found = _select_from(needed, strategy == "all", candidates)
        if found is None:
            raise InsufficientFunds(available, needed)
        selected = found
        new_fee = tx_fee(len(selected), num_outputs, 1, base_fee)
        if sum(o.value for o in selected) >= amount + new_fee:
            fee = new_fee
            break
        fee = new_fee
    else:
        raise InsufficientFunds(available, amount + fee)

    total = sum(o.value for o in selected)
    return SelectionResult(
        amount=amount,
        fee=fee,
        inputs=selected,
        change_amounts=split_change(total - amount - fee, num_change_outputs),
    )
