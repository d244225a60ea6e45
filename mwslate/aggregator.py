"""
Signature Aggregator

Stateless combination of participant signature shares into the kernel's
aggregate Schnorr signature.

    R  = Σ R_i                 (aggregate public nonce)
    P  = Σ P_i                 (aggregate public blind excess)
    e  = H(R.x ‖ P ‖ msg)
    s_i·G == ±R_i + e·P_i      (each share, sign follows R's y parity)
    s  = Σ s_i  ⇒  (R.x, s) verifies under P

Every function here is deterministic and side-effect free, so any participant
can audit a slate before trusting it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from mwslate.errors import InvalidPartialSignature
from mwslate.secp import (
    N,
    PublicKey,
    Signature,
    sign,
    sum_pubkeys,
    verify,
    verify_share,
)


@dataclass(frozen=True)
class SignatureShare:
    """One participant's public contribution to the kernel signature."""
    participant_id: int
    public_nonce: PublicKey
    public_blind_excess: PublicKey
    part_sig: Optional[Signature] = None


@dataclass(frozen=True)
class AggregateSignature:
    signature: Signature
    public_nonce: PublicKey
    public_excess: PublicKey


def aggregate_nonce(shares: Iterable[SignatureShare]) -> PublicKey:
    return sum_pubkeys(s.public_nonce for s in shares)


def aggregate_public_key(shares: Iterable[SignatureShare]) -> PublicKey:
    return sum_pubkeys(s.public_blind_excess for s in shares)


def calculate_partial_signature(
    sec_key: int,
    sec_nonce: int,
    nonce_sum: PublicKey,
    key_sum: PublicKey,
    msg: bytes,
) -> Signature:
    """Sign ``msg`` with one participant's share against the aggregate nonce and key."""
    return sign(msg, sec_key, sec_nonce, pubnonce_total=nonce_sum, pubkey_total=key_sum)


def verify_partial_signature(
    part_sig: Signature,
    public_nonce: PublicKey,
    public_blind_excess: PublicKey,
    nonce_sum: PublicKey,
    key_sum: PublicKey,
    msg: bytes,
) -> bool:
    return verify_share(part_sig, msg, public_blind_excess, public_nonce, key_sum, nonce_sum)


def verify_partial_signatures(
    shares: Sequence[SignatureShare],
    msg: bytes,
    slate_id: Optional[str] = None,
    skip: Iterable[int] = (),
) -> None:
    """
    Verify every present share against the aggregate nonce and key.

    Raises InvalidPartialSignature naming the first offending participant.
    Shares with no signature yet, or whose id is in ``skip``, are not checked.
    """
    nonce_sum = aggregate_nonce(shares)
    key_sum = aggregate_public_key(shares)
    skipped = set(skip)
    for share in shares:
        if share.part_sig is None or share.participant_id in skipped:
            continue
        if not verify_partial_signature(
            share.part_sig, share.public_nonce, share.public_blind_excess, nonce_sum, key_sum, msg
        ):
            raise InvalidPartialSignature(share.participant_id, slate_id=slate_id)


def add_signatures(part_sigs: Iterable[Signature], nonce_sum: PublicKey) -> Signature:
    """Sum partial signature scalars under the aggregate nonce."""
    total = 0
    for sig in part_sigs:
        total = (total + sig.s) % N
    return Signature(nonce_sum.x, total)  # type: ignore[arg-type]


def verify_final_signature(signature: Signature, key_sum: PublicKey, msg: bytes) -> bool:
    return verify(signature, msg, key_sum)


def aggregate(
    shares: Sequence[SignatureShare],
    msg: bytes,
    slate_id: Optional[str] = None,
) -> AggregateSignature:
    """
    Verify all shares, then combine them into the final signature.

    Every share must carry a partial signature.
    """
    missing: List[int] = [s.participant_id for s in shares if s.part_sig is None]
    if missing:
        raise InvalidPartialSignature(missing[0], slate_id=slate_id)

    verify_partial_signatures(shares, msg, slate_id=slate_id)

    nonce_sum = aggregate_nonce(shares)
    key_sum = aggregate_public_key(shares)
    signature = add_signatures((s.part_sig for s in shares), nonce_sum)  # type: ignore[misc]
    if not verify_final_signature(signature, key_sum, msg):
        # Individually valid shares always combine; reaching here means a
        # share was produced against different totals than the ones on the slate.
        raise InvalidPartialSignature(shares[0].participant_id, slate_id=slate_id)
    return AggregateSignature(signature, nonce_sum, key_sum)
