"""
Value Arithmetic over secp256k1

Commitment and blinding-factor algebra used by every other wallet component.
Secret scalars are plain ints modulo the group order; public points are small
immutable value objects that serialize to 33 bytes.

    commit(v, r)  =  r·G + v·H

    Σ outputs − Σ inputs + fee·H  =  excess + offset·G     (balance law)

The second generator H is derived by hashing a fixed tag onto the curve, so
nobody knows log_G(H). Point arithmetic delegates to ``ecdsa``'s Jacobian
implementation; this module only adds the encodings and the Schnorr
conventions shared by the aggregator and the slate:

    signature  = r.x (32 bytes) ‖ s (32 bytes), nonce point with even y
    challenge  = SHA256(r.x ‖ P_compressed ‖ msg) mod N

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from typing import ClassVar, Iterable, Optional, Tuple, Type, TypeVar

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi

CURVE = SECP256k1.curve
N: int = SECP256k1.order
FIELD_P: int = CURVE.p()
_G = SECP256k1.generator

POINT_BYTES = 33
SCALAR_BYTES = 32

_Affine = Optional[Tuple[int, int]]
P_ = TypeVar("P_", bound="CurvePoint")


# =============================================================================
# RAW POINT HELPERS
# =============================================================================

def _lift_y(x: int) -> Optional[int]:
    """Even y for the given x, or None if x is not on the curve."""
    if not 0 <= x < FIELD_P:
        return None
    rhs = (pow(x, 3, FIELD_P) + CURVE.a() * x + CURVE.b()) % FIELD_P
    y = pow(rhs, (FIELD_P + 1) // 4, FIELD_P)
    if (y * y) % FIELD_P != rhs:
        return None
    return y if y % 2 == 0 else FIELD_P - y


def _jacobi(xy: Tuple[int, int]) -> PointJacobi:
    return PointJacobi(CURVE, xy[0], xy[1], 1, N)


def _affine(point) -> _Affine:
    if point is INFINITY or point == INFINITY:
        return None
    return point.x(), point.y()


def _add(a: _Affine, b: _Affine) -> _Affine:
    if a is None:
        return b
    if b is None:
        return a
    return _affine(_jacobi(a) + _jacobi(b))


def _mul(a: _Affine, k: int) -> _Affine:
    k %= N
    if a is None or k == 0:
        return None
    return _affine(_jacobi(a) * k)


def _derive_generator_h() -> Tuple[int, int]:
    counter = 0
    while True:
        digest = hashlib.sha256(b"mwslate/generator/H" + counter.to_bytes(4, "big")).digest()
        x = int.from_bytes(digest, "big")
        y = _lift_y(x)
        if y is not None:
            return x, y
        counter += 1


_G_XY: Tuple[int, int] = (_G.x(), _G.y())
_H_XY: Tuple[int, int] = _derive_generator_h()


# =============================================================================
# PUBLIC POINT TYPES
# =============================================================================

@dataclass(frozen=True)
class CurvePoint:
    """
    Affine curve point; ``x is None`` encodes the point at infinity.

    Subclasses differ only in their serialization prefix.
    """
    x: Optional[int] = None
    y: Optional[int] = None

    PREFIX_EVEN: ClassVar[int] = 0x02

    @property
    def xy(self) -> _Affine:
        if self.x is None:
            return None
        return self.x, self.y  # type: ignore[return-value]

    @property
    def is_infinity(self) -> bool:
        return self.x is None

    @classmethod
    def infinity(cls: Type[P_]) -> P_:
        return cls()

    @classmethod
    def _wrap(cls: Type[P_], xy: _Affine) -> P_:
        if xy is None:
            return cls()
        return cls(xy[0], xy[1])

    def __add__(self: P_, other: "CurvePoint") -> P_:
        if not isinstance(other, CurvePoint):
            return NotImplemented
        return self._wrap(_add(self.xy, other.xy))

    def __neg__(self: P_) -> P_:
        if self.is_infinity:
            return self
        return type(self)(self.x, (-self.y) % FIELD_P)  # type: ignore[operator]

    def __sub__(self: P_, other: "CurvePoint") -> P_:
        if not isinstance(other, CurvePoint):
            return NotImplemented
        return self + (-other)

    def mul(self: P_, scalar: int) -> P_:
        return self._wrap(_mul(self.xy, scalar))

    @property
    def has_even_y(self) -> bool:
        return not self.is_infinity and self.y % 2 == 0  # type: ignore[operator]

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        if self.is_infinity:
            return bytes(POINT_BYTES)
        prefix = self.PREFIX_EVEN + (self.y & 1)  # type: ignore[operator]
        return bytes([prefix]) + self.x.to_bytes(SCALAR_BYTES, "big")  # type: ignore[union-attr]

    @classmethod
    def from_bytes(cls: Type[P_], data: bytes) -> P_:
        if len(data) != POINT_BYTES:
            raise ValueError(f"{cls.__name__} must be {POINT_BYTES} bytes, got {len(data)}")
        if data == bytes(POINT_BYTES):
            return cls()
        prefix = data[0]
        if prefix not in (cls.PREFIX_EVEN, cls.PREFIX_EVEN + 1):
            raise ValueError(f"Invalid {cls.__name__} prefix 0x{prefix:02x}")
        x = int.from_bytes(data[1:], "big")
        y = _lift_y(x)
        if y is None:
            raise ValueError(f"{cls.__name__} x coordinate is not on the curve")
        if (y & 1) != (prefix - cls.PREFIX_EVEN):
            y = FIELD_P - y
        return cls(x, y)

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls: Type[P_], text: str) -> P_:
        return cls.from_bytes(bytes.fromhex(text))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.hex()})"


@dataclass(frozen=True, repr=False)
class PublicKey(CurvePoint):
    """Public key / public nonce / public blind excess (SEC compressed)."""
    PREFIX_EVEN: ClassVar[int] = 0x02

    def to_commitment(self) -> "Commitment":
        return Commitment(self.x, self.y)


@dataclass(frozen=True, repr=False)
class Commitment(CurvePoint):
    """Pedersen commitment r·G + v·H."""
    PREFIX_EVEN: ClassVar[int] = 0x08

    def to_pubkey(self) -> PublicKey:
        return PublicKey(self.x, self.y)


GENERATOR_G = PublicKey(*_G_XY)
GENERATOR_H = PublicKey(*_H_XY)


# =============================================================================
# SCALARS AND COMMITMENTS
# =============================================================================

def random_scalar() -> int:
    """Uniform non-zero scalar from the OS CSPRNG."""
    return secrets.randbelow(N - 1) + 1


def scalar_to_bytes(k: int) -> bytes:
    return (k % N).to_bytes(SCALAR_BYTES, "big")


def scalar_from_bytes(data: bytes) -> int:
    if len(data) != SCALAR_BYTES:
        raise ValueError(f"Scalar must be {SCALAR_BYTES} bytes, got {len(data)}")
    k = int.from_bytes(data, "big")
    if k >= N:
        raise ValueError("Scalar out of range")
    return k


def blind_sum(positive: Iterable[int], negative: Iterable[int] = ()) -> int:
    """Σ positive − Σ negative (mod N)."""
    return (sum(positive) - sum(negative)) % N


def pubkey_from_secret(secret: int) -> PublicKey:
    return PublicKey._wrap(_mul(_G_XY, secret))


def commit(value: int, blind: int) -> Commitment:
    """Pedersen commitment to ``value`` under blinding factor ``blind``."""
    if value < 0:
        raise ValueError("Cannot commit to a negative value")
    return Commitment._wrap(_add(_mul(_G_XY, blind), _mul(_H_XY, value)))


def commit_value(value: int) -> Commitment:
    """Commitment to ``value`` with zero blinding (e.g. the fee)."""
    return commit(value, 0)


def sum_points(positive: Iterable[P_], negative: Iterable[CurvePoint] = (), cls: Optional[Type[P_]] = None) -> P_:
    """Σ positive − Σ negative, returned as ``cls`` (defaults to the first operand's type)."""
    acc: _Affine = None
    out_cls: Optional[type] = cls
    for p in positive:
        out_cls = out_cls or type(p)
        acc = _add(acc, p.xy)
    for p in negative:
        out_cls = out_cls or type(p)
        acc = _add(acc, (-p).xy)
    return (out_cls or Commitment)._wrap(acc)  # type: ignore[return-value]


def sum_commits(positive: Iterable[Commitment], negative: Iterable[Commitment] = ()) -> Commitment:
    return sum_points(positive, negative, cls=Commitment)


def sum_pubkeys(keys: Iterable[PublicKey]) -> PublicKey:
    return sum_points(keys, cls=PublicKey)


def lift_x(x: int) -> PublicKey:
    """The curve point with x-coordinate ``x`` and even y."""
    y = _lift_y(x)
    if y is None:
        raise ValueError("x coordinate is not on the curve")
    return PublicKey(x, y)


def hash_message(message: str) -> bytes:
    return hashlib.blake2b(message.encode("utf-8"), digest_size=32).digest()


# =============================================================================
# SCHNORR SIGNATURES
# =============================================================================

@dataclass(frozen=True)
class Signature:
    """Schnorr signature (r, s); r is the x-coordinate of an even-y nonce point."""
    r: int
    s: int

    SIZE: ClassVar[int] = 64

    @classmethod
    def zero(cls) -> "Signature":
        return cls(0, 0)

    @property
    def is_zero(self) -> bool:
        return self.r == 0 and self.s == 0

    def to_bytes(self) -> bytes:
        return self.r.to_bytes(SCALAR_BYTES, "big") + self.s.to_bytes(SCALAR_BYTES, "big")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Signature":
        if len(data) != cls.SIZE:
            raise ValueError(f"Signature must be {cls.SIZE} bytes, got {len(data)}")
        r = int.from_bytes(data[:SCALAR_BYTES], "big")
        s = int.from_bytes(data[SCALAR_BYTES:], "big")
        if r >= FIELD_P or s >= N:
            raise ValueError("Signature component out of range")
        return cls(r, s)

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, text: str) -> "Signature":
        return cls.from_bytes(bytes.fromhex(text))


def challenge(r_x: int, pubkey: PublicKey, msg: bytes) -> int:
    digest = hashlib.sha256(r_x.to_bytes(SCALAR_BYTES, "big") + pubkey.to_bytes() + msg).digest()
    return int.from_bytes(digest, "big") % N


def sign(
    msg: bytes,
    seckey: int,
    secnonce: int,
    pubnonce_total: Optional[PublicKey] = None,
    pubkey_total: Optional[PublicKey] = None,
) -> Signature:
    """
    Schnorr signature share.

    With no totals this is an ordinary single-signer signature. With
    ``pubnonce_total``/``pubkey_total`` it is one participant's share of an
    aggregate signature: the challenge commits to the aggregate nonce and key,
    and the nonce is negated when the aggregate nonce has odd y.
    """
    r_total = pubnonce_total if pubnonce_total is not None else pubkey_from_secret(secnonce)
    p_total = pubkey_total if pubkey_total is not None else pubkey_from_secret(seckey)
    if r_total.is_infinity:
        raise ValueError("Aggregate nonce is the point at infinity")

    k = secnonce % N if r_total.has_even_y else (-secnonce) % N
    e = challenge(r_total.x, p_total, msg)  # type: ignore[arg-type]
    return Signature(r_total.x, (k + e * seckey) % N)  # type: ignore[arg-type]


def verify(sig: Signature, msg: bytes, pubkey: PublicKey) -> bool:
    """Verify a complete (single or aggregate) signature under ``pubkey``."""
    if sig.is_zero or pubkey.is_infinity:
        return False
    try:
        r_point = lift_x(sig.r)
    except ValueError:
        return False
    e = challenge(sig.r, pubkey, msg)
    lhs = pubkey_from_secret(sig.s)
    return lhs == r_point + pubkey.mul(e)


def verify_share(
    sig: Signature,
    msg: bytes,
    pubkey: PublicKey,
    pubnonce: PublicKey,
    pubkey_total: PublicKey,
    pubnonce_total: PublicKey,
) -> bool:
    """Verify one participant's share of an aggregate signature."""
    if pubnonce_total.is_infinity or sig.r != pubnonce_total.x:
        return False
    e = challenge(sig.r, pubkey_total, msg)
    r_i = pubnonce if pubnonce_total.has_even_y else -pubnonce
    return pubkey_from_secret(sig.s) == r_i + pubkey.mul(e)


# =============================================================================
# OUTPUT OPENING PROOF
# =============================================================================

def _proof_challenge(commitment: Commitment, t: Commitment) -> int:
    digest = hashlib.sha256(b"mwslate/output-proof" + commitment.to_bytes() + t.to_bytes()).digest()
    return int.from_bytes(digest, "big") % N


@dataclass(frozen=True)
class OutputProof:
    """
    Proof of knowledge of an opening (v, r) of ``C = r·G + v·H``.

        T  = k1·G + k2·H
        e  = SHA256(tag ‖ C ‖ T)
        z1 = k1 + e·r,  z2 = k2 + e·v
        check: z1·G + z2·H == T + e·C
    """
    t: Commitment
    z1: int
    z2: int

    SIZE: ClassVar[int] = POINT_BYTES + 2 * SCALAR_BYTES

    @classmethod
    def create(cls, value: int, blind: int, commitment: Optional[Commitment] = None) -> "OutputProof":
        commitment = commitment or commit(value, blind)
        k1, k2 = random_scalar(), random_scalar()
        t = Commitment._wrap(_add(_mul(_G_XY, k1), _mul(_H_XY, k2)))
        e = _proof_challenge(commitment, t)
        return cls(t, (k1 + e * blind) % N, (k2 + e * value) % N)

    def verify(self, commitment: Commitment) -> bool:
        if self.t.is_infinity or commitment.is_infinity:
            return False
        e = _proof_challenge(commitment, self.t)
        lhs = _add(_mul(_G_XY, self.z1), _mul(_H_XY, self.z2))
        return lhs == _add(self.t.xy, _mul(commitment.xy, e))

    def to_bytes(self) -> bytes:
        return self.t.to_bytes() + scalar_to_bytes(self.z1) + scalar_to_bytes(self.z2)

    @classmethod
    def from_bytes(cls, data: bytes) -> "OutputProof":
        if len(data) != cls.SIZE:
            raise ValueError(f"Output proof must be {cls.SIZE} bytes, got {len(data)}")
        return cls(
            Commitment.from_bytes(data[:POINT_BYTES]),
            scalar_from_bytes(data[POINT_BYTES:POINT_BYTES + SCALAR_BYTES]),
            scalar_from_bytes(data[POINT_BYTES + SCALAR_BYTES:]),
        )

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, text: str) -> "OutputProof":
        return cls.from_bytes(bytes.fromhex(text))
