"""
Transaction Body

The transaction carried inside a slate: inputs, outputs, a single kernel and
a transaction-wide blinding offset.

    Σ outputs − Σ inputs + fee·H  ==  Σ kernel.excess + offset·G

Inputs and outputs are kept sorted by commitment bytes so two parties that
assemble the same body always serialize it identically.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from mwslate.errors import InvalidSlate
from mwslate.secp import (
    N,
    Commitment,
    OutputProof,
    Signature,
    commit_value,
    pubkey_from_secret,
    scalar_from_bytes,
    scalar_to_bytes,
    sum_commits,
    verify,
)

DEFAULT_BASE_FEE = 1_000_000


class OutputFeatures(Enum):
    PLAIN = "Plain"
    COINBASE = "Coinbase"


class KernelFeatures(Enum):
    PLAIN = "Plain"
    COINBASE = "Coinbase"
    HEIGHT_LOCKED = "HeightLocked"

    @property
    def byte(self) -> int:
        return {
            KernelFeatures.PLAIN: 0,
            KernelFeatures.COINBASE: 1,
            KernelFeatures.HEIGHT_LOCKED: 2,
        }[self]

    @classmethod
    def for_lock_height(cls, lock_height: int) -> "KernelFeatures":
        return cls.HEIGHT_LOCKED if lock_height > 0 else cls.PLAIN


def tx_fee(num_inputs: int, num_outputs: int, num_kernels: int = 1, base_fee: int = DEFAULT_BASE_FEE) -> int:
    """Fee for a transaction of the given shape: max(4·out + kern − in, 1) · base_fee."""
    weight = max(4 * num_outputs + num_kernels - num_inputs, 1)
    return weight * base_fee


def kernel_sig_msg(features: KernelFeatures, fee: int, lock_height: int) -> bytes:
    """Message signed by the kernel's aggregate signature."""
    data = bytes([features.byte])
    if features in (KernelFeatures.PLAIN, KernelFeatures.HEIGHT_LOCKED):
        data += fee.to_bytes(8, "big")
    if features == KernelFeatures.HEIGHT_LOCKED:
        data += lock_height.to_bytes(8, "big")
    return hashlib.blake2b(data, digest_size=32).digest()


def _parse_hex(cls: Any, value: Any, path: str) -> Any:
    try:
        return cls.from_hex(value)
    except (TypeError, ValueError) as e:
        raise InvalidSlate(f"Invalid {cls.__name__}: {e}", path=path) from e


def _parse_enum(cls: Any, value: Any, path: str) -> Any:
    try:
        return cls(value)
    except ValueError as e:
        raise InvalidSlate(f"Unknown {cls.__name__} {value!r}", path=path) from e


# =============================================================================
# INPUTS AND OUTPUTS
# =============================================================================

@dataclass(frozen=True)
class Input:
    features: OutputFeatures
    commit: Commitment

    def to_dict(self) -> Dict[str, Any]:
        return {"commit": self.commit.hex(), "features": self.features.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "input") -> "Input":
        return cls(
            features=_parse_enum(OutputFeatures, data.get("features"), f"{path}.features"),
            commit=_parse_hex(Commitment, data.get("commit"), f"{path}.commit"),
        )


@dataclass(frozen=True)
class Output:
    features: OutputFeatures
    commit: Commitment
    proof: OutputProof

    def verify_proof(self) -> bool:
        return self.proof.verify(self.commit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commit": self.commit.hex(),
            "features": self.features.value,
            "proof": self.proof.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "output") -> "Output":
        return cls(
            features=_parse_enum(OutputFeatures, data.get("features"), f"{path}.features"),
            commit=_parse_hex(Commitment, data.get("commit"), f"{path}.commit"),
            proof=_parse_hex(OutputProof, data.get("proof"), f"{path}.proof"),
        )


# =============================================================================
# KERNEL
# =============================================================================

@dataclass
class TxKernel:
    """
    Public summary of the transaction.

    Until finalization the excess is the point at infinity and the signature
    is all zeroes.
    """
    features: KernelFeatures = KernelFeatures.PLAIN
    fee: int = 0
    lock_height: int = 0
    excess: Commitment = field(default_factory=Commitment.infinity)
    excess_sig: Signature = field(default_factory=Signature.zero)

    @classmethod
    def empty(cls, fee: int = 0, lock_height: int = 0) -> "TxKernel":
        return cls(KernelFeatures.for_lock_height(lock_height), fee, lock_height)

    def msg_to_sign(self) -> bytes:
        return kernel_sig_msg(self.features, self.fee, self.lock_height)

    @property
    def is_complete(self) -> bool:
        return not self.excess.is_infinity and not self.excess_sig.is_zero

    def verify(self) -> bool:
        """Check the aggregate signature against the excess."""
        return self.is_complete and verify(self.excess_sig, self.msg_to_sign(), self.excess.to_pubkey())

    def to_dict(self, numeric: bool = False) -> Dict[str, Any]:
        enc = (lambda v: v) if numeric else str
        return {
            "excess": self.excess.hex(),
            "excess_sig": self.excess_sig.hex(),
            "features": self.features.value,
            "fee": enc(self.fee),
            "lock_height": enc(self.lock_height),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "kernel") -> "TxKernel":
        return cls(
            features=_parse_enum(KernelFeatures, data.get("features"), f"{path}.features"),
            fee=int(data.get("fee", 0)),
            lock_height=int(data.get("lock_height", 0)),
            excess=_parse_hex(Commitment, data.get("excess"), f"{path}.excess"),
            excess_sig=_parse_hex(Signature, data.get("excess_sig"), f"{path}.excess_sig"),
        )


# =============================================================================
# BODY AND TRANSACTION
# =============================================================================

@dataclass
class TransactionBody:
    inputs: List[Input] = field(default_factory=list)
    outputs: List[Output] = field(default_factory=list)
    kernels: List[TxKernel] = field(default_factory=list)

    def sort(self) -> None:
        self.inputs.sort(key=lambda i: i.commit.to_bytes())
        self.outputs.sort(key=lambda o: o.commit.to_bytes())

    def to_dict(self, numeric: bool = False) -> Dict[str, Any]:
        return {
            "inputs": [i.to_dict() for i in self.inputs],
            "kernels": [k.to_dict(numeric) for k in self.kernels],
            "outputs": [o.to_dict() for o in self.outputs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "tx.body") -> "TransactionBody":
        return cls(
            inputs=[Input.from_dict(d, f"{path}.inputs[{i}]") for i, d in enumerate(data.get("inputs", []))],
            outputs=[Output.from_dict(d, f"{path}.outputs[{i}]") for i, d in enumerate(data.get("outputs", []))],
            kernels=[TxKernel.from_dict(d, f"{path}.kernels[{i}]") for i, d in enumerate(data.get("kernels", []))],
        )


@dataclass
class Transaction:
    offset: int = 0
    body: TransactionBody = field(default_factory=TransactionBody)

    @classmethod
    def empty(cls, fee: int = 0, lock_height: int = 0) -> "Transaction":
        return cls(body=TransactionBody(kernels=[TxKernel.empty(fee, lock_height)]))

    @property
    def kernel(self) -> TxKernel:
        if len(self.body.kernels) != 1:
            raise InvalidSlate(
                f"Transaction must carry exactly one kernel, found {len(self.body.kernels)}",
                path="tx.body.kernels",
            )
        return self.body.kernels[0]

    def fee(self) -> int:
        return sum(k.fee for k in self.body.kernels)

    def weight_fee(self, base_fee: int = DEFAULT_BASE_FEE) -> int:
        return tx_fee(len(self.body.inputs), len(self.body.outputs), len(self.body.kernels), base_fee)

    def add_input(self, features: OutputFeatures, commitment: Commitment) -> None:
        self.body.inputs.append(Input(features, commitment))
        self.body.sort()

    def add_output(self, output: Output) -> None:
        self.body.outputs.append(output)
        self.body.sort()

    def sum_commitments(self) -> Commitment:
        """Σ outputs − Σ inputs + fee·H: the expected excess + offset·G."""
        return sum_commits(
            [o.commit for o in self.body.outputs] + [commit_value(self.fee())],
            [i.commit for i in self.body.inputs],
        )

    def sum_kernel_excesses(self) -> Commitment:
        offset_point = pubkey_from_secret(self.offset).to_commitment()
        return sum_commits([k.excess for k in self.body.kernels] + [offset_point])

    def verify_kernel_sums(self) -> bool:
        return self.sum_commitments() == self.sum_kernel_excesses()

    def validate(self, base_fee: int = DEFAULT_BASE_FEE) -> List[str]:
        """All structural and cryptographic problems with a finished transaction."""
        problems: List[str] = []
        if len(self.body.kernels) != 1:
            problems.append("transaction must carry exactly one kernel")
        for index, output in enumerate(self.body.outputs):
            if not output.verify_proof():
                problems.append(f"output {index} proof does not verify")
        for index, kernel in enumerate(self.body.kernels):
            if not kernel.verify():
                problems.append(f"kernel {index} signature does not verify")
        commits = [i.commit for i in self.body.inputs]
        if len(set(commits)) != len(commits):
            problems.append("duplicate input")
        if self.fee() < self.weight_fee(base_fee) and not any(
            k.features == KernelFeatures.COINBASE for k in self.body.kernels
        ):
            problems.append(f"fee {self.fee()} below minimum {self.weight_fee(base_fee)}")
        if not self.verify_kernel_sums():
            problems.append("kernel sums do not balance")
        return problems

    def to_dict(self, numeric: bool = False) -> Dict[str, Any]:
        return {
            "body": self.body.to_dict(numeric),
            "offset": scalar_to_bytes(self.offset).hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "tx") -> "Transaction":
        try:
            offset = scalar_from_bytes(bytes.fromhex(data.get("offset", "")))
        except (TypeError, ValueError) as e:
            raise InvalidSlate(f"Invalid transaction offset: {e}", path=f"{path}.offset") from e
        body = TransactionBody.from_dict(data.get("body", {}), f"{path}.body")
        return cls(offset=offset % N, body=body)
