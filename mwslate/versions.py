"""
Slate Versions

Each supported wire version is its own tagged variant with its own encoding
rules; the in-memory :class:`~mwslate.slate.Slate` always matches the
newest one.

    ┌──────────┐ upgrade ┌──────────┐ upgrade ┌──────────┐
    │ SlateV1  │ ──────► │ SlateV2  │ ──────► │ SlateV3  │ ◄──► Slate
    │ numeric  │ ◄────── │ strings, │ ◄────── │ + ttl    │
    │ flat ver │downgrade│ ver_info │downgrade│          │
    └──────────┘         └──────────┘         └──────────┘

Parsing reads the version field before anything else, validates the document
against that version's JSON Schema and only then decodes it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from mwslate.errors import InvalidSlate, SlateVersionMismatch
from mwslate.hardening import Validators
from mwslate.schema import validate_slate_document
from mwslate.slate import (
    CURRENT_BLOCK_HEADER_VERSION,
    CURRENT_SLATE_VERSION,
    SUPPORTED_SLATE_VERSIONS,
    ParticipantData,
    Slate,
    VersionInfo,
)
from mwslate.transaction import Transaction


def _u64(data: Dict[str, Any], key: str, numeric: bool) -> int:
    return Validators.validate_u64(data.get(key), key, allow_numeric=numeric).unwrap()


def _common_from_dict(data: Dict[str, Any], numeric: bool) -> Dict[str, Any]:
    Validators.validate_uuid(data.get("id"), "id").raise_if_invalid()
    return {
        "id": data["id"].lower(),
        "num_participants": int(data["num_participants"]),
        "amount": _u64(data, "amount", numeric),
        "fee": _u64(data, "fee", numeric),
        "height": _u64(data, "height", numeric),
        "lock_height": _u64(data, "lock_height", numeric),
        "tx": Transaction.from_dict(data["tx"]),
        "participant_data": [
            ParticipantData.from_dict(pd, f"participant_data[{i}]")
            for i, pd in enumerate(data.get("participant_data", []))
        ],
    }


@dataclass
class _VersionedSlate:
    id: str
    num_participants: int
    amount: int
    fee: int
    height: int
    lock_height: int
    tx: Transaction
    participant_data: List[ParticipantData]

    version: ClassVar[int] = 0

    def _common(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "num_participants": self.num_participants,
            "amount": self.amount,
            "fee": self.fee,
            "height": self.height,
            "lock_height": self.lock_height,
            "tx": self.tx,
            "participant_data": self.participant_data,
        }

    def _encode_common(self, numeric: bool) -> Dict[str, Any]:
        enc = (lambda v: v) if numeric else str
        return {
            "amount": enc(self.amount),
            "fee": enc(self.fee),
            "height": enc(self.height),
            "id": self.id,
            "lock_height": enc(self.lock_height),
            "num_participants": self.num_participants,
            "participant_data": [pd.to_dict(numeric) for pd in self.participant_data],
            "tx": self.tx.to_dict(numeric),
        }


@dataclass
class SlateV1(_VersionedSlate):
    """Flat ``version`` field; amounts, heights and participant ids are JSON numbers."""
    orig_version: int = 1

    version: ClassVar[int] = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlateV1":
        return cls(orig_version=int(data.get("orig_version") or 1), **_common_from_dict(data, numeric=True))

    def to_dict(self) -> Dict[str, Any]:
        doc = self._encode_common(numeric=True)
        doc["version"] = 1
        doc["orig_version"] = self.orig_version
        return doc

    def upgrade(self) -> "SlateV2":
        info = VersionInfo(version=2, orig_version=self.orig_version, block_header_version=CURRENT_BLOCK_HEADER_VERSION)
        return SlateV2(version_info=info, **self._common())


@dataclass
class SlateV2(_VersionedSlate):
    """``version_info`` block; numbers as decimal strings."""
    version_info: VersionInfo = field(default_factory=lambda: VersionInfo(version=2, orig_version=2))

    version: ClassVar[int] = 2

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlateV2":
        return cls(version_info=_version_info(data, 2), **_common_from_dict(data, numeric=False))

    def to_dict(self) -> Dict[str, Any]:
        doc = self._encode_common(numeric=False)
        doc["version_info"] = replace(self.version_info, version=2).to_dict()
        return doc

    def upgrade(self) -> "SlateV3":
        return SlateV3(version_info=replace(self.version_info, version=3), **self._common())

    def downgrade(self) -> SlateV1:
        return SlateV1(orig_version=self.version_info.orig_version, **self._common())


@dataclass
class SlateV3(SlateV2):
    """Version 2 plus the height after which the negotiation should be abandoned."""
    ttl_cutoff_height: Optional[int] = None

    version: ClassVar[int] = 3

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlateV3":
        ttl = data.get("ttl_cutoff_height")
        return cls(
            version_info=_version_info(data, 3),
            ttl_cutoff_height=_u64(data, "ttl_cutoff_height", False) if ttl is not None else None,
            **_common_from_dict(data, numeric=False),
        )

    def to_dict(self) -> Dict[str, Any]:
        doc = self._encode_common(numeric=False)
        doc["ttl_cutoff_height"] = str(self.ttl_cutoff_height) if self.ttl_cutoff_height is not None else None
        doc["version_info"] = replace(self.version_info, version=3).to_dict()
        return doc

    def downgrade(self) -> SlateV2:
        return SlateV2(version_info=replace(self.version_info, version=2), **self._common())

    @classmethod
    def from_slate(cls, slate: Slate) -> "SlateV3":
        return cls(
            id=slate.id,
            num_participants=slate.num_participants,
            amount=slate.amount,
            fee=slate.fee,
            height=slate.height,
            lock_height=slate.lock_height,
            tx=slate.tx,
            participant_data=slate.participant_data,
            version_info=replace(slate.version_info, version=3),
            ttl_cutoff_height=slate.ttl_cutoff_height,
        )

    def to_slate(self) -> Slate:
        return Slate(
            id=self.id,
            num_participants=self.num_participants,
            amount=self.amount,
            fee=self.fee,
            height=self.height,
            lock_height=self.lock_height,
            ttl_cutoff_height=self.ttl_cutoff_height,
            tx=self.tx,
            participant_data=list(self.participant_data),
            version_info=replace(self.version_info, version=CURRENT_SLATE_VERSION),
        )


VersionedSlate = Union[SlateV1, SlateV2, SlateV3]

VARIANTS: Dict[int, Type[Any]] = {1: SlateV1, 2: SlateV2, 3: SlateV3}


def _version_info(data: Dict[str, Any], version: int) -> VersionInfo:
    info = data.get("version_info") or {}
    return VersionInfo(
        version=version,
        orig_version=int(info.get("orig_version", version)),
        block_header_version=int(info.get("block_header_version", CURRENT_BLOCK_HEADER_VERSION)),
    )


# =============================================================================
# ENTRY POINTS
# =============================================================================

def detect_version(doc: Any) -> int:
    """Read the slate version without interpreting any other field."""
    if not isinstance(doc, dict):
        raise InvalidSlate("Slate must be a JSON object", path="$")
    info = doc.get("version_info")
    if info is not None:
        if not isinstance(info, dict):
            raise InvalidSlate("version_info must be an object", path="version_info")
        version = info.get("version")
        path = "version_info.version"
    else:
        version = doc.get("version")
        path = "version"
    if version is None:
        raise InvalidSlate("Slate carries no version", path=path)
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidSlate(f"Slate version must be an integer, got {version!r}", path=path)
    if version not in SUPPORTED_SLATE_VERSIONS:
        raise SlateVersionMismatch(version, SUPPORTED_SLATE_VERSIONS, slate_id=doc.get("id"))
    return version


def parse_slate_versioned(
    doc: Any,
    max_block_header_version: Optional[int] = None,
) -> Tuple[Slate, int]:
    """Decode a wire document into the current model, returning the version it arrived at."""
    version = detect_version(doc)

    if max_block_header_version is None:
        from mwslate.config import get_config

        max_block_header_version = get_config().chain.block_header_version.get()
    header_version = (doc.get("version_info") or {}).get("block_header_version", CURRENT_BLOCK_HEADER_VERSION)
    if isinstance(header_version, int) and header_version > max_block_header_version:
        raise SlateVersionMismatch(
            header_version,
            range(1, max_block_header_version + 1),
            field="block_header_version",
            slate_id=doc.get("id"),
        )

    validate_slate_document(doc, version)
    variant = VARIANTS[version].from_dict(doc)
    while variant.version < CURRENT_SLATE_VERSION:
        variant = variant.upgrade()
    slate = variant.to_slate()

    if len(slate.participant_data) > slate.num_participants:
        raise InvalidSlate(
            f"Slate carries {len(slate.participant_data)} participant entries for "
            f"{slate.num_participants} participants",
            path="participant_data",
        )
    ids = slate.participant_ids()
    if len(set(ids)) != len(ids):
        raise InvalidSlate("Duplicate participant id", path="participant_data")
    return slate, version


def parse_slate(doc: Any, max_block_header_version: Optional[int] = None) -> Slate:
    return parse_slate_versioned(doc, max_block_header_version)[0]


def serialize_slate(slate: Slate, version: Optional[int] = None) -> Dict[str, Any]:
    """Encode ``slate`` at ``version`` (the configured target when omitted)."""
    if version is None:
        from mwslate.config import get_config

        version = get_config().slate.target_version.get()
    if version not in SUPPORTED_SLATE_VERSIONS:
        raise SlateVersionMismatch(version, SUPPORTED_SLATE_VERSIONS, slate_id=slate.id)

    variant: Any = SlateV3.from_slate(slate)
    while variant.version > version:
        variant = variant.downgrade()
    return variant.to_dict()


def convert_slate(doc: Any, version: int) -> Dict[str, Any]:
    """Re-encode a wire document at another version."""
    return serialize_slate(parse_slate(doc), version)
