"""
mwslate — Mimblewimble Slate Negotiation

Multi-party construction of confidential transactions: participants exchange
a slate, each adds inputs, outputs and a partial Schnorr signature, and the
initiator aggregates them into one kernel whose excess balances the
commitments.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         SLATE NEGOTIATION                               │
    │                                                                         │
    │  SURFACE                                                                │
    │    api.py         Owner / Foreign facades, versioned wire replies       │
    │    rpc.py         JSON-RPC 2.0 method tables and schema-checked params  │
    │    cli.py         Offline slate, fee, amount and config tooling         │
    │                                                                         │
    │  NEGOTIATION                                                            │
    │    builder.py     Round driver: send, invoice, finalize, post, cancel   │
    │    slate.py       Shared slate model and rounds                         │
    │    versions.py    Tagged wire versions V1..V3                           │
    │    aggregator.py  Partial and aggregate signatures                      │
    │    locker.py      Output locks and confirmation bookkeeping             │
    │                                                                         │
    │  VALUES                                                                 │
    │    secp.py        Curve arithmetic, commitments, Schnorr, opening proof │
    │    transaction.py Inputs, outputs, kernels, balance law, fees           │
    │                                                                         │
    │  CAPABILITIES                                                           │
    │    interfaces.py  Keychain / LedgerClient / WalletStore protocols       │
    │    keychain.py    HKDF seed keychain                                    │
    │    store.py       Memory and JSON-file stores with atomic batches       │
    │    ledger.py      In-memory ledger client                               │
    │                                                                         │
    └─────────────────────────────────────────────────────────────────────────┘

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import mwslate modules on first access."""

    if name in ("RoundDriver", "InitTxArgs", "IssueInvoiceTxArgs", "BlockFees", "CoinbaseResult"):
        from mwslate import builder
        return getattr(builder, name)

    if name in ("Slate", "ParticipantData", "VersionInfo"):
        from mwslate import slate
        return getattr(slate, name)

    if name in ("parse_slate", "parse_slate_versioned", "serialize_slate", "convert_slate"):
        from mwslate import versions
        return getattr(versions, name)

    if name in ("Transaction", "TxKernel", "Input", "Output", "tx_fee"):
        from mwslate import transaction
        return getattr(transaction, name)

    if name in ("OwnerAPI", "ForeignAPI"):
        from mwslate import api
        return getattr(api, name)

    if name in ("MemoryWalletStore", "FileWalletStore"):
        from mwslate import store
        return getattr(store, name)

    if name == "SeedKeychain":
        from mwslate.keychain import SeedKeychain
        return SeedKeychain

    if name == "MockLedgerClient":
        from mwslate.ledger import MockLedgerClient
        return MockLedgerClient

    if name in ("WalletConfig", "get_config", "get_config_manager"):
        from mwslate import config
        return getattr(config, name)

    if name == "WalletError":
        from mwslate.errors import WalletError
        return WalletError

    raise AttributeError(f"module 'mwslate' has no attribute '{name}'")
