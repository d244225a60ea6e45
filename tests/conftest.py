import pathlib
import sys
from dataclasses import dataclass

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import mwslate`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from mwslate.builder import BlockFees, RoundDriver  # noqa: E402
from mwslate.config import WalletConfig  # noqa: E402
from mwslate.keychain import SeedKeychain  # noqa: E402
from mwslate.ledger import MockLedgerClient  # noqa: E402
from mwslate.store import MemoryWalletStore  # noqa: E402

COINBASE_MATURITY = 3


# =============================================================================
# WALLET FIXTURES
# =============================================================================

def wallet_config() -> WalletConfig:
    config = WalletConfig()
    config.chain.coinbase_maturity.set(COINBASE_MATURITY)
    config.selection.minimum_confirmations.set(1)
    return config


@dataclass
class Wallet:
    driver: RoundDriver
    store: MemoryWalletStore
    ledger: MockLedgerClient

    def fund(self, blocks: int = 1) -> None:
        """Mine ``blocks`` coinbase rewards to this wallet and let them mature."""
        for _ in range(blocks):
            height = self.ledger.get_chain_height() + 1
            reward = self.driver.build_coinbase(BlockFees(fees=0, height=height))
            self.ledger.add_coinbase(reward.output, reward.kernel)
            self.ledger.mine_block()
        self.ledger.mine_block(COINBASE_MATURITY)
        self.driver.refresh()


def make_wallet(ledger: MockLedgerClient, seed: bytes) -> Wallet:
    store = MemoryWalletStore()
    driver = RoundDriver(SeedKeychain(seed), store, ledger, config=wallet_config())
    return Wallet(driver, store, ledger)


@pytest.fixture
def ledger() -> MockLedgerClient:
    return MockLedgerClient()


@pytest.fixture
def alice(ledger: MockLedgerClient) -> Wallet:
    return make_wallet(ledger, b"alice-seed-0000000000000000000000")


@pytest.fixture
def bob(ledger: MockLedgerClient) -> Wallet:
    return make_wallet(ledger, b"bob-seed-00000000000000000000000")


@pytest.fixture
def carol(ledger: MockLedgerClient) -> Wallet:
    return make_wallet(ledger, b"carol-seed-000000000000000000000")


@pytest.fixture
def funded_alice(alice: Wallet) -> Wallet:
    alice.fund()
    return alice
