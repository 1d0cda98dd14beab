import os
import tempfile

import pytest

# Set dummy environment variables for testing
# This must run before src.config is imported by any test
OWNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

os.environ.setdefault("OWNER_PRIVATE_KEY", OWNER_KEY)
os.environ.setdefault("DEFAULT_NETWORK", "arbitrumSepolia")
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "playerhouse-test.db"))
os.environ.setdefault("LOG_FORMAT", "text")

from src.playerhouse.delegation import DelegationManager  # noqa: E402
from src.playerhouse.networks import get_profile  # noqa: E402
from src.playerhouse.wallets import EmbeddedWallet  # noqa: E402

from tests.stubs import FakeChain, make_spin_event  # noqa: E402


@pytest.fixture
def profile():
    return get_profile("arbitrumSepolia")


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def owner_wallet(profile):
    return EmbeddedWallet.from_key(OWNER_KEY, profile.chain_id)


@pytest.fixture
def spin_event():
    return make_spin_event


@pytest.fixture
async def delegated_account(fake_chain, profile, owner_wallet):
    """Executable account minted through a real delegation setup."""
    manager = DelegationManager(fake_chain, profile)
    delegation = await manager.setup([owner_wallet])
    return manager.rehydrate(delegation)
