"""
Shared pytest fixtures for the stakeflow test suite.
"""

import pytest

from stakeflow_core.assets import FungibleAsset
from stakeflow_core.clock import ManualClock
from stakeflow_core.lockup import SECONDS_PER_DAY, SECONDS_PER_WEEK
from stakeflow_core.oracle import StaticPrice
from stakeflow_core.precision import SCALE
from stakeflow_core.staking import StakingPool
from stakeflow_core.subscription import SubscriptionSale
from stakeflow_core.vesting import VestingVault

GENESIS = 1_700_000_000
WINDOW = 4 * SECONDS_PER_WEEK


def give(asset, account, amount, spender=None):
    """Mint *amount* to *account* and optionally approve *spender* for it."""
    asset.mint("minter", account, amount)
    if spender is not None:
        asset.approve(account, spender, asset.allowance(account, spender) + amount)


@pytest.fixture
def clock():
    """Manual clock starting at a fixed timestamp."""
    return ManualClock(GENESIS)


@pytest.fixture
def stk():
    """Stake asset."""
    return FungibleAsset("STK", minters={"minter"})


@pytest.fixture
def rwd():
    """Reward asset; the pool may mint emission."""
    return FungibleAsset("RWD", minters={"minter", "pool"})


@pytest.fixture
def pool(stk, rwd, clock):
    """Staking pool with Alice and Bob holding 1000 STK each, approved."""
    p = StakingPool("pool", stk, rwd, clock)
    give(stk, "alice", 1_000, spender="pool")
    give(stk, "bob", 1_000, spender="pool")
    return p


@pytest.fixture
def vault(rwd, clock):
    """Vesting vault over RWD: one-week buckets, four-week window, 50% penalty."""
    v = VestingVault(
        "vault", rwd, clock,
        bucket_period=SECONDS_PER_WEEK,
        window_length=WINDOW,
        early_exit_penalty_bps=5_000,
    )
    give(rwd, "alice", 1_000, spender="vault")
    give(rwd, "bob", 1_000, spender="vault")
    return v


@pytest.fixture
def usd():
    """Quote asset for subscriptions."""
    return FungibleAsset("USD", minters={"minter"})


@pytest.fixture
def sale_token():
    """Asset minted by the subscription sale."""
    return FungibleAsset("SALE", minters={"sale"})


@pytest.fixture
def sale(usd, sale_token, clock):
    """Sale priced at 2 USD, capped at 100 SALE per round, one-day window, ten-day release."""
    s = SubscriptionSale(
        "sale", usd, sale_token, StaticPrice(2 * SCALE), clock,
        owner="owner",
        subscription_window=SECONDS_PER_DAY,
        release_duration=10 * SECONDS_PER_DAY,
        mint_cap_bps=0,
        min_mint_cap=100 * SCALE,
    )
    give(usd, "alice", 1_000 * SCALE, spender="sale")
    give(usd, "bob", 1_000 * SCALE, spender="sale")
    return s
