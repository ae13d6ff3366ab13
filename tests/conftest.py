"""
conftest.py - Shared pytest fixtures for slot economy tests

Provides common fixtures used across unit and functional tests:
- Scripted reel draws and a fixed clock
- An economy without achievements or fees
- An opened account and its starter machine
"""

import pytest
from decimal import Decimal

from slot_economy import DEFAULT_ACHIEVEMENTS, StaticPriceOracle

from tests.scripted import FixedClock, ScriptedRandom, make_economy


@pytest.fixture
def rng():
    return ScriptedRandom()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def oracle():
    return StaticPriceOracle()


@pytest.fixture
def economy(rng, clock, oracle):
    """Economy with no achievements and zero fees."""
    return make_economy(rng, clock, oracle)


@pytest.fixture
def rich_economy(rng, clock, oracle):
    """Zero-fee economy whose accounts start with enough coins to trade whole BTC."""
    return make_economy(rng, clock, oracle, starting_coins=20_000_000)


@pytest.fixture
def rewarding_economy(rng, clock, oracle):
    """Economy with the default achievement catalog and the default 1% fee."""
    return make_economy(rng, clock, oracle, achievements=DEFAULT_ACHIEVEMENTS,
                        fee_rate=Decimal("0.01"))


@pytest.fixture
def alice(economy):
    return economy.open_account("alice", account_id="alice")


@pytest.fixture
def machine(economy, alice):
    """Id of alice's free basic machine."""
    return economy.machines(alice)[0]
