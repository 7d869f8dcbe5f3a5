"""
Shared fixtures: a paper market with one listed mirror asset, a temporary
position store, a capability authority and an engine wired to all three.
"""
import os
import tempfile
from decimal import Decimal

import pytest

from delta_neutral.config.context import EngineContext
from delta_neutral.engine import PositionEngine
from delta_neutral.models.common import Capability
from delta_neutral.models.position import Asset
from delta_neutral.security.authorization import CapabilityAuthority
from delta_neutral.state.state_machine import StateStore
from delta_neutral.venues.simulated import PaperMarket

MIRROR_ASSET = "mAAPL"
# 1,000 UST
BUDGET = 1_000_000_000
# Pool priced at 10 uusd per mAAPL, same as the oracle.
POOL_MIRROR_ASSET = 1_000_000_000_000
POOL_UUSD = 10_000_000_000_000
ORACLE_PRICE = Decimal("10")
ANCHOR_UST_RATE = Decimal("1.1")
MANAGER = "manager"


@pytest.fixture
def temp_db():
    """Create a temporary database file."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    os.unlink(path)


@pytest.fixture
def context():
    return EngineContext()


@pytest.fixture
def market(context):
    """Paper market with mAAPL listed and the manager funded."""
    market = PaperMarket.create(context, anchor_ust_exchange_rate=ANCHOR_UST_RATE)
    market.list_mirror_asset(MIRROR_ASSET, ORACLE_PRICE, POOL_MIRROR_ASSET, POOL_UUSD)
    market.bank.mint(MANAGER, context.stable_denom, 10 * BUDGET)
    return market


@pytest.fixture
def store(temp_db):
    return StateStore(db_path=temp_db)


@pytest.fixture
def authority():
    return CapabilityAuthority("test-authority-secret-0123456789abcdef")


@pytest.fixture
def manager_token(authority):
    return authority.issue(MANAGER, Capability.MANAGER)


@pytest.fixture
def controller_token(authority):
    return authority.issue("keeper", Capability.CONTROLLER)


@pytest.fixture
def engine(context, market, store, authority):
    return PositionEngine(context, market.collaborators, store, authority)


@pytest.fixture
def open_position(engine, manager_token):
    """Factory opening a position funded by the manager."""

    def _open(position_id="pos-1", amount=BUDGET, target_min="1.8", target_max="2.2", **kwargs):
        engine.open_position(
            manager_token,
            position_id,
            MANAGER,
            target_min,
            target_max,
            MIRROR_ASSET,
            [Asset(denom="uusd", amount=amount)],
            **kwargs,
        )
        return engine.store.get_position(position_id)

    return _open
