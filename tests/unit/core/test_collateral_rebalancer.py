"""
Tests for the collateral-ratio rebalancer.
"""
from decimal import Decimal

import pytest

from delta_neutral.config.context import EngineContext
from delta_neutral.core.collateral_rebalancer import (
    achieve_safe_collateral_ratio,
    compute_collateral_ratio,
    raise_target_range_if_needed,
)
from delta_neutral.models.commands import (
    BurnShort,
    RedeemStable,
    UnbondLp,
    WithdrawCollateral,
    WithdrawLiquidity,
)
from delta_neutral.models.position import (
    AssetConfig,
    LockInfo,
    PoolInfo,
    PositionState,
    TargetCollateralRatioRange,
)

ASSET = "mAAPL"
CDP_IDX = 1


def make_state(collateral, short_amount, mirror_asset_balance=0, lp_token_amount=0, mirror_asset_long_farm=0):
    """Oracle price 10, aUST priced at 1 uusd."""
    return PositionState(
        uusd_balance=0,
        uusd_long_farm=0,
        mirror_asset_short_amount=short_amount,
        mirror_asset_balance=mirror_asset_balance,
        mirror_asset_long_farm=mirror_asset_long_farm,
        collateral_anchor_ust_amount=collateral,
        collateral_uusd_value=collateral,
        mirror_asset_oracle_price=Decimal("10"),
        anchor_ust_oracle_price=Decimal("1"),
        pool_info=PoolInfo(
            pair_address="pair",
            lp_token_address="lp",
            lp_token_amount=lp_token_amount,
            lp_token_total_supply=3_000_000,
            pool_mirror_asset_amount=1_000_000,
            pool_uusd_amount=9_000_000,
        ),
    )


@pytest.fixture
def target_range():
    return TargetCollateralRatioRange(min=Decimal("1.8"), max=Decimal("2.2"))


@pytest.fixture
def asset_config():
    return AssetConfig(token=ASSET, min_collateral_ratio=Decimal("1.5"))


def _rebalance(state, target_range, asset_config, lock_info=None):
    return achieve_safe_collateral_ratio(
        state=state,
        target_range=target_range,
        asset_config=asset_config,
        cdp_idx=CDP_IDX,
        mirror_asset=ASSET,
        context=EngineContext(),
        lock_info=lock_info,
    )


class TestCollateralRatio:
    def test_ratio(self):
        assert compute_collateral_ratio(make_state(1_000, 40)) == Decimal("2.5")

    def test_no_short_has_no_ratio(self):
        assert compute_collateral_ratio(make_state(1_000, 0)) is None


class TestBelowMin:
    """CR below min: burn down to the midpoint."""

    def test_burns_from_liquid_balance(self, target_range, asset_config):
        result = _rebalance(make_state(1_000, 60, mirror_asset_balance=10), target_range, asset_config)

        assert result.action == "burn"
        assert result.collateral_ratio < Decimal("1.8")
        # Midpoint 2.0 allows 1000 / (2 * 10) = 50 short
        assert result.commands == [BurnShort(cdp_idx=CDP_IDX, mirror_asset=ASSET, amount=10)]

    def test_funds_burn_from_long_farm(self, target_range, asset_config):
        state = make_state(1_000, 60, mirror_asset_balance=4, lp_token_amount=6_000, mirror_asset_long_farm=2_000)
        result = _rebalance(state, target_range, asset_config)

        assert result.commands == [
            UnbondLp(mirror_asset=ASSET, lp_token_amount=18),
            WithdrawLiquidity(mirror_asset=ASSET, lp_token_amount=18),
            BurnShort(cdp_idx=CDP_IDX, mirror_asset=ASSET, amount=10),
        ]


class TestAboveMax:
    """CR above max: withdraw down to the midpoint unless proceeds are locked."""

    def test_withdraws_and_redeems(self, target_range, asset_config):
        result = _rebalance(make_state(1_000, 40), target_range, asset_config)

        assert result.action == "withdraw"
        assert result.commands == [
            WithdrawCollateral(cdp_idx=CDP_IDX, collateral_amount=200),
            RedeemStable(anchor_ust_amount=200),
        ]

    def test_skipped_while_proceeds_locked(self, target_range, asset_config):
        lock = LockInfo(idx=CDP_IDX, receiver="holder", locked_amount=5, unlock_time=2_000_000_000)
        result = _rebalance(make_state(1_000, 40), target_range, asset_config, lock_info=lock)

        assert result.action == "skipped_locked"
        assert result.commands == []

    def test_empty_lock_does_not_block(self, target_range, asset_config):
        lock = LockInfo(idx=CDP_IDX, receiver="holder", locked_amount=0, unlock_time=2_000_000_000)
        result = _rebalance(make_state(1_000, 40), target_range, asset_config, lock_info=lock)
        assert result.action == "withdraw"


class TestInRange:
    def test_nothing_to_do(self, target_range, asset_config):
        result = _rebalance(make_state(1_000, 50), target_range, asset_config)
        assert result.action == "none"
        assert result.commands == []
        assert result.range_raised is False

    def test_nothing_shorted(self, target_range, asset_config):
        result = _rebalance(make_state(1_000, 0), target_range, asset_config)
        assert result.collateral_ratio is None
        assert result.commands == []


class TestRangeRaise:
    """Raised asset minimums push the stored range up."""

    def test_raise_when_minimum_overtakes_range(self, target_range):
        raised_config = AssetConfig(token=ASSET, min_collateral_ratio=Decimal("1.7"))
        raised = raise_target_range_if_needed(target_range, raised_config, EngineContext())

        assert raised == TargetCollateralRatioRange(min=Decimal("2.0"), max=Decimal("2.4"))

    def test_keeps_wider_max(self):
        wide = TargetCollateralRatioRange(min=Decimal("1.8"), max=Decimal("3"))
        raised_config = AssetConfig(token=ASSET, min_collateral_ratio=Decimal("1.7"))
        raised = raise_target_range_if_needed(wide, raised_config, EngineContext())

        assert raised.max == Decimal("3")

    def test_no_raise_needed(self, target_range, asset_config):
        assert raise_target_range_if_needed(target_range, asset_config, EngineContext()) is None

    def test_rebalance_reports_raised_range(self, target_range):
        raised_config = AssetConfig(token=ASSET, min_collateral_ratio=Decimal("1.7"))
        result = _rebalance(make_state(1_100, 50), target_range, raised_config)

        assert result.range_raised is True
        assert result.target_range.min == Decimal("2.0")
        # CR 2.2 sits inside the raised range [2.0, 2.4]
        assert result.action == "none"
