"""Integration tests for the position lifecycle.

Each test drives the engine against a paper market: open, increase,
decrease and close, plus the off-market open path and saga rollback.
"""
import os
from dataclasses import replace
from decimal import Decimal
from unittest.mock import patch

import pytest

from delta_neutral.config.settings import Settings
from delta_neutral.core.reinvest import compute_performance_fee
from delta_neutral.engine import PositionEngine, holder_address
from delta_neutral.errors import (
    AuthError,
    ErrorCode,
    InvariantViolationError,
    OracleError,
    PositionError,
    ValidationError,
)
from delta_neutral.models.commands import RebalanceAndReinvest
from delta_neutral.models.common import Capability, CdpLookupStatus, PositionStatus
from delta_neutral.models.position import Asset
from delta_neutral.state.state_machine import StateStore

MIRROR_ASSET = "mAAPL"
BUDGET = 1_000_000_000
MANAGER = "manager"
RECIPIENT = "alice"
LOCK_PERIOD = 14 * 24 * 60 * 60


def _position_balances(market, record):
    holder = record.holder
    return {
        "uusd": market.bank.balance(holder, "uusd"),
        "aUST": market.bank.balance(holder, "aUST"),
        "mirror_asset": market.bank.balance(holder, MIRROR_ASSET),
    }


class TestOpenPosition:
    """Opening with a fresh oracle price."""

    def test_open_is_delta_neutral(self, market, open_position):
        record = open_position()

        assert record.status == PositionStatus.ACTIVE
        assert record.cdp_idx == 1
        assert record.open_info.uusd_amount == BUDGET
        assert record.fee_baseline_uusd == BUDGET

        cdp = market.mint.query_position(record.cdp_idx).cdp
        assert cdp.short_amount > 0
        assert market.bank.balance(record.holder, MIRROR_ASSET) == cdp.short_amount
        assert market.bank.balance(MANAGER, "uusd") == 9 * BUDGET

    def test_open_lands_inside_target_range(self, engine, open_position):
        open_position()

        info = engine.get_position_info("pos-1")

        assert info.status == "active"
        ratio = Decimal(info.detailed_info.collateral_ratio)
        assert Decimal("1.8") <= ratio <= Decimal("2.2")
        assert info.detailed_info.unclaimed_short_proceeds_uusd_amount > 0
        assert info.detailed_info.claimable_short_proceeds_uusd_amount == 0

    def test_open_twice_rejected(self, open_position):
        open_position()

        with pytest.raises(PositionError) as exc_info:
            open_position()
        assert exc_info.value.code == ErrorCode.POSITION_ALREADY_OPEN.code

    def test_budget_below_minimum(self, open_position):
        with pytest.raises(ValidationError) as exc_info:
            open_position(amount=100_000_000)
        assert exc_info.value.code == ErrorCode.BUDGET_TOO_SMALL.code

    def test_narrow_range_rejected(self, open_position):
        with pytest.raises(ValidationError) as exc_info:
            open_position(target_min="1.8", target_max="2.1")
        assert exc_info.value.code == ErrorCode.RANGE_TOO_NARROW.code

    def test_asset_not_on_allow_list(self, context, market, store, authority, manager_token):
        context = replace(context, allowed_mirror_assets=frozenset({"mTSLA"}))
        engine = PositionEngine(context, market.collaborators, store, authority)

        with pytest.raises(ValidationError) as exc_info:
            engine.open_position(
                manager_token,
                "pos-1",
                MANAGER,
                "1.8",
                "2.2",
                MIRROR_ASSET,
                [Asset(denom="uusd", amount=BUDGET)],
            )
        assert exc_info.value.code == ErrorCode.ASSET_NOT_ALLOWED.code

    def test_multiple_assets_rejected(self, engine, manager_token):
        with pytest.raises(ValidationError) as exc_info:
            engine.open_position(
                manager_token,
                "pos-1",
                MANAGER,
                "1.8",
                "2.2",
                MIRROR_ASSET,
                [Asset(denom="uusd", amount=BUDGET), Asset(denom="uluna", amount=1)],
            )
        assert exc_info.value.code == ErrorCode.INVALID_ASSETS.code

    def test_controller_cannot_open(self, engine, controller_token):
        with pytest.raises(AuthError):
            engine.open_position(
                controller_token,
                "pos-1",
                MANAGER,
                "1.8",
                "2.2",
                MIRROR_ASSET,
                [Asset(denom="uusd", amount=BUDGET)],
            )


class TestOffMarketOpen:
    """Opening while the oracle price is stale."""

    def test_stale_price_without_flag_rejected(self, market, store, open_position):
        market.clock.advance(120)

        with pytest.raises(OracleError) as exc_info:
            open_position()

        assert exc_info.value.code == ErrorCode.ORACLE_PRICE_STALE.code
        assert store.get_position("pos-1") is None
        assert market.bank.balance(MANAGER, "uusd") == 10 * BUDGET

    def test_parks_funds_in_lending_market(self, market, context, open_position):
        market.clock.advance(120)

        record = open_position(allow_off_market_position_open=True)

        fee = context.off_market_position_open_service_fee_uusd
        assert record.status == PositionStatus.OPEN_PENDING
        assert record.cdp_idx is None
        assert market.bank.balance(context.fee_collector_addr, "uusd") == fee
        # floor((budget - fee) / 1.1)
        assert market.bank.balance(record.holder, "aUST") == 908_181_818
        assert market.bank.balance(record.holder, "uusd") == 0

    def test_delayed_open_once_price_is_fresh(self, engine, market, controller_token, open_position):
        market.clock.advance(120)
        open_position(allow_off_market_position_open=True)

        market.oracle.set_price(MIRROR_ASSET, Decimal("10"))
        engine.rebalance_and_reinvest(controller_token, "pos-1")

        record = engine.store.get_position("pos-1")
        assert record.status == PositionStatus.ACTIVE
        assert record.cdp_idx == 1
        cdp = market.mint.query_position(1).cdp
        assert market.bank.balance(record.holder, MIRROR_ASSET) == cdp.short_amount
        assert market.bank.balance(record.holder, "aUST") == 0

    def test_rebalance_skips_while_still_stale(self, engine, market, controller_token, open_position):
        market.clock.advance(120)
        open_position(allow_off_market_position_open=True)

        result = engine.rebalance_and_reinvest(controller_token, "pos-1")

        assert result.attributes["dnr_skip"] == "old_price"
        assert engine.store.get_position("pos-1").status == PositionStatus.OPEN_PENDING

    def test_decrease_redeems_share_of_lending_deposit(self, engine, market, manager_token, open_position):
        market.clock.advance(120)
        open_position(allow_off_market_position_open=True)

        engine.decrease_position(manager_token, "pos-1", "0.5", RECIPIENT)

        # floor(908181818 * 0.5) aUST redeemed at 1.1
        assert market.bank.balance(holder_address("pos-1"), "aUST") == 454_090_909
        assert market.bank.balance(RECIPIENT, "uusd") == 499_499_999

    def test_close_sends_whole_lending_deposit(self, engine, market, manager_token, open_position):
        market.clock.advance(120)
        open_position(allow_off_market_position_open=True)

        engine.close_position(manager_token, "pos-1", RECIPIENT)

        record = engine.store.get_position("pos-1")
        assert record.status == PositionStatus.CLOSED
        # floor(908181818 * 1.1)
        assert record.close_info.uusd_amount == 998_999_999
        assert market.bank.balance(RECIPIENT, "uusd") == 998_999_999
        assert market.bank.balance(record.holder, "aUST") == 0
        assert market.bank.balance(record.holder, "uusd") == 0


class TestIncreasePosition:
    def test_increase_reinvests_after_unlock(self, engine, market, manager_token, open_position):
        before = open_position()
        short_before = market.mint.query_position(before.cdp_idx).cdp.short_amount
        market.clock.advance(LOCK_PERIOD)
        market.oracle.set_price(MIRROR_ASSET, Decimal("10"))

        result = engine.increase_position(
            manager_token,
            "pos-1",
            MANAGER,
            [Asset(denom="uusd", amount=BUDGET // 2)],
        )

        assert "reinvest_skip" not in result.attributes
        state = engine.valuator.get_position_state(engine.store.get_position("pos-1"))
        assert state.mirror_asset_short_amount > short_before
        assert state.pool_info.lp_token_amount > 0
        tolerance = state.mirror_asset_long_amount // 100
        assert abs(state.mirror_asset_long_amount - state.mirror_asset_short_amount) <= tolerance

    def test_increase_rejects_other_denoms(self, engine, manager_token, open_position):
        open_position()

        with pytest.raises(ValidationError) as exc_info:
            engine.increase_position(manager_token, "pos-1", MANAGER, [Asset(denom="uluna", amount=10)])
        assert exc_info.value.code == ErrorCode.INVALID_ASSETS.code

    def test_unknown_position(self, engine, manager_token):
        with pytest.raises(PositionError) as exc_info:
            engine.increase_position(manager_token, "missing", MANAGER, [Asset(denom="uusd", amount=10)])
        assert exc_info.value.code == ErrorCode.POSITION_NOT_OPEN.code


class TestDecreasePosition:
    def test_half_decrease(self, engine, market, manager_token, open_position):
        record = open_position()
        cdp_before = market.mint.query_position(record.cdp_idx).cdp

        engine.decrease_position(manager_token, "pos-1", Decimal("0.5"), RECIPIENT)

        cdp_after = market.mint.query_position(record.cdp_idx).cdp
        assert cdp_after.short_amount == cdp_before.short_amount - cdp_before.short_amount // 2
        assert cdp_after.collateral_amount == cdp_before.collateral_amount - cdp_before.collateral_amount // 2
        assert market.bank.balance(record.holder, MIRROR_ASSET) == cdp_after.short_amount
        assert market.bank.balance(RECIPIENT, "uusd") > 0
        assert engine.store.get_position("pos-1").status == PositionStatus.ACTIVE

    @pytest.mark.parametrize("proportion", ["0", "1.5", "-0.1"])
    def test_invalid_proportion(self, engine, manager_token, open_position, proportion):
        open_position()

        with pytest.raises(ValidationError) as exc_info:
            engine.decrease_position(manager_token, "pos-1", proportion, RECIPIENT)
        assert exc_info.value.code == ErrorCode.INVALID_PROPORTION.code

    def test_full_decrease_closes(self, engine, market, manager_token, open_position):
        record = open_position()

        engine.decrease_position(manager_token, "pos-1", "1", RECIPIENT)

        closed = engine.store.get_position("pos-1")
        assert closed.status == PositionStatus.CLOSED
        assert market.mint.query_position(record.cdp_idx).status == CdpLookupStatus.NOT_FOUND
        assert market.bank.balance(RECIPIENT, "uusd") == closed.close_info.uusd_amount
        assert closed.close_info.uusd_amount > 0


class TestClosePosition:
    def test_close_without_gain_charges_no_fee(self, engine, market, context, manager_token, open_position):
        record = open_position()

        engine.close_position(manager_token, "pos-1", RECIPIENT)

        closed = engine.store.get_position("pos-1")
        assert closed.status == PositionStatus.CLOSED
        assert market.mint.query_position(record.cdp_idx).status == CdpLookupStatus.NOT_FOUND
        assert market.lock.lock_info(record.cdp_idx) is None
        assert market.bank.balance(context.fee_collector_addr, "uusd") == 0
        assert market.bank.balance(RECIPIENT, "uusd") == closed.close_info.uusd_amount
        assert _position_balances(market, record) == {"uusd": 0, "aUST": 0, "mirror_asset": 0}

    def test_close_with_gain_collects_performance_fee(self, engine, market, context, manager_token, open_position):
        record = open_position()
        market.lending.set_exchange_rate(Decimal("1.5"))

        state = engine.valuator.get_position_state(record)
        locked_amount = engine.valuator.lock_info(record.cdp_idx).locked_amount
        position_value = state.collateral_uusd_value + state.uusd_balance + state.uusd_long_farm + locked_amount
        expected_fee = compute_performance_fee(position_value, BUDGET, context.performance_rate)
        assert expected_fee > 0

        engine.close_position(manager_token, "pos-1", RECIPIENT)

        closed = engine.store.get_position("pos-1")
        assert market.bank.balance(context.fee_collector_addr, "uusd") == expected_fee
        assert closed.fee_baseline_uusd == position_value - expected_fee
        assert market.bank.balance(RECIPIENT, "uusd") == closed.close_info.uusd_amount
        assert market.bank.balance(record.holder, "uusd") == 0

    def test_close_twice_rejected(self, engine, manager_token, open_position):
        open_position()
        engine.close_position(manager_token, "pos-1", RECIPIENT)

        with pytest.raises(PositionError) as exc_info:
            engine.close_position(manager_token, "pos-1", RECIPIENT)
        assert exc_info.value.code == ErrorCode.POSITION_ALREADY_CLOSED.code

    def test_closed_position_rebalance_is_noop(self, engine, market, manager_token, controller_token, open_position):
        open_position()
        engine.close_position(manager_token, "pos-1", RECIPIENT)
        recipient_balance = market.bank.balance(RECIPIENT, "uusd")

        engine.rebalance_and_reinvest(controller_token, "pos-1")

        assert engine.store.get_position("pos-1").status == PositionStatus.CLOSED
        assert market.bank.balance(RECIPIENT, "uusd") == recipient_balance


class TestAtomicity:
    """A failing step rolls every collaborator back."""

    def test_non_neutral_open_rolls_back(self, market, store, open_position):
        original_swap = market.terraswap.swap

        def swap_with_extra_unit(holder, pair_token, offer_token, offer_amount):
            returned = original_swap(holder, pair_token, offer_token, offer_amount)
            if offer_token == "uusd":
                market.bank.mint(holder, pair_token, 1)
            return returned

        with patch.object(market.terraswap, "swap", side_effect=swap_with_extra_unit):
            with pytest.raises(InvariantViolationError) as exc_info:
                open_position()

        assert exc_info.value.code == ErrorCode.NON_NEUTRAL_POSITION_OPENED.code
        assert store.get_position("pos-1") is None
        assert market.bank.balance(MANAGER, "uusd") == 10 * BUDGET
        assert market.bank.balance(holder_address("pos-1"), MIRROR_ASSET) == 0
        assert market.mint.next_position_idx() == 1
        assert market.terraswap.pool(MIRROR_ASSET).uusd_amount == 10_000_000_000_000

    def test_run_internal_requires_internal_capability(self, engine, manager_token, open_position):
        open_position()

        with pytest.raises(AuthError):
            engine.run_internal(manager_token, "pos-1", RebalanceAndReinvest())

    def test_run_internal_with_internal_token(self, engine, authority, open_position):
        open_position()

        result = engine.run_internal(authority.internal_token, "pos-1", RebalanceAndReinvest())

        assert result.attributes["reinvest_skip"] == "proceeds_locked"


class TestEngineFromSettings:
    """Engine wired from environment settings and risk.yaml."""

    def test_from_settings(self, market, temp_db):
        env = {
            "STATE_DB_PATH": temp_db,
            "AUTHORITY_SECRET": "settings-authority-secret-0123456789abcdef",
            "FEE_COLLECTOR_ADDR": "treasury",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        engine = PositionEngine.from_settings(market.collaborators, settings)
        token = engine.authority.issue(MANAGER, Capability.MANAGER)

        engine.open_position(token, "pos-1", MANAGER, "1.8", "2.2", MIRROR_ASSET, [Asset(denom="uusd", amount=BUDGET)])

        assert engine.context.fee_collector_addr == "treasury"
        assert engine.context.min_open_uusd_amount == 500_000_000
        assert StateStore(db_path=temp_db).get_position("pos-1").status == PositionStatus.ACTIVE
