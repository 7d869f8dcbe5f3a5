"""
Keeper advisor.

Tells a keeper bot whether a RebalanceAndReinvest call on a position is
worth submitting right now, and why. Checks run in a fixed order and the
first one that decides wins.
"""
from dataclasses import dataclass

from delta_neutral.config.context import EngineContext
from delta_neutral.core.fixed_point import atomics, decimal_add, mul_floor, to_decimal
from delta_neutral.core.valuation import PositionValuator
from delta_neutral.models.common import CdpLookupStatus, RebalanceReason
from delta_neutral.models.position import PositionRecord
from delta_neutral.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class KeeperAdvice:
    """Whether to call RebalanceAndReinvest, with the deciding reason."""
    should_call: bool
    reason: RebalanceReason

    def to_dict(self) -> dict:
        return {"should_call": self.should_call, "reason": self.reason.value}


class KeeperAdvisor:
    """Evaluates positions for the keeper's periodic sweep."""

    def __init__(self, context: EngineContext, valuator: PositionValuator):
        self.context = context
        self.valuator = valuator

    def _advice(self, record: PositionRecord, should_call: bool, reason: RebalanceReason) -> KeeperAdvice:
        logger.debug(
            "keeper_advice",
            position_id=record.position_id,
            should_call=should_call,
            reason=reason.value,
        )
        return KeeperAdvice(should_call=should_call, reason=reason)

    def should_call_rebalance_and_reinvest(self, record: PositionRecord) -> KeeperAdvice:
        """
        Advise on one position.

        Raises:
            CollaboratorError: If the CDP query fails transiently
        """
        if record.is_closed:
            return self._advice(record, False, RebalanceReason.POSITION_CLOSED)
        if record.cdp_preemptively_closed:
            return self._advice(record, False, RebalanceReason.CDP_PREEMPTIVELY_CLOSED)

        if record.cdp_idx is not None:
            lookup = self.valuator.require_cdp_lookup(record.cdp_idx)
            if lookup.status == CdpLookupStatus.NOT_FOUND:
                return self._advice(record, True, RebalanceReason.LIKELY_FULL_LIQUIDATION)

        mirror_asset = record.mirror_asset
        if self.valuator.fresh_oracle_rate(mirror_asset) is None:
            return self._advice(record, False, RebalanceReason.ORACLE_PRICE_STALE)

        if record.cdp_idx is None:
            return self._advice(record, True, RebalanceReason.DELAYED_DN_OPEN)

        asset_config = self.valuator.collaborators.mint.asset_config(mirror_asset)
        if mirror_asset in self.context.should_preemptively_close or asset_config.is_delisted:
            return self._advice(record, True, RebalanceReason.PREEMPTIVELY_CLOSE_CDP)

        safe_min = decimal_add(asset_config.min_collateral_ratio, self.context.collateral_ratio_safety_margin)
        if record.target_range is not None and atomics(safe_min) > atomics(record.target_range.min):
            return self._advice(record, True, RebalanceReason.RAISE_TARGET_CR_RANGE)

        info = self.valuator.compute_detailed_info(record)
        pending_unlock = (
            info.unclaimed_short_proceeds_uusd_amount != 0
            and info.claimable_short_proceeds_uusd_amount == 0
        )

        if info.collateral_ratio is not None and record.target_range is not None:
            collateral_ratio = atomics(to_decimal(info.collateral_ratio))
            if collateral_ratio < atomics(record.target_range.min):
                return self._advice(record, True, RebalanceReason.CR_BELOW_MIN)
            if collateral_ratio > atomics(record.target_range.max) and not pending_unlock:
                return self._advice(record, True, RebalanceReason.CR_ABOVE_MAX)

        long_amount = info.state.mirror_asset_long_amount
        short_amount = info.state.mirror_asset_short_amount
        if abs(long_amount - short_amount) > mul_floor(
            long_amount, self.context.mirror_asset_net_amount_tolerance_ratio
        ):
            return self._advice(record, True, RebalanceReason.DELTA_ABOVE_THRESHOLD)

        liquid_uusd_amount = (
            info.state.uusd_balance
            + info.claimable_long_farm_reward_uusd_value
            + info.claimable_short_farm_reward_uusd_value
            + info.claimable_short_proceeds_uusd_amount
        )
        if (
            liquid_uusd_amount > mul_floor(max(info.uusd_value, 0), self.context.liquid_uusd_threshold_ratio)
            and not pending_unlock
        ):
            return self._advice(record, True, RebalanceReason.LIQUID_UUSD_ABOVE_THRESHOLD)

        return self._advice(record, False, RebalanceReason.LOOKS_GOOD)
