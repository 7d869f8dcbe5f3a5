"""
Collateral-Ratio Rebalancer.

Keeps collateral_value / (short * oracle_price) inside the target range,
always steering back to the midpoint rather than the crossed boundary:

- below min: burn short down to the amount the midpoint allows, funding
  the burn from the long farm
- above max: withdraw the aUST the midpoint does not need and redeem it,
  unless short proceeds are still locked

If the mint market has raised the asset's minimum ratio past the stored
range, the range is raised first so it keeps the safety margin and the
minimum width.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from delta_neutral.config.context import EngineContext
from delta_neutral.core.delta_rebalancer import increase_mirror_asset_balance_from_long_farm
from delta_neutral.core.fixed_point import (
    atomics,
    decimal_add,
    decimal_division,
    decimal_multiplication,
    from_atomics,
    from_ratio,
    mul_floor,
    reverse_decimal,
)
from delta_neutral.models.commands import BurnShort, Command, RedeemStable, WithdrawCollateral
from delta_neutral.models.position import (
    AssetConfig,
    LockInfo,
    PositionState,
    TargetCollateralRatioRange,
)
from delta_neutral.utils.logger import get_logger, log_rebalance_event

logger = get_logger(__name__)


@dataclass
class CollateralRebalanceResult:
    """Commands to run plus the (possibly raised) target range."""

    target_range: TargetCollateralRatioRange
    collateral_ratio: Optional[Decimal] = None
    range_raised: bool = False
    action: str = "none"
    commands: List[Command] = field(default_factory=list)


def compute_collateral_ratio(state: PositionState) -> Optional[Decimal]:
    """Current collateral ratio, or None when nothing is shorted."""
    short_value = mul_floor(state.mirror_asset_short_amount, state.mirror_asset_oracle_price)
    if short_value == 0:
        return None
    return from_ratio(state.collateral_uusd_value, short_value)


def raise_target_range_if_needed(
    target_range: TargetCollateralRatioRange,
    asset_config: AssetConfig,
    context: EngineContext,
) -> Optional[TargetCollateralRatioRange]:
    """Raised range if the asset minimum plus margin overtook it, else None."""
    safe_min = decimal_add(asset_config.min_collateral_ratio, context.collateral_ratio_safety_margin)
    if atomics(target_range.min) >= atomics(safe_min):
        return None
    min_max = atomics(safe_min) + atomics(context.min_target_range_width)
    new_max = from_atomics(max(atomics(target_range.max), min_max))
    return TargetCollateralRatioRange(min=safe_min, max=new_max)


def increase_uusd_balance_from_aust_collateral(cdp_idx: int, anchor_ust_amount: int) -> List[Command]:
    return [
        WithdrawCollateral(cdp_idx=cdp_idx, collateral_amount=anchor_ust_amount),
        RedeemStable(anchor_ust_amount=anchor_ust_amount),
    ]


def achieve_safe_collateral_ratio(
    state: PositionState,
    target_range: TargetCollateralRatioRange,
    asset_config: AssetConfig,
    cdp_idx: int,
    mirror_asset: str,
    context: EngineContext,
    lock_info: Optional[LockInfo] = None,
) -> CollateralRebalanceResult:
    """
    Commands that move the collateral ratio back to the range midpoint.

    Args:
        state: Fresh position snapshot
        target_range: Stored target range
        asset_config: Mint-market config of the asset
        cdp_idx: CDP to act on
        mirror_asset: Mirror asset token
        context: Engine context (safety margin, range width)
        lock_info: Short proceeds lock of the CDP, if any

    Returns:
        CollateralRebalanceResult; its target_range must be persisted when range_raised
    """
    result = CollateralRebalanceResult(target_range=target_range)

    raised = raise_target_range_if_needed(target_range, asset_config, context)
    if raised is not None:
        logger.info(
            "target_range_raised",
            mirror_asset=mirror_asset,
            old_min=str(target_range.min),
            old_max=str(target_range.max),
            new_min=str(raised.min),
            new_max=str(raised.max),
        )
        result.target_range = raised
        result.range_raised = True
        target_range = raised

    collateral_ratio = compute_collateral_ratio(state)
    result.collateral_ratio = collateral_ratio
    if collateral_ratio is None:
        return result

    mid = target_range.midpoint()
    if atomics(collateral_ratio) < atomics(target_range.min):
        target_short_amount = mul_floor(
            state.collateral_uusd_value,
            reverse_decimal(decimal_multiplication(mid, state.mirror_asset_oracle_price)),
        )
        burn_amount = state.mirror_asset_short_amount - target_short_amount
        if burn_amount <= 0:
            return result
        result.action = "burn"
        result.commands.extend(increase_mirror_asset_balance_from_long_farm(state, mirror_asset, burn_amount))
        result.commands.append(BurnShort(cdp_idx=cdp_idx, mirror_asset=mirror_asset, amount=burn_amount))
        log_rebalance_event(
            logger,
            "burn_short",
            mirror_asset,
            state.mirror_asset_long_amount,
            state.mirror_asset_short_amount,
            collateral_ratio=str(collateral_ratio),
            burn_amount=burn_amount,
        )
    elif atomics(collateral_ratio) > atomics(target_range.max):
        if lock_info is not None and lock_info.locked_amount != 0:
            result.action = "skipped_locked"
            logger.info(
                f"Collateral ratio {collateral_ratio} above max but {lock_info.locked_amount} "
                f"uusd proceeds still locked; not withdrawing"
            )
            return result
        target_anchor_ust_amount = mul_floor(
            mul_floor(state.mirror_asset_short_amount, state.mirror_asset_oracle_price),
            decimal_division(mid, state.anchor_ust_oracle_price),
        )
        withdraw_amount = state.collateral_anchor_ust_amount - target_anchor_ust_amount
        if withdraw_amount <= 0:
            return result
        result.action = "withdraw"
        result.commands.extend(increase_uusd_balance_from_aust_collateral(cdp_idx, withdraw_amount))
        log_rebalance_event(
            logger,
            "withdraw_collateral",
            mirror_asset,
            state.mirror_asset_long_amount,
            state.mirror_asset_short_amount,
            collateral_ratio=str(collateral_ratio),
            withdraw_anchor_ust_amount=withdraw_amount,
        )
    return result
