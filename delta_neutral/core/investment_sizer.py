"""
Investment Sizing Algorithm.

Splits a uusd budget into CDP collateral and a long swap so that the
minted short and the bought long are the same amount of mirror asset.

Opening a short on the mint market auto-sells the minted asset into the
same Terraswap pool the long is then bought from, so the two legs are
coupled through the pool. There is no closed form: we binary search the
largest collateral amount for which

    collateral + min_offer(post-short pool, minted amount) <= budget

Every step mirrors the mint market's own arithmetic (including where it
floors), otherwise the long bought would miss the short by a unit and
the post-open sanity check would fail.

Example (pool 1,000,000 mAsset / 9,000,000 uusd, aUST rate 1.1, oracle 10,
target range [1.8, 2.2], budget 600 uusd):
- collateral 420 uusd -> 381 aUST
- mint 381 * (1.1 / 10) / 2.0 = 20 mAsset, auto-sold into the pool
- buy the 20 back for 180 uusd; 420 + 180 = 600
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from delta_neutral.config.context import EngineContext
from delta_neutral.core.curve import compute_min_offer_for_ask, simulate_swap
from delta_neutral.core.fixed_point import (
    atomics,
    decimal_add,
    decimal_division,
    div_floor,
    mul_floor,
    reverse_decimal,
)
from delta_neutral.errors import ErrorCode, InsufficientLiquidityError, ValidationError
from delta_neutral.models.commands import (
    Command,
    DepositCollateral,
    DepositStable,
    MintShort,
    OpenCdp,
    Swap,
)
from delta_neutral.models.common import SwapVenue
from delta_neutral.models.position import AssetConfig, TargetCollateralRatioRange
from delta_neutral.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SizingResult:
    """Outcome of the collateral binary search."""

    uusd_collateral_amount: int
    collateral_anchor_ust_amount: int
    mirror_asset_mint_amount: int
    uusd_long_swap_amount: int


@dataclass
class InvestmentPlan:
    """Sizing plus the commands that carry it out."""

    sizing: SizingResult
    collateral_ratio: Decimal
    commands: List[Command] = field(default_factory=list)


def validate_target_range(
    target_range: TargetCollateralRatioRange,
    asset_config: AssetConfig,
    context: EngineContext,
) -> None:
    """
    Reject a delisted asset or an unsafe or too narrow target range.

    Raises:
        ValidationError: On any of the three conditions
    """
    if asset_config.is_delisted:
        raise ValidationError.from_error_code(ErrorCode.ASSET_DELISTED, field="mirror_asset")

    safe_min = decimal_add(asset_config.min_collateral_ratio, context.collateral_ratio_safety_margin)
    if atomics(target_range.min) < atomics(safe_min):
        raise ValidationError.from_error_code(
            ErrorCode.UNSAFE_COLLATERAL_RATIO,
            field="target_min_collateral_ratio",
            details={"minimum": str(safe_min), "requested": str(target_range.min)},
        )

    if not target_range.is_wide_enough(context.min_target_range_width):
        raise ValidationError.from_error_code(
            ErrorCode.RANGE_TOO_NARROW,
            field="target_max_collateral_ratio",
            details={"min_width": str(context.min_target_range_width)},
        )


def _simulate_investment(
    uusd_collateral_amount: int,
    collateral_ratio: Decimal,
    anchor_ust_exchange_rate: Decimal,
    mirror_asset_oracle_price: Decimal,
    pool_mirror_asset_amount: int,
    pool_uusd_amount: int,
) -> SizingResult:
    """
    Simulate one candidate collateral amount.

    Raises:
        InsufficientLiquidityError: If the pool cannot supply the minted amount back
    """
    collateral_anchor_ust_amount = div_floor(uusd_collateral_amount, anchor_ust_exchange_rate)
    mirror_asset_mint_amount = mul_floor(
        mul_floor(
            collateral_anchor_ust_amount,
            decimal_division(anchor_ust_exchange_rate, mirror_asset_oracle_price),
        ),
        reverse_decimal(collateral_ratio),
    )

    # The mint market sells the minted asset into the pool first.
    pool_mirror_asset_after_short, pool_uusd_after_short, _ = simulate_swap(
        pool_mirror_asset_amount,
        pool_uusd_amount,
        mirror_asset_mint_amount,
    )
    uusd_long_swap_amount = compute_min_offer_for_ask(
        pool_mirror_asset_after_short,
        pool_uusd_after_short,
        mirror_asset_mint_amount,
    )
    return SizingResult(
        uusd_collateral_amount=uusd_collateral_amount,
        collateral_anchor_ust_amount=collateral_anchor_ust_amount,
        mirror_asset_mint_amount=mirror_asset_mint_amount,
        uusd_long_swap_amount=uusd_long_swap_amount,
    )


def find_collateral_uusd_amount(
    uusd_budget: int,
    collateral_ratio: Decimal,
    anchor_ust_exchange_rate: Decimal,
    mirror_asset_oracle_price: Decimal,
    pool_mirror_asset_amount: int,
    pool_uusd_amount: int,
) -> SizingResult:
    """
    Binary search the largest feasible collateral amount within the budget.

    `a` is always feasible (zero collateral trivially is) and `b` is the
    smallest value not yet known to be feasible.
    """
    a, b = 0, uusd_budget
    while b > a + 1:
        candidate = (a + b) >> 1
        try:
            result = _simulate_investment(
                candidate,
                collateral_ratio,
                anchor_ust_exchange_rate,
                mirror_asset_oracle_price,
                pool_mirror_asset_amount,
                pool_uusd_amount,
            )
            feasible = candidate + result.uusd_long_swap_amount <= uusd_budget
        except InsufficientLiquidityError:
            feasible = False
        if feasible:
            a = candidate
        else:
            b = candidate

    return _simulate_investment(
        a,
        collateral_ratio,
        anchor_ust_exchange_rate,
        mirror_asset_oracle_price,
        pool_mirror_asset_amount,
        pool_uusd_amount,
    )


def delta_neutral_invest(
    uusd_budget: int,
    target_range: TargetCollateralRatioRange,
    mirror_asset: str,
    asset_config: AssetConfig,
    mirror_asset_oracle_price: Decimal,
    anchor_ust_exchange_rate: Decimal,
    pool_mirror_asset_amount: int,
    pool_uusd_amount: int,
    context: EngineContext,
    cdp_idx: Optional[int] = None,
) -> InvestmentPlan:
    """
    Size an investment and emit: deposit collateral, open or grow the CDP, buy the long.

    With no `cdp_idx` a new CDP is opened; otherwise collateral is
    deposited into the existing one and the short is minted against it.

    Raises:
        ValidationError: If the asset is delisted or the range is unsafe
    """
    validate_target_range(target_range, asset_config, context)

    collateral_ratio = target_range.midpoint()
    sizing = find_collateral_uusd_amount(
        uusd_budget,
        collateral_ratio,
        anchor_ust_exchange_rate,
        mirror_asset_oracle_price,
        pool_mirror_asset_amount,
        pool_uusd_amount,
    )
    plan = InvestmentPlan(sizing=sizing, collateral_ratio=collateral_ratio)

    logger.info(
        "investment_sized",
        mirror_asset=mirror_asset,
        uusd_budget=uusd_budget,
        uusd_collateral_amount=sizing.uusd_collateral_amount,
        collateral_anchor_ust_amount=sizing.collateral_anchor_ust_amount,
        mirror_asset_mint_amount=sizing.mirror_asset_mint_amount,
        uusd_long_swap_amount=sizing.uusd_long_swap_amount,
        cdp_idx=cdp_idx,
    )

    if sizing.mirror_asset_mint_amount == 0:
        logger.info(f"Budget {uusd_budget} too small to mint any {mirror_asset}; nothing to invest")
        return plan

    plan.commands.append(DepositStable(uusd_amount=sizing.uusd_collateral_amount))
    if cdp_idx is None:
        plan.commands.append(OpenCdp(
            collateral_amount=sizing.collateral_anchor_ust_amount,
            mirror_asset=mirror_asset,
            collateral_ratio=collateral_ratio,
        ))
    else:
        plan.commands.append(DepositCollateral(
            cdp_idx=cdp_idx,
            collateral_amount=sizing.collateral_anchor_ust_amount,
        ))
        plan.commands.append(MintShort(
            cdp_idx=cdp_idx,
            mirror_asset=mirror_asset,
            amount=sizing.mirror_asset_mint_amount,
        ))
    plan.commands.append(Swap(
        venue=SwapVenue.TERRASWAP,
        pair_token=mirror_asset,
        offer_token=context.stable_denom,
        offer_amount=sizing.uusd_long_swap_amount,
    ))
    return plan
