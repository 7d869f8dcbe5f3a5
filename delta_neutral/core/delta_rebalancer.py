"""
Delta achievement.

Brings the long leg (liquid mirror asset plus the asset share of bonded
LP) back to the CDP short amount. We try to unbond as little LP as
possible: re-bonding costs a farm fee and LP held through our own swaps
earns back part of the pool commission.

The two directions use deliberately different binary searches:

- Net long: after any LP withdrawal, search the largest offer that still
  leaves long >= short and sell exactly that much. Exact neutrality or a
  small net-long residual.
- Net short: search the smallest uusd offer that makes long >= short.
  Rounding can only leave a small net-long residual, never net short.

Both searches run on the snapshot alone; every pool move is simulated.
"""
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Tuple

from delta_neutral.core.curve import compute_withdrawn_amount, simulate_swap
from delta_neutral.core.fixed_point import from_ratio, mul_floor, multiply_ratio
from delta_neutral.models.commands import Command, Swap, UnbondLp, WithdrawLiquidity
from delta_neutral.models.common import SwapVenue
from delta_neutral.models.position import PositionState
from delta_neutral.utils.logger import get_logger, log_rebalance_event

if TYPE_CHECKING:
    from delta_neutral.core.reinvest import SwapRouter

logger = get_logger(__name__)


def _lp_share(lp_token_amount: int, lp_token_total_supply: int) -> Decimal:
    if lp_token_total_supply == 0:
        return Decimal(0)
    return from_ratio(lp_token_amount, lp_token_total_supply)


def unbond_and_withdraw_liquidity(mirror_asset: str, lp_token_amount: int) -> List[Command]:
    return [
        UnbondLp(mirror_asset=mirror_asset, lp_token_amount=lp_token_amount),
        WithdrawLiquidity(mirror_asset=mirror_asset, lp_token_amount=lp_token_amount),
    ]


def increase_mirror_asset_balance_from_long_farm(
    state: PositionState,
    mirror_asset: str,
    target_mirror_asset_balance: int,
) -> List[Command]:
    """
    Unbond just enough LP for the liquid balance to reach the target.

    The proportional estimate can fall a unit short because the pool
    floors the withdrawn share, so it is nudged up until it covers.
    """
    if target_mirror_asset_balance <= state.mirror_asset_balance:
        return []
    pool = state.pool_info
    if pool.lp_token_amount == 0 or state.mirror_asset_long_farm == 0:
        return []

    needed = target_mirror_asset_balance - state.mirror_asset_balance
    withdraw_lp_token_amount = multiply_ratio(pool.lp_token_amount, needed, state.mirror_asset_long_farm)
    while (
        withdraw_lp_token_amount < pool.lp_token_amount
        and compute_withdrawn_amount(
            pool.pool_mirror_asset_amount,
            withdraw_lp_token_amount,
            pool.lp_token_total_supply,
        ) < needed
    ):
        withdraw_lp_token_amount += 1
    withdraw_lp_token_amount = min(withdraw_lp_token_amount, pool.lp_token_amount)
    if withdraw_lp_token_amount == 0:
        return []
    return unbond_and_withdraw_liquidity(mirror_asset, withdraw_lp_token_amount)


def _resolve_net_long(state: PositionState, mirror_asset: str) -> Tuple[List[Command], int, int]:
    """Return (LP withdrawal commands, mirror asset amount to sell, LP left bonded)."""
    pool = state.pool_info
    short_amount = state.mirror_asset_short_amount

    # Leftmost LP withdrawal for which selling the whole liquid balance
    # (plus what was withdrawn) no longer leaves the farm share net long.
    a, b = 0, pool.lp_token_amount + 1
    pool_mirror_asset_after_swap = pool.pool_mirror_asset_amount + state.mirror_asset_balance
    while a < b:
        withdraw_lp = (a + b) >> 1
        long_farm_amount = mul_floor(
            pool_mirror_asset_after_swap,
            _lp_share(pool.lp_token_amount - withdraw_lp, pool.lp_token_total_supply - withdraw_lp),
        )
        if long_farm_amount > short_amount:
            a = withdraw_lp + 1
        else:
            b = withdraw_lp
    withdraw_lp_token_amount = min(a, pool.lp_token_amount)

    commands: List[Command] = []
    mirror_asset_balance = state.mirror_asset_balance
    pool_mirror_asset_amount = pool.pool_mirror_asset_amount
    lp_token_amount = pool.lp_token_amount
    lp_token_total_supply = pool.lp_token_total_supply
    if withdraw_lp_token_amount > 0:
        commands.extend(unbond_and_withdraw_liquidity(mirror_asset, withdraw_lp_token_amount))
        withdrawn = mul_floor(
            pool.pool_mirror_asset_amount,
            from_ratio(withdraw_lp_token_amount, pool.lp_token_total_supply),
        )
        mirror_asset_balance += withdrawn
        pool_mirror_asset_amount -= withdrawn
        lp_token_amount -= withdraw_lp_token_amount
        lp_token_total_supply -= withdraw_lp_token_amount

    # Rightmost offer that keeps long >= short; b - 1 once the loop ends.
    a, b = 0, mirror_asset_balance + 1
    lp_ratio = _lp_share(lp_token_amount, lp_token_total_supply)
    while a < b:
        offer = (a + b) >> 1
        new_long_amount = (
            mirror_asset_balance
            - offer
            + mul_floor(pool_mirror_asset_amount + offer, lp_ratio)
        )
        if new_long_amount >= short_amount:
            a = offer + 1
        else:
            b = offer
    offer_amount = b - 1 if b > 1 else 0
    return commands, offer_amount, lp_token_amount


def _resolve_net_short(state: PositionState, mirror_asset: str) -> Tuple[List[Command], int]:
    """Return (LP withdrawal commands, uusd amount to swap for mirror asset)."""
    pool = state.pool_info
    short_amount = state.mirror_asset_short_amount

    # Leftmost LP withdrawal for which swapping all liquid uusd closes the gap.
    a, b = 0, pool.lp_token_amount + 1
    while a < b:
        withdraw_lp = (a + b) >> 1
        fraction = _lp_share(withdraw_lp, pool.lp_token_total_supply)
        withdrawn_mirror_asset = mul_floor(pool.pool_mirror_asset_amount, fraction)
        withdrawn_uusd = mul_floor(pool.pool_uusd_amount, fraction)
        _, pool_mirror_asset_after_swap, returned = simulate_swap(
            pool.pool_uusd_amount - withdrawn_uusd,
            pool.pool_mirror_asset_amount - withdrawn_mirror_asset,
            withdrawn_uusd + state.uusd_balance,
        )
        long_amount = (
            state.mirror_asset_balance
            + withdrawn_mirror_asset
            + returned
            + mul_floor(
                pool_mirror_asset_after_swap,
                _lp_share(pool.lp_token_amount - withdraw_lp, pool.lp_token_total_supply - withdraw_lp),
            )
        )
        if long_amount < short_amount:
            a = withdraw_lp + 1
        else:
            b = withdraw_lp
    withdraw_lp_token_amount = min(a, pool.lp_token_amount)

    commands: List[Command] = []
    mirror_asset_balance = state.mirror_asset_balance
    uusd_balance = state.uusd_balance
    pool_mirror_asset_amount = pool.pool_mirror_asset_amount
    pool_uusd_amount = pool.pool_uusd_amount
    lp_token_amount = pool.lp_token_amount
    lp_token_total_supply = pool.lp_token_total_supply
    if withdraw_lp_token_amount > 0:
        commands.extend(unbond_and_withdraw_liquidity(mirror_asset, withdraw_lp_token_amount))
        fraction = from_ratio(withdraw_lp_token_amount, pool.lp_token_total_supply)
        withdrawn_mirror_asset = mul_floor(pool.pool_mirror_asset_amount, fraction)
        withdrawn_uusd = mul_floor(pool.pool_uusd_amount, fraction)
        mirror_asset_balance += withdrawn_mirror_asset
        uusd_balance += withdrawn_uusd
        pool_mirror_asset_amount -= withdrawn_mirror_asset
        pool_uusd_amount -= withdrawn_uusd
        lp_token_amount -= withdraw_lp_token_amount
        lp_token_total_supply -= withdraw_lp_token_amount

    # Leftmost uusd offer that reaches long >= short.
    a, b = 0, uusd_balance + 1
    lp_ratio = _lp_share(lp_token_amount, lp_token_total_supply)
    while a < b:
        offer = (a + b) >> 1
        _, pool_mirror_asset_after_swap, returned = simulate_swap(
            pool_uusd_amount,
            pool_mirror_asset_amount,
            offer,
        )
        long_amount = mul_floor(pool_mirror_asset_after_swap, lp_ratio) + returned + mirror_asset_balance
        if long_amount < short_amount:
            a = offer + 1
        else:
            b = offer
    return commands, min(a, uusd_balance)


def achieve_delta_neutral_from_state(
    state: PositionState,
    mirror_asset: str,
    stable_denom: str = "uusd",
    router: Optional["SwapRouter"] = None,
) -> List[Command]:
    """
    Commands that bring the snapshot back to delta-neutral.

    Args:
        state: Fresh position snapshot, with harvested uusd already added
        mirror_asset: Mirror asset token of the position
        stable_denom: uusd denom
        router: Best-of-two router for selling mirror asset; Terraswap when omitted

    Returns:
        LP unbond/withdraw commands (if any) followed by at most one swap
    """
    long_amount = state.mirror_asset_long_amount
    short_amount = state.mirror_asset_short_amount

    if long_amount > short_amount:
        commands, offer_amount, lp_token_amount_left = _resolve_net_long(state, mirror_asset)
        if offer_amount > 0:
            # The search priced the sale into the Terraswap pool our remaining
            # LP sits in; only route elsewhere once no LP is left.
            if router is not None and lp_token_amount_left == 0:
                swap, _ = router.swap_token_for_uusd(mirror_asset, offer_amount)
            else:
                swap = Swap(
                    venue=SwapVenue.TERRASWAP,
                    pair_token=mirror_asset,
                    offer_token=mirror_asset,
                    offer_amount=offer_amount,
                )
            commands.append(swap)
        log_rebalance_event(
            logger,
            "sell_net_long",
            mirror_asset,
            long_amount,
            short_amount,
            offer_mirror_asset_amount=offer_amount,
            commands=len(commands),
        )
        return commands

    if long_amount < short_amount:
        commands, offer_uusd_amount = _resolve_net_short(state, mirror_asset)
        if offer_uusd_amount > 0:
            commands.append(Swap(
                venue=SwapVenue.TERRASWAP,
                pair_token=mirror_asset,
                offer_token=stable_denom,
                offer_amount=offer_uusd_amount,
            ))
        log_rebalance_event(
            logger,
            "buy_net_short",
            mirror_asset,
            long_amount,
            short_amount,
            offer_uusd_amount=offer_uusd_amount,
            commands=len(commands),
        )
        return commands

    return []

