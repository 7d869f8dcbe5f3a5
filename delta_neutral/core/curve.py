"""
Constant-product AMM curve simulator.

Pure functions of pool reserves, independent of any live pair. The swap
formula follows the Terraswap pair contract bit for bit:

    cp     = offer_reserve * ask_reserve
    return = floor(ask_reserve - cp / (offer_reserve + offer_amount))
    return = return - floor(return * 3 / 1000)

The division is carried on 18-decimal fixed point, as the pair does, so
the inverse cannot be computed algebraically without under-returning.
compute_min_offer_for_ask() therefore binary searches the offer amount.
"""
from typing import Tuple

from delta_neutral.core.fixed_point import (
    DECIMAL_ONE,
    UINT128_MAX,
    from_ratio,
    isqrt,
    mul_floor,
)
from delta_neutral.errors import ErrorCode, InsufficientLiquidityError

COMMISSION_NUMERATOR = 3
COMMISSION_DENOMINATOR = 1000


def simulate_swap(offer_reserve: int, ask_reserve: int, offer_amount: int) -> Tuple[int, int, int]:
    """
    Simulate swapping `offer_amount` into a constant-product pool.

    Args:
        offer_reserve: Pool balance of the token being offered
        ask_reserve: Pool balance of the token being asked for
        offer_amount: Amount offered

    Returns:
        (new_offer_reserve, new_ask_reserve, return_amount)
    """
    if offer_amount == 0:
        return offer_reserve, ask_reserve, 0

    cp = offer_reserve * ask_reserve
    ask_after_atomics = cp * DECIMAL_ONE // (offer_reserve + offer_amount)
    return_amount = (ask_reserve * DECIMAL_ONE - ask_after_atomics) // DECIMAL_ONE
    commission = return_amount * COMMISSION_NUMERATOR // COMMISSION_DENOMINATOR
    return_amount -= commission
    return offer_reserve + offer_amount, ask_reserve - return_amount, return_amount


def compute_min_offer_for_ask(ask_reserve: int, offer_reserve: int, ask_amount: int) -> int:
    """
    Find the least offer amount whose simulated return covers `ask_amount`.

    Raises:
        InsufficientLiquidityError: If the pool cannot return `ask_amount`
    """
    if ask_amount >= ask_reserve:
        raise InsufficientLiquidityError.from_error_code(
            ErrorCode.INSUFFICIENT_LIQUIDITY,
            ask_amount=ask_amount,
            ask_reserve=ask_reserve,
        )

    low, high = 0, UINT128_MAX
    while low < high:
        offer_amount = (low + high) >> 1
        _, _, return_amount = simulate_swap(offer_reserve, ask_reserve, offer_amount)
        if return_amount >= ask_amount:
            high = offer_amount
        else:
            low = offer_amount + 1

    # Commission caps the achievable return below ask_reserve.
    if simulate_swap(offer_reserve, ask_reserve, low)[2] < ask_amount:
        raise InsufficientLiquidityError.from_error_code(
            ErrorCode.INSUFFICIENT_LIQUIDITY,
            ask_amount=ask_amount,
            ask_reserve=ask_reserve,
        )
    return low


def compute_withdrawn_amount(pool_amount: int, lp_amount: int, lp_total_supply: int) -> int:
    """Pool share released for `lp_amount` LP tokens (share ratio floored first)."""
    if lp_amount == 0:
        return 0
    return mul_floor(pool_amount, from_ratio(lp_amount, lp_total_supply))


def compute_lp_mint_amount(
    asset_amount: int,
    uusd_amount: int,
    pool_asset_amount: int,
    pool_uusd_amount: int,
    lp_total_supply: int,
) -> int:
    """LP tokens minted for providing the given amounts of liquidity."""
    if lp_total_supply == 0:
        return isqrt(asset_amount * uusd_amount)
    return min(
        asset_amount * lp_total_supply // pool_asset_amount,
        uusd_amount * lp_total_supply // pool_uusd_amount,
    )
