"""
Reinvestment & Fee Engine.

Harvests the two reward streams and any unlockable short proceeds into
uusd, re-pairs idle uusd and mirror asset as staked LP, and computes the
performance fee charged when a CDP is closed.

Reward tokens are sold on whichever of the two AMMs quotes more uusd.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from delta_neutral.config.context import EngineContext
from delta_neutral.core.curve import compute_lp_mint_amount
from delta_neutral.core.fixed_point import atomics, from_ratio, mul_floor
from delta_neutral.errors import CollaboratorError, ErrorCode
from delta_neutral.models.commands import (
    BondLp,
    ClaimLongFarmReward,
    ClaimShortFarmReward,
    Command,
    ProvideLiquidity,
    Swap,
    UnlockProceeds,
)
from delta_neutral.models.common import SwapVenue
from delta_neutral.models.position import LockInfo, PositionState
from delta_neutral.utils.logger import get_logger
from delta_neutral.venues.base import Collaborators

logger = get_logger(__name__)


class SwapRouter:
    """Best-of-two router across the primary and secondary AMM."""

    def __init__(self, collaborators: Collaborators, context: EngineContext):
        self.collaborators = collaborators
        self.context = context

    def quote(self, venue: SwapVenue, token: str, offer_amount: int) -> int:
        """uusd returned for selling `offer_amount` of token; 0 if no pair exists."""
        exchange = self.collaborators.exchange(venue)
        if exchange.pool(token) is None:
            return 0
        return exchange.simulate(token, token, offer_amount)

    def best_venue(self, token: str, offer_amount: int) -> Tuple[SwapVenue, int]:
        """
        Venue quoting the larger return, with ties going to Terraswap.

        Raises:
            CollaboratorError: If neither AMM lists the token
        """
        if (
            self.collaborators.terraswap.pool(token) is None
            and self.collaborators.astroport.pool(token) is None
        ):
            raise CollaboratorError.from_error_code(
                ErrorCode.PAIR_NOT_FOUND,
                message=f"No {token}/{self.context.stable_denom} pair on either AMM",
                collaborator="router",
            )
        terraswap_return = self.quote(SwapVenue.TERRASWAP, token, offer_amount)
        astroport_return = self.quote(SwapVenue.ASTROPORT, token, offer_amount)
        if astroport_return > terraswap_return:
            return SwapVenue.ASTROPORT, astroport_return
        return SwapVenue.TERRASWAP, terraswap_return

    def swap_token_for_uusd(self, token: str, offer_amount: int) -> Tuple[Swap, int]:
        """Swap command on the better venue plus its quoted uusd return."""
        venue, return_amount = self.best_venue(token, offer_amount)
        logger.debug(
            "swap_routed",
            token=token,
            offer_amount=offer_amount,
            venue=venue.value,
            return_amount=return_amount,
        )
        swap = Swap(venue=venue, pair_token=token, offer_token=token, offer_amount=offer_amount)
        return swap, return_amount


@dataclass
class HarvestResult:
    """Commands that harvest into uusd, plus the expected uusd gained."""

    uusd_increase: int = 0
    commands: List[Command] = field(default_factory=list)


def claim_and_increase_uusd_balance(
    holder: str,
    cdp_idx: Optional[int],
    collaborators: Collaborators,
    context: EngineContext,
    router: Optional[SwapRouter] = None,
) -> HarvestResult:
    """
    Claim both farm rewards and any unlockable proceeds, selling rewards for uusd.

    The returned uusd_increase is added to the in-memory snapshot before
    delta-neutralising, since the commands have not run yet.
    """
    router = router or SwapRouter(collaborators, context)
    result = HarvestResult()

    long_farm_reward = collaborators.long_farm.pending_reward(holder)
    if long_farm_reward > 0:
        swap, return_amount = router.swap_token_for_uusd(context.long_farm_reward_token, long_farm_reward)
        result.commands.extend([ClaimLongFarmReward(), swap])
        result.uusd_increase += return_amount

    short_farm_reward = collaborators.short_farm.pending_reward(holder)
    if short_farm_reward > 0:
        swap, return_amount = router.swap_token_for_uusd(context.short_farm_reward_token, short_farm_reward)
        result.commands.extend([ClaimShortFarmReward(), swap])
        result.uusd_increase += return_amount

    if cdp_idx is not None:
        lock_info = collaborators.lock.lock_info(cdp_idx)
        now = collaborators.clock.block().time_seconds
        if lock_info is not None and lock_info.unlock_time <= now:
            result.commands.append(UnlockProceeds(cdp_idx=cdp_idx))
            result.uusd_increase += lock_info.locked_amount

    if result.commands:
        logger.info(
            "rewards_harvested",
            holder=holder,
            long_farm_reward=long_farm_reward,
            short_farm_reward=short_farm_reward,
            uusd_increase=result.uusd_increase,
        )
    return result


def pair_uusd_with_mirror_asset(
    state: PositionState,
    mirror_asset: str,
    long_farm_exists: bool,
) -> List[Command]:
    """
    Provide idle uusd and mirror asset as liquidity and bond the LP.

    Provides in the pool's ratio, exhausting whichever side is scarcer.
    """
    if state.uusd_balance == 0 or state.mirror_asset_balance == 0 or not long_farm_exists:
        return []

    pool = state.pool_info
    if pool.pool_uusd_amount == 0 or pool.pool_mirror_asset_amount == 0:
        return []
    ratio = min(
        from_ratio(state.uusd_balance, pool.pool_uusd_amount),
        from_ratio(state.mirror_asset_balance, pool.pool_mirror_asset_amount),
    )
    uusd_amount = mul_floor(pool.pool_uusd_amount, ratio)
    mirror_asset_amount = mul_floor(pool.pool_mirror_asset_amount, ratio)
    if uusd_amount == 0 or mirror_asset_amount == 0:
        return []

    lp_token_amount = compute_lp_mint_amount(
        mirror_asset_amount,
        uusd_amount,
        pool.pool_mirror_asset_amount,
        pool.pool_uusd_amount,
        pool.lp_token_total_supply,
    )
    if lp_token_amount == 0:
        return []

    logger.info(
        "liquidity_paired",
        mirror_asset=mirror_asset,
        uusd_amount=uusd_amount,
        mirror_asset_amount=mirror_asset_amount,
        lp_token_amount=lp_token_amount,
    )
    return [
        ProvideLiquidity(
            mirror_asset=mirror_asset,
            mirror_asset_amount=mirror_asset_amount,
            uusd_amount=uusd_amount,
        ),
        BondLp(mirror_asset=mirror_asset, lp_token_amount=lp_token_amount),
    ]


def should_defer_reinvest(lock_info: Optional[LockInfo], now: int) -> bool:
    """Proceeds are locked and not yet unlockable."""
    if lock_info is None or lock_info.locked_amount == 0:
        return False
    return lock_info.unlock_time > now


def compute_performance_fee(position_value: int, fee_baseline: int, performance_rate: Decimal) -> int:
    """
    Fee on the gain over the recorded baseline.

    Example: baseline 1000, value 1200, rate 0.1 -> fee 20.
    """
    gain = max(0, position_value - fee_baseline)
    if gain == 0 or atomics(performance_rate) == 0:
        return 0
    return mul_floor(gain, performance_rate)
