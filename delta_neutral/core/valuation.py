"""
Position Valuation Engine.

Reads every collaborator once and folds the answers into a PositionState
snapshot. Reads only; nothing here mutates a collaborator. Binary searches
downstream run against this snapshot and never query mid-search.

CDP lookups are three-valued. A CDP that was never opened or that the
mint market reports as gone values at zero; a transient query failure is
raised as CollaboratorError so the invocation rolls back instead of
mistaking an outage for a liquidation.
"""
from decimal import Decimal
from typing import Optional

from delta_neutral.config.context import EngineContext
from delta_neutral.core.curve import compute_min_offer_for_ask, simulate_swap
from delta_neutral.core.fixed_point import from_ratio, mul_floor, multiply_ratio
from delta_neutral.errors import CollaboratorError, ErrorCode, InsufficientLiquidityError
from delta_neutral.models.common import CdpLookupStatus, SwapVenue
from delta_neutral.models.position import (
    CdpLookup,
    LockInfo,
    PoolInfo,
    PositionRecord,
    PositionState,
)
from delta_neutral.models.responses import (
    DetailedPositionInfo,
    PoolInfoResponse,
    PositionStateResponse,
    TargetRangeResponse,
)
from delta_neutral.utils.logger import get_logger
from delta_neutral.venues.base import Collaborators

logger = get_logger(__name__)


class PositionValuator:
    """Builds PositionState snapshots and the GetPositionInfo detail."""

    def __init__(self, context: EngineContext, collaborators: Collaborators):
        self.context = context
        self.collaborators = collaborators

    # ------------------------------------------------------------------
    # Individual reads
    # ------------------------------------------------------------------

    def query_cdp(self, cdp_idx: int) -> CdpLookup:
        return self.collaborators.mint.query_position(cdp_idx)

    def require_cdp_lookup(self, cdp_idx: int) -> CdpLookup:
        """Query the CDP, raising on a transient failure."""
        lookup = self.query_cdp(cdp_idx)
        if lookup.status == CdpLookupStatus.TRANSIENT_ERROR:
            logger.warning(f"CDP {cdp_idx} query failed transiently: {lookup.error}")
            raise CollaboratorError.from_error_code(
                ErrorCode.COLLABORATOR_UNAVAILABLE,
                message=f"CDP {cdp_idx} query failed: {lookup.error}",
                collaborator="mint",
            )
        return lookup

    def fresh_oracle_rate(self, mirror_asset: str) -> Optional[Decimal]:
        """Oracle rate if it was updated within the expiry window, else None."""
        price = self.collaborators.oracle.price(mirror_asset)
        now = self.collaborators.clock.block().time_seconds
        if price.is_fresh(now, self.context.price_expire_seconds):
            return price.rate
        return None

    def lock_info(self, cdp_idx: Optional[int]) -> Optional[LockInfo]:
        if cdp_idx is None:
            return None
        return self.collaborators.lock.lock_info(cdp_idx)

    def is_pending_unlock(self, cdp_idx: Optional[int]) -> bool:
        """Short proceeds are locked and cannot be claimed yet."""
        info = self.lock_info(cdp_idx)
        if info is None or info.locked_amount == 0:
            return False
        return info.unlock_time > self.collaborators.clock.block().time_seconds

    def anchor_ust_value(self, holder: str) -> int:
        """Redemption value of the aUST held outside the CDP."""
        balance = self.collaborators.bank.balance(holder, self.context.collateral_token)
        return mul_floor(balance, self.collaborators.lending.exchange_rate())

    def get_pool_info(self, holder: str, mirror_asset: str) -> PoolInfo:
        pool = self.collaborators.terraswap.pool(mirror_asset)
        if pool is None:
            raise CollaboratorError.from_error_code(
                ErrorCode.PAIR_NOT_FOUND,
                message=f"No terraswap pair for {mirror_asset}",
                collaborator="terraswap",
            )
        lp_token_amount = 0
        if self.collaborators.long_farm.farm_exists(mirror_asset):
            lp_token_amount = self.collaborators.long_farm.bond_amount(holder, mirror_asset)
        return PoolInfo(
            pair_address=pool.pair_address,
            lp_token_address=pool.lp_token_address,
            lp_token_amount=lp_token_amount,
            lp_token_total_supply=pool.lp_token_total_supply,
            pool_mirror_asset_amount=pool.token_amount,
            pool_uusd_amount=pool.uusd_amount,
        )

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def get_position_state(self, record: PositionRecord) -> PositionState:
        """
        Snapshot every balance and price of the position.

        Raises:
            CollaboratorError: If the CDP query fails transiently
        """
        holder = record.holder
        mirror_asset = record.mirror_asset
        bank = self.collaborators.bank

        collateral_amount = 0
        short_amount = 0
        if record.cdp_idx is not None:
            lookup = self.require_cdp_lookup(record.cdp_idx)
            if lookup.is_found:
                collateral_amount = lookup.cdp.collateral_amount
                short_amount = lookup.cdp.short_amount

        anchor_ust_price = self.collaborators.oracle.collateral_price(self.context.collateral_token)
        pool_info = self.get_pool_info(holder, mirror_asset)

        mirror_asset_long_farm = 0
        uusd_long_farm = 0
        if pool_info.lp_token_amount > 0:
            mirror_asset_long_farm = multiply_ratio(
                pool_info.lp_token_amount,
                pool_info.pool_mirror_asset_amount,
                pool_info.lp_token_total_supply,
            )
            uusd_long_farm = multiply_ratio(
                pool_info.lp_token_amount,
                pool_info.pool_uusd_amount,
                pool_info.lp_token_total_supply,
            )

        return PositionState(
            uusd_balance=bank.balance(holder, self.context.stable_denom),
            uusd_long_farm=uusd_long_farm,
            mirror_asset_short_amount=short_amount,
            mirror_asset_balance=bank.balance(holder, mirror_asset),
            mirror_asset_long_farm=mirror_asset_long_farm,
            collateral_anchor_ust_amount=collateral_amount,
            collateral_uusd_value=mul_floor(collateral_amount, anchor_ust_price),
            mirror_asset_oracle_price=self.collaborators.oracle.price(mirror_asset).rate,
            anchor_ust_oracle_price=anchor_ust_price,
            pool_info=pool_info,
        )

    # ------------------------------------------------------------------
    # Query detail
    # ------------------------------------------------------------------

    def _quote_primary(self, token: str, amount: int) -> int:
        if amount == 0 or self.collaborators.terraswap.pool(token) is None:
            return 0
        return self.collaborators.terraswap.simulate(token, token, amount)

    def _net_short_cost(self, record: PositionRecord, state: PositionState, net_short_amount: int) -> int:
        """uusd needed to buy back the net short; priced at the oracle when the pool is too shallow."""
        pool = state.pool_info
        try:
            return compute_min_offer_for_ask(
                pool.pool_mirror_asset_amount,
                pool.pool_uusd_amount,
                net_short_amount,
            )
        except InsufficientLiquidityError:
            logger.warning(
                "net_short_exceeds_pool",
                position_id=record.position_id,
                net_short_amount=net_short_amount,
                pool_mirror_asset_amount=pool.pool_mirror_asset_amount,
            )
            return mul_floor(net_short_amount, state.mirror_asset_oracle_price)

    def compute_detailed_info(self, record: PositionRecord) -> DetailedPositionInfo:
        """Live valuation of an open position for GetPositionInfo."""
        target_range = None
        if record.target_range is not None:
            target_range = TargetRangeResponse(**record.target_range.to_dict())

        if record.cdp_idx is None or record.cdp_preemptively_closed:
            return DetailedPositionInfo(
                cdp_preemptively_closed=record.cdp_preemptively_closed,
                target_collateral_ratio_range=target_range,
                uusd_value=self.anchor_ust_value(record.holder),
            )

        state = self.get_position_state(record)
        now = self.collaborators.clock.block().time_seconds

        collateral_ratio = None
        if state.mirror_asset_short_amount > 0:
            collateral_ratio = str(from_ratio(
                state.collateral_uusd_value,
                mul_floor(state.mirror_asset_short_amount, state.mirror_asset_oracle_price),
            ))

        locked_amount = 0
        claimable_amount = 0
        lock = self.lock_info(record.cdp_idx)
        if lock is not None:
            locked_amount = lock.locked_amount
            if lock.unlock_time <= now:
                claimable_amount = lock.locked_amount

        long_farm_reward_value = self._quote_primary(
            self.context.long_farm_reward_token,
            self.collaborators.long_farm.pending_reward(record.holder),
        )
        short_farm_reward_value = self._quote_primary(
            self.context.short_farm_reward_token,
            self.collaborators.short_farm.pending_reward(record.holder),
        )

        uusd_value = (
            state.uusd_balance
            + state.uusd_long_farm
            + locked_amount
            + state.collateral_uusd_value
            + long_farm_reward_value
            + short_farm_reward_value
        )
        pool = state.pool_info
        long_amount = state.mirror_asset_long_amount
        short_amount = state.mirror_asset_short_amount
        if long_amount > short_amount:
            uusd_value += simulate_swap(
                pool.pool_mirror_asset_amount,
                pool.pool_uusd_amount,
                long_amount - short_amount,
            )[2]
        elif long_amount < short_amount:
            uusd_value -= self._net_short_cost(record, state, short_amount - long_amount)

        state_dict = state.to_dict()
        state_dict["pool_info"] = PoolInfoResponse(**state_dict["pool_info"])
        return DetailedPositionInfo(
            cdp_preemptively_closed=record.cdp_preemptively_closed,
            state=PositionStateResponse(**state_dict),
            target_collateral_ratio_range=target_range,
            collateral_ratio=collateral_ratio,
            unclaimed_short_proceeds_uusd_amount=locked_amount,
            claimable_short_proceeds_uusd_amount=claimable_amount,
            claimable_long_farm_reward_uusd_value=long_farm_reward_value,
            claimable_short_farm_reward_uusd_value=short_farm_reward_value,
            uusd_value=uusd_value,
        )
