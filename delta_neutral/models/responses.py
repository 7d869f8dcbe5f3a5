"""
Query response schemas.

Pydantic models so the position query can be handed to any caller as
plain JSON.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PositionActionInfoResponse(BaseModel):
    height: int
    time_seconds: int
    uusd_amount: int


class TargetRangeResponse(BaseModel):
    min: str
    max: str


class PoolInfoResponse(BaseModel):
    pair_address: str
    lp_token_address: str
    lp_token_amount: int
    lp_token_total_supply: int
    pool_mirror_asset_amount: int
    pool_uusd_amount: int


class PositionStateResponse(BaseModel):
    uusd_balance: int
    uusd_long_farm: int
    mirror_asset_short_amount: int
    mirror_asset_balance: int
    mirror_asset_long_farm: int
    mirror_asset_long_amount: int
    collateral_anchor_ust_amount: int
    collateral_uusd_value: int
    mirror_asset_oracle_price: str
    anchor_ust_oracle_price: str
    pool_info: PoolInfoResponse


class DetailedPositionInfo(BaseModel):
    """Live valuation of an open position."""

    model_config = ConfigDict(frozen=True)

    cdp_preemptively_closed: bool
    state: Optional[PositionStateResponse] = None
    target_collateral_ratio_range: Optional[TargetRangeResponse] = None
    collateral_ratio: Optional[str] = None
    unclaimed_short_proceeds_uusd_amount: int = 0
    claimable_short_proceeds_uusd_amount: int = 0
    claimable_long_farm_reward_uusd_value: int = 0
    claimable_short_farm_reward_uusd_value: int = 0
    uusd_value: int = 0


class PositionInfoResponse(BaseModel):
    """Answer to GetPositionInfo."""

    position_id: str
    status: str
    mirror_asset: Optional[str] = None
    cdp_idx: Optional[int] = None
    open_info: Optional[PositionActionInfoResponse] = None
    close_info: Optional[PositionActionInfoResponse] = None
    detailed_info: Optional[DetailedPositionInfo] = None
