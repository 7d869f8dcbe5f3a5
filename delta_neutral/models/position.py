"""
Position data model.

Everything here is plain data: the persisted PositionRecord, the derived
PositionState snapshot, and the shapes returned by collaborator queries.
Token amounts are ints (micro units), ratios are 18-decimal Decimals.
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, Optional

from delta_neutral.core.fixed_point import atomics, midpoint, to_decimal
from delta_neutral.models.common import CdpLookupStatus, PositionStatus


@dataclass(frozen=True)
class TargetCollateralRatioRange:
    """Target band for the CDP collateral ratio."""
    min: Decimal
    max: Decimal

    def __post_init__(self):
        object.__setattr__(self, "min", to_decimal(self.min))
        object.__setattr__(self, "max", to_decimal(self.max))

    def midpoint(self) -> Decimal:
        """Rebalance target; never the boundary itself."""
        return midpoint(self.min, self.max)

    def is_wide_enough(self, min_width: Decimal) -> bool:
        return atomics(self.max) >= atomics(self.min) + atomics(min_width)

    def to_dict(self) -> Dict[str, str]:
        return {"min": str(self.min), "max": str(self.max)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetCollateralRatioRange":
        return cls(min=Decimal(data["min"]), max=Decimal(data["max"]))


@dataclass(frozen=True)
class Asset:
    """A native or token amount sent along with a request."""
    denom: str
    amount: int


@dataclass(frozen=True)
class PositionActionInfo:
    """Immutable snapshot recorded at open and at close."""
    height: int
    time_seconds: int
    uusd_amount: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionActionInfo":
        return cls(**data)


@dataclass
class PositionInfo:
    """Mirror asset of the position plus its CDP index once one is opened."""
    mirror_asset: str
    cdp_idx: Optional[int] = None


@dataclass(frozen=True)
class PoolInfo:
    """Terraswap pool of the mirror asset and this position's LP share."""
    pair_address: str
    lp_token_address: str
    lp_token_amount: int
    lp_token_total_supply: int
    pool_mirror_asset_amount: int
    pool_uusd_amount: int


@dataclass
class PositionState:
    """
    Snapshot of every balance and price the engine reasons about.

    Derived fresh at the start of each step and never persisted. The
    reward harvest adds its expected uusd increase to uusd_balance in
    memory before the delta computation runs.
    """
    uusd_balance: int
    uusd_long_farm: int
    mirror_asset_short_amount: int
    mirror_asset_balance: int
    mirror_asset_long_farm: int
    collateral_anchor_ust_amount: int
    collateral_uusd_value: int
    mirror_asset_oracle_price: Decimal
    anchor_ust_oracle_price: Decimal
    pool_info: PoolInfo

    @property
    def mirror_asset_long_amount(self) -> int:
        return self.mirror_asset_balance + self.mirror_asset_long_farm

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mirror_asset_long_amount"] = self.mirror_asset_long_amount
        data["mirror_asset_oracle_price"] = str(self.mirror_asset_oracle_price)
        data["anchor_ust_oracle_price"] = str(self.anchor_ust_oracle_price)
        return data


@dataclass(frozen=True)
class CdpInfo:
    """A debt-market position as reported by the mint market."""
    idx: int
    owner: str
    mirror_asset: str
    collateral_amount: int
    short_amount: int
    is_short: bool = True


@dataclass(frozen=True)
class CdpLookup:
    """
    Three-valued CDP query result.

    NOT_FOUND means the debt market answered and the CDP is gone.
    TRANSIENT_ERROR means the query itself failed and says nothing about
    the CDP.
    """
    status: CdpLookupStatus
    cdp: Optional[CdpInfo] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, cdp: CdpInfo) -> "CdpLookup":
        return cls(status=CdpLookupStatus.FOUND, cdp=cdp)

    @classmethod
    def not_found(cls) -> "CdpLookup":
        return cls(status=CdpLookupStatus.NOT_FOUND)

    @classmethod
    def transient(cls, error: str) -> "CdpLookup":
        return cls(status=CdpLookupStatus.TRANSIENT_ERROR, error=error)

    @property
    def is_found(self) -> bool:
        return self.status == CdpLookupStatus.FOUND


@dataclass(frozen=True)
class LockInfo:
    """Short-sale proceeds locked for a CDP."""
    idx: int
    receiver: str
    locked_amount: int
    unlock_time: int


@dataclass(frozen=True)
class AssetConfig:
    """Mint-market configuration of a mirror asset."""
    token: str
    min_collateral_ratio: Decimal
    end_price: Optional[Decimal] = None

    @property
    def is_delisted(self) -> bool:
        return self.end_price is not None


@dataclass(frozen=True)
class OraclePrice:
    """Oracle rate in uusd with the update times of both legs."""
    rate: Decimal
    last_updated_base: int
    last_updated_quote: int

    def is_fresh(self, now: int, expire_seconds: int) -> bool:
        oldest = min(self.last_updated_base, self.last_updated_quote)
        return oldest >= now - expire_seconds


@dataclass(frozen=True)
class BlockInfo:
    height: int
    time_seconds: int


@dataclass
class PositionRecord:
    """
    Persisted per-position state.

    Loaded at the start of each invocation and written back only when the
    invocation's saga commits.
    """
    position_id: str
    holder: str
    status: PositionStatus = PositionStatus.NEW
    position_info: Optional[PositionInfo] = None
    target_range: Optional[TargetCollateralRatioRange] = None
    open_info: Optional[PositionActionInfo] = None
    close_info: Optional[PositionActionInfo] = None
    # Value the next performance fee is measured against.
    fee_baseline_uusd: int = 0
    cdp_preemptively_closed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def mirror_asset(self) -> Optional[str]:
        return self.position_info.mirror_asset if self.position_info else None

    @property
    def cdp_idx(self) -> Optional[int]:
        return self.position_info.cdp_idx if self.position_info else None

    @property
    def is_closed(self) -> bool:
        return self.close_info is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "holder": self.holder,
            "status": self.status.value,
            "position_info": asdict(self.position_info) if self.position_info else None,
            "target_range": self.target_range.to_dict() if self.target_range else None,
            "open_info": self.open_info.to_dict() if self.open_info else None,
            "close_info": self.close_info.to_dict() if self.close_info else None,
            "fee_baseline_uusd": self.fee_baseline_uusd,
            "cdp_preemptively_closed": self.cdp_preemptively_closed,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionRecord":
        return cls(
            position_id=data["position_id"],
            holder=data["holder"],
            status=PositionStatus(data["status"]),
            position_info=PositionInfo(**data["position_info"]) if data.get("position_info") else None,
            target_range=(
                TargetCollateralRatioRange.from_dict(data["target_range"])
                if data.get("target_range") else None
            ),
            open_info=PositionActionInfo.from_dict(data["open_info"]) if data.get("open_info") else None,
            close_info=PositionActionInfo.from_dict(data["close_info"]) if data.get("close_info") else None,
            fee_baseline_uusd=int(data.get("fee_baseline_uusd", 0)),
            cdp_preemptively_closed=bool(data.get("cdp_preemptively_closed", False)),
            metadata=data.get("metadata") or {},
        )
