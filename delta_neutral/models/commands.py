"""
Commands executed by the saga coordinator.

External commands are calls into collaborators (lending market, mint
market, AMMs, farms, lock, bank). Internal commands are continuations
handled by the engine itself; they read fresh state when they run, so
they observe everything earlier commands in the same invocation did.
"""
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Dict, Optional

from delta_neutral.models.common import SwapVenue


@dataclass(frozen=True)
class Command:
    """Base class for all commands."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"command": self.name}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, SwapVenue):
                value = value.value
            data[f.name] = value
        return data


@dataclass(frozen=True)
class ExternalCommand(Command):
    """A call into an external collaborator."""


@dataclass(frozen=True)
class InternalCommand(Command):
    """A continuation handled by the engine under the internal capability."""


# ---------------------------------------------------------------------------
# Lending market
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DepositStable(ExternalCommand):
    uusd_amount: int


@dataclass(frozen=True)
class RedeemStable(ExternalCommand):
    anchor_ust_amount: int


# ---------------------------------------------------------------------------
# Mint market
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpenCdp(ExternalCommand):
    """Open a short CDP; the minted asset is auto-sold and the proceeds locked."""
    collateral_amount: int
    mirror_asset: str
    collateral_ratio: Decimal


@dataclass(frozen=True)
class DepositCollateral(ExternalCommand):
    cdp_idx: int
    collateral_amount: int


@dataclass(frozen=True)
class MintShort(ExternalCommand):
    cdp_idx: int
    mirror_asset: str
    amount: int


@dataclass(frozen=True)
class BurnShort(ExternalCommand):
    cdp_idx: int
    mirror_asset: str
    amount: int


@dataclass(frozen=True)
class WithdrawCollateral(ExternalCommand):
    cdp_idx: int
    collateral_amount: int


# ---------------------------------------------------------------------------
# AMMs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Swap(ExternalCommand):
    """Swap on the `pair_token`/uusd pair; `offer_token` is either side."""
    venue: SwapVenue
    pair_token: str
    offer_token: str
    offer_amount: int


@dataclass(frozen=True)
class ProvideLiquidity(ExternalCommand):
    mirror_asset: str
    mirror_asset_amount: int
    uusd_amount: int


@dataclass(frozen=True)
class WithdrawLiquidity(ExternalCommand):
    mirror_asset: str
    lp_token_amount: int


# ---------------------------------------------------------------------------
# Farms, lock, bank
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BondLp(ExternalCommand):
    mirror_asset: str
    lp_token_amount: int


@dataclass(frozen=True)
class UnbondLp(ExternalCommand):
    mirror_asset: str
    lp_token_amount: int


@dataclass(frozen=True)
class ClaimLongFarmReward(ExternalCommand):
    pass


@dataclass(frozen=True)
class ClaimShortFarmReward(ExternalCommand):
    pass


@dataclass(frozen=True)
class UnlockProceeds(ExternalCommand):
    cdp_idx: int


@dataclass(frozen=True)
class TransferUusd(ExternalCommand):
    """Send uusd; `sender` defaults to the position holder."""
    recipient: str
    amount: int
    sender: Optional[str] = None


# ---------------------------------------------------------------------------
# Continuations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AchieveSafeCollateralRatio(InternalCommand):
    pass


@dataclass(frozen=True)
class CloseCdpAndDisburseUusd(InternalCommand):
    recipient: str


@dataclass(frozen=True)
class CloseCdpAndDepositToLending(InternalCommand):
    pass


@dataclass(frozen=True)
class DepositUusdBalanceToLending(InternalCommand):
    pass


@dataclass(frozen=True)
class WithdrawCollateralAndRedeem(InternalCommand):
    proportion: Decimal


@dataclass(frozen=True)
class SendUusdToRecipient(InternalCommand):
    proportion: Decimal
    recipient: str


@dataclass(frozen=True)
class PairUusdWithMirrorAssetAndStake(InternalCommand):
    pass


@dataclass(frozen=True)
class DeltaNeutralReinvest(InternalCommand):
    """Invest the liquid uusd balance at the oracle rate read earlier in the invocation."""
    mirror_asset_oracle_rate: Decimal


@dataclass(frozen=True)
class OpenPositionSanityCheck(InternalCommand):
    pass


@dataclass(frozen=True)
class WithdrawFundsInUusd(InternalCommand):
    proportion: Decimal
    recipient: str


@dataclass(frozen=True)
class RebalanceAndReinvest(InternalCommand):
    """Harvest, delta-neutralise, steer the collateral ratio and reinvest."""
