"""
Collaborator interfaces.

The engine only ever talks to the outside world through these. Every
collaborator also supports snapshot()/restore() so the saga coordinator
can roll a failed invocation back.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from delta_neutral.models.common import SwapVenue
from delta_neutral.models.position import (
    AssetConfig,
    BlockInfo,
    CdpLookup,
    LockInfo,
    OraclePrice,
)


class Participant(ABC):
    """Anything whose state must be restored when a saga rolls back."""

    @abstractmethod
    def snapshot(self) -> Any:
        """Capture enough state to undo every later mutation."""

    @abstractmethod
    def restore(self, snapshot: Any) -> None:
        """Return to a state captured by snapshot()."""


class Bank(Participant):
    """Token balances of every account."""

    @abstractmethod
    def balance(self, holder: str, token: str) -> int:
        pass

    @abstractmethod
    def transfer(self, sender: str, recipient: str, token: str, amount: int) -> None:
        pass


class LendingMarket(Participant):
    """Anchor-style stable lending market issuing aUST receipts."""

    @abstractmethod
    def exchange_rate(self) -> Decimal:
        """uusd value of one aUST."""

    @abstractmethod
    def deposit_stable(self, holder: str, uusd_amount: int) -> int:
        """Deposit uusd, return minted aUST."""

    @abstractmethod
    def redeem_stable(self, holder: str, anchor_ust_amount: int) -> int:
        """Redeem aUST, return uusd paid out."""


class MintMarket(Participant):
    """Mirror-style debt market for short CDPs."""

    @abstractmethod
    def asset_config(self, mirror_asset: str) -> AssetConfig:
        pass

    @abstractmethod
    def next_position_idx(self) -> int:
        pass

    @abstractmethod
    def query_position(self, cdp_idx: int) -> CdpLookup:
        """Never raises; a failed query is reported as TRANSIENT_ERROR."""

    @abstractmethod
    def open_position(self, holder: str, collateral_amount: int, mirror_asset: str, collateral_ratio: Decimal) -> int:
        pass

    @abstractmethod
    def deposit(self, holder: str, cdp_idx: int, collateral_amount: int) -> None:
        pass

    @abstractmethod
    def mint(self, holder: str, cdp_idx: int, amount: int) -> None:
        pass

    @abstractmethod
    def burn(self, holder: str, cdp_idx: int, amount: int) -> None:
        pass

    @abstractmethod
    def withdraw(self, holder: str, cdp_idx: int, collateral_amount: int) -> None:
        pass


class PriceOracle(Participant):
    """Mirror oracle plus the collateral oracle for aUST."""

    @abstractmethod
    def price(self, mirror_asset: str) -> OraclePrice:
        pass

    @abstractmethod
    def collateral_price(self, collateral_token: str) -> Decimal:
        pass


@dataclass(frozen=True)
class PoolReserves:
    """Reserves of a token/uusd constant-product pair."""
    pair_address: str
    lp_token_address: str
    token_amount: int
    uusd_amount: int
    lp_token_total_supply: int


class AmmExchange(Participant):
    """A constant-product AMM whose pairs are all token/uusd."""

    venue: SwapVenue

    @abstractmethod
    def pool(self, token: str) -> Optional[PoolReserves]:
        """Reserves of the token/uusd pair, or None if no pair exists."""

    @abstractmethod
    def simulate(self, pair_token: str, offer_token: str, offer_amount: int) -> int:
        pass

    @abstractmethod
    def swap(self, holder: str, pair_token: str, offer_token: str, offer_amount: int) -> int:
        pass

    @abstractmethod
    def provide_liquidity(self, holder: str, token: str, token_amount: int, uusd_amount: int) -> int:
        pass

    @abstractmethod
    def withdraw_liquidity(self, holder: str, token: str, lp_token_amount: int) -> Tuple[int, int]:
        pass


class LongFarm(Participant):
    """Auto-compounding LP farm (Spectrum-style)."""

    reward_token: str

    @abstractmethod
    def farm_exists(self, mirror_asset: str) -> bool:
        pass

    @abstractmethod
    def bond_amount(self, holder: str, mirror_asset: str) -> int:
        pass

    @abstractmethod
    def pending_reward(self, holder: str) -> int:
        pass

    @abstractmethod
    def bond(self, holder: str, mirror_asset: str, lp_token_amount: int) -> None:
        pass

    @abstractmethod
    def unbond(self, holder: str, mirror_asset: str, lp_token_amount: int) -> None:
        pass

    @abstractmethod
    def claim(self, holder: str) -> int:
        pass


class ShortFarm(Participant):
    """Staking rewards paid on the short position."""

    reward_token: str

    @abstractmethod
    def pending_reward(self, holder: str) -> int:
        pass

    @abstractmethod
    def claim(self, holder: str) -> int:
        pass


class ProceedsLock(Participant):
    """Time lock on short-sale proceeds."""

    @abstractmethod
    def lock_info(self, cdp_idx: int) -> Optional[LockInfo]:
        pass

    @abstractmethod
    def unlock(self, holder: str, cdp_idx: int) -> int:
        pass


class Clock(Participant):

    @abstractmethod
    def block(self) -> BlockInfo:
        pass


@dataclass
class Collaborators:
    """Everything a position engine needs from the outside world."""
    bank: Bank
    lending: LendingMarket
    mint: MintMarket
    oracle: PriceOracle
    terraswap: AmmExchange
    astroport: AmmExchange
    long_farm: LongFarm
    short_farm: ShortFarm
    lock: ProceedsLock
    clock: Clock

    def exchange(self, venue: SwapVenue) -> AmmExchange:
        return self.terraswap if venue == SwapVenue.TERRASWAP else self.astroport

    def participants(self) -> List[Participant]:
        """Saga participants, in the order they are snapshotted."""
        return [
            self.bank,
            self.lending,
            self.mint,
            self.oracle,
            self.terraswap,
            self.astroport,
            self.long_farm,
            self.short_farm,
            self.lock,
            self.clock,
        ]
