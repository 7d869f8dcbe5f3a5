"""
Paper market: in-memory implementations of every collaborator.

Used for dry runs and for tests. Each piece applies the same curve and
rounding rules as the live protocols, so amounts computed by the engine
settle to the unit here:

- the lending market mints floor(uusd / rate) aUST and redeems at floor(aUST * rate)
- the mint market mints collateral * (collateral_price / asset_price) / ratio and
  auto-sells the minted asset on the primary AMM, locking the proceeds
- both AMMs use the constant-product formula with a 0.3% commission

Pool reserves are tracked on the pool objects; the bank only carries
account balances, so swaps and liquidity moves burn and mint against it.
"""
import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple

from delta_neutral.config.context import EngineContext
from delta_neutral.core.curve import (
    compute_lp_mint_amount,
    compute_withdrawn_amount,
    simulate_swap,
)
from delta_neutral.core.fixed_point import (
    atomics,
    decimal_division,
    div_floor,
    from_ratio,
    mul_floor,
    reverse_decimal,
    to_decimal,
)
from delta_neutral.errors import (
    CollaboratorError,
    ErrorCode,
    InvariantViolationError,
    ValidationError,
)
from delta_neutral.models.common import SwapVenue
from delta_neutral.models.position import (
    AssetConfig,
    BlockInfo,
    CdpInfo,
    CdpLookup,
    LockInfo,
    OraclePrice,
)
from delta_neutral.utils.logger import get_logger
from delta_neutral.venues.base import (
    AmmExchange,
    Bank,
    Clock,
    Collaborators,
    LendingMarket,
    LongFarm,
    MintMarket,
    PoolReserves,
    PriceOracle,
    ProceedsLock,
    ShortFarm,
)

logger = get_logger(__name__)

# Mirror locks short-sale proceeds for two weeks.
DEFAULT_LOCK_PERIOD_SECONDS = 14 * 24 * 60 * 60


class PaperBank(Bank):
    """Account balances keyed by (holder, token)."""

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}

    def balance(self, holder: str, token: str) -> int:
        return self._balances.get((holder, token), 0)

    def mint(self, holder: str, token: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Cannot mint negative amount: {amount}")
        self._balances[(holder, token)] = self.balance(holder, token) + amount

    def burn(self, holder: str, token: str, amount: int) -> None:
        current = self.balance(holder, token)
        if amount > current:
            raise InvariantViolationError.from_error_code(
                ErrorCode.INSUFFICIENT_BALANCE,
                message=f"{holder} holds {current} {token}, needs {amount}",
                details={"holder": holder, "token": token, "balance": current, "amount": amount},
            )
        self._balances[(holder, token)] = current - amount

    def transfer(self, sender: str, recipient: str, token: str, amount: int) -> None:
        if amount == 0:
            return
        self.burn(sender, token, amount)
        self.mint(recipient, token, amount)

    def snapshot(self) -> Dict[Tuple[str, str], int]:
        return dict(self._balances)

    def restore(self, snapshot: Dict[Tuple[str, str], int]) -> None:
        self._balances = dict(snapshot)


class PaperClock(Clock):
    """Block height and time, advanced explicitly."""

    def __init__(self, height: int = 1, time_seconds: int = 1_700_000_000):
        self.height = height
        self.time_seconds = time_seconds

    def block(self) -> BlockInfo:
        return BlockInfo(height=self.height, time_seconds=self.time_seconds)

    def advance(self, seconds: int, blocks: int = 1) -> BlockInfo:
        self.time_seconds += seconds
        self.height += blocks
        return self.block()

    def snapshot(self) -> Tuple[int, int]:
        return self.height, self.time_seconds

    def restore(self, snapshot: Tuple[int, int]) -> None:
        self.height, self.time_seconds = snapshot


class PaperLendingMarket(LendingMarket):
    """Anchor-style market with a settable aUST exchange rate."""

    def __init__(
        self,
        bank: PaperBank,
        stable_denom: str = "uusd",
        collateral_token: str = "aUST",
        exchange_rate: Decimal = Decimal("1"),
    ):
        self.bank = bank
        self.stable_denom = stable_denom
        self.collateral_token = collateral_token
        self._exchange_rate = to_decimal(exchange_rate)

    def exchange_rate(self) -> Decimal:
        return self._exchange_rate

    def set_exchange_rate(self, rate: Decimal) -> None:
        self._exchange_rate = to_decimal(rate)

    def deposit_stable(self, holder: str, uusd_amount: int) -> int:
        anchor_ust_amount = div_floor(uusd_amount, self._exchange_rate)
        self.bank.burn(holder, self.stable_denom, uusd_amount)
        self.bank.mint(holder, self.collateral_token, anchor_ust_amount)
        return anchor_ust_amount

    def redeem_stable(self, holder: str, anchor_ust_amount: int) -> int:
        uusd_amount = mul_floor(anchor_ust_amount, self._exchange_rate)
        self.bank.burn(holder, self.collateral_token, anchor_ust_amount)
        self.bank.mint(holder, self.stable_denom, uusd_amount)
        return uusd_amount

    def snapshot(self) -> Decimal:
        return self._exchange_rate

    def restore(self, snapshot: Decimal) -> None:
        self._exchange_rate = snapshot


class PaperOracle(PriceOracle):
    """Mirror oracle whose prices carry update timestamps."""

    def __init__(self, clock: PaperClock, lending: PaperLendingMarket):
        self.clock = clock
        self.lending = lending
        self._prices: Dict[str, OraclePrice] = {}

    def set_price(
        self,
        mirror_asset: str,
        rate: Decimal,
        updated_at: Optional[int] = None,
        quote_updated_at: Optional[int] = None,
    ) -> None:
        """Publish a price; both legs default to the current block time."""
        if updated_at is None:
            updated_at = self.clock.time_seconds
        if quote_updated_at is None:
            quote_updated_at = updated_at
        self._prices[mirror_asset] = OraclePrice(
            rate=to_decimal(rate),
            last_updated_base=updated_at,
            last_updated_quote=quote_updated_at,
        )

    def price(self, mirror_asset: str) -> OraclePrice:
        if mirror_asset not in self._prices:
            raise CollaboratorError.from_error_code(
                ErrorCode.COLLABORATOR_UNAVAILABLE,
                message=f"No oracle price for {mirror_asset}",
                collaborator="oracle",
            )
        return self._prices[mirror_asset]

    def collateral_price(self, collateral_token: str) -> Decimal:
        return self.lending.exchange_rate()

    def snapshot(self) -> Dict[str, OraclePrice]:
        return dict(self._prices)

    def restore(self, snapshot: Dict[str, OraclePrice]) -> None:
        self._prices = dict(snapshot)


@dataclass
class _Pool:
    pair_address: str
    lp_token_address: str
    token_amount: int
    uusd_amount: int
    lp_token_total_supply: int


class PaperAmm(AmmExchange):
    """Constant-product AMM with token/uusd pairs only."""

    def __init__(self, bank: PaperBank, venue: SwapVenue, stable_denom: str = "uusd"):
        self.bank = bank
        self.venue = venue
        self.stable_denom = stable_denom
        self._pools: Dict[str, _Pool] = {}

    def add_pool(self, token: str, token_amount: int, uusd_amount: int, lp_token_total_supply: Optional[int] = None) -> PoolReserves:
        """Create a pair seeded by an outside liquidity provider."""
        if lp_token_total_supply is None:
            lp_token_total_supply = compute_lp_mint_amount(token_amount, uusd_amount, 0, 0, 0)
        self._pools[token] = _Pool(
            pair_address=f"{self.venue.value}:{token}-{self.stable_denom}",
            lp_token_address=f"{self.venue.value}:{token}-{self.stable_denom}-lp",
            token_amount=token_amount,
            uusd_amount=uusd_amount,
            lp_token_total_supply=lp_token_total_supply,
        )
        return self.pool(token)

    def pool(self, token: str) -> Optional[PoolReserves]:
        pool = self._pools.get(token)
        if pool is None:
            return None
        return PoolReserves(
            pair_address=pool.pair_address,
            lp_token_address=pool.lp_token_address,
            token_amount=pool.token_amount,
            uusd_amount=pool.uusd_amount,
            lp_token_total_supply=pool.lp_token_total_supply,
        )

    def _get_pool(self, token: str) -> _Pool:
        pool = self._pools.get(token)
        if pool is None:
            raise CollaboratorError.from_error_code(
                ErrorCode.PAIR_NOT_FOUND,
                message=f"No {self.venue.value} pair for {token}",
                collaborator=self.venue.value,
            )
        return pool

    def simulate(self, pair_token: str, offer_token: str, offer_amount: int) -> int:
        pool = self._get_pool(pair_token)
        if offer_token == self.stable_denom:
            return simulate_swap(pool.uusd_amount, pool.token_amount, offer_amount)[2]
        return simulate_swap(pool.token_amount, pool.uusd_amount, offer_amount)[2]

    def swap(self, holder: str, pair_token: str, offer_token: str, offer_amount: int) -> int:
        pool = self._get_pool(pair_token)
        self.bank.burn(holder, offer_token, offer_amount)
        if offer_token == self.stable_denom:
            pool.uusd_amount, pool.token_amount, return_amount = simulate_swap(
                pool.uusd_amount, pool.token_amount, offer_amount
            )
            self.bank.mint(holder, pair_token, return_amount)
        else:
            pool.token_amount, pool.uusd_amount, return_amount = simulate_swap(
                pool.token_amount, pool.uusd_amount, offer_amount
            )
            self.bank.mint(holder, self.stable_denom, return_amount)
        return return_amount

    def provide_liquidity(self, holder: str, token: str, token_amount: int, uusd_amount: int) -> int:
        pool = self._get_pool(token)
        lp_token_amount = compute_lp_mint_amount(
            token_amount,
            uusd_amount,
            pool.token_amount,
            pool.uusd_amount,
            pool.lp_token_total_supply,
        )
        self.bank.burn(holder, token, token_amount)
        self.bank.burn(holder, self.stable_denom, uusd_amount)
        pool.token_amount += token_amount
        pool.uusd_amount += uusd_amount
        pool.lp_token_total_supply += lp_token_amount
        self.bank.mint(holder, pool.lp_token_address, lp_token_amount)
        return lp_token_amount

    def withdraw_liquidity(self, holder: str, token: str, lp_token_amount: int) -> Tuple[int, int]:
        pool = self._get_pool(token)
        token_amount = compute_withdrawn_amount(pool.token_amount, lp_token_amount, pool.lp_token_total_supply)
        uusd_amount = compute_withdrawn_amount(pool.uusd_amount, lp_token_amount, pool.lp_token_total_supply)
        self.bank.burn(holder, pool.lp_token_address, lp_token_amount)
        pool.token_amount -= token_amount
        pool.uusd_amount -= uusd_amount
        pool.lp_token_total_supply -= lp_token_amount
        self.bank.mint(holder, token, token_amount)
        self.bank.mint(holder, self.stable_denom, uusd_amount)
        return token_amount, uusd_amount

    def snapshot(self) -> Dict[str, _Pool]:
        return copy.deepcopy(self._pools)

    def restore(self, snapshot: Dict[str, _Pool]) -> None:
        self._pools = copy.deepcopy(snapshot)


class PaperLongFarm(LongFarm):
    """Auto-compounding LP farm holding bonded Terraswap LP tokens."""

    address = "long_farm"

    def __init__(self, bank: PaperBank, terraswap: PaperAmm, reward_token: str = "SPEC"):
        self.bank = bank
        self.terraswap = terraswap
        self.reward_token = reward_token
        self._farms: set = set()
        self._bonds: Dict[Tuple[str, str], int] = {}
        self._pending: Dict[str, int] = {}

    def add_farm(self, mirror_asset: str) -> None:
        self._farms.add(mirror_asset)

    def set_pending_reward(self, holder: str, amount: int) -> None:
        self._pending[holder] = amount

    def farm_exists(self, mirror_asset: str) -> bool:
        return mirror_asset in self._farms

    def bond_amount(self, holder: str, mirror_asset: str) -> int:
        return self._bonds.get((holder, mirror_asset), 0)

    def pending_reward(self, holder: str) -> int:
        return self._pending.get(holder, 0)

    def _lp_token(self, mirror_asset: str) -> str:
        if mirror_asset not in self._farms:
            raise CollaboratorError.from_error_code(
                ErrorCode.COLLABORATOR_UNAVAILABLE,
                message=f"No long farm for {mirror_asset}",
                collaborator="long_farm",
            )
        pool = self.terraswap.pool(mirror_asset)
        if pool is None:
            raise CollaboratorError.from_error_code(
                ErrorCode.PAIR_NOT_FOUND,
                message=f"No terraswap pair for {mirror_asset}",
                collaborator="long_farm",
            )
        return pool.lp_token_address

    def bond(self, holder: str, mirror_asset: str, lp_token_amount: int) -> None:
        self.bank.transfer(holder, self.address, self._lp_token(mirror_asset), lp_token_amount)
        self._bonds[(holder, mirror_asset)] = self.bond_amount(holder, mirror_asset) + lp_token_amount

    def unbond(self, holder: str, mirror_asset: str, lp_token_amount: int) -> None:
        bonded = self.bond_amount(holder, mirror_asset)
        if lp_token_amount > bonded:
            raise CollaboratorError.from_error_code(
                ErrorCode.INSUFFICIENT_BALANCE,
                message=f"Cannot unbond {lp_token_amount} LP, only {bonded} bonded",
                collaborator="long_farm",
            )
        self.bank.transfer(self.address, holder, self._lp_token(mirror_asset), lp_token_amount)
        self._bonds[(holder, mirror_asset)] = bonded - lp_token_amount

    def claim(self, holder: str) -> int:
        amount = self._pending.pop(holder, 0)
        self.bank.mint(holder, self.reward_token, amount)
        return amount

    def snapshot(self) -> Tuple[set, dict, dict]:
        return set(self._farms), dict(self._bonds), dict(self._pending)

    def restore(self, snapshot: Tuple[set, dict, dict]) -> None:
        farms, bonds, pending = snapshot
        self._farms, self._bonds, self._pending = set(farms), dict(bonds), dict(pending)


class PaperShortFarm(ShortFarm):
    """Staking rewards paid on short positions."""

    def __init__(self, bank: PaperBank, reward_token: str = "MIR"):
        self.bank = bank
        self.reward_token = reward_token
        self._pending: Dict[str, int] = {}

    def set_pending_reward(self, holder: str, amount: int) -> None:
        self._pending[holder] = amount

    def pending_reward(self, holder: str) -> int:
        return self._pending.get(holder, 0)

    def claim(self, holder: str) -> int:
        amount = self._pending.pop(holder, 0)
        self.bank.mint(holder, self.reward_token, amount)
        return amount

    def snapshot(self) -> Dict[str, int]:
        return dict(self._pending)

    def restore(self, snapshot: Dict[str, int]) -> None:
        self._pending = dict(snapshot)


class PaperProceedsLock(ProceedsLock):
    """Holds short-sale proceeds until their unlock time."""

    address = "proceeds_lock"

    def __init__(
        self,
        bank: PaperBank,
        clock: PaperClock,
        stable_denom: str = "uusd",
        lock_period_seconds: int = DEFAULT_LOCK_PERIOD_SECONDS,
    ):
        self.bank = bank
        self.clock = clock
        self.stable_denom = stable_denom
        self.lock_period_seconds = lock_period_seconds
        self._locks: Dict[int, LockInfo] = {}

    def lock_funds(self, cdp_idx: int, receiver: str, amount: int) -> LockInfo:
        """Add proceeds to a CDP's lock; every new lock restarts the timer."""
        existing = self._locks.get(cdp_idx)
        locked_amount = amount + (existing.locked_amount if existing else 0)
        info = LockInfo(
            idx=cdp_idx,
            receiver=receiver,
            locked_amount=locked_amount,
            unlock_time=self.clock.time_seconds + self.lock_period_seconds,
        )
        self._locks[cdp_idx] = info
        return info

    def lock_info(self, cdp_idx: int) -> Optional[LockInfo]:
        return self._locks.get(cdp_idx)

    def unlock(self, holder: str, cdp_idx: int) -> int:
        info = self._locks.get(cdp_idx)
        if info is None or info.receiver != holder or info.unlock_time > self.clock.time_seconds:
            raise CollaboratorError.from_error_code(
                ErrorCode.COLLABORATOR_UNAVAILABLE,
                message=f"Nothing to unlock for position {cdp_idx}",
                collaborator="lock",
            )
        del self._locks[cdp_idx]
        self.bank.transfer(self.address, info.receiver, self.stable_denom, info.locked_amount)
        return info.locked_amount

    def release_on_close(self, cdp_idx: int) -> int:
        """Release locked proceeds early once the CDP owes nothing."""
        info = self._locks.pop(cdp_idx, None)
        if info is None:
            return 0
        self.bank.transfer(self.address, info.receiver, self.stable_denom, info.locked_amount)
        return info.locked_amount

    def snapshot(self) -> Dict[int, LockInfo]:
        return dict(self._locks)

    def restore(self, snapshot: Dict[int, LockInfo]) -> None:
        self._locks = dict(snapshot)


@dataclass
class _Cdp:
    idx: int
    owner: str
    mirror_asset: str
    collateral_amount: int
    short_amount: int


class PaperMintMarket(MintMarket):
    """
    Mirror-style mint market.

    Every mint is a short: the minted asset is sold on the primary AMM and
    the uusd proceeds are locked for the CDP owner.
    """

    address = "mint_market"

    def __init__(
        self,
        bank: PaperBank,
        oracle: PaperOracle,
        terraswap: PaperAmm,
        lock: PaperProceedsLock,
        collateral_token: str = "aUST",
        stable_denom: str = "uusd",
    ):
        self.bank = bank
        self.oracle = oracle
        self.terraswap = terraswap
        self.lock = lock
        self.collateral_token = collateral_token
        self.stable_denom = stable_denom
        self._configs: Dict[str, AssetConfig] = {}
        self._positions: Dict[int, _Cdp] = {}
        self._next_idx = 1
        self._failing_queries = 0

    # -- admin / scenario hooks ------------------------------------------------

    def register_asset(self, mirror_asset: str, min_collateral_ratio: Decimal) -> None:
        self._configs[mirror_asset] = AssetConfig(
            token=mirror_asset,
            min_collateral_ratio=to_decimal(min_collateral_ratio),
        )

    def delist(self, mirror_asset: str, end_price: Decimal) -> None:
        config = self.asset_config(mirror_asset)
        self._configs[mirror_asset] = AssetConfig(
            token=config.token,
            min_collateral_ratio=config.min_collateral_ratio,
            end_price=to_decimal(end_price),
        )
        logger.info(f"Paper market delisted {mirror_asset} at {end_price}")

    def liquidate(self, cdp_idx: int) -> None:
        """Fully liquidate a CDP; its collateral is seized and it disappears."""
        cdp = self._positions.pop(cdp_idx)
        self.bank.burn(self.address, self.collateral_token, cdp.collateral_amount)
        logger.info(f"Paper market liquidated CDP {cdp_idx}")

    def fail_queries(self, count: int = 1) -> None:
        """Make the next `count` position queries fail transiently."""
        self._failing_queries = count

    # -- queries ---------------------------------------------------------------

    def asset_config(self, mirror_asset: str) -> AssetConfig:
        if mirror_asset not in self._configs:
            raise CollaboratorError.from_error_code(
                ErrorCode.COLLABORATOR_UNAVAILABLE,
                message=f"Unknown mirror asset {mirror_asset}",
                collaborator="mint",
            )
        return self._configs[mirror_asset]

    def next_position_idx(self) -> int:
        return self._next_idx

    def query_position(self, cdp_idx: int) -> CdpLookup:
        if self._failing_queries > 0:
            self._failing_queries -= 1
            return CdpLookup.transient("mint market query timed out")
        cdp = self._positions.get(cdp_idx)
        if cdp is None:
            return CdpLookup.not_found()
        return CdpLookup.found(CdpInfo(
            idx=cdp.idx,
            owner=cdp.owner,
            mirror_asset=cdp.mirror_asset,
            collateral_amount=cdp.collateral_amount,
            short_amount=cdp.short_amount,
        ))

    # -- executions ------------------------------------------------------------

    def open_position(self, holder: str, collateral_amount: int, mirror_asset: str, collateral_ratio: Decimal) -> int:
        config = self._listed_config(mirror_asset)
        if atomics(collateral_ratio) < atomics(config.min_collateral_ratio):
            raise self._below_min_ratio(mirror_asset)

        self.bank.transfer(holder, self.address, self.collateral_token, collateral_amount)
        mint_amount = mul_floor(
            mul_floor(
                collateral_amount,
                decimal_division(
                    self.oracle.collateral_price(self.collateral_token),
                    self.oracle.price(mirror_asset).rate,
                ),
            ),
            reverse_decimal(collateral_ratio),
        )

        cdp_idx = self._next_idx
        self._next_idx += 1
        self._positions[cdp_idx] = _Cdp(
            idx=cdp_idx,
            owner=holder,
            mirror_asset=mirror_asset,
            collateral_amount=collateral_amount,
            short_amount=mint_amount,
        )
        self._short_sell(holder, cdp_idx, mirror_asset, mint_amount)
        return cdp_idx

    def deposit(self, holder: str, cdp_idx: int, collateral_amount: int) -> None:
        cdp = self._owned(holder, cdp_idx)
        self.bank.transfer(holder, self.address, self.collateral_token, collateral_amount)
        cdp.collateral_amount += collateral_amount

    def mint(self, holder: str, cdp_idx: int, amount: int) -> None:
        cdp = self._owned(holder, cdp_idx)
        self._listed_config(cdp.mirror_asset)
        if not self._is_safe(cdp.mirror_asset, cdp.collateral_amount, cdp.short_amount + amount):
            raise self._below_min_ratio(cdp.mirror_asset)
        cdp.short_amount += amount
        self._short_sell(holder, cdp_idx, cdp.mirror_asset, amount)

    def burn(self, holder: str, cdp_idx: int, amount: int) -> None:
        cdp = self._owned(holder, cdp_idx)
        if amount > cdp.short_amount:
            raise CollaboratorError.from_error_code(
                ErrorCode.CDP_INSUFFICIENT_BALANCE,
                message=f"Cannot burn {amount}, CDP {cdp_idx} owes {cdp.short_amount}",
                collaborator="mint",
            )
        self.bank.burn(holder, cdp.mirror_asset, amount)
        cdp.short_amount -= amount
        if cdp.short_amount == 0:
            self.lock.release_on_close(cdp_idx)
        self._remove_if_empty(cdp)

    def withdraw(self, holder: str, cdp_idx: int, collateral_amount: int) -> None:
        cdp = self._owned(holder, cdp_idx)
        remaining = cdp.collateral_amount - collateral_amount
        if remaining < 0:
            raise CollaboratorError.from_error_code(
                ErrorCode.CDP_INSUFFICIENT_BALANCE,
                message=f"Cannot withdraw {collateral_amount}, CDP {cdp_idx} holds {cdp.collateral_amount}",
                collaborator="mint",
            )
        if cdp.short_amount > 0 and not self._is_safe(cdp.mirror_asset, remaining, cdp.short_amount):
            raise self._below_min_ratio(cdp.mirror_asset)
        cdp.collateral_amount = remaining
        self.bank.transfer(self.address, holder, self.collateral_token, collateral_amount)
        self._remove_if_empty(cdp)

    # -- helpers ---------------------------------------------------------------

    def _owned(self, holder: str, cdp_idx: int) -> _Cdp:
        cdp = self._positions.get(cdp_idx)
        if cdp is None or cdp.owner != holder:
            raise CollaboratorError.from_error_code(
                ErrorCode.CDP_NOT_FOUND,
                message=f"CDP {cdp_idx} not found for {holder}",
                collaborator="mint",
            )
        return cdp

    def _listed_config(self, mirror_asset: str) -> AssetConfig:
        config = self.asset_config(mirror_asset)
        if config.is_delisted:
            raise ValidationError.from_error_code(ErrorCode.ASSET_DELISTED, field="mirror_asset")
        return config

    def _is_safe(self, mirror_asset: str, collateral_amount: int, short_amount: int) -> bool:
        if short_amount == 0:
            return True
        collateral_value = mul_floor(collateral_amount, self.oracle.collateral_price(self.collateral_token))
        short_value = mul_floor(short_amount, self.oracle.price(mirror_asset).rate)
        if short_value == 0:
            return True
        ratio = from_ratio(collateral_value, short_value)
        return atomics(ratio) >= atomics(self.asset_config(mirror_asset).min_collateral_ratio)

    def _below_min_ratio(self, mirror_asset: str) -> CollaboratorError:
        return CollaboratorError.from_error_code(
            ErrorCode.CDP_BELOW_MIN_RATIO,
            collaborator="mint",
            details={"mirror_asset": mirror_asset},
        )

    def _short_sell(self, holder: str, cdp_idx: int, mirror_asset: str, amount: int) -> None:
        if amount == 0:
            return
        self.bank.mint(self.address, mirror_asset, amount)
        proceeds = self.terraswap.swap(self.address, mirror_asset, mirror_asset, amount)
        self.bank.transfer(self.address, self.lock.address, self.stable_denom, proceeds)
        self.lock.lock_funds(cdp_idx, holder, proceeds)

    def _remove_if_empty(self, cdp: _Cdp) -> None:
        if cdp.short_amount == 0 and cdp.collateral_amount == 0:
            del self._positions[cdp.idx]

    # Injected query failures are outside the saga and survive a rollback.
    def snapshot(self) -> Tuple[dict, dict, int]:
        return dict(self._configs), copy.deepcopy(self._positions), self._next_idx

    def restore(self, snapshot: Tuple[dict, dict, int]) -> None:
        configs, positions, next_idx = snapshot
        self._configs = dict(configs)
        self._positions = copy.deepcopy(positions)
        self._next_idx = next_idx


@dataclass
class PaperMarket:
    """All paper collaborators wired together."""
    bank: PaperBank
    clock: PaperClock
    lending: PaperLendingMarket
    oracle: PaperOracle
    terraswap: PaperAmm
    astroport: PaperAmm
    long_farm: PaperLongFarm
    short_farm: PaperShortFarm
    lock: PaperProceedsLock
    mint: PaperMintMarket
    context: EngineContext = field(default_factory=EngineContext)

    @classmethod
    def create(
        cls,
        context: Optional[EngineContext] = None,
        anchor_ust_exchange_rate: Decimal = Decimal("1"),
        lock_period_seconds: int = DEFAULT_LOCK_PERIOD_SECONDS,
        start_time: int = 1_700_000_000,
        start_height: int = 1,
    ) -> "PaperMarket":
        context = context or EngineContext()
        bank = PaperBank()
        clock = PaperClock(height=start_height, time_seconds=start_time)
        lending = PaperLendingMarket(
            bank,
            stable_denom=context.stable_denom,
            collateral_token=context.collateral_token,
            exchange_rate=anchor_ust_exchange_rate,
        )
        oracle = PaperOracle(clock, lending)
        terraswap = PaperAmm(bank, SwapVenue.TERRASWAP, stable_denom=context.stable_denom)
        astroport = PaperAmm(bank, SwapVenue.ASTROPORT, stable_denom=context.stable_denom)
        lock = PaperProceedsLock(
            bank,
            clock,
            stable_denom=context.stable_denom,
            lock_period_seconds=lock_period_seconds,
        )
        return cls(
            bank=bank,
            clock=clock,
            lending=lending,
            oracle=oracle,
            terraswap=terraswap,
            astroport=astroport,
            long_farm=PaperLongFarm(bank, terraswap, reward_token=context.long_farm_reward_token),
            short_farm=PaperShortFarm(bank, reward_token=context.short_farm_reward_token),
            lock=lock,
            mint=PaperMintMarket(
                bank,
                oracle,
                terraswap,
                lock,
                collateral_token=context.collateral_token,
                stable_denom=context.stable_denom,
            ),
            context=context,
        )

    def list_mirror_asset(
        self,
        mirror_asset: str,
        oracle_price: Decimal,
        pool_mirror_asset_amount: int,
        pool_uusd_amount: int,
        min_collateral_ratio: Decimal = Decimal("1.5"),
        with_long_farm: bool = True,
    ) -> None:
        """Register an asset on the mint market, oracle, Terraswap and the long farm."""
        self.mint.register_asset(mirror_asset, min_collateral_ratio)
        self.oracle.set_price(mirror_asset, oracle_price)
        self.terraswap.add_pool(mirror_asset, pool_mirror_asset_amount, pool_uusd_amount)
        if with_long_farm:
            self.long_farm.add_farm(mirror_asset)

    @property
    def collaborators(self) -> Collaborators:
        return Collaborators(
            bank=self.bank,
            lending=self.lending,
            mint=self.mint,
            oracle=self.oracle,
            terraswap=self.terraswap,
            astroport=self.astroport,
            long_farm=self.long_farm,
            short_farm=self.short_farm,
            lock=self.lock,
            clock=self.clock,
        )
