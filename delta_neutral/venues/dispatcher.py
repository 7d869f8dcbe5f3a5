"""
External command dispatcher.

Turns external commands into collaborator calls on behalf of a position's
holder account. Internal continuation commands never reach here; the
engine handles those itself.
"""
from typing import Any, Callable, Dict, Type

from delta_neutral.config.context import EngineContext
from delta_neutral.errors import CollaboratorError, ErrorCode
from delta_neutral.models.commands import (
    BondLp,
    BurnShort,
    ClaimLongFarmReward,
    ClaimShortFarmReward,
    DepositCollateral,
    DepositStable,
    ExternalCommand,
    MintShort,
    OpenCdp,
    ProvideLiquidity,
    RedeemStable,
    Swap,
    TransferUusd,
    UnbondLp,
    UnlockProceeds,
    WithdrawCollateral,
    WithdrawLiquidity,
)
from delta_neutral.utils.logger import get_logger
from delta_neutral.venues.base import Collaborators

logger = get_logger(__name__)


class CommandDispatcher:
    """Executes external commands against the collaborators."""

    def __init__(self, collaborators: Collaborators, context: EngineContext):
        self.collaborators = collaborators
        self.context = context
        self._handlers: Dict[Type[ExternalCommand], Callable[[str, Any], Any]] = {
            DepositStable: self._deposit_stable,
            RedeemStable: self._redeem_stable,
            OpenCdp: self._open_cdp,
            DepositCollateral: self._deposit_collateral,
            MintShort: self._mint_short,
            BurnShort: self._burn_short,
            WithdrawCollateral: self._withdraw_collateral,
            Swap: self._swap,
            ProvideLiquidity: self._provide_liquidity,
            WithdrawLiquidity: self._withdraw_liquidity,
            BondLp: self._bond_lp,
            UnbondLp: self._unbond_lp,
            ClaimLongFarmReward: self._claim_long_farm_reward,
            ClaimShortFarmReward: self._claim_short_farm_reward,
            UnlockProceeds: self._unlock_proceeds,
            TransferUusd: self._transfer_uusd,
        }

    def dispatch(self, holder: str, command: ExternalCommand) -> Any:
        """
        Run one external command for `holder`.

        Returns:
            Whatever the collaborator call returns (minted amount, swap return, ...)
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise CollaboratorError.from_error_code(
                ErrorCode.INTERNAL_ERROR,
                message=f"No collaborator handles {command.name}",
                collaborator="dispatcher",
            )
        result = handler(holder, command)
        logger.debug("command_dispatched", holder=holder, result=result, **command.to_dict())
        return result

    def _deposit_stable(self, holder: str, command: DepositStable) -> int:
        return self.collaborators.lending.deposit_stable(holder, command.uusd_amount)

    def _redeem_stable(self, holder: str, command: RedeemStable) -> int:
        return self.collaborators.lending.redeem_stable(holder, command.anchor_ust_amount)

    def _open_cdp(self, holder: str, command: OpenCdp) -> int:
        return self.collaborators.mint.open_position(
            holder,
            command.collateral_amount,
            command.mirror_asset,
            command.collateral_ratio,
        )

    def _deposit_collateral(self, holder: str, command: DepositCollateral) -> None:
        self.collaborators.mint.deposit(holder, command.cdp_idx, command.collateral_amount)

    def _mint_short(self, holder: str, command: MintShort) -> None:
        self.collaborators.mint.mint(holder, command.cdp_idx, command.amount)

    def _burn_short(self, holder: str, command: BurnShort) -> None:
        self.collaborators.mint.burn(holder, command.cdp_idx, command.amount)

    def _withdraw_collateral(self, holder: str, command: WithdrawCollateral) -> None:
        self.collaborators.mint.withdraw(holder, command.cdp_idx, command.collateral_amount)

    def _swap(self, holder: str, command: Swap) -> int:
        exchange = self.collaborators.exchange(command.venue)
        return exchange.swap(holder, command.pair_token, command.offer_token, command.offer_amount)

    def _provide_liquidity(self, holder: str, command: ProvideLiquidity) -> int:
        return self.collaborators.terraswap.provide_liquidity(
            holder,
            command.mirror_asset,
            command.mirror_asset_amount,
            command.uusd_amount,
        )

    def _withdraw_liquidity(self, holder: str, command: WithdrawLiquidity):
        return self.collaborators.terraswap.withdraw_liquidity(
            holder,
            command.mirror_asset,
            command.lp_token_amount,
        )

    def _bond_lp(self, holder: str, command: BondLp) -> None:
        self.collaborators.long_farm.bond(holder, command.mirror_asset, command.lp_token_amount)

    def _unbond_lp(self, holder: str, command: UnbondLp) -> None:
        self.collaborators.long_farm.unbond(holder, command.mirror_asset, command.lp_token_amount)

    def _claim_long_farm_reward(self, holder: str, command: ClaimLongFarmReward) -> int:
        return self.collaborators.long_farm.claim(holder)

    def _claim_short_farm_reward(self, holder: str, command: ClaimShortFarmReward) -> int:
        return self.collaborators.short_farm.claim(holder)

    def _unlock_proceeds(self, holder: str, command: UnlockProceeds) -> int:
        return self.collaborators.lock.unlock(holder, command.cdp_idx)

    def _transfer_uusd(self, holder: str, command: TransferUusd) -> None:
        self.collaborators.bank.transfer(
            command.sender or holder,
            command.recipient,
            self.context.stable_denom,
            command.amount,
        )
