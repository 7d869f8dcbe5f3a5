"""
Delta-Neutral Position Engine.

Entry point for every position operation:

- open_position: size and open the CDP plus long leg, or park funds in
  the lending market when the oracle is stale and off-market open is allowed
- increase_position / rebalance_and_reinvest: harvest, delta-neutralise,
  steer the collateral ratio and reinvest idle uusd
- decrease_position / close_position: burn, withdraw and disburse
- get_position_info / should_call_rebalance_and_reinvest: read-only queries

Each operation loads the position record fresh, builds its first
commands, and hands them to a SagaCoordinator. Continuation commands are
handled here under the internal capability; everything else is
dispatched to the collaborators. The record is persisted only when the
saga commits, so a failed invocation leaves no trace.
"""
from decimal import Decimal
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Type, Union

from structlog.contextvars import bound_contextvars

from delta_neutral.config.context import EngineContext
from delta_neutral.config.settings import Settings, get_settings
from delta_neutral.core.collateral_rebalancer import (
    achieve_safe_collateral_ratio,
    increase_uusd_balance_from_aust_collateral,
)
from delta_neutral.core.delta_rebalancer import (
    achieve_delta_neutral_from_state,
    increase_mirror_asset_balance_from_long_farm,
)
from delta_neutral.core.fixed_point import ONE, atomics, mul_floor, to_decimal
from delta_neutral.core.investment_sizer import InvestmentPlan, delta_neutral_invest
from delta_neutral.core.keeper import KeeperAdvice, KeeperAdvisor
from delta_neutral.core.reinvest import (
    SwapRouter,
    claim_and_increase_uusd_balance,
    compute_performance_fee,
    pair_uusd_with_mirror_asset,
    should_defer_reinvest,
)
from delta_neutral.core.valuation import PositionValuator
from delta_neutral.errors import (
    CollaboratorError,
    ErrorCode,
    InvariantViolationError,
    OracleError,
    PositionError,
    ValidationError,
)
from delta_neutral.models.commands import (
    AchieveSafeCollateralRatio,
    BurnShort,
    CloseCdpAndDepositToLending,
    CloseCdpAndDisburseUusd,
    Command,
    DeltaNeutralReinvest,
    DepositStable,
    DepositUusdBalanceToLending,
    InternalCommand,
    OpenPositionSanityCheck,
    PairUusdWithMirrorAssetAndStake,
    RebalanceAndReinvest,
    RedeemStable,
    SendUusdToRecipient,
    TransferUusd,
    WithdrawCollateralAndRedeem,
    WithdrawFundsInUusd,
)
from delta_neutral.models.common import Capability, CdpLookupStatus, PositionStatus
from delta_neutral.models.position import (
    Asset,
    PositionActionInfo,
    PositionInfo,
    PositionRecord,
    TargetCollateralRatioRange,
)
from delta_neutral.models.responses import PositionActionInfoResponse, PositionInfoResponse
from delta_neutral.security.authorization import AccessToken, CapabilityAuthority
from delta_neutral.state.saga import Response, SagaCoordinator, SagaResult
from delta_neutral.state.state_machine import PositionStateMachine, StateStore
from delta_neutral.utils.logger import (
    configure_logging,
    get_logger,
    log_position_event,
    log_risk_event,
)
from delta_neutral.venues.base import Collaborators
from delta_neutral.venues.dispatcher import CommandDispatcher

logger = get_logger(__name__)

RatioInput = Union[Decimal, str, int]


def validate_open_request(mirror_asset: str, context: EngineContext) -> None:
    """Reject a mirror asset missing from a non-empty allow-list."""
    if context.allowed_mirror_assets and mirror_asset not in context.allowed_mirror_assets:
        raise ValidationError.from_error_code(
            ErrorCode.ASSET_NOT_ALLOWED,
            field="mirror_asset",
            details={"mirror_asset": mirror_asset},
        )


def validate_assets(assets: Sequence[Asset], context: EngineContext) -> int:
    """
    Require exactly one uusd asset of at least the minimum open amount.

    Returns:
        The uusd amount
    """
    if len(assets) != 1 or assets[0].denom != context.stable_denom:
        raise ValidationError.from_error_code(ErrorCode.INVALID_ASSETS, field="assets")
    amount = assets[0].amount
    if amount < context.min_open_uusd_amount:
        raise ValidationError.from_error_code(
            ErrorCode.BUDGET_TOO_SMALL,
            field="assets",
            details={"minimum": context.min_open_uusd_amount, "requested": amount},
        )
    return amount


def holder_address(position_id: str) -> str:
    """Account that holds a position's funds."""
    return f"position:{position_id}"


class PositionEngine:
    """Runs position operations atomically against a set of collaborators."""

    def __init__(
        self,
        context: EngineContext,
        collaborators: Collaborators,
        store: StateStore,
        authority: CapabilityAuthority,
    ):
        self.context = context
        self.collaborators = collaborators
        self.store = store
        self.authority = authority

        self.valuator = PositionValuator(context, collaborators)
        self.router = SwapRouter(collaborators, context)
        self.dispatcher = CommandDispatcher(collaborators, context)
        self.state_machine = PositionStateMachine()
        self.keeper = KeeperAdvisor(context, self.valuator)

        self._internal_handlers: Dict[Type[InternalCommand], Callable[[PositionRecord, Command], Response]] = {
            RebalanceAndReinvest: self._handle_rebalance_and_reinvest,
            AchieveSafeCollateralRatio: self._handle_achieve_safe_collateral_ratio,
            CloseCdpAndDisburseUusd: self._handle_close_cdp_and_disburse_uusd,
            CloseCdpAndDepositToLending: self._handle_close_cdp_and_deposit_to_lending,
            DepositUusdBalanceToLending: self._handle_deposit_uusd_balance_to_lending,
            WithdrawCollateralAndRedeem: self._handle_withdraw_collateral_and_redeem,
            SendUusdToRecipient: self._handle_send_uusd_to_recipient,
            PairUusdWithMirrorAssetAndStake: self._handle_pair_uusd_with_mirror_asset_and_stake,
            DeltaNeutralReinvest: self._handle_delta_neutral_reinvest,
            OpenPositionSanityCheck: self._handle_open_position_sanity_check,
            WithdrawFundsInUusd: self._handle_withdraw_funds_in_uusd,
        }

    @classmethod
    def from_settings(
        cls,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
        risk_config: Optional[dict] = None,
    ) -> "PositionEngine":
        """
        Build an engine from Settings and risk.yaml.

        Configures logging, opens the store at STATE_DB_PATH and signs
        tokens with AUTHORITY_SECRET.
        """
        settings = settings or get_settings()
        configure_logging(settings.log_level)
        return cls(
            EngineContext.from_settings(settings, risk_config),
            collaborators,
            StateStore(db_path=settings.state_db_path),
            CapabilityAuthority.from_settings(settings),
        )

    # ------------------------------------------------------------------
    # Saga plumbing
    # ------------------------------------------------------------------

    def _load(self, position_id: str) -> PositionRecord:
        record = self.store.get_position(position_id)
        if record is None or record.status == PositionStatus.NEW:
            raise PositionError.from_error_code(ErrorCode.POSITION_NOT_OPEN, position_id=position_id)
        return record

    def _execute(self, token: AccessToken, record: PositionRecord, command: Command) -> Optional[Response]:
        if isinstance(command, InternalCommand):
            self.authority.require(token, Capability.INTERNAL)
            return self._internal_handlers[type(command)](record, command)
        self.dispatcher.dispatch(record.holder, command)
        return None

    def _run(self, name: str, record: PositionRecord, initial: Response) -> SagaResult:
        saga = SagaCoordinator(
            self.collaborators.participants(),
            partial(self._execute, self.authority.internal_token, record),
        )
        return saga.run(initial, on_commit=partial(self.store.save_position, record), name=name)

    def _transition(self, record: PositionRecord, target: PositionStatus) -> None:
        if record.status != target:
            self.state_machine.transition(record, target)

    def _now(self) -> PositionActionInfo:
        block = self.collaborators.clock.block()
        return PositionActionInfo(height=block.height, time_seconds=block.time_seconds, uusd_amount=0)

    # ------------------------------------------------------------------
    # Shared building blocks
    # ------------------------------------------------------------------

    def _plan_investment(
        self,
        record: PositionRecord,
        uusd_budget: int,
        mirror_asset_oracle_rate: Decimal,
        cdp_idx: Optional[int],
    ) -> InvestmentPlan:
        mirror_asset = record.mirror_asset
        pool = self.collaborators.terraswap.pool(mirror_asset)
        if pool is None:
            raise CollaboratorError.from_error_code(
                ErrorCode.PAIR_NOT_FOUND,
                message=f"No terraswap pair for {mirror_asset}",
                collaborator="terraswap",
            )
        return delta_neutral_invest(
            uusd_budget=uusd_budget,
            target_range=record.target_range,
            mirror_asset=mirror_asset,
            asset_config=self.collaborators.mint.asset_config(mirror_asset),
            mirror_asset_oracle_price=mirror_asset_oracle_rate,
            anchor_ust_exchange_rate=self.collaborators.lending.exchange_rate(),
            pool_mirror_asset_amount=pool.token_amount,
            pool_uusd_amount=pool.uusd_amount,
            context=self.context,
            cdp_idx=cdp_idx,
        )

    def _achieve_delta_neutral(self, record: PositionRecord) -> List[Command]:
        """Harvest into uusd, then rebalance long against short."""
        state = self.valuator.get_position_state(record)
        harvest = claim_and_increase_uusd_balance(
            record.holder,
            record.cdp_idx,
            self.collaborators,
            self.context,
            self.router,
        )
        state.uusd_balance += harvest.uusd_increase
        return harvest.commands + achieve_delta_neutral_from_state(
            state,
            record.mirror_asset,
            self.context.stable_denom,
            self.router,
        )

    def _redeem_all_anchor_ust(self, record: PositionRecord) -> List[Command]:
        balance = self.collaborators.bank.balance(record.holder, self.context.collateral_token)
        if balance == 0:
            return []
        return [RedeemStable(anchor_ust_amount=balance)]

    def _preemptively_close(self, record: PositionRecord, reason: str) -> None:
        record.cdp_preemptively_closed = True
        self._transition(record, PositionStatus.PREEMPTIVELY_CLOSED)
        log_risk_event(
            logger,
            "preemptive_close",
            "critical",
            f"Position {record.position_id} CDP treated as closed: {reason}",
            position_id=record.position_id,
            mirror_asset=record.mirror_asset,
            cdp_idx=record.cdp_idx,
        )

    def _close_cdp_and_collect_fees(self, record: PositionRecord) -> List[Command]:
        """Repay the whole short, withdraw all collateral and take the performance fee."""
        state = self.valuator.get_position_state(record)
        lock_info = self.valuator.lock_info(record.cdp_idx)
        locked_amount = lock_info.locked_amount if lock_info is not None else 0

        position_value = (
            state.collateral_uusd_value
            + state.uusd_balance
            + state.uusd_long_farm
            + locked_amount
        )
        fee_amount = compute_performance_fee(
            position_value,
            record.fee_baseline_uusd,
            self.context.performance_rate,
        )

        commands: List[Command] = []
        short_amount = state.mirror_asset_short_amount
        # A fully liquidated CDP owes nothing and holds nothing.
        if short_amount > 0:
            commands.extend(increase_mirror_asset_balance_from_long_farm(
                state, record.mirror_asset, short_amount,
            ))
            commands.append(BurnShort(
                cdp_idx=record.cdp_idx,
                mirror_asset=record.mirror_asset,
                amount=short_amount,
            ))
            commands.append(WithdrawCollateralAndRedeem(proportion=ONE))

        if fee_amount > 0:
            commands.append(TransferUusd(recipient=self.context.fee_collector_addr, amount=fee_amount))
            record.fee_baseline_uusd = position_value - fee_amount
            logger.info(
                "performance_fee_collected",
                position_id=record.position_id,
                position_value=position_value,
                fee_amount=fee_amount,
                fee_collector=self.context.fee_collector_addr,
            )
        return commands

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def open_position(
        self,
        token: AccessToken,
        position_id: str,
        sender: str,
        target_min_collateral_ratio: RatioInput,
        target_max_collateral_ratio: RatioInput,
        mirror_asset: str,
        assets: Sequence[Asset],
        allow_off_market_position_open: bool = False,
    ) -> SagaResult:
        """
        Open a delta-neutral position funded by `sender`.

        Raises:
            AuthError: Token lacks MANAGER
            ValidationError: Asset not allowed, bad assets, budget too small, range too narrow
            PositionError: Position already open
            OracleError: Price stale and off-market open not allowed
        """
        self.authority.require(token, Capability.MANAGER)
        validate_open_request(mirror_asset, self.context)
        uusd_amount = validate_assets(assets, self.context)

        existing = self.store.get_position(position_id)
        if existing is not None and existing.status != PositionStatus.NEW:
            raise PositionError.from_error_code(ErrorCode.POSITION_ALREADY_OPEN, position_id=position_id)

        target_range = TargetCollateralRatioRange(
            min=to_decimal(target_min_collateral_ratio),
            max=to_decimal(target_max_collateral_ratio),
        )
        if not target_range.is_wide_enough(self.context.min_target_range_width):
            raise ValidationError.from_error_code(
                ErrorCode.RANGE_TOO_NARROW,
                field="target_max_collateral_ratio",
                details={"min_width": str(self.context.min_target_range_width)},
            )

        now = self._now()
        record = PositionRecord(
            position_id=position_id,
            holder=holder_address(position_id),
            position_info=PositionInfo(mirror_asset=mirror_asset),
            target_range=target_range,
            open_info=PositionActionInfo(
                height=now.height,
                time_seconds=now.time_seconds,
                uusd_amount=uusd_amount,
            ),
            fee_baseline_uusd=uusd_amount,
        )
        response = Response().add_command(TransferUusd(
            sender=sender,
            recipient=record.holder,
            amount=uusd_amount,
        ))

        rate = self.valuator.fresh_oracle_rate(mirror_asset)
        if rate is not None:
            cdp_idx = self.collaborators.mint.next_position_idx()
            plan = self._plan_investment(record, uusd_amount, rate, cdp_idx=None)
            if not plan.commands:
                raise ValidationError.from_error_code(ErrorCode.BUDGET_TOO_SMALL, field="assets")
            record.position_info.cdp_idx = cdp_idx
            response.add_commands(plan.commands).add_command(OpenPositionSanityCheck())
            self._transition(record, PositionStatus.ACTIVE)
        elif allow_off_market_position_open:
            fee = self.context.off_market_position_open_service_fee_uusd
            if fee > 0:
                response.add_command(TransferUusd(recipient=self.context.fee_collector_addr, amount=fee))
            response.add_command(DepositStable(uusd_amount=uusd_amount - fee))
            response.add_attribute("off_market_position_open", True)
            self._transition(record, PositionStatus.OPEN_PENDING)
        else:
            raise OracleError.from_error_code(ErrorCode.ORACLE_PRICE_STALE, mirror_asset=mirror_asset)

        result = self._run("open_position", record, response)
        log_position_event(
            logger,
            "opened",
            position_id,
            mirror_asset,
            status=record.status.value,
            cdp_idx=record.cdp_idx,
            uusd_amount=uusd_amount,
        )
        return result

    def increase_position(
        self,
        token: AccessToken,
        position_id: str,
        sender: str,
        assets: Sequence[Asset],
    ) -> SagaResult:
        """Add uusd from `sender` and run a rebalance-and-reinvest cycle over it."""
        self.authority.require(token, Capability.MANAGER)
        record = self._load(position_id)
        if record.is_closed:
            raise PositionError.from_error_code(ErrorCode.POSITION_ALREADY_CLOSED, position_id=position_id)
        if len(assets) != 1 or assets[0].denom != self.context.stable_denom or assets[0].amount <= 0:
            raise ValidationError.from_error_code(ErrorCode.INVALID_ASSETS, field="assets")

        response = Response(commands=[
            TransferUusd(sender=sender, recipient=record.holder, amount=assets[0].amount),
            RebalanceAndReinvest(),
        ])
        return self._run("increase_position", record, response)

    def rebalance_and_reinvest(self, token: AccessToken, position_id: str) -> SagaResult:
        """Keeper entry point; a no-op on closed or preemptively closed positions."""
        self.authority.require(token, Capability.CONTROLLER, Capability.INTERNAL)
        record = self._load(position_id)
        return self._run("rebalance_and_reinvest", record, Response(commands=[RebalanceAndReinvest()]))

    def decrease_position(
        self,
        token: AccessToken,
        position_id: str,
        proportion: RatioInput,
        recipient: str,
    ) -> SagaResult:
        """
        Withdraw `proportion` of the position to `recipient`.

        A proportion of 1 closes the position.

        Raises:
            ValidationError: Proportion outside (0, 1]
        """
        self.authority.require(token, Capability.MANAGER)
        proportion = to_decimal(proportion)
        if atomics(proportion) <= 0 or atomics(proportion) > atomics(ONE):
            raise ValidationError.from_error_code(
                ErrorCode.INVALID_PROPORTION,
                field="proportion",
                details={"proportion": str(proportion)},
            )
        if atomics(proportion) == atomics(ONE):
            return self.close_position(token, position_id, recipient)

        record = self._load(position_id)
        if record.is_closed:
            raise PositionError.from_error_code(ErrorCode.POSITION_ALREADY_CLOSED, position_id=position_id)

        if record.cdp_idx is None or record.cdp_preemptively_closed:
            response = self._partial_lending_withdrawal(record, proportion, recipient)
        else:
            response = Response(commands=self._achieve_delta_neutral(record))
            response.add_command(WithdrawFundsInUusd(proportion=proportion, recipient=recipient))

        result = self._run("decrease_position", record, response)
        log_position_event(
            logger,
            "decreased",
            position_id,
            record.mirror_asset,
            proportion=str(proportion),
            recipient=recipient,
        )
        return result

    def _partial_lending_withdrawal(self, record: PositionRecord, proportion: Decimal, recipient: str) -> Response:
        """Redeem `proportion` of the held aUST and send exactly what it redeems for."""
        response = Response()
        anchor_ust_balance = self.collaborators.bank.balance(record.holder, self.context.collateral_token)
        redeem_amount = mul_floor(anchor_ust_balance, proportion)
        if redeem_amount == 0:
            return response
        redeemed_uusd = mul_floor(redeem_amount, self.collaborators.lending.exchange_rate())
        response.add_command(RedeemStable(anchor_ust_amount=redeem_amount))
        if redeemed_uusd > 0:
            response.add_command(TransferUusd(recipient=recipient, amount=redeemed_uusd))
        return response

    def close_position(self, token: AccessToken, position_id: str, recipient: str) -> SagaResult:
        """
        Close the position and send everything to `recipient`.

        Raises:
            PositionError: Position already closed
        """
        self.authority.require(token, Capability.MANAGER)
        record = self._load(position_id)
        if record.is_closed:
            raise PositionError.from_error_code(ErrorCode.POSITION_ALREADY_CLOSED, position_id=position_id)

        response = Response()
        if record.cdp_idx is None or record.cdp_preemptively_closed:
            # Everything sits in the lending market.
            response.add_commands(self._redeem_all_anchor_ust(record))
            response.add_command(SendUusdToRecipient(proportion=ONE, recipient=recipient))
        else:
            response.add_commands(self._achieve_delta_neutral(record))
            response.add_command(CloseCdpAndDisburseUusd(recipient=recipient))

        result = self._run("close_position", record, response)
        log_position_event(
            logger,
            "closed",
            position_id,
            record.mirror_asset,
            recipient=recipient,
            uusd_amount=record.close_info.uusd_amount if record.close_info else 0,
        )
        return result

    def run_internal(self, token: AccessToken, position_id: str, command: InternalCommand) -> SagaResult:
        """Run one continuation as its own invocation; INTERNAL capability only."""
        self.authority.require(token, Capability.INTERNAL)
        record = self._load(position_id)
        return self._run(command.name, record, Response(commands=[command]))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_position_info(self, position_id: str) -> PositionInfoResponse:
        """Read-only view of a position, with live valuation while it is open."""
        record = self._load(position_id)
        detailed_info = None
        if not record.is_closed:
            detailed_info = self.valuator.compute_detailed_info(record)

        return PositionInfoResponse(
            position_id=record.position_id,
            status=record.status.value,
            mirror_asset=record.mirror_asset,
            cdp_idx=record.cdp_idx,
            open_info=PositionActionInfoResponse(**record.open_info.to_dict()) if record.open_info else None,
            close_info=PositionActionInfoResponse(**record.close_info.to_dict()) if record.close_info else None,
            detailed_info=detailed_info,
        )

    def should_call_rebalance_and_reinvest(self, position_id: str) -> KeeperAdvice:
        return self.keeper.should_call_rebalance_and_reinvest(self._load(position_id))

    def sweep(self) -> Dict[str, KeeperAdvice]:
        """Keeper advice for every live position."""
        advice = {}
        for record in self.state_machine.recover_on_startup(self.store):
            with bound_contextvars(position_id=record.position_id, status=record.status.value):
                advice[record.position_id] = self.keeper.should_call_rebalance_and_reinvest(record)
                logger.info("keeper_swept", **advice[record.position_id].to_dict())
        return advice

    # ------------------------------------------------------------------
    # Continuations
    # ------------------------------------------------------------------

    def _handle_rebalance_and_reinvest(self, record: PositionRecord, command: RebalanceAndReinvest) -> Response:
        response = Response()
        if record.is_closed or record.cdp_preemptively_closed:
            return response

        mirror_asset = record.mirror_asset
        cdp_idx = record.cdp_idx
        if cdp_idx is not None:
            response.add_commands(self._achieve_delta_neutral(record))
            lookup = self.valuator.require_cdp_lookup(cdp_idx)
            if lookup.status == CdpLookupStatus.NOT_FOUND:
                self._preemptively_close(record, "likely full liquidation")
                return response.add_command(CloseCdpAndDepositToLending())

        rate = self.valuator.fresh_oracle_rate(mirror_asset)
        if rate is None:
            logger.info(f"Skipping rebalance of {record.position_id}: {mirror_asset} oracle price is stale")
            return response.add_attribute("dnr_skip", "old_price")

        asset_config = self.collaborators.mint.asset_config(mirror_asset)
        should_close_cdp = mirror_asset in self.context.should_preemptively_close or asset_config.is_delisted
        if cdp_idx is not None:
            if should_close_cdp:
                self._preemptively_close(record, "asset delisted or marked for close")
                return response.add_command(CloseCdpAndDepositToLending())

            response.add_command(AchieveSafeCollateralRatio())
            lock_info = self.valuator.lock_info(cdp_idx)
            if should_defer_reinvest(lock_info, self.collaborators.clock.block().time_seconds):
                return response.add_attribute("reinvest_skip", "proceeds_locked")
            return response.add_commands([
                PairUusdWithMirrorAssetAndStake(),
                DeltaNeutralReinvest(mirror_asset_oracle_rate=rate),
            ])

        if should_close_cdp:
            self._preemptively_close(record, "asset delisted or marked for close before CDP open")
            return response

        # Opened off-market; the price is fresh now, so set up the CDP.
        uusd_value = self.valuator.anchor_ust_value(record.holder)
        new_cdp_idx = self.collaborators.mint.next_position_idx()
        plan = self._plan_investment(record, uusd_value, rate, cdp_idx=None)
        if not plan.commands:
            return response.add_attribute("dnr_skip", "nothing_to_invest")

        record.position_info.cdp_idx = new_cdp_idx
        self._transition(record, PositionStatus.ACTIVE)
        log_position_event(logger, "delayed_open", record.position_id, mirror_asset, cdp_idx=new_cdp_idx)
        return (
            response
            .add_commands(self._redeem_all_anchor_ust(record))
            .add_commands(plan.commands)
            .add_command(OpenPositionSanityCheck())
        )

    def _handle_achieve_safe_collateral_ratio(
        self,
        record: PositionRecord,
        command: AchieveSafeCollateralRatio,
    ) -> Response:
        state = self.valuator.get_position_state(record)
        result = achieve_safe_collateral_ratio(
            state=state,
            target_range=record.target_range,
            asset_config=self.collaborators.mint.asset_config(record.mirror_asset),
            cdp_idx=record.cdp_idx,
            mirror_asset=record.mirror_asset,
            context=self.context,
            lock_info=self.valuator.lock_info(record.cdp_idx),
        )
        if result.range_raised:
            record.target_range = result.target_range
        return Response(commands=result.commands, attributes={"collateral_action": result.action})

    def _handle_close_cdp_and_disburse_uusd(self, record: PositionRecord, command: CloseCdpAndDisburseUusd) -> Response:
        return (
            Response(commands=self._close_cdp_and_collect_fees(record))
            .add_command(SendUusdToRecipient(proportion=ONE, recipient=command.recipient))
        )

    def _handle_close_cdp_and_deposit_to_lending(
        self,
        record: PositionRecord,
        command: CloseCdpAndDepositToLending,
    ) -> Response:
        return (
            Response(commands=self._close_cdp_and_collect_fees(record))
            .add_command(DepositUusdBalanceToLending())
        )

    def _handle_deposit_uusd_balance_to_lending(
        self,
        record: PositionRecord,
        command: DepositUusdBalanceToLending,
    ) -> Response:
        uusd_balance = self.collaborators.bank.balance(record.holder, self.context.stable_denom)
        if uusd_balance == 0:
            return Response()
        return Response(commands=[DepositStable(uusd_amount=uusd_balance)])

    def _handle_withdraw_collateral_and_redeem(
        self,
        record: PositionRecord,
        command: WithdrawCollateralAndRedeem,
    ) -> Response:
        lookup = self.valuator.require_cdp_lookup(record.cdp_idx)
        if not lookup.is_found:
            return Response()
        amount = mul_floor(lookup.cdp.collateral_amount, command.proportion)
        if amount == 0:
            return Response()
        return Response(commands=increase_uusd_balance_from_aust_collateral(record.cdp_idx, amount))

    def _handle_send_uusd_to_recipient(self, record: PositionRecord, command: SendUusdToRecipient) -> Response:
        uusd_balance = self.collaborators.bank.balance(record.holder, self.context.stable_denom)
        amount = mul_floor(uusd_balance, command.proportion)

        if atomics(command.proportion) == atomics(ONE):
            now = self._now()
            record.close_info = PositionActionInfo(
                height=now.height,
                time_seconds=now.time_seconds,
                uusd_amount=amount,
            )
            self._transition(record, PositionStatus.CLOSED)

        if amount == 0:
            return Response()
        return Response(commands=[TransferUusd(recipient=command.recipient, amount=amount)])

    def _handle_pair_uusd_with_mirror_asset_and_stake(
        self,
        record: PositionRecord,
        command: PairUusdWithMirrorAssetAndStake,
    ) -> Response:
        state = self.valuator.get_position_state(record)
        return Response(commands=pair_uusd_with_mirror_asset(
            state,
            record.mirror_asset,
            self.collaborators.long_farm.farm_exists(record.mirror_asset),
        ))

    def _handle_delta_neutral_reinvest(self, record: PositionRecord, command: DeltaNeutralReinvest) -> Response:
        uusd_balance = self.collaborators.bank.balance(record.holder, self.context.stable_denom)
        if uusd_balance < self.context.min_reinvest_uusd_amount:
            return Response()
        plan = self._plan_investment(
            record,
            uusd_balance,
            command.mirror_asset_oracle_rate,
            cdp_idx=record.cdp_idx,
        )
        return Response(commands=plan.commands)

    def _handle_open_position_sanity_check(
        self,
        record: PositionRecord,
        command: OpenPositionSanityCheck,
    ) -> Response:
        mirror_asset_balance = self.collaborators.bank.balance(record.holder, record.mirror_asset)
        lookup = self.valuator.require_cdp_lookup(record.cdp_idx)
        if (
            not lookup.is_found
            or not lookup.cdp.is_short
            or mirror_asset_balance != lookup.cdp.short_amount
        ):
            raise InvariantViolationError.from_error_code(
                ErrorCode.NON_NEUTRAL_POSITION_OPENED,
                message=(
                    f"unexpected non-neutral position opened: long amount {mirror_asset_balance}, "
                    f"cdp {lookup.cdp}"
                ),
                details={
                    "position_id": record.position_id,
                    "long_amount": mirror_asset_balance,
                    "short_amount": lookup.cdp.short_amount if lookup.is_found else None,
                },
            )
        return Response()

    def _handle_withdraw_funds_in_uusd(self, record: PositionRecord, command: WithdrawFundsInUusd) -> Response:
        state = self.valuator.get_position_state(record)
        response = Response()
        burn_amount = mul_floor(state.mirror_asset_short_amount, command.proportion)
        if burn_amount > 0:
            response.add_commands(increase_mirror_asset_balance_from_long_farm(
                state, record.mirror_asset, burn_amount,
            ))
            response.add_command(BurnShort(
                cdp_idx=record.cdp_idx,
                mirror_asset=record.mirror_asset,
                amount=burn_amount,
            ))
        return (
            response
            .add_command(WithdrawCollateralAndRedeem(proportion=command.proportion))
            .add_command(SendUusdToRecipient(proportion=command.proportion, recipient=command.recipient))
        )
