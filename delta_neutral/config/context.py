"""
Engine context.

A frozen bundle of protocol parameters and addresses, built once from
Settings and risk.yaml and passed into every engine operation. Nothing in
the engine reads the global settings directly.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Optional

from delta_neutral.config.settings import Settings, get_settings, load_risk_config
from delta_neutral.core.fixed_point import to_decimal


@dataclass(frozen=True)
class EngineContext:
    """Protocol parameters shared by every position."""

    # Tokens
    stable_denom: str = "uusd"
    collateral_token: str = "aUST"
    long_farm_reward_token: str = "SPEC"
    short_farm_reward_token: str = "MIR"

    # Collateral
    collateral_ratio_safety_margin: Decimal = Decimal("0.3")
    min_target_range_width: Decimal = Decimal("0.4")

    # Amounts
    min_open_uusd_amount: int = 500_000_000
    min_reinvest_uusd_amount: int = 10_000_000

    # Fees
    performance_rate: Decimal = Decimal("0.1")
    off_market_position_open_service_fee_uusd: int = 1_000_000

    # Oracle
    price_expire_seconds: int = 60

    # Keeper thresholds
    mirror_asset_net_amount_tolerance_ratio: Decimal = Decimal("0.01")
    liquid_uusd_threshold_ratio: Decimal = Decimal("0.05")

    # Asset lists
    allowed_mirror_assets: FrozenSet[str] = field(default_factory=frozenset)
    should_preemptively_close: FrozenSet[str] = field(default_factory=frozenset)

    # Addresses
    fee_collector_addr: str = "fee_collector"
    controller_addr: str = "controller"

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        risk_config: Optional[dict] = None,
    ) -> "EngineContext":
        """
        Build a context from Settings and the parsed risk.yaml.

        Args:
            settings: Engine settings (defaults to get_settings())
            risk_config: Parsed risk.yaml (defaults to load_risk_config())
        """
        settings = settings or get_settings()
        risk_config = risk_config if risk_config is not None else load_risk_config()

        collateral = risk_config.get("collateral", {})
        amounts = risk_config.get("amounts", {})
        fees = risk_config.get("fees", {})
        oracle = risk_config.get("oracle", {})
        keeper = risk_config.get("keeper", {})
        assets = risk_config.get("assets", {})
        tokens = risk_config.get("tokens", {})

        return cls(
            stable_denom=tokens.get("stable_denom", "uusd"),
            collateral_token=tokens.get("collateral_token", "aUST"),
            long_farm_reward_token=tokens.get("long_farm_reward_token", "SPEC"),
            short_farm_reward_token=tokens.get("short_farm_reward_token", "MIR"),
            collateral_ratio_safety_margin=to_decimal(collateral.get("safety_margin", "0.3")),
            min_target_range_width=to_decimal(collateral.get("min_target_range_width", "0.4")),
            min_open_uusd_amount=int(amounts.get("min_open_uusd", 500_000_000)),
            min_reinvest_uusd_amount=int(amounts.get("min_reinvest_uusd", 10_000_000)),
            performance_rate=to_decimal(fees.get("performance_rate", "0.1")),
            off_market_position_open_service_fee_uusd=int(
                fees.get("off_market_position_open_service_fee_uusd", 1_000_000)
            ),
            price_expire_seconds=int(oracle.get("price_expire_seconds", 60)),
            mirror_asset_net_amount_tolerance_ratio=to_decimal(
                keeper.get("mirror_asset_net_amount_tolerance_ratio", "0.01")
            ),
            liquid_uusd_threshold_ratio=to_decimal(keeper.get("liquid_uusd_threshold_ratio", "0.05")),
            allowed_mirror_assets=frozenset(assets.get("allowed_mirror_assets") or []),
            should_preemptively_close=frozenset(assets.get("should_preemptively_close") or []),
            fee_collector_addr=settings.fee_collector_addr,
            controller_addr=settings.controller_addr,
        )
