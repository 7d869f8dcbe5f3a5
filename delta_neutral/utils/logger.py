"""
Structured JSON logging with structlog.

Module loggers are lazy proxies, so configure_logging() may run after
they are created. Per-position context is bound with
structlog.contextvars.bound_contextvars and merged into every event.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

from delta_neutral.config.settings import get_settings


def configure_logging(log_level: Optional[str] = None) -> None:
    """Render JSON lines to stdout; the level defaults to LOG_LEVEL."""
    level = log_level or get_settings().log_level
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(logger=name)


def log_position_event(
    logger: FilteringBoundLogger,
    event: str,
    position_id: str,
    mirror_asset: str,
    **extra: Any,
) -> None:
    logger.info(f"position_{event}", position_id=position_id, mirror_asset=mirror_asset, **extra)


def log_rebalance_event(
    logger: FilteringBoundLogger,
    action: str,
    mirror_asset: str,
    long_amount: int,
    short_amount: int,
    **extra: Any,
) -> None:
    """Log a delta or collateral-ratio corrective action."""
    logger.info(
        "rebalance_action",
        action=action,
        mirror_asset=mirror_asset,
        long_amount=long_amount,
        short_amount=short_amount,
        **extra,
    )


def log_risk_event(
    logger: FilteringBoundLogger,
    risk_type: str,
    severity: str,
    message: str,
    **extra: Any,
) -> None:
    """Log a risk event; "critical" maps to error, anything else to warning."""
    log_func = logger.error if severity == "critical" else logger.warning
    log_func("risk_event", risk_type=risk_type, severity=severity, message=message, **extra)
