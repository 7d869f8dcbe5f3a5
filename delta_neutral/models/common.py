"""
Common enums and base types used across the engine.
"""
from enum import Enum


class PositionStatus(str, Enum):
    """Position lifecycle states."""
    NEW = "new"
    OPEN_PENDING = "open_pending"
    ACTIVE = "active"
    PREEMPTIVELY_CLOSED = "preemptively_closed"
    CLOSED = "closed"


class CdpLookupStatus(str, Enum):
    """Outcome of a CDP query against the debt market."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


class SwapVenue(str, Enum):
    """AMMs the engine can route swaps through."""
    TERRASWAP = "terraswap"
    ASTROPORT = "astroport"


class Capability(str, Enum):
    """Capabilities an access token can carry."""
    MANAGER = "manager"
    CONTROLLER = "controller"
    INTERNAL = "internal"


class RebalanceReason(str, Enum):
    """Keeper advice reasons, in evaluation order."""
    POSITION_CLOSED = "POSITION_CLOSED"
    CDP_PREEMPTIVELY_CLOSED = "CDP_PREEMPTIVELY_CLOSED"
    LIKELY_FULL_LIQUIDATION = "LIKELY_FULL_LIQUIDATION"
    ORACLE_PRICE_STALE = "ORACLE_PRICE_STALE"
    DELAYED_DN_OPEN = "DELAYED_DN_OPEN"
    PREEMPTIVELY_CLOSE_CDP = "PREEMPTIVELY_CLOSE_CDP"
    RAISE_TARGET_CR_RANGE = "RAISE_TARGET_CR_RANGE"
    CR_BELOW_MIN = "CR_BELOW_MIN"
    CR_ABOVE_MAX = "CR_ABOVE_MAX"
    DELTA_ABOVE_THRESHOLD = "DELTA_ABOVE_THRESHOLD"
    LIQUID_UUSD_ABOVE_THRESHOLD = "LIQUID_UUSD_ABOVE_THRESHOLD"
    LOOKS_GOOD = "LOOKS_GOOD"


# Type aliases
Address = str
Token = str
PositionId = str
Uint = int
