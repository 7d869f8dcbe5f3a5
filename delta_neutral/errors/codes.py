"""
Error codes and messages for the delta-neutral position engine.

Format: XXX-NNNN
- XXX: Category (3 letters)
- NNNN: Sequential number (4 digits)
"""

from enum import Enum
from typing import Dict


class ErrorCategory(Enum):
    """Error categories."""
    GENERAL = "GEN"
    VALIDATION = "VAL"
    AUTH = "AUT"
    POSITION = "POS"
    AMM = "AMM"
    CDP = "CDP"
    ORACLE = "ORC"
    INVARIANT = "INV"
    EXTERNAL = "EXT"


class ErrorCode(Enum):
    """
    All error codes for the engine.

    Format: CATEGORY-NNNN
    """
    # General Errors (GEN)
    UNKNOWN_ERROR = ("GEN-0001", "An unexpected error occurred")
    INTERNAL_ERROR = ("GEN-0002", "Internal engine error")

    # Validation Errors (VAL)
    INVALID_INPUT = ("VAL-0001", "Invalid input provided")
    INVALID_PROPORTION = ("VAL-0002", "Proportion must be within (0, 1]")
    INVALID_ASSETS = ("VAL-0003", "Exactly one uusd asset is required")
    BUDGET_TOO_SMALL = ("VAL-0004", "UST amount too small to open a delta-neutral position")
    RANGE_TOO_NARROW = ("VAL-0005", "Target collateral ratio range is too narrow")
    UNSAFE_COLLATERAL_RATIO = ("VAL-0006", "target_min_collateral_ratio too small")
    ASSET_NOT_ALLOWED = ("VAL-0007", "Mirror asset is not allowed for position open")
    ASSET_DELISTED = ("VAL-0008", "mAsset is delisted")

    # Auth Errors (AUT)
    UNAUTHORIZED = ("AUT-0001", "unauthorized")
    INVALID_TOKEN = ("AUT-0002", "Invalid or revoked access token")

    # Position Errors (POS)
    POSITION_ALREADY_OPEN = ("POS-0001", "position is already open")
    POSITION_ALREADY_CLOSED = ("POS-0002", "position is already closed")
    POSITION_NOT_OPEN = ("POS-0003", "position is not open")
    CDP_NOT_ACTIVE = ("POS-0004", "CDP is not active")

    # AMM Errors (AMM)
    INSUFFICIENT_LIQUIDITY = ("AMM-0001", "Insufficient liquidity in pool")
    PAIR_NOT_FOUND = ("AMM-0002", "No AMM pair found for token")

    # CDP Errors (CDP)
    CDP_NOT_FOUND = ("CDP-0001", "CDP not found")
    CDP_BELOW_MIN_RATIO = ("CDP-0002", "Operation would leave CDP below minimum collateral ratio")
    CDP_INSUFFICIENT_BALANCE = ("CDP-0003", "CDP does not hold enough collateral or debt")

    # Oracle Errors (ORC)
    ORACLE_PRICE_STALE = ("ORC-0001", "oracle price stale; off-market position open service not requested")

    # Invariant Errors (INV)
    NON_NEUTRAL_POSITION_OPENED = ("INV-0001", "unexpected non-neutral position opened")
    INSUFFICIENT_BALANCE = ("INV-0002", "Insufficient token balance")

    # External Errors (EXT)
    COLLABORATOR_UNAVAILABLE = ("EXT-0001", "External collaborator query failed")

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        # Parse category from code
        self.category = ErrorCategory(code.split("-")[0])


def get_error_info(code: ErrorCode) -> Dict[str, str]:
    """Get error information as dictionary."""
    return {
        "error_code": code.code,
        "message": code.message,
        "category": code.category.value,
    }


# Detailed descriptions for documentation
ERROR_DESCRIPTIONS: Dict[str, str] = {
    # General
    "GEN-0001": "An unexpected error occurred. The invocation was rolled back.",
    "GEN-0002": "An internal engine error occurred. The invocation was rolled back.",

    # Validation
    "VAL-0001": "The input provided is invalid.",
    "VAL-0002": "Decrease proportion must be greater than zero and at most one.",
    "VAL-0003": "Funds must consist of exactly one uusd asset meeting the minimum open amount.",
    "VAL-0004": "The uusd budget is below the configured minimum for opening a position.",
    "VAL-0005": "target_max_collateral_ratio must exceed target_min_collateral_ratio by the minimum width.",
    "VAL-0006": "target_min_collateral_ratio must exceed the asset minimum plus the safety margin.",
    "VAL-0007": "This mirror asset is not on the position-open allow-list.",
    "VAL-0008": "The mirror asset has been delisted from the debt market.",

    # Auth
    "AUT-0001": "The caller does not hold the capability required for this operation.",
    "AUT-0002": "The access token was not issued by this authority or has been revoked.",

    # Position
    "POS-0001": "A position can only be opened once.",
    "POS-0002": "This position has already been closed.",
    "POS-0003": "The position has not been opened yet.",
    "POS-0004": "The operation requires an active CDP.",

    # AMM
    "AMM-0001": "The requested ask amount meets or exceeds the pool reserve.",
    "AMM-0002": "Neither AMM has a pair for the token being swapped.",

    # CDP
    "CDP-0001": "The CDP could not be found; it was most likely fully liquidated.",
    "CDP-0002": "The debt market rejected the operation because the resulting ratio is too low.",
    "CDP-0003": "The CDP does not hold enough collateral or debt for the operation.",

    # Oracle
    "ORC-0001": "The oracle price is stale and off-market open was not requested.",

    # Invariant
    "INV-0001": "The long balance does not match the CDP short amount after opening.",
    "INV-0002": "An account tried to spend more than it holds.",

    # External
    "EXT-0001": "A collaborator query failed transiently. Retry on a later invocation.",
}


def get_error_description(code: str) -> str:
    """Get detailed description for an error code."""
    return ERROR_DESCRIPTIONS.get(code, "No description available.")
