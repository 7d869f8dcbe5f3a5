"""
Error handling system for the delta-neutral position engine.

Provides structured error codes and messages for callers and keepers.
"""

from .codes import ErrorCode, ErrorCategory, get_error_info, get_error_description
from .exceptions import (
    DeltaNeutralError,
    ValidationError,
    AuthError,
    PositionError,
    InsufficientLiquidityError,
    OracleError,
    InvariantViolationError,
    CollaboratorError,
)

__all__ = [
    # Codes
    "ErrorCode",
    "ErrorCategory",
    "get_error_info",
    "get_error_description",
    # Exceptions
    "DeltaNeutralError",
    "ValidationError",
    "AuthError",
    "PositionError",
    "InsufficientLiquidityError",
    "OracleError",
    "InvariantViolationError",
    "CollaboratorError",
]
