"""
Exception classes for the delta-neutral position engine.
"""

from typing import Optional, Dict, Any

from delta_neutral.errors.codes import ErrorCode, get_error_description


class DeltaNeutralError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        code: str,
        message: str,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.description = description or message
        self.details = details or {}
        super().__init__(self.message)

    @classmethod
    def from_error_code(cls, error_code: ErrorCode, message: Optional[str] = None, **kwargs: Any):
        """Build the exception from a registered ErrorCode."""
        return cls(
            code=error_code.code,
            message=message or error_code.message,
            description=get_error_description(error_code.code),
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and query responses."""
        return {
            "error_code": self.code,
            "message": self.message,
            "description": self.description,
            "details": self.details,
        }


class ValidationError(DeltaNeutralError):
    """Input validation error."""

    def __init__(
        self,
        code: str = "VAL-0001",
        message: str = "Invalid input provided",
        description: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            description=description,
            details={"field": field, **(details or {})},
        )


class AuthError(DeltaNeutralError):
    """Authorization error."""

    def __init__(
        self,
        code: str = "AUT-0001",
        message: str = "unauthorized",
        description: Optional[str] = None,
        holder: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if holder:
            error_details["holder"] = holder

        super().__init__(
            code=code,
            message=message,
            description=description,
            details=error_details,
        )


class PositionError(DeltaNeutralError):
    """Position lifecycle error."""

    def __init__(
        self,
        code: str = "POS-0001",
        message: str = "Position error",
        description: Optional[str] = None,
        position_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if position_id:
            error_details["position_id"] = position_id

        super().__init__(
            code=code,
            message=message,
            description=description,
            details=error_details,
        )


class InsufficientLiquidityError(DeltaNeutralError):
    """The pool cannot return the requested amount."""

    def __init__(
        self,
        code: str = "AMM-0001",
        message: str = "Insufficient liquidity in pool",
        description: Optional[str] = None,
        ask_amount: Optional[int] = None,
        ask_reserve: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if ask_amount is not None:
            error_details["ask_amount"] = ask_amount
        if ask_reserve is not None:
            error_details["ask_reserve"] = ask_reserve

        super().__init__(
            code=code,
            message=message,
            description=description,
            details=error_details,
        )


class OracleError(DeltaNeutralError):
    """Oracle price unusable for the requested operation."""

    def __init__(
        self,
        code: str = "ORC-0001",
        message: str = "oracle price stale; off-market position open service not requested",
        description: Optional[str] = None,
        mirror_asset: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if mirror_asset:
            error_details["mirror_asset"] = mirror_asset

        super().__init__(
            code=code,
            message=message,
            description=description,
            details=error_details,
        )


class InvariantViolationError(DeltaNeutralError):
    """Hard, unrecoverable arithmetic or invariant failure."""

    def __init__(
        self,
        code: str = "INV-0001",
        message: str = "unexpected non-neutral position opened",
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            description=description,
            details=details or {},
        )


class CollaboratorError(DeltaNeutralError):
    """External collaborator failed or rejected a call."""

    def __init__(
        self,
        code: str = "EXT-0001",
        message: str = "External collaborator query failed",
        description: Optional[str] = None,
        collaborator: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if collaborator:
            error_details["collaborator"] = collaborator

        super().__init__(
            code=code,
            message=message,
            description=description,
            details=error_details,
        )
