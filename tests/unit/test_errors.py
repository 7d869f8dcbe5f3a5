"""
Tests for error codes and exception classes.
"""
from delta_neutral.errors import (
    AuthError,
    CollaboratorError,
    DeltaNeutralError,
    ErrorCode,
    InsufficientLiquidityError,
    PositionError,
    ValidationError,
)
from delta_neutral.errors.codes import ErrorCategory, get_error_description, get_error_info


class TestErrorCodes:
    def test_category_parsed_from_code(self):
        assert ErrorCode.INVALID_PROPORTION.category == ErrorCategory.VALIDATION
        assert ErrorCode.ORACLE_PRICE_STALE.category == ErrorCategory.ORACLE

    def test_every_code_has_a_description(self):
        for error_code in ErrorCode:
            assert get_error_description(error_code.code) != "No description available."

    def test_codes_are_unique(self):
        codes = [error_code.code for error_code in ErrorCode]
        assert len(codes) == len(set(codes))

    def test_error_info(self):
        assert get_error_info(ErrorCode.UNAUTHORIZED) == {
            "error_code": "AUT-0001",
            "message": "unauthorized",
            "category": "AUT",
        }


class TestExceptions:
    def test_from_error_code(self):
        error = ValidationError.from_error_code(ErrorCode.BUDGET_TOO_SMALL, field="assets")
        assert error.code == "VAL-0004"
        assert error.message == ErrorCode.BUDGET_TOO_SMALL.message
        assert error.details == {"field": "assets"}
        assert isinstance(error, DeltaNeutralError)

    def test_message_override(self):
        error = CollaboratorError.from_error_code(
            ErrorCode.PAIR_NOT_FOUND, message="No pair for ANC", collaborator="router",
        )
        assert str(error) == "No pair for ANC"
        assert error.details == {"collaborator": "router"}

    def test_to_dict(self):
        error = PositionError.from_error_code(ErrorCode.POSITION_ALREADY_OPEN, position_id="pos-1")
        data = error.to_dict()
        assert data["error_code"] == "POS-0001"
        assert data["details"] == {"position_id": "pos-1"}
        assert data["description"] == "A position can only be opened once."

    def test_auth_error_records_holder(self):
        error = AuthError.from_error_code(ErrorCode.UNAUTHORIZED, holder="keeper")
        assert error.details == {"holder": "keeper"}

    def test_liquidity_error_details(self):
        error = InsufficientLiquidityError.from_error_code(
            ErrorCode.INSUFFICIENT_LIQUIDITY, ask_amount=10, ask_reserve=5,
        )
        assert error.details == {"ask_amount": 10, "ask_reserve": 5}
