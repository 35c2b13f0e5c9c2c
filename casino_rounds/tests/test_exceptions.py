import pytest
from casino_rounds.exceptions import (
    AppException,
    ValidationException,
    AuthenticationException,
    AuthorizationException,
    NotFoundException,
    GameLogicException,
    InvalidSeedError,
    BetRejected,
    StalledRoundWarning,
    SettlementConflict,
    BackendUnavailable,
    ProcedureError,
)
from casino_rounds.error_codes import ErrorCodes


def test_app_exception_instantiation():
    details = {"field": "value"}
    action_button = {"text": "Retry", "actionType": "RETRY_ACTION"}

    exc = AppException(
        error_code="TEST_001",
        status_message="Test message",
        status_code=400,
        details=details,
        action_button=action_button
    )

    assert exc.error_code == "TEST_001"
    assert exc.status_message == "Test message"
    assert exc.status_code == 400
    assert exc.details == details
    assert exc.action_button == action_button
    assert str(exc) == "Test message"


def test_app_exception_defaults():
    exc = AppException(error_code="TEST_002", status_message="Default test", status_code=500)
    assert exc.details == {}
    assert exc.action_button == {}


@pytest.mark.parametrize("exc_class, error_code, status_code", [
    (ValidationException, ErrorCodes.VALIDATION_ERROR, 422),
    (AuthenticationException, ErrorCodes.UNAUTHENTICATED, 401),
    (AuthorizationException, ErrorCodes.FORBIDDEN, 403),
    (NotFoundException, ErrorCodes.NOT_FOUND, 404),
    (GameLogicException, ErrorCodes.GAME_LOGIC_ERROR, 400),
    (InvalidSeedError, ErrorCodes.INVALID_SEED, 400),
    (BetRejected, ErrorCodes.BET_REJECTED, 400),
    (StalledRoundWarning, ErrorCodes.ROUND_STALLED, 503),
    (SettlementConflict, ErrorCodes.SETTLEMENT_CONFLICT, 409),
    (BackendUnavailable, ErrorCodes.BACKEND_UNAVAILABLE, 503),
    (ProcedureError, ErrorCodes.PROCEDURE_FAILED, 500),
])
def test_subclass_codes(exc_class, error_code, status_code):
    exc = exc_class(status_message="Something happened", details={"k": "v"})
    assert exc.error_code == error_code
    assert exc.status_code == status_code
    assert exc.status_message == "Something happened"
    assert exc.details == {"k": "v"}
    assert isinstance(exc, AppException)
    with pytest.raises(exc_class):
        raise exc


def test_bet_rejected_carries_specific_code():
    exc = BetRejected("Betting is closed for this round.", error_code=ErrorCodes.BETTING_CLOSED)
    assert exc.error_code == ErrorCodes.BETTING_CLOSED
    assert exc.status_code == 400


def test_status_code_overrides():
    assert GameLogicException(status_message="Broken state", status_code=500).status_code == 500
    assert ProcedureError(status_message="Timed out", status_code=504).status_code == 504


def test_default_messages():
    assert str(BackendUnavailable()) == "Backend unavailable"
    assert SettlementConflict().status_message == "Settlement conflict"
    assert StalledRoundWarning().details == {}
