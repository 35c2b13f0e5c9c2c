from casino_rounds.error_codes import ErrorCodes

class AppException(Exception):
    def __init__(self, error_code, status_message, status_code, details=None, action_button=None):
        super().__init__(status_message)
        self.error_code = error_code
        self.status_message = status_message
        self.status_code = status_code
        self.details = details if details is not None else {}
        self.action_button = action_button if action_button is not None else {}

class ValidationException(AppException):
    def __init__(self, status_message="Validation failed", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.VALIDATION_ERROR,
            status_message=status_message,
            status_code=422,
            details=details,
            action_button=action_button
        )

class AuthenticationException(AppException):
    def __init__(self, status_message="Authentication required", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.UNAUTHENTICATED,
            status_message=status_message,
            status_code=401,
            details=details,
            action_button=action_button
        )

class AuthorizationException(AppException):
    def __init__(self, status_message="Forbidden", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.FORBIDDEN,
            status_message=status_message,
            status_code=403,
            details=details,
            action_button=action_button
        )

class NotFoundException(AppException):
    def __init__(self, status_message="Resource not found", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.NOT_FOUND,
            status_message=status_message,
            status_code=404,
            details=details,
            action_button=action_button
        )

class GameLogicException(AppException):
    def __init__(self, status_message="Game logic error", details=None, action_button=None, status_code=400):
        super().__init__(
            error_code=ErrorCodes.GAME_LOGIC_ERROR,
            status_message=status_message,
            status_code=status_code, # Can be 400 or 500
            details=details,
            action_button=action_button
        )

# --- Round engine errors ---

class InvalidSeedError(AppException):
    """Fairness derivation was given malformed seed material. Fatal to that derivation only."""
    def __init__(self, status_message="Invalid seed material", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INVALID_SEED,
            status_message=status_message,
            status_code=400,
            details=details,
            action_button=action_button
        )

class BetRejected(AppException):
    """Backend-side validation failure for a wager (balance, phase closed, bet type)."""
    def __init__(self, status_message="Bet rejected", error_code=ErrorCodes.BET_REJECTED, details=None, action_button=None):
        super().__init__(
            error_code=error_code,
            status_message=status_message,
            status_code=400,
            details=details,
            action_button=action_button
        )

class StalledRoundWarning(AppException):
    """The external tick has not advanced the round within its expected window."""
    def __init__(self, status_message="Round is stalled", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.ROUND_STALLED,
            status_message=status_message,
            status_code=503,
            details=details,
            action_button=action_button
        )

class SettlementConflict(AppException):
    """Locally recomputed payout disagrees with the backend-confirmed payout. Backend value wins."""
    def __init__(self, status_message="Settlement conflict", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.SETTLEMENT_CONFLICT,
            status_message=status_message,
            status_code=409,
            details=details,
            action_button=action_button
        )

class BackendUnavailable(AppException):
    """A read or subscription against the backing store failed."""
    def __init__(self, status_message="Backend unavailable", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.BACKEND_UNAVAILABLE,
            status_message=status_message,
            status_code=503,
            details=details,
            action_button=action_button
        )

class ProcedureError(AppException):
    """A named server-side procedure failed for a reason other than bet validation."""
    def __init__(self, status_message="Procedure failed", details=None, action_button=None, status_code=500):
        super().__init__(
            error_code=ErrorCodes.PROCEDURE_FAILED,
            status_message=status_message,
            status_code=status_code,
            details=details,
            action_button=action_button
        )
