class ErrorCodes:
    GENERIC_ERROR = "GENERIC_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    GAME_LOGIC_ERROR = "GAME_LOGIC_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

    # Round engine
    INVALID_SEED = "INVALID_SEED"
    BET_REJECTED = "BET_REJECTED"
    BETTING_CLOSED = "BETTING_CLOSED"
    INVALID_BET_TYPE = "INVALID_BET_TYPE"
    ROUND_STALLED = "ROUND_STALLED"
    SETTLEMENT_CONFLICT = "SETTLEMENT_CONFLICT"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    PROCEDURE_FAILED = "PROCEDURE_FAILED"
