import math
from decimal import Decimal, ROUND_DOWN

from casino_rounds.utils.fairness import MAX_CRASH_MULTIPLIER

# Curve: 1.00 * 1.015^(elapsed_seconds * 5), floored to two decimals
GROWTH_BASE = 1.015
GROWTH_RATE = 5
MAX_GAME_DURATION = 120  # seconds before a forced crash
MIN_AUTO_CASHOUT = Decimal("1.01")

_CENTS = Decimal("0.01")


def seconds_until(multiplier) -> float:
    """Flight time needed for the curve to reach multiplier."""
    multiplier = float(multiplier)
    if multiplier <= 1.0:
        return 0.0
    return math.log(multiplier) / (GROWTH_RATE * math.log(GROWTH_BASE))

# No round flies past the highest crash point, so the curve stops there too
_CURVE_LIMIT_SECONDS = seconds_until(MAX_CRASH_MULTIPLIER)


def multiplier_at(elapsed_seconds: float, max_seconds: float = MAX_GAME_DURATION) -> Decimal:
    """Multiplier shown after elapsed_seconds of flight, held at its value once the flight limit is reached."""
    elapsed_seconds = min(max(elapsed_seconds, 0), float(max_seconds), _CURVE_LIMIT_SECONDS)
    raw = math.pow(GROWTH_BASE, elapsed_seconds * GROWTH_RATE)
    return min(Decimal(math.floor(raw * 100)) / 100, MAX_CRASH_MULTIPLIER)

def crash_cap(max_seconds: float = MAX_GAME_DURATION) -> Decimal:
    """Highest crash point a round forced down after max_seconds can actually show."""
    return multiplier_at(max_seconds, max_seconds)

def flight_duration(crash_point, max_seconds: float = MAX_GAME_DURATION) -> float:
    return min(seconds_until(crash_point), float(max_seconds))

def current_multiplier(elapsed_seconds: float, crash_point, max_seconds: float = MAX_GAME_DURATION) -> Decimal:
    """Curve value capped at the crash point."""
    value = multiplier_at(elapsed_seconds, max_seconds)
    if crash_point is None:
        return value
    crash_point = Decimal(str(crash_point))
    return value if value <= crash_point else crash_point


def crash_bet_payout(bet_amount, crash_point, auto_cashout_at=None, cashout_multiplier=None) -> Decimal:
    """
    Total returned for a crash bet once the round has crashed.

    A manual cashout recorded before the crash pays at its multiplier. Otherwise
    an auto-cashout target at or below the crash point pays at the target.
    Everything else busted.
    """
    amount = Decimal(str(bet_amount))
    crash_point = Decimal(str(crash_point))
    if cashout_multiplier is not None:
        multiplier = Decimal(str(cashout_multiplier))
        if multiplier > crash_point:
            return Decimal("0.00")
        return (amount * multiplier).quantize(_CENTS, rounding=ROUND_DOWN)
    if auto_cashout_at is not None:
        target = Decimal(str(auto_cashout_at))
        if target <= crash_point:
            return (amount * target).quantize(_CENTS, rounding=ROUND_DOWN)
    return Decimal("0.00")

def effective_cashout(crash_point, auto_cashout_at=None, cashout_multiplier=None):
    """Multiplier a bet left the round at, or None when it busted."""
    crash_point = Decimal(str(crash_point))
    if cashout_multiplier is not None and Decimal(str(cashout_multiplier)) <= crash_point:
        return Decimal(str(cashout_multiplier))
    if auto_cashout_at is not None and Decimal(str(auto_cashout_at)) <= crash_point:
        return Decimal(str(auto_cashout_at))
    return None
