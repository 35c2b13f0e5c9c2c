from decimal import Decimal, ROUND_DOWN

from casino_rounds.exceptions import ValidationException
from casino_rounds.utils import fairness

BOARD_SIZE = 40
DRAW_COUNT = 10
MAX_PICKS = 10

# Multiplier by number of hits (index 0..10)
PAYOUT_TABLES = {
    'low': [0, 0, 1.1, 1.2, 1.3, 1.8, 3.5, 15, 50, 250, 1000],
    'classic': [0, 0, 0, 1.4, 2.25, 4.5, 8, 17, 50, 80, 100],
    'high': [0, 0, 0, 0, 3.5, 8, 15, 65, 500, 800, 1000],
}
# medium plays the classic table
PAYOUT_TABLES['medium'] = PAYOUT_TABLES['classic']


def validate_picks(picks, risk):
    if risk not in PAYOUT_TABLES:
        raise ValidationException(f"Invalid risk level '{risk}'.", details={'risk': risk})
    if not isinstance(picks, (list, tuple)) or not (1 <= len(picks) <= MAX_PICKS):
        raise ValidationException(f"Pick between 1 and {MAX_PICKS} numbers.", details={'picks': picks})
    if any(isinstance(n, bool) or not isinstance(n, int) or not (1 <= n <= BOARD_SIZE) for n in picks):
        raise ValidationException(f"Picks must be numbers from 1 to {BOARD_SIZE}.", details={'picks': picks})
    if len(set(picks)) != len(picks):
        raise ValidationException("Picks must be unique.", details={'picks': picks})

def multiplier_for(risk, hits) -> Decimal:
    return Decimal(str(PAYOUT_TABLES[risk][hits]))

def play(server_seed, client_seed, nonce, picks, risk, stake_amount):
    validate_picks(picks, risk)
    drawn = fairness.keno_draw(server_seed, client_seed, nonce, pool_size=BOARD_SIZE, draw_count=DRAW_COUNT)
    hits = sorted(set(picks) & set(drawn))
    multiplier = multiplier_for(risk, len(hits))
    payout = (Decimal(str(stake_amount)) * multiplier).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return {
        'drawn': drawn,
        'picks': sorted(picks),
        'hits': hits,
        'multiplier': multiplier,
        'payout': payout,
    }
