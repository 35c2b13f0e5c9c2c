from decimal import Decimal, ROUND_DOWN

from casino_rounds.exceptions import ValidationException
from casino_rounds.utils import fairness

# --- Constants ---
RISK_LEVELS = ('low', 'medium', 'high')
MIN_ROWS = 8
MAX_ROWS = 16

# Bucket multipliers, left to right, for each risk level and row count
PAYOUT_MULTIPLIERS = {
    'low': {
        8: [5.6, 2.1, 1.1, 1, 0.5, 1, 1.1, 2.1, 5.6],
        9: [5.6, 2, 1.6, 1, 0.7, 0.7, 1, 1.6, 2, 5.6],
        10: [8.9, 3, 1.4, 1.1, 1, 0.5, 1, 1.1, 1.4, 3, 8.9],
        11: [8.4, 3, 1.9, 1.3, 1, 0.7, 0.7, 1, 1.3, 1.9, 3, 8.4],
        12: [10, 3, 1.6, 1.4, 1.1, 1, 0.5, 1, 1.1, 1.4, 1.6, 3, 10],
        13: [8.1, 4, 3, 1.9, 1.2, 0.9, 0.7, 0.7, 0.9, 1.2, 1.9, 3, 4, 8.1],
        14: [7.1, 4, 1.9, 1.4, 1.3, 1.1, 1, 0.5, 1, 1.1, 1.3, 1.4, 1.9, 4, 7.1],
        15: [15, 8, 3, 2, 1.5, 1.1, 1, 0.7, 0.7, 1, 1.1, 1.5, 2, 3, 8, 15],
        16: [16, 9, 2, 1.4, 1.4, 1.2, 1.1, 1, 0.5, 1, 1.1, 1.2, 1.4, 1.4, 2, 9, 16],
    },
    'medium': {
        8: [13, 3, 1.3, 0.7, 0.4, 0.7, 1.3, 3, 13],
        9: [18, 4, 1.7, 0.9, 0.5, 0.5, 0.9, 1.7, 4, 18],
        10: [22, 5, 2, 1.4, 0.6, 0.4, 0.6, 1.4, 2, 5, 22],
        11: [24, 6, 3, 1.8, 0.7, 0.5, 0.5, 0.7, 1.8, 3, 6, 24],
        12: [33, 11, 4, 2, 1.1, 0.6, 0.3, 0.6, 1.1, 2, 4, 11, 33],
        13: [43, 13, 6, 3, 1.3, 0.7, 0.4, 0.4, 0.7, 1.3, 3, 6, 13, 43],
        14: [58, 15, 7, 4, 1.9, 1, 0.5, 0.2, 0.5, 1, 1.9, 4, 7, 15, 58],
        15: [88, 18, 11, 5, 3, 1.3, 0.5, 0.3, 0.3, 0.5, 1.3, 3, 5, 11, 18, 88],
        16: [110, 41, 10, 5, 3, 1.5, 1, 0.5, 0.3, 0.5, 1, 1.5, 3, 5, 10, 41, 110],
    },
    'high': {
        8: [29, 4, 1.5, 0.3, 0.2, 0.3, 1.5, 4, 29],
        9: [43, 7, 2, 0.6, 0.2, 0.2, 0.6, 2, 7, 43],
        10: [76, 10, 3, 0.9, 0.3, 0.2, 0.3, 0.9, 3, 10, 76],
        11: [120, 14, 5.2, 1.4, 0.4, 0.2, 0.2, 0.4, 1.4, 5.2, 14, 120],
        12: [170, 24, 8.1, 2, 0.7, 0.2, 0.2, 0.2, 0.7, 2, 8.1, 24, 170],
        13: [260, 37, 11, 4, 1, 0.2, 0.2, 0.2, 0.2, 1, 4, 11, 37, 260],
        14: [420, 56, 18, 5, 1.9, 0.3, 0.2, 0.2, 0.2, 0.3, 1.9, 5, 18, 56, 420],
        15: [620, 83, 27, 8, 3, 0.5, 0.2, 0.2, 0.2, 0.2, 0.5, 3, 8, 27, 83, 620],
        16: [1000, 130, 26, 9, 4, 2, 0.2, 0.2, 0.2, 0.2, 0.2, 2, 4, 9, 26, 130, 1000],
    },
}


# --- Functions ---
def get_options():
    """Risk levels and row counts offered to the frontend, with their multiplier tables."""
    return {risk: {rows: list(buckets) for rows, buckets in tables.items()}
            for risk, tables in PAYOUT_MULTIPLIERS.items()}

def validate_plinko_params(risk, rows):
    if risk not in PAYOUT_MULTIPLIERS:
        raise ValidationException(
            f"Invalid risk level '{risk}'. Valid levels are: {list(RISK_LEVELS)}",
            details={'risk': risk}
        )
    if isinstance(rows, bool) or not isinstance(rows, int) or not (MIN_ROWS <= rows <= MAX_ROWS):
        raise ValidationException(
            f"Rows must be an integer between {MIN_ROWS} and {MAX_ROWS}.",
            details={'rows': rows}
        )

def bucket_index(path):
    """Landing bucket for a path of -1/+1 bounces: the number of right bounces."""
    return (sum(path) + len(path)) // 2

def multiplier_for(risk, rows, bucket):
    return Decimal(str(PAYOUT_MULTIPLIERS[risk][rows][bucket]))

def calculate_winnings(stake_amount, multiplier) -> Decimal:
    """Total returned: stake times the bucket multiplier, rounded down to cents."""
    return (Decimal(str(stake_amount)) * Decimal(str(multiplier))).quantize(Decimal("0.01"), rounding=ROUND_DOWN)

def play(server_seed, client_seed, nonce, risk, rows, stake_amount):
    validate_plinko_params(risk, rows)
    path = fairness.plinko_path(server_seed, client_seed, nonce, rows)
    bucket = bucket_index(path)
    multiplier = multiplier_for(risk, rows, bucket)
    return {
        'path': path,
        'bucket': bucket,
        'multiplier': multiplier,
        'payout': calculate_winnings(stake_amount, multiplier),
    }
