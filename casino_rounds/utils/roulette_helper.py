from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

# European Roulette: numbers 0-36
ROULETTE_NUMBERS = list(range(37)) # 0 to 36

# Physical pocket order around the wheel, starting at zero
WHEEL_ORDER = [0, 32, 15, 19, 4, 21, 2, 25, 17, 34, 6, 27, 13, 36, 11, 30, 8, 23, 10, 5,
               24, 16, 33, 1, 20, 14, 31, 9, 22, 18, 29, 7, 28, 12, 35, 3, 26]

RED_NUMBERS = {1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36}
BLACK_NUMBERS = {2, 4, 6, 8, 10, 11, 13, 15, 17, 20, 22, 24, 26, 28, 29, 31, 33, 35}
GREEN_NUMBER = {0}


class BetKind(Enum):
    STRAIGHT = "straight"
    RED = "red"
    BLACK = "black"
    EVEN = "even"
    ODD = "odd"
    LOW = "low"        # 1-18
    HIGH = "high"      # 19-36
    DOZEN = "dozen"
    COLUMN = "column"


# Payout multipliers (winnings per unit staked, stake returned on top)
PAYOUTS = {
    BetKind.STRAIGHT: 35,
    BetKind.DOZEN: 2,
    BetKind.COLUMN: 2,
    BetKind.RED: 1,
    BetKind.BLACK: 1,
    BetKind.EVEN: 1,
    BetKind.ODD: 1,
    BetKind.LOW: 1,
    BetKind.HIGH: 1,
}

# Table labels that are not "number_<n>"
_OUTSIDE_LABELS = {
    'red': (BetKind.RED, None),
    'black': (BetKind.BLACK, None),
    'even': (BetKind.EVEN, None),
    'odd': (BetKind.ODD, None),
    '1-18': (BetKind.LOW, None),
    '19-36': (BetKind.HIGH, None),
    '1st12': (BetKind.DOZEN, 1),
    '2nd12': (BetKind.DOZEN, 2),
    '3rd12': (BetKind.DOZEN, 3),
    'col1': (BetKind.COLUMN, 1),
    'col2': (BetKind.COLUMN, 2),
    'col3': (BetKind.COLUMN, 3),
}


class InvalidBetTypeError(ValueError):
    pass


@dataclass(frozen=True)
class RouletteBetType:
    kind: BetKind
    value: Optional[int] = None

    @property
    def label(self) -> str:
        if self.kind is BetKind.STRAIGHT:
            return f"number_{self.value}"
        for label, (kind, value) in _OUTSIDE_LABELS.items():
            if kind is self.kind and value == self.value:
                return label
        raise InvalidBetTypeError(f"No table label for {self.kind} {self.value}")


def parse_bet_type(bet_type: str) -> RouletteBetType:
    """Parses a betting-table label such as 'number_17', 'red' or 'col2'."""
    if not isinstance(bet_type, str):
        raise InvalidBetTypeError(f"Bet type must be a string, got {type(bet_type).__name__}")
    label = bet_type.strip()
    if label.startswith('number_'):
        raw = label[len('number_'):]
        if not raw.isdigit() or int(raw) not in ROULETTE_NUMBERS:
            raise InvalidBetTypeError(f"Invalid straight-up number in '{bet_type}'")
        return RouletteBetType(BetKind.STRAIGHT, int(raw))
    try:
        kind, value = _OUTSIDE_LABELS[label]
    except KeyError:
        raise InvalidBetTypeError(f"Unknown bet type '{bet_type}'")
    return RouletteBetType(kind, value)

def number_color(number: int) -> str:
    if number in GREEN_NUMBER:
        return 'green'
    if number in RED_NUMBERS:
        return 'red'
    return 'black'


# One predicate per bet kind; checked for completeness below
_WIN_RULES = {
    BetKind.STRAIGHT: lambda value, n: n == value,
    BetKind.RED: lambda value, n: n in RED_NUMBERS,
    BetKind.BLACK: lambda value, n: n in BLACK_NUMBERS,
    BetKind.EVEN: lambda value, n: n != 0 and n % 2 == 0, # 0 is not even for payout purposes
    BetKind.ODD: lambda value, n: n % 2 == 1,
    BetKind.LOW: lambda value, n: 1 <= n <= 18,
    BetKind.HIGH: lambda value, n: 19 <= n <= 36,
    BetKind.DOZEN: lambda value, n: n != 0 and (n - 1) // 12 + 1 == value,
    # Column 1: 1, 4, ..., 34 / Column 2: 2, 5, ..., 35 / Column 3: 3, 6, ..., 36
    BetKind.COLUMN: lambda value, n: n != 0 and (n - 1) % 3 + 1 == value,
}


def bet_wins(bet_type: RouletteBetType, winning_number: int) -> bool:
    if winning_number not in ROULETTE_NUMBERS:
        raise ValueError("Invalid winning number")
    return _WIN_RULES[bet_type.kind](bet_type.value, winning_number)

def get_bet_type_multiplier(bet_type: RouletteBetType, winning_number: int) -> int:
    """Winnings multiplier for the bet (35 for a straight-up hit), 0 when the bet loses."""
    return PAYOUTS[bet_type.kind] if bet_wins(bet_type, winning_number) else 0

def calculate_payout(bet_amount, bet_type, winning_number: int) -> Decimal:
    """Total returned to the player including the stake; 0 for a losing bet."""
    if isinstance(bet_type, str):
        bet_type = parse_bet_type(bet_type)
    multiplier = get_bet_type_multiplier(bet_type, int(winning_number))
    amount = Decimal(str(bet_amount))
    payout = amount * (multiplier + 1) if multiplier > 0 else Decimal("0")
    return payout.quantize(Decimal("0.01"))
