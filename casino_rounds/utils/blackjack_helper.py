from decimal import Decimal
from enum import Enum

from casino_rounds.exceptions import GameLogicException

# --- Card Constants ---
SUITS = ['H', 'D', 'C', 'S']  # Hearts, Diamonds, Clubs, Spades
RANKS = ['2', '3', '4', '5', '6', '7', '8', '9', 'T', 'J', 'Q', 'K', 'A'] # T for Ten
DEFAULT_DECKS = 6
DEALER_STANDS_ON = 17

# Game states
PLAYER_TURN = 'player_turn'
DEALER_TURN = 'dealer_turn'
FINISHED = 'finished'

HOLE_CARD = 'FACE_DOWN'


class BlackjackResult(Enum):
    WIN = 'win'
    LOSE = 'lose'
    PUSH = 'push'
    BLACKJACK = 'blackjack'
    BUST = 'bust'


# Total returned per unit of the (possibly doubled) stake
RESULT_MULTIPLIERS = {
    BlackjackResult.WIN: Decimal("2"),
    BlackjackResult.LOSE: Decimal("0"),
    BlackjackResult.PUSH: Decimal("1"),
    BlackjackResult.BLACKJACK: Decimal("2.5"),
    BlackjackResult.BUST: Decimal("0"),
}


# --- Core Helper Functions ---

def create_shoe(num_decks=DEFAULT_DECKS):
    """Creates an unshuffled list of cards, e.g. ["H2", "SA", ...]."""
    return [suit + rank for _ in range(num_decks) for suit in SUITS for rank in RANKS]

def _deal_card(shoe):
    if not shoe:
        raise GameLogicException("Shoe is empty. Cannot deal card.", status_code=500)
    return shoe.pop()

def get_card_value(card_str):
    """Blackjack value of a card string: 11 for Ace, 10 for T/J/Q/K."""
    rank = card_str[1]
    if rank == 'A':
        return 11
    elif rank in ['K', 'Q', 'J', 'T']:
        return 10
    else:
        return int(rank)

def calculate_hand_value(cards_list):
    """
    Returns a tuple (total_value, is_soft), where is_soft is True while an Ace
    is still counted as 11.
    """
    total = 0
    num_aces = 0
    for card_str in cards_list:
        value = get_card_value(card_str)
        if value == 11:
            num_aces += 1
        total += value

    while total > 21 and num_aces > 0:
        total -= 10  # Change an Ace from 11 to 1
        num_aces -= 1

    return total, (num_aces > 0) and (total <= 21)

def is_natural(cards_list):
    return len(cards_list) == 2 and calculate_hand_value(cards_list)[0] == 21


# --- Game Flow ---

def deal_initial(shoe, bet_amount):
    """Deals player, dealer, player, dealer from the end of the shoe."""
    shoe = list(shoe)
    player, dealer = [], []
    player.append(_deal_card(shoe))
    dealer.append(_deal_card(shoe))
    player.append(_deal_card(shoe))
    dealer.append(_deal_card(shoe))

    state = {
        'shoe': shoe,
        'player_hand': player,
        'dealer_hand': dealer,
        'bet_amount': str(Decimal(str(bet_amount))),
        'total_bet': str(Decimal(str(bet_amount))),
        'doubled': False,
        'state': PLAYER_TURN,
        'result': None,
    }
    # A two-card 21 ends the hand before the dealer plays
    if calculate_hand_value(player)[0] == 21:
        return _finish(state)
    return state

def apply_action(state, action, balance=None):
    """
    Applies 'hit', 'stand' or 'double' to a player_turn state and returns the
    new state. Doubling needs exactly two cards and balance covering the stake.
    """
    if state['state'] != PLAYER_TURN:
        raise GameLogicException("It is not the player's turn.", details={'state': state['state']})

    state = dict(state, shoe=list(state['shoe']), player_hand=list(state['player_hand']),
                 dealer_hand=list(state['dealer_hand']))

    if action == 'hit':
        state['player_hand'].append(_deal_card(state['shoe']))
        if calculate_hand_value(state['player_hand'])[0] > 21:
            return _finish(state)
        return state

    if action == 'stand':
        state['state'] = DEALER_TURN
        return play_dealer(state)

    if action == 'double':
        stake = Decimal(state['bet_amount'])
        if len(state['player_hand']) != 2:
            raise GameLogicException("Double is only allowed on the first two cards.")
        if balance is not None and Decimal(str(balance)) < stake:
            raise GameLogicException("Insufficient balance to double.", details={'required': str(stake)})
        state['doubled'] = True
        state['total_bet'] = str(stake * 2)
        state['player_hand'].append(_deal_card(state['shoe']))
        if calculate_hand_value(state['player_hand'])[0] > 21:
            return _finish(state)
        state['state'] = DEALER_TURN
        return play_dealer(state)

    raise GameLogicException(f"Unknown blackjack action '{action}'", details={'action': action})

def play_dealer(state):
    """Dealer draws while below 17 (stands on soft 17), then the hand is finished."""
    if state['state'] != DEALER_TURN:
        raise GameLogicException("Dealer can only play during the dealer turn.")
    while calculate_hand_value(state['dealer_hand'])[0] < DEALER_STANDS_ON:
        state['dealer_hand'].append(_deal_card(state['shoe']))
    return _finish(state)

def _finish(state):
    result = determine_result(state['player_hand'], state['dealer_hand'])
    state['state'] = FINISHED
    state['result'] = result.value
    return state

def determine_result(player_hand, dealer_hand) -> BlackjackResult:
    player_total, _ = calculate_hand_value(player_hand)
    dealer_total, _ = calculate_hand_value(dealer_hand)

    if player_total > 21:
        return BlackjackResult.BUST
    if is_natural(player_hand):
        return BlackjackResult.BLACKJACK
    if dealer_total > 21 or player_total > dealer_total:
        return BlackjackResult.WIN
    if player_total < dealer_total:
        return BlackjackResult.LOSE
    return BlackjackResult.PUSH

def payout_for(result, total_bet) -> Decimal:
    if isinstance(result, str):
        result = BlackjackResult(result)
    return (Decimal(str(total_bet)) * RESULT_MULTIPLIERS[result]).quantize(Decimal("0.01"))

def public_view(state):
    """State as shown to the player: the dealer hole card stays hidden until the hand is over."""
    dealer = state['dealer_hand']
    finished = state['state'] == FINISHED
    if finished:
        dealer_cards = list(dealer)
        dealer_total, dealer_soft = calculate_hand_value(dealer)
    else:
        dealer_cards = [dealer[0], HOLE_CARD]
        dealer_total, dealer_soft = calculate_hand_value([dealer[0]])

    player_total, player_soft = calculate_hand_value(state['player_hand'])
    return {
        'state': state['state'],
        'player_hand': {'cards': list(state['player_hand']), 'total': player_total, 'is_soft': player_soft},
        'dealer_hand': {'cards': dealer_cards, 'total': dealer_total, 'is_soft': dealer_soft},
        'bet_amount': state['bet_amount'],
        'total_bet': state['total_bet'],
        'doubled': state['doubled'],
        'result': state['result'],
        'can_hit': state['state'] == PLAYER_TURN,
        'can_stand': state['state'] == PLAYER_TURN,
        'can_double': state['state'] == PLAYER_TURN and len(state['player_hand']) == 2,
        'cards_remaining': len(state['shoe']),
    }
