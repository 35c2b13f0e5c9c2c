"""
Single-player games settled in one server-side pass.

Outcomes come from the user's provably-fair seed pair: a hidden server seed
(published only as its SHA-256 commitment until rotated), the user's client
seed and a nonce that increments per game. Stake and payout both go through
apply_adjustment with keys derived from the game row id, so a replayed
request can never pay twice.
"""

import logging
import secrets
from decimal import Decimal

from sqlalchemy import select

from casino_rounds.exceptions import BetRejected, NotFoundException, ValidationException
from casino_rounds.models import db, Profile, GameBet, BlackjackGame
from casino_rounds.schemas import GameBetSchema, BlackjackGameSchema
from casino_rounds.services.procedures import procedure, apply_adjustment, to_money, balance_of
from casino_rounds.utils import blackjack_helper, fairness, keno_helper, plinko_helper
from casino_rounds.utils.audit_logger import AuditLogger

logger = logging.getLogger(__name__)


def _stake(bet_amount) -> Decimal:
    amount = to_money(bet_amount)
    if amount <= 0:
        raise BetRejected("Bet amount must be positive.", details={'bet_amount': str(amount)})
    return amount

def _locked_profile(user_id) -> Profile:
    profile = db.session.scalar(select(Profile).where(Profile.id == user_id).with_for_update())
    if profile is None:
        raise NotFoundException(f"Profile {user_id} not found", details={'user_id': user_id})
    return profile


# --- Seed pair ---

def ensure_seed_pair(profile: Profile):
    if not profile.server_seed:
        profile.server_seed = fairness.generate_server_seed()
        profile.nonce = 0
    if not profile.client_seed:
        profile.client_seed = secrets.token_hex(8)

def seed_info(profile: Profile) -> dict:
    """What the player may see of the active pair: never the server seed itself."""
    return {
        'server_seed_hash': fairness.hash_server_seed(profile.server_seed) if profile.server_seed else None,
        'client_seed': profile.client_seed,
        'nonce': profile.nonce,
    }

def _next_seed_material(profile: Profile):
    """Seeds for one game; consumes the current nonce."""
    ensure_seed_pair(profile)
    nonce = profile.nonce
    profile.nonce = nonce + 1
    return profile.server_seed, profile.client_seed, nonce

def _rotate(profile: Profile, client_seed=None) -> dict:
    previous = {
        'server_seed': profile.server_seed,
        'server_seed_hash': fairness.hash_server_seed(profile.server_seed) if profile.server_seed else None,
        'client_seed': profile.client_seed,
        'nonce': profile.nonce,
    }
    profile.server_seed = fairness.generate_server_seed()
    profile.nonce = 0
    if client_seed is not None:
        profile.client_seed = client_seed
    ensure_seed_pair(profile)
    return {'success': True, 'previous': previous, 'current': seed_info(profile)}

@procedure('rotate_seed')
def rotate_seed(user_id):
    """Reveals the active server seed and commits to a fresh one."""
    profile = _locked_profile(user_id)
    result = _rotate(profile)
    logger.info(f"Rotated seed pair for user {user_id}")
    return result

@procedure('set_client_seed')
def set_client_seed(user_id, client_seed):
    # Changing the client seed starts a new pair so earlier games stay verifiable
    if not isinstance(client_seed, str) or not client_seed.strip():
        raise ValidationException("client_seed must be a non-empty string.")
    profile = _locked_profile(user_id)
    return _rotate(profile, client_seed=client_seed.strip())


# --- Plinko / Keno ---

def _record_game(user_id, game_name, amount, server_seed, client_seed, nonce) -> GameBet:
    game_bet = GameBet(
        user_id=user_id,
        game_name=game_name,
        bet_amount=amount,
        payout=Decimal("0.00"),
        multiplier=Decimal("0"),
        server_seed_hash=fairness.hash_server_seed(server_seed),
        client_seed=client_seed,
        nonce=nonce,
    )
    db.session.add(game_bet)
    db.session.flush()
    apply_adjustment(user_id, -amount, f"{game_name}:{game_bet.id}:wager", 'wager', wagered_delta=amount)
    return game_bet

def _settle_game(game_bet, multiplier, payout, details):
    game_bet.multiplier = multiplier
    game_bet.payout = payout
    game_bet.details = details
    if payout > 0:
        apply_adjustment(game_bet.user_id, payout, f"{game_bet.game_name}:{game_bet.id}", 'payout')
    AuditLogger.log_game_event('game_settled', game_bet.user_id, game_bet.game_name,
                               bet_amount=game_bet.bet_amount, payout=payout,
                               details={'game_bet_id': game_bet.id, 'multiplier': str(multiplier)})

@procedure('play_plinko')
def play_plinko(user_id, bet_amount, risk, rows):
    amount = _stake(bet_amount)
    plinko_helper.validate_plinko_params(risk, rows)

    profile = _locked_profile(user_id)
    server_seed, client_seed, nonce = _next_seed_material(profile)
    game_bet = _record_game(user_id, 'plinko', amount, server_seed, client_seed, nonce)

    result = plinko_helper.play(server_seed, client_seed, nonce, risk, rows, amount)
    _settle_game(game_bet, result['multiplier'], result['payout'], {
        'risk': risk, 'rows': rows, 'path': result['path'], 'bucket': result['bucket'],
    })

    return {
        'success': True,
        'game_bet': GameBetSchema().dump(game_bet),
        'path': result['path'],
        'bucket': result['bucket'],
        'multiplier': str(result['multiplier']),
        'payout': str(result['payout']),
        'balance': str(balance_of(user_id)),
    }

@procedure('play_keno')
def play_keno(user_id, bet_amount, picks, risk='classic'):
    amount = _stake(bet_amount)
    keno_helper.validate_picks(picks, risk)

    profile = _locked_profile(user_id)
    server_seed, client_seed, nonce = _next_seed_material(profile)
    game_bet = _record_game(user_id, 'keno', amount, server_seed, client_seed, nonce)

    result = keno_helper.play(server_seed, client_seed, nonce, picks, risk, amount)
    _settle_game(game_bet, result['multiplier'], result['payout'], {
        'risk': risk, 'picks': result['picks'], 'drawn': result['drawn'], 'hits': result['hits'],
    })

    return {
        'success': True,
        'game_bet': GameBetSchema().dump(game_bet),
        'drawn': result['drawn'],
        'hits': result['hits'],
        'multiplier': str(result['multiplier']),
        'payout': str(result['payout']),
        'balance': str(balance_of(user_id)),
    }


# --- Blackjack ---

def _blackjack_response(game, user_id):
    return {
        'success': True,
        'game': BlackjackGameSchema().dump(game),
        'hand': blackjack_helper.public_view(game.state),
        'balance': str(balance_of(user_id)),
    }

def _finish_blackjack(game):
    state = game.state
    payout = blackjack_helper.payout_for(state['result'], state['total_bet'])
    total_bet = Decimal(state['total_bet'])
    game.status = blackjack_helper.FINISHED
    game.result = state['result']
    game.payout = payout
    game.total_bet = total_bet

    game_bet = GameBet(
        user_id=game.user_id,
        game_name='blackjack',
        bet_amount=total_bet,
        payout=payout,
        multiplier=(payout / total_bet).quantize(Decimal("0.0001")),
        server_seed_hash=game.server_seed_hash,
        client_seed=game.client_seed,
        nonce=game.nonce,
        details={
            'blackjack_game_id': game.id,
            'result': state['result'],
            'player_hand': state['player_hand'],
            'dealer_hand': state['dealer_hand'],
        },
    )
    db.session.add(game_bet)
    if payout > 0:
        apply_adjustment(game.user_id, payout, f"blackjack:{game.id}", 'payout')
    AuditLogger.log_game_event('game_settled', game.user_id, 'blackjack', bet_amount=total_bet,
                               payout=payout, details={'blackjack_game_id': game.id, 'result': state['result']})

@procedure('start_blackjack')
def start_blackjack(user_id, bet_amount):
    amount = _stake(bet_amount)
    active = db.session.scalar(
        select(BlackjackGame).where(BlackjackGame.user_id == user_id,
                                    BlackjackGame.status != blackjack_helper.FINISHED)
    )
    if active is not None:
        raise BetRejected("Finish your current hand first.", details={'game_id': active.id})

    profile = _locked_profile(user_id)
    server_seed, client_seed, nonce = _next_seed_material(profile)
    shoe = fairness.shuffled_shoe(server_seed, client_seed, nonce, blackjack_helper.create_shoe())

    state = blackjack_helper.deal_initial(shoe, amount)
    game = BlackjackGame(
        user_id=user_id,
        status=state['state'],
        state=state,
        bet_amount=amount,
        total_bet=amount,
        server_seed_hash=fairness.hash_server_seed(server_seed),
        client_seed=client_seed,
        nonce=nonce,
    )
    db.session.add(game)
    db.session.flush()
    apply_adjustment(user_id, -amount, f"blackjack:{game.id}:wager", 'wager', wagered_delta=amount)

    if state['state'] == blackjack_helper.FINISHED:
        _finish_blackjack(game)
    return _blackjack_response(game, user_id)

@procedure('blackjack_action')
def blackjack_action(user_id, game_id, action):
    game = db.session.scalar(select(BlackjackGame).where(BlackjackGame.id == game_id).with_for_update())
    if game is None or game.user_id != user_id:
        raise NotFoundException("Blackjack game not found.", details={'game_id': game_id})
    if game.status != blackjack_helper.PLAYER_TURN:
        raise BetRejected("This hand is already over.", details={'game_id': game_id, 'status': game.status})

    state = blackjack_helper.apply_action(game.state, action, balance=balance_of(user_id))
    if action == 'double':
        stake = Decimal(state['bet_amount'])
        apply_adjustment(user_id, -stake, f"blackjack:{game.id}:double", 'wager', wagered_delta=stake)
        game.total_bet = Decimal(state['total_bet'])

    game.state = state
    game.status = state['state']
    if state['state'] == blackjack_helper.FINISHED:
        _finish_blackjack(game)
    return _blackjack_response(game, user_id)
