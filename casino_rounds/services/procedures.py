"""
Server-side procedures, invoked by name.

Each call runs in one transaction: it commits on success and rolls back on
any error, then hands the committed changes to the change feed. Procedures
marked internal (tick, raw balance adjustment) are refused to user callers.

All balance movements go through apply_adjustment(), which is keyed by an
idempotency key: a repeated key returns the original row and moves no money.
"""

import inspect
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from casino_rounds.error_codes import ErrorCodes
from casino_rounds.exceptions import (
    AppException, AuthenticationException, AuthorizationException, BetRejected,
    NotFoundException, ProcedureError, ValidationException
)
from casino_rounds.models import (
    db, Profile, RouletteRound, RouletteBet, CrashRound, CrashBet, BalanceAdjustment
)
from casino_rounds.schemas import (
    RouletteBetSchema, CrashBetSchema, RouletteRoundSchema, CrashRoundSchema, BalanceAdjustmentSchema
)
from casino_rounds.utils import crash_helper, fairness
from casino_rounds.utils.audit_logger import AuditLogger
from casino_rounds.utils.roulette_helper import calculate_payout, parse_bet_type, InvalidBetTypeError
from casino_rounds.utils.round_state import parse_timestamp

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")

_PROCEDURES = {}


def procedure(name, internal=False):
    """Registers f under name. User procedures receive the caller as user_id."""
    def decorator(f):
        _PROCEDURES[name] = (f, internal)
        return f
    return decorator

def procedure_names(internal=None):
    return sorted(name for name, (_, is_internal) in _PROCEDURES.items()
                  if internal is None or is_internal == internal)

def call_procedure(name, args=None, user_id=None, internal=False):
    """
    Runs a registered procedure in its own transaction.

    user_id identifies the caller of a user procedure and cannot be supplied
    through args. internal=True is reserved for the scheduler and service code.
    """
    entry = _PROCEDURES.get(name)
    if entry is None:
        raise NotFoundException(f"Unknown procedure '{name}'", details={'procedure': name})
    func, is_internal = entry
    args = dict(args or {})

    if is_internal and not internal:
        raise AuthorizationException(f"Procedure '{name}' is not available to users.")
    if not is_internal:
        if 'user_id' in args:
            raise ValidationException("user_id is taken from the authenticated caller.", details={'procedure': name})
        if user_id is None:
            raise AuthenticationException(f"Procedure '{name}' requires an authenticated user.")
        args['user_id'] = user_id

    try:
        inspect.signature(func).bind(**args)
    except TypeError as e:
        raise ValidationException(f"Invalid arguments for '{name}': {e}", details={'procedure': name})

    try:
        result = func(**args)
        db.session.commit()
    except AppException:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Procedure '{name}' failed: {e}", exc_info=True)
        raise ProcedureError(f"Procedure '{name}' failed.", details={'procedure': name})

    feed = current_app.extensions.get('change_feed')
    if feed is not None:
        feed.dispatch()
    return result


# --- Money helpers ---

def to_money(value, field='bet_amount') -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationException(f"{field} must be a number.", details={field: str(value)})
    if not amount.is_finite():
        raise ValidationException(f"{field} must be a finite number.", details={field: str(value)})
    return amount.quantize(_CENTS)

def balance_of(user_id):
    return db.session.scalar(select(Profile.balance).where(Profile.id == user_id))

def apply_adjustment(user_id, amount, idempotency_key, reason, wagered_delta=Decimal("0")):
    """
    Moves amount (signed) on the user's balance once per idempotency key.

    Debits use a conditional UPDATE so concurrent wagers cannot overdraw.
    Returns (adjustment, applied); applied is False for a repeated key.
    """
    amount = to_money(amount, 'amount')
    existing = db.session.scalar(
        select(BalanceAdjustment).where(BalanceAdjustment.idempotency_key == idempotency_key)
    )
    if existing is not None:
        if existing.user_id != user_id or Decimal(existing.amount) != amount:
            logger.warning(
                f"Idempotency key {idempotency_key} reused with different parameters "
                f"(user {user_id}, amount {amount}); original adjustment kept"
            )
        return existing, False

    statement = update(Profile).where(Profile.id == user_id)
    if amount < 0:
        statement = statement.where(Profile.balance >= -amount)
    statement = statement.values(
        balance=Profile.balance + amount,
        wagered=Profile.wagered + wagered_delta,
    ).execution_options(synchronize_session=False)
    result = db.session.execute(statement)

    if result.rowcount == 0:
        balance = balance_of(user_id)
        if balance is None:
            raise NotFoundException(f"Profile {user_id} not found", details={'user_id': user_id})
        raise BetRejected(
            "Insufficient balance.",
            error_code=ErrorCodes.INSUFFICIENT_FUNDS,
            details={'balance': str(balance), 'required': str(-amount)}
        )

    balance_after = balance_of(user_id)
    adjustment = BalanceAdjustment(
        user_id=user_id,
        amount=amount,
        idempotency_key=idempotency_key,
        reason=reason,
        balance_after=balance_after,
    )
    db.session.add(adjustment)
    db.session.flush()

    profile = db.session.get(Profile, user_id)
    if profile is not None:
        db.session.refresh(profile)

    AuditLogger.log_financial_event(
        reason, user_id, amount=amount,
        balance_before=Decimal(balance_after) - amount, balance_after=balance_after,
        idempotency_key=idempotency_key
    )
    return adjustment, True

def _credit_key(game, round_id, bet_id):
    return f"{game}:{round_id}:{bet_id}"

def _utcnow():
    return datetime.now(timezone.utc)

def _now(now=None):
    return parse_timestamp(now) or _utcnow()

def _elapsed(since, now):
    started = parse_timestamp(since)
    if started is None:
        return 0.0
    return (now - started).total_seconds()

def _game_config(key):
    return current_app.config[key]

def _max_flight():
    return float(_game_config('CRASH_MAX_FLIGHT_SECONDS'))


@procedure('adjust_balance', internal=True)
def adjust_balance(user_id, amount, idempotency_key, reason='adjustment'):
    if not idempotency_key:
        raise ValidationException("idempotency_key is required.")
    adjustment, applied = apply_adjustment(user_id, amount, idempotency_key, reason)
    return {
        'success': True,
        'applied': applied,
        'adjustment': BalanceAdjustmentSchema().dump(adjustment),
        'balance': str(balance_of(user_id)),
    }


# --- Roulette ---

def _locked_round(model, round_id):
    game_round = db.session.scalar(select(model).where(model.id == round_id).with_for_update())
    if game_round is None:
        raise BetRejected("Round not found.", details={'round_id': round_id})
    return game_round

def _require_status(game_round, status, message):
    if game_round.status != status:
        raise BetRejected(
            message,
            error_code=ErrorCodes.BETTING_CLOSED,
            details={'round_id': game_round.id, 'status': game_round.status}
        )

def _positive_stake(bet_amount):
    amount = to_money(bet_amount)
    if amount <= 0:
        raise BetRejected("Bet amount must be positive.", details={'bet_amount': str(amount)})
    return amount

@procedure('place_roulette_bet')
def place_roulette_bet(user_id, round_id, bet_amount, bet_type):
    amount = _positive_stake(bet_amount)
    try:
        parsed = parse_bet_type(bet_type)
    except InvalidBetTypeError as e:
        raise BetRejected(str(e), error_code=ErrorCodes.INVALID_BET_TYPE, details={'bet_type': bet_type})

    game_round = _locked_round(RouletteRound, round_id)
    _require_status(game_round, 'betting', "Betting is closed for this round.")

    bet = RouletteBet(round_id=game_round.id, user_id=user_id, bet_amount=amount, bet_type=parsed.label)
    db.session.add(bet)
    db.session.flush()

    apply_adjustment(user_id, -amount, f"roulette:{game_round.id}:{bet.id}:wager", 'wager', wagered_delta=amount)
    AuditLogger.log_game_event('bet_placed', user_id, 'roulette', round_id=game_round.id,
                               bet_amount=amount, details={'bet_id': bet.id, 'bet_type': bet.bet_type})
    return {'success': True, 'bet': RouletteBetSchema().dump(bet), 'balance': str(balance_of(user_id))}

def _refund_roulette_bet(bet):
    amount = Decimal(bet.bet_amount)
    apply_adjustment(bet.user_id, amount, f"roulette:{bet.round_id}:{bet.id}:refund", 'refund',
                     wagered_delta=-amount)
    db.session.delete(bet)
    return amount

@procedure('undo_last_roulette_bet')
def undo_last_roulette_bet(user_id, round_id):
    game_round = _locked_round(RouletteRound, round_id)
    _require_status(game_round, 'betting', "Bets can only be undone while betting is open.")

    bet = db.session.scalar(
        select(RouletteBet)
        .where(RouletteBet.round_id == game_round.id, RouletteBet.user_id == user_id)
        .order_by(RouletteBet.id.desc())
        .limit(1)
    )
    if bet is None:
        raise BetRejected("No bet to undo.", details={'round_id': game_round.id})

    bet_id = bet.id
    refunded = _refund_roulette_bet(bet)
    return {'success': True, 'removed_bet_ids': [bet_id], 'refunded': str(refunded),
            'balance': str(balance_of(user_id))}

@procedure('clear_roulette_bets')
def clear_roulette_bets(user_id, round_id):
    game_round = _locked_round(RouletteRound, round_id)
    _require_status(game_round, 'betting', "Bets can only be cleared while betting is open.")

    bets = db.session.scalars(
        select(RouletteBet)
        .where(RouletteBet.round_id == game_round.id, RouletteBet.user_id == user_id)
        .order_by(RouletteBet.id)
    ).all()
    removed = [bet.id for bet in bets]
    refunded = sum((_refund_roulette_bet(bet) for bet in bets), Decimal("0.00"))
    return {'success': True, 'removed_bet_ids': removed, 'refunded': str(refunded),
            'balance': str(balance_of(user_id))}

def _settle_roulette_bet(game_round, bet):
    """Writes the settlement fields once and credits the payout."""
    if bet.settled_at is not None:
        return Decimal(bet.payout)
    payout = calculate_payout(bet.bet_amount, bet.bet_type, game_round.winning_number)
    bet.payout = payout
    bet.profit = payout - Decimal(bet.bet_amount)
    bet.settled_at = _utcnow()
    if payout > 0:
        apply_adjustment(bet.user_id, payout, _credit_key('roulette', game_round.id, bet.id), 'payout')
    AuditLogger.log_game_event('bet_settled', bet.user_id, 'roulette', round_id=game_round.id,
                               bet_amount=bet.bet_amount, payout=payout, details={'bet_id': bet.id})
    return payout

def _new_roulette_round(previous, now):
    server_seed = fairness.generate_server_seed()
    game_round = RouletteRound(
        status='betting',
        server_seed=server_seed,
        server_seed_hash=fairness.hash_server_seed(server_seed),
        client_seed=_game_config('ROULETTE_CLIENT_SEED'),
        nonce=(previous.nonce + 1) if previous is not None else 1,
        created_at=now,
    )
    db.session.add(game_round)
    db.session.flush()
    return game_round

@procedure('roulette_game_tick', internal=True)
def roulette_game_tick(now=None):
    """Advances the current roulette round at most one step forward."""
    now = _now(now)
    current = db.session.scalar(select(RouletteRound).order_by(RouletteRound.id.desc()).limit(1).with_for_update())
    transition = None

    if current is None:
        current = _new_roulette_round(None, now)
        transition = 'created'
    elif current.status == 'betting':
        if _elapsed(current.created_at, now) >= _game_config('ROULETTE_BETTING_SECONDS'):
            current.winning_number = fairness.roulette_winning_number(
                current.server_seed, current.client_seed, current.nonce)
            current.status = 'spinning'
            current.spun_at = now
            transition = 'spinning'
    elif current.status == 'spinning':
        if _elapsed(current.spun_at, now) >= _game_config('ROULETTE_SPINNING_SECONDS'):
            current.status = 'ended'
            current.ended_at = now
            for bet in current.bets.order_by(RouletteBet.id):
                _settle_roulette_bet(current, bet)
            transition = 'ended'
    elif current.status == 'ended':
        if _elapsed(current.ended_at, now) >= _game_config('ROULETTE_ENDED_SECONDS'):
            current = _new_roulette_round(current, now)
            transition = 'created'

    if transition:
        logger.info(f"Roulette round {current.id} -> {current.status}")
    return {'success': True, 'game': 'roulette', 'round_id': current.id,
            'round_status': current.status, 'transition': transition}


# --- Crash ---

@procedure('place_crash_bet')
def place_crash_bet(user_id, round_id, bet_amount, auto_cashout_at=None):
    amount = _positive_stake(bet_amount)
    target = None
    if auto_cashout_at is not None:
        target = to_money(auto_cashout_at, 'auto_cashout_at')
        if target < crash_helper.MIN_AUTO_CASHOUT:
            raise BetRejected(f"Auto cashout must be at least {crash_helper.MIN_AUTO_CASHOUT}x.",
                              details={'auto_cashout_at': str(target)})

    game_round = _locked_round(CrashRound, round_id)
    _require_status(game_round, 'waiting', "Betting is closed for this round.")

    bet = CrashBet(round_id=game_round.id, user_id=user_id, bet_amount=amount,
                   auto_cashout_at=target, status='placed')
    db.session.add(bet)
    db.session.flush()

    apply_adjustment(user_id, -amount, f"crash:{game_round.id}:{bet.id}:wager", 'wager', wagered_delta=amount)
    AuditLogger.log_game_event('bet_placed', user_id, 'crash', round_id=game_round.id,
                               bet_amount=amount, details={'bet_id': bet.id, 'auto_cashout_at': str(target)})
    return {'success': True, 'bet': CrashBetSchema().dump(bet), 'balance': str(balance_of(user_id))}

@procedure('cashout_crash_bet')
def cashout_crash_bet(user_id, bet_id):
    bet = db.session.scalar(select(CrashBet).where(CrashBet.id == bet_id).with_for_update())
    if bet is None or bet.user_id != user_id:
        raise BetRejected("Bet not found.", details={'bet_id': bet_id})
    if bet.status != 'placed':
        raise BetRejected("Bet is already settled.", details={'bet_id': bet_id, 'status': bet.status})

    game_round = _locked_round(CrashRound, bet.round_id)
    _require_status(game_round, 'running', "Cashout is only possible while the round is running.")

    multiplier = crash_helper.multiplier_at(_elapsed(game_round.started_at, _utcnow()), _max_flight())
    crash_point = Decimal(game_round.crash_point)
    if multiplier >= crash_point:
        raise BetRejected("Round already crashed.", error_code=ErrorCodes.BETTING_CLOSED,
                          details={'bet_id': bet_id})

    payout = crash_helper.crash_bet_payout(bet.bet_amount, crash_point, cashout_multiplier=multiplier)
    bet.cashout_multiplier = multiplier
    bet.payout = payout
    bet.profit = payout - Decimal(bet.bet_amount)
    bet.status = 'cashed_out'
    bet.settled_at = _utcnow()
    apply_adjustment(user_id, payout, _credit_key('crash', game_round.id, bet.id), 'payout')
    AuditLogger.log_game_event('cashout', user_id, 'crash', round_id=game_round.id,
                               bet_amount=bet.bet_amount, payout=payout,
                               details={'bet_id': bet.id, 'multiplier': str(multiplier)})
    return {'success': True, 'bet': CrashBetSchema().dump(bet), 'balance': str(balance_of(user_id))}

def _settle_crash_bet(game_round, bet, crash_point=None):
    if bet.settled_at is not None:
        return Decimal(bet.payout)
    if crash_point is None:
        crash_point = Decimal(game_round.crash_point)
    payout = crash_helper.crash_bet_payout(bet.bet_amount, crash_point, auto_cashout_at=bet.auto_cashout_at)
    bet.payout = payout
    bet.profit = payout - Decimal(bet.bet_amount)
    bet.settled_at = _utcnow()
    if payout > 0:
        bet.cashout_multiplier = bet.auto_cashout_at
        bet.status = 'cashed_out'
        apply_adjustment(bet.user_id, payout, _credit_key('crash', game_round.id, bet.id), 'payout')
    else:
        bet.status = 'busted'
    AuditLogger.log_game_event('bet_settled', bet.user_id, 'crash', round_id=game_round.id,
                               bet_amount=bet.bet_amount, payout=payout, details={'bet_id': bet.id})
    return payout

def _new_crash_round(previous, now):
    server_seed = fairness.generate_server_seed()
    game_round = CrashRound(
        status='waiting',
        server_seed=server_seed,
        public_seed=fairness.hash_server_seed(server_seed),
        client_seed=_game_config('CRASH_CLIENT_SEED'),
        nonce=(previous.nonce + 1) if previous is not None else 1,
        created_at=now,
    )
    db.session.add(game_round)
    db.session.flush()
    return game_round

@procedure('crash_game_tick', internal=True)
def crash_game_tick(now=None):
    """Advances the current crash round at most one step forward."""
    now = _now(now)
    current = db.session.scalar(select(CrashRound).order_by(CrashRound.id.desc()).limit(1).with_for_update())
    transition = None

    if current is None:
        current = _new_crash_round(None, now)
        transition = 'created'
    elif current.status == 'waiting':
        if _elapsed(current.created_at, now) >= _game_config('CRASH_WAITING_SECONDS'):
            current.crash_point = fairness.crash_point(
                current.server_seed, current.client_seed, current.nonce,
                house_edge=_game_config('HOUSE_EDGE'), cap=crash_helper.crash_cap(_max_flight()))
            current.status = 'running'
            current.started_at = now
            transition = 'running'
    elif current.status == 'running':
        flight = crash_helper.flight_duration(current.crash_point, _max_flight())
        if _elapsed(current.started_at, now) >= flight:
            current.status = 'crashed'
            current.ended_at = now
            # a forced crash ends the flight below an unreached crash point
            reached = crash_helper.current_multiplier(flight, current.crash_point, _max_flight())
            for bet in current.bets.order_by(CrashBet.id):
                _settle_crash_bet(current, bet, reached)
            transition = 'crashed'
    elif current.status == 'crashed':
        if _elapsed(current.ended_at, now) >= _game_config('CRASH_ENDED_SECONDS'):
            current = _new_crash_round(current, now)
            transition = 'created'

    if transition:
        logger.info(f"Crash round {current.id} -> {current.status}")
    return {'success': True, 'game': 'crash', 'round_id': current.id,
            'round_status': current.status, 'transition': transition}


# --- Settlement ---

_SETTLEMENT = {
    'roulette': (RouletteRound, RouletteBet, 'ended', _settle_roulette_bet, RouletteBetSchema),
    'crash': (CrashRound, CrashBet, 'crashed', _settle_crash_bet, CrashBetSchema),
}

@procedure('settle_round_bet')
def settle_round_bet(user_id, game, bet_id, expected_payout=None):
    """
    Settles one of the caller's bets in a finished round.

    Settlement fields are written once; a bet the tick already settled is
    returned as-is. The backend payout is authoritative: a differing
    expected_payout is logged as a conflict and reported back.
    """
    if game not in _SETTLEMENT:
        raise BetRejected(f"'{game}' has no round settlement.", details={'game': game})
    round_model, bet_model, terminal_status, settle, schema = _SETTLEMENT[game]

    bet = db.session.scalar(select(bet_model).where(bet_model.id == bet_id).with_for_update())
    if bet is None or bet.user_id != user_id:
        raise BetRejected("Bet not found.", details={'bet_id': bet_id})
    game_round = _locked_round(round_model, bet.round_id)
    if game_round.status != terminal_status:
        raise BetRejected("Round is not finished yet.", error_code=ErrorCodes.BETTING_CLOSED,
                          details={'round_id': game_round.id, 'status': game_round.status})

    already_settled = bet.settled_at is not None
    payout = settle(game_round, bet)

    conflict = False
    if expected_payout is not None and to_money(expected_payout, 'expected_payout') != Decimal(payout):
        conflict = True
        AuditLogger.log_settlement_conflict(game, game_round.id, bet.id, user_id,
                                            predicted=expected_payout, confirmed=payout)

    return {
        'success': True,
        'already_settled': already_settled,
        'conflict': conflict,
        'payout': str(Decimal(payout).quantize(_CENTS)),
        'bet': schema().dump(bet),
        'balance': str(balance_of(user_id)),
    }


# --- Read helpers shared by routes and the SQL backend ---

ROUND_MODELS = {'roulette': RouletteRound, 'crash': CrashRound}
BET_MODELS = {'roulette': RouletteBet, 'crash': CrashBet}
ROUND_SCHEMAS = {'roulette': RouletteRoundSchema, 'crash': CrashRoundSchema}
BET_SCHEMAS = {'roulette': RouletteBetSchema, 'crash': CrashBetSchema}
TERMINAL_STATUS = {'roulette': 'ended', 'crash': 'crashed'}

def latest_round(game):
    model = ROUND_MODELS[game]
    return db.session.scalar(select(model).order_by(model.id.desc()).limit(1))

def round_bets(game, round_id):
    model = BET_MODELS[game]
    return db.session.scalars(select(model).where(model.round_id == round_id).order_by(model.id)).all()

def round_history(game, limit):
    model = ROUND_MODELS[game]
    return db.session.scalars(
        select(model).where(model.status == TERMINAL_STATUS[game]).order_by(model.id.desc()).limit(limit)
    ).all()

def round_state(game, history_size, now=None):
    """Current round, its bets and the trailing history, as the state endpoints return them."""
    now = _now(now)
    game_round = latest_round(game)
    state = {
        'round': ROUND_SCHEMAS[game]().dump(game_round) if game_round else None,
        'bets': BET_SCHEMAS[game](many=True).dump(round_bets(game, game_round.id)) if game_round else [],
        'history': ROUND_SCHEMAS[game](many=True).dump(round_history(game, history_size)),
        'server_time': now.isoformat(),
    }
    if game == 'crash' and game_round is not None and game_round.status == 'running':
        elapsed = _elapsed(game_round.started_at, now)
        state['current_multiplier'] = str(
            crash_helper.current_multiplier(elapsed, game_round.crash_point, _max_flight()))
    return state
