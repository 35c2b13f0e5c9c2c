from flask import Blueprint, request, jsonify, current_app
from http import HTTPStatus

from casino_rounds.exceptions import NotFoundException, ValidationException
from casino_rounds.services.procedures import call_procedure
from casino_rounds.services.round_ticker import TICK_PROCEDURES, run_tick
from casino_rounds.utils.decorators import service_token_required

internal_bp = Blueprint('internal', __name__, url_prefix='/api/internal')


@internal_bp.route('/tick/<game>', methods=['POST'])
@service_token_required
def tick(game):
    """
    Advances one game's current round by at most one step.
    Called by the external scheduler on a fixed interval.
    """
    if game not in TICK_PROCEDURES or game not in current_app.config.get('ENABLED_GAMES', ()):
        raise NotFoundException(f"No round tick for '{game}'", details={'game': game})
    result = run_tick(game)
    if result['transition']:
        current_app.logger.info(f"Tick moved {game} round {result['round_id']} to {result['round_status']}")
    return jsonify({'status': True, **result}), HTTPStatus.OK

@internal_bp.route('/adjust_balance', methods=['POST'])
@service_token_required
def adjust_balance():
    """
    Applies a signed balance adjustment exactly once per idempotency key.
    Expects JSON: { "user_id": <int>, "amount": <str|number>, "idempotency_key": <str>, "reason": <str_optional> }
    """
    data = request.get_json(silent=True)
    if not data:
        raise ValidationException("Invalid JSON payload.")

    user_id = data.get('user_id')
    idempotency_key = data.get('idempotency_key')
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationException("user_id must be an integer.", details={'user_id': user_id})
    if not isinstance(idempotency_key, str) or not idempotency_key:
        raise ValidationException("idempotency_key must be a non-empty string.")

    result = call_procedure('adjust_balance', {
        'user_id': user_id,
        'amount': data.get('amount'),
        'idempotency_key': idempotency_key,
        'reason': data.get('reason') or 'adjustment',
    }, internal=True)
    return jsonify({'status': True, **result}), HTTPStatus.OK
