from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus

from casino_rounds.schemas import CrashBetRequestSchema, CrashCashoutSchema, SettleBetSchema
from casino_rounds.services.procedures import call_procedure, round_state
from casino_rounds.utils.auth import current_user_id
from casino_rounds.utils.decorators import game_enabled_required
from casino_rounds.utils.request_helpers import load_json_body

crash_bp = Blueprint('crash', __name__, url_prefix='/api/crash')


@crash_bp.route('/state', methods=['GET'])
@game_enabled_required('crash')
def crash_state():
    state = round_state('crash', current_app.config['HISTORY_SIZE'])
    return jsonify({'status': True, **state}), HTTPStatus.OK

@crash_bp.route('/bet', methods=['POST'])
@jwt_required()
@game_enabled_required('crash')
def crash_place_bet():
    data = load_json_body(CrashBetRequestSchema())
    user_id = current_user_id()
    auto_cashout_at = data.get('auto_cashout_at')
    result = call_procedure('place_crash_bet', {
        'round_id': data['round_id'],
        'bet_amount': str(data['bet_amount']),
        'auto_cashout_at': str(auto_cashout_at) if auto_cashout_at is not None else None,
    }, user_id=user_id)
    current_app.logger.info(f"User {user_id} placed crash bet {result['bet']['id']} on round {data['round_id']}")
    return jsonify({'status': True, 'status_message': 'Bet placed successfully.', **result}), HTTPStatus.CREATED

@crash_bp.route('/cashout', methods=['POST'])
@jwt_required()
@game_enabled_required('crash')
def crash_cashout():
    data = load_json_body(CrashCashoutSchema())
    result = call_procedure('cashout_crash_bet', {'bet_id': data['bet_id']}, user_id=current_user_id())
    return jsonify({'status': True, 'status_message': 'Successfully cashed out.', **result}), HTTPStatus.OK

@crash_bp.route('/bets/<int:bet_id>/settle', methods=['POST'])
@jwt_required()
@game_enabled_required('crash')
def crash_settle_bet(bet_id):
    data = load_json_body(SettleBetSchema(), required=False)
    expected = data.get('expected_payout')
    result = call_procedure('settle_round_bet', {
        'game': 'crash',
        'bet_id': bet_id,
        'expected_payout': str(expected) if expected is not None else None,
    }, user_id=current_user_id())
    return jsonify({'status': True, **result}), HTTPStatus.OK
