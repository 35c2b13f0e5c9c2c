from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus

from casino_rounds.schemas import RouletteBetRequestSchema, RoundActionSchema, SettleBetSchema
from casino_rounds.services.procedures import call_procedure, round_state
from casino_rounds.utils.auth import current_user_id
from casino_rounds.utils.decorators import game_enabled_required
from casino_rounds.utils.request_helpers import load_json_body

roulette_bp = Blueprint('roulette', __name__, url_prefix='/api/roulette')


@roulette_bp.route('/state', methods=['GET'])
@game_enabled_required('roulette')
def roulette_state():
    state = round_state('roulette', current_app.config['HISTORY_SIZE'])
    return jsonify({'status': True, **state}), HTTPStatus.OK

@roulette_bp.route('/bet', methods=['POST'])
@jwt_required()
@game_enabled_required('roulette')
def roulette_place_bet():
    data = load_json_body(RouletteBetRequestSchema())
    user_id = current_user_id()
    result = call_procedure('place_roulette_bet', {
        'round_id': data['round_id'],
        'bet_amount': str(data['bet_amount']),
        'bet_type': data['bet_type'],
    }, user_id=user_id)
    current_app.logger.info(f"User {user_id} placed roulette bet {result['bet']['id']} on round {data['round_id']}")
    return jsonify({'status': True, 'status_message': 'Bet placed successfully.', **result}), HTTPStatus.CREATED

@roulette_bp.route('/undo', methods=['POST'])
@jwt_required()
@game_enabled_required('roulette')
def roulette_undo_bet():
    data = load_json_body(RoundActionSchema())
    result = call_procedure('undo_last_roulette_bet', {'round_id': data['round_id']}, user_id=current_user_id())
    return jsonify({'status': True, 'status_message': 'Last bet removed.', **result}), HTTPStatus.OK

@roulette_bp.route('/clear', methods=['POST'])
@jwt_required()
@game_enabled_required('roulette')
def roulette_clear_bets():
    data = load_json_body(RoundActionSchema())
    result = call_procedure('clear_roulette_bets', {'round_id': data['round_id']}, user_id=current_user_id())
    return jsonify({'status': True, 'status_message': 'Bets cleared.', **result}), HTTPStatus.OK

@roulette_bp.route('/bets/<int:bet_id>/settle', methods=['POST'])
@jwt_required()
@game_enabled_required('roulette')
def roulette_settle_bet(bet_id):
    data = load_json_body(SettleBetSchema(), required=False)
    expected = data.get('expected_payout')
    result = call_procedure('settle_round_bet', {
        'game': 'roulette',
        'bet_id': bet_id,
        'expected_payout': str(expected) if expected is not None else None,
    }, user_id=current_user_id())
    return jsonify({'status': True, **result}), HTTPStatus.OK
