from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus

from casino_rounds.schemas import (
    PlinkoPlaySchema, KenoPlaySchema, BlackjackStartSchema, BlackjackActionSchema
)
from casino_rounds.services.procedures import call_procedure
from casino_rounds.utils import keno_helper, plinko_helper
from casino_rounds.utils.auth import current_user_id
from casino_rounds.utils.decorators import game_enabled_required
from casino_rounds.utils.request_helpers import load_json_body

instant_bp = Blueprint('instant', __name__, url_prefix='/api')


# --- Plinko ---
@instant_bp.route('/plinko/options', methods=['GET'])
@game_enabled_required('plinko')
def plinko_options():
    return jsonify({
        'status': True,
        'risk_levels': list(plinko_helper.RISK_LEVELS),
        'rows': {'min': plinko_helper.MIN_ROWS, 'max': plinko_helper.MAX_ROWS},
        'multipliers': plinko_helper.get_options(),
    }), HTTPStatus.OK

@instant_bp.route('/plinko/play', methods=['POST'])
@jwt_required()
@game_enabled_required('plinko')
def plinko_play():
    data = load_json_body(PlinkoPlaySchema())
    user_id = current_user_id()
    result = call_procedure('play_plinko', {
        'bet_amount': str(data['bet_amount']),
        'risk': data['risk'],
        'rows': data['rows'],
    }, user_id=user_id)
    current_app.logger.info(f"User {user_id} plinko drop: bucket {result['bucket']}, payout {result['payout']}")
    return jsonify({'status': True, **result}), HTTPStatus.OK


# --- Keno ---
@instant_bp.route('/keno/options', methods=['GET'])
@game_enabled_required('keno')
def keno_options():
    return jsonify({
        'status': True,
        'board_size': keno_helper.BOARD_SIZE,
        'draw_count': keno_helper.DRAW_COUNT,
        'max_picks': keno_helper.MAX_PICKS,
        'payout_tables': keno_helper.PAYOUT_TABLES,
    }), HTTPStatus.OK

@instant_bp.route('/keno/play', methods=['POST'])
@jwt_required()
@game_enabled_required('keno')
def keno_play():
    data = load_json_body(KenoPlaySchema())
    result = call_procedure('play_keno', {
        'bet_amount': str(data['bet_amount']),
        'picks': data['picks'],
        'risk': data['risk'],
    }, user_id=current_user_id())
    return jsonify({'status': True, **result}), HTTPStatus.OK


# --- Blackjack ---
@instant_bp.route('/blackjack/start', methods=['POST'])
@jwt_required()
@game_enabled_required('blackjack')
def blackjack_start():
    data = load_json_body(BlackjackStartSchema())
    result = call_procedure('start_blackjack', {'bet_amount': str(data['bet_amount'])}, user_id=current_user_id())
    return jsonify({'status': True, **result}), HTTPStatus.CREATED

@instant_bp.route('/blackjack/<int:game_id>/action', methods=['POST'])
@jwt_required()
@game_enabled_required('blackjack')
def blackjack_action(game_id):
    data = load_json_body(BlackjackActionSchema())
    result = call_procedure('blackjack_action', {'game_id': game_id, 'action': data['action']},
                            user_id=current_user_id())
    return jsonify({'status': True, **result}), HTTPStatus.OK
