from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required, current_user
from http import HTTPStatus

from casino_rounds.exceptions import AuthenticationException, ValidationException
from casino_rounds.schemas import FairnessVerifySchema, ClientSeedSchema
from casino_rounds.services.instant_game_service import seed_info
from casino_rounds.services.procedures import call_procedure
from casino_rounds.utils import crash_helper, fairness, keno_helper, plinko_helper
from casino_rounds.utils.auth import current_user_id
from casino_rounds.utils.request_helpers import load_json_body

fairness_bp = Blueprint('fairness', __name__, url_prefix='/api/fairness')


def _derive(game, server_seed, client_seed, nonce, rows=None):
    if game == 'roulette':
        return fairness.roulette_winning_number(server_seed, client_seed, nonce)
    if game == 'crash':
        return fairness.crash_point(server_seed, client_seed, nonce, house_edge=current_app.config['HOUSE_EDGE'],
                                    cap=crash_helper.crash_cap(current_app.config['CRASH_MAX_FLIGHT_SECONDS']))
    if game == 'plinko':
        if rows is None:
            raise ValidationException("rows is required to verify a plinko drop.", details={'rows': ['Missing data.']})
        path = fairness.plinko_path(server_seed, client_seed, nonce, rows)
        return {'path': path, 'bucket': plinko_helper.bucket_index(path)}
    return fairness.keno_draw(server_seed, client_seed, nonce,
                              pool_size=keno_helper.BOARD_SIZE, draw_count=keno_helper.DRAW_COUNT)

def _matches(game, derived, claimed):
    if claimed is None:
        return None
    if game == 'crash':
        return str(derived) == str(claimed)
    if game == 'plinko':
        claimed_path = claimed.get('path') if isinstance(claimed, dict) else claimed
        return claimed_path == derived['path']
    if game == 'keno':
        return sorted(claimed) == sorted(derived) if isinstance(claimed, list) else False
    return str(derived) == str(claimed)


@fairness_bp.route('/verify', methods=['POST'])
def verify():
    """Recomputes an outcome from revealed seed material. Anyone may call this."""
    data = load_json_body(FairnessVerifySchema())
    game = data['game']
    derived = _derive(game, data['server_seed'], data['client_seed'], data['nonce'], data.get('rows'))
    if game == 'crash':
        derived = str(derived)
    return jsonify({
        'status': True,
        'game': game,
        'server_seed_hash': fairness.hash_server_seed(data['server_seed']),
        'outcome': derived,
        'matches': _matches(game, derived, data.get('outcome')),
    }), HTTPStatus.OK

@fairness_bp.route('/seed', methods=['GET'])
@jwt_required()
def get_seed():
    profile = current_user
    if profile is None:
        raise AuthenticationException("Profile not found for this token.")
    return jsonify({'status': True, **seed_info(profile)}), HTTPStatus.OK

@fairness_bp.route('/rotate', methods=['POST'])
@jwt_required()
def rotate():
    result = call_procedure('rotate_seed', {}, user_id=current_user_id())
    return jsonify({'status': True, 'status_message': 'Seed pair rotated.', **result}), HTTPStatus.OK

@fairness_bp.route('/client-seed', methods=['PUT'])
@jwt_required()
def update_client_seed():
    data = load_json_body(ClientSeedSchema())
    result = call_procedure('set_client_seed', {'client_seed': data['client_seed']}, user_id=current_user_id())
    return jsonify({'status': True, 'status_message': 'Client seed updated.', **result}), HTTPStatus.OK
