import hmac
from functools import wraps

from flask import request, jsonify, current_app


def service_token_required(f):
    """
    Protects routes meant for the external scheduler.
    Expects the token in the 'X-Service-Token' header.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = request.headers.get('X-Service-Token')
        if not token:
            current_app.logger.warning("Service token missing for protected route.")
            return jsonify({'status': False, 'status_message': 'Service token required.'}), 401

        expected_token = current_app.config.get('SERVICE_API_TOKEN')
        if not expected_token:
            current_app.logger.error("SERVICE_API_TOKEN is not configured in the application.")
            return jsonify({'status': False, 'status_message': 'Internal server error: Service token not configured.'}), 500

        if hmac.compare_digest(token, expected_token):
            return f(*args, **kwargs)
        current_app.logger.warning("Invalid service token received.")
        return jsonify({'status': False, 'status_message': 'Invalid service token.'}), 403
    return decorated_function

def game_enabled_required(game):
    """Returns 404 for games switched off in ENABLED_GAMES."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if game not in current_app.config.get('ENABLED_GAMES', ()):
                return jsonify({'status': False, 'status_message': 'This game is not currently available.'}), 404
            return f(*args, **kwargs)
        return decorated_function
    return decorator
