from flask import Flask, request, jsonify, current_app, g
import uuid
import click
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_cors import CORS
from flask_socketio import SocketIO
from flask_jwt_extended import JWTManager
from flask_jwt_extended.exceptions import NoAuthorizationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException as WerkzeugHTTPException
from casino_rounds.exceptions import AppException
from casino_rounds.error_codes import ErrorCodes
from decimal import Decimal
from http import HTTPStatus
import logging
from pythonjsonlogger import jsonlogger
from marshmallow import ValidationError


# Custom Logging Filter for Request ID
class RequestIdFilter(logging.Filter):
    def filter(self, record):
        try:
            record.request_id = g.get('request_id', 'N/A')
        except RuntimeError:
            # Tick thread and feed subscribers log outside any request
            record.request_id = 'N/A'
        return True


from casino_rounds.models import db, Profile
from casino_rounds.config import Config
from casino_rounds.utils.auth import register_jwt_handlers
from casino_rounds.services.change_feed import ChangeFeed
from casino_rounds.services.procedures import call_procedure, procedure_names
from casino_rounds.services import instant_game_service  # noqa: F401 registers the instant game procedures
from casino_rounds.services.round_ticker import round_ticker, TICK_PROCEDURES, run_tick
from casino_rounds.services.websocket_manager import websocket_manager

# --- Blueprint Imports ---
from casino_rounds.routes.roulette import roulette_bp
from casino_rounds.routes.crash import crash_bp
from casino_rounds.routes.fairness import fairness_bp
from casino_rounds.routes.instant import instant_bp
from casino_rounds.routes.internal import internal_bp


def _configure_logging(app):
    if not app.debug:
        # app.logger is casino_rounds.app; it shares the package handler with the service modules
        package_logger = logging.getLogger('casino_rounds')
        handler = logging.StreamHandler()
        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(request_id)s %(module)s %(funcName)s %(lineno)d %(message)s'
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        package_logger.handlers = [handler]
        package_logger.setLevel(logging.INFO)

        logger = app.logger
        if logger.hasHandlers():
            logger.handlers.clear()
        logger.setLevel(logging.INFO)
    else:
        if not app.logger.handlers:
            logging.basicConfig(level=logging.DEBUG)


def _register_error_handlers(app):
    def error_response(error_code, status_message, details, status_code, action_button=None):
        return jsonify({
            'request_id': g.get('request_id', 'N/A'),
            'status': False,
            'error_code': error_code,
            'status_message': status_message,
            'details': details,
            'action_button': action_button
        }), status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        request_id = g.get('request_id', 'N/A')
        current_app.logger.warning(
            f"Request ID: {request_id} - Validation error: {e.messages} - Error Code: {ErrorCodes.VALIDATION_ERROR}"
        )
        return error_response(ErrorCodes.VALIDATION_ERROR, 'Input validation failed.',
                              {'errors': e.messages}, HTTPStatus.UNPROCESSABLE_ENTITY)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        request_id = g.get('request_id', 'N/A')
        current_app.logger.error(
            f"Request ID: {request_id} - Database error. Error Code: {ErrorCodes.INTERNAL_SERVER_ERROR}",
            exc_info=True
        )
        return error_response(ErrorCodes.INTERNAL_SERVER_ERROR, 'A database error occurred. Please try again later.',
                              {}, HTTPStatus.INTERNAL_SERVER_ERROR)

    @app.errorhandler(NoAuthorizationError)
    def handle_no_auth_error(e):
        request_id = g.get('request_id', 'N/A')
        current_app.logger.warning(
            f"Request ID: {request_id} - JWT NoAuthorizationError: {str(e)} - Error Code: {ErrorCodes.UNAUTHENTICATED}"
        )
        return error_response(ErrorCodes.UNAUTHENTICATED, 'Missing or invalid authorization token.',
                              {'original_error': str(e)}, HTTPStatus.UNAUTHORIZED)

    @app.errorhandler(WerkzeugHTTPException)
    def handle_werkzeug_http_exception(e):
        request_id = g.get('request_id', 'N/A')
        error_code = ErrorCodes.GENERIC_ERROR
        if e.code == 404:
            error_code = ErrorCodes.NOT_FOUND
        elif e.code == 405:
            error_code = ErrorCodes.METHOD_NOT_ALLOWED
        elif e.code == 401:
            error_code = ErrorCodes.UNAUTHENTICATED
        elif e.code == 403:
            error_code = ErrorCodes.FORBIDDEN
        elif e.code >= 500:
            error_code = ErrorCodes.INTERNAL_SERVER_ERROR

        current_app.logger.warning(
            f"Request ID: {request_id} - Werkzeug HTTPException: {e.code} - {e.name}: {e.description} - Error Code: {error_code}"
        )
        response = e.get_response()
        response.data = jsonify({
            'request_id': request_id,
            'status': False,
            'error_code': error_code,
            'status_message': e.name,
            'details': {'description': e.description},
            'action_button': None
        }).data
        response.content_type = "application/json"
        return response

    # --- Global Error Handler ---
    @app.errorhandler(Exception)
    def handle_global_exception(e):
        request_id = g.get('request_id', 'N/A')
        if isinstance(e, AppException):
            current_app.logger.error(
                f"Request ID: {request_id} - AppException: {e.error_code} - {e.status_message} - Details: {e.details}",
                exc_info=True if e.status_code >= 500 else False
            )
            return error_response(e.error_code, e.status_message, e.details, e.status_code,
                                  e.action_button or None)

        if isinstance(e, WerkzeugHTTPException):
            return handle_werkzeug_http_exception(e)

        current_app.logger.critical(
            f"Request ID: {request_id} - Unhandled Critical Exception. Error Code: {ErrorCodes.INTERNAL_SERVER_ERROR}",
            exc_info=True
        )
        return error_response(ErrorCodes.INTERNAL_SERVER_ERROR,
                              'An unexpected internal server error occurred. Please try again later.',
                              {}, HTTPStatus.INTERNAL_SERVER_ERROR)

    @app.errorhandler(404)
    def handle_flask_not_found(e):
        request_id = g.get('request_id', 'N/A')
        current_app.logger.warning(
            f"Request ID: {request_id} - HTTP 404 Not Found: {request.url} - Error Code: {ErrorCodes.NOT_FOUND}"
        )
        return error_response(ErrorCodes.NOT_FOUND, 'The requested resource was not found.',
                              {'path': request.path}, HTTPStatus.NOT_FOUND)


def _register_cli(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Creates all tables."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command('create-profile')
    @click.option('-u', '--username', required=True, help='Profile username')
    @click.option('-b', '--balance', default='1000.00', help='Opening balance (credited once per username)')
    def create_profile_command(username, balance):
        """Creates a player profile and credits its opening balance."""
        existing = db.session.scalar(select(Profile).where(Profile.username == username))
        if existing:
            click.echo(f"Error: Profile '{username}' already exists (id {existing.id}).")
            return
        profile = Profile(username=username, balance=Decimal("0.00"))
        db.session.add(profile)
        db.session.commit()
        result = call_procedure('adjust_balance', {
            'user_id': profile.id,
            'amount': balance,
            'idempotency_key': f"opening-balance:{username}",
            'reason': 'opening_balance',
        }, internal=True)
        click.echo(f"Created profile '{username}' (id {profile.id}) with balance {result['balance']}.")

    @app.cli.command('tick')
    @click.argument('game', type=click.Choice(sorted(TICK_PROCEDURES)))
    def tick_command(game):
        """Advances one game's round by one step."""
        result = run_tick(game)
        click.echo(f"{game} round {result['round_id']}: {result['round_status']} (transition: {result['transition']})")

    @app.cli.command('procedures')
    def list_procedures_command():
        """Lists the registered procedures."""
        for name in procedure_names(internal=False):
            click.echo(name)
        for name in procedure_names(internal=True):
            click.echo(f"{name} (internal)")


def create_app(config_class=Config):
    """Application factory. Returns (app, socketio)."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    # --- CORS Setup ---
    allowed_origins = []
    if app.debug:
        allowed_origins.extend([
            "http://localhost:8080",
            "http://127.0.0.1:8080",
        ])
    allowed_origins.extend(app.config.get('CORS_ORIGINS_LIST') or [])

    if allowed_origins:
        CORS(app,
             origins=allowed_origins,
             supports_credentials=True,
             methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
             allow_headers=['Content-Type', 'Authorization'],
             expose_headers=['X-RateLimit-Limit', 'X-RateLimit-Remaining'],
             max_age=86400)
        app.logger.info(f"CORS configured for origins: {allowed_origins}")
    else:
        app.logger.warning("No CORS origins configured - API will reject cross-origin requests")

    _configure_logging(app)

    @app.before_request
    def assign_request_id():
        g.request_id = str(uuid.uuid4())

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-Request-ID'] = g.get('request_id', 'N/A')
        return response

    # --- Rate Limiter Setup ---
    if app.config.get("TESTING"):
        app.config['RATELIMIT_ENABLED'] = False
        app.config['RATELIMIT_DEFAULT_LIMITS_ENABLED'] = False
    else:
        app.config.setdefault('RATELIMIT_ENABLED', True)
        app.config.setdefault('RATELIMIT_DEFAULT_LIMITS_ENABLED', True)
        # State endpoints are polled every second by each open game view
        app.config.setdefault('RATELIMIT_DEFAULT_LIMITS', "600 per minute")

    limiter = Limiter(key_func=get_remote_address)
    limiter.init_app(app)

    # --- Database Setup ---
    db.init_app(app)
    change_feed = ChangeFeed(app, db)
    with app.app_context():
        db.create_all()

    # --- WebSocket Setup ---
    socketio = SocketIO(app,
                        cors_allowed_origins=allowed_origins or None,
                        async_mode='threading',
                        logger=app.logger,
                        engineio_logger=app.logger)
    websocket_manager.socketio = socketio
    websocket_manager.init_app(app, change_feed)

    # --- Round ticker ---
    round_ticker.init_app(app)
    if not app.config.get('TESTING', False) and app.config.get('TICKER_ENABLED', True):
        round_ticker.start()

    app.socketio = socketio
    app.round_ticker = round_ticker

    # --- JWT Setup ---
    jwt = JWTManager(app)
    register_jwt_handlers(jwt)

    _register_error_handlers(app)
    _register_cli(app)

    # Register Blueprints
    app.register_blueprint(roulette_bp)
    app.register_blueprint(crash_bp)
    app.register_blueprint(fairness_bp)
    app.register_blueprint(instant_bp)
    app.register_blueprint(internal_bp)

    return app, socketio


if __name__ == '__main__':
    app, socketio = create_app()
    socketio.run(app, host='0.0.0.0', port=5000, debug=app.config.get('DEBUG', False))
