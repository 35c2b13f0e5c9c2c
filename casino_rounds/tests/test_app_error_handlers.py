import pytest
from flask import jsonify
from marshmallow import ValidationError
from sqlalchemy.exc import OperationalError

from casino_rounds.app import create_app, db
from casino_rounds.config import TestingConfig
from casino_rounds.exceptions import (
    AppException,
    ValidationException,
    NotFoundException,
    BetRejected,
    BackendUnavailable,
)
from casino_rounds.error_codes import ErrorCodes


class TestAppErrorHandlers:

    @pytest.fixture(scope="class")
    def app(self):
        app, _ = create_app(TestingConfig)

        @app.route('/test/app_exception')
        def route_app_exception():
            raise AppException(
                error_code="TEST_APP_EXC",
                status_message="This is an AppException",
                status_code=450,
                details={"info": "some app details"},
                action_button={"text": "Back to lobby", "actionType": "NAVIGATE", "actionPayload": "/"}
            )

        @app.route('/test/validation_exception')
        def route_validation_exception():
            raise ValidationException(status_message="Invalid input provided", details={"field": "wrong"})

        @app.route('/test/not_found_exception')
        def route_not_found_exception():
            raise NotFoundException(status_message="Round not found")

        @app.route('/test/betting_closed')
        def route_betting_closed():
            raise BetRejected("Betting is closed for this round.", error_code=ErrorCodes.BETTING_CLOSED)

        @app.route('/test/backend_unavailable')
        def route_backend_unavailable():
            raise BackendUnavailable(status_message="Round store unreachable")

        @app.route('/test/database_error')
        def route_database_error():
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))

        @app.route('/test/unhandled_exception')
        def route_unhandled_exception():
            raise ValueError("A generic unhandled error")

        @app.route('/test/method_not_allowed', methods=['GET'])
        def route_method_not_allowed():
            return jsonify(status=True)

        @app.route('/test/marshmallow_validation_error', methods=['POST'])
        def route_marshmallow_error():
            raise ValidationError({"bet_amount": ["Not a valid number."]})

        app_context = app.app_context()
        app_context.push()
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()
        app_context.pop()

    @pytest.fixture()
    def client(self, app):
        return app.test_client()

    def test_app_exception_handler(self, client, caplog):
        response = client.get('/test/app_exception')
        assert response.status_code == 450
        json_data = response.get_json()
        assert json_data['status'] is False
        assert json_data['error_code'] == "TEST_APP_EXC"
        assert json_data['status_message'] == "This is an AppException"
        assert json_data['details'] == {"info": "some app details"}
        assert json_data['action_button'] == {"text": "Back to lobby", "actionType": "NAVIGATE", "actionPayload": "/"}
        assert any(rec.levelname == 'ERROR' and 'TEST_APP_EXC' in rec.message and json_data['request_id'] in rec.message
                   for rec in caplog.records)

    def test_validation_exception_handler(self, client):
        response = client.get('/test/validation_exception')
        assert response.status_code == 422
        json_data = response.get_json()
        assert json_data['error_code'] == ErrorCodes.VALIDATION_ERROR
        assert json_data['details'] == {"field": "wrong"}
        # an empty action button is sent as null
        assert json_data['action_button'] is None

    def test_not_found_exception_handler(self, client):
        response = client.get('/test/not_found_exception')
        assert response.status_code == 404
        assert response.get_json()['status_message'] == "Round not found"

    def test_bet_rejected_keeps_specific_code(self, client):
        response = client.get('/test/betting_closed')
        assert response.status_code == 400
        assert response.get_json()['error_code'] == ErrorCodes.BETTING_CLOSED

    def test_backend_unavailable(self, client):
        response = client.get('/test/backend_unavailable')
        assert response.status_code == 503
        assert response.get_json()['error_code'] == ErrorCodes.BACKEND_UNAVAILABLE

    def test_database_error_handler(self, client, caplog):
        response = client.get('/test/database_error')
        assert response.status_code == 500
        json_data = response.get_json()
        assert json_data['error_code'] == ErrorCodes.INTERNAL_SERVER_ERROR
        assert json_data['status_message'] == 'A database error occurred. Please try again later.'
        # driver details stay in the log
        assert 'connection reset' not in response.get_data(as_text=True)
        assert any(rec.levelname == 'ERROR' and 'Database error' in rec.message for rec in caplog.records)

    def test_werkzeug_not_found_handler(self, client, caplog):
        response = client.get('/this_route_does_not_exist')
        assert response.status_code == 404
        json_data = response.get_json()
        assert json_data['error_code'] == ErrorCodes.NOT_FOUND
        assert json_data['status_message'] == "The requested resource was not found."
        assert json_data['details'] == {'path': '/this_route_does_not_exist'}
        assert any(rec.levelname == 'WARNING' and ErrorCodes.NOT_FOUND in rec.message for rec in caplog.records)

    def test_method_not_allowed_handler(self, client):
        response = client.post('/test/method_not_allowed')
        assert response.status_code == 405
        json_data = response.get_json()
        assert json_data['error_code'] == ErrorCodes.METHOD_NOT_ALLOWED
        assert json_data['status_message'] == "Method Not Allowed"

    def test_marshmallow_validation_error_handler(self, client):
        response = client.post('/test/marshmallow_validation_error', json={})
        assert response.status_code == 422
        json_data = response.get_json()
        assert json_data['status_message'] == "Input validation failed."
        assert json_data['details']['errors'] == {"bet_amount": ["Not a valid number."]}

    def test_unhandled_exception_handler(self, client, caplog):
        response = client.get('/test/unhandled_exception')
        assert response.status_code == 500
        json_data = response.get_json()
        assert json_data['error_code'] == ErrorCodes.INTERNAL_SERVER_ERROR
        assert json_data['status_message'] == 'An unexpected internal server error occurred. Please try again later.'
        assert any(rec.levelname == 'CRITICAL' and ErrorCodes.INTERNAL_SERVER_ERROR in rec.message
                   for rec in caplog.records)

    def test_request_id_header_matches_body(self, client):
        response = client.get('/test/not_found_exception')
        assert response.headers['X-Request-ID'] == response.get_json()['request_id']
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
