"""
Audit logging for money-moving events.

Every debit, credit, refund and settlement conflict is written as one JSON
line so it can be grepped out of the application log.
"""

import json
import logging
from datetime import datetime, timezone

from flask import current_app, g, request

_fallback_logger = logging.getLogger(__name__)


def _request_context():
    try:
        request_id = g.get('request_id', 'N/A')
        ip_address = request.remote_addr if request else None
    except RuntimeError:
        # Outside request context (tick thread, synchronizer callbacks)
        request_id = 'N/A'
        ip_address = None
    return request_id, ip_address

def _logger():
    try:
        return current_app.logger
    except RuntimeError:
        return _fallback_logger

def _money(value):
    return None if value is None else str(value)


class AuditLogger:
    """Centralized audit event logging"""

    @staticmethod
    def log_financial_event(event_type: str, user_id, amount=None,
                            balance_before=None, balance_after=None,
                            idempotency_key: str = None, details: dict = None):
        """Log balance debits and credits"""
        request_id, ip_address = _request_context()
        event_data = {
            'event_type': 'financial',
            'sub_type': event_type,
            'user_id': user_id,
            'amount': _money(amount),
            'balance_before': _money(balance_before),
            'balance_after': _money(balance_after),
            'idempotency_key': idempotency_key,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'request_id': request_id,
            'ip_address': ip_address,
            'details': details or {}
        }
        _logger().info(f"FINANCIAL_EVENT: {json.dumps(event_data, default=str)}")

    @staticmethod
    def log_game_event(event_type: str, user_id, game_type: str = None,
                       round_id=None, bet_amount=None, payout=None, details: dict = None):
        """Log bet placement and settlement"""
        request_id, ip_address = _request_context()
        event_data = {
            'event_type': 'game',
            'sub_type': event_type,
            'user_id': user_id,
            'game_type': game_type,
            'round_id': round_id,
            'bet_amount': _money(bet_amount),
            'payout': _money(payout),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'request_id': request_id,
            'ip_address': ip_address,
            'details': details or {}
        }
        _logger().info(f"GAME_EVENT: {json.dumps(event_data, default=str)}")

    @staticmethod
    def log_settlement_conflict(game_type: str, round_id, bet_id, user_id,
                                predicted=None, confirmed=None, details: dict = None):
        """Local payout prediction disagreed with the backend; the backend value stands."""
        event_data = {
            'event_type': 'settlement_conflict',
            'game_type': game_type,
            'round_id': round_id,
            'bet_id': bet_id,
            'user_id': user_id,
            'predicted': _money(predicted),
            'confirmed': _money(confirmed),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'details': details or {}
        }
        _logger().warning(f"SETTLEMENT_CONFLICT: {json.dumps(event_data, default=str)}")
