from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from casino_rounds.error_codes import ErrorCodes
from casino_rounds.exceptions import AuthorizationException, BackendUnavailable, NotFoundException
from casino_rounds.models import db, RouletteRound
from casino_rounds.services.backend import SqlRoundBackend
from casino_rounds.tests.test_api import BaseTestCase, T0


class TestSqlRoundBackend(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.profile = self._create_profile()
        self.backend = SqlRoundBackend(self.app, user_id=self.profile.id)
        self.scheduler = SqlRoundBackend(self.app, internal=True)

    def test_latest_round_empty(self):
        self.assertIsNone(self.backend.get_latest_round('roulette'))
        self.assertEqual(self.backend.list_history('crash', 10), [])

    def test_reads_hide_unrevealed_seed(self):
        round_id = self.scheduler.call_procedure('roulette_game_tick', {'now': T0})['round_id']
        latest = self.backend.get_latest_round('roulette')
        self.assertEqual(latest['id'], round_id)
        self.assertEqual(latest['status'], 'betting')
        self.assertIsNone(latest['server_seed'])
        self.assertEqual(len(latest['server_seed_hash']), 64)

    def test_list_bets_and_history(self):
        round_id = self.scheduler.call_procedure('roulette_game_tick', {'now': T0})['round_id']
        placed = self.backend.call_procedure('place_roulette_bet', {
            'round_id': round_id, 'bet_amount': '25.00', 'bet_type': 'red'})
        self.assertEqual(placed['balance'], '975.00')

        bets = self.backend.list_bets('roulette', round_id)
        self.assertEqual([(b['id'], b['bet_amount'], b['bet_type']) for b in bets],
                         [(placed['bet']['id'], '25.00', 'red')])
        self.assertEqual(self.backend.list_history('roulette', 5), [])

        self._force_roulette_spin(round_id, 3, T0 + self._seconds('ROULETTE_BETTING_SECONDS'))
        self.scheduler.call_procedure('roulette_game_tick', {
            'now': T0 + self._seconds('ROULETTE_BETTING_SECONDS') + self._seconds('ROULETTE_SPINNING_SECONDS')})
        history = self.backend.list_history('roulette', 5)
        self.assertEqual([r['winning_number'] for r in history], [3])
        self.assertIsNotNone(history[0]['server_seed'])
        self.assertEqual(self._balance(self.profile.id), Decimal("1025.00"))

    def test_get_profile(self):
        profile = self.backend.get_profile(self.profile.id)
        self.assertEqual(profile['username'], 'testplayer')
        self.assertNotIn('balance', profile)

        with self.assertRaises(NotFoundException):
            self.backend.get_profile(9999)

    def test_player_cannot_call_internal_procedures(self):
        with self.assertRaises(AuthorizationException):
            self.backend.call_procedure('roulette_game_tick', {})
        self.assertEqual(db.session.query(RouletteRound).count(), 0)

    def test_read_failure_becomes_backend_unavailable(self):
        error = OperationalError("SELECT", {}, Exception("server closed the connection"))
        with patch('casino_rounds.services.procedures.latest_round', side_effect=error):
            with self.assertRaises(BackendUnavailable) as ctx:
                self.backend.get_latest_round('crash')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.BACKEND_UNAVAILABLE)
        self.assertEqual(ctx.exception.details, {'operation': 'latest crash round'})

    def test_subscribe_to_table(self):
        changes = []
        subscription = self.backend.subscribe_to_table('roulette_rounds', changes.append)
        self.scheduler.call_procedure('roulette_game_tick', {'now': T0})
        self.assertEqual([(c.table, c.event_type) for c in changes], [('roulette_rounds', 'insert')])

        subscription.unsubscribe()
        self._force_roulette_spin(changes[0].row['id'], 7, T0)
        self.assertEqual(len(changes), 1)

    def test_subscribe_without_feed(self):
        del self.app.extensions['change_feed']
        with self.assertRaises(BackendUnavailable):
            self.backend.subscribe_to_table('crash_rounds', lambda change: None)
