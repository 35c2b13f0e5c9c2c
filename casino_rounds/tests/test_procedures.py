from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from casino_rounds.error_codes import ErrorCodes
from casino_rounds.exceptions import (
    AuthenticationException, AuthorizationException, BetRejected, NotFoundException, ValidationException
)
from casino_rounds.models import db, BalanceAdjustment, CrashBet, CrashRound, Profile, RouletteBet, RouletteRound
from casino_rounds.services.procedures import call_procedure, procedure_names, round_state
from casino_rounds.utils import crash_helper, fairness
from casino_rounds.tests.test_api import BaseTestCase, T0


class TestProcedureRegistry(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.profile = self._create_profile()

    def test_names(self):
        self.assertIn('place_roulette_bet', procedure_names(internal=False))
        self.assertIn('roulette_game_tick', procedure_names(internal=True))
        self.assertNotIn('roulette_game_tick', procedure_names(internal=False))

    def test_unknown_procedure(self):
        with self.assertRaises(NotFoundException):
            call_procedure('drop_tables', {}, user_id=self.profile.id)

    def test_internal_procedure_refused_to_users(self):
        with self.assertRaises(AuthorizationException):
            call_procedure('roulette_game_tick', {}, user_id=self.profile.id)

    def test_user_procedure_needs_caller(self):
        with self.assertRaises(AuthenticationException):
            call_procedure('clear_roulette_bets', {'round_id': 1})

    def test_caller_cannot_be_overridden(self):
        with self.assertRaises(ValidationException):
            call_procedure('clear_roulette_bets', {'round_id': 1, 'user_id': 99}, user_id=self.profile.id)

    def test_bad_arguments(self):
        with self.assertRaises(ValidationException):
            call_procedure('clear_roulette_bets', {'round': 1}, user_id=self.profile.id)


class TestAdjustBalance(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.profile = self._create_profile(balance="100.00")

    def _adjust(self, amount, key):
        return call_procedure('adjust_balance', {
            'user_id': self.profile.id, 'amount': amount, 'idempotency_key': key, 'reason': 'deposit'
        }, internal=True)

    def test_repeated_key_moves_money_once(self):
        first = self._adjust("25.00", "deposit-1")
        second = self._adjust("25.00", "deposit-1")
        self.assertTrue(first['applied'])
        self.assertFalse(second['applied'])
        self.assertEqual(first['adjustment']['id'], second['adjustment']['id'])
        self.assertEqual(self._balance(self.profile.id), Decimal("125.00"))

    def test_overdraw_is_rejected(self):
        with self.assertRaises(BetRejected) as ctx:
            self._adjust("-100.01", "withdraw-1")
        self.assertEqual(ctx.exception.error_code, ErrorCodes.INSUFFICIENT_FUNDS)
        self.assertEqual(self._balance(self.profile.id), Decimal("100.00"))
        self.assertEqual(db.session.scalar(select(func.count(BalanceAdjustment.id))), 0)

    def test_debit_to_zero(self):
        self._adjust("-100.00", "withdraw-all")
        self.assertEqual(self._balance(self.profile.id), Decimal("0.00"))

    def test_unknown_profile(self):
        with self.assertRaises(NotFoundException):
            call_procedure('adjust_balance', {'user_id': 999, 'amount': "1.00", 'idempotency_key': 'x'},
                           internal=True)

    def test_key_required(self):
        with self.assertRaises(ValidationException):
            self._adjust("1.00", "")

    def test_non_numeric_amount(self):
        with self.assertRaises(ValidationException):
            self._adjust("lots", "deposit-2")


class TestRouletteProcedures(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.profile = self._create_profile()
        self.round_id = self._tick('roulette', T0)['round_id']

    def _place(self, bet_type, amount="10.00", round_id=None):
        return call_procedure('place_roulette_bet', {
            'round_id': round_id or self.round_id, 'bet_amount': amount, 'bet_type': bet_type
        }, user_id=self.profile.id)

    def test_tick_lifecycle(self):
        game_round = db.session.get(RouletteRound, self.round_id)
        self.assertEqual(game_round.nonce, 1)
        self.assertEqual(game_round.server_seed_hash, fairness.hash_server_seed(game_round.server_seed))

        idle = self._tick('roulette', T0 + timedelta(seconds=14))
        self.assertIsNone(idle['transition'])
        self.assertEqual(idle['round_status'], 'betting')

        spun_at = T0 + self._seconds('ROULETTE_BETTING_SECONDS')
        spinning = self._tick('roulette', spun_at)
        self.assertEqual(spinning['transition'], 'spinning')
        db.session.expire_all()
        game_round = db.session.get(RouletteRound, self.round_id)
        expected = fairness.roulette_winning_number(game_round.server_seed, game_round.client_seed, 1)
        self.assertEqual(game_round.winning_number, expected)

        # result stays on display for the spinning window
        still = self._tick('roulette', spun_at + timedelta(seconds=1))
        self.assertIsNone(still['transition'])

        ended_at = spun_at + self._seconds('ROULETTE_SPINNING_SECONDS')
        self.assertEqual(self._tick('roulette', ended_at)['transition'], 'ended')

        created = self._tick('roulette', ended_at + self._seconds('ROULETTE_ENDED_SECONDS'))
        self.assertEqual(created['transition'], 'created')
        self.assertNotEqual(created['round_id'], self.round_id)
        self.assertEqual(db.session.get(RouletteRound, created['round_id']).nonce, 2)

    def test_settlement_on_end(self):
        straight = self._place('number_17')['bet']
        red = self._place('red')['bet']
        self.assertEqual(self._balance(self.profile.id), Decimal("980.00"))

        spun_at = T0 + timedelta(seconds=15)
        self._force_roulette_spin(self.round_id, 17, spun_at)
        self._tick('roulette', spun_at + self._seconds('ROULETTE_SPINNING_SECONDS'))

        db.session.expire_all()
        straight_bet = db.session.get(RouletteBet, straight['id'])
        red_bet = db.session.get(RouletteBet, red['id'])
        self.assertEqual(straight_bet.payout, Decimal("360.00"))
        self.assertEqual(straight_bet.profit, Decimal("350.00"))
        self.assertEqual(red_bet.payout, Decimal("0.00"))
        self.assertEqual(red_bet.profit, Decimal("-10.00"))
        self.assertIsNotNone(red_bet.settled_at)
        self.assertEqual(self._balance(self.profile.id), Decimal("1340.00"))

        credits = db.session.scalars(select(BalanceAdjustment).where(BalanceAdjustment.reason == 'payout')).all()
        self.assertEqual(len(credits), 1)
        self.assertEqual(credits[0].idempotency_key, f"roulette:{self.round_id}:{straight['id']}")

        # settling again returns the stored result and moves no money
        again = call_procedure('settle_round_bet', {'game': 'roulette', 'bet_id': straight['id']},
                               user_id=self.profile.id)
        self.assertTrue(again['already_settled'])
        self.assertEqual(again['payout'], "360.00")
        self.assertFalse(again['conflict'])
        self.assertEqual(self._balance(self.profile.id), Decimal("1340.00"))

    def test_settlement_conflict_keeps_backend_value(self):
        bet = self._place('number_17')['bet']
        spun_at = T0 + timedelta(seconds=15)
        self._force_roulette_spin(self.round_id, 17, spun_at)
        game_round = db.session.get(RouletteRound, self.round_id)
        game_round.status = 'ended'
        game_round.ended_at = spun_at
        db.session.commit()

        result = call_procedure('settle_round_bet', {
            'game': 'roulette', 'bet_id': bet['id'], 'expected_payout': "0.00"
        }, user_id=self.profile.id)
        self.assertTrue(result['conflict'])
        self.assertFalse(result['already_settled'])
        self.assertEqual(result['payout'], "360.00")
        self.assertEqual(self._balance(self.profile.id), Decimal("1350.00"))

    def test_settle_before_round_ends(self):
        bet = self._place('red')['bet']
        with self.assertRaises(BetRejected) as ctx:
            call_procedure('settle_round_bet', {'game': 'roulette', 'bet_id': bet['id']}, user_id=self.profile.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.BETTING_CLOSED)

    def test_settle_unknown_game(self):
        with self.assertRaises(BetRejected):
            call_procedure('settle_round_bet', {'game': 'plinko', 'bet_id': 1}, user_id=self.profile.id)

    def test_bet_after_betting_closed(self):
        self._force_roulette_spin(self.round_id, 3, T0 + timedelta(seconds=15))
        with self.assertRaises(BetRejected) as ctx:
            self._place('red')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.BETTING_CLOSED)
        self.assertEqual(self._balance(self.profile.id), Decimal("1000.00"))

    def test_invalid_bet_type_and_amount(self):
        with self.assertRaises(BetRejected) as ctx:
            self._place('number_40')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.INVALID_BET_TYPE)
        with self.assertRaises(BetRejected):
            self._place('red', amount="0")
        with self.assertRaises(BetRejected):
            self._place('red', amount="-5")

    def test_rejected_bet_leaves_nothing_behind(self):
        with self.assertRaises(BetRejected):
            self._place('red', amount="5000.00")
        self.assertEqual(db.session.scalar(select(func.count(RouletteBet.id))), 0)
        self.assertEqual(db.session.scalar(select(func.count(BalanceAdjustment.id))), 0)

    def test_undo_and_clear_refund(self):
        self._place('red', amount="10.00")
        self._place('black', amount="20.00")
        last = self._place('number_0', amount="5.00")['bet']

        undone = call_procedure('undo_last_roulette_bet', {'round_id': self.round_id}, user_id=self.profile.id)
        self.assertEqual(undone['removed_bet_ids'], [last['id']])
        self.assertEqual(undone['refunded'], "5.00")
        self.assertEqual(self._balance(self.profile.id), Decimal("970.00"))

        cleared = call_procedure('clear_roulette_bets', {'round_id': self.round_id}, user_id=self.profile.id)
        self.assertEqual(len(cleared['removed_bet_ids']), 2)
        self.assertEqual(Decimal(cleared['refunded']), Decimal("30.00"))
        self.assertEqual(self._balance(self.profile.id), Decimal("1000.00"))
        self.assertEqual(db.session.get(Profile, self.profile.id).wagered, Decimal("0.00"))

    def test_undo_only_touches_own_bets(self):
        other = self._create_profile(username="other")
        call_procedure('place_roulette_bet', {'round_id': self.round_id, 'bet_amount': "10.00", 'bet_type': 'red'},
                       user_id=other.id)
        with self.assertRaises(BetRejected):
            call_procedure('undo_last_roulette_bet', {'round_id': self.round_id}, user_id=self.profile.id)
        self.assertEqual(self._balance(other.id), Decimal("990.00"))

    def test_round_state_hides_seed(self):
        state = round_state('roulette', 10)
        self.assertEqual(state['round']['id'], self.round_id)
        self.assertIsNone(state['round']['server_seed'])
        self.assertEqual(state['history'], [])


class TestCrashProcedures(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.profile = self._create_profile()
        self.round_id = self._tick('crash', T0)['round_id']

    def _place(self, amount="10.00", auto_cashout_at=None):
        args = {'round_id': self.round_id, 'bet_amount': amount}
        if auto_cashout_at is not None:
            args['auto_cashout_at'] = auto_cashout_at
        return call_procedure('place_crash_bet', args, user_id=self.profile.id)['bet']

    def _start_with_crash_point(self, crash_point):
        started_at = T0 + self._seconds('CRASH_WAITING_SECONDS')
        self.assertEqual(self._tick('crash', started_at)['transition'], 'running')
        game_round = db.session.get(CrashRound, self.round_id)
        game_round.crash_point = Decimal(crash_point)
        db.session.commit()
        return started_at

    def test_auto_cashouts_settle_at_crash(self):
        cashing = self._place(auto_cashout_at="1.50")
        busting = self._place(auto_cashout_at="3.00")
        self.assertEqual(self._balance(self.profile.id), Decimal("980.00"))

        started_at = self._start_with_crash_point("2.00")
        # the curve reaches 2.00x after roughly 9.3 seconds
        self.assertIsNone(self._tick('crash', started_at + timedelta(seconds=9))['transition'])
        self.assertEqual(self._tick('crash', started_at + timedelta(seconds=10))['transition'], 'crashed')

        db.session.expire_all()
        won = db.session.get(CrashBet, cashing['id'])
        lost = db.session.get(CrashBet, busting['id'])
        self.assertEqual(won.status, 'cashed_out')
        self.assertEqual(won.payout, Decimal("15.00"))
        self.assertEqual(won.cashout_multiplier, Decimal("1.50"))
        self.assertEqual(lost.status, 'busted')
        self.assertEqual(lost.payout, Decimal("0.00"))
        self.assertEqual(self._balance(self.profile.id), Decimal("995.00"))

    def test_crash_point_is_derived_from_seeds(self):
        self._tick('crash', T0 + self._seconds('CRASH_WAITING_SECONDS'))
        db.session.expire_all()
        game_round = db.session.get(CrashRound, self.round_id)
        expected = fairness.crash_point(game_round.server_seed, game_round.client_seed, game_round.nonce,
                                        house_edge=self.app.config['HOUSE_EDGE'],
                                        cap=crash_helper.crash_cap(self.app.config['CRASH_MAX_FLIGHT_SECONDS']))
        self.assertEqual(game_round.crash_point, expected)
        self.assertLessEqual(game_round.crash_point, crash_helper.multiplier_at(self.app.config['CRASH_MAX_FLIGHT_SECONDS']))

    def test_auto_cashout_below_minimum(self):
        with self.assertRaises(BetRejected):
            self._place(auto_cashout_at="1.00")

    def test_cashout_requires_running_round(self):
        bet = self._place()
        with self.assertRaises(BetRejected) as ctx:
            call_procedure('cashout_crash_bet', {'bet_id': bet['id']}, user_id=self.profile.id)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.BETTING_CLOSED)

    def test_bet_while_running_is_rejected(self):
        self._start_with_crash_point("5.00")
        with self.assertRaises(BetRejected):
            self._place()

    def test_round_state_includes_multiplier_while_running(self):
        started_at = self._start_with_crash_point("50.00")
        state = round_state('crash', 5, now=started_at + timedelta(seconds=2))
        self.assertEqual(state['round']['status'], 'running')
        self.assertEqual(state['current_multiplier'], '1.16')
        self.assertIsNone(state['round']['crash_point'])

    def test_round_state_of_a_long_stalled_round(self):
        started_at = self._start_with_crash_point("9999.00")
        state = round_state('crash', 5, now=started_at + timedelta(hours=3))
        self.assertEqual(state['current_multiplier'], '7579.23')

    def test_forced_crash_settles_at_the_reached_multiplier(self):
        reachable = self._place(auto_cashout_at="7000.00")
        unreached = self._place(auto_cashout_at="8000.00")
        started_at = self._start_with_crash_point("9999.00")

        max_flight = self._seconds('CRASH_MAX_FLIGHT_SECONDS')
        self.assertIsNone(self._tick('crash', started_at + max_flight - timedelta(seconds=1))['transition'])
        self.assertEqual(self._tick('crash', started_at + max_flight)['transition'], 'crashed')

        db.session.expire_all()
        self.assertEqual(db.session.get(CrashBet, reachable['id']).payout, Decimal("70000.00"))
        missed = db.session.get(CrashBet, unreached['id'])
        self.assertEqual(missed.status, 'busted')
        self.assertEqual(missed.payout, Decimal("0.00"))
        self.assertEqual(self._balance(self.profile.id), Decimal("70980.00"))

    def test_next_round_after_display(self):
        started_at = self._start_with_crash_point("1.00")
        ended = self._tick('crash', started_at)
        self.assertEqual(ended['transition'], 'crashed')
        created = self._tick('crash', started_at + self._seconds('CRASH_ENDED_SECONDS'))
        self.assertEqual(created['transition'], 'created')
        self.assertEqual(db.session.get(CrashRound, created['round_id']).nonce, 2)
