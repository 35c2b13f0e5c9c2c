import unittest
from decimal import Decimal

from casino_rounds.utils import crash_helper


class TestCrashHelper(unittest.TestCase):

    def test_curve_starts_at_one(self):
        self.assertEqual(crash_helper.multiplier_at(0), Decimal("1.00"))
        self.assertEqual(crash_helper.multiplier_at(-3), Decimal("1.00"))

    def test_curve_grows(self):
        self.assertLess(crash_helper.multiplier_at(1), crash_helper.multiplier_at(5))
        # 1.015 ** 10 = 1.1605...
        self.assertEqual(crash_helper.multiplier_at(2), Decimal("1.16"))

    def test_seconds_until(self):
        self.assertEqual(crash_helper.seconds_until(1), 0.0)
        self.assertAlmostEqual(crash_helper.seconds_until(2), 9.31, places=2)
        self.assertEqual(crash_helper.flight_duration(Decimal("9999.00")), float(crash_helper.MAX_GAME_DURATION))

    def test_curve_holds_at_flight_limit(self):
        # a running round left behind by a stopped tick must not overflow the curve
        three_hours = 3 * 60 * 60
        self.assertEqual(crash_helper.multiplier_at(three_hours), crash_helper.multiplier_at(120))
        self.assertEqual(crash_helper.multiplier_at(120), Decimal("7579.23"))
        self.assertEqual(crash_helper.multiplier_at(three_hours, max_seconds=30), crash_helper.multiplier_at(30))

        unbounded = crash_helper.multiplier_at(three_hours, max_seconds=three_hours)
        self.assertLessEqual(unbounded, Decimal("9999.00"))
        self.assertGreater(unbounded, Decimal("9990.00"))

    def test_crash_cap_is_what_the_curve_reaches(self):
        self.assertEqual(crash_helper.crash_cap(120), Decimal("7579.23"))
        self.assertEqual(crash_helper.crash_cap(10), crash_helper.multiplier_at(10))

    def test_current_multiplier_is_capped_at_crash_point(self):
        self.assertEqual(crash_helper.current_multiplier(1000, "2.00"), Decimal("2.00"))
        self.assertEqual(crash_helper.current_multiplier(0, "2.00"), Decimal("1.00"))

    def test_auto_cashout_payout(self):
        self.assertEqual(crash_helper.crash_bet_payout("10.00", "2.00", auto_cashout_at="1.50"), Decimal("15.00"))
        self.assertEqual(crash_helper.crash_bet_payout("10.00", "2.00", auto_cashout_at="2.00"), Decimal("20.00"))
        self.assertEqual(crash_helper.crash_bet_payout("10.00", "2.00", auto_cashout_at="3.00"), Decimal("0.00"))
        self.assertEqual(crash_helper.crash_bet_payout("10.00", "2.00"), Decimal("0.00"))

    def test_manual_cashout_payout(self):
        self.assertEqual(crash_helper.crash_bet_payout("3.33", "5.00", cashout_multiplier="1.37"), Decimal("4.56"))
        self.assertEqual(crash_helper.crash_bet_payout("10", "1.20", cashout_multiplier="1.37"), Decimal("0.00"))

    def test_effective_cashout(self):
        self.assertEqual(crash_helper.effective_cashout("2.00", auto_cashout_at="1.50"), Decimal("1.50"))
        self.assertEqual(crash_helper.effective_cashout("2.00", cashout_multiplier="1.10", auto_cashout_at="1.50"),
                         Decimal("1.10"))
        self.assertIsNone(crash_helper.effective_cashout("1.00", auto_cashout_at="1.50"))


if __name__ == '__main__':
    unittest.main()
