import unittest
from decimal import Decimal

from casino_rounds.exceptions import ValidationException
from casino_rounds.utils import fairness, keno_helper

SERVER_SEED = "b" * 64


class TestKenoHelper(unittest.TestCase):

    def test_validate_picks(self):
        keno_helper.validate_picks([1, 40], 'classic')
        bad = [
            ([], 'classic'),
            (list(range(1, 12)), 'classic'),
            ([0], 'classic'),
            ([41], 'classic'),
            ([3, 3], 'classic'),
            (['5'], 'classic'),
            ([5], 'jackpot'),
        ]
        for picks, risk in bad:
            with self.subTest(picks=picks, risk=risk):
                with self.assertRaises(ValidationException):
                    keno_helper.validate_picks(picks, risk)

    def test_medium_plays_classic_table(self):
        self.assertIs(keno_helper.PAYOUT_TABLES['medium'], keno_helper.PAYOUT_TABLES['classic'])
        for table in keno_helper.PAYOUT_TABLES.values():
            self.assertEqual(len(table), keno_helper.MAX_PICKS + 1)

    def test_play_counts_hits(self):
        drawn = fairness.keno_draw(SERVER_SEED, "client", 1)
        picks = drawn[:4]
        result = keno_helper.play(SERVER_SEED, "client", 1, picks, 'classic', "10.00")
        self.assertEqual(result['drawn'], drawn)
        self.assertEqual(result['hits'], sorted(picks))
        self.assertEqual(result['multiplier'], Decimal("2.25"))
        self.assertEqual(result['payout'], Decimal("22.50"))

    def test_play_with_no_hits(self):
        drawn = set(fairness.keno_draw(SERVER_SEED, "client", 2))
        misses = [n for n in range(1, 41) if n not in drawn][:3]
        result = keno_helper.play(SERVER_SEED, "client", 2, misses, 'high', "10.00")
        self.assertEqual(result['hits'], [])
        self.assertEqual(result['payout'], Decimal("0.00"))


if __name__ == '__main__':
    unittest.main()
