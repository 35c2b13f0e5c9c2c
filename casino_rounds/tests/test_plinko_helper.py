import unittest
from decimal import Decimal

from casino_rounds.exceptions import ValidationException
from casino_rounds.utils import plinko_helper

SERVER_SEED = "a" * 64


class TestPlinkoHelper(unittest.TestCase):

    def test_tables_are_symmetric(self):
        for risk, tables in plinko_helper.PAYOUT_MULTIPLIERS.items():
            for rows, buckets in tables.items():
                with self.subTest(risk=risk, rows=rows):
                    self.assertEqual(buckets, list(reversed(buckets)))

    def test_tables_have_one_bucket_per_slot(self):
        for risk, tables in plinko_helper.PAYOUT_MULTIPLIERS.items():
            for rows, buckets in tables.items():
                with self.subTest(risk=risk, rows=rows):
                    self.assertEqual(len(buckets), rows + 1)

    def test_validate_params(self):
        plinko_helper.validate_plinko_params('low', 8)
        plinko_helper.validate_plinko_params('high', 16)
        for risk, rows in (('extreme', 8), ('low', 7), ('low', 17), ('low', '12'), ('low', True)):
            with self.subTest(risk=risk, rows=rows):
                with self.assertRaises(ValidationException):
                    plinko_helper.validate_plinko_params(risk, rows)

    def test_bucket_index(self):
        self.assertEqual(plinko_helper.bucket_index([-1] * 8), 0)
        self.assertEqual(plinko_helper.bucket_index([1] * 8), 8)
        self.assertEqual(plinko_helper.bucket_index([1, -1, 1, -1]), 2)

    def test_calculate_winnings_rounds_down(self):
        self.assertEqual(plinko_helper.calculate_winnings("1.99", "0.5"), Decimal("0.99"))
        self.assertEqual(plinko_helper.calculate_winnings("10", "1000"), Decimal("10000.00"))

    def test_play_is_deterministic(self):
        first = plinko_helper.play(SERVER_SEED, "client", 3, 'medium', 12, "2.00")
        second = plinko_helper.play(SERVER_SEED, "client", 3, 'medium', 12, "2.00")
        self.assertEqual(first, second)
        self.assertEqual(len(first['path']), 12)
        self.assertEqual(first['multiplier'],
                         Decimal(str(plinko_helper.PAYOUT_MULTIPLIERS['medium'][12][first['bucket']])))

    def test_get_options_is_a_copy(self):
        options = plinko_helper.get_options()
        options['low'][8][0] = 0
        self.assertEqual(plinko_helper.PAYOUT_MULTIPLIERS['low'][8][0], 5.6)


if __name__ == '__main__':
    unittest.main()
