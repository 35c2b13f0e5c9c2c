import unittest
from decimal import Decimal

from casino_rounds.utils.bet_ledger import BetLedger


def bet(bet_id, user_id=1, bet_type='red', amount='10.00', round_id=1):
    return {'id': bet_id, 'round_id': round_id, 'user_id': user_id, 'bet_type': bet_type, 'bet_amount': amount}


class TestBetLedger(unittest.TestCase):

    def setUp(self):
        self.ledger = BetLedger()

    def test_same_type_bets_stay_separate_but_aggregate(self):
        self.ledger.apply_insert(bet(1, amount='10.00'))
        self.ledger.apply_insert(bet(2, amount='5.00'))

        self.assertEqual(len(self.ledger), 2)
        snapshot = self.ledger.snapshot()
        self.assertEqual(len(snapshot['by_type']['red']['bets']), 2)
        self.assertEqual(snapshot['by_type']['red']['total'], Decimal("15.00"))
        self.assertEqual(snapshot['by_user'][1]['total'], Decimal("15.00"))
        self.assertEqual(snapshot['total_wagered'], Decimal("15.00"))
        self.assertEqual(snapshot['count'], 2)

    def test_clear_then_insert_has_no_stale_entries(self):
        self.ledger.apply_insert(bet(1))
        self.ledger.apply_insert(bet(2, user_id=2, bet_type='black'))
        self.ledger.clear()
        self.ledger.apply_insert(bet(3, bet_type='number_17', round_id=2))

        self.assertEqual([b['id'] for b in self.ledger.bets()], [3])
        self.assertEqual(list(self.ledger.snapshot()['by_type']), ['number_17'])

    def test_update_in_place(self):
        self.ledger.apply_insert(bet(1))
        self.ledger.apply_update({'id': 1, 'payout': '20.00'})
        stored = self.ledger.get(1)
        self.assertEqual(stored['payout'], '20.00')
        self.assertEqual(stored['bet_type'], 'red')
        self.assertEqual(len(self.ledger), 1)

    def test_update_before_insert_is_an_upsert(self):
        self.ledger.apply_update(bet(7))
        self.assertIn(7, self.ledger)

    def test_delete(self):
        self.ledger.apply_insert(bet(1))
        self.assertTrue(self.ledger.apply_delete(1))
        self.assertFalse(self.ledger.apply_delete(1))
        self.assertEqual(self.ledger.snapshot()['count'], 0)

    def test_replace_all_and_for_user(self):
        self.ledger.apply_insert(bet(9))
        self.ledger.replace_all([bet(1), bet(2, user_id=2), bet(3)])
        self.assertNotIn(9, self.ledger)
        self.assertEqual([b['id'] for b in self.ledger.for_user(1)], [1, 3])

    def test_returned_rows_are_copies(self):
        self.ledger.apply_insert(bet(1))
        self.ledger.get(1)['bet_type'] = 'black'
        self.assertEqual(self.ledger.get(1)['bet_type'], 'red')

    def test_rows_need_an_id(self):
        with self.assertRaises(ValueError):
            self.ledger.apply_insert({'bet_type': 'red'})

    def test_crash_bets_group_under_stake(self):
        ledger = BetLedger(group_field='auto_cashout_at')
        ledger.apply_insert({'id': 1, 'user_id': 1, 'bet_amount': '3.00', 'auto_cashout_at': None})
        self.assertEqual(ledger.snapshot()['by_type']['stake']['total'], Decimal("3.00"))


if __name__ == '__main__':
    unittest.main()
