from collections import OrderedDict
from decimal import Decimal


def _amount(bet) -> Decimal:
    value = bet.get('bet_amount')
    return Decimal(str(value)) if value is not None else Decimal("0")


class BetLedger:
    """
    Bets of the active round keyed by bet id, in first-seen order.

    Pure projection: no I/O. Two bets of the same user on the same type stay
    two entries; only the snapshot totals aggregate them.
    """

    def __init__(self, group_field='bet_type'):
        self.group_field = group_field
        self._bets = OrderedDict()

    def __len__(self):
        return len(self._bets)

    def __contains__(self, bet_id):
        return bet_id in self._bets

    def apply_insert(self, bet: dict):
        if bet.get('id') is None:
            raise ValueError("Bet row must carry an id")
        existing = self._bets.get(bet['id'])
        if existing is not None:
            existing.update(bet)
        else:
            self._bets[bet['id']] = dict(bet)

    # Update and insert are both upserts; the feed may deliver either first
    apply_update = apply_insert

    def apply_delete(self, bet_id) -> bool:
        return self._bets.pop(bet_id, None) is not None

    def replace_all(self, bets):
        self._bets = OrderedDict()
        for bet in bets:
            self.apply_insert(bet)

    def clear(self):
        self._bets = OrderedDict()

    def get(self, bet_id):
        bet = self._bets.get(bet_id)
        return dict(bet) if bet is not None else None

    def bets(self) -> list:
        return [dict(bet) for bet in self._bets.values()]

    def for_user(self, user_id) -> list:
        return [dict(bet) for bet in self._bets.values() if bet.get('user_id') == user_id]

    def snapshot(self) -> dict:
        by_type = OrderedDict()
        by_user = OrderedDict()
        for bet in self._bets.values():
            key = bet.get(self.group_field) or 'stake'
            group = by_type.setdefault(key, {'bets': [], 'total': Decimal("0")})
            group['bets'].append(dict(bet))
            group['total'] += _amount(bet)

            user = by_user.setdefault(bet.get('user_id'), {'bets': [], 'total': Decimal("0")})
            user['bets'].append(dict(bet))
            user['total'] += _amount(bet)

        return {
            'by_type': by_type,
            'by_user': by_user,
            'total_wagered': sum((_amount(b) for b in self._bets.values()), Decimal("0")),
            'count': len(self._bets),
        }
