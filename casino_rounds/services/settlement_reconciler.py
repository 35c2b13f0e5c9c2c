"""
Settlement Reconciler

Runs once per round for one user when the round reaches its terminal status.
Payouts are recomputed locally with the same tables the backend uses, but the
recomputation is only a prediction: money moves exclusively through the
backend's settle_round_bet procedure, keyed by bet id, and whatever payout the
backend confirms is the one that stands.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from casino_rounds.exceptions import AppException, GameLogicException, SettlementConflict
from casino_rounds.utils.audit_logger import AuditLogger
from casino_rounds.utils.crash_helper import crash_bet_payout
from casino_rounds.utils.roulette_helper import calculate_payout
from casino_rounds.utils.round_state import RoundPhase, rules_for

logger = logging.getLogger(__name__)

# Entry statuses
SETTLED = 'settled'
ALREADY_SETTLED = 'already_settled'
LOST = 'lost'
FAILED = 'failed'


def _decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))

def predict_payout(game: str, bet: dict, round_row: dict) -> Decimal:
    """Total a bet returns for the round's outcome, stake included."""
    if game == 'roulette':
        return calculate_payout(bet['bet_amount'], bet['bet_type'], round_row['winning_number'])
    if game == 'crash':
        return crash_bet_payout(
            bet['bet_amount'],
            round_row['crash_point'],
            auto_cashout_at=bet.get('auto_cashout_at'),
            cashout_multiplier=bet.get('cashout_multiplier'),
        )
    raise GameLogicException(f"No settlement rule for '{game}'", details={'game': game})


@dataclass
class SettlementEntry:
    bet_id: object
    predicted: Decimal
    confirmed: Optional[Decimal]
    status: str
    conflict: bool = False


@dataclass
class SettlementReport:
    game: str
    round_id: object
    user_id: object
    entries: List[SettlementEntry] = field(default_factory=list)
    errors: List[AppException] = field(default_factory=list)
    conflicts: List[SettlementConflict] = field(default_factory=list)

    @property
    def total_predicted(self) -> Decimal:
        return sum((e.predicted for e in self.entries), Decimal("0.00"))

    @property
    def total_confirmed(self) -> Decimal:
        return sum((e.confirmed for e in self.entries if e.confirmed is not None), Decimal("0.00"))

    @property
    def ok(self) -> bool:
        return not self.errors


class SettlementReconciler:
    def __init__(self, backend, game: str, user_id):
        self.backend = backend
        self.game = game
        self.user_id = user_id
        self.rules = rules_for(game)
        self._round_id = None
        self._processed = False
        self._lock = threading.RLock()
        self.last_report: Optional[SettlementReport] = None

    @property
    def round_id(self):
        return self._round_id

    @property
    def processed(self) -> bool:
        return self._processed

    def begin_round(self, round_id):
        """Resets the processed flag, but only when round_id is new."""
        with self._lock:
            if round_id != self._round_id:
                self._round_id = round_id
                self._processed = False

    def reconcile(self, round_row: dict, bets) -> Optional[SettlementReport]:
        """
        Settles the user's bets of a terminal round at most once.

        Returns None when the round was already processed. Failed procedure
        calls are recorded on the report and never retried.
        """
        if self.rules.phase_for(round_row.get('status')) is not RoundPhase.SETTLED:
            raise GameLogicException(
                f"{self.game} round {round_row['id']} is not finished",
                details={'round_id': round_row['id'], 'status': round_row.get('status')}
            )
        # resync and event delivery may both reach here for the same round
        with self._lock:
            self.begin_round(round_row['id'])
            if self._processed:
                logger.debug(f"{self.game} round {self._round_id} already reconciled for user {self.user_id}")
                return None
            self._processed = True
            report = SettlementReport(game=self.game, round_id=self._round_id, user_id=self.user_id)
            self.last_report = report

        if round_row.get(self.rules.outcome_field) is None:
            error = GameLogicException(
                f"{self.game} round {self._round_id} finished without an outcome",
                details={'round_id': self._round_id}, status_code=500
            )
            logger.error(error.status_message)
            report.errors.append(error)
            return report

        own_bets = [bet for bet in bets if bet.get('user_id') == self.user_id]
        for bet in own_bets:
            report.entries.append(self._settle_bet(round_row, bet, report))

        logger.info(
            f"Reconciled {self.game} round {self._round_id} for user {self.user_id}: "
            f"{len(report.entries)} bets, predicted {report.total_predicted}, "
            f"confirmed {report.total_confirmed}, {len(report.errors)} errors"
        )
        return report

    def _settle_bet(self, round_row, bet, report) -> SettlementEntry:
        predicted = predict_payout(self.game, bet, round_row)

        if bet.get('settled_at') is not None:
            entry = SettlementEntry(bet['id'], predicted, _decimal(bet.get('payout')), ALREADY_SETTLED)
            self._compare(entry, report)
            return entry

        if predicted <= 0:
            # Losing bets carry no credit; the tick writes their settlement fields
            return SettlementEntry(bet['id'], predicted, None, LOST)

        try:
            result = self.backend.call_procedure('settle_round_bet', {
                'game': self.game,
                'bet_id': bet['id'],
                'expected_payout': str(predicted),
            })
        except AppException as e:
            logger.error(f"Settlement of {self.game} bet {bet['id']} failed: {e.status_message}")
            report.errors.append(e)
            return SettlementEntry(bet['id'], predicted, None, FAILED)

        status = ALREADY_SETTLED if result.get('already_settled') else SETTLED
        entry = SettlementEntry(bet['id'], predicted, _decimal(result.get('payout')), status)
        self._compare(entry, report)
        return entry

    def _compare(self, entry, report):
        if entry.confirmed is None or entry.confirmed == entry.predicted:
            return
        entry.conflict = True
        conflict = SettlementConflict(
            f"Predicted payout {entry.predicted} for bet {entry.bet_id}, backend confirmed {entry.confirmed}",
            details={
                'game': self.game,
                'round_id': self._round_id,
                'bet_id': entry.bet_id,
                'predicted': str(entry.predicted),
                'confirmed': str(entry.confirmed),
            }
        )
        report.conflicts.append(conflict)
        AuditLogger.log_settlement_conflict(
            self.game, self._round_id, entry.bet_id, self.user_id,
            predicted=entry.predicted, confirmed=entry.confirmed
        )
