"""
Realtime Round Synchronizer

Client-side projection of one round-based game. It subscribes to the game's
round and bet tables, feeds round rows through a RoundStateMachine, keeps the
active round's bets in a BetLedger and triggers the SettlementReconciler when
the round reaches its terminal status.

The synchronizer never writes round status. It writes only the user's own
bets, always through backend procedures, and never inserts a bet locally
before the backend confirms it: the bet shows up when its insert event does.

Backend calls, including bet and profile reloads, are made without holding the
synchronizer lock; the change feed may deliver events for a procedure's own
writes before the call returns. Results fetched that way are applied only if
the projection is still on the round they were fetched for.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from casino_rounds.exceptions import (
    AppException, BackendUnavailable, BetRejected, GameLogicException,
    NotFoundException, StalledRoundWarning
)
from casino_rounds.error_codes import ErrorCodes
from casino_rounds.services.change_feed import DELETE
from casino_rounds.services.settlement_reconciler import SettlementReconciler
from casino_rounds.utils import crash_helper
from casino_rounds.utils.bet_ledger import BetLedger
from casino_rounds.utils.round_state import (
    DEFAULT_STALL_FACTOR, RoundPhase, RoundStateMachine, rules_for, utcnow
)

logger = logging.getLogger(__name__)

NOTICE_TTL_SECONDS = 3
DEFAULT_HISTORY_SIZE = 50

_PLACE_PROCEDURES = {
    'roulette': 'place_roulette_bet',
    'crash': 'place_crash_bet',
}


@dataclass(frozen=True)
class Notice:
    """Transient message for the player; expires on its own."""
    kind: str
    message: str
    error_code: Optional[str]
    expires_at: object


@dataclass(frozen=True)
class RoundView:
    game: str
    round_id: object
    phase: Optional[RoundPhase]
    status: Optional[str]
    countdown: float
    outcome: object
    multiplier: object
    replay_animation: bool
    history: list
    resting_outcome: object
    ledger: dict
    own_bets: list
    notices: list
    stalled: bool
    pending_actions: int
    needs_resync: bool
    settlement: object = None


class RoundSynchronizer:
    def __init__(self, backend, game, user_id=None, reconciler=None,
                 history_size=DEFAULT_HISTORY_SIZE, stall_factor=DEFAULT_STALL_FACTOR,
                 rules=None, clock=None):
        self.backend = backend
        self.game = game
        self.user_id = user_id
        self.rules = rules or rules_for(game)
        self.machine = RoundStateMachine(self.rules, stall_factor=stall_factor)
        self.ledger = BetLedger()
        if reconciler is None and user_id is not None:
            reconciler = SettlementReconciler(backend, game, user_id)
        self.reconciler = reconciler
        self.history = deque(maxlen=history_size)
        self.clock = clock or utcnow

        self.needs_resync = False
        self.pending_actions = 0
        self.closed = False

        self._lock = threading.RLock()
        self._profiles = {}
        self._notices = []
        self._subscriptions = []
        self._stalled = False

    # --- lifecycle ---

    def start(self) -> bool:
        """Subscribes to both tables, then loads the full current state."""
        if self.closed:
            raise GameLogicException("Synchronizer was closed", details={'game': self.game})
        try:
            self._subscriptions = [
                self.backend.subscribe_to_table(self.rules.round_table, self.handle_round_event),
                self.backend.subscribe_to_table(self.rules.bet_table, self.handle_bet_event),
            ]
        except BackendUnavailable as e:
            self._unsubscribe()
            with self._lock:
                self.needs_resync = True
                self._notify('error', e.status_message, e.error_code)
            return False
        return self.resync()

    def close(self):
        with self._lock:
            self.closed = True
            self._unsubscribe()
        logger.debug(f"{self.game} synchronizer closed")

    def _unsubscribe(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def resync(self) -> bool:
        """
        Full fetch of the latest round, its bets and the history window.

        The change stream does not replay missed events, so this runs on
        start and after any failed read. On failure the last authoritative
        phase is kept and needs_resync stays set.
        """
        if self.closed:
            return False
        try:
            round_row = self.backend.get_latest_round(self.game)
            history = self.backend.list_history(self.game, self.history.maxlen)
            bets = self.backend.list_bets(self.game, round_row['id']) if round_row else []
            bets = [self._with_profile(bet) for bet in bets]
        except BackendUnavailable as e:
            logger.warning(f"{self.game} resync failed: {e.status_message}")
            with self._lock:
                self.needs_resync = True
                self._notify('error', e.status_message, e.error_code)
            return False

        settle = None
        with self._lock:
            self.history.clear()
            for row in history:
                self.history.append(self._history_entry(row))
            if round_row is not None and self._is_stale_round(round_row.get('id')):
                # a newer round arrived through the feed while this fetch ran
                logger.debug(f"Keeping {self.game} round {self.machine.round_id} over fetched round {round_row.get('id')}")
            elif round_row is not None:
                transition = self.machine.observe(round_row)
                if transition.new_round:
                    self._on_new_round(transition.round_id)
                self.ledger.replace_all(bets)
                if self.machine.is_terminal:
                    self._remember_outcome(self.machine.row)
                    settle = (self.machine.row, self.ledger.bets())
            self.needs_resync = False
            self._stalled = False

        if settle is not None:
            self._reconcile(*settle)
        return True

    # --- change events ---

    def handle_round_event(self, change):
        ended_round = None
        with self._lock:
            if self.closed:
                return
            if change.event_type == DELETE:
                logger.warning(f"Ignoring delete of {self.game} round {change.old.get('id') if change.old else None}")
                return
            row = change.row
            if self._is_stale_round(row.get('id')):
                logger.debug(f"Dropping late event for earlier {self.game} round {row.get('id')}")
                return
            try:
                transition = self.machine.observe(row)
            except GameLogicException as e:
                logger.error(f"Unusable {self.game} round event: {e.status_message}")
                return
            if transition.ignored:
                return

            self._stalled = False
            if transition.new_round:
                self._on_new_round(transition.round_id)

            if transition.entered_terminal:
                self._remember_outcome(self.machine.row)
                ended_round = transition.round_id
                ended_row = dict(self.machine.row)

        if ended_round is None:
            return
        try:
            # Per-row events race the bulk settlement write; reload the set
            bets = [self._with_profile(bet) for bet in self.backend.list_bets(self.game, ended_round)]
        except BackendUnavailable as e:
            logger.warning(f"Bet refetch failed for {self.game} round {ended_round}: {e.status_message}")
            self.resync()
            return

        with self._lock:
            if self.closed:
                return
            if self.machine.round_id != ended_round:
                # the next round opened during the reload; settle without touching its ledger
                settle = (ended_row, bets)
            else:
                self.ledger.replace_all(bets)
                settle = (self.machine.row, self.ledger.bets())
        self._reconcile(*settle)

    def handle_bet_event(self, change):
        with self._lock:
            if self.closed:
                return
            row = change.old if change.event_type == DELETE else change.row
            if not row or row.get('round_id') != self.machine.round_id:
                return
            if change.event_type == DELETE:
                self.ledger.apply_delete(row.get('id'))
                return

        try:
            bet = self._with_profile(row)
        except BackendUnavailable as e:
            logger.warning(f"Profile lookup failed for {self.game} bet {row.get('id')}: {e.status_message}")
            self.resync()
            return

        with self._lock:
            if self.closed or row.get('round_id') != self.machine.round_id:
                return
            self.ledger.apply_insert(bet)

    def _is_stale_round(self, round_id):
        current = self.machine.round_id
        if current is None or round_id is None:
            return False
        try:
            return round_id < current
        except TypeError:
            return False

    def _on_new_round(self, round_id):
        self.ledger.clear()
        if self.reconciler is not None:
            self.reconciler.begin_round(round_id)

    def _history_entry(self, row):
        return {'round_id': row.get('id'), 'outcome': row.get(self.rules.outcome_field)}

    def _remember_outcome(self, row):
        if any(entry['round_id'] == row.get('id') for entry in self.history):
            return
        self.history.appendleft(self._history_entry(row))

    def _reconcile(self, round_row, bets):
        if self.reconciler is None:
            return None
        try:
            return self.reconciler.reconcile(round_row, bets)
        except AppException as e:
            logger.error(f"{self.game} settlement failed for round {round_row.get('id')}: {e.status_message}")
            with self._lock:
                self._notify('error', e.status_message, e.error_code)
            return None

    def _with_profile(self, bet):
        user_id = bet.get('user_id')
        if user_id not in self._profiles:
            try:
                self._profiles[user_id] = self.backend.get_profile(user_id)
            except NotFoundException:
                self._profiles[user_id] = {}
        profile = self._profiles[user_id] or {}
        merged = dict(bet)
        merged['username'] = profile.get('username')
        merged['avatar_url'] = profile.get('avatar_url')
        return merged

    # --- user actions ---

    def place_bet(self, bet_amount, bet_type=None, auto_cashout_at=None) -> dict:
        with self._lock:
            round_id, phase = self.machine.round_id, self.machine.phase
        if phase is not RoundPhase.ACCEPTING_BETS:
            return self._reject("Betting is closed for this round.", ErrorCodes.BETTING_CLOSED)

        args = {'round_id': round_id, 'bet_amount': str(bet_amount)}
        if self.game == 'roulette':
            args['bet_type'] = bet_type
        elif auto_cashout_at is not None:
            args['auto_cashout_at'] = str(auto_cashout_at)
        return self._call(_PLACE_PROCEDURES[self.game], args)

    def undo_last_bet(self) -> dict:
        if self.game != 'roulette':
            return self._reject("Undo is not available in this game.", ErrorCodes.BET_REJECTED)
        with self._lock:
            round_id, phase = self.machine.round_id, self.machine.phase
        if phase is not RoundPhase.ACCEPTING_BETS:
            return self._reject("Bets can only be undone while betting is open.", ErrorCodes.BETTING_CLOSED)
        return self._call('undo_last_roulette_bet', {'round_id': round_id})

    def clear_bets(self) -> dict:
        if self.game != 'roulette':
            return self._reject("Clearing bets is not available in this game.", ErrorCodes.BET_REJECTED)
        with self._lock:
            round_id, phase = self.machine.round_id, self.machine.phase
        if phase is not RoundPhase.ACCEPTING_BETS:
            return self._reject("Bets can only be cleared while betting is open.", ErrorCodes.BETTING_CLOSED)
        return self._call('clear_roulette_bets', {'round_id': round_id})

    def cashout(self, bet_id) -> dict:
        if self.game != 'crash':
            return self._reject("Cashout is only available in crash.", ErrorCodes.BET_REJECTED)
        with self._lock:
            phase = self.machine.phase
        if phase is not RoundPhase.RESOLVING:
            return self._reject("Cashout is only possible while the round is running.", ErrorCodes.BETTING_CLOSED)
        return self._call('cashout_crash_bet', {'bet_id': bet_id})

    def _call(self, name, args) -> dict:
        if self.user_id is None:
            return self._reject("Sign in to place bets.", ErrorCodes.UNAUTHENTICATED)
        with self._lock:
            self.pending_actions += 1
        try:
            return self.backend.call_procedure(name, args)
        except BetRejected as e:
            return self._reject(e.status_message, e.error_code)
        except AppException as e:
            logger.error(f"{self.game} procedure {name} failed: {e.status_message}")
            return self._reject(e.status_message, e.error_code)
        finally:
            with self._lock:
                self.pending_actions -= 1

    def _reject(self, message, error_code) -> dict:
        with self._lock:
            self._notify('error', message, error_code)
        return {'success': False, 'error_code': error_code, 'status_message': message}

    # --- view ---

    def _notify(self, kind, message, error_code=None, now=None):
        expires_at = (now or self.clock()) + timedelta(seconds=NOTICE_TTL_SECONDS)
        self._notices.append(Notice(kind, message, error_code, expires_at))

    def _multiplier(self, now):
        if self.game != 'crash' or self.machine.phase is None:
            return None
        if self.machine.phase is RoundPhase.ACCEPTING_BETS:
            return crash_helper.multiplier_at(0)
        if self.machine.phase is RoundPhase.RESOLVING:
            elapsed = self.machine.phase_elapsed(now)
            max_flight = self.rules.stall_windows.get(RoundPhase.RESOLVING, crash_helper.MAX_GAME_DURATION)
            return crash_helper.multiplier_at(elapsed or 0, max_flight)
        return self.machine.outcome

    def poll(self, now=None) -> RoundView:
        """Current view; countdown and multiplier are recomputed from the phase anchor on every call."""
        with self._lock:
            now = now or self.clock()
            self._notices = [n for n in self._notices if n.expires_at > now]

            try:
                self.machine.check_stalled(now)
            except StalledRoundWarning as w:
                if not self._stalled:
                    logger.warning(f"{w.status_message} ({w.details})")
                self._stalled = True
                # Keep the stall visible for as long as it lasts
                if not any(n.kind == 'stalled' for n in self._notices):
                    self._notify('stalled', w.status_message, w.error_code, now=now)
            else:
                self._stalled = False

            phase = self.machine.phase
            outcome = self.machine.outcome
            return RoundView(
                game=self.game,
                round_id=self.machine.round_id,
                phase=phase,
                status=self.machine.status,
                countdown=self.machine.countdown(now),
                outcome=outcome,
                multiplier=self._multiplier(now),
                replay_animation=self.machine.replay_animation,
                history=list(self.history),
                resting_outcome=self.history[0]['outcome'] if self.history else None,
                ledger=self.ledger.snapshot(),
                own_bets=self.ledger.for_user(self.user_id) if self.user_id is not None else [],
                notices=list(self._notices),
                stalled=self._stalled,
                pending_actions=self.pending_actions,
                needs_resync=self.needs_resync,
                settlement=self.reconciler.last_report if self.reconciler is not None else None,
            )
