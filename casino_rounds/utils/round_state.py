"""
Client-side projection of a shared round's lifecycle.

The machine never advances on its own: every phase change comes from an
observed backend row. Local time is only used to render a countdown and to
notice that the external tick has gone quiet.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Dict, Optional

from casino_rounds.exceptions import GameLogicException, StalledRoundWarning

logger = logging.getLogger(__name__)

DEFAULT_STALL_FACTOR = 3


class RoundPhase(IntEnum):
    ACCEPTING_BETS = 0
    RESOLVING = 1
    SETTLED = 2


@dataclass(frozen=True)
class GameRules:
    game: str
    round_table: str
    bet_table: str
    statuses: Dict[str, RoundPhase]
    anchors: Dict[RoundPhase, str]
    # None marks a phase whose length depends on the outcome
    durations: Dict[RoundPhase, Optional[float]]
    stall_windows: Dict[RoundPhase, float]
    outcome_field: str
    outcome_visible_from: RoundPhase

    def phase_for(self, status) -> RoundPhase:
        try:
            return self.statuses[status]
        except KeyError:
            raise GameLogicException(
                f"Unknown {self.game} round status '{status}'",
                details={'game': self.game, 'status': status}
            )

    def status_for(self, phase: RoundPhase) -> str:
        for status, mapped in self.statuses.items():
            if mapped is phase:
                return status
        raise GameLogicException(f"No {self.game} status for phase {phase.name}")

    def expected_window(self, phase: RoundPhase) -> float:
        duration = self.durations.get(phase)
        if duration is not None:
            return float(duration)
        return float(self.stall_windows[phase])


def roulette_rules(betting_seconds=15, spinning_seconds=5, ended_seconds=5) -> GameRules:
    return GameRules(
        game='roulette',
        round_table='roulette_rounds',
        bet_table='roulette_bets',
        statuses={
            'betting': RoundPhase.ACCEPTING_BETS,
            'spinning': RoundPhase.RESOLVING,
            'ended': RoundPhase.SETTLED,
        },
        anchors={
            RoundPhase.ACCEPTING_BETS: 'created_at',
            RoundPhase.RESOLVING: 'spun_at',
            RoundPhase.SETTLED: 'ended_at',
        },
        durations={
            RoundPhase.ACCEPTING_BETS: betting_seconds,
            RoundPhase.RESOLVING: spinning_seconds,
            RoundPhase.SETTLED: ended_seconds,
        },
        stall_windows={},
        outcome_field='winning_number',
        outcome_visible_from=RoundPhase.RESOLVING,
    )

def crash_rules(waiting_seconds=10, max_flight_seconds=120, crashed_seconds=3) -> GameRules:
    return GameRules(
        game='crash',
        round_table='crash_rounds',
        bet_table='crash_bets',
        statuses={
            'waiting': RoundPhase.ACCEPTING_BETS,
            'running': RoundPhase.RESOLVING,
            'crashed': RoundPhase.SETTLED,
        },
        anchors={
            RoundPhase.ACCEPTING_BETS: 'created_at',
            RoundPhase.RESOLVING: 'started_at',
            RoundPhase.SETTLED: 'ended_at',
        },
        durations={
            RoundPhase.ACCEPTING_BETS: waiting_seconds,
            RoundPhase.RESOLVING: None,
            RoundPhase.SETTLED: crashed_seconds,
        },
        stall_windows={RoundPhase.RESOLVING: max_flight_seconds},
        outcome_field='crash_point',
        outcome_visible_from=RoundPhase.SETTLED,
    )

ROULETTE_RULES = roulette_rules()
CRASH_RULES = crash_rules()

def rules_for(game: str) -> GameRules:
    rules = {'roulette': ROULETTE_RULES, 'crash': CRASH_RULES}.get(game)
    if rules is None:
        raise GameLogicException(f"'{game}' is not a round-based game", details={'game': game})
    return rules


def parse_timestamp(value) -> Optional[datetime]:
    """Accepts datetimes or ISO-8601 strings. Naive values are taken as UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Transition:
    round_id: object
    previous: Optional[RoundPhase]
    phase: Optional[RoundPhase]
    new_round: bool = False
    entered_terminal: bool = False
    replay_animation: bool = False
    ignored: bool = False


@dataclass
class _Projection:
    round_id: object
    phase: RoundPhase
    status: str
    row: dict = field(default_factory=dict)
    outcome: object = None
    saw_resolving: bool = False


class RoundStateMachine:
    """Projection of one game's current round, driven only by observe()."""

    def __init__(self, rules: GameRules, stall_factor=DEFAULT_STALL_FACTOR):
        if stall_factor <= 0:
            raise ValueError("stall_factor must be positive")
        self.rules = rules
        self.stall_factor = stall_factor
        self._current: Optional[_Projection] = None

    @property
    def round_id(self):
        return self._current.round_id if self._current else None

    @property
    def phase(self) -> Optional[RoundPhase]:
        return self._current.phase if self._current else None

    @property
    def status(self) -> Optional[str]:
        return self._current.status if self._current else None

    @property
    def row(self) -> dict:
        return dict(self._current.row) if self._current else {}

    @property
    def outcome(self):
        return self._current.outcome if self._current else None

    @property
    def is_terminal(self) -> bool:
        return self.phase is RoundPhase.SETTLED

    @property
    def replay_animation(self) -> bool:
        """True only when this client watched the round enter its resolving phase."""
        return bool(self._current and self._current.saw_resolving)

    def observe(self, round_row: dict) -> Transition:
        if not round_row or round_row.get('id') is None:
            raise GameLogicException("Round row without an id", details={'game': self.rules.game})

        round_id = round_row['id']
        phase = self.rules.phase_for(round_row.get('status'))
        current = self._current

        if current is None or current.round_id != round_id:
            previous = current.phase if current else None
            self._current = _Projection(
                round_id=round_id,
                phase=phase,
                status=round_row['status'],
                row=dict(round_row),
                saw_resolving=phase is RoundPhase.RESOLVING,
            )
            self._capture_outcome(round_row)
            return Transition(
                round_id=round_id,
                previous=previous,
                phase=phase,
                new_round=True,
                entered_terminal=phase is RoundPhase.SETTLED,
                replay_animation=self.replay_animation,
            )

        if phase < current.phase:
            logger.warning(
                f"Ignoring backward {self.rules.game} status '{round_row['status']}' for round {round_id}; "
                f"projection is already '{current.status}'"
            )
            return Transition(round_id=round_id, previous=current.phase, phase=current.phase, ignored=True)

        previous = current.phase
        current.row.update(round_row)
        current.phase = phase
        current.status = round_row['status']
        if phase is RoundPhase.RESOLVING:
            current.saw_resolving = True
        self._capture_outcome(round_row)

        return Transition(
            round_id=round_id,
            previous=previous,
            phase=phase,
            entered_terminal=phase is RoundPhase.SETTLED and previous is not RoundPhase.SETTLED,
            replay_animation=self.replay_animation,
        )

    def _capture_outcome(self, round_row):
        current = self._current
        if current.phase < self.rules.outcome_visible_from:
            return
        value = round_row.get(self.rules.outcome_field)
        if value is None:
            return
        if current.outcome is None:
            current.outcome = value
        elif str(current.outcome) != str(value):
            logger.error(
                f"{self.rules.game} round {current.round_id} reported outcome {value} "
                f"after {current.outcome} was observed; keeping the first"
            )

    def phase_started_at(self) -> Optional[datetime]:
        if self._current is None:
            return None
        return parse_timestamp(self._current.row.get(self.rules.anchors[self._current.phase]))

    def phase_elapsed(self, now: Optional[datetime] = None) -> Optional[float]:
        started = self.phase_started_at()
        if started is None:
            return None
        now = now or utcnow()
        return max(0.0, (now - started).total_seconds())

    def countdown(self, now: Optional[datetime] = None) -> float:
        """Seconds left in the current phase, recomputed from the anchor on every call."""
        if self._current is None:
            return 0.0
        duration = self.rules.durations.get(self._current.phase)
        elapsed = self.phase_elapsed(now)
        if duration is None or elapsed is None:
            return 0.0
        return max(0.0, float(duration) - elapsed)

    def check_stalled(self, now: Optional[datetime] = None):
        """Raises StalledRoundWarning when the tick has not moved the round in stall_factor x its window."""
        if self._current is None:
            return
        elapsed = self.phase_elapsed(now)
        if elapsed is None:
            return
        window = self.rules.expected_window(self._current.phase)
        if elapsed > window * self.stall_factor:
            raise StalledRoundWarning(
                f"{self.rules.game.capitalize()} round has not left '{self._current.status}'",
                details={
                    'game': self.rules.game,
                    'round_id': self._current.round_id,
                    'status': self._current.status,
                    'elapsed_seconds': round(elapsed, 3),
                    'expected_seconds': window,
                }
            )

    def reset(self):
        self._current = None
