"""
Round tick runner.

Advances every enabled round-based game on a fixed schedule by calling its
tick procedure. The ticker is the only writer of round status; clients and
the HTTP routes only read it.
"""

import threading
import time
import logging

from casino_rounds.services.procedures import call_procedure

logger = logging.getLogger(__name__)

TICK_PROCEDURES = {
    'roulette': 'roulette_game_tick',
    'crash': 'crash_game_tick',
}

ERROR_BACKOFF_SECONDS = 5


def run_tick(game, now=None):
    """Runs one tick for game in the current app context."""
    procedure_name = TICK_PROCEDURES.get(game)
    if procedure_name is None:
        raise ValueError(f"'{game}' has no round tick")
    args = {'now': now} if now is not None else {}
    return call_procedure(procedure_name, args, internal=True)


class RoundTicker:
    """Background thread that ticks the round-based games."""

    def __init__(self, app=None, interval=None):
        self.app = app
        self.interval = interval
        self.running = False
        self.loop_thread = None
        self.last_results = {}

    def init_app(self, app):
        self.app = app
        if self.interval is None:
            self.interval = float(app.config.get('TICK_INTERVAL_SECONDS', 1.0))
        app.extensions['round_ticker'] = self

    def games(self):
        enabled = self.app.config.get('ENABLED_GAMES', ())
        return [game for game in TICK_PROCEDURES if game in enabled]

    def start(self):
        """Start the tick loop in a background thread"""
        if self.running:
            logger.warning("Round ticker is already running")
            return

        self.running = True
        self.loop_thread = threading.Thread(target=self._run_loop, daemon=True)
        self.loop_thread.start()
        logger.info(f"Round ticker started for {', '.join(self.games()) or 'no games'}")

    def stop(self):
        self.running = False
        if self.loop_thread:
            self.loop_thread.join(timeout=5)
        logger.info("Round ticker stopped")

    def tick_once(self, now=None):
        """Ticks each enabled game once. A failing game does not block the others."""
        results = {}
        errors = []
        with self.app.app_context():
            for game in self.games():
                try:
                    results[game] = run_tick(game, now)
                except Exception as e:
                    logger.error(f"Tick failed for {game}: {e}", exc_info=True)
                    errors.append(game)
        self.last_results = results
        if errors:
            raise RuntimeError(f"Tick failed for {', '.join(errors)}")
        return results

    def _run_loop(self):
        while self.running:
            try:
                self.tick_once()
                time.sleep(self.interval or 1.0)
            except Exception as e:
                logger.error(f"Error in round ticker: {e}", exc_info=True)
                time.sleep(ERROR_BACKOFF_SECONDS)


# Global instance
round_ticker = RoundTicker()
