"""
The narrow interface the round client consumes, and its SQL implementation.

RoundSynchronizer and SettlementReconciler only ever call the methods of
RoundBackend, so they run unchanged against the in-process SQL store or any
other implementation (a remote API client, a test double).
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from casino_rounds.exceptions import BackendUnavailable, NotFoundException
from casino_rounds.models import db, Profile
from casino_rounds.schemas import PublicProfileSchema
from casino_rounds.services import procedures
from casino_rounds.services.change_feed import ChangeEvent, Subscription  # noqa: F401 re-exported for callers

logger = logging.getLogger(__name__)


class RoundBackend:
    """Reads, change subscription and procedure calls against the backing store."""

    def get_latest_round(self, game: str):
        raise NotImplementedError

    def list_bets(self, game: str, round_id) -> list:
        raise NotImplementedError

    def list_history(self, game: str, limit: int) -> list:
        """Terminal rounds, newest first."""
        raise NotImplementedError

    def get_profile(self, user_id):
        raise NotImplementedError

    def subscribe_to_table(self, table: str, callback, filter=None):
        """Returns a handle with unsubscribe()."""
        raise NotImplementedError

    def call_procedure(self, name: str, args=None) -> dict:
        raise NotImplementedError


class SqlRoundBackend(RoundBackend):
    """
    RoundBackend over the app's SQLAlchemy models and change feed.

    user_id is the caller identity passed to user procedures. Internal
    procedures (ticks, raw balance adjustment) are only reachable with
    internal=True, which the scheduler uses and clients never get.
    """

    def __init__(self, app, user_id=None, internal=False):
        self.app = app
        self.user_id = user_id
        self.internal = internal

    def _read(self, description, fn):
        with self.app.app_context():
            try:
                return fn()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Backend read failed ({description}): {e}", exc_info=True)
                raise BackendUnavailable(f"Could not load {description}.", details={'operation': description})

    def get_latest_round(self, game):
        def load():
            game_round = procedures.latest_round(game)
            return procedures.ROUND_SCHEMAS[game]().dump(game_round) if game_round else None
        return self._read(f"latest {game} round", load)

    def list_bets(self, game, round_id):
        def load():
            return procedures.BET_SCHEMAS[game](many=True).dump(procedures.round_bets(game, round_id))
        return self._read(f"{game} bets for round {round_id}", load)

    def list_history(self, game, limit):
        def load():
            return procedures.ROUND_SCHEMAS[game](many=True).dump(procedures.round_history(game, limit))
        return self._read(f"{game} history", load)

    def get_profile(self, user_id):
        def load():
            profile = db.session.scalar(select(Profile).where(Profile.id == user_id))
            if profile is None:
                raise NotFoundException(f"Profile {user_id} not found", details={'user_id': user_id})
            return PublicProfileSchema().dump(profile)
        return self._read(f"profile {user_id}", load)

    def subscribe_to_table(self, table, callback, filter=None):
        feed = self.app.extensions.get('change_feed')
        if feed is None:
            raise BackendUnavailable("Change feed is not configured.", details={'table': table})
        return feed.subscribe(table, callback, filter)

    def call_procedure(self, name, args=None):
        with self.app.app_context():
            return procedures.call_procedure(name, args, user_id=self.user_id, internal=self.internal)
