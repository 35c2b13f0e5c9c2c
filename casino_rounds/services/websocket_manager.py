"""
WebSocket Manager for shared rounds
Relays committed round and bet changes from the change feed to Socket.IO rooms,
one room per round-based game.
"""

from flask_socketio import emit, join_room, leave_room
from flask_jwt_extended import decode_token
from flask import request
from datetime import datetime, timezone
import logging

from casino_rounds.utils.round_state import rules_for

logger = logging.getLogger(__name__)

ROUND_GAMES = ('roulette', 'crash')


class WebSocketManager:
    def __init__(self, app=None, socketio=None, feed=None):
        self.socketio = socketio
        self.connected_sockets = {}  # socket_id -> {user_id, rooms, connected_at}
        self.game_rooms = {game: set() for game in ROUND_GAMES}  # game -> socket ids
        self.subscriptions = []

        if app and socketio:
            self.init_app(app, feed)

    def init_app(self, app, feed=None):
        """Register Socket.IO handlers and start relaying the change feed"""
        self.socketio.on_event('connect', self.handle_connect)
        self.socketio.on_event('disconnect', self.handle_disconnect)
        self.socketio.on_event('join_room', self.handle_join_room)
        self.socketio.on_event('leave_room', self.handle_leave_room)

        feed = feed or app.extensions.get('change_feed')
        if feed is None:
            logger.warning("No change feed configured; round updates will not be relayed")
            return
        for subscription in self.subscriptions:
            subscription.unsubscribe()
        self.subscriptions = []
        enabled = app.config.get('ENABLED_GAMES', ROUND_GAMES)
        for game in ROUND_GAMES:
            if game not in enabled:
                continue
            rules = rules_for(game)
            self.subscriptions.append(feed.subscribe(rules.round_table, self._relay('round_change', game)))
            self.subscriptions.append(feed.subscribe(rules.bet_table, self._relay('bet_change', game)))

    def authenticate_user(self, auth_token=None):
        """User id from a JWT, or None for spectators"""
        if not auth_token:
            return None
        if auth_token.startswith('Bearer '):
            auth_token = auth_token[7:]
        try:
            token_data = decode_token(auth_token)
        except Exception as e:
            logger.warning(f"WebSocket authentication failed: {str(e)}")
            return None
        user_id = token_data.get('sub')
        return int(user_id) if user_id else None

    def handle_connect(self, auth=None):
        """Spectators may connect without a token; they only ever receive public rows."""
        auth_token = request.args.get('token') or (auth.get('token') if auth else None)
        user_id = self.authenticate_user(auth_token)

        self.connected_sockets[request.sid] = {
            'user_id': user_id,
            'rooms': set(),
            'connected_at': datetime.now(timezone.utc),
        }
        logger.info(f"Socket {request.sid} connected (user: {user_id})")
        emit('connection_status', {'status': 'connected', 'user_id': user_id})
        return True

    def handle_disconnect(self, reason=None):
        socket_id = request.sid
        data = self.connected_sockets.pop(socket_id, None)
        if data is None:
            return
        for room in data['rooms']:
            self.game_rooms.get(room, set()).discard(socket_id)
        logger.info(f"Socket {socket_id} disconnected")

    def handle_join_room(self, data):
        room_name = (data or {}).get('room')
        if room_name not in self.game_rooms:
            emit('error', {'message': f"Unknown room '{room_name}'"})
            return

        socket_id = request.sid
        join_room(room_name)
        self.game_rooms[room_name].add(socket_id)
        if socket_id in self.connected_sockets:
            self.connected_sockets[socket_id]['rooms'].add(room_name)

        logger.info(f"Socket {socket_id} joined room: {room_name}")
        emit('room_joined', {'room': room_name, 'success': True})

    def handle_leave_room(self, data=None):
        socket_id = request.sid
        room_name = (data or {}).get('room')
        joined = self.connected_sockets.get(socket_id, {}).get('rooms', set())
        rooms = [room_name] if room_name else list(joined)
        for room in rooms:
            leave_room(room)
            self.game_rooms.get(room, set()).discard(socket_id)
            joined.discard(room)
        emit('rooms_left', {'rooms': rooms})

    # Event relay

    def _relay(self, event_name, game):
        def relay(change):
            self.broadcast_change(event_name, game, change)
        return relay

    def broadcast_change(self, event_name, game, change):
        """Emit one committed row change to the game's room"""
        if not self.socketio:
            return
        self.socketio.emit(
            event_name,
            {
                'type': event_name,
                'game': game,
                'event': change.event_type,
                'table': change.table,
                'row': change.row,
                'old': change.old,
                'timestamp': datetime.now(timezone.utc).isoformat(),
            },
            room=game
        )
        logger.debug(f"Relayed {change.table} {change.event_type} to {len(self.game_rooms[game])} sockets")

    def get_room_users_count(self, game):
        return len(self.game_rooms.get(game, set()))


# Global instance
websocket_manager = WebSocketManager()
