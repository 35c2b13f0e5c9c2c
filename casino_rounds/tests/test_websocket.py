from flask_jwt_extended import create_access_token

from casino_rounds.services.websocket_manager import websocket_manager
from casino_rounds.tests.test_api import BaseTestCase, T0


def _events(received, name):
    return [message['args'][0] for message in received if message['name'] == name]


class TestWebSocketRelay(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.clients = []

    def tearDown(self):
        for client in self.clients:
            if client.is_connected():
                client.disconnect()
        super().tearDown()

    def _connect(self, **kwargs):
        client = self.socketio.test_client(self.app, **kwargs)
        self.clients.append(client)
        self.assertTrue(client.is_connected())
        return client

    def test_spectator_connects_without_token(self):
        client = self._connect()
        status = _events(client.get_received(), 'connection_status')
        self.assertEqual(status, [{'status': 'connected', 'user_id': None}])

    def test_token_identifies_player(self):
        profile = self._create_profile()
        token = create_access_token(identity=profile)
        client = self._connect(auth={'token': token})
        status = _events(client.get_received(), 'connection_status')
        self.assertEqual(status[0]['user_id'], profile.id)

        query_client = self._connect(query_string=f'token={token}')
        self.assertEqual(_events(query_client.get_received(), 'connection_status')[0]['user_id'], profile.id)

    def test_bad_token_connects_as_spectator(self):
        client = self._connect(auth={'token': 'not-a-jwt'})
        self.assertIsNone(_events(client.get_received(), 'connection_status')[0]['user_id'])

    def test_round_change_reaches_joined_room(self):
        client = self._connect()
        client.emit('join_room', {'room': 'roulette'})
        self.assertEqual(_events(client.get_received(), 'room_joined'), [{'room': 'roulette', 'success': True}])
        self.assertEqual(websocket_manager.get_room_users_count('roulette'), 1)

        result = self._tick('roulette', T0)
        changes = _events(client.get_received(), 'round_change')
        self.assertEqual(len(changes), 1)
        change = changes[0]
        self.assertEqual(change['game'], 'roulette')
        self.assertEqual(change['event'], 'insert')
        self.assertEqual(change['table'], 'roulette_rounds')
        self.assertEqual(change['row']['id'], result['round_id'])
        self.assertEqual(change['row']['status'], 'betting')
        # the seed stays hidden until the round has ended
        self.assertIsNone(change['row']['server_seed'])

    def test_other_rooms_do_not_receive(self):
        client = self._connect()
        client.emit('join_room', {'room': 'crash'})
        client.get_received()

        self._tick('roulette', T0)
        self.assertEqual(_events(client.get_received(), 'round_change'), [])

    def test_leave_room_stops_updates(self):
        client = self._connect()
        client.emit('join_room', {'room': 'roulette'})
        client.emit('leave_room', {'room': 'roulette'})
        self.assertEqual(_events(client.get_received(), 'rooms_left'), [{'rooms': ['roulette']}])

        self._tick('roulette', T0)
        self.assertEqual(_events(client.get_received(), 'round_change'), [])

    def test_unknown_room(self):
        client = self._connect()
        client.emit('join_room', {'room': 'poker'})
        errors = _events(client.get_received(), 'error')
        self.assertEqual(errors, [{'message': "Unknown room 'poker'"}])
