import os
import random
import sys
import pytest

# Ensure the backend root (containing the `timesup` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from timesup import create_app, db, socketio
from timesup.services.game import GameStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_WORDS_PER_PLAYER = 3
    DEFAULT_ROUND_DURATION_SEC = 30
    MIN_PLAYERS = 4
    MAX_PHASES = 3
    JOIN_CODE_LENGTH = 6
    SNAPSHOT_NAME = 'timesup-test-storage'


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import timesup.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def snapshots():
    return []


@pytest.fixture()
def store(clock, snapshots):
    return GameStore(persist=snapshots.append, rng=random.Random(7), clock=clock)


def fill_words(store, player, count=None, prefix=None):
    count = count if count is not None else store.session.settings.words_per_player
    prefix = prefix or player.name.lower()
    for i in range(count):
        store.add_word(player.id, f'{prefix}-{i}')
    store.finalize_player_words(player.id)


@pytest.fixture()
def words_store(store):
    """Alice (host) plus Bob, Charlie and David, each with 3 finalized words."""
    store.create_session('Alice', {'words_per_player': 3, 'round_duration': 30})
    fill_words(store, store.session.players[0])
    for name in ('Bob', 'Charlie', 'David'):
        fill_words(store, store.add_player(name))
    return store


@pytest.fixture()
def playing_store(words_store):
    words_store.go_to_teams()
    words_store.randomize_teams()
    words_store.start_game()
    return words_store
