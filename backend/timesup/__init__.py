from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
# Handle each client's events in arrival order, one at a time
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None, async_handlers=False)

EXTENSION_KEY = 'timesup'


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One authoritative game store per host process
    from timesup.services.game import GameStore
    from timesup.services.persistence import SnapshotRepository
    from timesup.peer import PeerHost
    from timesup.socketio_events import send_to_peer

    repository = SnapshotRepository(flask_app.config.get('SNAPSHOT_NAME', 'timesup-game-storage'))
    store = GameStore(
        persist=repository.save,
        min_players=int(flask_app.config.get('MIN_PLAYERS', 4)),
        max_phases=int(flask_app.config.get('MAX_PHASES', 3)),
    )
    flask_app.extensions[EXTENSION_KEY] = {
        'store': store,
        'repository': repository,
        'peer_host': PeerHost(store, send_to_peer),
        'restored': False,
    }

    from timesup.main import main
    flask_app.register_blueprint(main)

    from timesup.api.session import session_api
    flask_app.register_blueprint(session_api, url_prefix='/api/session')

    # Register Socket.IO event handlers
    from timesup.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('session-reset')
    def session_reset_command():
        """Creates tables if needed and clears the persisted session."""
        with flask_app.app_context():
            db.create_all()
            repository.clear()
            store.restore(None)
            print('Persisted session has been cleared!')

    flask_app.cli.add_command(session_reset_command)

    return flask_app


def get_store():
    """Return the app's GameStore, restoring the persisted snapshot on first use."""
    state = current_app.extensions[EXTENSION_KEY]
    store = state['store']
    with store.lock:
        if not state['restored']:
            state['restored'] = True
            store.restore(state['repository'].load())
            # Remote sockets do not survive a restart
            store.drop_incomplete_remote_players()
    return store


def get_peer_host():
    get_store()
    return current_app.extensions[EXTENSION_KEY]['peer_host']
