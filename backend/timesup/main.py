from flask import Blueprint, current_app, jsonify
from timesup import get_store

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': "Welcome to the Time's Up game server!"})


@main.route('/health')
def health():
    return jsonify({'status': 'healthy'})


@main.route('/join/<string:code>')
def resolve_join(code):
    """Target of the shared join URL / QR code. Tells the remote whether the code is live."""
    store = get_store()
    code = code.upper()
    if not store.session or not store.is_multiplayer_host or store.host_peer_id != code:
        return jsonify({'error': 'Game not found. Check the code.'}), 404
    return jsonify({
        'game_code': code,
        'status': store.session.status.value,
        'accepting_players': store.session.status.value == 'words',
        'words_per_player': store.session.settings.words_per_player,
        'join_timeout_sec': current_app.config.get('JOIN_TIMEOUT_SEC', 10),
        'join_max_retries': current_app.config.get('JOIN_MAX_RETRIES', 2),
    })
