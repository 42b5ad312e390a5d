from flask import Blueprint, jsonify, request, current_app
from timesup import get_store, get_peer_host
from timesup.peer import generate_join_code, get_join_url
from timesup.services.game import GameError, NoSessionError, PlayerNotFound, ValidationError
from timesup.services.game.scoring import phase_title, summarize
from timesup.services.game.scheduler import schedule_turn_timer
from timesup.socketio_events import notify_state


session_api = Blueprint('session_api', __name__)


@session_api.errorhandler(GameError)
def handle_game_error(exc):
    status = 404 if isinstance(exc, (PlayerNotFound, NoSessionError)) else 400
    current_app.logger.info(f"[rejected] {request.method} {request.path}: {exc}")
    return jsonify({'error': str(exc)}), status


def _join_url(code):
    base = current_app.config.get('PUBLIC_BASE_URL') or request.host_url
    return get_join_url(base, code)


def _state_payload(store):
    with store.lock:
        payload = store.snapshot()
        session = store.session
        if not session:
            return payload
        active = store.get_active_player()
        upcoming = store.get_next_player()
        payload.update({
            'current_word': store.get_current_word() if session.current_turn else None,
            'active_player': active.to_dict() if active else None,
            'next_player': upcoming.to_dict() if upcoming else None,
            'can_skip': store.can_skip_current_phase(),
            'skip_penalty': store.get_current_phase_penalty(),
            'remaining_seconds': store.remaining_seconds(),
            'phase_title': phase_title(session.phase),
            'summary': summarize(session.scores),
            'join_url': _join_url(store.host_peer_id) if store.host_peer_id else None,
        })
    return payload


def _notify(reason):
    notify_state(get_store(), reason)


def _body():
    return request.get_json(silent=True) or {}


# ---- session ----

@session_api.route('/state', methods=['GET'])
def get_state():
    return jsonify(_state_payload(get_store()))


@session_api.route('/create', methods=['POST'])
def create_session():
    data = _body()
    store = get_store()
    settings = data.get('settings') or {}
    if not isinstance(settings, dict):
        raise ValidationError('settings must be an object')
    settings = dict(settings)
    settings.setdefault('words_per_player', current_app.config.get('DEFAULT_WORDS_PER_PLAYER', 5))
    settings.setdefault('round_duration', current_app.config.get('DEFAULT_ROUND_DURATION_SEC', 60))
    session = store.create_session(data.get('host_name'), settings)
    if session is None:
        return jsonify({'error': 'A session already exists; reset it first'}), 409
    return jsonify(_state_payload(store)), 201


@session_api.route('/reset', methods=['POST'])
def reset_session():
    get_store().reset()
    _notify('reset')
    return jsonify({'message': 'Session cleared'})


@session_api.route('/settings', methods=['PATCH'])
def update_settings():
    settings = get_store().update_settings(**_body())
    return jsonify(settings.to_dict())


# ---- players and words ----

@session_api.route('/players', methods=['POST'])
def add_player():
    player = get_store().add_player(_body().get('name'))
    get_peer_host().broadcast_roster()
    return jsonify(player.to_dict()), 201


@session_api.route('/players/<string:player_id>', methods=['DELETE'])
def remove_player(player_id):
    player = get_store().remove_player(player_id)
    get_peer_host().broadcast_roster()
    return jsonify({'message': f'{player.name} removed'})


@session_api.route('/players/<string:player_id>/current', methods=['POST'])
def set_current_player(player_id):
    get_store().set_current_player(player_id)
    return jsonify({'current_player_id': player_id})


@session_api.route('/players/<string:player_id>/words', methods=['POST'])
def add_word(player_id):
    store = get_store()
    word = store.validate_word(player_id, _body().get('word'))
    words = store.add_word(player_id, word)
    return jsonify({'player_id': player_id, 'words': words}), 201


@session_api.route('/players/<string:player_id>/words/<string:word>', methods=['DELETE'])
def remove_word(player_id, word):
    words = get_store().remove_word(player_id, word)
    return jsonify({'player_id': player_id, 'words': words})


@session_api.route('/players/<string:player_id>/finalize', methods=['POST'])
def finalize_words(player_id):
    store = get_store()
    store.validate_finalize(player_id)
    player = store.finalize_player_words(player_id)
    get_peer_host().broadcast_roster()
    return jsonify(player.to_dict())


# ---- teams ----

@session_api.route('/teams', methods=['POST'])
def go_to_teams():
    store = get_store()
    store.go_to_teams()
    _notify('teams')
    return jsonify(_state_payload(store))


@session_api.route('/teams/randomize', methods=['POST'])
def randomize_teams():
    store = get_store()
    store.randomize_teams()
    return jsonify(_state_payload(store))


@session_api.route('/teams/assign', methods=['POST'])
def assign_team():
    data = _body()
    player = get_store().assign_team(data.get('player_id'), data.get('team'))
    return jsonify(player.to_dict())


@session_api.route('/start', methods=['POST'])
def start_game():
    store = get_store()
    store.start_game()
    get_peer_host().broadcast_game_started()
    _notify('started')
    return jsonify(_state_payload(store))


# ---- turns ----

@session_api.route('/turn/start', methods=['POST'])
def start_turn():
    store = get_store()
    if store.start_turn():
        schedule_turn_timer(current_app._get_current_object(), store)
    return jsonify(_state_payload(store))


@session_api.route('/turn/correct', methods=['POST'])
def mark_correct():
    store = get_store()
    with store.lock:
        next_word = store.mark_correct()
        phase_complete = store.is_phase_complete()
        if phase_complete:
            # Queue exhausted: stop the clock and close the phase right away
            store.end_turn()
            store.next_phase()
    if phase_complete:
        _notify('phase-complete')
    return jsonify({'next_word': next_word, 'phase_complete': phase_complete, 'state': _state_payload(store)})


@session_api.route('/turn/skip', methods=['POST'])
def skip_word():
    store = get_store()
    next_word = store.skip_word()
    return jsonify({'next_word': next_word, 'state': _state_payload(store)})


@session_api.route('/turn/end', methods=['POST'])
def end_turn():
    store = get_store()
    store.end_turn()
    return jsonify(_state_payload(store))


@session_api.route('/turn/review/uncorrect', methods=['POST'])
def review_uncorrect():
    store = get_store()
    store.review_uncorrect_word(_body().get('word'))
    return jsonify(_state_payload(store))


@session_api.route('/turn/review/correct', methods=['POST'])
def review_correct():
    store = get_store()
    with store.lock:
        store.review_correct_word(_body().get('word'))
        phase_complete = store.is_phase_complete()
        if phase_complete:
            store.next_phase()
    if phase_complete:
        _notify('phase-complete')
    return jsonify(_state_payload(store))


# ---- phases ----

@session_api.route('/phase/next', methods=['POST'])
def next_phase():
    store = get_store()
    store.next_phase()
    _notify('phase-complete')
    return jsonify(_state_payload(store))


@session_api.route('/phase/resume', methods=['POST'])
def resume_play():
    store = get_store()
    store.resume_play()
    return jsonify(_state_payload(store))


# ---- multiplayer ----

@session_api.route('/multiplayer/enable', methods=['POST'])
def enable_multiplayer():
    store = get_store()
    if not store.session:
        raise NoSessionError()
    code = store.host_peer_id or generate_join_code(int(current_app.config.get('JOIN_CODE_LENGTH', 6)))
    store.enable_multiplayer(code)
    current_app.logger.info(f"[multiplayer] session={store.session.id} code={code}")
    return jsonify({'code': code, 'join_url': _join_url(code)})


@session_api.route('/multiplayer/disable', methods=['POST'])
def disable_multiplayer():
    get_store().disable_multiplayer()
    return jsonify({'message': 'Multiplayer disabled'})
