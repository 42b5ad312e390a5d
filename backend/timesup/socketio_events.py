from flask import current_app, request
from flask_socketio import join_room, leave_room, emit
from timesup import socketio, get_peer_host, get_store
from timesup.peer import ErrorMessage
from typing import Dict, Any

NAMESPACE = '/ws'

# Socket context per connection: which game it joined
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def game_room(game_code: str) -> str:
    return f"game:{game_code.upper()}"


def send_to_peer(peer_id: str, payload: dict) -> None:
    """Transport hook for PeerHost: a peer's id is its Socket.IO sid."""
    socketio.emit('peer_message', payload, to=peer_id, namespace=NAMESPACE)


def notify_state(store, reason: str) -> None:
    """Tell the devices in the host's game room that the session changed."""
    if store.is_multiplayer_host and store.host_peer_id:
        socketio.emit('state_update', {'game_code': store.host_peer_id, 'reason': reason},
                      to=game_room(store.host_peer_id), namespace=NAMESPACE)


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    removed = get_peer_host().disconnect(_get_sid())
    current_app.logger.info(
        f"[ws-disconnect] sid={_get_sid()} game={ctx.get('game_code')} removed_player={removed.id if removed else None}"
    )


def handle_join_game(data):
    game_code = ((data or {}).get('game_code') or '').upper()
    if not game_code:
        emit('peer_message', ErrorMessage('game_code is required').to_payload())
        return
    store = get_store()
    if not store.session or not store.is_multiplayer_host or store.host_peer_id != game_code:
        current_app.logger.info(f"[ws-join-reject] sid={_get_sid()} game={game_code}")
        emit('peer_message', ErrorMessage('Game not found. Check the code.').to_payload())
        return
    room = game_room(game_code)
    join_room(room)
    _sid_to_ctx[_get_sid()] = {'game_code': game_code}
    get_peer_host().connect(_get_sid())
    emit('joined', {'room': room, 'peer_id': _get_sid()})


def handle_leave_game(data):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        emit('peer_message', ErrorMessage('Not in a game').to_payload())
        return
    room = game_room(ctx['game_code'])
    leave_room(room)
    get_peer_host().disconnect(_get_sid())
    emit('left', {'room': room})


def handle_message(data):
    if _get_sid() not in _sid_to_ctx:
        emit('peer_message', ErrorMessage('Join a game before sending messages').to_payload())
        return
    get_peer_host().receive(_get_sid(), data)


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('join_game', handle_join_game, namespace=namespace)
        socketio.on_event('leave_game', handle_leave_game, namespace=namespace)
        socketio.on_event('peer_message', handle_message, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
