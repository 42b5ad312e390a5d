import time
from typing import Set, Tuple

from timesup import socketio
from timesup.socketio_events import notify_state


_scheduled_turn_keys: Set[Tuple] = set()


def _turn_key(store):
    session = store.session
    if not session or not session.current_turn:
        return None
    turn = session.current_turn
    return (session.id, session.phase, turn.team.value, turn.active_player_id, turn.start_time)


def run_turn_timer(app, store, expected_key, sleep=time.sleep) -> bool:
    """Wait out the turn identified by ``expected_key`` and end it at zero.

    The key check and ``end_turn`` happen under the store lock, so a turn that
    was ended (and maybe replaced) by a request in the meantime is left alone.
    Returns True if this timer ended the turn.
    """
    hb = float(app.config.get('TIMER_HEARTBEAT_SEC', 1)) or 1.0
    while True:
        with app.app_context():
            with store.lock:
                if _turn_key(store) != expected_key:
                    app.logger.info(f"[timer-abort] session={expected_key[0]} turn ended elsewhere")
                    return False
                remaining = store.remaining_seconds()
                if remaining <= 0:
                    app.logger.info(f"[timer-fire] session={expected_key[0]} phase={expected_key[1]}")
                    store.end_turn()
                    notify_state(store, 'timer')
                    return True
        sleep(min(hb, remaining))


def schedule_turn_timer(app, store) -> None:
    """End the active turn once its clock runs out.

    - No-ops in TESTING mode
    - Ensures a single timer per turn
    - Re-reads the remaining time every heartbeat so skip penalties shorten the turn
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with store.lock:
        key = _turn_key(store)
        remaining = store.remaining_seconds()
    if key is None:
        return
    if key in _scheduled_turn_keys:
        app.logger.info(f"[timer-skip] session={key[0]} phase={key[1]} turn={key[4]} already scheduled")
        return
    _scheduled_turn_keys.add(key)
    app.logger.info(f"[timer-set] session={key[0]} phase={key[1]} turn={key[4]} remaining={remaining}s")

    def _worker(expected_key):
        try:
            run_turn_timer(app, store, expected_key)
        finally:
            _scheduled_turn_keys.discard(expected_key)

    socketio.start_background_task(_worker, key)
