import random
import threading

import pytest

from timesup.peer import (
    ClientStatus,
    ErrorMessage,
    GameStarted,
    PeerHost,
    PlayerConfirmed,
    PlayerJoin,
    RemoteClient,
    SyncPlayers,
    WordsComplete,
    generate_join_code,
    get_join_url,
    parse_message,
)
from timesup.services.game import GameStatus, ProtocolError, ValidationError


class Outbox:
    """Collects what the host sends, per peer."""

    def __init__(self):
        self.sent = []

    def __call__(self, peer_id, payload):
        self.sent.append((peer_id, payload))

    def to(self, peer_id, kind=None):
        return [p for pid, p in self.sent if pid == peer_id and (kind is None or p['type'] == kind)]


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def host(store, outbox):
    store.create_session('Alice', {'words_per_player': 3})
    store.enable_multiplayer('ABC123')
    return PeerHost(store, outbox)


def connect_client(host, peer_id, **kwargs):
    """Wire a RemoteClient to the host in-process; replies are delivered immediately."""
    host.connect(peer_id)
    client = RemoteClient(lambda payload: host.receive(peer_id, payload), peer_id=peer_id, **kwargs)
    original = host._send

    def deliver(pid, payload):
        original(pid, payload)
        if pid == peer_id:
            client.receive(payload)

    host._send = deliver
    client.on_open()
    return client


def test_join_code_shape():
    code = generate_join_code(rng=random.Random(1))
    assert len(code) == 6
    assert code.isalnum() and code == code.upper()
    assert get_join_url('http://host:5173/', code) == f'http://host:5173/join/{code}'


def test_parse_known_messages():
    assert parse_message({'type': 'player-join', 'name': 'Rita', 'peerId': 'p1'}) == PlayerJoin('Rita', 'p1')
    assert parse_message({'type': 'words-complete', 'words': ['a', 'b']}) == WordsComplete(('a', 'b'))
    assert parse_message({'type': 'game-started'}) == GameStarted()
    roster = parse_message({'type': 'sync-players', 'players': [
        {'id': '1', 'name': 'A', 'wordsCompleted': True, 'wordCount': 3}]})
    assert isinstance(roster, SyncPlayers) and roster.players[0].word_count == 3


@pytest.mark.parametrize('data', [
    {'type': 'word-shout', 'word': 'x'},
    {'word': 'x'},
    {'type': 'word-add'},
    {'type': 'word-add', 'word': 42},
    {'type': 'words-complete', 'words': ['a', 3]},
    'player-join',
])
def test_parse_rejects_bad_messages(data):
    with pytest.raises(ProtocolError):
        parse_message(data)


def test_payload_round_trip_uses_wire_names():
    payload = PlayerConfirmed(player_id='p', words_per_player=4).to_payload()
    assert payload == {'type': 'player-confirmed', 'playerId': 'p', 'wordsPerPlayer': 4}
    assert parse_message(payload) == PlayerConfirmed('p', 4)


def test_join_adds_remote_player_and_confirms(host, store, outbox):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita', 'peerId': 'peer-1'})
    player = store.get_remote_player('peer-1')
    assert player.name == 'Rita' and player.is_remote
    confirmed = outbox.to('peer-1', 'player-confirmed')
    assert confirmed == [{'type': 'player-confirmed', 'playerId': player.id, 'wordsPerPlayer': 3}]
    roster = outbox.to('peer-1', 'sync-players')[-1]
    assert [p['name'] for p in roster['players']] == ['Alice', 'Rita']


def test_repeated_join_is_idempotent(host, store, outbox):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    assert len(store.session.players) == 2
    ids = {p['playerId'] for p in outbox.to('peer-1', 'player-confirmed')}
    assert len(ids) == 1


def test_word_edits_apply_to_sender_only(host, store):
    host.connect('peer-1')
    host.connect('peer-2')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-2', {'type': 'player-join', 'name': 'Sam'})
    host.receive('peer-1', {'type': 'word-add', 'word': ' tiger '})
    host.receive('peer-1', {'type': 'word-add', 'word': 'lion'})
    host.receive('peer-1', {'type': 'word-remove', 'word': 'tiger'})
    assert store.get_remote_player('peer-1').words == ['lion']
    assert store.get_remote_player('peer-2').words == []


def test_words_complete_overwrites_host_copy(host, store):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-1', {'type': 'word-add', 'word': 'stale'})
    host.receive('peer-1', {'type': 'words-complete', 'words': ['a', 'b', 'c']})
    player = store.get_remote_player('peer-1')
    assert player.words == ['a', 'b', 'c']
    assert player.words_completed


def test_short_words_complete_is_rejected(host, store, outbox):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-1', {'type': 'words-complete', 'words': ['a']})
    assert not store.get_remote_player('peer-1').words_completed
    assert outbox.to('peer-1', 'error')


def test_words_before_join_are_an_error(host, store, outbox):
    host.connect('peer-9')
    host.receive('peer-9', {'type': 'word-add', 'word': 'tiger'})
    assert outbox.to('peer-9', 'error')
    assert len(store.session.players) == 1


def test_unknown_tag_gets_error_reply(host, outbox):
    host.connect('peer-1')
    assert host.receive('peer-1', {'type': 'teleport'}) is None
    assert outbox.to('peer-1') == [{'type': 'error', 'message': "Unknown message type 'teleport'"}]


def test_host_only_messages_are_rejected(host, outbox):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'game-started'})
    assert outbox.to('peer-1', 'error')


def test_join_refused_after_word_entry(host, store, outbox):
    store.session.status = GameStatus.TEAMS
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Late'})
    assert store.get_remote_player('peer-1') is None
    assert outbox.to('peer-1', 'error')


def test_disconnect_before_completion_removes_player(host, store):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-1', {'type': 'word-add', 'word': 'tiger'})
    removed = host.disconnect('peer-1')
    assert removed.name == 'Rita'
    assert store.get_remote_player('peer-1') is None
    assert [p.name for p in store.session.players] == ['Alice']
    assert not host.is_connected('peer-1')


def test_disconnect_after_completion_keeps_player(host, store):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    host.receive('peer-1', {'type': 'words-complete', 'words': ['a', 'b', 'c']})
    assert host.disconnect('peer-1') is None
    assert store.get_remote_player('peer-1').words == ['a', 'b', 'c']


def test_game_started_broadcast(host, outbox):
    host.connect('peer-1')
    host.connect('peer-2')
    host.broadcast_game_started()
    assert outbox.to('peer-1', 'game-started') and outbox.to('peer-2', 'game-started')


def test_remote_client_full_flow(host, store):
    client = connect_client(host, 'peer-1', words_per_player=5)
    assert client.status is ClientStatus.CONNECTED
    client.join('Rita')
    assert client.status is ClientStatus.ENTERING
    # Host told the client how many words it wants
    assert client.words_per_player == 3
    for word in ('a', 'b', 'c'):
        client.add_word(word)
    client.complete()
    assert client.status is ClientStatus.DONE
    player = store.get_player(client.player_id)
    assert player.words == ['a', 'b', 'c'] and player.words_completed
    client.on_close()
    assert client.status is ClientStatus.DONE


def test_remote_client_local_checks(host):
    client = connect_client(host, 'peer-1')
    client.join('Rita')
    client.add_word('a')
    with pytest.raises(ValidationError):
        client.add_word('a')
    with pytest.raises(ValidationError):
        client.complete()
    client.remove_word('a')
    assert client.words == []


def test_remote_client_goes_to_error_on_host_error(store):
    client = RemoteClient(lambda payload: None)
    client.on_open()
    client.join('Rita')
    client.receive(ErrorMessage('Game full').to_payload())
    assert client.status is ClientStatus.ERROR
    assert client.error == 'Game full'


def test_remote_client_connection_lost_mid_entry(host):
    client = connect_client(host, 'peer-1')
    client.join('Rita')
    client.on_close()
    assert client.status is ClientStatus.ERROR
    assert client.error == 'Connection lost'


def test_unanswered_join_retries_then_fails(clock):
    sent = []
    client = RemoteClient(sent.append, join_timeout=5, max_retries=2, clock=clock)
    client.on_open()
    client.join('Rita')
    assert len(sent) == 1
    clock.advance(4)
    assert not client.check_join_timeout()
    clock.advance(1)
    assert client.check_join_timeout()
    clock.advance(5)
    assert client.check_join_timeout()
    assert len(sent) == 3
    assert all(p['type'] == 'player-join' for p in sent)
    clock.advance(5)
    assert not client.check_join_timeout()
    assert client.status is ClientStatus.ERROR


def test_retried_join_lands_once_on_host(host, store, clock):
    host.connect('peer-1')
    delivered = []
    client = RemoteClient(delivered.append, peer_id='peer-1', join_timeout=1, clock=clock)
    client.on_open()
    client.join('Rita')
    clock.advance(1)
    client.check_join_timeout()
    for payload in delivered:
        host.receive('peer-1', payload)
    assert len([p for p in store.session.players if p.is_remote]) == 1


def test_rejected_word_edit_keeps_entry_open(host):
    client = connect_client(host, 'peer-1')
    client.join('Rita')
    client.receive(ErrorMessage("'tiger' is already in your list").to_payload())
    assert client.status is ClientStatus.ENTERING
    assert client.error == "'tiger' is already in your list"
    client.add_word('lion')
    assert client.words == ['lion']


def test_rejected_submission_reopens_word_entry(host, store):
    client = connect_client(host, 'peer-1')
    client.join('Rita')
    # Local limit out of step with the host's
    client.words_per_player = 1
    client.add_word('a')
    client.complete()
    assert client.status is ClientStatus.ENTERING
    assert client.error == 'Need 3 words, got 1'
    assert not store.get_remote_player('peer-1').words_completed


def test_roster_confirms_submission(host):
    client = connect_client(host, 'peer-1')
    client.join('Rita')
    for word in ('a', 'b', 'c'):
        client.add_word(word)
    client.complete()
    # A late rejection of an earlier edit is settled by the next roster
    client.receive(ErrorMessage('stale').to_payload())
    assert client.status is ClientStatus.ENTERING
    host.broadcast_roster()
    assert client.status is ClientStatus.DONE


def test_receive_waits_for_store_lock(host, store):
    host.connect('peer-1')
    host.receive('peer-1', {'type': 'player-join', 'name': 'Rita'})
    with store.lock:
        worker = threading.Thread(target=host.receive, args=('peer-1', {'type': 'word-add', 'word': 'tiger'}))
        worker.start()
        worker.join(0.2)
        assert worker.is_alive()
        assert store.get_remote_player('peer-1').words == []
    worker.join(2)
    assert not worker.is_alive()
    assert store.get_remote_player('peer-1').words == ['tiger']


def test_concurrent_peers_keep_every_word(host, store):
    peers = ['peer-1', 'peer-2', 'peer-3']
    for peer_id in peers:
        host.connect(peer_id)
        host.receive(peer_id, {'type': 'player-join', 'name': peer_id})

    def send_words(peer_id):
        for i in range(100):
            host.receive(peer_id, {'type': 'word-add', 'word': f'{peer_id}-{i}'})

    workers = [threading.Thread(target=send_words, args=(p,)) for p in peers]
    for w in workers:
        w.start()
    for w in workers:
        w.join(10)
    for peer_id in peers:
        assert store.get_remote_player(peer_id).words == [f'{peer_id}-{i}' for i in range(100)]
