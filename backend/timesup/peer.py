"""
Peer synchronization between the host and remote participants.

Star topology: one host, any number of remotes, remotes never talk to each
other. The transport (Socket.IO here) is assumed reliable and ordered and
hands over already-deserialized dicts; this module only deals with the
message union and its effect on the GameStore.

The host is the single source of truth. A remote's word list is an
optimistic cache that the host overwrites with whatever arrives in
``words-complete``.
"""
from dataclasses import dataclass
from enum import Enum
import logging
import random
import string
import time
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Union

from timesup.services.game.exceptions import GameError, InvalidStateTransition, ProtocolError, ValidationError
from timesup.services.game.state import GameStatus
from timesup.services.game.words import clean_word

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits

_MISSING = object()


def generate_join_code(length: int = 6, rng: Optional[random.Random] = None) -> str:
    """Short code for the host's listening endpoint. Not checked for collisions."""
    rng = rng or random
    return ''.join(rng.choices(JOIN_CODE_ALPHABET, k=length))


def get_join_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/join/{code}"


def _field(data: Dict[str, Any], key: str, kind, default=_MISSING):
    value = data.get(key, default)
    if value is _MISSING:
        raise ProtocolError(f"'{data.get('type')}' message is missing '{key}'")
    if value is not default and not isinstance(value, kind):
        raise ProtocolError(f"'{data.get('type')}' field '{key}' has the wrong type")
    return value


# ---- message union ----

@dataclass(frozen=True)
class PlayerJoin:
    TYPE: ClassVar[str] = 'player-join'
    name: str
    peer_id: str = ''

    def to_payload(self):
        return {'type': self.TYPE, 'name': self.name, 'peerId': self.peer_id}

    @classmethod
    def from_payload(cls, data):
        return cls(name=_field(data, 'name', str), peer_id=_field(data, 'peerId', str, ''))


@dataclass(frozen=True)
class PlayerConfirmed:
    TYPE: ClassVar[str] = 'player-confirmed'
    player_id: str
    words_per_player: Optional[int] = None

    def to_payload(self):
        payload = {'type': self.TYPE, 'playerId': self.player_id}
        if self.words_per_player is not None:
            payload['wordsPerPlayer'] = self.words_per_player
        return payload

    @classmethod
    def from_payload(cls, data):
        return cls(
            player_id=_field(data, 'playerId', str),
            words_per_player=_field(data, 'wordsPerPlayer', int, None),
        )


@dataclass(frozen=True)
class WordAdd:
    TYPE: ClassVar[str] = 'word-add'
    word: str

    def to_payload(self):
        return {'type': self.TYPE, 'word': self.word}

    @classmethod
    def from_payload(cls, data):
        return cls(word=_field(data, 'word', str))


@dataclass(frozen=True)
class WordRemove:
    TYPE: ClassVar[str] = 'word-remove'
    word: str

    def to_payload(self):
        return {'type': self.TYPE, 'word': self.word}

    @classmethod
    def from_payload(cls, data):
        return cls(word=_field(data, 'word', str))


@dataclass(frozen=True)
class WordsComplete:
    TYPE: ClassVar[str] = 'words-complete'
    words: Tuple[str, ...]

    def to_payload(self):
        return {'type': self.TYPE, 'words': list(self.words)}

    @classmethod
    def from_payload(cls, data):
        words = _field(data, 'words', list)
        if not all(isinstance(w, str) for w in words):
            raise ProtocolError("'words-complete' words must be strings")
        return cls(words=tuple(words))


@dataclass(frozen=True)
class RosterEntry:
    id: str
    name: str
    words_completed: bool
    word_count: int

    def to_payload(self):
        return {'id': self.id, 'name': self.name, 'wordsCompleted': self.words_completed, 'wordCount': self.word_count}

    @classmethod
    def from_payload(cls, data):
        if not isinstance(data, dict):
            raise ProtocolError("'sync-players' entries must be objects")
        return cls(
            id=_field(data, 'id', str),
            name=_field(data, 'name', str),
            words_completed=_field(data, 'wordsCompleted', bool),
            word_count=_field(data, 'wordCount', int),
        )


@dataclass(frozen=True)
class SyncPlayers:
    TYPE: ClassVar[str] = 'sync-players'
    players: Tuple[RosterEntry, ...]

    def to_payload(self):
        return {'type': self.TYPE, 'players': [p.to_payload() for p in self.players]}

    @classmethod
    def from_payload(cls, data):
        return cls(players=tuple(RosterEntry.from_payload(p) for p in _field(data, 'players', list)))


@dataclass(frozen=True)
class GameStarted:
    TYPE: ClassVar[str] = 'game-started'

    def to_payload(self):
        return {'type': self.TYPE}

    @classmethod
    def from_payload(cls, data):
        return cls()


@dataclass(frozen=True)
class ErrorMessage:
    TYPE: ClassVar[str] = 'error'
    message: str

    def to_payload(self):
        return {'type': self.TYPE, 'message': self.message}

    @classmethod
    def from_payload(cls, data):
        return cls(message=_field(data, 'message', str))


PeerMessage = Union[PlayerJoin, PlayerConfirmed, WordAdd, WordRemove, WordsComplete, SyncPlayers, GameStarted, ErrorMessage]

MESSAGE_TYPES = {
    cls.TYPE: cls
    for cls in (PlayerJoin, PlayerConfirmed, WordAdd, WordRemove, WordsComplete, SyncPlayers, GameStarted, ErrorMessage)
}

REMOTE_TO_HOST = (PlayerJoin, WordAdd, WordRemove, WordsComplete)
HOST_TO_REMOTE = (PlayerConfirmed, SyncPlayers, GameStarted, ErrorMessage)


def parse_message(data) -> PeerMessage:
    """Decode a wire dict into a message. Unknown tags are protocol errors."""
    if isinstance(data, tuple(MESSAGE_TYPES.values())):
        return data
    if not isinstance(data, dict):
        raise ProtocolError('Peer message must be an object')
    cls = MESSAGE_TYPES.get(data.get('type'))
    if cls is None:
        raise ProtocolError(f"Unknown message type '{data.get('type')}'")
    return cls.from_payload(data)


# ---- host side ----

class PeerHost:
    """Applies remote participants' messages to the host's GameStore.

    ``send(peer_id, payload)`` is supplied by the transport binding. Each
    message is handled to completion, reply included, under the store's lock
    before returning, so no other command interleaves with it.
    """

    def __init__(self, store, send: Callable[[str, dict], None]):
        self.store = store
        self._send = send
        self._peers: Dict[str, float] = {}

    @property
    def peers(self) -> List[str]:
        return list(self._peers)

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self._peers

    def connect(self, peer_id: str) -> None:
        self._peers[peer_id] = time.time()
        logger.info(f"[peer-connect] peer={peer_id} total={len(self._peers)}")

    def send(self, peer_id: str, message: PeerMessage) -> None:
        self._send(peer_id, message.to_payload())

    def receive(self, peer_id: str, data) -> Optional[PeerMessage]:
        with self.store.lock:
            try:
                message = parse_message(data)
                self._dispatch(peer_id, message)
            except GameError as exc:
                logger.warning(f"[peer-reject] peer={peer_id} {exc}")
                self.send(peer_id, ErrorMessage(str(exc)))
                return None
        return message

    def _dispatch(self, peer_id: str, message: PeerMessage) -> None:
        if isinstance(message, PlayerJoin):
            self._on_join(peer_id, message)
        elif isinstance(message, WordAdd):
            self._on_word_add(peer_id, message)
        elif isinstance(message, WordRemove):
            self._on_word_remove(peer_id, message)
        elif isinstance(message, WordsComplete):
            self._on_words_complete(peer_id, message)
        elif isinstance(message, HOST_TO_REMOTE):
            raise ProtocolError(f"'{message.TYPE}' is only sent by the host")
        else:
            raise ProtocolError(f'Unhandled message {message!r}')

    def _on_join(self, peer_id: str, message: PlayerJoin) -> None:
        existing = self.store.get_remote_player(peer_id)
        if existing:
            # Retried join from the same connection
            self.send(peer_id, self._confirmation(existing.id))
            return
        player = self.store.add_remote_player(message.name, peer_id)
        logger.info(f"[peer-join] peer={peer_id} player={player.id} name={player.name}")
        self.send(peer_id, self._confirmation(player.id))
        self.broadcast_roster()

    def _confirmation(self, player_id: str) -> PlayerConfirmed:
        return PlayerConfirmed(player_id=player_id, words_per_player=self.store.session.settings.words_per_player)

    def _editable_player(self, peer_id: str):
        player = self.store.get_remote_player(peer_id)
        if not player:
            raise ProtocolError('Join the game before sending words')
        status = self.store.session.status
        if status is not GameStatus.WORDS:
            raise InvalidStateTransition('change words', status.value)
        if player.words_completed:
            raise ValidationError('Words have already been submitted')
        return player

    def _on_word_add(self, peer_id: str, message: WordAdd) -> None:
        player = self._editable_player(peer_id)
        word = clean_word(message.word)
        if not word:
            raise ValidationError('Word cannot be empty')
        self.store.update_remote_player_words(peer_id, player.words + [word])
        self.broadcast_roster()

    def _on_word_remove(self, peer_id: str, message: WordRemove) -> None:
        player = self._editable_player(peer_id)
        self.store.update_remote_player_words(peer_id, [w for w in player.words if w != message.word])
        self.broadcast_roster()

    def _on_words_complete(self, peer_id: str, message: WordsComplete) -> None:
        self._editable_player(peer_id)
        words = [w for w in (clean_word(w) for w in message.words) if w]
        needed = self.store.session.settings.words_per_player
        if len(words) < needed:
            raise ValidationError(f'Need {needed} words, got {len(words)}')
        self.store.finalize_remote_player_words(peer_id, words)
        logger.info(f"[peer-words-complete] peer={peer_id} words={len(words)}")
        self.broadcast_roster()

    def disconnect(self, peer_id: str):
        """Forget a connection. A player who never finished their words is dropped."""
        self._peers.pop(peer_id, None)
        with self.store.lock:
            player = self.store.get_remote_player(peer_id)
            if player and not player.words_completed:
                self.store.remove_remote_player(peer_id)
                logger.info(f"[peer-drop] peer={peer_id} removed incomplete player={player.id}")
                self.broadcast_roster()
                return player
        logger.info(f"[peer-disconnect] peer={peer_id} total={len(self._peers)}")
        return None

    def roster(self) -> SyncPlayers:
        players = self.store.session.players if self.store.session else []
        return SyncPlayers(players=tuple(
            RosterEntry(id=p.id, name=p.name, words_completed=p.words_completed, word_count=len(p.words))
            for p in players
        ))

    def broadcast(self, message: PeerMessage) -> None:
        for peer_id in list(self._peers):
            self.send(peer_id, message)

    def broadcast_roster(self) -> None:
        self.broadcast(self.roster())

    def broadcast_game_started(self) -> None:
        self.broadcast(GameStarted())


# ---- remote side ----

class ClientStatus(str, Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    JOINING = 'joining'
    ENTERING = 'entering'
    DONE = 'done'
    ERROR = 'error'


class RemoteClient:
    """A remote participant's local mirror of its own join and word entry.

    Its word list is advisory: the host keeps whatever ``complete`` sends.
    An unanswered join is resent every ``join_timeout`` seconds, at most
    ``max_retries`` times, before the client gives up.
    """

    def __init__(
        self,
        send: Callable[[dict], None],
        peer_id: str = '',
        words_per_player: int = 5,
        join_timeout: float = 10.0,
        max_retries: int = 2,
        clock: Callable[[], float] = time.time,
    ):
        self._send = send
        self._clock = clock
        self.peer_id = peer_id
        self.words_per_player = words_per_player
        self.join_timeout = join_timeout
        self.max_retries = max_retries
        self.status = ClientStatus.CONNECTING
        self.name: Optional[str] = None
        self.player_id: Optional[str] = None
        self.words: List[str] = []
        self.roster: List[RosterEntry] = []
        self.game_started = False
        self.error: Optional[str] = None
        self._join_sent_at: Optional[float] = None
        self._join_attempts = 0

    def _emit(self, message: PeerMessage) -> None:
        self._send(message.to_payload())

    def _fail(self, reason: str) -> None:
        logger.info(f"[client-error] peer={self.peer_id} {reason}")
        self.status = ClientStatus.ERROR
        self.error = reason

    def on_open(self) -> None:
        if self.status is ClientStatus.CONNECTING:
            self.status = ClientStatus.CONNECTED

    def on_close(self) -> None:
        if self.status is not ClientStatus.DONE:
            self._fail('Connection lost')

    def join(self, name: str) -> None:
        name = (name or '').strip()
        if not name:
            raise ValidationError('Enter your name')
        if self.status is not ClientStatus.CONNECTED:
            raise InvalidStateTransition('join', self.status.value)
        self.name = name
        self.status = ClientStatus.JOINING
        self._join_attempts = 0
        self._send_join()

    def _send_join(self) -> None:
        self._join_attempts += 1
        self._join_sent_at = self._clock()
        self._emit(PlayerJoin(name=self.name, peer_id=self.peer_id))

    def check_join_timeout(self, at: Optional[float] = None) -> bool:
        """Resend an unanswered join when due. Returns True if a retry went out."""
        if self.status is not ClientStatus.JOINING:
            return False
        at = self._clock() if at is None else at
        if at - self._join_sent_at < self.join_timeout:
            return False
        if self._join_attempts > self.max_retries:
            self._fail('The host did not answer')
            return False
        self._send_join()
        return True

    def _require_entering(self, command: str) -> None:
        if self.status is not ClientStatus.ENTERING:
            raise InvalidStateTransition(command, self.status.value)

    def add_word(self, word: str) -> None:
        self._require_entering('add words')
        word = clean_word(word)
        if not word:
            raise ValidationError('Word cannot be empty')
        if word in self.words:
            raise ValidationError(f"'{word}' is already in your list")
        if len(self.words) >= self.words_per_player:
            raise ValidationError(f'Already have {self.words_per_player} words')
        self.words.append(word)
        self._emit(WordAdd(word=word))

    def remove_word(self, word: str) -> None:
        self._require_entering('remove words')
        self.words = [w for w in self.words if w != word]
        self._emit(WordRemove(word=word))

    def complete(self) -> None:
        self._require_entering('submit words')
        missing = self.words_per_player - len(self.words)
        if missing > 0:
            raise ValidationError(f'Still need {missing} word(s)')
        self.status = ClientStatus.DONE
        self._emit(WordsComplete(words=tuple(self.words)))

    def _on_host_error(self, reason: str) -> None:
        """Only a failed join is fatal. A rejected word edit leaves word entry open."""
        if self.status in (ClientStatus.ENTERING, ClientStatus.DONE):
            logger.info(f"[client-rejected] peer={self.peer_id} {reason}")
            self.error = reason
            # Host refused the submission; the player is still entering words
            self.status = ClientStatus.ENTERING
            return
        self._fail(reason)

    def receive(self, data) -> Optional[PeerMessage]:
        try:
            message = parse_message(data)
        except ProtocolError as exc:
            self._fail(str(exc))
            return None
        if isinstance(message, PlayerConfirmed):
            self.player_id = message.player_id
            if message.words_per_player:
                self.words_per_player = message.words_per_player
            if self.status is ClientStatus.JOINING:
                self.status = ClientStatus.ENTERING
        elif isinstance(message, ErrorMessage):
            self._on_host_error(message.message)
        elif isinstance(message, SyncPlayers):
            self.roster = list(message.players)
            mine = next((p for p in self.roster if p.id == self.player_id), None)
            if mine and mine.words_completed and self.status is ClientStatus.ENTERING:
                self.status = ClientStatus.DONE
        elif isinstance(message, GameStarted):
            self.game_started = True
        elif isinstance(message, REMOTE_TO_HOST):
            self._fail(f"Unexpected '{message.TYPE}' from host")
        else:
            self._fail(f'Unhandled message {message!r}')
        return message
