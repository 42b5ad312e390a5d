"""
Session data store: the single authoritative container for one game session.

Every command mutates ``self.session`` synchronously and then hands a full
snapshot to the ``persist`` callback (write-through). Validation failures
raise a GameError subclass before anything is touched, so a rejected command
leaves the store exactly as it was. Turn operations that make no sense in
the current state (no active turn, empty queue) are silent no-ops that
return None.

HTTP request threads, Socket.IO handlers and the turn timer all share one
store, so every command runs under ``store.lock``. Callers that need several
commands to happen as one step (end the turn, then close the phase) take the
same re-entrant lock around the whole sequence.
"""
import functools
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

from .exceptions import InvalidStateTransition, NoSessionError, PlayerNotFound, ValidationError
from .state import (
    ALLOWED_TIME_PENALTIES,
    GameSession,
    GameSettings,
    GameStatus,
    PhasePassSettings,
    PhaseScore,
    Player,
    Team,
    Turn,
    generate_id,
)
from .words import clean_word, pool_words, shuffle, split_teams

logger = logging.getLogger(__name__)

MIN_PLAYERS = 4
MAX_PHASES = 3

Snapshot = Dict[str, Any]


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)
    return wrapper


class GameStore:
    """Owns the session plus the host-side bookkeeping that is persisted with it."""

    def __init__(
        self,
        persist: Optional[Callable[[Snapshot], None]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        min_players: int = MIN_PLAYERS,
        max_phases: int = MAX_PHASES,
    ):
        self.session: Optional[GameSession] = None
        self.current_player_id: Optional[str] = None
        self.is_multiplayer_host = False
        self.host_peer_id: Optional[str] = None
        self.min_players = min_players
        self.max_phases = max_phases
        self._persist = persist
        self._rng = rng
        self._clock = clock
        self.lock = threading.RLock()

    # ---- persistence ----

    @_locked
    def snapshot(self) -> Snapshot:
        return {
            'session': self.session.to_dict() if self.session else None,
            'current_player_id': self.current_player_id,
            'is_multiplayer_host': self.is_multiplayer_host,
            'host_peer_id': self.host_peer_id,
        }

    @_locked
    def restore(self, snapshot: Optional[Snapshot]) -> bool:
        """Load a persisted snapshot. Anything unreadable falls back to no session."""
        self._clear()
        if not snapshot:
            return False
        try:
            session_data = snapshot.get('session')
            self.session = GameSession.from_dict(session_data) if session_data else None
            self.current_player_id = snapshot.get('current_player_id')
            self.is_multiplayer_host = bool(snapshot.get('is_multiplayer_host'))
            self.host_peer_id = snapshot.get('host_peer_id')
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"[snapshot-restore] discarding unreadable snapshot: {exc}")
            self._clear()
            return False
        logger.info(f"[snapshot-restore] session={self.session.id if self.session else None}")
        return self.session is not None

    def _commit(self) -> None:
        if self.session:
            self.session.updated_at = self._clock()
        if self._persist:
            self._persist(self.snapshot())

    def _clear(self) -> None:
        self.session = None
        self.current_player_id = None
        self.is_multiplayer_host = False
        self.host_peer_id = None

    # ---- guards ----

    def _require_session(self) -> GameSession:
        if not self.session:
            raise NoSessionError()
        return self.session

    def _require_status(self, command: str, *allowed: GameStatus) -> GameSession:
        session = self._require_session()
        if session.status not in allowed:
            raise InvalidStateTransition(command, session.status.value)
        return session

    def _find_player(self, player_id: str) -> Player:
        session = self._require_session()
        for p in session.players:
            if p.id == player_id:
                return p
        raise PlayerNotFound(player_id)

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError('Player name is required')
        return name

    @staticmethod
    def _coerce_settings(settings: Union[GameSettings, Dict[str, Any], None]) -> GameSettings:
        if isinstance(settings, GameSettings):
            coerced = settings
        else:
            try:
                coerced = GameSettings.from_dict(settings or {})
            except (AttributeError, TypeError, ValueError) as exc:
                raise ValidationError(f'Invalid settings: {exc}')
        if coerced.words_per_player < 1:
            raise ValidationError('Each player must contribute at least one word')
        if coerced.round_duration < 1:
            raise ValidationError('Round duration must be positive')
        for phase, pass_settings in coerced.phase_settings.items():
            if phase not in (1, 2, 3):
                raise ValidationError(f'Unknown phase {phase}')
            if pass_settings.time_penalty not in ALLOWED_TIME_PENALTIES:
                raise ValidationError(f'Time penalty must be one of {ALLOWED_TIME_PENALTIES}')
        return coerced

    # ---- session lifecycle ----

    @_locked
    def create_session(self, host_name: str, settings=None) -> Optional[GameSession]:
        if self.session:
            # Caller must reset first
            logger.info(f"[session-create-ignored] session={self.session.id} already exists")
            return None
        name = self._validate_name(host_name)
        coerced = self._coerce_settings(settings)
        host = Player(id=generate_id(), name=name, is_host=True)
        stamp = self._clock()
        self.session = GameSession(
            id=generate_id(),
            host_id=host.id,
            settings=coerced,
            players=[host],
            created_at=stamp,
            updated_at=stamp,
        )
        self.current_player_id = host.id
        logger.info(f"[session-create] session={self.session.id} host={host.id}")
        self._commit()
        return self.session

    @_locked
    def update_settings(self, **changes) -> GameSettings:
        session = self._require_status('change settings', GameStatus.WORDS)
        merged = session.settings.to_dict()
        if 'phase_settings' in changes:
            phases = merged['phase_settings']
            incoming = changes.pop('phase_settings') or {}
            if not isinstance(incoming, dict):
                raise ValidationError('phase_settings must map phase numbers to settings')
            for key, value in incoming.items():
                phases[str(key)] = value.to_dict() if isinstance(value, PhasePassSettings) else value
        merged.update(changes)
        session.settings = self._coerce_settings(merged)
        self._commit()
        return session.settings

    @_locked
    def reset(self) -> None:
        logger.info(f"[session-reset] session={self.session.id if self.session else None}")
        self._clear()
        self._commit()

    leave_session = reset
    end_game = reset

    # ---- players ----

    @_locked
    def add_player(self, name: str) -> Player:
        session = self._require_status('add players', GameStatus.WORDS)
        player = Player(id=generate_id(), name=self._validate_name(name))
        session.players.append(player)
        self.current_player_id = player.id
        self._commit()
        return player

    @_locked
    def remove_player(self, player_id: str) -> Player:
        session = self._require_status('remove players', GameStatus.WORDS)
        player = self._find_player(player_id)
        if player.is_host:
            raise ValidationError('The host cannot be removed')
        session.players = [p for p in session.players if p.id != player_id]
        if self.current_player_id == player_id:
            self.current_player_id = None
        self._commit()
        return player

    @_locked
    def set_current_player(self, player_id: Optional[str]) -> None:
        if player_id is not None:
            self._find_player(player_id)
        self.current_player_id = player_id
        self._commit()

    def get_player(self, player_id: str) -> Optional[Player]:
        if not self.session:
            return None
        return next((p for p in self.session.players if p.id == player_id), None)

    def get_team_players(self, team: Team) -> List[Player]:
        if not self.session:
            return []
        return [p for p in self.session.players if p.team is team]

    # ---- words ----

    def validate_word(self, player_id: str, word: str) -> str:
        """UI-level checks the store itself does not enforce on add_word."""
        player = self._find_player(player_id)
        word = clean_word(word)
        if not word:
            raise ValidationError('Word cannot be empty')
        if word in player.words:
            raise ValidationError(f"'{word}' is already in your list")
        if len(player.words) >= self.session.settings.words_per_player:
            raise ValidationError(f'Already have {self.session.settings.words_per_player} words')
        return word

    @_locked
    def add_word(self, player_id: str, word: str) -> List[str]:
        self._require_status('add words', GameStatus.WORDS)
        player = self._find_player(player_id)
        word = clean_word(word)
        if not word:
            raise ValidationError('Word cannot be empty')
        player.words.append(word)
        self._commit()
        return player.words

    @_locked
    def remove_word(self, player_id: str, word: str) -> List[str]:
        self._require_status('remove words', GameStatus.WORDS)
        player = self._find_player(player_id)
        player.words = [w for w in player.words if w != word]
        self._commit()
        return player.words

    def validate_finalize(self, player_id: str) -> None:
        player = self._find_player(player_id)
        missing = self.session.settings.words_per_player - len(player.words)
        if missing > 0:
            raise ValidationError(f'{player.name} still needs {missing} word(s)')

    @_locked
    def finalize_player_words(self, player_id: str) -> Player:
        self._require_status('finalize words', GameStatus.WORDS)
        player = self._find_player(player_id)
        player.words_completed = True
        self.current_player_id = None
        self._commit()
        return player

    # ---- teams ----

    def check_can_go_to_teams(self) -> None:
        session = self._require_status('form teams', GameStatus.WORDS)
        if len(session.players) < self.min_players:
            raise ValidationError(f'At least {self.min_players} players are required')
        pending = [p.name for p in session.players if not p.words_completed]
        if pending:
            raise ValidationError(f"Still waiting for words from: {', '.join(pending)}")

    @_locked
    def go_to_teams(self) -> GameSession:
        self.check_can_go_to_teams()
        session = self.session
        session.word_pool = shuffle(pool_words(session.players), self._rng)
        session.remaining_words = list(session.word_pool)
        session.status = GameStatus.TEAMS
        logger.info(f"[teams] session={session.id} pool={len(session.word_pool)} words")
        self._commit()
        return session

    @_locked
    def assign_team(self, player_id: str, team) -> Player:
        self._require_status('assign teams', GameStatus.TEAMS)
        player = self._find_player(player_id)
        try:
            player.team = Team(team) if team is not None else None
        except ValueError:
            raise ValidationError(f"Unknown team '{team}'")
        self._commit()
        return player

    @_locked
    def randomize_teams(self) -> GameSession:
        session = self._require_status('assign teams', GameStatus.TEAMS)
        team_a, team_b = split_teams(session.players, self._rng)
        for p in team_a:
            p.team = Team.A
        for p in team_b:
            p.team = Team.B
        session.players = team_a + team_b
        self._commit()
        return session

    @_locked
    def start_game(self) -> GameSession:
        session = self._require_status('start the game', GameStatus.TEAMS)
        if any(p.team is None for p in session.players):
            raise ValidationError('Every player must be on a team')
        if not self.get_team_players(Team.A) or not self.get_team_players(Team.B):
            raise ValidationError('Both teams need at least one player')
        # Second shuffle: the pool order stays fixed, only the play order changes
        session.remaining_words = shuffle(session.word_pool, self._rng)
        session.guessed_words = []
        session.status = GameStatus.PLAYING
        session.phase = 1
        session.current_team = Team.A
        session.current_turn = None
        session.last_turn = None
        session.team_a_player_index = 0
        session.team_b_player_index = 0
        session.team_a_score = 0
        session.team_b_score = 0
        session.scores = []
        logger.info(f"[game-start] session={session.id}")
        self._commit()
        return session

    # ---- turn engine ----

    def _resolve_player(self, team: Team) -> Optional[Player]:
        players = self.get_team_players(team)
        if not players:
            return None
        return players[self.session.player_index(team) % len(players)]

    def get_active_player(self) -> Optional[Player]:
        if not self.session:
            return None
        if self.session.current_turn:
            return self.get_player(self.session.current_turn.active_player_id)
        return self._resolve_player(self.session.current_team)

    def get_next_player(self) -> Optional[Player]:
        if not self.session:
            return None
        return self._resolve_player(self.session.current_team.other)

    def get_current_word(self) -> Optional[str]:
        if not self.session or not self.session.remaining_words:
            return None
        return self.session.remaining_words[0]

    def can_skip_current_phase(self) -> bool:
        if not self.session:
            return False
        pass_settings = self.session.settings.pass_settings(self.session.phase)
        return bool(pass_settings and pass_settings.enabled)

    def get_current_phase_penalty(self) -> int:
        if not self.can_skip_current_phase():
            return 0
        return self.session.settings.pass_settings(self.session.phase).time_penalty

    def remaining_seconds(self, at: Optional[float] = None) -> Optional[float]:
        """Seconds left on the active turn, net of skip penalties."""
        if not self.session or not self.session.current_turn:
            return None
        turn = self.session.current_turn
        at = self._clock() if at is None else at
        left = self.session.settings.round_duration - turn.accumulated_penalty - (at - turn.start_time)
        return max(0.0, left)

    @_locked
    def start_turn(self) -> Optional[Turn]:
        session = self.session
        if not session or session.status is not GameStatus.PLAYING or session.current_turn:
            return None
        player = self._resolve_player(session.current_team)
        if not player:
            return None
        session.current_turn = Turn(team=session.current_team, active_player_id=player.id, start_time=self._clock())
        logger.info(f"[turn-start] session={session.id} phase={session.phase} team={session.current_team.value} player={player.id}")
        self._commit()
        return session.current_turn

    @_locked
    def mark_correct(self) -> Optional[str]:
        """Score the head word. Returns the next word, or None once the queue is empty."""
        session = self.session
        if not session or not session.current_turn or not session.remaining_words:
            return None
        turn = session.current_turn
        word = session.remaining_words.pop(0)
        session.guessed_words.append(word)
        session.add_score(turn.team, 1)
        turn.correct_count += 1
        turn.found_words.append(word)
        self._commit()
        return session.remaining_words[0] if session.remaining_words else None

    @_locked
    def skip_word(self) -> Optional[str]:
        """Send the head word to the back of the queue. Returns the new head."""
        session = self.session
        if not session or not session.current_turn or not session.remaining_words:
            return None
        if not self.can_skip_current_phase():
            raise ValidationError(f'Skipping is not allowed in phase {session.phase}')
        turn = session.current_turn
        word = session.remaining_words.pop(0)
        session.remaining_words.append(word)
        turn.skipped_words.append(word)
        turn.accumulated_penalty += self.get_current_phase_penalty()
        self._commit()
        return session.remaining_words[0]

    @_locked
    def end_turn(self) -> Optional[Turn]:
        session = self.session
        if not session or not session.current_turn:
            return None
        turn = session.current_turn
        played = session.current_team
        if played is Team.A:
            session.team_a_player_index += 1
        else:
            session.team_b_player_index += 1
        session.current_team = played.other
        session.last_turn = turn
        session.current_turn = None
        logger.info(f"[turn-end] session={session.id} team={played.value} correct={turn.correct_count}")
        self._commit()
        return turn

    def is_phase_complete(self) -> bool:
        return bool(self.session and self.session.status is GameStatus.PLAYING and not self.session.remaining_words)

    def _reviewable_turn(self) -> Optional[Turn]:
        session = self.session
        if not session or session.status is not GameStatus.PLAYING or session.current_turn:
            return None
        return session.last_turn

    @_locked
    def review_uncorrect_word(self, word: str) -> Optional[str]:
        """Take back a point from the last turn and put the word back in play."""
        turn = self._reviewable_turn()
        if not turn:
            return None
        session = self.session
        if word not in turn.found_words or word not in session.guessed_words:
            raise ValidationError(f"'{word}' was not found during the last turn")
        turn.found_words.remove(word)
        turn.correct_count -= 1
        last = len(session.guessed_words) - 1 - session.guessed_words[::-1].index(word)
        del session.guessed_words[last]
        session.remaining_words.append(word)
        session.add_score(turn.team, -1)
        self._commit()
        return word

    @_locked
    def review_correct_word(self, word: str) -> Optional[str]:
        """Award a word skipped during the last turn that was actually guessed."""
        turn = self._reviewable_turn()
        if not turn:
            return None
        session = self.session
        if word not in turn.skipped_words or word in turn.found_words or word not in session.remaining_words:
            raise ValidationError(f"'{word}' was not skipped during the last turn")
        session.remaining_words.remove(word)
        session.guessed_words.append(word)
        session.add_score(turn.team, 1)
        turn.correct_count += 1
        turn.found_words.append(word)
        self._commit()
        return word

    # ---- phase controller ----

    @_locked
    def next_phase(self) -> Optional[PhaseScore]:
        session = self.session
        if not session or session.status not in (GameStatus.PLAYING, GameStatus.PHASE_SUMMARY):
            return None
        if session.current_turn:
            session.last_turn = session.current_turn
            session.current_turn = None
        result = PhaseScore(phase=session.phase, team_a=session.team_a_score, team_b=session.team_b_score)
        session.scores.append(result)
        if session.phase + 1 > self.max_phases:
            session.status = GameStatus.GAME_OVER
            logger.info(f"[game-over] session={session.id} scores={[s.to_dict() for s in session.scores]}")
        else:
            session.phase += 1
            session.remaining_words = shuffle(session.word_pool, self._rng)
            session.guessed_words = []
            session.team_a_score = 0
            session.team_b_score = 0
            session.team_a_player_index = 0
            session.team_b_player_index = 0
            session.current_team = Team.A
            session.status = GameStatus.PHASE_SUMMARY
            logger.info(f"[phase-next] session={session.id} phase={session.phase}")
        self._commit()
        return result

    @_locked
    def resume_play(self) -> GameSession:
        session = self._require_status('resume play', GameStatus.PHASE_SUMMARY)
        session.status = GameStatus.PLAYING
        self._commit()
        return session

    # ---- multiplayer ----

    @_locked
    def enable_multiplayer(self, peer_id: str) -> None:
        self.is_multiplayer_host = True
        self.host_peer_id = peer_id
        self._commit()

    @_locked
    def disable_multiplayer(self) -> None:
        self.is_multiplayer_host = False
        self.host_peer_id = None
        self._commit()

    def get_remote_player(self, peer_id: str) -> Optional[Player]:
        if not self.session or not peer_id:
            return None
        return next((p for p in self.session.players if p.peer_id == peer_id), None)

    @_locked
    def add_remote_player(self, name: str, peer_id: str) -> Player:
        session = self._require_status('add players', GameStatus.WORDS)
        player = Player(id=generate_id(), name=self._validate_name(name), is_remote=True, peer_id=peer_id)
        session.players.append(player)
        self._commit()
        return player

    @_locked
    def update_remote_player_words(self, peer_id: str, words: List[str]) -> Optional[Player]:
        player = self.get_remote_player(peer_id)
        if not player:
            return None
        player.words = list(words)
        self._commit()
        return player

    @_locked
    def finalize_remote_player_words(self, peer_id: str, words: List[str]) -> Optional[Player]:
        player = self.get_remote_player(peer_id)
        if not player:
            return None
        player.words = list(words)
        player.words_completed = True
        self._commit()
        return player

    @_locked
    def remove_remote_player(self, peer_id: str) -> Optional[Player]:
        player = self.get_remote_player(peer_id)
        if not player:
            return None
        self.session.players = [p for p in self.session.players if p.peer_id != peer_id]
        self._commit()
        return player

    @_locked
    def drop_incomplete_remote_players(self) -> List[Player]:
        """Forget remote players still entering words. Their connections did not survive a restart."""
        if not self.session or self.session.status is not GameStatus.WORDS:
            return []
        stale = [p for p in self.session.players if p.is_remote and not p.words_completed]
        if not stale:
            return []
        self.session.players = [p for p in self.session.players if p not in stale]
        logger.info(f"[remote-prune] session={self.session.id} dropped={[p.id for p in stale]}")
        self._commit()
        return stale
