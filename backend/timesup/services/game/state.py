"""Game session data structures."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import time
import uuid

# 0 = setup, 1..3 = play phases
GamePhase = int

ALLOWED_TIME_PENALTIES = (0, 3, 5)


class Team(str, Enum):
    A = 'A'
    B = 'B'

    @property
    def other(self) -> 'Team':
        return Team.B if self is Team.A else Team.A


class GameStatus(str, Enum):
    WORDS = 'words'
    TEAMS = 'teams'
    PLAYING = 'playing'
    PHASE_SUMMARY = 'phase-summary'
    GAME_OVER = 'game-over'


def generate_id() -> str:
    return str(uuid.uuid4())


def now() -> float:
    return time.time()


@dataclass
class PhasePassSettings:
    """Whether skipping is allowed in a phase, and its cost in seconds."""
    enabled: bool = True
    time_penalty: int = 0

    def to_dict(self):
        return {'enabled': self.enabled, 'time_penalty': self.time_penalty}

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError(f'phase settings must be an object, got {type(data).__name__}')
        return cls(enabled=bool(data.get('enabled', True)), time_penalty=int(data.get('time_penalty', 0)))


def _default_phase_settings() -> Dict[int, PhasePassSettings]:
    return {phase: PhasePassSettings() for phase in (1, 2, 3)}


@dataclass
class GameSettings:
    words_per_player: int = 5
    round_duration: int = 60  # seconds
    phase_settings: Dict[int, PhasePassSettings] = field(default_factory=_default_phase_settings)

    def pass_settings(self, phase: GamePhase) -> Optional[PhasePassSettings]:
        return self.phase_settings.get(phase)

    def to_dict(self):
        return {
            'words_per_player': self.words_per_player,
            'round_duration': self.round_duration,
            'phase_settings': {str(k): v.to_dict() for k, v in self.phase_settings.items()},
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        if not isinstance(data, dict):
            raise TypeError(f'settings must be an object, got {type(data).__name__}')
        settings = cls()
        if 'words_per_player' in data:
            settings.words_per_player = int(data['words_per_player'])
        if 'round_duration' in data:
            settings.round_duration = int(data['round_duration'])
        phases = data.get('phase_settings') or {}
        if not isinstance(phases, dict):
            raise TypeError('phase_settings must map phase numbers to settings')
        for key, value in phases.items():
            if isinstance(value, PhasePassSettings):
                settings.phase_settings[int(key)] = value
            else:
                settings.phase_settings[int(key)] = PhasePassSettings.from_dict(value)
        return settings


@dataclass
class Player:
    id: str
    name: str
    words: List[str] = field(default_factory=list)
    team: Optional[Team] = None
    is_host: bool = False
    words_completed: bool = False
    is_remote: bool = False
    peer_id: Optional[str] = None  # transport address of a remote player

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'words': list(self.words),
            'team': self.team.value if self.team else None,
            'is_host': self.is_host,
            'words_completed': self.words_completed,
            'is_remote': self.is_remote,
            'peer_id': self.peer_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data['name'],
            words=list(data.get('words') or []),
            team=Team(data['team']) if data.get('team') else None,
            is_host=bool(data.get('is_host')),
            words_completed=bool(data.get('words_completed')),
            is_remote=bool(data.get('is_remote')),
            peer_id=data.get('peer_id'),
        )


@dataclass
class Turn:
    """One player's timed attempt."""
    team: Team
    active_player_id: str
    start_time: float
    correct_count: int = 0
    # May hold the same word more than once if it was skipped on several passes
    skipped_words: List[str] = field(default_factory=list)
    found_words: List[str] = field(default_factory=list)
    accumulated_penalty: int = 0

    def to_dict(self):
        return {
            'team': self.team.value,
            'active_player_id': self.active_player_id,
            'start_time': self.start_time,
            'correct_count': self.correct_count,
            'skipped_words': list(self.skipped_words),
            'found_words': list(self.found_words),
            'accumulated_penalty': self.accumulated_penalty,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            team=Team(data['team']),
            active_player_id=data['active_player_id'],
            start_time=float(data['start_time']),
            correct_count=int(data.get('correct_count', 0)),
            skipped_words=list(data.get('skipped_words') or []),
            found_words=list(data.get('found_words') or []),
            accumulated_penalty=int(data.get('accumulated_penalty', 0)),
        )


@dataclass(frozen=True)
class PhaseScore:
    phase: GamePhase
    team_a: int
    team_b: int

    def to_dict(self):
        return {'phase': self.phase, 'team_a': self.team_a, 'team_b': self.team_b}

    @classmethod
    def from_dict(cls, data):
        return cls(phase=int(data['phase']), team_a=int(data['team_a']), team_b=int(data['team_b']))


@dataclass
class GameSession:
    id: str
    host_id: str
    settings: GameSettings
    players: List[Player]
    status: GameStatus = GameStatus.WORDS
    phase: GamePhase = 0
    current_team: Team = Team.A

    # Canonical pool, fixed once teams are formed and replayed every phase
    word_pool: List[str] = field(default_factory=list)
    remaining_words: List[str] = field(default_factory=list)
    guessed_words: List[str] = field(default_factory=list)

    current_turn: Optional[Turn] = None
    last_turn: Optional[Turn] = None

    scores: List[PhaseScore] = field(default_factory=list)

    # Only ever incremented; the active player is index % team size
    team_a_player_index: int = 0
    team_b_player_index: int = 0

    # Running scores for the current phase only
    team_a_score: int = 0
    team_b_score: int = 0

    created_at: float = field(default_factory=now)
    updated_at: float = field(default_factory=now)

    def player_index(self, team: Team) -> int:
        return self.team_a_player_index if team is Team.A else self.team_b_player_index

    def score(self, team: Team) -> int:
        return self.team_a_score if team is Team.A else self.team_b_score

    def add_score(self, team: Team, points: int) -> None:
        if team is Team.A:
            self.team_a_score += points
        else:
            self.team_b_score += points

    def to_dict(self):
        return {
            'id': self.id,
            'host_id': self.host_id,
            'status': self.status.value,
            'phase': self.phase,
            'current_team': self.current_team.value,
            'settings': self.settings.to_dict(),
            'players': [p.to_dict() for p in self.players],
            'word_pool': list(self.word_pool),
            'remaining_words': list(self.remaining_words),
            'guessed_words': list(self.guessed_words),
            'current_turn': self.current_turn.to_dict() if self.current_turn else None,
            'last_turn': self.last_turn.to_dict() if self.last_turn else None,
            'scores': [s.to_dict() for s in self.scores],
            'team_a_player_index': self.team_a_player_index,
            'team_b_player_index': self.team_b_player_index,
            'team_a_score': self.team_a_score,
            'team_b_score': self.team_b_score,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            host_id=data['host_id'],
            status=GameStatus(data['status']),
            phase=int(data.get('phase', 0)),
            current_team=Team(data.get('current_team', 'A')),
            settings=GameSettings.from_dict(data.get('settings')),
            players=[Player.from_dict(p) for p in data.get('players') or []],
            word_pool=list(data.get('word_pool') or []),
            remaining_words=list(data.get('remaining_words') or []),
            guessed_words=list(data.get('guessed_words') or []),
            current_turn=Turn.from_dict(data.get('current_turn')),
            last_turn=Turn.from_dict(data.get('last_turn')),
            scores=[PhaseScore.from_dict(s) for s in data.get('scores') or []],
            team_a_player_index=int(data.get('team_a_player_index', 0)),
            team_b_player_index=int(data.get('team_b_player_index', 0)),
            team_a_score=int(data.get('team_a_score', 0)),
            team_b_score=int(data.get('team_b_score', 0)),
            created_at=float(data.get('created_at') or now()),
            updated_at=float(data.get('updated_at') or now()),
        )
