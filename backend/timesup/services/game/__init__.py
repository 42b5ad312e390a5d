"""Game domain services: session store, turn engine, phases and timers.

This package holds the game rules and is imported by the HTTP routes and
the Socket.IO handlers, keeping transport concerns separated from core game
mechanics. Nothing in here talks to Flask except the scheduler.
"""

from .exceptions import (
    GameError,
    InvalidStateTransition,
    NoSessionError,
    PlayerNotFound,
    ProtocolError,
    ValidationError,
)
from .state import GamePhase, GameSession, GameSettings, GameStatus, PhasePassSettings, PhaseScore, Player, Team, Turn
from .store import GameStore

__all__ = [
    "GameError",
    "InvalidStateTransition",
    "NoSessionError",
    "PlayerNotFound",
    "ProtocolError",
    "ValidationError",
    "GamePhase",
    "GameSession",
    "GameSettings",
    "GameStatus",
    "PhasePassSettings",
    "PhaseScore",
    "Player",
    "Team",
    "Turn",
    "GameStore",
]
