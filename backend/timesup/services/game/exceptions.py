"""
Game exceptions.

All rule violations raised by the store and the peer layer derive from
GameError so the HTTP and Socket.IO layers can turn them into error replies
in one place.
"""


class GameError(Exception):
    """Base class for every game error."""
    pass


class NoSessionError(GameError):
    """A command needs a session and none has been created."""
    def __init__(self, message="No active session"):
        super().__init__(message)


class ValidationError(GameError):
    """A recoverable, user-correctable rejection. The store is left unchanged."""
    pass


class InvalidStateTransition(GameError):
    """The command is not valid in the session's current status."""
    def __init__(self, command, status):
        self.command = command
        self.status = status
        super().__init__(f"Cannot {command} while session is in '{status}'")


class PlayerNotFound(GameError):
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class ProtocolError(GameError):
    """Malformed, unrecognised or misdirected peer message."""
    pass
