"""Error taxonomy for franta-voice.

Connection-level errors (``ProtocolError``, ``SessionConnectionError``) are
recovered from by resuming; ``FatalSessionError`` is surfaced to the operator;
``StateError`` subclasses are returned to command callers and never stop the
event loop.
"""


class FrantaError(Exception):
    """Base class for all franta-voice errors."""


class ProtocolError(FrantaError):
    """A payload was malformed or arrived when it was not expected."""


class SessionConnectionError(FrantaError):
    """The transport to the gateway or the audio node failed."""


class FatalSessionError(FrantaError):
    """The gateway closed with a code that must not be retried."""

    def __init__(self, code: int | None, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"gateway closed the session (code={code}): {reason or 'no reason'}")


class StateError(FrantaError):
    """A player command is not valid in the current state."""


class AlreadyConnected(StateError):
    """A player already exists for the guild."""

    def __init__(self, guild_id: str, channel_id: str | None = None):
        self.guild_id = guild_id
        self.channel_id = channel_id
        super().__init__(f"already connected in guild {guild_id}")


class NotFound(StateError):
    """No player exists for the guild."""

    def __init__(self, guild_id: str):
        self.guild_id = guild_id
        super().__init__(f"no player in guild {guild_id}")


class NothingPlaying(StateError):
    """The player queue is empty."""

    def __init__(self, guild_id: str):
        self.guild_id = guild_id
        super().__init__(f"nothing is playing in guild {guild_id}")


class RestError(FrantaError):
    """An HTTP call to Discord or the audio node failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{message} (status {status_code})")
