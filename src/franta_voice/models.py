"""Data models for gateway, voice and audio-node state."""

import sys
from dataclasses import dataclass, field
from typing import Any, Literal

LoadType = Literal[
    "TRACK_LOADED",
    "PLAYLIST_LOADED",
    "SEARCH_RESULT",
    "NO_MATCHES",
    "LOAD_FAILED",
]


@dataclass
class ResumeToken:
    """Everything needed to resume a gateway session."""

    credential: str
    resume_url: str = ""
    session_id: str = ""
    last_sequence: int = 0

    @property
    def can_resume(self) -> bool:
        return bool(self.resume_url and self.session_id)

    def observe(self, sequence: int) -> None:
        """Record a dispatch sequence number; never moves backwards."""
        if sequence > self.last_sequence:
            self.last_sequence = sequence

    def reset(self) -> None:
        """Forget the session, as after a full reconnect."""
        self.resume_url = ""
        self.session_id = ""
        self.last_sequence = 0

    def to_payload(self) -> dict:
        """Gateway resume payload (opcode 6)."""
        return {
            "op": 6,
            "d": {
                "token": self.credential,
                "session_id": self.session_id,
                "seq": self.last_sequence,
            },
        }


@dataclass(frozen=True)
class ReadyUser:
    """The bot's own user, as reported by READY."""

    id: str
    username: str = ""
    discriminator: str = "0"
    bot: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "ReadyUser":
        """Create from the ``user`` object of a READY dispatch."""
        return cls(
            id=str(data["id"]),
            username=data.get("username", ""),
            discriminator=data.get("discriminator", "0"),
            bot=data.get("bot", True),
        )

    @property
    def tag(self) -> str:
        if self.discriminator in ("", "0"):
            return self.username
        return f"{self.username}#{self.discriminator}"


@dataclass(frozen=True)
class VoiceState:
    """One user's voice connection within a guild."""

    guild_id: str
    user_id: str
    channel_id: str | None
    session_id: str

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceState":
        """Create from a VOICE_STATE_UPDATE payload."""
        channel_id = data.get("channel_id")
        return cls(
            guild_id=str(data["guild_id"]),
            user_id=str(data["user_id"]),
            channel_id=str(channel_id) if channel_id is not None else None,
            session_id=data["session_id"],
        )


@dataclass(frozen=True)
class VoiceServer:
    """Voice server assignment for a guild."""

    guild_id: str
    token: str
    endpoint: str | None

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceServer":
        """Create from a VOICE_SERVER_UPDATE payload."""
        return cls(
            guild_id=str(data["guild_id"]),
            token=data["token"],
            endpoint=data.get("endpoint"),
        )

    def to_dict(self) -> dict:
        """The ``event`` object forwarded to the audio node."""
        return {
            "token": self.token,
            "guild_id": self.guild_id,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class Track:
    """A playable track as returned by the audio node."""

    encoded: str
    title: str
    author: str
    uri: str
    identifier: str
    length: int
    position: int = 0
    is_stream: bool = False
    is_seekable: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        """Create from a ``{track, info}`` entry of a loadtracks response."""
        info = data["info"]
        return cls(
            encoded=data["track"],
            title=info.get("title", ""),
            author=info.get("author", ""),
            uri=info.get("uri", ""),
            identifier=info.get("identifier", ""),
            length=info.get("length", 0),
            position=info.get("position", 0),
            is_stream=info.get("isStream", False),
            is_seekable=info.get("isSeekable", True),
        )


@dataclass
class SearchResult:
    """Result of a track search on the audio node."""

    load_type: LoadType
    tracks: list[Track] = field(default_factory=list)
    playlist_name: str | None = None
    selected_track: int | None = None

    @property
    def is_playlist(self) -> bool:
        return self.load_type == "PLAYLIST_LOADED"

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResult":
        """Create from a loadtracks response body."""
        playlist = data.get("playlistInfo") or {}
        return cls(
            load_type=data.get("loadType", "NO_MATCHES"),
            tracks=[Track.from_dict(t) for t in data.get("tracks", [])],
            playlist_name=playlist.get("name"),
            selected_track=playlist.get("selectedTrack"),
        )


def _find_option(options: list[dict], name: str) -> Any:
    for option in options:
        if option.get("name") == name and "value" in option:
            return option["value"]
        nested = option.get("options")
        if nested:
            value = _find_option(nested, name)
            if value is not None:
                return value
    return None


@dataclass(frozen=True)
class Interaction:
    """An application-command interaction."""

    id: str
    application_id: str
    type: int
    token: str
    guild_id: str | None
    channel_id: str | None
    user_id: str
    name: str | None = None
    options: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Interaction":
        """Create from an INTERACTION_CREATE payload."""
        member = data.get("member") or {}
        user = member.get("user") or data.get("user") or {}
        command = data.get("data") or {}
        guild_id = data.get("guild_id")
        channel_id = data.get("channel_id")
        return cls(
            id=str(data["id"]),
            application_id=str(data["application_id"]),
            type=data["type"],
            token=data["token"],
            guild_id=str(guild_id) if guild_id is not None else None,
            channel_id=str(channel_id) if channel_id is not None else None,
            user_id=str(user["id"]),
            name=command.get("name"),
            options=command.get("options") or [],
        )

    def get_value(self, name: str) -> Any:
        """Look up an option value by name, searching subcommands too."""
        return _find_option(self.options, name)


# Gateway payload helpers

def create_identify_payload(token: str, intents: int, client_name: str = "franta-voice") -> dict:
    """Create payload for the gateway identify (opcode 2)."""
    return {
        "op": 2,
        "d": {
            "token": token,
            "intents": intents,
            "properties": {
                "os": sys.platform,
                "browser": client_name,
                "device": client_name,
            },
        },
    }


def create_heartbeat_payload() -> dict:
    """Create payload for a gateway heartbeat (opcode 1)."""
    return {"op": 1, "d": None}


def create_voice_state_payload(guild_id: str, channel_id: str | None) -> dict:
    """Create payload for a gateway voice state update (opcode 4)."""
    return {
        "op": 4,
        "d": {
            "guild_id": guild_id,
            "channel_id": channel_id,
            "self_mute": False,
            "self_deaf": False,
        },
    }


# Audio node payload helpers

def create_configure_resuming_payload(key: str, timeout: int) -> dict:
    """Create payload asking the node to keep state across reconnects."""
    return {"op": "configureResuming", "key": key, "timeout": timeout}


def create_voice_update_payload(guild_id: str, session_id: str, server: VoiceServer) -> dict:
    """Create payload handing the voice connection over to the node."""
    return {
        "op": "voiceUpdate",
        "guildId": guild_id,
        "sessionId": session_id,
        "event": server.to_dict(),
    }


def create_play_payload(guild_id: str, track: Track) -> dict:
    """Create payload to start a track."""
    return {"op": "play", "guildId": guild_id, "track": track.encoded}


def create_pause_payload(guild_id: str, paused: bool) -> dict:
    """Create payload to pause or resume playback."""
    return {"op": "pause", "guildId": guild_id, "pause": paused}


def create_stop_payload(guild_id: str) -> dict:
    """Create payload to stop the current track."""
    return {"op": "stop", "guildId": guild_id}


def create_destroy_payload(guild_id: str) -> dict:
    """Create payload to destroy the node-side player."""
    return {"op": "destroy", "guildId": guild_id}
