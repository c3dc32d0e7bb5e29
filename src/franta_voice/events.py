"""Typed events carried on the shared event queue."""

from dataclasses import dataclass
from typing import Union

from .models import Interaction, ReadyUser, VoiceServer, VoiceState


# Gateway events

@dataclass(frozen=True)
class Ready:
    user: ReadyUser


@dataclass(frozen=True)
class ResumeProps:
    """Resume URL and session id derived from READY."""

    resume_url: str
    session_id: str


@dataclass(frozen=True)
class SequenceUpdate:
    sequence: int


@dataclass(frozen=True)
class InteractionCreate:
    interaction: Interaction


@dataclass(frozen=True)
class VoiceStateUpdate:
    state: VoiceState


@dataclass(frozen=True)
class VoiceServerUpdate:
    server: VoiceServer


@dataclass(frozen=True)
class Resume:
    """The gateway connection ended; reattach with the saved session."""


@dataclass(frozen=True)
class Reconnect:
    """The gateway session is gone; identify from scratch."""


@dataclass(frozen=True)
class SessionFatal:
    """The gateway closed with a code that must not be retried."""

    code: int | None
    reason: str = ""


# Audio node events

@dataclass(frozen=True)
class TrackEnd:
    guild_id: str


@dataclass(frozen=True)
class NodeClosed:
    """The audio node connection ended."""


# Internal events

@dataclass(frozen=True)
class DestroyPlayer:
    """An idle timer fired for a guild."""

    guild_id: str
    token: int


Event = Union[
    Ready,
    ResumeProps,
    SequenceUpdate,
    InteractionCreate,
    VoiceStateUpdate,
    VoiceServerUpdate,
    Resume,
    Reconnect,
    SessionFatal,
    TrackEnd,
    NodeClosed,
    DestroyPlayer,
]
