"""Per-guild playback state machine and the registry that owns it."""

import logging
from collections import deque
from collections.abc import Iterator

from .errors import AlreadyConnected, NotFound, NothingPlaying, RestError
from .models import (
    SearchResult,
    Track,
    VoiceServer,
    create_destroy_payload,
    create_pause_payload,
    create_play_payload,
    create_stop_payload,
    create_voice_state_payload,
    create_voice_update_payload,
)
from .outbound import Outbound
from .rest import NodeRest

logger = logging.getLogger(__name__)

VoiceSignature = tuple[str, str, str | None]


class Player:
    """Playback state for one guild.

    The head of ``queue`` is the track the node is playing (or was asked to
    play). Commands only enqueue node payloads; the node's TrackEnd event
    drives the queue forward.
    """

    def __init__(
        self,
        guild_id: str,
        channel_id: str,
        sender: Outbound,
        rest: NodeRest | None = None,
    ):
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.sender = sender
        self.rest = rest
        self.playing = False
        self.paused = False
        self.volume = 100
        self.queue: deque[Track] = deque()
        self.voice_signature: VoiceSignature | None = None

    @property
    def current(self) -> Track | None:
        return self.queue[0] if self.queue else None

    def send(self, payload: dict) -> bool:
        return self.sender.send(payload)

    def connect(self, session_id: str, server: VoiceServer) -> bool:
        """Hand the voice connection to the node.

        Returns False when the same session and server were already sent.
        """
        signature = (session_id, server.token, server.endpoint)
        if signature == self.voice_signature:
            return False

        self.voice_signature = signature
        self.send(create_voice_update_payload(self.guild_id, session_id, server))
        logger.info(f"Sent voice update for guild {self.guild_id} ({server.endpoint})")
        return True

    async def search(self, query: str, platform: str | None = None) -> SearchResult:
        """Search the node for tracks.

        Args:
            query: Search terms, or a URL when ``platform`` is None
            platform: Search prefix such as ``ytsearch``

        Returns:
            The node's search result
        """
        if self.rest is None:
            raise RestError("no audio node REST client configured")

        identifier = f"{platform}:{query}" if platform else query
        return await self.rest.load_tracks(identifier)

    def play(self, track: Track) -> bool:
        """Queue a track, starting it right away when the player is idle.

        Returns:
            True if the track started playing, False if it was only queued
        """
        self.queue.append(track)
        if self.playing:
            return False

        self.playing = True
        self.send(create_play_payload(self.guild_id, track))
        return True

    def pause(self, paused: bool) -> None:
        self.paused = paused
        self.send(create_pause_payload(self.guild_id, paused))

    def skip(self) -> Track:
        """Stop the current track; the node's TrackEnd advances the queue.

        Raises:
            NothingPlaying: If the queue is empty
        """
        if not self.queue:
            raise NothingPlaying(self.guild_id)

        self.send(create_stop_payload(self.guild_id))
        return self.queue[0]

    def advance(self) -> Track | None:
        """Drop the finished track and start the next one, if any."""
        if self.queue:
            self.queue.popleft()

        if not self.queue:
            self.playing = False
            return None

        track = self.queue[0]
        self.playing = True
        self.send(create_play_payload(self.guild_id, track))
        return track


class PlayerRegistry:
    """Exactly one ``Player`` per guild."""

    def __init__(self, gateway: Outbound, node: Outbound, rest: NodeRest | None = None):
        """Initialize the registry.

        Args:
            gateway: Sender for gateway voice-state payloads
            node: Sender for audio-node payloads
            rest: Track search client handed to every player
        """
        self.gateway = gateway
        self.node = node
        self.rest = rest
        self._players: dict[str, Player] = {}

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._players

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    def __len__(self) -> int:
        return len(self._players)

    def get(self, guild_id: str) -> Player | None:
        return self._players.get(guild_id)

    def join(self, guild_id: str, channel_id: str) -> Player:
        """Ask the gateway to join a voice channel and create the player.

        Raises:
            AlreadyConnected: If the guild already has a player
        """
        existing = self._players.get(guild_id)
        if existing is not None:
            raise AlreadyConnected(guild_id, existing.channel_id)

        self.gateway.send(create_voice_state_payload(guild_id, channel_id))
        player = Player(guild_id, channel_id, self.node, self.rest)
        self._players[guild_id] = player
        logger.info(f"Joining voice channel {channel_id} in guild {guild_id}")
        return player

    def destroy(self, guild_id: str) -> Player:
        """Leave voice, destroy the node-side player and forget it.

        Raises:
            NotFound: If the guild has no player
        """
        player = self._players.pop(guild_id, None)
        if player is None:
            raise NotFound(guild_id)

        self.gateway.send(create_voice_state_payload(guild_id, None))
        player.send(create_destroy_payload(guild_id))
        logger.info(f"Destroyed player for guild {guild_id}")
        return player

    def on_track_end(self, guild_id: str) -> Track | None:
        """Advance the guild's queue; returns the track that started, if any."""
        player = self._players.get(guild_id)
        if player is None:
            return None
        return player.advance()

    def rebind(self, node: Outbound) -> None:
        """Point every player at the node's current sender."""
        self.node = node
        for player in self._players.values():
            player.sender = node
