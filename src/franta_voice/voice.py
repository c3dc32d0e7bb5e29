"""Voice-state tracking, voice-connect correlation and idle cleanup.

The gateway reports a voice connection in two halves: the bot's own
VoiceStateUpdate (carrying the session id) and a VoiceServerUpdate (carrying
the token and endpoint). ``VoiceCoordinator`` stores both and forwards them to
the node once, when a player for the guild also exists.

Idle cleanup is a timer task per guild. Each timer carries a token; when it
fires it only enqueues ``DestroyPlayer(guild_id, token)``, and the drain loop
destroys the player only if ``claim_idle_destroy`` confirms the token is still
pending. Cancelling a timer therefore wins even when its event is queued.
"""

import asyncio
import logging
from dataclasses import dataclass

from .events import DestroyPlayer, Event
from .models import VoiceServer, VoiceState
from .player import PlayerRegistry

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 300.0


class VoiceStateStore:
    """Voice states of every user, keyed by ``(guild_id, user_id)``."""

    def __init__(self):
        self._states: dict[tuple[str, str], VoiceState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, guild_id: str, user_id: str) -> VoiceState | None:
        return self._states.get((guild_id, user_id))

    def upsert(self, state: VoiceState) -> VoiceState | None:
        """Store a state, returning the one it replaced."""
        key = (state.guild_id, state.user_id)
        previous = self._states.get(key)
        self._states[key] = state
        return previous

    def remove(self, guild_id: str, user_id: str) -> VoiceState | None:
        return self._states.pop((guild_id, user_id), None)

    def occupants(self, guild_id: str, channel_id: str) -> list[str]:
        """User ids currently in a voice channel."""
        return [
            state.user_id
            for (guild, _), state in self._states.items()
            if guild == guild_id and state.channel_id == channel_id
        ]


@dataclass
class PendingIdleDestroy:
    guild_id: str
    task: asyncio.Task
    token: int


class VoiceCoordinator:
    """Correlates voice updates into node voice-connects and runs idle timers."""

    def __init__(
        self,
        players: PlayerRegistry,
        events: "asyncio.Queue[Event]",
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ):
        """Initialize the coordinator.

        Args:
            players: Registry whose players receive voice-connects
            events: Shared queue that idle timers enqueue ``DestroyPlayer`` onto
            idle_timeout: Seconds an abandoned player survives
        """
        self.players = players
        self.events = events
        self.idle_timeout = idle_timeout
        self.states = VoiceStateStore()
        self.servers: dict[str, VoiceServer] = {}
        self.bot_user_id: str | None = None
        self.pending: dict[str, PendingIdleDestroy] = {}
        self._next_token = 0

    def bot_state(self, guild_id: str) -> VoiceState | None:
        """The bot's own voice state in a guild."""
        if self.bot_user_id is None:
            return None
        return self.states.get(guild_id, self.bot_user_id)

    def user_channel(self, guild_id: str, user_id: str) -> str | None:
        state = self.states.get(guild_id, user_id)
        return state.channel_id if state is not None else None

    def on_voice_state_update(self, state: VoiceState) -> None:
        if self.bot_user_id is not None and state.user_id == self.bot_user_id:
            self._on_bot_state(state)
        else:
            self._on_user_state(state)

    def _on_bot_state(self, state: VoiceState) -> None:
        guild_id = state.guild_id

        if state.channel_id is None:
            self.states.remove(guild_id, state.user_id)
            self.cancel_idle_destroy(guild_id)
            if guild_id in self.players:
                self.players.destroy(guild_id)
            logger.info(f"Left voice in guild {guild_id}")
            return

        self.states.upsert(state)
        player = self.players.get(guild_id)
        if player is not None:
            player.channel_id = state.channel_id

        # Only users seen since startup are tracked, so an apparently empty
        # channel never starts a timer.
        others = [u for u in self.states.occupants(guild_id, state.channel_id) if u != state.user_id]
        if others:
            self.cancel_idle_destroy(guild_id)

        self.attempt_connection(guild_id)

    def _on_user_state(self, state: VoiceState) -> None:
        guild_id = state.guild_id
        if state.channel_id is None:
            previous = self.states.remove(guild_id, state.user_id)
        else:
            previous = self.states.upsert(state)

        bot = self.bot_state(guild_id)
        if bot is None or bot.channel_id is None:
            return

        was_with_bot = previous is not None and previous.channel_id == bot.channel_id
        is_with_bot = state.channel_id == bot.channel_id

        if was_with_bot and not is_with_bot:
            if self.states.occupants(guild_id, bot.channel_id) == [bot.user_id]:
                self.schedule_idle_destroy(guild_id)
        elif is_with_bot and not was_with_bot:
            self.cancel_idle_destroy(guild_id)

    def on_voice_server_update(self, server: VoiceServer) -> None:
        self.servers[server.guild_id] = server
        self.attempt_connection(server.guild_id)

    def attempt_connection(self, guild_id: str) -> bool:
        """Send the node voice update once every prerequisite is known.

        Returns:
            True if a voice update was sent
        """
        server = self.servers.get(guild_id)
        bot = self.bot_state(guild_id)
        player = self.players.get(guild_id)

        if server is None or not server.endpoint:
            return False
        if bot is None or bot.channel_id is None:
            return False
        if player is None:
            return False

        return player.connect(bot.session_id, server)

    def schedule_idle_destroy(self, guild_id: str) -> PendingIdleDestroy:
        """Start the idle timer for a guild; an already running timer is kept."""
        pending = self.pending.get(guild_id)
        if pending is not None:
            return pending

        self._next_token += 1
        token = self._next_token
        task = asyncio.create_task(self._idle_timer(guild_id, token))
        pending = PendingIdleDestroy(guild_id, task, token)
        self.pending[guild_id] = pending
        logger.info(f"Voice channel empty in guild {guild_id}, leaving in {self.idle_timeout:.0f}s")
        return pending

    async def _idle_timer(self, guild_id: str, token: int) -> None:
        await asyncio.sleep(self.idle_timeout)
        self.events.put_nowait(DestroyPlayer(guild_id, token))

    def cancel_idle_destroy(self, guild_id: str) -> bool:
        pending = self.pending.pop(guild_id, None)
        if pending is None:
            return False

        pending.task.cancel()
        logger.debug(f"Cancelled idle timer for guild {guild_id}")
        return True

    def claim_idle_destroy(self, guild_id: str, token: int) -> bool:
        """Consume a fired timer; False if it was cancelled or replaced."""
        pending = self.pending.get(guild_id)
        if pending is None or pending.token != token:
            return False

        del self.pending[guild_id]
        return True

    def cancel_all(self) -> None:
        for guild_id in list(self.pending):
            self.cancel_idle_destroy(guild_id)
