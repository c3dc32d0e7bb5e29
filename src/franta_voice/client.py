"""The orchestrator: owns every session and drains the shared event queue."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect

from .commands import CommandRouter
from .config import FrantaConfig
from .errors import FatalSessionError, ProtocolError, SessionConnectionError
from .events import (
    DestroyPlayer,
    Event,
    InteractionCreate,
    NodeClosed,
    Ready,
    Reconnect,
    Resume,
    ResumeProps,
    SequenceUpdate,
    SessionFatal,
    TrackEnd,
    VoiceServerUpdate,
    VoiceStateUpdate,
)
from .gateway import GatewaySession
from .models import ReadyUser, ResumeToken
from .node import AudioNodeSession
from .player import PlayerRegistry
from .rest import DiscordRest, NodeRest
from .voice import VoiceCoordinator

logger = logging.getLogger(__name__)


class Client:
    """Single consumer of the event queue.

    Sessions, voice tracking and players are only ever mutated from ``run``,
    so handlers never race each other.
    """

    def __init__(
        self,
        config: FrantaConfig,
        gateway_connector: Callable[..., Awaitable] = ws_connect,
        node_connector: Callable[..., Awaitable] = ws_connect,
    ):
        """Initialize the client.

        Args:
            config: Loaded configuration
            gateway_connector: Websocket opener for the gateway
            node_connector: Websocket opener for the audio node
        """
        self.config = config
        self.events: asyncio.Queue[Event] = asyncio.Queue()
        self.resume = ResumeToken(credential=config.discord.token)
        self.user: ReadyUser | None = None

        self.gateway = GatewaySession(self.events, connector=gateway_connector)
        self.node = AudioNodeSession(
            self.events, config.lavalink, config.node_user_id, connector=node_connector
        )
        self.discord_rest = DiscordRest(config.discord.token, config.discord.app_id)
        self.node_rest = NodeRest(
            config.lavalink.host, config.lavalink.port, config.lavalink.password
        )

        self.players = PlayerRegistry(self.gateway.outbound, self.node.outbound, self.node_rest)
        self.voice = VoiceCoordinator(self.players, self.events, config.player.idle_timeout)
        self.commands = CommandRouter(
            self.players, self.voice, self.discord_rest, config.player.default_platform
        )

        self._node_reader: asyncio.Task | None = None
        self._retries: set[asyncio.Task] = set()
        self._handlers: dict[type, Callable[..., Awaitable[None]]] = {
            Ready: self._on_ready,
            ResumeProps: self._on_resume_props,
            SequenceUpdate: self._on_sequence,
            InteractionCreate: self._on_interaction,
            VoiceStateUpdate: self._on_voice_state,
            VoiceServerUpdate: self._on_voice_server,
            Resume: self._on_resume,
            Reconnect: self._on_reconnect,
            SessionFatal: self._on_session_fatal,
            TrackEnd: self._on_track_end,
            NodeClosed: self._on_node_closed,
            DestroyPlayer: self._on_destroy_player,
        }

    async def start(self) -> None:
        """Connect and identify on the gateway, then connect the audio node.

        Raises:
            SessionConnectionError: If either connection cannot be established
        """
        await self.gateway.connect(self.config.discord.gateway_url)
        self.gateway.identify(self.config.discord.token, self.config.discord.intents)
        self._node_reader = await self.node.connect()

    async def run(self) -> None:
        """Drain the event queue until a fatal session error.

        Raises:
            FatalSessionError: When the gateway closes with a fatal code
        """
        while True:
            event = await self.events.get()
            try:
                await self.handle_event(event)
            except FatalSessionError:
                raise
            except Exception as e:
                logger.error(f"Error handling {type(event).__name__}: {e}")

    async def login(self) -> None:
        """Start, run until a fatal error or cancellation, then stop."""
        try:
            await self.start()
            await self.run()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Tear down sessions, timers and HTTP clients."""
        for task in list(self._retries):
            task.cancel()
        self._retries.clear()
        self.voice.cancel_all()

        await self._cancel_node_reader()
        await self.gateway.shutdown()
        await self.node.close()
        await self.discord_rest.close()
        await self.node_rest.close()
        logger.info("Client stopped")

    async def handle_event(self, event: Event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"No handler for {type(event).__name__}")
            return
        await handler(event)

    def _retry_later(self, event: Event) -> None:
        """Re-enqueue ``event`` after ``reconnect_delay`` seconds."""
        task = asyncio.create_task(self._enqueue_after(event, self.config.reconnect_delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _enqueue_after(self, event: Event, delay: float) -> None:
        await asyncio.sleep(delay)
        self.events.put_nowait(event)

    async def _cancel_node_reader(self) -> None:
        reader, self._node_reader = self._node_reader, None
        if reader is None:
            return
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)

    # Gateway session lifecycle

    async def _on_resume(self, event: Resume) -> None:
        if not self.resume.can_resume:
            logger.warning("No session to resume, identifying from scratch")
            await self._connect_gateway(resume=False, retry=event)
            return
        await self._connect_gateway(resume=True, retry=event)

    async def _on_reconnect(self, event: Reconnect) -> None:
        self.resume.reset()
        await self._connect_gateway(resume=False, retry=event)

    async def _connect_gateway(self, resume: bool, retry: Event) -> None:
        try:
            if resume:
                logger.info(f"Resuming session at sequence {self.resume.last_sequence}")
                await self.gateway.connect(self.resume.resume_url, self.resume)
            else:
                await self.gateway.connect(self.config.discord.gateway_url)
                self.gateway.identify(self.config.discord.token, self.config.discord.intents)
        except (SessionConnectionError, ProtocolError) as e:
            logger.warning(
                f"Gateway connection failed: {e}; retrying in {self.config.reconnect_delay}s"
            )
            self._retry_later(retry)

    async def _on_session_fatal(self, event: SessionFatal) -> None:
        raise FatalSessionError(event.code, event.reason)

    async def _on_ready(self, event: Ready) -> None:
        self.user = event.user
        self.voice.bot_user_id = event.user.id
        self.node.user_id = event.user.id
        logger.info(f"Logged in as {event.user.tag} ({event.user.id})")

    async def _on_resume_props(self, event: ResumeProps) -> None:
        self.resume.resume_url = event.resume_url
        self.resume.session_id = event.session_id

    async def _on_sequence(self, event: SequenceUpdate) -> None:
        self.resume.observe(event.sequence)

    # Dispatches

    async def _on_interaction(self, event: InteractionCreate) -> None:
        await self.commands.handle(event.interaction)

    async def _on_voice_state(self, event: VoiceStateUpdate) -> None:
        self.voice.on_voice_state_update(event.state)

    async def _on_voice_server(self, event: VoiceServerUpdate) -> None:
        self.voice.on_voice_server_update(event.server)

    # Audio node

    async def _on_track_end(self, event: TrackEnd) -> None:
        track = self.players.on_track_end(event.guild_id)
        if track is not None:
            logger.info(f"Now playing {track.title!r} in guild {event.guild_id}")

    async def _on_node_closed(self, event: NodeClosed) -> None:
        await self._cancel_node_reader()
        await self.node.close()
        try:
            self._node_reader = await self.node.connect()
        except SessionConnectionError as e:
            logger.warning(
                f"Audio node reconnect failed: {e}; retrying in {self.config.reconnect_delay}s"
            )
            self._retry_later(event)
            return
        self.players.rebind(self.node.outbound)

    async def _on_destroy_player(self, event: DestroyPlayer) -> None:
        if not self.voice.claim_idle_destroy(event.guild_id, event.token):
            logger.debug(f"Ignoring stale idle timer for guild {event.guild_id}")
            return
        if event.guild_id not in self.players:
            return
        self.players.destroy(event.guild_id)
        logger.info(f"Left idle voice channel in guild {event.guild_id}")
