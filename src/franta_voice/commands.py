"""Slash-command definitions and the interaction router."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .errors import NothingPlaying, RestError, StateError
from .models import Interaction
from .player import PlayerRegistry
from .rest import DiscordRest
from .voice import VoiceCoordinator

logger = logging.getLogger(__name__)

# Application command option types
OPTION_STRING = 3
OPTION_BOOLEAN = 5

PLATFORMS = {
    "YouTube": "ytsearch",
    "YouTube Music": "ytmsearch",
    "SoundCloud": "scsearch",
}


def _command(name: str, description: str, name_cs: str, description_cs: str, options=None) -> dict:
    command = {
        "type": 1,
        "name": name,
        "description": description,
        "name_localizations": {"cs": name_cs},
        "description_localizations": {"cs": description_cs},
    }
    if options:
        command["options"] = options
    return command


COMMANDS: list[dict] = [
    _command("join", "joins the voice channel", "připojit", "připojí bota do roomky"),
    _command("leave", "leaves the voice channel", "odpojit", "odpojí bota z roomky"),
    _command(
        "play",
        "plays a song",
        "hraj",
        "přehraje song",
        options=[
            {
                "type": OPTION_STRING,
                "name": "query",
                "description": "song to play",
                "required": True,
            },
            {
                "type": OPTION_STRING,
                "name": "platform",
                "description": "platform to search on",
                "required": False,
                "choices": [{"name": n, "value": v} for n, v in PLATFORMS.items()],
            },
        ],
    ),
    _command(
        "pause",
        "pauses the current song",
        "pauza",
        "pauzuje přehrávání",
        options=[
            {
                "type": OPTION_BOOLEAN,
                "name": "paused",
                "description": "pause or unpause",
                "required": True,
            },
        ],
    ),
    _command("skip", "skips the current song", "přeskočit", "přeskočí song"),
]


def format_time(seconds: int) -> str:
    """Format a duration as ``MM:SS``, or ``HH:MM:SS`` past an hour."""
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02}:{minutes:02}:{secs:02}"
    return f"{minutes:02}:{secs:02}"


async def register_commands(
    rest: DiscordRest,
    guild_id: str | None = None,
    delay: float = 1.0,
) -> int:
    """Register every command globally or for one guild.

    Global registration pauses ``delay`` seconds between commands to stay
    under the rate limit.

    Returns:
        Number of commands registered
    """
    registered = 0
    for command in COMMANDS:
        try:
            await rest.register_command(command, guild_id)
            registered += 1
            logger.info(f"Registered /{command['name']}")
        except RestError as e:
            logger.error(f"Failed to register /{command['name']}: {e}")

        if guild_id is None:
            await asyncio.sleep(delay)
    return registered


Handler = Callable[[Interaction], Awaitable[str]]

NOT_IN_VOICE = "You need to be in a voice channel."
NOT_SAME_CHANNEL = "You need to be in the same voice channel."
NOTHING_PLAYING = "Nothing is playing."


class CommandRouter:
    """Runs slash commands against the player registry.

    Known commands are acknowledged first; the handler's text then replaces
    the deferred response.
    """

    def __init__(
        self,
        players: PlayerRegistry,
        voice: VoiceCoordinator,
        rest: DiscordRest,
        default_platform: str = "ytsearch",
    ):
        self.players = players
        self.voice = voice
        self.rest = rest
        self.default_platform = default_platform
        self._handlers: dict[str, Handler] = {
            "join": self.join,
            "leave": self.leave,
            "play": self.play,
            "pause": self.pause,
            "skip": self.skip,
        }

    async def handle(self, interaction: Interaction) -> str | None:
        """Acknowledge and answer one interaction.

        Returns:
            The reply text, or None for commands this router does not know
        """
        handler = self._handlers.get(interaction.name or "")
        if handler is None:
            logger.debug(f"Ignoring unknown command {interaction.name!r}")
            return None

        await self.rest.ack(interaction)

        if interaction.guild_id is None:
            content = "This command only works in a server."
        else:
            try:
                content = await handler(interaction)
            except StateError as e:
                logger.warning(f"/{interaction.name} rejected: {e}")
                content = NOTHING_PLAYING if isinstance(e, NothingPlaying) else str(e)
            except RestError as e:
                logger.error(f"/{interaction.name} failed: {e}")
                content = "Something went wrong while searching."

        await self.rest.edit_original(interaction, content)
        return content

    def _user_channel(self, interaction: Interaction) -> str | None:
        return self.voice.user_channel(interaction.guild_id, interaction.user_id)

    async def join(self, interaction: Interaction) -> str:
        channel_id = self._user_channel(interaction)
        if channel_id is None:
            return NOT_IN_VOICE

        player = self.players.get(interaction.guild_id)
        if player is not None:
            return f"Already connected in <#{player.channel_id}>."

        self.players.join(interaction.guild_id, channel_id)
        return f"Joined <#{channel_id}>."

    async def leave(self, interaction: Interaction) -> str:
        channel_id = self._user_channel(interaction)
        if channel_id is None:
            return NOT_IN_VOICE

        player = self.players.get(interaction.guild_id)
        if player is None:
            return NOTHING_PLAYING
        if player.channel_id != channel_id:
            return NOT_SAME_CHANNEL

        self.voice.cancel_idle_destroy(interaction.guild_id)
        self.players.destroy(interaction.guild_id)
        return "Disconnected."

    async def play(self, interaction: Interaction) -> str:
        channel_id = self._user_channel(interaction)
        if channel_id is None:
            return NOT_IN_VOICE

        player = self.players.get(interaction.guild_id)
        if player is None:
            player = self.players.join(interaction.guild_id, channel_id)
        if player.channel_id != channel_id:
            return NOT_SAME_CHANNEL

        query = interaction.get_value("query")
        if not isinstance(query, str) or not query.strip():
            return "Missing query."

        platform = interaction.get_value("platform")
        if not isinstance(platform, str):
            is_url = query.startswith(("https://", "http://"))
            platform = None if is_url else self.default_platform

        result = await player.search(query, platform)
        if not result.tracks:
            return "Nothing was found."

        if result.is_playlist:
            total = sum(track.length for track in result.tracks)
            for track in result.tracks:
                player.play(track)
            name = result.playlist_name or "playlist"
            return (
                f"Added {len(result.tracks)} tracks from **{name}** to the queue "
                f"({format_time(total // 1000)})."
            )

        track = result.tracks[0]
        started = player.play(track)
        verb = "Now playing" if started else "Queued"
        return f"{verb} **{track.title}** ({format_time(track.length // 1000)})."

    async def pause(self, interaction: Interaction) -> str:
        channel_id = self._user_channel(interaction)
        if channel_id is None:
            return NOT_IN_VOICE

        player = self.players.get(interaction.guild_id)
        if player is None:
            return NOTHING_PLAYING
        if player.channel_id != channel_id:
            return NOT_SAME_CHANNEL

        paused = interaction.get_value("paused")
        if not isinstance(paused, bool):
            return "Missing pause option."

        player.pause(paused)
        return "Playback paused." if paused else "Playback resumed."

    async def skip(self, interaction: Interaction) -> str:
        channel_id = self._user_channel(interaction)
        if channel_id is None:
            return NOT_IN_VOICE

        player = self.players.get(interaction.guild_id)
        if player is None:
            return NOTHING_PLAYING
        if player.channel_id != channel_id:
            return NOT_SAME_CHANNEL

        track = player.skip()
        return f"Skipped **{track.title}**."
