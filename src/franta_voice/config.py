"""franta-voice configuration loader."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

TOKEN_ENV_VAR = "DISCORD_BOT_TOKEN"


@dataclass
class DiscordConfig:
    """Gateway and REST credentials."""

    token: str = ""
    app_id: str = ""
    # GUILDS | GUILD_VOICE_STATES
    intents: int = 129
    gateway_url: str = "wss://gateway.discord.gg"


@dataclass
class LavalinkConfig:
    """Audio node address and resume settings."""

    host: str = "localhost"
    port: int = 2333
    password: str = "youshallnotpass"
    resume_key: str = "franta-resume-key"
    resume_timeout: int = 60
    client_name: str = "franta-voice"
    # Falls back to discord.app_id, which matches the bot user id
    user_id: str = ""


@dataclass
class PlayerConfig:
    """Playback behaviour."""

    idle_timeout: float = 300.0
    default_platform: str = "ytsearch"


@dataclass
class FrantaConfig:
    """Main configuration for franta-voice."""

    discord: DiscordConfig = field(default_factory=DiscordConfig)
    lavalink: LavalinkConfig = field(default_factory=LavalinkConfig)
    player: PlayerConfig = field(default_factory=PlayerConfig)
    reconnect_delay: float = 1.0
    log_level: str = "INFO"

    @property
    def node_user_id(self) -> str:
        return self.lavalink.user_id or self.discord.app_id

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "FrantaConfig":
        """Load config from YAML file.

        A missing file yields the defaults. ``DISCORD_BOT_TOKEN`` overrides
        the token from the file.

        Args:
            config_path: Path to config file (relative or absolute)

        Returns:
            Loaded configuration
        """
        path = Path(config_path)
        data = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

        discord_data = data.get("discord") or {}
        lavalink_data = data.get("lavalink") or {}
        player_data = data.get("player") or {}

        discord = DiscordConfig(
            token=str(discord_data.get("token", "")),
            app_id=str(discord_data.get("app_id", "")),
            intents=int(discord_data.get("intents", 129)),
            gateway_url=discord_data.get("gateway_url", "wss://gateway.discord.gg"),
        )

        env_token = os.environ.get(TOKEN_ENV_VAR)
        if env_token:
            discord.token = env_token

        lavalink = LavalinkConfig(
            host=lavalink_data.get("host", "localhost"),
            port=int(lavalink_data.get("port", 2333)),
            password=str(lavalink_data.get("password", "youshallnotpass")),
            resume_key=lavalink_data.get("resume_key", "franta-resume-key"),
            resume_timeout=int(lavalink_data.get("resume_timeout", 60)),
            client_name=lavalink_data.get("client_name", "franta-voice"),
            user_id=str(lavalink_data.get("user_id", "")),
        )

        player = PlayerConfig(
            idle_timeout=float(player_data.get("idle_timeout", 300.0)),
            default_platform=player_data.get("default_platform", "ytsearch"),
        )

        return cls(
            discord=discord,
            lavalink=lavalink,
            player=player,
            reconnect_delay=float(data.get("reconnect_delay", 1.0)),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )
