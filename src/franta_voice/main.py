"""Main entry point for franta-voice."""

import argparse
import asyncio
import logging
import sys

from .client import Client
from .commands import register_commands
from .config import FrantaConfig
from .errors import FatalSessionError, SessionConnectionError
from .rest import DiscordRest

logger = logging.getLogger(__name__)


async def run_bot(config: FrantaConfig) -> int:
    """Run the bot until a fatal session error.

    Returns:
        Process exit code
    """
    client = Client(config)
    try:
        await client.login()
    except SessionConnectionError as e:
        logger.error(f"Could not start: {e}")
        return 1
    except FatalSessionError as e:
        logger.error(f"Gateway session ended: {e}")
        return 2
    return 0


async def run_register(config: FrantaConfig, guild_id: str | None) -> int:
    """Register slash commands globally or for one guild."""
    rest = DiscordRest(config.discord.token, config.discord.app_id)
    try:
        count = await register_commands(rest, guild_id)
    finally:
        await rest.close()

    scope = f"guild {guild_id}" if guild_id else "global"
    logger.info(f"Registered {count} commands ({scope})")
    return 0 if count else 1


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="franta-voice - Discord music bot backed by a Lavalink node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the bot
  franta-voice run --config config.yaml

  # Register slash commands globally (takes effect within an hour)
  franta-voice register

  # Register slash commands for one guild (immediate)
  franta-voice register --guild 123456789012345678

Environment variables:
  DISCORD_BOT_TOKEN   Overrides discord.token from the config file.
""",
    )

    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: log_level from config, INFO)",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Connect and serve commands (default)")
    register = subparsers.add_parser("register", help="Register slash commands")
    register.add_argument("--guild", help="Register for one guild instead of globally")

    args = parser.parse_args()

    config = FrantaConfig.load(args.config)
    level = (args.log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not config.discord.token:
        print("Error: Discord token required. Set discord.token or DISCORD_BOT_TOKEN")
        sys.exit(1)

    try:
        if args.command == "register":
            code = asyncio.run(run_register(config, args.guild))
        else:
            code = asyncio.run(run_bot(config))
    except KeyboardInterrupt:
        print("\nShutting down...")
        code = 0

    sys.exit(code)


if __name__ == "__main__":
    cli()
