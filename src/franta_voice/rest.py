"""HTTP clients for Discord interactions and audio-node track loading."""

import logging
from typing import Any

import httpx

from .errors import RestError
from .models import Interaction, SearchResult

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"

CALLBACK_CHANNEL_MESSAGE = 4
CALLBACK_DEFERRED_CHANNEL_MESSAGE = 5
EPHEMERAL_FLAG = 64


class DiscordRest:
    """Client for the interaction and command endpoints of the Discord API."""

    def __init__(self, token: str, app_id: str, base_url: str = DISCORD_API_BASE):
        """Initialize the client.

        Args:
            token: Bot token
            app_id: Application id
            base_url: API base URL
        """
        self.app_id = app_id
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bot {token}"}
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", headers=self.headers, **kwargs
            )
        except httpx.RequestError as e:
            raise RestError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            raise RestError(f"{method} {path} was rejected", response.status_code)
        return response

    async def ack(self, interaction: Interaction, ephemeral: bool = False) -> None:
        """Acknowledge an interaction; the reply follows via ``edit_original``."""
        body: dict[str, Any] = {"type": CALLBACK_DEFERRED_CHANNEL_MESSAGE}
        if ephemeral:
            body["data"] = {"flags": EPHEMERAL_FLAG}
        await self._request(
            "POST", f"/interactions/{interaction.id}/{interaction.token}/callback", json=body
        )

    async def create_message(self, interaction: Interaction, content: str) -> None:
        """Reply to an interaction that has not been acknowledged."""
        body = {"type": CALLBACK_CHANNEL_MESSAGE, "data": {"content": content}}
        await self._request(
            "POST", f"/interactions/{interaction.id}/{interaction.token}/callback", json=body
        )

    async def edit_original(self, interaction: Interaction, content: str) -> None:
        """Fill in the reply of an acknowledged interaction."""
        await self._request(
            "PATCH",
            f"/webhooks/{self.app_id}/{interaction.token}/messages/@original",
            json={"content": content},
        )

    async def register_command(self, command: dict, guild_id: str | None = None) -> dict:
        """Register an application command globally or for one guild.

        Returns:
            The created command object
        """
        if guild_id:
            path = f"/applications/{self.app_id}/guilds/{guild_id}/commands"
        else:
            path = f"/applications/{self.app_id}/commands"
        response = await self._request("POST", path, json=command)
        return response.json()


class NodeRest:
    """Client for the audio node's HTTP track-loading endpoint."""

    def __init__(self, host: str, port: int, password: str):
        """Initialize the client.

        Args:
            host: Node host
            port: Node port
            password: Node credential
        """
        self.base_url = f"http://{host}:{port}"
        self.headers = {"Authorization": password}
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def load_tracks(self, identifier: str) -> SearchResult:
        """Resolve an identifier (URL or ``platform:query``) into tracks.

        Raises:
            RestError: If the node is unreachable or rejects the request
        """
        try:
            response = await self.client.get(
                f"{self.base_url}/loadtracks",
                params={"identifier": identifier},
                headers=self.headers,
            )
        except httpx.RequestError as e:
            raise RestError(f"track search failed: {e}") from e

        if response.status_code != 200:
            raise RestError("track search was rejected", response.status_code)

        try:
            result = SearchResult.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise RestError(f"failed to parse search result: {e}") from e

        logger.debug(f"Loaded {len(result.tracks)} tracks for {identifier!r} ({result.load_type})")
        return result
