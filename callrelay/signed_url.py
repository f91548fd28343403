"""ElevenLabs signed URL client.

Each agent connection is opened on a short-lived signed URL so the API key
never leaves the relay.

Usage:
    client = SignedUrlClient(api_key="...", agent_id="...")
    url = await client.get_signed_url()
"""

from __future__ import annotations

import asyncio

import aiohttp
from loguru import logger


DEFAULT_API_BASE = "https://api.elevenlabs.io"
SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


class SignedUrlError(RuntimeError):
    """The signed URL could not be obtained."""


class SignedUrlClient:
    """Fetches signed conversation URLs for one agent."""

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.agent_id = agent_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def get_signed_url(self) -> str:
        """Return a fresh signed WebSocket URL for the agent.

        Raises:
            SignedUrlError: On a non-2xx response, a transport failure, or a
                response without ``signed_url``.
        """
        session = await self._get_session()
        try:
            async with session.get(
                f"{self.api_base}{SIGNED_URL_PATH}",
                params={"agent_id": self.agent_id},
                headers={"xi-api-key": self.api_key},
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise SignedUrlError(
                        f"Failed to get signed URL: {resp.status} {resp.reason or ''}".rstrip()
                    )
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Error getting signed URL: {e}")
            raise SignedUrlError(f"Failed to get signed URL: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error("Error getting signed URL: request timed out")
            raise SignedUrlError("Failed to get signed URL: request timed out") from e
        except ValueError as e:
            raise SignedUrlError(f"Signed URL response is not JSON: {e}") from e

        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not signed_url:
            raise SignedUrlError("Signed URL response has no signed_url")
        return signed_url

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
