"""Audiobookshelf REST client."""

from __future__ import annotations

import logging
from typing import Any

import orjson
from aiohttp import ClientResponseError, ClientSession, ClientTimeout

from aiobookcast.config import AppConfig, validate
from aiobookcast.models.library import Progress

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000


class AudiobookshelfClient:
    """
    Minimal client for an Audiobookshelf server.

    Resolves book ids to stream URLs for the audio proxy and reads and writes
    the current user's listening progress.
    """

    _session: ClientSession | None
    """Optional aiohttp ClientSession for API requests."""
    _owns_session: bool
    """Whether this client owns and should close the session."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        session: ClientSession | None = None,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """
        Initialize the client.

        Args:
            url: Server base URL, e.g. "https://abs.example.com".
            api_key: API token.
            session: Optional aiohttp ClientSession. If None, a session is
                created on first use and closed by close().
            timeout_ms: Request timeout in milliseconds.
        """
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._timeout = ClientTimeout(total=timeout_ms / 1000)

    @classmethod
    def from_config(
        cls, config: AppConfig, *, session: ClientSession | None = None
    ) -> AudiobookshelfClient:
        """
        Create a client from a validated config.

        Raises:
            ValueError: If the config is missing the URL or API key.
        """
        if errors := validate(config):
            raise ValueError("Invalid configuration: " + ", ".join(errors))
        assert config.url is not None
        assert config.api_key is not None
        return cls(
            config.url,
            config.api_key,
            session=session,
            timeout_ms=config.timeout or DEFAULT_TIMEOUT_MS,
        )

    @property
    def url(self) -> str:
        """Server base URL."""
        return self._url

    @property
    def auth_header(self) -> str:
        """Authorization header value."""
        return f"Bearer {self._api_key}"

    def stream_url(self, book_id: str) -> str:
        """URL of the audio stream of a book."""
        return f"{self._url}/api/items/{book_id}/play"

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        if self._session is None:
            self._session = ClientSession()
        data = orjson.dumps(body) if body is not None else None
        async with self._session.request(
            method,
            f"{self._url}{path}",
            data=data,
            headers={
                "Authorization": self.auth_header,
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        ) as resp:
            resp.raise_for_status()
            payload = await resp.read()
        return orjson.loads(payload) if payload else None

    async def get_progress(self, book_id: str) -> Progress | None:
        """Get the listening progress of a book; None if there is none."""
        try:
            data = await self._request("GET", f"/api/me/progress/{book_id}")
        except ClientResponseError as err:
            if err.status == 404:
                return None
            raise
        if not isinstance(data, dict):
            return None
        return Progress.from_dict(data)

    async def update_progress(
        self, book_id: str, current_time: float, *, duration: float | None = None
    ) -> None:
        """Save the listening position of a book in seconds."""
        body: dict[str, Any] = {"currentTime": current_time}
        if duration:
            body["duration"] = duration
            body["progress"] = min(1.0, current_time / duration)
        logger.debug("Updating progress of %s to %.1fs", book_id, current_time)
        await self._request("PATCH", f"/api/me/progress/{book_id}", body)

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
