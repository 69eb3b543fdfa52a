"""Resolution of the identifier that scopes a user's watch history."""

from __future__ import annotations

import logging

import httpx

from .clock import Clock, SystemClock
from .config import Settings
from .errors import IdentityResolutionFailed, StorageUnavailable
from .storage import KeyValueStorage
from .utils import generate_browser_id

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Resolve a stable scope id, preferring the public IP address.

    When the remote lookup is disabled or fails, a locally generated browser
    identifier is persisted in storage and reused on later runs.
    """

    def __init__(
        self,
        settings: Settings,
        storage: KeyValueStorage,
        http_client: httpx.AsyncClient | None = None,
        *,
        clock: Clock | None = None,
    ):
        self._settings = settings
        self._storage = storage
        self._client = http_client
        self._clock = clock or SystemClock()

    async def resolve(self) -> str:
        """Return the scope id; never raises."""

        if self._client is not None and self._settings.identity_lookup_enabled:
            try:
                return await self._lookup_remote()
            except IdentityResolutionFailed as exc:
                logger.warning("Falling back to a local browser id: %s", exc)
        return await self.local_identifier()

    async def _lookup_remote(self) -> str:
        assert self._client is not None
        try:
            response = await self._client.get(
                str(self._settings.identity_lookup_url),
                timeout=self._settings.identity_lookup_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityResolutionFailed(str(exc)) from exc

        ip = payload.get("ip") if isinstance(payload, dict) else None
        if not isinstance(ip, str) or not ip.strip():
            raise IdentityResolutionFailed("Lookup response did not include an address")
        return ip.strip()

    async def local_identifier(self) -> str:
        """Return the persisted browser id, creating it on first use."""

        key = self._settings.browser_id_key
        try:
            existing = await self._storage.get(key)
        except StorageUnavailable as exc:
            logger.warning("Browser id could not be read: %s", exc)
            existing = None
        if existing:
            return existing

        browser_id = generate_browser_id(self._clock.now_ms())
        try:
            await self._storage.set(key, browser_id)
        except StorageUnavailable as exc:
            logger.warning("Browser id will not survive restarts: %s", exc)
        return browser_id
