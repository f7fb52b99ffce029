"""Signing-key cache for identity tokens.

Key sets are fetched from published JWKS endpoints and cached per URL for the
lifetime of the cache object. A key id that is not in the cached set triggers
one refresh; refreshes for the same URL are serialised and throttled.
"""

import asyncio
import logging
import time
from typing import Any

import aiohttp
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWKError, PyJWKSetError

logger = logging.getLogger(__name__)


class KeySetError(Exception):
    """The key set could not be fetched or parsed."""


class SigningKeyNotFoundError(KeySetError):
    """The key set does not contain the requested key id."""


class KeySetCache:
    """Process-wide cache of JWKS key sets keyed by URL.

    Parameters
    ----------
    session : aiohttp.ClientSession
        HTTP session used for key-set fetches.
    timeout : float
        Seconds allowed for one fetch.
    min_refresh_interval : float
        Minimum seconds between refreshes of the same URL caused by an
        unknown key id.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = 5.0,
        min_refresh_interval: float = 10.0,
    ):
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._min_refresh_interval = min_refresh_interval
        self._key_sets: dict[str, PyJWKSet] = {}
        self._fetched_at: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lookup(self, url: str, kid: str) -> PyJWK | None:
        key_set = self._key_sets.get(url)
        if key_set is None:
            return None
        for key in key_set.keys:
            if key.key_id == kid:
                return key
        return None

    def _can_refresh(self, url: str) -> bool:
        fetched_at = self._fetched_at.get(url)
        if fetched_at is None:
            return True
        return time.monotonic() - fetched_at >= self._min_refresh_interval

    async def get_signing_key(self, url: str, kid: str) -> PyJWK:
        """Return the key with id ``kid`` from the key set at ``url``.

        Raises
        ------
        SigningKeyNotFoundError
            If the key id is absent after a refresh.
        KeySetError
            If the key set cannot be fetched.
        """
        key = self._lookup(url, kid)
        if key is not None:
            return key

        lock = self._locks.setdefault(url, asyncio.Lock())
        async with lock:
            key = self._lookup(url, kid)
            if key is None and self._can_refresh(url):
                await self.refresh(url)
                key = self._lookup(url, kid)

        if key is None:
            raise SigningKeyNotFoundError(f"No signing key found for kid: {kid}")
        return key

    async def refresh(self, url: str) -> PyJWKSet:
        """Fetch the key set at ``url`` and replace the cached copy."""
        try:
            async with self._session.get(url, timeout=self._timeout) as resp:
                if resp.status != 200:
                    raise KeySetError(f"Key set fetch failed with status {resp.status}")
                data: Any = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("Key set fetch failed", extra={"jwks_url": url, "error": str(e)})
            raise KeySetError(f"Key set fetch failed: {e}") from e

        try:
            key_set = PyJWKSet.from_dict(data)
        except (PyJWKSetError, PyJWKError, TypeError, KeyError) as e:
            raise KeySetError(f"Invalid key set: {e}") from e

        self._key_sets[url] = key_set
        self._fetched_at[url] = time.monotonic()
        logger.info(
            "Key set refreshed",
            extra={"jwks_url": url, "keys": len(key_set.keys), "cached_urls": len(self._key_sets)},
        )
        return key_set

    def invalidate(self, url: str | None = None) -> None:
        """Drop one cached key set, or all of them."""
        if url is None:
            removed = len(self._key_sets)
            self._key_sets.clear()
            self._fetched_at.clear()
        else:
            removed = 1 if self._key_sets.pop(url, None) is not None else 0
            self._fetched_at.pop(url, None)
        logger.info("Key set cache invalidated", extra={"removed": removed})

    def stats(self) -> dict[str, Any]:
        """Cache size and cached URLs, for monitoring."""
        return {"size": len(self._key_sets), "urls": sorted(self._key_sets)}
