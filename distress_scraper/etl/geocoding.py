"""Nominatim (OpenStreetMap) geocoder with call pacing."""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import httpx

from ..config import settings
from ..scrapers.base_scraper import SleepFunc

logger = logging.getLogger(__name__)

Coordinates = Tuple[float, float]


class NominatimGeocoder:
    """Forward geocoder for US addresses.

    Nominatim allows one request per second from a single client and
    requires an identifying User-Agent. Calls are spaced by at least
    ``min_interval`` seconds measured from the previous call's start.
    Results, including misses, are cached per query for the lifetime of
    the instance.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 url: Optional[str] = None,
                 user_agent: Optional[str] = None,
                 min_interval: Optional[float] = None,
                 timeout: Optional[float] = None,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Optional[SleepFunc] = None):
        self._client = client
        self._owns_client = client is None
        self.url = url or settings.geocoder.geocoder_url
        self.user_agent = user_agent or settings.geocoder.geocoder_user_agent
        self.min_interval = (
            settings.geocoder.geocoder_min_interval if min_interval is None else min_interval
        )
        self.timeout = settings.geocoder.geocoder_timeout if timeout is None else timeout
        self.clock = clock or time.monotonic
        self.sleep: SleepFunc = sleep or asyncio.sleep

        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()
        self._cache: Dict[str, Optional[Coordinates]] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _wait_turn(self) -> None:
        if self._last_call is not None:
            remaining = self._last_call + self.min_interval - self.clock()
            if remaining > 0:
                await self.sleep(remaining)
        self._last_call = self.clock()

    async def geocode(self, query: str) -> Optional[Coordinates]:
        """Look up coordinates for a free-text address.

        Args:
            query: Full address, e.g. ``"123 Main St, Phoenix, AZ 85001"``

        Returns:
            Optional[Coordinates]: ``(latitude, longitude)``, or None when
            the address is unknown or the lookup failed
        """
        query = query.strip()
        if not query:
            return None
        if query in self._cache:
            return self._cache[query]

        async with self._lock:
            await self._wait_turn()
            try:
                response = await self.client.get(
                    self.url,
                    params={"q": query, "format": "json", "limit": "1", "countrycodes": "us"},
                    headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                results = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Geocoding failed for {query}: {e}")
                return None

        if not isinstance(results, list) or not results:
            logger.info(f"Geocoding: no result for {query}")
            self._cache[query] = None
            return None

        try:
            coords = (float(results[0]["lat"]), float(results[0]["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Geocoding returned an unusable result for {query}: {e}")
            return None

        self._cache[query] = coords
        return coords

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
