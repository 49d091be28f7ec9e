"""Nominatim geocoding with a fallback chain for cinema addresses."""

import hashlib
import logging
from typing import Optional
from typing import Tuple

from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings

logger = logging.getLogger(__name__)

# Shinjuku, used when nothing else resolves
DEFAULT_LAT = 35.6895
DEFAULT_LNG = 139.6917


def fallback_coordinates(name: str) -> Tuple[float, float]:
    """
    A point near central Tokyo, offset by a hash of the cinema name.

    Unresolvable cinemas still get distinct markers, and the same cinema lands
    on the same spot on every run.
    """
    digest = hashlib.sha1(name.encode("utf-8")).digest()
    offset = int.from_bytes(digest[:2], "big") % 1000 / 100000.0
    return DEFAULT_LAT + offset, DEFAULT_LNG + offset


class NominatimGeocoder:
    def __init__(self, http: HttpClient, settings: Settings) -> None:
        self.http = http
        self.url = settings.geocoder_url

    async def search(self, query: str) -> Optional[Tuple[float, float]]:
        """Return the first match for a free-text query."""
        if not query.strip():
            return None
        results = await self.http.get_json(
            self.url, params={"q": query, "format": "json", "limit": 1}
        )
        if not results or not isinstance(results, list):
            logger.info(f"[GEO] no result: q={query!r}")
            return None
        try:
            return float(results[0]["lat"]), float(results[0]["lon"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[GEO] malformed result: q={query!r} msg={e}")
            return None

    async def geocode(self, address: str, name: str) -> Tuple[float, float]:
        """
        Resolve a cinema location.

        Tries the cleaned address, then "<address up to the ward> <name>",
        then falls back to a fixed offset near central Tokyo.
        """
        coords = await self.search(address)
        if coords:
            return coords

        ward = address[:address.find("区") + 1] if "区" in address else ""
        coords = await self.search(f"{ward} {name}")
        if coords:
            return coords

        logger.warning(f"[GEO] falling back to default location: name={name!r} address={address!r}")
        return fallback_coordinates(name)
