"""OMDb client for IMDb ratings."""

import json
import logging
from typing import Tuple

from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings

logger = logging.getLogger(__name__)


def parse_rating(value) -> float:
    """Ratings arrive as strings; "N/A" and garbage mean unknown (0)."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class OMDbClient:
    def __init__(self, http: HttpClient, settings: Settings) -> None:
        self.http = http
        self.api_url = settings.omdb_api_url
        self.api_key = settings.omdb_api_key
        if not self.api_key:
            logger.warning("OMDB_API_KEY not set, IMDb ratings are disabled")

    async def get_rating(self, imdb_id: str) -> Tuple[float, str]:
        """
        Look up the IMDb rating of a title.

        Returns:
            (rating, raw response body); rating is 0.0 when unknown
        """
        if not imdb_id or not self.api_key:
            return 0.0, ""

        _, raw = await self.http.fetch(self.api_url, params={"i": imdb_id, "apikey": self.api_key})
        if raw is None:
            return 0.0, ""
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"[OMDb] decode failed imdb_id={imdb_id} msg={e}")
            return 0.0, raw
        if not isinstance(data, dict):
            return 0.0, raw
        return parse_rating(data.get("imdbRating")), raw
