"""TMDB API client."""

import logging
from typing import Any
from typing import Dict
from typing import Optional

from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings

logger = logging.getLogger(__name__)


class TMDBClient:
    """Client for The Movie Database (TMDB) API."""

    POSTER_SIZE = "w500"
    BACKDROP_SIZE = "original"
    PROFILE_SIZE = "w185"

    def __init__(self, http: HttpClient, settings: Settings) -> None:
        self.http = http
        self.base_url = settings.tmdb_api_url.rstrip("/")
        self.image_url = settings.tmdb_image_url.rstrip("/")
        self.api_key = settings.tmdb_api_key
        if not self.api_key:
            logger.warning("TMDB_API_KEY not set, metadata enrichment is disabled")

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Make GET request to TMDB API."""
        if not self.api_key:
            return None

        params = dict(params or {})
        params["api_key"] = self.api_key
        data = await self.http.get_json(f"{self.base_url}{endpoint}", params=params)
        return data if isinstance(data, dict) else None

    async def search_movie_id(self, title: str) -> Optional[int]:
        """Search by Japanese title and return the first hit's ID."""
        data = await self._get("/search/movie", params={"query": title, "language": "ja-JP"})
        results = (data or {}).get("results") or []
        if not results:
            logger.warning(f"TMDB search returned nothing: title={title!r}")
            return None
        return results[0].get("id") or None

    async def get_movie(self, tmdb_id: int, language: str) -> Optional[Dict[str, Any]]:
        """Get detailed movie information in one language, with credits."""
        return await self._get(
            f"/movie/{tmdb_id}",
            params={"language": language, "append_to_response": "credits,videos"},
        )

    def _image(self, size: str, path: Optional[str]) -> str:
        return f"{self.image_url}/{size}{path}" if path else ""

    def poster_url(self, path: Optional[str]) -> str:
        return self._image(self.POSTER_SIZE, path)

    def backdrop_url(self, path: Optional[str]) -> str:
        return self._image(self.BACKDROP_SIZE, path)

    def profile_url(self, path: Optional[str]) -> str:
        return self._image(self.PROFILE_SIZE, path)
