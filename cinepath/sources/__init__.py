"""
External data sources used to enrich scraped records.

- TMDB: multilingual movie metadata and the primary rating
- OMDb: IMDb rating by IMDb ID
- Douban: optional rating scraped from search results
- Nominatim: geocoding of cinema addresses
"""

from cinepath.sources.douban import DoubanClient
from cinepath.sources.geocoding import NominatimGeocoder
from cinepath.sources.omdb import OMDbClient
from cinepath.sources.tmdb import TMDBClient

__all__ = ["DoubanClient", "NominatimGeocoder", "OMDbClient", "TMDBClient"]
