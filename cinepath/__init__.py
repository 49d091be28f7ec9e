"""
Tokyo arthouse cinema showtimes.

Scrapes the Tokyo cinema directory and weekly schedules from eiga.com,
enriches movies with TMDB / OMDb / Douban metadata, geocodes cinemas with
Nominatim, stores everything in SQLite and serves it as a small JSON API.

Main Components:
- Scraper: eiga.com page parsing and the shared HTTP client
- Sources: TMDB, OMDb, Douban and Nominatim clients
- Enrichment: merges multilingual metadata and ratings into movies
- Sync: cinema directory, schedule ingestion and Douban backfill batch jobs
- Status: derives showing / incoming / future / unplanned from schedules
- API: read-only aiohttp service for the frontend

Usage:
    # Run API server
    python -m cinepath.main

    # Run a batch job
    python -m cinepath.main crawl-schedules

    # Status rules programmatically
    from datetime import date
    from cinepath.status import derive_status

    derive_status({date(2026, 1, 25)}, today=date(2026, 1, 23))  # incoming
"""

__version__ = "1.1.0"
__license__ = "MIT"

from cinepath.database import Database
from cinepath.enrichment import MetadataEnricher
from cinepath.models import Cinema
from cinepath.models import Movie
from cinepath.models import MovieStatus
from cinepath.models import Schedule
from cinepath.status import StatusRecompute
from cinepath.status import derive_incremental_status
from cinepath.status import derive_status
from cinepath.sync import CinemaSync
from cinepath.sync import DoubanBackfill
from cinepath.sync import ScheduleSync

__all__ = [
    "Cinema",
    "CinemaSync",
    "Database",
    "DoubanBackfill",
    "MetadataEnricher",
    "Movie",
    "MovieStatus",
    "Schedule",
    "ScheduleSync",
    "StatusRecompute",
    "derive_incremental_status",
    "derive_status",
]
