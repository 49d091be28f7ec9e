"""
Batch sync engines.

- CinemaSync walks the regional listing and upserts every cinema with its
  geocoded location.
- ScheduleSync walks the same listing, links each weekly schedule to known
  cinemas, creates and enriches movies, inserts showings and updates the
  status of every movie it saw.
- DoubanBackfill fills missing Douban ratings without touching schedules.

Each engine runs strictly sequentially. A failure on one page, movie or
showing is logged and counted; the run always continues with the next one.
"""

import asyncio
import logging
from datetime import date
from typing import List
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from cinepath.database import Database
from cinepath.enrichment import MetadataEnricher
from cinepath.models import Cinema
from cinepath.models import Schedule
from cinepath.models import SyncResult
from cinepath.scraper.eiga import MovieSection
from cinepath.scraper.eiga import clean_address_for_geo
from cinepath.scraper.eiga import parse_cinema_name
from cinepath.scraper.eiga import parse_cinema_page
from cinepath.scraper.eiga import parse_schedule_sections
from cinepath.scraper.eiga import parse_theater_links
from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings
from cinepath.sources.douban import DoubanClient
from cinepath.sources.geocoding import NominatimGeocoder
from cinepath.status import apply_status
from cinepath.status import derive_incremental_status
from cinepath.status import local_today

logger = logging.getLogger(__name__)


async def discover_theater_pages(http: HttpClient, settings: Settings, result: SyncResult) -> List[str]:
    """Fetch the regional listing and return its cinema detail links."""
    listing_url = settings.listing_url
    html = await http.get_text(listing_url)
    if html is None:
        result.add_error(f"listing unavailable: {listing_url}")
        return []
    result.pages_scraped += 1

    links = parse_theater_links(html, listing_url, settings.region_path)
    # The listing itself matches the region path
    links = [link for link in links if link.rstrip("/") != listing_url.rstrip("/")]
    logger.info(f"Found {len(links)} cinema pages on {listing_url}")
    return links


class CinemaSync:
    """Upsert the cinema directory from the regional listing."""

    def __init__(
        self,
        db: Database,
        http: HttpClient,
        geocoder: NominatimGeocoder,
        settings: Settings,
    ) -> None:
        self.db = db
        self.http = http
        self.geocoder = geocoder
        self.settings = settings

    async def sync_cinemas(self) -> SyncResult:
        result = SyncResult()
        for link in await discover_theater_pages(self.http, self.settings, result):
            await self.sync_cinema_page(link, result)
            # Both eiga.com and Nominatim throttle bursts
            await asyncio.sleep(self.settings.cinema_sync_delay)

        logger.info(f"Cinema sync finished: {result.finish().model_dump_metrics()}")
        return result

    async def sync_cinema_page(self, url: str, result: SyncResult) -> Optional[Cinema]:
        html = await self.http.get_text(url)
        if html is None:
            result.add_error(f"cinema page unavailable: {url}")
            return None
        result.pages_scraped += 1

        page = parse_cinema_page(html, url)
        if page is None:
            logger.info(f"No cinema title on {url}, skipped")
            return None

        geo_address = clean_address_for_geo(page.address)
        lat, lng = await self.geocoder.geocode(geo_address, page.name_jp)

        cinema = Cinema(
            name_jp=page.name_jp,
            address=page.address,
            geo_address=geo_address,
            latitude=lat,
            longitude=lng,
            building_photo=page.building_photo,
            website=page.website,
        )
        try:
            cinema = await self.db.upsert_cinema(cinema)
        except aiosqlite.Error as e:
            logger.error(f"Saving cinema failed [{page.name_jp}]: {e}")
            result.add_error(f"cinema write failed: {page.name_jp}")
            return None

        result.cinemas_synced += 1
        logger.info(
            f"Cinema [{cinema.name_jp}] address={geo_address} "
            f"coords=({lat:.5f}, {lng:.5f}) photo={cinema.building_photo or '-'} site={cinema.website or '-'}"
        )
        return cinema


class ScheduleSync:
    """Ingest weekly schedules for cinemas already in the store."""

    def __init__(
        self,
        db: Database,
        http: HttpClient,
        enricher: MetadataEnricher,
        settings: Settings,
    ) -> None:
        self.db = db
        self.http = http
        self.enricher = enricher
        self.settings = settings

    async def sync_schedules(self, today: Optional[date] = None) -> SyncResult:
        today = today or local_today(self.settings.timezone)
        result = SyncResult()
        for link in await discover_theater_pages(self.http, self.settings, result):
            await self.sync_cinema_schedules(link, today, result)

        logger.info(f"Schedule sync finished: {result.finish().model_dump_metrics()}")
        return result

    async def sync_cinema_schedules(self, url: str, today: date, result: SyncResult) -> None:
        html = await self.http.get_text(url)
        if html is None:
            result.add_error(f"cinema page unavailable: {url}")
            return
        result.pages_scraped += 1

        name = parse_cinema_name(html)
        if not name:
            return

        cinema = await self.db.get_cinema_by_name(name)
        if cinema is None:
            logger.warning(f"Cinema not in store, schedules skipped (run crawl-cinemas first): {name}")
            result.cinemas_skipped += 1
            return

        logger.info(f"Scraping schedules of {name} ({url})")
        for section in parse_schedule_sections(html):
            try:
                await self.ingest_section(cinema, section, today, result)
            except aiosqlite.Error as e:
                logger.error(f"Storing schedules failed [{section.title_jp} @ {name}]: {e}")
                result.add_error(f"schedule write failed: {section.title_jp} @ {name}")

    async def ingest_section(self, cinema: Cinema, section: MovieSection, today: date, result: SyncResult) -> None:
        """Store one movie block of a cinema page and update the movie's status."""
        movie, created = await self.db.find_or_create_movie(section.title_jp)
        if created:
            result.movies_created += 1
            logger.info(f"New movie: {movie.title_jp} (id={movie.id})")

        movie = await self.enricher.enrich(movie)

        for cell in section.cells:
            for start_time in cell.start_times:
                try:
                    schedule = Schedule(
                        movie_id=movie.id,
                        cinema_id=cinema.id,
                        play_date=cell.play_date,
                        start_time=start_time,
                    )
                except ValidationError as e:
                    logger.info(
                        f"Malformed start time skipped [{section.title_jp} @ {cinema.name_jp}] "
                        f"date={cell.play_date} time={start_time!r}: {e.error_count()} error(s)"
                    )
                    continue
                if await self.db.insert_schedule(schedule):
                    result.schedules_created += 1

        # Only this pass's dates are visible here; see cinepath.status
        play_dates = section.play_dates
        new_status = derive_incremental_status(play_dates, today)
        if new_status is not None:
            if await apply_status(self.db, movie, new_status, min(play_dates), "earliest schedule"):
                result.statuses_changed += 1


class DoubanBackfill:
    """Fill missing Douban ratings using English title and year."""

    def __init__(self, db: Database, douban: DoubanClient) -> None:
        self.db = db
        self.douban = douban

    async def backfill(self) -> SyncResult:
        result = SyncResult()
        movies = await self.db.movies_missing_douban()
        if not movies:
            logger.info("No movies need a Douban rating")
            return result.finish()

        logger.info(f"{len(movies)} movies need a Douban rating")
        for i, movie in enumerate(movies, start=1):
            logger.info(f"[{i}/{len(movies)}] Douban lookup: title_en={movie.title_en} year={movie.year}")
            score = await self.douban.get_rating(movie.title_en, movie.year)
            if score <= 0:
                continue
            try:
                await self.db.update_movie_field(movie.id, "douban_rating", score)
            except aiosqlite.Error as e:
                logger.error(f"Saving Douban rating failed [{movie.title_en}]: {e}")
                result.add_error(f"douban write failed: {movie.title_en}")
                continue
            result.ratings_filled += 1
            logger.info(f"Douban rating set [{movie.title_en}]: {score:.1f}")

        logger.info(f"Douban backfill finished: {result.finish().model_dump_metrics()}")
        return result
