"""
Command line entry point.

Usage:
    python -m cinepath.main                    # start the read-only API server
    python -m cinepath.main crawl-cinemas      # sync the cinema directory
    python -m cinepath.main crawl-schedules    # sync movies and showtimes
    python -m cinepath.main fill-douban        # backfill missing Douban ratings
    python -m cinepath.main update-status      # recompute every movie's status

Batch modes run to completion and exit. Failing to open the store is the
only fatal error; everything else is logged and the run carries on.
"""

import argparse
import asyncio
import sys
from typing import List
from typing import Optional

import aiosqlite
import structlog
from aiohttp import web

from cinepath.api import create_app
from cinepath.database import Database
from cinepath.enrichment import MetadataEnricher
from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings
from cinepath.settings import get_settings
from cinepath.sources import DoubanClient
from cinepath.sources import NominatimGeocoder
from cinepath.sources import OMDbClient
from cinepath.sources import TMDBClient
from cinepath.status import StatusRecompute
from cinepath.sync import CinemaSync
from cinepath.sync import DoubanBackfill
from cinepath.sync import ScheduleSync

logger = structlog.get_logger("cinepath.main")

MODES = ("crawl-cinemas", "crawl-schedules", "fill-douban", "update-status")


async def crawl_cinemas(db: Database, settings: Settings) -> None:
    async with HttpClient(settings) as http:
        result = await CinemaSync(db, http, NominatimGeocoder(http, settings), settings).sync_cinemas()
    logger.info("crawl-cinemas finished", **result.model_dump_metrics())


async def crawl_schedules(db: Database, settings: Settings) -> None:
    async with HttpClient(settings) as http:
        enricher = MetadataEnricher(
            db,
            TMDBClient(http, settings),
            OMDbClient(http, settings),
            DoubanClient(http, settings),
            enable_douban=settings.enable_douban_rating,
        )
        result = await ScheduleSync(db, http, enricher, settings).sync_schedules()
    logger.info("crawl-schedules finished", **result.model_dump_metrics())


async def fill_douban(db: Database, settings: Settings) -> None:
    async with HttpClient(settings) as http:
        result = await DoubanBackfill(db, DoubanClient(http, settings)).backfill()
    logger.info("fill-douban finished", **result.model_dump_metrics())


async def update_status(db: Database, settings: Settings) -> None:
    updated = await StatusRecompute(db, settings.timezone).recompute_all()
    logger.info("update-status finished", updated=updated)


COMMANDS = {
    "crawl-cinemas": crawl_cinemas,
    "crawl-schedules": crawl_schedules,
    "fill-douban": fill_douban,
    "update-status": update_status,
}


async def run_batch(mode: str, settings: Settings) -> int:
    db = Database(settings.db_path)
    try:
        await db.initialize()
    except (aiosqlite.Error, OSError) as e:
        logger.error("store initialisation failed", db_path=str(settings.db_path), error=str(e))
        return 1

    try:
        logger.info("batch mode started", mode=mode)
        await COMMANDS[mode](db, settings)
        logger.info("store stats", **await db.get_database_stats())
    finally:
        await db.close()
    return 0


def serve(settings: Settings) -> int:
    app = create_app(Database(settings.db_path), settings.timezone)
    logger.info("API server starting", host=settings.host, port=settings.port)
    web.run_app(app, host=settings.host, port=settings.port, print=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cinepath",
        description="Tokyo arthouse showtimes: batch sync jobs and the read-only API.",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        choices=MODES,
        help="Batch job to run; omit to start the API server.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    settings.setup_logging()

    if args.mode is None:
        return serve(settings)
    return asyncio.run(run_batch(args.mode, settings))


if __name__ == "__main__":
    sys.exit(main())
