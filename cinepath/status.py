"""
Movie status derivation.

A movie's display status is a function of its schedule dates and today's
date. There are two rule sets:

- derive_status: full history, four outcomes. Used by the batch recompute.
- derive_incremental_status: only the dates seen in the current scrape pass,
  two outcomes. It cannot tell whether older showings still exist, so it
  never demotes to "unplanned" and files far-future movies under "showing"
  where the batch rule says "future". A movie that is not re-scraped keeps
  whatever the last pass wrote until the next recompute.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from typing import Iterable
from typing import Optional
from zoneinfo import ZoneInfo

import aiosqlite

from cinepath.database import Database
from cinepath.models import Movie
from cinepath.models import MovieStatus

logger = logging.getLogger(__name__)

INCOMING_WINDOW = timedelta(days=7)


def local_today(timezone: str) -> date:
    """Today's date in the given IANA timezone."""
    return datetime.now(ZoneInfo(timezone)).date()


def derive_status(schedule_dates: Iterable[date], today: date) -> MovieStatus:
    """
    Map a movie's complete set of schedule dates to its status.

    Rules, first match wins:
    1. no dates                          -> unplanned
    2. every date before today           -> unplanned
    3. any date on or before today       -> showing
    4. earliest date within the next week -> incoming
    5. earliest date further out         -> future
    """
    dates = set(schedule_dates)
    if not dates:
        return MovieStatus.UNPLANNED
    if max(dates) < today:
        return MovieStatus.UNPLANNED
    if min(dates) <= today:
        return MovieStatus.SHOWING
    if min(dates) <= today + INCOMING_WINDOW:
        return MovieStatus.INCOMING
    return MovieStatus.FUTURE


def derive_incremental_status(schedule_dates: Iterable[date], today: date) -> Optional[MovieStatus]:
    """
    Status from the dates discovered in a single scrape pass.

    Returns None for an empty set (nothing to decide from), "incoming" when
    every date is in the future and the earliest is within a week, otherwise
    "showing".
    """
    dates = set(schedule_dates)
    if not dates:
        return None
    earliest = min(dates)
    if earliest > today and earliest <= today + INCOMING_WINDOW:
        return MovieStatus.INCOMING
    return MovieStatus.SHOWING


async def apply_status(
    db: Database,
    movie: Movie,
    new_status: MovieStatus,
    trigger: Optional[date],
    reason: str = "",
) -> bool:
    """
    Write a status only if it differs from the stored one.

    Returns:
        True if the movie's status changed
    """
    if movie.status == new_status:
        return False

    old_status = movie.status
    await db.update_movie_field(movie.id, "status", new_status)
    movie.status = new_status
    logger.info(
        f"Status [{movie.title_jp}]: {old_status.value} -> {new_status.value} "
        f"({reason or 'trigger'}: {trigger or '-'})"
    )
    return True


class StatusRecompute:
    """Full-batch status recomputation over every stored movie."""

    def __init__(self, db: Database, timezone: str = "Asia/Tokyo") -> None:
        self.db = db
        self.timezone = timezone

    async def recompute_movie(self, movie: Movie, today: date) -> bool:
        dates = await self.db.get_play_dates(movie.id)
        new_status = derive_status(dates, today)

        # Log the date that decided the outcome
        if not dates:
            trigger, reason = None, "no schedules"
        elif new_status == MovieStatus.UNPLANNED:
            trigger, reason = max(dates), "latest schedule, all lapsed"
        else:
            trigger, reason = min(dates), "earliest schedule"
        return await apply_status(self.db, movie, new_status, trigger, reason)

    async def recompute_all(self, today: Optional[date] = None) -> int:
        """
        Recompute the status of every movie from its stored schedules.

        Returns:
            Number of movies whose status changed
        """
        today = today or local_today(self.timezone)
        movies = await self.db.list_movies()

        updated = 0
        for movie in movies:
            try:
                if await self.recompute_movie(movie, today):
                    updated += 1
            except aiosqlite.Error as e:
                logger.error(f"Status update failed [{movie.title_jp}]: {e}")

        logger.info(f"Recomputed status of {len(movies)} movies, {updated} changed")
        return updated
