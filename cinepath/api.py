"""
Read-only JSON API consumed by the map / listing frontend.

Routes:
    GET /api/cinemas            all cinemas
    GET /api/cinemas/{id}       one cinema with its daily programme (?date=YYYY-MM-DD)
    GET /api/movies             Now / Soon lists (?status=&sort=&q=&date=)
    GET /api/movies/{id}        one movie with cast and per-cinema schedule

The API never writes; it may observe a batch run half way through.
"""

import json
import logging
from collections import OrderedDict
from datetime import date
from functools import partial
from typing import Dict
from typing import List
from typing import Optional

import aiosqlite
from aiohttp import web

from cinepath.database import Database
from cinepath.models import Movie
from cinepath.schemas import CinemaDetail
from cinepath.schemas import CinemaItem
from cinepath.schemas import DailyMovie
from cinepath.schemas import DaySchedule
from cinepath.schemas import MovieCinemaSchedule
from cinepath.schemas import MovieDetail
from cinepath.schemas import MovieItem
from cinepath.status import local_today

logger = logging.getLogger(__name__)

DB_KEY = web.AppKey("db", Database)
TIMEZONE_KEY = web.AppKey("timezone", str)

# Titles are Japanese and Chinese; keep them readable on the wire
_dumps = partial(json.dumps, ensure_ascii=False)


def _json(payload, status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, dumps=_dumps)


def _error(message: str, status: int) -> web.Response:
    return _json({"error": message}, status=status)


def _parse_id(request: web.Request) -> Optional[int]:
    try:
        return int(request.match_info["id"])
    except ValueError:
        return None


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


@web.middleware
async def store_errors(request: web.Request, handler):
    """Turn store failures into a JSON 500 instead of an HTML traceback."""
    try:
        return await handler(request)
    except aiosqlite.Error as e:
        logger.error(f"Store query failed for {request.path}: {e}")
        return _error("failed to query store", 500)


async def build_daily_movies(db: Database, cinema_id: int, day: date) -> List[DailyMovie]:
    """Group a cinema's showings on one day by movie."""
    schedules = await db.list_schedules(cinema_id=cinema_id, play_date=day)
    if not schedules:
        return []

    movies = {m.id: m for m in await db.list_movies(ids={s.movie_id for s in schedules})}
    daily: Dict[int, DailyMovie] = OrderedDict()
    for schedule in schedules:
        movie = movies.get(schedule.movie_id)
        if movie is None:
            continue
        if movie.id not in daily:
            daily[movie.id] = DailyMovie(
                id=movie.id,
                title=movie.display_title,
                rating=f"{movie.display_rating:.1f}",
            )
        daily[movie.id].times.append(schedule.start_time)
    return list(daily.values())


async def build_cinemas_for_movie(db: Database, movie_id: int) -> List[MovieCinemaSchedule]:
    """Group a movie's showings by cinema, then by day ("M/D")."""
    schedules = await db.list_schedules(movie_id=movie_id)
    if not schedules:
        return []

    cinemas = {c.id: c for c in await db.list_cinemas(ids={s.cinema_id for s in schedules})}
    grouped: Dict[int, "OrderedDict[str, List[str]]"] = OrderedDict()
    for schedule in schedules:
        if schedule.cinema_id not in cinemas:
            continue
        day = f"{schedule.play_date.month}/{schedule.play_date.day}"
        grouped.setdefault(schedule.cinema_id, OrderedDict()).setdefault(day, []).append(schedule.start_time)

    return [
        MovieCinemaSchedule(
            id=cinema_id,
            name=cinemas[cinema_id].name_jp,
            schedule=[DaySchedule(date=day, times=times) for day, times in days.items()],
        )
        for cinema_id, days in grouped.items()
    ]


async def build_movie_item(db: Database, movie: Movie) -> MovieItem:
    """List item plus the schedule-derived aggregates."""
    item = MovieItem.from_movie(movie)

    first = await db.earliest_schedule(movie.id)
    if first is not None:
        item.earliest_schedule_date = first.play_date.isoformat()

    item.cinema_count = await db.count_cinemas_for_movie(movie.id)
    if item.cinema_count == 1 and first is not None:
        cinema = await db.get_cinema(first.cinema_id)
        if cinema is not None:
            item.primary_cinema_name = cinema.name_jp
    return item


async def list_cinemas(request: web.Request) -> web.Response:
    db = request.app[DB_KEY]
    cinemas = await db.list_cinemas()
    items = [CinemaItem.from_cinema(c).model_dump() for c in cinemas]
    return _json({"items": items})


async def get_cinema(request: web.Request) -> web.Response:
    db = request.app[DB_KEY]
    cinema_id = _parse_id(request)
    cinema = await db.get_cinema(cinema_id) if cinema_id is not None else None
    if cinema is None:
        return _error("cinema not found", 404)

    raw_date = request.query.get("date", "")
    day = _parse_date(raw_date) if raw_date else local_today(request.app[TIMEZONE_KEY])
    if day is None:
        return _error("date must be YYYY-MM-DD", 400)

    detail = CinemaDetail(
        **CinemaItem.from_cinema(cinema).model_dump(),
        daily_movies=await build_daily_movies(db, cinema.id, day),
    )
    return _json(detail.model_dump())


async def list_movies(request: web.Request) -> web.Response:
    """
    Now / Soon lists.

    With both status and date, only movies with a showing on that date are
    listed; with status alone every movie in that status is.
    """
    db = request.app[DB_KEY]
    status = request.query.get("status", "")
    sort = request.query.get("sort", "")
    query = request.query.get("q", "")
    raw_date = request.query.get("date", "")

    ids = None
    if status and raw_date:
        day = _parse_date(raw_date)
        if day is None:
            return _error("date must be YYYY-MM-DD", 400)
        ids = await db.movie_ids_on_date(day)
        if not ids:
            return _json({"items": []})

    movies = await db.list_movies(status=status or None, query=query or None, ids=ids, sort=sort or None)
    items = [(await build_movie_item(db, m)).model_dump() for m in movies]
    return _json({"items": items})


async def get_movie(request: web.Request) -> web.Response:
    db = request.app[DB_KEY]
    movie_id = _parse_id(request)
    movie = await db.get_movie(movie_id) if movie_id is not None else None
    if movie is None:
        return _error("movie not found", 404)

    detail = MovieDetail(
        **MovieItem.from_movie(movie).model_dump(),
        synopsis=movie.synopsis,
        cast=movie.cast,
        cinemas=await build_cinemas_for_movie(db, movie.id),
    )
    return _json(detail.model_dump())


def create_app(db: Database, timezone: str = "Asia/Tokyo") -> web.Application:
    """Build the API application; the store is opened on startup and closed on cleanup."""
    app = web.Application(middlewares=[store_errors])
    app[DB_KEY] = db
    app[TIMEZONE_KEY] = timezone

    async def on_startup(app: web.Application) -> None:
        await app[DB_KEY].initialize()

    async def on_cleanup(app: web.Application) -> None:
        await app[DB_KEY].close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/api/cinemas", list_cinemas)
    app.router.add_get("/api/cinemas/{id}", get_cinema)
    app.router.add_get("/api/movies", list_movies)
    app.router.add_get("/api/movies/{id}", get_movie)
    return app
