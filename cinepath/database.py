"""
Database layer for the cinepath application.

Provides an async SQLite interface with connection management, schema
creation and the upsert/lookup operations the sync engines and the API rely
on. A lookup miss is reported as ``None``; callers decide whether that means
"create", "skip" or "404".
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from datetime import datetime
from pathlib import Path
from typing import Any
from typing import AsyncGenerator
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple

import aiosqlite

from cinepath.models import Cinema
from cinepath.models import Movie
from cinepath.models import MovieStatus
from cinepath.models import Schedule

logger = logging.getLogger(__name__)

# Columns that may be changed through update_movie_field
MOVIE_UPDATABLE_FIELDS = frozenset({
    "status", "douban_rating", "imdb_rating", "tmdb_rating", "curator_note",
})

MOVIE_SORT_KEYS = frozenset({"imdb_rating", "douban_rating"})

SCHEMA_VERSION = 1


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value[:10]) if value else None


class Database:
    """
    Async SQLite store for cinemas, movies and schedules.

    One connection is shared by the whole process; writes are expected to come
    from a single sequential batch run.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema and run migrations."""
        await self._ensure_schema()
        await self._run_migrations()
        logger.info(f"Database initialized at {self.db_path}")

    async def close(self) -> None:
        """Close database connection cleanly."""
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None

    @asynccontextmanager
    async def _get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get database connection with proper lifecycle management."""
        async with self._lock:
            if not self._connection:
                self._connection = await aiosqlite.connect(
                    self.db_path,
                    timeout=30.0,
                    isolation_level=None,  # Autocommit mode
                )
                self._connection.row_factory = aiosqlite.Row

                await self._connection.execute("PRAGMA foreign_keys = ON")
                await self._connection.execute("PRAGMA journal_mode = WAL")
                await self._connection.execute("PRAGMA synchronous = NORMAL")

            yield self._connection

    async def _ensure_schema(self) -> None:
        """Create database tables if they don't exist."""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS cinemas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name_jp TEXT UNIQUE NOT NULL,
            address TEXT NOT NULL DEFAULT '',
            geo_address TEXT NOT NULL DEFAULT '',
            latitude REAL NOT NULL DEFAULT 0,
            longitude REAL NOT NULL DEFAULT 0,
            building_photo TEXT NOT NULL DEFAULT '',
            website TEXT NOT NULL DEFAULT '',
            updated_at TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS movies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tmdb_id INTEGER NOT NULL DEFAULT 0,
            imdb_id TEXT NOT NULL DEFAULT '',
            title_jp TEXT UNIQUE NOT NULL,
            title_cn TEXT NOT NULL DEFAULT '',
            title_en TEXT NOT NULL DEFAULT '',
            director TEXT NOT NULL DEFAULT '',
            year TEXT NOT NULL DEFAULT '',
            synopsis TEXT NOT NULL DEFAULT '',
            poster TEXT NOT NULL DEFAULT '',
            backdrop TEXT NOT NULL DEFAULT '',
            runtime INTEGER NOT NULL DEFAULT 0,
            genre TEXT NOT NULL DEFAULT '',
            cast_json TEXT NOT NULL DEFAULT '',
            tmdb_rating REAL NOT NULL DEFAULT 0,
            imdb_rating REAL NOT NULL DEFAULT 0,
            douban_rating REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'showing',
            release_date DATE,
            curator_note TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        -- One row per showing; the four-column key makes re-ingestion idempotent
        CREATE TABLE IF NOT EXISTS schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            movie_id INTEGER NOT NULL,
            cinema_id INTEGER NOT NULL,
            play_date DATE NOT NULL,
            start_time TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (movie_id) REFERENCES movies(id) ON DELETE CASCADE,
            FOREIGN KEY (cinema_id) REFERENCES cinemas(id) ON DELETE CASCADE,
            UNIQUE(movie_id, cinema_id, play_date, start_time)
        );

        CREATE INDEX IF NOT EXISTS idx_movies_status ON movies(status);
        CREATE INDEX IF NOT EXISTS idx_schedules_movie_date ON schedules(movie_id, play_date);
        CREATE INDEX IF NOT EXISTS idx_schedules_cinema_date ON schedules(cinema_id, play_date);
        """

        async with self._get_connection() as conn:
            await conn.executescript(schema_sql)
            await conn.commit()

    async def _run_migrations(self) -> None:
        """Run database migrations if needed."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            )
            has_version_table = await cursor.fetchone() is not None

            if not has_version_table:
                await conn.execute(
                    "CREATE TABLE schema_version (version INTEGER PRIMARY KEY)"
                )
                await conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
                await conn.commit()
                logger.info(f"Database schema initialized to version {SCHEMA_VERSION}")

    # ------------------------------------------------------------------
    # Row mapping

    @staticmethod
    def _row_to_cinema(row: aiosqlite.Row) -> Cinema:
        return Cinema(
            id=row["id"],
            name_jp=row["name_jp"],
            address=row["address"],
            geo_address=row["geo_address"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            building_photo=row["building_photo"],
            website=row["website"],
            updated_at=_parse_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_movie(row: aiosqlite.Row) -> Movie:
        status = row["status"] or MovieStatus.SHOWING.value
        return Movie(
            id=row["id"],
            tmdb_id=row["tmdb_id"],
            imdb_id=row["imdb_id"],
            title_jp=row["title_jp"],
            title_cn=row["title_cn"],
            title_en=row["title_en"],
            director=row["director"],
            year=row["year"],
            synopsis=row["synopsis"],
            poster=row["poster"],
            backdrop=row["backdrop"],
            runtime=row["runtime"],
            genre=row["genre"],
            cast=Movie.parse_cast(row["cast_json"]),
            tmdb_rating=row["tmdb_rating"],
            imdb_rating=row["imdb_rating"],
            douban_rating=row["douban_rating"],
            status=MovieStatus(status),
            release_date=_parse_date(row["release_date"]),
            curator_note=row["curator_note"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_schedule(row: aiosqlite.Row) -> Schedule:
        return Schedule(
            id=row["id"],
            movie_id=row["movie_id"],
            cinema_id=row["cinema_id"],
            play_date=_parse_date(row["play_date"]),
            start_time=row["start_time"],
            created_at=_parse_datetime(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Cinemas

    async def upsert_cinema(self, cinema: Cinema) -> Cinema:
        """
        Insert a cinema or update the existing row with the same native name.

        Args:
            cinema: Cinema scraped from its detail page

        Returns:
            Cinema with its database ID and update timestamp set
        """
        cinema.updated_at = cinema.updated_at or datetime.now()

        async with self._get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO cinemas (name_jp, address, geo_address, latitude, longitude,
                                     building_photo, website, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name_jp) DO UPDATE SET
                    address = excluded.address,
                    geo_address = excluded.geo_address,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    building_photo = excluded.building_photo,
                    website = excluded.website,
                    updated_at = excluded.updated_at
                """,
                (
                    cinema.name_jp, cinema.address, cinema.geo_address,
                    cinema.latitude, cinema.longitude, cinema.building_photo,
                    cinema.website, cinema.updated_at.isoformat(),
                )
            )
            cursor = await conn.execute(
                "SELECT id FROM cinemas WHERE name_jp = ?", (cinema.name_jp,)
            )
            row = await cursor.fetchone()
            await conn.commit()

        cinema.id = row["id"]
        logger.debug(f"Upserted cinema: {cinema.name_jp} (id={cinema.id})")
        return cinema

    async def get_cinema_by_name(self, name_jp: str) -> Optional[Cinema]:
        """Find a cinema by exact native name."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM cinemas WHERE name_jp = ?", (name_jp,))
            row = await cursor.fetchone()
        return self._row_to_cinema(row) if row else None

    async def get_cinema(self, cinema_id: int) -> Optional[Cinema]:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM cinemas WHERE id = ?", (cinema_id,))
            row = await cursor.fetchone()
        return self._row_to_cinema(row) if row else None

    async def list_cinemas(self, ids: Optional[Iterable[int]] = None) -> List[Cinema]:
        sql = "SELECT * FROM cinemas"
        params: Tuple[Any, ...] = ()
        if ids is not None:
            ids = list(ids)
            if not ids:
                return []
            sql += f" WHERE id IN ({','.join('?' * len(ids))})"
            params = tuple(ids)
        sql += " ORDER BY id"

        async with self._get_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_cinema(row) for row in rows]

    # ------------------------------------------------------------------
    # Movies

    async def get_movie_by_title(self, title_jp: str) -> Optional[Movie]:
        """Find a movie by exact native title."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM movies WHERE title_jp = ?", (title_jp,))
            row = await cursor.fetchone()
        return self._row_to_movie(row) if row else None

    async def get_movie(self, movie_id: int) -> Optional[Movie]:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM movies WHERE id = ?", (movie_id,))
            row = await cursor.fetchone()
        return self._row_to_movie(row) if row else None

    async def find_or_create_movie(
        self,
        title_jp: str,
        status: MovieStatus = MovieStatus.SHOWING,
    ) -> Tuple[Movie, bool]:
        """
        Return the movie with this native title, creating it if absent.

        Returns:
            (movie, created) where created is True for a fresh row
        """
        existing = await self.get_movie_by_title(title_jp)
        if existing:
            return existing, False

        now = datetime.now().isoformat()
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO movies (title_jp, status, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (title_jp, status.value, now, now)
            )
            movie_id = cursor.lastrowid
            await conn.commit()

        logger.debug(f"Inserted new movie: {title_jp} (id={movie_id})")
        return await self.get_movie(movie_id), True

    async def save_movie(self, movie: Movie) -> Movie:
        """
        Write every column of an existing movie back to the store.

        Args:
            movie: Movie previously loaded or created through this store

        Returns:
            Movie with refreshed update timestamp
        """
        if movie.id is None:
            raise ValueError(f"Cannot save movie without id: {movie.title_jp}")

        movie.updated_at = datetime.now()
        async with self._get_connection() as conn:
            await conn.execute(
                """
                UPDATE movies SET
                    tmdb_id = ?, imdb_id = ?, title_jp = ?, title_cn = ?, title_en = ?,
                    director = ?, year = ?, synopsis = ?, poster = ?, backdrop = ?,
                    runtime = ?, genre = ?, cast_json = ?, tmdb_rating = ?,
                    imdb_rating = ?, douban_rating = ?, status = ?, release_date = ?,
                    curator_note = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    movie.tmdb_id, movie.imdb_id, movie.title_jp, movie.title_cn,
                    movie.title_en, movie.director, movie.year, movie.synopsis,
                    movie.poster, movie.backdrop, movie.runtime, movie.genre,
                    movie.cast_json(), movie.tmdb_rating, movie.imdb_rating,
                    movie.douban_rating, movie.status.value,
                    movie.release_date.isoformat() if movie.release_date else None,
                    movie.curator_note, movie.updated_at.isoformat(), movie.id,
                )
            )
            await conn.commit()

        logger.debug(f"Saved movie: {movie.title_jp} (id={movie.id})")
        return movie

    async def update_movie_field(self, movie_id: int, field: str, value: Any) -> None:
        """Update a single column of one movie."""
        if field not in MOVIE_UPDATABLE_FIELDS:
            raise ValueError(f"Field {field!r} cannot be updated individually")
        if isinstance(value, MovieStatus):
            value = value.value

        async with self._get_connection() as conn:
            await conn.execute(
                f"UPDATE movies SET {field} = ?, updated_at = ? WHERE id = ?",
                (value, datetime.now().isoformat(), movie_id)
            )
            await conn.commit()

    async def list_movies(
        self,
        status: Optional[str] = None,
        query: Optional[str] = None,
        ids: Optional[Iterable[int]] = None,
        sort: Optional[str] = None,
    ) -> List[Movie]:
        """
        List movies with optional filters.

        Args:
            status: Only movies with this status; "showing" also matches rows
                written before status existed (empty)
            query: Substring of the translated or English title
            ids: Restrict to these movie IDs
            sort: "imdb_rating" or "douban_rating", descending
        """
        clauses: List[str] = []
        params: List[Any] = []

        if ids is not None:
            ids = list(ids)
            if not ids:
                return []
            clauses.append(f"id IN ({','.join('?' * len(ids))})")
            params.extend(ids)

        if status == MovieStatus.SHOWING.value:
            clauses.append("(status = ? OR status = '' OR status IS NULL)")
            params.append(status)
        elif status:
            clauses.append("status = ?")
            params.append(status)

        if query:
            clauses.append("(title_cn LIKE ? OR title_en LIKE ?)")
            pattern = f"%{query}%"
            params.extend([pattern, pattern])

        sql = "SELECT * FROM movies"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if sort in MOVIE_SORT_KEYS:
            sql += f" ORDER BY {sort} DESC, id"
        else:
            sql += " ORDER BY id"

        async with self._get_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_movie(row) for row in rows]

    async def movies_missing_douban(self) -> List[Movie]:
        """Movies with no Douban rating yet but an English title and a year."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM movies
                WHERE douban_rating = 0 AND title_en <> '' AND year <> ''
                ORDER BY id
                """
            )
            rows = await cursor.fetchall()
        return [self._row_to_movie(row) for row in rows]

    # ------------------------------------------------------------------
    # Schedules

    async def insert_schedule(self, schedule: Schedule) -> bool:
        """
        Insert a showing unless the same (movie, cinema, date, time) exists.

        Returns:
            True if a new row was written
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO schedules (movie_id, cinema_id, play_date, start_time, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    schedule.movie_id, schedule.cinema_id,
                    schedule.play_date.isoformat(), schedule.start_time,
                    datetime.now().isoformat(),
                )
            )
            created = cursor.rowcount > 0
            if created:
                schedule.id = cursor.lastrowid
            await conn.commit()
        return created

    async def list_schedules(
        self,
        movie_id: Optional[int] = None,
        cinema_id: Optional[int] = None,
        play_date: Optional[date] = None,
    ) -> List[Schedule]:
        clauses: List[str] = []
        params: List[Any] = []
        if movie_id is not None:
            clauses.append("movie_id = ?")
            params.append(movie_id)
        if cinema_id is not None:
            clauses.append("cinema_id = ?")
            params.append(cinema_id)
        if play_date is not None:
            clauses.append("date(play_date) = ?")
            params.append(play_date.isoformat())

        sql = "SELECT * FROM schedules"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY play_date, start_time, id"

        async with self._get_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_schedule(row) for row in rows]

    async def get_play_dates(self, movie_id: int) -> List[date]:
        """Distinct play dates of every stored showing of a movie."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT DISTINCT play_date FROM schedules WHERE movie_id = ? ORDER BY play_date",
                (movie_id,)
            )
            rows = await cursor.fetchall()
        return [_parse_date(row["play_date"]) for row in rows]

    async def movie_ids_on_date(self, play_date: date) -> List[int]:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT DISTINCT movie_id FROM schedules WHERE date(play_date) = ? ORDER BY movie_id",
                (play_date.isoformat(),)
            )
            rows = await cursor.fetchall()
        return [row["movie_id"] for row in rows]

    async def earliest_schedule(self, movie_id: int) -> Optional[Schedule]:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM schedules WHERE movie_id = ?
                ORDER BY play_date ASC, start_time ASC, id ASC LIMIT 1
                """,
                (movie_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_schedule(row) if row else None

    async def count_cinemas_for_movie(self, movie_id: int) -> int:
        """Number of distinct cinemas with at least one showing of the movie."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(DISTINCT cinema_id) FROM schedules WHERE movie_id = ?",
                (movie_id,)
            )
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_database_stats(self) -> dict:
        """
        Get database statistics for logging after a batch run.

        Returns:
            Dictionary with row counts, file size and last cinema update
        """
        async with self._get_connection() as conn:
            stats = {}

            for table in ("cinemas", "movies", "schedules"):
                cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
                stats[f"total_{table}"] = (await cursor.fetchone())[0]

            cursor = await conn.execute(
                "SELECT status, COUNT(*) FROM movies GROUP BY status ORDER BY status"
            )
            stats["movies_by_status"] = {row[0]: row[1] for row in await cursor.fetchall()}

            stats["db_size_bytes"] = self.db_path.stat().st_size if self.db_path.exists() else 0

            cursor = await conn.execute("SELECT MAX(updated_at) FROM cinemas")
            last_update = await cursor.fetchone()
            stats["last_update"] = last_update[0] if last_update[0] else None

        return stats

    async def __aenter__(self) -> "Database":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
