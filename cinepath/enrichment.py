"""
Movie metadata enrichment.

Fills a scraped movie (known only by its Japanese title) with metadata from
TMDB in three languages, the IMDb rating via OMDb and, optionally, the Douban
rating. The pipeline is best effort: every external call may fail on its own
and the rest of the record is still filled and saved.

Merge rules:
- ratings, synopsis, images, dates, runtime, genre and director are only
  written while the field is still empty/zero, so the first locale that
  supplies a value wins (zh-CN, then ja-JP, then en-US)
- each locale writes its own title field; the Japanese title is only
  backfilled when empty because the scrape already provides it
- the cast is taken once, from the Chinese or English response
- TMDB and IMDb IDs are never replaced once set
"""

import logging
from datetime import date
from typing import Any
from typing import Dict
from typing import Optional

import aiosqlite

from cinepath.database import Database
from cinepath.models import MAX_CAST
from cinepath.models import CastMember
from cinepath.models import Movie
from cinepath.sources.douban import DoubanClient
from cinepath.sources.omdb import OMDbClient
from cinepath.sources.tmdb import TMDBClient

logger = logging.getLogger(__name__)

# (TMDB language, Movie title field); order decides which synopsis is kept
LOCALES = (
    ("zh-CN", "title_cn"),
    ("ja-JP", "title_jp"),
    ("en-US", "title_en"),
)

# Locales whose cast list and IMDb ID are trusted
CAST_LOCALES = frozenset({"zh-CN", "en-US"})


def parse_release_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


class MetadataEnricher:
    """Merge TMDB, OMDb and Douban data into Movie records."""

    def __init__(
        self,
        db: Database,
        tmdb: TMDBClient,
        omdb: OMDbClient,
        douban: Optional[DoubanClient] = None,
        enable_douban: bool = False,
    ) -> None:
        self.db = db
        self.tmdb = tmdb
        self.omdb = omdb
        self.douban = douban
        self.enable_douban = enable_douban and douban is not None

    async def enrich(self, movie: Movie) -> Movie:
        """
        Fill missing metadata and ratings of a movie and save it.

        Already complete records return immediately without network calls.
        When the TMDB search finds nothing the movie is left untouched and will
        be retried the next time a scrape encounters it.
        """
        if movie.is_enriched:
            return movie

        title = movie.title_jp.strip()
        if not title:
            return movie

        tmdb_id = await self.tmdb.search_movie_id(title)
        if not tmdb_id:
            logger.warning(f"TMDB found no movie for {title!r}, enrichment skipped")
            return movie
        if not movie.tmdb_id:
            movie.tmdb_id = tmdb_id

        imdb_id = ""
        for language, title_field in LOCALES:
            data = await self.tmdb.get_movie(tmdb_id, language)
            if data is None:
                logger.warning(f"TMDB detail unavailable: tmdb_id={tmdb_id} language={language} title={title!r}")
                continue
            self.merge_details(movie, data, language, title_field)
            if language in CAST_LOCALES and not imdb_id:
                imdb_id = data.get("imdb_id") or ""

        if imdb_id:
            await self.merge_imdb_rating(movie, imdb_id)

        # Status and listings need some date; the year alone is better than none
        if movie.release_date is None and movie.year:
            movie.release_date = parse_release_date(f"{movie.year}-01-01")

        if self.enable_douban and not movie.douban_rating and movie.title_cn and movie.year:
            movie.douban_rating = await self.douban.get_rating(movie.title_cn, movie.year)

        if movie.release_date is None:
            logger.warning(
                f"Release date still missing: title_jp={movie.title_jp} "
                f"title_cn={movie.title_cn} year={movie.year or '-'} tmdb_id={movie.tmdb_id}"
            )

        try:
            await self.db.save_movie(movie)
        except aiosqlite.Error as e:
            logger.error(f"Saving enriched movie failed [{movie.title_jp}]: {e}")
            return movie

        logger.info(f"Enriched movie: {movie.summary()}")
        return movie

    def merge_details(self, movie: Movie, data: Dict[str, Any], language: str, title_field: str) -> None:
        """Merge one TMDB detail response into the movie."""
        vote = data.get("vote_average") or 0
        if vote and not movie.tmdb_rating:
            movie.tmdb_rating = float(vote)

        overview = (data.get("overview") or "").strip()
        if overview and not movie.synopsis:
            movie.synopsis = data["overview"]

        if data.get("poster_path") and not movie.poster:
            movie.poster = self.tmdb.poster_url(data["poster_path"])
        if data.get("backdrop_path") and not movie.backdrop:
            movie.backdrop = self.tmdb.backdrop_url(data["backdrop_path"])

        release = data.get("release_date") or ""
        if release:
            if not movie.year and len(release) >= 4:
                movie.year = release[:4]
            if movie.release_date is None:
                movie.release_date = parse_release_date(release)

        runtime = data.get("runtime") or 0
        if runtime and not movie.runtime:
            movie.runtime = int(runtime)

        genres = [g.get("name", "").strip() for g in data.get("genres") or []]
        genres = [name for name in genres if name]
        if genres and not movie.genre:
            movie.genre = ", ".join(genres)

        credits = data.get("credits") or {}
        if not movie.director:
            for crew in credits.get("crew") or []:
                if crew.get("job") == "Director":
                    movie.director = crew.get("name") or ""
                    break

        cast = credits.get("cast") or []
        if language in CAST_LOCALES and not movie.cast and cast:
            movie.cast = [
                CastMember(
                    name=member.get("name") or "",
                    role=member.get("character") or "",
                    img=self.tmdb.profile_url(member.get("profile_path")),
                )
                for member in cast[:MAX_CAST]
            ]

        title = data.get("title") or ""
        if title:
            if title_field == "title_jp":
                if not movie.title_jp:
                    movie.title_jp = title
            else:
                setattr(movie, title_field, title)

    async def merge_imdb_rating(self, movie: Movie, imdb_id: str) -> None:
        if not movie.imdb_id:
            movie.imdb_id = imdb_id

        rating, raw = await self.omdb.get_rating(movie.imdb_id)
        if rating and not movie.imdb_rating:
            movie.imdb_rating = rating

        if movie.tmdb_rating > 0 and not movie.imdb_rating:
            # OMDb lags behind TMDB for new and niche titles
            logger.warning(
                f"IMDb rating is 0 while TMDB has one: title_jp={movie.title_jp} "
                f"title_en={movie.title_en} tmdb_id={movie.tmdb_id} imdb_id={movie.imdb_id} raw={raw}"
            )
