"""
Response payloads of the JSON API.

Shapes match what the frontend consumes; field names are part of the
contract and must not be renamed.
"""

from typing import List

from pydantic import BaseModel
from pydantic import Field

from cinepath.models import CastMember
from cinepath.models import Cinema
from cinepath.models import Movie
from cinepath.scraper.eiga import extract_district


class CinemaItem(BaseModel):
    """A cinema on the map and in the cinema list."""

    id: int
    name: str
    en: str = ""
    district: str = ""
    lat: float = 0.0
    lng: float = 0.0
    tags: List[str] = Field(default_factory=list)
    website: str = ""
    desc: str = ""
    building_photo: str = ""

    @classmethod
    def from_cinema(cls, cinema: Cinema) -> "CinemaItem":
        return cls(
            id=cinema.id,
            name=cinema.name_jp,
            district=extract_district(cinema.address),
            lat=cinema.latitude,
            lng=cinema.longitude,
            website=cinema.website,
            building_photo=cinema.building_photo,
        )


class DailyMovie(BaseModel):
    """One movie's showings at a cinema on a single day."""

    id: int
    title: str
    times: List[str] = Field(default_factory=list)
    rating: str = "0.0"


class CinemaDetail(CinemaItem):
    daily_movies: List[DailyMovie] = Field(default_factory=list)


class MovieItem(BaseModel):
    """A movie in the Now / Soon lists."""

    id: int
    title_cn: str = ""
    title_en: str = ""
    director: str = ""
    year: str = ""
    tmdb_rating: float = 0.0
    imdb_rating: float = 0.0
    douban_rating: float = 0.0
    status: str = ""
    release_date: str = ""
    earliest_schedule_date: str = ""
    cinema_count: int = 0
    primary_cinema_name: str = ""
    genre: str = ""
    runtime: int = 0
    poster: str = ""
    curator_note: str = ""

    @classmethod
    def from_movie(cls, movie: Movie) -> "MovieItem":
        """
        Title fallbacks: the list title prefers Chinese, then English, then
        Japanese; the subtitle prefers English, then Japanese.
        """
        return cls(
            id=movie.id,
            title_cn=movie.title_cn or movie.title_en or movie.title_jp,
            title_en=movie.title_en or movie.title_jp,
            director=movie.director,
            year=movie.year,
            tmdb_rating=movie.tmdb_rating,
            imdb_rating=movie.imdb_rating,
            douban_rating=movie.douban_rating,
            status=movie.status.value,
            release_date=movie.release_date.isoformat() if movie.release_date else "",
            genre=movie.genre,
            runtime=movie.runtime,
            poster=movie.poster,
            curator_note=movie.curator_note,
        )


class DaySchedule(BaseModel):
    date: str
    times: List[str] = Field(default_factory=list)


class MovieCinemaSchedule(BaseModel):
    """Showings of one movie at one cinema, grouped by day."""

    id: int
    name: str
    schedule: List[DaySchedule] = Field(default_factory=list)


class MovieDetail(MovieItem):
    synopsis: str = ""
    cast: List[CastMember] = Field(default_factory=list)
    cinemas: List[MovieCinemaSchedule] = Field(default_factory=list)
