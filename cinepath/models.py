"""
Data models for the cinepath application.

Defines Pydantic models for cinemas, movies and schedules with validation,
serialization and the small amount of derived display logic shared by the
sync engines and the API.
"""

import json
from datetime import date
from datetime import datetime
from enum import Enum
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

MAX_CAST = 8


class MovieStatus(str, Enum):
    """Display lifecycle of a movie, derived from its schedule dates."""

    SHOWING = "showing"
    INCOMING = "incoming"
    FUTURE = "future"
    UNPLANNED = "unplanned"


class Cinema(BaseModel):
    """
    A cinema scraped from the regional listing.

    Identity is the native (Japanese) name; re-ingestion upserts by it.
    """

    id: Optional[int] = Field(
        default=None,
        description="Database primary key (auto-generated)"
    )

    name_jp: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Native cinema name, unique key"
    )

    address: str = Field(
        default="",
        description="Postal address as scraped"
    )

    geo_address: str = Field(
        default="",
        description="Address trimmed to the house number for geocoding"
    )

    latitude: float = 0.0
    longitude: float = 0.0

    building_photo: str = Field(
        default="",
        description="URL of the building photo"
    )

    website: str = Field(
        default="",
        description="Official website URL"
    )

    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last time this cinema was synced"
    )


class CastMember(BaseModel):
    """One billed cast entry."""

    name: str
    role: str = ""
    img: str = ""


class Movie(BaseModel):
    """
    A movie with metadata merged from several external sources.

    Ratings use 0 for "unknown". Identity is the native title, which means two
    distinct films sharing a Japanese title collapse into one record.
    """

    id: Optional[int] = Field(
        default=None,
        description="Database primary key (auto-generated)"
    )

    tmdb_id: int = Field(default=0, ge=0)
    imdb_id: str = ""

    title_jp: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Native title, unique key"
    )

    title_cn: str = ""
    title_en: str = ""
    director: str = ""
    year: str = ""

    synopsis: str = ""
    poster: str = ""
    backdrop: str = ""

    runtime: int = Field(default=0, ge=0, description="Runtime in minutes")
    genre: str = Field(default="", description="Comma-joined genre names")

    cast: List[CastMember] = Field(default_factory=list)

    tmdb_rating: float = 0.0
    imdb_rating: float = 0.0
    douban_rating: float = 0.0

    status: MovieStatus = MovieStatus.SHOWING
    release_date: Optional[date] = None

    curator_note: str = Field(
        default="",
        description="Hand-written annotation, never filled automatically"
    )

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("cast")
    @classmethod
    def validate_cast(cls, v: List[CastMember]) -> List[CastMember]:
        """Keep only the top-billed entries."""
        return v[:MAX_CAST]

    @property
    def is_enriched(self) -> bool:
        """True once the record needs no further metadata lookups."""
        return bool(
            self.title_cn
            and self.title_en
            and self.tmdb_rating > 0
            and self.release_date is not None
        )

    @property
    def display_title(self) -> str:
        """Translated title, falling back to English, native, then the id."""
        for title in (self.title_cn, self.title_en, self.title_jp):
            if title.strip():
                return title.strip()
        return f"Movie #{self.id}"

    @property
    def display_rating(self) -> float:
        """Douban > IMDb > TMDB, the first nonzero wins."""
        for rating in (self.douban_rating, self.imdb_rating, self.tmdb_rating):
            if rating:
                return rating
        return 0.0

    def cast_json(self) -> str:
        """Serialize the cast list for storage."""
        if not self.cast:
            return ""
        return json.dumps([member.model_dump() for member in self.cast], ensure_ascii=False)

    @staticmethod
    def parse_cast(raw: Optional[str]) -> List[CastMember]:
        """Decode a stored cast list; unreadable payloads yield an empty cast."""
        if not raw:
            return []
        try:
            return [CastMember(**entry) for entry in json.loads(raw)]
        except (ValueError, TypeError):
            return []

    def summary(self) -> str:
        """One-line description of what enrichment has populated."""
        return (
            f"{self.title_jp} | CN:{self.title_cn or '-'} EN:{self.title_en or '-'} "
            f"| TMDB:{self.tmdb_rating:.1f} | IMDb:{self.imdb_rating:.1f} "
            f"| Douban:{self.douban_rating:.1f} | release={self.release_date or '-'}"
        )


class Schedule(BaseModel):
    """
    A single showing: one movie at one cinema on one date at one start time.

    Schedules are insert-only; the four fields together form the identity.
    """

    id: Optional[int] = Field(
        default=None,
        description="Database primary key (auto-generated)"
    )

    movie_id: int
    cinema_id: int
    play_date: date

    start_time: str = Field(
        ...,
        min_length=4,
        max_length=5,
        description="Start time as HH:MM, 24-hour clock"
    )

    created_at: Optional[datetime] = None

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        """Start times must carry an hour/minute separator."""
        if ":" not in v:
            raise ValueError(f"start_time must look like HH:MM, got {v!r}")
        return v


class SyncResult(BaseModel):
    """
    Summary of a batch run with counters and collected errors.

    Used for logging the outcome of each CLI mode.
    """

    started_at: datetime = Field(
        default_factory=datetime.now,
        description="When the run started"
    )

    completed_at: Optional[datetime] = None

    pages_scraped: int = Field(default=0, ge=0)
    cinemas_synced: int = Field(default=0, ge=0)
    cinemas_skipped: int = Field(default=0, ge=0)
    movies_created: int = Field(default=0, ge=0)
    schedules_created: int = Field(default=0, ge=0)
    statuses_changed: int = Field(default=0, ge=0)
    ratings_filled: int = Field(default=0, ge=0)

    errors: List[str] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate run duration in seconds."""
        if not self.completed_at:
            return None

        delta = self.completed_at - self.started_at
        return delta.total_seconds()

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def add_error(self, error: str) -> None:
        """Add an error message to the result."""
        self.errors.append(error)

    def finish(self) -> "SyncResult":
        self.completed_at = datetime.now()
        return self

    def model_dump_metrics(self) -> dict:
        """Export the counters as a flat dict for log lines."""
        return {
            "duration_seconds": self.duration_seconds or 0,
            "pages_scraped": self.pages_scraped,
            "cinemas_synced": self.cinemas_synced,
            "cinemas_skipped": self.cinemas_skipped,
            "movies_created": self.movies_created,
            "schedules_created": self.schedules_created,
            "statuses_changed": self.statuses_changed,
            "ratings_filled": self.ratings_filled,
            "errors": len(self.errors),
        }
