import json
from pathlib import Path
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

import pytest
import pytest_asyncio

from cinepath.database import Database
from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings

LISTING_URL = "https://eiga.com/theater/13/"

Route = Union[str, Callable[[dict], Optional[str]], None]


class FakeHttpClient(HttpClient):
    """HttpClient serving canned bodies keyed by URL instead of the network."""

    def __init__(self, settings: Settings, routes: Optional[Dict[str, Route]] = None) -> None:
        super().__init__(settings)
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[Tuple[str, dict]] = []

    async def fetch(self, url, params=None, headers=None):
        params = dict(params or {})
        self.calls.append((url, params))
        route = self.routes.get(url)
        body = route(params) if callable(route) else route
        if body is None:
            return 404, None
        return 200, body

    def calls_to(self, url: str) -> List[dict]:
        return [params for called, params in self.calls if called == url]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        db_path=tmp_path / "cinepath.db",
        tmdb_api_key="tmdb-test-key",
        omdb_api_key="omdb-test-key",
        cinema_sync_delay=0,
        douban_delay=0,
    )


@pytest_asyncio.fixture
async def db(tmp_path: Path):
    """Provides an initialized file-based database instance for each test."""
    db_instance = Database(db_path=tmp_path / "test.db")
    await db_instance.initialize()
    yield db_instance
    await db_instance.close()


# ----------------------------------------------------------------------
# eiga.com page builders

def listing_html(hrefs: Iterable[str]) -> str:
    items = "\n".join(f'<li><a href="{href}">cinema</a></li>' for href in hrefs)
    return f"""
    <html><body>
      <nav><a href="/theater/27/270101/">Osaka</a></nav>
      <div class="theater-area-list"><ul>{items}</ul></div>
    </body></html>
    """


def cinema_html(
    title: str,
    address: str = "",
    sections: Iterable[Tuple[str, Dict[str, List[str]]]] = (),
    photo: str = "",
    official: str = "",
) -> str:
    """
    A cinema detail page.

    sections: (movie title, {"YYYYMMDD": ["10:00～12:00", ...]}) pairs
    """
    blocks = []
    for i, (movie_title, days) in enumerate(sections):
        cells = "".join(
            f'<td data-date="{day}">' + "".join(f"<span>{t}</span>" for t in times) + "</td>"
            for day, times in days.items()
        )
        blocks.append(
            f'<section id="m{100000 + i}"><h2><a href="/movie/{100000 + i}/">{movie_title}</a></h2>'
            f'<table class="weekly-schedule"><tr>{cells}</tr></table></section>'
        )
    photo_tag = f'<img src="{photo}">' if photo else ""
    official_tag = f'<a class="icon official" href="{official}">公式</a>' if official else ""
    return f"""
    <html><body><main>
      <h1 class="page-title">{title}</h1>
      <img src="https://eiga.k-img.com/images/shared/banner.png">
      {photo_tag}
      <dl class="location"><dt>住所</dt><dd>{address}</dd></dl>
      {official_tag}
      {''.join(blocks)}
    </main></body></html>
    """


# ----------------------------------------------------------------------
# TMDB / OMDb payload builders

def tmdb_detail(language: str, **overrides) -> str:
    titles = {"zh-CN": "狩猎", "ja-JP": "偽りなき者", "en-US": "The Hunt"}
    overviews = {"zh-CN": "一个关于谎言的故事。", "ja-JP": "嘘の物語。", "en-US": "A story about a lie."}
    data = {
        "imdb_id": "tt2106476",
        "title": titles[language],
        "overview": overviews[language],
        "poster_path": f"/poster-{language}.jpg",
        "backdrop_path": f"/backdrop-{language}.jpg",
        "release_date": "2012-05-20",
        "runtime": 115,
        "vote_average": {"zh-CN": 8.1, "ja-JP": 7.0, "en-US": 6.0}[language],
        "genres": [{"name": "剧情"}] if language == "zh-CN" else [{"name": "Drama"}],
        "credits": {
            "cast": [
                {"name": f"Actor {i} {language}", "character": f"Role {i}", "profile_path": f"/p{i}.jpg" if i % 2 == 0 else None}
                for i in range(10)
            ],
            "crew": [
                {"name": "Tobias Lindholm", "job": "Screenplay"},
                {"name": "Thomas Vinterberg", "job": "Director"},
            ],
        },
    }
    data.update(overrides)
    return json.dumps(data, ensure_ascii=False)


def tmdb_routes(settings: Settings, tmdb_id: int = 103663, details: Optional[Dict[str, Optional[str]]] = None, imdb_rating: str = "8.3") -> Dict[str, Route]:
    """Routes for one TMDB movie found by any search, plus its OMDb rating."""
    details = details if details is not None else {lang: tmdb_detail(lang) for lang in ("zh-CN", "ja-JP", "en-US")}
    base = settings.tmdb_api_url
    return {
        f"{base}/search/movie": json.dumps({"results": [{"id": tmdb_id}, {"id": 1}]}),
        f"{base}/movie/{tmdb_id}": lambda params: details.get(params.get("language")),
        settings.omdb_api_url: json.dumps({"Response": "True", "imdbRating": imdb_rating}),
    }
