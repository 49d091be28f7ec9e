import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from cinepath.scraper.http_client import HttpClient, redact
from cinepath.settings import Settings
from cinepath.sources import DoubanClient, NominatimGeocoder, OMDbClient, TMDBClient
from cinepath.sources.douban import match_rating
from cinepath.sources.geocoding import DEFAULT_LAT, DEFAULT_LNG, fallback_coordinates
from cinepath.sources.omdb import parse_rating
from tests.conftest import FakeHttpClient

SEARCH_PAGE = """
<div class="result-list">
  <div class="result">
    <div class="title"><a>狩猎者</a></div>
    <span class="subject-cast">某导演 / 1999</span>
    <span class="rating_nums">6.0</span>
  </div>
  <div class="result">
    <div class="title"><a>狩猎</a></div>
    <span class="subject-cast">托马斯·温特伯格 / 2012</span>
    <span class="rating_nums"></span>
  </div>
  <div class="result">
    <div class="title"><a>Jagten</a></div>
    <span class="subject-cast">托马斯·温特伯格 / 2012</span>
    <span class="rating_nums">9.1</span>
  </div>
</div>
"""


def test_parse_rating():
    assert parse_rating("8.3") == 8.3
    assert parse_rating("N/A") == 0.0
    assert parse_rating(None) == 0.0
    assert parse_rating("") == 0.0


def test_redact_masks_api_keys():
    assert redact({"q": "x", "api_key": "secret", "apikey": "secret"}) == {"q": "x", "api_key": "***", "apikey": "***"}
    assert redact(None) is None


def test_match_rating_by_title():
    # First result whose title contains the query
    assert match_rating(SEARCH_PAGE, "狩猎", "1999") == 6.0


def test_match_rating_skips_unrated_matches():
    assert match_rating(SEARCH_PAGE, "The Hunt", "2012") == 9.1


def test_match_rating_no_match():
    assert match_rating(SEARCH_PAGE, "Another Round", "2020") == 0.0
    assert match_rating("<html></html>", "狩猎", "2012") == 0.0


@pytest.mark.asyncio
async def test_douban_client(settings: Settings):
    http = FakeHttpClient(settings, {settings.douban_search_url: SEARCH_PAGE})
    douban = DoubanClient(http, settings)

    assert await douban.get_rating("The Hunt", "2012") == 9.1
    assert await douban.get_rating("", "2012") == 0.0
    assert len(http.calls) == 1


@pytest.mark.asyncio
async def test_douban_client_blocked(settings: Settings):
    douban = DoubanClient(FakeHttpClient(settings), settings)
    assert await douban.get_rating("The Hunt", "2012") == 0.0


@pytest.mark.asyncio
async def test_omdb_client(settings: Settings):
    http = FakeHttpClient(settings, {settings.omdb_api_url: json.dumps({"Response": "True", "imdbRating": "8.3"})})
    omdb = OMDbClient(http, settings)

    rating, raw = await omdb.get_rating("tt2106476")

    assert rating == 8.3
    assert "imdbRating" in raw
    assert await omdb.get_rating("") == (0.0, "")


@pytest.mark.asyncio
async def test_omdb_client_undecodable_body(settings: Settings):
    omdb = OMDbClient(FakeHttpClient(settings, {settings.omdb_api_url: "<html>busy</html>"}), settings)
    assert await omdb.get_rating("tt2106476") == (0.0, "<html>busy</html>")


def test_tmdb_image_urls(settings: Settings):
    tmdb = TMDBClient(FakeHttpClient(settings), settings)

    assert tmdb.poster_url("/a.jpg") == "https://image.tmdb.org/t/p/w500/a.jpg"
    assert tmdb.backdrop_url("/b.jpg") == "https://image.tmdb.org/t/p/original/b.jpg"
    assert tmdb.profile_url("/c.jpg") == "https://image.tmdb.org/t/p/w185/c.jpg"
    assert tmdb.poster_url(None) == ""
    assert tmdb.profile_url("") == ""


@pytest.mark.asyncio
async def test_tmdb_search_returns_first_hit(settings: Settings):
    url = f"{settings.tmdb_api_url}/search/movie"
    http = FakeHttpClient(settings, {url: json.dumps({"results": [{"id": 7}, {"id": 8}]})})

    assert await TMDBClient(http, settings).search_movie_id("偽りなき者") == 7


@pytest.mark.asyncio
async def test_tmdb_search_miss(settings: Settings):
    url = f"{settings.tmdb_api_url}/search/movie"
    http = FakeHttpClient(settings, {url: json.dumps({"results": []})})
    tmdb = TMDBClient(http, settings)

    assert await tmdb.search_movie_id("偽りなき者") is None
    http.routes[url] = "not json"
    assert await tmdb.search_movie_id("偽りなき者") is None


def test_fallback_coordinates_are_stable_and_distinct():
    a = fallback_coordinates("シネマA")
    b = fallback_coordinates("シネマB")

    assert a == fallback_coordinates("シネマA")
    assert a != b
    for lat, lng in (a, b):
        assert DEFAULT_LAT <= lat < DEFAULT_LAT + 0.01
        assert DEFAULT_LNG <= lng < DEFAULT_LNG + 0.01


@pytest.mark.asyncio
async def test_geocode_chain(settings: Settings):
    answers = {"東京都渋谷区 ユーロスペース": [{"lat": "35.6565", "lon": "139.6960"}]}
    http = FakeHttpClient(settings, {settings.geocoder_url: lambda p: json.dumps(answers.get(p["q"], []))})
    geocoder = NominatimGeocoder(http, settings)

    coords = await geocoder.geocode("東京都渋谷区円山町1-5", "ユーロスペース")

    assert coords == (35.6565, 139.6960)
    queries = [p["q"] for p in http.calls_to(settings.geocoder_url)]
    assert queries == ["東京都渋谷区円山町1-5", "東京都渋谷区 ユーロスペース"]


@pytest.mark.asyncio
async def test_geocode_falls_back_to_default(settings: Settings):
    http = FakeHttpClient(settings, {settings.geocoder_url: "[]"})

    coords = await NominatimGeocoder(http, settings).geocode("武蔵野市吉祥寺本町1-8-16", "アップリンク吉祥寺")

    assert coords == fallback_coordinates("アップリンク吉祥寺")


@pytest.mark.asyncio
async def test_geocode_malformed_result(settings: Settings):
    http = FakeHttpClient(settings, {settings.geocoder_url: json.dumps([{"lat": "north"}])})
    assert await NominatimGeocoder(http, settings).search("東京") is None


@pytest.mark.asyncio
async def test_http_client_requires_context(settings: Settings):
    with pytest.raises(RuntimeError):
        await HttpClient(settings).fetch("https://eiga.com/")


async def _serve_bytes(request):
    return web.Response(body=b"\xff\xfe\xfa bad", content_type="text/html", charset="utf-8")


async def _serve_page(request):
    return web.Response(text="<h1>新宿</h1>", content_type="text/html", charset="utf-8")


@pytest.mark.asyncio
async def test_http_client_reports_undecodable_body_as_failure(settings: Settings):
    app = web.Application()
    app.router.add_get("/broken", _serve_bytes)
    app.router.add_get("/ok", _serve_page)

    async with TestServer(app) as server:
        async with HttpClient(settings) as http:
            assert await http.fetch(str(server.make_url("/broken"))) == (200, None)
            assert await http.get_text(str(server.make_url("/broken"))) is None
            assert await http.get_json(str(server.make_url("/broken"))) is None
            assert await http.get_text(str(server.make_url("/ok"))) == "<h1>新宿</h1>"
            status, _ = await http.fetch(str(server.make_url("/missing")))
            assert status == 404
