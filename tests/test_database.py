import pytest
from datetime import date, datetime

from cinepath.database import Database
from cinepath.models import CastMember, Cinema, Movie, MovieStatus, Schedule

# Mark all tests in this file as async
pytestmark = pytest.mark.asyncio


async def _cinema(db: Database, name: str = "新宿武蔵野館") -> Cinema:
    return await db.upsert_cinema(Cinema(name_jp=name, address="東京都新宿区新宿3-27-10"))


async def test_database_initialization(db: Database):
    """Test that the database initializes correctly and creates tables."""
    async with db._get_connection() as conn:
        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in await cursor.fetchall()}
        assert "cinemas" in tables
        assert "movies" in tables
        assert "schedules" in tables
        assert "schema_version" in tables


async def test_initialize_twice_is_harmless(db: Database):
    await db.initialize()
    async with db._get_connection() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM schema_version")
        assert (await cursor.fetchone())[0] == 1


async def test_upsert_cinema_insert_and_update(db: Database):
    """Re-syncing a cinema with the same name updates the existing row."""
    first = await db.upsert_cinema(Cinema(name_jp="K's cinema", address="old", latitude=1.0))
    assert first.id is not None
    assert first.updated_at is not None

    second = await db.upsert_cinema(Cinema(name_jp="K's cinema", address="東京都新宿区新宿3-35-13", latitude=35.69))
    assert second.id == first.id

    stored = await db.get_cinema_by_name("K's cinema")
    assert stored.address == "東京都新宿区新宿3-35-13"
    assert stored.latitude == 35.69
    assert len(await db.list_cinemas()) == 1


async def test_get_cinema_by_name_miss_returns_none(db: Database):
    assert await db.get_cinema_by_name("存在しない映画館") is None
    assert await db.get_cinema(999) is None


async def test_find_or_create_movie(db: Database):
    movie, created = await db.find_or_create_movie("偽りなき者")
    assert created
    assert movie.id is not None
    assert movie.status == MovieStatus.SHOWING
    assert movie.created_at is not None

    again, created_again = await db.find_or_create_movie("偽りなき者")
    assert not created_again
    assert again.id == movie.id


async def test_save_movie_round_trips_all_fields(db: Database):
    movie, _ = await db.find_or_create_movie("偽りなき者")
    movie.title_cn = "狩猎"
    movie.title_en = "The Hunt"
    movie.tmdb_id = 103663
    movie.imdb_id = "tt2106476"
    movie.tmdb_rating = 8.1
    movie.release_date = date(2012, 5, 20)
    movie.cast = [CastMember(name="Mads Mikkelsen", role="Lucas", img="https://img/p.jpg")]
    movie.status = MovieStatus.INCOMING
    await db.save_movie(movie)

    stored = await db.get_movie(movie.id)
    assert stored.title_cn == "狩猎"
    assert stored.title_en == "The Hunt"
    assert stored.tmdb_id == 103663
    assert stored.imdb_id == "tt2106476"
    assert stored.tmdb_rating == 8.1
    assert stored.release_date == date(2012, 5, 20)
    assert stored.cast == [CastMember(name="Mads Mikkelsen", role="Lucas", img="https://img/p.jpg")]
    assert stored.status == MovieStatus.INCOMING


async def test_save_movie_requires_id(db: Database):
    with pytest.raises(ValueError):
        await db.save_movie(Movie(title_jp="未保存"))


async def test_update_movie_field(db: Database):
    movie, _ = await db.find_or_create_movie("偽りなき者")
    await db.update_movie_field(movie.id, "status", MovieStatus.FUTURE)
    await db.update_movie_field(movie.id, "douban_rating", 9.1)

    stored = await db.get_movie(movie.id)
    assert stored.status == MovieStatus.FUTURE
    assert stored.douban_rating == 9.1

    with pytest.raises(ValueError):
        await db.update_movie_field(movie.id, "title_jp", "別の題名")


async def test_insert_schedule_is_idempotent(db: Database):
    """The (movie, cinema, date, time) key makes repeated inserts no-ops."""
    cinema = await _cinema(db)
    movie, _ = await db.find_or_create_movie("偽りなき者")
    schedule = dict(movie_id=movie.id, cinema_id=cinema.id, play_date=date(2026, 1, 23), start_time="10:40")

    assert await db.insert_schedule(Schedule(**schedule))
    assert not await db.insert_schedule(Schedule(**schedule))
    assert await db.insert_schedule(Schedule(**{**schedule, "start_time": "15:40"}))

    schedules = await db.list_schedules(movie_id=movie.id)
    assert [s.start_time for s in schedules] == ["10:40", "15:40"]


async def test_play_dates_and_aggregates(db: Database):
    a = await _cinema(db, "A")
    b = await _cinema(db, "B")
    movie, _ = await db.find_or_create_movie("M")
    other, _ = await db.find_or_create_movie("N")
    for cinema, day, time in [
        (a, date(2026, 1, 24), "18:00"),
        (a, date(2026, 1, 23), "10:00"),
        (b, date(2026, 1, 23), "12:00"),
    ]:
        await db.insert_schedule(Schedule(movie_id=movie.id, cinema_id=cinema.id, play_date=day, start_time=time))
    await db.insert_schedule(Schedule(movie_id=other.id, cinema_id=a.id, play_date=date(2026, 1, 25), start_time="09:00"))

    assert await db.get_play_dates(movie.id) == [date(2026, 1, 23), date(2026, 1, 24)]
    assert await db.count_cinemas_for_movie(movie.id) == 2
    assert await db.count_cinemas_for_movie(other.id) == 1

    earliest = await db.earliest_schedule(movie.id)
    assert earliest.play_date == date(2026, 1, 23)
    assert earliest.start_time == "10:00"

    assert await db.movie_ids_on_date(date(2026, 1, 23)) == [movie.id]
    day = await db.list_schedules(cinema_id=a.id, play_date=date(2026, 1, 23))
    assert [(s.movie_id, s.start_time) for s in day] == [(movie.id, "10:00")]


async def test_list_movies_filters_and_sort(db: Database):
    hunt, _ = await db.find_or_create_movie("偽りなき者")
    hunt.title_cn, hunt.title_en, hunt.imdb_rating = "狩猎", "The Hunt", 8.3
    await db.save_movie(hunt)

    spider, _ = await db.find_or_create_movie("スパイダーマン：アクロス・ザ・スパイダーバース")
    spider.title_en, spider.imdb_rating, spider.status = "Across the Spider-Verse", 8.6, MovieStatus.INCOMING
    await db.save_movie(spider)

    # Rows written before statuses existed count as showing
    async with db._get_connection() as conn:
        await conn.execute("INSERT INTO movies (title_jp, status) VALUES ('古い映画', '')")
        await conn.commit()

    showing = await db.list_movies(status="showing")
    assert {m.title_jp for m in showing} == {"偽りなき者", "古い映画"}

    incoming = await db.list_movies(status="incoming")
    assert [m.id for m in incoming] == [spider.id]

    assert [m.id for m in await db.list_movies(query="Hunt")] == [hunt.id]
    assert [m.id for m in await db.list_movies(query="狩")] == [hunt.id]

    by_imdb = await db.list_movies(sort="imdb_rating")
    assert [m.id for m in by_imdb][:2] == [spider.id, hunt.id]

    assert await db.list_movies(ids=[]) == []
    assert [m.id for m in await db.list_movies(ids=[hunt.id])] == [hunt.id]


async def test_movies_missing_douban(db: Database):
    ready, _ = await db.find_or_create_movie("A")
    ready.title_en, ready.year = "A", "2012"
    await db.save_movie(ready)

    rated, _ = await db.find_or_create_movie("B")
    rated.title_en, rated.year, rated.douban_rating = "B", "2012", 7.5
    await db.save_movie(rated)

    no_year, _ = await db.find_or_create_movie("C")
    no_year.title_en = "C"
    await db.save_movie(no_year)

    assert [m.id for m in await db.movies_missing_douban()] == [ready.id]


async def test_get_database_stats(db: Database):
    """Test retrieval of database statistics."""
    stats = await db.get_database_stats()
    assert stats["total_cinemas"] == 0
    assert stats["total_movies"] == 0
    assert stats["total_schedules"] == 0
    assert stats["last_update"] is None

    cinema = await _cinema(db)
    movie, _ = await db.find_or_create_movie("M")
    await db.insert_schedule(Schedule(movie_id=movie.id, cinema_id=cinema.id, play_date=date(2026, 1, 23), start_time="10:00"))

    stats = await db.get_database_stats()
    assert stats["total_cinemas"] == 1
    assert stats["total_movies"] == 1
    assert stats["total_schedules"] == 1
    assert stats["movies_by_status"] == {"showing": 1}
    assert stats["db_size_bytes"] > 0
    assert datetime.fromisoformat(stats["last_update"])
