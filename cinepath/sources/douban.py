"""
Douban rating lookup by scraping the public search page.

Douban has no open API and answers bursts of requests with a login wall, so
the client waits before every request and is off by default during
enrichment. Matching is loose: the first result whose cast line
mentions the year, or whose title contains the query, wins.
"""

import asyncio
import logging

from bs4 import BeautifulSoup

from cinepath.scraper.http_client import HttpClient
from cinepath.settings import Settings
from cinepath.sources.omdb import parse_rating

logger = logging.getLogger(__name__)


def match_rating(html: str, title: str, year: str) -> float:
    """Return the rating of the first matching search result, or 0.0."""
    soup = BeautifulSoup(html, "html.parser")
    for result in soup.select(".result"):
        title_el = result.select_one(".title a")
        meta_el = result.select_one(".subject-cast")
        res_title = title_el.get_text(strip=True) if title_el is not None else ""
        res_meta = meta_el.get_text(strip=True) if meta_el is not None else ""
        if year in res_meta or title in res_title:
            rating_el = result.select_one(".rating_nums")
            rating = parse_rating(rating_el.get_text(strip=True) if rating_el is not None else None)
            # Unrated matches do not stop the scan
            if rating:
                return rating
    return 0.0


class DoubanClient:
    def __init__(self, http: HttpClient, settings: Settings) -> None:
        self.http = http
        self.search_url = settings.douban_search_url
        self.delay = settings.douban_delay

    async def get_rating(self, title: str, year: str) -> float:
        if not title:
            return 0.0

        await asyncio.sleep(self.delay)
        params = {"cat": "1002", "q": title}
        html = await self.http.get_text(self.search_url, params=params)
        if html is None:
            logger.warning(f"[Douban] request failed (possibly a login wall), skipped: q={title!r}")
            return 0.0

        rating = match_rating(html, title, year)
        if rating == 0:
            logger.info(f"[Douban] no rating matched: {title} ({year})")
        return rating
