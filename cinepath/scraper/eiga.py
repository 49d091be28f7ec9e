"""
Parsers for eiga.com theater pages.

All functions are pure: they take HTML (and the URL it came from) and return
plain values or small dataclasses. Malformed cells come back as ``None`` so the
sync engines can skip them without aborting the page.
"""

import re
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from typing import List
from typing import Optional
from urllib.parse import urljoin
from urllib.parse import urlparse

from bs4 import BeautifulSoup

FULLWIDTH_PAREN_RE = re.compile(r"（.*?）")
HOUSE_NUMBER_RE = re.compile(r"(.*?\d+丁目\d+-\d+)|(.*?\d+-\d+-\d+)|(.*?\d+-\d+)")
START_TIME_END_RE = re.compile(r"[~～ ]")
PREFECTURE_SUFFIXES = "都道府県"


@dataclass
class CinemaPage:
    """Fields scraped from a cinema detail page."""

    name_jp: str
    address: str = ""
    building_photo: str = ""
    website: str = ""
    url: str = ""


@dataclass
class ScheduleCell:
    """One day of a weekly schedule table."""

    play_date: date
    start_times: List[str] = field(default_factory=list)


@dataclass
class MovieSection:
    """One movie block on a cinema page with its weekly schedule."""

    title_jp: str
    cells: List[ScheduleCell] = field(default_factory=list)

    @property
    def play_dates(self) -> List[date]:
        return sorted({cell.play_date for cell in self.cells})


def clean_cinema_name(raw: str) -> str:
    """
    Strip full-width parenthetical annotations from a cinema name.

    "新宿ピカデリー（新宿区）" -> "新宿ピカデリー"
    """
    return FULLWIDTH_PAREN_RE.sub("", raw).strip()


def parse_play_date(raw: Optional[str]) -> Optional[date]:
    """Parse a data-date attribute in the fixed YYYYMMDD form."""
    raw = (raw or "").strip()
    if len(raw) != 8 or not raw.isdigit():
        return None
    try:
        return datetime.strptime(raw, "%Y%m%d").date()
    except ValueError:
        return None


def parse_start_time(text: Optional[str]) -> Optional[str]:
    """
    Extract the start time of a time span.

    "18:05～20:00" -> "18:05", "11:00" -> "11:00"; anything without a colon or
    shorter than four characters is discarded.
    """
    text = (text or "").strip()
    if not text:
        return None
    text = START_TIME_END_RE.split(text, maxsplit=1)[0]
    if len(text) < 4 or ":" not in text:
        return None
    return text


def clean_address_for_geo(address: str) -> str:
    """
    Trim an address to its house number for geocoding.

    "東京都新宿区新宿3-15-15 新宿ピカデリー内" -> "東京都新宿区新宿3-15-15"
    """
    match = HOUSE_NUMBER_RE.search(address)
    if match and match.group(0):
        return match.group(0)
    return address


def extract_district(address: str) -> str:
    """
    Return the ward ("XX区") part of an address, or "" if there is none.

    "東京都新宿区新宿3-15-15" -> "新宿区"
    """
    if not address:
        return ""
    idx = address.find("区")
    if idx == -1:
        return ""
    start = 0
    for i, ch in enumerate(address):
        if ch in PREFECTURE_SUFFIXES:
            start = i + 1
    if start >= idx:
        start = 0
    return address[start:idx + 1].strip()


def parse_theater_links(html: str, page_url: str, region_path: str) -> List[str]:
    """
    Collect cinema detail links from the regional listing.

    Links are made absolute, restricted to the listing's host and region path,
    and de-duplicated in document order.
    """
    soup = BeautifulSoup(html, "html.parser")
    host = urlparse(page_url).netloc
    seen = set()
    links = []
    for a in soup.select(".theater-area-list a"):
        href = a.get("href")
        if not href:
            continue
        link = urljoin(page_url, href)
        parsed = urlparse(link)
        if parsed.netloc != host or region_path not in parsed.path:
            continue
        link = link.split("#", 1)[0]
        if link in seen:
            continue
        seen.add(link)
        links.append(link)
    return links


def _page_title(soup: BeautifulSoup) -> Optional[str]:
    main = soup.select_one("main")
    if main is None:
        return None
    heading = main.select_one("h1.page-title")
    if heading is None:
        return None
    name = clean_cinema_name(heading.get_text(strip=True))
    return name or None


def parse_cinema_page(html: str, page_url: str) -> Optional[CinemaPage]:
    """Extract name, address, building photo and official site of a cinema."""
    soup = BeautifulSoup(html, "html.parser")
    name = _page_title(soup)
    if not name:
        return None
    main = soup.select_one("main")

    # Banners and coupons live under /shared/; real building shots under /theater/
    photo = ""
    for img in main.select("img"):
        src = img.get("src") or ""
        if "/theater/" in src and "shared" not in src:
            photo = urljoin(page_url, src)
            break

    website = ""
    official = main.select_one("a.icon.official")
    if official is not None:
        website = (official.get("href") or "").strip()
        if website and not website.startswith("http"):
            website = urljoin(page_url, website)

    address = ""
    location = main.select_one(".location dd")
    if location is not None:
        address = location.get_text(strip=True)

    return CinemaPage(
        name_jp=name,
        address=address,
        building_photo=photo,
        website=website,
        url=page_url,
    )


def parse_schedule_sections(html: str) -> List[MovieSection]:
    """
    Extract every movie section and its weekly schedule from a cinema page.

    Sections without a title are dropped; cells with an unparseable date are
    skipped; time spans that do not yield a start time are ignored. A cell
    with a valid date but no valid times still counts towards the movie's
    play dates.
    """
    soup = BeautifulSoup(html, "html.parser")
    sections = []
    for sec in soup.select("section[id^=m]"):
        link = sec.select_one("h2 a")
        title = link.get_text(strip=True) if link is not None else ""
        if not title:
            continue

        movie = MovieSection(title_jp=title)
        for td in sec.select("table.weekly-schedule td[data-date]"):
            play_date = parse_play_date(td.get("data-date"))
            if play_date is None:
                continue
            cell = ScheduleCell(play_date=play_date)
            for span in td.select("span"):
                start = parse_start_time(span.get_text())
                if start:
                    cell.start_times.append(start)
            movie.cells.append(cell)
        sections.append(movie)
    return sections


def parse_cinema_name(html: str) -> Optional[str]:
    """Cleaned cinema name of a detail page, or None if it has no title."""
    return _page_title(BeautifulSoup(html, "html.parser"))
