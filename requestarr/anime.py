"""
Jikan (unofficial MyAnimeList API) client plus the formatting shared by /mal and the anime digest.
No API key; Jikan allows about 60 requests a minute, so calls go through the same RateLimiter
as the *arr clients.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import discord

from .api import USER_AGENT, RateLimiter, call_with_retries
from .errors import ApiError, RateLimitError, SchemaError

logger = logging.getLogger(__name__)

JIKAN_URL = "https://api.jikan.moe/v4"
MAL_URL = "https://myanimelist.net"

SEASONS = ("winter", "spring", "summer", "fall")
CATALOG_KINDS = ("anime", "manga")

# Monday-based, like date.weekday()
DAYS_OF_WEEK = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DAY_COLORS = {
    "monday": discord.Color.orange(),
    "tuesday": discord.Color.yellow(),
    "wednesday": discord.Color.green(),
    "thursday": discord.Color.blue(),
    "friday": discord.Color.purple(),
    "saturday": discord.Color.gold(),
    "sunday": discord.Color.red(),
}


@dataclass(frozen=True)
class Anime:
    mal_id: int
    title: str
    synopsis: Optional[str] = None
    broadcast_time: Optional[str] = None
    episodes: Optional[int] = None
    genres: Tuple[str, ...] = ()

    @property
    def url(self) -> str:
        return f"{MAL_URL}/anime/{self.mal_id}"

    @classmethod
    def from_json(cls, row: Any) -> "Anime":
        if not isinstance(row, dict) or not isinstance(row.get("mal_id"), int) or not row.get("title"):
            raise SchemaError("Anime row is missing 'mal_id' or 'title'")
        synopsis = row.get("synopsis")
        episodes = row.get("episodes")
        return cls(
            mal_id=row["mal_id"],
            title=str(row["title"]),
            synopsis=synopsis if isinstance(synopsis, str) else None,
            broadcast_time=(row.get("broadcast") or {}).get("time") or None,
            episodes=episodes if isinstance(episodes, int) else None,
            genres=_genre_names(row),
        )


@dataclass(frozen=True)
class CatalogEntry:
    """First hit of an anime or manga catalog search."""
    kind: str
    mal_id: int
    title: str
    url: str
    synopsis: Optional[str] = None
    score: Optional[float] = None
    genres: Tuple[str, ...] = ()
    # Episodes for anime, chapters for manga
    length: Optional[int] = None
    aired: Optional[str] = None
    image: Optional[str] = None

    @classmethod
    def from_json(cls, kind: str, row: Any) -> "CatalogEntry":
        if not isinstance(row, dict) or not isinstance(row.get("mal_id"), int) or not row.get("title"):
            raise SchemaError(f"{kind.capitalize()} row is missing 'mal_id' or 'title'")
        length = row.get("episodes" if kind == "anime" else "chapters")
        score = row.get("score")
        synopsis = row.get("synopsis")
        return cls(
            kind=kind,
            mal_id=row["mal_id"],
            title=str(row["title"]),
            url=str(row.get("url") or f"{MAL_URL}/{kind}/{row['mal_id']}"),
            synopsis=synopsis if isinstance(synopsis, str) else None,
            score=score if isinstance(score, (int, float)) else None,
            genres=_genre_names(row),
            length=length if isinstance(length, int) else None,
            aired=(row.get("aired") or {}).get("string") if kind == "anime" else None,
            image=((row.get("images") or {}).get("jpg") or {}).get("image_url"),
        )


def _genre_names(row: Dict[str, Any]) -> Tuple[str, ...]:
    return tuple(g["name"] for g in row.get("genres") or [] if isinstance(g, dict) and g.get("name"))


def parse_anime_list(rows: Any) -> List[Anime]:
    out: List[Anime] = []
    for row in rows or []:
        try:
            out.append(Anime.from_json(row))
        except SchemaError:
            continue
    return out


def day_order(today: date) -> List[str]:
    """The seven weekdays starting at today and wrapping around the week."""
    start = today.weekday()
    return [DAYS_OF_WEEK[(start + i) % 7] for i in range(7)]


def anime_line(anime: Anime, synopsis_chars: int = 0) -> str:
    line = f"**[{anime.title}]({anime.url})**"
    if synopsis_chars:
        text = anime.synopsis[:synopsis_chars] + "..." if anime.synopsis else "No synopsis available."
        line = f"{line}\n{text}"
    return line


def release_line(anime: Anime) -> str:
    time = f"{anime.broadcast_time} JST" if anime.broadcast_time else "N/A"
    genres = ", ".join(anime.genres) or "N/A"
    return f"**[{anime.title}]({anime.url})**\n⌛ Time: {time}\n📺 Episodes: {anime.episodes or '?'}\n🎭 Genres: {genres}"


class JikanClient:
    def __init__(self, base_url: str = JIKAN_URL, timeout: float = 15.0, retries: int = 2, retry_delay: float = 1.0, limiter: Optional[RateLimiter] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.limiter = limiter or RateLimiter()
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _fetch(self, path: str, params: Optional[Dict[str, str]]) -> Optional[Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with self._get_session().get(url, params=params) as resp:
                if resp.status == 404:
                    return None
                if resp.status == 429:
                    raise RateLimitError("Rate limited by Jikan", status=429, url=url)
                if resp.status >= 400:
                    raise ApiError(f"HTTP {resp.status}: {resp.reason}", status=resp.status, url=url)
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    raise ApiError("Invalid JSON response", status=resp.status, url=url)
        except aiohttp.ClientError as e:
            raise ApiError(f"Connection error: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            raise ApiError("Request timed out", url=url) from e
        if not isinstance(body, dict):
            raise ApiError("Unexpected Jikan response", url=url)
        return body.get("data")

    async def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
        """GET a Jikan endpoint and return its "data" member, or None on 404."""
        return await call_with_retries(
            lambda: self._fetch(path, params),
            self.limiter,
            self.base_url,
            f"Jikan GET {path}",
            self.retries,
            self.retry_delay,
        )

    async def user(self, username: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"/users/{username}")

    async def statistics(self, username: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"/users/{username}/statistics")

    async def favorites(self, username: str) -> List[Anime]:
        data = await self.get(f"/users/{username}/favorites")
        if not isinstance(data, dict):
            return []
        return parse_anime_list(data.get("anime"))

    async def season(self, year: int, season: str) -> List[Anime]:
        if season not in SEASONS:
            raise ValueError(f"Unknown season {season!r}")
        return parse_anime_list(await self.get(f"/seasons/{year}/{season}"))

    async def schedule(self, day: str) -> List[Anime]:
        return parse_anime_list(await self.get("/schedules", params={"filter": day, "kids": "false"}))

    async def search(self, kind: str, query: str) -> Optional[CatalogEntry]:
        """Best catalog match for `query`, or None."""
        if kind not in CATALOG_KINDS:
            raise ValueError(f"Unknown catalog {kind!r}")
        rows = await self.get(f"/{kind}", params={"q": query, "limit": "1"})
        if not isinstance(rows, list) or not rows:
            return None
        return CatalogEntry.from_json(kind, rows[0])
