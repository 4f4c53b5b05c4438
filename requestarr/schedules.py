"""
Daily release digests DMed to the owner: anime airing by weekday, Radarr movies and Sonarr
episodes by period. Each is a carousel without grab. Delivery is best-effort; a digest that
fails to build or send is logged and dropped.
"""
import asyncio
import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import discord

from . import library
from .anime import DAY_COLORS, Anime, JikanClient, anime_line, day_order
from .api import SecureApiClient
from .backends import RADARR, SONARR, Backend
from .carousel import DIGEST_TIMEOUT, Carousel
from .commands import AppContext
from .errors import ApiError, SchemaError
from .paginator import present_in, truncate

logger = logging.getLogger(__name__)

PERIODS = ["today", "thisWeek", "nextWeek", "thisMonth", "nextMonth"]

PERIOD_TITLES = {
    "today": "Today",
    "thisWeek": "This Week",
    "nextWeek": "Next Week",
    "thisMonth": "This Month",
    "nextMonth": "Next Month",
}

PERIOD_COLORS = {
    "today": discord.Color(0xFF0000),
    "thisWeek": discord.Color(0xFF8C00),
    "nextWeek": discord.Color(0x32CD32),
    "thisMonth": discord.Color(0x1E90FF),
    "nextMonth": discord.Color(0x9370DB),
}

# Keeps one period inside the embed description limit
MAX_ENTRIES_PER_PERIOD = 10

DIGEST_LABELS = {"prev": "⏮️ Previous", "next": "⏭️ Next"}


def today_in(tz: str) -> date:
    return datetime.now(ZoneInfo(tz)).date()


def period_range(period: str, today: date) -> Tuple[date, date]:
    """Inclusive date range for a period. Weeks start on Monday."""
    if period == "today":
        return today, today
    week_start = today - timedelta(days=today.weekday())
    if period == "thisWeek":
        return week_start, week_start + timedelta(days=6)
    if period == "nextWeek":
        start = week_start + timedelta(days=7)
        return start, start + timedelta(days=6)
    if period == "thisMonth":
        return today.replace(day=1), today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if period == "nextMonth":
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
    raise ValueError(f"Unknown period {period!r}")


async def fetch_periods(client: SecureApiClient, backend: Backend, today: date) -> List[Tuple[str, List[Dict[str, Any]]]]:
    out = []
    for period in PERIODS:
        start, end = period_range(period, today)
        try:
            rows = await library.calendar(client, backend, start, end)
        except (ApiError, SchemaError) as e:
            logger.error("%s digest: %s calendar failed: %s", backend.label, period, e)
            rows = []
        out.append((period, rows[:MAX_ENTRIES_PER_PERIOD]))
    return out


def period_renderer(backend: Backend):
    def render(item: Tuple[str, List[Dict[str, Any]]], index: int, total: int) -> discord.Embed:
        period, rows = item
        body = "\n\n".join(backend.format_calendar_line(r) for r in rows) or f"No {backend.noun} releases."
        embed = discord.Embed(
            title=f"{backend.label} Releases – {PERIOD_TITLES[period]}",
            description=truncate(body),
            color=PERIOD_COLORS[period],
        )
        embed.set_footer(text=f"Period {index + 1}/{total}")
        return embed

    return render


async def release_digest(client: SecureApiClient, backend: Backend, owner_id: int, today: date) -> Carousel:
    items = await fetch_periods(client, backend, today)
    return Carousel(items, period_renderer(backend), owner_id=owner_id, timeout=DIGEST_TIMEOUT, labels=DIGEST_LABELS)


def render_anime_day(item: Tuple[str, List[Anime]], index: int, total: int) -> discord.Embed:
    day, animes = item
    body = "\n".join(anime_line(a) for a in animes) or "No anime airing."
    embed = discord.Embed(title=f"Anime Releases – {day.capitalize()}", description=truncate(body), color=DAY_COLORS[day])
    embed.set_footer(text=f"Day of week: {day}")
    return embed


async def anime_digest(jikan: JikanClient, owner_id: int, today: date) -> Carousel:
    items = []
    for day in day_order(today):
        try:
            animes = await jikan.schedule(day)
        except ApiError as e:
            logger.error("Anime digest: %s schedule failed: %s", day, e)
            animes = []
        items.append((day, animes))
    return Carousel(items, render_anime_day, owner_id=owner_id, timeout=DIGEST_TIMEOUT, labels=DIGEST_LABELS)


async def build_digests(ctx: AppContext, today: Optional[date] = None) -> List[Carousel]:
    today = today or today_in(ctx.cfg.digest_timezone)
    owner_id = ctx.cfg.owner_user_id
    digests = [await anime_digest(ctx.jikan, owner_id, today)]
    for backend in (RADARR, SONARR):
        client = ctx.clients.get(backend.key)
        if client is None:
            logger.info("Skipping %s digest: backend not configured", backend.label)
            continue
        digests.append(await release_digest(client, backend, owner_id, today))
    return digests


async def send_digests(ctx: AppContext, owner: discord.abc.Messageable, today: Optional[date] = None) -> int:
    """Build and DM every digest, then wait for their sessions to end. Returns how many were delivered."""
    digests = await build_digests(ctx, today)
    results = await asyncio.gather(*(present_in(c, owner) for c in digests), return_exceptions=True)
    delivered = 0
    for carousel, result in zip(digests, results):
        if isinstance(result, BaseException):
            logger.error("Digest %s could not be delivered: %r", carousel.id, result)
        else:
            delivered += 1
    return delivered
