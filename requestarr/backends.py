"""
Per-backend knowledge: REST resource names, which fields carry the external ID and slug,
how numeric queries are qualified, and how add / monitor payloads are shaped.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .models import LibraryEntity, SearchResult

MAX_NUMERIC_ID_DIGITS = 8
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


@dataclass(frozen=True)
class AddContext:
    root_folder_path: str
    quality_profile_id: int
    metadata_profile_id: Optional[int] = None


def format_date(value: Any) -> str:
    if isinstance(value, str) and len(value) >= 10:
        return value[:10]
    return "?"


def _movie_payload(candidate: SearchResult, ctx: AddContext) -> Dict[str, Any]:
    raw = candidate.raw
    return {
        "title": candidate.title,
        "qualityProfileId": ctx.quality_profile_id,
        "titleSlug": str(raw.get("titleSlug") or ""),
        "images": raw.get("images") or [],
        "tmdbId": raw.get("tmdbId"),
        "year": raw.get("year"),
        "rootFolderPath": ctx.root_folder_path,
        "monitored": True,
        "addOptions": {"searchForMovie": True},
    }


def _series_payload(candidate: SearchResult, ctx: AddContext) -> Dict[str, Any]:
    raw = candidate.raw
    payload = {
        "title": candidate.title,
        "qualityProfileId": ctx.quality_profile_id,
        "tvdbId": raw.get("tvdbId"),
        "titleSlug": str(raw.get("titleSlug") or ""),
        "images": raw.get("images") or [],
        "year": raw.get("year"),
        "rootFolderPath": ctx.root_folder_path,
        "seasonFolder": True,
        "monitored": True,
        "addOptions": {"searchForMissingEpisodes": True},
    }
    if raw.get("seasons"):
        payload["seasons"] = raw["seasons"]
    return payload


def _artist_payload(candidate: SearchResult, ctx: AddContext) -> Dict[str, Any]:
    raw = candidate.raw
    return {
        "artistName": candidate.title,
        "qualityProfileId": ctx.quality_profile_id,
        "metadataProfileId": ctx.metadata_profile_id,
        "foreignArtistId": raw.get("foreignArtistId"),
        "images": raw.get("images") or [],
        "rootFolderPath": ctx.root_folder_path,
        "monitored": True,
        "addOptions": {"searchForMissingAlbums": True},
    }


def _book_payload(candidate: SearchResult, ctx: AddContext) -> Dict[str, Any]:
    raw = candidate.raw
    author = raw.get("author") or {}
    return {
        "monitored": True,
        "author": {
            "monitored": True,
            "qualityProfileId": ctx.quality_profile_id,
            "metadataProfileId": ctx.metadata_profile_id,
            "foreignAuthorId": author.get("foreignAuthorId"),
            "rootFolderPath": ctx.root_folder_path,
            "addOptions": {"searchForMissingBooks": True, "monitored": True},
        },
        "editions": [
            {
                "title": ed.get("title"),
                "titleSlug": ed.get("titleSlug"),
                "images": ed.get("images") or [],
                "foreignEditionId": ed.get("foreignEditionId"),
                "monitored": True,
                "manualAdd": True,
            }
            for ed in raw.get("editions") or []
            if isinstance(ed, dict)
        ],
        "foreignBookId": raw.get("foreignBookId"),
        "addOptions": {"searchForNewBook": True},
        "tags": [],
    }


def _monitor_payload(entity: LibraryEntity) -> Dict[str, Any]:
    return dict(entity.raw, monitored=True)


def _monitor_series_payload(entity: LibraryEntity) -> Dict[str, Any]:
    # Every season except specials
    seasons = [dict(s, monitored=s.get("seasonNumber") != 0) for s in entity.raw.get("seasons") or [] if isinstance(s, dict)]
    return dict(entity.raw, monitored=True, seasons=seasons)


def _movie_calendar_line(row: Dict[str, Any]) -> str:
    return (
        f"**{row.get('title') or '?'}**\n"
        f"📅 In Cinemas: {format_date(row.get('inCinemas'))}\n"
        f"🎬 Release: {format_date(row.get('digitalRelease'))}"
    )


def episode_code(row: Dict[str, Any]) -> str:
    season, number = row.get("seasonNumber"), row.get("episodeNumber")
    if isinstance(season, int) and isinstance(number, int):
        return f"S{season:02d}E{number:02d}"
    return ""


def _episode_calendar_line(row: Dict[str, Any]) -> str:
    series = row.get("series") or {}
    title = series.get("title") or row.get("title") or "?"
    code = episode_code(row)
    name = f" - {row['title']}" if series.get("title") and row.get("title") else ""
    return f"**{title}** {code}{name}\n📅 Air date: {format_date(row.get('airDateUtc') or row.get('airDate'))}"


def _album_calendar_line(row: Dict[str, Any]) -> str:
    artist = row.get("artist") or {}
    return (
        f"**{row.get('title') or '?'}**\n"
        f"📅 Release: {format_date(row.get('releaseDate'))}\n"
        f"🎤 Artist: {artist.get('artistName') or '?'}"
    )


def _book_calendar_line(row: Dict[str, Any]) -> str:
    author = row.get("author") or {}
    return (
        f"**{row.get('title') or '?'}**\n"
        f"📅 Release: {format_date(row.get('releaseDate'))}\n"
        f"✍️ Author: {author.get('authorName') or '?'}"
    )


@dataclass(frozen=True)
class Backend:
    key: str
    label: str
    entity: str  # REST resource, e.g. "movie" -> /movie, /movie/lookup
    noun: str
    id_field: str
    id_label: str
    build_add_payload: Callable[[SearchResult, AddContext], Dict[str, Any]]
    format_calendar_line: Callable[[Dict[str, Any]], str]
    build_monitor_payload: Callable[[LibraryEntity], Dict[str, Any]] = _monitor_payload
    title_field: str = "title"
    slug_field: str = "titleSlug"
    # Lowercase slugs before matching; for name stand-ins like Lidarr's artistName
    fold_slug: bool = False
    # Numeric queries become "<prefix>:<digits>"
    id_prefix: Optional[str] = None
    # Lidarr accepts MusicBrainz IDs as "lidarr:<uuid>"
    uuid_prefix: Optional[str] = None
    # Extra raw ID fields that count as a match when set on both sides
    extra_id_fields: Tuple[str, ...] = ()
    needs_metadata_profile: bool = False
    calendar_params: Dict[str, Any] = field(default_factory=dict)
    examples: str = ""

    def query_term(self, query: str) -> Optional[str]:
        """
        Qualify ID-looking queries. Returns None when a numeric query is too long to be a
        catalog ID; free text is returned as-is.
        """
        if self.id_prefix and query.isdigit():
            if len(query) > MAX_NUMERIC_ID_DIGITS:
                return None
            return f"{self.id_prefix}:{query}"
        if self.uuid_prefix and _UUID.match(query):
            return f"{self.uuid_prefix}:{query}"
        return query

    def parse_result(self, row: Any) -> SearchResult:
        return SearchResult.from_json(row, self.id_field, self.title_field, self.slug_field, self.fold_slug)

    def parse_entity(self, row: Any) -> LibraryEntity:
        return LibraryEntity.from_json(row, self.id_field, self.title_field, self.slug_field, self.fold_slug)

    def matches(self, entity: LibraryEntity, candidate: SearchResult) -> bool:
        """External ID or slug equality; either is enough."""
        if entity.external_id and entity.external_id == candidate.external_id:
            return True
        if entity.slug and entity.slug == candidate.slug:
            return True
        for name in self.extra_id_fields:
            a, b = entity.raw.get(name), candidate.raw.get(name)
            if a and b and a == b:
                return True
        return False

    def describe(self, candidate: SearchResult) -> str:
        return f"**Year:** {candidate.year or '?'}\n**{self.id_label}:** {candidate.external_id or '?'}"


RADARR = Backend(
    key="radarr",
    label="Radarr",
    entity="movie",
    noun="movie",
    id_field="tmdbId",
    id_label="TMDB ID",
    id_prefix="tmdb",
    build_add_payload=_movie_payload,
    format_calendar_line=_movie_calendar_line,
    examples='/radarr add query:"Inception"',
)

SONARR = Backend(
    key="sonarr",
    label="Sonarr",
    entity="series",
    noun="series",
    id_field="tvdbId",
    id_label="TVDB ID",
    id_prefix="tmdb",
    extra_id_fields=("tmdbId",),
    build_add_payload=_series_payload,
    build_monitor_payload=_monitor_series_payload,
    format_calendar_line=_episode_calendar_line,
    calendar_params={"includeSeries": True},
    examples='/sonarr add query:"Tensei shitara Slime Datta Ken"',
)

LIDARR = Backend(
    key="lidarr",
    label="Lidarr",
    entity="artist",
    noun="artist",
    id_field="foreignArtistId",
    id_label="MusicBrainz ID",
    title_field="artistName",
    # Artists have no slug; the lowercased name plays that role
    slug_field="artistName",
    fold_slug=True,
    uuid_prefix="lidarr",
    needs_metadata_profile=True,
    build_add_payload=_artist_payload,
    format_calendar_line=_album_calendar_line,
    calendar_params={"includeArtist": True},
    examples='/lidarr add query:"Daft Punk"',
)

READARR = Backend(
    key="readarr",
    label="Readarr",
    entity="book",
    noun="book",
    id_field="foreignBookId",
    id_label="Foreign Book ID",
    needs_metadata_profile=True,
    build_add_payload=_book_payload,
    format_calendar_line=_book_calendar_line,
    calendar_params={"includeAuthor": True},
    examples='/readarr add query:"The Way of Kings"',
)

WHISPARR = Backend(
    key="whisparr",
    label="Whisparr",
    entity="movie",
    noun="movie",
    id_field="tmdbId",
    id_label="TMDB ID",
    id_prefix="tmdb",
    build_add_payload=_movie_payload,
    format_calendar_line=_movie_calendar_line,
    examples='/whisparr add query:"Inception"',
)

MEDIA_BACKENDS: Dict[str, Backend] = {b.key: b for b in (RADARR, SONARR, LIDARR, READARR, WHISPARR)}
