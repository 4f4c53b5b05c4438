from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .errors import SchemaError

T = TypeVar("T")


def _opt_str(value: Any) -> Optional[str]:
    # 0 / "" mean "unknown" in *arr payloads
    if value is None or value == "" or value == 0:
        return None
    return str(value)


def _year(row: Dict[str, Any]) -> Optional[int]:
    year = row.get("year")
    if isinstance(year, int) and year > 0:
        return year
    date = row.get("releaseDate") or row.get("firstAired") or ""
    if isinstance(date, str) and len(date) >= 4 and date[:4].isdigit():
        return int(date[:4])
    return None


def _fold(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else value


@dataclass(frozen=True)
class Image:
    cover_type: str
    url: Optional[str]

    @classmethod
    def from_json(cls, row: Any) -> Optional["Image"]:
        if not isinstance(row, dict):
            return None
        url = row.get("remoteUrl") or row.get("url")
        return cls(cover_type=str(row.get("coverType") or ""), url=url if isinstance(url, str) else None)


@dataclass(frozen=True)
class SearchResult:
    """One row of a backend lookup response."""
    external_id: Optional[str]
    title: str
    year: Optional[int] = None
    slug: Optional[str] = None
    images: Tuple[Image, ...] = ()
    overview: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def poster(self) -> Optional[str]:
        for kind in ("poster", "cover"):
            for img in self.images:
                if img.cover_type == kind and img.url:
                    return img.url
        return None

    @classmethod
    def from_json(cls, row: Any, id_field: str, title_field: str = "title", slug_field: str = "titleSlug", fold_slug: bool = False) -> "SearchResult":
        if not isinstance(row, dict):
            raise SchemaError(f"Lookup row is not an object: {type(row).__name__}")
        title = row.get(title_field)
        if not isinstance(title, str) or not title:
            raise SchemaError(f"Lookup row is missing {title_field!r}")
        slug = _opt_str(row.get(slug_field))
        images = tuple(img for img in (Image.from_json(x) for x in row.get("images") or []) if img)
        overview = row.get("overview")
        return cls(
            external_id=_opt_str(row.get(id_field)),
            title=title,
            year=_year(row),
            slug=_fold(slug) if fold_slug else slug,
            images=images,
            overview=overview if isinstance(overview, str) else None,
            raw=row,
        )


@dataclass(frozen=True)
class LibraryEntity:
    """An item the backend already knows about."""
    id: int
    title: str
    external_id: Optional[str] = None
    slug: Optional[str] = None
    monitored: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, row: Any, id_field: str, title_field: str = "title", slug_field: str = "titleSlug", fold_slug: bool = False) -> "LibraryEntity":
        if not isinstance(row, dict):
            raise SchemaError(f"Library row is not an object: {type(row).__name__}")
        internal_id = row.get("id")
        if not isinstance(internal_id, int) or isinstance(internal_id, bool):
            raise SchemaError("Library row is missing a numeric 'id'")
        title = row.get(title_field)
        slug = _opt_str(row.get(slug_field))
        return cls(
            id=internal_id,
            title=title if isinstance(title, str) else "",
            external_id=_opt_str(row.get(id_field)),
            slug=_fold(slug) if fold_slug else slug,
            monitored=bool(row.get("monitored", False)),
            raw=row,
        )


@dataclass(frozen=True)
class RootFolder:
    path: str
    free_space: Optional[int] = None

    @classmethod
    def from_json(cls, row: Any) -> "RootFolder":
        if not isinstance(row, dict) or not isinstance(row.get("path"), str) or not row["path"]:
            raise SchemaError("Root folder row is missing 'path'")
        free = row.get("freeSpace")
        return cls(path=row["path"], free_space=free if isinstance(free, int) else None)


@dataclass(frozen=True)
class QualityProfile:
    """Also used for Readarr metadata profiles, which share the {id, name} shape."""
    id: int
    name: str = ""

    @classmethod
    def from_json(cls, row: Any) -> "QualityProfile":
        if not isinstance(row, dict) or not isinstance(row.get("id"), int):
            raise SchemaError("Profile row is missing a numeric 'id'")
        return cls(id=row["id"], name=str(row.get("name") or ""))


def parse_list(data: Any, parser: Callable[[Any], T]) -> List[T]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise SchemaError(f"Expected a JSON array, got {type(data).__name__}")
    return [parser(row) for row in data]
