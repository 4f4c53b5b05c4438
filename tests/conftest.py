"""Pytest configuration and in-memory fakes for backend and Discord tests."""
import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest

from requestarr.carousel import ControlEvent, Page, RenderSurface


class FakeArrClient:
    """
    Stands in for SecureApiClient. `routes` maps (METHOD, path) to the decoded JSON to return,
    or to an exception instance to raise. Every call is recorded in `calls`.
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None, name: str = "fake"):
        self.name = name
        self.base_url = f"http://{name}.local/api/v3"
        self.routes = routes or {}
        self.calls: List[Tuple[str, str, Any, Any]] = []

    async def request(self, method: str, path: str, params=None, json_body=None):
        self.calls.append((method, path, params, json_body))
        result = self.routes.get((method, path))
        if isinstance(result, BaseException):
            raise result
        return copy.deepcopy(result)

    async def get(self, path, params=None):
        return await self.request("GET", path, params=params)

    async def post(self, path, data=None, params=None):
        return await self.request("POST", path, params=params, json_body=data)

    async def put(self, path, data=None):
        return await self.request("PUT", path, json_body=data)

    async def delete(self, path, params=None):
        return await self.request("DELETE", path, params=params)

    async def close(self):
        pass

    def calls_to(self, method: str, path: Optional[str] = None):
        return [c for c in self.calls if c[0] == method and (path is None or c[1] == path)]

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] in ("POST", "PUT", "DELETE")]


class FakeSurface(RenderSurface):
    def __init__(self, fail_after_first: bool = False):
        self.pages: List[Page] = []
        self.notices: List[Tuple[ControlEvent, str]] = []
        self.deferred: List[ControlEvent] = []
        self.strip_count = 0
        self.fail_after_first = fail_after_first

    async def render(self, page, event=None):
        if self.fail_after_first and self.pages:
            raise RuntimeError("message deleted")
        self.pages.append(page)

    async def defer(self, event):
        self.deferred.append(event)

    async def notify(self, event, text):
        self.notices.append((event, text))

    async def strip_controls(self):
        self.strip_count += 1

    def controls(self, index: int = -1):
        return {c.action: c for c in self.pages[index].controls}


class FakeUser:
    def __init__(self, user_id: int = 1001, name: str = "alice"):
        self.id = user_id
        self.name = name
        self.display_avatar = SimpleNamespace(url="https://cdn.example.com/avatar.png")

    def __str__(self):
        return self.name


def movie_row(tmdb_id: int, title: str, year: int = 1999, **extra) -> Dict[str, Any]:
    row = {
        "title": title,
        "tmdbId": tmdb_id,
        "year": year,
        "titleSlug": f"{title.lower().replace(' ', '-')}-{tmdb_id}",
        "images": [{"coverType": "poster", "remoteUrl": f"https://image.tmdb.org/{tmdb_id}.jpg"}],
        "overview": f"Overview of {title}",
    }
    row.update(extra)
    return row


@pytest.fixture
def owner():
    return FakeUser(1001, "owner")


@pytest.fixture
def stranger():
    return FakeUser(2002, "stranger")


@pytest.fixture
def radarr_routes():
    """A Radarr with one root folder, one quality profile and an empty library."""
    return {
        ("GET", "/rootfolder"): [{"path": "/movies", "freeSpace": 1000}],
        ("GET", "/qualityprofile"): [{"id": 4, "name": "HD-1080p"}],
        ("GET", "/movie"): [],
        ("POST", "/movie"): {"id": 99},
    }
