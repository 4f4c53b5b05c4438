import asyncio
import json
import logging
import re
import ssl
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from .config import BackendConfig
from .errors import ApiError, InvalidQueryError, RateLimitError

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5 * 1024 * 1024
MAX_QUERY_LENGTH = 200
USER_AGENT = "Requestarr-Bot/1.0"

_UNSAFE_MARKUP = re.compile(r"[<>]")
_UNSAFE_SCHEMES = re.compile(r"\b(?:javascript|vbscript|data):", re.IGNORECASE)
_QUERY_DISALLOWED = re.compile(r"[^\w\s\-.:()\[\]'&,!?]")


def sanitize_string(value: str) -> str:
    value = _UNSAFE_MARKUP.sub("", value)
    value = _UNSAFE_SCHEMES.sub("", value)
    return value.strip()


def sanitize_payload(data: Any) -> Any:
    """Return a copy of a decoded JSON value with every string passed through sanitize_string."""
    if isinstance(data, str):
        return sanitize_string(data)
    if isinstance(data, list):
        return [sanitize_payload(x) for x in data]
    if isinstance(data, dict):
        return {k: sanitize_payload(v) for k, v in data.items()}
    return data


def sanitize_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return params
    out: Dict[str, Any] = {}
    for k, v in params.items():
        if isinstance(v, bool):
            out[k] = "true" if v else "false"
        elif isinstance(v, str):
            out[k] = sanitize_string(v)
        else:
            out[k] = v
    return out


def sanitize_search_query(query: Optional[str]) -> str:
    if not query or not query.strip():
        raise InvalidQueryError("Search query must be a non-empty string")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidQueryError("Search query too long")
    cleaned = _QUERY_DISALLOWED.sub("", sanitize_string(query)).strip()
    if not cleaned:
        raise InvalidQueryError("Search query has no searchable characters")
    return cleaned


class RateLimiter:
    """
    Fixed-window request counter keyed by base URL.
    The window for a key starts on its first request and resets once it has elapsed.
    """

    def __init__(self, max_requests: int = 60, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window = window_seconds
        self._clock = clock
        self._windows: Dict[str, list] = {}  # key -> [count, reset_at]
        self._lock = threading.Lock()

    def acquire(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            slot = self._windows.get(key)
            if slot is None or now >= slot[1]:
                slot = [0, now + self.window]
                self._windows[key] = slot
            if slot[0] >= self.max_requests:
                return False
            slot[0] += 1
            return True


async def call_with_retries(
    send: Callable[[], Awaitable[Any]],
    limiter: RateLimiter,
    key: str,
    label: str,
    retries: int,
    retry_delay: float,
) -> Any:
    """
    Run `send` under the rate limiter, retrying transient ApiErrors up to `retries` times with a
    linear backoff. A refusal from the local limiter is raised straight away.
    """
    attempt = 0
    while True:
        if not limiter.acquire(key):
            raise RateLimitError(f"Rate limit exceeded for {key}")
        try:
            return await send()
        except ApiError as e:
            if not e.transient or attempt >= retries:
                raise
            attempt += 1
            logger.warning("%s failed (%s), retry %d/%d", label, e, attempt, retries)
            await asyncio.sleep(retry_delay * attempt)


class SecureApiClient:
    """
    aiohttp wrapper for one *arr backend.
    Adds the API key header, keeps TLS verification on, rate-limits, retries transient
    failures and sanitizes strings going out and coming back.
    """

    def __init__(
        self,
        cfg: BackendConfig,
        limiter: Optional[RateLimiter] = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.cfg = cfg
        self.name = cfg.name
        self.base_url = cfg.base_url.rstrip("/")
        self.retries = cfg.retries
        self.retry_delay = retry_delay
        self.limiter = limiter or RateLimiter()
        self._session: Optional[aiohttp.ClientSession] = None

    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context()
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        return ctx

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "X-Api-Key": self.cfg.api_key,
                    "User-Agent": USER_AGENT,
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=aiohttp.ClientTimeout(total=self.cfg.timeout),
                connector=aiohttp.TCPConnector(ssl=self._ssl_context()),
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(self, method: str, path: str, params: Optional[Dict[str, Any]], body: Any) -> Any:
        url = self.url_for(path)
        session = self._get_session()
        try:
            async with session.request(method, url, params=params, json=body) as resp:
                raw = await resp.content.read(MAX_CONTENT_LENGTH + 1)
                if len(raw) > MAX_CONTENT_LENGTH:
                    raise ApiError("Response too large", status=resp.status, url=url)
                if resp.status == 429:
                    raise RateLimitError("Rate limited by upstream", status=429, url=url)
                if resp.status < 200 or resp.status >= 300:
                    raise ApiError(f"HTTP {resp.status}: {resp.reason}", status=resp.status, url=url)
                if not raw:
                    return None
                if "application/json" not in resp.headers.get("Content-Type", ""):
                    logger.warning("Unexpected content type from %s: %s", url, resp.headers.get("Content-Type"))
                try:
                    data = json.loads(raw)
                except ValueError:
                    raise ApiError("Invalid JSON response", status=resp.status, url=url)
                return sanitize_payload(data)
        except aiohttp.ClientError as e:
            raise ApiError(f"Connection error: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            raise ApiError("Request timed out", url=url) from e

    async def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json_body: Any = None) -> Any:
        params = sanitize_params(params)
        return await call_with_retries(
            lambda: self._send(method, path, params, json_body),
            self.limiter,
            self.base_url,
            f"{self.name} {method} {path}",
            self.retries,
            self.retry_delay,
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, params=params, json_body=data)

    async def put(self, path: str, data: Any = None) -> Any:
        return await self.request("PUT", path, json_body=data)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("DELETE", path, params=params)
