import os
from dataclasses import dataclass, field
from datetime import time as dtime
from typing import Dict, List, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigurationError


# Environment prefix -> API version path
BACKENDS: Dict[str, str] = {
    "sonarr": "/api/v3",
    "radarr": "/api/v3",
    "lidarr": "/api/v1",
    "readarr": "/api/v1",
    "whisparr": "/api/v3",
    "prowlarr": "/api/v1",
}


@dataclass(frozen=True)
class BackendConfig:
    name: str
    base_url: str  # includes the API version path
    api_key: str
    timeout: float = 30.0
    retries: int = 2


@dataclass
class Config:
    discord_token: str
    owner_user_id: int

    guild_ids: List[int]
    public_arr: bool
    log_level: str
    notify_owner_on_error: bool

    # Daily digests
    enable_digests: bool
    digest_time: dtime
    digest_timezone: str

    backends: Dict[str, BackendConfig] = field(default_factory=dict)
    # Backends whose settings are present but invalid: name -> reason
    backend_errors: Dict[str, str] = field(default_factory=dict)


def getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def getenv_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes")


def getenv_int_list(name: str) -> List[int]:
    v = os.getenv(name)
    if not v:
        return []
    out: List[int] = []
    for part in v.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            continue
    return out


def parse_clock(value: str) -> dtime:
    try:
        hh, mm = value.strip().split(":")
        return dtime(hour=int(hh), minute=int(mm))
    except ValueError:
        raise ConfigurationError(f"Invalid time {value!r}, expected HH:MM")


def validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown timezone {value!r}")
    return value


def validate_url(name: str, value: str) -> str:
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Environment variable {name} must be an http(s) URL", backend=name)
    return value.strip().rstrip("/")


def validate_token(name: str, value: str) -> str:
    value = value.strip()
    if len(value) < 10:
        raise ConfigurationError(f"Environment variable {name} appears to be invalid (too short)", backend=name)
    return value


def load_backend(name: str, api_path: str) -> Optional[BackendConfig]:
    """Read <NAME>_URL / <NAME>_TOKEN and friends. Returns None if the backend is not set up at all."""
    prefix = name.upper()
    url = os.getenv(f"{prefix}_URL", "")
    token = os.getenv(f"{prefix}_TOKEN", "")
    if not url and not token:
        return None
    if not url or not token:
        raise ConfigurationError(f"Both {prefix}_URL and {prefix}_TOKEN are required", backend=name)
    base = validate_url(f"{prefix}_URL", url)
    key = validate_token(f"{prefix}_TOKEN", token)
    timeout = getenv_int(f"{prefix}_TIMEOUT", 30)
    if timeout < 1 or timeout > 300:
        raise ConfigurationError(f"{prefix}_TIMEOUT must be between 1s and 5min", backend=name)
    retries = max(0, getenv_int(f"{prefix}_RETRIES", 2))
    if not base.endswith(api_path):
        base = f"{base}{api_path}"
    return BackendConfig(name=name, base_url=base, api_key=key, timeout=float(timeout), retries=retries)


def load_config() -> Config:
    # Load .env if present
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise ConfigurationError("Environment variable DISCORD_TOKEN is not defined")
    owner = os.getenv("OWNER", "").strip()
    if not owner.isdigit():
        raise ConfigurationError("Environment variable OWNER must be a Discord user ID")

    cfg = Config(
        discord_token=token,
        owner_user_id=int(owner),
        guild_ids=getenv_int_list("GUILD_IDS"),
        public_arr=getenv_bool("PUBLIC_ARR", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        notify_owner_on_error=getenv_bool("NOTIFY_OWNER_ON_ERROR", False),
        enable_digests=getenv_bool("ENABLE_DIGESTS", True),
        digest_time=parse_clock(os.getenv("DIGEST_TIME", "01:00")),
        digest_timezone=validate_timezone(os.getenv("DIGEST_TIMEZONE", "Europe/Paris")),
    )

    # A broken backend only disables its own commands
    for name, api_path in BACKENDS.items():
        try:
            backend = load_backend(name, api_path)
        except ConfigurationError as e:
            cfg.backend_errors[name] = str(e)
            continue
        if backend is not None:
            cfg.backends[name] = backend
    return cfg
