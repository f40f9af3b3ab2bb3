"""Configuration loading and saving.

Config file location: ~/.config/bookmark-hub/config.toml

Schema:
    [database]
    path = "bookmarks.db"

    [auth]
    user_id = "..."  # platform user id used by the CLI

    [sync]
    cooldown_minutes = 15
    max_pages = 10
    page_size = 100
    delay = 0.15
    enrich = true

    [api]
    base_url = "https://api.twitter.com/2"
    timeout = 30.0

    [mirror]
    base_url = "https://api.fxtwitter.com"
    timeout = 5.0

Environment overrides:
    SYNC_COOLDOWN_MINUTES, BOOKMARK_HUB_DB,
    BOOKMARK_HUB_API_URL, BOOKMARK_HUB_MIRROR_URL
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "bookmark-hub"
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_COOLDOWN_MINUTES = 15
DEFAULT_API_URL = "https://api.twitter.com/2"
DEFAULT_MIRROR_URL = "https://api.fxtwitter.com"


@dataclass
class SyncConfig:
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    max_pages: int = 10
    page_size: int = 100
    delay: float = 0.15
    enrich: bool = True

    @property
    def cooldown_ms(self) -> int:
        return self.cooldown_minutes * 60 * 1000


@dataclass
class AppConfig:
    database_path: Path = Path("bookmarks.db")
    user_id: str | None = None
    sync: SyncConfig = field(default_factory=SyncConfig)
    api_url: str = DEFAULT_API_URL
    api_timeout: float = 30.0
    mirror_url: str = DEFAULT_MIRROR_URL
    mirror_timeout: float = 5.0


def cooldown_minutes_from_env(default: int = DEFAULT_COOLDOWN_MINUTES) -> int:
    """Read SYNC_COOLDOWN_MINUTES; ignore anything but a positive integer."""
    raw = os.environ.get("SYNC_COOLDOWN_MINUTES")
    if raw:
        try:
            minutes = int(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric SYNC_COOLDOWN_MINUTES=%r", raw)
            return default
        if minutes > 0:
            return minutes
    return default


def load_config(config_path: Path = CONFIG_FILE) -> AppConfig:
    """Load config from TOML file, falling back to defaults when absent."""
    data: dict = {}
    if config_path.exists():
        with open(config_path, "rb") as f:
            data = tomllib.load(f)

    db_data = data.get("database", {})
    auth_data = data.get("auth", {})
    sync_data = data.get("sync", {})
    api_data = data.get("api", {})
    mirror_data = data.get("mirror", {})

    cooldown = int(sync_data.get("cooldown_minutes", DEFAULT_COOLDOWN_MINUTES))
    if cooldown <= 0:
        raise ValueError("sync.cooldown_minutes must be a positive integer")

    return AppConfig(
        database_path=Path(
            os.environ.get("BOOKMARK_HUB_DB", db_data.get("path", "bookmarks.db"))
        ),
        user_id=auth_data.get("user_id") or None,
        sync=SyncConfig(
            cooldown_minutes=cooldown_minutes_from_env(cooldown),
            max_pages=int(sync_data.get("max_pages", 10)),
            page_size=int(sync_data.get("page_size", 100)),
            delay=float(sync_data.get("delay", 0.15)),
            enrich=bool(sync_data.get("enrich", True)),
        ),
        api_url=os.environ.get(
            "BOOKMARK_HUB_API_URL", api_data.get("base_url", DEFAULT_API_URL)
        ),
        api_timeout=float(api_data.get("timeout", 30.0)),
        mirror_url=os.environ.get(
            "BOOKMARK_HUB_MIRROR_URL", mirror_data.get("base_url", DEFAULT_MIRROR_URL)
        ),
        mirror_timeout=float(mirror_data.get("timeout", 5.0)),
    )


def save_config(config: AppConfig, config_path: Path = CONFIG_FILE) -> None:
    """Write config to TOML file with restricted permissions."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "database": {"path": str(config.database_path)},
        "sync": {
            "cooldown_minutes": config.sync.cooldown_minutes,
            "max_pages": config.sync.max_pages,
            "page_size": config.sync.page_size,
            "delay": config.sync.delay,
            "enrich": config.sync.enrich,
        },
        "api": {"base_url": config.api_url, "timeout": config.api_timeout},
        "mirror": {"base_url": config.mirror_url, "timeout": config.mirror_timeout},
    }
    if config.user_id:
        data["auth"] = {"user_id": config.user_id}

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(config_path, 0o600)


def config_exists(config_path: Path = CONFIG_FILE) -> bool:
    """Check if config file exists."""
    return config_path.exists()
