import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .constants import DEFAULT_PORT, HEARTBEAT_INTERVAL, SEND_TIMEOUT, SUBSCRIBER_QUEUE_SIZE

SRC_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = SRC_DIR / "data"
BUNDLED_DEFAULTS = SRC_DIR / "storage" / "default-settings.json"
REPO_DIR = SRC_DIR.parent.parent
DEFAULT_STATIC_DIR = REPO_DIR / "dist" / "moskee-status-page"


@dataclass
class ServerConfig:
    settings_path: Path = DATA_DIR / "settings.json"
    default_settings_path: Path = BUNDLED_DEFAULTS
    static_dir: Optional[Path] = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "info"
    log_json: bool = False
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    subscriber_queue_size: int = SUBSCRIBER_QUEUE_SIZE
    send_timeout: float = SEND_TIMEOUT

    @classmethod
    def from_env(cls) -> "ServerConfig":
        config = cls()

        if path := _get_env("SETTINGS_PATH"):
            config.settings_path = Path(path)
        if path := _get_env("DEFAULT_SETTINGS_PATH"):
            config.default_settings_path = Path(path)
        config.static_dir = resolve_static_dir(_get_env("STATIC_DIR"))

        if host := _get_env("HOST"):
            config.host = host
        if port := _get_env("PORT"):
            config.port = int(port)
        if level := _get_env("LOG_LEVEL"):
            config.log_level = level.lower()
        if log_json := _get_env("LOG_JSON"):
            config.log_json = log_json.lower() in ("true", "1", "yes")
        if heartbeat := _get_env("HEARTBEAT_INTERVAL"):
            config.heartbeat_interval = float(heartbeat)
        if queue_size := _get_env("SUBSCRIBER_QUEUE_SIZE"):
            config.subscriber_queue_size = int(queue_size)
        if timeout := _get_env("SEND_TIMEOUT"):
            config.send_timeout = float(timeout)

        return config


def _get_env(key: str, default: Any = None) -> Any:
    return os.environ.get(key, default)


def resolve_static_dir(explicit: Optional[str]) -> Optional[Path]:
    '''First candidate holding an index.html, or None when no front-end is built.'''
    candidates = [Path(explicit)] if explicit else []
    candidates += [DEFAULT_STATIC_DIR, DEFAULT_STATIC_DIR / "browser"]
    for candidate in candidates:
        if (candidate / "index.html").is_file():
            return candidate
    return None
