from .constants import (
    DEFAULT_SETTINGS,
    HEARTBEAT_INTERVAL,
    SEND_TIMEOUT,
    SUBSCRIBER_QUEUE_SIZE,
)
from .exceptions import CorruptDocument, InvalidOrUnpersistable, SettingsError, StorageUnavailable
from .utility_functions import (
    make_error,
    make_pong,
    make_settings_event,
    make_sse_comment,
    make_sse_data,
    now_ts,
    strict_dumps,
    strict_loads,
)
from .normalization import normalize, valid_bullets, valid_slides
from .config import ServerConfig, resolve_static_dir
from .logging_setup import JSONFormatter, setup_logging
