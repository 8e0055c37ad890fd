import json
from datetime import datetime, timezone
from typing import Optional

def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")

# NaN and Infinity are not JSON; refuse them in both directions
def strict_loads(raw):
    return json.loads(raw, parse_constant=_reject_constant)

def strict_dumps(obj, **kwargs) -> str:
    return json.dumps(obj, allow_nan=False, **kwargs)

def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat()

# Server -> client websocket messages are built as dicts
def make_pong(request_id: Optional[str]):
    return {"type": "pong", "request_id": request_id, "ts": now_ts()}

def make_settings_event(settings: dict):
    return {"type": "settings", "settings": settings, "ts": now_ts()}

def make_error(request_id: Optional[str], code: str, message: str):
    return {"type": "error", "request_id": request_id, "error": {"code": code, "message": message}, "ts": now_ts()}

# Server-sent events are framed as text blocks terminated by a blank line
def make_sse_data(settings: dict) -> str:
    return f"data: {strict_dumps(settings)}\n\n"

def make_sse_comment(text: str = "keep-alive") -> str:
    return f": {text}\n\n"
