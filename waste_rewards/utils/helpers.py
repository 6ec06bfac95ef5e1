import datetime as _dt
from typing import Any


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def to_millis(value: Any) -> float:
    """Sort key for timestamps; anything missing or unrecognised counts as epoch 0."""
    if value is None:
        return 0
    if isinstance(value, _dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=_dt.timezone.utc)
        return value.timestamp() * 1000
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return to_millis(_dt.datetime.fromisoformat(value))
        except ValueError:
            return 0
    return 0


def short_id(doc_id: str, length: int = 8) -> str:
    return str(doc_id)[-length:]
