"""Screenshot history records as returned by the history endpoints.

The backend has shipped several field spellings over time, so records are
normalized from whichever keys are present.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pixelclient.domain.models.usage import parse_server_time

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


@dataclass
class HistoryItem:
    id: str
    type: str
    format: str
    url: Optional[str]
    created_at: str
    status: str = "completed"
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: int = 0
    processing_time: Optional[Any] = None
    screenshot_url: Optional[str] = None
    full_page: Optional[bool] = None
    dark_mode: Optional[bool] = None
    error_message: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], index: int, now_ms: int) -> "HistoryItem":
        item_id = _first(raw, "id", "screenshot_id")
        created_at = _first(raw, "created_at", "timestamp", "captured_at")
        if created_at is None:
            created_at = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).isoformat()
        return cls(
            id=str(item_id) if item_id is not None else f"generated-{now_ms}-{index}",
            type=_first(raw, "type", "screenshot_type", "category") or "screenshot",
            format=_first(raw, "format", "file_format", "ext", "extension") or "png",
            url=_first(raw, "url", "target_url", "website_url"),
            created_at=str(created_at),
            status=_first(raw, "status") or "completed",
            width=_first(raw, "width"),
            height=_first(raw, "height"),
            file_size=_first(raw, "file_size", "size_bytes", "size") or 0,
            processing_time=_first(raw, "processing_time", "process_time", "duration"),
            screenshot_url=_first(raw, "screenshot_url", "url", "file_url"),
            full_page=_first(raw, "full_page", "fullpage"),
            dark_mode=_first(raw, "dark_mode", "darkmode"),
            error_message=_first(raw, "error_message", "error"),
            description=_first(raw, "description"),
        )

    @property
    def created_at_dt(self) -> datetime:
        return parse_server_time(self.created_at) or _EPOCH
