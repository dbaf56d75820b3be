"""Maps transport and response failures into a NormalizedError.

Backends answer with several error shapes: FastAPI's {"detail": "..."},
Pydantic's {"detail": [{"msg": "..."}]}, ad-hoc {"message"}/{"error"} bodies,
bare strings, or nothing at all. Callers only ever see one shape.
"""

import json
import re
from typing import Any

import httpx

from pixelclient.domain.models.errors import NormalizedError

_DETAIL_FIELDS = ("detail", "message", "error")
_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def decode_body(response: httpx.Response) -> Any:
    """Decodes a response body into JSON, text, or None when empty."""
    try:
        content = response.content
    except httpx.ResponseNotRead:
        return None
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError:
        text = response.text
        return text if text.strip() else None


def pick_detail(data: Any) -> str:
    """Extracts a human-readable message from a decoded error body."""
    if data is None:
        return ""
    if isinstance(data, str):
        return data.strip()
    if not isinstance(data, dict):
        return ""

    for field_name in _DETAIL_FIELDS:
        value = data.get(field_name)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, list):
            # Pydantic validation list
            parts = []
            for entry in value:
                if isinstance(entry, dict):
                    msg = entry.get("msg") or entry.get("message")
                    if msg:
                        parts.append(str(msg))
                elif isinstance(entry, str) and entry:
                    parts.append(entry)
            if parts:
                return ", ".join(parts)
    return ""


def transport_code_for(exc: Exception) -> str:
    """'ConnectTimeout' -> 'connect_timeout'."""
    return _CAMEL_BOUNDARY.sub('_', type(exc).__name__).lower()


def _response_error(response: httpx.Response) -> NormalizedError:
    payload = decode_body(response)
    status = response.status_code
    message = pick_detail(payload) or f"Request failed with status {status}"
    return NormalizedError(message, status_code=status, raw_payload=payload)


def normalize_error(failure: BaseException) -> NormalizedError:
    """Converts any failure into a NormalizedError. Never raises.

    Preference order for the message: structured detail/message/error field,
    string body, status-derived text, transport-code-derived text, generic
    fallback.
    """
    if isinstance(failure, NormalizedError):
        return failure

    if isinstance(failure, httpx.HTTPStatusError):
        return _response_error(failure.response)

    if isinstance(failure, httpx.RequestError):
        code = transport_code_for(failure)
        return NormalizedError(f"Network error ({code})", transport_code=code)

    if isinstance(failure, httpx.HTTPError):
        return NormalizedError("Network error")

    text = str(failure).strip()
    return NormalizedError(text or f"Unexpected error ({type(failure).__name__})")
