"""Error taxonomy shared by the intake session and the resolution workflow."""

from __future__ import annotations

from typing import Any, Mapping

import httpx

_BODY_LIMIT = 300


def _truncate(text: str | None, limit: int = _BODY_LIMIT) -> str | None:
    if text is None:
        return None
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


class HelpdeskError(RuntimeError):
    """Base error carrying optional HTTP status and response body."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = _truncate(body)

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


class ValidationError(HelpdeskError):
    """Missing or malformed input detected before any network call."""


class InvalidTicketTransition(ValidationError):
    """Requested status change is not allowed by the ticket lifecycle."""


class NetworkError(HelpdeskError):
    """Transport level failure (connection refused, DNS, timeout...)."""


class UploadConflict(HelpdeskError):
    """The attachment store reported a concurrent write on the item."""


class UploadRejected(HelpdeskError):
    """The attachment store refused the upload for a non-conflict reason."""


class RecordCreationFailure(HelpdeskError):
    """Creating the SharePoint list record failed."""


class FinalizationFailure(HelpdeskError):
    """Confirm/decline failed after the remote record may already exist."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        remote_item_id: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.remote_item_id = remote_item_id


def extract_error_message(response: httpx.Response, default: str = "Terjadi kesalahan pada server") -> str:
    """Pull a human readable message out of an error response."""

    try:
        data = response.json()
    except ValueError:
        return _truncate(response.text) or f"HTTP {response.status_code}"

    if isinstance(data, Mapping):
        for key in ("error", "message", "detail"):
            value: Any = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, Mapping):
                nested = value.get("message") or value.get("msg")
                if isinstance(nested, str) and nested:
                    return nested
                # SharePoint odata=verbose: {"error": {"message": {"value": "..."}}}
                if isinstance(nested, Mapping) and isinstance(nested.get("value"), str):
                    return nested["value"]
    return default
