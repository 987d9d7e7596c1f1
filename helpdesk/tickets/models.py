from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Union

from .state import TicketStatus


class TicketPriority(str, Enum):
    """Priority levels understood by the ticket store and the SharePoint list."""

    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"


URGENT_DIVISION = "BOD (Urgent)"

DIVISION_OPTIONS: tuple[str, ...] = (
    URGENT_DIVISION,
    "Sekretarian Perusahaan",
    "Internal Audit",
    "Keuangan",
    "Akuntansi",
    "HCM",
    "Manajemen Risiko",
    "Legal",
    "Pemasaran",
    "Produksi & Peralatan",
    "Pengembangan Bisnis & Portofolio",
    "TI & System",
    "QHSE",
    "Pengendalian Proyek & SCM",
    "Produksi & Peralatan WS 1",
    "Produksi & Peralatan WS 2",
    "WS 1",
    "WS 2",
    "WWE",
    "WSE",
    "Project Coordinator",
    "Proyek",
)

DEFAULT_DIVISION = "Umum"


def derive_priority(division: str | None) -> TicketPriority:
    """Map a division to its ticket priority.

    Only the board division is urgent; every other division, including
    unknown free text, is handled at normal priority.
    """

    normalized = (division or "").strip().casefold()
    if normalized == URGENT_DIVISION.casefold():
        return TicketPriority.URGENT
    return TicketPriority.NORMAL


@dataclass(frozen=True, slots=True)
class UrlAttachment:
    """Attachment stored remotely and reachable by URL."""

    url: str
    kind: str = "url"


@dataclass(frozen=True, slots=True)
class Base64Attachment:
    """Attachment embedded in the ticket payload."""

    data: str
    content_type: str = "application/octet-stream"
    kind: str = "base64"

    def decode(self) -> bytes:
        return base64.b64decode(self.data, validate=False)


AttachmentRef = Union[UrlAttachment, Base64Attachment]

_DATA_URL_RE = re.compile(r"^data:(?P<type>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.DOTALL)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/\s]+={0,2}$")
_MIN_BARE_BASE64 = 64


def _from_string(value: str, content_type: str | None = None) -> AttachmentRef | None:
    text = value.strip()
    if not text:
        return None
    match = _DATA_URL_RE.match(text)
    if match:
        return Base64Attachment(
            data=match.group("data"),
            content_type=match.group("type") or content_type or "application/octet-stream",
        )
    if text.startswith(("http://", "https://")):
        return UrlAttachment(url=text)
    # bare base64 must be long enough not to be confused with a path
    if len(text) >= _MIN_BARE_BASE64 and _BASE64_RE.match(text):
        try:
            base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError):
            return None
        return Base64Attachment(data=text, content_type=content_type or "application/octet-stream")
    return UrlAttachment(url=text)


def normalize_attachment(raw: Any) -> AttachmentRef | None:
    """Turn any attachment shape found in store payloads into an ``AttachmentRef``."""

    if raw is None:
        return None
    if isinstance(raw, (UrlAttachment, Base64Attachment)):
        return raw
    if isinstance(raw, str):
        return _from_string(raw)
    if isinstance(raw, Mapping):
        content_type = raw.get("contentType") or raw.get("content_type") or raw.get("mimeType")
        for key in ("data", "contentBytes", "base64"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                ref = _from_string(value, content_type)
                if isinstance(ref, UrlAttachment):
                    return Base64Attachment(data=value.strip(), content_type=content_type or "application/octet-stream")
                return ref
        for key in ("url", "href", "src", "path"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return UrlAttachment(url=value.strip())
    return None


@dataclass(frozen=True, slots=True)
class PhotoFile:
    """Image selected by a reporter or an operator."""

    name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_image(self) -> bool:
        return self.content_type.lower().startswith("image/")


@dataclass(slots=True)
class Ticket:
    """Primary ticket record as served by the ticket store."""

    id: str
    ticket_number: str
    created_at: datetime | None
    reporter: str
    division: str
    priority: TicketPriority
    description: str
    status: TicketStatus
    attachment: AttachmentRef | None = None
    assignee: str | None = None
    notes: str | None = None
    operator: str | None = None
    sharepoint_item_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == TicketStatus.BELUM


@dataclass(frozen=True, slots=True)
class NewTicket:
    """Payload for creating a ticket from the intake conversation."""

    reporter: str
    division: str
    description: str
    photo: PhotoFile | None = None

    @property
    def priority(self) -> TicketPriority:
        return derive_priority(self.division)


@dataclass(frozen=True, slots=True)
class CreatedTicket:
    """Store acknowledgement of a newly created ticket."""

    id: str
    ticket_number: str
    ticket: Ticket | None = None


def parse_priority(value: Any) -> TicketPriority:
    text = str(value or "").strip().lower()
    for priority in TicketPriority:
        if priority.value.lower() == text:
            return priority
    return TicketPriority.NORMAL


def parse_status(value: Any) -> TicketStatus:
    text = str(value or "").strip().lower()
    for status in TicketStatus:
        if status.value.lower() == text:
            return status
    raise ValueError(f"Unknown ticket status: {value!r}")


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def ticket_from_row(row: Mapping[str, Any]) -> Ticket:
    """Build a :class:`Ticket` from a ticket store row."""

    ticket_id = _first(row, "id", "ID", "_id")
    if ticket_id is None:
        raise ValueError("Ticket row without id")
    item_id = _first(row, "sharePointItemId", "sharepointItemId", "spItemId")
    return Ticket(
        id=str(ticket_id),
        ticket_number=str(_first(row, "ticketNo", "ticketNumber", "TicketNumber") or ticket_id),
        created_at=_parse_datetime(_first(row, "createdAt", "created_at", "Created")),
        reporter=str(_first(row, "name", "user", "reporter") or ""),
        division=str(_first(row, "division", "department", "Divisi") or DEFAULT_DIVISION),
        priority=parse_priority(_first(row, "priority", "Priority")),
        description=str(_first(row, "description", "Description") or ""),
        status=parse_status(_first(row, "status", "Status") or TicketStatus.BELUM.value),
        attachment=normalize_attachment(_first(row, "photo", "photoUrl", "PhotoUrl", "attachment")),
        assignee=_first(row, "assignee", "pelaksana"),
        notes=_first(row, "notes", "resolutionNotes"),
        operator=_first(row, "operator", "resolvedBy"),
        sharepoint_item_id=None if item_id is None else str(item_id),
    )
