"""Ticket domain models and the primary ticket store client."""

from .models import (
    DIVISION_OPTIONS,
    URGENT_DIVISION,
    AttachmentRef,
    Base64Attachment,
    CreatedTicket,
    NewTicket,
    PhotoFile,
    Ticket,
    TicketPriority,
    UrlAttachment,
    derive_priority,
    normalize_attachment,
)
from .state import TicketLifecycle, TicketStatus
from .store import TicketStoreClient

__all__ = [
    "DIVISION_OPTIONS",
    "URGENT_DIVISION",
    "AttachmentRef",
    "Base64Attachment",
    "CreatedTicket",
    "NewTicket",
    "PhotoFile",
    "Ticket",
    "TicketLifecycle",
    "TicketPriority",
    "TicketStatus",
    "TicketStoreClient",
    "UrlAttachment",
    "derive_priority",
    "normalize_attachment",
]
