from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.tickets.models import DEFAULT_DIVISION, Ticket, TicketPriority
from helpdesk.tickets.state import TicketLifecycle, TicketStatus

TITLE_LIMIT = 120


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class ResolutionForm(BaseModel):
    """Operator-entered data for confirming a ticket."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str = Field(default="")
    ticket_number: str = Field(default="")
    description: str = Field(default="")
    priority: TicketPriority = Field(default=TicketPriority.NORMAL)
    status: TicketStatus = Field(default=TicketStatus.SELESAI)
    division: str = Field(default=DEFAULT_DIVISION)
    reported_at: datetime | None = None
    finished_at: datetime | None = None
    assignee: str | None = None
    ticket_type: str | None = None
    requestor: str | None = None
    issue_logged_by: str | None = None

    @field_validator("status")
    @classmethod
    def _confirm_status_only(cls, value: TicketStatus) -> TicketStatus:
        if value not in TicketLifecycle.CONFIRM_STATUSES:
            raise ValueError(f"Status {value.value} tidak dapat dipakai untuk konfirmasi")
        return value

    @classmethod
    def from_ticket(cls, ticket: Ticket, *, operator: str, now: datetime, **overrides: Any) -> "ResolutionForm":
        """Pre-fill the form from a pending ticket."""

        values: dict[str, Any] = {
            "ticket_number": ticket.ticket_number,
            "description": ticket.description,
            "priority": ticket.priority,
            "division": ticket.division or DEFAULT_DIVISION,
            "reported_at": ticket.created_at,
            "finished_at": now,
            "assignee": operator,
            "requestor": ticket.reporter,
            "issue_logged_by": operator,
        }
        values.update(overrides)
        return cls(**values)

    def resolved_title(self) -> str:
        if self.title:
            return self.title
        if self.description:
            return self.description[:TITLE_LIMIT]
        return f"Ticket {self.ticket_number}".strip()

    def to_fields(self) -> dict[str, Any]:
        """Flat SharePoint field map; empty values are left out by the list client."""

        return {
            "Title": self.resolved_title(),
            "TicketNumber": self.ticket_number,
            "Description": self.description,
            "Priority": self.priority.value,
            "Status": self.status.value,
            "Divisi": self.division or DEFAULT_DIVISION,
            "DateReported": _iso(self.reported_at),
            "DateFinished": _iso(self.finished_at),
            "TipeTicket": self.ticket_type or None,
            "Assignedto0": self.assignee or None,
            "Issueloggedby": self.issue_logged_by or None,
            "UserRequestor": self.requestor or None,
        }


def decline_description(ticket: Ticket, *, reason: str, operator: str, now: datetime) -> str:
    lines = [
        f"Tiket ditolak oleh {operator} pada {now.strftime('%d/%m/%Y %H:%M:%S')}.",
        f"Alasan: {reason}",
    ]
    if ticket.description:
        lines.extend(["", f"Keluhan awal: {ticket.description}"])
    return "\n".join(lines)


def decline_fields(ticket: Ticket, *, reason: str, operator: str, now: datetime) -> dict[str, Any]:
    """Field map recorded in SharePoint when a ticket is declined."""

    description = decline_description(ticket, reason=reason, operator=operator, now=now)
    return {
        "Title": (ticket.description or f"Ticket {ticket.ticket_number}")[:TITLE_LIMIT],
        "TicketNumber": ticket.ticket_number,
        "Description": description,
        "Priority": ticket.priority.value,
        "Status": TicketStatus.DITOLAK.value,
        "Divisi": ticket.division or DEFAULT_DIVISION,
        "DateReported": _iso(ticket.created_at),
        "DateFinished": _iso(now),
        "Issueloggedby": operator,
        "UserRequestor": ticket.reporter or None,
    }
