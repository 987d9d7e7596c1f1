from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

import httpx

from helpdesk.errors import HelpdeskError, NetworkError, ValidationError, extract_error_message

from .models import (
    AttachmentRef,
    Base64Attachment,
    CreatedTicket,
    NewTicket,
    Ticket,
    UrlAttachment,
    ticket_from_row,
)
from .state import TicketStatus

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(ticket: Ticket) -> datetime:
    created = ticket.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


class TicketStoreClient:
    """Client for the helpdesk ticket queue (the authoritative ticket store)."""

    def __init__(self, http: httpx.AsyncClient, base_url: str) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")

    def _build_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}{normalized}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._build_url(path)
        headers: dict[str, str] = {"Accept": "application/json"}
        headers.update(kwargs.pop("headers", {}))
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal terhubung ke server tiket: {exc}") from exc

        if response.status_code >= 400:
            raise HelpdeskError(
                extract_error_message(response),
                status_code=response.status_code,
                body=response.text,
            )
        if response.status_code == 204 or not response.content:
            return None
        if "application/json" in response.headers.get("Content-Type", ""):
            return response.json()
        return response.text

    async def list(self, status: TicketStatus | None = None) -> list[Ticket]:
        params = {"status": status.value} if status is not None else None
        data = await self._request("GET", "/tickets", params=params)
        if isinstance(data, Mapping):
            rows = data.get("rows") or []
        elif isinstance(data, list):
            rows = data
        else:
            rows = []

        tickets: list[Ticket] = []
        for row in rows:
            try:
                tickets.append(ticket_from_row(row))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping malformed ticket row %r: %s", row, exc)
        tickets.sort(key=_sort_key, reverse=True)
        return tickets

    async def create(self, ticket: NewTicket) -> CreatedTicket:
        reporter = ticket.reporter.strip()
        division = ticket.division.strip()
        description = ticket.description.strip()
        missing = [
            name
            for name, value in (("name", reporter), ("division", division), ("description", description))
            if not value
        ]
        if missing:
            raise ValidationError(f"Field yang diperlukan tidak lengkap: {', '.join(missing)}")

        form = {
            "name": reporter,
            "division": division,
            "priority": ticket.priority.value,
            "description": description,
        }
        files = None
        if ticket.photo is not None:
            files = {"photo": (ticket.photo.name, ticket.photo.content, ticket.photo.content_type)}

        logger.info("Creating ticket for %s (division=%s, priority=%s)", reporter, division, form["priority"])
        data = await self._request("POST", "/tickets", data=form, files=files)
        if not isinstance(data, Mapping):
            raise HelpdeskError("Respons server tiket tidak dikenali")
        if data.get("ok") is False:
            raise HelpdeskError(str(data.get("error") or "Gagal membuat tiket"))

        row = data.get("row") or data.get("ticket")
        parsed = ticket_from_row(row) if isinstance(row, Mapping) else None
        ticket_id = data.get("ticketId") or (parsed.id if parsed else None)
        if ticket_id is None:
            raise HelpdeskError("Server tidak mengembalikan nomor tiket")
        ticket_number = parsed.ticket_number if parsed else str(ticket_id)
        return CreatedTicket(id=str(ticket_id), ticket_number=ticket_number, ticket=parsed)

    async def confirm(
        self,
        ticket_id: str,
        *,
        operator: str,
        sharepoint_item_id: str | None = None,
        status: TicketStatus = TicketStatus.SELESAI,
    ) -> None:
        payload: dict[str, Any] = {"operator": operator, "status": status.value}
        if sharepoint_item_id is not None:
            payload["sharePointItemId"] = sharepoint_item_id
        data = await self._request("POST", f"/tickets/{ticket_id}/confirm", json=payload)
        self._ensure_ok(data, "Gagal mengonfirmasi tiket")

    async def decline(
        self,
        ticket_id: str,
        *,
        reason: str,
        operator: str,
        sharepoint_item_id: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "notes": reason,
            "operator": operator,
            "status": TicketStatus.DITOLAK.value,
        }
        if sharepoint_item_id is not None:
            payload["sharePointItemId"] = sharepoint_item_id
        data = await self._request("POST", f"/tickets/{ticket_id}/decline", json=payload)
        self._ensure_ok(data, "Gagal menolak tiket")

    async def download_attachment(self, ref: AttachmentRef) -> bytes:
        """Fetch the binary content behind an attachment reference."""

        if isinstance(ref, Base64Attachment):
            return ref.decode()
        if not isinstance(ref, UrlAttachment):
            raise ValidationError(f"Lampiran tidak dikenali: {ref!r}")

        url = ref.url if ref.url.startswith(("http://", "https://")) else self._build_url(ref.url)
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal mengambil lampiran: {exc}") from exc
        if response.status_code >= 400:
            raise HelpdeskError(
                f"Gagal mengambil lampiran: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content

    @staticmethod
    def _ensure_ok(data: Any, message: str) -> None:
        if isinstance(data, Mapping) and data.get("ok") is False:
            raise HelpdeskError(str(data.get("error") or message))
