from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone

import httpx
import pytest

from helpdesk.errors import ValidationError
from helpdesk.intake.machine import Stage
from helpdesk.intake.profile import read_profile
from helpdesk.intake.session import ConversationSession
from helpdesk.main import build_services
from helpdesk.resolution.forms import ResolutionForm
from helpdesk.resolution.workflow import INCIDENT_PHOTO, PROOF_PHOTO
from helpdesk.tickets.models import NewTicket, TicketPriority
from helpdesk.tickets.state import TicketStatus


def _form_field(body: bytes, name: str) -> str:
    match = re.search(rb'name="' + name.encode() + rb'"\r\n\r\n(.*?)\r\n', body, re.DOTALL)
    assert match is not None, name
    return match.group(1).decode()


class FakeBackend:
    """In-memory ticket store plus SharePoint list behind one mock transport."""

    def __init__(self, *, conflict_uploads: bool = False) -> None:
        self.conflict_uploads = conflict_uploads
        self.rest_uploads = 0
        self.rows: dict[str, dict] = {}
        self.list_items: dict[str, dict] = {}
        self.uploads: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        if host == "tickets.test":
            return self._tickets(request, path)
        if host == "graph.test":
            return self._graph(request, path)
        if host == "tenant.sharepoint.test" and "/AttachmentFiles/add" in path:
            self.rest_uploads += 1
            if self.conflict_uploads:
                return httpx.Response(409, json={"error": {"message": {"value": "Save conflict"}}})
            return httpx.Response(200, json={"d": {"FileName": "foto.jpg"}})
        return httpx.Response(404)

    def _tickets(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.method == "POST" and path == "/api/tickets":
            ticket_id = str(len(self.rows) + 1)
            row = {
                "id": ticket_id,
                "ticketNo": f"TKT-{int(ticket_id):03d}",
                "createdAt": "2024-05-01T08:00:00Z",
                "name": _form_field(request.content, "name"),
                "division": _form_field(request.content, "division"),
                "priority": _form_field(request.content, "priority"),
                "description": _form_field(request.content, "description"),
                "status": "Belum",
                "photo": f"/uploads/{ticket_id}.jpg",
            }
            self.rows[ticket_id] = row
            return httpx.Response(201, json={"ok": True, "ticketId": ticket_id, "row": row})
        if request.method == "GET" and path == "/api/tickets":
            status = request.url.params.get("status")
            rows = [row for row in self.rows.values() if status is None or row["status"] == status]
            return httpx.Response(200, json={"rows": rows})
        if request.method == "GET" and path.startswith("/api/uploads/"):
            return httpx.Response(200, content=b"\xff\xd8incident", headers={"Content-Type": "image/jpeg"})
        match = re.fullmatch(r"/api/tickets/(\w+)/(confirm|decline)", path)
        if request.method == "POST" and match:
            payload = json.loads(request.content)
            row = self.rows[match.group(1)]
            row.update(status=payload["status"], operator=payload["operator"], sharePointItemId=payload["sharePointItemId"])
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    def _graph(self, request: httpx.Request, path: str) -> httpx.Response:
        items_path = "/v1.0/sites/site-1/lists/list-1/items"
        if request.method == "POST" and path == items_path:
            item_id = str(100 + len(self.list_items) + 1)
            self.list_items[item_id] = json.loads(request.content)["fields"]
            return httpx.Response(201, json={"id": item_id})
        match = re.fullmatch(items_path + r"/(\d+)/attachments", path)
        if request.method == "POST" and match:
            if self.conflict_uploads:
                return httpx.Response(409, json={"error": {"message": "Conflict"}})
            name = json.loads(request.content)["name"]
            self.uploads.append((match.group(1), name))
            return httpx.Response(201, json={"name": name})
        return httpx.Response(404)


@pytest.mark.asyncio
async def test_reporter_ticket_is_confirmed_by_operator(settings, make_photo, sleep):
    backend = FakeBackend()
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as http:
        services = build_services(settings, http, sleep=sleep)

        session = ConversationSession(
            profile=read_profile({"name": "John", "department": "TI & System"}),
            store=services.tickets,
        )
        session.start()
        session.send("printer jam")
        session.send("ya")
        session.pick_division("TI & System")
        assert session.pick_photo(make_photo())
        created = await session.submit()

        assert created is not None
        assert session.stage is Stage.DONE
        assert backend.rows[created.id]["priority"] == "Normal"

        pending = await services.tickets.list(TicketStatus.BELUM)
        assert [ticket.id for ticket in pending] == [created.id]
        ticket = pending[0]
        assert ticket.priority is TicketPriority.NORMAL

        form = ResolutionForm.from_ticket(ticket, operator="Jane", now=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        outcome = await services.workflow.confirm(ticket, form, operator="Jane")

    assert outcome.status is TicketStatus.SELESAI
    assert outcome.failed_attachments == []
    row = backend.rows[created.id]
    assert row["status"] == "Selesai"
    assert row["operator"] == "Jane"
    assert row["sharePointItemId"] == outcome.remote_item_id
    fields = backend.list_items[outcome.remote_item_id]
    assert fields["Status"] == "Selesai"
    assert fields["Priority"] == "Normal"
    assert backend.uploads == [(outcome.remote_item_id, f"insiden-{ticket.ticket_number}-{created.id}.jpg")]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_board_reporter_gets_urgent_priority_end_to_end(settings, make_photo, sleep):
    backend = FakeBackend()
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as http:
        services = build_services(settings, http, sleep=sleep)
        session = ConversationSession(
            profile=read_profile({"name": "Direksi", "department": "BOD (Urgent)"}),
            store=services.tickets,
        )
        session.start()
        session.send("email tidak bisa dibuka")
        session.send("oke")
        session.pick_division("BOD (Urgent)")
        session.pick_photo(make_photo())
        created = await session.submit()

        recap = next(message.recap for message in session.messages if message.recap is not None)
        assert recap.priority is TicketPriority.URGENT
        assert backend.rows[created.id]["priority"] == "Urgent"

        ticket = (await services.tickets.list(TicketStatus.BELUM))[0]
        outcome = await services.workflow.decline(ticket, reason="Sudah ditangani langsung", operator="Jane")

    assert outcome.status is TicketStatus.DITOLAK
    assert backend.rows[created.id]["status"] == "Ditolak"
    assert backend.list_items[outcome.remote_item_id]["Priority"] == "Urgent"


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_conflict_exhaustion_on_both_uploads_still_finalizes(settings, make_photo, sleep):
    backend = FakeBackend(conflict_uploads=True)
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as http:
        services = build_services(settings, http, sleep=sleep)
        await services.tickets.create(
            NewTicket(reporter="John", division="TI & System", description="printer jam", photo=make_photo())
        )
        ticket = (await services.tickets.list(TicketStatus.BELUM))[0]
        form = ResolutionForm.from_ticket(ticket, operator="Jane", now=NOW)

        outcome = await services.workflow.confirm(
            ticket, form, operator="Jane", proof_photo=make_photo("selesai.jpg")
        )

    assert outcome.failed_attachments == [INCIDENT_PHOTO, PROOF_PHOTO]
    assert outcome.attachments == []
    assert backend.uploads == []
    # each photo: one Graph attempt, then four REST attempts
    assert backend.rest_uploads == 8
    assert sleep.delays == [1.0, 2.0, 4.0, 8.0] * 2
    row = backend.rows[ticket.id]
    assert row["status"] == "Selesai"
    assert row["sharePointItemId"] == outcome.remote_item_id


@pytest.mark.asyncio
async def test_two_operator_views_cannot_resolve_the_same_ticket_at_once(settings, make_photo, sleep):
    backend = FakeBackend()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "graph.test" and request.url.path.endswith("/items"):
            await release.wait()
        return backend(request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as first_http, httpx.AsyncClient(transport=transport) as second_http:
        first = build_services(settings, first_http, sleep=sleep)
        second = build_services(settings, second_http, sleep=sleep)
        assert first.workflow is not second.workflow

        await first.tickets.create(
            NewTicket(reporter="John", division="TI & System", description="printer jam", photo=make_photo())
        )
        ticket = (await first.tickets.list(TicketStatus.BELUM))[0]
        form = ResolutionForm.from_ticket(ticket, operator="Jane", now=NOW)

        running = asyncio.create_task(first.workflow.confirm(ticket, form, operator="Jane"))
        await asyncio.sleep(0)
        with pytest.raises(ValidationError):
            await second.workflow.confirm(ticket, form, operator="Budi")
        with pytest.raises(ValidationError):
            await second.workflow.decline(ticket, reason="Duplikat", operator="Budi")

        release.set()
        outcome = await running

    assert len(backend.list_items) == 1
    assert backend.rows[ticket.id]["operator"] == "Jane"
    assert backend.rows[ticket.id]["sharePointItemId"] == outcome.remote_item_id
