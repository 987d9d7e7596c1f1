from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from helpdesk.errors import HelpdeskError, NetworkError
from helpdesk.intake.machine import Stage
from helpdesk.intake.profile import ReporterProfile, read_profile
from helpdesk.intake.session import ConversationSession
from helpdesk.tickets.models import CreatedTicket, TicketPriority


def _session(store=None, name: str = "John") -> ConversationSession:
    store = store or AsyncMock()
    return ConversationSession(
        profile=ReporterProfile(name=name, division="TI & System"),
        store=store,
        clock=lambda: datetime(2024, 5, 1, 9, 0),
    )


def _walk_to_photo(session: ConversationSession, division: str = "TI & System") -> None:
    session.start()
    session.send("printer jam")
    session.send("Ya")
    session.pick_division(division)


def test_read_profile_prefers_name_and_department_claims():
    profile = read_profile({"name": "John", "preferred_username": "john@corp", "department": "Legal"})
    assert profile == ReporterProfile(name="John", division="Legal")
    assert read_profile({"preferred_username": "john@corp", "jobTitle": "Staff"}).name == "john@corp"
    assert read_profile(None) == ReporterProfile(name="User", division="Umum")


def test_session_greets_and_hints_before_start():
    session = _session()
    assert session.stage is Stage.START
    assert "John" in session.messages[0].text

    session.send("halo")
    assert session.stage is Stage.START
    assert "Tolong" in session.messages[-1].text


def test_recap_is_shown_after_division_pick():
    session = _session()
    _walk_to_photo(session, "BOD (Urgent)")
    assert session.stage is Stage.NEED_PHOTO
    recaps = [message.recap for message in session.messages if message.recap is not None]
    assert len(recaps) == 1
    assert recaps[0].priority is TicketPriority.URGENT
    assert recaps[0].name == "John"


def test_rejected_photo_is_reported_and_blocks_submit(make_photo):
    session = _session()
    _walk_to_photo(session)
    assert session.pick_photo(make_photo("scan.pdf", content_type="application/pdf")) is False
    assert session.messages[-1].error
    assert not session.can_submit


def test_same_upload_is_handled_once(make_photo):
    session = _session()
    _walk_to_photo(session)
    oversized = make_photo("besar.jpg", size=6 * 1024 * 1024)

    assert not session.photo_seen("upload-1")
    assert session.pick_photo(oversized, key="upload-1") is False
    errors = sum(message.error for message in session.messages)
    # the uploader still holds the rejected file on the next render
    assert session.photo_seen("upload-1")
    assert sum(message.error for message in session.messages) == errors

    # a different file replaces it
    assert not session.photo_seen("upload-2")
    assert session.pick_photo(make_photo(), key="upload-2")
    assert session.photo_seen("upload-2")
    assert session.can_submit


@pytest.mark.asyncio
async def test_submit_creates_ticket_and_locks_session(make_photo):
    store = AsyncMock()
    store.create.return_value = CreatedTicket(id="42", ticket_number="TKT-042")
    session = _session(store)
    _walk_to_photo(session)
    photo = make_photo()
    assert session.pick_photo(photo)

    created = await session.submit()

    assert created is not None and created.ticket_number == "TKT-042"
    assert session.stage is Stage.DONE
    assert session.locked
    assert any("TKT-042" in message.text for message in session.messages)
    draft = store.create.await_args.args[0]
    assert draft.reporter == "John"
    assert draft.division == "TI & System"
    assert draft.description == "printer jam"
    assert draft.priority is TicketPriority.NORMAL
    assert draft.photo is photo

    # further input is ignored once done
    count = len(session.messages)
    session.send("ya")
    assert await session.submit() is None
    assert len(session.messages) == count
    store.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_submit_stays_in_place_and_allows_retry(make_photo):
    store = AsyncMock()
    store.create.side_effect = [
        HelpdeskError("Validasi gagal", status_code=422),
        NetworkError("Gagal terhubung ke server tiket"),
        CreatedTicket(id="7", ticket_number="TKT-007"),
    ]
    session = _session(store)
    _walk_to_photo(session)
    session.pick_photo(make_photo())

    assert await session.submit() is None
    assert session.stage is Stage.NEED_PHOTO
    assert session.state.error == "[422] Validasi gagal"
    assert session.messages[-1].error

    assert await session.submit() is None
    assert session.state.error == "Gagal terhubung ke server tiket"

    created = await session.submit()
    assert created is not None
    assert session.stage is Stage.DONE
    assert store.create.await_count == 3
    assert store.create.await_args_list[0].args[0] == store.create.await_args_list[2].args[0]


@pytest.mark.asyncio
async def test_submit_with_missing_reporter_fails_locally(make_photo):
    store = AsyncMock()
    session = _session(store, name="  ")
    _walk_to_photo(session)
    session.pick_photo(make_photo())

    assert await session.submit() is None
    store.create.assert_not_awaited()
    assert session.stage is Stage.NEED_PHOTO
    assert "name" in (session.state.error or "")
