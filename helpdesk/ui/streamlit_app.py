from __future__ import annotations

import asyncio
import atexit
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import streamlit as st

from helpdesk.core.config import get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.errors import HelpdeskError
from helpdesk.intake.machine import Stage
from helpdesk.intake.session import ConversationSession
from helpdesk.main import HelpdeskServices, open_services
from helpdesk.resolution.forms import ResolutionForm
from helpdesk.tickets.models import DIVISION_OPTIONS, CreatedTicket, NewTicket, PhotoFile, Ticket
from helpdesk.tickets.state import TicketStatus
from helpdesk.ui.auth import AuthProfile, Role, preset_profiles, resolve_label
from helpdesk.ui.copy import describe_error

T = TypeVar("T")

_CONFIRM_CHOICES = (TicketStatus.TERKONFIRMASI, TicketStatus.DALAM_PROSES, TicketStatus.SELESAI)


def _run(operation: Callable[[HelpdeskServices], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with open_services(get_settings()) as services:
            return await operation(services)

    return asyncio.run(runner())


class _TicketGateway:
    """Ticket creation bound to a fresh HTTP client per call."""

    async def create(self, ticket: NewTicket) -> CreatedTicket:
        async with open_services(get_settings()) as services:
            return await services.tickets.create(ticket)


def _photo_from_upload(upload: Any) -> PhotoFile:
    return PhotoFile(name=upload.name, content_type=upload.type or "", content=upload.getvalue())


def _upload_key(upload: Any) -> str:
    file_id = getattr(upload, "file_id", None)
    return str(file_id) if file_id else f"{upload.name}:{upload.size}"


def _get_auth_profile() -> AuthProfile:
    profile = st.session_state.get("auth_profile")
    if isinstance(profile, AuthProfile):
        return profile
    profile = resolve_label(None)
    st.session_state["auth_profile"] = profile
    return profile


def _render_sidebar() -> None:
    st.sidebar.header("Akun")
    options = list(preset_profiles())
    labels = [profile.label for profile in options]
    current = _get_auth_profile()
    selected = st.sidebar.selectbox("Profil", options=labels, index=labels.index(current.label))
    if selected != current.label:
        st.session_state["auth_profile"] = resolve_label(selected)
        st.session_state.pop("conversation", None)
        st.rerun()
    active = _get_auth_profile()
    st.sidebar.markdown(f"**Pengguna:** {active.display_name}")
    st.sidebar.caption("Peran: " + ", ".join(role.value for role in active.roles))


def _get_session(profile: AuthProfile) -> ConversationSession:
    session = st.session_state.get("conversation")
    if isinstance(session, ConversationSession):
        return session
    settings = get_settings()
    session = ConversationSession(
        profile=profile.reporter,
        store=_TicketGateway(),
        max_photo_bytes=settings.max_photo_bytes,
    )
    st.session_state["conversation"] = session
    return session


def _render_chat_tab(profile: AuthProfile) -> None:
    st.subheader("Helpdesk Chatbot")
    session = _get_session(profile)

    for message in session.messages:
        with st.chat_message("assistant" if message.side == "bot" else "user"):
            if message.recap is not None:
                recap = message.recap
                st.markdown(f"**{message.text}**")
                st.markdown(
                    f"- Nama: {recap.name}\n"
                    f"- Divisi: {recap.division}\n"
                    f"- Prioritas: **{recap.priority.value}**\n"
                    f"- Keluhan: \"{recap.complaint}\"\n"
                    f"- Tanggal & Waktu: {recap.timestamp:%d/%m/%Y %H:%M:%S}"
                )
            elif message.error:
                st.error(message.text)
            else:
                st.write(message.text)

    if session.stage is Stage.START:
        if st.button("🆘 Tolong"):
            session.start()
            st.rerun()

    if session.stage is Stage.NEED_DIVISION:
        default = profile.reporter.division
        index = DIVISION_OPTIONS.index(default) if default in DIVISION_OPTIONS else 0
        division = st.selectbox("Pilih Divisi", options=list(DIVISION_OPTIONS), index=index)
        if st.button("Gunakan divisi ini"):
            session.pick_division(division)
            st.rerun()

    if session.stage is Stage.NEED_PHOTO:
        upload = st.file_uploader("Pilih Foto", type=None, key="intake_photo")
        if upload is not None:
            key = _upload_key(upload)
            if not session.photo_seen(key):
                session.pick_photo(_photo_from_upload(upload), key=key)
                st.rerun()
        if session.can_submit and st.button("Konfirmasi & Buat Tiket"):
            asyncio.run(session.submit())
            st.rerun()

    text = st.chat_input(
        "Sesi selesai. Terima kasih 🙏" if session.locked else "Tulis pesan… (Enter untuk kirim)",
        disabled=session.locked or not session.state.accepts_text,
    )
    if text:
        session.send(text)
        st.rerun()


def _ticket_label(ticket: Ticket) -> str:
    return f"{ticket.ticket_number} · {ticket.reporter} · {ticket.priority.value} · {ticket.description[:40]}"


def _render_operator_tab(profile: AuthProfile) -> None:
    st.subheader("Ticket Entry")
    operator = profile.display_name

    banner = st.session_state.get("operator_banner")
    if banner:
        kind, text = banner
        (st.success if kind == "success" else st.error)(text)
        if st.button("Tutup"):
            st.session_state.pop("operator_banner", None)
            st.rerun()

    if st.button("Refresh") or "pending_tickets" not in st.session_state:
        try:
            st.session_state["pending_tickets"] = _run(lambda s: s.tickets.list(TicketStatus.BELUM))
        except HelpdeskError as exc:
            st.session_state["pending_tickets"] = []
            st.error(describe_error(exc, operator=True))

    tickets: list[Ticket] = st.session_state.get("pending_tickets", [])
    if not tickets:
        st.caption("Tidak ada tiket yang menunggu")
        return

    labels = [_ticket_label(ticket) for ticket in tickets]
    selected_label = st.selectbox("Tiket", options=labels)
    ticket = tickets[labels.index(selected_label)]
    st.write(ticket.description)

    confirm_tab, decline_tab = st.tabs(["Konfirmasi", "Tolak"])
    with confirm_tab:
        defaults = ResolutionForm.from_ticket(ticket, operator=operator, now=datetime.now(timezone.utc))
        with st.form("confirm_form"):
            title = st.text_input("Title", value=defaults.resolved_title())
            description = st.text_area("Description", value=defaults.description)
            status_options = [status.value for status in _CONFIRM_CHOICES]
            status = st.selectbox(
                "Status", options=status_options, index=status_options.index(TicketStatus.SELESAI.value)
            )
            assignee = st.text_input("Assigned to", value=defaults.assignee or "")
            ticket_type = st.text_input("Tipe Ticket", value="")
            proof = st.file_uploader("Foto Bukti Selesai (opsional)", key="proof_photo")
            submitted = st.form_submit_button("Simpan")
        if submitted:
            form = defaults.model_copy(
                update={
                    "title": title,
                    "description": description,
                    "status": TicketStatus(status),
                    "assignee": assignee or None,
                    "ticket_type": ticket_type or None,
                }
            )
            photo = _photo_from_upload(proof) if proof is not None else None
            _resolve(lambda s: s.workflow.confirm(ticket, form, operator=operator, proof_photo=photo))

    with decline_tab:
        with st.form("decline_form"):
            reason = st.text_area("Alasan penolakan")
            declined = st.form_submit_button("Tolak Tiket")
        if declined:
            _resolve(lambda s: s.workflow.decline(ticket, reason=reason, operator=operator))


def _resolve(operation: Callable[[HelpdeskServices], Awaitable[Any]]) -> None:
    try:
        outcome = _run(operation)
    except HelpdeskError as exc:
        st.session_state["operator_banner"] = ("error", describe_error(exc, operator=True))
    else:
        message = f"Tiket {outcome.status.value}. SharePoint item {outcome.remote_item_id}"
        if outcome.failed_attachments:
            message += f" (lampiran gagal: {', '.join(outcome.failed_attachments)})"
        st.session_state["operator_banner"] = ("success", message)
        st.session_state.pop("pending_tickets", None)
    st.rerun()


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    provider = init_tracer(settings)
    if provider is not None:
        atexit.register(shutdown_tracer, provider)
    st.set_page_config(page_title=settings.app_name, layout="wide")
    _render_sidebar()
    profile = _get_auth_profile()

    tabs: list[tuple[str, Callable[[AuthProfile], None], Role]] = [
        ("Helpdesk", _render_chat_tab, Role.REPORTER),
        ("Ticket Entry", _render_operator_tab, Role.OPERATOR),
    ]
    available = [(label, renderer) for label, renderer, role in tabs if profile.has_role(role)]
    tab_objects = st.tabs([label for label, _ in available])
    for tab_object, (_, renderer) in zip(tab_objects, available):
        with tab_object:
            renderer(profile)


if __name__ == "__main__":
    main()
