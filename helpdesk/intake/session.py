from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, Protocol

from helpdesk.errors import HelpdeskError, ValidationError
from helpdesk.tickets.models import CreatedTicket, NewTicket, PhotoFile

from .machine import (
    MAX_PHOTO_BYTES,
    DivisionPicked,
    HelpRequested,
    IntakeEvent,
    IntakeState,
    PhotoPicked,
    Recap,
    Stage,
    SubmissionFailed,
    SubmissionSucceeded,
    TextEntered,
    build_recap,
    reduce,
)
from .profile import ReporterProfile

logger = logging.getLogger(__name__)

HELP_LABEL = "🆘 Tolong"


class TicketCreator(Protocol):
    async def create(self, ticket: NewTicket) -> CreatedTicket:
        ...


@dataclass(frozen=True, slots=True)
class ChatMessage:
    side: Literal["bot", "user"]
    text: str
    recap: Recap | None = None
    error: bool = False


@dataclass(slots=True)
class ConversationSession:
    """One reporter's intake conversation, kept in memory for a single tab."""

    profile: ReporterProfile
    store: TicketCreator
    max_photo_bytes: int = MAX_PHOTO_BYTES
    clock: Callable[[], datetime] = datetime.now
    state: IntakeState = field(default_factory=IntakeState)
    messages: list[ChatMessage] = field(default_factory=list)
    submitting: bool = False
    last_photo_key: str | None = None

    def __post_init__(self) -> None:
        if not self.messages:
            self._bot(f"Halo, {self.profile.name}! Aku siap membantumu 😊")
            self._bot("Klik / ketuk tombol di bawah ini untuk menyampaikan keluhanmu.")

    @property
    def stage(self) -> Stage:
        return self.state.stage

    @property
    def locked(self) -> bool:
        return self.state.is_done

    @property
    def can_submit(self) -> bool:
        return self.state.ready_to_submit and not self.submitting

    def _bot(self, text: str, *, recap: Recap | None = None, error: bool = False) -> None:
        self.messages.append(ChatMessage("bot", text, recap=recap, error=error))

    def _user(self, text: str) -> None:
        self.messages.append(ChatMessage("user", text))

    def _dispatch(self, event: IntakeEvent) -> IntakeState:
        before = self.state.stage
        self.state = reduce(self.state, event, max_photo_bytes=self.max_photo_bytes)
        if self.state.stage is not before:
            logger.debug("Intake stage %s -> %s", before.value, self.state.stage.value)
        return self.state

    def start(self) -> None:
        if self.state.stage is not Stage.START:
            return
        self._user(HELP_LABEL)
        self._dispatch(HelpRequested())
        self._bot("Siapkan detailnya ya. Silakan tulis keluhanmu.")

    def send(self, text: str) -> None:
        if self.locked:
            return
        text = text.strip()
        if not text:
            return
        self._user(text)
        previous = self.state.stage
        self._dispatch(TextEntered(text))
        stage = self.state.stage

        if previous is Stage.START:
            self._bot(f"Untuk membuat tiket, klik tombol {HELP_LABEL} ya.")
        elif stage is Stage.CONFIRM_COMPLAINT:
            self._bot(
                f"Oke, keluhan kamu: {self.state.complaint}. Apakah itu saja? "
                'Ketik "ya" untuk konfirmasi atau "tidak" untuk menambahkan.'
            )
        elif previous is Stage.CONFIRM_COMPLAINT and stage is Stage.NEED_COMPLAINT:
            self._bot("Oke, silakan tambahkan keluhanmu.")
        elif stage is Stage.NEED_DIVISION:
            self._bot(f"Pilih divisi kamu. Default: {self.profile.division}")

    def pick_division(self, division: str) -> None:
        if self.state.stage is not Stage.NEED_DIVISION:
            return
        self._user(division)
        self._dispatch(DivisionPicked(division))
        if self.state.stage is Stage.NEED_PHOTO:
            recap = build_recap(self.state, reporter=self.profile.name, now=self.clock())
            self._bot("Rekap Keluhan", recap=recap)
            self._bot("Silakan unggah foto kondisi keluhanmu ya.")
        elif self.state.error:
            self._bot(self.state.error, error=True)

    def photo_seen(self, key: str) -> bool:
        """True when the upload identified by ``key`` was already handled."""

        return key == self.last_photo_key

    def pick_photo(self, photo: PhotoFile, *, key: str | None = None) -> bool:
        if self.state.stage is not Stage.NEED_PHOTO:
            return False
        self.last_photo_key = key
        self._dispatch(PhotoPicked(photo))
        if self.state.photo is photo:
            self._bot(f"Foto diterima: {photo.name}")
            return True
        if self.state.error:
            self._bot(self.state.error, error=True)
        return False

    def recap(self) -> Recap:
        return build_recap(self.state, reporter=self.profile.name, now=self.clock())

    def _draft(self) -> NewTicket:
        draft = NewTicket(
            reporter=(self.profile.name or "").strip(),
            division=(self.state.division or "").strip(),
            description=self.state.complaint.strip(),
            photo=self.state.photo,
        )
        missing: dict[str, Any] = {
            "name": draft.reporter,
            "division": draft.division,
            "description": draft.description,
        }
        empty = [key for key, value in missing.items() if not value]
        if empty:
            raise ValidationError(f"Data tidak lengkap: {', '.join(empty)}")
        return draft

    async def submit(self) -> CreatedTicket | None:
        """Send the ticket; on failure stay in place so the reporter can retry."""

        if not self.can_submit:
            return None
        self.submitting = True
        try:
            draft = self._draft()
            created = await self.store.create(draft)
        except HelpdeskError as exc:
            logger.warning("Ticket submission failed for %s: %s", self.profile.name, exc)
            self._dispatch(SubmissionFailed(str(exc)))
            self._bot(f"Gagal membuat tiket: {exc}", error=True)
            return None
        finally:
            self.submitting = False

        self._dispatch(SubmissionSucceeded(created.ticket_number))
        logger.info("Ticket %s created for %s", created.ticket_number, self.profile.name)
        self._bot(f"Tiket Berhasil Dibuat. Nomor tiket: {created.ticket_number}")
        self._bot("Terima kasih telah menggunakan IT Helpdesk. Tim IT akan segera menghubungimu. 🙌")
        return created
