"""Finite-state machine behind the guided ticket intake conversation.

Every transition is a pure function of ``(state, event)``; the session object
owns side effects (messages, network calls) and feeds outcomes back in as
events.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Union

from helpdesk.tickets.models import DIVISION_OPTIONS, PhotoFile, TicketPriority, derive_priority

MAX_PHOTO_BYTES = 5 * 1024 * 1024

AFFIRMATIVE_WORDS: frozenset[str] = frozenset(
    {
        "ya",
        "iya",
        "y",
        "yaaa",
        "ok",
        "oke",
        "baik",
        "siap",
        "betul",
        "benar",
        "yup",
        "yaudah",
        "silakan",
        "lanjut",
    }
)

PHOTO_TOO_LARGE = "Ukuran file terlalu besar. Maksimal 5MB."
PHOTO_NOT_IMAGE = "Hanya file gambar yang diizinkan."
UNKNOWN_DIVISION = "Divisi tidak dikenal. Silakan pilih dari daftar."


class Stage(str, Enum):
    START = "start"
    NEED_COMPLAINT = "needComplaint"
    CONFIRM_COMPLAINT = "confirmComplaint"
    NEED_DIVISION = "needDivision"
    NEED_PHOTO = "needPhoto"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class IntakeState:
    stage: Stage = Stage.START
    complaint: str = ""
    division: str | None = None
    photo: PhotoFile | None = None
    ticket_number: str | None = None
    error: str | None = None

    @property
    def is_done(self) -> bool:
        return self.stage is Stage.DONE

    @property
    def accepts_text(self) -> bool:
        return self.stage in (Stage.NEED_COMPLAINT, Stage.CONFIRM_COMPLAINT)

    @property
    def ready_to_submit(self) -> bool:
        return self.stage is Stage.NEED_PHOTO and self.photo is not None


@dataclass(frozen=True, slots=True)
class HelpRequested:
    pass


@dataclass(frozen=True, slots=True)
class TextEntered:
    text: str


@dataclass(frozen=True, slots=True)
class DivisionPicked:
    division: str


@dataclass(frozen=True, slots=True)
class PhotoPicked:
    photo: PhotoFile


@dataclass(frozen=True, slots=True)
class SubmissionSucceeded:
    ticket_number: str


@dataclass(frozen=True, slots=True)
class SubmissionFailed:
    message: str


IntakeEvent = Union[HelpRequested, TextEntered, DivisionPicked, PhotoPicked, SubmissionSucceeded, SubmissionFailed]


def is_affirmative(text: str) -> bool:
    return text.strip().lower() in AFFIRMATIVE_WORDS


def check_photo(photo: PhotoFile, *, max_bytes: int = MAX_PHOTO_BYTES) -> str | None:
    """Return the user-facing reason a photo is refused, or ``None``."""

    if photo.size > max_bytes:
        return PHOTO_TOO_LARGE
    if not photo.is_image:
        return PHOTO_NOT_IMAGE
    return None


def reduce(state: IntakeState, event: IntakeEvent, *, max_photo_bytes: int = MAX_PHOTO_BYTES) -> IntakeState:
    if state.stage is Stage.DONE:
        return state

    if isinstance(event, HelpRequested):
        if state.stage is Stage.START:
            return replace(state, stage=Stage.NEED_COMPLAINT, error=None)
        return state

    if isinstance(event, TextEntered):
        text = event.text.strip()
        if not text:
            return state
        if state.stage is Stage.NEED_COMPLAINT:
            return replace(state, stage=Stage.CONFIRM_COMPLAINT, complaint=text, error=None)
        if state.stage is Stage.CONFIRM_COMPLAINT:
            if is_affirmative(text):
                return replace(state, stage=Stage.NEED_DIVISION, error=None)
            return replace(state, stage=Stage.NEED_COMPLAINT, error=None)
        return state

    if isinstance(event, DivisionPicked):
        if state.stage is not Stage.NEED_DIVISION:
            return state
        if event.division not in DIVISION_OPTIONS:
            return replace(state, error=UNKNOWN_DIVISION)
        return replace(state, stage=Stage.NEED_PHOTO, division=event.division, error=None)

    if isinstance(event, PhotoPicked):
        if state.stage is not Stage.NEED_PHOTO:
            return state
        reason = check_photo(event.photo, max_bytes=max_photo_bytes)
        if reason is not None:
            return replace(state, error=reason)
        return replace(state, photo=event.photo, error=None)

    if isinstance(event, SubmissionSucceeded):
        if not state.ready_to_submit:
            return state
        return replace(state, stage=Stage.DONE, ticket_number=event.ticket_number, error=None)

    if isinstance(event, SubmissionFailed):
        if state.stage is not Stage.NEED_PHOTO:
            return state
        return replace(state, error=event.message)

    raise TypeError(f"Unsupported intake event: {event!r}")


@dataclass(frozen=True, slots=True)
class Recap:
    """Summary card shown before the reporter uploads a photo."""

    name: str
    division: str
    priority: TicketPriority
    complaint: str
    timestamp: datetime


def build_recap(state: IntakeState, *, reporter: str, now: datetime) -> Recap:
    division = state.division or ""
    return Recap(
        name=reporter or "-",
        division=division or "-",
        priority=derive_priority(division),
        complaint=state.complaint or "-",
        timestamp=now,
    )
