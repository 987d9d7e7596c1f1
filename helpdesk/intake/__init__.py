"""Guided, turn-based ticket intake conversation."""

from .machine import (
    AFFIRMATIVE_WORDS,
    DivisionPicked,
    HelpRequested,
    IntakeState,
    PhotoPicked,
    Recap,
    Stage,
    SubmissionFailed,
    SubmissionSucceeded,
    TextEntered,
    build_recap,
    check_photo,
    is_affirmative,
    reduce,
)
from .profile import ReporterProfile, read_profile
from .session import ChatMessage, ConversationSession

__all__ = [
    "AFFIRMATIVE_WORDS",
    "ChatMessage",
    "ConversationSession",
    "DivisionPicked",
    "HelpRequested",
    "IntakeState",
    "PhotoPicked",
    "Recap",
    "ReporterProfile",
    "Stage",
    "SubmissionFailed",
    "SubmissionSucceeded",
    "TextEntered",
    "build_recap",
    "check_photo",
    "is_affirmative",
    "read_profile",
    "reduce",
]
