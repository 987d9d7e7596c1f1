from __future__ import annotations

from enum import Enum

from helpdesk.errors import InvalidTicketTransition


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    BELUM = "Belum"
    TERKONFIRMASI = "Terkonfirmasi"
    DALAM_PROSES = "Dalam Proses"
    SELESAI = "Selesai"
    DITOLAK = "Ditolak"


class TicketLifecycle:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.BELUM: frozenset(
            {TicketStatus.TERKONFIRMASI, TicketStatus.DALAM_PROSES, TicketStatus.SELESAI, TicketStatus.DITOLAK}
        ),
        TicketStatus.TERKONFIRMASI: frozenset({TicketStatus.DALAM_PROSES, TicketStatus.SELESAI}),
        TicketStatus.DALAM_PROSES: frozenset({TicketStatus.SELESAI}),
        TicketStatus.SELESAI: frozenset(),
        TicketStatus.DITOLAK: frozenset(),
    }

    CONFIRM_STATUSES: frozenset[TicketStatus] = frozenset(
        {TicketStatus.TERKONFIRMASI, TicketStatus.DALAM_PROSES, TicketStatus.SELESAI}
    )

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.BELUM

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return not cls._TRANSITIONS.get(status)

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise InvalidTicketTransition(
                f"Status tiket tidak dapat diubah dari {current.value} ke {new.value}"
            )
