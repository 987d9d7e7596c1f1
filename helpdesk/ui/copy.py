from __future__ import annotations

from helpdesk.errors import (
    FinalizationFailure,
    HelpdeskError,
    InvalidTicketTransition,
    NetworkError,
    RecordCreationFailure,
    UploadConflict,
    UploadRejected,
    ValidationError,
)

_HEADLINES: tuple[tuple[type[HelpdeskError], str], ...] = (
    (InvalidTicketTransition, "Status tiket tidak valid"),
    (ValidationError, "Data belum lengkap"),
    (NetworkError, "Server tidak dapat dihubungi"),
    (UploadConflict, "Lampiran bentrok dengan perubahan lain"),
    (UploadRejected, "Lampiran ditolak SharePoint"),
    (RecordCreationFailure, "Gagal membuat data SharePoint"),
    (FinalizationFailure, "Data SharePoint dibuat, tetapi tiket belum diperbarui"),
)


def headline(error: HelpdeskError) -> str:
    for error_type, text in _HEADLINES:
        if isinstance(error, error_type):
            return text
    return "Terjadi kesalahan"


def describe_error(error: HelpdeskError, *, operator: bool = False) -> str:
    """Plain-text copy for an error banner.

    Operators also get the HTTP status and the truncated response body so the
    failure can be escalated.
    """

    text = f"{headline(error)}: {error.message}"
    if not operator:
        return text
    details: list[str] = []
    if error.status_code is not None:
        details.append(f"HTTP {error.status_code}")
    if error.body:
        details.append(error.body)
    if isinstance(error, FinalizationFailure) and error.remote_item_id:
        details.append(f"SharePoint item {error.remote_item_id}")
    if details:
        text = f"{text} ({' · '.join(details)})"
    return text
