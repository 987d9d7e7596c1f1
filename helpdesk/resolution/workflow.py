"""Operator workflow that closes a pending ticket.

Order of effects is fixed: create the SharePoint record, upload attachments
against it, then finalize the ticket in the ticket store. Only record creation
aborts the run; attachment failures are logged and the ticket is still
finalized.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol
from urllib.parse import unquote, urlparse

from opentelemetry import trace

from helpdesk.errors import (
    FinalizationFailure,
    HelpdeskError,
    InvalidTicketTransition,
    RecordCreationFailure,
    ValidationError,
)
from helpdesk.sharepoint.attachments import AttachmentDescriptor
from helpdesk.tickets.models import AttachmentRef, Base64Attachment, PhotoFile, Ticket
from helpdesk.tickets.state import TicketLifecycle, TicketStatus

from .forms import ResolutionForm, decline_fields

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INCIDENT_PHOTO = "incident"
PROOF_PHOTO = "proof"


class TicketFinalizer(Protocol):
    async def confirm(
        self,
        ticket_id: str,
        *,
        operator: str,
        sharepoint_item_id: str | None = None,
        status: TicketStatus = TicketStatus.SELESAI,
    ) -> None:
        ...

    async def decline(
        self,
        ticket_id: str,
        *,
        reason: str,
        operator: str,
        sharepoint_item_id: str | None = None,
    ) -> None:
        ...

    async def download_attachment(self, ref: AttachmentRef) -> bytes:
        ...


class RemoteList(Protocol):
    async def create_item(self, fields: Mapping[str, Any]) -> str:
        ...

    async def update_fields(self, item_id: str, fields: Mapping[str, Any]) -> None:
        ...


class AttachmentUploader(Protocol):
    async def upload(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        ...


@dataclass(slots=True)
class ResolutionOutcome:
    ticket_id: str
    status: TicketStatus
    remote_item_id: str
    attachments: list[AttachmentDescriptor] = field(default_factory=list)
    failed_attachments: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InFlightRegistry:
    """Ticket ids currently being resolved.

    One registry is shared by every workflow built in a process, so two
    operator views cannot resolve the same ticket at once.
    """

    def __init__(self) -> None:
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, ticket_id: object) -> bool:
        with self._lock:
            return ticket_id in self._ids

    def claim(self, ticket_id: str) -> bool:
        with self._lock:
            if ticket_id in self._ids:
                return False
            self._ids.add(ticket_id)
            return True

    def release(self, ticket_id: str) -> None:
        with self._lock:
            self._ids.discard(ticket_id)


def _incident_file_name(ticket: Ticket, ref: AttachmentRef) -> tuple[str, str]:
    if isinstance(ref, Base64Attachment):
        content_type = ref.content_type
        extension = mimetypes.guess_extension(content_type) or ".jpg"
        return f"insiden-{ticket.ticket_number}{extension}", content_type

    path = unquote(urlparse(ref.url).path)
    base = posixpath.basename(path) or "foto"
    if "." not in base:
        base = f"{base}.jpg"
    content_type = mimetypes.guess_type(base)[0] or "image/jpeg"
    return f"insiden-{ticket.ticket_number}-{base}", content_type


class ResolutionWorkflow:
    """Confirm or decline a pending ticket and mirror it into the SharePoint list."""

    def __init__(
        self,
        *,
        store: TicketFinalizer,
        remote_list: RemoteList,
        attachments: AttachmentUploader,
        done_photo_field: str | None = "ScreenshotBuktiTicketsudahDilaku",
        clock: Callable[[], datetime] = _utcnow,
        in_flight: InFlightRegistry | None = None,
    ) -> None:
        self._store = store
        self._remote_list = remote_list
        self._attachments = attachments
        self._done_photo_field = done_photo_field
        self._clock = clock
        self._in_flight = in_flight if in_flight is not None else InFlightRegistry()

    async def confirm(
        self,
        ticket: Ticket,
        form: ResolutionForm,
        *,
        operator: str,
        proof_photo: PhotoFile | None = None,
    ) -> ResolutionOutcome:
        self._guard(ticket, form.status)
        fields = form.to_fields()
        return await self._run(ticket, form.status, fields, operator=operator, reason=None, proof_photo=proof_photo)

    async def decline(
        self,
        ticket: Ticket,
        *,
        reason: str,
        operator: str,
        proof_photo: PhotoFile | None = None,
    ) -> ResolutionOutcome:
        reason = reason.strip()
        if not reason:
            raise ValidationError("Alasan penolakan wajib diisi")
        self._guard(ticket, TicketStatus.DITOLAK)
        fields = decline_fields(ticket, reason=reason, operator=operator, now=self._clock())
        return await self._run(
            ticket, TicketStatus.DITOLAK, fields, operator=operator, reason=reason, proof_photo=proof_photo
        )

    async def finalize(
        self,
        ticket: Ticket,
        status: TicketStatus,
        *,
        remote_item_id: str,
        operator: str,
        reason: str | None = None,
    ) -> None:
        """Write the final state to the ticket store, linking the SharePoint item."""

        with tracer.start_as_current_span("resolution.finalize") as span:
            span.set_attribute("ticket.id", ticket.id)
            span.set_attribute("ticket.number", ticket.ticket_number)
            span.set_attribute("ticket.status", status.value)
            try:
                if status is TicketStatus.DITOLAK:
                    await self._store.decline(
                        ticket.id,
                        reason=reason or "",
                        operator=operator,
                        sharepoint_item_id=remote_item_id,
                    )
                else:
                    await self._store.confirm(
                        ticket.id,
                        operator=operator,
                        sharepoint_item_id=remote_item_id,
                        status=status,
                    )
            except HelpdeskError as exc:
                logger.error(
                    "Finalizing ticket %s failed after SharePoint item %s was created: %s",
                    ticket.id,
                    remote_item_id,
                    exc,
                )
                raise FinalizationFailure(
                    f"Item SharePoint {remote_item_id} sudah dibuat, tetapi tiket gagal diperbarui: {exc.message}",
                    status_code=exc.status_code,
                    body=exc.body,
                    remote_item_id=remote_item_id,
                ) from exc

    def _guard(self, ticket: Ticket, target: TicketStatus) -> None:
        if not ticket.is_pending:
            raise InvalidTicketTransition(f"Tiket {ticket.ticket_number} sudah berstatus {ticket.status.value}")
        TicketLifecycle.assert_transition(ticket.status, target)

    async def _run(
        self,
        ticket: Ticket,
        status: TicketStatus,
        fields: Mapping[str, Any],
        *,
        operator: str,
        reason: str | None,
        proof_photo: PhotoFile | None,
    ) -> ResolutionOutcome:
        if not self._in_flight.claim(ticket.id):
            raise ValidationError(f"Tiket {ticket.ticket_number} sedang diproses")
        try:
            remote_item_id = await self._create_record(ticket, fields)
            outcome = ResolutionOutcome(ticket_id=ticket.id, status=status, remote_item_id=remote_item_id)

            if ticket.attachment is not None:
                await self._upload_incident_photo(ticket, ticket.attachment, outcome)
            if proof_photo is not None:
                await self._upload_proof_photo(ticket, proof_photo, outcome)

            await self.finalize(ticket, status, remote_item_id=remote_item_id, operator=operator, reason=reason)
        finally:
            self._in_flight.release(ticket.id)

        logger.info(
            "Ticket %s -> %s (SharePoint item %s, %d attachment(s), %d failed)",
            ticket.ticket_number,
            status.value,
            remote_item_id,
            len(outcome.attachments),
            len(outcome.failed_attachments),
        )
        return outcome

    async def _create_record(self, ticket: Ticket, fields: Mapping[str, Any]) -> str:
        with tracer.start_as_current_span("resolution.create_record") as span:
            span.set_attribute("ticket.id", ticket.id)
            span.set_attribute("ticket.number", ticket.ticket_number)
            try:
                return await self._remote_list.create_item(fields)
            except RecordCreationFailure:
                logger.error("SharePoint record creation failed for ticket %s", ticket.id)
                raise
            except HelpdeskError as exc:
                logger.error("SharePoint record creation failed for ticket %s: %s", ticket.id, exc)
                raise RecordCreationFailure(
                    f"Gagal membuat item SharePoint: {exc.message}",
                    status_code=exc.status_code,
                    body=exc.body,
                ) from exc

    async def _upload(self, outcome: ResolutionOutcome, label: str, photo: PhotoFile) -> AttachmentDescriptor | None:
        with tracer.start_as_current_span("resolution.upload_attachment") as span:
            span.set_attribute("attachment.kind", label)
            try:
                descriptor = await self._attachments.upload(outcome.remote_item_id, photo)
            except HelpdeskError as exc:
                logger.warning(
                    "Skipping %s photo for SharePoint item %s: %s", label, outcome.remote_item_id, exc
                )
                outcome.failed_attachments.append(label)
                return None
        outcome.attachments.append(descriptor)
        return descriptor

    async def _upload_incident_photo(self, ticket: Ticket, ref: AttachmentRef, outcome: ResolutionOutcome) -> None:
        try:
            content = await self._store.download_attachment(ref)
        except HelpdeskError as exc:
            logger.warning("Could not re-download incident photo of ticket %s: %s", ticket.id, exc)
            outcome.failed_attachments.append(INCIDENT_PHOTO)
            return
        name, content_type = _incident_file_name(ticket, ref)
        await self._upload(outcome, INCIDENT_PHOTO, PhotoFile(name=name, content_type=content_type, content=content))

    async def _upload_proof_photo(self, ticket: Ticket, photo: PhotoFile, outcome: ResolutionOutcome) -> None:
        named = PhotoFile(
            name=f"bukti-{ticket.ticket_number}-{photo.name}",
            content_type=photo.content_type,
            content=photo.content,
        )
        descriptor = await self._upload(outcome, PROOF_PHOTO, named)
        if descriptor is None or not self._done_photo_field:
            return
        try:
            await self._remote_list.update_fields(
                outcome.remote_item_id, {self._done_photo_field: descriptor.file_name}
            )
        except HelpdeskError as exc:
            logger.warning("Could not record proof photo name on item %s: %s", outcome.remote_item_id, exc)

