"""Upload ticket photos as SharePoint list item attachments.

Two transports exist for the same operation. The Graph endpoint takes a JSON
body with base64 content; the legacy SharePoint REST endpoint takes the raw
bytes. The REST endpoint collides with writes still being applied to a
freshly created item, so it runs behind a :class:`RetryPolicy`.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Sequence
from urllib.parse import quote

import httpx

from helpdesk.errors import HelpdeskError, NetworkError, UploadConflict, UploadRejected, extract_error_message
from helpdesk.tickets.models import PhotoFile

from .auth import TokenProvider
from .retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_CODES: frozenset[int] = frozenset({409, 412})


@dataclass(frozen=True, slots=True)
class AttachmentDescriptor:
    """Reference to a file stored against a list item."""

    item_id: str
    file_name: str
    server_relative_url: str | None = None
    transport: str = ""


class AttachmentStrategy(Protocol):
    name: str

    async def upload(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        ...


def _raise_for_upload(response: httpx.Response, conflict_codes: Iterable[int], file_name: str) -> None:
    if response.status_code < 400:
        return
    message = extract_error_message(response)
    if response.status_code in conflict_codes:
        raise UploadConflict(
            f"Konflik saat mengunggah {file_name}: {message}",
            status_code=response.status_code,
            body=response.text,
        )
    raise UploadRejected(
        f"Unggahan {file_name} ditolak: {message}",
        status_code=response.status_code,
        body=response.text,
    )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class GraphAttachmentStrategy:
    """Structured upload: ``POST .../items/{id}/attachments`` with base64 content."""

    name = "graph"

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        graph_base_url: str,
        site_id: str,
        list_id: str,
        scopes: Sequence[str] = ("Sites.ReadWrite.All",),
        conflict_codes: Iterable[int] = DEFAULT_CONFLICT_CODES,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._items_url = f"{graph_base_url.rstrip('/')}/sites/{site_id}/lists/{list_id}/items"
        self._scopes = tuple(scopes)
        self._conflict_codes = frozenset(conflict_codes)

    async def upload(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        token = await self._tokens.get_token(self._scopes)
        payload = {
            "name": photo.name,
            "contentBytes": base64.b64encode(photo.content).decode("ascii"),
        }
        try:
            response = await self._http.post(
                f"{self._items_url}/{item_id}/attachments",
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal mengunggah {photo.name}: {exc}") from exc
        _raise_for_upload(response, self._conflict_codes, photo.name)

        data = _json_or_empty(response)
        return AttachmentDescriptor(
            item_id=item_id,
            file_name=str(data.get("name") or photo.name),
            server_relative_url=data.get("contentUrl") or data.get("webUrl"),
            transport=self.name,
        )


class RestAttachmentStrategy:
    """Binary upload: ``AttachmentFiles/add(FileName='...')`` on the SharePoint REST API."""

    name = "rest"

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        rest_url: str,
        list_id: str,
        scopes: Sequence[str],
        retry_policy: RetryPolicy | None = None,
        conflict_codes: Iterable[int] = DEFAULT_CONFLICT_CODES,
        sleep: Sleep | None = None,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._list_url = f"{rest_url.rstrip('/')}/_api/web/lists(guid'{list_id}')"
        self._scopes = tuple(scopes)
        self._retry_policy = retry_policy or RetryPolicy()
        self._conflict_codes = frozenset(conflict_codes)
        self._sleep = sleep

    def _upload_url(self, item_id: str, file_name: str) -> str:
        # SharePoint expects single quotes in the literal doubled, then percent-encoded
        literal = quote(file_name.replace("'", "''"), safe="")
        return f"{self._list_url}/items({item_id})/AttachmentFiles/add(FileName='{literal}')"

    async def _attempt(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        token = await self._tokens.get_token(self._scopes)
        try:
            response = await self._http.post(
                self._upload_url(item_id, photo.name),
                content=photo.content,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json;odata=verbose",
                    "Content-Type": "application/octet-stream",
                },
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal mengunggah {photo.name}: {exc}") from exc
        _raise_for_upload(response, self._conflict_codes, photo.name)

        data = _json_or_empty(response)
        body = data.get("d", data)
        return AttachmentDescriptor(
            item_id=item_id,
            file_name=str(body.get("FileName") or photo.name),
            server_relative_url=body.get("ServerRelativeUrl"),
            transport=self.name,
        )

    async def upload(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        return await self._retry_policy.run(lambda: self._attempt(item_id, photo), sleep=self._sleep)


class AttachmentStore:
    """Try each transport in order until one stores the file."""

    def __init__(self, strategies: Sequence[AttachmentStrategy]) -> None:
        if not strategies:
            raise ValueError("AttachmentStore needs at least one strategy")
        self._strategies = tuple(strategies)

    @property
    def strategies(self) -> tuple[AttachmentStrategy, ...]:
        return self._strategies

    async def upload(self, item_id: str, photo: PhotoFile) -> AttachmentDescriptor:
        last_error: HelpdeskError | None = None
        for strategy in self._strategies:
            try:
                descriptor = await strategy.upload(item_id, photo)
            except HelpdeskError as exc:
                logger.warning(
                    "Attachment upload via %s failed for item %s (%s): %s",
                    strategy.name,
                    item_id,
                    photo.name,
                    exc,
                )
                last_error = exc
                continue
            logger.info("Uploaded %s to item %s via %s", descriptor.file_name, item_id, strategy.name)
            return descriptor
        assert last_error is not None
        raise last_error
