from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import httpx

from helpdesk.errors import HelpdeskError, NetworkError, RecordCreationFailure, ValidationError, extract_error_message

from .auth import TokenProvider

logger = logging.getLogger(__name__)

FieldValue = str | int | float | bool | None
_PRIMITIVES = (str, int, float, bool)


def clean_fields(fields: Mapping[str, Any]) -> dict[str, FieldValue]:
    """Drop empty values and reject anything that is not a primitive."""

    cleaned: dict[str, FieldValue] = {}
    for name, value in fields.items():
        if value is None:
            continue
        if not isinstance(value, _PRIMITIVES):
            raise ValidationError(f"Field {name!r} harus bernilai primitif, bukan {type(value).__name__}")
        cleaned[name] = value
    return cleaned


class SharePointListClient:
    """Create and patch items of one SharePoint list through Microsoft Graph."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        graph_base_url: str,
        site_id: str,
        list_id: str,
        scopes: Sequence[str] = ("Sites.ReadWrite.All",),
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._items_url = f"{graph_base_url.rstrip('/')}/sites/{site_id}/lists/{list_id}/items"
        self._scopes = tuple(scopes)

    async def _headers(self) -> dict[str, str]:
        token = await self._tokens.get_token(self._scopes)
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def create_item(self, fields: Mapping[str, Any]) -> str:
        """Create one list item and return its id."""

        payload = {"fields": clean_fields(fields)}
        headers = await self._headers()
        try:
            response = await self._http.post(self._items_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal terhubung ke SharePoint: {exc}") from exc

        if response.status_code >= 400:
            raise RecordCreationFailure(
                f"Gagal membuat item SharePoint: {extract_error_message(response)}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            item_id = response.json().get("id")
        except (ValueError, AttributeError):
            item_id = None
        if not item_id:
            raise RecordCreationFailure(
                "SharePoint tidak mengembalikan id item",
                status_code=response.status_code,
                body=response.text,
            )
        logger.info("Created SharePoint list item %s", item_id)
        return str(item_id)

    async def update_fields(self, item_id: str, fields: Mapping[str, Any]) -> None:
        payload = clean_fields(fields)
        headers = await self._headers()
        try:
            response = await self._http.patch(f"{self._items_url}/{item_id}/fields", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gagal terhubung ke SharePoint: {exc}") from exc
        if response.status_code >= 400:
            raise HelpdeskError(
                f"Gagal memperbarui item SharePoint {item_id}: {extract_error_message(response)}",
                status_code=response.status_code,
                body=response.text,
            )
