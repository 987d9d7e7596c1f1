"""Bearer token sources for Microsoft Graph and SharePoint REST calls.

Token acquisition itself belongs to the identity provider; adapters only
depend on the :class:`TokenProvider` protocol.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from pydantic import SecretStr

from helpdesk.errors import ValidationError


class TokenProvider(Protocol):
    async def get_token(self, scopes: Sequence[str]) -> str:
        ...


class StaticTokenProvider:
    """Serve a pre-acquired token regardless of the requested scopes."""

    def __init__(self, token: str | SecretStr | None) -> None:
        if isinstance(token, SecretStr):
            token = token.get_secret_value()
        self._token = token or ""

    async def get_token(self, scopes: Sequence[str]) -> str:
        if not self._token:
            raise ValidationError(f"Token untuk scope {', '.join(scopes) or '-'} belum tersedia")
        return self._token


def sharepoint_default_scopes(rest_url: str) -> tuple[str, ...]:
    """Return the ``.default`` scope for a SharePoint tenant root."""

    if not rest_url:
        return ()
    scheme, _, rest = rest_url.partition("://")
    host = rest.split("/", 1)[0]
    return (f"{scheme}://{host}/.default",)
