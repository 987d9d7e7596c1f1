from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from helpdesk.tickets.models import DEFAULT_DIVISION


@dataclass(frozen=True, slots=True)
class ReporterProfile:
    """Reporter identity as known from the signed-in account."""

    name: str
    division: str = DEFAULT_DIVISION


def _pick(claims: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = claims.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def read_profile(claims: Mapping[str, Any] | None) -> ReporterProfile:
    """Resolve reporter name and default division from ID token claims."""

    claims = claims or {}
    name = _pick(claims, "name", "given_name", "preferred_username", "username") or "User"
    division = _pick(claims, "department", "division", "jobTitle") or DEFAULT_DIVISION
    return ReporterProfile(name=name, division=division)
