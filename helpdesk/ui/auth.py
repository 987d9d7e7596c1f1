from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from helpdesk.intake.profile import ReporterProfile, read_profile


class Role(str, Enum):
    REPORTER = "reporter"
    OPERATOR = "operator"


@dataclass(frozen=True, slots=True)
class AuthProfile:
    """Signed-in account as seen by the Streamlit surface."""

    label: str
    claims: Mapping[str, Any] = field(default_factory=dict)
    roles: tuple[Role, ...] = (Role.REPORTER,)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def reporter(self) -> ReporterProfile:
        return read_profile(self.claims)

    @property
    def display_name(self) -> str:
        return self.reporter.name


_PRESET_PROFILES: tuple[AuthProfile, ...] = (
    AuthProfile(
        "Pelapor (John)",
        {"name": "John", "department": "TI & System"},
        (Role.REPORTER,),
    ),
    AuthProfile(
        "Pelapor Direksi",
        {"name": "Direksi", "department": "BOD (Urgent)"},
        (Role.REPORTER,),
    ),
    AuthProfile(
        "Operator IT (Jane)",
        {"name": "Jane", "department": "TI & System"},
        (Role.OPERATOR, Role.REPORTER),
    ),
)


def preset_profiles() -> Iterable[AuthProfile]:
    return _PRESET_PROFILES


def resolve_label(label: str | None) -> AuthProfile:
    for profile in _PRESET_PROFILES:
        if profile.label == label:
            return profile
    return _PRESET_PROFILES[0]
