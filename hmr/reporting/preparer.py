"""Preparer (pharmacist) identity resolution.

Resolution order is explicit draft value, then the signed-in pharmacist's
profile, then a static default. All three are plain arguments so validation
and rendering stay pure.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_PREPARER = "Consultant Pharmacist"


@dataclass(frozen=True)
class PreparerProfile:
    name: str = ""
    registration_number: str = ""

    @property
    def display_name(self) -> str:
        name = self.name.strip()
        if name and self.registration_number.strip():
            return f"{name} (MRN {self.registration_number.strip()})"
        return name


def resolve_preparer(
    explicit: str | None,
    profile: str | PreparerProfile | None = None,
    static_default: str | None = DEFAULT_PREPARER,
) -> str:
    """Return the first non-blank candidate, or ``""`` when all are blank."""
    if isinstance(profile, PreparerProfile):
        profile = profile.display_name
    for candidate in (explicit, profile, static_default):
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


__all__ = ["DEFAULT_PREPARER", "PreparerProfile", "resolve_preparer"]
