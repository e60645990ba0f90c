from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DISPLAY_NAME = "User"


@dataclass(frozen=True, slots=True)
class Profile:
    user_id: str
    username: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        return normalize_display_name(self.username, self.email)


def normalize_display_name(
    username: str | None,
    email: str | None,
    fallback: str = DEFAULT_DISPLAY_NAME,
) -> str:
    """Prefer the username, then the email local part, then ``fallback``."""
    name = (username or "").strip()
    if name:
        return name
    address = (email or "").strip()
    if "@" in address:
        local = address.split("@", 1)[0].strip()
        if local:
            return local
    return fallback
