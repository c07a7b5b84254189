"""Display-name sanitation.

Providers frequently send template variables, generic placeholders or the
phone number itself where a contact name is expected. Those are not usable
as display names or as identity-matching hints.
"""

import re

from inboxly.domain.phone import looks_like_phone

_GENERIC_PLACEHOLDERS = frozenset({"instagram user", "facebook user", "user", "usuario", "usuário"})
_IG_NUMBERED = re.compile(r"^ig\s*\d+$", re.IGNORECASE)


def is_template_variable(value: str | None) -> bool:
    if value is None:
        return False
    return "{{" in value or "}}" in value


def is_placeholder_name(value: str | None) -> bool:
    """True for names that carry no information about the contact."""
    if not value or not value.strip():
        return True
    cleaned = value.strip()
    if is_template_variable(cleaned):
        return True
    lower = cleaned.lower()
    if lower in _GENERIC_PLACEHOLDERS or "instagram user" in lower:
        return True
    if _IG_NUMBERED.match(lower):
        return True
    return looks_like_phone(cleaned)


def clean_name(value: str | None) -> str | None:
    """Return the stripped name, or None if it is a placeholder."""
    if is_placeholder_name(value):
        return None
    return value.strip()  # type: ignore[union-attr]


def clean_handle(value: str | None) -> str | None:
    """Normalize a username handle ("@Maria.Silva " -> "Maria.Silva")."""
    name = clean_name(value)
    if name is None:
        return None
    handle = name.lstrip("@").strip()
    return handle or None


def first_clean_name(*candidates: str | None) -> str | None:
    """First candidate that survives sanitation, in priority order."""
    for candidate in candidates:
        name = clean_name(candidate)
        if name:
            return name
    return None
