"""Phone number rules for Iraqi mobile numbers (canonical `07XXXXXXXXX`)."""

import re

from ledgerbot.common.errors import ValidationError


_LOCAL_MOBILE = re.compile(r"^07\d{9}$")


def normalize_phone(raw: str | None) -> str:
    """Strip separators and country prefix.

    Accepts `0750xxxxxxx`, `750xxxxxxx`, `+964750xxxxxxx` and `964750xxxxxxx`.
    Anything else comes back stripped but otherwise untouched.
    """

    s = re.sub(r"[^\d+]", "", (raw or "").strip())
    if s.startswith("+964"):
        s = s[4:]
    elif s.startswith("964"):
        s = s[3:]
    if len(s) == 10 and s.startswith("7"):
        return "0" + s
    return s


def is_valid_phone(raw: str | None) -> bool:
    return bool(_LOCAL_MOBILE.match(normalize_phone(raw)))


def require_phone(raw: str | None) -> str:
    """Return the canonical phone or raise ValidationError."""

    phone = normalize_phone(raw)
    if not _LOCAL_MOBILE.match(phone):
        raise ValidationError(f"invalid phone: {raw!r}")
    return phone
