from typing import Any, Optional

from .normalize import normalize_email, normalize_name, normalize_phone

EMAIL_PREFIX = "email:"
PHONE_PREFIX = "phone:"
NAME_PREFIX = "name:"


def compute_dedupe_key(
    email: Any = None,
    phone: Any = None,
    full_name: Any = None,
    default_country_code: Optional[str] = None,
) -> Optional[str]:
    """
    Derive the identity key of a candidate.

    Priority is email, then phone, then name (weakest and most collision-prone).
    Returns None when none of the three normalizes to a value; such rows are
    never persisted.
    """
    normalized_email = normalize_email(email)
    if normalized_email:
        return f"{EMAIL_PREFIX}{normalized_email}"

    normalized_phone = normalize_phone(phone, default_country_code)
    if normalized_phone:
        return f"{PHONE_PREFIX}{normalized_phone}"

    normalized_name = normalize_name(full_name)
    if normalized_name:
        return f"{NAME_PREFIX}{normalized_name.lower()}"

    return None
