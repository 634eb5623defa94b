"""
Value normalization for candidate contact and profile fields.

All functions are total: any input (None, numbers, stray objects) yields either
a normalized value or None / an empty list, never an exception.
"""

import math
import re
from typing import Any, List, Optional

_WHITESPACE_RE = re.compile(r"\s+")
_SKILL_SEPARATORS_RE = re.compile(r"[,;|\n\t]+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def _to_text(value: Any) -> str:
    """Render a cell value as text, reading integral floats as integers."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def normalize_text(value: Any) -> Optional[str]:
    """Trimmed string or None when blank."""
    text = _to_text(value).strip()
    return text or None


def normalize_email(value: Any) -> Optional[str]:
    """
    Lowercase and trim an email address.

    Returns None when the value is empty or does not look like an address
    (no "@", or "@" at either end).
    """
    text = _to_text(value).strip().lower()
    if not text:
        return None
    if "@" not in text or text.startswith("@") or text.endswith("@"):
        return None
    return text


def normalize_phone(value: Any, default_country_code: Optional[str] = None) -> Optional[str]:
    """
    Reduce a phone number to digits, keeping a leading "+".

    Examples:
        "(+91) 98765-43210"                      -> "+919876543210"
        "98765 43210", default_country_code="91" -> "+919876543210"
        "98765 43210"                            -> "9876543210"
        "n/a"                                    -> None
    """
    kept = re.sub(r"[^0-9+]", "", _to_text(value).strip())
    digits = re.sub(r"\D", "", kept)
    if not digits:
        return None

    if kept.startswith("+"):
        return f"+{digits}"

    if default_country_code and len(digits) == 10:
        country_code = re.sub(r"\D", "", str(default_country_code))
        if country_code:
            return f"+{country_code}{digits}"

    return digits


def normalize_name(value: Any) -> Optional[str]:
    """Collapse internal whitespace and trim; None when nothing is left."""
    text = _WHITESPACE_RE.sub(" ", _to_text(value)).strip()
    return text or None


def normalize_skills(value: Any) -> List[str]:
    """
    Split a delimited skills cell (or a list of them) into lowercase tokens.

    Separators are comma, semicolon, pipe, newline and tab. Duplicates are
    dropped, keeping first-seen order.
    """
    if value is None:
        return []

    parts = value if isinstance(value, (list, tuple)) else [value]

    skills: List[str] = []
    seen = set()
    for part in parts:
        for token in _SKILL_SEPARATORS_RE.split(_to_text(part)):
            skill = token.strip().lower()
            if skill and skill not in seen:
                seen.add(skill)
                skills.append(skill)
    return skills


def parse_experience_years(value: Any) -> Optional[float]:
    """
    Read a years-of-experience cell as a number.

    Numeric cells pass through; text cells yield their first decimal number
    ("3.5 yrs" -> 3.5, "10+" -> 10.0).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number

    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    return float(match.group(0))
