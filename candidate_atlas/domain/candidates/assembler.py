"""
Turn a mapped spreadsheet row into a canonical Candidate.
"""

from typing import Any, Mapping, Optional

from .dedupe import compute_dedupe_key
from .models import (
    Candidate,
    CandidateContacts,
    CandidateMeta,
    CandidateProfessional,
    CandidateProfile,
    SourceRef,
)
from .normalize import (
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_skills,
    normalize_text,
    parse_experience_years,
)


def _split_full_name(full_name: str):
    parts = full_name.split(" ")
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def assemble_candidate(
    mapped: Mapping[str, Any],
    source: SourceRef,
    default_country_code: Optional[str] = None,
) -> Optional[Candidate]:
    """
    Normalize a mapped row and build a Candidate with its dedupe key.

    Args:
        mapped: Output of SchemaMapper.map_row (field -> raw cell value, plus "raw")
        source: Provenance of the row
        default_country_code: Country code applied to bare 10-digit phone numbers

    Returns:
        The candidate, or None when the row has no usable email, phone or name.
    """
    first_name = normalize_name(mapped.get("first_name"))
    last_name = normalize_name(mapped.get("last_name"))

    full_name = normalize_name(mapped.get("full_name"))
    if not full_name and (first_name or last_name):
        full_name = normalize_name(" ".join(part for part in (first_name, last_name) if part))

    # Split a lone full name into first/last for search.
    if full_name and not first_name and not last_name:
        first_name, last_name = _split_full_name(full_name)

    email = normalize_email(mapped.get("email"))
    phone = normalize_phone(mapped.get("phone"), default_country_code)

    dedupe_key = compute_dedupe_key(
        email=email,
        phone=phone,
        full_name=full_name,
        default_country_code=default_country_code,
    )
    if not dedupe_key:
        return None

    designation = normalize_text(mapped.get("designation")) or normalize_text(mapped.get("current_title"))

    return Candidate(
        dedupe_key=dedupe_key,
        profile=CandidateProfile(
            full_name=full_name,
            first_name=first_name,
            last_name=last_name,
            description=normalize_text(mapped.get("description")),
        ),
        contacts=CandidateContacts(
            emails=[email] if email else [],
            phones=[phone] if phone else [],
        ),
        professional=CandidateProfessional(
            designation=designation,
            current_company=normalize_text(mapped.get("current_company")),
            experience_years=parse_experience_years(mapped.get("experience_years")),
            experience_text=normalize_text(mapped.get("experience_text")),
            specialization=normalize_text(mapped.get("specialization")),
            qualification=normalize_text(mapped.get("qualification")),
            stream=normalize_text(mapped.get("stream")),
            proficiency=normalize_text(mapped.get("proficiency")),
            skills=normalize_skills(mapped.get("skills")),
            location=normalize_text(mapped.get("location")),
            preferred_location=normalize_text(mapped.get("preferred_location")),
        ),
        meta=CandidateMeta(raw=mapped.get("raw")),
        sources=[source],
    )
