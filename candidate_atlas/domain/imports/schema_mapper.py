"""
Header-to-field mapping for candidate spreadsheets.

The heuristic factory resolves each candidate field to a column index once per
header row. For every field it walks a fixed, prioritized list of phrases and
takes the first header that matches any of them, in phrase order. The result
is deterministic: the same header row always yields the same indices.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import re
import logging

logger = logging.getLogger(__name__)

_ABBREVIATIONS: Tuple[Tuple[str, str], ...] = (
    (r"\bcurr\b", "current"),
    (r"\bexp\b", "experience"),
    (r"\byrs\b", "years"),
    (r"\byr\b", "year"),
    (r"\bdept\b", "department"),
    (r"\bloc\b", "location"),
)

# Order matters twice: fields are listed in the order a row is mapped, and
# within each field the first matching phrase wins.
FIELD_PHRASES: Dict[str, Tuple[str, ...]] = {
    "first_name": ("first name", "firstname", "given name", "candidate first name"),
    "last_name": ("last name", "lastname", "surname", "family name", "candidate last name"),
    "full_name": (
        "name",
        "full name",
        "candidate name",
        "doctor name",
        "nurse name",
        "employee name",
        "resource name",
    ),
    "email": ("email", "email id", "e-mail", "mail", "mail id", "email address"),
    "phone": (
        "phone",
        "phone number",
        "mobile",
        "mobile number",
        "mobile no",
        "mobile no.",
        "contact",
        "contact number",
        "contact no",
        "contact no.",
    ),
    "skills": (
        "skills",
        "primary skills",
        "skill set",
        "key skills",
        "special skills",
        "clinical skills",
        "skill",
        "key skill",
    ),
    "location": (
        "location",
        "current location",
        "city",
        "current city",
        "preferred location",
        "preferred city",
    ),
    "preferred_location": ("preferred location", "preferred locations", "preferred city", "preferred cities"),
    "experience_years": (
        "experience",
        "experience (years)",
        "total experience",
        "total exp",
        "total exp (years)",
        "experience years",
        "years of experience",
    ),
    "experience_text": ("experience details", "experience summary", "work experience", "experience (text)"),
    "current_title": ("current title", "role", "current role", "current position", "position"),
    "designation": (
        "designation",
        "current designation",
        "title",
        "job title",
        "current title",
        "current company designation",
    ),
    "current_company": (
        "current company",
        "current company name",
        "company",
        "employer",
        "organization",
        "hospital",
        "current hospital",
        "current organisation",
    ),
    "stream": ("stream", "functional area", "domain", "category", "specialization stream"),
    "proficiency": ("proficiency", "proficiency level", "level", "seniority", "grade"),
    "description": (
        "description",
        "profile summary",
        "summary",
        "about",
        "bio",
        "candidate summary",
        "notes",
    ),
    "specialization": (
        "specialization",
        "speciality",
        "department",
        "speciality/department",
        "department/speciality",
    ),
    "qualification": (
        "qualification",
        "education",
        "highest qualification",
        "degree",
        "educational qualification",
    ),
}

MAPPED_FIELDS: Tuple[str, ...] = tuple(FIELD_PHRASES)
IDENTITY_FIELDS: Tuple[str, ...] = ("full_name", "first_name", "last_name", "email", "phone")


def normalize_header_key(value: Any) -> str:
    """
    Normalize a header cell for phrase comparison.

    - Lowercase
    - Punctuation runs become single spaces
    - Common recruitment abbreviations are expanded

    Examples:
        "Curr. Company"      -> "current company"
        "Total Exp (Yrs)"    -> "total experience years"
        "Preferred-Loc"      -> "preferred location"
    """
    text = str(value if value is not None else "").strip().lower()
    text = re.sub(r"[^a-z0-9]+", " ", text)
    for pattern, replacement in _ABBREVIATIONS:
        text = re.sub(pattern, replacement, text)
    return re.sub(r"\s+", " ", text).strip()


_NORMALIZED_PHRASES: Dict[str, Tuple[str, ...]] = {
    field: tuple(normalize_header_key(phrase) for phrase in phrases)
    for field, phrases in FIELD_PHRASES.items()
}


class SchemaMapper:
    """Positional row mapper produced for one header row."""

    def __init__(self, header: Sequence[str], field_indices: Mapping[str, int]):
        self.header = list(header)
        self.field_indices: Dict[str, int] = {field: field_indices.get(field, -1) for field in MAPPED_FIELDS}

    @property
    def mapped_fields(self) -> Dict[str, str]:
        """Field -> source header for every mapped field."""
        return {
            field: self.header[index]
            for field, index in self.field_indices.items()
            if 0 <= index < len(self.header)
        }

    @property
    def has_identity_fields(self) -> bool:
        return any(self.field_indices[field] >= 0 for field in IDENTITY_FIELDS)

    def with_overrides(self, dictionary: Mapping[str, str]) -> "SchemaMapper":
        """
        Return a mapper whose indices are replaced by a field -> header dictionary.

        Entries naming an unknown field or a header that is not present are ignored.
        """
        indices = dict(self.field_indices)
        positions = {name: i for i, name in enumerate(self.header)}
        for field, source_header in dictionary.items():
            if field not in indices or source_header not in positions:
                logger.debug(f"Ignoring mapping override {field!r} -> {source_header!r}")
                continue
            indices[field] = positions[source_header]
        return SchemaMapper(self.header, indices)

    def map_row(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Read mapped fields from a row record by header position.

        Unmapped fields come back as None; the original record is always
        included under "raw".
        """
        values = list(record.values())
        mapped: Dict[str, Any] = {}
        for field, index in self.field_indices.items():
            mapped[field] = values[index] if 0 <= index < len(values) else None
        mapped["raw"] = dict(record)
        return mapped


class HeuristicSchemaMapperFactory:
    """Builds SchemaMapper instances from header rows using the fixed phrase lists."""

    def create_for_header(self, header_row: Sequence[Any]) -> SchemaMapper:
        normalized = [normalize_header_key(cell) for cell in header_row]
        indices = {field: self._find(normalized, phrases) for field, phrases in _NORMALIZED_PHRASES.items()}

        mapper = SchemaMapper([str(cell) for cell in header_row], indices)
        logger.debug(f"Heuristic header mapping: {mapper.mapped_fields}")
        return mapper

    def create_for_dictionary(self, header_row: Sequence[Any], dictionary: Mapping[str, str]) -> SchemaMapper:
        """Build a mapper purely from a field -> source header dictionary."""
        empty = SchemaMapper([str(cell) for cell in header_row], {})
        return empty.with_overrides(dictionary)

    @staticmethod
    def _find(normalized_header: List[str], phrases: Sequence[str]) -> int:
        for phrase in phrases:
            if phrase in normalized_header:
                return normalized_header.index(phrase)
        return -1


def create_schema_mapper_factory() -> HeuristicSchemaMapperFactory:
    return HeuristicSchemaMapperFactory()
