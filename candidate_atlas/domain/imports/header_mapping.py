"""
AI-assisted header mapping.

Builds a strict JSON-only prompt for a chat model and validates whatever comes
back. Model output is treated as untrusted input: it is parsed leniently
(code fences stripped, outermost JSON object extracted) and then validated
strictly against the input headers and the canonical field catalogue. Any
problem is returned as a structured error next to an empty dictionary;
nothing raised by a bad response escapes map_headers_with_ai.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
import json
import logging
import re

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from candidate_atlas.core.exceptions import MappingValidationError

logger = logging.getLogger(__name__)

MAX_SAMPLE_ROWS = 5

ERROR_INVALID_JSON = "INVALID_JSON"
ERROR_INVALID_MAPPING = "INVALID_AI_MAPPING"
ERROR_REQUEST_FAILED = "AI_REQUEST_FAILED"


@dataclass(frozen=True)
class CanonicalField:
    key: str
    description: str


CANONICAL_FIELDS: List[CanonicalField] = [
    CanonicalField("full_name", "Candidate full name (person name)"),
    CanonicalField("email", "Primary email address"),
    CanonicalField("phone", "Primary phone/mobile number"),
    CanonicalField("designation", "Current title/designation/role"),
    CanonicalField("current_company", "Current employer/company/organization"),
    CanonicalField("experience_years", "Total years of experience as a number (e.g. 3.5)"),
    CanonicalField("skills", "Skills or skill set (may be comma-separated in source)"),
    CanonicalField("location", "Current location / city"),
]

CANONICAL_KEYS = frozenset(f.key for f in CANONICAL_FIELDS)

SYSTEM_PROMPT = (
    "You are a data ingestion assistant. Your job is to map messy spreadsheet column headers "
    "to a predefined canonical schema. Return ONLY valid JSON. Do not include markdown, code fences, "
    "or explanation text outside JSON."
)


@dataclass
class HeaderMappingPrompt:
    system: str
    user: str


def build_header_mapping_prompt(
    headers: Sequence[str],
    canonical_fields: Optional[Sequence[CanonicalField]] = None,
    sample_rows: Optional[Sequence[Mapping[str, Any]]] = None,
    allow_many_to_one: bool = True,
    allow_unmapped: bool = True,
) -> HeaderMappingPrompt:
    """
    Build the system and user messages for a header-mapping request.

    Args:
        headers: Header names exactly as produced by the row reader
        canonical_fields: Target catalogue; defaults to CANONICAL_FIELDS
        sample_rows: Example records; only the first five are sent
        allow_many_to_one: Whether several headers may share a target field
        allow_unmapped: Whether headers may be left unmapped

    Returns:
        HeaderMappingPrompt with the system text and a JSON user document

    Raises:
        ValueError: If headers is empty
    """
    if not headers:
        raise ValueError("headers must be a non-empty list")

    fields = list(canonical_fields or CANONICAL_FIELDS)
    samples = [dict(row) for row in list(sample_rows or [])[:MAX_SAMPLE_ROWS]]

    user = {
        "task": "Map the given spreadsheet headers to canonical candidate fields.",
        "rules": {
            "outputFormat": "json",
            "requireOnlyJson": True,
            "allowManyToOne": allow_many_to_one,
            "allowUnmapped": allow_unmapped,
            "requireConfidence": True,
            "constraints": [
                "Do not hallucinate headers that are not present.",
                'Prefer exact/strong semantic matches (e.g., "Candidate Name" -> full_name, "Mobile no" -> phone).',
                "If a header is ambiguous, set targetField to null and explain briefly in reason.",
                "If multiple headers map to the same targetField, choose a primary sourceHeader and mark others as aliases.",
            ],
        },
        "canonicalFields": [{"key": f.key, "description": f.description} for f in fields],
        "input": {
            "headers": list(headers),
            "sampleRows": samples,
        },
        "outputSchema": {
            "version": "1.0",
            "mappings": [
                {
                    "sourceHeader": "string (must be one of input.headers)",
                    "targetField": "string|null (must be one of canonicalFields[].key or null)",
                    "confidence": "number 0..1",
                    "isPrimary": "boolean",
                    "aliases": "string[] (other headers that mean the same thing)",
                    "reason": "string (short)",
                }
            ],
        },
        "examples": {
            "headers": ["Candidate Name", "ADRENALIN_NAME", "Mobile no", "Email ID", "Current Company"],
            "expected": {
                "version": "1.0",
                "mappings": [
                    {
                        "sourceHeader": "Candidate Name",
                        "targetField": "full_name",
                        "confidence": 0.95,
                        "isPrimary": True,
                        "aliases": ["ADRENALIN_NAME"],
                        "reason": "Both columns represent the candidate name.",
                    },
                    {
                        "sourceHeader": "Mobile no",
                        "targetField": "phone",
                        "confidence": 0.95,
                        "isPrimary": True,
                        "aliases": [],
                        "reason": "Mobile number.",
                    },
                    {
                        "sourceHeader": "Email ID",
                        "targetField": "email",
                        "confidence": 0.95,
                        "isPrimary": True,
                        "aliases": [],
                        "reason": "Email address.",
                    },
                    {
                        "sourceHeader": "Current Company",
                        "targetField": "current_company",
                        "confidence": 0.9,
                        "isPrimary": True,
                        "aliases": [],
                        "reason": "Employer/company.",
                    },
                ],
            },
        },
    }

    return HeaderMappingPrompt(system=SYSTEM_PROMPT, user=json.dumps(user, indent=2, default=str))


# ----------------------------------------------------------------------
# Response validation
# ----------------------------------------------------------------------
def _context_headers(info: ValidationInfo) -> Optional[frozenset]:
    context = info.context or {}
    return context.get("headers")


class HeaderMappingEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_header: StrictStr = Field(alias="sourceHeader")
    target_field: Optional[StrictStr] = Field(alias="targetField")
    confidence: float = Field(ge=0.0, le=1.0, allow_inf_nan=False, strict=True)
    is_primary: bool = Field(default=False, alias="isPrimary")
    aliases: List[str] = Field(default_factory=list)
    reason: str = ""

    @field_validator("source_header")
    @classmethod
    def _source_header_is_known(cls, value: str, info: ValidationInfo) -> str:
        headers = _context_headers(info)
        if headers is not None and value not in headers:
            raise ValueError(f"sourceHeader {value!r} is not one of the provided headers")
        return value

    @field_validator("target_field")
    @classmethod
    def _target_field_is_canonical(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in CANONICAL_KEYS:
            raise ValueError(f"targetField {value!r} must be null or a canonical key")
        return value

    @field_validator("is_primary", mode="before")
    @classmethod
    def _coerce_primary(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("aliases", mode="before")
    @classmethod
    def _known_aliases_only(cls, value: Any, info: ValidationInfo) -> List[str]:
        if not isinstance(value, list):
            return []
        headers = _context_headers(info)
        return [a for a in value if isinstance(a, str) and (headers is None or a in headers)]

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @model_validator(mode="after")
    def _aliases_exclude_source(self) -> "HeaderMappingEntry":
        self.aliases = [a for a in self.aliases if a != self.source_header]
        return self


class HeaderMappingResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str = "1.0"
    mappings: List[HeaderMappingEntry]

    @field_validator("version", mode="before")
    @classmethod
    def _default_version(cls, value: Any) -> str:
        return value if isinstance(value, str) else "1.0"


def extract_json_candidate(text: Any) -> Optional[str]:
    """
    Best-effort extraction of a JSON document from model output.

    Strips markdown fences, then takes the span from the first "{" to the last
    "}" (falling back to "[" ... "]").
    """
    if not isinstance(text, str):
        return None

    unfenced = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()

    first, last = unfenced.find("{"), unfenced.rfind("}")
    if first != -1 and last > first:
        return unfenced[first:last + 1]

    first, last = unfenced.find("["), unfenced.rfind("]")
    if first != -1 and last > first:
        return unfenced[first:last + 1]

    return None


def _describe_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def parse_header_mapping_response(text: Any, input_headers: Sequence[str]) -> HeaderMappingResult:
    """
    Parse and validate a model response.

    Raises:
        ValueError: If input_headers is empty (caller error, not a model error)
        MappingValidationError: If the response is not JSON or breaks the schema
    """
    if not input_headers:
        raise ValueError("input_headers must be a non-empty list")

    candidate = extract_json_candidate(text)
    if candidate is None:
        candidate = text if isinstance(text, str) else ""

    try:
        data = json.loads(candidate)
    except (TypeError, ValueError) as exc:
        raise MappingValidationError(f"AI response is not valid JSON: {exc}", code=ERROR_INVALID_JSON) from exc

    if not isinstance(data, dict):
        raise MappingValidationError("AI response JSON must be an object", code=ERROR_INVALID_MAPPING)

    try:
        return HeaderMappingResult.model_validate(data, context={"headers": frozenset(input_headers)})
    except ValidationError as exc:
        raise MappingValidationError(
            f"AI response does not match the mapping schema ({_describe_validation_error(exc)})",
            code=ERROR_INVALID_MAPPING,
        ) from exc


@dataclass
class MappingError:
    code: str
    message: str
    raw_text: str = ""


@dataclass
class HeaderMappingOutcome:
    raw: Optional[HeaderMappingResult] = None
    dictionary: Dict[str, str] = field(default_factory=dict)
    error: Optional[MappingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw.model_dump(by_alias=True) if self.raw is not None else None,
            "dictionary": dict(self.dictionary),
            "error": (
                {"code": self.error.code, "message": self.error.message}
                if self.error is not None
                else None
            ),
        }


def safe_parse_header_mapping_response(text: Any, input_headers: Sequence[str]) -> HeaderMappingOutcome:
    """Like parse_header_mapping_response, but returns the error instead of raising it."""
    try:
        parsed = parse_header_mapping_response(text, input_headers)
    except MappingValidationError as exc:
        return HeaderMappingOutcome(
            error=MappingError(
                code=exc.code,
                message=exc.message,
                raw_text=text if isinstance(text, str) else "",
            )
        )
    return HeaderMappingOutcome(raw=parsed, dictionary=mapping_to_dictionary(parsed))


def mapping_to_dictionary(parsed: HeaderMappingResult) -> Dict[str, str]:
    """Reduce primary, mapped entries to canonical field -> source header."""
    dictionary: Dict[str, str] = {}
    for mapping in parsed.mappings:
        if mapping.target_field and mapping.is_primary:
            dictionary[mapping.target_field] = mapping.source_header
    return dictionary


def map_headers_with_ai(
    chat_client: Any,
    headers: Sequence[str],
    sample_rows: Optional[Sequence[Mapping[str, Any]]] = None,
    canonical_fields: Optional[Sequence[CanonicalField]] = None,
) -> HeaderMappingOutcome:
    """
    Ask the chat model for a header mapping and validate the answer.

    Never raises for a bad or failed model response; the outcome carries an
    error with code INVALID_JSON, INVALID_AI_MAPPING or AI_REQUEST_FAILED.
    """
    samples = list(sample_rows or [])[:MAX_SAMPLE_ROWS]
    prompt = build_header_mapping_prompt(headers, canonical_fields=canonical_fields, sample_rows=samples)
    logger.info(f"Requesting AI header mapping for {len(headers)} headers ({len(samples)} sample rows)")

    try:
        response = chat_client.chat(system=prompt.system, user=prompt.user, temperature=0)
    except Exception as exc:
        logger.warning(f"AI header mapping request failed: {exc}")
        return HeaderMappingOutcome(error=MappingError(code=ERROR_REQUEST_FAILED, message=str(exc)))

    outcome = safe_parse_header_mapping_response(response.text, headers)
    if outcome.error is not None:
        logger.warning(f"Failed to parse AI header mapping response: {outcome.error.code} {outcome.error.message}")
    else:
        logger.info(f"AI header mapping resolved {len(outcome.dictionary)} fields: {outcome.dictionary}")
    return outcome
