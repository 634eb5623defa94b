"""
Canonical candidate record.

A candidate is keyed by identity (its dedupe key and contact points), not by
the ingestion event that produced it. Repeated ingestion of the same identity
updates the record and grows its provenance list.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class SourceRef(BaseModel):
    """Where a candidate row came from."""
    file_path: str
    sheet_name: Optional[str] = None
    row_number: Optional[int] = None

    def key(self) -> Tuple[str, Optional[str], Optional[int]]:
        return (self.file_path, self.sheet_name, self.row_number)


class CandidateProfile(BaseModel):
    full_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None


class CandidateContacts(BaseModel):
    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)


class CandidateProfessional(BaseModel):
    designation: Optional[str] = None
    current_company: Optional[str] = None
    experience_years: Optional[float] = None
    experience_text: Optional[str] = None
    specialization: Optional[str] = None
    qualification: Optional[str] = None
    stream: Optional[str] = None
    proficiency: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    preferred_location: Optional[str] = None


class CandidateMeta(BaseModel):
    raw: Optional[Dict[str, Any]] = None


class Candidate(BaseModel):
    id: Optional[int] = None
    dedupe_key: Optional[str] = None
    profile: CandidateProfile = Field(default_factory=CandidateProfile)
    contacts: CandidateContacts = Field(default_factory=CandidateContacts)
    professional: CandidateProfessional = Field(default_factory=CandidateProfessional)
    meta: CandidateMeta = Field(default_factory=CandidateMeta)
    sources: List[SourceRef] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def primary_email(self) -> Optional[str]:
        return self.contacts.emails[0] if self.contacts.emails else None

    @property
    def primary_phone(self) -> Optional[str]:
        return self.contacts.phones[0] if self.contacts.phones else None


def merge_sources(existing: List[SourceRef], incoming: List[SourceRef]) -> List[SourceRef]:
    """Union provenance lists, keeping order and dropping exact duplicates."""
    merged: List[SourceRef] = []
    seen = set()
    for source in list(existing) + list(incoming):
        key = source.key()
        if key in seen:
            continue
        seen.add(key)
        merged.append(source)
    return merged
