"""
Tests for the SQL candidate store (in-memory SQLite).
"""

import pytest
from sqlalchemy import func, select

from candidate_atlas.db.models import candidate_contacts_table
from candidate_atlas.domain.candidates.dedupe import compute_dedupe_key
from candidate_atlas.domain.candidates.models import (
    Candidate,
    CandidateContacts,
    CandidateProfessional,
    CandidateProfile,
    SourceRef,
)


def make_candidate(email=None, phone=None, name=None, row=2, file_path="a.xlsx", **professional):
    return Candidate(
        dedupe_key=compute_dedupe_key(email=email, phone=phone, full_name=name),
        profile=CandidateProfile(full_name=name),
        contacts=CandidateContacts(emails=[email] if email else [], phones=[phone] if phone else []),
        professional=CandidateProfessional(**professional),
        sources=[SourceRef(file_path=file_path, sheet_name="Sheet1", row_number=row)],
    )


def test_ensure_indexes_is_idempotent(store):
    store.ensure_indexes()
    store.ensure_indexes()
    assert store.count() == 0


def test_upsert_one_inserts_and_returns_stored_record(store):
    stored = store.upsert_one(make_candidate(email="john@x.com", name="John Doe", location="Pune"))

    assert stored.id is not None
    assert stored.dedupe_key == "email:john@x.com"
    assert stored.profile.full_name == "John Doe"
    assert stored.professional.location == "Pune"
    assert stored.created_at is not None
    assert stored.updated_at is not None


def test_upsert_one_requires_dedupe_key(store):
    with pytest.raises(ValueError):
        store.upsert_one(Candidate())


def test_same_candidate_twice_is_one_record_without_duplicate_sources(store):
    candidate = make_candidate(email="john@x.com", name="John Doe")

    store.upsert_one(candidate)
    stored = store.upsert_one(candidate)

    assert store.count() == 1
    assert [source.key() for source in stored.sources] == [("a.xlsx", "Sheet1", 2)]


def test_same_email_from_two_rows_unions_provenance_and_last_write_wins(store):
    store.upsert_one(make_candidate(email="john@x.com", name="John Doe", row=2, designation="Nurse"))
    stored = store.upsert_one(make_candidate(email="john@x.com", name="Johnny Doe", row=9, file_path="b.xlsx"))

    assert store.count({"email": "john@x.com"}) == 1
    assert stored.profile.full_name == "Johnny Doe"
    # Scalars are overwritten wholesale, including with empty values.
    assert stored.professional.designation is None
    assert [source.key() for source in stored.sources] == [("a.xlsx", "Sheet1", 2), ("b.xlsx", "Sheet1", 9)]


def test_update_unions_contacts_and_keeps_original_dedupe_key(store):
    first = make_candidate(email="john@x.com", phone="+919876543210", name="John Doe")
    store.upsert_one(first)

    # Matched by phone: no email on this row.
    stored = store.upsert_one(make_candidate(phone="+919876543210", name="John Doe", row=3))
    assert stored.dedupe_key == "email:john@x.com"

    second = make_candidate(email="john@x.com", phone="+911111111111", name="John Doe", row=4)
    stored = store.upsert_one(second)

    assert stored.contacts.emails == ["john@x.com"]
    assert stored.contacts.phones == ["+919876543210", "+911111111111"]
    assert store.get_by_phone("+911111111111").id == stored.id
    assert store.count() == 1


def test_upsert_one_recovers_from_concurrent_insert(store, monkeypatch):
    existing = store.upsert_one(make_candidate(email="john@x.com", name="John Doe"))

    # Simulate a writer that checked for a match before the other writer committed.
    monkeypatch.setattr(store, "_match_id", lambda conn, candidate: None)
    recovered = store.upsert_one(make_candidate(email="john@x.com", name="John Doe", row=5))

    assert recovered.id == existing.id
    assert store.count() == 1


def test_upsert_many_reports_conflicts_without_aborting_the_batch(store, database):
    store.upsert_one(make_candidate(email="a@x.com", phone="+910000000001", name="A"))

    result = store.upsert_many(
        [
            # Different email, but the phone already belongs to candidate A.
            make_candidate(email="b@x.com", phone="+910000000001", name="B"),
            make_candidate(email="c@x.com", name="C"),
            make_candidate(email="a@x.com", name="A again", row=7),
            Candidate(),
        ]
    )

    assert result.attempted == 3
    assert result.conflicts == 1
    assert result.upserted == 1
    assert result.modified == 1
    assert result.matched == 1
    assert result.skipped == 1
    assert result.persisted == 2

    assert store.count() == 2
    assert store.get_by_email("b@x.com") is None
    assert store.get_by_email("a@x.com").profile.full_name == "A again"

    with database.engine.connect() as conn:
        phone_rows = conn.execute(
            select(func.count()).select_from(candidate_contacts_table).where(
                candidate_contacts_table.c.value == "+910000000001"
            )
        ).scalar_one()
    assert phone_rows == 1


def test_upsert_many_empty_batch(store):
    result = store.upsert_many([])
    assert result.attempted == 0
    assert result.persisted == 0


def test_lookups(store):
    store.upsert_one(make_candidate(phone="+919999999999", name="Phone Only"))
    store.upsert_one(make_candidate(name="Name Only"))

    assert store.get_by_phone("+919999999999").profile.full_name == "Phone Only"
    assert store.get_by_dedupe_key("name:name only").profile.full_name == "Name Only"
    assert store.get_by_email("nobody@x.com") is None


def test_find_filters_sorts_and_paginates(store):
    store.upsert_one(make_candidate(email="c@x.com", name="Carol", location="Pune", stream="Nursing"))
    store.upsert_one(make_candidate(email="a@x.com", name="Alice", location="Pune", stream="Medicine"))
    store.upsert_one(make_candidate(email="b@x.com", name="Bob", location="Delhi", stream="Nursing"))

    in_pune = store.find({"location": "Pune"}, sort=[("full_name", "asc")])
    assert [c.profile.full_name for c in in_pune] == ["Alice", "Carol"]

    page = store.find(sort=[("full_name", "asc")], skip=1, limit=1)
    assert [c.profile.full_name for c in page] == ["Bob"]

    assert [c.profile.full_name for c in store.find({"email": "b@x.com"})] == ["Bob"]
    assert store.count({"stream": "Nursing"}) == 2
    assert store.count({"location": "Pune", "stream": "Nursing"}) == 1


def test_find_rejects_unknown_filters_and_sort_columns(store):
    with pytest.raises(ValueError):
        store.find({"raw": "x"})
    with pytest.raises(ValueError):
        store.find(sort=[("raw", "asc")])
