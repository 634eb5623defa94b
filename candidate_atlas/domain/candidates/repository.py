"""
Idempotent candidate persistence.

Each upsert picks its match by email, then phone, then dedupe key; overwrites
profile, professional and meta fields; and unions contact points and source
provenance. Store-wide uniqueness of emails, phones and dedupe keys is
enforced by the database, so concurrent writers that both believe they are
creating a new identity end up with one record: the loser's unique violation
is recovered by re-reading the winner.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
import logging

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from candidate_atlas.core.exceptions import PersistenceError
from candidate_atlas.db.models import (
    CANDIDATE_TABLES,
    CONTACT_KIND_EMAIL,
    CONTACT_KIND_PHONE,
    candidate_contacts_table,
    candidates_table,
    metadata,
)
from candidate_atlas.db.session import Database
from .models import (
    Candidate,
    CandidateContacts,
    CandidateMeta,
    CandidateProfessional,
    CandidateProfile,
    SourceRef,
    merge_sources,
)

logger = logging.getLogger(__name__)

OUTCOME_INSERTED = "inserted"
OUTCOME_UPDATED = "updated"

_PROFILE_COLUMNS = ("full_name", "first_name", "last_name", "description")
_PROFESSIONAL_COLUMNS = (
    "designation",
    "current_company",
    "experience_years",
    "experience_text",
    "specialization",
    "qualification",
    "stream",
    "proficiency",
    "skills",
    "location",
    "preferred_location",
)
FILTERABLE_COLUMNS = frozenset(
    {
        "dedupe_key",
        "designation",
        "current_company",
        "location",
        "preferred_location",
        "specialization",
        "experience_years",
        "stream",
        "proficiency",
    }
)
SORTABLE_COLUMNS = FILTERABLE_COLUMNS | {"id", "full_name", "created_at", "updated_at"}


@dataclass
class BulkUpsertResult:
    """Aggregate outcome of one upsert_many call. Conflicts are reported, not raised."""
    attempted: int = 0
    upserted: int = 0
    modified: int = 0
    matched: int = 0
    conflicts: int = 0
    skipped: int = 0

    @property
    def persisted(self) -> int:
        return self.upserted + self.modified


class CandidateStore(Protocol):
    def ensure_indexes(self) -> None: ...

    def upsert_one(self, candidate: Candidate) -> Candidate: ...

    def upsert_many(self, candidates: Sequence[Candidate]) -> BulkUpsertResult: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _union(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for value in list(existing or []) + list(incoming or []):
        if value and value not in merged:
            merged.append(value)
    return merged


def _candidate_values(candidate: Candidate) -> Dict[str, Any]:
    """Columns overwritten on every write (last write wins)."""
    values: Dict[str, Any] = {}
    for column in _PROFILE_COLUMNS:
        values[column] = getattr(candidate.profile, column)
    for column in _PROFESSIONAL_COLUMNS:
        values[column] = getattr(candidate.professional, column)
    values["skills"] = list(candidate.professional.skills)
    values["raw"] = candidate.meta.raw
    return values


def _row_to_candidate(row: Any) -> Candidate:
    data = row._mapping
    return Candidate(
        id=data["id"],
        dedupe_key=data["dedupe_key"],
        profile=CandidateProfile(**{column: data[column] for column in _PROFILE_COLUMNS}),
        contacts=CandidateContacts(emails=list(data["emails"] or []), phones=list(data["phones"] or [])),
        professional=CandidateProfessional(
            **{
                column: (list(data[column] or []) if column == "skills" else data[column])
                for column in _PROFESSIONAL_COLUMNS
            }
        ),
        meta=CandidateMeta(raw=data["raw"]),
        sources=[SourceRef(**source) for source in (data["sources"] or [])],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )


class SqlCandidateStore:
    """CandidateStore backed by a SQLAlchemy engine (PostgreSQL or SQLite)."""

    def __init__(self, database: Database):
        self.database = database
        self.engine = database.engine

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------
    def ensure_indexes(self) -> None:
        """Create candidate tables, the unique constraints and the secondary indexes. Idempotent."""
        try:
            metadata.create_all(self.engine, tables=CANDIDATE_TABLES, checkfirst=True)
            # create_all skips indexes of tables that already existed.
            for table in CANDIDATE_TABLES:
                for index in table.indexes:
                    index.create(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create candidate indexes: {exc}") from exc
        logger.info("candidates and candidate_contacts tables created/verified successfully")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def upsert_one(self, candidate: Candidate) -> Candidate:
        """
        Insert or merge one candidate and return the stored record.

        A unique violation caused by a concurrent writer is not an error: the
        record that now owns the identity is re-read and returned.
        """
        if not candidate.dedupe_key:
            raise ValueError("candidate.dedupe_key is required")

        try:
            with self.engine.begin() as conn:
                candidate_id, _ = self._upsert(conn, candidate)
                return self._load(conn, candidate_id)
        except IntegrityError as exc:
            logger.info(
                f"Unique conflict while upserting {candidate.dedupe_key}; re-reading the existing candidate"
            )
            existing = self._find_existing(candidate)
            if existing is not None:
                return existing
            raise PersistenceError(f"Upsert conflict for {candidate.dedupe_key} could not be reconciled") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to upsert candidate {candidate.dedupe_key}: {exc}") from exc

    def upsert_many(self, candidates: Sequence[Candidate]) -> BulkUpsertResult:
        """
        Upsert a batch without letting one conflicting element abort the rest.

        Every candidate runs in its own savepoint inside a single transaction.
        Candidates without a dedupe key are skipped.
        """
        result = BulkUpsertResult()
        if not candidates:
            return result

        try:
            with self.engine.begin() as conn:
                for candidate in candidates:
                    if not candidate.dedupe_key:
                        result.skipped += 1
                        continue

                    result.attempted += 1
                    try:
                        with conn.begin_nested():
                            _, outcome = self._upsert(conn, candidate)
                    except IntegrityError as exc:
                        result.conflicts += 1
                        logger.warning(
                            f"Skipping conflicting candidate {candidate.dedupe_key}: {exc.orig}"
                        )
                        continue

                    if outcome == OUTCOME_INSERTED:
                        result.upserted += 1
                    else:
                        result.matched += 1
                        result.modified += 1
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Bulk upsert of {len(candidates)} candidates failed: {exc}") from exc

        logger.info(
            f"Bulk upsert completed: attempted={result.attempted} upserted={result.upserted} "
            f"modified={result.modified} conflicts={result.conflicts}"
        )
        return result

    def _upsert(self, conn: Connection, candidate: Candidate) -> Tuple[int, str]:
        now = _utcnow()
        candidate_id = self._match_id(conn, candidate)
        if candidate_id is None:
            return self._insert(conn, candidate, now), OUTCOME_INSERTED
        self._merge(conn, candidate_id, candidate, now)
        return candidate_id, OUTCOME_UPDATED

    def _insert(self, conn: Connection, candidate: Candidate, now: datetime) -> int:
        emails = _union([], candidate.contacts.emails)
        phones = _union([], candidate.contacts.phones)
        values = _candidate_values(candidate)
        values.update(
            dedupe_key=candidate.dedupe_key,
            emails=emails,
            phones=phones,
            sources=[source.model_dump() for source in merge_sources([], candidate.sources)],
            created_at=now,
            updated_at=now,
        )
        inserted = conn.execute(insert(candidates_table).values(**values))
        candidate_id = inserted.inserted_primary_key[0]
        self._add_contacts(conn, candidate_id, CONTACT_KIND_EMAIL, emails)
        self._add_contacts(conn, candidate_id, CONTACT_KIND_PHONE, phones)
        return candidate_id

    def _merge(self, conn: Connection, candidate_id: int, candidate: Candidate, now: datetime) -> None:
        current = conn.execute(
            select(candidates_table.c.emails, candidates_table.c.phones, candidates_table.c.sources)
            .where(candidates_table.c.id == candidate_id)
            .with_for_update()
        ).one()

        current_emails = list(current.emails or [])
        current_phones = list(current.phones or [])
        sources = merge_sources(
            [SourceRef(**source) for source in (current.sources or [])],
            candidate.sources,
        )

        values = _candidate_values(candidate)
        values.update(
            emails=_union(current_emails, candidate.contacts.emails),
            phones=_union(current_phones, candidate.contacts.phones),
            sources=[source.model_dump() for source in sources],
            updated_at=now,
        )
        conn.execute(update(candidates_table).where(candidates_table.c.id == candidate_id).values(**values))

        new_emails = [email for email in values["emails"] if email not in current_emails]
        new_phones = [phone for phone in values["phones"] if phone not in current_phones]
        self._add_contacts(conn, candidate_id, CONTACT_KIND_EMAIL, new_emails)
        self._add_contacts(conn, candidate_id, CONTACT_KIND_PHONE, new_phones)

    @staticmethod
    def _add_contacts(conn: Connection, candidate_id: int, kind: str, values: Sequence[str]) -> None:
        if not values:
            return
        conn.execute(
            insert(candidate_contacts_table),
            [{"candidate_id": candidate_id, "kind": kind, "value": value} for value in values],
        )

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------
    @staticmethod
    def _id_by_contact(conn: Connection, kind: str, value: str) -> Optional[int]:
        return conn.execute(
            select(candidate_contacts_table.c.candidate_id).where(
                candidate_contacts_table.c.kind == kind,
                candidate_contacts_table.c.value == value,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _id_by_dedupe_key(conn: Connection, dedupe_key: str) -> Optional[int]:
        return conn.execute(
            select(candidates_table.c.id).where(candidates_table.c.dedupe_key == dedupe_key)
        ).scalar_one_or_none()

    def _match_id(self, conn: Connection, candidate: Candidate) -> Optional[int]:
        """Resolve the match filter: first email if present, else first phone, else dedupe key."""
        if candidate.primary_email:
            return self._id_by_contact(conn, CONTACT_KIND_EMAIL, candidate.primary_email)
        if candidate.primary_phone:
            return self._id_by_contact(conn, CONTACT_KIND_PHONE, candidate.primary_phone)
        return self._id_by_dedupe_key(conn, candidate.dedupe_key)

    def _find_existing(self, candidate: Candidate) -> Optional[Candidate]:
        """Conflict recovery: try email, then phone, then dedupe key."""
        with self.engine.connect() as conn:
            candidate_id = None
            if candidate.primary_email:
                candidate_id = self._id_by_contact(conn, CONTACT_KIND_EMAIL, candidate.primary_email)
            if candidate_id is None and candidate.primary_phone:
                candidate_id = self._id_by_contact(conn, CONTACT_KIND_PHONE, candidate.primary_phone)
            if candidate_id is None and candidate.dedupe_key:
                candidate_id = self._id_by_dedupe_key(conn, candidate.dedupe_key)
            if candidate_id is None:
                return None
            return self._load(conn, candidate_id)

    @staticmethod
    def _load(conn: Connection, candidate_id: int) -> Candidate:
        row = conn.execute(select(candidates_table).where(candidates_table.c.id == candidate_id)).one()
        return _row_to_candidate(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_by_email(self, email: str) -> Optional[Candidate]:
        return self._get_by_contact(CONTACT_KIND_EMAIL, email)

    def get_by_phone(self, phone: str) -> Optional[Candidate]:
        return self._get_by_contact(CONTACT_KIND_PHONE, phone)

    def get_by_dedupe_key(self, dedupe_key: str) -> Optional[Candidate]:
        with self.engine.connect() as conn:
            candidate_id = self._id_by_dedupe_key(conn, dedupe_key)
            return self._load(conn, candidate_id) if candidate_id is not None else None

    def _get_by_contact(self, kind: str, value: str) -> Optional[Candidate]:
        with self.engine.connect() as conn:
            candidate_id = self._id_by_contact(conn, kind, value)
            return self._load(conn, candidate_id) if candidate_id is not None else None

    def _where(self, filters: Optional[Dict[str, Any]]) -> List[Any]:
        clauses = []
        for key, value in (filters or {}).items():
            if key in ("email", "phone"):
                kind = CONTACT_KIND_EMAIL if key == "email" else CONTACT_KIND_PHONE
                clauses.append(
                    candidates_table.c.id.in_(
                        select(candidate_contacts_table.c.candidate_id).where(
                            candidate_contacts_table.c.kind == kind,
                            candidate_contacts_table.c.value == value,
                        )
                    )
                )
            elif key in FILTERABLE_COLUMNS:
                clauses.append(candidates_table.c[key] == value)
            else:
                raise ValueError(f"Unsupported candidate filter: {key}")
        return clauses

    def find(
        self,
        filters: Optional[Dict[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, str]]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Candidate]:
        """
        Filtered, sorted, paginated candidate listing.

        Args:
            filters: Equality filters on email, phone or an indexed column
            sort: (column, "asc"|"desc") pairs; defaults to most recently updated first
            skip: Number of rows to skip
            limit: Maximum number of rows to return
        """
        query = select(candidates_table).where(*self._where(filters))

        for column, direction in (sort or [("updated_at", "desc")]):
            if column not in SORTABLE_COLUMNS:
                raise ValueError(f"Unsupported sort column: {column}")
            expression = candidates_table.c[column]
            query = query.order_by(expression.desc() if direction.lower() == "desc" else expression.asc())
        query = query.order_by(candidates_table.c.id.asc())

        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)

        with self.engine.connect() as conn:
            return [_row_to_candidate(row) for row in conn.execute(query)]

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        query = select(func.count()).select_from(candidates_table).where(*self._where(filters))
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one())


def create_candidate_store(database: Database) -> SqlCandidateStore:
    return SqlCandidateStore(database)
