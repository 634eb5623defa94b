"""
Table definitions for candidates, their contact points and per-file ingestion status.

Contact values live in their own table so that a unique constraint on
(kind, value) gives store-wide uniqueness of every email and phone. A contact
row only exists for a non-empty value, which makes the constraint partial in
the same way a sparse multikey index would be.
"""
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

CONTACT_KIND_EMAIL = "email"
CONTACT_KIND_PHONE = "phone"

candidates_table = Table(
    "candidates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("dedupe_key", String(512), nullable=True),
    # profile
    Column("full_name", String(512)),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("description", Text),
    # contacts (denormalized copy; candidate_contacts is authoritative for uniqueness)
    Column("emails", JSON, nullable=False, default=list),
    Column("phones", JSON, nullable=False, default=list),
    # professional
    Column("designation", String(255)),
    Column("current_company", String(255)),
    Column("experience_years", Float),
    Column("experience_text", Text),
    Column("specialization", String(255)),
    Column("qualification", String(255)),
    Column("stream", String(255)),
    Column("proficiency", String(255)),
    Column("skills", JSON, nullable=False, default=list),
    Column("location", String(255)),
    Column("preferred_location", String(255)),
    # audit
    Column("raw", JSON),
    Column("sources", JSON, nullable=False, default=list),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index(
    "uq_candidates_dedupe_key",
    candidates_table.c.dedupe_key,
    unique=True,
    postgresql_where=candidates_table.c.dedupe_key.isnot(None),
    sqlite_where=candidates_table.c.dedupe_key.isnot(None),
)

# Secondary indexes for search/filter.
for _column_name in (
    "designation",
    "current_company",
    "location",
    "preferred_location",
    "specialization",
    "experience_years",
    "stream",
    "proficiency",
    "updated_at",
):
    Index(f"idx_candidates_{_column_name}", candidates_table.c[_column_name])

candidate_contacts_table = Table(
    "candidate_contacts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "candidate_id",
        Integer,
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("kind", String(16), nullable=False),
    Column("value", String(320), nullable=False),
    UniqueConstraint("kind", "value", name="uq_candidate_contacts_kind_value"),
)

Index("idx_candidate_contacts_candidate", candidate_contacts_table.c.candidate_id)

ingestion_files_table = Table(
    "ingestion_files",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_path", String(2048), nullable=False),
    Column("status", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("started_at", DateTime(timezone=True)),
    Column("finished_at", DateTime(timezone=True)),
    Column("processed_rows", Integer),
    Column("persisted", Integer),
    Column("error_message", Text),
    Column("error_stack", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("file_path", name="uq_ingestion_files_file_path"),
)

Index(
    "idx_ingestion_files_status_updated",
    ingestion_files_table.c.status,
    ingestion_files_table.c.updated_at,
)

CANDIDATE_TABLES = [candidates_table, candidate_contacts_table]
STATUS_TABLES = [ingestion_files_table]
