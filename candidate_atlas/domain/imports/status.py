"""
Per-file ingestion status tracking.

A file moves pending -> processing -> processed, or processing -> failed.
Only "processed" is skipped by a resumed run; a file left in "processing" by a
crash or marked "failed" is simply picked up again, which is safe because
candidate upserts are idempotent.

Two interchangeable backends:
- LocalJsonStatusTracker: one JSON document on local disk, replaced atomically
- DatabaseStatusTracker: the ingestion_files table
"""
from __future__ import annotations

import json
import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from candidate_atlas.core.config import Settings
from candidate_atlas.core.exceptions import ConfigurationError, StatusTrackerError
from candidate_atlas.db.models import STATUS_TABLES, ingestion_files_table, metadata
from candidate_atlas.db.session import Database

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

STATUS_FILE_VERSION = 1

_RECORD_FIELDS = (
    "file_path",
    "status",
    "attempts",
    "started_at",
    "finished_at",
    "processed_rows",
    "persisted",
    "error_message",
    "error_stack",
    "created_at",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_details(error: BaseException | str) -> tuple[str, Optional[str]]:
    """Message and formatted stack of an exception (or a plain message)."""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return message, stack or None
    return str(error), None


class IngestionStatusTracker(Protocol):
    def ensure_ready(self) -> None: ...

    def seed_pending(self, file_paths: Iterable[str]) -> None: ...

    def get_status(self, file_path: str) -> Optional[str]: ...

    def get_record(self, file_path: str) -> Optional[Dict[str, Any]]: ...

    def mark_processing(self, file_path: str, started_at: Optional[datetime] = None) -> None: ...

    def mark_processed(
        self,
        file_path: str,
        processed_rows: Optional[int] = None,
        persisted: Optional[int] = None,
        finished_at: Optional[datetime] = None,
    ) -> None: ...

    def mark_failed(
        self,
        file_path: str,
        error: BaseException | str,
        finished_at: Optional[datetime] = None,
    ) -> None: ...


# ----------------------------------------------------------------------
# Local JSON file
# ----------------------------------------------------------------------
class LocalJsonStatusTracker:
    """
    Status records kept in a single JSON file.

    Every write goes to "<path>.tmp" and is then renamed over the target, so a
    crash mid-write leaves either the previous or the new document, never a
    truncated one.
    """

    def __init__(self, status_file_path: str | os.PathLike):
        self.status_file_path = Path(status_file_path)

    @property
    def _tmp_path(self) -> Path:
        return self.status_file_path.with_name(self.status_file_path.name + ".tmp")

    def ensure_ready(self) -> None:
        try:
            self.status_file_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.status_file_path.exists():
                self._write({"version": STATUS_FILE_VERSION, "files": {}})
        except OSError as exc:
            raise StatusTrackerError(f"Cannot prepare status file {self.status_file_path}: {exc}") from exc
        logger.info(f"Using local status file {self.status_file_path}")

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self.status_file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {"version": STATUS_FILE_VERSION, "files": {}}
        except OSError as exc:
            raise StatusTrackerError(f"Cannot read status file {self.status_file_path}: {exc}") from exc

        try:
            data = json.loads(raw or "{}")
        except ValueError as exc:
            raise StatusTrackerError(f"Status file {self.status_file_path} is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise StatusTrackerError(f"Status file {self.status_file_path} must contain a JSON object")
        data.setdefault("version", STATUS_FILE_VERSION)
        if not isinstance(data.get("files"), dict):
            data["files"] = {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self._tmp_path
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, default=str)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.status_file_path)
        except OSError as exc:
            raise StatusTrackerError(f"Cannot write status file {self.status_file_path}: {exc}") from exc

    @staticmethod
    def _new_record(file_path: str, now: str) -> Dict[str, Any]:
        return {"file_path": file_path, "status": STATUS_PENDING, "attempts": 0, "created_at": now, "updated_at": now}

    def seed_pending(self, file_paths: Iterable[str]) -> None:
        paths = list(file_paths or [])
        if not paths:
            return
        data = self._read()
        now = _utcnow().isoformat()
        for file_path in paths:
            if file_path not in data["files"]:
                data["files"][file_path] = self._new_record(file_path, now)
        self._write(data)

    def get_status(self, file_path: str) -> Optional[str]:
        record = self._read()["files"].get(file_path)
        return record.get("status") if record else None

    def get_record(self, file_path: str) -> Optional[Dict[str, Any]]:
        record = self._read()["files"].get(file_path)
        return dict(record) if record else None

    def _update(self, file_path: str, changes: Dict[str, Any], increment_attempts: bool = False) -> None:
        data = self._read()
        now = _utcnow().isoformat()
        record = dict(data["files"].get(file_path) or self._new_record(file_path, now))
        record.update(changes)
        if increment_attempts:
            record["attempts"] = int(record.get("attempts") or 0) + 1
        record["updated_at"] = now
        data["files"][file_path] = record
        self._write(data)

    def mark_processing(self, file_path: str, started_at: Optional[datetime] = None) -> None:
        self._update(
            file_path,
            {"status": STATUS_PROCESSING, "started_at": (started_at or _utcnow()).isoformat()},
            increment_attempts=True,
        )

    def mark_processed(
        self,
        file_path: str,
        processed_rows: Optional[int] = None,
        persisted: Optional[int] = None,
        finished_at: Optional[datetime] = None,
    ) -> None:
        self._update(
            file_path,
            {
                "status": STATUS_PROCESSED,
                "processed_rows": processed_rows,
                "persisted": persisted,
                "finished_at": (finished_at or _utcnow()).isoformat(),
                "error_message": None,
                "error_stack": None,
            },
        )

    def mark_failed(
        self,
        file_path: str,
        error: BaseException | str,
        finished_at: Optional[datetime] = None,
    ) -> None:
        message, stack = _error_details(error)
        self._update(
            file_path,
            {
                "status": STATUS_FAILED,
                "finished_at": (finished_at or _utcnow()).isoformat(),
                "error_message": message,
                "error_stack": stack,
            },
        )


# ----------------------------------------------------------------------
# Database table
# ----------------------------------------------------------------------
class DatabaseStatusTracker:
    """Status records kept in the ingestion_files table."""

    def __init__(self, database: Database):
        self.database = database
        self.engine = database.engine

    def ensure_ready(self) -> None:
        try:
            metadata.create_all(self.engine, tables=STATUS_TABLES, checkfirst=True)
            for table in STATUS_TABLES:
                for index in table.indexes:
                    index.create(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise StatusTrackerError(f"Failed to create ingestion_files table: {exc}") from exc
        logger.info("ingestion_files table created/verified successfully")

    def seed_pending(self, file_paths: Iterable[str]) -> None:
        paths = list(file_paths or [])
        if not paths:
            return
        try:
            with self.engine.begin() as conn:
                for file_path in paths:
                    self._insert_if_absent(conn, file_path)
        except SQLAlchemyError as exc:
            raise StatusTrackerError(f"Failed to seed ingestion status rows: {exc}") from exc

    @staticmethod
    def _insert_if_absent(conn, file_path: str) -> None:
        table = ingestion_files_table
        exists = conn.execute(select(table.c.id).where(table.c.file_path == file_path)).first()
        if exists:
            return
        now = _utcnow()
        try:
            with conn.begin_nested():
                conn.execute(
                    insert(table).values(
                        file_path=file_path,
                        status=STATUS_PENDING,
                        attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            # Seeded concurrently by another run.
            logger.debug(f"Status row for {file_path} already exists")

    def get_status(self, file_path: str) -> Optional[str]:
        record = self.get_record(file_path)
        return record["status"] if record else None

    def get_record(self, file_path: str) -> Optional[Dict[str, Any]]:
        table = ingestion_files_table
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(table).where(table.c.file_path == file_path)).first()
        except SQLAlchemyError as exc:
            raise StatusTrackerError(f"Failed to read ingestion status for {file_path}: {exc}") from exc
        if row is None:
            return None
        return {name: row._mapping[name] for name in _RECORD_FIELDS}

    def _update(self, file_path: str, values: Dict[str, Any], increment_attempts: bool = False) -> None:
        table = ingestion_files_table
        values = dict(values, updated_at=_utcnow())
        if increment_attempts:
            values["attempts"] = table.c.attempts + 1
        try:
            with self.engine.begin() as conn:
                self._insert_if_absent(conn, file_path)
                conn.execute(update(table).where(table.c.file_path == file_path).values(**values))
        except SQLAlchemyError as exc:
            raise StatusTrackerError(f"Failed to update ingestion status for {file_path}: {exc}") from exc

    def mark_processing(self, file_path: str, started_at: Optional[datetime] = None) -> None:
        self._update(
            file_path,
            {"status": STATUS_PROCESSING, "started_at": started_at or _utcnow()},
            increment_attempts=True,
        )

    def mark_processed(
        self,
        file_path: str,
        processed_rows: Optional[int] = None,
        persisted: Optional[int] = None,
        finished_at: Optional[datetime] = None,
    ) -> None:
        self._update(
            file_path,
            {
                "status": STATUS_PROCESSED,
                "processed_rows": processed_rows,
                "persisted": persisted,
                "finished_at": finished_at or _utcnow(),
                "error_message": None,
                "error_stack": None,
            },
        )

    def mark_failed(
        self,
        file_path: str,
        error: BaseException | str,
        finished_at: Optional[datetime] = None,
    ) -> None:
        message, stack = _error_details(error)
        self._update(
            file_path,
            {
                "status": STATUS_FAILED,
                "finished_at": finished_at or _utcnow(),
                "error_message": message,
                "error_stack": stack,
            },
        )


def create_status_tracker(
    kind: str,
    database: Optional[Database] = None,
    status_file: Optional[str] = None,
) -> Optional[IngestionStatusTracker]:
    """
    Build the tracker selected by kind ("none", "local" or "database").

    Returns None for "none".
    """
    kind = (kind or "none").lower()
    if kind == "none":
        return None
    if kind == "local":
        return LocalJsonStatusTracker(status_file or os.path.join(os.getcwd(), ".ingestion-status.json"))
    if kind in ("database", "db"):
        if database is None:
            raise ConfigurationError("The database status store requires a database connection")
        return DatabaseStatusTracker(database)
    raise ConfigurationError(f"Unsupported status store: {kind}")


def create_status_tracker_from_settings(settings: Settings, database: Optional[Database] = None):
    return create_status_tracker(settings.status_store, database=database, status_file=settings.status_file)
