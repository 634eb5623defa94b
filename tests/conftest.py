"""
Pytest configuration and fixtures for Candidate Atlas tests.

Every database-backed test runs against a private in-memory SQLite database,
so no PostgreSQL server or network access is needed. Spreadsheets are written
to tmp_path with openpyxl.
"""

import csv
from typing import Any, Dict, List, Optional, Sequence

import pytest
from openpyxl import Workbook

from candidate_atlas.db.session import Database
from candidate_atlas.domain.candidates.repository import BulkUpsertResult, create_candidate_store
from candidate_atlas.integrations.llm import ChatResponse


@pytest.fixture
def database():
    """Fresh in-memory SQLite database, disposed after the test."""
    db = Database.from_url("sqlite://")
    yield db
    db.close()


@pytest.fixture
def store(database):
    candidate_store = create_candidate_store(database)
    candidate_store.ensure_indexes()
    return candidate_store


@pytest.fixture
def write_xlsx(tmp_path):
    """
    Factory writing a workbook from {sheet_name: rows}.

    Sheets keep dict order; rows are lists of cell values.
    """

    def _write(sheets: Dict[str, Sequence[Sequence[Any]]], name: str = "candidates.xlsx") -> str:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for sheet_name, rows in sheets.items():
            worksheet = workbook.create_sheet(title=sheet_name)
            for row in rows:
                worksheet.append(list(row))
        path = tmp_path / name
        workbook.save(path)
        return str(path)

    return _write


@pytest.fixture
def write_csv(tmp_path):
    def _write(rows: Sequence[Sequence[Any]], name: str = "candidates.csv", encoding: str = "utf-8") -> str:
        path = tmp_path / name
        with open(path, "w", encoding=encoding, newline="") as handle:
            csv.writer(handle).writerows(rows)
        return str(path)

    return _write


class FakeChatClient:
    """Chat client returning a canned response (or raising) and recording every call."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def chat(self, system: str, user: str, temperature: float = 0.0) -> ChatResponse:
        self.calls.append({"system": system, "user": user, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return ChatResponse(text=self.text)


class RecordingStore:
    """Candidate store double that keeps every batch it is given."""

    def __init__(self):
        self.batches: List[list] = []
        self.ensure_calls = 0

    def ensure_indexes(self) -> None:
        self.ensure_calls += 1

    def upsert_one(self, candidate):
        self.batches.append([candidate])
        return candidate

    def upsert_many(self, candidates) -> BulkUpsertResult:
        self.batches.append(list(candidates))
        return BulkUpsertResult(attempted=len(candidates), upserted=len(candidates))


@pytest.fixture
def fake_chat_client():
    return FakeChatClient


@pytest.fixture
def recording_store():
    return RecordingStore()
