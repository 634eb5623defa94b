"""
Tests for the single-file candidate import use case.
"""

import json

import pytest

from candidate_atlas.core.exceptions import InputError
from candidate_atlas.domain.imports.importer import CandidateImporter
from candidate_atlas.domain.imports.schema_mapper import create_schema_mapper_factory
from candidate_atlas.integrations.spreadsheets import create_row_stream_reader


def make_importer(store, **kwargs):
    return CandidateImporter(
        reader=create_row_stream_reader(),
        mapper_factory=create_schema_mapper_factory(),
        store=store,
        **kwargs,
    )


def test_ten_thousand_rows_flush_in_ten_batches(write_csv, recording_store):
    rows = [["Name", "Email"]] + [[f"Person {i}", f"person{i}@x.com"] for i in range(10_000)]
    path = write_csv(rows, name="bulk.csv")

    result = make_importer(recording_store).run(path, batch_size=1000)

    assert len(recording_store.batches) == 10
    assert all(len(batch) == 1000 for batch in recording_store.batches)
    assert result.batches == 10
    assert result.processed_rows == 10_000
    assert result.persisted == 10_000


def test_final_partial_batch_is_flushed(write_csv, recording_store):
    rows = [["Name", "Email"]] + [[f"P{i}", f"p{i}@x.com"] for i in range(2_500)]
    path = write_csv(rows)

    make_importer(recording_store).run(path, batch_size=1000)

    assert [len(batch) for batch in recording_store.batches] == [1000, 1000, 500]


def test_messy_workbook_row_is_normalized_and_stored(write_xlsx, store):
    path = write_xlsx(
        {
            "Sheet1": [
                ["Candidate Name", "Email ID", "Mobile no", "Key Skills"],
                ["  John   Doe  ", "JOHN@X.COM", "(+91) 98765-43210", "Python, SQL"],
            ]
        }
    )

    result = make_importer(store).run(path)

    assert result.persisted == 1
    stored = store.get_by_email("john@x.com")
    assert stored.profile.full_name == "John Doe"
    assert stored.contacts.phones == ["+919876543210"]
    assert stored.dedupe_key == "email:john@x.com"
    assert stored.professional.skills == ["python", "sql"]
    assert [source.key() for source in stored.sources] == [(path, "Sheet1", 2)]


def test_same_email_different_names_last_row_wins(write_xlsx, store):
    path = write_xlsx(
        {
            "Sheet1": [
                ["Name", "Email"],
                ["John Doe", "john@x.com"],
                ["Jonathan Doe", "JOHN@x.com"],
            ]
        }
    )

    make_importer(store).run(path)

    assert store.count({"email": "john@x.com"}) == 1
    stored = store.get_by_email("john@x.com")
    assert stored.profile.full_name == "Jonathan Doe"
    assert [source.row_number for source in stored.sources] == [2, 3]


def test_reimport_is_idempotent(write_xlsx, store):
    path = write_xlsx({"Sheet1": [["Name", "Mobile"], ["Asha", "9876543210"], ["Ravi", "9123456789"]]})
    importer = make_importer(store, default_country_code="91")

    importer.run(path)
    importer.run(path)

    assert store.count() == 2
    assert len(store.get_by_phone("+919876543210").sources) == 1


def test_rows_without_identity_are_dropped(write_xlsx, recording_store):
    path = write_xlsx({"Sheet1": [["Name", "Email", "City"], [None, "n/a", "Pune"], ["Ravi", None, "Delhi"]]})

    result = make_importer(recording_store).run(path)

    assert result.processed_rows == 2
    assert result.dropped_rows == 1
    assert result.persisted == 1


def test_header_with_colliding_suffix_keeps_every_column(write_xlsx, store):
    path = write_xlsx({"Sheet1": [["Name__2", "Name", "Name", "Email"], ["x", "John", "y", "john@x.com"]]})

    make_importer(store).run(path)

    stored = store.get_by_email("john@x.com")
    assert stored.dedupe_key == "email:john@x.com"
    assert stored.contacts.emails == ["john@x.com"]


def test_every_sheet_gets_its_own_mapping(write_xlsx, store):
    path = write_xlsx(
        {
            "Doctors": [["Doctor Name", "Email"], ["Dr A", "a@x.com"]],
            "Nurses": [["Email", "Nurse Name"], ["b@x.com", "Nurse B"]],
        }
    )

    result = make_importer(store).run(path)

    assert result.sheets == ["Doctors", "Nurses"]
    assert store.get_by_email("b@x.com").profile.full_name == "Nurse B"
    assert store.get_by_email("a@x.com").sources[0].sheet_name == "Doctors"


def test_file_without_header_is_an_input_error(write_xlsx, recording_store):
    path = write_xlsx({"Sheet1": []})
    with pytest.raises(InputError, match="No header row"):
        make_importer(recording_store).run(path)


def test_invalid_batch_size(write_csv, recording_store):
    path = write_csv([["Name"], ["A"]])
    with pytest.raises(ValueError):
        make_importer(recording_store).run(path, batch_size=0)


class TestAiAssist:
    HEADER = ["Naam", "Correo", "Ciudad"]

    def _workbook(self, write_xlsx, rows=7):
        data = [self.HEADER] + [[f"Persona {i}", f"p{i}@x.com", "Pune"] for i in range(rows)]
        return write_xlsx({"Hoja": data})

    def _answer(self):
        return json.dumps(
            {
                "version": "1.0",
                "mappings": [
                    {"sourceHeader": "Naam", "targetField": "full_name", "confidence": 0.9, "isPrimary": True},
                    {"sourceHeader": "Correo", "targetField": "email", "confidence": 0.95, "isPrimary": True},
                    {"sourceHeader": "Ciudad", "targetField": "location", "confidence": 0.8, "isPrimary": True},
                ],
            }
        )

    def test_auto_mode_consults_model_when_no_identity_column_found(self, write_xlsx, store, fake_chat_client):
        client = fake_chat_client(text=self._answer())
        path = self._workbook(write_xlsx)

        result = make_importer(store, chat_client=client, ai_mode="auto").run(path)

        assert len(client.calls) == 1
        sent = json.loads(client.calls[0]["user"])
        assert sent["input"]["headers"] == self.HEADER
        assert len(sent["input"]["sampleRows"]) == 5
        # The buffered sample rows are imported too.
        assert result.persisted == 7
        assert result.processed_rows == 7
        assert store.get_by_email("p0@x.com").profile.full_name == "Persona 0"
        assert store.get_by_email("p6@x.com").professional.location == "Pune"

    def test_short_sheet_is_resolved_at_end_of_stream(self, write_xlsx, store, fake_chat_client):
        client = fake_chat_client(text=self._answer())
        path = self._workbook(write_xlsx, rows=2)

        result = make_importer(store, chat_client=client, ai_mode="auto").run(path)

        assert len(client.calls) == 1
        assert result.persisted == 2

    def test_auto_mode_skips_model_when_heuristics_suffice(self, write_xlsx, recording_store, fake_chat_client):
        client = fake_chat_client(text=self._answer())
        path = write_xlsx({"Sheet1": [["Name", "Email"], ["A", "a@x.com"]]})

        make_importer(recording_store, chat_client=client, ai_mode="auto").run(path)

        assert client.calls == []

    def test_always_mode_consults_model_for_every_sheet(self, write_xlsx, recording_store, fake_chat_client):
        client = fake_chat_client(text="{}")
        path = write_xlsx({"One": [["Name", "Email"], ["A", "a@x.com"]], "Two": [["Name"], ["B"]]})

        result = make_importer(recording_store, chat_client=client, ai_mode="always").run(path)

        assert len(client.calls) == 2
        # Invalid answers fall back to the heuristic mapping.
        assert result.persisted == 2

    def test_failed_request_falls_back_to_heuristics(self, write_xlsx, recording_store, fake_chat_client):
        client = fake_chat_client(error=ConnectionError("offline"))
        path = self._workbook(write_xlsx)

        result = make_importer(recording_store, chat_client=client, ai_mode="auto").run(path)

        assert len(client.calls) == 1
        assert result.processed_rows == 7
        assert result.dropped_rows == 7
        assert result.persisted == 0

    def test_off_mode_never_calls_model(self, write_xlsx, recording_store, fake_chat_client):
        client = fake_chat_client(text=self._answer())
        make_importer(recording_store, chat_client=client, ai_mode="off").run(self._workbook(write_xlsx))
        assert client.calls == []

    def test_unknown_mode_rejected(self, recording_store):
        with pytest.raises(ValueError):
            make_importer(recording_store, ai_mode="sometimes")
