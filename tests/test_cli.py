"""
Tests for the command line entry point.
"""

import json

import pytest
from rich.console import Console

from candidate_atlas import cli
from candidate_atlas.context import IngestionContext
from candidate_atlas.core.config import Settings

ANSWER = json.dumps(
    {
        "version": "1.0",
        "mappings": [
            {"sourceHeader": "Naam", "targetField": "full_name", "confidence": 0.9, "isPrimary": True},
        ],
    }
)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    # Wide enough that table cells are never truncated; logging stays as pytest set it up.
    monkeypatch.setattr(cli, "console", Console(width=240))
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        status_store="none",
        status_file=str(tmp_path / "status.json"),
        anthropic_api_key="",
    )


def test_ingest_reports_summary(write_xlsx, settings, tmp_path, capsys):
    path = write_xlsx({"Sheet1": [["Name", "Email"], ["Jane Roe", "jane@x.com"]]})

    exit_code = cli.main(["ingest", "--file", path, "--status-store", "local"], settings=settings)

    assert exit_code == 0
    assert "1 processed, 0 failed" in capsys.readouterr().out
    status = json.loads((tmp_path / "status.json").read_text(encoding="utf-8"))
    assert status["files"][path]["status"] == "processed"


def test_ingest_failure_sets_exit_code(tmp_path, settings, capsys):
    missing = str(tmp_path / "missing.xlsx")

    exit_code = cli.main(["ingest", "--file", missing, "--max-retries", "0"], settings=settings)

    assert exit_code == 1
    assert "0 processed, 1 failed" in capsys.readouterr().out


def test_ingest_without_files(settings):
    assert cli.main(["ingest"], settings=settings) == 1


def test_preview_prints_first_rows(write_csv, settings, capsys):
    path = write_csv([["Name", "City"], ["Asha", "Pune"], ["Ravi", "Delhi"], ["Meera", "Goa"]])

    exit_code = cli.main(["preview", "--file", path, "--rows", "2"], settings=settings)

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Asha" in out
    assert "Ravi" in out
    assert "Meera" not in out


def test_map_headers_prints_outcome(write_csv, settings, monkeypatch, capsys, fake_chat_client):
    client = fake_chat_client(text=ANSWER)
    monkeypatch.setattr(IngestionContext, "require_chat_client", lambda self: client)
    path = write_csv([["Naam", "Shehar"], ["Asha", "Pune"]])

    exit_code = cli.main(["map-headers", "--file", path], settings=settings)

    assert exit_code == 0
    assert '"full_name": "Naam"' in capsys.readouterr().out
    assert len(client.calls) == 1


def test_map_headers_error_exit_code(write_csv, settings, monkeypatch, capsys, fake_chat_client):
    client = fake_chat_client(text="no idea")
    monkeypatch.setattr(IngestionContext, "require_chat_client", lambda self: client)
    path = write_csv([["Naam"], ["Asha"]])

    assert cli.main(["map-headers", "--file", path], settings=settings) == 2
    assert "INVALID_JSON" in capsys.readouterr().out


def test_map_headers_without_api_key_is_a_configuration_error(write_csv, settings):
    path = write_csv([["Naam"], ["Asha"]])
    assert cli.main(["map-headers", "--file", path], settings=settings) == 1


def test_status_lists_tracked_files(write_xlsx, settings, capsys):
    path = write_xlsx({"Sheet1": [["Name"], ["Asha"]]})
    cli.main(["ingest", "--file", path, "--status-store", "local"], settings=settings)
    capsys.readouterr()

    exit_code = cli.main(["status", "--status-store", "local", path, "other.xlsx"], settings=settings)

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "processed" in out
    assert "untracked" in out


def test_command_line_flags_override_settings(settings):
    args = cli.build_parser().parse_args(
        ["ingest", "--file", "a.xlsx", "--batch-size", "50", "--no-resume", "--fail-fast", "--ai-mapping", "auto"]
    )

    merged = cli._settings_for(args, settings)

    assert merged.batch_size == 50
    assert merged.resume is False
    assert merged.fail_fast is True
    assert merged.ai_header_mapping == "auto"
    assert merged.status_store == settings.status_store


@pytest.mark.parametrize(
    "flags, field",
    [
        (["--batch-size", "0"], "batch_size"),
        (["--max-retries", "-1"], "max_retries"),
        (["--retry-base-ms", "0"], "retry_base_ms"),
    ],
)
def test_out_of_range_flags_are_rejected_before_any_file_is_read(write_csv, settings, tmp_path, capsys, flags, field):
    path = write_csv([["Name", "Email"], ["Asha", "asha@x.com"]])

    exit_code = cli.main(["ingest", "--file", path, "--status-store", "local", *flags], settings=settings)

    captured = capsys.readouterr()
    assert exit_code == 1
    assert field in captured.err
    assert "processed" not in captured.out
    assert not (tmp_path / "status.json").exists()
