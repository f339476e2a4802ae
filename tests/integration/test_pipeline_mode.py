"""Integration tests for the pipeline mode against PostgreSQL (mocked blob HTTP)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import requests
from click.testing import CliRunner

from crew_migrate.blob_storage import BlobStorageConfig, RetryPolicy
from crew_migrate.db_update import connect_db
from crew_migrate.migrate_freelancers import main
from crew_migrate.pipeline import MediaLayout, run_pipeline
from crew_migrate.progress import ProgressLedger
from crew_migrate.records import BlobAsset, MatchedRecord
from crew_migrate.shared import ErrorLog, RunCounters

BASE_URL = "https://acct.blob.core.windows.net/freelancers"
SAS = "sv=2024&sig=abc"


def _ok_session() -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = 201
    resp.text = ""
    session = MagicMock()
    session.request.return_value = resp
    return session


def _jane() -> MatchedRecord:
    return MatchedRecord(
        freelancer_id=77, name="Jane Doe", slug="jane-doe",
        photo=BlobAsset("photo", "P000077", ".jpg", "https://legacy.example/jane.jpg"),
        links={"website": "https://jane.example", "imdb": "https://imdb.example/jane"},
        needs_photo_update=True,
        needs_links_update=True,
    )


def _media(tmp_path) -> MediaLayout:
    photos = tmp_path / "downloaded_media_final" / "photos"
    photos.mkdir(parents=True)
    (photos / "jane-doe.jpg").write_bytes(b"\xff\xd8jane")
    return MediaLayout(tmp_path / "downloaded_media_final", tmp_path / "azure_ready_media")


def _matched_file(tmp_path, records: list[MatchedRecord]):
    path = tmp_path / "freelancers_matched_clean.json"
    path.write_text(json.dumps({"freelancers": [r.to_dict() for r in records]}))
    return path


class TestRunPipeline:
    def test_jane_doe_scenario(self, db_conn, seed, tmp_path):
        _, dsn = db_conn
        seed.freelancer(77, "jane-doe")
        seed.link(77, "Website", "https://old.example")
        layout = _media(tmp_path)
        session = _ok_session()
        counters = RunCounters()
        errors = ErrorLog(tmp_path / "update_errors.json")

        conn = connect_db(dsn)
        try:
            outcome = run_pipeline(
                conn, [_jane()], layout, ProgressLedger(tmp_path / "progress.json"),
                counters, errors, session=session,
                blob_config=BlobStorageConfig(BASE_URL, SAS),
                policy=RetryPolicy(sleeper=lambda _: None),
            )
        finally:
            conn.close()

        assert (layout.output_dir / "photos" / "P000077.jpg").read_bytes() == b"\xff\xd8jane"
        _, url = session.request.call_args.args
        assert url == f"{BASE_URL}/P000077.jpg?{SAS}"
        row = seed.profile(77)
        assert row["photoblobid"] == "P000077"
        assert row["photostatusid"] == 2
        assert seed.links(77) == {"Website": "https://jane.example"}
        assert [m.link_name for m in outcome.missing_links] == ["Imdb"]
        assert len(errors) == 0

    def test_dry_run_leaves_database_unchanged(self, db_conn, seed, tmp_path):
        _, dsn = db_conn
        seed.freelancer(77, "jane-doe")
        seed.link(77, "Website", "https://old.example")
        layout = _media(tmp_path)

        conn = connect_db(dsn)
        try:
            run_pipeline(
                conn, [_jane()], layout,
                ProgressLedger(tmp_path / "progress.json", persist=False),
                RunCounters(), ErrorLog(tmp_path / "e.json"), dry_run=True,
            )
        finally:
            conn.close()

        row = seed.profile(77)
        assert row["photoblobid"] is None
        assert row["photostatusid"] == 0
        assert seed.links(77) == {"Website": "https://old.example"}
        assert not (tmp_path / "progress.json").exists()


class TestPipelineCli:
    def _args(self, tmp_path, matched_path, *extra):
        return [
            "--mode", "pipeline",
            "--matched-path", str(matched_path),
            "--media-dir", str(tmp_path / "downloaded_media_final"),
            "--azure-ready-dir", str(tmp_path / "azure_ready_media"),
            "--output-dir", str(tmp_path / "output"),
            "--report-dir", str(tmp_path / "reports"),
            *extra,
        ]

    def test_dry_run_exit_zero_and_no_writes(self, db_conn, seed, tmp_path):
        _, dsn = db_conn
        seed.freelancer(77, "jane-doe")
        _media(tmp_path)
        matched = _matched_file(tmp_path, [_jane()])

        result = CliRunner().invoke(
            main, self._args(tmp_path, matched, "--dry-run", "--run-id", "dry"),
            env={"CREW_DB_DSN": dsn},
        )

        assert result.exit_code == 0, result.output
        assert "All database changes rolled back" in result.output
        assert seed.profile(77)["photoblobid"] is None
        assert not (tmp_path / "output" / "update_progress.json").exists()

    def test_real_run_uploads_updates_and_reports_missing_links(self, db_conn, seed, tmp_path, monkeypatch):
        _, dsn = db_conn
        seed.freelancer(77, "jane-doe")
        _media(tmp_path)
        matched = _matched_file(tmp_path, [_jane()])
        session = _ok_session()
        monkeypatch.setattr(requests, "Session", lambda: session)

        result = CliRunner().invoke(
            main, self._args(tmp_path, matched, "--yes", "--blob-base-url", BASE_URL),
            env={"CREW_DB_DSN": dsn, "AZURE_BLOB_SAS_TOKEN": SAS},
        )

        assert result.exit_code == 0, result.output
        assert session.request.call_count == 1
        assert seed.profile(77)["photoblobid"] == "P000077"
        missing = json.loads((tmp_path / "output" / "missing_links_for_insert.json").read_text())
        assert missing["total_missing"] == 2
        assert {m["LinkName"] for m in missing["missing_links"]} == {"Website", "Imdb"}
        assert seed.links(77) == {}
        # clean run removes the resume ledger
        assert not (tmp_path / "output" / "update_progress.json").exists()
        mapping = json.loads((tmp_path / "azure_ready_media" / "file_mapping.json").read_text())
        assert mapping[0]["photo"]["filename"] == "P000077.jpg"

    def test_missing_sas_token_is_fatal(self, db_conn, tmp_path):
        _, dsn = db_conn
        matched = _matched_file(tmp_path, [_jane()])
        result = CliRunner().invoke(
            main, self._args(tmp_path, matched, "--yes", "--blob-base-url", BASE_URL, "--run-id", "nosas"),
            env={"CREW_DB_DSN": dsn, "AZURE_BLOB_SAS_TOKEN": ""},
        )
        assert result.exit_code == 1
        assert "[nosas] FATAL: env var AZURE_BLOB_SAS_TOKEN must be set for uploads" in result.output

    def test_declined_confirmation_changes_nothing(self, db_conn, seed, tmp_path):
        _, dsn = db_conn
        seed.freelancer(77, "jane-doe")
        _media(tmp_path)
        matched = _matched_file(tmp_path, [_jane()])

        result = CliRunner().invoke(
            main, self._args(tmp_path, matched, "--blob-base-url", BASE_URL),
            env={"CREW_DB_DSN": dsn, "AZURE_BLOB_SAS_TOKEN": SAS},
            input="n\n",
        )

        assert result.exit_code == 0, result.output
        assert "Operation cancelled." in result.output
        assert seed.profile(77)["photoblobid"] is None
