"""Unit tests for crew_migrate.download_media (mocked HTTP session)."""

from unittest.mock import MagicMock

import requests

from crew_migrate.blob_storage import RetryPolicy
from crew_migrate.download_media import (
    DownloadSettings,
    download_extension,
    download_target,
    run_download,
)
from crew_migrate.progress import ProgressLedger
from crew_migrate.records import ScrapedRecord
from crew_migrate.shared import ErrorLog, RunCounters


def _resp(status: int, body: bytes = b"data") -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.iter_content.return_value = [body]
    return resp


def _settings(tmp_path, sleeps: list[float]) -> DownloadSettings:
    return DownloadSettings(
        media_dir=tmp_path / "media",
        request_delay=0.3,
        policy=RetryPolicy(max_attempts=1, sleeper=sleeps.append),
        sleeper=sleeps.append,
    )


class TestTargets:
    def test_extension_from_url(self):
        assert download_extension("photo", "https://x/a/Jane.PNG?v=2") == ".png"

    def test_defaults(self):
        assert download_extension("photo", "https://x/image") == ".jpg"
        assert download_extension("cv", "https://x/download?id=5") == ".pdf"

    def test_target_uses_slug(self, tmp_path):
        target = download_target(tmp_path, "cv", "Jane-Doe", "https://x/cv_final.pdf")
        assert target == tmp_path / "cvs" / "jane-doe.pdf"


class TestRunDownload:
    def test_downloads_and_skips_existing(self, tmp_path):
        sleeps: list[float] = []
        settings = _settings(tmp_path, sleeps)
        existing = settings.media_dir / "cvs" / "jane-doe.pdf"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"old")

        session = MagicMock()
        session.request.return_value = _resp(200, b"jpeg")
        rec = ScrapedRecord(name="Jane Doe", slug="jane-doe",
                            image_url="https://x/jane.jpg", cv_url="https://x/cv.pdf")
        counters = RunCounters()
        errors = ErrorLog(tmp_path / "errors.json")
        ledger = ProgressLedger(tmp_path / "progress.json")

        run_download(session, [rec], settings, ledger, counters, errors)

        assert (settings.media_dir / "photos" / "jane-doe.jpg").read_bytes() == b"jpeg"
        assert existing.read_bytes() == b"old"
        assert session.request.call_count == 1
        assert counters.downloaded == 1
        assert counters.download_skipped == 1
        assert counters.records_completed == 1
        assert sleeps == [0.3]
        assert ledger.is_done("jane-doe")

    def test_failure_recorded_and_record_not_completed(self, tmp_path):
        session = MagicMock()
        session.request.return_value = _resp(404)
        rec = ScrapedRecord(name="Sam", slug="sam", image_url="https://x/sam.jpg")
        counters = RunCounters()
        errors = ErrorLog(tmp_path / "errors.json")
        ledger = ProgressLedger(tmp_path / "progress.json")

        run_download(session, [rec], _settings(tmp_path, []), ledger, counters, errors)

        assert counters.download_failed == 1
        assert counters.records_failed == 1
        assert not ledger.is_done("sam")
        [entry] = errors.entries
        assert entry["reason"] == "download_failed"
        assert entry["error"] == "HTTP 404"
        assert entry["url"] == "https://x/sam.jpg"

    def test_completed_record_skipped(self, tmp_path):
        ledger = ProgressLedger(tmp_path / "progress.json")
        ledger.finish_record(0, "sam", success=True)
        session = MagicMock()
        counters = RunCounters()
        rec = ScrapedRecord(name="Sam", slug="sam", image_url="https://x/sam.jpg")

        run_download(session, [rec], _settings(tmp_path, []), ledger, counters,
                     ErrorLog(tmp_path / "e.json"))

        session.request.assert_not_called()
        assert counters.records_skipped_checkpoint == 1

    def test_record_without_urls(self, tmp_path):
        session = MagicMock()
        counters = RunCounters()
        run_download(session, [ScrapedRecord(name="N", slug="n")], _settings(tmp_path, []),
                     ProgressLedger(tmp_path / "p.json"), counters, ErrorLog(tmp_path / "e.json"))
        session.request.assert_not_called()
        assert counters.records_completed == 1
