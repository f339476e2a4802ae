"""Unit tests for crew_migrate.media_files."""

from pathlib import Path
from unittest.mock import patch

from crew_migrate.media_files import (
    COPY_ALREADY_EXISTS,
    COPY_COPIED,
    COPY_FAILED,
    copy_asset,
)


def _source(tmp_path: Path, name: str = "jane-doe.jpg", data: bytes = b"\xff\xd8jpegbytes") -> Path:
    src_dir = tmp_path / "src"
    src_dir.mkdir(exist_ok=True)
    path = src_dir / name
    path.write_bytes(data)
    return path


class TestCopyAsset:
    def test_copies_to_blob_name(self, tmp_path):
        src = _source(tmp_path)
        result = copy_asset(src, tmp_path / "out", "P000077", ".jpg")
        assert result.status == COPY_COPIED
        assert result.path == tmp_path / "out" / "P000077.jpg"
        assert result.path.read_bytes() == src.read_bytes()

    def test_idempotent_second_call(self, tmp_path):
        src = _source(tmp_path)
        first = copy_asset(src, tmp_path / "out", "P000077", ".jpg")
        second = copy_asset(src, tmp_path / "out", "P000077", ".jpg")
        assert first.status == COPY_COPIED
        assert second.status == COPY_ALREADY_EXISTS
        assert second.path.read_bytes() == src.read_bytes()

    def test_existing_target_does_not_read_source(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "C000001.pdf").write_bytes(b"old")
        result = copy_asset(tmp_path / "missing.pdf", out, "C000001", ".pdf")
        assert result.status == COPY_ALREADY_EXISTS
        assert (out / "C000001.pdf").read_bytes() == b"old"

    def test_extension_mismatch_flagged_not_corrected(self, tmp_path, caplog):
        src = _source(tmp_path, "jane-doe.jpeg")
        with caplog.at_level("WARNING"):
            result = copy_asset(src, tmp_path / "out", "P000077", ".jpg")
        assert result.status == COPY_COPIED
        assert result.extension_mismatch
        assert result.path.name == "P000077.jpg"
        assert "Extension mismatch" in caplog.text

    def test_missing_extension_uses_source(self, tmp_path):
        src = _source(tmp_path, "jane-doe.png")
        result = copy_asset(src, tmp_path / "out", "P000077", None)
        assert result.path.name == "P000077.png"
        assert not result.extension_mismatch

    def test_os_error_is_failed(self, tmp_path):
        src = _source(tmp_path)
        with patch("crew_migrate.media_files.shutil.copyfile", side_effect=PermissionError("denied")):
            result = copy_asset(src, tmp_path / "out", "P000077", ".jpg")
        assert result.status == COPY_FAILED
        assert not result.ok
        assert "denied" in result.error

    def test_missing_source_is_failed(self, tmp_path):
        result = copy_asset(tmp_path / "gone.jpg", tmp_path / "out", "P000077", ".jpg")
        assert result.status == COPY_FAILED
