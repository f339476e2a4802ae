"""crew_migrate.media_files

Copy located source files to their blob-ID names.

The destination for an asset is ``{dest_dir}/{blob_id}{extension}``. An
existing destination short-circuits to ``already_exists`` without touching
the source.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from crew_migrate.blob_ids import blob_filename
from crew_migrate.normalize import extension_from_filename

log = logging.getLogger(__name__)

COPY_COPIED = "copied"
COPY_ALREADY_EXISTS = "already_exists"
COPY_FAILED = "failed"


@dataclass(frozen=True)
class CopyResult:
    status: str
    path: Path
    error: str | None = None
    extension_mismatch: bool = False

    @property
    def ok(self) -> bool:
        return self.status != COPY_FAILED


def copy_asset(
    source_path: Path,
    dest_dir: Path,
    blob_id: str,
    extension: str | None,
) -> CopyResult:
    """Copy ``source_path`` to ``dest_dir/{blob_id}{extension}`` byte for byte.

    When ``extension`` is None the source file's own extension is used. A
    source whose extension differs from the requested one is still copied
    under the requested name; the mismatch is logged and flagged on the result.
    """
    source_ext = extension_from_filename(source_path.name)
    target_ext = extension or source_ext
    target = dest_dir / blob_filename(blob_id, target_ext)

    if target.exists():
        return CopyResult(COPY_ALREADY_EXISTS, target)

    mismatch = bool(extension) and source_ext != extension
    if mismatch:
        log.warning(
            "Extension mismatch for %s: source=%s target=%s",
            blob_id, source_ext, target_ext,
        )

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, target)
    except OSError as exc:
        log.error("Copy %s -> %s failed: %s", source_path, target, exc)
        return CopyResult(COPY_FAILED, target, error=str(exc), extension_mismatch=mismatch)
    return CopyResult(COPY_COPIED, target, extension_mismatch=mismatch)
