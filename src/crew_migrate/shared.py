"""crew_migrate.shared

Shared utilities used by every migration mode.
Includes ErrorLog, RunCounters, JSON artifact helpers, and
report-writing support.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class InputFileError(Exception):
    """Raised when a required input JSON file is missing or unreadable."""


# ---------------------------------------------------------------------------
# JSON artifacts
# ---------------------------------------------------------------------------

def load_json_file(path: Path, description: str) -> Any:
    """Read a required JSON input; raise InputFileError when absent or invalid."""
    if not path.exists():
        raise InputFileError(f"{description} not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InputFileError(f"{description} is not valid JSON: {path} ({exc})") from exc


def write_json_atomic(path: Path, payload: Any) -> Path:
    """Write JSON to a temp file in the target directory, then os.replace it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, default=str)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


# ---------------------------------------------------------------------------
# ErrorLog
# ---------------------------------------------------------------------------

class ErrorLog:
    """Accumulates per-asset failures and writes them as one JSON array.

    Entries follow the {freelancer, freelancer_id, slug, type, reason, error?}
    layout. Nothing is written when no error was recorded.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._entries: list[dict[str, Any]] = []

    def add(
        self,
        freelancer: str | None,
        asset_type: str,
        reason: str,
        *,
        freelancer_id: int | None = None,
        slug: str | None = None,
        error: str | None = None,
        **details: Any,
    ) -> None:
        entry: dict[str, Any] = {
            "freelancer": freelancer,
            "freelancer_id": freelancer_id,
            "slug": slug,
            "type": asset_type,
            "reason": reason,
        }
        if error is not None:
            entry["error"] = error
        entry.update(details)
        self._entries.append(entry)

    def extend(self, entries: list[dict[str, Any]]) -> None:
        self._entries.extend(entries)

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    @property
    def path(self) -> Path:
        return self._path

    def summary(self) -> dict[str, int]:
        """Count errors by '{type}_{reason}' (reason truncated at ':')."""
        counts: dict[str, int] = {}
        for e in self._entries:
            key = f"{e.get('type')}_{str(e.get('reason')).split(':', 1)[0]}"
            counts[key] = counts.get(key, 0) + 1
        return counts

    def write(self) -> Path | None:
        if not self._entries:
            return None
        return write_json_atomic(self._path, self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    # Common counters
    records_read: int = 0
    records_skipped_checkpoint: int = 0
    # Match
    matched: int = 0
    unmatched: int = 0
    canonical_rows_read: int = 0
    canonical_rows_without_slug: int = 0
    slug_collisions: int = 0
    with_new_photo: int = 0
    with_new_cv: int = 0
    with_new_equipment: int = 0
    with_new_bio: int = 0
    with_new_links: int = 0
    # Download
    downloaded: int = 0
    download_skipped: int = 0
    download_failed: int = 0
    # Locate / copy
    files_copied: int = 0
    files_already_present: int = 0
    files_not_found: int = 0
    files_ambiguous: int = 0
    copy_failed: int = 0
    extension_mismatches: int = 0
    # Upload
    uploaded: int = 0
    upload_failed: int = 0
    uploads_skipped_checkpoint: int = 0
    # Database
    profiles_updated: int = 0
    profile_update_failed: int = 0
    links_updated: int = 0
    links_missing: int = 0
    link_update_failed: int = 0
    db_phase_errors: int = 0
    # Record outcome
    records_completed: int = 0
    records_failed: int = 0
    per_asset: dict[str, dict[str, int]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def bump(self, asset_type: str, outcome: str) -> None:
        """Increment the per-asset-type tally for one outcome."""
        bucket = self.per_asset.setdefault(asset_type, {})
        bucket[outcome] = bucket.get(outcome, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        d = {
            k: v for k, v in self.__dict__.items()
            if k not in ("warnings", "per_asset")
        }
        d["per_asset"] = {k: dict(v) for k, v in self.per_asset.items()}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path


def format_report(title: str, sections: list[tuple[str, list[tuple[str, Any]]]]) -> str:
    """Render a fixed-width summary block for console output."""
    lines = [f"=== {title} ==="]
    for heading, rows in sections:
        lines.append("")
        lines.append(f"--- {heading} ---")
        width = max((len(label) for label, _ in rows), default=0)
        for label, value in rows:
            lines.append(f"{label.ljust(width)} : {value}")
    return "\n".join(lines)
