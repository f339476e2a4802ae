"""crew_migrate.progress

Resume ledger for long migration runs.

The ledger records completion per asset, keyed "{freelancer_id}:{asset_type}",
plus the set of records that finished with every step successful. A record
with one failed asset is never placed in ``completed``, so the next run
retries exactly the asset that failed and skips the ones already uploaded.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from crew_migrate.shared import write_json_atomic

log = logging.getLogger(__name__)


def asset_key(freelancer_id: int | str, asset_type: str) -> str:
    return f"{freelancer_id}:{asset_type}"


class ProgressLedger:
    """Persist per-record and per-asset completion to a JSON file."""

    def __init__(self, path: Path, *, persist: bool = True) -> None:
        self._path = path
        self._persist = persist
        self.last_processed_index = -1
        self._completed: set[str] = set()
        self._completed_assets: set[str] = set()
        self.errors: list[dict[str, Any]] = []

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self.last_processed_index = int(data.get("lastProcessedIndex", -1))
            self._completed = set(data.get("completed", []))
            self._completed_assets = set(data.get("completed_assets", []))
            self.errors = list(data.get("errors", []))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            log.warning("Progress ledger load failed (%s); starting fresh.", exc)
            self.last_processed_index = -1
            self._completed = set()
            self._completed_assets = set()
            self.errors = []

    # -- queries ------------------------------------------------------------

    def is_done(self, key: str) -> bool:
        return key in self._completed

    def is_asset_done(self, freelancer_id: int | str, asset_type: str) -> bool:
        return asset_key(freelancer_id, asset_type) in self._completed_assets

    # -- updates ------------------------------------------------------------

    def mark_asset_done(self, freelancer_id: int | str, asset_type: str) -> None:
        self._completed_assets.add(asset_key(freelancer_id, asset_type))

    def finish_record(
        self,
        index: int,
        key: str,
        *,
        success: bool,
        errors: Iterable[dict[str, Any]] = (),
    ) -> None:
        """Advance past record ``index``; only a fully successful record is completed.

        ``errors`` replaces whatever the ledger held for ``key`` from an
        earlier run, so an asset fixed on resume no longer shows up.
        """
        self.last_processed_index = index
        self.errors = [e for e in self.errors if e.get("record") != key]
        self.errors.extend({"record": key, **e} for e in errors)
        if success:
            self._completed.add(key)
        self.save()

    def save(self) -> None:
        if not self._persist:
            return
        write_json_atomic(self._path, self.to_dict())

    def clear(self) -> None:
        """Delete the ledger file after a clean run."""
        if self._persist and self._path.exists():
            self._path.unlink()

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastProcessedIndex": self.last_processed_index,
            "completed": sorted(self._completed),
            "completed_assets": sorted(self._completed_assets),
            "errors": self.errors,
        }

    def __len__(self) -> int:
        return len(self._completed)
