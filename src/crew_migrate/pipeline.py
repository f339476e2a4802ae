"""crew_migrate.pipeline

Per-record orchestration for the rename_media and pipeline modes.

Processing order per matched record:
  1.  For each asset type (photo, cv, equipment) the record needs:
      a.  Skip if the ledger already holds "{freelancer_id}:{asset_type}"
      b.  Locate the source file by slug              (file_locator)
      c.  Copy it to {blob_id}{ext} in the output dir  (media_files)
      d.  PUT it to blob storage                       (blob_storage)
      Asset failures are independent: a failed CV never blocks the photo.
  2.  UPDATE tblFreelancerWebsiteData for the assets that made it
  3.  UPDATE tblFreelancerWebsiteDataLinks; zero-row links are collected
  4.  COMMIT (or nothing in dry-run) and mark the record in the ledger;
      only a record with every step successful is marked completed

Dry-run: files are still located and copied locally, uploads are skipped,
DB statements run and are rolled back at the end, the ledger is not written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psycopg
import requests

from crew_migrate.blob_ids import ASSET_CV, ASSET_EQUIPMENT, ASSET_PHOTO, ASSET_TYPES
from crew_migrate.blob_storage import BlobStorageConfig, RetryPolicy, upload_to_blob
from crew_migrate.db_update import (
    MissingLink,
    build_profile_update,
    update_links,
    update_profile,
)
from crew_migrate.file_locator import AmbiguousFileMatch, FileNotFound, find_file_by_slug
from crew_migrate.media_files import COPY_ALREADY_EXISTS, COPY_FAILED, copy_asset
from crew_migrate.progress import ProgressLedger
from crew_migrate.records import MatchedRecord
from crew_migrate.shared import ErrorLog, RunCounters

log = logging.getLogger(__name__)

ASSET_DIRS = {
    ASSET_PHOTO: "photos",
    ASSET_CV: "cvs",
    ASSET_EQUIPMENT: "equipment",
}

REASON_AMBIGUOUS = "ambiguous_match_requires_review"
REASON_COPY_FAILED = "copy_failed"
REASON_UPLOAD_FAILED = "upload_failed"
REASON_PROFILE_UPDATE_FAILED = "profile_update_failed"
REASON_LINK_UPDATE_FAILED = "link_update_failed"


@dataclass
class MediaLayout:
    source_dir: Path
    output_dir: Path

    def source_for(self, asset_type: str) -> Path:
        return self.source_dir / ASSET_DIRS[asset_type]

    def output_for(self, asset_type: str) -> Path:
        return self.output_dir / ASSET_DIRS[asset_type]


@dataclass
class StagedAsset:
    asset_type: str
    path: Path
    original_filename: str | None
    strategy: str | None = None
    confidence: str | None = None

    def to_dict(self, blob_id: str) -> dict[str, Any]:
        return {
            "blob_id": blob_id,
            "filename": self.path.name,
            "original_filename": self.original_filename,
            "new_path": str(self.path),
            "strategy": self.strategy,
            "confidence": self.confidence,
        }


def resumed_asset(record: MatchedRecord, asset_type: str, layout: MediaLayout) -> StagedAsset:
    """Describe an asset that an earlier run already staged and uploaded."""
    asset = record.asset(asset_type)
    assert asset is not None
    dest_dir = layout.output_for(asset_type)
    path = dest_dir / asset.filename
    if not asset.extension:
        found = sorted(dest_dir.glob(f"{asset.blob_id}.*"))
        if found:
            path = found[0]
    return StagedAsset(asset_type, path, None, strategy="resumed")


def resumed_mapping(record: MatchedRecord, layout: MediaLayout) -> dict[str, Any]:
    """Mapping entry for a record completed by an earlier run."""
    mapping: dict[str, Any] = {
        "freelancer_id": record.freelancer_id,
        "name": record.name,
        "slug": record.slug,
    }
    for asset_type in ASSET_TYPES:
        if record.needs_asset(asset_type):
            staged = resumed_asset(record, asset_type, layout)
            mapping[asset_type] = staged.to_dict(record.asset(asset_type).blob_id)  # type: ignore[union-attr]
    return mapping


@dataclass
class PipelineOutcome:
    file_mapping: list[dict[str, Any]] = field(default_factory=list)
    missing_links: list[MissingLink] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Locate + copy
# ---------------------------------------------------------------------------

def stage_asset(
    record: MatchedRecord,
    asset_type: str,
    layout: MediaLayout,
    counters: RunCounters,
    errors: ErrorLog,
    accept_ambiguous: bool = False,
) -> StagedAsset | None:
    """Locate and copy one asset to its blob-ID filename.

    Returns None (and records an error) when the asset cannot be staged.
    """
    asset = record.asset(asset_type)
    assert asset is not None
    dest_dir = layout.output_for(asset_type)

    if asset.extension:
        target = dest_dir / asset.filename
        if target.exists():
            counters.files_already_present += 1
            counters.bump(asset_type, "already_exists")
            return StagedAsset(asset_type, target, None)

    found = find_file_by_slug(layout.source_for(asset_type), record.slug)
    if isinstance(found, FileNotFound):
        counters.files_not_found += 1
        counters.bump(asset_type, "not_found")
        errors.add(
            record.name, asset_type, found.reason,
            freelancer_id=record.freelancer_id, slug=record.slug,
            files_checked=found.files_checked,
        )
        return None
    if isinstance(found, AmbiguousFileMatch):
        counters.files_ambiguous += 1
        if not accept_ambiguous:
            counters.bump(asset_type, "ambiguous")
            errors.add(
                record.name, asset_type, REASON_AMBIGUOUS,
                freelancer_id=record.freelancer_id, slug=record.slug,
                candidates=list(found.candidates), strategy=found.strategy,
            )
            return None
        counters.warnings.append(
            f"{record.slug} {asset_type}: accepted ambiguous match {found.filename}"
        )

    copied = copy_asset(found.path, dest_dir, asset.blob_id, asset.extension)
    if copied.extension_mismatch:
        counters.extension_mismatches += 1
        counters.warnings.append(
            f"{record.slug} {asset_type}: extension mismatch {found.filename} -> {copied.path.name}"
        )
    if copied.status == COPY_FAILED:
        counters.copy_failed += 1
        counters.bump(asset_type, "copy_failed")
        errors.add(
            record.name, asset_type, REASON_COPY_FAILED,
            freelancer_id=record.freelancer_id, slug=record.slug,
            error=copied.error, source=str(found.path),
        )
        return None
    if copied.status == COPY_ALREADY_EXISTS:
        counters.files_already_present += 1
        counters.bump(asset_type, "already_exists")
    else:
        counters.files_copied += 1
        counters.bump(asset_type, "copied")
    return StagedAsset(asset_type, copied.path, found.filename, found.strategy, found.confidence)


def run_rename(
    records: list[MatchedRecord],
    layout: MediaLayout,
    counters: RunCounters,
    errors: ErrorLog,
    accept_ambiguous: bool = False,
) -> list[dict[str, Any]]:
    """Stage every needed asset locally; return the file mapping."""
    mapping: list[dict[str, Any]] = []
    for idx, record in enumerate(records):
        if (idx + 1) % 100 == 0:
            log.info("Progress: %d/%d", idx + 1, len(records))
        entry: dict[str, Any] = {
            "freelancer_id": record.freelancer_id,
            "name": record.name,
            "slug": record.slug,
            ASSET_PHOTO: None,
            ASSET_CV: None,
            ASSET_EQUIPMENT: None,
        }
        for asset_type in ASSET_TYPES:
            if not record.needs_asset(asset_type):
                continue
            staged = stage_asset(record, asset_type, layout, counters, errors, accept_ambiguous)
            if staged is not None:
                entry[asset_type] = staged.to_dict(record.asset(asset_type).blob_id)  # type: ignore[union-attr]
        counters.records_read += 1
        mapping.append(entry)
    return mapping


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------

def process_record(
    conn: psycopg.Connection,
    session: requests.Session | None,
    blob_config: BlobStorageConfig | None,
    policy: RetryPolicy,
    record: MatchedRecord,
    layout: MediaLayout,
    ledger: ProgressLedger,
    counters: RunCounters,
    errors: ErrorLog,
    outcome: PipelineOutcome,
    accept_ambiguous: bool = False,
    dry_run: bool = False,
) -> bool:
    """Run every step for one record; return True when all of them succeeded."""
    ok = True
    uploaded: set[str] = set()
    mapping: dict[str, Any] = {
        "freelancer_id": record.freelancer_id,
        "name": record.name,
        "slug": record.slug,
    }

    for asset_type in ASSET_TYPES:
        if not record.needs_asset(asset_type):
            continue
        asset = record.asset(asset_type)
        assert asset is not None
        if ledger.is_asset_done(record.freelancer_id, asset_type):
            counters.uploads_skipped_checkpoint += 1
            uploaded.add(asset_type)
            mapping[asset_type] = resumed_asset(record, asset_type, layout).to_dict(asset.blob_id)
            continue

        staged = stage_asset(record, asset_type, layout, counters, errors, accept_ambiguous)
        if staged is None:
            ok = False
            continue
        asset.source_path = str(staged.path)
        mapping[asset_type] = staged.to_dict(asset.blob_id)

        if dry_run:
            asset.upload_status = "skipped_dry_run"
            uploaded.add(asset_type)
            continue

        assert session is not None and blob_config is not None
        result = upload_to_blob(session, blob_config, staged.path, staged.path.name, policy)
        if result.success:
            asset.upload_status = "uploaded"
            counters.uploaded += 1
            counters.bump(asset_type, "uploaded")
            ledger.mark_asset_done(record.freelancer_id, asset_type)
            uploaded.add(asset_type)
        else:
            asset.upload_status = "failed"
            counters.upload_failed += 1
            counters.bump(asset_type, "upload_failed")
            errors.add(
                record.name, asset_type, REASON_UPLOAD_FAILED,
                freelancer_id=record.freelancer_id, slug=record.slug,
                error=result.error, status_code=result.status_code,
            )
            ok = False

    outcome.file_mapping.append(mapping)

    update = build_profile_update(record, uploaded)
    if update:
        profile = update_profile(conn, update)
        if profile.success:
            counters.profiles_updated += 1
        else:
            counters.profile_update_failed += 1
            counters.db_phase_errors += 1
            errors.add(
                record.name, "database", REASON_PROFILE_UPDATE_FAILED,
                freelancer_id=record.freelancer_id, slug=record.slug, error=profile.error,
            )
            ok = False

    if record.needs_links_update:
        links = update_links(conn, record.freelancer_id, record.links, record.name)
        if links.success:
            counters.links_updated += links.updated
            counters.links_missing += len(links.missing_links)
            outcome.missing_links.extend(links.missing_links)
        else:
            counters.link_update_failed += 1
            counters.db_phase_errors += 1
            errors.add(
                record.name, "links", REASON_LINK_UPDATE_FAILED,
                freelancer_id=record.freelancer_id, slug=record.slug, error=links.error,
            )
            ok = False

    return ok


def run_pipeline(
    conn: psycopg.Connection,
    records: list[MatchedRecord],
    layout: MediaLayout,
    ledger: ProgressLedger,
    counters: RunCounters,
    errors: ErrorLog,
    session: requests.Session | None = None,
    blob_config: BlobStorageConfig | None = None,
    policy: RetryPolicy | None = None,
    accept_ambiguous: bool = False,
    dry_run: bool = False,
) -> PipelineOutcome:
    policy = policy or RetryPolicy()
    outcome = PipelineOutcome()
    try:
        for idx, record in enumerate(records):
            if ledger.is_done(record.slug):
                counters.records_skipped_checkpoint += 1
                outcome.file_mapping.append(resumed_mapping(record, layout))
                continue
            counters.records_read += 1
            if idx == 0 or (idx + 1) % 50 == 0:
                log.info("Progress: %d/%d", idx + 1, len(records))

            before = len(errors)
            ok = process_record(
                conn, session, blob_config, policy, record, layout,
                ledger, counters, errors, outcome,
                accept_ambiguous=accept_ambiguous, dry_run=dry_run,
            )
            if not dry_run:
                conn.commit()
            if ok:
                counters.records_completed += 1
            else:
                counters.records_failed += 1
                log.warning("%s (ID %s) finished with errors", record.name, record.freelancer_id)
            ledger.finish_record(idx, record.slug, success=ok, errors=errors.entries[before:])
    finally:
        if dry_run:
            conn.rollback()
    return outcome
