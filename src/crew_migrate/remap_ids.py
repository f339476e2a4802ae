"""crew_migrate.remap_ids

Re-key media downloaded under WordPress-era blob IDs to database blob IDs.

The WordPress downloader named files after IDs it invented itself
(blob_id_mapping.json). Once records are matched against the database, each
WordPress blob ID maps to a real one through the shared slug; files whose
name starts with the WordPress blob ID are copied to the database name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from crew_migrate.blob_ids import ASSET_TYPES
from crew_migrate.media_files import COPY_ALREADY_EXISTS, COPY_FAILED, copy_asset
from crew_migrate.normalize import normalize_slug
from crew_migrate.pipeline import MediaLayout
from crew_migrate.records import MatchedRecord, RecordValidationError
from crew_migrate.shared import ErrorLog, RunCounters

log = logging.getLogger(__name__)

REASON_WORDPRESS_FILE_NOT_FOUND = "wordpress_file_not_found"


@dataclass(frozen=True)
class WordPressEntry:
    name: str
    slug: str
    wordpress_id: Any
    blob_ids: dict[str, str | None]
    downloaded: dict[str, bool]


def parse_wordpress_mapping(payload: Any, source: str) -> list[WordPressEntry]:
    if not isinstance(payload, list):
        raise RecordValidationError(source, None, "<root>", "expected a list")
    entries = []
    for i, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise RecordValidationError(source, i, "<record>", "expected an object")
        slug = raw.get("slug")
        if not isinstance(slug, str) or not slug.strip():
            raise RecordValidationError(source, i, "slug", "required")
        entries.append(WordPressEntry(
            name=str(raw.get("name") or slug),
            slug=slug.strip(),
            wordpress_id=raw.get("freelancer_id"),
            blob_ids={t: raw.get(f"{t}_blob_id") for t in ASSET_TYPES},
            downloaded={t: bool(raw.get(f"downloaded_{t}")) for t in ASSET_TYPES},
        ))
    return entries


def build_id_mapping(
    wordpress: list[WordPressEntry],
    matched: list[MatchedRecord],
) -> tuple[list[dict[str, Any]], list[str]]:
    """Join WordPress entries to matched records by slug.

    Returns (mapping rows, slugs with no database match).
    """
    by_slug = {normalize_slug(m.slug): m for m in matched}
    rows: list[dict[str, Any]] = []
    missing: list[str] = []
    for wp in wordpress:
        db = by_slug.get(normalize_slug(wp.slug))
        if db is None:
            missing.append(wp.slug)
            log.warning("No database match for slug: %s", wp.slug)
            continue
        row: dict[str, Any] = {
            "name": wp.name,
            "slug": wp.slug,
            "wordpress_id": wp.wordpress_id,
            "database_id": db.freelancer_id,
        }
        for t in ASSET_TYPES:
            asset = db.asset(t)
            row[f"wordpress_{t}_blob"] = wp.blob_ids[t]
            row[f"database_{t}_blob"] = asset.blob_id if asset else None
            row[f"has_{t}"] = wp.downloaded[t]
        rows.append(row)
    return rows, missing


def _find_by_prefix(directory: Path, prefix: str) -> Path | None:
    if not directory.is_dir():
        return None
    for p in sorted(directory.iterdir()):
        if p.is_file() and p.name.startswith(prefix):
            return p
    return None


def run_remap(
    id_mapping: list[dict[str, Any]],
    layout: MediaLayout,
    counters: RunCounters,
    errors: ErrorLog,
) -> list[dict[str, Any]]:
    file_mapping: list[dict[str, Any]] = []
    for row in id_mapping:
        result: dict[str, Any] = {
            "freelancer_id": row["database_id"],
            "name": row["name"],
            "slug": row["slug"],
        }
        for t in ASSET_TYPES:
            wp_blob = row[f"wordpress_{t}_blob"]
            db_blob = row[f"database_{t}_blob"]
            result[t] = None
            if not (wp_blob and db_blob and row[f"has_{t}"]):
                continue
            source = _find_by_prefix(layout.source_for(t), wp_blob)
            if source is None:
                counters.files_not_found += 1
                counters.bump(t, "not_found")
                errors.add(row["name"], t, REASON_WORDPRESS_FILE_NOT_FOUND,
                           freelancer_id=row["database_id"], slug=row["slug"],
                           wordpress_blob=wp_blob)
                continue
            copied = copy_asset(source, layout.output_for(t), db_blob, None)
            if copied.status == COPY_FAILED:
                counters.copy_failed += 1
                counters.bump(t, "copy_failed")
                errors.add(row["name"], t, "copy_failed",
                           freelancer_id=row["database_id"], slug=row["slug"],
                           error=copied.error, wordpress_blob=wp_blob, database_blob=db_blob)
                continue
            if copied.status == COPY_ALREADY_EXISTS:
                counters.files_already_present += 1
                counters.bump(t, "already_exists")
            else:
                counters.files_copied += 1
                counters.bump(t, "copied")
            result[t] = {
                "blob_id": db_blob,
                "filename": copied.path.name,
                "original_wordpress_file": source.name,
                "status": copied.status,
            }
        counters.records_read += 1
        file_mapping.append(result)
    return file_mapping
