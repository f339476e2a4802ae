"""crew_migrate.sql_export

Render matched records as a reviewable SQL script (import_ready.sql) for a
DBA to run by hand, instead of writing to the database directly.
"""

from __future__ import annotations

from datetime import datetime

from crew_migrate.db_update import ASSET_COLUMNS, LINKS_TABLE, PROFILE_TABLE, link_rows
from crew_migrate.records import STATUS_VERIFIED, MatchedRecord

_RULE = "-- " + "=" * 58
_SEPARATOR = "-- " + "-" * 58


def sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def profile_assignments(record: MatchedRecord) -> list[str]:
    parts: list[str] = []
    for asset_type, (blob_col, status_col) in ASSET_COLUMNS.items():
        asset = record.asset(asset_type)
        if record.needs_asset(asset_type) and asset is not None:
            parts.append(f"  {blob_col} = {sql_quote(asset.blob_id)}")
            parts.append(f"  {status_col} = {STATUS_VERIFIED}")
    if record.needs_bio_update and record.bio:
        parts.append(f"  FreelancerBio = {sql_quote(record.bio)}")
    return parts


def render_import_sql(records: list[MatchedRecord], generated_at: str | None = None) -> tuple[str, int]:
    """Return (script text, number of records that produced statements)."""
    generated_at = generated_at or datetime.utcnow().isoformat()
    out = [
        _RULE,
        "-- FREELANCERS DATA IMPORT - PRODUCTION READY",
        f"-- Generated: {generated_at}",
        f"-- Total Updates: {len(records)}",
        _RULE,
        "",
        "-- IMPORTANT: Backup your database before running this script!",
        "",
        "BEGIN TRANSACTION;",
        "",
    ]

    update_count = 0
    for index, rec in enumerate(records, start=1):
        assignments = profile_assignments(rec)
        links = link_rows(rec.links) if rec.needs_links_update else []
        if not assignments and not links:
            continue
        update_count += 1
        out.append(f"-- {index}. {rec.name} (ID: {rec.freelancer_id})")
        if assignments:
            out.append(f"UPDATE {PROFILE_TABLE} SET")
            out.append(",\n".join(assignments))
            out.append(f"WHERE FreelancerID = {rec.freelancer_id};")
            out.append("")
        for link_name, url in links:
            out.append(f"UPDATE {LINKS_TABLE}")
            out.append(f"SET LinkURL = {sql_quote(url)}")
            out.append(f"WHERE FreelancerID = {rec.freelancer_id}")
            out.append(f"  AND LinkName = {sql_quote(link_name)};")
            out.append("")
        out.append(_SEPARATOR)
        out.append("")

    out += [
        "",
        "COMMIT TRANSACTION;",
        "",
        f"-- Updates generated: {update_count}",
        _RULE,
    ]
    return "\n".join(out), update_count
