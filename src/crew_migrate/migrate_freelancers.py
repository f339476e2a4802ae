"""crew_migrate.migrate_freelancers

Unified CLI entrypoint for the crew-directory migration.

Modes (--mode):
  match           join scraped freelancers to vwFreelancersListWEB2 by slug
  download_media  fetch scraped photo / CV / equipment URLs by slug
  rename_media    locate downloaded files by slug and copy to blob-ID names
  remap_ids       re-key WordPress-era blob IDs to database blob IDs
  generate_sql    render import_ready.sql from the matched records
  pipeline        locate + copy + upload + UPDATE every matched record

Secrets are read from environment variables (a .env file in the working
directory is honoured), never from CLI arguments.

Usage (match):
    python -m crew_migrate.migrate_freelancers \\
        --mode match \\
        --scraped-path output/freelancers_complete.json

Usage (pipeline):
    python -m crew_migrate.migrate_freelancers \\
        --mode pipeline \\
        --blob-base-url "https://acct.blob.core.windows.net/freelancers" \\
        --dry-run
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg
from dotenv import load_dotenv

from crew_migrate.blob_storage import BlobStorageConfig, RetryPolicy
from crew_migrate.db_update import DbConnectionError, build_missing_links_document, connect_db
from crew_migrate.pipeline import MediaLayout
from crew_migrate.progress import ProgressLedger
from crew_migrate.records import RecordValidationError, parse_matched_file, parse_scraped_file
from crew_migrate.shared import (
    ErrorLog,
    InputFileError,
    RunCounters,
    format_report,
    load_json_file,
    write_json_atomic,
    write_run_report,
)

MODES = ["match", "download_media", "rename_media", "remap_ids", "generate_sql", "pipeline"]


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_db_flags(db_dsn_env: str, run_id: str) -> str:
    dsn = os.environ.get(db_dsn_env, "")
    if not dsn:
        _fatal(run_id, f"env var {db_dsn_env} must be set for this mode")
    return dsn


def _validate_blob_flags(
    blob_base_url: str | None,
    sas_token_env: str,
    run_id: str,
) -> BlobStorageConfig:
    sas_token = os.environ.get(sas_token_env, "")
    if not blob_base_url:
        _fatal(run_id, "pipeline mode requires: --blob-base-url (or AZURE_BLOB_BASE_URL)")
    if not sas_token:
        _fatal(run_id, f"env var {sas_token_env} must be set for uploads")
    return BlobStorageConfig(base_url=blob_base_url, sas_token=sas_token)  # type: ignore[arg-type]


def _load_scraped(path: Path, run_id: str):
    try:
        return parse_scraped_file(load_json_file(path, "Scraped data"), str(path))
    except (InputFileError, RecordValidationError) as exc:
        _fatal(run_id, str(exc))


def _load_matched(path: Path, run_id: str):
    try:
        return parse_matched_file(load_json_file(path, "Matched data"), str(path))
    except (InputFileError, RecordValidationError) as exc:
        _fatal(run_id, str(exc))


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_report(mode: str, counters: RunCounters, dry_run: bool) -> str:
    c = counters
    sections: list[tuple[str, list[tuple[str, object]]]] = [
        ("Run", [("mode", mode), ("dry_run", dry_run), ("records_read", c.records_read),
                 ("skipped(ckpt)", c.records_skipped_checkpoint)]),
    ]
    if mode == "match":
        sections.append(("Matching", [
            ("canonical_rows", c.canonical_rows_read),
            ("rows_without_slug", c.canonical_rows_without_slug),
            ("slug_collisions", c.slug_collisions),
            ("matched", c.matched),
            ("unmatched", c.unmatched),
        ]))
        sections.append(("Updates Needed", [
            ("new_photos", c.with_new_photo),
            ("new_cvs", c.with_new_cv),
            ("new_equipment", c.with_new_equipment),
            ("bio_updates", c.with_new_bio),
            ("link_updates", c.with_new_links),
        ]))
    if mode == "download_media":
        sections.append(("Download", [
            ("downloaded", c.downloaded),
            ("skipped", c.download_skipped),
            ("failed", c.download_failed),
        ]))
    if mode in ("rename_media", "remap_ids", "pipeline"):
        sections.append(("Files", [
            ("copied", c.files_copied),
            ("already_present", c.files_already_present),
            ("not_found", c.files_not_found),
            ("ambiguous", c.files_ambiguous),
            ("copy_failed", c.copy_failed),
            ("extension_mismatch", c.extension_mismatches),
        ]))
    if mode == "pipeline":
        sections.append(("Upload / Database", [
            ("uploaded", c.uploaded),
            ("upload_failed", c.upload_failed),
            ("uploads_skipped(ckpt)", c.uploads_skipped_checkpoint),
            ("profiles_updated", c.profiles_updated),
            ("profile_update_failed", c.profile_update_failed),
            ("links_updated", c.links_updated),
            ("links_missing", c.links_missing),
            ("link_update_failed", c.link_update_failed),
            ("records_completed", c.records_completed),
            ("records_failed", c.records_failed),
        ]))
    for asset_type, tally in sorted(c.per_asset.items()):
        sections.append((f"Asset: {asset_type}", sorted(tally.items())))
    text = format_report("Crew Migration Run Report", sections)
    if c.warnings:
        text += f"\n\nwarnings ({len(c.warnings)}, first 10):\n" + "\n".join(
            f"  {w}" for w in c.warnings[:10]
        )
    return text


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

def _run_match(
    run_id: str,
    db_dsn: str,
    scraped_path: Path,
    output_dir: Path,
    counters: RunCounters,
) -> None:
    from crew_migrate.slug_match import (
        build_canonical_index,
        build_collision_document,
        build_matched_document,
        fetch_canonical_records,
        match_records,
    )

    scraped = _load_scraped(scraped_path, run_id)
    click.echo(f"[{run_id}] Loaded {len(scraped)} scraped freelancers")

    try:
        conn = connect_db(db_dsn)
    except DbConnectionError as exc:
        _fatal(run_id, str(exc))
    try:
        canonical = fetch_canonical_records(conn)
    except psycopg.Error as exc:
        _fatal(run_id, f"cannot read canonical freelancers: {exc}")
    finally:
        conn.close()
    counters.canonical_rows_read = len(canonical)
    click.echo(f"[{run_id}] Fetched {len(canonical)} freelancers from database")

    index = build_canonical_index(canonical)
    result = match_records(scraped, index, counters)

    matched_path = write_json_atomic(
        output_dir / "freelancers_matched_clean.json",
        build_matched_document(result, len(scraped)),
    )
    click.echo(f"[{run_id}] Saved {len(result.matched)} matched freelancers to {matched_path}")
    if result.unmatched:
        unmatched_path = write_json_atomic(
            output_dir / "freelancers_unmatched.json",
            [u.to_dict() for u in result.unmatched],
        )
        click.echo(f"[{run_id}] Saved {len(result.unmatched)} unmatched freelancers to {unmatched_path}")
    if result.collisions:
        collision_path = write_json_atomic(
            output_dir / "slug_collisions.json", build_collision_document(result)
        )
        click.echo(
            f"[{run_id}] WARNING: {len(result.collisions)} canonical slug collision(s); "
            f"see {collision_path}",
            err=True,
        )


def _run_download_media(
    run_id: str,
    scraped_path: Path,
    media_dir: Path,
    progress_path: Path | None,
    request_delay_seconds: float,
    policy: RetryPolicy,
    counters: RunCounters,
    dry_run: bool,
) -> None:
    from crew_migrate.download_media import DownloadSettings, build_session, run_download

    scraped = _load_scraped(scraped_path, run_id)
    click.echo(f"[{run_id}] Loaded {len(scraped)} scraped freelancers")
    if dry_run:
        wanted = sum(1 for r in scraped for t in ("photo", "cv", "equipment") if r.asset_url(t))
        click.echo(f"[{run_id}] [dry-run] {wanted} media URLs would be downloaded to {media_dir}")
        return

    ledger = ProgressLedger(progress_path or media_dir / "download_progress.json")
    ledger.load()
    if len(ledger):
        click.echo(f"[{run_id}] Progress loaded: {len(ledger)} completed freelancers")
    errors = ErrorLog(media_dir / "download_errors.json")
    settings = DownloadSettings(media_dir=media_dir, request_delay=request_delay_seconds, policy=policy)

    with build_session() as session:
        run_download(session, scraped, settings, ledger, counters, errors)

    if errors.write():
        click.echo(f"[{run_id}] Saved {len(errors)} errors to {errors.path}")
    else:
        ledger.clear()


def _run_rename_media(
    run_id: str,
    matched_path: Path,
    layout: MediaLayout,
    accept_ambiguous: bool,
    counters: RunCounters,
) -> None:
    from crew_migrate.pipeline import run_rename

    records = _load_matched(matched_path, run_id)
    click.echo(f"[{run_id}] Loaded {len(records)} matched freelancers")
    errors = ErrorLog(layout.output_dir / "renaming_errors.json")
    mapping = run_rename(records, layout, counters, errors, accept_ambiguous)

    mapping_path = write_json_atomic(layout.output_dir / "file_mapping.json", mapping)
    click.echo(f"[{run_id}] Saved file mapping to {mapping_path}")
    if errors.write():
        click.echo(f"[{run_id}] Saved {len(errors)} errors to {errors.path}")
        for key, count in sorted(errors.summary().items()):
            click.echo(f"[{run_id}]   {key}: {count}")


def _run_remap_ids(
    run_id: str,
    wordpress_mapping_path: Path,
    matched_path: Path,
    layout: MediaLayout,
    counters: RunCounters,
) -> None:
    from crew_migrate.remap_ids import build_id_mapping, parse_wordpress_mapping, run_remap

    try:
        wordpress = parse_wordpress_mapping(
            load_json_file(wordpress_mapping_path, "WordPress blob_id_mapping.json"),
            str(wordpress_mapping_path),
        )
    except (InputFileError, RecordValidationError) as exc:
        _fatal(run_id, str(exc))
    matched = _load_matched(matched_path, run_id)

    id_mapping, missing = build_id_mapping(wordpress, matched)
    counters.matched = len(id_mapping)
    counters.unmatched = len(missing)
    click.echo(f"[{run_id}] Matched {len(id_mapping)} WordPress freelancers by slug")
    if missing:
        click.echo(f"[{run_id}] WARNING: {len(missing)} WordPress freelancers not in database", err=True)
    write_json_atomic(layout.output_dir / "wordpress_to_database_id_mapping.json", id_mapping)

    errors = ErrorLog(layout.output_dir / "renaming_errors.json")
    file_mapping = run_remap(id_mapping, layout, counters, errors)
    write_json_atomic(layout.output_dir / "file_mapping.json", file_mapping)
    if errors.write():
        click.echo(f"[{run_id}] Saved {len(errors)} errors to {errors.path}")


def _run_generate_sql(
    run_id: str,
    matched_path: Path,
    output_dir: Path,
    counters: RunCounters,
) -> None:
    from crew_migrate.sql_export import render_import_sql

    records = _load_matched(matched_path, run_id)
    counters.records_read = len(records)
    text, update_count = render_import_sql(records)
    sql_path = output_dir / "import_ready.sql"
    sql_path.parent.mkdir(parents=True, exist_ok=True)
    sql_path.write_text(text, encoding="utf-8")
    counters.records_completed = update_count
    click.echo(f"[{run_id}] Generated {sql_path} ({update_count} freelancers with updates)")


def _run_pipeline(
    run_id: str,
    db_dsn: str,
    matched_path: Path,
    layout: MediaLayout,
    output_dir: Path,
    blob_config: BlobStorageConfig | None,
    policy: RetryPolicy,
    progress_path: Path | None,
    accept_ambiguous: bool,
    assume_yes: bool,
    counters: RunCounters,
    dry_run: bool,
) -> None:
    import requests

    from crew_migrate.pipeline import run_pipeline

    records = _load_matched(matched_path, run_id)
    click.echo(f"[{run_id}] Loaded {len(records)} matched freelancers")

    if not dry_run and not assume_yes:
        click.echo(f"[{run_id}] This will upload media to {blob_config.base_url if blob_config else '?'}")
        click.echo(f"[{run_id}] and UPDATE {len(records)} freelancer records in the database.")
        if not click.confirm("Do you want to proceed?", default=False):
            click.echo(f"[{run_id}] Operation cancelled.")
            return

    try:
        conn = connect_db(db_dsn)
    except DbConnectionError as exc:
        _fatal(run_id, str(exc))

    ledger = ProgressLedger(progress_path or output_dir / "update_progress.json", persist=not dry_run)
    ledger.load()
    if len(ledger):
        click.echo(f"[{run_id}] Progress loaded: {len(ledger)} completed freelancers")
    errors = ErrorLog(output_dir / "update_errors.json")

    session = None if dry_run else requests.Session()
    try:
        outcome = run_pipeline(
            conn, records, layout, ledger, counters, errors,
            session=session, blob_config=blob_config, policy=policy,
            accept_ambiguous=accept_ambiguous, dry_run=dry_run,
        )
    except Exception as exc:
        if not conn.closed:
            conn.rollback()
        _fatal(run_id, f"unexpected error during pipeline: {exc}")
    finally:
        if session is not None:
            session.close()
        if not conn.closed:
            conn.close()

    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All database changes rolled back; nothing uploaded.")
    write_json_atomic(layout.output_dir / "file_mapping.json", outcome.file_mapping)
    if errors.write():
        click.echo(f"[{run_id}] Saved {len(errors)} errors to {errors.path}")
    elif not dry_run:
        ledger.clear()
    if outcome.missing_links:
        missing_path = write_json_atomic(
            output_dir / "missing_links_for_insert.json",
            build_missing_links_document(outcome.missing_links),
        )
        click.echo(
            f"[{run_id}] {len(outcome.missing_links)} links need a manual INSERT; see {missing_path}"
        )


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--mode", default="match", type=click.Choice(MODES), show_default=True, help="Migration mode")
@click.option("--db-dsn-env", default="CREW_DB_DSN", show_default=True, help="[match|pipeline] Env var name holding the PostgreSQL DSN")
@click.option("--scraped-path", default="output/freelancers_complete.json", show_default=True, type=click.Path(), help="[match|download_media] Scraped freelancer JSON")
@click.option("--matched-path", default="output/freelancers_matched_clean.json", show_default=True, type=click.Path(), help="[rename_media|remap_ids|generate_sql|pipeline] Matched freelancer JSON")
@click.option("--output-dir", default="output", show_default=True, type=click.Path(), help="Directory for JSON/SQL artifacts")
@click.option("--media-dir", default="downloaded_media_final", show_default=True, type=click.Path(), help="Source media tree (photos/, cvs/, equipment/)")
@click.option("--azure-ready-dir", default="azure_ready_media", show_default=True, type=click.Path(), help="Blob-ID named copies of the source media")
@click.option("--wordpress-mapping-path", default=None, type=click.Path(), help="[remap_ids] WordPress blob_id_mapping.json (default: {media-dir}/blob_id_mapping.json)")
@click.option("--blob-base-url", default=None, help="[pipeline] Container URL; falls back to AZURE_BLOB_BASE_URL")
@click.option("--sas-token-env", default="AZURE_BLOB_SAS_TOKEN", show_default=True, help="[pipeline] Env var name holding the SAS token")
@click.option("--progress-path", default=None, type=click.Path(), help="[download_media|pipeline] Resume ledger path")
@click.option("--request-delay-seconds", default=0.3, type=float, show_default=True, help="[download_media] Delay between downloads")
@click.option("--max-attempts", default=3, type=click.IntRange(min=1), show_default=True, help="Attempts per network request (5xx / transport errors only)")
@click.option("--accept-ambiguous", is_flag=True, default=False, help="[rename_media|pipeline] Use medium-confidence file matches")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="[pipeline] Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--log-level", default="INFO", show_default=True, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--report-dir", default="./artifacts/reports", show_default=True, type=click.Path())
def main(
    mode: str,
    db_dsn_env: str,
    scraped_path: str,
    matched_path: str,
    output_dir: str,
    media_dir: str,
    azure_ready_dir: str,
    wordpress_mapping_path: str | None,
    blob_base_url: str | None,
    sas_token_env: str,
    progress_path: str | None,
    request_delay_seconds: float,
    max_attempts: int,
    accept_ambiguous: bool,
    assume_yes: bool,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
    report_dir: str,
) -> None:
    """Crew-directory migration CLI."""
    load_dotenv()
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = RunCounters()
    policy = RetryPolicy(max_attempts=max_attempts)
    layout = MediaLayout(source_dir=Path(media_dir), output_dir=Path(azure_ready_dir))
    out_dir = Path(output_dir)
    ledger_path = Path(progress_path) if progress_path else None

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "match":
        db_dsn = _validate_db_flags(db_dsn_env, run_id)
        _run_match(run_id, db_dsn, Path(scraped_path), out_dir, counters)
    elif mode == "download_media":
        _run_download_media(
            run_id, Path(scraped_path), Path(media_dir), ledger_path,
            request_delay_seconds, policy, counters, dry_run,
        )
    elif mode == "rename_media":
        _run_rename_media(run_id, Path(matched_path), layout, accept_ambiguous, counters)
    elif mode == "remap_ids":
        wp_path = Path(wordpress_mapping_path) if wordpress_mapping_path else Path(media_dir) / "blob_id_mapping.json"
        _run_remap_ids(run_id, wp_path, Path(matched_path), layout, counters)
    elif mode == "generate_sql":
        _run_generate_sql(run_id, Path(matched_path), out_dir, counters)
    elif mode == "pipeline":
        db_dsn = _validate_db_flags(db_dsn_env, run_id)
        blob_config = None
        if not dry_run:
            blob_config = _validate_blob_flags(
                blob_base_url or os.environ.get("AZURE_BLOB_BASE_URL"), sas_token_env, run_id
            )
        _run_pipeline(
            run_id, db_dsn, Path(matched_path), layout, out_dir, blob_config, policy,
            ledger_path, accept_ambiguous, assume_yes, counters, dry_run,
        )

    click.echo(build_report(mode, counters, dry_run))
    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"scraped_path": scraped_path, "matched_path": matched_path, "media_dir": media_dir},
        counters,
        report_dir=Path(report_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if counters.db_phase_errors > 0 and not dry_run:
        click.echo(
            f"[{run_id}] {counters.db_phase_errors} DB errors; exiting non-zero",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
