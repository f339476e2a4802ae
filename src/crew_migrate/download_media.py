"""crew_migrate.download_media

Fetch every scraped media URL into the local source tree:

    {media_dir}/photos/{slug}{ext}
    {media_dir}/cvs/{slug}{ext}
    {media_dir}/equipment/{slug}{ext}

Files are named by slug so the locator in rename_media / pipeline can find
them by exact_slug. Existing files are skipped. A short delay separates
requests so the legacy host is not hammered. Progress is kept per asset in
download_progress.json and removed after a run with no failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import requests

from crew_migrate.blob_ids import ASSET_PHOTO, ASSET_TYPES
from crew_migrate.blob_storage import RetryPolicy, download_file
from crew_migrate.normalize import extension_from_url
from crew_migrate.pipeline import ASSET_DIRS
from crew_migrate.progress import ProgressLedger
from crew_migrate.records import ScrapedRecord
from crew_migrate.shared import ErrorLog, RunCounters

log = logging.getLogger(__name__)

PHOTO_DEFAULT_EXTENSION = ".jpg"
DOCUMENT_DEFAULT_EXTENSION = ".pdf"
DEFAULT_REQUEST_DELAY = 0.3

USER_AGENT = "crew-migrate/0.1 (+media download)"


@dataclass
class DownloadSettings:
    media_dir: Path
    request_delay: float = DEFAULT_REQUEST_DELAY
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleeper: Callable[[float], None] = field(default=time.sleep, repr=False)


def download_extension(asset_type: str, url: str) -> str:
    ext = extension_from_url(url)
    if ext:
        return ext
    return PHOTO_DEFAULT_EXTENSION if asset_type == ASSET_PHOTO else DOCUMENT_DEFAULT_EXTENSION


def download_target(media_dir: Path, asset_type: str, slug: str, url: str) -> Path:
    return media_dir / ASSET_DIRS[asset_type] / f"{slug.strip().lower()}{download_extension(asset_type, url)}"


def build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def run_download(
    session: requests.Session,
    records: list[ScrapedRecord],
    settings: DownloadSettings,
    ledger: ProgressLedger,
    counters: RunCounters,
    errors: ErrorLog,
) -> None:
    for idx, rec in enumerate(records):
        if ledger.is_done(rec.slug):
            counters.records_skipped_checkpoint += 1
            continue
        counters.records_read += 1
        log.info("[%d/%d] %s (%s)", idx + 1, len(records), rec.name, rec.slug)

        ok = True
        before = len(errors)
        for asset_type in ASSET_TYPES:
            url = rec.asset_url(asset_type)
            if not url:
                continue
            if ledger.is_asset_done(rec.slug, asset_type):
                counters.download_skipped += 1
                continue
            target = download_target(settings.media_dir, asset_type, rec.slug, url)
            if target.exists():
                counters.download_skipped += 1
                counters.bump(asset_type, "already_exists")
                ledger.mark_asset_done(rec.slug, asset_type)
                continue

            result = download_file(session, url, target, settings.policy)
            if result.success:
                counters.downloaded += 1
                counters.bump(asset_type, "downloaded")
                ledger.mark_asset_done(rec.slug, asset_type)
            else:
                ok = False
                counters.download_failed += 1
                counters.bump(asset_type, "download_failed")
                errors.add(rec.name, asset_type, "download_failed",
                           slug=rec.slug, error=result.error, url=url)
                log.error("  %s download failed for %s: %s", asset_type, rec.slug, result.error)
            if settings.request_delay > 0:
                settings.sleeper(settings.request_delay)

        if ok:
            counters.records_completed += 1
        else:
            counters.records_failed += 1
        ledger.finish_record(idx, rec.slug, success=ok, errors=errors.entries[before:])
