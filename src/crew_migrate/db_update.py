"""crew_migrate.db_update

UPDATE-only writes against the freelancer tables.

  tblFreelancerWebsiteData       one row per FreelancerID
  tblFreelancerWebsiteDataLinks  (FreelancerID, LinkName, LinkURL)

Nothing here inserts rows. A link UPDATE that touches zero rows is reported
as a MissingLink for a DBA to insert by hand. Every statement runs inside its
own SAVEPOINT so one failing record leaves the surrounding transaction usable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import psycopg

from crew_migrate.blob_ids import ASSET_CV, ASSET_EQUIPMENT, ASSET_PHOTO
from crew_migrate.records import STATUS_VERIFIED, MatchedRecord

log = logging.getLogger(__name__)

PROFILE_TABLE = "tblFreelancerWebsiteData"
LINKS_TABLE = "tblFreelancerWebsiteDataLinks"

# Scraped link key -> LinkName stored in the links table
LINK_NAMES = {
    "website": "Website",
    "instagram": "Instagram",
    "imdb": "Imdb",
    "linkedin": "LinkedIn",
}

# asset type -> (blob id column, status column)
ASSET_COLUMNS = {
    ASSET_PHOTO: ("PhotoBlobID", "PhotoStatusID"),
    ASSET_CV: ("CVBlobID", "CVStatusID"),
    ASSET_EQUIPMENT: ("EquipmentBlobID", "EquipmentListStatusID"),
}

UPDATABLE_COLUMNS = (
    "PhotoBlobID",
    "PhotoStatusID",
    "CVBlobID",
    "CVStatusID",
    "EquipmentBlobID",
    "EquipmentListStatusID",
    "FreelancerBio",
    "Email",
    "DisplayName",
)


class DbConnectionError(Exception):
    """Raised when the database cannot be reached at all."""


def connect_db(dsn: str) -> psycopg.Connection:
    try:
        return psycopg.connect(dsn, autocommit=False)
    except psycopg.Error as exc:
        raise DbConnectionError(f"cannot connect to database: {exc}") from exc


# ---------------------------------------------------------------------------
# Profile update
# ---------------------------------------------------------------------------

@dataclass
class ProfileUpdate:
    freelancer_id: int
    columns: dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.columns)


@dataclass(frozen=True)
class UpdateResult:
    success: bool
    error: str | None = None


def build_profile_update(record: MatchedRecord, uploaded_assets: set[str]) -> ProfileUpdate:
    """Collect the columns to write for one record.

    Only assets named in ``uploaded_assets`` get their blob column (and a
    Verified status) written; absent values never become NULL. Email and
    DisplayName already come from the canonical row, so they are left alone.
    """
    columns: dict[str, Any] = {}
    for asset_type, (blob_col, status_col) in ASSET_COLUMNS.items():
        asset = record.asset(asset_type)
        if asset is not None and asset_type in uploaded_assets:
            columns[blob_col] = asset.blob_id
            columns[status_col] = STATUS_VERIFIED
    if record.needs_bio_update and record.bio:
        columns["FreelancerBio"] = record.bio
    return ProfileUpdate(record.freelancer_id, columns)


def update_profile(conn: psycopg.Connection, update: ProfileUpdate) -> UpdateResult:
    cols = [c for c in UPDATABLE_COLUMNS if update.columns.get(c) is not None]
    if not cols:
        return UpdateResult(True)
    set_clause = ", ".join(f"{c} = %s" for c in cols)
    params = [update.columns[c] for c in cols] + [update.freelancer_id]

    conn.execute("SAVEPOINT profile_update")
    try:
        cur = conn.execute(
            f"UPDATE {PROFILE_TABLE} SET {set_clause} WHERE FreelancerID = %s",
            params,
        )
        conn.execute("RELEASE SAVEPOINT profile_update")
    except psycopg.Error as exc:
        conn.execute("ROLLBACK TO SAVEPOINT profile_update")
        log.error("Profile update for FreelancerID %s failed: %s", update.freelancer_id, exc)
        return UpdateResult(False, str(exc))
    if cur.rowcount == 0:
        return UpdateResult(False, "No rows affected")
    return UpdateResult(True)


# ---------------------------------------------------------------------------
# Link update
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MissingLink:
    freelancer_id: int
    freelancer_name: str | None
    link_name: str
    link_url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "FreelancerID": self.freelancer_id,
            "FreelancerName": self.freelancer_name,
            "LinkName": self.link_name,
            "LinkURL": self.link_url,
        }


@dataclass
class LinkUpdateResult:
    success: bool
    missing_links: list[MissingLink] = field(default_factory=list)
    updated: int = 0
    error: str | None = None


def link_rows(links: dict[str, str]) -> list[tuple[str, str]]:
    """(LinkName, LinkURL) pairs for every non-empty link, in table order."""
    return [
        (LINK_NAMES[key], links[key])
        for key in LINK_NAMES
        if links.get(key)
    ]


def update_links(
    conn: psycopg.Connection,
    freelancer_id: int,
    links: dict[str, str],
    freelancer_name: str | None = None,
) -> LinkUpdateResult:
    result = LinkUpdateResult(success=True)
    rows = link_rows(links)
    if not rows:
        return result

    conn.execute("SAVEPOINT link_update")
    try:
        for link_name, url in rows:
            cur = conn.execute(
                f"""
                UPDATE {LINKS_TABLE}
                SET LinkURL = %s
                WHERE FreelancerID = %s AND LinkName = %s
                """,
                (url, freelancer_id, link_name),
            )
            if cur.rowcount == 0:
                result.missing_links.append(
                    MissingLink(freelancer_id, freelancer_name, link_name, url)
                )
            else:
                result.updated += 1
        conn.execute("RELEASE SAVEPOINT link_update")
    except psycopg.Error as exc:
        conn.execute("ROLLBACK TO SAVEPOINT link_update")
        log.error("Link update for FreelancerID %s failed: %s", freelancer_id, exc)
        return LinkUpdateResult(False, error=str(exc))
    return result


def build_missing_links_document(missing: list[MissingLink]) -> dict[str, Any]:
    return {
        "generated_at": datetime.utcnow().isoformat(),
        "total_missing": len(missing),
        "description": "Links that need to be manually inserted by DB developer",
        "table": LINKS_TABLE,
        "columns": ["FreelancerID", "LinkName", "LinkURL"],
        "missing_links": [m.to_dict() for m in missing],
    }
