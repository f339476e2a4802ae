"""crew_migrate.slug_match

Join scraped freelancers to canonical database rows by normalized slug.

Every scraped record ends up in exactly one of ``matched`` or ``unmatched``.
Canonical slugs shared by more than one FreelancerID are collisions: they are
dropped from the index and reported, and any scraped record that would have
joined on them is routed to ``unmatched`` for manual resolution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import psycopg

from crew_migrate.blob_ids import (
    ASSET_TYPES,
    BlobIdOverflowError,
    generate_blob_id,
)
from crew_migrate.normalize import extension_from_url, normalize_slug
from crew_migrate.records import (
    BlobAsset,
    CanonicalRecord,
    MatchedRecord,
    ScrapedRecord,
    canonical_from_row,
)
from crew_migrate.shared import RunCounters

log = logging.getLogger(__name__)

CANONICAL_VIEW = "vwFreelancersListWEB2"

REASON_SLUG_NOT_FOUND = "slug_not_found"
REASON_SLUG_COLLISION = "canonical_slug_collision"
REASON_BLOB_ID_OVERFLOW = "blob_id_overflow"


# ---------------------------------------------------------------------------
# Canonical side
# ---------------------------------------------------------------------------

def fetch_canonical_records(conn: psycopg.Connection) -> list[CanonicalRecord]:
    rows = conn.execute(
        f"""
        SELECT FreelancerID, DisplayName, Email, Slug, FreelancerBio,
               PhotoBlobID, CVBlobID, EquipmentBlobID, PhotoStatusID, CVStatusID
        FROM {CANONICAL_VIEW}
        ORDER BY FreelancerID
        """
    ).fetchall()
    return [canonical_from_row(r) for r in rows]


@dataclass
class CanonicalIndex:
    by_slug: dict[str, CanonicalRecord] = field(default_factory=dict)
    collisions: dict[str, list[int]] = field(default_factory=dict)
    skipped_without_slug: int = 0


def build_canonical_index(records: list[CanonicalRecord]) -> CanonicalIndex:
    """Index canonical rows by normalized slug; collisions are kept apart."""
    grouped: dict[str, list[CanonicalRecord]] = {}
    skipped = 0
    for rec in records:
        key = normalize_slug(rec.slug)
        if key is None:
            skipped += 1
            continue
        grouped.setdefault(key, []).append(rec)

    index = CanonicalIndex(skipped_without_slug=skipped)
    for key, group in grouped.items():
        if len(group) == 1:
            index.by_slug[key] = group[0]
        else:
            ids = sorted(r.freelancer_id for r in group)
            index.collisions[key] = ids
            log.warning("Canonical slug %r is shared by FreelancerIDs %s; excluded from matching", key, ids)
    return index


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclass
class UnmatchedRecord:
    record: ScrapedRecord
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.record.name,
            "slug": self.record.slug,
            "email": None,
            "categories": list(self.record.categories),
            "reason": self.reason,
        }


@dataclass
class MatchResult:
    matched: list[MatchedRecord] = field(default_factory=list)
    unmatched: list[UnmatchedRecord] = field(default_factory=list)
    collisions: dict[str, list[int]] = field(default_factory=dict)


def build_matched_record(scraped: ScrapedRecord, canonical: CanonicalRecord) -> MatchedRecord:
    """Merge one scraped record with its canonical row.

    Raises BlobIdOverflowError when the FreelancerID cannot be encoded.
    """
    assets: dict[str, BlobAsset | None] = {}
    for asset_type in ASSET_TYPES:
        url = scraped.asset_url(asset_type)
        if url:
            assets[asset_type] = BlobAsset(
                asset_type=asset_type,
                blob_id=generate_blob_id(asset_type, canonical.freelancer_id),
                extension=extension_from_url(url),
                original_url=url,
            )
        else:
            assets[asset_type] = None

    return MatchedRecord(
        freelancer_id=canonical.freelancer_id,
        name=scraped.name,
        slug=scraped.slug,
        email=canonical.email,
        bio=scraped.bio,
        categories=scraped.categories,
        photo=assets["photo"],
        cv=assets["cv"],
        equipment=assets["equipment"],
        links=dict(scraped.links),
        exists_in_db=True,
        needs_photo_update=bool(scraped.image_url),
        needs_cv_update=bool(scraped.cv_url),
        needs_equipment_update=bool(scraped.equipment_url),
        needs_bio_update=bool(scraped.bio) and scraped.bio != canonical.bio,
        needs_links_update=bool(scraped.links),
    )


def match_records(
    scraped: list[ScrapedRecord],
    index: CanonicalIndex,
    counters: RunCounters | None = None,
) -> MatchResult:
    result = MatchResult(collisions=dict(index.collisions))
    for rec in scraped:
        key = normalize_slug(rec.slug)
        canonical = index.by_slug.get(key) if key else None
        if canonical is None:
            if key in index.collisions:
                ids = ",".join(str(i) for i in index.collisions[key])
                reason = f"{REASON_SLUG_COLLISION}:ids={ids}"
            else:
                reason = REASON_SLUG_NOT_FOUND
            result.unmatched.append(UnmatchedRecord(rec, reason))
            log.info("Unmatched %s (%s): %s", rec.name, rec.slug, reason)
            continue
        try:
            matched = build_matched_record(rec, canonical)
        except BlobIdOverflowError:
            reason = f"{REASON_BLOB_ID_OVERFLOW}:freelancer_id={canonical.freelancer_id}"
            result.unmatched.append(UnmatchedRecord(rec, reason))
            log.warning("Unmatched %s (%s): %s", rec.name, rec.slug, reason)
            continue
        result.matched.append(matched)

    if counters is not None:
        counters.records_read += len(scraped)
        counters.matched += len(result.matched)
        counters.unmatched += len(result.unmatched)
        counters.slug_collisions += len(result.collisions)
        counters.canonical_rows_without_slug += index.skipped_without_slug
        for m in result.matched:
            counters.with_new_photo += m.needs_photo_update
            counters.with_new_cv += m.needs_cv_update
            counters.with_new_equipment += m.needs_equipment_update
            counters.with_new_bio += m.needs_bio_update
            counters.with_new_links += m.needs_links_update
    return result


# ---------------------------------------------------------------------------
# Output documents
# ---------------------------------------------------------------------------

def match_statistics(result: MatchResult, total: int) -> dict[str, int]:
    m = result.matched
    return {
        "total": total,
        "matched": len(m),
        "unmatched": len(result.unmatched),
        "slug_collisions": len(result.collisions),
        "with_new_photo": sum(r.needs_photo_update for r in m),
        "with_new_cv": sum(r.needs_cv_update for r in m),
        "with_new_equipment": sum(r.needs_equipment_update for r in m),
        "with_new_bio": sum(r.needs_bio_update for r in m),
        "with_new_links": sum(r.needs_links_update for r in m),
    }


def build_matched_document(result: MatchResult, total: int) -> dict[str, Any]:
    return {
        "generated_at": datetime.utcnow().isoformat(),
        "total_freelancers": len(result.matched),
        "statistics": match_statistics(result, total),
        "freelancers": [m.to_dict() for m in result.matched],
    }


def build_collision_document(result: MatchResult) -> list[dict[str, Any]]:
    return [
        {"slug": slug, "freelancer_ids": ids}
        for slug, ids in sorted(result.collisions.items())
    ]
