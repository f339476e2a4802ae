"""crew_migrate.records

Typed records exchanged between migration modes, plus the parsers that
validate raw JSON at every file-read boundary.

Shapes:
  ScrapedRecord    one freelancer scraped from the legacy site
  CanonicalRecord  one row of vwFreelancersListWEB2
  MatchedRecord    scraped + canonical joined by normalized slug
  BlobAsset        one (freelancer, asset type) storage object

A malformed input raises RecordValidationError naming the file, the index
and the field; nothing downstream ever sees a half-parsed record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from crew_migrate.blob_ids import (
    ASSET_CV,
    ASSET_EQUIPMENT,
    ASSET_PHOTO,
    ASSET_TYPES,
    blob_filename,
    is_blob_id,
)
from crew_migrate.normalize import normalize_email, normalize_slug, trim

LINK_TYPES = ("website", "instagram", "imdb", "linkedin")

# Verification state (PhotoStatusID / CVStatusID / EquipmentListStatusID)
STATUS_NONE = 0
STATUS_TO_BE_VERIFIED = 1
STATUS_VERIFIED = 2
STATUS_REJECTED = 3

# Scraped JSON key for each asset's source URL
URL_KEYS = {
    ASSET_PHOTO: "image_url",
    ASSET_CV: "cv_url",
    ASSET_EQUIPMENT: "equipment_url",
}


class RecordValidationError(ValueError):
    """Raised when an input record does not have the expected shape."""

    def __init__(self, source: str, index: int | None, field_name: str, problem: str) -> None:
        where = f"{source}[{index}]" if index is not None else source
        super().__init__(f"{where}.{field_name}: {problem}")
        self.source = source
        self.index = index
        self.field_name = field_name


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _opt_str(raw: dict[str, Any], key: str, source: str, index: int | None) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RecordValidationError(source, index, key, f"expected string, got {type(value).__name__}")
    return trim(value)


def _req_str(raw: dict[str, Any], key: str, source: str, index: int | None) -> str:
    value = _opt_str(raw, key, source, index)
    if value is None:
        raise RecordValidationError(source, index, key, "required")
    return value


def _req_int(raw: dict[str, Any], key: str, source: str, index: int | None) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise RecordValidationError(source, index, key, f"expected integer, got {value!r}")
    if value < 1:
        raise RecordValidationError(source, index, key, f"must be positive, got {value}")
    return value


def _opt_bool(raw: dict[str, Any], key: str, source: str, index: int | None) -> bool:
    value = raw.get(key, False)
    if not isinstance(value, bool):
        raise RecordValidationError(source, index, key, f"expected boolean, got {value!r}")
    return value


def _freelancer_list(payload: Any, source: str) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("freelancers"), list):
        raise RecordValidationError(source, None, "freelancers", "expected an object with a 'freelancers' list")
    items = payload["freelancers"]
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise RecordValidationError(source, i, "<record>", "expected an object")
    return items


# ---------------------------------------------------------------------------
# ScrapedRecord
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScrapedRecord:
    name: str
    slug: str
    bio: str | None = None
    categories: tuple[str, ...] = ()
    image_url: str | None = None
    cv_url: str | None = None
    equipment_url: str | None = None
    links: dict[str, str] = field(default_factory=dict)

    def asset_url(self, asset_type: str) -> str | None:
        return getattr(self, URL_KEYS[asset_type])

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "slug": self.slug,
            "bio": self.bio,
            "categories": list(self.categories),
            "image_url": self.image_url,
            "cv_url": self.cv_url,
            "equipment_url": self.equipment_url,
        }
        for link_type in LINK_TYPES:
            d[link_type] = self.links.get(link_type)
        return d


def parse_scraped_record(raw: dict[str, Any], source: str, index: int | None = None) -> ScrapedRecord:
    categories = raw.get("categories") or []
    if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
        raise RecordValidationError(source, index, "categories", "expected a list of strings")
    links = {}
    for link_type in LINK_TYPES:
        url = _opt_str(raw, link_type, source, index)
        if url:
            links[link_type] = url
    return ScrapedRecord(
        name=_req_str(raw, "name", source, index),
        slug=_req_str(raw, "slug", source, index),
        bio=_opt_str(raw, "bio", source, index),
        categories=tuple(c.strip() for c in categories if c.strip()),
        image_url=_opt_str(raw, "image_url", source, index),
        cv_url=_opt_str(raw, "cv_url", source, index),
        equipment_url=_opt_str(raw, "equipment_url", source, index),
        links=links,
    )


def parse_scraped_file(payload: Any, source: str) -> list[ScrapedRecord]:
    """Validate a scraped-data document; slugs must be unique within it."""
    records: list[ScrapedRecord] = []
    seen: dict[str, int] = {}
    for i, raw in enumerate(_freelancer_list(payload, source)):
        rec = parse_scraped_record(raw, source, i)
        key = normalize_slug(rec.slug)
        if key in seen:
            raise RecordValidationError(
                source, i, "slug", f"duplicate slug {rec.slug!r} (first at index {seen[key]})"
            )
        seen[key] = i  # type: ignore[index]
        records.append(rec)
    return records


# ---------------------------------------------------------------------------
# CanonicalRecord
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CanonicalRecord:
    freelancer_id: int
    slug: str | None
    display_name: str | None = None
    bio: str | None = None
    email: str | None = None
    photo_blob_id: str | None = None
    cv_blob_id: str | None = None
    equipment_blob_id: str | None = None
    photo_status: int = STATUS_NONE
    cv_status: int = STATUS_NONE


def canonical_from_row(row: tuple[Any, ...]) -> CanonicalRecord:
    """Build a CanonicalRecord from a vwFreelancersListWEB2 row.

    Column order: FreelancerID, DisplayName, Email, Slug, FreelancerBio,
    PhotoBlobID, CVBlobID, EquipmentBlobID, PhotoStatusID, CVStatusID.
    """
    (fid, display_name, email, slug, bio,
     photo_blob, cv_blob, equipment_blob, photo_status, cv_status) = row
    if isinstance(fid, bool) or not isinstance(fid, int) or fid < 1:
        raise RecordValidationError("vwFreelancersListWEB2", None, "FreelancerID", f"invalid value {fid!r}")
    return CanonicalRecord(
        freelancer_id=fid,
        slug=trim(slug),
        display_name=trim(display_name),
        bio=trim(bio),
        email=normalize_email(email),
        photo_blob_id=trim(photo_blob),
        cv_blob_id=trim(cv_blob),
        equipment_blob_id=trim(equipment_blob),
        photo_status=photo_status if photo_status is not None else STATUS_NONE,
        cv_status=cv_status if cv_status is not None else STATUS_NONE,
    )


# ---------------------------------------------------------------------------
# BlobAsset
# ---------------------------------------------------------------------------

@dataclass
class BlobAsset:
    asset_type: str
    blob_id: str
    extension: str | None = None
    original_url: str | None = None
    source_path: str | None = None
    upload_status: str = "pending"

    @property
    def filename(self) -> str:
        return blob_filename(self.blob_id, self.extension)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blob_id": self.blob_id,
            "filename": self.filename,
            "original_url": self.original_url,
            "extension": self.extension,
        }


def parse_blob_asset(
    raw: Any, asset_type: str, source: str, index: int | None
) -> BlobAsset | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise RecordValidationError(source, index, asset_type, "expected an object or null")
    if raw.get("blob_id") is None:
        return None
    blob_id = _req_str(raw, "blob_id", source, index)
    if not is_blob_id(blob_id):
        raise RecordValidationError(source, index, f"{asset_type}.blob_id", f"malformed blob id {blob_id!r}")
    extension = _opt_str(raw, "extension", source, index)
    return BlobAsset(
        asset_type=asset_type,
        blob_id=blob_id,
        extension=extension.lower() if extension else None,
        original_url=_opt_str(raw, "original_url", source, index),
    )


# ---------------------------------------------------------------------------
# MatchedRecord
# ---------------------------------------------------------------------------

@dataclass
class MatchedRecord:
    freelancer_id: int
    name: str
    slug: str
    email: str | None = None
    bio: str | None = None
    categories: tuple[str, ...] = ()
    photo: BlobAsset | None = None
    cv: BlobAsset | None = None
    equipment: BlobAsset | None = None
    links: dict[str, str] = field(default_factory=dict)
    exists_in_db: bool = True
    needs_photo_update: bool = False
    needs_cv_update: bool = False
    needs_equipment_update: bool = False
    needs_bio_update: bool = False
    needs_links_update: bool = False

    def asset(self, asset_type: str) -> BlobAsset | None:
        return getattr(self, asset_type)

    def needs_asset(self, asset_type: str) -> bool:
        return getattr(self, f"needs_{asset_type}_update") and self.asset(asset_type) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "freelancer_id": self.freelancer_id,
            "name": self.name,
            "slug": self.slug,
            "email": self.email,
            "bio": self.bio,
            "categories": list(self.categories),
            "photo": self.photo.to_dict() if self.photo else None,
            "cv": self.cv.to_dict() if self.cv else None,
            "equipment": self.equipment.to_dict() if self.equipment else None,
            "links": {k: self.links.get(k) for k in LINK_TYPES},
            "exists_in_db": self.exists_in_db,
            "needs_photo_update": self.needs_photo_update,
            "needs_cv_update": self.needs_cv_update,
            "needs_equipment_update": self.needs_equipment_update,
            "needs_bio_update": self.needs_bio_update,
            "needs_links_update": self.needs_links_update,
        }


def parse_matched_record(raw: dict[str, Any], source: str, index: int | None = None) -> MatchedRecord:
    links_raw = raw.get("links") or {}
    if not isinstance(links_raw, dict):
        raise RecordValidationError(source, index, "links", "expected an object")
    links = {}
    for link_type in LINK_TYPES:
        url = _opt_str(links_raw, link_type, source, index)
        if url:
            links[link_type] = url
    categories = raw.get("categories") or []
    if not isinstance(categories, list):
        raise RecordValidationError(source, index, "categories", "expected a list")
    return MatchedRecord(
        freelancer_id=_req_int(raw, "freelancer_id", source, index),
        name=_req_str(raw, "name", source, index),
        slug=_req_str(raw, "slug", source, index),
        email=normalize_email(_opt_str(raw, "email", source, index)),
        bio=_opt_str(raw, "bio", source, index),
        categories=tuple(str(c) for c in categories),
        photo=parse_blob_asset(raw.get("photo"), ASSET_PHOTO, source, index),
        cv=parse_blob_asset(raw.get("cv"), ASSET_CV, source, index),
        equipment=parse_blob_asset(raw.get("equipment"), ASSET_EQUIPMENT, source, index),
        links=links,
        exists_in_db=_opt_bool(raw, "exists_in_db", source, index) if "exists_in_db" in raw else True,
        needs_photo_update=_opt_bool(raw, "needs_photo_update", source, index),
        needs_cv_update=_opt_bool(raw, "needs_cv_update", source, index),
        needs_equipment_update=_opt_bool(raw, "needs_equipment_update", source, index),
        needs_bio_update=_opt_bool(raw, "needs_bio_update", source, index),
        needs_links_update=_opt_bool(raw, "needs_links_update", source, index),
    )


def parse_matched_file(payload: Any, source: str) -> list[MatchedRecord]:
    records = [
        parse_matched_record(raw, source, i)
        for i, raw in enumerate(_freelancer_list(payload, source))
    ]
    ids: set[int] = set()
    slugs: dict[str, int] = {}
    for i, rec in enumerate(records):
        if rec.freelancer_id in ids:
            raise RecordValidationError(source, i, "freelancer_id", f"duplicate id {rec.freelancer_id}")
        ids.add(rec.freelancer_id)
        key = normalize_slug(rec.slug)
        if key in slugs:
            raise RecordValidationError(
                source, i, "slug", f"duplicate slug {rec.slug!r} (first at index {slugs[key]})"
            )
        slugs[key] = i  # type: ignore[index]
    return records


__all__ = [
    "ASSET_TYPES",
    "BlobAsset",
    "CanonicalRecord",
    "LINK_TYPES",
    "MatchedRecord",
    "RecordValidationError",
    "ScrapedRecord",
    "STATUS_NONE",
    "STATUS_REJECTED",
    "STATUS_TO_BE_VERIFIED",
    "STATUS_VERIFIED",
    "canonical_from_row",
    "parse_matched_file",
    "parse_scraped_file",
]
