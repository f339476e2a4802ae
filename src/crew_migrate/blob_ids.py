"""crew_migrate.blob_ids

Deterministic storage identifiers for freelancer assets.

A blob ID is the asset prefix followed by the canonical FreelancerID
zero-padded to six digits: photo 1152 -> "P001152". The stored object name
appends the original file extension ("P001152.jpg"). Both are pure functions
of their inputs so re-runs always target the same blob.
"""

from __future__ import annotations

import re

ASSET_PHOTO = "photo"
ASSET_CV = "cv"
ASSET_EQUIPMENT = "equipment"

# Processing order is fixed: photo, cv, equipment.
ASSET_TYPES = (ASSET_PHOTO, ASSET_CV, ASSET_EQUIPMENT)

BLOB_PREFIXES = {
    ASSET_PHOTO: "P",
    ASSET_CV: "C",
    ASSET_EQUIPMENT: "E",
}

BLOB_ID_DIGITS = 6
MAX_FREELANCER_ID = 10 ** BLOB_ID_DIGITS - 1

_BLOB_ID_RE = re.compile(r"^[PCE]\d{6}$")


class BlobIdOverflowError(ValueError):
    """Raised when a FreelancerID does not fit the fixed-width blob ID format."""


def generate_blob_id(asset_type: str, freelancer_id: int) -> str:
    """Return the blob ID for (asset_type, freelancer_id).

    Raises:
        ValueError: unknown asset_type.
        BlobIdOverflowError: freelancer_id outside 1..999999.
    """
    prefix = BLOB_PREFIXES.get(asset_type)
    if prefix is None:
        raise ValueError(f"unknown asset type: {asset_type!r}")
    if isinstance(freelancer_id, bool) or not isinstance(freelancer_id, int):
        raise ValueError(f"freelancer_id must be an int, got {freelancer_id!r}")
    if freelancer_id < 1 or freelancer_id > MAX_FREELANCER_ID:
        raise BlobIdOverflowError(
            f"freelancer_id {freelancer_id} does not fit a "
            f"{BLOB_ID_DIGITS}-digit blob ID"
        )
    return f"{prefix}{freelancer_id:0{BLOB_ID_DIGITS}d}"


def blob_filename(blob_id: str, extension: str | None) -> str:
    """Object name stored in blob storage: blob ID + original extension."""
    return f"{blob_id}{extension or ''}"


def is_blob_id(value: str | None) -> bool:
    return bool(value) and bool(_BLOB_ID_RE.match(value))  # type: ignore[arg-type]
