"""Normalization functions for crew-directory migration inputs.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import posixpath
import re
import unicodedata
import urllib.parse


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address."""
    v = trim(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 4: normalize_slug  (index key for slug joins)
# ---------------------------------------------------------------------------

def normalize_slug(value: str | None) -> str | None:
    """Lowercase and trim a web slug.

    This is the only transformation applied before a slug join; punctuation
    is kept so that "jane-doe" and "janedoe" stay distinct freelancers.
    """
    v = trim(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 5: strip_slug  (loose comparison form for file matching)
# ---------------------------------------------------------------------------

def strip_slug(value: str | None) -> str:
    """Lowercase and drop every character outside [a-z0-9-]."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9-]", "", value.lower())


# ---------------------------------------------------------------------------
# Rule 6: slug_name
# ---------------------------------------------------------------------------

def slug_name(value: str | None) -> str | None:
    """Lowercase alnum with '-' separators, accents folded."""
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9]+", "-", v)
    v = v.strip("-")
    return v if v else None


# ---------------------------------------------------------------------------
# Extension helpers
# ---------------------------------------------------------------------------

def extension_from_url(url: str | None) -> str | None:
    """Return the lowercased extension ('.jpg') of a URL path, or None.

    Query strings and fragments are ignored; unparseable URLs give None.
    """
    v = trim(url)
    if not v:
        return None
    try:
        path = urllib.parse.urlparse(v).path
    except ValueError:
        return None
    ext = posixpath.splitext(urllib.parse.unquote(path))[1].lower()
    return ext or None


def extension_from_filename(filename: str | None) -> str | None:
    """Return the lowercased extension of a bare filename, or None."""
    v = trim(filename)
    if not v:
        return None
    ext = posixpath.splitext(v)[1].lower()
    return ext or None


def file_stem(filename: str) -> str:
    """Lowercased filename without its final extension."""
    return posixpath.splitext(filename)[0].lower()
