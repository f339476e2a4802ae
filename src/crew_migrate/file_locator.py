"""crew_migrate.file_locator

Find the source media file for a freelancer slug in a directory of
inconsistently named downloads (WordPress size suffixes, numeric IDs,
"-scaled" copies).

Strategies run from strictest to loosest. The first strategy that yields
any match decides the outcome:
  exactly one match   -> FileMatch (confidence "high")
  several matches     -> AmbiguousFileMatch (confidence "medium"); the
                         preferred candidate is the one whose stem equals
                         the slug, else the shortest filename
  nothing anywhere    -> FileNotFound("no_slug_match")

Ambiguous results are a distinct type so callers must opt in before using
them for an irreversible step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from crew_migrate.normalize import file_stem, strip_slug

log = logging.getLogger(__name__)

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"

REASON_DIRECTORY_NOT_EXIST = "directory_not_exist"
REASON_DIRECTORY_EMPTY = "directory_empty"
REASON_NO_SLUG_MATCH = "no_slug_match"

_MIN_WORD_LENGTH = 3


# ---------------------------------------------------------------------------
# Result variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileMatch:
    path: Path
    filename: str
    strategy: str
    confidence: str = CONFIDENCE_HIGH


@dataclass(frozen=True)
class AmbiguousFileMatch:
    path: Path
    filename: str
    strategy: str
    candidates: tuple[str, ...]
    confidence: str = CONFIDENCE_MEDIUM

    @property
    def warning(self) -> str:
        return f"Multiple matches ({len(self.candidates)}), chose: {self.filename}"


@dataclass(frozen=True)
class FileNotFound:
    reason: str
    files_checked: int = 0


LocateResult = Union[FileMatch, AmbiguousFileMatch, FileNotFound]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

Strategy = Callable[[str, str], bool]


def _exact_slug(filename: str, slug: str) -> bool:
    return file_stem(filename) == slug


def _slug_with_suffix(filename: str, slug: str) -> bool:
    stem = file_stem(filename)
    return stem.startswith(slug + "-") or stem.startswith(slug + "_")


def _slug_anywhere(filename: str, slug: str) -> bool:
    return slug in filename.lower()


def _normalized_slug(filename: str, slug: str) -> bool:
    stripped = strip_slug(slug)
    if not stripped:
        return False
    name = strip_slug(file_stem(filename))
    # startswith(stripped) also covers the "-" suffixed form
    return name == stripped or name.startswith(stripped)


def _partial_slug_words(filename: str, slug: str) -> bool:
    words = [w for w in slug.split("-") if len(w) > _MIN_WORD_LENGTH]
    if not words:
        return False
    lower = filename.lower()
    return all(w in lower for w in words)


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("exact_slug", _exact_slug),
    ("slug_with_suffix", _slug_with_suffix),
    ("slug_anywhere", _slug_anywhere),
    ("normalized_slug", _normalized_slug),
    ("partial_slug_words", _partial_slug_words),
)


# ---------------------------------------------------------------------------
# Locator
# ---------------------------------------------------------------------------

def _preferred(matches: list[str], slug: str) -> list[str]:
    return sorted(matches, key=lambda f: (file_stem(f) != slug, len(f), f))


def list_candidate_files(directory: Path) -> list[str]:
    return sorted(
        p.name for p in directory.iterdir()
        if p.is_file() and not p.name.startswith(".")
    )


def find_file_by_slug(directory: Path, slug: str) -> LocateResult:
    if not directory.is_dir():
        return FileNotFound(REASON_DIRECTORY_NOT_EXIST)
    files = list_candidate_files(directory)
    if not files:
        return FileNotFound(REASON_DIRECTORY_EMPTY)

    target = slug.strip().lower()
    if not target:
        return FileNotFound(REASON_NO_SLUG_MATCH, files_checked=len(files))

    for name, test in STRATEGIES:
        matches = [f for f in files if test(f, target)]
        if len(matches) == 1:
            return FileMatch(directory / matches[0], matches[0], name)
        if matches:
            ordered = _preferred(matches, target)
            result = AmbiguousFileMatch(
                directory / ordered[0], ordered[0], name, tuple(ordered)
            )
            log.warning("Slug %r in %s: %s (strategy %s)", target, directory, result.warning, name)
            return result

    return FileNotFound(REASON_NO_SLUG_MATCH, files_checked=len(files))
