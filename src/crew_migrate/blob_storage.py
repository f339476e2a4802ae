"""crew_migrate.blob_storage

HTTP I/O for the migration: SAS-token blob uploads and media downloads.

Both go through ``request_with_retry`` so they share one policy:
  - up to 3 attempts, exponential backoff (1s, 2s, 4s ... capped)
  - retry only on transport errors (connection reset, timeout) and 5xx
  - never retry a 4xx
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import requests

log = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".pdf": "application/pdf",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

DEFAULT_TIMEOUT = 60
_ERROR_BODY_LIMIT = 500


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass
class RetryPolicy:
    """Exponential backoff shared by every outbound request."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    sleeper: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code >= 500


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    policy: RetryPolicy,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request, retrying transient failures per ``policy``.

    Returns the last response received (which may still be a 5xx once
    attempts are exhausted). Re-raises the last transport error when no
    response was ever received.
    """
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    last_exc: requests.RequestException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        if attempt > 1:
            policy.sleeper(policy.delay_for(attempt - 1))
        try:
            resp = session.request(method, url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_exc = exc
            log.warning("%s %s attempt %d/%d failed: %s",
                        method, _redact(url), attempt, policy.max_attempts, exc)
            continue
        if policy.is_retryable_status(resp.status_code) and attempt < policy.max_attempts:
            log.warning("%s %s attempt %d/%d returned %d",
                        method, _redact(url), attempt, policy.max_attempts, resp.status_code)
            continue
        return resp
    if last_exc is None:
        raise RuntimeError(f"{method} {_redact(url)}: no attempt was made")
    raise last_exc


def _redact(url: str) -> str:
    """Drop the query string so SAS tokens never reach the log."""
    return url.split("?", 1)[0]


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlobStorageConfig:
    base_url: str
    sas_token: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "sas_token", self.sas_token.lstrip("?"))

    def blob_url(self, blob_name: str) -> str:
        return f"{self.base_url}/{blob_name}?{self.sas_token}"


@dataclass(frozen=True)
class UploadResult:
    success: bool
    blob_name: str
    status_code: int | None = None
    error: str | None = None


def content_type_for(path: Path | str) -> str:
    return CONTENT_TYPES.get(os.path.splitext(str(path))[1].lower(), DEFAULT_CONTENT_TYPE)


def upload_to_blob(
    session: requests.Session,
    config: BlobStorageConfig,
    local_path: Path,
    blob_name: str,
    policy: RetryPolicy,
) -> UploadResult:
    """PUT ``local_path`` as a block blob named ``blob_name``."""
    try:
        body = local_path.read_bytes()
    except OSError as exc:
        return UploadResult(False, blob_name, error=f"File not found: {local_path} ({exc})")

    headers = {
        "x-ms-blob-type": "BlockBlob",
        "Content-Type": content_type_for(local_path),
        "Content-Length": str(len(body)),
    }
    try:
        resp = request_with_retry(
            session, "PUT", config.blob_url(blob_name), policy,
            data=body, headers=headers,
        )
    except requests.RequestException as exc:
        return UploadResult(False, blob_name, error=f"network error: {exc}")

    if not 200 <= resp.status_code < 300:
        text = (resp.text or "")[:_ERROR_BODY_LIMIT]
        return UploadResult(False, blob_name, resp.status_code, f"{resp.status_code} - {text}")
    return UploadResult(True, blob_name, resp.status_code)


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DownloadResult:
    success: bool
    path: Path
    status_code: int | None = None
    error: str | None = None


def download_file(
    session: requests.Session,
    url: str,
    dest: Path,
    policy: RetryPolicy,
) -> DownloadResult:
    """Stream ``url`` into ``dest`` via a sibling temp file and rename."""
    tmp = dest.with_name(dest.name + ".part")
    try:
        resp = request_with_retry(session, "GET", url, policy, stream=True)
    except requests.RequestException as exc:
        return DownloadResult(False, dest, error=f"network error: {exc}")

    if resp.status_code != 200:
        resp.close()
        return DownloadResult(False, dest, resp.status_code, f"HTTP {resp.status_code}")

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("wb") as fh:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if chunk:
                    fh.write(chunk)
        os.replace(tmp, dest)
    except (OSError, requests.RequestException) as exc:
        tmp.unlink(missing_ok=True)
        return DownloadResult(False, dest, resp.status_code, str(exc))
    finally:
        resp.close()
    return DownloadResult(True, dest, resp.status_code)
