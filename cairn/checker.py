"""
Link checker: fetch a bookmark's URL once and record whether it is alive.

• one GET, no retries
• 10 s total budget: the caller never waits longer, however slowly the
  server sends headers or body
• at most 1 MiB of body is read and hashed; the rest is dropped
• network-level failures are stored as status 0, never raised
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version

import requests

from cairn import bookmarks
from cairn.bookmarks import FETCH_FAILED

log = logging.getLogger(__name__)

TIMEOUT_SECONDS = 10
MAX_BODY_BYTES = 1 * 1024 * 1024
CHUNK_SIZE = 1024

try:
    USER_AGENT = f"cairn/{version('cairn')} (link checker)"
except PackageNotFoundError:
    USER_AGENT = "cairn/0.1.0-dev (link checker)"


@dataclass
class CheckResult:
    status: int
    content_hash: str | None
    checked_at: datetime

    @property
    def ok(self) -> bool:
        return self.status != FETCH_FAILED


def _download(url: str, timeout: float, max_bytes: int, deadline: float) -> tuple[int, bytes]:
    with requests.get(
        url,
        timeout=timeout,
        stream=True,  # we want to cap download
        allow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    ) as resp:
        raw = bytearray()
        for chunk in resp.iter_content(CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise requests.Timeout(f"no complete response within {timeout}s")
            raw += chunk
            if len(raw) >= max_bytes:
                break
        if time.monotonic() > deadline:
            raise requests.Timeout(f"no complete response within {timeout}s")
        return resp.status_code, bytes(raw[:max_bytes])


def fetch(
    url: str,
    *,
    timeout: float = TIMEOUT_SECONDS,
    max_bytes: int = MAX_BODY_BYTES,
) -> tuple[int, bytes]:
    """
    GET *url* and return ``(status_code, body[:max_bytes])``.
    Raises ``requests.RequestException`` on transport failure, including
    ``requests.Timeout`` once *timeout* seconds have passed in total.

    requests only bounds each socket read, not the whole exchange. The
    download runs on a daemon thread that the caller waits on for at most
    *timeout*; an abandoned worker stops at its next read.
    """
    deadline = time.monotonic() + timeout
    outcome: dict = {}

    def _worker():
        try:
            outcome["result"] = _download(url, timeout, max_bytes, deadline)
        except Exception as exc:  # re-raised on the calling thread below
            outcome["error"] = exc

    thread = threading.Thread(target=_worker, name="cairn-link-check", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        raise requests.Timeout(f"no complete response within {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def check(entry_id: str, *, db) -> CheckResult:
    """Fetch the bookmark's URL and store status, hash and check time."""
    _, bookmark = bookmarks.get_by_id(entry_id, db=db)

    try:
        status, body = fetch(bookmark.url, timeout=TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        log.warning("link check failed for %s (%s): %s", entry_id, bookmark.url, exc)
        status, content_hash = FETCH_FAILED, None
    else:
        content_hash = hashlib.sha256(body).hexdigest()
        log.info("link check %s (%s): HTTP %s", entry_id, bookmark.url, status)

    checked_at = bookmarks.record_check(entry_id, status, content_hash, db=db)
    return CheckResult(status=status, content_hash=content_hash, checked_at=checked_at)
