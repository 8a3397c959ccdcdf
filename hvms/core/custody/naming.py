"""
Object name allocation for identity proofs.

Names look like:

    visitor-42/20261019T101500123456Z-9f1c0d...e2-my_id.png

The owner prefix keeps one visitor's uploads together, the timestamp keeps
listings roughly chronological, and the 128-bit random component is what
actually guarantees uniqueness. Two uploads in the same microsecond for the
same visitor still get different names, and a name is never handed out twice.
"""

import re
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

FALLBACK_FILENAME = "upload"
MAX_FILENAME_LENGTH = 64

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(original_filename: Optional[str]) -> str:
    """
    Reduce a client-supplied filename to characters safe in a storage key.

    Never fails: empty or fully-unsafe names become FALLBACK_FILENAME.
    """
    if not original_filename:
        return FALLBACK_FILENAME

    # Browsers on Windows sometimes send the full client path
    basename = re.split(r"[\\/]", original_filename)[-1]

    cleaned = _WHITESPACE.sub("_", basename.strip())
    cleaned = _UNSAFE.sub("", cleaned)
    cleaned = cleaned.lstrip(".")

    if len(cleaned) > MAX_FILENAME_LENGTH:
        # keep the extension when truncating
        stem, dot, ext = cleaned.rpartition(".")
        if dot and stem and len(ext) < 10:
            cleaned = stem[:MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            cleaned = cleaned[:MAX_FILENAME_LENGTH]

    return cleaned or FALLBACK_FILENAME


class NameAllocator:
    """
    Derives opaque, collision-resistant object names.

    The clock and the unique source are injectable so tests can pin them;
    production uses UTC wall clock plus uuid4. No I/O happens here.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        unique_source: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._clock = clock
        self._unique_source = unique_source

    def allocate(
        self,
        owner_id: int,
        original_filename: Optional[str],
        now: Optional[datetime] = None,
    ) -> str:
        """Return a fresh object name for an upload owned by owner_id."""
        if isinstance(owner_id, bool) or not isinstance(owner_id, int) or owner_id <= 0:
            raise ValueError(f"owner_id must be a positive integer, got {owner_id!r}")

        now = now or self._clock()
        # naive values are taken as UTC; the stamp always ends in Z
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        now = now.astimezone(timezone.utc)
        stamp = now.strftime("%Y%m%dT%H%M%S%fZ")

        return (
            f"visitor-{owner_id}/"
            f"{stamp}-{self._unique_source()}-{sanitize_filename(original_filename)}"
        )
