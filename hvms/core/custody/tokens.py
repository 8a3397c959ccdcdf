"""
Check-in token issuing.

A check-in token is the string printed as a QR code on the visitor badge.
Scanning it at the ward desk gives back the visitor ID. It is a lookup key,
not a credential: no signature, no secret, just an unambiguous encoding.

Payload format: <tag>:visitor:<visitor_id>, e.g. "HVMS:visitor:42".
The "visitor" kind marker leaves room for other badge types later.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from .errors import TokenRenderingError
from .models import CheckInToken

logger = logging.getLogger(__name__)

VISITOR_KIND = "visitor"


class TokenRenderer(Protocol):
    """
    Protocol for turning a payload into a scannable image.

    Implementations return PNG bytes. Using a protocol keeps the
    qrcode dependency out of the core package.
    """

    def render(self, payload: str) -> bytes:
        ...


def build_payload(tag: str, visitor_id: int) -> str:
    return f"{tag}:{VISITOR_KIND}:{visitor_id}"


def parse_payload(payload: str, tag: str = "HVMS") -> int:
    """
    Recover the visitor ID from a scanned payload.

    Raises ValueError for anything that is not a visitor token with our tag.
    """
    parts = payload.strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"Malformed check-in payload: {payload!r}")

    payload_tag, kind, raw_id = parts
    if payload_tag != tag or kind != VISITOR_KIND:
        raise ValueError(f"Not a {tag} visitor token: {payload!r}")
    # canonical form only: ASCII digits, no sign, no leading zeros
    if not (raw_id.isascii() and raw_id.isdigit()) or raw_id != str(int(raw_id)) or int(raw_id) <= 0:
        raise ValueError(f"Invalid visitor id in payload: {payload!r}")

    return int(raw_id)


class CheckInTokenIssuer:
    """Creates check-in tokens and their rendered images."""

    def __init__(
        self,
        renderer: TokenRenderer,
        tag: str = "HVMS",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not tag or ":" in tag:
            raise ValueError("Token tag must be non-empty and must not contain ':'")
        self._renderer = renderer
        self._tag = tag
        self._clock = clock

    @property
    def tag(self) -> str:
        return self._tag

    def issue(self, visitor_id: int) -> CheckInToken:
        """
        Issue the check-in token for a newly created visitor.

        Rendering failures are raised as TokenRenderingError so the
        registration can be aborted instead of half-committed.
        """
        payload = build_payload(self._tag, visitor_id)

        try:
            image = self._renderer.render(payload)
        except Exception as e:
            logger.error(
                "Failed to render check-in token",
                extra={"visitor_id": visitor_id, "error": str(e)}
            )
            raise TokenRenderingError(f"Check-in token rendering failed: {e}")

        if not image:
            raise TokenRenderingError("Check-in token renderer returned no image")

        return CheckInToken(
            visitor_id=visitor_id,
            issued_at=self._clock(),
            payload=payload,
            rendered_image=image,
        )
