"""
Unit tests for check-in tokens and QR rendering.
"""

from datetime import datetime, timezone

import pytest

from hvms.core.custody.errors import TokenRenderingError
from hvms.core.custody.tokens import CheckInTokenIssuer, build_payload, parse_payload
from hvms.infrastructure.qr.renderer import QrCodeRenderer

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
ISSUED_AT = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class RecordingRenderer:
    """Renderer stub that remembers what it was asked to draw."""

    def __init__(self) -> None:
        self.payloads: list[str] = []

    def render(self, payload: str) -> bytes:
        self.payloads.append(payload)
        return PNG_MAGIC + payload.encode()


class BrokenRenderer:
    def render(self, payload: str) -> bytes:
        raise RuntimeError("encoder crashed")


class EmptyRenderer:
    def render(self, payload: str) -> bytes:
        return b""


# ---------------------------------------------------------------------------
# Payload Format Tests
# ---------------------------------------------------------------------------

class TestPayload:
    """Tests for the <tag>:<kind>:<id> payload format."""

    def test_payload_format(self):
        assert build_payload("HVMS", 42) == "HVMS:visitor:42"

    def test_parse_round_trips(self):
        assert parse_payload("HVMS:visitor:42") == 42

    @pytest.mark.parametrize("payload", [
        "",
        "HVMS:visitor",
        "HVMS:visitor:42:extra",
        "OTHER:visitor:42",
        "HVMS:staff:42",
        "HVMS:visitor:abc",
        "HVMS:visitor:0",
        "HVMS:visitor:-3",
        "HVMS:visitor:007",
        "HVMS:visitor:٧",
        "HVMS:visitor:+7",
    ])
    def test_parse_rejects_anything_else(self, payload):
        with pytest.raises(ValueError):
            parse_payload(payload)

    def test_parse_respects_custom_tag(self):
        assert parse_payload("WARD7:visitor:5", tag="WARD7") == 5


# ---------------------------------------------------------------------------
# Issuer Tests
# ---------------------------------------------------------------------------

class TestCheckInTokenIssuer:
    """Tests for issuing tokens."""

    def test_issue_builds_token_from_renderer_output(self):
        renderer = RecordingRenderer()
        issuer = CheckInTokenIssuer(renderer, clock=lambda: ISSUED_AT)

        token = issuer.issue(42)

        assert token.visitor_id == 42
        assert token.payload == "HVMS:visitor:42"
        assert token.issued_at == ISSUED_AT
        assert token.rendered_image.startswith(PNG_MAGIC)
        assert renderer.payloads == ["HVMS:visitor:42"]

    def test_data_url_is_base64_png(self):
        token = CheckInTokenIssuer(RecordingRenderer()).issue(1)

        assert token.data_url.startswith("data:image/png;base64,")

    def test_each_visitor_gets_a_distinct_payload(self):
        issuer = CheckInTokenIssuer(RecordingRenderer())

        assert issuer.issue(1).payload != issuer.issue(11).payload

    def test_renderer_failure_becomes_token_rendering_error(self):
        issuer = CheckInTokenIssuer(BrokenRenderer())

        with pytest.raises(TokenRenderingError, match="encoder crashed"):
            issuer.issue(1)

    def test_empty_rendering_is_a_failure(self):
        with pytest.raises(TokenRenderingError):
            CheckInTokenIssuer(EmptyRenderer()).issue(1)

    @pytest.mark.parametrize("tag", ["", "HV:MS"])
    def test_rejects_ambiguous_tags(self, tag):
        with pytest.raises(ValueError):
            CheckInTokenIssuer(RecordingRenderer(), tag=tag)


# ---------------------------------------------------------------------------
# QR Rendering Tests
# ---------------------------------------------------------------------------

class TestQrCodeRenderer:
    """Tests for the qrcode-backed renderer."""

    def test_renders_png(self):
        png = QrCodeRenderer().render("HVMS:visitor:42")

        assert png.startswith(PNG_MAGIC)
        assert len(png) > 100

    def test_rejects_empty_payload(self):
        with pytest.raises(ValueError):
            QrCodeRenderer().render("")

    def test_issuer_with_real_renderer(self):
        token = CheckInTokenIssuer(QrCodeRenderer()).issue(7)

        assert token.rendered_image.startswith(PNG_MAGIC)
