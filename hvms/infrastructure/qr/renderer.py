"""
QR code rendering for check-in tokens.

Uses the qrcode library with its Pillow image backend. The output is PNG
bytes; turning it into a data URL is the domain model's job.
"""

import io
import logging

import qrcode
from qrcode.constants import ERROR_CORRECT_M

logger = logging.getLogger(__name__)


class QrCodeRenderer:
    """
    Renders payloads as PNG QR codes.

    Medium error correction survives a badge being creased or partly
    covered without making the code too dense for cheap desk scanners.
    """

    def __init__(self, box_size: int = 8, border: int = 4) -> None:
        if box_size <= 0 or border < 0:
            raise ValueError("box_size must be positive and border non-negative")
        self._box_size = box_size
        self._border = border

    def render(self, payload: str) -> bytes:
        if not payload:
            raise ValueError("Cannot render an empty payload")

        qr = qrcode.QRCode(
            error_correction=ERROR_CORRECT_M,
            box_size=self._box_size,
            border=self._border,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        image = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        png = buffer.getvalue()

        logger.debug(
            "Rendered QR code",
            extra={"payload_length": len(payload), "size_bytes": len(png)}
        )

        return png


def create_token_renderer() -> QrCodeRenderer:
    """Create the renderer used in production and tests alike."""
    return QrCodeRenderer()
