"""
Check-in token rendering.

Implements the TokenRenderer protocol from core.custody.tokens.
"""

from .renderer import QrCodeRenderer, create_token_renderer

__all__ = ["QrCodeRenderer", "create_token_renderer"]
