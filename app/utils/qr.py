"""Render chat-session credential artifacts for humans (terminal + panel)."""

from __future__ import annotations

import io
import logging
import sys

import qrcode
import qrcode.image.svg

from app.types.schedule_contract import CredentialArtifact

_LOGGER = logging.getLogger(__name__)


def render_svg(data: str) -> bytes:
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def print_credential(artifact: CredentialArtifact, out=None) -> None:
    """Session ``on_credential`` handler: draw the QR, or log the pairing code."""
    if artifact.type == "pairing_code":
        _LOGGER.info("Pairing code: %s", artifact.value)
        return
    qr = qrcode.QRCode(border=1)
    qr.add_data(artifact.value)
    qr.make(fit=True)
    qr.print_ascii(out=out or sys.stdout, invert=True)
    _LOGGER.info("Scan the QR code above to link the chat session")
