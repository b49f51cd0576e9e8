"""
QR rendering for device provisioning payloads.
"""
import base64
import json
from io import BytesIO
from typing import Any, Dict

import qrcode
from qrcode.constants import ERROR_CORRECT_M

DATA_URL_PREFIX = "data:image/png;base64,"


def encode_payload(payload: Dict[str, Any]) -> str:
    """Compact JSON; the setup wizard parses this string verbatim."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def render_png(data: str, box_size: int = 8, border: int = 2) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_data_url(data: str) -> str:
    """Render ``data`` as a PNG QR code and return it as a data URL."""
    return DATA_URL_PREFIX + base64.b64encode(render_png(data)).decode()
