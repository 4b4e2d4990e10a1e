from __future__ import annotations

import io
import json
from typing import Any, Dict, Union
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from qrcode.image.svg import SvgImage

from ..domain.models import SHARED_HIDDEN_KEYS, InvoiceRecord


def qr_value(invoice: Union[InvoiceRecord, Dict[str, Any]], base_url: str) -> str:
    """Lookup URL for saved invoices, otherwise a JSON data URI of the fields."""
    data = invoice.to_shared_dict() if isinstance(invoice, InvoiceRecord) else dict(invoice)
    for key in SHARED_HIDDEN_KEYS:
        data.pop(key, None)
    record_id = data.get("id")
    if record_id:
        return f"{base_url.rstrip('/')}/invoices/{quote(str(record_id))}"
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"data:application/json;charset=utf-8,{quote(payload, safe='')}"


def render_qr_svg(value: str, *, box_size: int = 10, border: int = 4) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(value)
    qr.make(fit=True)
    img = qr.make_image(image_factory=SvgImage)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()
