from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from ..logging import get_logger
from .models import ExtractedInvoice, LineItem, Number


LOG = get_logger("schema")

EDITABLE_FIELDS = ("invoiceNumber", "invoiceDate", "lineItems", "totalAmount")

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w-]+=[\w.-]+)*);base64,(?P<data>.*)$", re.DOTALL)
_ISO_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]\d{2}:\d{2}")
_AMOUNT_STRIP_RE = re.compile(r"[\s$€£¥,]")


@dataclass(frozen=True)
class DataUri:
    mime_type: str
    data: bytes

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"


def extraction_json_schema() -> Dict[str, Any]:
    """JSON schema of the model output. Every field is optional."""
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "invoiceNumber": {
                "type": "string",
                "description": "The unique identifier for the invoice.",
            },
            "invoiceDate": {
                "type": "string",
                "description": (
                    "The date the invoice was issued, preferably in YYYY-MM-DD format. "
                    "If not possible, use the format as it appears on the invoice."
                ),
            },
            "lineItems": {
                "type": "array",
                "description": "An array of all line items. Each item should have a description and an amount.",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["description", "amount"],
                    "properties": {
                        "description": {
                            "type": "string",
                            "description": "Detailed description of the service or product for the line item.",
                        },
                        "amount": {
                            "type": "number",
                            "description": "The numerical cost for this specific line item.",
                        },
                    },
                },
            },
            "totalAmount": {
                "type": "number",
                "description": "The final total amount due on the invoice.",
            },
        },
    }


# ---------- input contract ----------
def parse_data_uri(uri: Any) -> DataUri:
    """Decode ``data:<mime>;base64,<payload>`` accepting PDFs and images only."""
    if not isinstance(uri, str) or not uri.strip():
        raise ValidationError("Invoice document data URI is required")
    match = _DATA_URI_RE.match(uri.strip())
    if not match:
        raise ValidationError("Invoice document must be a base64 data URI ('data:<mimetype>;base64,<encoded_data>')")
    mime = match.group("mime").lower()
    if mime != "application/pdf" and not mime.startswith("image/"):
        raise ValidationError(f"Unsupported document type: {mime}", {"mime_type": mime})
    try:
        data = base64.b64decode("".join(match.group("data").split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invoice document payload is not valid base64") from exc
    if not data:
        raise ValidationError("Invoice document payload is empty")
    return DataUri(mime_type=mime, data=data)


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


# ---------- field coercion ----------
def _norm_s(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", {"field": field, "value": repr(value)})
    return value.strip() or None


def _amount(value: Any, field: str, *, allow_text: bool) -> Optional[Number]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {"field": field, "value": repr(value)})
    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValidationError(f"{field} must be a finite number", {"field": field})
        return value
    if allow_text and isinstance(value, str):
        cleaned = _AMOUNT_STRIP_RE.sub("", value)
        if not cleaned:
            return None
        try:
            parsed = float(cleaned)
        except ValueError:
            raise ValidationError(f"{field} must be a number", {"field": field, "value": value})
        return int(parsed) if parsed.is_integer() and "." not in cleaned else parsed
    raise ValidationError(f"{field} must be a number", {"field": field, "value": repr(value)})


def normalize_invoice_date(value: Any) -> Optional[str]:
    """Store invoice dates as strings only.

    Date/datetime objects and ISO timestamps collapse to ``YYYY-MM-DD``;
    any other text is kept as it appears on the invoice.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = _norm_s(value, "invoiceDate")
    if text is None:
        return None
    m = _ISO_DATETIME_RE.match(text)
    if m:
        return m.group(1)
    return text


def _line_items(value: Any, *, allow_text: bool) -> Optional[List[LineItem]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError("lineItems must be a list", {"field": "lineItems"})
    items: List[LineItem] = []
    for idx, raw in enumerate(value):
        if isinstance(raw, LineItem):
            items.append(raw)
            continue
        if not isinstance(raw, dict):
            raise ValidationError(f"lineItems[{idx}] must be an object")
        description = _norm_s(raw.get("description"), f"lineItems[{idx}].description")
        if description is None:
            raise ValidationError(f"lineItems[{idx}].description required")
        amount = _amount(raw.get("amount"), f"lineItems[{idx}].amount", allow_text=allow_text)
        if amount is None:
            raise ValidationError(f"lineItems[{idx}].amount required")
        items.append(LineItem(description=description, amount=amount))
    return items or None


def normalize_field(key: str, value: Any, *, allow_text: bool = False) -> Any:
    """Validate one editable wire field; returns ``None`` when it should be absent."""
    if key == "invoiceNumber":
        return _norm_s(value, key)
    if key == "invoiceDate":
        return normalize_invoice_date(value)
    if key == "lineItems":
        return _line_items(value, allow_text=allow_text)
    if key == "totalAmount":
        return _amount(value, key, allow_text=allow_text)
    raise ValidationError(f"Field '{key}' cannot be edited", {"field": key, "editable": list(EDITABLE_FIELDS)})


def normalize_partial(partial: Any) -> Dict[str, Any]:
    """Validate a partial update keyed by wire names.

    The result keeps every key that was supplied; a ``None`` value means the
    field is to be removed from the record.
    """
    if partial is None:
        return {}
    if not isinstance(partial, dict):
        raise ValidationError("Update must be an object of invoice fields")
    return {key: normalize_field(key, value, allow_text=True) for key, value in partial.items()}


# ---------- output contract ----------
def parse_extraction_payload(payload: Any) -> ExtractedInvoice:
    """Validate model output against the extraction schema.

    Unknown keys are ignored; ``null`` and blank values count as omitted.
    Wrongly typed values raise ValidationError; nothing is backfilled.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Extraction output must be a JSON object")
    extra = sorted(k for k in payload.keys() if k not in EDITABLE_FIELDS)
    if extra:
        LOG.debug("Ignoring unexpected extraction keys: %s", extra)
    result = ExtractedInvoice(
        invoice_number=_norm_s(payload.get("invoiceNumber"), "invoiceNumber"),
        invoice_date=_norm_s(payload.get("invoiceDate"), "invoiceDate"),
        line_items=_line_items(payload.get("lineItems"), allow_text=False),
        total_amount=_amount(payload.get("totalAmount"), "totalAmount", allow_text=False),
    )
    LOG.debug("Validated extraction output with fields: %s", list(result.as_dict().keys()))
    return result
