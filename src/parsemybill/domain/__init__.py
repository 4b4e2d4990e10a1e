"""Invoice domain types and the extraction schema contract."""

from .models import ExtractedInvoice, FileMetadata, InvoiceRecord, LineItem, StoredFile
from .schema import (
    EDITABLE_FIELDS,
    DataUri,
    extraction_json_schema,
    normalize_partial,
    parse_data_uri,
    parse_extraction_payload,
    to_data_uri,
)

__all__ = [
    "ExtractedInvoice",
    "FileMetadata",
    "InvoiceRecord",
    "LineItem",
    "StoredFile",
    "EDITABLE_FIELDS",
    "DataUri",
    "extraction_json_schema",
    "normalize_partial",
    "parse_data_uri",
    "parse_extraction_payload",
    "to_data_uri",
]
