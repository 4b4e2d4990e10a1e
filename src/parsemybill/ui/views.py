from __future__ import annotations

import posixpath
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..auth.gate import AuthGate, Session
from ..domain.models import InvoiceRecord, Number
from ..errors import NotFoundError
from ..logging import get_logger
from ..storage.service import PersistenceClient


LOG = get_logger("ui-views")

_DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%Y", "%d %b %Y", "%b %d, %Y", "%B %d, %Y")


def filter_records(records: Iterable[InvoiceRecord], term: Optional[str]) -> List[InvoiceRecord]:
    """Case-insensitive match on file name, invoice number and line item descriptions."""
    items = list(records)
    needle = (term or "").strip().lower()
    if not needle:
        return items

    def _matches(record: InvoiceRecord) -> bool:
        if needle in record.file_name.lower():
            return True
        if record.invoice_number and needle in record.invoice_number.lower():
            return True
        return any(needle in item.description.lower() for item in record.line_items or [])

    return [record for record in items if _matches(record)]


def format_currency(amount: Optional[Number]) -> str:
    if amount is None:
        return "N/A"
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_date(value: Optional[str]) -> str:
    """``2024-01-05`` -> ``Jan 05, 2024``; unparseable text is returned as is."""
    if not value:
        return "N/A"
    text = value.strip()
    candidates = [text, text[:10]]
    for candidate in candidates:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).strftime("%b %d, %Y")
            except ValueError:
                continue
    return text


def summarize(record: InvoiceRecord) -> Dict[str, Any]:
    """Row shown in the invoice list."""
    return {
        "id": record.id,
        "fileName": record.file_name,
        "invoiceNumber": record.invoice_number or "N/A",
        "invoiceDate": format_date(record.invoice_date),
        "totalAmount": format_currency(record.total_amount),
        "lineItemCount": len(record.line_items or []),
        "createdAt": format_date(record.created_at),
    }


class InvoiceViews:
    """Owner-scoped list/detail/edit/delete operations for an authenticated session.

    Records owned by another user are reported as not found.
    """

    def __init__(self, persistence: PersistenceClient) -> None:
        self.persistence = persistence

    def list(self, session: Optional[Session], search: Optional[str] = None) -> List[InvoiceRecord]:
        owner_id = AuthGate.require(session)
        records = self.persistence.list_records(owner_id)
        return filter_records(records, search)

    def detail(self, session: Optional[Session], record_id: str) -> InvoiceRecord:
        owner_id = AuthGate.require(session)
        record = self.persistence.fetch_record(record_id)
        if record.user_id != owner_id:
            LOG.warning(f"User {owner_id} requested invoice {record_id} owned by someone else")
            raise NotFoundError("Invoice", record_id)
        return record

    def edit(self, session: Optional[Session], record_id: str, partial: Optional[Dict[str, Any]]) -> InvoiceRecord:
        self.detail(session, record_id)
        self.persistence.update_record(record_id, partial)
        return self.persistence.fetch_record(record_id)

    def delete(self, session: Optional[Session], record_id: str) -> None:
        record = self.detail(session, record_id)
        self.persistence.delete_record(record.id, record.file_path)

    def file_bytes(self, session: Optional[Session], storage_path: str) -> bytes:
        """Bytes of a file attached to one of the session owner's invoices."""
        owner_id = AuthGate.require(session)
        raw = (storage_path or "").replace("\\", "/")
        if ".." in raw.split("/"):
            raise NotFoundError("File", storage_path)
        path = posixpath.normpath(raw.lstrip("/"))
        if tuple(path.split("/")[:2]) != ("users", owner_id):
            raise NotFoundError("File", storage_path)
        owned = {record.file_path for record in self.persistence.list_records(owner_id)}
        if path not in owned:
            LOG.warning(f"User {owner_id} requested file {storage_path} not attached to any of their invoices")
            raise NotFoundError("File", storage_path)
        return self.persistence.read_file(path)
