from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

Number = Union[int, float]

SHARED_HIDDEN_KEYS = ("userId", "filePath", "fileDownloadUrl")


@dataclass(frozen=True)
class LineItem:
    description: str
    amount: Number

    def as_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "amount": self.amount}


@dataclass
class ExtractedInvoice:
    """The four logical fields the model is asked for; ``None`` means absent."""

    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    line_items: Optional[List[LineItem]] = None
    total_amount: Optional[Number] = None

    def as_dict(self) -> Dict[str, Any]:
        """Wire representation with absent fields omitted (never ``null``)."""
        out: Dict[str, Any] = {}
        if self.invoice_number is not None:
            out["invoiceNumber"] = self.invoice_number
        if self.invoice_date is not None:
            out["invoiceDate"] = self.invoice_date
        if self.line_items is not None:
            out["lineItems"] = [item.as_dict() for item in self.line_items]
        if self.total_amount is not None:
            out["totalAmount"] = self.total_amount
        return out

    def is_empty(self) -> bool:
        return not self.as_dict()


@dataclass(frozen=True)
class StoredFile:
    download_url: str
    storage_path: str


@dataclass(frozen=True)
class FileMetadata:
    """Where the original upload lives; required for every record."""

    file_name: str
    download_url: str
    storage_path: str

    @classmethod
    def from_stored(cls, file_name: str, stored: StoredFile) -> "FileMetadata":
        return cls(file_name=file_name, download_url=stored.download_url, storage_path=stored.storage_path)


@dataclass
class InvoiceRecord:
    id: str
    user_id: str
    file_name: str
    file_download_url: str
    file_path: str
    created_at: str
    updated_at: str
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    line_items: Optional[List[LineItem]] = None
    total_amount: Optional[Number] = None

    @property
    def fields(self) -> ExtractedInvoice:
        return ExtractedInvoice(
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date,
            line_items=list(self.line_items) if self.line_items is not None else None,
            total_amount=self.total_amount,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "fileName": self.file_name,
            "fileDownloadUrl": self.file_download_url,
            "filePath": self.file_path,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        out.update(self.fields.as_dict())
        return out

    def to_public_dict(self) -> Dict[str, Any]:
        """Owner-facing view: everything except the owner identifier."""
        out = self.to_dict()
        out.pop("userId", None)
        return out

    def to_shared_dict(self) -> Dict[str, Any]:
        """View behind shared links and QR codes; no owner id or storage locations."""
        out = self.to_public_dict()
        for key in SHARED_HIDDEN_KEYS:
            out.pop(key, None)
        return out
