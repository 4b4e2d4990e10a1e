from __future__ import annotations

import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..config import Settings
from ..domain.models import ExtractedInvoice, FileMetadata, InvoiceRecord, StoredFile
from ..domain.schema import EDITABLE_FIELDS, normalize_field, normalize_partial
from ..errors import (
    NotFoundError,
    OrphanedFileError,
    PersistenceError,
    UploadError,
    ValidationError,
)
from ..logging import get_logger
from .db import DocumentDatabase
from .objects import FileObjectStore


LOG = get_logger("persistence")

INVOICES_COLLECTION = "invoices"
STORAGE_PATH_TEMPLATE = "users/{owner_id}/invoices/{millis}_{filename}"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def clean_filename(filename: str) -> str:
    """Basename of an uploaded file name, with either path separator."""
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    return name.replace("\x00", "")


# ---------- serialization (the only place documents are built or read) ----------
def record_to_document(record: InvoiceRecord) -> Dict[str, Any]:
    """Stored document body; absent optional fields are omitted."""
    body = record.to_dict()
    body.pop("id", None)
    return body


def apply_fields(body: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """Merge normalized wire fields into a document; ``None`` removes the key."""
    for key, value in fields.items():
        if value is None:
            body.pop(key, None)
        elif key == "lineItems":
            body[key] = [item.as_dict() for item in value]
        else:
            body[key] = value
    return body


def document_to_record(doc_id: str, body: Dict[str, Any]) -> InvoiceRecord:
    try:
        extracted = {key: normalize_field(key, body.get(key), allow_text=True) for key in EDITABLE_FIELDS}
    except ValidationError as exc:
        raise PersistenceError(f"Stored invoice {doc_id} is malformed: {exc.message}", {"id": doc_id}) from exc
    try:
        return InvoiceRecord(
            id=doc_id,
            user_id=body["userId"],
            file_name=body["fileName"],
            file_download_url=body["fileDownloadUrl"],
            file_path=body["filePath"],
            created_at=body["createdAt"],
            updated_at=body["updatedAt"],
            invoice_number=extracted["invoiceNumber"],
            invoice_date=extracted["invoiceDate"],
            line_items=extracted["lineItems"],
            total_amount=extracted["totalAmount"],
        )
    except KeyError as exc:
        raise PersistenceError(f"Stored invoice {doc_id} is missing {exc.args[0]}", {"id": doc_id}) from exc


class PersistenceClient:
    """Invoice records in the document database plus their files in the object store."""

    def __init__(self, db: DocumentDatabase, store: FileObjectStore, *, clock: Optional[Clock] = None) -> None:
        self.db = db
        self.store = store
        self._clock = clock or _utc_now

    # ---------- files ----------
    def upload_file(self, data: bytes, owner_id: str, filename: str) -> StoredFile:
        if not owner_id:
            raise ValidationError("Owner ID is required to upload a file")
        clean = clean_filename(filename)
        if not clean:
            raise ValidationError("File name is required to upload a file")
        if not data:
            raise ValidationError("Cannot upload an empty file", {"filename": clean})

        millis = int(self._clock().timestamp() * 1000)
        storage_path = STORAGE_PATH_TEMPLATE.format(owner_id=owner_id, millis=millis, filename=clean)
        try:
            url = self.store.put(storage_path, data)
        except (OSError, ValueError) as exc:
            LOG.error(f"Upload of {clean} failed: {exc}")
            raise UploadError(f"Failed to store file {clean}: {exc}", {"storage_path": storage_path}) from exc
        return StoredFile(download_url=url, storage_path=storage_path)

    def read_file(self, storage_path: str) -> bytes:
        try:
            return self.store.get(storage_path)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Failed to read file {storage_path}: {exc}") from exc

    # ---------- records ----------
    def create_record(self, owner_id: str, file_metadata: FileMetadata, extracted: ExtractedInvoice) -> str:
        if not owner_id:
            raise ValidationError("User ID is required to save invoice metadata")
        if not file_metadata.download_url:
            raise ValidationError("File download URL is required to save invoice metadata")
        if not file_metadata.storage_path:
            raise ValidationError("File path is required to save invoice metadata")
        file_name = clean_filename(file_metadata.file_name)
        if not file_name:
            raise ValidationError("File name is required to save invoice metadata")

        now = _iso(self._clock())
        record = InvoiceRecord(
            id=uuid.uuid4().hex,
            user_id=owner_id,
            file_name=file_name,
            file_download_url=file_metadata.download_url,
            file_path=file_metadata.storage_path,
            created_at=now,
            updated_at=now,
        )
        body = apply_fields(record_to_document(record), normalize_partial(extracted.as_dict()))
        try:
            self.db.insert(INVOICES_COLLECTION, record.id, body, owner_id=owner_id, created_at=now)
        except sqlite3.Error as exc:
            LOG.error(f"Saving invoice metadata failed: {exc}")
            raise PersistenceError(f"Failed to save invoice metadata: {exc}") from exc
        LOG.info(f"Saved invoice {record.id} for user {owner_id} with fields {sorted(k for k in body if k in EDITABLE_FIELDS)}")
        return record.id

    def update_record(self, record_id: str, partial: Optional[Dict[str, Any]]) -> None:
        fields = normalize_partial(partial)
        now = _iso(self._clock())

        def _mutate(body: Dict[str, Any]) -> Dict[str, Any]:
            apply_fields(body, fields)
            body["updatedAt"] = now
            return body

        try:
            stored = self.db.update(INVOICES_COLLECTION, record_id, _mutate)
        except sqlite3.Error as exc:
            LOG.error(f"Updating invoice {record_id} failed: {exc}")
            raise PersistenceError(f"Failed to update invoice {record_id}: {exc}") from exc
        if stored is None:
            raise NotFoundError("Invoice", record_id)
        LOG.info(f"Updated invoice {record_id}; touched fields: {sorted(fields)}")

    def fetch_record(self, record_id: str) -> InvoiceRecord:
        if not record_id:
            raise ValidationError("Invoice ID is required")
        try:
            body = self.db.get(INVOICES_COLLECTION, record_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read invoice {record_id}: {exc}") from exc
        if body is None:
            raise NotFoundError("Invoice", record_id)
        return document_to_record(record_id, body)

    def list_records(self, owner_id: str) -> List[InvoiceRecord]:
        if not owner_id:
            raise ValidationError("User ID is required to list invoices")
        try:
            docs = self.db.query_by_owner(INVOICES_COLLECTION, owner_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to list invoices: {exc}") from exc
        return [document_to_record(doc_id, body) for doc_id, body in docs]

    def delete_record(self, record_id: str, file_path: Optional[str]) -> None:
        """Delete the record first, then its file.

        A database failure leaves the file untouched. A file failure after the
        record is gone raises OrphanedFileError; the record is not restored.
        """
        try:
            deleted = self.db.delete(INVOICES_COLLECTION, record_id)
        except sqlite3.Error as exc:
            LOG.error(f"Deleting invoice {record_id} failed: {exc}")
            raise PersistenceError(f"Failed to delete invoice {record_id}: {exc}") from exc
        if not deleted:
            raise NotFoundError("Invoice", record_id)
        LOG.info(f"Deleted invoice record {record_id}")

        if not file_path:
            return
        try:
            self.store.delete(file_path)
        except (OSError, ValueError) as exc:
            LOG.error(f"Invoice {record_id} deleted but file {file_path} could not be removed: {exc}")
            raise OrphanedFileError(record_id, file_path, str(exc)) from exc


def build_persistence_client(settings: Settings, *, clock: Optional[Clock] = None) -> PersistenceClient:
    db = DocumentDatabase(settings.db_path)
    store = FileObjectStore(settings.objects_dir, public_base_url=settings.public_base_url)
    return PersistenceClient(db, store, clock=clock)
