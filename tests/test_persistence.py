import sqlite3

import pytest

from conftest import PDF_BYTES
from parsemybill.domain.models import ExtractedInvoice, FileMetadata, LineItem
from parsemybill.errors import NotFoundError, OrphanedFileError, PersistenceError, ValidationError
from parsemybill.storage.db import DocumentDatabase
from parsemybill.storage.objects import FileObjectStore
from parsemybill.storage.service import INVOICES_COLLECTION, PersistenceClient


def _save(persistence, owner="user-1", name="invoice.pdf", extracted=None):
    stored = persistence.upload_file(PDF_BYTES, owner, name)
    record_id = persistence.create_record(
        owner,
        FileMetadata.from_stored(name, stored),
        extracted or ExtractedInvoice(invoice_number="INV-1", total_amount=150),
    )
    return record_id, stored


def test_upload_uses_owner_scoped_storage_path(persistence):
    stored = persistence.upload_file(PDF_BYTES, "user-1", "../../etc/invoice.pdf")

    assert stored.storage_path == "users/user-1/invoices/1714555800000_invoice.pdf"
    assert stored.download_url == "http://testserver/files/users/user-1/invoices/1714555800000_invoice.pdf"
    assert persistence.read_file(stored.storage_path) == PDF_BYTES


def test_upload_requires_owner_name_and_data(persistence):
    with pytest.raises(ValidationError):
        persistence.upload_file(PDF_BYTES, "", "a.pdf")
    with pytest.raises(ValidationError):
        persistence.upload_file(PDF_BYTES, "user-1", "   ")
    with pytest.raises(ValidationError):
        persistence.upload_file(b"", "user-1", "a.pdf")


def test_create_then_fetch_round_trips_present_fields(persistence):
    extracted = ExtractedInvoice(
        invoice_number="INV-1",
        line_items=[LineItem("Item", 150)],
        total_amount=150,
    )
    record_id, stored = _save(persistence, extracted=extracted)

    record = persistence.fetch_record(record_id)

    assert record.user_id == "user-1"
    assert record.file_path == stored.storage_path
    assert record.invoice_number == "INV-1"
    assert record.invoice_date is None
    assert record.line_items == [LineItem("Item", 150)]
    assert record.total_amount == 150
    assert record.created_at == record.updated_at
    assert record.created_at.endswith("Z")

    body = persistence.db.get(INVOICES_COLLECTION, record_id)
    assert "invoiceDate" not in body
    assert "id" not in body


def test_create_requires_file_metadata(persistence):
    with pytest.raises(ValidationError):
        persistence.create_record("user-1", FileMetadata("a.pdf", "", "users/user-1/a.pdf"), ExtractedInvoice())
    with pytest.raises(ValidationError):
        persistence.create_record("", FileMetadata("a.pdf", "http://x", "users/user-1/a.pdf"), ExtractedInvoice())


def test_create_with_nothing_extracted_keeps_only_file_metadata(persistence):
    record_id, _ = _save(persistence, extracted=ExtractedInvoice())
    record = persistence.fetch_record(record_id)
    assert record.fields.is_empty()
    assert record.file_name == "invoice.pdf"


def test_update_touches_only_supplied_fields(persistence):
    record_id, _ = _save(persistence)
    before = persistence.fetch_record(record_id)

    persistence.update_record(record_id, {"invoiceDate": "2024-03-01T00:00:00.000Z", "invoiceNumber": None})

    after = persistence.fetch_record(record_id)
    assert after.invoice_date == "2024-03-01"
    assert after.invoice_number is None
    assert after.total_amount == 150
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at


def test_empty_update_only_moves_updated_at(persistence):
    record_id, _ = _save(persistence)
    before = persistence.fetch_record(record_id)

    persistence.update_record(record_id, {})

    after = persistence.fetch_record(record_id)
    assert after.fields == before.fields
    assert after.updated_at > before.updated_at


def test_update_rejects_immutable_fields_and_unknown_ids(persistence):
    record_id, _ = _save(persistence)
    with pytest.raises(ValidationError):
        persistence.update_record(record_id, {"userId": "someone-else"})
    with pytest.raises(NotFoundError):
        persistence.update_record("missing", {"invoiceNumber": "X"})
    assert persistence.fetch_record(record_id).user_id == "user-1"


def test_list_is_owner_scoped_newest_first(persistence):
    assert persistence.list_records("user-1") == []

    first, _ = _save(persistence, name="first.pdf")
    second, _ = _save(persistence, name="second.pdf")
    _save(persistence, owner="user-2", name="other.pdf")

    ids = [record.id for record in persistence.list_records("user-1")]
    assert ids == [second, first]


def test_fetch_missing_record(persistence):
    with pytest.raises(NotFoundError):
        persistence.fetch_record("does-not-exist")
    with pytest.raises(ValidationError):
        persistence.fetch_record("")


def test_delete_removes_record_and_file(persistence):
    record_id, stored = _save(persistence)

    persistence.delete_record(record_id, stored.storage_path)

    with pytest.raises(NotFoundError):
        persistence.fetch_record(record_id)
    assert not persistence.store.exists(stored.storage_path)


def test_delete_with_missing_file_still_succeeds(persistence):
    record_id, stored = _save(persistence)
    persistence.store.delete(stored.storage_path)

    persistence.delete_record(record_id, stored.storage_path)

    assert persistence.db.count(INVOICES_COLLECTION) == 0


class _BrokenDeleteStore(FileObjectStore):
    def delete(self, storage_path):
        raise PermissionError(13, "Permission denied", storage_path)


def test_file_failure_after_record_delete_reports_orphan(settings, clock):
    db = DocumentDatabase(settings.db_path)
    store = _BrokenDeleteStore(settings.objects_dir, public_base_url=settings.public_base_url)
    persistence = PersistenceClient(db, store, clock=clock)
    record_id, stored = _save(persistence)

    with pytest.raises(OrphanedFileError) as excinfo:
        persistence.delete_record(record_id, stored.storage_path)

    assert excinfo.value.storage_path == stored.storage_path
    assert excinfo.value.record_id == record_id
    with pytest.raises(NotFoundError):
        persistence.fetch_record(record_id)
    assert store.exists(stored.storage_path)


def test_database_failure_leaves_file_untouched(persistence, monkeypatch):
    record_id, stored = _save(persistence)

    def _boom(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(persistence.db, "delete", _boom)

    with pytest.raises(PersistenceError) as excinfo:
        persistence.delete_record(record_id, stored.storage_path)

    assert not isinstance(excinfo.value, OrphanedFileError)
    assert persistence.store.exists(stored.storage_path)


def test_malformed_stored_document_is_reported(persistence):
    persistence.db.insert(
        INVOICES_COLLECTION,
        "bad",
        {"userId": "user-1", "fileName": "x.pdf", "totalAmount": "lots"},
        owner_id="user-1",
        created_at="2024-01-01T00:00:00.000Z",
    )
    with pytest.raises(PersistenceError):
        persistence.fetch_record("bad")


def test_sequential_disjoint_updates_merge(persistence):
    record_id, _ = _save(persistence, extracted=ExtractedInvoice())

    persistence.update_record(record_id, {"invoiceNumber": "INV-9"})
    persistence.update_record(record_id, {"lineItems": [{"description": "Support", "amount": 40}], "totalAmount": 40})

    record = persistence.fetch_record(record_id)
    assert record.invoice_number == "INV-9"
    assert record.line_items == [LineItem("Support", 40)]
    assert record.total_amount == 40
