import json

from conftest import PDF_BYTES
from parsemybill.cli.main import _parse_assignments, main
from parsemybill.config import load_settings
from parsemybill.domain.models import ExtractedInvoice, FileMetadata
from parsemybill.storage.service import build_persistence_client


def _root(tmp_path, monkeypatch):
    monkeypatch.delenv("PARSEMYBILL_DATA_DIR", raising=False)
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    return ["--root", str(tmp_path)]


def test_signup_then_list_json(tmp_path, monkeypatch, capsys):
    root = _root(tmp_path, monkeypatch)
    creds = ["--email", "cli@example.com", "--password", "secret123"]

    assert main(root + ["signup"] + creds) == 0
    user_id = capsys.readouterr().out.strip()
    assert user_id

    assert main(root + ["list", "--json"] + creds) == 0
    assert json.loads(capsys.readouterr().out) == []
    assert (tmp_path / "var" / "parsemybill" / "parsemybill.sqlite3").is_file()


def test_wrong_password_exits_nonzero(tmp_path, monkeypatch):
    root = _root(tmp_path, monkeypatch)
    assert main(root + ["signup", "--email", "cli@example.com", "--password", "secret123"]) == 0
    assert main(root + ["list", "--email", "cli@example.com", "--password", "wrong-one"]) == 1


def test_show_unknown_invoice_exits_nonzero(tmp_path, monkeypatch):
    root = _root(tmp_path, monkeypatch)
    creds = ["--email", "cli@example.com", "--password", "secret123"]
    assert main(root + ["signup"] + creds) == 0
    assert main(root + ["show", "--id", "missing"] + creds) == 1


def test_assignments_keep_text_fields_verbatim():
    parsed = _parse_assignments(["invoiceNumber=1001", "invoiceDate=2024", "totalAmount=12.5", "lineItems=", "x=[1]"])
    assert parsed == {"invoiceNumber": "1001", "invoiceDate": "2024", "totalAmount": 12.5, "lineItems": None, "x": "[1]"}


def test_edit_numeric_invoice_number(tmp_path, monkeypatch, capsys):
    root = _root(tmp_path, monkeypatch)
    creds = ["--email", "cli@example.com", "--password", "secret123"]
    assert main(root + ["signup"] + creds) == 0
    user_id = capsys.readouterr().out.strip()

    persistence = build_persistence_client(load_settings(str(tmp_path)))
    stored = persistence.upload_file(PDF_BYTES, user_id, "a.pdf")
    record_id = persistence.create_record(user_id, FileMetadata.from_stored("a.pdf", stored), ExtractedInvoice())

    args = root + ["edit", "--id", record_id, "invoiceNumber=1001", "totalAmount=1,250.00"] + creds
    assert main(args) == 0

    record = persistence.fetch_record(record_id)
    assert record.invoice_number == "1001"
    assert record.total_amount == 1250.0
