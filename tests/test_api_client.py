import pytest
import requests

from conftest import PDF_BYTES
from parsemybill.client.api import ParseMyBillClient
from parsemybill.errors import (
    AuthenticationError,
    ExtractionError,
    NotFoundError,
    OrphanedFileError,
    ParseMyBillError,
    ValidationError,
)


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        reply = self.responses.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def test_login_stores_bearer_token():
    session = FakeSession(FakeResponse(200, {"token": "tok-1", "userId": "u1", "email": "a@example.com"}))
    client = ParseMyBillClient("http://api.test/", session=session, timeout=5)

    body = client.login("a@example.com", "secret123")

    assert body["userId"] == "u1"
    assert session.headers["Authorization"] == "Bearer tok-1"
    assert session.calls[0]["url"] == "http://api.test/api/auth/login"
    assert session.calls[0]["timeout"] == 5


def test_list_invoices_passes_search_term():
    session = FakeSession(FakeResponse(200, {"items": [{"id": "r1"}], "rows": [], "total": 1}))
    client = ParseMyBillClient("http://api.test", token="tok", session=session)

    assert client.list_invoices("acme") == [{"id": "r1"}]
    assert session.calls[0]["params"] == {"q": "acme"}


def test_upload_sends_data_uri(tmp_path):
    pdf = tmp_path / "march.pdf"
    pdf.write_bytes(PDF_BYTES)
    session = FakeSession(FakeResponse(201, {"state": "done", "invoiceId": "r1"}))
    client = ParseMyBillClient("http://api.test", token="tok", session=session)

    assert client.upload_invoice(str(pdf))["invoiceId"] == "r1"
    payload = session.calls[0]["json"]
    assert payload["fileName"] == "march.pdf"
    assert payload["fileDataUri"].startswith("data:application/pdf;base64,")


@pytest.mark.parametrize(
    "status,error_cls",
    [(400, ValidationError), (401, AuthenticationError), (404, NotFoundError), (502, ExtractionError)],
)
def test_error_statuses_map_to_errors(status, error_cls):
    session = FakeSession(FakeResponse(status, {"error": "boom", "step": "x"}))
    client = ParseMyBillClient("http://api.test", session=session)
    with pytest.raises(error_cls):
        client.get_invoice("r1")


def test_orphaned_file_on_delete_is_raised():
    session = FakeSession(
        FakeResponse(207, {"error": "deleted", "step": "delete", "orphanedFile": "users/u1/invoices/1_a.pdf", "invoiceId": "r1"})
    )
    client = ParseMyBillClient("http://api.test", session=session)

    with pytest.raises(OrphanedFileError) as excinfo:
        client.delete_invoice("r1")
    assert excinfo.value.storage_path == "users/u1/invoices/1_a.pdf"


def test_fetch_public_accepts_full_urls():
    session = FakeSession(FakeResponse(200, {"id": "r1"}))
    client = ParseMyBillClient("http://api.test", session=session)

    assert client.fetch_public("http://elsewhere:8000/invoices/r1") == {"id": "r1"}
    assert session.calls[0]["url"] == "http://elsewhere:8000/invoices/r1"


def test_network_failure_is_wrapped():
    session = FakeSession(requests.ConnectionError("refused"))
    client = ParseMyBillClient("http://api.test", session=session)
    with pytest.raises(ParseMyBillError, match="Could not reach"):
        client.get_invoice("r1")
