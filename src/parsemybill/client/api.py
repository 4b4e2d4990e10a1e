from __future__ import annotations

import mimetypes
import os
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..domain.schema import to_data_uri
from ..errors import (
    AuthenticationError,
    ExtractionError,
    NotFoundError,
    OrphanedFileError,
    ParseMyBillError,
    PersistenceError,
    ValidationError,
)
from ..logging import get_logger


class ParseMyBillClient:
    """Thin client for a running ParseMyBill API with session, timeouts, and logging."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.log = get_logger("api-client")
        self.s = session or requests.Session()
        self.s.headers.update({"Accept": "application/json"})
        if token:
            self.use_token(token)

    def use_token(self, token: str) -> None:
        self.s.headers["Authorization"] = f"Bearer {token}"

    # ---------- helpers ----------
    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = path if path.startswith(("http://", "https://")) else self._url(path)
        try:
            return self.s.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            self.log.error(f"{method} {url} failed: {e}")
            raise ParseMyBillError(f"Could not reach ParseMyBill at {url}: {e}") from e

    def _json(self, r: requests.Response) -> Any:
        try:
            body = r.json()
        except ValueError:
            body = None
        message = body.get("error") if isinstance(body, dict) else None
        if r.status_code == 207 and isinstance(body, dict) and body.get("orphanedFile"):
            raise OrphanedFileError(str(body.get("invoiceId") or ""), body["orphanedFile"], message)
        if r.status_code < 400:
            return body
        message = message or f"HTTP {r.status_code}"
        self.log.warning(f"API error {r.status_code}: {message}")
        if r.status_code == 400:
            raise ValidationError(message)
        if r.status_code == 401:
            raise AuthenticationError(message)
        if r.status_code == 404:
            raise NotFoundError("Invoice", message)
        if r.status_code == 502:
            raise ExtractionError(message)
        raise PersistenceError(message, {"status_code": r.status_code})

    # ---------- auth ----------
    def login(self, email: str, password: str) -> Dict[str, Any]:
        body = self._json(self._request("POST", "/api/auth/login", json={"email": email, "password": password}))
        self.use_token(body["token"])
        return body

    def signup(self, email: str, password: str) -> Dict[str, Any]:
        body = self._json(self._request("POST", "/api/auth/signup", json={"email": email, "password": password}))
        self.use_token(body["token"])
        return body

    def logout(self) -> None:
        self._json(self._request("POST", "/api/auth/logout"))
        self.s.headers.pop("Authorization", None)

    # ---------- invoices ----------
    def list_invoices(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"q": search} if search else None
        body = self._json(self._request("GET", "/api/invoices", params=params)) or {}
        return body.get("items") or []

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return self._json(self._request("GET", f"/api/invoices/{quote(invoice_id)}"))

    def update_invoice(self, invoice_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._json(self._request("PATCH", f"/api/invoices/{quote(invoice_id)}", json=fields))

    def delete_invoice(self, invoice_id: str) -> None:
        self._json(self._request("DELETE", f"/api/invoices/{quote(invoice_id)}"))

    def upload_invoice(self, file_path: str) -> Dict[str, Any]:
        mime, _ = mimetypes.guess_type(file_path)
        with open(file_path, "rb") as fh:
            data = fh.read()
        self.log.info(f"POST invoice: file={file_path} bytes={len(data)}")
        payload = {
            "fileName": os.path.basename(file_path),
            "fileDataUri": to_data_uri(data, mime or "application/octet-stream"),
        }
        return self._json(self._request("POST", "/api/invoices", json=payload))

    def fetch_public(self, invoice_ref: str) -> Dict[str, Any]:
        """Resolve a shareable link (as encoded in QR codes) or a bare invoice id."""
        if invoice_ref.startswith(("http://", "https://")):
            return self._json(self._request("GET", invoice_ref))
        return self._json(self._request("GET", f"/invoices/{quote(invoice_ref)}"))
