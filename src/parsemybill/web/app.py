from __future__ import annotations

import mimetypes
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..auth.gate import AuthGate, LocalIdentityProvider, Session
from ..config import Settings, load_settings
from ..domain.schema import parse_data_uri
from ..errors import (
    AuthenticationError,
    ExtractionError,
    NotFoundError,
    OrphanedFileError,
    ParseMyBillError,
    PersistenceError,
    ValidationError,
)
from ..extraction.client import ExtractionClient, build_extraction_client
from ..logging import get_logger
from ..orchestrator.upload import UploadOrchestrator, UploadRun
from ..storage.service import PersistenceClient, build_persistence_client
from ..ui.qr import qr_value, render_qr_svg
from ..ui.views import InvoiceViews, summarize


LOG = get_logger("web")

PUBLIC_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def _status_for(exc: ParseMyBillError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, OrphanedFileError):
        return 207
    if isinstance(exc, ExtractionError):
        return 502
    return 500


def _error_payload(exc: ParseMyBillError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"error": exc.message, "step": exc.details.get("step", exc.step)}
    if isinstance(exc, OrphanedFileError):
        payload["orphanedFile"] = exc.storage_path
        payload["invoiceId"] = exc.record_id
    return payload


async def _handle_app_error(_: Request, exc: ParseMyBillError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        LOG.error("Request failed: %s", exc)
    return JSONResponse(_error_payload(exc), status_code=status)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def create_app(
    root_dir: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    persistence: Optional[PersistenceClient] = None,
    extractor: Optional[ExtractionClient] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing the invoice API and the public lookup routes."""

    settings = settings or load_settings(root_dir)
    persistence = persistence or build_persistence_client(settings)
    extractor = extractor or build_extraction_client(settings)
    gate = AuthGate(LocalIdentityProvider(persistence.db))
    views = InvoiceViews(persistence)
    orchestrator = UploadOrchestrator(persistence, extractor)

    def _session(request: Request) -> Session:
        header = request.headers.get("authorization") or ""
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Authentication required")
        return gate.resolve(token.strip())

    # ---------- health + auth ----------
    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": persistence.db.db_path})

    def _session_payload(session: Session) -> Dict[str, Any]:
        return {"token": session.token, "userId": session.user_id, "email": session.email}

    async def signup(request: Request) -> JSONResponse:
        body = await _json_body(request)
        session = gate.signup(str(body.get("email") or ""), str(body.get("password") or ""))
        return JSONResponse(_session_payload(session), status_code=201)

    async def login(request: Request) -> JSONResponse:
        body = await _json_body(request)
        session = gate.login(str(body.get("email") or ""), str(body.get("password") or ""))
        return JSONResponse(_session_payload(session))

    async def logout(request: Request) -> JSONResponse:
        gate.logout(_session(request))
        return JSONResponse({"success": True})

    # ---------- owner-scoped invoice API ----------
    async def list_invoices(request: Request) -> JSONResponse:
        records = views.list(_session(request), request.query_params.get("q"))
        return JSONResponse(
            {
                "items": [record.to_public_dict() for record in records],
                "rows": [summarize(record) for record in records],
                "total": len(records),
            }
        )

    async def upload_invoice(request: Request) -> JSONResponse:
        session = _session(request)
        body = await _json_body(request)
        file_name = str(body.get("fileName") or "").strip()
        if not file_name:
            raise ValidationError("fileName is required")
        document = parse_data_uri(body.get("fileDataUri"))

        runs: List[UploadRun] = []

        def _track(run: UploadRun) -> None:
            if not runs:
                runs.append(run)

        try:
            run = orchestrator.run(session, document.data, file_name, mime_type=document.mime_type, progress=_track)
        except ParseMyBillError as exc:
            if not runs:
                raise
            return JSONResponse(runs[0].as_dict(), status_code=_status_for(exc))
        return JSONResponse(run.as_dict(), status_code=201)

    async def invoice_detail(request: Request) -> JSONResponse:
        session = _session(request)
        record_id = request.path_params["invoice_id"]
        if request.method == "GET":
            return JSONResponse(views.detail(session, record_id).to_public_dict())
        if request.method == "PATCH":
            body = await _json_body(request)
            return JSONResponse(views.edit(session, record_id, body).to_public_dict())
        views.delete(session, record_id)
        return JSONResponse({"success": True, "invoiceId": record_id})

    async def invoice_qr(request: Request) -> Response:
        record = views.detail(_session(request), request.path_params["invoice_id"])
        svg = render_qr_svg(qr_value(record, settings.public_base_url))
        return Response(svg, media_type="image/svg+xml")

    async def download_file(request: Request) -> Response:
        path = request.path_params["path"]
        data = views.file_bytes(_session(request), path)
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return Response(data, media_type=media_type)

    # ---------- public endpoints ----------
    async def public_invoice(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=PUBLIC_CORS_HEADERS)
        record_id = (request.path_params.get("invoice_id") or "").strip()
        if not record_id:
            return JSONResponse({"error": "Invoice ID is required"}, status_code=400, headers=PUBLIC_CORS_HEADERS)
        try:
            record = persistence.fetch_record(record_id)
        except NotFoundError:
            LOG.info(f"Public lookup for unknown invoice {record_id}")
            return JSONResponse({"error": "Invoice not found"}, status_code=404, headers=PUBLIC_CORS_HEADERS)
        except PersistenceError as exc:
            LOG.error(f"Public lookup for invoice {record_id} failed: {exc}")
            return JSONResponse({"error": "Failed to fetch invoice data"}, status_code=500, headers=PUBLIC_CORS_HEADERS)
        return JSONResponse(record.to_shared_dict(), headers=PUBLIC_CORS_HEADERS)

    async def extract_into_invoice(request: Request) -> JSONResponse:
        body = await _json_body(request)
        invoice_id = str(body.get("invoiceId") or "").strip()
        data_uri = body.get("invoiceDataUri")
        if not invoice_id or not data_uri:
            return JSONResponse(
                {"error": "Missing required parameters: invoiceId and invoiceDataUri"},
                status_code=400,
            )
        session = _session(request)
        views.detail(session, invoice_id)
        LOG.info(f"Starting extraction for invoice {invoice_id}")
        try:
            extracted = extractor.extract(data_uri)
            persistence.update_record(invoice_id, extracted.as_dict())
        except (ExtractionError, PersistenceError) as exc:
            LOG.error(f"Extraction for invoice {invoice_id} failed: {exc}")
            return JSONResponse({"error": exc.message}, status_code=500)
        LOG.info(f"Invoice {invoice_id} updated with extracted fields")
        return JSONResponse({"success": True, "invoiceId": invoice_id, "extractedData": extracted.as_dict()})

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/auth/signup", signup, methods=["POST"]),
        Route("/api/auth/login", login, methods=["POST"]),
        Route("/api/auth/logout", logout, methods=["POST"]),
        Route("/api/invoices", list_invoices, methods=["GET"]),
        Route("/api/invoices", upload_invoice, methods=["POST"]),
        Route("/api/invoices/{invoice_id:str}", invoice_detail, methods=["GET", "PATCH", "DELETE"]),
        Route("/api/invoices/{invoice_id:str}/qr", invoice_qr, methods=["GET"]),
        Route("/files/{path:path}", download_file, methods=["GET"]),
        Route("/invoices/extract", extract_into_invoice, methods=["POST"]),
        Route("/invoices/", public_invoice, methods=["GET", "OPTIONS"]),
        Route("/invoices/{invoice_id:str}", public_invoice, methods=["GET", "OPTIONS"]),
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        exception_handlers={ParseMyBillError: _handle_app_error},
    )
    app.state.settings = settings
    app.state.persistence = persistence
    app.state.gate = gate

    if allow_origins:
        cors_allow_origins = ["*"] if "*" in allow_origins else allow_origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials="*" not in cors_allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    return app


__all__ = ["create_app"]
