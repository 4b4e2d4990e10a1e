from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from typing import Any, Dict, Optional, Sequence

from ..auth.gate import AuthGate, LocalIdentityProvider, Session
from ..client.api import ParseMyBillClient
from ..config import Settings, load_settings
from ..domain.schema import to_data_uri
from ..errors import ParseMyBillError, ValidationError
from ..extraction.client import build_extraction_client
from ..logging import get_logger
from ..orchestrator.upload import UploadOrchestrator, UploadRun
from ..paths import expand_abs
from ..storage.service import PersistenceClient, build_persistence_client
from ..ui.qr import qr_value, render_qr_svg
from ..ui.views import InvoiceViews, format_currency, format_date

LOG = get_logger("cli-main")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _add_credentials(p: argparse.ArgumentParser) -> None:
    p.add_argument("--email", default=os.environ.get("PARSEMYBILL_EMAIL"), help="Account email (env: PARSEMYBILL_EMAIL)")
    p.add_argument("--password", default=os.environ.get("PARSEMYBILL_PASSWORD"), help="Account password (env: PARSEMYBILL_PASSWORD)")


def _login(ns: argparse.Namespace, persistence: PersistenceClient) -> Session:
    if not ns.email or not ns.password:
        raise ValidationError("Provide --email and --password (or PARSEMYBILL_EMAIL/PARSEMYBILL_PASSWORD)")
    gate = AuthGate(LocalIdentityProvider(persistence.db))
    return gate.login(ns.email, ns.password)


_JSON_FIELDS = ("lineItems", "totalAmount")


def _parse_assignments(pairs: Sequence[str]) -> Dict[str, Any]:
    """``key=value`` pairs; ``key=`` clears.

    Text fields are taken verbatim. Amounts and line items are read as JSON
    when possible.
    """
    out: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        name = key.strip()
        if not sep or not name:
            raise ValidationError(f"Expected key=value, got {pair!r}")
        if raw == "":
            out[name] = None
        elif name in _JSON_FIELDS:
            try:
                out[name] = json.loads(raw)
            except ValueError:
                out[name] = raw
        else:
            out[name] = raw
    return out


def _print_progress(run: UploadRun) -> None:
    print(f"[{run.state.value}] {run.file_name}", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="parsemybill",
        description="Upload invoices, extract their fields with an LLM, and manage the stored records.",
    )
    parser.add_argument("--root", default=None, help="Project directory used to locate .env and var/ (default: cwd)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    settings_holder: Dict[str, Settings] = {}

    def _settings(ns: argparse.Namespace) -> Settings:
        if "s" not in settings_holder:
            settings_holder["s"] = load_settings(expand_abs(ns.root) if ns.root else None)
        return settings_holder["s"]

    # ---------- accounts ----------
    signup_cmd = subparsers.add_parser("signup", help="Create a local account")
    _add_credentials(signup_cmd)

    def _signup(ns: argparse.Namespace) -> int:
        persistence = build_persistence_client(_settings(ns))
        session = AuthGate(LocalIdentityProvider(persistence.db)).signup(ns.email or "", ns.password or "")
        print(session.user_id)
        return 0

    signup_cmd.set_defaults(handler=_signup)

    # ---------- pipeline ----------
    upload_cmd = subparsers.add_parser("upload", help="Upload an invoice, extract its fields and save the record")
    _add_credentials(upload_cmd)
    upload_cmd.add_argument("--file", required=True, help="Invoice PDF or image")

    def _upload(ns: argparse.Namespace) -> int:
        settings = _settings(ns)
        persistence = build_persistence_client(settings)
        session = _login(ns, persistence)
        path = expand_abs(ns.file)
        with open(path, "rb") as fh:
            data = fh.read()
        orchestrator = UploadOrchestrator(persistence, build_extraction_client(settings))
        runs: list = []

        def _progress(run: UploadRun) -> None:
            if not runs:
                runs.append(run)
            _print_progress(run)

        try:
            run = orchestrator.run(session, data, os.path.basename(path), progress=_progress)
        except ParseMyBillError as exc:
            if runs:
                _print_json(runs[0].as_dict())
            LOG.error(f"Upload failed: {exc.message}")
            return 1
        _print_json(run.as_dict())
        return 0

    upload_cmd.set_defaults(handler=_upload)

    extract_cmd = subparsers.add_parser("extract", help="Run extraction on a file and print the fields (no saving)")
    extract_cmd.add_argument("--file", required=True)
    extract_cmd.add_argument("--model", help="Override PARSEMYBILL_MODEL")

    def _extract(ns: argparse.Namespace) -> int:
        settings = _settings(ns)
        client = build_extraction_client(settings)
        if ns.model:
            client.model_name = ns.model
        path = expand_abs(ns.file)
        mime = mimetypes.guess_type(path)[0]
        if not mime:
            raise ValidationError(f"Cannot determine the document type of {path}")
        with open(path, "rb") as fh:
            fields = client.extract(to_data_uri(fh.read(), mime))
        _print_json(fields.as_dict())
        return 0

    extract_cmd.set_defaults(handler=_extract)

    # ---------- records ----------
    list_cmd = subparsers.add_parser("list", help="List your invoices, newest first")
    _add_credentials(list_cmd)
    list_cmd.add_argument("--search", help="Filter by file name, invoice number or line item")
    list_cmd.add_argument("--json", action="store_true", help="Print full records as JSON")

    def _list(ns: argparse.Namespace) -> int:
        persistence = build_persistence_client(_settings(ns))
        records = InvoiceViews(persistence).list(_login(ns, persistence), ns.search)
        if ns.json:
            _print_json([r.to_public_dict() for r in records])
            return 0
        if not records:
            print("No invoices found.")
            return 0
        for r in records:
            print(
                f"{r.id}  {format_date(r.created_at):<12}  {r.file_name:<32}  "
                f"{r.invoice_number or 'N/A':<14}  {format_currency(r.total_amount):>12}"
            )
        return 0

    list_cmd.set_defaults(handler=_list)

    show_cmd = subparsers.add_parser("show", help="Show one invoice")
    _add_credentials(show_cmd)
    show_cmd.add_argument("--id", required=True)

    def _show(ns: argparse.Namespace) -> int:
        persistence = build_persistence_client(_settings(ns))
        record = InvoiceViews(persistence).detail(_login(ns, persistence), ns.id)
        _print_json(record.to_public_dict())
        return 0

    show_cmd.set_defaults(handler=_show)

    edit_cmd = subparsers.add_parser("edit", help="Edit invoice fields (key=value; empty value clears)")
    _add_credentials(edit_cmd)
    edit_cmd.add_argument("--id", required=True)
    edit_cmd.add_argument("assignments", nargs="*", metavar="FIELD=VALUE")

    def _edit(ns: argparse.Namespace) -> int:
        persistence = build_persistence_client(_settings(ns))
        record = InvoiceViews(persistence).edit(_login(ns, persistence), ns.id, _parse_assignments(ns.assignments))
        _print_json(record.to_public_dict())
        return 0

    edit_cmd.set_defaults(handler=_edit)

    delete_cmd = subparsers.add_parser("delete", help="Delete an invoice and its stored file")
    _add_credentials(delete_cmd)
    delete_cmd.add_argument("--id", required=True)

    def _delete(ns: argparse.Namespace) -> int:
        persistence = build_persistence_client(_settings(ns))
        InvoiceViews(persistence).delete(_login(ns, persistence), ns.id)
        print(f"Deleted invoice {ns.id}")
        return 0

    delete_cmd.set_defaults(handler=_delete)

    qr_cmd = subparsers.add_parser("qr", help="Write a QR code (SVG) linking to an invoice")
    _add_credentials(qr_cmd)
    qr_cmd.add_argument("--id", required=True)
    qr_cmd.add_argument("--output", required=True)

    def _qr(ns: argparse.Namespace) -> int:
        settings = _settings(ns)
        persistence = build_persistence_client(settings)
        record = InvoiceViews(persistence).detail(_login(ns, persistence), ns.id)
        out = expand_abs(ns.output)
        os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
        with open(out, "wb") as fh:
            fh.write(render_qr_svg(qr_value(record, settings.public_base_url)))
        LOG.info(f"Wrote: {out}")
        return 0

    qr_cmd.set_defaults(handler=_qr)

    fetch_cmd = subparsers.add_parser("fetch", help="Resolve a shared invoice link or id against a running server")
    fetch_cmd.add_argument("ref", help="Invoice URL (as in QR codes) or invoice id")
    fetch_cmd.add_argument("--base-url", help="Server URL (default: PARSEMYBILL_PUBLIC_BASE_URL)")

    def _fetch(ns: argparse.Namespace) -> int:
        base_url: Optional[str] = ns.base_url or _settings(ns).public_base_url
        _print_json(ParseMyBillClient(base_url).fetch_public(ns.ref))
        return 0

    fetch_cmd.set_defaults(handler=_fetch)

    # ---------- server ----------
    serve_cmd = subparsers.add_parser("serve", help="Run the ParseMyBill API")
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8000)
    serve_cmd.add_argument("--log-level", default="info")
    serve_cmd.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin for the JSON API (repeatable, '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..web import create_app
        import uvicorn

        app = create_app(
            settings=_settings(ns),
            allow_origins=ns.allow_origins,
        )
        uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
        return 0

    serve_cmd.set_defaults(handler=_serve)

    args = parser.parse_args(provided)
    try:
        code = args.handler(args)
    except ParseMyBillError as exc:
        LOG.error(f"{exc.step} failed: {exc.message}")
        return 1
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
