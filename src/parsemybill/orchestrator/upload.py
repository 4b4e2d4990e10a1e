"""Sequential upload → extraction → save pipeline for one invoice file."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from ..auth.gate import AuthGate, Session
from ..domain.models import ExtractedInvoice, FileMetadata, StoredFile
from ..domain.schema import to_data_uri
from ..errors import (
    ExtractionError,
    ParseMyBillError,
    PersistenceError,
    UploadError,
    ValidationError,
)
from ..extraction.client import ExtractionClient
from ..logging import get_logger
from ..storage.service import PersistenceClient, clean_filename


LOG = get_logger("orchestrator-upload")


class UploadState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    SAVING = "saving"
    DONE = "done"
    FAILED = "failed"


_STEP_LABELS = {
    UploadState.UPLOADING: "upload",
    UploadState.EXTRACTING: "extraction",
    UploadState.SAVING: "save",
}

_STEP_ERRORS: Dict[UploadState, Type[ParseMyBillError]] = {
    UploadState.UPLOADING: UploadError,
    UploadState.EXTRACTING: ExtractionError,
    UploadState.SAVING: PersistenceError,
}

ProgressCallback = Callable[["UploadRun"], None]


@dataclass
class UploadRun:
    """Outcome and progress of one pipeline run."""

    file_name: str
    state: UploadState = UploadState.IDLE
    history: List[UploadState] = field(default_factory=lambda: [UploadState.IDLE])
    stored_file: Optional[StoredFile] = None
    extracted: Optional[ExtractedInvoice] = None
    record_id: Optional[str] = None
    failed_step: Optional[UploadState] = None
    error: Optional[ParseMyBillError] = None

    @property
    def message(self) -> Optional[str]:
        """Human-readable failure attributed to its step."""
        if self.error is None:
            return None
        label = _STEP_LABELS.get(self.failed_step, "request") if self.failed_step else "request"
        return f"{label} failed: {self.error.message}"

    @property
    def orphaned_file(self) -> Optional[str]:
        """Storage path of an uploaded file that never got a record."""
        if self.state is UploadState.FAILED and self.stored_file and not self.record_id:
            return self.stored_file.storage_path
        return None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"state": self.state.value, "fileName": self.file_name}
        if self.record_id:
            out["invoiceId"] = self.record_id
        if self.extracted is not None:
            out["extractedData"] = self.extracted.as_dict()
        if self.error is not None:
            out["error"] = self.message
            out["step"] = _STEP_LABELS.get(self.failed_step, "request") if self.failed_step else "request"
        if self.orphaned_file:
            out["orphanedFile"] = self.orphaned_file
        return out


class UploadOrchestrator:
    """Runs upload, extraction and save strictly in order, without retries.

    Holds collaborators only; every call to ``run`` gets a fresh UploadRun.
    """

    def __init__(self, persistence: PersistenceClient, extractor: ExtractionClient) -> None:
        self.persistence = persistence
        self.extractor = extractor

    @staticmethod
    def _advance(run: UploadRun, state: UploadState, progress: Optional[ProgressCallback]) -> None:
        run.state = state
        run.history.append(state)
        LOG.info(f"[{run.file_name}] -> {state.value}")
        if progress is not None:
            progress(run)

    def _fail(self, run: UploadRun, exc: Exception, progress: Optional[ProgressCallback]) -> ParseMyBillError:
        step = run.state
        if isinstance(exc, ParseMyBillError):
            error = exc
        else:
            error_cls = _STEP_ERRORS[step]
            error = error_cls(f"{type(exc).__name__}: {exc}")
        run.failed_step = step
        run.error = error
        error.details.setdefault("step", _STEP_LABELS[step])
        self._advance(run, UploadState.FAILED, progress)
        LOG.error(f"[{run.file_name}] {run.message}")
        if run.orphaned_file:
            LOG.warning(f"[{run.file_name}] uploaded file left without a record: {run.orphaned_file}")
        return error

    def run(
        self,
        session: Optional[Session],
        data: bytes,
        file_name: str,
        *,
        mime_type: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadRun:
        """Upload ``data``, extract its fields and save the record.

        Raises AuthenticationError before doing any work for anonymous
        sessions. On failure the run is marked FAILED and the step's error is
        re-raised; ``run.message`` names the failing step.
        """
        owner_id = AuthGate.require(session)
        file_name = clean_filename(file_name)
        if not file_name:
            raise ValidationError("Invoice file name is required")
        if not data:
            raise ValidationError("Please select an invoice file to upload")
        mime = mime_type or mimetypes.guess_type(file_name)[0]
        if not mime:
            raise ValidationError(f"Cannot determine the document type of {file_name!r}")
        if mime != "application/pdf" and not mime.startswith("image/"):
            raise ValidationError(f"Unsupported document type: {mime}. Upload a PDF or an image.", {"mime_type": mime})

        run = UploadRun(file_name=file_name)
        if progress is not None:
            progress(run)
        try:
            self._advance(run, UploadState.UPLOADING, progress)
            run.stored_file = self.persistence.upload_file(data, owner_id, file_name)

            self._advance(run, UploadState.EXTRACTING, progress)
            run.extracted = self.extractor.extract(to_data_uri(data, mime))

            self._advance(run, UploadState.SAVING, progress)
            run.record_id = self.persistence.create_record(
                owner_id,
                FileMetadata.from_stored(file_name, run.stored_file),
                run.extracted,
            )
        except ParseMyBillError as exc:
            self._fail(run, exc, progress)
            raise
        except Exception as exc:
            raise self._fail(run, exc, progress) from exc

        self._advance(run, UploadState.DONE, progress)
        LOG.info(f"[{file_name}] saved as invoice {run.record_id}")
        return run
