"""Upload → extract → save pipeline."""

from .upload import UploadOrchestrator, UploadRun, UploadState

__all__ = ["UploadOrchestrator", "UploadRun", "UploadState"]
