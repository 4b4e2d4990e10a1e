"""
ParseMyBill – invoice upload, LLM field extraction, and record management.

Packages:
- domain: record types and the extraction schema contract
- extraction: model client
- storage: document database, object store, persistence client
- auth: session context and login gate
- orchestrator: upload → extract → save pipeline
- ui: list/detail/edit view logic and QR codes
- web: Starlette API
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
]
