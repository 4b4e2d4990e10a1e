from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from parsemybill.auth.gate import AuthGate, LocalIdentityProvider  # noqa: E402
from parsemybill.config import Settings  # noqa: E402
from parsemybill.extraction.client import ExtractionClient  # noqa: E402
from parsemybill.storage.db import DocumentDatabase  # noqa: E402
from parsemybill.storage.objects import FileObjectStore  # noqa: E402
from parsemybill.storage.service import PersistenceClient  # noqa: E402


PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDRfake"


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


class FakeCompletions:
    """Stands in for ``client.chat.completions``; replays queued replies."""

    def __init__(self, replies: List[Any]) -> None:
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        content = reply if isinstance(reply, str) or reply is None else json.dumps(reply)
        return SimpleNamespace(
            id="cmpl-test",
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


def fake_model(*replies: Any) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(list(replies))))


def make_extractor(*replies: Any) -> ExtractionClient:
    return ExtractionClient(model_name="test-model", client=fake_model(*replies))


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    data_dir = tmp_path / "var" / "parsemybill"
    return Settings(
        project_root=str(tmp_path),
        data_dir=str(data_dir),
        api_key=None,
        base_url=None,
        model_name="test-model",
        public_base_url="http://testserver",
    )


@pytest.fixture
def persistence(settings: Settings, clock: TickingClock) -> PersistenceClient:
    db = DocumentDatabase(settings.db_path)
    store = FileObjectStore(settings.objects_dir, public_base_url=settings.public_base_url)
    return PersistenceClient(db, store, clock=clock)


@pytest.fixture
def gate(persistence: PersistenceClient) -> AuthGate:
    return AuthGate(LocalIdentityProvider(persistence.db))
