from __future__ import annotations

import json
import re
import time
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError

from ..config import DEFAULT_MODEL, Settings
from ..domain.models import ExtractedInvoice
from ..domain.schema import DataUri, parse_data_uri, parse_extraction_payload
from ..errors import ExtractionError, ValidationError
from ..logging import get_logger
from .prompt import SYSTEM_PROMPT, extraction_prompt


LOG = get_logger("extraction")


def _scavenge_json_block(s: str) -> Optional[Any]:
    if not s:
        return None

    candidates: List[str] = []

    # 1) Fenced code blocks first (e.g., ```json ... ```)
    fenced = re.search(r"```(?:json)?\s*(.*?)```", s, re.DOTALL)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    # 2) The widest object slice
    start_obj = s.find("{")
    end_obj = s.rfind("}")
    if start_obj != -1 and end_obj != -1 and end_obj > start_obj:
        candidates.append(s[start_obj : end_obj + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue

    return None


def _content_node(uri: str, document: DataUri) -> Dict[str, Any]:
    if document.is_pdf:
        return {"type": "file", "file": {"filename": "invoice.pdf", "file_data": uri}}
    return {"type": "image_url", "image_url": {"url": uri}}


class ExtractionClient:
    """Single-call wrapper around an OpenAI-compatible chat completions endpoint.

    No retries and no local timeout: provider errors, including timeouts,
    surface as ExtractionError carrying the provider's message.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model_name: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.model_name = model_name
        self.base_url = base_url
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ExtractionError("Model API key missing; set OPENAI_API_KEY or OPEN_ROUTER_API_KEY")
            self._client = OpenAI(api_key=self._api_key, base_url=self.base_url, max_retries=0)
        return self._client

    def extract(self, invoice_data_uri: str) -> ExtractedInvoice:
        document = parse_data_uri(invoice_data_uri)
        client = self._get_client()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": extraction_prompt()},
                    _content_node(invoice_data_uri.strip(), document),
                ],
            },
        ]

        LOG.info(
            "Calling model '%s' for %s document (%d bytes)",
            self.model_name,
            document.mime_type,
            len(document.data),
        )
        t0 = time.perf_counter()
        try:
            completion = client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            LOG.error("Model request timed out: %s", e)
            raise ExtractionError(f"Model request timed out: {e}", {"model": self.model_name}) from e
        except APIConnectionError as e:
            LOG.error("Network error while calling model: %s", e)
            raise ExtractionError(f"Could not reach model provider: {e}", {"model": self.model_name}) from e
        except APIStatusError as e:
            body = getattr(getattr(e, "response", None), "text", None)
            LOG.error("Model API returned %s. Body preview: %r", e.status_code, (body[:300] if body else None))
            raise ExtractionError(
                f"Model provider returned HTTP {e.status_code}: {e.message}",
                {"model": self.model_name, "status_code": e.status_code},
            ) from e
        except OpenAIError as e:
            LOG.error("Model call failed: %s", e)
            raise ExtractionError(f"Model call failed: {e}", {"model": self.model_name}) from e

        choices = getattr(completion, "choices", None) or []
        message = choices[0].message if choices else None
        text = getattr(message, "content", None) if message is not None else None

        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "Model finished in %.2fs id=%s usage=%s",
            time.perf_counter() - t0,
            getattr(completion, "id", None),
            usage_dict,
        )

        if not text:
            raise ExtractionError("Model returned an empty response", {"model": self.model_name})

        try:
            payload = json.loads(text)
        except ValueError:
            payload = _scavenge_json_block(text)
            if payload is None:
                LOG.error("Model output not valid JSON; first 500 chars: %r", text[:500])
                raise ExtractionError("Model output is not valid JSON", {"model": self.model_name})

        try:
            return parse_extraction_payload(payload)
        except ValidationError as e:
            LOG.error("Model output does not match the invoice schema: %s", e.message)
            raise ExtractionError(
                f"Model output does not match the invoice schema: {e.message}",
                {"model": self.model_name},
            ) from e


def build_extraction_client(settings: Settings) -> ExtractionClient:
    return ExtractionClient(settings.api_key, model_name=settings.model_name, base_url=settings.base_url)
