from __future__ import annotations

import json

from ..domain.schema import extraction_json_schema

SYSTEM_PROMPT = (
    "You are a strict JSON generator. Output ONLY a single JSON object that matches the provided schema. "
    "No prose, no markdown fences, no trailing text."
)

_INSTRUCTIONS = """You are an assistant that extracts structured data from invoices.
Analyse the attached invoice document (a PDF or an image) and return the fields below.

Fields:
1. invoiceNumber: the identifier of the invoice, usually labelled "Invoice #", "Invoice No." or similar.
   If several candidates exist, use the most prominent, clearly labelled one.
2. invoiceDate: the date the invoice was issued (not the due date).
   - Unambiguous formats (YYYY-MM-DD, DD-MMM-YYYY, ...): return the date as YYYY-MM-DD.
   - Ambiguous formats (e.g. 01/02/03): copy the date exactly as printed.
3. lineItems: every distinct item, service or charge, in the order printed. For each:
   - description: a concise description that identifies the item.
   - amount: the cost of that line as a plain number (123.45, not "$123.45").
4. totalAmount: the final amount due ("Total", "Grand Total", "Amount Due", ...) as a plain number.

Rules:
- Use exactly the key names above. Do not add other keys.
- If a field is not on the document or cannot be read reliably, leave the key out. Never use null or
  empty strings, and never guess or invent values.
- If no line item has both a readable description and a readable amount, leave lineItems out.
- Numbers carry no currency symbols and no thousands separators (1,234.56 becomes 1234.56).
"""


def extraction_prompt() -> str:
    """Fixed instruction template followed by the output JSON schema."""
    schema = json.dumps(extraction_json_schema(), ensure_ascii=False, indent=2)
    return f"{_INSTRUCTIONS}\nOutput JSON schema:\n{schema}\n\nReturn ONLY a single JSON object that matches this schema."
