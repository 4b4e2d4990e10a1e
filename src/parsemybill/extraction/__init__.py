"""Model-backed invoice field extraction."""

from .client import ExtractionClient, build_extraction_client
from .prompt import extraction_prompt

__all__ = ["ExtractionClient", "build_extraction_client", "extraction_prompt"]
