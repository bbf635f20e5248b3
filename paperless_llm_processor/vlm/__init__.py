"""
VLM (Vision-Language Model) integration for per-page document analysis.

Runs against a local Ollama server with structured (JSON schema) output.

Usage:
    from paperless_llm_processor.vlm import OllamaVisionClient

    client = OllamaVisionClient(model="qwen3-vl:4b-instruct")
    analysis = await client.analyze_page(page_b64, ["Invoice", "Letter"])
"""

from paperless_llm_processor.vlm.vlm_types import PageImage
from paperless_llm_processor.vlm.ollama_client import OllamaVisionClient
from paperless_llm_processor.vlm.prompts import build_prompt, build_schema

__all__ = [
    "PageImage",
    "OllamaVisionClient",
    "build_prompt",
    "build_schema",
]
