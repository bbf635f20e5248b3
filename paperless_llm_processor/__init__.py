"""
Paperless LLM Processor - Analyze Paperless-ngx documents with a local vision model.

Finds documents whose `llm-process-id` custom field is missing or older than
the current processing version, renders each page, asks an Ollama vision
model for a structured analysis of every page, merges the pages and writes
title, type, date, correspondent, tags, content and summary back in a single
update.

Usage:
    from paperless_llm_processor import ProcessorSettings, ReconciliationEngine

    engine = ReconciliationEngine.from_settings(ProcessorSettings.from_env())
    report = await engine.run()
    print(report.updated, report.skipped)
"""

from paperless_llm_processor.config import ProcessorSettings
from paperless_llm_processor.engine import (
    DocumentOutcome,
    DocumentState,
    ReconciliationEngine,
    RunReport,
    build_update,
)
from paperless_llm_processor.exceptions import (
    ConfigurationError,
    EmptyResponse,
    ExternalToolFailure,
    ProcessorError,
    RemoteRejected,
    SchemaParseFailure,
    TransportError,
    UnknownTaxonomyValue,
    UnsupportedFormat,
)
from paperless_llm_processor.merge import merge_page_analyses
from paperless_llm_processor.paperless.client import PaperlessClient
from paperless_llm_processor.rasterizer import PageRasterizer
from paperless_llm_processor.schema import (
    Document,
    DocumentUpdate,
    MergedAnalysis,
    PageAnalysis,
)
from paperless_llm_processor.taxonomy import TaxonomyCache
from paperless_llm_processor.update_fields import parse_update_fields, serialize_update_fields
from paperless_llm_processor.vlm.vlm_types import PageImage
from paperless_llm_processor.vlm.ollama_client import OllamaVisionClient

__version__ = "0.1.0"

__all__ = [
    # Engine
    "ReconciliationEngine",
    "RunReport",
    "DocumentOutcome",
    "DocumentState",
    "build_update",
    "merge_page_analyses",
    "TaxonomyCache",
    # Clients
    "PaperlessClient",
    "OllamaVisionClient",
    "PageRasterizer",
    "PageImage",
    # Schema
    "Document",
    "DocumentUpdate",
    "MergedAnalysis",
    "PageAnalysis",
    # Configuration
    "ProcessorSettings",
    "parse_update_fields",
    "serialize_update_fields",
    # Errors
    "ProcessorError",
    "ConfigurationError",
    "TransportError",
    "RemoteRejected",
    "SchemaParseFailure",
    "EmptyResponse",
    "UnsupportedFormat",
    "ExternalToolFailure",
    "UnknownTaxonomyValue",
]
