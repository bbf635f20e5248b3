"""
Reconciliation Engine: bring Paperless documents up to the current processing version.

Features:
- Selects documents whose llm-process-id is missing or older than the run version
- Per-page vision analysis, strictly sequential, merged into one record
- Tags/correspondents resolved through a run-scoped cache (created on first use)
- One PATCH per document carrying the marker, model and selected fields
- A failure anywhere before the PATCH skips only that document
"""

import asyncio
import functools
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from paperless_llm_processor.config import (
    MODEL_FIELD,
    PROCESS_ID_FIELD,
    REQUIRED_CUSTOM_FIELDS,
    SKIP_FIELD,
    SUMMARY_FIELD,
    ProcessorSettings,
)
from paperless_llm_processor.exceptions import ProcessorError, UnknownTaxonomyValue
from paperless_llm_processor.merge import merge_page_analyses
from paperless_llm_processor.paperless.client import PaperlessClient
from paperless_llm_processor.rasterizer import PageRasterizer
from paperless_llm_processor.schema import (
    CustomFieldValue,
    Document,
    DocumentUpdate,
    MergedAnalysis,
    PageAnalysis,
)
from paperless_llm_processor.taxonomy import CORRESPONDENT, TAG, TaxonomyCache
from paperless_llm_processor.update_fields import ALL_UPDATE_FIELDS
from paperless_llm_processor.vlm.ollama_client import OllamaVisionClient
from paperless_llm_processor.vlm.vlm_types import PageImage

logger = logging.getLogger(__name__)


# ==============================================================================
# STATES AND DATA CLASSES
# ==============================================================================


class DocumentState(Enum):
    """Where a document is in the pipeline."""

    SELECTED = "selected"
    FETCHED = "fetched"
    RASTERIZED = "rasterized"
    ANALYZED = "analyzed"
    MERGED = "merged"
    RESOLVED = "resolved"
    UPDATED = "updated"
    SKIPPED_ERROR = "skipped_error"


TERMINAL_STATES = frozenset({DocumentState.UPDATED, DocumentState.SKIPPED_ERROR})


@dataclass
class ResolvedTaxonomy:
    """Store ids for the merged analysis' named entities."""

    document_type_id: Optional[int] = None
    correspondent_id: Optional[int] = None
    tag_ids: List[int] = field(default_factory=list)


@dataclass
class DocumentContext:
    """Working state for one document while it moves through the pipeline."""

    document: Document
    cache: TaxonomyCache
    blob: bytes = b""
    existing_custom_fields: List[CustomFieldValue] = field(default_factory=list)
    pages: List[PageImage] = field(default_factory=list)
    analyses: List[PageAnalysis] = field(default_factory=list)
    current_page: Optional[int] = None
    merged: Optional[MergedAnalysis] = None
    resolved: Optional[ResolvedTaxonomy] = None
    update: Optional[DocumentUpdate] = None


@dataclass
class DocumentOutcome:
    """Terminal result for one document."""

    document: Document
    state: DocumentState
    failed_stage: Optional[str] = None
    failed_page: Optional[int] = None
    error: Optional[str] = None
    merged: Optional[MergedAnalysis] = None
    update: Optional[DocumentUpdate] = None

    @property
    def updated(self) -> bool:
        return self.state is DocumentState.UPDATED


@dataclass
class RunReport:
    """Summary of one reconciliation run."""

    process_id: int
    found: int = 0
    outcomes: List[DocumentOutcome] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes if o.updated)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.state is DocumentState.SKIPPED_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process_id": self.process_id,
            "found": self.found,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": [
                {
                    "document_id": o.document.id,
                    "stage": o.failed_stage,
                    "page": o.failed_page,
                    "error": o.error,
                }
                for o in self.outcomes
                if not o.updated
            ],
        }


# ==============================================================================
# HELPERS
# ==============================================================================


async def analyze_pages(
    vision: OllamaVisionClient,
    pages: List[PageImage],
    document_types: List[str],
    on_page=None,
) -> List[PageAnalysis]:
    """
    Analyze pages one at a time, in order. The first failure propagates.

    Args:
        vision: Vision client
        pages: Page images in page order
        document_types: Valid document type names
        on_page: Optional callback(page_number) invoked before each page
    """
    analyses = []
    for index, page in enumerate(pages, start=1):
        if on_page is not None:
            on_page(page.page_number)
        logger.info(f"  Analyzing page {index}/{len(pages)}...")
        analyses.append(await vision.analyze_page(page.b64, document_types))
    return analyses


def build_update(
    merged: MergedAnalysis,
    resolved: ResolvedTaxonomy,
    cache: TaxonomyCache,
    update_fields: FrozenSet[str],
    process_id: int,
    model_name: str,
    existing_custom_fields: Optional[List[CustomFieldValue]] = None,
) -> DocumentUpdate:
    """
    Build the PATCH payload for a processed document.

    The processing marker and model name are always written. Every other
    field is written only when selected in `update_fields` and non-empty.
    Paperless replaces the whole custom field list on PATCH, so values
    already on the document are carried over.
    """
    custom_values: Dict[int, Any] = {}
    for existing in existing_custom_fields or []:
        custom_values[existing.field] = existing.value

    custom_values[cache.custom_field_id(PROCESS_ID_FIELD)] = process_id
    custom_values[cache.custom_field_id(MODEL_FIELD)] = model_name
    if "summary" in update_fields and merged.summary:
        custom_values[cache.custom_field_id(SUMMARY_FIELD)] = merged.summary

    update = DocumentUpdate(
        custom_fields=[CustomFieldValue(field=k, value=v) for k, v in custom_values.items()]
    )

    if "title" in update_fields and merged.file_name:
        update.title = merged.file_name
    if "content" in update_fields and merged.transcription:
        update.content = merged.transcription
    if "document_type" in update_fields and resolved.document_type_id is not None:
        update.document_type = resolved.document_type_id
    if "document_date" in update_fields and merged.document_date:
        update.created = merged.document_date
    if "correspondent" in update_fields and resolved.correspondent_id is not None:
        update.correspondent = resolved.correspondent_id
    if "tags" in update_fields and resolved.tag_ids:
        update.tags = list(resolved.tag_ids)

    return update


# ==============================================================================
# ENGINE
# ==============================================================================


class ReconciliationEngine:
    """
    Processes every unprocessed document once per run.

    Each document walks an explicit state machine:
    SELECTED -> FETCHED -> RASTERIZED -> ANALYZED -> MERGED -> RESOLVED -> UPDATED.
    A ProcessorError in any step ends the document in SKIPPED_ERROR; its
    marker is untouched, so the next run picks it up again.
    """

    def __init__(
        self,
        store: PaperlessClient,
        vision: OllamaVisionClient,
        rasterizer: PageRasterizer,
        process_id: int,
        update_fields: FrozenSet[str] = frozenset(ALL_UPDATE_FIELDS),
        model_name: Optional[str] = None,
    ):
        self.store = store
        self.vision = vision
        self.rasterizer = rasterizer
        self.process_id = process_id
        self.update_fields = frozenset(update_fields)
        self.model_name = model_name or vision.model

        self._steps = {
            DocumentState.SELECTED: ("fetch", self._fetch),
            DocumentState.FETCHED: ("rasterize", self._rasterize),
            DocumentState.RASTERIZED: ("analyze", self._analyze),
            DocumentState.ANALYZED: ("merge", self._merge),
            DocumentState.MERGED: ("resolve", self._resolve),
            DocumentState.RESOLVED: ("apply", self._apply),
        }

    @classmethod
    def from_settings(cls, settings: ProcessorSettings) -> "ReconciliationEngine":
        """Wire clients from run settings."""
        store = PaperlessClient(
            settings.paperless_url,
            settings.paperless_token,
            timeout=settings.paperless_timeout,
        )
        vision = OllamaVisionClient(
            ollama_host=settings.ollama_url,
            model=settings.ollama_model,
            timeout=settings.ollama_timeout,
            strict_json=settings.ollama_strict_json,
        )
        rasterizer = PageRasterizer(
            debug_dir=settings.debug_image_dir,
            debug_strict=settings.debug_images_strict,
        )
        return cls(
            store,
            vision,
            rasterizer,
            process_id=settings.process_id,
            update_fields=settings.update_fields,
        )

    async def bootstrap(self) -> TaxonomyCache:
        """Ensure required custom fields and load taxonomy. Errors here abort the run."""
        cache = await TaxonomyCache.load(self.store, REQUIRED_CUSTOM_FIELDS)
        logger.info(f"Using {PROCESS_ID_FIELD}={self.process_id}, model={self.model_name}")
        return cache

    async def run(self) -> RunReport:
        """
        Run one reconciliation pass.

        Returns:
            RunReport with one outcome per selected document
        """
        cache = await self.bootstrap()
        documents = await self.store.list_unprocessed_documents(
            PROCESS_ID_FIELD, self.process_id, SKIP_FIELD
        )
        logger.info(f"Found {len(documents)} unprocessed documents")

        report = RunReport(process_id=self.process_id, found=len(documents))
        for document in documents:
            report.outcomes.append(await self.process_document(document, cache))

        logger.info(
            f"Processing complete: {report.updated} updated, {report.skipped} skipped with errors"
        )
        stats = self.vision.get_stats()
        logger.info(
            f"Vision model {stats['model']}: {stats['call_count']} calls, "
            f"{stats['error_count']} errors, avg {stats['avg_time_ms']:.0f}ms per page"
        )
        return report

    async def process_document(self, document: Document, cache: TaxonomyCache) -> DocumentOutcome:
        """Drive one document to a terminal state."""
        logger.info(f"Processing document {document.id}: {document.title}")
        ctx = DocumentContext(document=document, cache=cache)
        state = DocumentState.SELECTED

        while state not in TERMINAL_STATES:
            stage, step = self._steps[state]
            try:
                state = await step(ctx)
            except ProcessorError as e:
                logger.error(f"  ERROR ({stage}) document {document.id}: {e}")
                return self._skipped(ctx, stage, str(e))
            except Exception as e:
                logger.exception(f"  Unexpected error ({stage}) document {document.id}")
                return self._skipped(ctx, stage, f"{type(e).__name__}: {e}")

        logger.info(
            f"  Updated document {document.id}: title={ctx.merged.file_name}, "
            f"type={ctx.merged.document_type}, date={ctx.merged.document_date}, "
            f"{PROCESS_ID_FIELD}={self.process_id}"
        )
        return DocumentOutcome(
            document=document,
            state=state,
            merged=ctx.merged,
            update=ctx.update,
        )

    def _skipped(self, ctx: DocumentContext, stage: str, error: str) -> DocumentOutcome:
        return DocumentOutcome(
            document=ctx.document,
            state=DocumentState.SKIPPED_ERROR,
            failed_stage=stage,
            failed_page=ctx.current_page if stage == "analyze" else None,
            error=error,
            merged=ctx.merged,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _fetch(self, ctx: DocumentContext) -> DocumentState:
        ctx.blob = await self.store.download_document(ctx.document.id)
        ctx.existing_custom_fields = await self.store.get_custom_field_values(ctx.document.id)
        return DocumentState.FETCHED

    async def _rasterize(self, ctx: DocumentContext) -> DocumentState:
        loop = asyncio.get_running_loop()
        ctx.pages = await loop.run_in_executor(
            None,
            functools.partial(self.rasterizer.rasterize, ctx.blob, label=f"doc-{ctx.document.id}"),
        )
        logger.info(f"  Analyzing {len(ctx.pages)} page(s) with {self.model_name}...")
        return DocumentState.RASTERIZED

    async def _analyze(self, ctx: DocumentContext) -> DocumentState:
        def track(page_number: int) -> None:
            ctx.current_page = page_number

        ctx.analyses = await analyze_pages(
            self.vision, ctx.pages, ctx.cache.document_type_names, on_page=track
        )
        return DocumentState.ANALYZED

    async def _merge(self, ctx: DocumentContext) -> DocumentState:
        ctx.merged = merge_page_analyses(ctx.analyses)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                json.dumps(
                    {
                        "document_id": ctx.document.id,
                        "document_title": ctx.document.title,
                        "analysis": ctx.merged.model_dump(),
                    },
                    indent=2,
                    ensure_ascii=False,
                )
            )
        return DocumentState.MERGED

    async def _resolve(self, ctx: DocumentContext) -> DocumentState:
        """Map names to ids. A failed entity is dropped with a warning, not fatal."""
        merged = ctx.merged
        resolved = ResolvedTaxonomy()

        if "document_type" in self.update_fields and merged.document_type:
            try:
                resolved.document_type_id = ctx.cache.document_type_id(merged.document_type)
            except UnknownTaxonomyValue as e:
                logger.warning(f"  WARNING: {e}, skipping type update")

        if "correspondent" in self.update_fields and merged.correspondent:
            try:
                resolved.correspondent_id = await ctx.cache.ensure(
                    self.store, CORRESPONDENT, merged.correspondent
                )
                logger.info(f"  Correspondent: {merged.correspondent}")
            except ProcessorError as e:
                logger.warning(f"  WARNING: failed to ensure correspondent '{merged.correspondent}': {e}")

        if "tags" in self.update_fields:
            for name in merged.tags:
                try:
                    tag_id = await ctx.cache.ensure(self.store, TAG, name)
                except ProcessorError as e:
                    logger.warning(f"  WARNING: failed to ensure tag '{name}': {e}")
                    continue
                if tag_id not in resolved.tag_ids:
                    resolved.tag_ids.append(tag_id)
            if resolved.tag_ids:
                logger.info(f"  Tags: {merged.tags}")

        ctx.resolved = resolved
        return DocumentState.RESOLVED

    async def _apply(self, ctx: DocumentContext) -> DocumentState:
        ctx.update = build_update(
            ctx.merged,
            ctx.resolved,
            ctx.cache,
            self.update_fields,
            self.process_id,
            self.model_name,
            existing_custom_fields=ctx.existing_custom_fields,
        )
        await self.store.update_document(ctx.document.id, ctx.update)
        return DocumentState.UPDATED
