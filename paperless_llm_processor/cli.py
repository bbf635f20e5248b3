"""
Command line entry point.

Examples:
  paperless-llm-processor run
  paperless-llm-processor run --process-id 6 --update-fields title,tags
  paperless-llm-processor documents
  paperless-llm-processor analyze scan.pdf
"""

import argparse
import asyncio
import dataclasses
import functools
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from paperless_llm_processor.config import (
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_URL,
    ProcessorSettings,
)
from paperless_llm_processor.engine import ReconciliationEngine, analyze_pages
from paperless_llm_processor.exceptions import ConfigurationError, ProcessorError
from paperless_llm_processor.merge import merge_page_analyses
from paperless_llm_processor.paperless.client import PaperlessClient
from paperless_llm_processor.rasterizer import PageRasterizer
from paperless_llm_processor.update_fields import parse_update_fields
from paperless_llm_processor.vlm.ollama_client import OllamaVisionClient

logger = logging.getLogger("paperless_llm_processor")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paperless-llm-processor",
        description="Analyze Paperless-ngx documents page by page with a local Ollama vision model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Process every unprocessed document once")
    run.add_argument("--process-id", type=int, help="Processing version (env: PROCESS_ID)")
    run.add_argument("--update-fields", help="Comma-separated fields to write (env: UPDATE_FIELDS)")
    run.add_argument("--model", help="Ollama model (env: OLLAMA_MODEL)")

    sub.add_parser("documents", help="List all documents as JSON")

    analyze = sub.add_parser("analyze", help="Analyze a local PDF or image and print the result")
    analyze.add_argument("file", help="Path to a PDF or image file")
    analyze.add_argument("--model", help="Ollama model (env: OLLAMA_MODEL)")

    return parser


def _apply_overrides(settings: ProcessorSettings, args: argparse.Namespace) -> ProcessorSettings:
    changes = {}
    if getattr(args, "process_id", None) is not None:
        changes["process_id"] = args.process_id
    if getattr(args, "update_fields", None) is not None:
        changes["update_fields"] = parse_update_fields(args.update_fields)
    if getattr(args, "model", None):
        changes["ollama_model"] = args.model
    return dataclasses.replace(settings, **changes)


async def _preflight(engine: ReconciliationEngine) -> bool:
    """Check Paperless-ngx and the Ollama model before touching any document."""
    if not await engine.store.health_check():
        logger.error(f"Paperless-ngx is not reachable at {engine.store.base_url}")
        return False
    if not await engine.vision.is_available():
        logger.error(f"Ollama model '{engine.vision.model}' is not available")
        return False
    return True


async def _run(settings: ProcessorSettings) -> int:
    engine = ReconciliationEngine.from_settings(settings)
    try:
        if not await _preflight(engine):
            return 1
        report = await engine.run()
    finally:
        await engine.store.aclose()
    print(json.dumps(report.to_dict(), indent=2))
    return 0


async def _documents(settings: ProcessorSettings) -> int:
    async with PaperlessClient(
        settings.paperless_url, settings.paperless_token, timeout=settings.paperless_timeout
    ) as client:
        documents = await client.list_documents()
    print(json.dumps([doc.model_dump() for doc in documents], indent=2, ensure_ascii=False))
    return 0


async def _analyze(path: Path, args: argparse.Namespace) -> int:
    """Analyze a local file; uses the store's document types when configured."""
    document_types: List[str] = []
    try:
        settings = ProcessorSettings.from_env()
    except ConfigurationError:
        logger.info("Paperless-ngx not configured, analyzing without document types")
    else:
        async with PaperlessClient(
            settings.paperless_url, settings.paperless_token, timeout=settings.paperless_timeout
        ) as client:
            document_types = [dt.name for dt in await client.list_document_types()]

    vision = OllamaVisionClient(
        ollama_host=os.getenv("OLLAMA_URL") or DEFAULT_OLLAMA_URL,
        model=args.model or os.getenv("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
    )
    rasterizer = PageRasterizer(debug_dir=os.getenv("DEBUG_IMAGE_DIR") or None)

    loop = asyncio.get_running_loop()
    pages = await loop.run_in_executor(
        None, functools.partial(rasterizer.rasterize, path.read_bytes(), label=path.stem)
    )
    analyses = await analyze_pages(vision, pages, document_types)
    merged = merge_page_analyses(analyses)

    print(
        json.dumps(
            {
                "filename": path.name,
                "pages": [a.model_dump() for a in analyses],
                "analysis": merged.model_dump(),
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)

    if args.command == "analyze":
        setup_logging("DEBUG" if args.verbose else os.getenv("LOG_LEVEL", "INFO"))
        path = Path(args.file)
        if not path.is_file():
            logger.error(f"File '{path}' does not exist")
            return 1
        try:
            return asyncio.run(_analyze(path, args))
        except ProcessorError as e:
            logger.error(f"Analysis failed: {e}")
            return 1

    try:
        settings = _apply_overrides(ProcessorSettings.from_env(), args)
    except ConfigurationError as e:
        setup_logging()
        logger.error(str(e))
        return 1

    setup_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        if args.command == "documents":
            return asyncio.run(_documents(settings))
        return asyncio.run(_run(settings))
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 130
    except ProcessorError as e:
        logger.error(f"Run aborted: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
