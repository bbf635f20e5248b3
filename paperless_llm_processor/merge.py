"""
Merge per-page analyses into one document-level record.

Rules, applied in page order:
- file_name, document_type, document_date, correspondent: the first page
  with a non-empty value wins
- summary, transcription: non-empty page values joined with a blank line
- tags: union, exact-match dedup, first-seen order
"""

from typing import Iterable, List

from paperless_llm_processor.schema import MergedAnalysis, PageAnalysis

SINGULAR_FIELDS = ("file_name", "document_type", "document_date", "correspondent")
TEXT_FIELDS = ("summary", "transcription")

TEXT_SEPARATOR = "\n\n"


def merge_page_analyses(pages: Iterable[PageAnalysis]) -> MergedAnalysis:
    """
    Combine page analyses into a MergedAnalysis.

    Args:
        pages: Page analyses in page order

    Returns:
        MergedAnalysis (all fields empty for no pages)
    """
    singular = {name: "" for name in SINGULAR_FIELDS}
    texts = {name: [] for name in TEXT_FIELDS}
    tags: List[str] = []
    seen_tags = set()
    page_count = 0

    for page in pages:
        page_count += 1

        for name in SINGULAR_FIELDS:
            value = getattr(page, name)
            if not singular[name] and value:
                singular[name] = value

        for name in TEXT_FIELDS:
            value = getattr(page, name)
            if value:
                texts[name].append(value)

        for tag in page.tags:
            if tag and tag not in seen_tags:
                seen_tags.add(tag)
                tags.append(tag)

    return MergedAnalysis(
        summary=TEXT_SEPARATOR.join(texts["summary"]),
        transcription=TEXT_SEPARATOR.join(texts["transcription"]),
        tags=tags,
        page_count=page_count,
        **singular,
    )
