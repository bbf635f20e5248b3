"""Tests for merging per-page analyses."""

from paperless_llm_processor.merge import merge_page_analyses

from tests.conftest import make_page


class TestMergePageAnalyses:
    def test_no_pages(self):
        merged = merge_page_analyses([])
        assert merged.page_count == 0
        assert merged.summary == ""
        assert merged.tags == []

    def test_single_page_passes_through(self):
        merged = merge_page_analyses([
            make_page(
                summary="Invoice",
                transcription="INVOICE 42",
                file_name="2026_Acme_Invoice",
                document_type="Invoice",
                document_date="2026-01-15",
                correspondent="Acme",
                tags=["Acme", "IRS"],
            )
        ])
        assert merged.file_name == "2026_Acme_Invoice"
        assert merged.document_type == "Invoice"
        assert merged.document_date == "2026-01-15"
        assert merged.correspondent == "Acme"
        assert merged.summary == "Invoice"
        assert merged.tags == ["Acme", "IRS"]
        assert merged.page_count == 1

    def test_first_non_empty_singular_value_wins(self):
        merged = merge_page_analyses([
            make_page(file_name="", document_type="Letter", correspondent=""),
            make_page(file_name="second", document_type="Invoice", correspondent="Acme"),
            make_page(file_name="third", correspondent="Other"),
        ])
        assert merged.file_name == "second"
        assert merged.document_type == "Letter"
        assert merged.correspondent == "Acme"

    def test_date_from_later_page(self):
        merged = merge_page_analyses([
            make_page(document_date=""),
            make_page(document_date="2025-12-31"),
        ])
        assert merged.document_date == "2025-12-31"

    def test_text_joined_with_blank_line(self):
        merged = merge_page_analyses([
            make_page(summary="S1", transcription="T1"),
            make_page(summary="S2", transcription="T2"),
        ])
        assert merged.summary == "S1\n\nS2"
        assert merged.transcription == "T1\n\nT2"

    def test_empty_text_skipped(self):
        merged = merge_page_analyses([
            make_page(summary="S1"),
            make_page(summary=""),
            make_page(summary="S3"),
        ])
        assert merged.summary == "S1\n\nS3"
        assert merged.page_count == 3

    def test_tags_deduplicated_in_first_seen_order(self):
        merged = merge_page_analyses([
            make_page(tags=["Acme", "IRS"]),
            make_page(tags=["IRS", "John Smith"]),
        ])
        assert merged.tags == ["Acme", "IRS", "John Smith"]

    def test_tag_dedup_is_case_sensitive(self):
        merged = merge_page_analyses([
            make_page(tags=["tax"]),
            make_page(tags=["Tax", "tax"]),
        ])
        assert merged.tags == ["tax", "Tax"]
