"""
Document Schema: Pydantic models for Paperless documents and page analyses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

DATE_FORMATS = [
    "%Y-%m-%d",      # 2026-01-15
    "%Y/%m/%d",      # 2026/01/15
    "%m/%d/%Y",      # 01/15/2026
    "%m-%d-%Y",      # 01-15-2026
    "%d.%m.%Y",      # 15.01.2026
    "%B %d, %Y",     # January 15, 2026
    "%b %d, %Y",     # Jan 15, 2026
    "%d %B %Y",      # 15 January 2026
    "%d %b %Y",      # 15 Jan 2026
]


def normalize_date(value: str) -> str:
    """Normalize a date string to YYYY-MM-DD, or "" when unrecognised."""
    value = value.strip()
    if not value:
        return ""

    # ISO timestamps: keep the date part
    if len(value) > 10 and value[4] == "-" and value[10] in "T ":
        value = value[:10]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return ""


class Document(BaseModel):
    """Document as listed by the store."""

    id: int
    title: str = ""


class TaxonomyEntity(BaseModel):
    """Named classification object (tag, correspondent, document type)."""

    id: int
    name: str


class CustomField(TaxonomyEntity):
    """Custom field definition."""

    data_type: str = ""


class PageAnalysis(BaseModel):
    """Structured result of analyzing one page image."""

    summary: str = Field(..., description="Concise summary of the page")
    transcription: str = Field(..., description="Verbatim text of the page")
    file_name: str = Field(..., description="Suggested file name, no extension")
    document_type: str = Field(..., description="One of the known document types")
    document_date: str = Field(..., description="Primary document date (YYYY-MM-DD)")
    correspondent: str = Field(..., description="Entity the document pertains to")
    tags: List[str] = Field(..., description="Categorization keywords")

    @field_validator(
        "summary", "transcription", "file_name", "document_type", "correspondent", mode="before"
    )
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("document_date", mode="before")
    @classmethod
    def validate_date(cls, v):
        """Normalize to YYYY-MM-DD; an unreadable date counts as absent."""
        if v is None:
            return ""
        if not isinstance(v, str):
            return v
        return normalize_date(v)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [t.strip() for t in v if isinstance(t, str) and t.strip()]
        return v


class MergedAnalysis(BaseModel):
    """Document-level aggregate of all page analyses."""

    summary: str = ""
    transcription: str = ""
    file_name: str = ""
    document_type: str = ""
    document_date: str = ""
    correspondent: str = ""
    tags: List[str] = Field(default_factory=list)
    page_count: int = 0


class CustomFieldValue(BaseModel):
    """Value for one custom field on a document."""

    field: int
    value: Any


class DocumentUpdate(BaseModel):
    """Partial update for a document. Unset fields are left untouched."""

    title: Optional[str] = None
    content: Optional[str] = None
    document_type: Optional[int] = None
    created: Optional[str] = None
    correspondent: Optional[int] = None
    tags: Optional[List[int]] = None
    custom_fields: List[CustomFieldValue] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the PATCH request."""
        payload = self.model_dump(exclude_none=True)
        if not payload.get("custom_fields"):
            payload.pop("custom_fields", None)
        return payload

    class Config:
        json_schema_extra = {
            "example": {
                "title": "2024_Acme_Invoice",
                "document_type": 3,
                "created": "2024-01-15",
                "correspondent": 12,
                "tags": [4, 9],
                "custom_fields": [
                    {"field": 1, "value": 5},
                    {"field": 3, "value": "qwen3-vl:4b-instruct"},
                ],
            }
        }
