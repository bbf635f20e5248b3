"""Prompt and structured-output schema for per-page document analysis."""

from typing import Any, Dict, List

REQUIRED_FIELDS = [
    "summary",
    "transcription",
    "file_name",
    "document_type",
    "document_date",
    "correspondent",
    "tags",
]


def build_schema(document_types: List[str]) -> Dict[str, Any]:
    """JSON schema passed as Ollama's `format` to constrain the answer."""
    document_type: Dict[str, Any] = {
        "type": "string",
        "description": "The type of document",
    }
    if document_types:
        document_type["enum"] = list(document_types)

    return {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "A concise summary of the page including what it is, relevant dates, "
                "people, transactions, entities, accounts, and key details.",
            },
            "transcription": {
                "type": "string",
                "description": "The full text visible on the page, transcribed verbatim.",
            },
            "file_name": {
                "type": "string",
                "description": "Suggested file name for the document",
            },
            "document_type": document_type,
            "document_date": {
                "type": "string",
                "description": "The date of the document in YYYY-MM-DD format, or empty string "
                "if not confidently determined",
            },
            "correspondent": {
                "type": "string",
                "description": "The primary person, business, organization or government agency "
                "this document pertains to, or empty string.",
            },
            "tags": {
                "type": "array",
                "description": "Short keywords that categorize this document.",
                "items": {"type": "string"},
            },
        },
        "required": list(REQUIRED_FIELDS),
    }


def build_prompt(document_types: List[str]) -> str:
    type_list = ", ".join(document_types) if document_types else "any short descriptive type"
    return f"""You are looking at a single page of a document. Analyze this page image and provide:
1. A concise summary of this page's content: what it is, relevant dates, people, transactions, entities, accounts, and any other key details.
2. A verbatim transcription of all text on the page.
3. A suggested file name (descriptive, using underscores, with no extension).
4. The document type, which must be one of: {type_list}.
5. The document date in YYYY-MM-DD format. Only provide a date if you are confident it is the primary date of the document (e.g. invoice date, letter date, transaction date). Use an empty string if uncertain.
6. The correspondent: the main person, business, organization or government agency this document pertains to. Use the proper name in title case, or an empty string.
7. A list of tags: short keywords that would help find this document later.

Respond with JSON containing "summary", "transcription", "file_name", "document_type", "document_date", "correspondent", and "tags" fields. The response MUST be valid JSON."""
