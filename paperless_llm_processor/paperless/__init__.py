"""
Paperless-ngx document store integration.

Usage:
    from paperless_llm_processor.paperless import PaperlessClient

    async with PaperlessClient("http://paperless:8000", token) as client:
        docs = await client.list_documents()
"""

from paperless_llm_processor.paperless.client import PaperlessClient

__all__ = ["PaperlessClient"]
