"""
Paperless-ngx REST client.

All list endpoints follow the `next` cursor until it is exhausted and return
everything in memory. That is fine for personal archives; very large stores
would want streaming instead.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from paperless_llm_processor.exceptions import RemoteRejected, TransportError
from paperless_llm_processor.schema import (
    CustomField,
    CustomFieldValue,
    Document,
    DocumentUpdate,
    TaxonomyEntity,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class PaperlessClient:
    """
    Async client for the Paperless-ngx API.

    Usage:
        async with PaperlessClient(url, token) as client:
            docs = await client.list_unprocessed_documents("llm-process-id", 5, "llm-skip")
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Token {token}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PaperlessClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request; any non-2xx status raises RemoteRejected."""
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url}: {e}") from e

        if not response.is_success:
            raise RemoteRejected(
                f"paperless returned status {response.status_code} for {method} {url}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteRejected(
                f"decoding response from {response.request.url}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    @staticmethod
    def _validate(model: Type[ModelT], data: Any, response: httpx.Response) -> ModelT:
        """Parse a response object into `model`; a malformed body is a rejection."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteRejected(
                f"unexpected response from {response.request.url}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def _paginate(
        self,
        url: str,
        model: Type[ModelT],
        params: Optional[Dict[str, Any]] = None,
    ) -> List[ModelT]:
        """Fetch every page of a list endpoint."""
        results: List[ModelT] = []
        next_url: Optional[str] = url

        while next_url:
            response = await self._request("GET", next_url, params=params)
            page = self._json(response)
            results.extend(self._validate(model, item, response) for item in page.get("results", []))
            next_url = page.get("next")
            # the next URL already carries the query string
            params = None

        return results

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def list_documents(self, custom_field_query: Optional[list] = None) -> List[Document]:
        """
        List documents, optionally filtered by a custom field query.

        Args:
            custom_field_query: Paperless query expression, e.g.
                ["llm-process-id", "lt", 5]
        """
        params: Dict[str, Any] = {"fields": "id,title"}
        if custom_field_query is not None:
            params["custom_field_query"] = json.dumps(custom_field_query)
        return await self._paginate("/api/documents/", Document, params=params)

    async def list_unprocessed_documents(
        self,
        marker_field: str,
        version: int,
        skip_field: Optional[str] = None,
    ) -> List[Document]:
        """
        Documents whose marker is absent or below `version`, minus skipped ones.

        Makes one query per predicate and deduplicates by document ID,
        keeping first-seen order.
        """
        absent = await self.list_documents(
            ["OR", [[marker_field, "exists", False], [marker_field, "isnull", True]]]
        )
        outdated = await self.list_documents([marker_field, "lt", version])

        skipped_ids = set()
        if skip_field:
            skipped = await self.list_documents([skip_field, "exact", True])
            skipped_ids = {doc.id for doc in skipped}

        seen = set()
        result = []
        for doc in absent + outdated:
            if doc.id in seen or doc.id in skipped_ids:
                continue
            seen.add(doc.id)
            result.append(doc)

        logger.debug(
            f"Unprocessed query: {len(absent)} without marker, {len(outdated)} below {version}, "
            f"{len(skipped_ids)} skipped"
        )
        return result

    async def download_document(self, document_id: int) -> bytes:
        """Download the original file for a document."""
        response = await self._request("GET", f"/api/documents/{document_id}/download/")
        return response.content

    async def get_custom_field_values(self, document_id: int) -> List[CustomFieldValue]:
        """Custom field values currently set on a document."""
        response = await self._request(
            "GET", f"/api/documents/{document_id}/", params={"fields": "id,custom_fields"}
        )
        data = self._json(response)
        return [self._validate(CustomFieldValue, item, response) for item in data.get("custom_fields") or []]

    async def update_document(self, document_id: int, update: DocumentUpdate) -> None:
        """Apply a partial update in a single PATCH request."""
        await self._request(
            "PATCH",
            f"/api/documents/{document_id}/",
            json=update.to_payload(),
        )

    # ------------------------------------------------------------------
    # Custom fields
    # ------------------------------------------------------------------

    async def list_custom_fields(self) -> List[CustomField]:
        return await self._paginate("/api/custom_fields/", CustomField)

    async def create_custom_field(self, name: str, data_type: str) -> CustomField:
        response = await self._request(
            "POST",
            "/api/custom_fields/",
            json={"name": name, "data_type": data_type},
        )
        return self._validate(CustomField, self._json(response), response)

    async def ensure_custom_field(self, name: str, data_type: str) -> CustomField:
        """Return the custom field with the given name, creating it if missing."""
        for existing in await self.list_custom_fields():
            if existing.name == name:
                return existing
        logger.info(f"Creating custom field '{name}' ({data_type})")
        return await self.create_custom_field(name, data_type)

    # ------------------------------------------------------------------
    # Taxonomy
    # ------------------------------------------------------------------

    async def list_document_types(self) -> List[TaxonomyEntity]:
        return await self._paginate("/api/document_types/", TaxonomyEntity)

    async def list_tags(self) -> List[TaxonomyEntity]:
        return await self._paginate("/api/tags/", TaxonomyEntity)

    async def create_tag(self, name: str) -> TaxonomyEntity:
        response = await self._request("POST", "/api/tags/", json={"name": name})
        return self._validate(TaxonomyEntity, self._json(response), response)

    async def list_correspondents(self) -> List[TaxonomyEntity]:
        return await self._paginate("/api/correspondents/", TaxonomyEntity)

    async def create_correspondent(self, name: str) -> TaxonomyEntity:
        response = await self._request(
            "POST", "/api/correspondents/", json={"name": name}
        )
        return self._validate(TaxonomyEntity, self._json(response), response)

    async def health_check(self) -> bool:
        """Check that the API answers and the token is accepted."""
        try:
            await self._request("GET", "/api/")
            return True
        except (TransportError, RemoteRejected) as e:
            logger.error(f"Paperless health check failed: {e}")
            return False
