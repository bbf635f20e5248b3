"""Shared fixtures for tests."""

import base64
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from paperless_llm_processor.exceptions import ProcessorError
from paperless_llm_processor.paperless.client import PaperlessClient
from paperless_llm_processor.schema import PageAnalysis
from paperless_llm_processor.vlm.vlm_types import PageImage

PAPERLESS_URL = "http://paperless.test"


# ---------------------------------------------------------------------------
# Fake Paperless-ngx server
# ---------------------------------------------------------------------------

class FakePaperless:
    """In-memory Paperless-ngx API served through httpx.MockTransport."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.custom_fields: Dict[str, Dict[str, Any]] = {}
        self.documents: Dict[int, Dict[str, Any]] = {}
        self.tags: Dict[str, int] = {}
        self.correspondents: Dict[str, int] = {}
        self.document_types: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []
        self.patches: List[tuple] = []
        self.fail_download = set()
        self.fail_patch = set()
        self.fail_create_tag = set()
        self.malformed_create_tag = set()
        self.patch_status = 200
        self._next_id = 100

    # -- setup helpers --------------------------------------------------

    def new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_custom_field(self, name: str, data_type: str) -> int:
        field_id = self.new_id()
        self.custom_fields[name] = {"id": field_id, "name": name, "data_type": data_type}
        return field_id

    def add_document(self, doc_id: int, title: str = "", blob: bytes = b"", **values: Any) -> None:
        """values are custom field values keyed by field name (dashes as underscores)."""
        custom = {}
        for key, value in values.items():
            name = key.replace("_", "-")
            if name not in self.custom_fields:
                self.add_custom_field(name, "string")
            custom[self.custom_fields[name]["id"]] = value
        self.documents[doc_id] = {
            "id": doc_id,
            "title": title or f"doc {doc_id}",
            "blob": blob or f"doc-{doc_id}".encode(),
            "custom_fields": custom,
        }

    def field_value(self, doc_id: int, name: str) -> Any:
        field_id = self.custom_fields[name]["id"]
        return self.documents[doc_id]["custom_fields"].get(field_id)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> PaperlessClient:
        return PaperlessClient(PAPERLESS_URL, "secret", transport=self.transport)

    # -- query evaluation -----------------------------------------------

    def _matches(self, doc: Dict[str, Any], query: list) -> bool:
        if query[0] in ("OR", "AND"):
            results = [self._matches(doc, sub) for sub in query[1]]
            return any(results) if query[0] == "OR" else all(results)

        name, op, value = query
        field = self.custom_fields.get(name)
        present = field is not None and field["id"] in doc["custom_fields"]
        current = doc["custom_fields"].get(field["id"]) if present else None

        if op == "exists":
            return present == value
        if op == "isnull":
            return (present and current is None) == value
        if op == "lt":
            return present and current is not None and current < value
        if op == "exact":
            return present and current == value
        raise AssertionError(f"unsupported operator {op}")

    # -- request handling -----------------------------------------------

    def _page(self, request: httpx.Request, items: List[Dict[str, Any]]) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        start = (page - 1) * self.page_size
        chunk = items[start:start + self.page_size]
        next_url = None
        if start + self.page_size < len(items):
            next_url = str(request.url.copy_set_param("page", page + 1))
        return httpx.Response(200, json={"count": len(items), "next": next_url, "results": chunk})

    def _create(self, registry: Dict[str, int], request: httpx.Request) -> httpx.Response:
        name = json.loads(request.content)["name"]
        registry[name] = self.new_id()
        return httpx.Response(201, json={"id": registry[name], "name": name})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != "Token secret":
            return httpx.Response(401, json={"detail": "Invalid token."})

        path = request.url.path
        method = request.method
        parts = [p for p in path.split("/") if p]

        if path == "/api/" and method == "GET":
            return httpx.Response(200, json={})

        if path == "/api/documents/" and method == "GET":
            docs = list(self.documents.values())
            raw_query = request.url.params.get("custom_field_query")
            if raw_query:
                query = json.loads(raw_query)
                docs = [d for d in docs if self._matches(d, query)]
            return self._page(request, [{"id": d["id"], "title": d["title"]} for d in docs])

        if len(parts) >= 3 and parts[:2] == ["api", "documents"]:
            doc_id = int(parts[2])
            doc = self.documents.get(doc_id)
            if doc is None:
                return httpx.Response(404, json={"detail": "Not found."})
            if parts[3:] == ["download"]:
                if doc_id in self.fail_download:
                    return httpx.Response(500, text="storage unavailable")
                return httpx.Response(200, content=doc["blob"])
            if method == "GET":
                return httpx.Response(200, json={
                    "id": doc_id,
                    "custom_fields": [
                        {"field": k, "value": v} for k, v in doc["custom_fields"].items()
                    ],
                })
            if method == "PATCH":
                if doc_id in self.fail_patch:
                    return httpx.Response(400, json={"created": ["Invalid date."]})
                body = json.loads(request.content)
                self.patches.append((doc_id, body))
                for key, value in body.items():
                    if key == "custom_fields":
                        doc["custom_fields"] = {cf["field"]: cf["value"] for cf in value}
                    else:
                        doc[key] = value
                if self.patch_status == 204:
                    return httpx.Response(204)
                return httpx.Response(self.patch_status, json={"id": doc_id})

        if path == "/api/custom_fields/":
            if method == "GET":
                return self._page(request, list(self.custom_fields.values()))
            body = json.loads(request.content)
            field_id = self.add_custom_field(body["name"], body["data_type"])
            return httpx.Response(201, json=self.custom_fields[body["name"]] | {"id": field_id})

        registries = {
            "/api/tags/": self.tags,
            "/api/correspondents/": self.correspondents,
            "/api/document_types/": self.document_types,
        }
        if path in registries:
            registry = registries[path]
            if method == "GET":
                return self._page(request, [{"id": i, "name": n} for n, i in registry.items()])
            name = json.loads(request.content)["name"]
            if path == "/api/tags/" and name in self.malformed_create_tag:
                return httpx.Response(201, json={"name": name})
            if path == "/api/tags/" and name in self.fail_create_tag:
                return httpx.Response(400, json={"name": ["Invalid tag."]})
            return self._create(registry, request)

        return httpx.Response(404, json={"detail": "Not found."})

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)


@pytest.fixture
def paperless():
    server = FakePaperless()
    server.document_types.update({"Invoice": 1, "Letter": 2, "Receipt": 3})
    return server


# ---------------------------------------------------------------------------
# Fake vision client and rasterizer
# ---------------------------------------------------------------------------

def page_image(doc_id: int, page: int) -> PageImage:
    return PageImage(page_number=page, data=f"doc{doc_id}-p{page}".encode(), media_type="image/jpeg")


def make_page(**overrides: Any) -> PageAnalysis:
    data = {
        "summary": "",
        "transcription": "",
        "file_name": "",
        "document_type": "",
        "document_date": "",
        "correspondent": "",
        "tags": [],
    }
    data.update(overrides)
    return PageAnalysis(**data)


class FakeRasterizer:
    """Returns `pages[doc_id]` page images for a blob `doc-<id>`."""

    def __init__(self, pages: Optional[Dict[int, int]] = None):
        self.pages = pages or {}
        self.errors: Dict[int, Exception] = {}
        self.calls: List[int] = []

    def rasterize(self, blob: bytes, content_type: Optional[str] = None, label: Optional[str] = None):
        doc_id = int(blob.decode().split("-")[1])
        self.calls.append(doc_id)
        if doc_id in self.errors:
            raise self.errors[doc_id]
        return [page_image(doc_id, n) for n in range(1, self.pages.get(doc_id, 1) + 1)]


class FakeVision:
    """Scripted analyses keyed by (doc_id, page)."""

    def __init__(self, model: str = "test-model"):
        self.model = model
        self.results: Dict[tuple, Any] = {}
        self.calls: List[tuple] = []
        self.document_types_seen: List[List[str]] = []

    def set(self, doc_id: int, page: int, result: Any) -> None:
        self.results[(doc_id, page)] = result

    async def analyze_page(self, image_b64: str, document_types: List[str]) -> PageAnalysis:
        label = base64.b64decode(image_b64).decode()  # "doc<id>-p<page>"
        doc_part, page_part = label.split("-")
        key = (int(doc_part[3:]), int(page_part[1:]))
        self.calls.append(key)
        self.document_types_seen.append(list(document_types))
        result = self.results.get(key, make_page(summary=f"summary {label}"))
        if isinstance(result, ProcessorError):
            raise result
        return result

    def get_stats(self) -> Dict[str, Any]:
        errors = sum(1 for key in self.calls if isinstance(self.results.get(key), ProcessorError))
        return {
            "call_count": len(self.calls),
            "error_count": errors,
            "total_time_ms": 0.0,
            "avg_time_ms": 0.0,
            "model": self.model,
        }

    async def is_available(self) -> bool:
        return True


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def vision():
    return FakeVision()


# ---------------------------------------------------------------------------
# Real PDFs
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_pdf_bytes(tmp_path):
    """
    Generate a small three-page PDF.

    Uses reportlab; tests that need a real PDF are skipped without it.
    """
    try:
        from reportlab.lib.pagesizes import letter
        from reportlab.pdfgen import canvas
    except ImportError:
        pytest.skip("reportlab not installed - install it for full PDF tests")

    pdf_path = tmp_path / "sample.pdf"
    c = canvas.Canvas(str(pdf_path), pagesize=letter)
    width, height = letter
    for page in range(1, 4):
        c.setFont("Helvetica-Bold", 18)
        c.drawString(72, height - 72, "INVOICE INV-2026-000042")
        c.setFont("Helvetica", 10)
        c.drawString(72, height - 100, f"Page {page} of 3")
        c.drawString(72, height - 115, "Springfield Energy Services LLC")
        c.showPage()
    c.save()

    return pdf_path.read_bytes()
