"""
Ollama Vision Client: per-page document analysis with a local VLM.

Uses Ollama's chat API with a JSON schema `format`, so each page comes back
as structured output. Temperature is pinned to 0.

Setup:
    ollama serve
    ollama pull qwen3-vl:4b-instruct

Models:
    - qwen3-vl:4b-instruct  - default
    - qwen3-vl:8b-instruct  - higher quality, slower
"""

from typing import Any, Dict, List, Optional
import json
import logging
import re
import time

import httpx
from pydantic import ValidationError

from paperless_llm_processor.exceptions import (
    EmptyResponse,
    RemoteRejected,
    SchemaParseFailure,
    TransportError,
)
from paperless_llm_processor.schema import PageAnalysis
from paperless_llm_processor.vlm.prompts import build_prompt, build_schema

logger = logging.getLogger(__name__)


def _tail(text: str, n: int) -> str:
    if len(text) <= n:
        return text
    return "..." + text[-n:]


class OllamaVisionClient:
    """
    Vision-language model via Ollama.

    Speed: seconds to minutes per page depending on hardware, hence the
    long default timeout. No retries: a failed page fails its document.
    """

    def __init__(
        self,
        ollama_host: str = "http://localhost:11434",
        model: str = "qwen3-vl:4b-instruct",
        timeout: float = 600.0,
        strict_json: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ollama_host = ollama_host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.strict_json = strict_json
        self.call_count = 0
        self.error_count = 0
        self.total_time_ms = 0.0
        self._transport = transport
        self._available: Optional[bool] = None

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout if timeout is None else timeout,
            transport=self._transport,
        )

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
        if self._available is not None:
            return self._available

        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.ollama_host}/api/tags")
                if response.status_code != 200:
                    self._available = False
                    return False

                models = response.json().get("models", [])
                model_names = [m.get("name", "") for m in models]
                self._available = any(
                    name == self.model or name == f"{self.model}:latest" for name in model_names
                )

                if not self._available:
                    logger.warning(
                        f"Model '{self.model}' not found in Ollama (available: {model_names}). "
                        f"Run: ollama pull {self.model}"
                    )
                return self._available

        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Ollama not available at {self.ollama_host}: {e}")
            self._available = False
            return False

    async def analyze_page(self, image_b64: str, document_types: List[str]) -> PageAnalysis:
        """
        Analyze one page image.

        Args:
            image_b64: Base64-encoded page image
            document_types: Valid document type names (constrains the answer)

        Returns:
            PageAnalysis parsed from the model output

        Raises:
            TransportError, RemoteRejected, EmptyResponse, SchemaParseFailure
        """
        start_time = time.time()
        try:
            content = await self._call_ollama(
                image_b64,
                build_prompt(document_types),
                build_schema(document_types),
            )
            data = self._parse_json_response(content)
            try:
                analysis = PageAnalysis.model_validate(data)
            except ValidationError as e:
                raise SchemaParseFailure(f"response does not match schema: {e}") from e
        except Exception:
            self.error_count += 1
            raise
        finally:
            self.total_time_ms += (time.time() - start_time) * 1000

        return analysis

    async def _call_ollama(self, image_b64: str, prompt: str, schema: Dict[str, Any]) -> str:
        """Make API call to Ollama and return the message content."""
        self.call_count += 1
        payload = {
            "model": self.model,
            "messages": [
                {"role": "user", "content": prompt, "images": [image_b64]},
            ],
            "stream": False,
            "think": False,
            "format": schema,
            "options": {"temperature": 0},
        }

        logger.debug(f"Sending request to Ollama (model={self.model})")
        try:
            async with self._client() as client:
                response = await client.post(f"{self.ollama_host}/api/chat", json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"calling ollama API: {e}") from e

        if response.status_code != 200:
            raise RemoteRejected(
                f"ollama returned status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise SchemaParseFailure(f"decoding response: {e}: body={_tail(response.text, 200)}") from e

        if result.get("error"):
            raise RemoteRejected(f"ollama error: {result['error']}", status_code=response.status_code)

        content = (result.get("message") or {}).get("content") or ""
        logger.debug(f"Ollama response: done={result.get('done')}, content_len={len(content)}")

        if not content.strip():
            raise EmptyResponse(f"ollama returned empty response: done={result.get('done')}")

        return content

    def _parse_json_response(self, text: str) -> Dict[str, Any]:
        """
        Parse JSON from VLM response.

        With strict_json the content must be exactly one JSON object;
        otherwise markdown fences and surrounding prose are tolerated.
        """
        # Try direct parse
        try:
            return self._as_object(json.loads(text))
        except json.JSONDecodeError as e:
            if self.strict_json:
                raise SchemaParseFailure(
                    f"response is not valid JSON: {e}: last_200={_tail(text, 200)}"
                ) from e

        # Try extracting from markdown code block
        json_match = re.search(r"```(?:json)?\n?(.*?)\n?```", text, re.DOTALL)
        if json_match:
            try:
                return self._as_object(json.loads(json_match.group(1)))
            except json.JSONDecodeError:
                pass

        # Try bare JSON object
        json_match = re.search(r"\{.*\}", text, re.DOTALL)
        if json_match:
            try:
                return self._as_object(json.loads(json_match.group(0)))
            except json.JSONDecodeError:
                pass

        raise SchemaParseFailure(f"response is not valid JSON: len={len(text)}, last_200={_tail(text, 200)}")

    @staticmethod
    def _as_object(data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise SchemaParseFailure(f"expected a JSON object, got {type(data).__name__}")
        return data

    def get_stats(self) -> Dict:
        """Get usage statistics."""
        return {
            "call_count": self.call_count,
            "error_count": self.error_count,
            "total_time_ms": self.total_time_ms,
            "avg_time_ms": self.total_time_ms / max(self.call_count, 1),
            "model": self.model,
        }
