"""Custom exceptions for the paperless LLM processor."""

from typing import Optional


class ProcessorError(Exception):
    """Base exception for all processor errors."""
    pass


class ConfigurationError(ProcessorError):
    """Required run configuration is missing or invalid."""
    pass


# Remote services (Paperless-ngx, Ollama)

class TransportError(ProcessorError):
    """Network or HTTP-level failure talking to an external service."""
    pass


class RemoteRejected(ProcessorError):
    """External service answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# Vision analysis

class SchemaParseFailure(ProcessorError):
    """Model output is not JSON or does not match the requested schema."""
    pass


class EmptyResponse(ProcessorError):
    """Model returned no content."""
    pass


# Rasterization

class UnsupportedFormat(ProcessorError):
    """Document content type cannot be turned into page images."""
    pass


class ExternalToolFailure(ProcessorError):
    """The rasterizer subprocess failed or produced unusable output."""
    pass


# Taxonomy

class UnknownTaxonomyValue(ProcessorError):
    """A value does not name any known taxonomy entity."""
    pass
