"""
Run configuration.

Reads from environment:
- PAPERLESS_URL / PAPERLESS_TOKEN: document store (required)
- OLLAMA_URL: Ollama server URL (default: http://localhost:11434)
- OLLAMA_MODEL: vision model (default: qwen3-vl:4b-instruct)
- OLLAMA_TIMEOUT / PAPERLESS_TIMEOUT: request timeouts in seconds
- OLLAMA_STRICT_JSON: reject model output that is not exactly one JSON object
- PROCESS_ID: processing version written to llm-process-id (default: 5)
- UPDATE_FIELDS: comma-separated update mask (default: all fields)
- DEBUG_IMAGE_DIR: where to keep copies of page images (default: disabled)
- DEBUG_IMAGES_STRICT: fail the document when debug copies can't be written
- LOG_LEVEL: logging level (default: INFO)
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from paperless_llm_processor.exceptions import ConfigurationError
from paperless_llm_processor.update_fields import ALL_UPDATE_FIELDS, parse_update_fields

# Custom fields the processor depends on (created on first run)
PROCESS_ID_FIELD = "llm-process-id"
SUMMARY_FIELD = "llm-summary"
MODEL_FIELD = "llm-model"
SKIP_FIELD = "llm-skip"

REQUIRED_CUSTOM_FIELDS = {
    PROCESS_ID_FIELD: "integer",
    SUMMARY_FIELD: "longtext",
    MODEL_FIELD: "string",
    SKIP_FIELD: "boolean",
}

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "qwen3-vl:4b-instruct"
DEFAULT_PROCESS_ID = 5

_TRUE_VALUES = ("1", "true", "yes", "y", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _env_bool(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in _TRUE_VALUES


@dataclass
class ProcessorSettings:
    """Settings for one reconciliation run."""

    paperless_url: str
    paperless_token: str
    ollama_url: str = DEFAULT_OLLAMA_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_timeout: float = 600.0
    ollama_strict_json: bool = False
    paperless_timeout: float = 60.0
    process_id: int = DEFAULT_PROCESS_ID
    update_fields: FrozenSet[str] = field(default_factory=lambda: frozenset(ALL_UPDATE_FIELDS))
    debug_image_dir: Optional[str] = None
    debug_images_strict: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProcessorSettings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: if the store URL/token are missing or a
                numeric variable does not parse
        """
        env = os.environ if env is None else env

        paperless_url = env.get("PAPERLESS_URL", "").strip()
        paperless_token = env.get("PAPERLESS_TOKEN", "").strip()
        if not paperless_url or not paperless_token:
            raise ConfigurationError("PAPERLESS_URL and PAPERLESS_TOKEN must be set")

        return cls(
            paperless_url=paperless_url.rstrip("/"),
            paperless_token=paperless_token,
            ollama_url=(env.get("OLLAMA_URL") or DEFAULT_OLLAMA_URL).rstrip("/"),
            ollama_model=env.get("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
            ollama_timeout=_env_float(env, "OLLAMA_TIMEOUT", 600.0),
            ollama_strict_json=_env_bool(env, "OLLAMA_STRICT_JSON"),
            paperless_timeout=_env_float(env, "PAPERLESS_TIMEOUT", 60.0),
            process_id=_env_int(env, "PROCESS_ID", DEFAULT_PROCESS_ID),
            update_fields=parse_update_fields(env.get("UPDATE_FIELDS")),
            debug_image_dir=env.get("DEBUG_IMAGE_DIR") or None,
            debug_images_strict=_env_bool(env, "DEBUG_IMAGES_STRICT"),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
