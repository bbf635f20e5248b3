"""
Selective field policy: which merged attributes are written back.

UPDATE_FIELDS is a comma-separated list such as "title, tags". Empty or
unset means every field. Unknown names are kept as-is; they never match a
payload field, so they simply have no effect.
"""

import logging
from typing import FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

ALL_UPDATE_FIELDS = (
    "title",
    "document_type",
    "document_date",
    "summary",
    "content",
    "correspondent",
    "tags",
)


def parse_update_fields(raw: Optional[str]) -> FrozenSet[str]:
    """
    Parse a comma-separated field list into an update mask.

    Args:
        raw: Configuration string, e.g. "title,tags"

    Returns:
        Frozen set of field names (all fields when raw is empty)
    """
    if raw is None or not raw.strip():
        return frozenset(ALL_UPDATE_FIELDS)

    fields = frozenset(token.strip() for token in raw.split(",") if token.strip())
    if not fields:
        return frozenset(ALL_UPDATE_FIELDS)

    unknown = sorted(fields.difference(ALL_UPDATE_FIELDS))
    if unknown:
        logger.warning(f"Unknown update fields have no effect: {', '.join(unknown)}")

    return fields


def serialize_update_fields(mask: Iterable[str]) -> str:
    """Render a mask back to its canonical comma-separated form."""
    mask = set(mask)
    known = [name for name in ALL_UPDATE_FIELDS if name in mask]
    unknown = sorted(mask.difference(ALL_UPDATE_FIELDS))
    return ",".join(known + unknown)
