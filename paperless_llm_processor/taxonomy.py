"""
Run-scoped taxonomy cache.

Name -> id maps for tags, correspondents, document types and custom fields,
loaded once per run and passed explicitly to every document. Tags and
correspondents are created on first use; creation goes through a lock so two
documents never create the same entity twice within a run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from paperless_llm_processor.exceptions import UnknownTaxonomyValue

logger = logging.getLogger(__name__)

TAG = "tag"
CORRESPONDENT = "correspondent"


@dataclass
class TaxonomyCache:
    """Name -> id lookups shared by all documents of one run."""

    custom_field_ids: Dict[str, int] = field(default_factory=dict)
    document_type_ids: Dict[str, int] = field(default_factory=dict)
    tag_ids: Dict[str, int] = field(default_factory=dict)
    correspondent_ids: Dict[str, int] = field(default_factory=dict)
    created: Dict[str, int] = field(default_factory=lambda: {TAG: 0, CORRESPONDENT: 0})
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    async def load(cls, store, custom_fields: Dict[str, str]) -> "TaxonomyCache":
        """
        Load taxonomy from the store and ensure the required custom fields.

        Args:
            store: PaperlessClient (or compatible)
            custom_fields: name -> data_type of custom fields that must exist
        """
        cache = cls()
        for name, data_type in custom_fields.items():
            cf = await store.ensure_custom_field(name, data_type)
            cache.custom_field_ids[name] = cf.id
            logger.info(f"Using custom field '{name}' (id={cf.id})")

        cache.document_type_ids = {dt.name: dt.id for dt in await store.list_document_types()}
        cache.tag_ids = {t.name: t.id for t in await store.list_tags()}
        cache.correspondent_ids = {c.name: c.id for c in await store.list_correspondents()}

        logger.info(
            f"Loaded {len(cache.document_type_ids)} document types, {len(cache.tag_ids)} tags, "
            f"{len(cache.correspondent_ids)} correspondents"
        )
        return cache

    @property
    def document_type_names(self) -> List[str]:
        return list(self.document_type_ids)

    def custom_field_id(self, name: str) -> int:
        return self.custom_field_ids[name]

    def document_type_id(self, name: str) -> int:
        """Look up a document type; types are never created by the processor."""
        try:
            return self.document_type_ids[name]
        except KeyError:
            raise UnknownTaxonomyValue(f"unknown document type '{name}'") from None

    async def ensure(self, store, kind: str, name: str) -> int:
        """
        Return the id for a tag or correspondent, creating it if absent.

        Args:
            store: PaperlessClient (or compatible)
            kind: TAG or CORRESPONDENT
            name: Exact entity name
        """
        if kind == TAG:
            ids, create = self.tag_ids, store.create_tag
        elif kind == CORRESPONDENT:
            ids, create = self.correspondent_ids, store.create_correspondent
        else:
            raise ValueError(f"unsupported taxonomy kind: {kind}")

        if name in ids:
            return ids[name]

        async with self._lock:
            # another task may have created it while we waited
            if name in ids:
                return ids[name]
            entity = await create(name)
            ids[name] = entity.id
            self.created[kind] += 1
            logger.info(f"Created {kind} '{name}' (id={entity.id})")
            return entity.id
