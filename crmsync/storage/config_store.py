"""Mapping configuration per source, loaded from the key-value store."""
import logging
from typing import Any, Dict, List, Optional

from crmsync.errors import ConfigError
from crmsync.schema.models import DeletionPolicy, MappingSpec, SourceSettings, TargetRef
from crmsync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class MappingConfigStore:
    """Reads and writes SourceSettings under mappings:<source_id>"""

    PREFIX = "mappings:"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def source_ids(self) -> List[str]:
        return [key[len(self.PREFIX):] for key in self.store.keys(self.PREFIX)]

    def load(self, source_id: str) -> Optional[SourceSettings]:
        """
        Load a source's settings

        Invalid mapping entries are logged and skipped. Returns None when the
        source has no configuration at all.
        """
        raw = self.store.get(f"{self.PREFIX}{source_id}")
        if raw is None:
            return None
        return self.parse(source_id, raw)

    def parse(self, source_id: str, raw: Any) -> SourceSettings:
        if isinstance(raw, list):
            raw = {"mappings": raw}
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration for source {source_id} must be an object")

        specs: List[MappingSpec] = []
        seen_keys = set()
        for index, entry in enumerate(raw.get("mappings") or []):
            try:
                spec = MappingSpec.from_dict(entry)
                if spec.key in seen_keys:
                    raise ConfigError(f"Duplicate mapping key '{spec.key}'")
            except ConfigError as e:
                logger.error(f"Skipping mapping #{index} for source {source_id}: {e.message}")
                continue
            seen_keys.add(spec.key)
            specs.append(spec)

        try:
            policy = DeletionPolicy.parse(raw.get("deletion_policy") or raw.get("deletion_action"))
        except ConfigError as e:
            logger.error(f"Source {source_id}: {e.message}; using flag-only")
            policy = DeletionPolicy.FLAG_ONLY

        return SourceSettings(
            source_id=str(source_id),
            mappings=specs,
            two_way_sync=bool(raw.get("two_way_sync") or raw.get("enable_two_way_sync")),
            deletion_policy=policy,
        )

    def save(self, source_id: str, raw: Dict[str, Any]) -> SourceSettings:
        """Validate and store a raw configuration document"""
        settings = self.parse(source_id, raw)
        self.store.set(f"{self.PREFIX}{source_id}", settings.to_dict())
        logger.info(f"Saved {len(settings.mappings)} mappings for source {source_id}")
        return settings

    def sources_for_target(self, target: TargetRef, two_way_only: bool = True) -> List[SourceSettings]:
        matches = []
        for source_id in self.source_ids():
            settings = self.load(source_id)
            if settings is None or not settings.specs_for(target):
                continue
            if two_way_only and not settings.two_way_sync:
                continue
            matches.append(settings)
        return matches
