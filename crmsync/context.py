"""Per-pass context: logger handle and request-scoped caches."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger("crmsync.sync")


@dataclass
class SyncContext:
    """
    State shared by every step of one sync pass.

    Holds the logger bound to the source/record being processed and the
    metadata cache, so nothing is cached across passes.
    """

    source_id: str
    record_id: str = ""
    log: logging.LoggerAdapter = None
    metadata_cache: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.log is None:
            self.log = logging.LoggerAdapter(
                logger, {"source_id": self.source_id, "record_id": self.record_id}
            )

    @classmethod
    def for_record(cls, source_id: str, record_id: str, base_logger: Optional[logging.Logger] = None) -> "SyncContext":
        adapter = logging.LoggerAdapter(
            base_logger or logger, {"source_id": source_id, "record_id": record_id}
        )
        return cls(source_id=str(source_id), record_id=str(record_id), log=adapter)

    def cached(self, key: str, loader):
        """Return metadata_cache[key], calling loader() once per pass."""
        if key not in self.metadata_cache:
            self.metadata_cache[key] = loader()
        return self.metadata_cache[key]

    @property
    def merge_values(self) -> Dict[str, str]:
        return {"record_id": self.record_id, "source_id": self.source_id}
