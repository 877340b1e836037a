"""Repositories for links, local records, cursors, history and tokens."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from crmsync.schema.models import LocalLink, Origin, Record, SyncResult, TargetRef
from crmsync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LinkRepository:
    """
    LocalLink persistence

    Links are keyed by (target, target_record_id), so at most one link can
    exist per remote record. A second index by (source_id, record_id,
    mapping_key) finds the link a record already has for a mapping.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(target: TargetRef, target_record_id: str) -> str:
        return f"link:{target.key}:{target_record_id}"

    @staticmethod
    def _index_key(source_id: str, record_id: str, mapping_key: str) -> str:
        return f"link_index:{source_id}:{record_id}:{mapping_key}"

    def find(self, target: TargetRef, target_record_id: str) -> Optional[LocalLink]:
        data = self.store.get(self._key(target, str(target_record_id)))
        return LocalLink.from_dict(data) if data else None

    def find_for_record(self, source_id: str, record_id: str, mapping_key: str) -> Optional[LocalLink]:
        link_key = self.store.get(self._index_key(source_id, record_id, mapping_key))
        if not link_key:
            return None
        data = self.store.get(link_key)
        return LocalLink.from_dict(data) if data else None

    def links_for_record(self, source_id: str, record_id: str) -> List[LocalLink]:
        links = []
        for index_key in self.store.keys(f"link_index:{source_id}:{record_id}:"):
            data = self.store.get(self.store.get(index_key))
            if data:
                links.append(LocalLink.from_dict(data))
        return links

    def links_for_source(self, source_id: str) -> List[LocalLink]:
        links = []
        for key in self.store.keys("link:"):
            data = self.store.get(key)
            if data and data.get("source_id") == str(source_id):
                links.append(LocalLink.from_dict(data))
        return links

    def save(self, link: LocalLink) -> None:
        """Store a link, replacing whatever the record had for the same mapping"""
        previous = self.find_for_record(link.source_id, link.record_id, link.mapping_key)
        if previous and (previous.target, previous.target_record_id) != (link.target, link.target_record_id):
            logger.info(
                f"Replacing link {previous.target}:{previous.target_record_id} "
                f"with {link.target}:{link.target_record_id} for record {link.record_id}"
            )
            self.store.delete(self._key(previous.target, previous.target_record_id))

        existing = self.find(link.target, link.target_record_id)
        if existing and (existing.source_id, existing.record_id) != (link.source_id, link.record_id):
            logger.warning(
                f"Remote record {link.target}:{link.target_record_id} was linked to "
                f"{existing.source_id}/{existing.record_id}; relinking to {link.source_id}/{link.record_id}"
            )
            self.store.delete(self._index_key(existing.source_id, existing.record_id, existing.mapping_key))

        key = self._key(link.target, link.target_record_id)
        self.store.set(key, link.to_dict())
        self.store.set(self._index_key(link.source_id, link.record_id, link.mapping_key), key)

    def delete(self, link: LocalLink) -> None:
        self.store.delete(self._key(link.target, link.target_record_id))
        self.store.delete(self._index_key(link.source_id, link.record_id, link.mapping_key))


@dataclass
class StoredRecord:
    """A local record as persisted, with lifecycle status and metadata"""

    record: Record
    status: str = "active"
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["status"] = self.status
        data["meta"] = dict(self.meta)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredRecord":
        return cls(
            record=Record.from_dict(data),
            status=data.get("status", "active"),
            meta=dict(data.get("meta", {})),
        )


class LocalRecordRepository:
    """Local (form entry) storage, the side reconciliation writes into"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(source_id: str, record_id: str) -> str:
        return f"record:{source_id}:{record_id}"

    def get(self, source_id: str, record_id: str) -> Optional[StoredRecord]:
        data = self.store.get(self._key(source_id, record_id))
        return StoredRecord.from_dict(data) if data else None

    def save(self, source_id: str, stored: StoredRecord) -> None:
        self.store.set(self._key(source_id, stored.record.record_id), stored.to_dict())

    def delete(self, source_id: str, record_id: str) -> None:
        self.store.delete(self._key(source_id, record_id))

    def next_id(self, source_id: str) -> str:
        seq = int(self.store.get(f"record_seq:{source_id}", 0)) + 1
        while self.store.get(self._key(source_id, str(seq))) is not None:
            seq += 1
        self.store.set(f"record_seq:{source_id}", seq)
        return str(seq)

    def all(self, source_id: str) -> List[StoredRecord]:
        return [StoredRecord.from_dict(self.store.get(k)) for k in self.store.keys(f"record:{source_id}:")]


class CursorRepository:
    """last_sync_cursor per source plus the sweep running flag"""

    def __init__(self, store: KeyValueStore, stale_after: int = 3600):
        self.store = store
        self.stale_after = stale_after

    def get_cursor(self, source_id: str) -> Optional[datetime]:
        value = self.store.get(f"cursor:{source_id}")
        return datetime.fromisoformat(value) if value else None

    def set_cursor(self, source_id: str, when: datetime) -> None:
        self.store.set(f"cursor:{source_id}", when.isoformat())

    def acquire_sweep(self, source_id: str, now: Optional[float] = None) -> bool:
        """Take the running flag; a flag older than stale_after is ignored"""
        now = now if now is not None else time.time()
        started = self.store.get(f"sweep_lock:{source_id}")
        if started is not None and now - float(started) < self.stale_after:
            return False
        if started is not None:
            logger.warning(f"Ignoring stale sweep lock for source {source_id} ({now - float(started):.0f}s old)")
        self.store.set(f"sweep_lock:{source_id}", now)
        return True

    def release_sweep(self, source_id: str) -> None:
        self.store.delete(f"sweep_lock:{source_id}")


class SyncHistory:
    """Bounded log of mapping outcomes, newest first"""

    KEY = "history"

    def __init__(self, store: KeyValueStore, limit: int = 500):
        self.store = store
        self.limit = limit

    def record(self, source_id: str, record_id: str, result: SyncResult, status: Optional[str] = None) -> None:
        entry = {
            "date": utc_now().isoformat(),
            "source_id": str(source_id),
            "record_id": str(record_id),
            "mapping_key": result.mapping_key,
            "target": result.target.key if result.target else "",
            "target_record_id": result.target_record_id or "",
            "status": status or ("success" if result.success else "failed"),
            "message": result.message,
        }
        entries = [entry] + list(self.store.get(self.KEY, []))
        self.store.set(self.KEY, entries[: self.limit])

    def entries(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        entries = self.store.get(self.KEY, [])
        return entries[:limit] if limit else entries


class TokenStore:
    """OAuth tokens for the remote API"""

    KEY = "oauth_tokens"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self) -> Optional[Dict[str, Any]]:
        tokens = self.store.get(self.KEY)
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            return None
        return tokens

    def save(self, tokens: Dict[str, Any]) -> None:
        tokens = dict(tokens)
        tokens["created_at"] = int(time.time())
        self.store.set(self.KEY, tokens)
