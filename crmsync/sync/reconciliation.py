"""
Reconciliation Engine - applies remote changes to local records

Per inbound event:

    RECEIVED -> VALIDATED -> LINKED -> APPLIED
    RECEIVED -> REJECTED               (bad payload)
    VALIDATED -> UNLINKED              (no link, nothing to apply)

Every local write is tagged origin=remote, which keeps the orchestrator
from pushing the change straight back out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from crmsync.api.targets import ModuleClient, TargetRegistry
from crmsync.errors import ConfigError, ReconciliationMismatch, RemoteApiError, TransportError
from crmsync.schema.models import (
    REF_PREFIX,
    RECORD_ID_TOKEN,
    DeletionPolicy,
    LocalLink,
    MappingSpec,
    Origin,
    Record,
    SourceSettings,
    TargetRef,
)
from crmsync.storage.config_store import MappingConfigStore
from crmsync.storage.repositories import (
    CursorRepository,
    LinkRepository,
    LocalRecordRepository,
    StoredRecord,
    utc_now,
)

logger = logging.getLogger(__name__)


OPERATIONS = ("create", "update", "delete")


class EventState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    LINKED = "linked"
    APPLIED = "applied"
    REJECTED = "rejected"
    UNLINKED = "unlinked"


@dataclass
class EventOutcome:
    """Terminal state of one inbound event"""

    state: EventState
    local_record_ids: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.state == EventState.APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "local_record_ids": list(self.local_record_ids),
            "message": self.message,
        }


@dataclass
class SweepResult:
    """Counts from one periodic pass over a source's modules"""

    source_id: str
    processed: int = 0
    updated: int = 0
    created: int = 0
    unlinked: int = 0
    failed: int = 0
    skipped: bool = False
    cursor: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "processed": self.processed,
            "updated": self.updated,
            "created": self.created,
            "unlinked": self.unlinked,
            "failed": self.failed,
            "skipped": self.skipped,
            "cursor": self.cursor.isoformat() if self.cursor else None,
        }


class ReconciliationEngine:
    """Inbound path: webhook events and polling sweeps"""

    def __init__(
        self,
        config_store: MappingConfigStore,
        links: LinkRepository,
        records: LocalRecordRepository,
        cursors: CursorRepository,
        registry: Optional[TargetRegistry] = None,
        default_window_days: int = 30,
    ):
        self.config_store = config_store
        self.links = links
        self.records = records
        self.cursors = cursors
        self.registry = registry
        self.default_window_days = default_window_days

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(
        self,
        target: TargetRef,
        external_id: str,
        operation: str,
        fields: Optional[Dict[str, Any]] = None,
        source_id: Optional[str] = None,
    ) -> EventOutcome:
        """
        Apply one remote change

        Args:
            target: Module the change happened in
            external_id: Remote record ID
            operation: create, update or delete
            fields: Remote field values (fetched when empty)
            source_id: Only consider this source when creating local records

        Returns:
            EventOutcome with the terminal state and the local records written
        """
        log = logging.LoggerAdapter(logger, {"target": target.key, "external_id": external_id})
        operation = str(operation or "").lower()

        if operation not in OPERATIONS:
            return self._reject(log, f"Unsupported operation {operation!r}")
        if not external_id or not str(external_id).strip():
            return self._reject(log, "Missing remote record ID")
        if fields is not None and not isinstance(fields, dict):
            return self._reject(log, "Field values must be an object")
        external_id = str(external_id).strip()

        if operation == "delete":
            return self._handle_delete(target, external_id, log)

        if not fields:
            try:
                fields = self._fetch(target, external_id)
            except (TransportError, RemoteApiError) as e:
                return self._reject(log, f"Could not fetch {target} record {external_id}: {e.message}")
            if fields is None:
                return self._reject(log, f"{target} record {external_id} not found")

        link = self.links.find(target, external_id)
        if link:
            return self._apply_update(link, target, fields, log)
        return self._create_local(target, external_id, fields, source_id, log)

    def _fetch(self, target: TargetRef, external_id: str) -> Optional[Dict[str, Any]]:
        if self.registry is None:
            return None
        return self.registry.client_for(target).get_record(target.name, external_id)

    def _apply_update(self, link: LocalLink, target: TargetRef, fields: Dict[str, Any], log) -> EventOutcome:
        try:
            settings = self._two_way_settings(link.source_id)
        except ReconciliationMismatch as e:
            log.info(e.message)
            return EventOutcome(EventState.UNLINKED, message=e.message)

        stored = self.records.get(link.source_id, link.record_id)
        if stored is None:
            self.links.delete(link)
            message = f"Linked record {link.source_id}/{link.record_id} no longer exists locally; stale link removed"
            log.warning(message)
            return EventOutcome(EventState.UNLINKED, message=message)

        specs = [s for s in settings.specs_for(target) if s.key == link.mapping_key] or settings.specs_for(target)
        updates = self.reverse_map(specs, fields, self._client(target))

        stored.record = stored.record.with_fields(updates, origin=Origin.REMOTE)
        self.records.save(link.source_id, stored)
        log.info(f"Updated record {link.source_id}/{link.record_id} with {len(updates)} remote fields")
        return EventOutcome(EventState.APPLIED, [link.record_id], "Local record updated")

    def _create_local(
        self,
        target: TargetRef,
        external_id: str,
        fields: Dict[str, Any],
        source_id: Optional[str],
        log,
    ) -> EventOutcome:
        candidates = [
            s for s in self.config_store.sources_for_target(target, two_way_only=True)
            if source_id is None or s.source_id == str(source_id)
        ]
        if not candidates:
            message = f"No two-way source maps {target}; event for {external_id} dropped"
            log.info(message)
            return EventOutcome(EventState.UNLINKED, message=message)

        # One link per remote record: the first matching source owns it
        settings = sorted(candidates, key=lambda s: s.source_id)[0]
        spec = settings.specs_for(target)[0]
        updates = self.reverse_map([spec], fields, self._client(target))

        record_id = self.records.next_id(settings.source_id)
        record = Record(record_id, updates, Origin.REMOTE)
        self.records.save(settings.source_id, StoredRecord(record, meta={"created_from": f"{target.key}:{external_id}"}))
        self.links.save(LocalLink(settings.source_id, record_id, target, external_id, spec.key))

        log.info(f"Created local record {settings.source_id}/{record_id} from {target} record {external_id}")
        return EventOutcome(EventState.APPLIED, [record_id], "Local record created")

    def _handle_delete(self, target: TargetRef, external_id: str, log) -> EventOutcome:
        try:
            link = self.links.find(target, external_id)
            if link is None:
                raise ReconciliationMismatch(f"No local record linked to {target} record {external_id}")
            settings = self._two_way_settings(link.source_id)
        except ReconciliationMismatch as e:
            log.info(e.message)
            return EventOutcome(EventState.UNLINKED, message=e.message)

        policy = settings.deletion_policy
        stored = self.records.get(link.source_id, link.record_id)

        if policy == DeletionPolicy.HARD_DELETE:
            self.records.delete(link.source_id, link.record_id)
            siblings = self.links.links_for_record(link.source_id, link.record_id)
            for linked in siblings or [link]:
                self.links.delete(linked)
            log.info(f"Deleted local record {link.source_id}/{link.record_id} and {len(siblings)} links")
            return EventOutcome(EventState.APPLIED, [link.record_id], "Local record deleted")

        if stored is None:
            log.warning(f"Linked record {link.source_id}/{link.record_id} no longer exists locally")
            return EventOutcome(EventState.APPLIED, [], "Local record already gone")

        # Replays keep the first deletion date
        stored.meta.setdefault("remote_deleted_at", utc_now().isoformat())
        stored.meta["remote_deleted"] = "yes"
        if policy == DeletionPolicy.SOFT_DELETE:
            stored.status = "trash"
        stored.record = stored.record.with_fields({}, origin=Origin.REMOTE)
        self.records.save(link.source_id, stored)

        log.info(f"Applied {policy.value} to record {link.source_id}/{link.record_id}")
        return EventOutcome(EventState.APPLIED, [link.record_id], f"Deletion policy {policy.value} applied")

    def _two_way_settings(self, source_id: str) -> SourceSettings:
        settings = self.config_store.load(source_id)
        if settings is None or not settings.two_way_sync:
            raise ReconciliationMismatch(f"Two-way sync is not enabled for source {source_id}")
        return settings

    def _client(self, target: TargetRef) -> Optional[ModuleClient]:
        return self.registry.client_for(target) if self.registry else None

    @staticmethod
    def _reject(log, message: str) -> EventOutcome:
        log.warning(f"Rejected event: {message}")
        return EventOutcome(EventState.REJECTED, message=message)

    @staticmethod
    def reverse_map(
        specs: List[MappingSpec],
        fields: Dict[str, Any],
        client: Optional[ModuleClient] = None,
    ) -> Dict[str, Any]:
        """
        Map remote field values back onto local field keys

        target_field -> source_field for every plain field pair; record_id
        and ref: tokens have no local field and are skipped.
        """
        updates = {}
        for spec in specs:
            for source_ref, target_field in spec.field_mapping:
                if source_ref == RECORD_ID_TOKEN or source_ref.startswith(REF_PREFIX):
                    continue

                names = [target_field]
                if client is not None:
                    names.append(client.record_field_name(target_field))

                for name in names:
                    if name in fields:
                        updates[source_ref] = _local_value(fields[name])
                        break
        return updates

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def run_periodic(
        self,
        source_id: str,
        since: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> SweepResult:
        """
        Pull records modified since the source's cursor and reconcile them

        The cursor moves to the sweep's start time only when every module
        was listed; otherwise the same window is replayed next time.

        Raises:
            ConfigError: Source has no configuration
            AuthError: No usable credentials
        """
        source_id = str(source_id)
        result = SweepResult(source_id)

        settings = self.config_store.load(source_id)
        if settings is None:
            raise ConfigError(f"No mapping configuration for source {source_id}")
        if not settings.two_way_sync:
            logger.warning(f"Two-way sync is disabled for source {source_id}, nothing to reconcile")
            result.skipped = True
            return result
        if self.registry is None:
            raise ConfigError("Periodic reconciliation needs a target registry")

        if not self.cursors.acquire_sweep(source_id):
            logger.info(f"A sweep for source {source_id} is already running")
            result.skipped = True
            return result

        try:
            started = now or utc_now()
            window_start = since or self.cursors.get_cursor(source_id) or started - timedelta(days=self.default_window_days)
            complete = True

            for target in settings.targets:
                try:
                    rows = self.registry.client_for(target).list_modified(target.name, window_start, started)
                except (TransportError, RemoteApiError) as e:
                    logger.error(f"Listing modified {target} records failed: {e.message}")
                    result.failed += 1
                    complete = False
                    continue

                logger.info(f"{len(rows)} {target} records modified since {window_start.isoformat()}")
                for row in rows:
                    external_id = row.get("id") if isinstance(row, dict) else None
                    if not external_id:
                        continue
                    already_linked = self.links.find(target, str(external_id)) is not None
                    outcome = self.handle_event(target, str(external_id), "update", row, source_id=source_id)
                    result.processed += 1
                    self._tally(result, outcome, already_linked)

            if complete:
                self.cursors.set_cursor(source_id, started)
                result.cursor = started
        finally:
            self.cursors.release_sweep(source_id)

        logger.info(
            f"Sweep for source {source_id}: {result.processed} processed, "
            f"{result.updated} updated, {result.created} created, {result.failed} failed"
        )
        return result

    @staticmethod
    def _tally(result: SweepResult, outcome: EventOutcome, already_linked: bool) -> None:
        if outcome.applied:
            if already_linked:
                result.updated += 1
            else:
                result.created += 1
        elif outcome.state == EventState.UNLINKED:
            result.unlinked += 1
        else:
            result.failed += 1


def _local_value(value: Any) -> Any:
    # CRM lookups come back as {"name": ..., "id": ...}
    if isinstance(value, dict):
        return value.get("name", value.get("id"))
    return value
