"""Wires stores, clients and engines together for the CLI and webhook app."""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import click
from colorama import Fore

from config import AppConfig
from crmsync.api import AuthorizedClient, LookupResolver, TargetRegistry
from crmsync.builder import PayloadBuilder
from crmsync.context import SyncContext
from crmsync.errors import ConfigError
from crmsync.schema.models import LocalLink, Origin, Record, SourceSettings, SyncResult, TargetRef
from crmsync.storage import (
    CursorRepository,
    JsonFileStore,
    KeyValueStore,
    LinkRepository,
    LocalRecordRepository,
    MappingConfigStore,
    StoredRecord,
    SyncHistory,
    TokenStore,
)
from crmsync.storage.repositories import utc_now
from crmsync.sync import (
    EventOutcome,
    MultiTargetOrchestrator,
    ReconciliationEngine,
    SingleTargetMapper,
    SourceLocks,
    SweepResult,
)

logger = logging.getLogger(__name__)


class SyncRunner:
    """Entry points for pushing records and reconciling remote changes."""

    def __init__(
        self,
        config: AppConfig,
        store: KeyValueStore,
        registry: Optional[TargetRegistry] = None,
    ):
        """
        Initialize runner.

        Args:
            config: Application configuration
            store: Backing key-value store
            registry: Module clients (built from config when omitted)
        """
        self.config = config
        self.store = store

        self.configs = MappingConfigStore(store)
        self.links = LinkRepository(store)
        self.records = LocalRecordRepository(store)
        self.cursors = CursorRepository(store, stale_after=config.sync.sweep_stale_after)
        self.history = SyncHistory(store, limit=config.sync.history_limit)
        self.tokens = TokenStore(store)

        if registry is None:
            http = AuthorizedClient(config.crm, self.tokens)
            registry = TargetRegistry.build(http, config.crm, config.desk)
        self.registry = registry

        self.mapper = SingleTargetMapper(registry, PayloadBuilder(LookupResolver(registry)), self.links)
        self.orchestrator = MultiTargetOrchestrator(self.mapper, self.links, history=self.history)
        self.engine = ReconciliationEngine(
            self.configs,
            self.links,
            self.records,
            self.cursors,
            registry,
            default_window_days=config.sync.manual_sync_days,
        )
        self.locks = SourceLocks()

    @classmethod
    def from_config(cls, config: AppConfig) -> "SyncRunner":
        return cls(config, JsonFileStore(config.sync.store_path))

    def settings_for(self, source_id: str) -> SourceSettings:
        settings = self.configs.load(source_id)
        if settings is None:
            raise ConfigError(f"No mapping configuration for source {source_id}")
        return settings

    def push(self, source_id: str, data: Dict[str, Any]) -> Dict[str, SyncResult]:
        """
        Store a submitted record locally and push it through the source's mappings.

        Args:
            source_id: Source (form) the record belongs to
            data: {"record_id": optional, "fields": {...}} or a flat field dict

        Returns:
            {mapping_key: SyncResult}
        """
        source_id = str(source_id)
        settings = self.settings_for(source_id)

        with self.locks.hold(source_id):
            record = self._local_record(source_id, data)
            ctx = SyncContext.for_record(source_id, record.record_id)
            return self.orchestrator.process_record(record, settings.mappings, source_id, ctx)

    def _local_record(self, source_id: str, data: Dict[str, Any]) -> Record:
        if "fields" in data and isinstance(data["fields"], dict):
            fields = data["fields"]
            record_id = data.get("record_id")
            origin = Origin(data.get("origin", Origin.LOCAL.value))
        else:
            fields = dict(data)
            record_id = fields.pop("record_id", None)
            origin = Origin.LOCAL

        record_id = str(record_id) if record_id else self.records.next_id(source_id)
        stored = self.records.get(source_id, record_id) or StoredRecord(Record(record_id))
        stored.record = Record(record_id, dict(fields), origin)
        self.records.save(source_id, stored)
        return stored.record

    def reconcile(self, source_id: str, days: Optional[int] = None) -> SweepResult:
        """Run the polling pass; days re-reads that many days instead of using the cursor."""
        since = utc_now() - timedelta(days=days) if days else None
        with self.locks.hold(str(source_id)):
            return self.engine.run_periodic(str(source_id), since=since)

    def handle_event(
        self,
        target: TargetRef,
        external_id: str,
        operation: str,
        fields: Optional[Dict[str, Any]] = None,
    ) -> EventOutcome:
        # Target lock first, then the owning source; the owner is read under the target lock
        with self.locks.hold(f"target:{target.key}"):
            source_id = self._owning_source(target, str(external_id))
            if source_id is None:
                return self.engine.handle_event(target, external_id, operation, fields)
            with self.locks.hold(source_id):
                return self.engine.handle_event(target, external_id, operation, fields)

    def _owning_source(self, target: TargetRef, external_id: str) -> Optional[str]:
        """Source the event will write to: the linked one, else the first two-way source mapping target"""
        link = self.links.find(target, external_id)
        if link:
            return link.source_id
        sources = sorted(s.source_id for s in self.configs.sources_for_target(target, two_way_only=True))
        return sources[0] if sources else None

    def import_config(self, source_id: str, raw: Any) -> SourceSettings:
        return self.configs.save(str(source_id), raw)

    def links_for(self, source_id: str) -> List[LocalLink]:
        return self.links.links_for_source(str(source_id))


def print_push_summary(results: Dict[str, SyncResult]) -> None:
    """Print one line per mapping result."""
    click.echo(f"\n{Fore.CYAN}{'=' * 70}")
    click.echo(f"{Fore.CYAN}📤 SYNC RESULTS")
    click.echo(f"{Fore.CYAN}{'=' * 70}\n")

    if not results:
        click.echo(f"{Fore.YELLOW}No mappings ran for this record")
        return

    for key, result in results.items():
        status_icon = "✅" if result.success else "❌"
        action = "created" if result.created else "updated"
        target = str(result.target) if result.target else ""
        if result.success:
            click.echo(f"{status_icon} {key:20s} → {target:20s} {action} {result.target_record_id}")
        else:
            click.echo(f"{status_icon} {key:20s} → {target:20s} {Fore.RED}{result.message}")

    failed = sum(1 for r in results.values() if not r.success)
    color = Fore.GREEN if failed == 0 else Fore.RED
    click.echo(f"\n{color}TOTAL: {len(results) - failed} succeeded, {failed} failed\n")


def print_sweep_summary(result: SweepResult) -> None:
    """Print counts from a reconciliation pass."""
    click.echo(f"\n{Fore.CYAN}{'=' * 70}")
    click.echo(f"{Fore.CYAN}📥 RECONCILIATION SUMMARY ({result.source_id})")
    click.echo(f"{Fore.CYAN}{'=' * 70}\n")

    if result.skipped:
        click.echo(f"{Fore.YELLOW}Skipped: two-way sync disabled or a sweep is already running")
        return

    click.echo(f"Processed: {result.processed:6d}")
    click.echo(f"Updated:   {result.updated:6d}")
    click.echo(f"Created:   {result.created:6d}")
    click.echo(f"Unlinked:  {result.unlinked:6d}")
    click.echo(f"Failed:    {result.failed:6d}")

    if result.cursor:
        click.echo(f"\n{Fore.GREEN}Cursor advanced to {result.cursor.isoformat()}\n")
    else:
        click.echo(f"\n{Fore.RED}Cursor not advanced, the window will be replayed\n")
