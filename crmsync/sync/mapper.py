"""
Single-Target Mapper - applies one mapping to a record

build_payload -> upsert: search the target module by the lookup field when
one is configured, update the match or create a new record. Both response
envelopes (CRM data[0].details.id, Desk flat id / data.id) are normalized
by the module client into SyncResult.target_record_id.
"""

import logging
from typing import Any, Dict, Optional

from crmsync.api.targets import TargetRegistry
from crmsync.builder.field_builder import is_blank
from crmsync.builder.payload_builder import PayloadBuilder
from crmsync.context import SyncContext
from crmsync.errors import RemoteApiError, TransportError
from crmsync.schema.models import MappingSpec, Record, SyncResult
from crmsync.storage.repositories import LinkRepository

logger = logging.getLogger(__name__)


class SingleTargetMapper:
    """Maps a record onto one target module"""

    def __init__(
        self,
        registry: TargetRegistry,
        payload_builder: PayloadBuilder,
        links: Optional[LinkRepository] = None,
    ):
        self.registry = registry
        self.payload_builder = payload_builder
        self.links = links

    def build_payload(
        self,
        record: Record,
        spec: MappingSpec,
        prior_results: Dict[str, SyncResult],
        ctx: SyncContext,
    ) -> Dict[str, Any]:
        """Raises NoDataError when the mapping has nothing to send"""
        return self.payload_builder.build(record, spec, prior_results, ctx)

    def upsert(
        self,
        spec: MappingSpec,
        payload: Dict[str, Any],
        record: Record,
        prior_results: Dict[str, SyncResult],
        ctx: SyncContext,
    ) -> SyncResult:
        """
        Create or update the remote record

        Transport and API failures become a failed SyncResult; AuthError
        propagates so the caller can abort the pass.
        """
        log = ctx.log
        module = spec.target.name

        try:
            client = self.registry.client_for(spec.target)
            existing_id = None if spec.force_create else self._find_existing(spec, record, prior_results, ctx)

            if existing_id:
                record_id = client.update(module, existing_id, payload)
                log.info(f"Updated {spec.target} record {record_id} for mapping '{spec.key}'")
                return SyncResult(spec.key, True, "Record updated", record_id, spec.target, created=False)

            record_id = client.create(module, payload)
            log.info(f"Created {spec.target} record {record_id} for mapping '{spec.key}'")
            return SyncResult(spec.key, True, "Record created", record_id, spec.target, created=True)

        except (TransportError, RemoteApiError) as e:
            log.error(f"Mapping '{spec.key}' to {spec.target} failed: {e.message}")
            return SyncResult(spec.key, False, e.message, target=spec.target)

    def map(
        self,
        record: Record,
        spec: MappingSpec,
        prior_results: Dict[str, SyncResult],
        ctx: SyncContext,
    ) -> SyncResult:
        """build_payload followed by upsert. NoDataError propagates."""
        payload = self.build_payload(record, spec, prior_results, ctx)
        ctx.log.debug(f"Payload for mapping '{spec.key}': {payload}")
        return self.upsert(spec, payload, record, prior_results, ctx)

    def _find_existing(
        self,
        spec: MappingSpec,
        record: Record,
        prior_results: Dict[str, SyncResult],
        ctx: SyncContext,
    ) -> Optional[str]:
        if spec.has_lookup:
            value = self.payload_builder.field_builder.resolve_ref(spec.lookup_value_ref, record, prior_results, ctx.log)
            if not is_blank(value):
                client = self.registry.client_for(spec.target)
                matches = client.search(spec.target.name, spec.lookup_field, value)
                if matches and matches[0].get("id"):
                    ctx.log.debug(f"Found existing {spec.target} record by {spec.lookup_field}={value!r}")
                    return str(matches[0]["id"])
                return None

        # No lookup search: a record pushed before updates its linked remote record
        if self.links is not None:
            link = self.links.find_for_record(ctx.source_id, record.record_id, spec.key)
            if link and link.target == spec.target:
                return link.target_record_id
        return None
