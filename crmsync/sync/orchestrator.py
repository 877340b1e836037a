"""
Multi-Target Orchestrator - runs a source's mappings for one record

Mappings run in declared order. A mapping that consumes ref:<key> must be
declared after the mapping <key>; nothing is reordered. Each mapping fails
on its own: a failed mapping is recorded and the next one still runs.
"""

import logging
from typing import Dict, List, Optional

from crmsync.builder.conditions import ConditionEvaluator
from crmsync.context import SyncContext
from crmsync.errors import NoDataError
from crmsync.schema.models import LocalLink, MappingSpec, Record, SyncResult
from crmsync.storage.repositories import LinkRepository, SyncHistory
from crmsync.sync.mapper import SingleTargetMapper

logger = logging.getLogger(__name__)


class MultiTargetOrchestrator:
    """Sequences every mapping of a source for one record"""

    def __init__(
        self,
        mapper: SingleTargetMapper,
        links: LinkRepository,
        evaluator: Optional[ConditionEvaluator] = None,
        history: Optional[SyncHistory] = None,
    ):
        self.mapper = mapper
        self.links = links
        self.evaluator = evaluator or ConditionEvaluator()
        self.history = history

    def process_record(
        self,
        record: Record,
        specs: List[MappingSpec],
        source_id: str,
        ctx: Optional[SyncContext] = None,
    ) -> Dict[str, SyncResult]:
        """
        Push a record through every mapping

        Args:
            record: Record to sync
            specs: Mappings in execution order
            source_id: Source the record belongs to

        Returns:
            {mapping_key: SyncResult} for every mapping that ran. Mappings
            skipped by conditions or with nothing to send have no entry.

        Raises:
            AuthError: No usable credentials, the pass is aborted
        """
        ctx = ctx or SyncContext.for_record(source_id, record.record_id)
        log = ctx.log

        if record.is_remote:
            log.info(f"Record {record.record_id} came from the remote side, not pushing it back")
            return {}

        results: Dict[str, SyncResult] = {}

        for spec in specs:
            if not self.evaluator.evaluate(spec.conditions, spec.condition_logic, record, log):
                log.info(f"Conditions not met for mapping '{spec.key}', skipping")
                continue

            try:
                result = self.mapper.map(record, spec, results, ctx)
            except NoDataError as e:
                log.info(f"Skipping mapping '{spec.key}': {e.message}")
                self._remember(source_id, record, SyncResult(spec.key, False, e.message, target=spec.target), "skipped")
                continue

            # Later mappings see this result through ref:<key>
            results[spec.key] = result

            if result.success and result.target_record_id:
                self.links.save(LocalLink(
                    source_id=str(source_id),
                    record_id=record.record_id,
                    target=spec.target,
                    target_record_id=result.target_record_id,
                    mapping_key=spec.key,
                ))

            self._remember(source_id, record, result)

        succeeded = sum(1 for r in results.values() if r.success)
        log.info(f"Record {record.record_id}: {succeeded}/{len(results)} mappings succeeded")
        return results

    def _remember(self, source_id: str, record: Record, result: SyncResult, status: Optional[str] = None) -> None:
        if self.history is not None:
            self.history.record(source_id, record.record_id, result, status)
