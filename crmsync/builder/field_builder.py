"""
Field Builder - resolves source references for individual payload fields

A source reference is one of:
- a record field key ("email")
- the record_id token
- a cross-mapping reference ("ref:<mapping_key>"), the remote ID produced
  by an earlier mapping in the same pass
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from crmsync.schema.models import RECORD_ID_TOKEN, REF_PREFIX, Record, SyncResult

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    """True for values that must never be sent (None, blank strings, empty containers)"""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


class FieldBuilder:
    """Builds the mapped portion of a payload from a record"""

    def resolve_ref(
        self,
        source_ref: str,
        record: Record,
        prior_results: Dict[str, SyncResult],
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Any:
        """
        Resolve a single source reference

        Returns:
            The value, or None when it cannot be resolved (a warning is
            logged for unresolved ref: tokens)
        """
        log = log or logger

        if source_ref == RECORD_ID_TOKEN:
            return record.record_id

        if source_ref.startswith(REF_PREFIX):
            mapping_key = source_ref[len(REF_PREFIX):]
            prior = prior_results.get(mapping_key)
            if prior is None or not prior.success or not prior.target_record_id:
                log.warning(f"No record ID available from mapping '{mapping_key}' for reference {source_ref}")
                return None
            return prior.target_record_id

        return record.get(source_ref)

    def build_fields(
        self,
        field_mapping: List[Tuple[str, str]],
        record: Record,
        prior_results: Dict[str, SyncResult],
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Dict[str, Any]:
        """
        Build {target_field: value} for every mapping pair, skipping blanks

        Args:
            field_mapping: Ordered (source_ref, target_field) pairs
            record: Record being synced
            prior_results: Results of mappings already executed in this pass

        Returns:
            Payload fragment with only non-empty values
        """
        log = log or logger
        payload = {}

        for source_ref, target_field in field_mapping:
            value = self.resolve_ref(source_ref, record, prior_results, log)

            if is_blank(value):
                continue

            payload[target_field] = value

        return payload
