"""
Payload Builder - Orchestrates the outgoing payload for one mapping

Integrates:
- FieldBuilder: mapped record fields, record_id and ref: tokens
- TemplateEngine: custom value templates and [calculate] spans
- LookupResolver: lookup-typed fields resolved to remote IDs
- Module settings: per-mapping defaults (status, priority, department, ...)
"""

import logging
from typing import Any, Dict, Optional

from crmsync.api.lookup import LookupResolver
from crmsync.builder.field_builder import FieldBuilder, is_blank
from crmsync.builder.template_engine import TemplateEngine
from crmsync.context import SyncContext
from crmsync.errors import NoDataError
from crmsync.schema.models import MappingSpec, Record, SyncResult

logger = logging.getLogger(__name__)


class PayloadBuilder:
    """
    Builds the payload a mapping sends to its target module

    Usage:
    ```python
    spec = MappingSpec.from_dict({
        "target": {"system": "crm", "module": "Leads"},
        "fields": [["email", "Email"], ["name", "Last_Name"]],
        "custom_values": {"Lead_Source": "Web form {source_id}"},
    })

    payload = builder.build(record, spec, prior_results, ctx)
    # Returns: {"Email": "a@b.com", "Last_Name": "Jo", "Lead_Source": "Web form 7"}
    ```
    """

    def __init__(
        self,
        lookup_resolver: Optional[LookupResolver] = None,
        field_builder: Optional[FieldBuilder] = None,
        template_engine: Optional[TemplateEngine] = None,
    ):
        """
        Initialize PayloadBuilder

        Args:
            lookup_resolver: Resolver for lookup-typed fields (None skips lookups)
        """
        self.lookup_resolver = lookup_resolver
        self.field_builder = field_builder or FieldBuilder()
        self.template_engine = template_engine or TemplateEngine()

    def build(
        self,
        record: Record,
        spec: MappingSpec,
        prior_results: Dict[str, SyncResult],
        ctx: SyncContext,
    ) -> Dict[str, Any]:
        """
        Build the payload for one mapping

        Args:
            record: Record being synced
            spec: Mapping to apply
            prior_results: Results of the mappings already run in this pass
            ctx: Context of the current pass

        Returns:
            Payload dictionary ready for create/update

        Raises:
            NoDataError: Nothing to send after mapping, custom values and lookups
        """
        log = ctx.log

        payload = self.field_builder.build_fields(spec.field_mapping, record, prior_results, log)

        for target_field, template in spec.custom_values.items():
            value = self.template_engine.resolve(template, record, ctx.merge_values, log)
            if is_blank(value):
                log.debug(f"Custom value for {target_field} resolved empty, omitted")
                continue
            payload[target_field] = value

        if self.lookup_resolver and payload:
            payload = self.lookup_resolver.resolve_payload(spec.target, payload, ctx)

        if not payload:
            raise NoDataError(f"No data to send for mapping '{spec.key}'", {"target": spec.target.key})

        for key, value in spec.module_settings.items():
            if key not in payload and not is_blank(value):
                payload[key] = value

        return payload
