"""
Lookup Resolver - turns human-readable reference values into remote IDs

Lookup-typed payload fields must carry record IDs. A value that already
looks like an ID passes through; anything else is searched for in the
lookup module. When nothing is found (or the search fails) the field is
dropped so a label never ends up in an ID field.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from crmsync.api.targets import FieldMeta, TargetRegistry
from crmsync.errors import RemoteApiError, TransportError
from crmsync.schema.models import TargetRef, TargetSystem
from crmsync.context import SyncContext

logger = logging.getLogger(__name__)


class LookupResolver:
    """Resolves lookup values against the remote modules"""

    ID_PATTERN = re.compile(r"^[0-9]+$")

    # Field searched in each lookup module when resolving a name
    SEARCH_FIELDS = {
        TargetSystem.CRM: {
            "Accounts": "Account_Name",
            "Contacts": "Full_Name",
            "Leads": "Full_Name",
            "Deals": "Deal_Name",
            "Products": "Product_Name",
            "Vendors": "Vendor_Name",
            "Campaigns": "Campaign_Name",
        },
        TargetSystem.DESK: {
            "contacts": "email",
            "accounts": "accountName",
            "products": "productName",
        },
    }

    DEFAULT_SEARCH_FIELD = {
        TargetSystem.CRM: "Name",
        TargetSystem.DESK: "name",
    }

    def __init__(self, registry: TargetRegistry):
        self.registry = registry

    @classmethod
    def looks_like_id(cls, value: Any) -> bool:
        return value is not None and bool(cls.ID_PATTERN.match(str(value).strip()))

    @classmethod
    def search_field_for(cls, system: TargetSystem, lookup_module: str) -> str:
        return cls.SEARCH_FIELDS.get(system, {}).get(lookup_module, cls.DEFAULT_SEARCH_FIELD[system])

    def resolve_id(
        self,
        target: TargetRef,
        lookup_module: str,
        search_field: str,
        search_value: Any,
        ctx: Optional[SyncContext] = None,
    ) -> Optional[str]:
        """
        Resolve a value to a record ID in lookup_module

        Args:
            target: Module the resolved ID is destined for (selects the API family)
            lookup_module: Module searched
            search_field: Field compared with equals
            search_value: Human-readable value, or an ID

        Returns:
            The ID, or None when nothing matched or the search failed
        """
        log = ctx.log if ctx else logger

        if search_value is None or str(search_value).strip() == "":
            return None
        if self.looks_like_id(search_value):
            return str(search_value).strip()

        client = self.registry.client_for(target)
        try:
            matches = client.search(lookup_module, search_field, search_value)
        except (TransportError, RemoteApiError) as e:
            log.warning(f"Lookup of {search_field}={search_value!r} in {lookup_module} failed: {e}")
            return None

        if not matches:
            log.info(f"No {lookup_module} record with {search_field}={search_value!r}")
            return None

        record_id = matches[0].get("id")
        return str(record_id) if record_id else None

    def lookup_fields(self, target: TargetRef, ctx: SyncContext) -> Dict[str, FieldMeta]:
        """Lookup-typed fields of a module, fetched once per pass"""
        def load():
            client = self.registry.client_for(target)
            try:
                fields = client.field_metadata(target.name, log=ctx.log)
            except (TransportError, RemoteApiError) as e:
                ctx.log.error(f"Could not fetch field metadata for {target}: {e}")
                return {}
            return {name: meta for name, meta in fields.items() if meta.is_lookup}

        return ctx.cached(f"lookup_fields:{target.key}", load)

    def process_lookup_fields(self, target: TargetRef, payload: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
        """
        Replace lookup field values with IDs

        Returns a new payload. Unresolvable lookup fields are removed.
        """
        lookups = self.lookup_fields(target, ctx)
        if not lookups:
            return dict(payload)

        resolved = dict(payload)
        for name, meta in lookups.items():
            if name not in resolved:
                continue

            value = resolved[name]
            if isinstance(value, dict) and value.get("id"):
                continue

            record_id = None
            if self.looks_like_id(value):
                record_id = str(value).strip()
            elif meta.lookup_module:
                record_id = self.resolve_id(
                    target,
                    meta.lookup_module,
                    self.search_field_for(target.system, meta.lookup_module),
                    value,
                    ctx,
                )

            if record_id:
                resolved[name] = record_id
            else:
                ctx.log.warning(f"Dropping lookup field {name} on {target}: could not resolve {value!r}")
                del resolved[name]

        return resolved

    def process_desk_lookup_fields(self, target: TargetRef, payload: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
        """
        Resolve the name-based helpdesk fields into their ID fields

        tickets: email -> contactId, department -> departmentId,
        product -> productId, assignee -> assigneeId
        contacts: account -> accountId
        """
        resolved = dict(payload)
        module = target.name.lower()

        if module == "tickets":
            self._resolve_ticket_contact(target, resolved, ctx)
            self._resolve_named(resolved, "department", "departmentId",
                                lambda value: self._department_id(target, value, ctx), ctx)
            self._resolve_named(resolved, "product", "productId",
                                lambda value: self.resolve_id(target, "products", "productName", value, ctx), ctx)
            self._resolve_named(resolved, "assignee", "assigneeId",
                                lambda value: self._agent_id(target, value, ctx), ctx)
        elif module == "contacts":
            self._resolve_named(resolved, "account", "accountId",
                                lambda value: self.resolve_id(target, "accounts", "accountName", value, ctx), ctx)

        return resolved

    def resolve_payload(self, target: TargetRef, payload: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
        """Run every lookup step that applies to the target's API family"""
        if target.system == TargetSystem.DESK:
            payload = self.process_desk_lookup_fields(target, payload, ctx)
        return self.process_lookup_fields(target, payload, ctx)

    def _resolve_ticket_contact(self, target: TargetRef, payload: Dict[str, Any], ctx: SyncContext) -> None:
        email = payload.get("email")
        if payload.get("contactId") or not email:
            return

        contact_id = self.resolve_id(target, "contacts", "email", email, ctx)
        if contact_id:
            payload["contactId"] = contact_id
            return

        # Unknown contact: the helpdesk creates it from this block
        contact = {"email": email}
        if payload.get("phone"):
            contact["phone"] = payload["phone"]
        for name_field in ("lastName", "firstName"):
            if payload.get(name_field):
                contact[name_field] = payload[name_field]
        contact.setdefault("lastName", str(email).split("@")[0])
        payload["contact"] = contact
        ctx.log.info(f"Contact {email} not found, ticket will create it")

    @staticmethod
    def _resolve_named(payload: Dict[str, Any], name_key: str, id_key: str, resolver, ctx: SyncContext) -> None:
        value = payload.get(name_key)
        if value is None or str(value).strip() == "" or payload.get(id_key):
            return
        record_id = resolver(value)
        if record_id:
            payload[id_key] = record_id
            del payload[name_key]
        else:
            ctx.log.warning(f"Could not resolve {name_key} {value!r} to {id_key}")

    def _department_id(self, target: TargetRef, name: Any, ctx: SyncContext) -> Optional[str]:
        if self.looks_like_id(name):
            return str(name).strip()
        departments = self._cached_list(target, "departments", ctx)
        wanted = str(name).strip().lower()
        for department in departments:
            if str(department.get("name", "")).strip().lower() == wanted:
                return str(department["id"])
        return None

    def _agent_id(self, target: TargetRef, value: Any, ctx: SyncContext) -> Optional[str]:
        if self.looks_like_id(value):
            return str(value).strip()
        wanted = str(value).strip().lower()
        for agent in self._cached_list(target, "agents", ctx):
            candidates = (agent.get("emailId"), agent.get("name"),
                          f"{agent.get('firstName', '')} {agent.get('lastName', '')}")
            if any(str(c or "").strip().lower() == wanted for c in candidates):
                return str(agent["id"])
        return None

    def _cached_list(self, target: TargetRef, module: str, ctx: SyncContext) -> List[Dict[str, Any]]:
        def load():
            client = self.registry.client_for(target)
            try:
                return client.list(module)
            except (TransportError, RemoteApiError) as e:
                ctx.log.warning(f"Could not list {module}: {e}")
                return []

        return ctx.cached(f"list:{target.system.value}:{module}", load)
