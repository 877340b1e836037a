"""
Module clients - one per remote API family

Each TargetSystem gets a ModuleClient exposing the same operations
(search, create, update, get_record, list_modified, field_metadata), so
callers never branch on module names. Response envelopes differ:

- CRM wraps everything in {"data": [...]}; a create answers
  {"data": [{"status": "success", "details": {"id": ...}}]}
- Desk returns the record itself; a create answers {"id": ...}
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import CrmApiConfig, DeskApiConfig
from crmsync.api.http_client import ApiResponse, AuthorizedClient
from crmsync.errors import RemoteApiError, TransportError
from crmsync.schema.models import TargetRef, TargetSystem

logger = logging.getLogger(__name__)


@dataclass
class FieldMeta:
    """Metadata for one remote field"""

    api_name: str
    label: str = ""
    data_type: str = "text"
    lookup_module: Optional[str] = None

    @property
    def is_lookup(self) -> bool:
        return self.data_type in ("lookup", "ownerlookup", "userlookup", "multiuserlookup")


def iso_timestamp(when: datetime) -> str:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).replace(microsecond=0).isoformat()


class ModuleClient(ABC):
    """Operations every remote API family supports"""

    system: TargetSystem

    def __init__(self, http: AuthorizedClient):
        self.http = http

    @abstractmethod
    def search(self, module: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Records whose field equals value (empty list when none)"""

    @abstractmethod
    def create(self, module: str, payload: Dict[str, Any]) -> str:
        """Create a record and return its new ID"""

    @abstractmethod
    def update(self, module: str, record_id: str, payload: Dict[str, Any]) -> str:
        """Update a record and return its ID"""

    @abstractmethod
    def get_record(self, module: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one record"""

    @abstractmethod
    def list_modified(self, module: str, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        """Records modified after since"""

    @abstractmethod
    def field_metadata(self, module: str, log=None) -> Dict[str, FieldMeta]:
        """Field metadata keyed by API name; log is the per-pass logger when given"""

    @abstractmethod
    def extract_created_id(self, body: Any) -> Optional[str]:
        """Pull the new record's ID out of a create response"""

    def record_field_name(self, target_field: str) -> str:
        """Name a mapped target field carries in records read back"""
        return target_field

    def _check(self, response: ApiResponse, action: str, module: str) -> ApiResponse:
        if not response.ok:
            raise RemoteApiError(
                f"Error {action} {module}: {response.error_message}",
                status=response.status,
                details={"module": module, "body": response.body},
            )
        return response


class CrmModuleClient(ModuleClient):
    """CRM modules (Leads, Contacts, Deals, ...)"""

    system = TargetSystem.CRM

    def __init__(self, http: AuthorizedClient, config: CrmApiConfig):
        super().__init__(http)
        self.config = config

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/{path.lstrip('/')}"

    def search(self, module: str, field: str, value: Any) -> List[Dict[str, Any]]:
        response = self.http.send(
            "GET",
            self._url(f"{module}/search"),
            params={"criteria": f"({field}:equals:{value})"},
            timeout=self.config.search_timeout,
        )
        if response.status == 204:
            return []
        self._check(response, "searching", module)
        return list(response.body.get("data") or []) if isinstance(response.body, dict) else []

    def create(self, module: str, payload: Dict[str, Any]) -> str:
        response = self.http.send(
            "POST", self._url(module), body={"data": [payload]}, timeout=self.config.write_timeout
        )
        self._check_rows(self._check(response, "creating record in", module), "creating record in", module)
        record_id = self.extract_created_id(response.body)
        if not record_id:
            raise RemoteApiError(f"No record ID in create response for {module}", status=response.status)
        return record_id

    def update(self, module: str, record_id: str, payload: Dict[str, Any]) -> str:
        response = self.http.send(
            "PUT", self._url(f"{module}/{record_id}"), body={"data": [payload]}, timeout=self.config.write_timeout
        )
        self._check_rows(self._check(response, "updating record in", module), "updating record in", module)
        return str(record_id)

    def get_record(self, module: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = self.http.send("GET", self._url(f"{module}/{record_id}"), timeout=self.config.search_timeout)
        if response.status in (204, 404):
            return None
        self._check(response, "fetching record from", module)
        rows = response.body.get("data") if isinstance(response.body, dict) else None
        return rows[0] if rows else None

    def list_modified(self, module: str, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        response = self.http.send(
            "GET",
            self._url(f"{module}/search"),
            params={"criteria": f"(Modified_Time:greater_than:{iso_timestamp(since)})"},
            timeout=self.config.metadata_timeout,
        )
        if response.status == 204:
            return []
        self._check(response, "listing modified records in", module)
        return list(response.body.get("data") or [])

    def field_metadata(self, module: str, log=None) -> Dict[str, FieldMeta]:
        response = self.http.send(
            "GET",
            self._url("settings/fields"),
            params={"module": module},
            timeout=self.config.metadata_timeout,
        )
        self._check(response, "fetching fields for", module)

        fields = {}
        for raw in response.body.get("fields") or []:
            lookup = raw.get("lookup") or {}
            fields[raw["api_name"]] = FieldMeta(
                api_name=raw["api_name"],
                label=raw.get("field_label", raw["api_name"]),
                data_type=raw.get("data_type", "text"),
                lookup_module=lookup.get("module") if isinstance(lookup, dict) else None,
            )
        return fields

    def extract_created_id(self, body: Any) -> Optional[str]:
        try:
            record_id = body["data"][0]["details"]["id"]
        except (KeyError, IndexError, TypeError):
            return None
        return str(record_id) if record_id else None

    @staticmethod
    def _check_rows(response: ApiResponse, action: str, module: str) -> None:
        # 2xx can still carry a per-row error status
        rows = response.body.get("data") if isinstance(response.body, dict) else None
        if rows and isinstance(rows[0], dict) and rows[0].get("status") == "error":
            raise RemoteApiError(
                f"Error {action} {module}: {rows[0].get('message', rows[0].get('code', 'unknown error'))}",
                status=response.status,
                details={"module": module, "body": response.body},
            )


# Standard Desk fields per module; Desk only exposes custom fields via API
DESK_STANDARD_FIELDS = {
    "tickets": [
        FieldMeta("subject", "Subject", "text"),
        FieldMeta("description", "Description", "textarea"),
        FieldMeta("departmentId", "Department ID", "lookup", "departments"),
        FieldMeta("contactId", "Contact ID", "lookup", "contacts"),
        FieldMeta("email", "Email", "email"),
        FieldMeta("phone", "Phone", "phone"),
        FieldMeta("status", "Status", "picklist"),
        FieldMeta("priority", "Priority", "picklist"),
        FieldMeta("assigneeId", "Assignee ID", "lookup", "agents"),
        FieldMeta("productId", "Product ID", "lookup", "products"),
        FieldMeta("category", "Category", "text"),
        FieldMeta("dueDate", "Due Date", "date"),
    ],
    "contacts": [
        FieldMeta("firstName", "First Name", "text"),
        FieldMeta("lastName", "Last Name", "text"),
        FieldMeta("email", "Email", "email"),
        FieldMeta("phone", "Phone", "phone"),
        FieldMeta("mobile", "Mobile", "phone"),
        FieldMeta("title", "Title", "text"),
        FieldMeta("accountId", "Account ID", "lookup", "accounts"),
    ],
    "accounts": [
        FieldMeta("accountName", "Account Name", "text"),
        FieldMeta("website", "Website", "url"),
        FieldMeta("phone", "Phone", "phone"),
        FieldMeta("email", "Email", "email"),
    ],
}


class DeskModuleClient(ModuleClient):
    """Helpdesk modules (tickets, contacts, accounts, ...)"""

    system = TargetSystem.DESK

    def __init__(self, http: AuthorizedClient, config: DeskApiConfig):
        super().__init__(http)
        self.config = config

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/{path.lstrip('/')}"

    @property
    def _headers(self) -> Dict[str, str]:
        return {"orgId": self.config.org_id} if self.config.org_id else {}

    def _send(self, method: str, path: str, **kwargs) -> ApiResponse:
        kwargs.setdefault("timeout", self.config.timeout)
        return self.http.send(method, self._url(path), headers=self._headers, **kwargs)

    def search(self, module: str, field: str, value: Any) -> List[Dict[str, Any]]:
        response = self._send("GET", f"{module}/search", params={field: value, "limit": 1})
        if response.status == 204:
            return []
        self._check(response, "searching", module)
        return self._rows(response.body)

    def list(self, module: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        response = self._send("GET", module, params=params)
        if response.status == 204:
            return []
        self._check(response, "listing", module)
        return self._rows(response.body)

    def create(self, module: str, payload: Dict[str, Any]) -> str:
        response = self._send("POST", module, body=payload)
        self._check(response, "creating record in", module)
        record_id = self.extract_created_id(response.body)
        if not record_id:
            raise RemoteApiError(f"No record ID in create response for {module}", status=response.status)
        return record_id

    def update(self, module: str, record_id: str, payload: Dict[str, Any]) -> str:
        response = self._send("PATCH", f"{module}/{record_id}", body=payload)
        self._check(response, "updating record in", module)
        return str(record_id)

    def get_record(self, module: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = self._send("GET", f"{module}/{record_id}")
        if response.status in (204, 404):
            return None
        self._check(response, "fetching record from", module)
        return response.body if isinstance(response.body, dict) else None

    def list_modified(self, module: str, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        return self.list(module, params={"modifiedTimeRange": f"{iso_timestamp(since)},{iso_timestamp(until)}"})

    def field_metadata(self, module: str, log=None) -> Dict[str, FieldMeta]:
        log = log or logger
        fields = {meta.api_name: meta for meta in DESK_STANDARD_FIELDS.get(module.lower(), [])}

        # Custom fields are never lookups; the standard table is returned even when they fail
        singular = module[:-1] if module.endswith("s") else module
        try:
            response = self._send("GET", f"customFields/{singular}")
        except (TransportError, RemoteApiError) as e:
            log.warning(f"Could not fetch custom fields for {module}: {e}")
            return fields

        if not response.ok:
            log.warning(f"Could not fetch custom fields for {module}: {response.error_message}")
            return fields

        for raw in self._rows(response.body):
            if raw.get("fieldName") and raw["fieldName"] not in fields:
                fields[raw["fieldName"]] = FieldMeta(
                    api_name=raw["fieldName"],
                    label=raw.get("displayLabel") or raw["fieldName"],
                    data_type=str(raw.get("dataType", "text")).lower(),
                )
        return fields

    def extract_created_id(self, body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        record_id = body.get("id")
        if not record_id and isinstance(body.get("data"), dict):
            record_id = body["data"].get("id")
        return str(record_id) if record_id else None

    def record_field_name(self, target_field: str) -> str:
        # Desk reads back camelCase names
        return target_field[:1].lower() + target_field[1:]

    @staticmethod
    def _rows(body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            return body["data"]
        return []


class TargetRegistry:
    """Picks the module client for a target by its system tag"""

    def __init__(self, clients: Dict[TargetSystem, ModuleClient]):
        self.clients = clients

    @classmethod
    def build(cls, http: AuthorizedClient, crm: CrmApiConfig, desk: DeskApiConfig) -> "TargetRegistry":
        return cls({
            TargetSystem.CRM: CrmModuleClient(http, crm),
            TargetSystem.DESK: DeskModuleClient(http, desk),
        })

    def client_for(self, target: TargetRef) -> ModuleClient:
        try:
            return self.clients[target.system]
        except KeyError:
            raise RemoteApiError(f"No client configured for {target.system.value} modules")
