"""
Shared fixtures: in-memory store and fake module clients (no network)
"""

import pytest
from typing import Any, Dict, List

from config import AppConfig, CrmApiConfig, DeskApiConfig, SyncConfig
from crmsync.api.targets import FieldMeta, ModuleClient, TargetRegistry
from crmsync.context import SyncContext
from crmsync.errors import RemoteApiError
from crmsync.schema.models import TargetSystem
from crmsync.storage import MemoryStore


class FakeModuleClient(ModuleClient):
    """Module client keeping remote records in a dict"""

    def __init__(self, system: TargetSystem, camel_case: bool = False):
        super().__init__(http=None)
        self.system = system
        self.camel_case = camel_case
        self.records: Dict[tuple, Dict[str, Any]] = {}
        self.metadata: Dict[str, Dict[str, FieldMeta]] = {}
        self.lists: Dict[str, List[Dict[str, Any]]] = {}
        self.modified: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_on = set()
        self.calls: List[tuple] = []
        self._next_id = 1000

    def _maybe_fail(self, op, module):
        if (op, module) in self.fail_on:
            raise RemoteApiError(f"{op} {module} failed", status=400)

    def search(self, module, field, value):
        self.calls.append(("search", module, field, value))
        self._maybe_fail("search", module)
        return [dict(r) for (m, _), r in self.records.items() if m == module and r.get(field) == value]

    def create(self, module, payload):
        self.calls.append(("create", module, dict(payload)))
        self._maybe_fail("create", module)
        self._next_id += 1
        record_id = str(self._next_id)
        self.records[(module, record_id)] = dict(payload, id=record_id)
        return record_id

    def update(self, module, record_id, payload):
        self.calls.append(("update", module, record_id, dict(payload)))
        self._maybe_fail("update", module)
        self.records.setdefault((module, record_id), {"id": record_id}).update(payload)
        return record_id

    def get_record(self, module, record_id):
        self.calls.append(("get", module, record_id))
        record = self.records.get((module, record_id))
        return dict(record) if record else None

    def list_modified(self, module, since, until):
        self.calls.append(("list_modified", module, since, until))
        self._maybe_fail("list_modified", module)
        return list(self.modified.get(module, []))

    def list(self, module, params=None):
        self.calls.append(("list", module))
        return list(self.lists.get(module, []))

    def field_metadata(self, module, log=None):
        self.calls.append(("metadata", module))
        self._maybe_fail("metadata", module)
        return dict(self.metadata.get(module, {}))

    def extract_created_id(self, body):
        return str(body["id"]) if isinstance(body, dict) and body.get("id") else None

    def record_field_name(self, target_field):
        if self.camel_case:
            return target_field[:1].lower() + target_field[1:]
        return target_field

    def writes(self):
        return [c for c in self.calls if c[0] in ("create", "update")]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def crm_client():
    return FakeModuleClient(TargetSystem.CRM)


@pytest.fixture
def desk_client():
    return FakeModuleClient(TargetSystem.DESK, camel_case=True)


@pytest.fixture
def registry(crm_client, desk_client):
    return TargetRegistry({TargetSystem.CRM: crm_client, TargetSystem.DESK: desk_client})


@pytest.fixture
def ctx():
    return SyncContext.for_record("7", "1")


@pytest.fixture
def app_config():
    return AppConfig(
        crm=CrmApiConfig(client_id="id", client_secret="secret"),
        desk=DeskApiConfig(region="eu", org_id="42"),
        sync=SyncConfig(store_path="unused.json", webhook_secret=""),
    )
