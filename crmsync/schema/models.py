"""Models for records, mapping specs and sync results."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from crmsync.errors import ConfigError


RECORD_ID_TOKEN = "record_id"
SOURCE_ID_TOKEN = "source_id"
REF_PREFIX = "ref:"


class Origin(str, Enum):
    """Where a record's current state came from."""

    LOCAL = "local"
    REMOTE = "remote"


class ConditionLogic(str, Enum):
    ALL = "ALL"
    ANY = "ANY"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConditionLogic":
        if not value:
            return cls.ALL
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ConfigError(f"Unknown condition logic: {value}")


# Names used by older saved configurations
LEGACY_DELETION_POLICIES = {
    "mark_as_deleted": "flag-only",
    "mark_as_trashed": "soft-delete",
    "delete": "hard-delete",
}


class DeletionPolicy(str, Enum):
    FLAG_ONLY = "flag-only"
    SOFT_DELETE = "soft-delete"
    HARD_DELETE = "hard-delete"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DeletionPolicy":
        if not value:
            return cls.FLAG_ONLY
        value = LEGACY_DELETION_POLICIES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(f"Unknown deletion policy: {value}")


class TargetSystem(str, Enum):
    """Remote API family a module belongs to."""

    CRM = "crm"
    DESK = "desk"


@dataclass(frozen=True)
class TargetRef:
    """A remote module: which API family, and the module name inside it."""

    system: TargetSystem
    name: str

    @property
    def key(self) -> str:
        return f"{self.system.value}/{self.name}"

    def __str__(self) -> str:
        return self.key

    @classmethod
    def crm(cls, name: str) -> "TargetRef":
        return cls(TargetSystem.CRM, name)

    @classmethod
    def desk(cls, name: str) -> "TargetRef":
        return cls(TargetSystem.DESK, name)

    @classmethod
    def from_key(cls, key: str) -> "TargetRef":
        system, _, name = key.partition("/")
        if not name:
            raise ConfigError(f"Invalid target key: {key}")
        return cls(TargetSystem(system), name)

    @classmethod
    def from_dict(cls, data: Any) -> "TargetRef":
        if isinstance(data, TargetRef):
            return data
        if isinstance(data, str):
            return cls.crm(data)
        if not isinstance(data, dict) or not data.get("module"):
            raise ConfigError(f"Invalid target module: {data!r}")
        try:
            system = TargetSystem(data.get("system", "crm"))
        except ValueError:
            raise ConfigError(f"Unknown target system: {data.get('system')}")
        return cls(system, data["module"])

    def to_dict(self) -> Dict[str, str]:
        return {"system": self.system.value, "module": self.name}


@dataclass(frozen=True)
class Record:
    """One submitted entity. Build a new Record instead of mutating one."""

    record_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    origin: Origin = Origin.LOCAL

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def with_fields(self, updates: Dict[str, Any], origin: Optional[Origin] = None) -> "Record":
        merged = dict(self.fields)
        merged.update(updates)
        return replace(self, fields=merged, origin=origin or self.origin)

    @property
    def is_remote(self) -> bool:
        return self.origin == Origin.REMOTE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "fields": dict(self.fields),
            "origin": self.origin.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        return cls(
            record_id=str(data["record_id"]),
            fields=dict(data.get("fields", {})),
            origin=Origin(data.get("origin", Origin.LOCAL.value)),
        )


@dataclass
class Condition:
    """Predicate over one record field. Missing field/operator means skipped."""

    field_ref: str = ""
    operator: Optional[str] = None
    expected_value: Any = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.field_ref) and bool(self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field_ref,
            "operator": self.operator,
            "value": self.expected_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            field_ref=str(data.get("field") or data.get("field_ref") or ""),
            operator=data.get("operator") or None,
            expected_value=data.get("value", data.get("expected_value", "")),
        )


# (source_field_ref, target_field_name)
FieldPair = Tuple[str, str]


@dataclass
class MappingSpec:
    """One declarative sync unit: a record mapped onto one remote module."""

    key: str
    target: TargetRef
    field_mapping: List[FieldPair] = field(default_factory=list)
    lookup_field: Optional[str] = None
    lookup_value_ref: Optional[str] = None
    custom_values: Dict[str, str] = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)
    condition_logic: ConditionLogic = ConditionLogic.ALL
    force_create: bool = False
    module_settings: Dict[str, str] = field(default_factory=dict)

    @property
    def has_lookup(self) -> bool:
        return bool(self.lookup_field) and bool(self.lookup_value_ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "target": self.target.to_dict(),
            "fields": [[source, target] for source, target in self.field_mapping],
            "lookup_field": self.lookup_field,
            "lookup_value": self.lookup_value_ref,
            "custom_values": dict(self.custom_values),
            "conditions": [c.to_dict() for c in self.conditions],
            "condition_logic": self.condition_logic.value,
            "force_create": self.force_create,
            "module_settings": dict(self.module_settings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingSpec":
        """Parse a stored mapping. Raises ConfigError on invalid entries."""
        if not isinstance(data, dict):
            raise ConfigError(f"Mapping must be an object, got {type(data).__name__}")

        target = TargetRef.from_dict(data.get("target") or data.get("module"))
        field_mapping = _parse_field_mapping(data.get("fields", []))

        module_settings = {k: str(v) for k, v in (data.get("module_settings") or {}).items() if v not in (None, "")}
        for legacy_key, payload_key in (("department_id", "departmentId"), ("status", "status"), ("priority", "priority")):
            value = (data.get("desk_settings") or {}).get(legacy_key)
            if value and payload_key not in module_settings:
                module_settings[payload_key] = str(value)

        custom_values = data.get("custom_values") or {}
        if not isinstance(custom_values, dict):
            raise ConfigError("custom_values must be an object of target field -> template")

        return cls(
            key=str(data.get("key") or target.name),
            target=target,
            field_mapping=field_mapping,
            lookup_field=data.get("lookup_field") or None,
            lookup_value_ref=data.get("lookup_value") or data.get("lookup_value_ref") or None,
            custom_values={str(k): str(v) for k, v in custom_values.items()},
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or [] if isinstance(c, dict)],
            condition_logic=ConditionLogic.parse(data.get("condition_logic")),
            force_create=bool(data.get("force_create", False)),
            module_settings=module_settings,
        )


def _parse_field_mapping(raw: Any) -> List[FieldPair]:
    # Older configurations store {source: target}; order is still insertion order
    if isinstance(raw, dict):
        raw = list(raw.items())
    pairs = []
    for item in raw:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ConfigError(f"Invalid field mapping entry: {item!r}")
        source, target = item
        if not source or not target:
            continue
        pairs.append((str(source), str(target)))
    return pairs


@dataclass
class SourceSettings:
    """Everything configured for one source (form)."""

    source_id: str
    mappings: List[MappingSpec] = field(default_factory=list)
    two_way_sync: bool = False
    deletion_policy: DeletionPolicy = DeletionPolicy.FLAG_ONLY

    def specs_for(self, target: TargetRef) -> List[MappingSpec]:
        return [spec for spec in self.mappings if spec.target == target]

    @property
    def targets(self) -> List[TargetRef]:
        seen = []
        for spec in self.mappings:
            if spec.target not in seen:
                seen.append(spec.target)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mappings": [m.to_dict() for m in self.mappings],
            "two_way_sync": self.two_way_sync,
            "deletion_policy": self.deletion_policy.value,
        }


@dataclass
class SyncResult:
    """Outcome of one mapping execution within a pass."""

    mapping_key: str
    success: bool
    message: str = ""
    target_record_id: Optional[str] = None
    target: Optional[TargetRef] = None
    created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mapping_key": self.mapping_key,
            "success": self.success,
            "message": self.message,
            "target_record_id": self.target_record_id,
            "target": self.target.key if self.target else None,
            "created": self.created,
        }


@dataclass(frozen=True)
class LocalLink:
    """Persisted association between a local record and a remote record."""

    source_id: str
    record_id: str
    target: TargetRef
    target_record_id: str
    mapping_key: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "record_id": self.record_id,
            "target": self.target.key,
            "target_record_id": self.target_record_id,
            "mapping_key": self.mapping_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalLink":
        return cls(
            source_id=str(data["source_id"]),
            record_id=str(data["record_id"]),
            target=TargetRef.from_key(data["target"]),
            target_record_id=str(data["target_record_id"]),
            mapping_key=data.get("mapping_key", ""),
        )
