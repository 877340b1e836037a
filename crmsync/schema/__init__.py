"""
Schema Module - records, mapping specs, results and links
"""

from .models import (
    Condition,
    ConditionLogic,
    DeletionPolicy,
    LocalLink,
    MappingSpec,
    Origin,
    Record,
    SourceSettings,
    SyncResult,
    TargetRef,
    TargetSystem,
)

__all__ = [
    "Condition",
    "ConditionLogic",
    "DeletionPolicy",
    "LocalLink",
    "MappingSpec",
    "Origin",
    "Record",
    "SourceSettings",
    "SyncResult",
    "TargetRef",
    "TargetSystem",
]
