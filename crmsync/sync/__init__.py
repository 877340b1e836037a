"""
Sync Module - outbound mapping passes and inbound reconciliation
"""

from .mapper import SingleTargetMapper
from .orchestrator import MultiTargetOrchestrator
from .reconciliation import EventOutcome, EventState, ReconciliationEngine, SweepResult
from .locks import SourceLocks

__all__ = [
    "SingleTargetMapper",
    "MultiTargetOrchestrator",
    "EventOutcome",
    "EventState",
    "ReconciliationEngine",
    "SweepResult",
    "SourceLocks",
]
