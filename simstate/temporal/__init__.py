"""
Temporal Layer
==============

Event-sourced state management for participant runs.

INVARIANTS:
- All state is derived from the append-only event log
- No mutation of stored data
- Same log → same derived state (deterministic)
- Events from another tier trigger recomputation, not patching

Modules:
- event_log: Append-only event storage
- state_machine: Pure function state derivation
- replay: Recomputation and determinism checks
- clock: Injectable time source for new events
"""

from .clock import ClockExhausted, LogicalClock
from .event_log import SimulationEventLog, LogEntry, LogSequence
from .replay import ReplayEngine, ReplayResult, verify_derived_consistency, verify_snapshot
from .state_machine import StateRebuilder, derive_branches, rebuild_state_from_events

__all__ = [
    'ClockExhausted',
    'LogicalClock',
    'SimulationEventLog',
    'LogEntry',
    'LogSequence',
    'ReplayEngine',
    'ReplayResult',
    'StateRebuilder',
    'derive_branches',
    'rebuild_state_from_events',
    'verify_derived_consistency',
    'verify_snapshot',
]
