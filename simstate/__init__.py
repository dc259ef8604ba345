"""
Branching Simulation State Core

Event-sourced state for a four-act decision simulation. Each run is an
append-only log of decision events; the current act, recorded decisions
and derived content branches are a pure fold over that log. Runs persist
to an authoritative HTTP store with a local cache fallback.

LAYERS:
=======
- contracts:      Immutable data types and wire formats
- core:           Branch derivation and decision validation
- temporal:       Event log, state fold, replay
- storage:        Remote store and local cache tiers
- observability:  Audit trail of persistence activity
- engine:         Dual-tier persistence manager
"""

from .contracts import (
    ActDecisions,
    Act3ContextGroup,
    Act4Track,
    DerivedBranches,
    Error,
    ErrorCode,
    EventType,
    SimulationEvent,
    SimulationMode,
    SimulationState,
    Timestamp,
)
from .core import (
    can_access_act,
    content_selector,
    derive_act2_branch,
    derive_act3_context_group,
    derive_act4_track,
    is_complete,
    is_valid_option,
    validate_decision_sequence,
)
from .engine import SimulationConfig, SimulationStateManager, build_manager
from .temporal import rebuild_state_from_events

__all__ = [
    'ActDecisions',
    'Act3ContextGroup',
    'Act4Track',
    'DerivedBranches',
    'Error',
    'ErrorCode',
    'EventType',
    'SimulationConfig',
    'SimulationEvent',
    'SimulationMode',
    'SimulationState',
    'SimulationStateManager',
    'Timestamp',
    'build_manager',
    'can_access_act',
    'content_selector',
    'derive_act2_branch',
    'derive_act3_context_group',
    'derive_act4_track',
    'is_complete',
    'is_valid_option',
    'rebuild_state_from_events',
    'validate_decision_sequence',
]
