"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.
No behavior, no side effects, no dependencies.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses or closed enums
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, queryable)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    Every degraded path in the persistence layer maps to one of these.
    """
    # Validation errors
    INVALID_ACT = auto()
    INVALID_OPTION = auto()
    ACT_OUT_OF_SEQUENCE = auto()
    DECISION_ALREADY_RECORDED = auto()

    # Remote store errors
    REMOTE_UNAVAILABLE = auto()
    REMOTE_MALFORMED_RESPONSE = auto()

    # Local cache errors
    CACHE_CORRUPT = auto()
    CACHE_WRITE_FAILED = auto()

    # Replay errors
    STRUCTURAL_INCONSISTENCY = auto()
    NON_DETERMINISTIC_REPLAY = auto()
    DERIVED_STATE_MISMATCH = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        """Build an error stamped with the current UTC time."""
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple(sorted((k, str(v)) for k, v in context.items()))
        )


# =============================================================================
# TEMPORAL TYPES
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()


# =============================================================================
# SIMULATION ENUMS (Closed world)
# =============================================================================

class SimulationMode(Enum):
    """Assistance condition a participant is assigned to."""
    NO_ASSISTANCE = "C0"
    GENERATIVE_ASSIST = "C1"
    AGENTIC_ASSIST = "C2"


class EventType(Enum):
    """
    Simulation event types.
    Only DECISION and ACT_STARTED affect derivation; the rest are
    recorded for audit.
    """
    DECISION = "decision"
    ACT_STARTED = "act_started"
    ACT_COMPLETED = "act_completed"
    STATE_SYNC = "state_sync"
    ERROR = "error"


class Act3ContextGroup(Enum):
    """Act III context bucket, keyed off the Act II choice."""
    EFFICIENCY_FIRST = "efficiency-first"
    BALANCED = "balanced"
    TRADITION_FIRST = "tradition-first"


class Act4Track(Enum):
    """Act IV identity track, keyed off the Act III choice."""
    EFFICIENCY_AT_SCALE = "Efficiency at Scale"
    MANAGED_ADAPTATION = "Managed Adaptation"
    RELATIONAL_FOUNDATION = "Relational Foundation"


# =============================================================================
# ACT CONSTANTS
# =============================================================================

FIRST_ACT = 1
FINAL_ACT = 4
ACT_NUMBERS: Tuple[int, ...] = (1, 2, 3, 4)

SCHEMA_VERSION = 1

# Decision codes accepted per act, exactly.
VALID_OPTIONS: Dict[int, FrozenSet[str]] = {
    1: frozenset({"A", "B", "C"}),
    2: frozenset({"A1", "A2", "A3", "B1", "B2", "B3", "C1", "C2", "C3"}),
    3: frozenset({"X", "Y", "Z"}),
    4: frozenset({"Innovation", "Ecosystem", "Efficiency"}),
}

PREVIEW_SESSION_ID = "preview"
