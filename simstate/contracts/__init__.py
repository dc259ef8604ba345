"""
Contracts Module

This module defines the explicit data types shared by every layer.
All inter-layer communication MUST use these contracts.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Failures are represented as data (Error / ErrorCode)
3. All timestamps use UTC and are never mutated
4. Wire format (camelCase JSON) lives next to the type it describes
"""

from .base import (
    ACT_NUMBERS, FINAL_ACT, FIRST_ACT, PREVIEW_SESSION_ID, SCHEMA_VERSION,
    VALID_OPTIONS, Act3ContextGroup, Act4Track, Error, ErrorCode, EventType,
    SimulationMode, Timestamp
)
from .events import SimulationEvent
from .state import ActDecisions, DerivedBranches, SimulationState

__all__ = [
    'ACT_NUMBERS',
    'FINAL_ACT',
    'FIRST_ACT',
    'PREVIEW_SESSION_ID',
    'SCHEMA_VERSION',
    'VALID_OPTIONS',
    'Act3ContextGroup',
    'Act4Track',
    'ActDecisions',
    'DerivedBranches',
    'Error',
    'ErrorCode',
    'EventType',
    'SimulationEvent',
    'SimulationMode',
    'SimulationState',
    'Timestamp',
]
