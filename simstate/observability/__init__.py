"""
Observability & Audit Layer

RESPONSIBILITY: Record what the persistence layer did and why
ALLOWED INPUTS: Audit entries from the persistence manager
OUTPUTS: Queryable, append-only audit trail

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Make decisions based on logged data
- Block or delay other layer operations

Degraded paths (remote unavailable, corrupt cache, dropped sync) never
surface to the caller as exceptions. They are recorded here and logged
through the standard `logging` module instead.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum

from ..contracts.base import ErrorCode, Timestamp


class AuditAction(Enum):
    """Persistence activities worth keeping a record of."""
    STATE_LOADED = "state_loaded"
    CACHE_CLEARED = "cache_cleared"
    CACHE_CORRUPT = "cache_corrupt"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    DECISION_RECORDED = "decision_recorded"
    SYNC_SUCCEEDED = "sync_succeeded"
    SYNC_FAILED = "sync_failed"


class LoadSource(Enum):
    """Tier a loaded state was resolved from."""
    REMOTE = "remote"
    CACHE = "cache"
    FRESH = "fresh"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of one persistence activity."""
    action: AuditAction
    session_key: str
    timestamp: Timestamp
    detail: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    error_code: Optional[ErrorCode] = None

    def get(self, key: str) -> Optional[str]:
        for k, v in self.detail:
            if k == key:
                return v
        return None


class AuditCollector:
    """
    Append-only audit collector.

    Receives entries from the persistence manager; no modification of
    collected data.
    """

    def __init__(self, layer_name: str = "persistence"):
        self._layer_name = layer_name
        self._entries: List[AuditLogEntry] = []

    def record(
        self,
        action: AuditAction,
        session_key: str,
        error_code: Optional[ErrorCode] = None,
        **detail: str
    ) -> AuditLogEntry:
        """Collect an audit entry (append-only)."""
        entry = AuditLogEntry(
            action=action,
            session_key=session_key,
            timestamp=Timestamp.now(),
            detail=tuple(sorted((k, str(v)) for k, v in detail.items())),
            error_code=error_code
        )
        self._entries.append(entry)
        return entry

    def get_entries(
        self,
        action: Optional[AuditAction] = None,
        session_key: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = self._entries

        if action:
            entries = [e for e in entries if e.action == action]

        if session_key:
            entries = [e for e in entries if e.session_key == session_key]

        return list(entries)

    def last(self, action: Optional[AuditAction] = None) -> Optional[AuditLogEntry]:
        entries = self.get_entries(action=action)
        return entries[-1] if entries else None

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


__all__ = [
    'AuditAction',
    'AuditCollector',
    'AuditLogEntry',
    'LoadSource',
]
