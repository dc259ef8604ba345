"""
Persistence Fixtures

Explicit storage-tier doubles for persistence manager tests.

RULES:
======
1. Every failure is injected explicitly, never random
2. Doubles count their calls so tests can assert a tier was NOT touched
"""

from __future__ import annotations
from datetime import datetime, timezone, timedelta
from typing import Optional

from simstate.contracts.base import SimulationMode
from simstate.contracts.state import SimulationState
from simstate.engine import SimulationStateManager
from simstate.observability import AuditCollector
from simstate.storage.local import InMemoryStateCache, LocalStateCache
from simstate.storage.remote import (
    InMemoryRemoteStateStore, RemoteStateStore, RemoteStoreError
)
from simstate.temporal.clock import LogicalClock


BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
STARTED_AT = BASE_TIME.isoformat()


class FailingRemoteStore(RemoteStateStore):
    """Remote tier that is always down."""

    def __init__(self):
        self.fetch_calls = 0
        self.save_calls = 0

    async def fetch_state(self, session_id: str) -> Optional[SimulationState]:
        self.fetch_calls += 1
        raise RemoteStoreError("connection refused")

    async def save_snapshot(self, session_id: str, state: SimulationState) -> None:
        self.save_calls += 1
        raise RemoteStoreError("connection refused", status_code=502)


class CrashingRemoteStore(RemoteStateStore):
    """Remote tier whose client fails with an unexpected exception type."""

    def __init__(self):
        self.fetch_calls = 0
        self.save_calls = 0

    async def fetch_state(self, session_id: str) -> Optional[SimulationState]:
        self.fetch_calls += 1
        raise RuntimeError("client closed")

    async def save_snapshot(self, session_id: str, state: SimulationState) -> None:
        self.save_calls += 1
        raise ValueError("unserialisable body")


class BrokenCache(LocalStateCache):
    """Local tier whose every operation fails with an I/O error."""

    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        raise OSError("disk full")

    def remove(self, key):
        raise OSError("disk unavailable")

    def keys(self):
        raise OSError("disk unavailable")


def make_clock(count: int = 10) -> LogicalClock:
    """Replay clock ticking once a minute after BASE_TIME."""
    return LogicalClock.from_ticks(
        BASE_TIME + timedelta(minutes=i + 1) for i in range(count)
    )


def make_manager(
    session_id: Optional[str] = "sess-1",
    remote: Optional[RemoteStateStore] = None,
    cache: Optional[LocalStateCache] = None,
    clock: Optional[LogicalClock] = None,
    started_at: Optional[str] = STARTED_AT
) -> SimulationStateManager:
    return SimulationStateManager(
        participant_id="p-1",
        session_id=session_id,
        mode=SimulationMode.GENERATIVE_ASSIST,
        remote=remote if remote is not None else InMemoryRemoteStateStore(),
        cache=cache if cache is not None else InMemoryStateCache(),
        clock=clock or make_clock(),
        audit=AuditCollector(),
        started_at=started_at
    )
