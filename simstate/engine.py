"""
Persistence Manager
===================

Load / update / sync surface for one participant run, hiding the two
storage tiers behind a single object.

DESIGN PRINCIPLES:
==================
1. Decisions only ever change by folding the event log
2. The local cache is written synchronously on every change
3. The remote tier is written in the background and never retried
4. Remote and cache failures degrade; they never raise to the caller
5. A loaded snapshot is a floor: later folds keep its mode and
   participant, and never move currentAct below it

LOAD ORDER (non-ephemeral runs):
================================
1. Remote snapshot (authoritative)
2. Local cache (remote failed, or has nothing yet)
3. Fresh state

Ephemeral runs (session id None or "preview") always start fresh and
never contact the remote tier.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Set, Tuple, Union
import asyncio
import logging
import os

from .contracts.base import FIRST_ACT, PREVIEW_SESSION_ID, ErrorCode, SimulationMode
from .contracts.events import SimulationEvent
from .contracts.state import SimulationState
from .domain.serialization import dumps_state, loads_state
from .observability import AuditAction, AuditCollector, LoadSource
from .storage import (
    PREVIEW_CACHE_PREFIXES,
    HttpRemoteStateStore,
    InMemoryRemoteStateStore,
    LocalCacheConfig,
    LocalStateCache,
    RemoteStateStore,
    RemoteStoreConfig,
    RemoteStoreError,
    create_cache,
    storage_key,
)
from .temporal.clock import LogicalClock
from .temporal.event_log import SimulationEventLog
from .temporal.replay import ReplayEngine
from .temporal.state_machine import StateRebuilder, derive_branches

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class SimulationConfig:
    """
    Unified configuration for the persistence manager.

    `remote` of None means no server is configured; runs then persist to
    an in-process remote stand-in and the local cache only.
    """
    remote: Optional[RemoteStoreConfig] = None
    cache: Optional[LocalCacheConfig] = None

    def __post_init__(self):
        self.cache = self.cache or LocalCacheConfig()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SimulationConfig':
        """
        Build configuration from environment variables.

        SIMSTATE_API_URL      remote base URL (enables the HTTP store)
        SIMSTATE_API_TIMEOUT  request timeout in seconds
        SIMSTATE_API_TOKEN    bearer token
        SIMSTATE_CACHE_DIR    directory for the file cache (else in-memory)
        """
        env = os.environ if environ is None else environ

        remote = None
        base_url = env.get("SIMSTATE_API_URL")
        if base_url:
            remote = RemoteStoreConfig(
                base_url=base_url,
                timeout_seconds=float(env.get("SIMSTATE_API_TIMEOUT", "30")),
                auth_token=env.get("SIMSTATE_API_TOKEN") or None
            )

        cache_dir = env.get("SIMSTATE_CACHE_DIR")
        if cache_dir:
            cache = LocalCacheConfig(backend_type="file", storage_dir=cache_dir)
        else:
            cache = LocalCacheConfig()

        return cls(remote=remote, cache=cache)


# =============================================================================
# PERSISTENCE MANAGER
# =============================================================================

class SimulationStateManager:
    """
    Dual-tier persistence for one participant run.

    GUARANTEES:
    ===========
    1. `state` is always the fold of `event_log` (or a loaded snapshot)
    2. Every accepted call leaves the local cache holding `state`
    3. Background syncs are tracked until they finish
    4. No remote or cache failure escapes as an exception

    All mutation happens on the caller's task. The only background work
    is the snapshot sync launched by update_decision().
    """

    def __init__(
        self,
        participant_id: str,
        session_id: Optional[str],
        mode: SimulationMode,
        remote: RemoteStateStore,
        cache: LocalStateCache,
        clock: Optional[LogicalClock] = None,
        audit: Optional[AuditCollector] = None,
        started_at: Optional[str] = None
    ):
        self._participant_id = participant_id
        self._session_id = session_id
        self._mode = mode
        self._remote = remote
        self._cache = cache
        self._clock = clock or LogicalClock.live()
        self._audit = audit or AuditCollector()
        self._started_at = started_at

        self._state: Optional[SimulationState] = None
        self._act_floor = FIRST_ACT
        self._log = SimulationEventLog()
        self._pending: Set[asyncio.Task] = set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> Optional[SimulationState]:
        """Current state; None until the first refresh()."""
        return self._state

    @property
    def is_ephemeral(self) -> bool:
        return self._session_id is None or self._session_id == PREVIEW_SESSION_ID

    @property
    def storage_key(self) -> str:
        return storage_key(None if self.is_ephemeral else self._session_id)

    @property
    def event_log(self) -> SimulationEventLog:
        return self._log

    @property
    def audit(self) -> AuditCollector:
        return self._audit

    @property
    def pending_syncs(self) -> int:
        """Background syncs launched and not yet finished."""
        return len(self._pending)

    # =========================================================================
    # LOAD
    # =========================================================================

    async def refresh(self) -> SimulationState:
        """
        Resolve the run's state from the tiers and make it current.

        The local cache is rewritten with whatever was resolved.
        """
        if self.is_ephemeral:
            self._clear_preview()
            state, source = self._fresh_state(), LoadSource.FRESH
        else:
            state, source = await self._resolve()

        state = self._adopt(state)
        self._write_cache(state)

        logger.debug("Loaded %s from %s", self.storage_key, source.value)
        self._audit.record(
            AuditAction.STATE_LOADED,
            self.storage_key,
            source=source.value,
            current_act=state.current_act
        )
        return state

    async def _resolve(self) -> Tuple[SimulationState, LoadSource]:
        try:
            remote_state = await self._remote.fetch_state(self._session_id)
        except RemoteStoreError as e:
            logger.warning("Remote state unavailable for %s: %s", self._session_id, e)
            self._audit.record(
                AuditAction.REMOTE_UNAVAILABLE,
                self.storage_key,
                error_code=e.code,
                reason=str(e)
            )
            remote_state = None
        except Exception as e:
            logger.exception("Remote fetch crashed for %s", self._session_id)
            self._audit.record(
                AuditAction.REMOTE_UNAVAILABLE,
                self.storage_key,
                error_code=ErrorCode.REMOTE_UNAVAILABLE,
                reason=f"{type(e).__name__}: {e}"
            )
            remote_state = None

        if remote_state is not None:
            return remote_state, LoadSource.REMOTE

        cached = self._read_cache()
        if cached is not None:
            return cached, LoadSource.CACHE

        return self._fresh_state(), LoadSource.FRESH

    def _fresh_state(self) -> SimulationState:
        started_at = self._started_at or self._clock.now().to_iso()
        return SimulationState.initial(
            self._participant_id, self._session_id, self._mode, started_at
        )

    def _adopt(self, state: SimulationState) -> SimulationState:
        """
        Make a resolved snapshot the run's current state.

        GUARANTEES:
        - derived branches always agree with the snapshot's decisions
        - later folds keep the snapshot's mode, participant and start time
        - currentAct never drops below the snapshot's value
        """
        state = replace(state, derived=derive_branches(state.decisions))

        self._state = state
        self._participant_id = state.participant_id
        self._mode = state.mode
        self._started_at = state.started_at
        self._act_floor = state.current_act
        # The log is reseeded from the snapshot's own history
        self._log = SimulationEventLog(state.events)
        return state

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_decision(self, act: int, option_id: str, **extra: Any) -> SimulationState:
        """
        Record one decision and recompute the run.

        Invalid or repeated decisions are still logged; the fold decides
        whether they take effect.
        """
        if self._state is None:
            await self.refresh()

        event = SimulationEvent.decision(act, option_id, self._clock.now(), **extra)
        self._log.append(event)

        state = self._rebuilder().derive_state(self._log)
        if state.current_act < self._act_floor:
            # Snapshots may carry progress their event history does not
            state = replace(state, current_act=self._act_floor)
        self._state = state
        self._write_cache(state)

        self._audit.record(
            AuditAction.DECISION_RECORDED,
            self.storage_key,
            act=act,
            option_id=option_id,
            applied=state.decisions.get(act) == option_id
        )

        if not self.is_ephemeral:
            self._schedule_sync(state)

        return state

    def _rebuilder(self) -> StateRebuilder:
        return StateRebuilder(
            self._participant_id, self._session_id, self._mode, self._started_at
        )

    def replay_engine(self) -> ReplayEngine:
        """Replay engine over this run's log, for point-in-time queries."""
        return ReplayEngine(self._log, self._rebuilder())

    # =========================================================================
    # SYNC
    # =========================================================================

    async def sync_to_server(self, state: Optional[SimulationState] = None) -> bool:
        """
        Upsert a snapshot to the remote tier.

        Returns True when the remote accepted it. No-op for ephemeral runs
        and when there is no state yet.
        """
        state = state or self._state
        if state is None or self.is_ephemeral:
            return False

        try:
            await self._remote.save_snapshot(self._session_id, state)
        except RemoteStoreError as e:
            logger.warning("Snapshot sync failed for %s: %s", self._session_id, e)
            self._audit.record(
                AuditAction.SYNC_FAILED,
                self.storage_key,
                error_code=e.code,
                reason=str(e)
            )
            return False
        except Exception as e:
            logger.exception("Snapshot sync crashed for %s", self._session_id)
            self._audit.record(
                AuditAction.SYNC_FAILED,
                self.storage_key,
                error_code=ErrorCode.REMOTE_UNAVAILABLE,
                reason=f"{type(e).__name__}: {e}"
            )
            return False

        self._audit.record(
            AuditAction.SYNC_SUCCEEDED,
            self.storage_key,
            state_hash=state.state_hash
        )
        return True

    def _schedule_sync(self, state: SimulationState) -> None:
        task = asyncio.create_task(self.sync_to_server(state))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_for_pending_syncs(self) -> None:
        """Block until every background sync launched so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # =========================================================================
    # LOCAL CACHE
    # =========================================================================

    def _read_cache(self) -> Optional[SimulationState]:
        key = self.storage_key
        try:
            raw = self._cache.get(key)
        except OSError as e:
            logger.warning("Local cache read failed for %s: %s", key, e)
            return None

        if raw is None:
            return None

        try:
            return loads_state(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt cached state under %s: %s", key, e)
            self._audit.record(
                AuditAction.CACHE_CORRUPT,
                key,
                error_code=ErrorCode.CACHE_CORRUPT,
                reason=str(e)
            )
            return None

    def _write_cache(self, state: SimulationState) -> None:
        try:
            self._cache.set(self.storage_key, dumps_state(state))
        except OSError as e:
            logger.warning(
                "Local cache write failed for %s (%s): %s",
                self.storage_key, ErrorCode.CACHE_WRITE_FAILED.name, e
            )

    def _clear_preview(self) -> None:
        key = self.storage_key
        try:
            self._cache.remove(key)
            removed = self._cache.remove_prefixed(*PREVIEW_CACHE_PREFIXES)
        except OSError as e:
            logger.warning("Failed to clear preview cache: %s", e)
            return

        self._audit.record(AuditAction.CACHE_CLEARED, key, auxiliary_keys=len(removed))


# =============================================================================
# FACTORY
# =============================================================================

def build_manager(
    participant_id: str,
    session_id: Optional[str],
    mode: Union[SimulationMode, str],
    config: Optional[SimulationConfig] = None,
    clock: Optional[LogicalClock] = None
) -> SimulationStateManager:
    """Create a manager with tiers chosen by configuration (env by default)."""
    config = config or SimulationConfig.from_env()

    if config.remote is not None:
        remote: RemoteStateStore = HttpRemoteStateStore(config.remote)
    else:
        remote = InMemoryRemoteStateStore()

    return SimulationStateManager(
        participant_id=participant_id,
        session_id=session_id,
        mode=SimulationMode(mode),
        remote=remote,
        cache=create_cache(config.cache),
        clock=clock
    )
