"""
Persistence Manager Tests

Tests for tier resolution, decision recording and background sync.

AXIOM UNDER TEST:
=================
Remote and cache failures degrade to the next tier and are recorded
in the audit trail. None of them reaches the caller as an exception.
"""

import asyncio
import pytest
from datetime import timedelta

from simstate.contracts.base import (
    Act3ContextGroup, Act4Track, ErrorCode, SimulationMode
)
from simstate.contracts.state import ActDecisions, DerivedBranches, SimulationState
from simstate.domain.serialization import dumps_state, loads_state
from simstate.engine import SimulationConfig, SimulationStateManager, build_manager
from simstate.observability import AuditAction
from simstate.storage.local import FileStateCache, InMemoryStateCache
from simstate.storage.remote import HttpRemoteStateStore, InMemoryRemoteStateStore
from simstate.temporal.clock import LogicalClock
from simstate.temporal.replay import verify_derived_consistency, verify_snapshot

from .fixtures import (
    BASE_TIME, STARTED_AT, BrokenCache, CrashingRemoteStore, FailingRemoteStore,
    make_clock, make_manager
)


SESSION_KEY = "simulation_state_sess-1"
PREVIEW_KEY = "simulation_state_preview"


def stored_state(**overrides) -> SimulationState:
    defaults = dict(
        participant_id="p-1",
        session_id="sess-1",
        mode=SimulationMode.GENERATIVE_ASSIST,
        started_at="2026-02-28T12:00:00+00:00",
    )
    defaults.update(overrides)
    return SimulationState(**defaults)


# =============================================================================
# LOAD
# =============================================================================

class TestLoadResolution:
    """Remote first, then local cache, then fresh state."""

    def test_fresh_when_both_tiers_empty(self):
        cache = InMemoryStateCache()
        manager = make_manager(cache=cache)

        state = asyncio.run(manager.refresh())

        assert state == SimulationState.initial(
            "p-1", "sess-1", SimulationMode.GENERATIVE_ASSIST, STARTED_AT
        )
        assert manager.state is state
        assert loads_state(cache.get(SESSION_KEY)) == state
        assert manager.audit.last(AuditAction.STATE_LOADED).get("source") == "fresh"

    def test_remote_state_wins_and_refreshes_cache(self):
        remote = InMemoryRemoteStateStore()
        remote_state = stored_state(current_act=2)
        asyncio.run(remote.save_snapshot("sess-1", remote_state))

        cache = InMemoryStateCache({SESSION_KEY: dumps_state(stored_state())})
        manager = make_manager(remote=remote, cache=cache)

        state = asyncio.run(manager.refresh())

        assert state == remote_state
        assert loads_state(cache.get(SESSION_KEY)) == remote_state
        assert manager.audit.last(AuditAction.STATE_LOADED).get("source") == "remote"

    def test_remote_without_state_falls_through_to_cache(self):
        cached = stored_state(current_act=3)
        manager = make_manager(cache=InMemoryStateCache({SESSION_KEY: dumps_state(cached)}))

        assert asyncio.run(manager.refresh()) == cached
        assert manager.audit.last(AuditAction.STATE_LOADED).get("source") == "cache"

    def test_remote_failure_falls_back_to_cache(self):
        cached = stored_state(current_act=2)
        manager = make_manager(
            remote=FailingRemoteStore(),
            cache=InMemoryStateCache({SESSION_KEY: dumps_state(cached)})
        )

        state = asyncio.run(manager.refresh())

        assert state == cached
        failure = manager.audit.last(AuditAction.REMOTE_UNAVAILABLE)
        assert failure.error_code == ErrorCode.REMOTE_UNAVAILABLE
        assert failure.session_key == SESSION_KEY

    def test_corrupt_cache_treated_as_absent(self):
        cache = InMemoryStateCache({SESSION_KEY: "{not json"})
        manager = make_manager(remote=FailingRemoteStore(), cache=cache)

        state = asyncio.run(manager.refresh())

        assert state.current_act == 1
        assert state.decisions.to_dict() == {}
        assert manager.audit.last(AuditAction.CACHE_CORRUPT).error_code == ErrorCode.CACHE_CORRUPT
        # Corrupt value replaced by the resolved state
        assert loads_state(cache.get(SESSION_KEY)) == state

    def test_schema_invalid_cache_treated_as_absent(self):
        cache = InMemoryStateCache({SESSION_KEY: '{"currentAct": 17}'})
        manager = make_manager(cache=cache)

        assert asyncio.run(manager.refresh()).current_act == 1
        assert manager.audit.get_entries(action=AuditAction.CACHE_CORRUPT)

    def test_unexpected_remote_exception_falls_back_to_cache(self):
        cached = stored_state(current_act=2)
        remote = CrashingRemoteStore()
        manager = make_manager(
            remote=remote,
            cache=InMemoryStateCache({SESSION_KEY: dumps_state(cached)})
        )

        state = asyncio.run(manager.refresh())

        assert state == cached
        assert remote.fetch_calls == 1
        failure = manager.audit.last(AuditAction.REMOTE_UNAVAILABLE)
        assert failure.error_code == ErrorCode.REMOTE_UNAVAILABLE
        assert failure.get("reason") == "RuntimeError: client closed"

    def test_broken_cache_never_raises(self):
        manager = make_manager(remote=FailingRemoteStore(), cache=BrokenCache())
        state = asyncio.run(manager.refresh())
        assert state.current_act == 1

    def test_started_at_taken_from_clock_when_not_given(self):
        manager = make_manager(started_at=None)
        state = asyncio.run(manager.refresh())
        assert state.started_at == make_clock().now().to_iso()


class TestPreviewRuns:

    @pytest.mark.parametrize("session_id", [None, "preview"])
    def test_preview_always_starts_fresh(self, session_id):
        previous = stored_state(session_id=None, current_act=4)
        cache = InMemoryStateCache({
            PREVIEW_KEY: dumps_state(previous),
            "preview-act-2": "draft",
            "c2Justification:preview:act3": "because",
            SESSION_KEY: "untouched",
        })
        remote = FailingRemoteStore()
        manager = make_manager(session_id=session_id, remote=remote, cache=cache)

        state = asyncio.run(manager.refresh())

        assert state.current_act == 1
        assert state.is_ephemeral
        assert remote.fetch_calls == 0
        assert sorted(cache.keys()) == [PREVIEW_KEY, SESSION_KEY]
        assert cache.get(SESSION_KEY) == "untouched"
        assert loads_state(cache.get(PREVIEW_KEY)) == state

        cleared = manager.audit.last(AuditAction.CACHE_CLEARED)
        assert cleared.get("auxiliary_keys") == "2"

    def test_preview_updates_never_sync(self):
        remote = InMemoryRemoteStateStore()
        manager = make_manager(session_id=None, remote=remote)

        async def scenario():
            await manager.update_decision(1, "A")
            assert manager.pending_syncs == 0
            return await manager.sync_to_server()

        assert asyncio.run(scenario()) is False
        assert remote.save_count == 0


# =============================================================================
# UPDATE
# =============================================================================

class TestUpdateDecision:

    def test_update_before_load_triggers_load(self):
        remote = InMemoryRemoteStateStore()
        manager = make_manager(remote=remote)

        async def scenario():
            state = await manager.update_decision(1, "C")
            await manager.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.decisions.act1 == "C"
        assert state.current_act == 2
        assert manager.audit.get_entries(action=AuditAction.STATE_LOADED)

    def test_b_b1_z_scenario(self):
        cache = InMemoryStateCache()
        remote = InMemoryRemoteStateStore()
        manager = make_manager(remote=remote, cache=cache)

        async def scenario():
            await manager.refresh()
            for act, option in [(1, "B"), (2, "B1"), (3, "Z")]:
                await manager.update_decision(act, option)
            await manager.wait_for_pending_syncs()
            return manager.state

        state = asyncio.run(scenario())

        assert state.decisions.to_dict() == {"act1": "B", "act2": "B1", "act3": "Z"}
        assert state.derived.act2_branch == "B"
        assert state.derived.act3_context_group is Act3ContextGroup.TRADITION_FIRST
        assert state.derived.act4_track is Act4Track.RELATIONAL_FOUNDATION
        assert state.current_act == 4

        # Both tiers hold the final state
        assert loads_state(cache.get(SESSION_KEY)) == state
        assert remote.get("sess-1") == state
        assert remote.save_count == 3
        assert manager.pending_syncs == 0

    def test_events_are_stamped_by_clock(self):
        manager = make_manager()

        async def scenario():
            await manager.update_decision(1, "A", decisionTimeMs=900)
            await manager.wait_for_pending_syncs()

        asyncio.run(scenario())

        event = manager.state.events[0]
        assert event.timestamp == make_clock().now()
        assert event.payload == {"optionId": "A", "decisionTimeMs": 900}
        assert manager.event_log.head_hash != ""

    def test_invalid_option_logged_not_applied(self):
        manager = make_manager()

        async def scenario():
            state = await manager.update_decision(1, "Z")
            await manager.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.decisions.act1 is None
        assert state.current_act == 1
        assert len(state.events) == 1
        assert manager.audit.last(AuditAction.DECISION_RECORDED).get("applied") == "False"

    def test_sync_failure_keeps_local_state(self):
        cache = InMemoryStateCache()
        remote = FailingRemoteStore()
        manager = make_manager(remote=remote, cache=cache)

        async def scenario():
            state = await manager.update_decision(1, "A")
            await manager.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.decisions.act1 == "A"
        assert loads_state(cache.get(SESSION_KEY)) == state
        assert remote.save_calls == 1
        failed = manager.audit.last(AuditAction.SYNC_FAILED)
        assert failed.error_code == ErrorCode.REMOTE_UNAVAILABLE

    def test_loaded_history_is_extended(self):
        first = make_manager(cache=InMemoryStateCache())

        async def first_session():
            await first.update_decision(1, "A")
            await first.wait_for_pending_syncs()

        asyncio.run(first_session())
        cached = dumps_state(first.state)

        second = make_manager(
            remote=FailingRemoteStore(),
            cache=InMemoryStateCache({SESSION_KEY: cached}),
            clock=LogicalClock.from_ticks([BASE_TIME + timedelta(hours=1)])
        )

        async def scenario():
            await second.refresh()
            state = await second.update_decision(2, "A2")
            await second.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.decisions.to_dict() == {"act1": "A", "act2": "A2"}
        assert len(state.events) == 2
        assert verify_snapshot(state) == []

    def test_replay_engine_over_manager_log(self):
        manager = make_manager(session_id=None)

        async def scenario():
            await manager.update_decision(1, "B")
            await manager.update_decision(2, "B3")

        asyncio.run(scenario())

        engine = manager.replay_engine()
        assert engine.replay_full().state == manager.state
        assert engine.verify_determinism() == (True, None)
        # B3 has no Act III context group
        assert manager.state.derived.act3_context_group is None


# =============================================================================
# SNAPSHOT ADOPTION
# =============================================================================

class TestSnapshotAdoption:
    """A loaded snapshot is the baseline every later fold builds on."""

    def _load_remote(self, snapshot, cache=None):
        remote = InMemoryRemoteStateStore()
        asyncio.run(remote.save_snapshot("sess-1", snapshot))
        return make_manager(remote=remote, cache=cache or InMemoryStateCache())

    def test_current_act_never_regresses_below_snapshot(self):
        manager = self._load_remote(stored_state(current_act=3))

        async def scenario():
            await manager.refresh()
            state = await manager.update_decision(1, "A")
            await manager.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.decisions.act1 == "A"
        assert state.current_act == 3

    def test_snapshot_mode_survives_next_decision(self):
        snapshot = stored_state(mode=SimulationMode.AGENTIC_ASSIST, participant_id="p-9")
        manager = self._load_remote(snapshot)

        async def scenario():
            await manager.refresh()
            state = await manager.update_decision(1, "C")
            await manager.wait_for_pending_syncs()
            return state

        state = asyncio.run(scenario())

        assert state.mode is SimulationMode.AGENTIC_ASSIST
        assert state.participant_id == "p-9"
        assert state.started_at == snapshot.started_at

    def test_stale_derived_branches_are_recomputed_on_load(self):
        snapshot = stored_state(
            current_act=3,
            decisions=ActDecisions(act1="A", act2="A1"),
            derived=DerivedBranches(
                act2_branch="A", act3_context_group=Act3ContextGroup.BALANCED
            )
        )
        assert verify_derived_consistency(snapshot) is not None

        cache = InMemoryStateCache()
        manager = self._load_remote(snapshot, cache=cache)
        state = asyncio.run(manager.refresh())

        assert verify_derived_consistency(state) is None
        assert state.derived.act3_context_group is Act3ContextGroup.EFFICIENCY_FIRST
        assert manager.state == state
        assert loads_state(cache.get(SESSION_KEY)) == state


# =============================================================================
# SYNC
# =============================================================================

class TestSyncToServer:

    def test_no_state_is_noop(self):
        remote = InMemoryRemoteStateStore()
        manager = make_manager(remote=remote)
        assert asyncio.run(manager.sync_to_server()) is False
        assert remote.save_count == 0

    def test_explicit_sync_is_idempotent(self):
        remote = InMemoryRemoteStateStore()
        manager = make_manager(remote=remote)

        async def scenario():
            await manager.refresh()
            assert await manager.sync_to_server()
            assert await manager.sync_to_server()

        asyncio.run(scenario())

        assert remote.get("sess-1") == manager.state
        assert len(manager.audit.get_entries(action=AuditAction.SYNC_SUCCEEDED)) == 2

    def test_unexpected_save_exception_is_recorded_not_raised(self):
        remote = CrashingRemoteStore()
        manager = make_manager(remote=remote)

        async def scenario():
            state = await manager.update_decision(1, "B")
            await manager.wait_for_pending_syncs()
            explicit = await manager.sync_to_server()
            return state, explicit

        state, explicit = asyncio.run(scenario())

        assert state.decisions.act1 == "B"
        assert explicit is False
        assert remote.save_calls == 2
        failures = manager.audit.get_entries(action=AuditAction.SYNC_FAILED)
        assert len(failures) == 2
        assert failures[-1].error_code == ErrorCode.REMOTE_UNAVAILABLE
        assert failures[-1].get("reason") == "ValueError: unserialisable body"


# =============================================================================
# CONFIGURATION
# =============================================================================

class TestConfiguration:

    def test_from_env_defaults(self):
        config = SimulationConfig.from_env({})
        assert config.remote is None
        assert config.cache.backend_type == "memory"

    def test_default_config_gets_memory_cache(self):
        config = SimulationConfig()
        assert config.remote is None
        assert config.cache.backend_type == "memory"

    def test_from_env_full(self, tmp_path):
        config = SimulationConfig.from_env({
            "SIMSTATE_API_URL": "https://sim.example/api",
            "SIMSTATE_API_TIMEOUT": "5.5",
            "SIMSTATE_API_TOKEN": "tok",
            "SIMSTATE_CACHE_DIR": str(tmp_path),
        })
        assert config.remote.base_url == "https://sim.example/api"
        assert config.remote.timeout_seconds == 5.5
        assert config.remote.auth_token == "tok"
        assert config.cache.storage_dir == str(tmp_path)
        assert config.cache.backend_type == "file"

    def test_build_manager_with_http_and_file_tiers(self, tmp_path):
        config = SimulationConfig.from_env({
            "SIMSTATE_API_URL": "https://sim.example/api",
            "SIMSTATE_CACHE_DIR": str(tmp_path),
        })
        manager = build_manager("p-1", "sess-1", "C1", config=config)

        assert isinstance(manager, SimulationStateManager)
        assert isinstance(manager._remote, HttpRemoteStateStore)
        assert isinstance(manager._cache, FileStateCache)
        assert manager.storage_key == SESSION_KEY

    def test_build_manager_reads_environment(self, monkeypatch):
        monkeypatch.delenv("SIMSTATE_API_URL", raising=False)
        monkeypatch.delenv("SIMSTATE_CACHE_DIR", raising=False)

        manager = build_manager("p-1", None, SimulationMode.AGENTIC_ASSIST)

        assert isinstance(manager._remote, InMemoryRemoteStateStore)
        assert manager.storage_key == "simulation_state_preview"
        assert manager.is_ephemeral
