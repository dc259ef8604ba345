"""
State Machine
=============

Pure function state derivation from an event log.

INVARIANT: rebuild_state_from_events(...) is a PURE FUNCTION
Same events (as a multiset, ordered by timestamp) → identical state.

This module DOES NOT store state.
It COMPUTES state from the event log on demand.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..contracts.base import ACT_NUMBERS, FINAL_ACT, FIRST_ACT, EventType, SimulationMode
from ..contracts.events import SimulationEvent
from ..contracts.state import ActDecisions, DerivedBranches, SimulationState
from ..contracts.temporal import LogSequence
from ..core.branching import (
    derive_act2_branch, derive_act3_context_group, derive_act4_track, is_valid_option
)

from .event_log import SimulationEventLog


@dataclass
class _StateBuilder:
    """
    Mutable accumulator used inside a single fold.
    Never escapes this module; build() freezes it.
    """
    current_act: int = FIRST_ACT
    decisions: ActDecisions = field(default_factory=ActDecisions)
    events: List[SimulationEvent] = field(default_factory=list)

    def apply(self, event: SimulationEvent) -> None:
        if event.event_type == EventType.DECISION:
            self._apply_decision(event)
        elif event.event_type == EventType.ACT_STARTED:
            if type(event.act) is int and event.act in ACT_NUMBERS and event.act > self.current_act:
                self.current_act = event.act

        # Every event is kept for audit, folded or not
        self.events.append(event)

    def _apply_decision(self, event: SimulationEvent) -> None:
        option_id = event.option_id
        if not is_valid_option(event.act, option_id):
            # Unknown codes are ignored, not rejected
            return
        if self.decisions.get(event.act) is not None:
            # Decisions are write-once per run
            return

        self.decisions = self.decisions.with_decision(event.act, option_id)
        self.current_act = max(self.current_act, min(event.act + 1, FINAL_ACT))

    def build(
        self,
        participant_id: str,
        session_id: Optional[str],
        mode: SimulationMode,
        started_at: str
    ) -> SimulationState:
        return SimulationState(
            participant_id=participant_id,
            session_id=session_id,
            mode=mode,
            started_at=started_at,
            current_act=self.current_act,
            decisions=self.decisions,
            derived=derive_branches(self.decisions),
            events=tuple(self.events)
        )


def derive_branches(decisions: ActDecisions) -> DerivedBranches:
    """Recompute every derived selector from decisions alone."""
    return DerivedBranches(
        act2_branch=derive_act2_branch(decisions.act1),
        act3_context_group=derive_act3_context_group(decisions.act2),
        act4_track=derive_act4_track(decisions.act3)
    )


def rebuild_state_from_events(
    participant_id: str,
    session_id: Optional[str],
    mode: SimulationMode,
    started_at: str,
    events: Iterable[SimulationEvent]
) -> SimulationState:
    """
    Fold an event sequence into a SimulationState.

    1. Start from the empty state (act 1, nothing decided)
    2. Stable-sort by event timestamp (ties keep input order)
    3. Fold each event; invalid decisions are kept in the log but not applied

    Never consults the clock, randomness, or the network.
    """
    ordered = sorted(events, key=lambda e: e.timestamp.value)

    builder = _StateBuilder()
    for event in ordered:
        builder.apply(event)

    return builder.build(participant_id, session_id, mode, started_at)


class StateRebuilder:
    """
    Derives state for one participant run from an event log.

    GUARANTEES:
    ===========
    1. derive_state(log) is deterministic
    2. No side effects on log
    3. No hidden state between calls
    """

    def __init__(
        self,
        participant_id: str,
        session_id: Optional[str],
        mode: SimulationMode,
        started_at: str
    ):
        self._participant_id = participant_id
        self._session_id = session_id
        self._mode = mode
        self._started_at = started_at

    def derive_state(
        self,
        log: SimulationEventLog,
        until_sequence: Optional[LogSequence] = None
    ) -> SimulationState:
        """Derive state from the log up to the given sequence (inclusive)."""
        return rebuild_state_from_events(
            self._participant_id,
            self._session_id,
            self._mode,
            self._started_at,
            log.events(until_seq=until_sequence)
        )

    def refold(self, state: SimulationState) -> SimulationState:
        """Fold a state's own event history again."""
        return rebuild_state_from_events(
            state.participant_id,
            state.session_id,
            state.mode,
            state.started_at,
            state.events
        )
