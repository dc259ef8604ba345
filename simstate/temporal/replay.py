"""
Replay Engine
=============

Recomputation of participant state and determinism verification.

INVARIANT: Replay is deterministic.
Same log at same sequence = same derived state.

MERGE HANDLING:
1. Events from another tier are appended to the log (NOT inserted)
2. System recomputes state from the whole log
3. Timestamp ordering inside the fold places them correctly
4. No mutation of previously derived states
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..contracts.base import ACT_NUMBERS, Error, ErrorCode
from ..contracts.state import SimulationState
from ..contracts.temporal import LogSequence

from .event_log import SimulationEventLog
from .state_machine import StateRebuilder, derive_branches


@dataclass(frozen=True)
class ReplayResult:
    """
    Result of replay operation.

    Contains the derived state and which acts became decided
    relative to the previous replay (if any).
    """
    success: bool
    state: Optional[SimulationState] = None
    error: Optional[Error] = None
    newly_decided_acts: Tuple[int, ...] = ()


def verify_derived_consistency(state: SimulationState) -> Optional[Error]:
    """
    Check that `derived` agrees with a fresh recomputation from `decisions`.

    A disagreement means the state was edited outside the fold.
    """
    expected = derive_branches(state.decisions)
    if expected != state.derived:
        return Error.create(
            ErrorCode.DERIVED_STATE_MISMATCH,
            "Derived branches disagree with decisions",
            expected=str(expected.to_dict()),
            actual=str(state.derived.to_dict())
        )
    return None


def verify_snapshot(state: SimulationState) -> List[Error]:
    """
    Forensic check of a stored snapshot.

    1. Re-folding its own events must reproduce it exactly
    2. Derived selectors must match its decisions
    """
    errors: List[Error] = []

    refolded = StateRebuilder(
        state.participant_id, state.session_id, state.mode, state.started_at
    ).refold(state)
    if refolded.state_hash != state.state_hash:
        errors.append(Error.create(
            ErrorCode.NON_DETERMINISTIC_REPLAY,
            "Re-folding the snapshot's events does not reproduce it",
            expected_hash=refolded.state_hash,
            actual_hash=state.state_hash
        ))

    mismatch = verify_derived_consistency(state)
    if mismatch:
        errors.append(mismatch)

    return errors


class ReplayEngine:
    """
    Handles state recomputation for one run.

    GUARANTEES:
    ===========
    1. Replay produces identical state for identical log
    2. New events trigger full recomputation, not patching
    3. All changes are captured in result
    """

    def __init__(self, log: SimulationEventLog, rebuilder: StateRebuilder):
        self._log = log
        self._rebuilder = rebuilder

        # Latest derived state (for change detection)
        self._current_state: Optional[SimulationState] = None

    @property
    def current_state(self) -> Optional[SimulationState]:
        return self._current_state

    def replay_to(self, sequence: LogSequence) -> ReplayResult:
        """
        Replay log up to given sequence.

        Returns derived state at that point.
        """
        try:
            state = self._rebuilder.derive_state(self._log, until_sequence=sequence)
        except (TypeError, ValueError) as e:
            return ReplayResult(
                success=False,
                error=Error.create(ErrorCode.STRUCTURAL_INCONSISTENCY, str(e))
            )

        newly_decided = self._detect_changes(state)
        self._current_state = state

        return ReplayResult(
            success=True,
            state=state,
            newly_decided_acts=newly_decided
        )

    def replay_full(self) -> ReplayResult:
        """Replay entire log from start."""
        return self.replay_to(self._log.state.head_sequence)

    def get_state_at(self, sequence: LogSequence) -> Optional[SimulationState]:
        """Derived state at a specific sequence (point-in-time query)."""
        try:
            return self._rebuilder.derive_state(self._log, until_sequence=sequence)
        except (TypeError, ValueError):
            return None

    def verify_determinism(self) -> Tuple[bool, Optional[str]]:
        """
        Verify that replay produces identical state.

        Folds the log twice, then folds the result's own events,
        and compares state hashes.
        Returns (is_deterministic, difference_description).
        """
        state1 = self._rebuilder.derive_state(self._log)
        state2 = self._rebuilder.derive_state(self._log)

        if state1.state_hash != state2.state_hash:
            return (False, f"Hash mismatch: {state1.state_hash} != {state2.state_hash}")

        refolded = self._rebuilder.refold(state1)
        if refolded.state_hash != state1.state_hash:
            return (False, f"Refold mismatch: {refolded.state_hash} != {state1.state_hash}")

        return (True, None)

    def _detect_changes(self, new_state: SimulationState) -> Tuple[int, ...]:
        """Acts decided in new_state that were undecided before."""
        previous = self._current_state
        return tuple(
            act for act in ACT_NUMBERS
            if new_state.decisions.get(act) is not None
            and (previous is None or previous.decisions.get(act) is None)
        )
