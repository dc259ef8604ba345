"""
Branch Derivation
=================

Pure mappings from one act's choice to the next act's content selector.

INVARIANT: every function here is TOTAL and REFERENTIALLY TRANSPARENT.
- Never raises, whatever the input type
- Returns None for missing or unrecognized input (never a default branch)
- No I/O, no clock, no hidden state

The whole narrative routing reduces to these lookups.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

from ..contracts.base import (
    ACT_NUMBERS, FIRST_ACT, VALID_OPTIONS, Act3ContextGroup, Act4Track,
    Error, ErrorCode
)
from ..contracts.state import SimulationState


# =============================================================================
# LOOKUP TABLES
# =============================================================================

_ACT3_CONTEXT_GROUPS: Dict[str, Act3ContextGroup] = {
    "A1": Act3ContextGroup.EFFICIENCY_FIRST,
    "C3": Act3ContextGroup.EFFICIENCY_FIRST,
    "B1": Act3ContextGroup.TRADITION_FIRST,
    "C2": Act3ContextGroup.TRADITION_FIRST,
    "A2": Act3ContextGroup.BALANCED,
    "A3": Act3ContextGroup.BALANCED,
    "B2": Act3ContextGroup.BALANCED,
    "C1": Act3ContextGroup.BALANCED,
}

_ACT4_TRACKS: Dict[str, Act4Track] = {
    "X": Act4Track.EFFICIENCY_AT_SCALE,
    "Y": Act4Track.MANAGED_ADAPTATION,
    "Z": Act4Track.RELATIONAL_FOUNDATION,
}

ACT1_BASE_CONTENT = "base"


# =============================================================================
# DERIVATION FUNCTIONS
# =============================================================================

def derive_act2_branch(act1_choice: Any) -> Optional[str]:
    """Act I choice maps one-to-one onto the Act II branch of the same label."""
    if not isinstance(act1_choice, str) or act1_choice not in VALID_OPTIONS[1]:
        return None
    return act1_choice


def derive_act3_context_group(act2_choice: Any) -> Optional[Act3ContextGroup]:
    """Bucket the nine Act II codes into three Act III context groups."""
    if not isinstance(act2_choice, str):
        return None
    return _ACT3_CONTEXT_GROUPS.get(act2_choice.upper())


def derive_act4_track(act3_choice: Any) -> Optional[Act4Track]:
    """Act III choice selects the Act IV identity track."""
    if not isinstance(act3_choice, str):
        return None
    return _ACT4_TRACKS.get(act3_choice.upper())


# =============================================================================
# VALIDATION
# =============================================================================

def is_valid_option(act: Any, option_id: Any) -> bool:
    """Membership in the fixed per-act option set."""
    if type(act) is not int or act not in ACT_NUMBERS:
        return False
    if not isinstance(option_id, str):
        return False
    return option_id in VALID_OPTIONS[act]


def validate_decision_sequence(
    act: int,
    option_id: str,
    previous_decisions: Mapping[str, Optional[str]]
) -> Optional[Error]:
    """
    Strict, advisory validation of a decision against prior decisions.

    Returns None when valid, otherwise a typed Error. The state fold does
    NOT apply this check; it is offered to callers that want to reject a
    submission before it reaches the log.

    `previous_decisions` uses wire keys: {"act1": "A", "act2": "A1", ...}.
    """
    if act not in ACT_NUMBERS:
        return Error.create(
            ErrorCode.INVALID_ACT,
            f"Invalid act number: {act}. Must be one of {list(ACT_NUMBERS)}.",
            act=str(act)
        )

    recorded = previous_decisions.get(f"act{act}")
    if recorded:
        # Decisions are write-once per run
        return Error.create(
            ErrorCode.DECISION_ALREADY_RECORDED,
            f"Act {act} already has a recorded decision: {recorded}.",
            act=str(act),
            option_id=str(option_id)
        )

    if act > FIRST_ACT:
        prior = previous_decisions.get(f"act{act - 1}")
        if not prior:
            return Error.create(
                ErrorCode.ACT_OUT_OF_SEQUENCE,
                f"Cannot submit Act {act}: Act {act - 1} must be completed first.",
                act=str(act)
            )

    valid = sorted(VALID_OPTIONS[act])
    if act == 2:
        # Act II options are scoped to the Act I branch
        branch = previous_decisions.get("act1")
        valid = [code for code in valid if code.startswith(branch)]

    if option_id not in valid:
        return Error.create(
            ErrorCode.INVALID_OPTION,
            f"Invalid Act {act} option: {option_id}. Valid options are: {', '.join(valid)}",
            act=str(act),
            option_id=str(option_id)
        )

    return None


# =============================================================================
# STATE QUERIES
# =============================================================================

def content_selector(act: int, state: SimulationState) -> Optional[str]:
    """
    Key the presentation layer uses to pick an act's content variant.

    Returns None when the act's prerequisite decision is missing.
    """
    if act == 1:
        return ACT1_BASE_CONTENT
    if act == 2:
        return state.derived.act2_branch
    if act == 3:
        group = state.derived.act3_context_group
        return group.value if group else None
    if act == 4:
        track = state.derived.act4_track
        return track.value if track else None
    return None


def can_access_act(state: SimulationState, act: int) -> bool:
    """Acts unlock in sequence; preview runs may jump anywhere."""
    if act not in ACT_NUMBERS:
        return False
    if state.is_ephemeral:
        return True
    return act <= state.current_act


def is_complete(state: SimulationState) -> bool:
    """A run is complete once the final act's decision is recorded."""
    return state.decisions.act4 is not None
