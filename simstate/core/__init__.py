"""
Core Narrative Routing

RESPONSIBILITY: Map decisions to the content selectors of later acts
ALLOWED INPUTS: Choice codes, SimulationState values
OUTPUTS: Branch / context-group / track selectors, validation Errors

WHAT THIS LAYER MUST NOT DO:
============================
- Persist data or know which storage tier a state came from
- Read the clock or the network
- Raise on bad input (unknown codes map to None)
"""

from .branching import (
    ACT1_BASE_CONTENT,
    can_access_act,
    content_selector,
    derive_act2_branch,
    derive_act3_context_group,
    derive_act4_track,
    is_complete,
    is_valid_option,
    validate_decision_sequence,
)

__all__ = [
    'ACT1_BASE_CONTENT',
    'can_access_act',
    'content_selector',
    'derive_act2_branch',
    'derive_act3_context_group',
    'derive_act4_track',
    'is_complete',
    'is_valid_option',
    'validate_decision_sequence',
]
