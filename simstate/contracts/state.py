"""
Simulation State Contract

The materialized view of one participant run. Produced ONLY by folding
an event log (see temporal.state_machine); never edited in place.

WHY FROZEN:
- Two folds of the same log must compare equal field-by-field
- The state hash is a pure function of the value
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar
from enum import Enum
import hashlib
import json

from .base import (
    ACT_NUMBERS, FIRST_ACT, FINAL_ACT, PREVIEW_SESSION_ID, SCHEMA_VERSION,
    Act3ContextGroup, Act4Track, SimulationMode
)
from .events import SimulationEvent


E = TypeVar('E', bound=Enum)


def _enum_from_wire(enum_cls: Type[E], raw: Any) -> Optional[E]:
    """Accept either the enum value or the member name (legacy snapshots)."""
    if raw is None:
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        return enum_cls[raw]


@dataclass(frozen=True)
class ActDecisions:
    """Choice code per act. None means the act is still undecided."""
    act1: Optional[str] = None
    act2: Optional[str] = None
    act3: Optional[str] = None
    act4: Optional[str] = None

    def get(self, act: int) -> Optional[str]:
        if type(act) is not int or act not in ACT_NUMBERS:
            return None
        return getattr(self, f"act{act}")

    def with_decision(self, act: int, option_id: str) -> ActDecisions:
        return replace(self, **{f"act{act}": option_id})

    def to_dict(self) -> Dict[str, str]:
        # Undecided acts are omitted on the wire
        return {
            f"act{act}": self.get(act)
            for act in ACT_NUMBERS
            if self.get(act) is not None
        }

    @staticmethod
    def from_dict(data: Optional[Mapping[str, Any]]) -> ActDecisions:
        data = data or {}
        values = {}
        for act in ACT_NUMBERS:
            raw = data.get(f"act{act}")
            if raw is not None and not isinstance(raw, str):
                raise ValueError(f"Decision for act {act} must be a string")
            values[f"act{act}"] = raw
        return ActDecisions(**values)


@dataclass(frozen=True)
class DerivedBranches:
    """
    Content selectors derived from decisions.
    Never set directly - always recomputed by the fold.
    """
    act2_branch: Optional[str] = None
    act3_context_group: Optional[Act3ContextGroup] = None
    act4_track: Optional[Act4Track] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "act2Branch": self.act2_branch,
            "act3ContextGroup": self.act3_context_group.value if self.act3_context_group else None,
            "act4Track": self.act4_track.value if self.act4_track else None,
        }

    @staticmethod
    def from_dict(data: Optional[Mapping[str, Any]]) -> DerivedBranches:
        data = data or {}
        return DerivedBranches(
            act2_branch=data.get("act2Branch"),
            act3_context_group=_enum_from_wire(Act3ContextGroup, data.get("act3ContextGroup")),
            act4_track=_enum_from_wire(Act4Track, data.get("act4Track")),
        )


@dataclass(frozen=True)
class SimulationState:
    """
    Complete state of one participant run.

    `session_id` of None marks an ephemeral preview run.
    `events` is the authoritative history; everything else is derived.
    """
    participant_id: str
    session_id: Optional[str]
    mode: SimulationMode
    started_at: str
    current_act: int = FIRST_ACT
    decisions: ActDecisions = field(default_factory=ActDecisions)
    derived: DerivedBranches = field(default_factory=DerivedBranches)
    events: Tuple[SimulationEvent, ...] = field(default_factory=tuple)
    version: int = SCHEMA_VERSION

    @staticmethod
    def initial(
        participant_id: str,
        session_id: Optional[str],
        mode: SimulationMode,
        started_at: str
    ) -> SimulationState:
        """Freshly created run: act 1, nothing decided, empty log."""
        return SimulationState(
            participant_id=participant_id,
            session_id=session_id,
            mode=mode,
            started_at=started_at
        )

    @property
    def is_ephemeral(self) -> bool:
        return self.session_id is None or self.session_id == PREVIEW_SESSION_ID

    @property
    def state_hash(self) -> str:
        """Deterministic hash of the full state value."""
        content = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(content.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "sessionId": self.session_id,
            "mode": self.mode.value,
            "startedAt": self.started_at,
            "currentAct": self.current_act,
            "decisions": self.decisions.to_dict(),
            "derived": self.derived.to_dict(),
            "events": [event.to_dict() for event in self.events],
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> SimulationState:
        """
        Parse a wire-format state.

        Raises ValueError / KeyError / TypeError when the payload does not
        describe a valid state.
        """
        if not isinstance(data, Mapping):
            raise TypeError("State payload must be an object")

        current_act = data.get("currentAct", FIRST_ACT)
        if not isinstance(current_act, int) or not FIRST_ACT <= current_act <= FINAL_ACT:
            raise ValueError(f"currentAct out of range: {current_act!r}")

        raw_events = data.get("events") or []
        if not isinstance(raw_events, list):
            raise ValueError("events must be a list")

        return SimulationState(
            participant_id=str(data["participantId"]),
            session_id=data.get("sessionId"),
            mode=SimulationMode(data["mode"]),
            started_at=str(data["startedAt"]),
            current_act=current_act,
            decisions=ActDecisions.from_dict(data.get("decisions")),
            derived=DerivedBranches.from_dict(data.get("derived")),
            events=tuple(SimulationEvent.from_dict(e) for e in raw_events),
            version=int(data.get("version", SCHEMA_VERSION)),
        )
